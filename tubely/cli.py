from __future__ import annotations

import argparse
import asyncio
import subprocess
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console

from .core.config import get_settings
from .core.db import create_engine, create_schema
from .core.errors import TubelyError
from .media.faststart import FFmpegFaststartRewriter
from .media.keys import generate_key
from .media.probe import Classification, FFprobeInspector, classify
from .media.runner import ToolRunner

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_environment_check()
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    args.func(args)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tubely media developer CLI")
    parser.add_argument("--check", action="store_true", help="Validate presence of ffmpeg/ffprobe dependencies")

    subparsers = parser.add_subparsers(dest="command")

    probe_parser = subparsers.add_parser("probe", help="Run ffprobe and print the frame geometry and classification")
    probe_parser.add_argument("--file", required=True, help="Path to the source media file")
    probe_parser.set_defaults(func=_cmd_probe)

    faststart_parser = subparsers.add_parser("faststart", help="Remux a file so playback can start before download ends")
    faststart_parser.add_argument("--file", required=True, help="Path to the source media file")
    faststart_parser.set_defaults(func=_cmd_faststart)

    key_parser = subparsers.add_parser("key", help="Print a freshly generated storage key")
    key_parser.add_argument(
        "--classification",
        choices=[item.value for item in Classification],
        default=Classification.other.value,
    )
    key_parser.set_defaults(func=_cmd_key)

    init_db_parser = subparsers.add_parser("init-db", help="Create database tables for the configured DSN")
    init_db_parser.set_defaults(func=_cmd_init_db)
    return parser


def _runner() -> ToolRunner:
    settings = get_settings()
    return ToolRunner(max_concurrency=1, timeout_s=settings.media_tool_timeout_s)


def _existing_file(raw: str) -> Path:
    media_path = Path(raw).expanduser().resolve()
    if not media_path.exists():
        console.print(f"[red]File not found: {media_path}[/]")
        sys.exit(2)
    return media_path


def _cmd_probe(args: argparse.Namespace) -> None:
    media_path = _existing_file(args.file)
    inspector = FFprobeInspector(_runner(), binary=get_settings().ffprobe_path)
    try:
        geometry = asyncio.run(inspector.probe(media_path))
    except TubelyError as exc:
        console.print(f"[red]Probe failed:[/] {exc.message}")
        sys.exit(3)
    console.print_json(
        data={
            "file": str(media_path),
            "width": geometry.width,
            "height": geometry.height,
            "classification": classify(geometry.width, geometry.height).value,
        }
    )


def _cmd_faststart(args: argparse.Namespace) -> None:
    media_path = _existing_file(args.file)
    rewriter = FFmpegFaststartRewriter(_runner(), binary=get_settings().ffmpeg_path)
    try:
        output = asyncio.run(rewriter.rewrite(media_path))
    except TubelyError as exc:
        console.print(f"[red]Rewrite failed:[/] {exc.message}")
        sys.exit(3)
    console.print(f"[green]Fast-start copy written to {output}[/]")


def _cmd_key(args: argparse.Namespace) -> None:
    console.print(generate_key(Classification(args.classification)))


def _cmd_init_db(args: argparse.Namespace) -> None:
    settings = get_settings()
    engine = create_engine(settings)

    async def _create() -> None:
        try:
            await create_schema(engine)
        finally:
            await engine.dispose()

    asyncio.run(_create())
    console.print(f"[green]Schema ensured for {settings.database_url}[/]")


def _run_environment_check() -> None:
    """Check for the presence of required external dependencies."""
    settings = get_settings()
    checks = {
        "ffmpeg": [settings.ffmpeg_path, "-version"],
        "ffprobe": [settings.ffprobe_path, "-version"],
    }
    results = {}
    for label, cmd in checks.items():
        try:
            subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=True)
            results[label] = True
        except (OSError, subprocess.CalledProcessError):
            results[label] = False

    console.rule("[bold]Environment Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")

    if not all(results.values()):
        console.print("[red]Missing dependencies detected. Install ffmpeg to enable uploads.[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
