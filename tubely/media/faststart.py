from __future__ import annotations

import asyncio
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from tubely.core.errors import RewriteError
from tubely.core.logging import get_logger

from .runner import ToolRunner

PROCESSING_SUFFIX = ".processing"


class ContainerRewriter(ABC):
    @abstractmethod
    async def rewrite(self, input_path: Path) -> Path: ...


def faststart_output_path(input_path: Path) -> Path:
    return input_path.with_name(input_path.name + PROCESSING_SUFFIX)


class FFmpegFaststartRewriter(ContainerRewriter):
    """Remux a file with its moov atom at the front so playback can start early.

    Streams are copied, never re-encoded. The input is left in place; the
    output is written next to it with a ``.processing`` suffix.
    """

    def __init__(self, runner: ToolRunner, *, binary: str = "ffmpeg"):
        self.runner = runner
        self.binary = binary
        self.logger = get_logger(component="faststart_rewriter")

    def command(self, input_path: Path, output_path: Path) -> list[str]:
        return [
            self.binary,
            "-nostdin",
            "-v",
            "error",
            "-y",
            "-i",
            str(input_path),
            "-c",
            "copy",
            "-movflags",
            "faststart",
            "-f",
            "mp4",
            str(output_path),
        ]

    async def rewrite(self, input_path: Path) -> Path:
        output_path = faststart_output_path(input_path)
        try:
            proc = await self.runner.run(self.command(input_path, output_path))
        except subprocess.TimeoutExpired as exc:
            output_path.unlink(missing_ok=True)
            raise RewriteError("Unable to process video for fast start: ffmpeg timed out") from exc
        except OSError as exc:
            output_path.unlink(missing_ok=True)
            raise RewriteError("Unable to process video for fast start: ffmpeg could not be started") from exc
        except asyncio.CancelledError:
            output_path.unlink(missing_ok=True)
            raise

        if proc.returncode != 0:
            output_path.unlink(missing_ok=True)
            raise RewriteError(
                f"Unable to process video for fast start: ffmpeg exited with status {proc.returncode}"
            )

        self.logger.info("faststart_rewritten", input=str(input_path), output=str(output_path))
        return output_path


__all__ = ["ContainerRewriter", "FFmpegFaststartRewriter", "faststart_output_path", "PROCESSING_SUFFIX"]
