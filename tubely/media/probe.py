from __future__ import annotations

import enum
import json
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from tubely.core.errors import InspectionError, InspectionFailure
from tubely.core.logging import get_logger

from .runner import ToolRunner


class Classification(str, enum.Enum):
    landscape = "landscape"
    portrait = "portrait"
    other = "other"

    @property
    def partition(self) -> str:
        return f"{self.value}/"


@dataclass(slots=True, frozen=True)
class FrameGeometry:
    """Picture size of the first video stream."""

    width: int
    height: int


def classify(width: int, height: int) -> Classification:
    """Classify picture geometry on exact 16:9 integer arithmetic.

    Near-16:9 sizes that do not land on the formula are ``other``; there is
    no tolerance window.
    """
    if width == 16 * height // 9:
        return Classification.landscape
    if height == 16 * width // 9:
        return Classification.portrait
    return Classification.other


def parse_probe_output(stdout: str) -> FrameGeometry:
    """Extract the first video stream's geometry from ``ffprobe -print_format json`` output.

    Args:
        stdout: Raw standard output of ffprobe.

    Returns:
        The width and height of the selected stream.

    Raises:
        InspectionError: ``malformed_output`` when the payload does not match the
            expected schema, ``no_streams`` when there is nothing to measure.
    """
    try:
        raw = json.loads(stdout)
    except (TypeError, ValueError) as exc:
        raise InspectionError(InspectionFailure.malformed_output, "ffprobe output is not JSON") from exc
    if not isinstance(raw, dict):
        raise InspectionError(InspectionFailure.malformed_output, "ffprobe output is not an object")

    streams = raw.get("streams")
    if streams is None or streams == []:
        raise InspectionError(InspectionFailure.no_streams, "No streams reported")
    if not isinstance(streams, list) or not all(isinstance(item, dict) for item in streams):
        raise InspectionError(InspectionFailure.malformed_output, "ffprobe streams are not a list of objects")

    stream = _select_video_stream(streams)
    if stream is None:
        raise InspectionError(InspectionFailure.no_streams, "No video stream reported")

    width = _positive_int(stream.get("width"))
    height = _positive_int(stream.get("height"))
    if width is None or height is None:
        raise InspectionError(InspectionFailure.malformed_output, "Video stream has no usable width/height")
    return FrameGeometry(width=width, height=height)


def _select_video_stream(streams: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    for stream in streams:
        if str(stream.get("codec_type", "")).lower() == "video":
            return stream
    # Some ffprobe builds omit codec_type; fall back to the first stream.
    if not any("codec_type" in stream for stream in streams):
        return streams[0]
    return None


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


class MediaInspector(ABC):
    @abstractmethod
    async def inspect(self, path: Path) -> Classification: ...


class FFprobeInspector(MediaInspector):
    """Classify a staged file by running ffprobe against it."""

    def __init__(self, runner: ToolRunner, *, binary: str = "ffprobe"):
        self.runner = runner
        self.binary = binary
        self.logger = get_logger(component="ffprobe_inspector")

    def command(self, path: Path) -> list[str]:
        return [
            self.binary,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_streams",
            str(path),
        ]

    async def probe(self, path: Path) -> FrameGeometry:
        try:
            proc = await self.runner.run(self.command(path))
        except subprocess.TimeoutExpired as exc:
            raise InspectionError(InspectionFailure.tool_failure, "ffprobe timed out") from exc
        except OSError as exc:
            raise InspectionError(InspectionFailure.tool_failure, "ffprobe could not be started") from exc
        if proc.returncode != 0:
            raise InspectionError(
                InspectionFailure.tool_failure,
                f"ffprobe exited with status {proc.returncode}: {proc.stderr.strip()}",
            )
        return parse_probe_output(proc.stdout)

    async def inspect(self, path: Path) -> Classification:
        geometry = await self.probe(path)
        classification = classify(geometry.width, geometry.height)
        self.logger.info(
            "media_classified",
            path=str(path),
            width=geometry.width,
            height=geometry.height,
            classification=classification.value,
        )
        return classification


__all__ = [
    "Classification",
    "FrameGeometry",
    "classify",
    "parse_probe_output",
    "MediaInspector",
    "FFprobeInspector",
]
