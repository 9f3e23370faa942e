"""Media tooling used by the upload pipeline."""

from tubely.media.faststart import ContainerRewriter, FFmpegFaststartRewriter, faststart_output_path
from tubely.media.keys import generate_key
from tubely.media.probe import Classification, FFprobeInspector, FrameGeometry, MediaInspector, classify, parse_probe_output
from tubely.media.runner import ToolRunner

__all__ = [
    "Classification",
    "ContainerRewriter",
    "FFmpegFaststartRewriter",
    "FFprobeInspector",
    "FrameGeometry",
    "MediaInspector",
    "ToolRunner",
    "classify",
    "faststart_output_path",
    "generate_key",
    "parse_probe_output",
]
