from __future__ import annotations

from pathlib import Path

from starlette.datastructures import UploadFile

from tubely.core.config import Settings
from tubely.core.errors import StagingError, ValidationError
from tubely.core.logging import get_logger
from tubely.db.models import Video

from .upload_service import CHUNK_SIZE, parse_media_type
from .videos import VideoRepository

ACCEPTED_THUMBNAIL_TYPES = frozenset({"image/jpeg", "image/png"})


class ThumbnailService:
    """Stores thumbnail images on local disk and links them to the video record."""

    def __init__(self, settings: Settings, videos: VideoRepository):
        self.assets_root = Path(settings.assets_root)
        self.public_base_url = settings.public_base_url.rstrip("/")
        self.max_bytes = settings.max_thumbnail_bytes
        self.videos = videos
        self.logger = get_logger(component="thumbnail_upload")

    async def process_upload(self, video: Video, upload: UploadFile) -> Video:
        media_type = parse_media_type(upload.content_type)
        if media_type not in ACCEPTED_THUMBNAIL_TYPES:
            await upload.close()
            raise ValidationError(f"invalid media type: {media_type}")

        payload = await self._read_limited(upload)
        extension = media_type.split("/", 1)[1]
        filename = f"{video.id}.{extension}"
        target = self.assets_root / filename
        try:
            self.assets_root.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)
        except OSError as exc:
            raise StagingError("Unable to save thumbnail") from exc

        video.thumbnail_url = f"{self.public_base_url}/assets/{filename}"
        self.logger.info("thumbnail_saved", video_id=video.id, path=str(target), size_bytes=len(payload))
        return await self.videos.update(video)

    async def _read_limited(self, upload: UploadFile) -> bytes:
        chunks: list[bytes] = []
        total = 0
        try:
            while chunk := await upload.read(CHUNK_SIZE):
                total += len(chunk)
                if total > self.max_bytes:
                    raise ValidationError(f"Thumbnail exceeds {self.max_bytes} bytes")
                chunks.append(chunk)
        finally:
            await upload.close()
        return b"".join(chunks)


__all__ = ["ThumbnailService", "ACCEPTED_THUMBNAIL_TYPES"]
