from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable

from starlette.datastructures import UploadFile

from tubely.core.config import Settings
from tubely.core.errors import MetadataUpdateError, StagingError, StorageError, ValidationError
from tubely.core.logging import get_logger
from tubely.core.storage import ObjectStore
from tubely.db.models import Video
from tubely.media.faststart import ContainerRewriter, faststart_output_path
from tubely.media.keys import generate_key
from tubely.media.probe import Classification, MediaInspector

from .staging import StagingArea
from .videos import VideoRepository

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True, slots=True)
class UploadConfig:
    """Static configuration the upload pipeline needs, fixed at construction."""

    staging_root: Path
    accepted_media_type: str = "video/mp4"
    upload_timeout_s: float = 300.0
    staged_suffix: str = ".mp4"

    @classmethod
    def from_settings(cls, settings: Settings) -> "UploadConfig":
        return cls(
            staging_root=Path(settings.staging_root),
            accepted_media_type=settings.accepted_video_type.lower(),
            upload_timeout_s=settings.object_store_timeout_s,
        )


def parse_media_type(content_type: str | None) -> str:
    """Return the bare ``type/subtype`` of a Content-Type value, lower-cased."""
    media_type = (content_type or "").split(";", 1)[0].strip().lower()
    if not media_type or "/" not in media_type:
        raise ValidationError("Unable to get media type")
    return media_type


async def stage_upload(upload: UploadFile, target: Path) -> int:
    """Copy an uploaded part into ``target`` and return the byte count."""
    written = 0
    try:
        with target.open("wb") as handle:
            while chunk := await upload.read(CHUNK_SIZE):
                handle.write(chunk)
                written += len(chunk)
    except OSError as exc:
        raise StagingError("Unable to write upload to temp file") from exc
    finally:
        await upload.close()
    return written


class VideoUploadService:
    """Drives a video upload from the staged request body to the stored record.

    Staging → inspection → fast-start rewrite → key generation → object upload
    → metadata update. The first failure is terminal and every staged file is
    removed on the way out.
    """

    def __init__(
        self,
        config: UploadConfig,
        store: ObjectStore,
        videos: VideoRepository,
        inspector: MediaInspector,
        rewriter: ContainerRewriter,
        *,
        key_factory: Callable[[Classification], str] = generate_key,
    ):
        self.config = config
        self.store = store
        self.videos = videos
        self.inspector = inspector
        self.rewriter = rewriter
        self.key_factory = key_factory
        self.logger = get_logger(component="video_upload")

    async def process_upload(self, video: Video, upload: UploadFile) -> Video:
        logger = self.logger.bind(video_id=video.id, user_id=video.user_id)

        media_type = parse_media_type(upload.content_type)
        if media_type != self.config.accepted_media_type:
            await upload.close()
            raise ValidationError(f"invalid media type: {media_type}")

        with StagingArea(self.config.staging_root) as staging:
            staged = staging.create(suffix=self.config.staged_suffix)
            size_bytes = await stage_upload(upload, staged)
            logger.info("video_upload_staged", path=str(staged), size_bytes=size_bytes)

            classification = await self.inspector.inspect(staged)
            logger.info("video_upload_classified", classification=classification.value)

            expected = staging.track(faststart_output_path(staged))
            processed = await self.rewriter.rewrite(staged)
            if processed != expected:
                staging.track(processed)

            key = self.key_factory(classification)
            await self._put_object(key, processed, media_type)
            logger.info("video_upload_stored", key=key)

        video.video_url = self.store.public_url(key)
        try:
            updated = await self.videos.update(video)
        except MetadataUpdateError:
            # The object stays in the store with nothing pointing at it.
            logger.warning("video_upload_orphaned_object", key=key)
            raise
        logger.info("video_upload_completed", video_url=updated.video_url)
        return updated

    async def _put_object(self, key: str, path: Path, content_type: str) -> None:
        try:
            handle = path.open("rb")
        except OSError as exc:
            raise StagingError("Unable to process video: rewritten file is unavailable") from exc

        upload = asyncio.ensure_future(
            asyncio.to_thread(self.store.put_object, key, handle, content_type=content_type)
        )
        try:
            await asyncio.wait_for(asyncio.shield(upload), timeout=self.config.upload_timeout_s)
        except asyncio.TimeoutError as exc:
            await self._abandon_upload(upload, handle, key)
            raise StorageError(f"Upload of {key} timed out after {self.config.upload_timeout_s}s") from exc
        except asyncio.CancelledError:
            await self._abandon_upload(upload, handle, key)
            raise
        finally:
            handle.close()

    async def _abandon_upload(self, upload: asyncio.Future, handle: BinaryIO, key: str) -> None:
        """Stop feeding an in-flight upload and wait for the store call to return.

        Closing the body makes the store's next read fail, so the worker gives up
        and removes whatever it wrote. The staged files are only removed after it
        has returned.
        """
        handle.close()
        outcome = (await asyncio.shield(asyncio.gather(upload, return_exceptions=True)))[0]
        if outcome is None:
            # The store call finished before the body was closed.
            self.logger.warning("video_upload_orphaned_object", key=key)
        else:
            self.logger.info("video_upload_abandoned", key=key, error=repr(outcome))


__all__ = ["UploadConfig", "VideoUploadService", "parse_media_type", "stage_upload"]
