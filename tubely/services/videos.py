from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tubely.core.errors import AuthError, MetadataUpdateError, NotFoundError, ValidationError
from tubely.core.logging import get_logger
from tubely.db.models import Video


class VideoRepository:
    """Metadata store for video records."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.logger = get_logger(component="video_repository")

    async def create(self, *, user_id: str, title: str, description: str | None = None) -> Video:
        video = Video(id=str(uuid4()), user_id=user_id, title=title, description=description)
        self.session.add(video)
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise MetadataUpdateError("Unable to create video") from exc
        await self.session.refresh(video)
        return video

    async def get(self, video_id: UUID) -> Video:
        video = await self.session.get(Video, str(video_id))
        if video is None:
            raise NotFoundError(f"Video {video_id} not found")
        return video

    async def update(self, video: Video) -> Video:
        # No version check: concurrent writers to the same record are last-write-wins.
        try:
            await self.session.commit()
            await self.session.refresh(video)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            self.logger.error("video_update_failed", video_id=video.id, error=repr(exc))
            raise MetadataUpdateError("Unable to update video data") from exc
        return video


async def resolve_owned_video(videos: VideoRepository, raw_video_id: str, user_id: str) -> Video:
    """Look up a video by its path identifier and check the caller owns it."""
    try:
        video_id = UUID(raw_video_id)
    except ValueError as exc:
        raise ValidationError("Invalid ID") from exc

    video = await videos.get(video_id)
    if video.user_id != user_id:
        raise AuthError("Unauthorized Request")
    return video


__all__ = ["VideoRepository", "resolve_owned_video"]
