from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tubely.core.auth import AuthContext, get_auth_context
from tubely.core.config import Settings, get_settings
from tubely.core.storage import ObjectStore
from tubely.media.faststart import ContainerRewriter, FFmpegFaststartRewriter
from tubely.media.probe import FFprobeInspector, MediaInspector
from tubely.media.runner import ToolRunner
from tubely.services.thumbnail_service import ThumbnailService
from tubely.services.upload_service import UploadConfig, VideoUploadService
from tubely.services.videos import VideoRepository


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory = request.app.state.session_factory
    if not isinstance(session_factory, async_sessionmaker):
        raise RuntimeError("session_factory_not_configured")
    async with session_factory() as session:
        yield session


def get_object_store(request: Request) -> ObjectStore:
    store: ObjectStore = request.app.state.object_store
    return store


def get_tool_runner(request: Request) -> ToolRunner:
    runner: ToolRunner = request.app.state.tool_runner
    return runner


def get_app_settings() -> Settings:
    return get_settings()


def get_inspector(
    runner: ToolRunner = Depends(get_tool_runner),
    settings: Settings = Depends(get_app_settings),
) -> MediaInspector:
    return FFprobeInspector(runner, binary=settings.ffprobe_path)


def get_rewriter(
    runner: ToolRunner = Depends(get_tool_runner),
    settings: Settings = Depends(get_app_settings),
) -> ContainerRewriter:
    return FFmpegFaststartRewriter(runner, binary=settings.ffmpeg_path)


def get_video_repository(session: AsyncSession = Depends(get_session)) -> VideoRepository:
    return VideoRepository(session)


def get_upload_service(
    videos: VideoRepository = Depends(get_video_repository),
    store: ObjectStore = Depends(get_object_store),
    inspector: MediaInspector = Depends(get_inspector),
    rewriter: ContainerRewriter = Depends(get_rewriter),
    settings: Settings = Depends(get_app_settings),
) -> VideoUploadService:
    return VideoUploadService(UploadConfig.from_settings(settings), store, videos, inspector, rewriter)


def get_thumbnail_service(
    videos: VideoRepository = Depends(get_video_repository),
    settings: Settings = Depends(get_app_settings),
) -> ThumbnailService:
    return ThumbnailService(settings, videos)


AuthDependency = Annotated[AuthContext, Depends(get_auth_context)]
VideoRepositoryDependency = Annotated[VideoRepository, Depends(get_video_repository)]
UploadServiceDependency = Annotated[VideoUploadService, Depends(get_upload_service)]
ThumbnailServiceDependency = Annotated[ThumbnailService, Depends(get_thumbnail_service)]


__all__ = [
    "get_session",
    "get_object_store",
    "get_tool_runner",
    "get_app_settings",
    "get_inspector",
    "get_rewriter",
    "get_video_repository",
    "get_upload_service",
    "get_thumbnail_service",
    "AuthDependency",
    "VideoRepositoryDependency",
    "UploadServiceDependency",
    "ThumbnailServiceDependency",
]
