from __future__ import annotations

from fastapi import APIRouter, Request, status
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from tubely.api import deps
from tubely.core.errors import ValidationError
from tubely.services.videos import resolve_owned_video

from . import schemas


router = APIRouter(prefix="/videos", tags=["videos"])

VIDEO_FIELD = "video"
THUMBNAIL_FIELD = "thumbnail"


async def _read_upload_part(request: Request, field: str) -> UploadFile:
    """Parse the multipart body and return the named file part.

    Called only after the caller has been authorised against the record, so
    an unauthorised request never gets its body spooled to disk.
    """
    try:
        form = await request.form()
    except MultiPartException as exc:
        raise ValidationError("Unable to parse multipart form") from exc
    except StarletteHTTPException as exc:
        raise ValidationError(f"Unable to parse multipart form: {exc.detail}") from exc

    part = form.get(field)
    if not isinstance(part, UploadFile):
        raise ValidationError(f"Unable to parse form file: missing '{field}' part")
    return part


@router.post("", response_model=schemas.VideoResponse, status_code=status.HTTP_201_CREATED)
async def create_video(
    payload: schemas.VideoCreateRequest,
    videos: deps.VideoRepositoryDependency,
    context: deps.AuthDependency,
) -> schemas.VideoResponse:
    video = await videos.create(user_id=context.user_id, title=payload.title, description=payload.description)
    return schemas.VideoResponse.model_validate(video)


@router.get("/{video_id}", response_model=schemas.VideoResponse)
async def get_video(
    video_id: str,
    videos: deps.VideoRepositoryDependency,
    context: deps.AuthDependency,
) -> schemas.VideoResponse:
    video = await resolve_owned_video(videos, video_id, context.user_id)
    return schemas.VideoResponse.model_validate(video)


@router.api_route(
    "/{video_id}/upload",
    methods=["POST", "PUT"],
    response_model=schemas.VideoResponse,
    responses={
        400: {"model": schemas.ErrorResponse},
        401: {"model": schemas.ErrorResponse},
        404: {"model": schemas.ErrorResponse},
        502: {"model": schemas.ErrorResponse},
    },
    summary="Upload the video file for a record",
)
async def upload_video(
    video_id: str,
    request: Request,
    service: deps.UploadServiceDependency,
    context: deps.AuthDependency,
) -> schemas.VideoResponse:
    video = await resolve_owned_video(service.videos, video_id, context.user_id)
    upload = await _read_upload_part(request, VIDEO_FIELD)
    updated = await service.process_upload(video, upload)
    return schemas.VideoResponse.model_validate(updated)


@router.api_route(
    "/{video_id}/thumbnail",
    methods=["POST", "PUT"],
    response_model=schemas.VideoResponse,
    responses={
        400: {"model": schemas.ErrorResponse},
        401: {"model": schemas.ErrorResponse},
        404: {"model": schemas.ErrorResponse},
    },
    summary="Upload a thumbnail image for a record",
)
async def upload_thumbnail(
    video_id: str,
    request: Request,
    service: deps.ThumbnailServiceDependency,
    context: deps.AuthDependency,
) -> schemas.VideoResponse:
    video = await resolve_owned_video(service.videos, video_id, context.user_id)
    upload = await _read_upload_part(request, THUMBNAIL_FIELD)
    updated = await service.process_upload(video, upload)
    return schemas.VideoResponse.model_validate(updated)


__all__ = ["router"]
