from __future__ import annotations

import asyncio
import subprocess

from fastapi import APIRouter, Depends, HTTPException, status

from tubely.api.deps import AuthDependency
from tubely.core.config import Settings, get_settings

from .schemas import EnvCheckResponse, HealthResponse


router = APIRouter(tags=["system"])


def _probe_binary(command: list[str]) -> bool:
    try:
        subprocess.run(command, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=True)
    except (OSError, subprocess.CalledProcessError):
        return False
    return True


@router.get("/health", response_model=HealthResponse, summary="Liveness probe")
async def health() -> HealthResponse:
    return HealthResponse()


@router.get("/admin/env-check", response_model=EnvCheckResponse, summary="Validate ffmpeg toolchain")
async def env_check(context: AuthDependency, settings: Settings = Depends(get_settings)) -> EnvCheckResponse:
    if "admin" not in context.scopes:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin_scope_required")

    ffmpeg, ffprobe = await asyncio.gather(
        asyncio.to_thread(_probe_binary, [settings.ffmpeg_path, "-version"]),
        asyncio.to_thread(_probe_binary, [settings.ffprobe_path, "-version"]),
    )
    return EnvCheckResponse(ffmpeg=ffmpeg, ffprobe=ffprobe)


__all__ = ["router"]
