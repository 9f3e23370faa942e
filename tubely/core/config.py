from __future__ import annotations

import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Secrets(BaseSettings):
    """Secrets configuration, loaded from the environment or a secrets management service."""

    model_config = SettingsConfigDict(
        env_prefix="TUBELY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    jwt_secret: str = Field(default="change-me", description="Signing secret for bearer token validation.")
    aws_access_key_id: Optional[SecretStr] = None
    aws_secret_access_key: Optional[SecretStr] = None

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Secrets":
        return cls()


class Settings(BaseSettings):
    """Centralised runtime configuration for the Tubely API."""

    model_config = SettingsConfigDict(
        env_prefix="TUBELY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "Tubely API"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./tubely.db",
        description="SQLAlchemy compatible DSN.",
    )

    jwt_algorithm: str = Field(default="HS256", description="Algorithm used for JWT tokens.")
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None

    public_base_url: str = Field(
        default="http://localhost:8091",
        description="Externally visible base URL used for locally served objects and thumbnails.",
    )

    storage_backend: Literal["local", "s3"] = Field(default="local", description="Active object store implementation.")
    local_storage_base_path: Path = Field(
        default_factory=lambda: Path("objects"),
        description="Root directory for the local object store.",
    )
    s3_bucket: Optional[str] = None
    s3_region: str = Field(default="us-east-1")
    s3_endpoint_url: Optional[str] = Field(default=None, description="Override for S3-compatible endpoints.")
    s3_cf_distribution: Optional[str] = Field(
        default=None,
        description="CDN domain serving the bucket; used to build public video URLs when set.",
    )

    staging_root: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "tubely",
        description="Directory for request-scoped transient upload files.",
    )
    assets_root: Path = Field(default_factory=lambda: Path("assets"), description="Directory for thumbnail assets.")

    accepted_video_type: str = Field(default="video/mp4", description="The single media type accepted for uploads.")
    max_thumbnail_bytes: int = Field(default=10 * 1024 * 1024, description="Upper bound for thumbnail uploads.")

    ffprobe_path: str = Field(default="ffprobe")
    ffmpeg_path: str = Field(default="ffmpeg")
    media_tool_concurrency: int = Field(default=4, ge=1, description="Ceiling on concurrent ffprobe/ffmpeg processes.")
    media_tool_timeout_s: Optional[float] = Field(default=600.0, description="Per-invocation limit for media tools.")
    object_store_timeout_s: float = Field(default=300.0, gt=0, description="Limit for a single object store upload.")

    secrets: Secrets = Field(default_factory=Secrets, description="Holds sensitive configuration.")

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "TUBELY_ENV": "TUBELY_ENVIRONMENT",
        "TUBELY_DB_URL": "TUBELY_DATABASE_URL",
        "PLATFORM": "TUBELY_ENVIRONMENT",
        "JWT_SECRET": "TUBELY_JWT_SECRET",
        "S3_BUCKET": "TUBELY_S3_BUCKET",
        "S3_REGION": "TUBELY_S3_REGION",
        "S3_CF_DISTRO": "TUBELY_S3_CF_DISTRIBUTION",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value and not os.getenv(target):
            os.environ[target] = value

    settings = Settings()

    # In a real application, you would fetch secrets from a secure vault
    # instead of just loading them from the environment.
    secrets = Secrets.from_settings(settings)

    if settings.environment_lower == "production" and secrets.jwt_secret == "change-me":
        raise ValueError("Production environment must have a non-default JWT secret.")
    if settings.storage_backend == "s3" and not settings.s3_bucket:
        raise ValueError("The s3 storage backend requires TUBELY_S3_BUCKET.")

    settings.secrets = secrets
    return settings


__all__ = ["Settings", "Secrets", "get_settings"]
