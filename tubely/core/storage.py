from __future__ import annotations

import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, BinaryIO

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .errors import StorageError
from .logging import get_logger


class ObjectStore(ABC):
    """Write-only sink for processed media plus the URL scheme it is served under."""

    @abstractmethod
    def put_object(self, key: str, body: BinaryIO, *, content_type: str) -> None: ...

    @abstractmethod
    def public_url(self, key: str) -> str: ...


class LocalObjectStore(ObjectStore):
    """Filesystem-backed object store suitable for development."""

    def __init__(self, base_path: Path, public_base_url: str):
        self.base_path = base_path
        self.public_base_url = public_base_url.rstrip("/")
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.logger = get_logger(component="local_object_store")

    def _resolve(self, key: str) -> Path:
        target = (self.base_path / key).resolve()
        if not target.is_relative_to(self.base_path.resolve()):
            raise StorageError(f"Key escapes the storage root: {key}")
        return target

    def put_object(self, key: str, body: BinaryIO, *, content_type: str) -> None:
        target = self._resolve(key)
        partial: Path | None = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=target.parent, prefix=f".{target.name}.", suffix=".partial", delete=False
            ) as handle:
                partial = Path(handle.name)
                shutil.copyfileobj(body, handle)
            # Readers only ever see a complete object under the key.
            os.replace(partial, target)
        except (OSError, ValueError) as exc:
            # ValueError: the body was closed while it was being copied.
            if partial is not None:
                partial.unlink(missing_ok=True)
            raise StorageError(f"Unable to write object {key}") from exc
        self.logger.info("object_stored", key=key, content_type=content_type, path=str(target))

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/objects/{key}"


class S3ObjectStore(ObjectStore):
    def __init__(
        self,
        bucket: str,
        *,
        region: str,
        distribution: str | None = None,
        client: Any | None = None,
        endpoint_url: str | None = None,
        aws_access_key_id: str | None = None,
        aws_secret_access_key: str | None = None,
        timeout_s: float = 300.0,
        max_attempts: int = 3,
    ):
        self.bucket = bucket
        self.region = region
        self.distribution = distribution
        self.client = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key,
            config=Config(
                connect_timeout=min(timeout_s, 60.0),
                read_timeout=timeout_s,
                retries={"max_attempts": max_attempts, "mode": "standard"},
            ),
        )
        self.logger = get_logger(component="s3_object_store", bucket=bucket)

    def put_object(self, key: str, body: BinaryIO, *, content_type: str) -> None:
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType=content_type)
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code")
            self.logger.error("s3_put_object_failed", key=key, code=error_code)
            raise StorageError(f"Object store rejected {key}: {error_code}") from exc
        except BotoCoreError as exc:
            self.logger.error("s3_put_object_failed", key=key, error=repr(exc))
            raise StorageError(f"Unable to reach the object store for {key}") from exc
        except ValueError as exc:
            # The body was closed underneath the request.
            self.logger.error("s3_put_object_failed", key=key, error=repr(exc))
            raise StorageError(f"Upload body for {key} is no longer readable") from exc
        self.logger.info("object_stored", key=key, content_type=content_type)

    def public_url(self, key: str) -> str:
        if self.distribution:
            return f"https://{self.distribution}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"


def get_object_store(settings: Settings) -> ObjectStore:
    if settings.storage_backend == "local":
        return LocalObjectStore(base_path=Path(settings.local_storage_base_path), public_base_url=settings.public_base_url)
    if settings.storage_backend == "s3":
        if not settings.s3_bucket:
            raise ValueError("s3 storage backend requires a bucket")
        secrets = settings.secrets
        return S3ObjectStore(
            settings.s3_bucket,
            region=settings.s3_region,
            distribution=settings.s3_cf_distribution,
            endpoint_url=settings.s3_endpoint_url,
            timeout_s=settings.object_store_timeout_s,
            aws_access_key_id=secrets.aws_access_key_id.get_secret_value() if secrets.aws_access_key_id else None,
            aws_secret_access_key=(
                secrets.aws_secret_access_key.get_secret_value() if secrets.aws_secret_access_key else None
            ),
        )
    raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")


__all__ = [
    "ObjectStore",
    "LocalObjectStore",
    "S3ObjectStore",
    "get_object_store",
]
