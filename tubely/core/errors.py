"""Error taxonomy shared by the upload pipeline and the HTTP layer.

Every failure a request can end with is a :class:`TubelyError`. The HTTP
layer renders them as ``{"error": <kind>, "message": <text>}`` using the
class-level ``status_code`` and ``error`` attributes; the original exception
is kept as ``__cause__`` for logging.
"""

from __future__ import annotations

import enum


class TubelyError(Exception):
    status_code: int = 500
    error: str = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "message": self.message}


class ValidationError(TubelyError):
    """Bad identifier, wrong content-type or malformed multipart body."""

    status_code = 400
    error = "validation_error"


class AuthError(TubelyError):
    """Missing or invalid credential, or the caller does not own the record."""

    status_code = 401
    error = "unauthorized"


class NotFoundError(TubelyError):
    status_code = 404
    error = "not_found"


class ToolError(TubelyError):
    """An external media tool failed or produced output we cannot use.

    Tool failures are assumed deterministic for a given input and are never
    retried.
    """

    status_code = 400
    error = "tool_error"


class InspectionFailure(str, enum.Enum):
    no_streams = "no_streams"
    malformed_output = "malformed_output"
    tool_failure = "tool_failure"


class InspectionError(ToolError):
    error = "inspection_failed"

    def __init__(self, reason: InspectionFailure, message: str) -> None:
        super().__init__(f"{message} ({reason.value})")
        self.reason = reason


class RewriteError(ToolError):
    error = "rewrite_failed"


class StorageError(TubelyError):
    """The object store rejected the write, the network failed or the upload timed out."""

    status_code = 502
    error = "storage_error"


class StagingError(TubelyError):
    """Local transient storage could not be written or reopened."""

    status_code = 500
    error = "staging_error"


class MetadataUpdateError(TubelyError):
    """Persisting the video record failed.

    When raised after a successful object upload the stored object is left in
    place, unreferenced.
    """

    status_code = 500
    error = "metadata_update_failed"


__all__ = [
    "TubelyError",
    "ValidationError",
    "AuthError",
    "NotFoundError",
    "ToolError",
    "InspectionFailure",
    "InspectionError",
    "RewriteError",
    "StorageError",
    "StagingError",
    "MetadataUpdateError",
]
