from __future__ import annotations

import base64
import secrets

from .probe import Classification

__all__ = ["KEY_PREFIX", "KEY_EXTENSION", "TOKEN_BYTES", "generate_key"]

KEY_PREFIX = "videos"
KEY_EXTENSION = ".mp4"
TOKEN_BYTES = 32


def generate_key(
    classification: Classification,
    *,
    prefix: str = KEY_PREFIX,
    extension: str = KEY_EXTENSION,
) -> str:
    """Return a fresh storage key such as ``videos/landscape/<token>.mp4``.

    The token is 256 random bits in unpadded URL-safe base64 (43 characters).
    Keys are not checked against existing objects; uniqueness rests on the
    size of the random space.

    Args:
        classification: Geometry label selecting the partition.
        prefix: Collection prefix.
        extension: File extension, including the dot.

    Returns:
        The storage key.
    """
    token = base64.urlsafe_b64encode(secrets.token_bytes(TOKEN_BYTES)).rstrip(b"=").decode("ascii")
    return f"{prefix}/{classification.partition}{token}{extension}"
