from __future__ import annotations

from dataclasses import dataclass

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, get_settings
from .errors import AuthError


security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    scopes: tuple[str, ...] = ()


def _decode_token(token: str, settings: Settings) -> dict:
    try:
        payload = jwt.decode(
            token,
            settings.secrets.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"verify_aud": settings.jwt_audience is not None},
        )
    except jwt.PyJWTError as exc:
        raise AuthError("Couldn't validate JWT") from exc
    return payload


def _subject(payload: dict) -> str:
    subject = payload.get("sub") or payload.get("user_id")
    if not subject:
        raise AuthError("Token has no subject")
    return str(subject)


def validate_token(token: str, settings: Settings) -> str:
    """Validate a bearer token and return its subject."""
    return _subject(_decode_token(token, settings))


async def get_auth_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    settings: Settings = Depends(get_settings),
) -> AuthContext:
    if not credentials:
        raise AuthError("Couldn't find JWT")

    token = credentials.credentials
    user_id = validate_token(token, settings)
    # Signature and registered claims were checked by validate_token.
    claims = jwt.decode(token, options={"verify_signature": False})
    scopes = tuple(claims.get("scopes") or [])

    context = AuthContext(user_id=user_id, scopes=scopes)
    request.state.auth = context
    return context


__all__ = ["AuthContext", "get_auth_context", "validate_token"]
