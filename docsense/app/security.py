from __future__ import annotations

"""Authentication and owner resolution helpers."""

from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from docsense.app.settings import settings


@dataclass(frozen=True)
class AuthContext:
    """Resolved authentication context for the current request."""
    api_key: str | None
    user_id: str


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def require_api_key(request: Request) -> AuthContext:
    """Validate API key or allow anonymous access if configured."""
    api_key = _extract_api_key(request)
    key_map = settings.api_key_map
    allowed = settings.api_keys
    if not (key_map or allowed):
        if settings.allow_anonymous:
            return AuthContext(api_key=None, user_id=_header_user_id(request))
        raise _unauthorized("API key required")
    if api_key is None:
        raise _unauthorized("Invalid or missing API key")
    if key_map:
        user_id = key_map.get(api_key)
        if not user_id:
            raise _unauthorized("Invalid or missing API key")
        return AuthContext(api_key=api_key, user_id=user_id)
    if api_key not in allowed:
        raise _unauthorized("Invalid or missing API key")
    return AuthContext(api_key=api_key, user_id=_header_user_id(request))


def _header_user_id(request: Request) -> str:
    header = request.headers.get("x-user-id")
    if header and header.strip():
        return header.strip()
    return settings.default_user_id


def _extract_api_key(request: Request) -> str | None:
    """Extract API key from headers."""
    header_key = request.headers.get("x-api-key")
    if header_key:
        return header_key.strip()
    auth = request.headers.get("authorization")
    if not auth:
        return None
    parts = auth.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1].strip()
    return None
