"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Token sources are checked in priority order:
  1. Authorization: Bearer <token>  -- the normal path.
     A bare token in Authorization (no "Bearer " prefix) is accepted too;
     older clients sent it that way.
  2. x-access-token header.
  3. token header.

get_current_account() raises HTTP 401 with the {success, message} envelope and
a message that matches the precise failure (expired vs invalid).

Layer rule: auth/dependencies.py may import from fastapi because it is part of
the FastAPI dependency injection system. No imports from api/ or core/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import AuthError, Internal
from auth.models import Account
from auth.service import AuthService

_FALLBACK_HEADERS = ("x-access-token", "token")


def extract_token(request: Request) -> str | None:
    """Return the raw token from the first header that carries one."""
    auth_header = request.headers.get("Authorization", "").strip()
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
    else:
        token = auth_header
    if token:
        return token
    for name in _FALLBACK_HEADERS:
        value = request.headers.get(name, "").strip()
        if value:
            return value
    return None


def get_current_account(request: Request) -> Account:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    token = extract_token(request)
    if not token:
        raise HTTPException(
            status_code=401,
            detail={"success": False, "message": "Access denied. No token provided."},
        )
    service: AuthService = request.app.state.auth_service
    try:
        return service.authenticate(token)
    except Internal:
        # Store outage, not a credential problem -- let the 500 handler answer.
        raise
    except AuthError as exc:
        raise HTTPException(status_code=401, detail={"success": False, "message": exc.message}) from exc
