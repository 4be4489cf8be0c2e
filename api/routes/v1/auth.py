"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register         -- create password account, email first OTP
  POST /api/v1/auth/signin           -- email an OTP to an existing account
  POST /api/v1/auth/send-otp         -- resend; invalidates the previous code
  POST /api/v1/auth/verify-otp       -- consume OTP, return session token
  POST /api/v1/auth/google/verify    -- Google ID token (one-tap), return session token
  GET  /api/v1/auth/google           -- start the Google redirect flow
  GET  /api/v1/auth/google/callback  -- finish it; redirect to the client with a token
  GET  /api/v1/auth/me               -- current account (requires token)

Handlers stay thin: they call AuthService and shape the response. AuthError
subclasses raised by the service are turned into {success:false, message}
responses by the exception handler in api/main.py, so no handler needs its own
try/except except the browser redirect callback, which must answer with a
redirect rather than JSON.

Security:
  [M5] Cache-Control: no-store on every response that carries a token.
  Google redirect flow state/nonce (CSRF) is handled by authlib via the
  Starlette session.
"""

from __future__ import annotations

import json
import logging
from urllib.parse import urlencode

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from api.models import (
    AccountView,
    ChallengeResponse,
    EmailRequest,
    GoogleVerifyRequest,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    SessionResponse,
    VerifyOtpRequest,
)
from auth.dependencies import get_current_account
from auth.errors import AuthError, ValidationError
from auth.models import Account, AuthSession
from auth.service import AuthService

logger = logging.getLogger("notekeeper.api.auth")

# Auth policy:
# - everything under /auth is public except GET /auth/me (get_current_account)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _json(model: BaseModel, status_code: int = 200, no_store: bool = False) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=model.model_dump(by_alias=True, exclude_none=True))
    if no_store:
        resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _session_response(session: AuthSession) -> JSONResponse:
    return _json(
        SessionResponse(
            message=session.message,
            token=session.token,
            user=AccountView.from_account(session.account),
        ),
        no_store=True,
    )


# ---------------------------------------------------------------------------
# Email + OTP
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=ChallengeResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a password account and email its first OTP."""
    challenge = await _service(request).register(body.email, body.password, body.name, body.date_of_birth)
    return _json(ChallengeResponse(message=challenge.message, user_id=challenge.account_id), status_code=201)


@router.post("/auth/signin", response_model=ChallengeResponse)
async def sign_in(request: Request, body: EmailRequest) -> JSONResponse:
    """Email an OTP to an existing account. Unknown emails get 404; nothing is created."""
    challenge = await _service(request).sign_in(body.email)
    return _json(ChallengeResponse(message=challenge.message, user_id=challenge.account_id))


@router.post("/auth/send-otp", response_model=MessageResponse)
async def send_otp(request: Request, body: EmailRequest) -> JSONResponse:
    """Issue a fresh OTP. Any previously sent code stops working."""
    challenge = await _service(request).resend_otp(body.email)
    return _json(MessageResponse(message=challenge.message))


@router.post("/auth/verify-otp", response_model=SessionResponse)
async def verify_otp(request: Request, body: VerifyOtpRequest) -> JSONResponse:
    """Consume the OTP and return a 7-day session token."""
    session = await _service(request).verify_otp(body.email, body.otp)
    return _session_response(session)


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


@router.post("/auth/google/verify", response_model=SessionResponse)
async def google_verify(request: Request, body: GoogleVerifyRequest) -> JSONResponse:
    """Exchange a Google ID token for a session token. No OTP step."""
    if not body.id_token:
        raise ValidationError(
            [{"field": "credential", "message": "Google credential is required"}],
            message="Google credential is required",
        )
    session = await _service(request).federated_verify(body.id_token)
    return _session_response(session)


@router.get("/auth/google")
async def google_login(request: Request):
    """Redirect the browser to Google's consent page."""
    client = request.app.state.oauth.create_client("google")
    if client is None:
        raise HTTPException(
            status_code=404,
            detail={"success": False, "message": "Google sign-in is not configured"},
        )
    redirect_uri = str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/google/callback", name="google_callback")
async def google_callback(request: Request) -> RedirectResponse:
    """Finish the redirect flow and hand the token to the front-end.

    Flow:
      1. Exchange the authorization code (authlib checks state and nonce).
      2. Pass the returned ID token through AuthService.federated_verify --
         the same verification and account resolution as the one-tap route.
      3. Redirect to {client_url}/auth/callback?token=...&user=...
    Any failure redirects to {client_url}/auth?error=authentication_failed.
    """
    client_url = request.app.state.client_url.rstrip("/")
    failure = RedirectResponse(f"{client_url}/auth?error=authentication_failed", status_code=302)

    client = request.app.state.oauth.create_client("google")
    if client is None:
        return failure

    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("Google token exchange failed")
        return failure

    id_token = token.get("id_token")
    if not id_token:
        logger.warning("Google token response carried no id_token")
        return failure

    try:
        session = await _service(request).federated_verify(id_token)
    except AuthError as exc:
        logger.warning("Google redirect sign-in rejected: %s", exc.code)
        return failure

    user = AccountView.from_account(session.account).model_dump(by_alias=True)
    query = urlencode({"token": session.token, "user": json.dumps(user)})
    resp = RedirectResponse(f"{client_url}/auth/callback?{query}", status_code=302)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(current_account: Account = Depends(get_current_account)) -> JSONResponse:
    """Return the public view of the authenticated account."""
    return _json(MeResponse(user=AccountView.from_account(current_account)))
