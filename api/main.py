"""
api/main.py -- FastAPI application entry point for Notekeeper auth.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for the browser client
  3. SessionMiddleware     -- authlib keeps OAuth state/nonce here between the
                              Google redirect and its callback

Lifespan builds every auth component exactly once, from Settings, and stores
them on app.state. Nothing in auth/ reads configuration or globals on its own;
this module is the composition root.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from api.models import FailureResponse, FieldError, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import (
    AlreadyExists,
    AuthError,
    Conflict,
    DeliveryFailed,
    Expired,
    Internal,
    InvalidAssertion,
    InvalidCode,
    NotFound,
    TokenExpired,
    TokenInvalid,
    ValidationError,
)
from auth.federation import GoogleIdentityVerifier
from auth.mailer import ConsoleMailer, Mailer, SmtpMailer
from auth.oauth import build_oauth
from auth.otp import OtpIssuer
from auth.resolver import AccountResolver
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import SessionIssuer
from core.config import Settings, get_settings

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("notekeeper.api")

# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


def build_mailer(settings: Settings) -> Mailer:
    """SMTP when a relay is configured, otherwise (DEBUG only, see Settings) log codes to the console."""
    if settings.smtp_host:
        return SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout=settings.email_timeout_seconds,
            from_email=settings.email_from,
            code_ttl_minutes=settings.otp_expire_seconds // 60,
        )
    logger.warning("SMTP_HOST not set -- OTP codes will be written to the log")
    return ConsoleMailer()


def build_auth_service(settings: Settings, store: AccountStore, mailer: Mailer | None = None) -> AuthService:
    """Wire the auth components together. Called once per process from lifespan."""
    otp = OtpIssuer(
        store,
        mailer or build_mailer(settings),
        secret_key=settings.secret_key,
        ttl_seconds=settings.otp_expire_seconds,
    )
    verifier = GoogleIdentityVerifier(
        client_id=settings.google_client_id,
        jwks_url=settings.google_jwks_url,
        timeout=settings.federation_timeout_seconds,
        cache_seconds=settings.google_jwks_cache_seconds,
    )
    sessions = SessionIssuer(settings.secret_key, ttl_seconds=settings.token_expire_seconds)
    return AuthService(store, AccountResolver(store), otp, sessions, verifier)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the account store and auth service on startup; dispose the store on shutdown."""
    settings = get_settings()
    logger.info("Notekeeper auth API starting up")
    app.state.account_store = AccountStore(settings.database_url)
    app.state.auth_service = build_auth_service(settings, app.state.account_store)
    app.state.oauth = build_oauth(
        settings.google_client_id,
        settings.google_client_secret,
        timeout=settings.federation_timeout_seconds,
    )
    app.state.client_url = settings.client_url
    logger.info("Auth initialized (google=%s)", settings.google_enabled)

    yield

    app.state.account_store.close()
    logger.info("Notekeeper auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="Notekeeper Auth API",
    description="Email + OTP and Google sign-in with JWT sessions.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-Access-Token", "Token"],
    max_age=3600,
)

# SessionMiddleware is required by authlib to store the OAuth state value
# between the authorization redirect and the callback.
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key, https_only=not _settings.debug)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])

# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves as the same envelope: {success: false, message, errors?}.
# ---------------------------------------------------------------------------

# First match wins; subclasses inherit their parent's status.
_STATUS_BY_ERROR: tuple[tuple[type[AuthError], int], ...] = (
    (ValidationError, 400),
    (InvalidCode, 400),
    (Expired, 400),
    (NotFound, 404),
    (AlreadyExists, 409),
    (Conflict, 409),
    (InvalidAssertion, 401),
    (TokenInvalid, 401),
    (TokenExpired, 401),
    (DeliveryFailed, 502),
    (Internal, 500),
)


def status_for(exc: AuthError) -> int:
    for error_cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status
    return 400


def _failure(status_code: int, message: str, errors: list[FieldError] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=FailureResponse(message=message, errors=errors).model_dump(by_alias=True, exclude_none=True),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map a domain failure to its status class. Internal details were already logged by the service."""
    status = status_for(exc)
    errors = None
    if isinstance(exc, ValidationError):
        errors = [FieldError(**e) for e in exc.field_errors]
    if status >= 500:
        logger.error("%s on %s %s", exc.code, request.method, request.url.path)
    return _failure(status, exc.message, errors)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with field-level errors when the request body fails schema validation."""
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        errors.append(FieldError(field=".".join(loc) or "body", message=err.get("msg", "Invalid value")))
    return _failure(400, "Validation errors", errors)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Pass through structured details from dependencies; wrap plain ones in the envelope."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
    return _failure(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _failure(500, "Internal server error")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=__version__)
