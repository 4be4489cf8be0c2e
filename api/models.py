"""
API request and response models for the Notekeeper auth endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire format is camelCase (dateOfBirth, userId, emailVerified) because the
browser client speaks JavaScript; Python attributes stay snake_case through
an alias generator. Always serialize with model_dump(by_alias=True).

Request models only bound sizes. Semantic rules (email syntax, password
length, minimum age, OTP width) live in auth/validation.py so every entry
point -- HTTP or not -- gets the same checks.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import Account


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_WireModel):
    """Request body for POST /api/v1/auth/register."""

    email: str = Field(max_length=320)
    # max_length keeps inputs well below bcrypt's 72-byte truncation threshold
    # for any realistic password while rejecting multi-KB payloads.
    password: str = Field(max_length=255)
    name: Optional[str] = Field(default=None, max_length=100)
    date_of_birth: Optional[str] = Field(default=None, max_length=40)


class EmailRequest(_WireModel):
    """Request body for POST /auth/signin and POST /auth/send-otp."""

    email: str = Field(max_length=320)


class VerifyOtpRequest(_WireModel):
    """Request body for POST /api/v1/auth/verify-otp."""

    email: str = Field(max_length=320)
    otp: str = Field(max_length=32)


class GoogleVerifyRequest(_WireModel):
    """Request body for POST /api/v1/auth/google/verify.

    Google Identity Services posts the ID token as "credential"; "assertion"
    is accepted as a synonym.
    """

    credential: Optional[str] = Field(default=None, max_length=8192)
    assertion: Optional[str] = Field(default=None, max_length=8192)

    @property
    def id_token(self) -> Optional[str]:
        return self.credential or self.assertion


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountView(_WireModel):
    """Public projection of an account. Never includes hashes or pending codes."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    email_verified: bool

    @classmethod
    def from_account(cls, account: Account) -> "AccountView":
        return cls(id=account.id, email=account.email, email_verified=account.email_verified)


class MessageResponse(_WireModel):
    success: bool = True
    message: str


class ChallengeResponse(_WireModel):
    """An OTP was issued. Returned by register and sign-in."""

    success: bool = True
    message: str
    user_id: str


class SessionResponse(_WireModel):
    """Authentication completed. Returned by verify-otp and google/verify."""

    success: bool = True
    message: str
    token: str
    user: AccountView


class MeResponse(_WireModel):
    success: bool = True
    user: AccountView


class FieldError(BaseModel):
    field: str
    message: str


class FailureResponse(_WireModel):
    """Envelope for every 4xx/5xx response from the auth endpoints."""

    success: bool = False
    message: str
    errors: Optional[list[FieldError]] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
