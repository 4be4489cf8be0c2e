"""
auth/errors.py -- Error taxonomy for the authentication core.

Every failure the core can report is an AuthError subclass with a stable
machine-readable ``code``. The HTTP layer maps classes to status codes in one
place (api/main.py); the core never imports FastAPI to raise HTTP errors.

Callers branch on the class, never on the message. Messages are safe to show
to end users and never include secrets, stack traces, or store internals.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all expected authentication failures."""

    code: str = "auth_error"
    message: str = "Authentication failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed input. Raised before the store is touched.

    field_errors is a list of {"field", "message"} dicts, one per problem.
    """

    code = "validation_error"
    message = "Validation errors"

    def __init__(self, field_errors: list[dict[str, str]], message: str | None = None) -> None:
        super().__init__(message)
        self.field_errors = field_errors


class NotFound(AuthError):
    code = "not_found"
    message = "User not found"


class AlreadyExists(AuthError):
    code = "already_exists"
    message = "User already exists with this email"


class Conflict(AuthError):
    """A concurrent write won a uniqueness race that a retry could not resolve."""

    code = "conflict"
    message = "Account is being modified by another request. Please retry."


class InvalidCode(AuthError):
    code = "invalid_code"
    message = "Invalid OTP"


class Expired(AuthError):
    code = "expired"
    message = "OTP has expired"


class InvalidAssertion(AuthError):
    code = "invalid_assertion"
    message = "Invalid Google token"


class DeliveryFailed(AuthError):
    code = "delivery_failed"
    message = "Failed to send OTP email"


class TokenInvalid(AuthError):
    code = "token_invalid"
    message = "Invalid token."


class TokenMalformed(TokenInvalid):
    code = "token_malformed"


class TokenSignatureInvalid(TokenInvalid):
    code = "token_signature_invalid"


class TokenMissingSubject(TokenInvalid):
    code = "token_missing_subject"
    message = "Invalid token payload."


class TokenExpired(AuthError):
    code = "token_expired"
    message = "Token expired."


class Internal(AuthError):
    """Unexpected store or infrastructure failure. Details go to the log only."""

    code = "internal_error"
    message = "Internal server error"
