"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. Dataclasses own the domain shape; the store, the OTP
issuer and the resolver do the work. Account is the one exception to "zero
logic": it normalizes its email and enforces the credential invariant at
construction, so an invalid record can never be built and then persisted.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone


def normalize_email(email: str) -> str:
    """Lowercase and trim an email address. The store only ever sees this form."""
    return email.strip().lower()


def new_account_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Account:
    """The durable identity record.

    password_hash is None for Google-only accounts. federated_id is None until
    the user signs in with Google at least once. At least one of the two must
    be present -- an account always has a credential path.

    pending_code holds the HMAC digest of the outstanding one-time passcode,
    never the code itself. pending_code and pending_code_expiry are set and
    cleared together by auth/otp.py.
    """

    email: str
    id: str = field(default_factory=new_account_id)
    display_name: str | None = None
    date_of_birth: date | None = None
    password_hash: str | None = None  # None = Google-only account
    federated_id: str | None = None  # Google "sub" claim
    email_verified: bool = False
    pending_code: str | None = None
    pending_code_expiry: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        self.email = normalize_email(self.email or "")
        if not self.email:
            raise ValueError("Account.email is required")
        if self.password_hash is None and self.federated_id is None:
            raise ValueError("Account needs a password hash or a federated id")

    @property
    def has_pending_code(self) -> bool:
        return self.pending_code is not None

    def clear_pending_code(self) -> None:
        self.pending_code = None
        self.pending_code_expiry = None

    def public_view(self) -> dict:
        """The only projection of an account that is returned to clients."""
        return {"id": self.id, "email": self.email, "emailVerified": self.email_verified}


@dataclass(frozen=True)
class FederatedIdentity:
    """A verified identity extracted from a Google ID token.

    Only auth/federation.py builds these, and only after the token signature,
    issuer, audience, expiry and email_verified claim have all been checked.
    """

    subject_id: str
    email: str
    name: str | None = None


@dataclass(frozen=True)
class AuthChallenge:
    """Result of register / sign-in / resend: an OTP is now outstanding."""

    account_id: str
    message: str


@dataclass(frozen=True)
class AuthSession:
    """Result of a completed authentication: a signed token plus the account."""

    token: str
    account: Account
    message: str = "Authentication successful"
