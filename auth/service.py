"""
auth/service.py -- AuthService, the authentication state machine.

Per-attempt states:

  Unauthenticated --register/sign_in/resend_otp--> OTPPending --verify_otp--> Verified
  Unauthenticated --federated_verify----------------------------------------> Verified

Nothing about an attempt is held in memory between requests. OTPPending is
simply "the account row has a pending code"; Verified is "a token was minted".
Each call rebuilds the state from the account record.

Error policy:
  Domain failures are raised as AuthError subclasses (auth/errors.py) and
  mapped to HTTP responses by api/main.py. Unexpected store failures
  (SQLAlchemyError other than the uniqueness races the resolver handles) are
  logged here with full context and re-raised as Internal, whose message
  carries no internals.

Collaborators are injected. api/main.py builds one AuthService at startup;
tests build their own around an in-memory store and fakes.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date, datetime

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import Internal, NotFound
from auth.federation import IdentityVerifier
from auth.models import Account, AuthChallenge, AuthSession, utcnow
from auth.otp import OtpIssuer
from auth.passwords import hash_password
from auth.resolver import AccountResolver
from auth.store import AccountStore
from auth.tokens import SessionIssuer
from auth.validation import require_email, require_otp_format, validate_registration

logger = logging.getLogger("notekeeper.auth")


@contextmanager
def _store_failures(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Store failure during %s", operation)
        raise Internal() from exc


class AuthService:
    """Register, sign in, resend, verify OTP, Google verify, and token authentication."""

    def __init__(
        self,
        store: AccountStore,
        resolver: AccountResolver,
        otp: OtpIssuer,
        sessions: SessionIssuer,
        verifier: IdentityVerifier,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._otp = otp
        self._sessions = sessions
        self._verifier = verifier
        self._clock = clock

    # ------------------------------------------------------------------
    # Unauthenticated -> OTPPending
    # ------------------------------------------------------------------

    async def register(
        self,
        email: str,
        password: str,
        name: str | None,
        date_of_birth: str | date | None,
    ) -> AuthChallenge:
        """Create a password account and send its first OTP.

        Raises ValidationError (before any store access), AlreadyExists, or
        DeliveryFailed. On DeliveryFailed the account and its challenge remain;
        the client can call resend_otp.
        """
        clean_name, dob = validate_registration(email, password, name, date_of_birth, today=self._clock().date())
        # bcrypt is deliberately slow; keep it off the event loop.
        password_hash = await asyncio.to_thread(hash_password, password)
        with _store_failures("register"):
            account = self._resolver.register(email, password_hash, clean_name, dob)
            await self._otp.issue(account)
        return AuthChallenge(account.id, "User registered successfully. OTP sent to email.")

    async def sign_in(self, email: str) -> AuthChallenge:
        """Send an OTP to an existing account. Never creates one."""
        require_email(email)
        with _store_failures("sign_in"):
            account = self._resolver.find_for_sign_in(email)
            await self._otp.issue(account)
        return AuthChallenge(account.id, "OTP sent to email")

    async def resend_otp(self, email: str) -> AuthChallenge:
        """Replace the outstanding OTP. The previous code stops working."""
        require_email(email)
        with _store_failures("resend_otp"):
            account = self._resolver.find_for_sign_in(email)
            await self._otp.issue(account)
        return AuthChallenge(account.id, "OTP sent successfully")

    # ------------------------------------------------------------------
    # -> Verified
    # ------------------------------------------------------------------

    async def verify_otp(self, email: str, code: str) -> AuthSession:
        """Consume the OTP and mint a session token.

        Raises ValidationError, NotFound (no account or no pending code),
        InvalidCode, or Expired. The account stays in OTPPending on
        InvalidCode so the user can retry.
        """
        require_email(email)
        require_otp_format(code)
        with _store_failures("verify_otp"):
            account = self._resolver.find_for_sign_in(email)
            account = self._otp.verify(account, code)
        token = self._sessions.mint(account)
        logger.info("Account %s authenticated via OTP", account.id)
        return AuthSession(token, account)

    async def federated_verify(self, assertion: str) -> AuthSession:
        """Verify a Google ID token, resolve the account, and mint a session token.

        The OTP step is skipped: Google has already proven email ownership.
        Raises InvalidAssertion or Conflict.
        """
        identity = await self._verifier.verify(assertion)
        with _store_failures("federated_verify"):
            account = self._resolver.resolve_federated(identity)
        token = self._sessions.mint(account)
        logger.info("Account %s authenticated via Google", account.id)
        return AuthSession(token, account, "Google authentication successful")

    # ------------------------------------------------------------------
    # Authorizing later requests
    # ------------------------------------------------------------------

    def authenticate(self, token: str) -> Account:
        """Resolve a bearer token to its account.

        Raises a TokenInvalid subclass, TokenExpired, or NotFound when the
        account behind a valid token no longer exists.
        """
        account_id = self._sessions.verify(token)
        with _store_failures("authenticate"):
            account = self._store.get_by_id(account_id)
        if account is None:
            raise NotFound("Invalid token. User not found.")
        return account
