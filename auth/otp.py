"""
auth/otp.py -- One-time passcode issuance and verification.

Security design decisions:
  Codes: 6 decimal digits from secrets.randbelow(10**6), zero-padded, so every
       value 000000-999999 is equally likely and leading zeros are kept.

  Storage: the account row holds HMAC-SHA256(secret_key, code), never the code.
       A leaked database row does not reveal a live passcode. The comparison is
       hmac.compare_digest over the two digests, which keeps the exact
       digit-for-digit string equality semantics ("012345" != "12345").

  Expiry: 10 minutes by default. A code is accepted only while its expiry is
       strictly in the future. An expired challenge is cleared when it is
       rejected.

  Single use: success clears both pending fields, but only while the stored
       digest is still the one that was checked. A code replaced by a resend
       after the account was read is rejected instead of wiping the new one.

  Resend: issue() overwrites the outstanding digest and expiry, so the
       previous code stops working (last write wins). It writes those two
       columns and nothing else.

  Delivery: the challenge is persisted BEFORE the mailer is called. If the
       mailer fails, DeliveryFailed propagates and the persisted challenge is
       kept -- the user can ask for a resend.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from auth.errors import Expired, InvalidCode, NotFound
from auth.mailer import OTP_SUBJECT, Mailer
from auth.models import Account, utcnow
from auth.store import AccountStore

logger = logging.getLogger("notekeeper.auth.otp")

CODE_LENGTH = 6
DEFAULT_TTL_SECONDS = 10 * 60


def generate_code(length: int = CODE_LENGTH) -> str:
    """Return a uniformly random fixed-width numeric code."""
    return f"{secrets.randbelow(10**length):0{length}d}"


class OtpIssuer:
    """Issues and verifies the passcode challenge stored on an Account."""

    def __init__(
        self,
        store: AccountStore,
        mailer: Mailer,
        secret_key: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._mailer = mailer
        self._secret = secret_key.encode("utf-8")
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def digest(self, code: str) -> str:
        """HMAC-SHA256(secret_key, code) as hex. This is what the store keeps."""
        return hmac.new(self._secret, code.encode("utf-8"), hashlib.sha256).hexdigest()

    async def issue(self, account: Account) -> str:
        """Generate a code, persist its digest and expiry, then deliver it.

        Returns the plaintext code. Raises NotFound if the account row is gone
        and DeliveryFailed if the mailer fails; the persisted challenge is left
        in place.
        """
        code = generate_code()
        digest = self.digest(code)
        expiry = self._clock() + self._ttl
        if not self._store.set_pending_code(account.id, digest, expiry):
            raise NotFound()
        account.pending_code = digest
        account.pending_code_expiry = expiry
        logger.info("OTP issued for account %s (expires %s)", account.id, expiry.isoformat())
        await self._mailer.send(account.email, OTP_SUBJECT, code)
        return code

    def verify(self, account: Account, submitted_code: str) -> Account:
        """Consume the outstanding challenge.

        Raises:
            NotFound:    no code is pending on the account.
            InvalidCode: the submitted code does not match, or a resend replaced
                         it after the account was read; the challenge stays.
            Expired:     the code matched but its expiry is not in the future;
                         the stale challenge is cleared.
        """
        if not account.has_pending_code:
            raise NotFound("No OTP is pending for this account")

        digest = self.digest(submitted_code)
        if not hmac.compare_digest(account.pending_code, digest):
            logger.info("OTP mismatch for account %s", account.id)
            raise InvalidCode()

        expiry = account.pending_code_expiry
        if expiry is None or expiry <= self._clock():
            self._store.consume_pending_code(account.id, digest)
            account.clear_pending_code()
            logger.info("Expired OTP rejected for account %s", account.id)
            raise Expired()

        if not self._store.consume_pending_code(account.id, digest, mark_verified=True):
            logger.info("OTP for account %s was replaced or already used", account.id)
            raise InvalidCode()
        account.email_verified = True
        account.clear_pending_code()
        logger.info("OTP verified for account %s", account.id)
        return account
