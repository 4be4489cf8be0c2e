"""
auth/tokens.py -- Session token minting and verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       userId, email, iat and exp. The validity window is 7 days by default.
       No server-side session table -- a correctly signed, unexpired token is
       the whole proof of identity.

  Verification raises a precise error kind instead of returning None so the
       caller can tell a malformed token from a forged one from an expired one:
         TokenMalformed        -- not a decodable JWS/JWT at all
         TokenSignatureInvalid -- decodes, but the signature does not verify
         TokenExpired          -- signature fine, exp is in the past
         TokenMissingSubject   -- neither "id" nor "userId" claim present
       The first three are checked in that order: a tampered token that is
       also expired reports the signature failure.

  Claim names: older tokens carried the account id as "id", current ones as
       "userId". Both resolve to the same identifier; when a token carries
       both, "id" is read first.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import TokenExpired, TokenInvalid, TokenMalformed, TokenMissingSubject, TokenSignatureInvalid
from auth.models import Account, utcnow

logger = logging.getLogger("notekeeper.auth")

_ALGORITHM = "HS256"

DEFAULT_TTL_SECONDS = 7 * 24 * 60 * 60

# Claim names that may carry the account id, in lookup order.
_SUBJECT_CLAIMS = ("id", "userId")


class SessionIssuer:
    """Mints and verifies bearer tokens for authenticated accounts."""

    def __init__(
        self,
        secret_key: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._secret_key = secret_key
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def mint(self, account: Account) -> str:
        """Encode a signed JWT for the account, valid for the configured window."""
        issued_at = self._clock()
        payload = {
            "userId": account.id,
            "email": account.email,
            "iat": issued_at,
            "exp": issued_at + self._ttl,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str) -> str:
        """Verify a token and return the account id it was issued for."""
        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed() from exc

        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTClaimsError as exc:
            # e.g. a non-numeric exp/iat -- signed by us would never look like this
            raise TokenInvalid() from exc
        except JWTError as exc:
            logger.info("Rejected token with bad signature")
            raise TokenSignatureInvalid() from exc

        for claim in _SUBJECT_CLAIMS:
            value = payload.get(claim)
            if value:
                return str(value)
        raise TokenMissingSubject()
