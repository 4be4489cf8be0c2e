"""
auth/federation.py -- Google ID token verification.

This is the trust boundary for federated sign-in. Nothing downstream looks at
a subject id or email that did not come out of GoogleIdentityVerifier.verify().

Checks, in order (all must pass):
  1. RS256 signature against Google's published JWKS (kid lookup).
  2. iss is accounts.google.com or https://accounts.google.com.
  3. aud equals our configured Google client id.
  4. exp is in the future; sub is present.
  5. [H1] email is present AND email_verified is true. An unverified address
     could belong to someone else, and linking would hand them the account.

JWKS handling:
  Fetched with requests, bounded by a timeout, and cached in-process for
  cache_seconds. When a token names a kid the cached set does not contain
  (Google rotated its keys), the set is refetched once before giving up.
  Network failures surface as InvalidAssertion, never as a hung request.

  The blocking fetch runs in a worker thread via asyncio.to_thread so the
  event loop keeps serving other requests meanwhile.

IdentityVerifier is the port AuthService depends on. Tests substitute a fake,
or feed GoogleIdentityVerifier a static key set through fetch_jwks.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from typing import Protocol

import requests
from authlib.jose import JsonWebKey, JsonWebToken, KeySet
from authlib.jose.errors import JoseError

from auth.errors import InvalidAssertion
from auth.models import FederatedIdentity, normalize_email

logger = logging.getLogger("notekeeper.auth.federation")

GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")

# Google signs ID tokens with RS256 only. Refusing everything else closes the
# HS256-with-public-key confusion attack.
_jwt = JsonWebToken(["RS256"])


class IdentityVerifier(Protocol):
    """Federated identity capability. Raises InvalidAssertion on any failure."""

    async def verify(self, assertion: str) -> FederatedIdentity: ...


class GoogleIdentityVerifier:
    """Validates Google ID tokens (the "credential" from Google Identity Services)."""

    def __init__(
        self,
        client_id: str,
        jwks_url: str = GOOGLE_JWKS_URL,
        timeout: float = 10.0,
        cache_seconds: int = 3600,
        leeway: int = 0,
        fetch_jwks: Callable[[], dict] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client_id = client_id
        self._jwks_url = jwks_url
        self._timeout = timeout
        self._cache_seconds = cache_seconds
        self._leeway = leeway
        self._fetch_jwks = fetch_jwks or self._fetch_jwks_over_http
        self._clock = clock
        self._lock = threading.Lock()
        self._key_set: KeySet | None = None
        self._fetched_at = 0.0
        self._claims_options = {
            "iss": {"essential": True, "values": list(GOOGLE_ISSUERS)},
            "aud": {"essential": True, "value": client_id},
            "sub": {"essential": True},
            "exp": {"essential": True},
        }

    async def verify(self, assertion: str) -> FederatedIdentity:
        if not self._client_id:
            raise InvalidAssertion("Google sign-in is not configured")
        if not assertion:
            raise InvalidAssertion("Google credential is required")

        key_set = await asyncio.to_thread(self._get_key_set, False)
        try:
            claims = self._decode(assertion, key_set)
        except ValueError:
            # Unknown kid -- Google may have rotated keys since our last fetch.
            key_set = await asyncio.to_thread(self._get_key_set, True)
            try:
                claims = self._decode(assertion, key_set)
            except ValueError as exc:
                logger.warning("Google ID token signed with an unknown key")
                raise InvalidAssertion() from exc
        return _identity_from_claims(claims)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _decode(self, assertion: str, key_set: KeySet):
        """Decode and validate claims. ValueError (unknown kid) is left to the caller."""
        try:
            claims = _jwt.decode(assertion, key_set, claims_options=self._claims_options)
            claims.validate(now=int(self._clock()), leeway=self._leeway)
        except JoseError as exc:
            logger.warning("Google ID token rejected: %s", exc.error)
            raise InvalidAssertion() from exc
        return claims

    def _get_key_set(self, force_refresh: bool) -> KeySet:
        with self._lock:
            stale = self._clock() - self._fetched_at >= self._cache_seconds
            if self._key_set is None or stale or force_refresh:
                try:
                    self._key_set = JsonWebKey.import_key_set(self._fetch_jwks())
                except ValueError as exc:
                    raise InvalidAssertion("Could not verify Google token") from exc
                self._fetched_at = self._clock()
            return self._key_set

    def _fetch_jwks_over_http(self) -> dict:
        try:
            resp = requests.get(self._jwks_url, timeout=self._timeout)
            resp.raise_for_status()
            return resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Google JWKS fetch failed: %s", exc)
            raise InvalidAssertion("Could not verify Google token") from exc


def _identity_from_claims(claims) -> FederatedIdentity:
    """[H1] Only a verified email is accepted. Google sends a bool; older tokens sent "true"."""
    email = claims.get("email")
    verified = claims.get("email_verified") in (True, "true")
    if not email or not verified:
        logger.warning("Google ID token rejected: email missing or not verified")
        raise InvalidAssertion("Google account email is not verified")
    return FederatedIdentity(subject_id=str(claims["sub"]), email=normalize_email(email), name=claims.get("name"))
