"""
auth/oauth.py -- Authlib registry for the browser redirect sign-in flow.

The redirect flow (GET /auth/google -> Google consent -> GET
/auth/google/callback) is a browser handshake with Google's authorization
server. Authlib's Starlette client owns every hop of it: the state parameter
(CSRF protection, stored in the Starlette session), the code exchange, and the
nonce check on the returned ID token.

The core never sees any of that. The callback hands the ID token from the
token response to AuthService.federated_verify(), exactly like the one-tap
POST /auth/google/verify route does, so both entry points go through the same
GoogleIdentityVerifier checks.

build_oauth() is called once from the api/main.py lifespan; the registry is
stored on app.state.oauth. No module-level registration.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

logger = logging.getLogger("notekeeper.auth.oauth")

GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"


def build_oauth(client_id: str, client_secret: str, timeout: float = 10.0) -> OAuth:
    """Return an OAuth registry with Google registered when both credentials are set."""
    oauth = OAuth()
    if client_id and client_secret:
        oauth.register(
            name="google",
            client_id=client_id,
            client_secret=client_secret,
            server_metadata_url=GOOGLE_DISCOVERY_URL,
            client_kwargs={"scope": "openid email profile", "timeout": timeout},
        )
        logger.info("Google OAuth redirect flow registered")
    else:
        logger.info("Google OAuth redirect flow disabled (GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET not set)")
    return oauth
