"""Unit tests for auth/federation.py -- GoogleIdentityVerifier.

Tokens are real RS256 JWTs signed with a throwaway key; the verifier gets the
matching public key set through fetch_jwks, so no network is involved except
in the tests that monkeypatch requests.get.
"""

import asyncio
import time

import pytest
import requests
from authlib.jose import JsonWebKey, jwt

from auth.errors import InvalidAssertion
from auth.federation import GoogleIdentityVerifier

CLIENT_ID = "notekeeper-test.apps.googleusercontent.com"


def _keypair(kid: str) -> tuple[dict, dict]:
    key = JsonWebKey.generate_key("RSA", 2048, is_private=True)
    private = dict(key.as_dict(is_private=True), kid=kid)
    public = dict(key.as_dict(is_private=False), kid=kid)
    return private, public


@pytest.fixture(scope="module")
def keys() -> tuple[dict, dict]:
    return _keypair("google-key-1")


def _claims(**overrides) -> dict:
    now = int(time.time())
    claims = {
        "iss": "https://accounts.google.com",
        "aud": CLIENT_ID,
        "sub": "110248495921238986420",
        "email": "Alice@Example.com",
        "email_verified": True,
        "name": "Alice Example",
        "iat": now,
        "exp": now + 3600,
    }
    claims.update(overrides)
    return {k: v for k, v in claims.items() if v is not None}


def _sign(private: dict, claims: dict) -> str:
    return jwt.encode({"alg": "RS256", "kid": private["kid"]}, claims, private).decode("ascii")


def _verifier(public: dict, **kwargs) -> GoogleIdentityVerifier:
    return GoogleIdentityVerifier(CLIENT_ID, fetch_jwks=lambda: {"keys": [public]}, **kwargs)


def _verify(verifier: GoogleIdentityVerifier, token: str):
    return asyncio.run(verifier.verify(token))


def test_valid_token_yields_identity(keys) -> None:
    private, public = keys
    identity = _verify(_verifier(public), _sign(private, _claims()))

    assert identity.subject_id == "110248495921238986420"
    assert identity.email == "alice@example.com"
    assert identity.name == "Alice Example"


def test_bare_issuer_is_accepted(keys) -> None:
    private, public = keys
    identity = _verify(_verifier(public), _sign(private, _claims(iss="accounts.google.com")))
    assert identity.subject_id == "110248495921238986420"


def test_legacy_string_email_verified(keys) -> None:
    private, public = keys
    identity = _verify(_verifier(public), _sign(private, _claims(email_verified="true")))
    assert identity.email == "alice@example.com"


@pytest.mark.parametrize(
    "overrides",
    [
        {"aud": "someone-else.apps.googleusercontent.com"},
        {"iss": "https://evil.example.com"},
        {"exp": int(time.time()) - 60},
        {"sub": None},
        {"email_verified": False},
        {"email_verified": None},
        {"email": None},
    ],
    ids=["wrong-aud", "wrong-iss", "expired", "no-sub", "unverified", "no-verified-claim", "no-email"],
)
def test_rejected_claims(keys, overrides) -> None:
    private, public = keys
    with pytest.raises(InvalidAssertion):
        _verify(_verifier(public), _sign(private, _claims(**overrides)))


def test_token_signed_by_another_key_is_rejected(keys) -> None:
    _private, public = keys
    forger_private, _ = _keypair("google-key-1")  # same kid, different key
    with pytest.raises(InvalidAssertion):
        _verify(_verifier(public), _sign(forger_private, _claims()))


def test_garbage_assertion_is_rejected(keys) -> None:
    _private, public = keys
    with pytest.raises(InvalidAssertion):
        _verify(_verifier(public), "definitely.not.a-jwt")


def test_empty_assertion_is_rejected(keys) -> None:
    _private, public = keys
    with pytest.raises(InvalidAssertion):
        _verify(_verifier(public), "")


def test_unconfigured_client_id_rejects_everything(keys) -> None:
    private, public = keys
    verifier = GoogleIdentityVerifier("", fetch_jwks=lambda: {"keys": [public]})
    with pytest.raises(InvalidAssertion):
        _verify(verifier, _sign(private, _claims()))


def test_unknown_kid_triggers_one_refresh(keys) -> None:
    private, public = keys
    _, stale_public = _keypair("google-key-0")
    responses = [{"keys": [stale_public]}, {"keys": [stale_public, public]}]
    calls = []

    def fetch() -> dict:
        calls.append(1)
        return responses[min(len(calls), len(responses)) - 1]

    verifier = GoogleIdentityVerifier(CLIENT_ID, fetch_jwks=fetch)
    identity = _verify(verifier, _sign(private, _claims()))

    assert identity.subject_id == "110248495921238986420"
    assert len(calls) == 2


def test_unknown_kid_after_refresh_is_rejected(keys) -> None:
    private, _public = keys
    _, stale_public = _keypair("google-key-0")
    calls = []

    def fetch() -> dict:
        calls.append(1)
        return {"keys": [stale_public]}

    with pytest.raises(InvalidAssertion):
        _verify(GoogleIdentityVerifier(CLIENT_ID, fetch_jwks=fetch), _sign(private, _claims()))
    assert len(calls) == 2


def test_key_set_is_cached(keys) -> None:
    private, public = keys
    calls = []

    def fetch() -> dict:
        calls.append(1)
        return {"keys": [public]}

    verifier = GoogleIdentityVerifier(CLIENT_ID, fetch_jwks=fetch)
    _verify(verifier, _sign(private, _claims()))
    _verify(verifier, _sign(private, _claims(sub="another-subject")))
    assert len(calls) == 1


def test_jwks_network_failure_is_an_invalid_assertion(keys, monkeypatch) -> None:
    private, _public = keys

    def boom(*args, **kwargs):
        raise requests.ConnectionError("no route to host")

    monkeypatch.setattr("auth.federation.requests.get", boom)
    with pytest.raises(InvalidAssertion):
        _verify(GoogleIdentityVerifier(CLIENT_ID, timeout=0.1), _sign(private, _claims()))
