"""Unit tests for auth/passwords.py -- bcrypt hashing."""

from auth.passwords import hash_password, verify_password


def test_hash_is_bcrypt_and_salted() -> None:
    first = hash_password("secret1")
    second = hash_password("secret1")
    assert first.startswith("$2b$")
    assert first != second
    assert "secret1" not in first


def test_verify_matches_only_the_right_password() -> None:
    hashed = hash_password("secret1")
    assert verify_password("secret1", hashed)
    assert not verify_password("secret2", hashed)


def test_google_only_account_never_matches() -> None:
    assert not verify_password("anything", None)
    assert not verify_password("anything", "")


def test_garbage_hash_does_not_raise() -> None:
    assert not verify_password("secret1", "not-a-bcrypt-hash")


def test_long_passwords_are_truncated_consistently() -> None:
    long_password = "p" * 100
    hashed = hash_password(long_password)
    assert verify_password(long_password, hashed)
    assert verify_password("p" * 72, hashed)
