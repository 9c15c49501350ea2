from datetime import UTC, datetime, timedelta

import jwt
import pytest
from argon2.exceptions import HashingError

from todo_api.core import security
from todo_api.core.errors import InternalError, UnauthorizedError
from todo_api.core.security import TokenSigner, hash_password, hash_token, verify_password

SECRET = "unit-test-secret-that-is-long-enough-1234"


def test_password_hash_is_salted_and_verifiable():
    first = hash_password("Passw0rd!")
    second = hash_password("Passw0rd!")

    assert first != second
    assert first.startswith("$argon2id$")
    assert verify_password("Passw0rd!", first)
    assert verify_password("Passw0rd!", second)
    assert not verify_password("passw0rd!", first)


def test_verify_password_rejects_malformed_or_missing_hash():
    assert not verify_password("Passw0rd!", "not-a-hash")
    assert not verify_password("Passw0rd!", None)


def test_hash_password_failure_surfaces_as_internal(monkeypatch):
    class BrokenHasher:
        def hash(self, plain):
            raise HashingError("out of memory")

    monkeypatch.setattr(security, "ph", BrokenHasher())

    with pytest.raises(InternalError) as exc_info:
        hash_password("Passw0rd!")
    assert exc_info.value.status_code == 500
    assert exc_info.value.detail == "Internal error"


def test_hash_token_is_stable_sha256():
    assert hash_token("abc") == hash_token("abc")
    assert hash_token("abc") != hash_token("abd")
    assert len(hash_token("abc")) == 64


def test_signer_round_trip_carries_subject_and_expiry():
    signer = TokenSigner(SECRET, "HS256", timedelta(minutes=15))
    now = datetime.now(UTC)

    claims = signer.verify(signer.sign("42", now=now))

    assert claims["sub"] == "42"
    assert claims["exp"] - claims["iat"] == 15 * 60
    assert signer.subject_id(signer.sign("42")) == 42


def test_signer_rejects_expired_token():
    signer = TokenSigner(SECRET, "HS256", timedelta(minutes=15))
    token = signer.sign("42", now=datetime.now(UTC) - timedelta(hours=1))

    with pytest.raises(UnauthorizedError):
        signer.verify(token)


def test_signer_rejects_foreign_signature():
    signer = TokenSigner(SECRET, "HS256", timedelta(minutes=15))
    other = TokenSigner("another-secret-that-is-also-long-enough", "HS256", timedelta(minutes=15))

    with pytest.raises(UnauthorizedError):
        signer.verify(other.sign("42"))


def test_signer_rejects_token_without_subject():
    signer = TokenSigner(SECRET, "HS256", timedelta(minutes=15))
    exp = int((datetime.now(UTC) + timedelta(minutes=5)).timestamp())
    token = jwt.encode({"exp": exp}, SECRET, algorithm="HS256")

    with pytest.raises(UnauthorizedError):
        signer.verify(token)


def test_subject_id_rejects_non_numeric_subject():
    signer = TokenSigner(SECRET, "HS256", timedelta(minutes=15))

    with pytest.raises(UnauthorizedError):
        signer.subject_id(signer.sign("alice"))
