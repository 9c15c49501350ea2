from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from todo_api.core.errors import ConflictError, UnauthorizedError
from todo_api.core.security import hash_token
from todo_api.models.users import RefreshToken
from todo_api.services import session_service, user_service

REFRESH_TTL = timedelta(days=7)


def _register(client, email="alice@example.com", password="Passw0rd!"):
    return client.post("/api/auth/register", json={"email": email, "password": password})


def test_register_returns_access_token_and_sets_refresh_cookie(client, signer):
    response = _register(client)

    assert response.status_code == 201
    payload = response.json()
    assert payload["user"]["email"] == "alice@example.com"
    assert signer.subject_id(payload["access_token"]) == payload["user"]["id"]
    assert client.cookies.get("todo_refresh")
    assert response.headers["Cache-Control"] == "no-store"


def test_register_normalizes_email_and_rejects_duplicates_in_any_case(client):
    assert _register(client, "Alice@Example.com").json()["user"]["email"] == "alice@example.com"

    duplicate = _register(client, "ALICE@example.COM")

    assert duplicate.status_code == 409
    assert duplicate.json() == {"detail": "Email already registered"}


@pytest.mark.parametrize(
    "body",
    [
        {"email": "not-an-email", "password": "Passw0rd!"},
        {"email": "bob@example.com", "password": "short1"},
        {"email": "bob@example.com", "password": "lettersonly"},
        {"email": "bob@example.com"},
    ],
)
def test_register_rejects_malformed_input_with_400(client, db_session, body):
    response = client.post("/api/auth/register", json=body)

    assert response.status_code == 400
    assert user_service.find_by_email(db_session, "bob@example.com") is None


def test_register_then_login_succeeds(client):
    _register(client)
    client.cookies.clear()

    response = client.post(
        "/api/auth/login",
        json={"email": "ALICE@example.com", "password": "Passw0rd!"},
    )

    assert response.status_code == 200
    assert response.json()["access_token"]
    assert client.cookies.get("todo_refresh")


def test_login_failures_are_indistinguishable(client):
    _register(client)

    wrong_password = client.post(
        "/api/auth/login",
        json={"email": "alice@example.com", "password": "Wr0ngpass"},
    )
    unknown_email = client.post(
        "/api/auth/login",
        json={"email": "nobody@example.com", "password": "Passw0rd!"},
    )

    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json() == {"detail": "Invalid credentials"}


def test_refresh_rotates_cookie_and_invalidates_previous_secret(client, db_session):
    _register(client)
    first_secret = client.cookies.get("todo_refresh")

    rotated = client.post("/api/auth/refresh")

    assert rotated.status_code == 200
    second_secret = client.cookies.get("todo_refresh")
    assert second_secret and second_secret != first_secret

    replay = client.post("/api/auth/refresh", json={"refresh_token": first_secret})
    assert replay.status_code == 401
    assert replay.json() == {"detail": "Unauthorized"}

    stored = db_session.execute(select(RefreshToken.token_hash)).scalars().all()
    assert stored == [hash_token(second_secret)]


def test_refresh_without_any_token_is_unauthorized(client):
    response = client.post("/api/auth/refresh")

    assert response.status_code == 401


def test_logout_revokes_secret_once(client):
    _register(client)
    secret = client.cookies.get("todo_refresh")

    assert client.post("/api/auth/logout").status_code == 204
    assert client.post("/api/auth/logout", json={"refresh_token": secret}).status_code == 401
    assert client.post("/api/auth/refresh", json={"refresh_token": secret}).status_code == 401


def test_protected_route_requires_valid_access_token(client, signer, test_user):
    assert client.get("/api/todos").status_code == 401
    assert client.get("/api/todos", headers={"Authorization": "Token abc"}).status_code == 401

    expired = signer.sign(str(test_user.id), now=datetime.now(UTC) - timedelta(hours=2))
    response = client.get("/api/todos", headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 401


def test_refresh_secret_is_stored_only_as_hash(db_session, signer, test_user):
    issued = session_service.issue_tokens(db_session, signer, test_user, refresh_ttl=REFRESH_TTL)

    stored = db_session.execute(select(RefreshToken)).scalar_one()
    assert stored.token_hash == hash_token(issued.refresh_token)
    assert stored.token_hash != issued.refresh_token
    assert len(issued.refresh_token) >= 32


def test_expired_refresh_token_fails_and_is_removed(db_session, signer, test_user):
    issued = session_service.issue_tokens(db_session, signer, test_user, refresh_ttl=REFRESH_TTL)

    with pytest.raises(UnauthorizedError):
        session_service.refresh(
            db_session,
            signer,
            issued.refresh_token,
            refresh_ttl=REFRESH_TTL,
            now=datetime.now(UTC) + timedelta(days=8),
        )

    assert db_session.execute(select(RefreshToken)).first() is None


def test_service_register_conflict(db_session):
    user_service.register(db_session, "carol@example.com", "Passw0rd!")

    with pytest.raises(ConflictError):
        user_service.register(db_session, " Carol@Example.com ", "An0therpass")


def test_login_service_unknown_and_wrong_password_raise_same_error(db_session, signer, test_user):
    with pytest.raises(UnauthorizedError) as unknown:
        session_service.login(
            db_session, signer, "ghost@example.com", "Passw0rd!", refresh_ttl=REFRESH_TTL
        )
    with pytest.raises(UnauthorizedError) as wrong:
        session_service.login(
            db_session, signer, test_user.email, "Wr0ngpass", refresh_ttl=REFRESH_TTL
        )

    assert unknown.value.detail == wrong.value.detail
