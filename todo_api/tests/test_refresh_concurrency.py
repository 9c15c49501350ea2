import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from todo_api.core.errors import UnauthorizedError
from todo_api.models.users import RefreshToken
from todo_api.services import session_service, user_service
from todo_api.services.session_service import IssuedTokens

REFRESH_TTL = timedelta(days=7)


@pytest.fixture
def issued(file_session_factory, signer) -> IssuedTokens:
    with file_session_factory() as db:
        user = user_service.register(db, "race@example.com", "Passw0rd!")
        return session_service.issue_tokens(db, signer, user, refresh_ttl=REFRESH_TTL)


def _refresh_in_own_session(session_factory, signer, secret, start: threading.Barrier):
    start.wait()
    with session_factory() as db:
        try:
            return session_service.refresh(db, signer, secret, refresh_ttl=REFRESH_TTL)
        except UnauthorizedError as exc:
            return exc


def test_concurrent_refresh_with_same_secret_succeeds_exactly_once(
    file_session_factory, signer, issued
):
    start = threading.Barrier(2)

    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [
            pool.submit(
                _refresh_in_own_session,
                file_session_factory,
                signer,
                issued.refresh_token,
                start,
            )
            for _ in range(2)
        ]
        results = [future.result(timeout=30) for future in futures]

    successes = [r for r in results if isinstance(r, IssuedTokens)]
    failures = [r for r in results if isinstance(r, UnauthorizedError)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert failures[0].detail == "Unauthorized"

    with file_session_factory() as db:
        assert db.execute(select(func.count(RefreshToken.id))).scalar_one() == 1


def test_sequential_reuse_of_rotated_secret_fails(file_session_factory, signer, issued):
    with file_session_factory() as db:
        rotated = session_service.refresh(
            db, signer, issued.refresh_token, refresh_ttl=REFRESH_TTL
        )

    with file_session_factory() as db:
        with pytest.raises(UnauthorizedError):
            session_service.refresh(db, signer, issued.refresh_token, refresh_ttl=REFRESH_TTL)

    with file_session_factory() as db:
        again = session_service.refresh(db, signer, rotated.refresh_token, refresh_ttl=REFRESH_TTL)
    assert again.refresh_token != rotated.refresh_token
