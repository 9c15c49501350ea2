import os

os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-at-least-32-chars")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("PASSWORD_RESET_URL_BASE", "https://frontend.local")
os.environ.setdefault("RATE_LIMIT_PER_SECOND", "1000")
os.environ.setdefault("RATE_LIMIT_BURST", "100000")

from collections.abc import Generator  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import StaticPool  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from todo_api.core.database import build_engine, get_db  # noqa: E402
from todo_api.core.security import TokenSigner, get_token_signer  # noqa: E402
from todo_api.main import app  # noqa: E402
from todo_api.models import Base, User  # noqa: E402
from todo_api.services import user_service  # noqa: E402
from todo_api.services.email_service import MailDeliveryError, get_mail_sender  # noqa: E402

DEFAULT_PASSWORD = "Passw0rd!"


class RecordingMailSender:
    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []
        self.fail = False

    def send(self, to_address: str, subject: str, body: str) -> None:
        if self.fail:
            raise MailDeliveryError("smtp unavailable")
        self.sent.append({"to": to_address, "subject": subject, "body": body})


@pytest.fixture(scope="session")
def engine():
    engine = build_engine("sqlite+pysqlite:///:memory:", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine) -> Generator[Session]:
    connection = engine.connect()
    trans = connection.begin()

    TestingSessionLocal = sessionmaker(
        bind=connection,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        trans.rollback()
        connection.close()


@pytest.fixture
def file_session_factory(tmp_path) -> Generator[sessionmaker]:
    """Sessions on a file-backed database, for tests that need real concurrent connections."""
    engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'concurrency.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def mailer() -> RecordingMailSender:
    return RecordingMailSender()


@pytest.fixture
def signer() -> TokenSigner:
    return get_token_signer()


@pytest.fixture
def client(db_session, mailer) -> Generator[TestClient]:
    # Override FastAPI's get_db to use our testing session
    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_mail_sender] = lambda: mailer
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    def _make(email: str, password: str = DEFAULT_PASSWORD) -> User:
        return user_service.register(db_session, email, password)

    return _make


@pytest.fixture
def test_user(make_user) -> User:
    return make_user("test@example.com")


@pytest.fixture
def auth_headers(signer):
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {signer.sign(str(user.id))}"}

    return _headers


@pytest.fixture
def auth_client(client, test_user, auth_headers) -> tuple[TestClient, User]:
    client.headers.update(auth_headers(test_user))
    return client, test_user
