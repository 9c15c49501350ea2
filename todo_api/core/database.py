from collections.abc import Generator
from typing import Any

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, MappedAsDataclass, Session, sessionmaker

from todo_api.core.config import get_settings

settings = get_settings()


def enable_sqlite_immediate_transactions(engine: Engine) -> None:
    """
    Make every SQLite transaction start with ``BEGIN IMMEDIATE``.

    pysqlite defers BEGIN until the first write, so two sessions can both read
    a row and then race to modify it. Taking the write lock up front makes
    concurrent transactions serialize instead, which the refresh rotation and
    the todo position allocation rely on.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, **overrides: Any) -> Engine:
    connection_url = make_url(url)
    engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
    connect_args: dict[str, Any] = {}

    is_sqlite = connection_url.drivername.startswith("sqlite")
    if is_sqlite:
        # Relax SQLite's default thread check so the same connection can be reused across requests.
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 15
    else:
        engine_kwargs.update(
            {
                "pool_size": 5,
                "max_overflow": 10,
                "pool_recycle": 1800,
                "pool_timeout": 30,
            }
        )
        connect_args["connect_timeout"] = 5

    engine_kwargs["connect_args"] = connect_args
    engine_kwargs.update(overrides)

    engine = create_engine(connection_url, **engine_kwargs)
    if is_sqlite:
        enable_sqlite_immediate_transactions(engine)
    return engine


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db() -> Generator[Session]:
    session = SessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping_database() -> bool:
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        return False


class Base(MappedAsDataclass, DeclarativeBase):
    pass
