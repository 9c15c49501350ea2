import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from todo_api.core.errors import InternalError, UnauthorizedError
from todo_api.core.security import (
    TokenSigner,
    generate_raw_token,
    hash_password,
    hash_token,
    verify_password,
)
from todo_api.models.users import RefreshToken, User
from todo_api.services import user_service

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"


@dataclass(frozen=True)
class IssuedTokens:
    user: User
    access_token: str
    refresh_token: str


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@lru_cache
def _dummy_password_hash() -> str:
    return hash_password(generate_raw_token(16))


def _add_refresh_token(
    db: Session, user_id: int, refresh_ttl: timedelta, now: datetime
) -> str:
    raw_token = generate_raw_token(32)
    db.add(
        RefreshToken(
            user_id=user_id,
            token_hash=hash_token(raw_token),
            expires_at=(now + refresh_ttl).replace(microsecond=0),
        )
    )
    return raw_token


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to persist refresh token during %s", action)
        raise InternalError()


def issue_tokens(
    db: Session,
    signer: TokenSigner,
    user: User,
    *,
    refresh_ttl: timedelta,
    now: datetime | None = None,
) -> IssuedTokens:
    now = now or datetime.now(UTC)
    access_token = signer.sign(str(user.id), now=now)
    refresh_token = _add_refresh_token(db, user.id, refresh_ttl, now)
    _commit(db, "token issue")
    return IssuedTokens(user=user, access_token=access_token, refresh_token=refresh_token)


def login(
    db: Session,
    signer: TokenSigner,
    email: str,
    password: str,
    *,
    refresh_ttl: timedelta,
    now: datetime | None = None,
) -> IssuedTokens:
    user = user_service.find_by_email(db, email)
    if user is None:
        # Spend the same argon2 work as a real check so timing does not reveal unknown emails.
        verify_password(password, _dummy_password_hash())
        raise UnauthorizedError(INVALID_CREDENTIALS)
    if not verify_password(password, user.password_hash):
        raise UnauthorizedError(INVALID_CREDENTIALS)
    return issue_tokens(db, signer, user, refresh_ttl=refresh_ttl, now=now)


def refresh(
    db: Session,
    signer: TokenSigner,
    raw_token: str,
    *,
    refresh_ttl: timedelta,
    now: datetime | None = None,
) -> IssuedTokens:
    """
    Rotate a refresh secret.

    The presented row is removed with a conditional DELETE and the new row is
    only inserted when that DELETE affected exactly one row, so two concurrent
    calls with the same secret cannot both succeed.
    """
    now = now or datetime.now(UTC)
    token_hash = hash_token(raw_token)
    token = db.execute(
        select(RefreshToken).where(RefreshToken.token_hash == token_hash)
    ).scalar_one_or_none()

    if token is None:
        db.rollback()
        raise UnauthorizedError()

    token_id, user_id = token.id, token.user_id
    if as_utc(token.expires_at) <= now:
        db.execute(delete(RefreshToken).where(RefreshToken.id == token_id))
        _commit(db, "refresh")
        raise UnauthorizedError()

    consumed = db.execute(
        delete(RefreshToken)
        .where(RefreshToken.id == token_id)
        .execution_options(synchronize_session=False)
    )
    if consumed.rowcount != 1:
        db.rollback()
        logger.info("Refresh token for user %s was already rotated", user_id)
        raise UnauthorizedError()
    db.expunge(token)

    user = db.get(User, user_id)
    if user is None:
        db.rollback()
        raise UnauthorizedError()

    access_token = signer.sign(str(user_id), now=now)
    new_refresh = _add_refresh_token(db, user_id, refresh_ttl, now)
    _commit(db, "refresh")
    return IssuedTokens(user=user, access_token=access_token, refresh_token=new_refresh)


def logout(db: Session, raw_token: str) -> None:
    token_hash = hash_token(raw_token)
    result = db.execute(delete(RefreshToken).where(RefreshToken.token_hash == token_hash))
    if result.rowcount == 0:
        db.rollback()
        raise UnauthorizedError()
    _commit(db, "logout")


def revoke_all(db: Session, user_id: int) -> int:
    """Delete every refresh token of ``user_id`` without committing."""
    result = db.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
    return result.rowcount or 0
