import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from todo_api.core.errors import InternalError, ValidationError
from todo_api.core.security import generate_raw_token, hash_password, hash_token
from todo_api.models.users import PasswordResetToken, User
from todo_api.services import session_service, user_service
from todo_api.services.email_service import (
    MailDeliveryError,
    MailSender,
    render_password_reset,
)
from todo_api.services.session_service import as_utc

logger = logging.getLogger(__name__)

INVALID_RESET_TOKEN = "Invalid or expired reset token"


def _ensure_unique_token_hash(db: Session, raw_token: str) -> tuple[str, str]:
    token_hash = hash_token(raw_token)
    existing = db.execute(
        select(PasswordResetToken.id).where(PasswordResetToken.token_hash == token_hash)
    ).first()
    if existing:
        return _ensure_unique_token_hash(db, generate_raw_token(32))
    return raw_token, token_hash


def create_password_reset_token(
    db: Session,
    user: User,
    ttl_minutes: int,
    *,
    now: datetime | None = None,
) -> tuple[PasswordResetToken, str]:
    """Replace the user's unused tickets with a fresh one and return it with its secret."""
    now = now or datetime.now(UTC)
    db.execute(
        delete(PasswordResetToken)
        .where(
            PasswordResetToken.user_id == user.id,
            PasswordResetToken.used_at.is_(None),
        )
    )

    raw_token, token_hash = _ensure_unique_token_hash(db, generate_raw_token(32))
    token = PasswordResetToken(
        user_id=user.id,
        token_hash=token_hash,
        expires_at=(now + timedelta(minutes=ttl_minutes)).replace(microsecond=0),
    )
    db.add(token)
    db.commit()
    db.refresh(token)
    return token, raw_token


def build_reset_link(reset_url_base: str, raw_token: str) -> str:
    return f"{reset_url_base.rstrip('/')}/reset?token={raw_token}"


def forgot(
    db: Session,
    mailer: MailSender,
    email: str,
    *,
    reset_url_base: str,
    ttl_minutes: int,
    now: datetime | None = None,
) -> None:
    user = user_service.find_by_email(db, email)
    if user is None:
        return

    user_id, user_email = user.id, user.email
    try:
        _, raw_token = create_password_reset_token(db, user, ttl_minutes, now=now)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to issue password reset ticket for user %s", user_id)
        raise InternalError()

    subject, body = render_password_reset(
        build_reset_link(reset_url_base, raw_token), ttl_minutes
    )
    try:
        mailer.send(user_email, subject, body)
    except MailDeliveryError:
        logger.exception("Password reset email for user %s was not delivered", user_id)
        raise InternalError()


def validate_password_reset_token(
    db: Session, raw_token: str, *, now: datetime | None = None
) -> PasswordResetToken:
    now = now or datetime.now(UTC)
    token = db.execute(
        select(PasswordResetToken).where(
            PasswordResetToken.token_hash == hash_token(raw_token)
        )
    ).scalar_one_or_none()
    if not token or token.used_at is not None or as_utc(token.expires_at) <= now:
        raise ValidationError(INVALID_RESET_TOKEN)
    return token


def reset(
    db: Session,
    raw_token: str,
    new_password: str,
    *,
    now: datetime | None = None,
) -> None:
    """
    Consume a reset ticket, set the new password and revoke every session.

    All three writes share one transaction; the ticket is claimed with a
    conditional UPDATE so a second concurrent reset with the same secret fails.
    """
    now = now or datetime.now(UTC)
    token = validate_password_reset_token(db, raw_token, now=now)
    token_id, user_id = token.id, token.user_id
    password_hash = hash_password(new_password)

    try:
        claimed = db.execute(
            update(PasswordResetToken)
            .where(
                PasswordResetToken.id == token_id,
                PasswordResetToken.used_at.is_(None),
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            db.rollback()
            raise ValidationError(INVALID_RESET_TOKEN)

        db.execute(
            update(User)
            .where(User.id == user_id)
            .values(password_hash=password_hash)
            .execution_options(synchronize_session=False)
        )
        revoked = session_service.revoke_all(db, user_id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Password reset for user %s failed; rolled back", user_id)
        raise InternalError()

    db.expire_all()
    logger.info("Password reset for user %s revoked %s session(s)", user_id, revoked)
