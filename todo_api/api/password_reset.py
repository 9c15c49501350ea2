from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from todo_api.core.config import Settings, get_settings
from todo_api.core.database import get_db
from todo_api.core.locale import localized_message, parse_accept_language
from todo_api.schemas.password_reset import MessageOut, PasswordForgotIn, PasswordResetIn
from todo_api.services import password_reset_service
from todo_api.services.email_service import MailSender, get_mail_sender

router = APIRouter(prefix="/api/auth", tags=["auth"])

FORGOT_MESSAGE = (
    "If the email exists, a reset link will be sent.",
    "Nếu email tồn tại, reset link sẽ được gửi.",
)
RESET_MESSAGE = (
    "Password has been updated.",
    "Mật khẩu đã được cập nhật.",
)


@router.post("/forgot", response_model=MessageOut)
def forgot_password(
    payload: PasswordForgotIn,
    db: Session = Depends(get_db),
    mailer: MailSender = Depends(get_mail_sender),
    settings: Settings = Depends(get_settings),
    accept_language: str | None = Header(default=None),
):
    password_reset_service.forgot(
        db,
        mailer,
        payload.email,
        reset_url_base=settings.password_reset_url_base,
        ttl_minutes=settings.password_reset_ttl_min,
    )
    language = parse_accept_language(accept_language)
    return {"message": localized_message(language, *FORGOT_MESSAGE)}


@router.post("/reset", response_model=MessageOut)
def reset_password(
    payload: PasswordResetIn,
    db: Session = Depends(get_db),
    accept_language: str | None = Header(default=None),
):
    password_reset_service.reset(
        db,
        payload.token.get_secret_value(),
        payload.password.get_secret_value(),
    )
    language = parse_accept_language(accept_language)
    return {"message": localized_message(language, *RESET_MESSAGE)}
