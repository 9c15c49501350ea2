import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr
from typing import Protocol

from todo_api.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class MailDeliveryError(Exception):
    pass


class MailSender(Protocol):
    def send(self, to_address: str, subject: str, body: str) -> None: ...


class SmtpMailSender:
    def __init__(
        self,
        host: str,
        port: int,
        username: str | None,
        password: str | None,
        from_address: str,
        from_name: str,
        timeout: float,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.from_name = from_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpMailSender":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_address=settings.mail_from,
            from_name=settings.mail_from_name,
            timeout=settings.smtp_timeout_seconds,
        )

    def send(self, to_address: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name, self.from_address))
        msg["To"] = to_address
        msg.set_content(body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.ehlo()
                if smtp.has_extn("starttls"):
                    smtp.starttls(context=ssl.create_default_context())
                    smtp.ehlo()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailDeliveryError(f"SMTP delivery to {self.host}:{self.port} failed") from exc


def render_password_reset(reset_link: str, ttl_minutes: int) -> tuple[str, str]:
    subject = "Reset your Todo App password"
    body = (
        "Hi,\n\n"
        "You asked to reset your password. Follow this link to choose a new one:\n"
        f"{reset_link}\n\n"
        f"The link expires in {ttl_minutes} minutes. "
        "If you did not request a reset, you can safely ignore this email.\n"
    )
    return subject, body


def get_mail_sender() -> MailSender:
    return SmtpMailSender.from_settings(get_settings())
