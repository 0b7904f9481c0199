"""Outbound e-mail delivery for account notifications."""

from __future__ import annotations

import smtplib
from email.message import EmailMessage
from typing import Protocol

from expense_tracker.config import Settings
from expense_tracker.errors import DeliveryError
from expense_tracker.logging import get_logger

logger = get_logger("notifier")


class Notifier(Protocol):
    def send(self, to: str, subject: str, text: str) -> None:
        ...


class SmtpNotifier:
    def __init__(
        self,
        host: str | None,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        mail_from: str | None = None,
        from_name: str = "Expense Tracker",
        use_tls: bool = True,
        timeout_seconds: float = 20.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.mail_from = mail_from or username
        self.from_name = from_name
        self.use_tls = use_tls
        self.timeout_seconds = timeout_seconds

    @property
    def configured(self) -> bool:
        return bool(self.host and self.mail_from)

    def send(self, to: str, subject: str, text: str) -> None:
        if not self.configured:
            logger.error("SMTP transport is not configured: set SMTP_HOST and MAIL_FROM or SMTP_USERNAME")
            raise DeliveryError("Email transport is not configured", code="mail_not_configured")

        msg = EmailMessage()
        msg["From"] = f"{self.from_name} <{self.mail_from}>"
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as smtp:
                smtp.ehlo()
                if self.use_tls:
                    smtp.starttls()
                    smtp.ehlo()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Error sending email to %s: %s", to, exc)
            raise DeliveryError(code="mail_failed") from exc
        logger.info("Email sent to %s", to)


def build_notifier(settings: Settings) -> SmtpNotifier:
    return SmtpNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        mail_from=settings.mail_from,
        from_name=settings.mail_from_name,
        use_tls=settings.smtp_use_tls,
    )
