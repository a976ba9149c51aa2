"""Outgoing mail for one-time codes."""
from __future__ import annotations

import asyncio
import logging
import smtplib
from collections import deque
from email.message import EmailMessage
from html import escape
from typing import Protocol

from espa.config.settings import MailSettings

__all__ = ["Mailer", "MailError", "LogMailer", "SmtpMailer", "build_mailer"]

_log = logging.getLogger("espa.mail")


class MailError(RuntimeError):
    """Raised when a message could not be handed to the mail relay."""


class Mailer(Protocol):
    async def send_mail(self, to: str, subject: str, body: str) -> None: ...


class LogMailer:
    """Mock mailer: writes the message to the log instead of sending it."""

    def __init__(self, *, keep: int = 50) -> None:
        # only the most recent messages are kept
        self.outbox: deque[tuple[str, str, str]] = deque(maxlen=keep)

    async def send_mail(self, to: str, subject: str, body: str) -> None:
        self.outbox.append((to, subject, body))
        _log.info("[MOCK EMAIL] To: %s | Subject: %s | Body: %s", to, subject, body)


class SmtpMailer:
    def __init__(self, settings: MailSettings, *, timeout: float = 20.0) -> None:
        self._settings = settings
        self._timeout = timeout

    def _build(self, to: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = f'"{self._settings.from_name}" <{self._settings.from_email}>'
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        message.add_alternative(f"<strong>{escape(body)}</strong>", subtype="html")
        return message

    def _send(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self._settings.smtp_host, self._settings.smtp_port, timeout=self._timeout) as smtp:
            smtp.starttls()
            smtp.login(self._settings.smtp_user or "", self._settings.smtp_password or "")
            smtp.send_message(message)

    async def send_mail(self, to: str, subject: str, body: str) -> None:
        message = self._build(to, subject, body)
        try:
            await asyncio.to_thread(self._send, message)
        except (smtplib.SMTPException, OSError) as exc:
            _log.error("smtp delivery to %s failed", to, exc_info=True)
            raise MailError("Email sending failed") from exc
        _log.info("email sent to %s", to)


def build_mailer(settings: MailSettings) -> Mailer:
    if settings.enabled:
        return SmtpMailer(settings)
    return LogMailer()
