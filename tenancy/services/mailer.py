"""Outbound email transport used by the worker.

SmtpMailer talks to a real SMTP relay through smtplib on a worker thread.
LoggingMailer is used when SMTP_HOST is unset: it logs the message and
reports success, which keeps local development self-contained.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from tenancy.core.config import SmtpSettings

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    async def send(self, *, to: str, subject: str, body: str) -> None: ...


class SmtpMailer:
    def __init__(self, settings: SmtpSettings, *, timeout: float = 10.0) -> None:
        if not settings.host:
            raise ValueError("SmtpMailer requires SMTP_HOST")
        self._settings = settings
        self._timeout = timeout

    async def send(self, *, to: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self._settings.mail_from
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        await asyncio.to_thread(self._deliver, message)
        logger.info("Email sent to=%s subject=%r", to, subject)

    def _deliver(self, message: EmailMessage) -> None:
        s = self._settings
        with smtplib.SMTP(s.host, s.port, timeout=self._timeout) as smtp:  # type: ignore[arg-type]
            if s.use_tls:
                smtp.starttls()
            if s.username and s.password:
                smtp.login(s.username, s.password)
            smtp.send_message(message)


class LoggingMailer:
    def __init__(self) -> None:
        self.sent: list[dict[str, str]] = []

    async def send(self, *, to: str, subject: str, body: str) -> None:
        self.sent.append({"to": to, "subject": subject, "body": body})
        logger.info("Email (not delivered, no SMTP_HOST) to=%s subject=%r", to, subject)


def build_mailer(settings: SmtpSettings) -> Mailer:
    if settings.host:
        return SmtpMailer(settings)
    return LoggingMailer()
