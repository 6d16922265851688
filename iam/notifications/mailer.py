"""Outbound mail transport."""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Protocol

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    async def send(self, to: str, subject: str, html_body: str) -> str:
        """Deliver one HTML message and return its message id."""
        ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpMailer:
    """SMTP delivery run in a worker thread so the event loop is never blocked.

    Without an SMTP host the message is logged instead of sent, which keeps
    local development working without a mail server.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        from_email: str,
        use_tls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email
        self.use_tls = use_tls
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.from_email)

    async def send(self, to: str, subject: str, html_body: str) -> str:
        if not to or "@" not in to:
            raise ValueError("Invalid email address")
        if not subject:
            raise ValueError("Email subject cannot be empty")
        if not html_body:
            raise ValueError("Email content cannot be empty")

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to
        msg["Message-ID"] = make_msgid()
        msg.set_content(html_body, subtype="html")

        if not self.is_configured:
            logger.info("smtp not configured, dropping mail to %s: %s", redact_email(to), subject)
            return msg["Message-ID"]

        await asyncio.to_thread(self._deliver, msg)
        logger.info("email sent to %s (message id %s)", redact_email(to), msg["Message-ID"])
        return msg["Message-ID"]

    def _deliver(self, msg: EmailMessage) -> None:
        context = ssl.create_default_context()
        if self.use_tls:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        else:
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
