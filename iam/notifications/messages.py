"""Account lifecycle emails built on top of a :class:`Mailer`."""

from __future__ import annotations

import logging
from urllib.parse import urlencode, urljoin

from ..domain.errors import ServiceFailure
from .mailer import Mailer, redact_email

logger = logging.getLogger(__name__)

VERIFY_EMAIL_SUBJECT = "Email Verification - Complete Your Registration"
WELCOME_SUBJECT = "Account Verified - Welcome!"
RESET_PASSWORD_SUBJECT = "Password Reset - Choose a New Password"


class AccountNotifier:
    """Compose and dispatch the verification, welcome and password reset mails.

    Any transport failure is logged and re-raised as ``ServiceFailure`` so
    the enclosing operation fails instead of silently skipping the mail.
    """

    def __init__(self, mailer: Mailer, *, frontend_url: str) -> None:
        self._mailer = mailer
        self._frontend_url = frontend_url if frontend_url.endswith("/") else frontend_url + "/"

    def _link(self, path: str, token: str) -> str:
        return f"{urljoin(self._frontend_url, path)}?{urlencode({'token': token})}"

    async def send_email_verification(self, email: str, token: str) -> str:
        link = self._link("auth/verify-email", token)
        html = f"""
      <h1>Verify Your Email Address</h1>
      <p>Thank you for registering. Please verify your email address by clicking the link below:</p>
      <a href="{link}" target="_blank">Verify Email</a>
      <p>If you did not register, please ignore this email.</p>
    """
        return await self._send(email, VERIFY_EMAIL_SUBJECT, html)

    async def send_welcome(self, email: str) -> str:
        html = """
      <h1>Welcome!</h1>
      <p>Your email address has been verified and your account is ready to use.</p>
    """
        return await self._send(email, WELCOME_SUBJECT, html)

    async def send_password_reset(self, email: str, token: str) -> str:
        link = self._link("auth/reset-password", token)
        html = f"""
      <h1>Reset Your Password</h1>
      <p>We received a request to reset your password. Click the link below to choose a new one:</p>
      <a href="{link}" target="_blank">Reset Password</a>
      <p>If you did not request a password reset, please ignore this email.</p>
    """
        return await self._send(email, RESET_PASSWORD_SUBJECT, html)

    async def _send(self, email: str, subject: str, html: str) -> str:
        try:
            return await self._mailer.send(email, subject, html)
        except Exception as exc:
            logger.exception("failed to send %r to %s", subject, redact_email(email))
            raise ServiceFailure("Service Error: Failed to send email") from exc
