from __future__ import annotations

import pytest

from iam.domain.errors import ServiceFailure
from iam.notifications import mailer as mailer_module
from iam.notifications.mailer import SmtpMailer, redact_email
from iam.notifications.messages import (
    RESET_PASSWORD_SUBJECT,
    VERIFY_EMAIL_SUBJECT,
    WELCOME_SUBJECT,
    AccountNotifier,
)


class FakeSMTP:
    instances: list["FakeSMTP"] = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in_as = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in_as = user

    def send_message(self, msg):
        self.messages.append(msg)


async def test_verification_mail_links_to_frontend_with_token(mailer):
    notifier = AccountNotifier(mailer, frontend_url="https://frontend.example.com")

    await notifier.send_email_verification("ada@example.com", "tok.en-1")

    sent = mailer.sent[-1]
    assert sent.to == "ada@example.com"
    assert sent.subject == VERIFY_EMAIL_SUBJECT
    assert 'href="https://frontend.example.com/auth/verify-email?token=tok.en-1"' in sent.html_body
    assert mailer.last_token() == "tok.en-1"


async def test_reset_and_welcome_mails(mailer):
    notifier = AccountNotifier(mailer, frontend_url="https://frontend.example.com/")

    await notifier.send_password_reset("ada@example.com", "reset-token")
    assert mailer.sent[-1].subject == RESET_PASSWORD_SUBJECT
    assert "https://frontend.example.com/auth/reset-password?token=reset-token" in mailer.sent[-1].html_body

    await notifier.send_welcome("ada@example.com")
    assert mailer.sent[-1].subject == WELCOME_SUBJECT


async def test_transport_failure_becomes_service_failure(mailer):
    mailer.error = ConnectionError("smtp down")
    notifier = AccountNotifier(mailer, frontend_url="https://frontend.example.com")

    with pytest.raises(ServiceFailure) as excinfo:
        await notifier.send_welcome("ada@example.com")
    assert excinfo.value.message == "Service Error: Failed to send email"


async def test_smtp_mailer_delivers_over_starttls(monkeypatch):
    FakeSMTP.instances.clear()
    monkeypatch.setattr(mailer_module.smtplib, "SMTP", FakeSMTP)
    smtp = SmtpMailer(
        host="smtp.example.com",
        port=587,
        user="mailer",
        password="pw",
        from_email="no-reply@example.com",
    )

    message_id = await smtp.send("ada@example.com", "Hello", "<p>Hi</p>")

    server = FakeSMTP.instances[-1]
    assert server.started_tls
    assert server.logged_in_as == "mailer"
    assert server.messages[0]["To"] == "ada@example.com"
    assert server.messages[0]["Message-ID"] == message_id


async def test_smtp_mailer_without_host_skips_delivery(monkeypatch):
    FakeSMTP.instances.clear()
    monkeypatch.setattr(mailer_module.smtplib, "SMTP", FakeSMTP)
    smtp = SmtpMailer(host="", from_email="no-reply@example.com")

    message_id = await smtp.send("ada@example.com", "Hello", "<p>Hi</p>")

    assert message_id
    assert FakeSMTP.instances == []


async def test_smtp_mailer_rejects_invalid_recipient():
    smtp = SmtpMailer(host="", from_email="no-reply@example.com")

    with pytest.raises(ValueError):
        await smtp.send("not-an-address", "Hello", "<p>Hi</p>")


def test_redact_email_keeps_domain():
    assert redact_email("ada.lovelace@example.com") == "ad***@example.com"
    assert redact_email("nobody") == "redacted"
