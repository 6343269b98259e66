"""SMTP transport: dev-mode fallback, delivery and failure reporting."""

import smtplib

import pytest

from tourauth.service import email as email_module
from tourauth.service.email import EmailService


class FakeSMTP:
    """Stands in for ``smtplib.SMTP``; records what the service asked for."""

    instances = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.calls = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.calls.append("quit")
        return False

    def starttls(self, context=None):
        self.calls.append("starttls")

    def close(self):
        self.calls.append("close")

    def login(self, user, password):
        self.calls.append(("login", user))
        if isinstance(FakeSMTP.fail_with, smtplib.SMTPAuthenticationError):
            raise FakeSMTP.fail_with

    def sendmail(self, sender, recipient, message):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        self.calls.append(("sendmail", sender, recipient))


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(email_module.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def _configured(**overrides):
    options = dict(
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_user="mailer",
        smtp_password="relay-secret",
        from_email="no-reply@natours.io",
        dev_mode=False,
    )
    options.update(overrides)
    return EmailService(**options)


class TestUnconfigured:
    def test_dev_mode_logs_and_reports_success(self):
        service = EmailService(dev_mode=True)
        assert service.is_configured is False
        assert service.send_email("alice@example.com", "Hi", "<p>hi</p>") is True

    def test_without_dev_mode_reports_failure(self):
        service = EmailService(dev_mode=False)
        assert service.send_email("alice@example.com", "Hi", "<p>hi</p>") is False


class TestDelivery:
    def test_sends_over_starttls_with_login(self, fake_smtp):
        sent = _configured().send_email("alice@example.com", "Hi", "<p>hi</p>", "hi")

        assert sent is True
        server = fake_smtp.instances[-1]
        assert server.host == "smtp.example.com"
        assert server.calls[0] == "starttls"
        assert ("login", "mailer") in server.calls
        assert ("sendmail", "no-reply@natours.io", "alice@example.com") in server.calls

    def test_skips_login_without_credentials(self, fake_smtp):
        _configured(smtp_user=None, smtp_password=None).send_email(
            "alice@example.com", "Hi", "<p>hi</p>"
        )
        assert not any(isinstance(c, tuple) and c[0] == "login" for c in fake_smtp.instances[-1].calls)

    def test_message_carries_both_parts(self):
        msg = _configured()._build_message("alice@example.com", "Hi", "<p>hi</p>", "hi")

        assert msg["To"] == "alice@example.com"
        assert msg["From"] == "Natours <no-reply@natours.io>"
        assert [part.get_content_type() for part in msg.get_payload()] == [
            "text/plain",
            "text/html",
        ]


class TestFailures:
    def test_bad_credentials(self, fake_smtp):
        fake_smtp.fail_with = smtplib.SMTPAuthenticationError(535, b"bad credentials")
        assert _configured().send_email("alice@example.com", "Hi", "<p>hi</p>") is False

    def test_recipient_refused(self, fake_smtp):
        fake_smtp.fail_with = smtplib.SMTPRecipientsRefused({"alice@example.com": (550, b"no")})
        assert _configured().send_email("alice@example.com", "Hi", "<p>hi</p>") is False

    def test_connection_refused(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise ConnectionRefusedError("relay down")

        monkeypatch.setattr(email_module.smtplib, "SMTP", refuse)
        assert _configured().send_email("alice@example.com", "Hi", "<p>hi</p>") is False
