import smtplib

import pytest

from services import mailer as mailer_module
from services.errors import ExternalServiceFailure
from services.mailer import Mailer, redact_email


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self, context=None):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in = (user, password)

    def send_message(self, msg):
        self.messages.append(msg)


class BrokenSMTP(FakeSMTP):
    def send_message(self, msg):
        raise smtplib.SMTPServerDisconnected("connection lost")


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(mailer_module.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def bodies(msg):
    return "\n".join(part.get_payload(decode=True).decode() for part in msg.get_payload())


def configured_mailer():
    return Mailer(
        smtp_host="smtp.example.com",
        smtp_port=2525,
        smtp_user="mailer",
        smtp_password="secret",
        from_email="noreply@example.com",
        client_url="https://app.example.com/",
    )


def test_redact_email():
    assert redact_email("alice@example.com") == "al***@example.com"
    assert redact_email("nonsense") == "redacted"


def test_unconfigured_mailer_does_not_send(fake_smtp):
    Mailer().send("alice@example.com", "Hello", "<p>hi</p>")
    assert fake_smtp.instances == []


def test_sends_over_starttls(fake_smtp):
    configured_mailer().send_password_reset_email("alice@example.com", "Alice", "tok123")

    smtp = fake_smtp.instances[0]
    assert (smtp.host, smtp.port) == ("smtp.example.com", 2525)
    assert smtp.started_tls is True
    assert smtp.logged_in == ("mailer", "secret")
    msg = smtp.messages[0]
    assert msg["To"] == "alice@example.com"
    assert msg["Subject"] == "Reset your password"
    assert "https://app.example.com/auth/reset-password?token=tok123" in bodies(msg)


def test_verification_link_points_at_client(fake_smtp):
    configured_mailer().send_verification_email("alice@example.com", None, "abc")
    body = bodies(fake_smtp.instances[0].messages[0])
    assert "https://app.example.com/auth/verify-email?token=abc" in body


def test_names_are_escaped_in_html(fake_smtp):
    configured_mailer().send_welcome_email("alice@example.com", "<script>")
    html = fake_smtp.instances[0].messages[0].get_payload()[-1].get_payload(decode=True).decode()
    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_delivery_failure_raises_external_service_failure(monkeypatch):
    monkeypatch.setattr(mailer_module.smtplib, "SMTP", BrokenSMTP)
    with pytest.raises(ExternalServiceFailure) as exc_info:
        configured_mailer().send("alice@example.com", "Hello", "<p>hi</p>")
    assert exc_info.value.service == "email"
    assert exc_info.value.status == 502


def test_from_config():
    mailer = Mailer.from_config({"SMTP_HOST": "smtp.example.com", "SMTP_PORT": "465", "CLIENT_URL": "https://c"})
    assert mailer.is_configured
    assert mailer.smtp_port == 465
    assert mailer.client_url == "https://c"
    assert not Mailer.from_config({}).is_configured
