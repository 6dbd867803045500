from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Any, Mapping, Optional

from services.errors import ExternalServiceFailure

logger = logging.getLogger(__name__)


def redact_email(email: str) -> str:
    """Redact an address for logging."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class Mailer:
    """Transactional mail over SMTP.

    When no SMTP host is configured (local development) messages are logged
    instead of sent. Delivery failures raise ExternalServiceFailure; whether
    that fails the calling operation is the caller's decision.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Auth Server",
        client_url: str = "http://localhost:5173",
        timeout: float = 10,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.use_tls = use_tls
        self.from_email = from_email or smtp_user or "noreply@example.com"
        self.from_name = from_name
        self.client_url = client_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "Mailer":
        return cls(
            smtp_host=config.get("SMTP_HOST"),
            smtp_port=int(config.get("SMTP_PORT") or 587),
            smtp_user=config.get("SMTP_USER"),
            smtp_password=config.get("SMTP_PASSWORD"),
            use_tls=bool(config.get("SMTP_USE_TLS", True)),
            from_email=config.get("FROM_EMAIL"),
            from_name=config.get("FROM_NAME", "Auth Server"),
            client_url=config.get("CLIENT_URL", "http://localhost:5173"),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host)

    def send(self, to: str, subject: str, html_body: str, text_body: Optional[str] = None) -> None:
        if not self.is_configured:
            logger.info("Mail delivery disabled; not sending %r to %s", subject, redact_email(to))
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        if text_body:
            msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls(context=ssl.create_default_context())
                if self.smtp_user and self.smtp_password:
                    smtp.login(self.smtp_user, self.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise ExternalServiceFailure("Failed to send email", service="email") from exc

        logger.info("Email %r sent to %s", subject, redact_email(to))

    def send_verification_email(self, to: str, first_name: Optional[str], token: str) -> None:
        url = f"{self.client_url}/auth/verify-email?token={token}"
        name = escape(first_name or "there")
        html = (
            f"<h2>Verify your email address</h2>"
            f"<p>Hi {name},</p>"
            f"<p>Please confirm your address by following <a href=\"{url}\">this link</a>. "
            f"It expires in 24 hours.</p>"
        )
        text = f"Hi {first_name or 'there'},\n\nVerify your email address: {url}\n"
        self.send(to, "Verify your email address", html, text)

    def send_password_reset_email(self, to: str, first_name: Optional[str], token: str) -> None:
        url = f"{self.client_url}/auth/reset-password?token={token}"
        name = escape(first_name or "there")
        html = (
            f"<h2>Reset your password</h2>"
            f"<p>Hi {name},</p>"
            f"<p>Use <a href=\"{url}\">this link</a> to choose a new password. It expires in one hour.</p>"
            f"<p>If you did not ask for this, you can ignore this message.</p>"
        )
        text = f"Hi {first_name or 'there'},\n\nReset your password: {url}\n"
        self.send(to, "Reset your password", html, text)

    def send_welcome_email(self, to: str, first_name: Optional[str]) -> None:
        name = escape(first_name or "there")
        html = f"<h2>Welcome!</h2><p>Hi {name}, your email address is confirmed. You can now sign in.</p>"
        self.send(to, "Welcome", html, f"Hi {first_name or 'there'}, your email address is confirmed.\n")

    def send_password_changed_email(self, to: str, first_name: Optional[str]) -> None:
        name = escape(first_name or "there")
        html = (
            f"<h2>Password Changed Successfully</h2>"
            f"<p>Hi {name},</p>"
            f"<p>Your password has been changed and every active session was signed out.</p>"
            f"<p>If you didn't make this change, please contact our support team immediately.</p>"
        )
        text = (
            f"Hi {first_name or 'there'},\n\nYour password has been changed and every active "
            f"session was signed out.\nIf you didn't make this change, contact support immediately.\n"
        )
        self.send(to, "Password Changed Successfully", html, text)
