"""
auth/mailer.py -- Outbound delivery of one-time passcodes.

Mailer is the port the OTP issuer depends on. Two adapters ship here:

  SmtpMailer    -- aiosmtplib. Every send is bounded by a timeout, so a dead
                   mail relay turns into DeliveryFailed instead of a hung request.
  ConsoleMailer -- development adapter that writes the code to the log. Used
                   when SMTP_HOST is not configured.

Tests use their own in-memory fake (tests/conftest.py).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import asyncio
import email.message
import email.policy
import logging
from typing import Protocol

import aiosmtplib
from jinja2 import Environment, select_autoescape

from auth.errors import DeliveryFailed

logger = logging.getLogger("notekeeper.auth.mailer")

OTP_SUBJECT = "Your OTP Code"

_env = Environment(autoescape=select_autoescape(default_for_string=True))

_TEXT_TEMPLATE = _env.from_string(
    "Your One-Time Password (OTP) is: {{ code }}\n\n"
    "This OTP will expire in {{ minutes }} minutes.\n"
    "If you didn't request this OTP, please ignore this email.\n"
)

_HTML_TEMPLATE = _env.from_string(
    """<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2 style="color: #333;">{{ subject }}</h2>
  <p>Your One-Time Password (OTP) is:</p>
  <div style="background-color: #f4f4f4; padding: 20px; text-align: center; margin: 20px 0;">
    <h1 style="color: #2563eb; margin: 0; font-size: 32px; letter-spacing: 5px;">{{ code }}</h1>
  </div>
  <p>This OTP will expire in {{ minutes }} minutes.</p>
  <p>If you didn't request this OTP, please ignore this email.</p>
</div>
"""
)


class Mailer(Protocol):
    """Delivery capability. Implementations raise DeliveryFailed on any failure."""

    async def send(self, to: str, subject: str, code: str) -> None: ...


def render_otp_message(sender: str, to: str, subject: str, code: str, minutes: int = 10) -> email.message.EmailMessage:
    """Build a multipart (text + HTML) message carrying the passcode."""
    message = email.message.EmailMessage(policy=email.policy.default)
    message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    message.set_content(_TEXT_TEMPLATE.render(code=code, minutes=minutes), subtype="plain", charset="utf-8")
    message.add_alternative(
        _HTML_TEMPLATE.render(subject=subject, code=code, minutes=minutes), subtype="html", charset="utf-8"
    )
    return message


class SmtpMailer:
    """Async SMTP delivery via aiosmtplib."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        timeout: float = 10.0,
        from_email: str = "no-reply@notekeeper.local",
        code_ttl_minutes: int = 10,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username or None
        self.password = password or None
        self.use_tls = use_tls
        self.timeout = timeout
        self.from_email = from_email
        self.code_ttl_minutes = code_ttl_minutes

    async def send(self, to: str, subject: str, code: str) -> None:
        message = render_otp_message(self.from_email, to, subject, code, self.code_ttl_minutes)
        # Port 465 is implicit TLS; anything else upgrades with STARTTLS.
        implicit_tls = self.use_tls and self.port == 465
        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                use_tls=implicit_tls,
                start_tls=self.use_tls and not implicit_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            logger.error("OTP email to %s failed via %s:%d: %s", to, self.host, self.port, exc)
            raise DeliveryFailed() from exc
        logger.info("OTP email sent to %s", to)


class ConsoleMailer:
    """Development adapter: logs the passcode instead of sending it."""

    async def send(self, to: str, subject: str, code: str) -> None:
        logger.warning("DEV MAILER -- %s for %s: %s", subject, to, code)
