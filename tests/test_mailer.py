"""Unit tests for auth/mailer.py -- message rendering and SMTP failure mapping."""

import asyncio
import logging

import aiosmtplib
import pytest

from auth.errors import DeliveryFailed
from auth.mailer import OTP_SUBJECT, ConsoleMailer, SmtpMailer, render_otp_message


def _bodies(message) -> tuple[str, str]:
    text = message.get_body(preferencelist=("plain",)).get_content()
    html = message.get_body(preferencelist=("html",)).get_content()
    return text, html


def test_render_carries_code_in_both_parts() -> None:
    message = render_otp_message("no-reply@notekeeper.test", "a@b.com", OTP_SUBJECT, "012345", minutes=10)

    assert message["To"] == "a@b.com"
    assert message["From"] == "no-reply@notekeeper.test"
    assert message["Subject"] == "Your OTP Code"
    text, html = _bodies(message)
    assert "012345" in text
    assert "expire in 10 minutes" in text
    assert "012345" in html


def test_render_escapes_html() -> None:
    message = render_otp_message("x@y.z", "a@b.com", "<script>", "123456")
    _text, html = _bodies(message)
    assert "<script>" not in html
    assert "&lt;script&gt;" in html


class _RecordingSend:
    def __init__(self, exc: Exception | None = None) -> None:
        self.exc = exc
        self.calls: list[tuple] = []

    async def __call__(self, message, **kwargs):
        self.calls.append((message, kwargs))
        if self.exc is not None:
            raise self.exc


def test_smtp_send_uses_starttls_on_submission_port(monkeypatch) -> None:
    send = _RecordingSend()
    monkeypatch.setattr(aiosmtplib, "send", send)
    mailer = SmtpMailer("smtp.example.com", port=587, username="u", password="p", timeout=3.0)

    asyncio.run(mailer.send("a@b.com", OTP_SUBJECT, "654321"))

    message, kwargs = send.calls[0]
    assert message["To"] == "a@b.com"
    assert kwargs["hostname"] == "smtp.example.com"
    assert kwargs["start_tls"] is True
    assert kwargs["use_tls"] is False
    assert kwargs["timeout"] == 3.0


def test_smtp_send_uses_implicit_tls_on_465(monkeypatch) -> None:
    send = _RecordingSend()
    monkeypatch.setattr(aiosmtplib, "send", send)

    asyncio.run(SmtpMailer("smtp.example.com", port=465).send("a@b.com", OTP_SUBJECT, "654321"))

    _message, kwargs = send.calls[0]
    assert kwargs["use_tls"] is True
    assert kwargs["start_tls"] is False


def test_blank_credentials_are_not_sent(monkeypatch) -> None:
    send = _RecordingSend()
    monkeypatch.setattr(aiosmtplib, "send", send)

    asyncio.run(SmtpMailer("localhost", port=25, username="", password="", use_tls=False).send("a@b.com", "s", "1"))

    _message, kwargs = send.calls[0]
    assert kwargs["username"] is None
    assert kwargs["password"] is None
    assert kwargs["start_tls"] is False


@pytest.mark.parametrize(
    "exc",
    [
        aiosmtplib.SMTPConnectError("relay down"),
        aiosmtplib.SMTPRecipientsRefused([]),
        ConnectionRefusedError("refused"),
        asyncio.TimeoutError(),
    ],
    ids=["connect", "refused-recipients", "os-error", "timeout"],
)
def test_smtp_failures_become_delivery_failed(monkeypatch, exc) -> None:
    monkeypatch.setattr(aiosmtplib, "send", _RecordingSend(exc))
    with pytest.raises(DeliveryFailed):
        asyncio.run(SmtpMailer("smtp.example.com").send("a@b.com", OTP_SUBJECT, "123456"))


def test_console_mailer_logs_code(caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="notekeeper.auth.mailer"):
        asyncio.run(ConsoleMailer().send("a@b.com", OTP_SUBJECT, "424242"))
    assert "424242" in caplog.text
    assert "a@b.com" in caplog.text
