"""
tests/test_mailer.py -- Unit tests for auth/mailer.py (SmtpMailer).

smtplib is patched so no network connection is attempted.

Covers:
  - unconfigured SMTP drops the message without raising
  - OTP and reset messages carry the code / link in both bodies
  - STARTTLS and login are used when configured
  - SMTP errors and socket timeouts become Unavailable
"""

from __future__ import annotations

import socket
import smtplib
from unittest.mock import MagicMock, patch

import pytest

from auth.errors import Unavailable
from auth.mailer import MailKind, SmtpMailer
from core.config import get_settings


@pytest.fixture
def smtp_settings():
    return get_settings().model_copy(
        update={
            "smtp_host": "smtp.example.test",
            "smtp_from_email": "no-reply@example.test",
            "smtp_username": "mailer",
            "smtp_password": "hunter22",
            "smtp_timeout": 3.0,
        }
    )


def _smtp_mock() -> tuple[MagicMock, MagicMock]:
    server = MagicMock()
    factory = MagicMock()
    factory.return_value.__enter__.return_value = server
    return factory, server


def test_unconfigured_mailer_drops_message() -> None:
    mailer = SmtpMailer(get_settings().model_copy(update={"smtp_host": ""}))
    with patch("auth.mailer.smtplib.SMTP") as factory:
        mailer.send("a@x.com", MailKind.OTP, {"passcode": "123456", "ttl_seconds": 600})
    factory.assert_not_called()


def test_otp_message_sent_with_starttls(smtp_settings) -> None:
    factory, server = _smtp_mock()
    with patch("auth.mailer.smtplib.SMTP", factory):
        SmtpMailer(smtp_settings).send("a@x.com", MailKind.OTP, {"passcode": "042817", "ttl_seconds": 600})

    factory.assert_called_once_with("smtp.example.test", 587, timeout=3.0)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("mailer", "hunter22")
    msg = server.send_message.call_args.args[0]
    assert msg["To"] == "a@x.com"
    assert "042817" in msg.get_body(preferencelist=("plain",)).get_content()
    assert "042817" in msg.get_body(preferencelist=("html",)).get_content()
    assert "10 minutes" in msg.get_body(preferencelist=("plain",)).get_content()


def test_reset_message_contains_link(smtp_settings) -> None:
    factory, server = _smtp_mock()
    link = "http://localhost:8000/api/v1/auth/reset/abc123"
    with patch("auth.mailer.smtplib.SMTP", factory):
        SmtpMailer(smtp_settings).send("a@x.com", MailKind.PASSWORD_RESET, {"link": link, "ttl_seconds": 900})
    msg = server.send_message.call_args.args[0]
    assert "Reset" in msg["Subject"]
    assert link in msg.get_body(preferencelist=("plain",)).get_content()


def test_ssl_mode_uses_smtp_ssl(smtp_settings) -> None:
    factory, server = _smtp_mock()
    settings = smtp_settings.model_copy(update={"smtp_use_ssl": True, "smtp_port": 465})
    with patch("auth.mailer.smtplib.SMTP_SSL", factory):
        SmtpMailer(settings).send("a@x.com", MailKind.OTP, {"passcode": "123456", "ttl_seconds": 600})
    factory.assert_called_once_with("smtp.example.test", 465, timeout=3.0)
    server.starttls.assert_not_called()


@pytest.mark.parametrize(
    "error",
    [
        smtplib.SMTPServerDisconnected("gone"),
        socket.timeout("timed out"),
        ConnectionRefusedError(),
    ],
)
def test_delivery_failure_is_unavailable(smtp_settings, error) -> None:
    with patch("auth.mailer.smtplib.SMTP", side_effect=error):
        with pytest.raises(Unavailable):
            SmtpMailer(smtp_settings).send("a@x.com", MailKind.OTP, {"passcode": "123456", "ttl_seconds": 600})
