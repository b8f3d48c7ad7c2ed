"""
auth/mailer.py -- Outbound email channel for passcodes and reset links.

SmtpMailer.send(to_email, kind, payload) is the only surface the core uses.
Message bodies are built here from the template kind so the managers never
deal with subjects or HTML.

Failure policy: any SMTP error, refused connection, or socket timeout is
logged and re-raised as Unavailable so the HTTP layer answers 503 and the
client can retry. When SMTP_HOST is not configured the message is dropped
with a warning (local development without a mail server).

Passcodes and reset codes are never written to the log.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from enum import Enum

from auth.errors import Unavailable
from core.config import Settings

logger = logging.getLogger("campusauth.mail")


class MailKind(str, Enum):
    OTP = "otp"
    PASSWORD_RESET = "password_reset"


def _render(kind: MailKind, payload: dict, sender_name: str) -> tuple[str, str, str]:
    """Return (subject, text_body, html_body) for a template kind."""
    if kind is MailKind.OTP:
        minutes = payload["ttl_seconds"] // 60
        code = payload["passcode"]
        subject = f"Your {sender_name} verification code"
        text = f"Your verification code is {code}. It expires in {minutes} minutes."
        html = f"""
        <div style='font-family: Arial, sans-serif; line-height: 1.5;'>
          <h2>Verify your email</h2>
          <p>Use this one-time code to continue. It expires in <strong>{minutes} minutes</strong>.</p>
          <p style='font-size: 24px; font-weight: bold; letter-spacing: 4px;'>{code}</p>
          <p>If you did not request this code, you can ignore this email.</p>
        </div>
        """
        return subject, text, html

    minutes = payload["ttl_seconds"] // 60
    link = payload["link"]
    subject = f"Reset your {sender_name} password"
    text = f"Open this link to choose a new password: {link}\nThe link expires in {minutes} minutes."
    html = f"""
    <div style='font-family: Arial, sans-serif; line-height: 1.5;'>
      <h2>Reset your password</h2>
      <p><a href="{link}">Choose a new password</a></p>
      <p>This link works once and expires in <strong>{minutes} minutes</strong>.</p>
      <p>If you did not request a password reset, you can ignore this email.</p>
    </div>
    """
    return subject, text, html


class SmtpMailer:
    """Sends templated mail through an SMTP relay with a bounded timeout."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def configured(self) -> bool:
        return bool(self._settings.smtp_host and self._settings.smtp_from_email)

    def _build_message(self, to_email: str, kind: MailKind, payload: dict) -> EmailMessage:
        s = self._settings
        subject, text_body, html_body = _render(kind, payload, s.smtp_from_name or "CampusAuth")
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{s.smtp_from_name} <{s.smtp_from_email}>" if s.smtp_from_name else s.smtp_from_email
        msg["To"] = to_email
        msg.set_content(text_body)
        msg.add_alternative(html_body, subtype="html")
        return msg

    def send(self, to_email: str, kind: MailKind, payload: dict) -> None:
        """Deliver one message. Raises Unavailable if the relay fails or times out."""
        if not self.configured:
            logger.warning("SMTP not configured; dropping %s email", kind.value)
            return
        s = self._settings
        msg = self._build_message(to_email, kind, payload)
        try:
            if s.smtp_use_ssl:
                with smtplib.SMTP_SSL(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout) as server:
                    if s.smtp_username and s.smtp_password:
                        server.login(s.smtp_username, s.smtp_password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout) as server:
                    if s.smtp_use_tls:
                        server.starttls()
                    if s.smtp_username and s.smtp_password:
                        server.login(s.smtp_username, s.smtp_password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            # OSError covers refused connections and socket timeouts
            logger.error("Failed to send %s email: %s", kind.value, exc.__class__.__name__)
            raise Unavailable() from exc
        logger.info("Sent %s email", kind.value)
