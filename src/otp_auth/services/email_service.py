"""Email service — delivers login codes via async SMTP."""

from __future__ import annotations

import logging
from email.message import EmailMessage

import aiosmtplib

from otp_auth.config import Settings
from otp_auth.errors import DeliveryFailure

logger = logging.getLogger(__name__)


class EmailService:
    """Sends transactional emails using the configured SMTP server."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def configured(self) -> bool:
        return bool(self._settings.smtp_host and self._sender)

    @property
    def _sender(self) -> str:
        s = self._settings
        return s.email_from or s.smtp_username or s.support_email

    def build_code_message(self, to_email: str, code: str, ttl_minutes: int) -> EmailMessage:
        """Build the text + HTML login-code email."""
        app_name = self._settings.app_name
        support = self._settings.support_email

        text = (
            f"Your {app_name} login code is {code}.\n\n"
            f"It expires in {ttl_minutes} minutes. If you did not request it, "
            "you can ignore this email."
        )
        if support:
            text += f"\n\nQuestions? Contact {support}."

        html = (
            '<div style="font-family:system-ui,Segoe UI,Roboto,Arial">'
            f"<h2>{app_name}</h2>"
            "<p>Your sign-in code:</p>"
            f'<div style="font-size:28px;font-weight:700;letter-spacing:6px">{code}</div>'
            f'<p style="color:#555">Expires in {ttl_minutes} minutes.</p>'
            "</div>"
        )

        msg = EmailMessage()
        msg["Subject"] = f"Your {app_name} login code"
        msg["From"] = self._sender
        msg["To"] = to_email
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")
        return msg

    async def send_code(self, to_email: str, code: str, ttl_minutes: int) -> None:
        """Email a login code to *to_email*.

        Raises
        ------
        DeliveryFailure
            SMTP is not configured or the server rejected the message.
        """
        if not self.configured:
            logger.error("Cannot send login code to %s: SMTP is not configured", to_email)
            raise DeliveryFailure("Email not configured")

        msg = self.build_code_message(to_email, code, ttl_minutes)
        s = self._settings

        logger.info("Sending login code email to %s", to_email)
        try:
            await aiosmtplib.send(
                msg,
                hostname=s.smtp_host,
                port=s.smtp_port,
                username=s.smtp_username or None,
                password=s.smtp_password or None,
                start_tls=s.smtp_start_tls,
                timeout=10,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.exception("Sending login code to %s failed", to_email)
            raise DeliveryFailure(str(exc)) from exc

        logger.info("Login code email sent to %s", to_email)
