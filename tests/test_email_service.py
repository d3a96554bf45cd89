"""Tests for the SMTP email service (aiosmtplib is mocked)."""

from unittest.mock import AsyncMock, patch

import aiosmtplib
import pytest

from otp_auth.config import Settings
from otp_auth.errors import DeliveryFailure
from otp_auth.services.email_service import EmailService


@pytest.fixture
def smtp_settings():
    return Settings(
        _env_file=None,
        app_name="Acme Login",
        smtp_host="smtp.example.com",
        smtp_port=2525,
        smtp_username="mailer",
        smtp_password="hunter2",
        email_from="Acme <no-reply@example.com>",
        support_email="help@example.com",
    )


def test_code_message_contents(smtp_settings):
    msg = EmailService(smtp_settings).build_code_message("a@b.com", "042137", 10)

    assert msg["To"] == "a@b.com"
    assert msg["From"] == "Acme <no-reply@example.com>"
    assert msg["Subject"] == "Your Acme Login login code"
    text = msg.get_body(preferencelist=("plain",)).get_content()
    html = msg.get_body(preferencelist=("html",)).get_content()
    assert "042137" in text and "10 minutes" in text and "help@example.com" in text
    assert "042137" in html


@pytest.mark.asyncio
async def test_send_code_uses_configured_server(smtp_settings):
    with patch("otp_auth.services.email_service.aiosmtplib.send", new=AsyncMock()) as send:
        await EmailService(smtp_settings).send_code("a@b.com", "042137", 10)

    send.assert_awaited_once()
    kwargs = send.await_args.kwargs
    assert kwargs["hostname"] == "smtp.example.com"
    assert kwargs["port"] == 2525
    assert kwargs["username"] == "mailer"
    assert kwargs["start_tls"] is True


@pytest.mark.asyncio
async def test_send_code_wraps_smtp_errors(smtp_settings):
    failing = AsyncMock(side_effect=aiosmtplib.SMTPConnectError("refused"))
    with patch("otp_auth.services.email_service.aiosmtplib.send", new=failing):
        with pytest.raises(DeliveryFailure) as exc_info:
            await EmailService(smtp_settings).send_code("a@b.com", "042137", 10)

    assert "refused" in exc_info.value.detail


@pytest.mark.asyncio
async def test_send_code_without_smtp_config():
    service = EmailService(Settings(_env_file=None, smtp_host=""))
    assert service.configured is False

    with patch("otp_auth.services.email_service.aiosmtplib.send", new=AsyncMock()) as send:
        with pytest.raises(DeliveryFailure):
            await service.send_code("a@b.com", "042137", 10)
    send.assert_not_awaited()
