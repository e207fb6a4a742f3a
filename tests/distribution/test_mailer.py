"""Tests for the SMTP mail transport."""

from unittest.mock import AsyncMock, MagicMock, patch

import aiosmtplib
import pytest

from vaultkeeper.config.schema import SMTPConfig
from vaultkeeper.distribution.mailer import SMTPMailer
from vaultkeeper.distribution.messages import ShareMessage
from vaultkeeper.errors import ConfigurationError, DeliveryError, TransportError


@pytest.fixture
def smtp_config():
    return SMTPConfig(host="relay.test", port=2525, from_address="vault-ops@example.com")


@pytest.fixture
def message():
    return ShareMessage(recipient="alice@example.com", subject="Your share", body="c1c2")


def test_requires_from_address():
    with pytest.raises(ConfigurationError, match="from_address"):
        SMTPMailer(SMTPConfig())


@pytest.mark.asyncio
async def test_send_builds_message(smtp_config, message):
    with patch("vaultkeeper.distribution.mailer.aiosmtplib.send", new_callable=AsyncMock) as mock_send:
        await SMTPMailer(smtp_config).send(message)

    mock_send.assert_awaited_once()
    email = mock_send.await_args.args[0]
    assert email["From"] == "vault-ops@example.com"
    assert email["To"] == "alice@example.com"
    assert email["Subject"] == "Your share"
    assert email.get_content().strip() == "c1c2"

    kwargs = mock_send.await_args.kwargs
    assert kwargs["hostname"] == "relay.test"
    assert kwargs["port"] == 2525
    assert kwargs["start_tls"] is False


@pytest.mark.asyncio
async def test_send_failure_becomes_delivery_error(smtp_config, message):
    error = aiosmtplib.SMTPRecipientsRefused([])
    with patch("vaultkeeper.distribution.mailer.aiosmtplib.send", new=AsyncMock(side_effect=error)):
        with pytest.raises(DeliveryError) as exc_info:
            await SMTPMailer(smtp_config).send(message)

    assert exc_info.value.recipient == "alice@example.com"


@pytest.mark.asyncio
async def test_send_connection_refused(smtp_config, message):
    with patch(
        "vaultkeeper.distribution.mailer.aiosmtplib.send",
        new=AsyncMock(side_effect=ConnectionRefusedError("refused")),
    ):
        with pytest.raises(DeliveryError, match="refused"):
            await SMTPMailer(smtp_config).send(message)


def _smtp_double():
    smtp = MagicMock()
    smtp.connect = AsyncMock()
    smtp.vrfy = AsyncMock()
    smtp.quit = AsyncMock()
    return smtp


@pytest.mark.asyncio
async def test_verify_connects_and_vrfys_sender(smtp_config):
    smtp = _smtp_double()
    with patch("vaultkeeper.distribution.mailer.aiosmtplib.SMTP", return_value=smtp) as factory:
        await SMTPMailer(smtp_config).verify()

    assert factory.call_args.kwargs["hostname"] == "relay.test"
    smtp.connect.assert_awaited_once()
    smtp.vrfy.assert_awaited_once_with("vault-ops@example.com")
    smtp.quit.assert_awaited_once()


@pytest.mark.asyncio
async def test_verify_tolerates_refused_vrfy(smtp_config):
    smtp = _smtp_double()
    smtp.vrfy.side_effect = aiosmtplib.SMTPResponseException(502, "VRFY disabled")
    with patch("vaultkeeper.distribution.mailer.aiosmtplib.SMTP", return_value=smtp):
        await SMTPMailer(smtp_config).verify()

    smtp.quit.assert_awaited_once()


@pytest.mark.asyncio
async def test_verify_unreachable_relay(smtp_config):
    smtp = _smtp_double()
    smtp.connect.side_effect = aiosmtplib.SMTPConnectError("connection refused")
    with patch("vaultkeeper.distribution.mailer.aiosmtplib.SMTP", return_value=smtp):
        with pytest.raises(TransportError, match="relay.test:2525"):
            await SMTPMailer(smtp_config).verify()

    smtp.vrfy.assert_not_awaited()


@pytest.mark.asyncio
async def test_verify_relay_disconnect_during_vrfy(smtp_config):
    smtp = _smtp_double()
    smtp.vrfy.side_effect = aiosmtplib.SMTPServerDisconnected("Connection lost")
    smtp.quit.side_effect = aiosmtplib.SMTPServerDisconnected("Connection lost")
    with patch("vaultkeeper.distribution.mailer.aiosmtplib.SMTP", return_value=smtp):
        with pytest.raises(TransportError, match="dropped the connection"):
            await SMTPMailer(smtp_config).verify()


@pytest.mark.asyncio
async def test_verify_relay_timeout_during_vrfy(smtp_config):
    smtp = _smtp_double()
    smtp.vrfy.side_effect = aiosmtplib.SMTPTimeoutError("Timed out")
    with patch("vaultkeeper.distribution.mailer.aiosmtplib.SMTP", return_value=smtp):
        with pytest.raises(TransportError):
            await SMTPMailer(smtp_config).verify()

    smtp.quit.assert_awaited_once()
