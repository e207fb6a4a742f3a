"""Mail transport for share messages."""

import logging
from abc import ABC, abstractmethod
from email.message import EmailMessage

import aiosmtplib

from vaultkeeper.config.schema import SMTPConfig
from vaultkeeper.distribution.messages import ShareMessage
from vaultkeeper.errors import ConfigurationError, DeliveryError, TransportError

logger = logging.getLogger(__name__)


class Mailer(ABC):
    """Abstract base class for share message transports."""

    @abstractmethod
    async def send(self, message: ShareMessage) -> None:
        """Deliver one message.

        Args:
            message: Rendered message

        Raises:
            DeliveryError: If this recipient could not be reached
        """
        pass

    async def verify(self) -> None:
        """Check the transport is usable before any share exists.

        Raises:
            TransportError: If the transport is unreachable
        """


class SMTPMailer(Mailer):
    """Send share messages through an SMTP relay.

    One connection per message, so a failure for one recipient cannot
    poison delivery to the next.
    """

    def __init__(self, config: SMTPConfig):
        if not config.from_address:
            raise ConfigurationError("smtp.from_address is required, please provide a valid email address")
        self.config = config

    def _build(self, message: ShareMessage) -> EmailMessage:
        email = EmailMessage()
        email["From"] = self.config.from_address
        email["To"] = message.recipient
        email["Subject"] = message.subject
        email.set_content(message.body)
        return email

    async def send(self, message: ShareMessage) -> None:
        try:
            await aiosmtplib.send(
                self._build(message),
                hostname=self.config.host,
                port=self.config.port,
                username=self.config.username,
                password=self.config.password,
                start_tls=self.config.start_tls,
                timeout=self.config.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            raise DeliveryError(message.recipient, str(e)) from e

    async def verify(self) -> None:
        """Connect to the relay and ask it to VRFY the sender address.

        Relays commonly refuse VRFY; only a failure to connect is fatal.
        """
        smtp = aiosmtplib.SMTP(
            hostname=self.config.host,
            port=self.config.port,
            timeout=self.config.timeout,
            start_tls=self.config.start_tls,
        )
        try:
            await smtp.connect()
        except (aiosmtplib.SMTPException, OSError) as e:
            raise TransportError(
                f"Cannot reach SMTP relay {self.config.host}:{self.config.port}: {e}"
            ) from e

        try:
            await smtp.vrfy(self.config.from_address)
        except aiosmtplib.SMTPResponseException as e:
            logger.debug("Relay declined VRFY for %s: %s", self.config.from_address, e)
        except aiosmtplib.SMTPException as e:
            raise TransportError(
                f"SMTP relay {self.config.host}:{self.config.port} dropped the connection: {e}"
            ) from e
        finally:
            try:
                await smtp.quit()
            except aiosmtplib.SMTPException as e:
                logger.debug("Relay QUIT failed: %s", e)

        logger.info("SMTP relay %s:%d is reachable", self.config.host, self.config.port)
