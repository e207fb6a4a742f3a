"""Share fan-out to trustee identities.

Every identity declared by a trustee's public key receives that trustee's
share, still encrypted. A failed delivery is recorded and the fan-out moves
on; the report lists failed recipients so the operator can resend by hand.
"""

import logging

from pydantic import BaseModel, Field

from vaultkeeper.cluster.models import ShareSet
from vaultkeeper.distribution.mailer import Mailer
from vaultkeeper.distribution.messages import MessageTemplate
from vaultkeeper.errors import DeliveryError
from vaultkeeper.trustees import Trustee

logger = logging.getLogger(__name__)


class Delivery(BaseModel):
    """One successfully sent share message."""

    index: int
    identifier: str
    recipient: str


class DeliveryFailure(BaseModel):
    """One share message that could not be sent.

    Attributes:
        index: 1-based share number
        identifier: Trustee identifier the share belongs to
        recipient: Address the message was meant for
        reason: Transport error text
        share: The encrypted share, so the operator can resend it
    """

    index: int
    identifier: str
    recipient: str
    reason: str
    share: str


class DistributionReport(BaseModel):
    """Outcome of one distribution run."""

    shares: int = 0
    delivered: list[Delivery] = Field(default_factory=list)
    failures: list[DeliveryFailure] = Field(default_factory=list)

    @property
    def notified(self) -> int:
        return len(self.delivered)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def failed_recipients(self) -> list[str]:
        return [f.recipient for f in self.failures]

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> str:
        noun = "failure" if self.failed == 1 else "failures"
        return f"{self.shares} shares distributed, {self.failed} {noun}."


class ShareDistributor:
    """Send each encrypted share to every identity of its trustee's key."""

    def __init__(self, mailer: Mailer, template: MessageTemplate | None = None):
        self.mailer = mailer
        self.template = template or MessageTemplate()

    async def distribute(
        self,
        share_set: ShareSet,
        trustees: list[Trustee],
        cluster_name: str,
        action: str = "initialization",
    ) -> DistributionReport:
        """Send every share to its trustee's identities.

        Args:
            share_set: Encrypted shares, aligned with ``trustees``
            trustees: Resolved trustees in share order
            cluster_name: Cluster identity for the message text
            action: What produced the shares ("initialization", "rekey")

        Returns:
            Report of deliveries and per-recipient failures

        Raises:
            ProtocolError: If shares and trustees are misaligned (nothing is sent)
        """
        pairs = share_set.pair(trustees)
        report = DistributionReport(shares=len(pairs))

        logger.info("Sending %d secret shares to their owners", len(pairs))
        for index, (share, trustee) in enumerate(pairs, start=1):
            for recipient in trustee.identities:
                message = self.template.render(
                    recipient=recipient,
                    share=share,
                    index=index,
                    total=len(pairs),
                    identifier=trustee.identifier,
                    cluster=cluster_name,
                    action=action,
                )
                try:
                    await self.mailer.send(message)
                except DeliveryError as e:
                    logger.error("Share %d not delivered to %s: %s", index, recipient, e.reason)
                    report.failures.append(
                        DeliveryFailure(
                            index=index,
                            identifier=trustee.identifier,
                            recipient=recipient,
                            reason=e.reason,
                            share=share,
                        )
                    )
                    continue

                logger.info("Sent share %d/%d to %s", index, len(pairs), recipient)
                logger.debug("Share %d payload: %s", index, share)
                report.delivered.append(
                    Delivery(index=index, identifier=trustee.identifier, recipient=recipient)
                )

        return report
