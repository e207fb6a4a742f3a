"""Read-only view of cluster initialization and rekey state."""

import logging

from vaultkeeper.cluster.client import VaultSysClient
from vaultkeeper.cluster.models import InitStatus, RekeyStatus

logger = logging.getLogger(__name__)


class ClusterStateProbe:
    """Query Vault for its current state. No side effects."""

    def __init__(self, client: VaultSysClient):
        self.client = client

    async def status(self) -> InitStatus:
        status = await self.client.init_status()
        logger.info("Vault is initialized: %s", status.initialized)
        return status

    async def rekey_status(self) -> RekeyStatus:
        status = await self.client.rekey_status()
        if status.started:
            logger.info(
                "Rekey in progress (nonce %s, %d/%d keys submitted)",
                status.nonce,
                status.progress,
                status.required,
            )
        else:
            logger.info("No rekey in progress")
        return status
