"""One-shot cluster initialization.

Initialization is irreversible: once Vault accepts the request the cluster
is initialized and a root token exists. It is never retried.
"""

import logging

from vaultkeeper.cluster.client import VaultSysClient
from vaultkeeper.cluster.models import ClusterConfig, RootCredential, ShareSet
from vaultkeeper.cluster.probe import ClusterStateProbe
from vaultkeeper.errors import (
    ConfigurationError,
    PreconditionError,
    ProtocolError,
    VaultAPIError,
)
from vaultkeeper.trustees import Trustee

logger = logging.getLogger(__name__)


class InitializationOrchestrator:
    """Initialize an uninitialized cluster with PGP-encrypted key shares."""

    def __init__(self, client: VaultSysClient, probe: ClusterStateProbe | None = None):
        self.client = client
        self.probe = probe or ClusterStateProbe(client)

    async def initialize(
        self, config: ClusterConfig, trustees: list[Trustee]
    ) -> tuple[RootCredential, ShareSet]:
        """Initialize the cluster, one share per trustee.

        Args:
            config: Share layout; ``config.shares`` must equal ``len(trustees)``
            trustees: Resolved trustees in share order

        Returns:
            Root credential and the encrypted shares, aligned with ``trustees``

        Raises:
            ConfigurationError: If the layout does not match the trustees, or
                Vault rejects the layout
            PreconditionError: If the cluster is already initialized
            ProtocolError: If Vault returns malformed share material
        """
        if config.shares != len(trustees):
            raise ConfigurationError(
                f"Layout asks for {config.shares} shares but {len(trustees)} trustees were resolved"
            )

        status = await self.probe.status()
        if status.initialized:
            raise PreconditionError("Cluster is already initialized, refusing to initialize again")

        logger.info(
            "Initializing cluster %s: %d shares, threshold %d",
            config.name,
            config.shares,
            config.threshold,
        )
        try:
            response = await self.client.init(
                secret_shares=config.shares,
                secret_threshold=config.threshold,
                pgp_keys=[t.vault_key for t in trustees],
            )
        except VaultAPIError as e:
            # Vault is the source of truth if another operator won the race
            if e.mentions("already initialized"):
                raise PreconditionError("Cluster was initialized by someone else") from e
            if e.status_code == 400:
                raise ConfigurationError(f"Vault rejected the init request: {e}") from e
            raise

        if len(response.keys) != config.shares:
            raise ProtocolError(
                f"Vault returned {len(response.keys)} shares, expected {config.shares}"
            )
        if not response.root_token:
            raise ProtocolError("Vault did not return a root token")

        share_set = ShareSet.from_vault(response.keys, response.keys_base64)
        share_set.pair(trustees)

        logger.info("Cluster initialized with %d shares", len(share_set))
        return RootCredential(token=response.root_token), share_set
