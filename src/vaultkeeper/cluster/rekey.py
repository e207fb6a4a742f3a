"""Rekey session state machine.

A rekey replaces the cluster's key shares. It needs ``required`` current
unseal keys, submitted one at a time against a session nonce. This tool
submits one key per run, so a session usually spans several runs: each run
resumes the session Vault reports as started instead of opening a new one.

States::

    NOT_STARTED -> INITIATED -> COLLECTING -> COMPLETE
                       \\____________\\______-> CANCELLED
"""

import logging
from enum import StrEnum

from vaultkeeper.cluster.client import VaultSysClient
from vaultkeeper.cluster.models import ClusterConfig, RekeyStatus, ShareSet
from vaultkeeper.cluster.probe import ClusterStateProbe
from vaultkeeper.errors import (
    ConfigurationError,
    NonceMismatchError,
    PreconditionError,
    ProtocolError,
    VaultAPIError,
)
from vaultkeeper.trustees import Trustee

logger = logging.getLogger(__name__)


class RekeyState(StrEnum):
    """Lifecycle of a rekey session.

    Attributes:
        NOT_STARTED: No session bound yet.
        INITIATED: Session bound to a nonce, no key submitted yet.
        COLLECTING: At least one key submitted, threshold not met.
        COMPLETE: Threshold met; new shares are available.
        CANCELLED: Session aborted by the operator.
    """

    NOT_STARTED = "not_started"
    INITIATED = "initiated"
    COLLECTING = "collecting"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class RekeySession:
    """One rekey session, bound to a single nonce for its whole lifetime.

    Example:
        >>> session = RekeySession(client, config, trustees)
        >>> await session.open()
        >>> if await session.submit(unseal_key):
        ...     pairs = session.shares.pair(trustees)
    """

    def __init__(
        self,
        client: VaultSysClient,
        config: ClusterConfig,
        trustees: list[Trustee],
        probe: ClusterStateProbe | None = None,
    ):
        if config.shares != len(trustees):
            raise ConfigurationError(
                f"Layout asks for {config.shares} shares but {len(trustees)} trustees were resolved"
            )
        self.client = client
        self.config = config
        self.trustees = list(trustees)
        self.probe = probe or ClusterStateProbe(client)

        self.state = RekeyState.NOT_STARTED
        self.nonce = ""
        self.progress = 0
        self.required = 0
        self.shares: ShareSet | None = None
        self.resumed = False

    @property
    def active(self) -> bool:
        return self.state in (RekeyState.INITIATED, RekeyState.COLLECTING)

    def _require_state(self, operation: str, *allowed: RekeyState) -> None:
        if self.state not in allowed:
            raise ProtocolError(f"Cannot {operation} a rekey session in state {self.state}")

    def _bind(self, status: RekeyStatus) -> None:
        self.nonce = status.nonce
        self.progress = status.progress
        self.required = status.required
        self.state = RekeyState.COLLECTING if status.progress > 0 else RekeyState.INITIATED

    def _check_shape(self, status: RekeyStatus) -> None:
        """Refuse to resume a session started for a different trustee set."""
        if status.shares and status.shares != self.config.shares:
            raise ProtocolError(
                f"Running rekey was started for {status.shares} shares, "
                f"this run has {self.config.shares} trustees"
            )
        if status.threshold and status.threshold != self.config.threshold:
            raise ProtocolError(
                f"Running rekey was started with threshold {status.threshold}, "
                f"this run asks for {self.config.threshold}"
            )
        if not status.pgp_fingerprints:
            # Without PGP keys Vault would return the new shares in cleartext
            raise ProtocolError(
                "Running rekey was started without PGP keys; cancel it and start a new one"
            )
        reported = [fp.replace(" ", "").lower() for fp in status.pgp_fingerprints]
        expected = [t.fingerprint for t in self.trustees]
        if reported != expected:
            raise ProtocolError(
                "Running rekey was started with different trustee keys or key order"
            )

    async def open(self, expected_nonce: str | None = None) -> RekeyStatus:
        """Resume the running session, or start a new one.

        Args:
            expected_nonce: Nonce the operator expects to resume, if any

        Returns:
            Vault's status of the bound session

        Raises:
            PreconditionError: If the cluster is not initialized
            NonceMismatchError: If ``expected_nonce`` is not the running session's
            ProtocolError: If the running session has a different share layout
        """
        self._require_state("open", RekeyState.NOT_STARTED)

        init_status = await self.probe.status()
        if not init_status.initialized:
            raise PreconditionError("Cluster is NOT initialized, can't do a rekey operation")

        status = await self.probe.rekey_status()
        if status.started:
            if expected_nonce and expected_nonce != status.nonce:
                raise NonceMismatchError(status.nonce, expected_nonce)
            self._check_shape(status)
            self._bind(status)
            self.resumed = True
            logger.info("Resuming rekey session %s", self.nonce)
            return status

        if expected_nonce:
            raise NonceMismatchError("", expected_nonce)

        return await self.start(initialized=True)

    async def start(self, initialized: bool = False) -> RekeyStatus:
        """Start a new rekey session with this run's share layout.

        Args:
            initialized: Skip the initialization check when the caller already did it

        Raises:
            PreconditionError: If the cluster is not initialized or a rekey is
                already running
            ProtocolError: If Vault does not return a nonce
        """
        self._require_state("start", RekeyState.NOT_STARTED)

        if not initialized:
            init_status = await self.probe.status()
            if not init_status.initialized:
                raise PreconditionError("Cluster is NOT initialized, can't do a rekey operation")

        logger.info(
            "Starting rekey: %d shares, threshold %d",
            self.config.shares,
            self.config.threshold,
        )
        try:
            status = await self.client.rekey_init(
                secret_shares=self.config.shares,
                secret_threshold=self.config.threshold,
                pgp_keys=[t.vault_key for t in self.trustees],
            )
        except VaultAPIError as e:
            if e.mentions("already in progress"):
                raise PreconditionError(
                    "A rekey is already in progress; re-run to resume it"
                ) from e
            if e.status_code == 400:
                raise ConfigurationError(f"Vault rejected the rekey request: {e}") from e
            raise

        if not status.nonce:
            raise ProtocolError("Vault did not return a rekey nonce")

        self._bind(status)
        logger.info("Rekey started with nonce %s", self.nonce)
        return status

    async def submit(self, key_material: str, nonce: str | None = None) -> bool:
        """Submit one current unseal key.

        Args:
            key_material: Unseal key, as obtained by the caller
            nonce: Nonce the caller believes is current; defaults to the session's

        Returns:
            True when the threshold was met and new shares are available

        Raises:
            ConfigurationError: If ``key_material`` is empty
            NonceMismatchError: If ``nonce`` or Vault's answer names another session
            ProtocolError: If the completed response carries the wrong number of shares
        """
        self._require_state("submit to", RekeyState.INITIATED, RekeyState.COLLECTING)

        key_material = (key_material or "").strip()
        if not key_material:
            raise ConfigurationError("An unseal key is required to continue the rekey")
        if nonce is not None and nonce != self.nonce:
            raise NonceMismatchError(self.nonce, nonce)

        response = await self.client.rekey_update(key_material, self.nonce)
        if response.nonce and response.nonce != self.nonce:
            raise NonceMismatchError(self.nonce, response.nonce)

        if not response.complete:
            self.progress = response.progress
            self.required = response.required or self.required
            self.state = RekeyState.COLLECTING
            logger.info("Rekey progress: %d/%d keys", self.progress, self.required)
            return False

        if len(response.keys) != self.config.shares:
            raise ProtocolError(
                f"Vault returned {len(response.keys)} shares, expected {self.config.shares}"
            )
        if not response.pgp_fingerprints:
            raise ProtocolError("Vault returned rekey shares without PGP key fingerprints")
        self.shares = ShareSet.from_vault(
            response.keys, response.keys_base64, response.pgp_fingerprints
        )
        self.shares.pair(self.trustees)
        self.progress = self.required
        self.state = RekeyState.COMPLETE
        logger.info("Rekey complete, %d new shares issued", len(self.shares))
        return True

    async def cancel(self) -> None:
        """Abort the bound session."""
        self._require_state("cancel", RekeyState.INITIATED, RekeyState.COLLECTING)
        await self.client.rekey_cancel()
        logger.info("Rekey session %s cancelled", self.nonce)
        self.state = RekeyState.CANCELLED
