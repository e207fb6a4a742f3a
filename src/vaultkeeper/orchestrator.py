"""Run orchestration: decide between init, rekey and no-op, then sequence it.

Both active branches end the same way: a validated :class:`ShareSet` aligned
with the resolved trustees, handed to the distributor only after Vault's
answer has been checked and recorded in the report.

Example:
    >>> orchestrator = QuorumOrchestrator.from_config(config)
    >>> report = await orchestrator.run(RunMode.INIT)
    >>> report.distribution.summary()
    '3 shares distributed, 0 failures.'
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

from pydantic import BaseModel

from vaultkeeper.cluster.client import VaultSysClient
from vaultkeeper.cluster.initialize import InitializationOrchestrator
from vaultkeeper.cluster.models import ClusterConfig, RootCredential
from vaultkeeper.cluster.probe import ClusterStateProbe
from vaultkeeper.cluster.rekey import RekeySession
from vaultkeeper.config.schema import VaultkeeperConfig
from vaultkeeper.distribution.distributor import DistributionReport, ShareDistributor
from vaultkeeper.distribution.mailer import Mailer, SMTPMailer
from vaultkeeper.distribution.messages import MessageTemplate
from vaultkeeper.errors import ConfigurationError, NonceMismatchError, PreconditionError
from vaultkeeper.trustees import KeyLookup, TrusteeResolver, check_identifiers, create_key_lookup

logger = logging.getLogger(__name__)

# Called once per rekey run with the bound session; returns one unseal key
UnsealKeyProvider = Callable[[RekeySession], str | Awaitable[str]]


class RunMode(StrEnum):
    """Operation requested by the operator."""

    INIT = "init"
    REKEY = "rekey"


class RunOutcome(StrEnum):
    """What a run actually did."""

    INITIALIZED = "initialized"
    REKEY_IN_PROGRESS = "rekey_in_progress"
    REKEYED = "rekeyed"
    NOTHING_TO_DO = "nothing_to_do"


class RunReport(BaseModel):
    """Result of one orchestrated run.

    Attributes:
        mode: Requested operation
        outcome: What happened
        message: One-line description for the operator
        root_credential: Root token, only after initialization
        nonce: Rekey session nonce, when a session was bound
        progress: Unseal keys submitted to the rekey session so far
        required: Unseal keys the rekey session needs
        resumed: Whether an already running rekey session was resumed
        distribution: Share delivery report, when shares were issued
    """

    mode: RunMode
    outcome: RunOutcome
    message: str
    root_credential: RootCredential | None = None
    nonce: str = ""
    progress: int = 0
    required: int = 0
    resumed: bool = False
    distribution: DistributionReport | None = None

    @property
    def ok(self) -> bool:
        return self.distribution is None or self.distribution.ok


class QuorumOrchestrator:
    """Drive one init or rekey run against a Vault cluster.

    Configuration is fixed at construction; every step runs strictly after
    the previous one has completed.
    """

    def __init__(
        self,
        config: VaultkeeperConfig,
        client: VaultSysClient,
        lookup: KeyLookup,
        mailer: Mailer | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            config: Validated configuration
            client: Vault sys API client
            lookup: Public-key lookup backend for trustees
            mailer: Share transport (required for init and rekey runs)
        """
        self.config = config
        self.client = client
        self.lookup = lookup
        self.mailer = mailer
        self.probe = ClusterStateProbe(client)
        self.resolver = TrusteeResolver(lookup)

    @classmethod
    def from_config(cls, config: VaultkeeperConfig, with_mailer: bool = True) -> "QuorumOrchestrator":
        """Build an orchestrator with real Vault, key lookup and SMTP backends.

        Raises:
            ConfigurationError: If a required setting is missing
        """
        mailer = SMTPMailer(config.smtp) if with_mailer else None
        client = VaultSysClient(
            vault_addr=config.vault.address,
            vault_token=config.vault.token,
            vault_namespace=config.vault.namespace,
            timeout=config.vault.timeout,
        )
        if config.keys.provider == "keybase":
            lookup = create_key_lookup(
                "keybase", base_url=config.keys.keybase_url, timeout=config.keys.timeout
            )
        else:
            lookup = create_key_lookup(config.keys.provider, key_dir=config.keys.key_dir)
        return cls(config, client, lookup, mailer)

    def layout(self) -> ClusterConfig:
        """Validate trustees and threshold without any network call.

        Raises:
            ConfigurationError: If the trustee list or threshold is invalid
        """
        identifiers = check_identifiers(self.config.cluster.trustees)
        return ClusterConfig.build(
            shares=len(identifiers),
            threshold=self.config.cluster.threshold,
            name=self.config.cluster_name,
        )

    async def run(
        self,
        mode: RunMode,
        unseal_key: UnsealKeyProvider | None = None,
        nonce: str | None = None,
        on_credential: Callable[[RootCredential], None] | None = None,
    ) -> RunReport:
        """Run one init or rekey step.

        Args:
            mode: Requested operation
            unseal_key: Supplies one current unseal key (rekey only)
            nonce: Rekey session the operator expects to resume
            on_credential: Receives the root credential as soon as Vault issues
                it, before any share is sent

        Returns:
            Report of what happened

        Raises:
            VaultkeeperError: Any fatal configuration, precondition,
                resolution, transport or protocol error
        """
        layout = self.layout()
        if self.mailer is None:
            raise ConfigurationError("A mail transport is required to distribute shares")
        if mode == RunMode.REKEY and unseal_key is None:
            raise ConfigurationError("A rekey run needs a way to obtain an unseal key")
        if mode == RunMode.INIT and nonce:
            raise ConfigurationError("A nonce only applies to rekey runs")

        if self.config.smtp.verify_relay:
            await self.mailer.verify()

        status = await self.probe.status()
        if mode == RunMode.REKEY and not status.initialized:
            raise PreconditionError("Cluster is NOT initialized, can't do a rekey operation")
        if mode == RunMode.INIT and status.initialized:
            logger.info("Cluster is already initialized, nothing to do")
            return RunReport(
                mode=mode,
                outcome=RunOutcome.NOTHING_TO_DO,
                message="Cluster is already initialized, nothing to do.",
            )

        trustees = await self.resolver.resolve(self.config.cluster.trustees)
        distributor = ShareDistributor(self.mailer, MessageTemplate.from_config(self.config.message))

        if mode == RunMode.INIT:
            initializer = InitializationOrchestrator(self.client, self.probe)
            credential, share_set = await initializer.initialize(layout, trustees)
            if on_credential is not None:
                on_credential(credential)
            report = RunReport(
                mode=mode,
                outcome=RunOutcome.INITIALIZED,
                message=f"Cluster was initialized with {len(share_set)} shares.",
                root_credential=credential,
            )
            report.distribution = await distributor.distribute(
                share_set, trustees, layout.name, action="initialization"
            )
            return report

        session = RekeySession(self.client, layout, trustees, self.probe)
        await session.open(expected_nonce=nonce)

        key_material = unseal_key(session)
        if inspect.isawaitable(key_material):
            key_material = await key_material
        complete = await session.submit(key_material)

        report = RunReport(
            mode=mode,
            outcome=RunOutcome.REKEYED if complete else RunOutcome.REKEY_IN_PROGRESS,
            message=(
                f"Rekey complete, {len(session.shares)} new shares issued."
                if complete
                else f"Rekey in progress: {session.progress}/{session.required} keys submitted."
            ),
            nonce=session.nonce,
            progress=session.progress,
            required=session.required,
            resumed=session.resumed,
        )
        if complete:
            report.distribution = await distributor.distribute(
                session.shares, trustees, layout.name, action="rekey"
            )
        return report

    async def cancel_rekey(self, nonce: str | None = None) -> str:
        """Cancel the running rekey session.

        Args:
            nonce: If given, only cancel when it names the running session

        Returns:
            Nonce of the cancelled session

        Raises:
            PreconditionError: If no rekey is running
            NonceMismatchError: If ``nonce`` names another session
        """
        status = await self.probe.rekey_status()
        if not status.started:
            raise PreconditionError("No rekey is in progress")
        if nonce and nonce != status.nonce:
            raise NonceMismatchError(status.nonce, nonce)
        await self.client.rekey_cancel()
        logger.info("Cancelled rekey session %s", status.nonce)
        return status.nonce

    async def close(self) -> None:
        await self.client.close()
        await self.lookup.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
