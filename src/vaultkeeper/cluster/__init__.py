"""Vault control-plane protocol: state probe, initialization and rekey.

- Thin async client for the ``sys/init`` and ``sys/rekey`` endpoints
- Read-only state probe deciding between init, rekey and no-op
- One-shot initialization returning the root credential and encrypted shares
- Resumable rekey session state machine
"""

from .client import VaultSysClient
from .initialize import InitializationOrchestrator
from .models import (
    MAX_SHARES,
    ClusterConfig,
    InitResponse,
    InitStatus,
    RekeyStatus,
    RekeyUpdateResponse,
    RootCredential,
    ShareSet,
)
from .probe import ClusterStateProbe
from .rekey import RekeySession, RekeyState

__all__ = [
    "MAX_SHARES",
    "ClusterConfig",
    "ClusterStateProbe",
    "InitResponse",
    "InitStatus",
    "InitializationOrchestrator",
    "RekeySession",
    "RekeyState",
    "RekeyStatus",
    "RekeyUpdateResponse",
    "RootCredential",
    "ShareSet",
    "VaultSysClient",
]
