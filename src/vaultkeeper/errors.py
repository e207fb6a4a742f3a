"""Exception hierarchy for vaultkeeper.

Library code raises these; only the CLI turns them into messages and exit
codes. Every error except :class:`DeliveryError` is fatal for a run.
"""

from typing import Any


class VaultkeeperError(Exception):
    """Base class for all vaultkeeper errors."""

    exit_code: int = 1


class ConfigurationError(VaultkeeperError):
    """Missing or invalid operator input (trustees, threshold, config file)."""


class PreconditionError(VaultkeeperError):
    """The cluster is not in the state the requested operation needs."""


class ResolutionError(VaultkeeperError):
    """One or more trustee identifiers could not be resolved to a public key.

    Attributes:
        missing: Identifiers that had no usable key
    """

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = list(missing or [])


class TransportError(VaultkeeperError):
    """An external service could not be reached or answered with an error."""


class VaultAPIError(TransportError):
    """Vault answered with a non-success HTTP status.

    Attributes:
        status_code: HTTP status returned by Vault
        errors: Error strings from Vault's ``{"errors": [...]}`` body
    """

    def __init__(self, status_code: int, errors: list[str] | None = None, path: str = ""):
        self.status_code = status_code
        self.errors = list(errors or [])
        self.path = path
        detail = "; ".join(self.errors) or "no error detail"
        super().__init__(f"Vault error {status_code} on {path or 'request'}: {detail}")

    def mentions(self, *needles: str) -> bool:
        """Check whether any Vault error message contains one of ``needles``."""
        text = " ".join(self.errors).lower()
        return any(needle.lower() in text for needle in needles)

    @classmethod
    def from_body(cls, status_code: int, body: Any, path: str = "") -> "VaultAPIError":
        errors: list[str] = []
        if isinstance(body, dict):
            errors = [str(e) for e in body.get("errors") or []]
        return cls(status_code, errors, path=path)


class ProtocolError(VaultkeeperError):
    """A response broke the init/rekey protocol (bad shape, bad share encoding)."""


class NonceMismatchError(ProtocolError):
    """A rekey submission or response used a nonce other than the session's."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Rekey nonce mismatch: session uses {expected!r}, got {actual!r}"
        )


class DeliveryError(VaultkeeperError):
    """A single share message could not be delivered.

    Distribution records these per recipient instead of aborting.
    """

    def __init__(self, recipient: str, reason: str):
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"Failed to deliver to {recipient}: {reason}")
