"""Data models for the Vault init and rekey protocol."""

import base64
import binascii
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from vaultkeeper.errors import ConfigurationError, ProtocolError

if TYPE_CHECKING:
    from vaultkeeper.trustees import Trustee

# Vault refuses more shares than this
MAX_SHARES = 255


class ClusterConfig(BaseModel):
    """Share layout for one init or rekey run.

    Attributes:
        shares: Number of key shares (one per trustee)
        threshold: Shares required to reconstruct the master key
        name: Cluster identity used in message text only
    """

    model_config = ConfigDict(frozen=True)

    shares: int
    threshold: int
    name: str

    @classmethod
    def build(cls, shares: int, threshold: int, name: str) -> "ClusterConfig":
        """Validate the layout and build the config.

        Raises:
            ConfigurationError: If the threshold is out of range for the share count
        """
        if shares < 1:
            raise ConfigurationError("At least one trustee is required")
        if shares > MAX_SHARES:
            raise ConfigurationError(f"At most {MAX_SHARES} trustees are supported, got {shares}")
        if threshold < 1:
            raise ConfigurationError(f"Threshold must be at least 1, got {threshold}")
        if threshold > shares:
            raise ConfigurationError(
                f"Threshold ({threshold}) cannot exceed the number of trustees ({shares})"
            )
        if shares > 1 and threshold < 2:
            raise ConfigurationError("Threshold must be at least 2 when there is more than one trustee")
        return cls(shares=shares, threshold=threshold, name=name)


class InitStatus(BaseModel):
    """Response of ``GET /v1/sys/init``."""

    initialized: bool


class RekeyStatus(BaseModel):
    """Response of ``GET /v1/sys/rekey/init`` (and of an incomplete update)."""

    model_config = ConfigDict(populate_by_name=True)

    started: bool = False
    nonce: str = ""
    threshold: int = Field(default=0, alias="t")
    shares: int = Field(default=0, alias="n")
    progress: int = 0
    required: int = 0
    pgp_fingerprints: list[str] | None = None
    backup: bool = False
    verification_required: bool = False


class RekeyUpdateResponse(BaseModel):
    """Response of ``PUT /v1/sys/rekey/update``.

    Vault answers with the session status until the threshold is met, then
    with the new keys and ``complete: true``.
    """

    nonce: str = ""
    complete: bool = False
    progress: int = 0
    required: int = 0
    keys: list[str] = Field(default_factory=list)
    keys_base64: list[str] = Field(default_factory=list)
    pgp_fingerprints: list[str] | None = None


class InitResponse(BaseModel):
    """Response of ``PUT /v1/sys/init``."""

    keys: list[str] = Field(default_factory=list)
    keys_base64: list[str] = Field(default_factory=list)
    root_token: str = ""


class RootCredential(BaseModel):
    """Root token issued once by initialization. Never logged or persisted."""

    model_config = ConfigDict(frozen=True)

    token: SecretStr


class ShareSet(BaseModel):
    """Ordered encrypted key shares, ``shares[i]`` encrypted for trustee ``i``.

    Shares are kept as Vault returns them: hex of the binary OpenPGP message.
    """

    model_config = ConfigDict(frozen=True)

    shares: tuple[str, ...]
    fingerprints: tuple[str, ...] | None = None

    @classmethod
    def from_vault(
        cls,
        keys: list[str],
        keys_base64: list[str] | None = None,
        fingerprints: list[str] | None = None,
    ) -> "ShareSet":
        """Validate share material returned by Vault.

        Raises:
            ProtocolError: If a share is not hex, or disagrees with its base64 twin
        """
        decoded: list[bytes] = []
        for index, share in enumerate(keys):
            try:
                raw = bytes.fromhex(share)
            except ValueError as e:
                raise ProtocolError(f"Share {index + 1} is not valid hex: {e}") from e
            if not raw:
                raise ProtocolError(f"Share {index + 1} is empty")
            decoded.append(raw)

        if keys_base64:
            if len(keys_base64) != len(keys):
                raise ProtocolError(
                    f"Vault returned {len(keys)} hex shares but {len(keys_base64)} base64 shares"
                )
            for index, (raw, twin) in enumerate(zip(decoded, keys_base64)):
                try:
                    twin_raw = base64.b64decode(twin, validate=True)
                except binascii.Error as e:
                    raise ProtocolError(f"Share {index + 1} has invalid base64: {e}") from e
                if twin_raw != raw:
                    raise ProtocolError(f"Share {index + 1} differs between hex and base64 forms")

        normalized = None
        if fingerprints:
            normalized = tuple(fp.replace(" ", "").lower() for fp in fingerprints)
        return cls(shares=tuple(keys), fingerprints=normalized)

    def __len__(self) -> int:
        return len(self.shares)

    def __getitem__(self, index: int) -> str:
        return self.shares[index]

    def pair(self, trustees: "list[Trustee]") -> "list[tuple[str, Trustee]]":
        """Zip shares with the trustees they were encrypted for.

        This is the single place where the share/trustee index alignment is
        checked before anything is sent.

        Raises:
            ProtocolError: If counts differ or Vault reports a fingerprint
                that does not belong to the trustee at that index
        """
        if len(self.shares) != len(trustees):
            raise ProtocolError(
                f"Received {len(self.shares)} shares for {len(trustees)} trustees"
            )
        if self.fingerprints is not None:
            if len(self.fingerprints) != len(trustees):
                raise ProtocolError(
                    f"Received {len(self.fingerprints)} key fingerprints for {len(trustees)} trustees"
                )
            for index, (reported, trustee) in enumerate(zip(self.fingerprints, trustees)):
                if reported != trustee.fingerprint:
                    raise ProtocolError(
                        f"Share {index + 1} was encrypted for key {reported}, "
                        f"expected {trustee.identifier} ({trustee.fingerprint})"
                    )
        return list(zip(self.shares, trustees))
