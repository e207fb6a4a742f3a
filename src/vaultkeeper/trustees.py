"""Trustee public-key resolution.

A trustee is an operator who receives exactly one encrypted key share. The
operator names trustees by identifier (a Keybase username or a key file
path); this module turns that ordered list into resolved public keys.

Resolution is all-or-nothing: a partial trustee list would shift the
share/trustee index alignment, so any missing key aborts the whole run
before Vault generates secret material.

Example:
    >>> lookup = create_key_lookup("keybase")
    >>> resolver = TrusteeResolver(lookup)
    >>> trustees = await resolver.resolve(["keybase:alice", "keybase:bob"])
    >>> [t.identities for t in trustees]
    [['alice@example.com'], ['bob@example.com']]
"""

import logging
from abc import ABC, abstractmethod
from collections import Counter
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict

from vaultkeeper import pgp
from vaultkeeper.errors import ConfigurationError, ResolutionError, TransportError

logger = logging.getLogger(__name__)

KEYBASE_PREFIX = "keybase:"


class Trustee(BaseModel):
    """A trustee with resolved public-key material.

    Attributes:
        identifier: Identifier as supplied by the operator
        public_key: Binary OpenPGP public key
        fingerprint: Lowercase hex key fingerprint
    """

    model_config = ConfigDict(frozen=True)

    identifier: str
    public_key: bytes
    fingerprint: str

    @classmethod
    def from_key_blob(cls, identifier: str, blob: str | bytes) -> "Trustee":
        """Build a trustee from armored or binary key material.

        Raises:
            ValueError: If the blob is not a parsable OpenPGP key
        """
        key = pgp.load_public_key(blob)
        return cls(
            identifier=identifier,
            public_key=pgp.serialize_key(key),
            fingerprint=pgp.fingerprint(key),
        )

    @property
    def identities(self) -> list[str]:
        """E-mail addresses embedded in the public key's user IDs."""
        return pgp.key_identities(pgp.load_public_key(self.public_key))

    @property
    def vault_key(self) -> str:
        """Base64 binary key, the form Vault expects in ``pgp_keys``."""
        return pgp.encode_for_vault(self.public_key)


class KeyLookup(ABC):
    """Abstract base class for public-key lookup services."""

    @abstractmethod
    async def fetch(self, identifiers: list[str]) -> dict[str, str | bytes]:
        """Fetch key material for each identifier.

        Args:
            identifiers: Trustee identifiers

        Returns:
            Mapping of identifier to armored or binary key. Identifiers with
            no key are absent from the mapping.
        """
        pass

    async def close(self) -> None:
        """Release any held resources."""


class KeybaseKeyLookup(KeyLookup):
    """Fetch primary public-key bundles from the Keybase user lookup API.

    All usernames are looked up in a single request. An optional
    ``keybase:`` prefix on identifiers is accepted and stripped.
    """

    def __init__(
        self,
        base_url: str = "https://keybase.io",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize Keybase lookup.

        Args:
            base_url: Keybase API base URL
            timeout: Request timeout in seconds
            client: Optional pre-built HTTP client
        """
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @staticmethod
    def username(identifier: str) -> str:
        name = identifier.strip()
        if name.startswith(KEYBASE_PREFIX):
            name = name[len(KEYBASE_PREFIX) :]
        return name

    async def fetch(self, identifiers: list[str]) -> dict[str, str | bytes]:
        if not identifiers:
            return {}

        usernames = [self.username(i) for i in identifiers]
        params = {"usernames": ",".join(usernames), "fields": "public_keys"}

        try:
            response = await self.client.get(
                f"{self.base_url}/_/api/1.0/user/lookup.json", params=params
            )
        except httpx.RequestError as e:
            raise TransportError(f"Failed to connect to Keybase: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(
                f"Keybase returned a non-JSON response ({response.status_code})"
            ) from e

        status = (data.get("status") or {}).get("name", "")
        if status != "OK":
            raise ResolutionError(
                f"Keybase lookup failed with status {status or response.status_code!r}",
                missing=list(identifiers),
            )

        them = data.get("them") or []
        found: dict[str, str | bytes] = {}
        for index, identifier in enumerate(identifiers):
            entry = them[index] if index < len(them) else None
            bundle = (
                ((entry or {}).get("public_keys") or {}).get("primary") or {}
            ).get("bundle", "")
            if bundle:
                found[identifier] = bundle
            else:
                logger.warning("Keybase has no primary key for %s", usernames[index])

        return found

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class FileKeyLookup(KeyLookup):
    """Read public keys from local files.

    Identifiers are file paths, resolved against ``key_dir`` when relative.
    Both armored and binary keys are accepted.
    """

    def __init__(self, key_dir: str | None = None):
        self.key_dir = Path(key_dir).expanduser() if key_dir else None

    def _path(self, identifier: str) -> Path:
        path = Path(identifier).expanduser()
        if self.key_dir and not path.is_absolute():
            path = self.key_dir / path
        return path

    async def fetch(self, identifiers: list[str]) -> dict[str, str | bytes]:
        found: dict[str, str | bytes] = {}
        for identifier in identifiers:
            path = self._path(identifier)
            if not path.is_file():
                logger.warning("Key file not found: %s", path)
                continue
            found[identifier] = path.read_bytes()
        return found


def create_key_lookup(provider: str = "keybase", **kwargs: Any) -> KeyLookup:
    """Create a key lookup instance.

    Args:
        provider: Lookup type (keybase, file)
        kwargs: Lookup-specific configuration

    Returns:
        KeyLookup instance

    Raises:
        ConfigurationError: If provider is unknown
    """
    if provider == "keybase":
        return KeybaseKeyLookup(**kwargs)
    elif provider == "file":
        return FileKeyLookup(**kwargs)
    else:
        raise ConfigurationError(f"Unknown key provider: {provider}. Use 'keybase' or 'file'")


def check_identifiers(identifiers: list[str]) -> list[str]:
    """Validate a trustee identifier list without touching the network.

    Returns:
        Identifiers stripped of surrounding whitespace

    Raises:
        ConfigurationError: If the list is empty or names a trustee twice
    """
    cleaned = [i.strip() for i in identifiers if i and i.strip()]
    if not cleaned:
        raise ConfigurationError("At least one trustee identifier is required")

    duplicates = [name for name, count in Counter(cleaned).items() if count > 1]
    if duplicates:
        raise ConfigurationError(
            f"Trustees must be distinct, listed more than once: {', '.join(duplicates)}"
        )
    return cleaned


class TrusteeResolver:
    """Resolve trustee identifiers to public keys, all-or-nothing."""

    def __init__(self, lookup: KeyLookup):
        self.lookup = lookup

    async def resolve(self, identifiers: list[str]) -> list[Trustee]:
        """Resolve every identifier, preserving order.

        Args:
            identifiers: Trustee identifiers in share order

        Returns:
            One trustee per identifier, in input order

        Raises:
            ConfigurationError: If the identifier list is empty or has duplicates, or
                two identifiers resolve to the same key
            ResolutionError: If any identifier has no usable key
            TransportError: If the lookup service is unreachable
        """
        identifiers = check_identifiers(identifiers)
        material = await self.lookup.fetch(identifiers)

        trustees: list[Trustee] = []
        missing: list[str] = []
        for identifier in identifiers:
            blob = material.get(identifier)
            if not blob:
                missing.append(identifier)
                continue
            try:
                trustee = Trustee.from_key_blob(identifier, blob)
                identities = trustee.identities
            except (ValueError, AttributeError) as e:
                # pgpy raises AttributeError for user IDs it cannot split
                logger.error("Unusable key for %s: %s", identifier, e)
                missing.append(identifier)
                continue
            if not identities:
                logger.error("Key for %s declares no e-mail identity", identifier)
                missing.append(identifier)
                continue
            trustees.append(trustee)

        if missing:
            raise ResolutionError(
                f"Unable to resolve a usable public key for: {', '.join(missing)}",
                missing=missing,
            )

        by_fingerprint: dict[str, list[str]] = {}
        for trustee in trustees:
            by_fingerprint.setdefault(trustee.fingerprint, []).append(trustee.identifier)
        shared = [names for names in by_fingerprint.values() if len(names) > 1]
        if shared:
            raise ConfigurationError(
                "Trustees must hold distinct keys, same key for: "
                + "; ".join(", ".join(names) for names in shared)
            )

        for trustee in trustees:
            logger.info(
                "Resolved trustee %s (fingerprint %s, %d identities)",
                trustee.identifier,
                trustee.fingerprint,
                len(trustee.identities),
            )
        return trustees
