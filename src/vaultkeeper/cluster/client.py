"""HashiCorp Vault sys API client for init and rekey.

Only the unauthenticated ``sys/init`` and ``sys/rekey`` endpoints are used.
A token and namespace are still sent when configured, for clusters behind
proxies that require them.
"""

import logging
import os
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from vaultkeeper.cluster.models import (
    InitResponse,
    InitStatus,
    RekeyStatus,
    RekeyUpdateResponse,
)
from vaultkeeper.errors import ProtocolError, TransportError, VaultAPIError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class VaultSysClient:
    """Thin async client for the Vault control-plane operations.

    Every method performs exactly one HTTP call. Connection failures raise
    :class:`TransportError`, non-success statuses raise
    :class:`VaultAPIError`, and undecodable bodies raise
    :class:`ProtocolError`.
    """

    def __init__(
        self,
        vault_addr: str = "http://127.0.0.1:8200",
        vault_token: str | None = None,
        vault_namespace: str | None = None,
        timeout: float = 30.0,
    ):
        """Initialize Vault client.

        Args:
            vault_addr: Vault server address
            vault_token: Vault token (or use VAULT_TOKEN env var)
            vault_namespace: Vault namespace (enterprise feature)
            timeout: Request timeout in seconds
        """
        self.vault_addr = vault_addr.rstrip("/")
        self.vault_token = vault_token or os.getenv("VAULT_TOKEN")
        self.vault_namespace = vault_namespace

        self.client = httpx.AsyncClient(
            base_url=self.vault_addr,
            headers=self._get_headers(),
            timeout=timeout,
        )

    def _get_headers(self) -> dict[str, str]:
        """Get HTTP headers for Vault requests."""
        headers: dict[str, str] = {}
        if self.vault_token:
            headers["X-Vault-Token"] = self.vault_token
        if self.vault_namespace:
            headers["X-Vault-Namespace"] = self.vault_namespace
        return headers

    async def _request(
        self, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            response = await self.client.request(method, path, json=payload)
        except httpx.RequestError as e:
            raise TransportError(f"Failed to connect to Vault at {self.vault_addr}: {e}") from e

        if response.status_code == 204:
            return {}

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            raise VaultAPIError.from_body(response.status_code, body, path=path)

        if not isinstance(body, dict):
            raise ProtocolError(f"Vault returned an undecodable body for {method} {path}")
        return body

    @staticmethod
    def _parse(model: type[ModelT], data: dict[str, Any], path: str) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(
                f"Vault returned an unexpected {model.__name__} body for {path}: {e}"
            ) from e

    async def init_status(self) -> InitStatus:
        """``GET /v1/sys/init``."""
        data = await self._request("GET", "/v1/sys/init")
        return self._parse(InitStatus, data, "/v1/sys/init")

    async def init(self, secret_shares: int, secret_threshold: int, pgp_keys: list[str]) -> InitResponse:
        """``PUT /v1/sys/init``.

        Args:
            secret_shares: Number of key shares to generate
            secret_threshold: Shares required to unseal
            pgp_keys: Base64 binary public keys, one per share, in share order

        Returns:
            Encrypted shares and the root token
        """
        payload = {
            "secret_shares": secret_shares,
            "secret_threshold": secret_threshold,
            "pgp_keys": pgp_keys,
        }
        data = await self._request("PUT", "/v1/sys/init", payload)
        return self._parse(InitResponse, data, "/v1/sys/init")

    async def rekey_status(self) -> RekeyStatus:
        """``GET /v1/sys/rekey/init``."""
        data = await self._request("GET", "/v1/sys/rekey/init")
        return self._parse(RekeyStatus, data, "/v1/sys/rekey/init")

    async def rekey_init(
        self, secret_shares: int, secret_threshold: int, pgp_keys: list[str]
    ) -> RekeyStatus:
        """``PUT /v1/sys/rekey/init``; starts a rekey session and returns its status."""
        payload = {
            "secret_shares": secret_shares,
            "secret_threshold": secret_threshold,
            "pgp_keys": pgp_keys,
            "backup": False,
            "require_verification": False,
        }
        data = await self._request("PUT", "/v1/sys/rekey/init", payload)
        return self._parse(RekeyStatus, data, "/v1/sys/rekey/init")

    async def rekey_update(self, key: str, nonce: str) -> RekeyUpdateResponse:
        """``PUT /v1/sys/rekey/update``; submits one current unseal key."""
        data = await self._request("PUT", "/v1/sys/rekey/update", {"key": key, "nonce": nonce})
        return self._parse(RekeyUpdateResponse, data, "/v1/sys/rekey/update")

    async def rekey_cancel(self) -> None:
        """``DELETE /v1/sys/rekey/init``; aborts the running rekey session."""
        await self._request("DELETE", "/v1/sys/rekey/init")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
