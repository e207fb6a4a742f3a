"""Tests for the Vault sys API client."""

import json

import httpx
import pytest
import respx

from vaultkeeper.cluster.client import VaultSysClient
from vaultkeeper.errors import ProtocolError, TransportError, VaultAPIError


@pytest.fixture
def client(vault_addr):
    return VaultSysClient(vault_addr=vault_addr)


@pytest.mark.asyncio
async def test_init_status(router, client, vault_addr):
    router.get(f"{vault_addr}/v1/sys/init").mock(
        return_value=httpx.Response(200, json={"initialized": True})
    )

    status = await client.init_status()
    await client.close()

    assert status.initialized is True


@pytest.mark.asyncio
async def test_init_sends_layout_and_keys(router, client, vault_addr):
    route = router.put(f"{vault_addr}/v1/sys/init").mock(
        return_value=httpx.Response(
            200, json={"keys": ["c1", "c2"], "keys_base64": ["wQ==", "wg=="], "root_token": "s.x"}
        )
    )

    response = await client.init(secret_shares=2, secret_threshold=2, pgp_keys=["k1", "k2"])
    await client.close()

    assert json.loads(route.calls.last.request.content) == {
        "secret_shares": 2,
        "secret_threshold": 2,
        "pgp_keys": ["k1", "k2"],
    }
    assert response.keys == ["c1", "c2"]
    assert response.root_token == "s.x"


@pytest.mark.asyncio
async def test_rekey_init_disables_backup_and_verification(router, client, vault_addr):
    route = router.put(f"{vault_addr}/v1/sys/rekey/init").mock(
        return_value=httpx.Response(
            200, json={"started": True, "nonce": "abc", "t": 2, "n": 3, "required": 3}
        )
    )

    status = await client.rekey_init(secret_shares=3, secret_threshold=2, pgp_keys=["a", "b", "c"])
    await client.close()

    body = json.loads(route.calls.last.request.content)
    assert body["backup"] is False
    assert body["require_verification"] is False
    assert status.nonce == "abc"
    assert status.shares == 3


@pytest.mark.asyncio
async def test_rekey_update_sends_key_and_nonce(router, client, vault_addr):
    route = router.put(f"{vault_addr}/v1/sys/rekey/update").mock(
        return_value=httpx.Response(
            200, json={"nonce": "abc", "started": True, "progress": 1, "required": 2}
        )
    )

    response = await client.rekey_update("unseal-key", "abc")
    await client.close()

    assert json.loads(route.calls.last.request.content) == {"key": "unseal-key", "nonce": "abc"}
    assert response.complete is False
    assert response.progress == 1


@pytest.mark.asyncio
async def test_rekey_cancel_accepts_no_content(router, client, vault_addr):
    route = router.delete(f"{vault_addr}/v1/sys/rekey/init").mock(
        return_value=httpx.Response(204)
    )

    await client.rekey_cancel()
    await client.close()

    assert route.called


@pytest.mark.asyncio
async def test_error_status_raises_vault_api_error(router, client, vault_addr):
    router.put(f"{vault_addr}/v1/sys/init").mock(
        return_value=httpx.Response(400, json={"errors": ["Vault is already initialized"]})
    )

    with pytest.raises(VaultAPIError) as exc_info:
        await client.init(secret_shares=1, secret_threshold=1, pgp_keys=["k"])
    await client.close()

    assert exc_info.value.status_code == 400
    assert exc_info.value.mentions("already initialized")
    assert "/v1/sys/init" in str(exc_info.value)


@pytest.mark.asyncio
async def test_error_without_json_body(router, client, vault_addr):
    router.get(f"{vault_addr}/v1/sys/init").mock(return_value=httpx.Response(503, text="sealed"))

    with pytest.raises(VaultAPIError, match="no error detail"):
        await client.init_status()
    await client.close()


@pytest.mark.asyncio
async def test_connection_error_raises_transport_error(router, client, vault_addr):
    router.get(f"{vault_addr}/v1/sys/init").mock(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(TransportError, match="Failed to connect to Vault"):
        await client.init_status()
    await client.close()


@pytest.mark.asyncio
async def test_non_object_body_raises_protocol_error(router, client, vault_addr):
    router.get(f"{vault_addr}/v1/sys/init").mock(return_value=httpx.Response(200, json=[1, 2]))

    with pytest.raises(ProtocolError):
        await client.init_status()
    await client.close()


@pytest.mark.asyncio
@respx.mock
async def test_token_and_namespace_headers(monkeypatch, vault_addr):
    monkeypatch.setenv("VAULT_TOKEN", "s.from-env")
    route = respx.get(f"{vault_addr}/v1/sys/init").mock(
        return_value=httpx.Response(200, json={"initialized": False})
    )

    async with VaultSysClient(vault_addr=vault_addr, vault_namespace="team-a") as client:
        await client.init_status()

    headers = route.calls.last.request.headers
    assert headers["X-Vault-Token"] == "s.from-env"
    assert headers["X-Vault-Namespace"] == "team-a"


def test_no_token_no_header(monkeypatch, vault_addr):
    monkeypatch.delenv("VAULT_TOKEN", raising=False)
    client = VaultSysClient(vault_addr=vault_addr)

    assert "X-Vault-Token" not in client.client.headers


@pytest.mark.asyncio
async def test_unexpected_field_type_raises_protocol_error(router, client, vault_addr):
    router.get(f"{vault_addr}/v1/sys/init").mock(
        return_value=httpx.Response(200, json={"initialized": "maybe"})
    )

    with pytest.raises(ProtocolError, match="/v1/sys/init"):
        await client.init_status()
    await client.close()


@pytest.mark.asyncio
async def test_null_share_list_raises_protocol_error(router, client, vault_addr):
    router.put(f"{vault_addr}/v1/sys/init").mock(
        return_value=httpx.Response(200, json={"keys": ["c1"], "keys_base64": None, "root_token": "s.x"})
    )

    with pytest.raises(ProtocolError, match="InitResponse"):
        await client.init(secret_shares=1, secret_threshold=1, pgp_keys=["k"])
    await client.close()
