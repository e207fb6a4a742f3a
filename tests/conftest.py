"""Pytest configuration and shared fixtures.

Provides real OpenPGP keys (generated once per session), a stateful stub of
the Vault sys API mounted on respx, and in-memory doubles for key lookup and
mail delivery.
"""

import base64
import json
import secrets

import httpx
import pgpy
import pytest
import respx
from pgpy.constants import (
    CompressionAlgorithm,
    HashAlgorithm,
    KeyFlags,
    PubKeyAlgorithm,
    SymmetricKeyAlgorithm,
)

from vaultkeeper import pgp
from vaultkeeper.config.schema import VaultkeeperConfig
from vaultkeeper.distribution.mailer import Mailer
from vaultkeeper.distribution.messages import ShareMessage
from vaultkeeper.errors import DeliveryError
from vaultkeeper.trustees import KeyLookup, Trustee

VAULT_ADDR = "http://vault.test:8200"
KEYBASE_URL = "https://keybase.test"

KEY_PREFS = {
    "usage": {KeyFlags.Sign, KeyFlags.EncryptCommunications, KeyFlags.EncryptStorage},
    "hashes": [HashAlgorithm.SHA256],
    "ciphers": [SymmetricKeyAlgorithm.AES256],
    "compression": [CompressionAlgorithm.Uncompressed],
}


def make_key(name: str, *emails: str) -> pgpy.PGPKey:
    """Generate a private key with one user ID per e-mail (or a name-only UID)."""
    key = pgpy.PGPKey.new(PubKeyAlgorithm.RSAEncryptOrSign, 2048)
    if not emails:
        key.add_uid(pgpy.PGPUID.new(name), **KEY_PREFS)
    for email in emails:
        key.add_uid(pgpy.PGPUID.new(name, email=email), **KEY_PREFS)
    return key


def decrypt_share(private_key: pgpy.PGPKey, share_hex: str) -> str:
    """Decrypt a hex share the way a trustee would (``xxd -r -p | gpg``)."""
    message = pgpy.PGPMessage.from_blob(bytes.fromhex(share_hex))
    return private_key.decrypt(message).message


@pytest.fixture(scope="session")
def private_keys() -> dict[str, pgpy.PGPKey]:
    """Private keys for the test trustees, keyed by identifier."""
    return {
        "alice": make_key("Alice", "alice@example.com"),
        "bob": make_key("Bob", "bob@example.com"),
        "carol": make_key("Carol", "carol@example.com"),
        "dave": make_key("Dave", "a@x.com", "b@x.com"),
        "nomail": make_key("No Mail"),
    }


@pytest.fixture(scope="session")
def armored_keys(private_keys) -> dict[str, str]:
    """ASCII-armored public keys, as a lookup service returns them."""
    return {name: str(key.pubkey) for name, key in private_keys.items()}


@pytest.fixture
def make_trustees(armored_keys):
    """Build resolved trustees for the given identifiers."""

    def _make(*identifiers: str) -> list[Trustee]:
        return [Trustee.from_key_blob(i, armored_keys[i]) for i in identifiers]

    return _make


class StaticKeyLookup(KeyLookup):
    """Key lookup answering from a dict."""

    def __init__(self, keys: dict[str, str]):
        self.keys = keys
        self.calls: list[list[str]] = []

    async def fetch(self, identifiers):
        self.calls.append(list(identifiers))
        return {i: self.keys[i] for i in identifiers if i in self.keys}


class RecordingMailer(Mailer):
    """Mailer that records messages and fails for chosen recipients."""

    def __init__(self, fail_for: set[str] | None = None):
        self.fail_for = set(fail_for or ())
        self.sent: list[ShareMessage] = []
        self.attempted: list[str] = []
        self.verified = False

    async def send(self, message: ShareMessage) -> None:
        self.attempted.append(message.recipient)
        if message.recipient in self.fail_for:
            raise DeliveryError(message.recipient, "550 mailbox unavailable")
        self.sent.append(message)

    async def verify(self) -> None:
        self.verified = True


@pytest.fixture
def vault_addr() -> str:
    return VAULT_ADDR


@pytest.fixture
def keybase_url() -> str:
    return KEYBASE_URL


@pytest.fixture
def static_lookup(armored_keys) -> StaticKeyLookup:
    return StaticKeyLookup(dict(armored_keys))


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def mailer_factory():
    """Build a recording mailer that rejects the given recipients."""
    return RecordingMailer


@pytest.fixture
def decrypt():
    return decrypt_share


@pytest.fixture
def default_config() -> VaultkeeperConfig:
    """Three trustees, threshold two, against the stub Vault."""
    return VaultkeeperConfig(
        vault={"address": VAULT_ADDR},
        smtp={"from_address": "vault-ops@example.com", "verify_relay": False},
        cluster={"trustees": ["alice", "bob", "carol"], "threshold": 2, "name": "prod-vault"},
    )


class FakeVault:
    """In-memory Vault sys API speaking the init/rekey protocol over respx.

    Shares are real OpenPGP messages encrypted under the submitted keys, so
    tests can check that each trustee can decrypt exactly their own share.
    """

    def __init__(self, initialized: bool = False):
        self.initialized = initialized
        self.rekey: dict | None = None
        self.init_requests: list[dict] = []
        self.rekey_init_requests: list[dict] = []
        self.update_requests: list[dict] = []
        self.cancelled = 0
        self.generation = 0
        self.issued: list[str] = []

    # -- helpers -------------------------------------------------------

    def start_rekey(self, nonce: str, pgp_keys: list[str], threshold: int, required: int = 2, progress: int = 0):
        """Put the cluster in a started rekey session."""
        self.initialized = True
        self.rekey = {
            "nonce": nonce,
            "pgp_keys": pgp_keys,
            "t": threshold,
            "n": len(pgp_keys),
            "progress": progress,
            "required": required,
        }

    def _encrypt_shares(self, pgp_keys: list[str]) -> tuple[list[str], list[str], list[str]]:
        self.generation += 1
        hex_keys, b64_keys, fingerprints, cleartexts = [], [], [], []
        for index, encoded in enumerate(pgp_keys):
            public = pgp.load_public_key(base64.b64decode(encoded))
            cleartext = f"gen{self.generation}-share{index + 1}-{secrets.token_hex(8)}"
            raw = bytes(public.encrypt(pgpy.PGPMessage.new(cleartext)))
            hex_keys.append(raw.hex())
            b64_keys.append(base64.b64encode(raw).decode())
            fingerprints.append(pgp.fingerprint(public))
            cleartexts.append(cleartext)
        self.issued = cleartexts
        return hex_keys, b64_keys, fingerprints

    def _rekey_status(self) -> dict:
        if self.rekey is None:
            return {"started": False, "nonce": "", "t": 0, "n": 0, "progress": 0, "required": 2,
                    "pgp_fingerprints": None, "backup": False, "verification_required": False}
        fingerprints = [
            pgp.fingerprint(pgp.load_public_key(base64.b64decode(k))) for k in self.rekey["pgp_keys"]
        ]
        return {
            "started": True,
            "nonce": self.rekey["nonce"],
            "t": self.rekey["t"],
            "n": self.rekey["n"],
            "progress": self.rekey["progress"],
            "required": self.rekey["required"],
            "pgp_fingerprints": fingerprints,
            "backup": False,
            "verification_required": False,
        }

    # -- handlers ------------------------------------------------------

    def get_init(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"initialized": self.initialized})

    def put_init(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.init_requests.append(body)
        if self.initialized:
            return httpx.Response(400, json={"errors": ["Vault is already initialized"]})
        shares, threshold = body["secret_shares"], body["secret_threshold"]
        if threshold > shares or (shares > 1 and threshold < 2):
            return httpx.Response(400, json={"errors": ["invalid seal configuration"]})
        keys, keys_b64, _ = self._encrypt_shares(body["pgp_keys"])
        self.initialized = True
        return httpx.Response(200, json={"keys": keys, "keys_base64": keys_b64, "root_token": "s.root-token"})

    def get_rekey(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=self._rekey_status())

    def put_rekey(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.rekey_init_requests.append(body)
        if not self.initialized:
            return httpx.Response(400, json={"errors": ["server is not yet initialized"]})
        if self.rekey is not None:
            return httpx.Response(400, json={"errors": ["rekey already in progress"]})
        self.start_rekey(
            nonce=f"nonce-{secrets.token_hex(4)}",
            pgp_keys=body["pgp_keys"],
            threshold=body["secret_threshold"],
        )
        return httpx.Response(200, json=self._rekey_status())

    def delete_rekey(self, request: httpx.Request) -> httpx.Response:
        self.cancelled += 1
        self.rekey = None
        return httpx.Response(204)

    def put_update(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.update_requests.append(body)
        if self.rekey is None:
            return httpx.Response(400, json={"errors": ["no rekey in progress"]})
        if body["nonce"] != self.rekey["nonce"]:
            return httpx.Response(400, json={"errors": ["incorrect nonce supplied"]})
        self.rekey["progress"] += 1
        if self.rekey["progress"] < self.rekey["required"]:
            return httpx.Response(200, json=self._rekey_status())
        keys, keys_b64, fingerprints = self._encrypt_shares(self.rekey["pgp_keys"])
        nonce = self.rekey["nonce"]
        self.rekey = None
        return httpx.Response(
            200,
            json={
                "nonce": nonce,
                "complete": True,
                "keys": keys,
                "keys_base64": keys_b64,
                "pgp_fingerprints": fingerprints,
                "backup": False,
            },
        )

    def install(self, router: respx.MockRouter) -> None:
        router.get(f"{VAULT_ADDR}/v1/sys/init").mock(side_effect=self.get_init)
        router.put(f"{VAULT_ADDR}/v1/sys/init").mock(side_effect=self.put_init)
        router.get(f"{VAULT_ADDR}/v1/sys/rekey/init").mock(side_effect=self.get_rekey)
        router.put(f"{VAULT_ADDR}/v1/sys/rekey/init").mock(side_effect=self.put_rekey)
        router.delete(f"{VAULT_ADDR}/v1/sys/rekey/init").mock(side_effect=self.delete_rekey)
        router.put(f"{VAULT_ADDR}/v1/sys/rekey/update").mock(side_effect=self.put_update)


@pytest.fixture
def router():
    """respx router active for the duration of a test."""
    with respx.mock(assert_all_called=False) as mock_router:
        yield mock_router


@pytest.fixture
def fake_vault(router) -> FakeVault:
    """Uninitialized stub Vault mounted on the respx router."""
    vault = FakeVault()
    vault.install(router)
    return vault
