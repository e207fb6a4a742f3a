"""Pydantic models for vaultkeeper.yaml configuration."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

DEFAULT_SUBJECT = "Vault {action}: your key share for {cluster}"

DEFAULT_BODY = (
    "A {action} of the vault cluster {cluster} was just completed.\n"
    "You hold key share {index} of {total}. It is encrypted with your OpenPGP key\n"
    "({identifier}); nobody else can read it.\n"
    "\n"
    "Decrypt it locally with:\n"
    "---COMMAND---\n"
    "\n"
    'echo "{share}" | xxd -r -p | gpg --decrypt\n'
    "\n"
    "---COMMAND---\n"
    "\n"
    "Store the decrypted share somewhere safe and do not forward this message.\n"
)

# Placeholders available to message templates
TEMPLATE_FIELDS = ("action", "cluster", "index", "total", "identifier", "recipient", "share")


class VaultConfig(BaseModel):
    """Vault control-plane connection."""

    address: str = Field(
        default="http://127.0.0.1:8200",
        description="Vault cluster URL in http(s)://<host>:<port> format",
    )
    token: str | None = Field(default=None, description="Vault token (falls back to VAULT_TOKEN)")
    namespace: str | None = Field(default=None, description="Vault namespace (enterprise)")
    timeout: float = Field(default=30.0, description="Request timeout in seconds", gt=0)


class SMTPConfig(BaseModel):
    """Mail relay used to deliver key shares."""

    host: str = Field(default="localhost", description="SMTP relay hostname")
    port: int = Field(default=25, description="SMTP relay port", ge=1, le=65535)
    from_address: str = Field(default="", description="Sender address for share messages")
    username: str | None = Field(default=None, description="SMTP login (optional)")
    password: str | None = Field(default=None, description="SMTP password (optional)")
    start_tls: bool = Field(default=False, description="Upgrade the connection with STARTTLS")
    timeout: float = Field(default=30.0, description="Connection timeout in seconds", gt=0)
    verify_relay: bool = Field(
        default=True,
        description="Connect to the relay before touching Vault to catch bad mail settings early",
    )


class KeyLookupConfig(BaseModel):
    """Where trustee public keys come from."""

    provider: Literal["keybase", "file"] = Field(
        default="keybase",
        description="'keybase' fetches keys by Keybase username, 'file' reads key files",
    )
    keybase_url: str = Field(default="https://keybase.io", description="Keybase API base URL")
    key_dir: str | None = Field(
        default=None, description="Base directory for relative key file paths"
    )
    timeout: float = Field(default=30.0, description="Lookup timeout in seconds", gt=0)


class ClusterSettings(BaseModel):
    """Share layout requested by the operator."""

    trustees: list[str] = Field(
        default_factory=list,
        description="Trustee identifiers, one key share each, in share order",
    )
    threshold: int = Field(default=3, description="Shares needed to unseal or rekey")
    name: str | None = Field(
        default=None,
        description="Cluster name used in messages (defaults to the Vault address)",
    )

    @field_validator("trustees", mode="before")
    @classmethod
    def _split_trustees(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


class MessageConfig(BaseModel):
    """Subject and body templates for share messages."""

    subject: str = Field(default=DEFAULT_SUBJECT)
    body: str = Field(default=DEFAULT_BODY)

    @field_validator("subject", "body")
    @classmethod
    def _check_placeholders(cls, value: str) -> str:
        sample = {name: "x" for name in TEMPLATE_FIELDS}
        try:
            value.format(**sample)
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(
                f"Template uses an unknown or malformed placeholder ({e}); "
                f"allowed: {', '.join(TEMPLATE_FIELDS)}"
            ) from e
        return value


class VaultkeeperConfig(BaseModel):
    """Root configuration model."""

    vault: VaultConfig = Field(default_factory=VaultConfig)
    smtp: SMTPConfig = Field(default_factory=SMTPConfig)
    keys: KeyLookupConfig = Field(default_factory=KeyLookupConfig)
    cluster: ClusterSettings = Field(default_factory=ClusterSettings)
    message: MessageConfig = Field(default_factory=MessageConfig)

    @property
    def cluster_name(self) -> str:
        return self.cluster.name or self.vault.address
