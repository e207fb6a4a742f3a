"""Vaultkeeper - Quorum bootstrap and rekey for HashiCorp Vault clusters.

Vaultkeeper initializes or rekeys a Vault cluster so that no single operator
ever sees the master key. Vault splits the key into shares and encrypts each
one under a trustee's OpenPGP public key; vaultkeeper resolves those keys,
drives the protocol, and mails every encrypted share to its owner.

Key modules:

- :mod:`vaultkeeper.trustees` - Trustee public-key resolution (Keybase, key files)
- :mod:`vaultkeeper.cluster` - Vault sys API client, state probe, init and rekey
- :mod:`vaultkeeper.distribution` - Share fan-out by email
- :mod:`vaultkeeper.orchestrator` - Init / rekey / no-op decision and sequencing
"""

__version__ = "0.1.0"
