"""OpenPGP public-key helpers.

Vault wants each trustee key as base64 of the binary (non-armored) key, while
lookup services hand out ASCII-armored bundles. Mail recipients come from the
e-mail addresses in the key's user IDs.
"""

import base64

import pgpy


def load_public_key(blob: str | bytes) -> pgpy.PGPKey:
    """Parse an armored or binary OpenPGP key and return its public part.

    Args:
        blob: ASCII-armored text or binary key packets

    Returns:
        Public key

    Raises:
        ValueError: If the blob is not a parsable OpenPGP key
    """
    try:
        key, _ = pgpy.PGPKey.from_blob(blob)
    except Exception as e:
        raise ValueError(f"Not a valid OpenPGP key: {e}") from e

    if not key.is_public:
        key = key.pubkey
    return key


def serialize_key(key: pgpy.PGPKey) -> bytes:
    """Binary (non-armored) serialization of a key."""
    return bytes(key)


def fingerprint(key: pgpy.PGPKey) -> str:
    """Lowercase hex fingerprint without spaces, as Vault reports it."""
    return str(key.fingerprint).replace(" ", "").lower()


def key_identities(key: pgpy.PGPKey) -> list[str]:
    """E-mail addresses declared by the key's user IDs.

    Order follows the key; duplicates and user IDs without an address
    (photo IDs, name-only IDs) are skipped.
    """
    seen: list[str] = []
    for uid in key.userids:
        email = (uid.email or "").strip()
        if email and email not in seen:
            seen.append(email)
    return seen


def encode_for_vault(binary_key: bytes) -> str:
    return base64.b64encode(binary_key).decode("ascii")
