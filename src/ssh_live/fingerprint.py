"""Public key fingerprints and key type detection."""

import base64
import binascii
import hashlib

from .errors import KeyFormatError
from .types import KeyType

# Checked in order; the first marker found decides the type.
_TYPE_MARKERS: list[tuple[KeyType, tuple[str, ...]]] = [
    (KeyType.RSA, ("ssh-rsa", "BEGIN RSA PUBLIC KEY")),
    (KeyType.ED25519, ("ssh-ed25519", "BEGIN ED25519 PUBLIC KEY")),
    (KeyType.ECDSA, ("ecdsa-sha2-", "BEGIN EC PUBLIC KEY")),
]


def fingerprint(public_key: str) -> str:
    """Compute the fingerprint of a public key.

    Args:
        public_key: Key text in ``algorithm base64-data [comment]`` form.

    Returns:
        ``SHA256:`` followed by the uppercase hex SHA-256 digest of the
        decoded key data.

    Raises:
        KeyFormatError: If the text has fewer than two fields or the key
            data is not valid base64.
    """
    parts = public_key.split()
    if len(parts) < 2:
        raise KeyFormatError("Invalid public key format")

    try:
        key_data = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyFormatError(f"Public key data is not valid base64: {e}") from e

    return "SHA256:" + hashlib.sha256(key_data).hexdigest().upper()


def detect_key_type(public_key: str) -> KeyType:
    """Infer the key algorithm from textual markers in a public key.

    Raises:
        KeyFormatError: If no known marker is present.
    """
    for key_type, markers in _TYPE_MARKERS:
        if any(marker in public_key for marker in markers):
            return key_type
    raise KeyFormatError("Unable to determine key type")
