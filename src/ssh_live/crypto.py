"""Process-wide encryption key and at-rest encryption of private keys."""

import base64
import binascii
import logging
import os
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import EncryptionKeyUnavailable

logger = logging.getLogger(__name__)

KEY_LENGTH = 32
NONCE_LENGTH = 12


def load_encryption_key(path: Path) -> bytes:
    """Read the encryption key, creating it on first run.

    A new key is 32 random bytes written with owner-only permissions.

    Raises:
        EncryptionKeyUnavailable: If the key file exists but cannot be read
            or does not hold exactly 32 bytes, or a new key cannot be
            written.
    """
    if path.exists():
        try:
            key = path.read_bytes()
        except OSError as e:
            raise EncryptionKeyUnavailable(
                f"Cannot read encryption key: {e}", path=str(path)
            ) from e
        if len(key) != KEY_LENGTH:
            raise EncryptionKeyUnavailable(
                f"Encryption key must be {KEY_LENGTH} bytes, found {len(key)}",
                path=str(path),
            )
        return key

    key = os.urandom(KEY_LENGTH)
    try:
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(key)
    except OSError as e:
        raise EncryptionKeyUnavailable(
            f"Cannot create encryption key: {e}", path=str(path)
        ) from e
    logger.info(f"Generated new encryption key at {path}")
    return key


class PrivateKeyCipher:
    """AES-256-GCM encryption of private key text.

    Ciphertext is ``nonce || ciphertext+tag``, base64 encoded so it can be
    stored inside a JSON record.
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            raise EncryptionKeyUnavailable(
                f"Encryption key must be {KEY_LENGTH} bytes, got {len(key)}"
            )
        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_LENGTH)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext.encode(), None)
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            data = base64.b64decode(token)
            nonce, ciphertext = data[:NONCE_LENGTH], data[NONCE_LENGTH:]
            return self._aesgcm.decrypt(nonce, ciphertext, None).decode()
        except (InvalidTag, binascii.Error, ValueError) as e:
            raise EncryptionKeyUnavailable(
                "Failed to decrypt private key. Wrong encryption key?"
            ) from e
