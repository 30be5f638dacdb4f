"""Generation of new SSH key pairs."""

import logging

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from .errors import UnsupportedKeyType
from .fingerprint import fingerprint
from .key_store import KeyStore
from .types import KeyData, KeyGenerationOptions, KeyPair, KeyType

logger = logging.getLogger(__name__)

DEFAULT_RSA_KEY_SIZE = 4096
RSA_PUBLIC_EXPONENT = 65537


def _ecdsa_curve(size: int | None) -> ec.EllipticCurve:
    """P-256 for a 256-bit request, P-384 for anything else."""
    if size == 256:
        return ec.SECP256R1()
    return ec.SECP384R1()


class KeyGenerator:
    """Creates key pairs and registers them with a key store."""

    def __init__(self, store: KeyStore) -> None:
        self._store = store

    def _create_private_key(self, options: KeyGenerationOptions):
        if options.type == KeyType.RSA.value:
            key_size = options.size or DEFAULT_RSA_KEY_SIZE
            try:
                return rsa.generate_private_key(
                    public_exponent=RSA_PUBLIC_EXPONENT, key_size=key_size
                )
            except ValueError as e:
                raise UnsupportedKeyType(
                    f"Unsupported rsa key size {key_size}: {e}",
                    key_type=options.type,
                    key_size=key_size,
                ) from e
        if options.type == KeyType.ECDSA.value:
            return ec.generate_private_key(_ecdsa_curve(options.size))
        if options.type == KeyType.ED25519.value:
            return ed25519.Ed25519PrivateKey.generate()
        raise UnsupportedKeyType(
            f"Unsupported key type: {options.type}", key_type=options.type
        )

    def generate(self, options: KeyGenerationOptions) -> KeyPair:
        """Generate a key pair and store it.

        The public key is returned in OpenSSH one-line format with the
        display name as its comment; the private key in OpenSSH PEM format.

        Args:
            options: Algorithm, optional size and display name.

        Returns:
            The plaintext key pair and its fingerprint.

        Raises:
            UnsupportedKeyType: If the algorithm is not rsa, ecdsa or ed25519.
        """
        private_key = self._create_private_key(options)

        public_text = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        ).decode()
        if options.name:
            public_text = f"{public_text} {options.name}"

        private_text = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.OpenSSH,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()

        key_fingerprint = fingerprint(public_text)
        self._store.add(
            KeyData(name=options.name, public_key=public_text, private_key=private_text)
        )
        logger.info(f"Generated {options.type} key {options.name!r} ({key_fingerprint})")

        return KeyPair(
            public_key=public_text,
            private_key=private_text,
            fingerprint=key_fingerprint,
        )
