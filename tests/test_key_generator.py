"""Tests for key pair generation."""

import asyncssh
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from ssh_live.errors import UnsupportedKeyType
from ssh_live.fingerprint import fingerprint
from ssh_live.key_generator import KeyGenerator
from ssh_live.key_store import KeyStore
from ssh_live.types import KeyGenerationOptions, KeyType


@pytest.fixture
def key_store(tmp_path, events):
    store = KeyStore(tmp_path / "keys", b"g" * 32, events)
    store.initialize()
    return store


@pytest.fixture
def generator(key_store):
    return KeyGenerator(key_store)


class TestKeyGenerator:
    """Tests for KeyGenerator.generate."""

    def test_ed25519_round_trip(self, generator, key_store):
        """Test that a generated key is listed with a matching fingerprint."""
        pair = generator.generate(KeyGenerationOptions(type="ed25519", name="n"))

        assert pair.public_key.startswith("ssh-ed25519 ")
        assert pair.public_key.endswith(" n")
        assert pair.fingerprint == fingerprint(pair.public_key)

        [record] = key_store.list()
        assert record.type == KeyType.ED25519
        assert record.name == "n"
        assert record.fingerprint == fingerprint(pair.public_key)
        assert key_store.get_private_key(record.id) == pair.private_key

    def test_private_key_is_usable_for_ssh(self, generator):
        pair = generator.generate(KeyGenerationOptions(type="ed25519", name="n"))
        key = asyncssh.import_private_key(pair.private_key)
        assert key.algorithm == b"ssh-ed25519"

    @pytest.mark.parametrize("size,curve", [(256, ec.SECP256R1), (384, ec.SECP384R1), (None, ec.SECP384R1)])
    def test_ecdsa_curve_from_size(self, generator, size, curve):
        pair = generator.generate(KeyGenerationOptions(type="ecdsa", size=size, name="ec"))

        public = serialization.load_ssh_public_key(pair.public_key.encode())
        assert isinstance(public.curve, curve)
        assert pair.public_key.startswith("ecdsa-sha2-")

    def test_rsa_size(self, generator, key_store):
        pair = generator.generate(KeyGenerationOptions(type="rsa", size=2048, name="r"))

        public = serialization.load_ssh_public_key(pair.public_key.encode())
        assert isinstance(public, rsa.RSAPublicKey)
        assert public.key_size == 2048
        assert key_store.list()[0].type == KeyType.RSA

    def test_rsa_size_too_small(self, generator, key_store):
        with pytest.raises(UnsupportedKeyType) as exc_info:
            generator.generate(KeyGenerationOptions(type="rsa", size=512, name="weak"))

        assert exc_info.value.context["key_size"] == 512
        assert key_store.list() == []

    def test_unsupported_type(self, generator, key_store):
        with pytest.raises(UnsupportedKeyType):
            generator.generate(KeyGenerationOptions(type="dsa", name="old"))
        assert key_store.list() == []
