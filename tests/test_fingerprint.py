"""Tests for fingerprints and key type detection."""

import base64
import hashlib

import pytest

from ssh_live.errors import KeyFormatError
from ssh_live.fingerprint import detect_key_type, fingerprint
from ssh_live.types import KeyType

KEY_DATA = b"\x00\x00\x00\x0bssh-ed25519\x00\x00\x00\x20" + bytes(range(32))
PUBLIC_KEY = "ssh-ed25519 " + base64.b64encode(KEY_DATA).decode() + " alice@laptop"


class TestFingerprint:
    """Tests for fingerprint()."""

    def test_format(self):
        expected = "SHA256:" + hashlib.sha256(KEY_DATA).hexdigest().upper()
        assert fingerprint(PUBLIC_KEY) == expected

    def test_deterministic(self):
        assert fingerprint(PUBLIC_KEY) == fingerprint(PUBLIC_KEY)

    def test_ignores_comment_and_whitespace(self):
        bare = " ".join(PUBLIC_KEY.split()[:2])
        assert fingerprint("  " + bare + "\n") == fingerprint(PUBLIC_KEY)

    def test_differs_for_different_key_data(self):
        other = "ssh-ed25519 " + base64.b64encode(KEY_DATA[:-1] + b"\xff").decode()
        assert fingerprint(other) != fingerprint(PUBLIC_KEY)

    @pytest.mark.parametrize("text", ["", "ssh-ed25519", "   "])
    def test_too_few_fields(self, text):
        with pytest.raises(KeyFormatError):
            fingerprint(text)

    def test_undecodable_key_data(self):
        with pytest.raises(KeyFormatError):
            fingerprint("ssh-ed25519 abc")

    def test_non_base64_characters(self):
        with pytest.raises(KeyFormatError):
            fingerprint("ssh-rsa !!!!")


class TestDetectKeyType:
    """Tests for detect_key_type()."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("ssh-rsa AAAA", KeyType.RSA),
            ("-----BEGIN RSA PUBLIC KEY-----", KeyType.RSA),
            ("ssh-ed25519 AAAA", KeyType.ED25519),
            ("ecdsa-sha2-nistp256 AAAA", KeyType.ECDSA),
            ("-----BEGIN EC PUBLIC KEY-----", KeyType.ECDSA),
        ],
    )
    def test_markers(self, text, expected):
        assert detect_key_type(text) == expected

    def test_unknown_type(self):
        with pytest.raises(KeyFormatError, match="Unable to determine key type"):
            detect_key_type("ssh-dss AAAA")
