"""Persistent storage of SSH keys with encrypted private halves."""

import json
import logging
import threading
import uuid
from pathlib import Path

from pydantic import ValidationError

from .crypto import PrivateKeyCipher
from .errors import KeyNotFound
from .events import EventBus
from .fingerprint import detect_key_type, fingerprint
from .types import EventType, KeyData, KeyRecord, LifecycleEvent

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"


class KeyStore:
    """Stores one JSON record per key id under a per-user directory.

    Private key material is encrypted with the process-wide encryption key
    before it reaches memory-resident records or disk, and is never included
    in ``list`` or ``get`` results.
    """

    def __init__(self, directory: Path, encryption_key: bytes, events: EventBus) -> None:
        self._directory = directory
        self._cipher = PrivateKeyCipher(encryption_key)
        self._events = events
        self._keys: dict[str, KeyRecord] = {}
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._directory

    def initialize(self) -> None:
        """Create the key directory and load stored records."""
        self._directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        self._load()

    def _record_path(self, key_id: str) -> Path:
        return self._directory / f"{key_id}{RECORD_SUFFIX}"

    def _load(self) -> None:
        keys: dict[str, KeyRecord] = {}
        for path in sorted(self._directory.glob(f"*{RECORD_SUFFIX}")):
            try:
                record = KeyRecord.model_validate_json(path.read_text())
            except (OSError, ValidationError) as e:
                logger.error(f"Skipping unreadable key file {path.name}: {e}")
                continue
            keys[record.id] = record
        with self._lock:
            self._keys = keys
        logger.info(f"Loaded {len(keys)} keys from {self._directory}")

    def _save(self, record: KeyRecord) -> None:
        path = self._record_path(record.id)
        path.write_text(json.dumps(record.model_dump(mode="json"), indent=2))
        path.chmod(0o600)

    def add(self, key_data: KeyData) -> KeyRecord:
        """Store a key.

        Args:
            key_data: Display name, public key text and optional plaintext
                private key.

        Returns:
            The stored record with private material redacted.

        Raises:
            KeyFormatError: If the public key cannot be parsed or its type
                cannot be determined.
        """
        key_fingerprint = fingerprint(key_data.public_key)
        key_type = detect_key_type(key_data.public_key)

        record = KeyRecord(
            id=str(uuid.uuid4()),
            name=key_data.name,
            type=key_type,
            public_key=key_data.public_key,
            fingerprint=key_fingerprint,
            has_private_key=key_data.private_key is not None,
        )
        if key_data.private_key is not None:
            record.private_key = self._cipher.encrypt(key_data.private_key)

        with self._lock:
            self._save(record)
            self._keys[record.id] = record

        logger.info(f"Added {key_type.value} key {record.id} ({key_fingerprint})")
        self._events.emit(LifecycleEvent(type=EventType.KEY_ADDED, key=record.redacted()))
        return record.redacted()

    def remove(self, key_id: str) -> bool:
        """Delete a stored key.

        Raises:
            KeyNotFound: If no key has this id.
        """
        with self._lock:
            record = self._keys.get(key_id)
            if record is None:
                raise KeyNotFound(f"Key {key_id} not found", key_id=key_id)
            self._record_path(key_id).unlink(missing_ok=True)
            del self._keys[key_id]

        logger.info(f"Removed key {key_id}")
        self._events.emit(LifecycleEvent(type=EventType.KEY_REMOVED, key=record.redacted()))
        return True

    def list(self) -> list[KeyRecord]:
        """List all keys. Private material is always omitted."""
        with self._lock:
            return [record.redacted() for record in self._keys.values()]

    def get(self, key_id: str) -> KeyRecord:
        """Get one key without its private material.

        Raises:
            KeyNotFound: If no key has this id.
        """
        with self._lock:
            record = self._keys.get(key_id)
        if record is None:
            raise KeyNotFound(f"Key {key_id} not found", key_id=key_id)
        return record.redacted()

    def get_private_key(self, key_id: str) -> str | None:
        """Decrypt the private half of a key.

        Returns:
            The plaintext private key, or None if the key has no private half.

        Raises:
            KeyNotFound: If no key has this id.
            EncryptionKeyUnavailable: If the ciphertext cannot be decrypted.
        """
        with self._lock:
            record = self._keys.get(key_id)
        if record is None:
            raise KeyNotFound(f"Key {key_id} not found", key_id=key_id)
        if record.private_key is None:
            return None
        return self._cipher.decrypt(record.private_key)
