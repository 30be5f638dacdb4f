"""Type definitions for ssh-live."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ConnectConfig(BaseModel):
    """Parameters of a connect request.

    Exactly one authentication method is allowed: a password, or a private
    key with an optional passphrase.
    """

    host: str
    port: int = Field(default=22, ge=1, le=65535)
    username: str
    password: str | None = None
    private_key: str | None = None
    passphrase: str | None = None
    timeout: float | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_auth_method(self) -> "ConnectConfig":
        if (self.password is None) == (self.private_key is None):
            raise ValueError("Exactly one of password or private_key is required")
        if self.passphrase is not None and self.private_key is None:
            raise ValueError("passphrase is only valid together with private_key")
        return self


class SessionInfo(BaseModel):
    """Read-only snapshot of a session."""

    id: str
    host: str
    port: int
    username: str
    status: SessionStatus
    created_at: datetime
    connected_at: datetime | None = None
    last_activity: datetime
    idle_seconds: float


class CommandResult(BaseModel):
    """Result of executing a command over a session."""

    model_config = ConfigDict(frozen=True)

    stdout: bytes
    stderr: bytes
    exit_code: int
    duration: float

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")


class FileKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


class FileEntry(BaseModel):
    """One entry of a remote directory listing."""

    name: str
    size: int
    kind: FileKind
    permissions: str
    modified: datetime | None = None


class TransferResult(BaseModel):
    """Result of an upload or download."""

    success: bool
    local_path: str
    remote_path: str
    bytes_transferred: int | None = None


class KeyType(str, Enum):
    RSA = "rsa"
    ED25519 = "ed25519"
    ECDSA = "ecdsa"


class KeyData(BaseModel):
    """Key material supplied to ``KeyStore.add``."""

    name: str
    public_key: str
    private_key: str | None = None


class KeyRecord(BaseModel):
    """A stored key. ``private_key`` only ever holds ciphertext."""

    id: str
    name: str
    type: KeyType
    public_key: str
    private_key: str | None = None
    has_private_key: bool = False
    fingerprint: str
    created_at: datetime = Field(default_factory=utcnow)

    def redacted(self) -> "KeyRecord":
        return self.model_copy(update={"private_key": None})


class KeyGenerationOptions(BaseModel):
    type: str
    size: int | None = None
    name: str


class KeyPair(BaseModel):
    """A freshly generated key pair. ``private_key`` is plaintext."""

    public_key: str
    private_key: str
    fingerprint: str


class EventType(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    RECONNECT_FAILED = "reconnect-failed"
    KEY_ADDED = "key:added"
    KEY_REMOVED = "key:removed"


class LifecycleEvent(BaseModel):
    """Notification delivered to observers."""

    type: EventType
    session: SessionInfo | None = None
    key: KeyRecord | None = None
    session_id: str | None = None
    attempt: int | None = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)
