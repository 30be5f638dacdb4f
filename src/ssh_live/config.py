"""Configuration defaults and environment overrides."""

import os
from pathlib import Path

from pydantic import BaseModel, Field

HOME_DIR = Path.home() / ".ssh-live"
KEYS_SUBDIR = "keys"
ENCRYPTION_KEY_FILENAME = ".encryption.key"

KEEPALIVE_INTERVAL_SECONDS = 30
KEEPALIVE_COUNT_MAX = 3
CONNECT_TIMEOUT_SECONDS = 20.0
CLOSE_GRACE_SECONDS = 5.0
MAX_RECONNECT_ATTEMPTS = 3
RECONNECT_BACKOFF_BASE_SECONDS = 1.0

ENV_PREFIX = "SSH_LIVE_"


class Settings(BaseModel):
    """Runtime settings for the core."""

    home: Path = HOME_DIR
    keepalive_interval: float = Field(default=KEEPALIVE_INTERVAL_SECONDS, gt=0)
    keepalive_count_max: int = Field(default=KEEPALIVE_COUNT_MAX, ge=1)
    connect_timeout: float = Field(default=CONNECT_TIMEOUT_SECONDS, gt=0)
    close_grace: float = Field(default=CLOSE_GRACE_SECONDS, gt=0)
    max_reconnect_attempts: int = Field(default=MAX_RECONNECT_ATTEMPTS, ge=1)
    reconnect_backoff_base: float = Field(default=RECONNECT_BACKOFF_BASE_SECONDS, ge=0)
    log_level: str = "INFO"

    @property
    def keys_dir(self) -> Path:
        return self.home / KEYS_SUBDIR

    @property
    def encryption_key_file(self) -> Path:
        return self.keys_dir / ENCRYPTION_KEY_FILENAME

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """Build settings from ``SSH_LIVE_*`` environment variables.

        Unset variables keep their defaults. Values are validated by pydantic,
        so a malformed number raises ``pydantic.ValidationError``.
        """
        env = os.environ if environ is None else environ
        fields = {
            "home": "HOME",
            "keepalive_interval": "KEEPALIVE_INTERVAL",
            "keepalive_count_max": "KEEPALIVE_COUNT_MAX",
            "connect_timeout": "CONNECT_TIMEOUT",
            "close_grace": "CLOSE_GRACE",
            "max_reconnect_attempts": "MAX_RECONNECT_ATTEMPTS",
            "reconnect_backoff_base": "RECONNECT_BACKOFF_BASE",
            "log_level": "LOG_LEVEL",
        }
        values = {
            field: env[ENV_PREFIX + name]
            for field, name in fields.items()
            if env.get(ENV_PREFIX + name)
        }
        if "home" in values:
            values["home"] = Path(values["home"]).expanduser()
        return cls.model_validate(values)
