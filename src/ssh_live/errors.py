"""Error taxonomy for the ssh-live core.

Every error carries a ``context`` dict (session id, key id, command, path)
so the presentation layer can render a specific message.
"""

from typing import Any


class SSHLiveError(Exception):
    """Base class for all errors raised by the core."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict:
        return {
            "status": "error",
            "error": type(self).__name__,
            "message": self.message,
            **self.context,
        }


class SessionNotFound(SSHLiveError):
    """No session is registered under the given id."""


class SessionUnavailable(SSHLiveError):
    """The session is missing or not in the ``connected`` state."""


class AuthenticationFailure(SSHLiveError):
    """The server rejected the supplied credentials."""


class TransportError(SSHLiveError):
    """Handshake, channel or stream level I/O failure."""


class KeyFormatError(SSHLiveError):
    """A public key could not be parsed."""


class KeyNotFound(SSHLiveError):
    """No key record is stored under the given id."""


class UnsupportedKeyType(SSHLiveError):
    """Key generation was asked for an algorithm we do not support."""


class EncryptionKeyUnavailable(SSHLiveError):
    """The symmetric key protecting private keys is missing or unusable."""
