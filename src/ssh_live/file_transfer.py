"""SFTP listing and streamed transfers over established sessions."""

import logging
import stat
from datetime import datetime, timezone

import asyncssh

from .connection_registry import ConnectionRegistry, Session
from .errors import SessionUnavailable, TransportError
from .types import FileEntry, FileKind, TransferResult

logger = logging.getLogger(__name__)


def _file_entry(entry: asyncssh.SFTPName) -> FileEntry:
    attrs = entry.attrs
    permissions = attrs.permissions or 0

    if attrs.type == asyncssh.FILEXFER_TYPE_DIRECTORY or stat.S_ISDIR(permissions):
        kind = FileKind.DIRECTORY
    else:
        kind = FileKind.FILE

    return FileEntry(
        name=entry.filename,
        size=attrs.size or 0,
        kind=kind,
        permissions=f"{permissions & 0o777:03o}",
        modified=datetime.fromtimestamp(attrs.mtime, tz=timezone.utc)
        if attrs.mtime is not None
        else None,
    )


class FileTransferEngine:
    """File operations on a session's SFTP sub-channel.

    Each session gets a single SFTP client, opened on first use and cached
    on the session. Operations on one session are serialized through the
    session's SFTP lock; different sessions proceed independently.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    async def _sftp(self, session: Session) -> asyncssh.SFTPClient:
        # Caller holds session.sftp_lock; the session may have closed while waiting.
        if session.conn is None:
            raise SessionUnavailable(
                f"Session {session.id} is not available", session_id=session.id
            )
        if session.sftp is None:
            session.sftp = await session.conn.start_sftp_client()
            logger.info(f"Opened SFTP channel for session {session.id}")
        return session.sftp

    def _transport_error(self, action: str, session_id: str, e: Exception, **context) -> TransportError:
        return TransportError(
            f"{action} failed on session {session_id}: {e}", session_id=session_id, **context
        )

    async def list(self, session_id: str, path: str) -> list[FileEntry]:
        """List a remote directory.

        Args:
            session_id: A connected session.
            path: Remote directory path.

        Returns:
            Entries in server order, without ``.`` and ``..``.

        Raises:
            SessionUnavailable: If the session is not connected.
            TransportError: If the directory cannot be read.
        """
        session = self._registry.require_connected(session_id)
        async with session.sftp_lock:
            try:
                sftp = await self._sftp(session)
                names = await sftp.readdir(path)
            except (asyncssh.Error, OSError) as e:
                raise self._transport_error("Listing", session_id, e, path=path) from e

        self._registry.touch(session_id)
        return [_file_entry(name) for name in names if name.filename not in (".", "..")]

    async def upload(self, session_id: str, local_path: str, remote_path: str) -> TransferResult:
        """Stream a local file to the remote host.

        A failed transfer leaves whatever was written at ``remote_path``.

        Raises:
            SessionUnavailable: If the session is not connected.
            TransportError: If reading, writing or the channel fails.
        """
        session = self._registry.require_connected(session_id)
        async with session.sftp_lock:
            try:
                sftp = await self._sftp(session)
                await sftp.put(local_path, remote_path)
                attrs = await sftp.stat(remote_path)
            except (asyncssh.Error, OSError) as e:
                raise self._transport_error(
                    "Upload", session_id, e, local_path=local_path, remote_path=remote_path
                ) from e

        self._registry.touch(session_id)
        logger.info(f"Uploaded {local_path} to {remote_path} on session {session_id}")
        return TransferResult(
            success=True,
            local_path=local_path,
            remote_path=remote_path,
            bytes_transferred=attrs.size,
        )

    async def download(self, session_id: str, remote_path: str, local_path: str) -> TransferResult:
        """Stream a remote file to the local filesystem.

        A failed transfer leaves whatever was written at ``local_path``.

        Raises:
            SessionUnavailable: If the session is not connected.
            TransportError: If reading, writing or the channel fails.
        """
        session = self._registry.require_connected(session_id)
        async with session.sftp_lock:
            try:
                sftp = await self._sftp(session)
                attrs = await sftp.stat(remote_path)
                await sftp.get(remote_path, local_path)
            except (asyncssh.Error, OSError) as e:
                raise self._transport_error(
                    "Download", session_id, e, local_path=local_path, remote_path=remote_path
                ) from e

        self._registry.touch(session_id)
        logger.info(f"Downloaded {remote_path} to {local_path} on session {session_id}")
        return TransferResult(
            success=True,
            local_path=local_path,
            remote_path=remote_path,
            bytes_transferred=attrs.size,
        )
