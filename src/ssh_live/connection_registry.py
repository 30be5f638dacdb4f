"""Registry of live SSH sessions and their lifecycle state machine."""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

import asyncssh

from .config import Settings
from .errors import (
    AuthenticationFailure,
    SessionNotFound,
    SessionUnavailable,
    SSHLiveError,
    TransportError,
)
from .events import EventBus
from .types import (
    ConnectConfig,
    EventType,
    LifecycleEvent,
    SessionInfo,
    SessionStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

# Statuses a session never leaves.
TERMINAL_STATUSES = (SessionStatus.DISCONNECTED, SessionStatus.ERROR)


@dataclass
class Session:
    """A session in the registry with its transport handles."""

    id: str
    host: str
    port: int
    username: str
    config: ConnectConfig
    status: SessionStatus = SessionStatus.CONNECTING
    created_at: datetime = field(default_factory=utcnow)
    connected_at: datetime | None = None
    last_activity: datetime = field(default_factory=utcnow)
    conn: asyncssh.SSHClientConnection | None = None
    sftp: asyncssh.SFTPClient | None = None
    sftp_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    closing: bool = False
    # Set once the session reaches a terminal status.
    closed: asyncio.Event = field(default_factory=asyncio.Event)

    def info(self) -> SessionInfo:
        idle = (utcnow() - self.last_activity).total_seconds()
        return SessionInfo(
            id=self.id,
            host=self.host,
            port=self.port,
            username=self.username,
            status=self.status,
            created_at=self.created_at,
            connected_at=self.connected_at,
            last_activity=self.last_activity,
            idle_seconds=idle,
        )


class _SessionClient(asyncssh.SSHClient):
    """Reports transport closure to the registry by session id."""

    def __init__(
        self, session_id: str, on_lost: Callable[[str, Exception | None], None]
    ) -> None:
        self._session_id = session_id
        self._on_lost = on_lost

    def connection_lost(self, exc: Exception | None) -> None:
        self._on_lost(self._session_id, exc)


class ConnectionRegistry:
    """Owns every session created in this process.

    Sessions move ``connecting -> connected -> disconnected`` or
    ``connecting -> error``. Closed sessions stay in the table so their ids
    are never reused and their config remains available to ``reconnect``.
    """

    def __init__(self, events: EventBus, settings: Settings | None = None) -> None:
        self._sessions: dict[str, Session] = {}
        self._events = events
        self._settings = settings or Settings()

    def _emit(
        self, event_type: EventType, session: Session, error: str | None = None
    ) -> None:
        self._events.emit(
            LifecycleEvent(
                type=event_type,
                session=session.info(),
                session_id=session.id,
                error=error,
            )
        )

    def _connect_options(self, config: ConnectConfig, session_id: str) -> dict:
        options: dict = {
            "host": config.host,
            "port": config.port,
            "username": config.username,
            "known_hosts": None,  # Host key verification is left to the caller
            "agent_path": None,
            "client_factory": lambda: _SessionClient(session_id, self._on_connection_lost),
            "keepalive_interval": self._settings.keepalive_interval,
            "keepalive_count_max": self._settings.keepalive_count_max,
            "connect_timeout": config.timeout or self._settings.connect_timeout,
        }

        if config.private_key is not None:
            options["client_keys"] = [
                asyncssh.import_private_key(config.private_key, config.passphrase)
            ]
        else:
            options["client_keys"] = []
            options["password"] = config.password
        return options

    def _fail(self, session: Session, error: SSHLiveError) -> SSHLiveError:
        logger.error(f"Session {session.id} to {session.host}:{session.port} failed: {error}")
        if session.closing:
            # A disconnect was requested during the handshake.
            self._mark_disconnected(session)
            return error
        session.status = SessionStatus.ERROR
        session.conn = None
        session.closed.set()
        self._emit(EventType.ERROR, session, error=str(error))
        return error

    async def connect(self, config: ConnectConfig) -> SessionInfo:
        """Open a new session.

        Args:
            config: Host, port, username and one authentication method.

        Returns:
            A snapshot of the connected session.

        Raises:
            AuthenticationFailure: If the key cannot be loaded or the server
                rejects the credentials.
            TransportError: If the handshake fails or times out.
        """
        session = Session(
            id=str(uuid.uuid4()),
            host=config.host,
            port=config.port,
            username=config.username,
            config=config,
        )
        self._sessions[session.id] = session
        self._emit(EventType.CONNECTING, session)
        logger.info(
            f"Connecting session {session.id} to {config.host}:{config.port} "
            f"as {config.username}"
        )

        context = {"session_id": session.id, "host": config.host, "port": config.port}
        try:
            options = self._connect_options(config, session.id)
            conn = await asyncssh.connect(**options)
        except asyncssh.KeyImportError as e:
            raise self._fail(
                session, AuthenticationFailure(f"Cannot load private key: {e}", **context)
            ) from e
        except asyncssh.PermissionDenied as e:
            raise self._fail(
                session,
                AuthenticationFailure(
                    f"Authentication failed for {config.username}@{config.host}", **context
                ),
            ) from e
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as e:
            raise self._fail(
                session,
                TransportError(
                    f"Cannot connect to {config.host}:{config.port}: {str(e) or type(e).__name__}",
                    **context,
                ),
            ) from e
        except asyncio.CancelledError:
            self._fail(session, TransportError("Connect was cancelled", **context))
            raise

        if session.closing:
            conn.abort()
            self._mark_disconnected(session)
            raise TransportError("Session was disconnected while connecting", **context)

        now = utcnow()
        session.conn = conn
        session.status = SessionStatus.CONNECTED
        session.connected_at = now
        session.last_activity = now
        self._emit(EventType.CONNECTED, session)
        logger.info(f"Session {session.id} connected to {config.host}:{config.port}")
        return session.info()

    def _mark_disconnected(self, session: Session) -> None:
        session.status = SessionStatus.DISCONNECTED
        session.conn = None
        session.sftp = None
        session.closing = False
        session.closed.set()
        self._emit(EventType.DISCONNECTED, session)

    def _on_connection_lost(self, session_id: str, exc: Exception | None) -> None:
        session = self._sessions.get(session_id)
        # Explicit disconnects and failed handshakes finish in their own code paths.
        if session is None or session.closing or session.status != SessionStatus.CONNECTED:
            return
        if exc:
            logger.warning(f"Session {session_id} to {session.host} lost: {exc}")
        else:
            logger.info(f"Session {session_id} to {session.host} closed by remote")
        self._mark_disconnected(session)

    async def disconnect(self, session_id: str) -> SessionInfo:
        """Close a session.

        The transport is asked to close gracefully and is aborted if it has
        not confirmed within the grace period or the close itself fails. A
        session still in its handshake is closed as soon as the handshake
        ends, and a disconnect already in progress is awaited.

        Raises:
            SessionNotFound: If the id is unknown.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found", session_id=session_id)

        if session.closing or session.status == SessionStatus.CONNECTING:
            session.closing = True
            await session.closed.wait()
            return session.info()

        conn = session.conn
        if conn is None:
            return session.info()

        session.closing = True
        grace = self._settings.close_grace
        closed = False
        try:
            if session.sftp is not None:
                session.sftp.exit()
            conn.close()
            await asyncio.wait_for(conn.wait_closed(), timeout=grace)
            closed = True
        except asyncio.TimeoutError:
            logger.warning(
                f"Session {session_id} did not close within {grace}s, forcing termination"
            )
        finally:
            if not closed:
                conn.abort()
            self._mark_disconnected(session)

        logger.info(f"Disconnected session {session_id} from {session.host}:{session.port}")
        return session.info()

    async def disconnect_all(self) -> list[BaseException]:
        """Disconnect every open session.

        A failure on one session is logged and collected; it does not stop
        the others from closing.

        Returns:
            The errors raised by individual disconnects.
        """
        session_ids = [
            s.id for s in self._sessions.values() if s.status not in TERMINAL_STATUSES
        ]
        results = await asyncio.gather(
            *(self.disconnect(session_id) for session_id in session_ids),
            return_exceptions=True,
        )

        failures = []
        for session_id, result in zip(session_ids, results):
            if isinstance(result, BaseException):
                logger.error(f"Failed to disconnect session {session_id}: {result}")
                failures.append(result)
        return failures

    def get_active_sessions(self) -> list[SessionInfo]:
        """Sessions that are connecting or connected."""
        return [
            s.info() for s in self._sessions.values() if s.status not in TERMINAL_STATUSES
        ]

    def list_sessions(self) -> list[SessionInfo]:
        """All sessions created by this registry, including closed ones."""
        return [s.info() for s in self._sessions.values()]

    def get_session(self, session_id: str) -> SessionInfo | None:
        session = self._sessions.get(session_id)
        return session.info() if session else None

    def require_connected(self, session_id: str) -> Session:
        """Look up a session that is ready for channel operations.

        Raises:
            SessionUnavailable: If the session is unknown or not connected.
        """
        session = self._sessions.get(session_id)
        if session is None or session.conn is None or session.status != SessionStatus.CONNECTED:
            raise SessionUnavailable(
                f"Session {session_id} is not available", session_id=session_id
            )
        return session

    def touch(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session:
            session.last_activity = utcnow()

    async def reconnect(
        self, session_id: str, max_attempts: int | None = None
    ) -> SessionInfo:
        """Re-establish a closed session with exponential backoff.

        Waits ``2**attempt`` backoff units before each attempt and connects
        again with the session's original configuration. The result is a new
        session with a new id; the old one stays closed.

        Args:
            session_id: A disconnected or failed session.
            max_attempts: Overrides the configured attempt limit.

        Returns:
            The new session.

        Raises:
            SessionNotFound: If the id is unknown.
            SessionUnavailable: If the session is still open.
            AuthenticationFailure, TransportError: The last attempt's error
                once all attempts have failed.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found", session_id=session_id)
        if session.status not in TERMINAL_STATUSES:
            raise SessionUnavailable(
                f"Session {session_id} is {session.status.value}, cannot reconnect",
                session_id=session_id,
            )

        attempts = max(1, max_attempts or self._settings.max_reconnect_attempts)
        last_error: AuthenticationFailure | TransportError | None = None
        for attempt in range(attempts):
            await asyncio.sleep(2**attempt * self._settings.reconnect_backoff_base)
            self._events.emit(
                LifecycleEvent(
                    type=EventType.RECONNECTING, session_id=session_id, attempt=attempt + 1
                )
            )
            logger.info(f"Reconnecting session {session_id}, attempt {attempt + 1}/{attempts}")
            try:
                return await self.connect(session.config)
            except (AuthenticationFailure, TransportError) as e:
                last_error = e

        self._events.emit(
            LifecycleEvent(
                type=EventType.RECONNECT_FAILED,
                session_id=session_id,
                attempt=attempts,
                error=str(last_error),
            )
        )
        logger.error(f"Giving up on session {session_id} after {attempts} attempts")
        raise last_error
