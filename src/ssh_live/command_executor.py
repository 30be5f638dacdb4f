"""Command execution over established sessions."""

import asyncio
import logging
import time

import asyncssh

from .connection_registry import ConnectionRegistry
from .errors import TransportError
from .types import CommandResult

logger = logging.getLogger(__name__)


class CommandExecutor:
    """Runs commands on connected sessions, one channel per command."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    async def execute(self, session_id: str, command: str) -> CommandResult:
        """Execute a command on a remote host.

        Concurrent calls on one session each open their own channel and do
        not wait for each other.

        Args:
            session_id: A connected session.
            command: The command line to run.

        Returns:
            Captured stdout/stderr bytes, exit code and duration in seconds.

        Raises:
            SessionUnavailable: If the session is not connected.
            TransportError: If the channel cannot be opened or fails mid-stream.
        """
        session = self._registry.require_connected(session_id)
        started = time.monotonic()

        try:
            result = await session.conn.run(command, check=False, encoding=None)
        except (asyncssh.Error, OSError, asyncio.IncompleteReadError) as e:
            raise TransportError(
                f"Command failed on session {session_id}: {e}",
                session_id=session_id,
                command=command,
            ) from e

        duration = time.monotonic() - started
        self._registry.touch(session_id)

        exit_code = result.exit_status if result.exit_status is not None else 0
        logger.debug(
            f"Session {session_id} ran {command!r}: exit {exit_code} in {duration:.3f}s"
        )
        return CommandResult(
            stdout=result.stdout or b"",
            stderr=result.stderr or b"",
            exit_code=exit_code,
            duration=duration,
        )
