"""Shared fixtures and in-process stand-ins for the SSH transport."""

import asyncio
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import asyncssh
import pytest
import pytest_asyncio

from ssh_live.config import Settings
from ssh_live.connection_registry import ConnectionRegistry
from ssh_live.events import EventBus
from ssh_live.types import ConnectConfig


class FakeSFTPClient:
    """In-memory SFTP server side of one session."""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.dirs: dict[str, list] = {}
        self.exited = False
        self.active = 0
        self.max_active = 0

    async def _enter(self) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1

    async def readdir(self, path: str) -> list:
        await self._enter()
        if path not in self.dirs:
            raise asyncssh.SFTPNoSuchFile(f"No such directory: {path}")
        return self.dirs[path]

    async def put(self, local_path: str, remote_path: str) -> None:
        data = Path(local_path).read_bytes()
        await self._enter()
        self.files[remote_path] = data

    async def get(self, remote_path: str, local_path: str) -> None:
        await self._enter()
        if remote_path not in self.files:
            raise asyncssh.SFTPNoSuchFile(f"No such file: {remote_path}")
        Path(local_path).write_bytes(self.files[remote_path])

    async def stat(self, path: str) -> SimpleNamespace:
        if path not in self.files:
            raise asyncssh.SFTPNoSuchFile(f"No such file: {path}")
        return SimpleNamespace(size=len(self.files[path]))

    def exit(self) -> None:
        self.exited = True


class FakeConnection:
    """Stands in for asyncssh.SSHClientConnection."""

    def __init__(self, client: asyncssh.SSHClient, close_acknowledged: bool = True) -> None:
        self.client = client
        self.close_acknowledged = close_acknowledged
        self.aborted = False
        self.close_error: Exception | None = None
        self.run_error: Exception | None = None
        self.responses: dict[str, tuple[bytes, bytes, int | None]] = {}
        self.commands: list[str] = []
        self.sftp = FakeSFTPClient()
        self.sftp_starts = 0
        self._closed = asyncio.Event()

    def _finish(self, exc: Exception | None = None) -> None:
        if not self._closed.is_set():
            self._closed.set()
            self.client.connection_lost(exc)

    def close(self) -> None:
        if self.close_error:
            raise self.close_error
        if self.close_acknowledged:
            self._finish()

    def abort(self) -> None:
        self.aborted = True
        self._finish()

    def drop(self, exc: Exception | None = None) -> None:
        """Simulate the remote end closing the connection."""
        self._finish(exc)

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def run(self, command: str, check: bool = False, encoding=None) -> SimpleNamespace:
        self.commands.append(command)
        if self.run_error:
            raise self.run_error
        await asyncio.sleep(0)
        if command in self.responses:
            stdout, stderr, status = self.responses[command]
        elif command.startswith("echo "):
            stdout, stderr, status = (command[5:] + "\n").encode(), b"", 0
        else:
            stdout, stderr, status = b"", b"", 0
        return SimpleNamespace(stdout=stdout, stderr=stderr, exit_status=status)

    async def start_sftp_client(self) -> FakeSFTPClient:
        self.sftp_starts += 1
        return self.sftp


class FakeTransport:
    """Replaces asyncssh.connect and records every connection it opens."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.connections: list[FakeConnection] = []
        self.error: BaseException | None = None
        self.close_acknowledged = True
        # When set, handshakes wait on this event before completing.
        self.gate: asyncio.Event | None = None

    async def connect(self, **options) -> FakeConnection:
        self.calls.append(options)
        if self.gate:
            await self.gate.wait()
        if self.error:
            raise self.error
        conn = FakeConnection(options["client_factory"](), self.close_acknowledged)
        self.connections.append(conn)
        return conn


@pytest.fixture
def settings(tmp_path):
    return Settings(home=tmp_path / ".ssh-live", close_grace=0.05, reconnect_backoff_base=0)


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def recorded(events):
    """Every event emitted on the bus, in order."""
    received = []
    events.subscribe(received.append)
    return received


@pytest.fixture
def transport():
    fake = FakeTransport()
    with patch.object(asyncssh, "connect", new=fake.connect):
        yield fake


@pytest.fixture
def registry(events, settings, transport):
    return ConnectionRegistry(events, settings)


@pytest.fixture
def password_config():
    return ConnectConfig(host="h", port=22, username="u", password="p")


@pytest_asyncio.fixture
async def session(registry, password_config):
    """A connected session."""
    return await registry.connect(password_config)
