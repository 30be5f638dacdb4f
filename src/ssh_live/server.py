"""ssh-live MCP server - session, file transfer and key operations."""

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP
from pydantic import ValidationError

from .command_executor import CommandExecutor
from .config import Settings
from .connection_registry import ConnectionRegistry
from .crypto import load_encryption_key
from .errors import AuthenticationFailure, SSHLiveError
from .events import EventBus
from .file_transfer import FileTransferEngine
from .key_generator import KeyGenerator
from .key_store import KeyStore
from .types import ConnectConfig, KeyData, KeyGenerationOptions, LifecycleEvent, SessionInfo

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Application context with shared resources."""

    settings: Settings
    events: EventBus
    key_store: KeyStore
    key_generator: KeyGenerator
    registry: ConnectionRegistry
    executor: CommandExecutor
    transfers: FileTransferEngine


def log_event(event: LifecycleEvent) -> None:
    target = event.session_id or (event.key.id if event.key else "")
    if event.error:
        logger.warning(f"[{event.type.value}] {target}: {event.error}")
    else:
        logger.info(f"[{event.type.value}] {target}")


def create_app_context(settings: Settings) -> AppContext:
    """Wire the core components for one process.

    Raises:
        EncryptionKeyUnavailable: If the encryption key cannot be loaded.
    """
    events = EventBus()
    events.subscribe(log_event)

    encryption_key = load_encryption_key(settings.encryption_key_file)
    key_store = KeyStore(settings.keys_dir, encryption_key, events)
    key_store.initialize()

    registry = ConnectionRegistry(events, settings)
    return AppContext(
        settings=settings,
        events=events,
        key_store=key_store,
        key_generator=KeyGenerator(key_store),
        registry=registry,
        executor=CommandExecutor(registry),
        transfers=FileTransferEngine(registry),
    )


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Manage application lifecycle."""
    settings = Settings.from_env()
    logging.getLogger().setLevel(settings.log_level.upper())

    try:
        app_ctx = create_app_context(settings)
    except SSHLiveError as e:
        logger.error(f"Failed to initialize key store: {e}")
        raise

    logger.info("ssh-live server started")

    try:
        yield app_ctx
    finally:
        failures = await app_ctx.registry.disconnect_all()
        if failures:
            logger.warning(f"{len(failures)} sessions failed to disconnect cleanly")
        logger.info("ssh-live server stopped")


# Create the MCP server
mcp = FastMCP(
    "ssh-live",
    lifespan=app_lifespan,
)


def _app(ctx: Context) -> AppContext:
    return ctx.request_context.lifespan_context


def _session_dict(info: SessionInfo) -> dict:
    return info.model_dump(mode="json")


# =============================================================================
# Session Tools
# =============================================================================


@mcp.tool()
async def ssh_connect(
    host: str,
    username: str,
    ctx: Context,
    port: int = 22,
    password: str | None = None,
    private_key: str | None = None,
    passphrase: str | None = None,
    key_id: str | None = None,
    timeout: float | None = None,
) -> dict:
    """Open a new SSH session.

    Use exactly one authentication method: a password, a private key (with
    an optional passphrase), or the id of a key held in the key store.

    Args:
        host: The hostname or IP address to connect to.
        username: The username for authentication.
        port: The SSH port (default 22).
        password: Password for password authentication.
        private_key: Private key text for key authentication.
        passphrase: Passphrase protecting private_key.
        key_id: Id of a stored key whose private half should be used.
        timeout: Handshake timeout in seconds (default 20).

    Returns:
        The new session, including its id.
    """
    app_ctx = _app(ctx)

    try:
        if key_id is not None:
            private_key = app_ctx.key_store.get_private_key(key_id)
            if private_key is None:
                raise AuthenticationFailure(
                    f"Key {key_id} has no private key on file", key_id=key_id
                )
        config = ConnectConfig(
            host=host,
            port=port,
            username=username,
            password=password,
            private_key=private_key,
            passphrase=passphrase,
            timeout=timeout,
        )
        info = await app_ctx.registry.connect(config)
        return _session_dict(info)
    except SSHLiveError as e:
        return e.to_dict()
    except ValidationError as e:
        return {"status": "error", "error": "InvalidRequest", "message": str(e)}


@mcp.tool()
async def ssh_disconnect(session_id: str, ctx: Context) -> dict:
    """Close an SSH session.

    Args:
        session_id: The session to close.

    Returns:
        Success flag and the final session state.
    """
    try:
        info = await _app(ctx).registry.disconnect(session_id)
        return {"success": True, "session": _session_dict(info)}
    except SSHLiveError as e:
        return e.to_dict()


@mcp.tool()
async def ssh_list_sessions(ctx: Context, include_closed: bool = False) -> list[dict]:
    """List SSH sessions.

    Args:
        include_closed: Also list disconnected and failed sessions.

    Returns:
        Sessions with their status and idle time.
    """
    registry = _app(ctx).registry
    sessions = registry.list_sessions() if include_closed else registry.get_active_sessions()
    return [_session_dict(s) for s in sessions]


@mcp.tool()
async def ssh_reconnect(session_id: str, ctx: Context) -> dict:
    """Reconnect a closed session with exponential backoff.

    Args:
        session_id: A disconnected or failed session.

    Returns:
        The new session that replaces it.
    """
    try:
        info = await _app(ctx).registry.reconnect(session_id)
        return _session_dict(info)
    except SSHLiveError as e:
        return e.to_dict()


# =============================================================================
# Command Execution Tools
# =============================================================================


@mcp.tool()
async def ssh_exec(session_id: str, command: str, ctx: Context) -> dict:
    """Run a command in an SSH session.

    Args:
        session_id: A connected session.
        command: The command to run.

    Returns:
        Command output including stdout, stderr, exit code and duration.
    """
    try:
        result = await _app(ctx).executor.execute(session_id, command)
        return {
            "stdout": result.stdout_text,
            "stderr": result.stderr_text,
            "exit_code": result.exit_code,
            "duration": round(result.duration, 3),
        }
    except SSHLiveError as e:
        return e.to_dict()


# =============================================================================
# SFTP Tools
# =============================================================================


@mcp.tool()
async def sftp_list(session_id: str, path: str, ctx: Context) -> list[dict]:
    """List files in a remote directory.

    Args:
        session_id: A connected session.
        path: The directory path to list.

    Returns:
        Entries with name, size, kind, permissions and modification time.
    """
    try:
        entries = await _app(ctx).transfers.list(session_id, path)
        return [entry.model_dump(mode="json") for entry in entries]
    except SSHLiveError as e:
        return [e.to_dict()]


@mcp.tool()
async def sftp_upload(session_id: str, local_path: str, remote_path: str, ctx: Context) -> dict:
    """Upload a local file to the remote host.

    Args:
        session_id: A connected session.
        local_path: Path to the local file to upload.
        remote_path: Destination path on the remote host.

    Returns:
        Success flag and bytes transferred.
    """
    try:
        result = await _app(ctx).transfers.upload(session_id, local_path, remote_path)
        return result.model_dump(mode="json")
    except SSHLiveError as e:
        return e.to_dict()


@mcp.tool()
async def sftp_download(session_id: str, remote_path: str, local_path: str, ctx: Context) -> dict:
    """Download a remote file to the local machine.

    Args:
        session_id: A connected session.
        remote_path: Path to the file on the remote host.
        local_path: Destination path on the local machine.

    Returns:
        Success flag and bytes transferred.
    """
    try:
        result = await _app(ctx).transfers.download(session_id, remote_path, local_path)
        return result.model_dump(mode="json")
    except SSHLiveError as e:
        return e.to_dict()


# =============================================================================
# Key Management Tools
# =============================================================================


@mcp.tool()
async def keys_list(ctx: Context) -> list[dict]:
    """List stored SSH keys. Private key material is never included."""
    return [key.model_dump(mode="json") for key in _app(ctx).key_store.list()]


@mcp.tool()
async def keys_add(
    name: str, public_key: str, ctx: Context, private_key: str | None = None
) -> dict:
    """Store an existing SSH key.

    Args:
        name: Display name for the key.
        public_key: Public key in OpenSSH format.
        private_key: Optional private key; it is encrypted before storage.

    Returns:
        The stored key without private material.
    """
    try:
        record = _app(ctx).key_store.add(
            KeyData(name=name, public_key=public_key, private_key=private_key)
        )
        return record.model_dump(mode="json")
    except SSHLiveError as e:
        return e.to_dict()


@mcp.tool()
async def keys_remove(key_id: str, ctx: Context) -> dict:
    """Delete a stored SSH key.

    Args:
        key_id: The key to delete.

    Returns:
        Success flag.
    """
    try:
        return {"success": _app(ctx).key_store.remove(key_id), "key_id": key_id}
    except SSHLiveError as e:
        return e.to_dict()


@mcp.tool()
async def keys_generate(
    type: str, name: str, ctx: Context, size: int | None = None
) -> dict:
    """Generate and store a new SSH key pair.

    Args:
        type: One of rsa, ed25519 or ecdsa.
        name: Display name for the key.
        size: RSA modulus bits (default 4096) or ECDSA curve size (256 or 384).

    Returns:
        The public key, private key and fingerprint.
    """
    generator = _app(ctx).key_generator
    try:
        pair = await asyncio.to_thread(
            generator.generate, KeyGenerationOptions(type=type, size=size, name=name)
        )
        return pair.model_dump(mode="json")
    except SSHLiveError as e:
        return e.to_dict()
    except ValueError as e:
        return {"status": "error", "error": "InvalidRequest", "message": str(e)}


def main():
    """Entry point for the ssh-live MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
