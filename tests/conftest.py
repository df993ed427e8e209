"""
Pytest configuration and shared fixtures for vtsgate tests.

Provides:
- Password environment variables for every test
- A loopback echo server standing in for the remote PostgreSQL port
- A fake SSH server patched into ``asyncssh.create_connection``
- Mock asyncpg pools patched into ``asyncpg.create_pool``
- Small polling helper for eventually-true conditions
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import asyncssh
import pytest

from vtsgate.core.backoff import BackoffConfig
from vtsgate.core.forward import ForwardConfig
from vtsgate.core.pool import DatabaseConfig, PoolConfig, PoolTimeoutsConfig
from vtsgate.core.tunnel import SshConfig, TunnelConfig, TunnelTransport


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


@pytest.fixture(autouse=True)
def passwords(monkeypatch: pytest.MonkeyPatch) -> None:
    """Every test runs with both secrets present in the environment."""
    monkeypatch.setenv("SSH_PASSWORD", "ssh_test_pass")  # pragma: allowlist secret
    monkeypatch.setenv("DB_PASSWORD", "db_test_pass")  # pragma: allowlist secret


# ============================================================================
# Helpers
# ============================================================================


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:  # noqa: ASYNC109
    """Poll ``predicate`` until it is true; fail the test on timeout."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


async def read_until_closed(reader: asyncio.StreamReader) -> bool:
    """Return True once the peer has closed (EOF or reset)."""
    try:
        return await reader.read(1024) == b""
    except ConnectionError:
        return True


# ============================================================================
# Echo server (the "remote database")
# ============================================================================


@pytest.fixture
async def echo_server() -> AsyncIterator[tuple[str, int]]:
    """Loopback TCP server echoing every byte back."""

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            while data := await reader.read(65536):
                writer.write(data)
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    yield "127.0.0.1", port
    server.close()


# ============================================================================
# Fake SSH
# ============================================================================


class FakeSSHListener:
    """Stands in for the ``SSHListener`` of ``forward_local_port``.

    Accepted sockets are relayed to the connection's ``target`` over a real
    loopback stream, one "channel" per socket, like asyncssh's forwarder.
    """

    def __init__(self, conn: FakeSSHConnection, dest: tuple[str, int], accept_handler: Any) -> None:
        self._conn = conn
        self._dest = dest
        self._accept_handler = accept_handler
        self._server: asyncio.Server | None = None
        self.relays: set[asyncio.Task[None]] = set()
        self.closed = False

    async def start(self, host: str, port: int) -> None:
        self._server = await asyncio.start_server(self._handle, host, port)

    def get_port(self) -> int:
        assert self._server is not None
        return int(self._server.sockets[0].getsockname()[1])

    def close(self) -> None:
        self.closed = True
        if self._server is not None:
            self._server.close()

    async def wait_closed(self) -> None:
        if self._server is not None:
            await self._server.wait_closed()

    def abort_relays(self) -> None:
        for task in self.relays:
            task.cancel()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        assert task is not None
        self.relays.add(task)
        try:
            peer = writer.get_extra_info("peername")
            if self._accept_handler is not None and not self._accept_handler(*peer[:2]):
                return
            if self._conn.closed or self._conn.refuse_channels:
                return
            self._conn.opened.append(self._dest)
            remote_reader, remote_writer = await asyncio.open_connection(*self._conn.target)
            pipes = {
                asyncio.create_task(_pipe(reader, remote_writer)),
                asyncio.create_task(_pipe(remote_reader, writer)),
            }
            try:
                await asyncio.wait(pipes, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for pipe in pipes:
                    pipe.cancel()
                remote_writer.close()
        except asyncio.CancelledError:
            pass
        finally:
            writer.close()
            self.relays.discard(task)


async def _pipe(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    try:
        while data := await reader.read(65536):
            writer.write(data)
            await writer.drain()
    except ConnectionError:
        pass


class FakeSSHConnection:
    """Stands in for ``asyncssh.SSHClientConnection``.

    ``forward_local_port`` binds a real local port whose relays reach
    ``target``. ``drop()`` simulates the session dying: like asyncssh, it
    closes every channel and every local listener.
    """

    def __init__(self, transport: TunnelTransport, target: tuple[str, int]) -> None:
        self.transport = transport
        self.target = target
        self.closed = False
        self.refuse_channels = False
        self.opened: list[tuple[str, int]] = []
        self.listeners: list[FakeSSHListener] = []
        self.forward_requests: list[tuple[str, int, str, int]] = []

    async def forward_local_port(
        self,
        listen_host: str,
        listen_port: int,
        dest_host: str,
        dest_port: int,
        accept_handler: Any = None,
    ) -> FakeSSHListener:
        self.forward_requests.append((listen_host, listen_port, dest_host, dest_port))
        listener = FakeSSHListener(self, (dest_host, dest_port), accept_handler)
        await listener.start(listen_host, listen_port)
        self.listeners.append(listener)
        return listener

    @property
    def active_relays(self) -> int:
        return sum(len(listener.relays) for listener in self.listeners)

    def drop(self, exc: Exception | None = None) -> None:
        self.closed = True
        for listener in self.listeners:
            listener.abort_relays()
            listener.close()
        self.transport.connection_lost(exc)

    def close(self) -> None:
        self.drop(None)

    async def wait_closed(self) -> None:
        return None


class FakeSSHServer:
    """Replacement for ``asyncssh.create_connection``.

    Attributes:
        connections: Every connection handed out, in order.
        failures: Exceptions raised by the next connect attempts, FIFO.
        attempts: Number of connect calls.
        hang: When True, connect never completes (readiness timeout).
        options: Keyword options of the last connect call.
    """

    def __init__(self, target: tuple[str, int]) -> None:
        self.target = target
        self.connections: list[FakeSSHConnection] = []
        self.failures: list[Exception] = []
        self.attempts = 0
        self.hang = False
        self.options: dict[str, Any] = {}

    async def create_connection(
        self, client_factory: Callable[[], TunnelTransport], host: str, port: int, **options: Any
    ) -> tuple[FakeSSHConnection, TunnelTransport]:
        self.attempts += 1
        self.options = {"host": host, "port": port, **options}
        if self.hang:
            await asyncio.sleep(3600)
        if self.failures:
            raise self.failures.pop(0)
        transport = client_factory()
        conn = FakeSSHConnection(transport, self.target)
        transport.connection_made(conn)  # type: ignore[arg-type]
        self.connections.append(conn)
        return conn, transport

    @property
    def live_connections(self) -> list[FakeSSHConnection]:
        return [c for c in self.connections if not c.closed]


@pytest.fixture
def fake_ssh(echo_server: tuple[str, int]) -> Any:
    """Patch ``asyncssh.create_connection`` with a fake SSH server."""
    server = FakeSSHServer(echo_server)
    with patch("asyncssh.create_connection", server.create_connection):
        yield server


@pytest.fixture
def fast_backoff() -> BackoffConfig:
    return BackoffConfig(initial_delay=0.01, max_delay=0.01)


@pytest.fixture
def tunnel_config(echo_server: tuple[str, int], fast_backoff: BackoffConfig) -> TunnelConfig:
    """Tunnel config binding an ephemeral local port and targeting the echo server."""
    host, port = echo_server
    return TunnelConfig(
        ssh=SshConfig(host="ssh.example.com", username="root", ready_timeout=1.0),
        forward=ForwardConfig(local_port=0, remote_host=host, remote_port=port),
        backoff=fast_backoff,
    )


# ============================================================================
# Mock asyncpg
# ============================================================================


def make_pool_handle(rows: list[Any] | None = None) -> MagicMock:
    """Create a mock asyncpg pool whose probe succeeds."""
    handle = MagicMock()
    handle.fetchval = AsyncMock(return_value=1)
    handle.fetch = AsyncMock(return_value=rows or [])
    handle.close = AsyncMock()
    handle.terminate = MagicMock()
    return handle


@pytest.fixture
def pool_handle() -> MagicMock:
    return make_pool_handle()


@pytest.fixture
def mock_create_pool(pool_handle: MagicMock) -> Any:
    """Patch ``asyncpg.create_pool`` to return ``pool_handle``."""
    with patch("asyncpg.create_pool", new=AsyncMock(return_value=pool_handle)) as create_pool:
        yield create_pool


@pytest.fixture
def pool_config(fast_backoff: BackoffConfig) -> PoolConfig:
    return PoolConfig(
        database=DatabaseConfig(password="db_test_pass"),  # pragma: allowlist secret
        timeouts=PoolTimeoutsConfig(health_check_interval=0, close=0.5),
        backoff=fast_backoff,
    )
