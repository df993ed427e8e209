"""
Self-healing SSH tunnel built on asyncssh.

The tunnel is one lifecycle unit, a
[TunnelSession][vtsgate.core.tunnel.TunnelSession]: an authenticated SSH
session ([TunnelTransport][vtsgate.core.tunnel.TunnelTransport]) plus the
local [ForwardListener][vtsgate.core.forward.ForwardListener] bound on top
of it. [TunnelSupervisor][vtsgate.core.tunnel.TunnelSupervisor] owns at
most one session at a time and guarantees that the previous session is
fully closed (listener first, then SSH) before a new one is opened.

Faults are never retried inline. The transport resolves a single fault
future when the SSH connection is lost, whether by error or by a clean
remote close, and the supervisor's watcher turns that into a teardown plus
a restart scheduled through its
[BackoffPolicy][vtsgate.core.backoff.BackoffPolicy]. The restart loop has
no attempt limit.

Examples:
    ```python
    supervisor = TunnelSupervisor(TunnelConfig.model_validate(config_dict))
    await supervisor.start()   # raises SessionFault / ListenerFault
    ...
    await supervisor.close()
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import os
from typing import Any

import asyncssh
from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator

from .backoff import BackoffConfig, BackoffPolicy, build_backoff
from .constants import ServiceName
from .exceptions import ListenerFault, SessionFault, TunnelError
from .forward import ForwardConfig, ForwardListener
from .logger import Logger
from .metrics import record_counter, record_gauge


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class SshConfig(BaseModel):
    """SSH session parameters.

    The password is loaded from the environment variable named by
    ``password_env`` (default: ``SSH_PASSWORD``) unless given explicitly.
    It may be omitted only when ``client_keys`` are configured.

    Warning:
        ``known_hosts=None`` disables host key verification. Point it at a
        known_hosts file in production.
    """

    model_config = ConfigDict(frozen=True)

    host: str = Field(min_length=1, description="SSH server hostname")
    port: int = Field(default=22, ge=1, le=65535, description="SSH server port")
    username: str = Field(min_length=1, description="SSH username")
    password_env: str = Field(
        default="SSH_PASSWORD",  # pragma: allowlist secret
        min_length=1,
        description="Environment variable name for the SSH password",
    )
    password: SecretStr | None = Field(default=None, description="SSH password")
    client_keys: tuple[str, ...] = Field(default=(), description="Private key file paths")
    known_hosts: str | None = Field(default=None, description="known_hosts path (None = no check)")
    keepalive_interval: float = Field(default=10.0, ge=0.0, description="Keepalive period (s)")
    keepalive_count_max: int = Field(default=5, ge=1, description="Unanswered keepalives allowed")
    ready_timeout: float = Field(default=20.0, gt=0.0, description="Connect + auth timeout (s)")

    @model_validator(mode="before")
    @classmethod
    def resolve_password(cls, data: Any) -> Any:
        """Resolve the SSH password from the environment variable."""
        if isinstance(data, dict) and data.get("password") is None:
            env_var = data.get("password_env", "SSH_PASSWORD")  # pragma: allowlist secret
            value = os.getenv(env_var)
            if value:
                data = {**data, "password": SecretStr(value)}
            elif not data.get("client_keys"):
                raise ValueError(f"{env_var} environment variable not set and no client_keys")
        return data

    def connect_options(self) -> dict[str, Any]:
        """Keyword arguments for ``asyncssh.create_connection``."""
        options: dict[str, Any] = {
            "username": self.username,
            "known_hosts": self.known_hosts,
            "keepalive_interval": self.keepalive_interval,
            "keepalive_count_max": self.keepalive_count_max,
            "login_timeout": self.ready_timeout,
        }
        if self.password is not None:
            options["password"] = self.password.get_secret_value()
        if self.client_keys:
            options["client_keys"] = list(self.client_keys)
        return options


class TunnelConfig(BaseModel):
    """Aggregate tunnel configuration: SSH session, forward, restart backoff."""

    model_config = ConfigDict(frozen=True)

    ssh: SshConfig
    forward: ForwardConfig = Field(default_factory=ForwardConfig)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)


# ---------------------------------------------------------------------------
# Transport and Session
# ---------------------------------------------------------------------------


class TunnelTransport(asyncssh.SSHClient):
    """asyncssh client wrapping one SSH connection.

    Passed as the ``client_factory`` of ``asyncssh.create_connection``.
    Exposes local port forwarding over the session and a single fault future
    that resolves exactly once when the connection is lost, with the
    causing exception or ``None`` for a clean close.
    """

    def __init__(self) -> None:
        self._connection: asyncssh.SSHClientConnection | None = None
        self._fault: asyncio.Future[Exception | None] = (
            asyncio.get_running_loop().create_future()
        )

    def connection_made(self, conn: asyncssh.SSHClientConnection) -> None:
        self._connection = conn

    def connection_lost(self, exc: Exception | None) -> None:
        if not self._fault.done():
            self._fault.set_result(exc)

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._fault.done()

    async def forward_local_port(
        self,
        listen_host: str,
        listen_port: int,
        dest_host: str,
        dest_port: int,
        **kwargs: Any,
    ) -> asyncssh.SSHListener:
        """Forward ``listen_host:listen_port`` to ``dest_host:dest_port`` through the session."""
        if self._connection is None or self._fault.done():
            raise asyncssh.ChannelOpenError(
                asyncssh.OPEN_CONNECT_FAILED, "SSH session is not connected"
            )
        return await self._connection.forward_local_port(
            listen_host, listen_port, dest_host, dest_port, **kwargs
        )

    async def wait_fault(self) -> Exception | None:
        """Wait until the connection is lost; return the cause, if any."""
        return await asyncio.shield(self._fault)

    async def close(self) -> None:
        """Close the SSH connection and wait for it to finish closing."""
        if self._connection is not None:
            self._connection.close()
            await self._connection.wait_closed()


class TunnelSession:
    """A live SSH transport plus the listener bound on top of it.

    Only ever constructed fully live; closed as a unit.
    """

    def __init__(self, transport: TunnelTransport, listener: ForwardListener) -> None:
        self.transport = transport
        self.listener = listener

    @property
    def is_live(self) -> bool:
        return self.transport.is_connected and self.listener.is_serving

    async def close(self) -> None:
        """Close the listener, then the SSH session and every channel on it."""
        self.listener.close()
        try:
            await self.transport.close()
        finally:
            await self.listener.wait_closed()


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


class TunnelSupervisor:
    """Owns the single TunnelSession and keeps it alive.

    Attributes:
        _session: The live session, or ``None``.
        _lock: Serializes teardown/establish so that two sessions never
            coexist.
        _watch_task: Awaits the current session's fault future.
        _restart_task: The pending backoff-and-restart loop, at most one.

    Note:
        Only [start()][vtsgate.core.tunnel.TunnelSupervisor.start] raises.
        Faults after a successful start are logged and handled by the
        restart loop, which retries forever until
        [close()][vtsgate.core.tunnel.TunnelSupervisor.close] is called.
    """

    def __init__(self, config: TunnelConfig, backoff: BackoffPolicy | None = None) -> None:
        self._config = config
        self._backoff = backoff or build_backoff(config.backoff)
        self._session: TunnelSession | None = None
        self._lock = asyncio.Lock()
        self._watch_task: asyncio.Task[None] | None = None
        self._restart_task: asyncio.Task[None] | None = None
        self._closed = False
        self._logger = Logger(ServiceName.TUNNEL)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Tear down any existing session, then establish a new one.

        Returns once the local listener is bound and accepting. A pending
        restart is cancelled first so it cannot race this call.

        Raises:
            SessionFault: SSH connect, authentication or readiness timeout
                failed.
            ListenerFault: The local port could not be bound.
        """
        self._closed = False
        await self._cancel_restart()
        await self._establish()

    async def close(self) -> None:
        """Stop restarting and close the current session. Idempotent."""
        self._closed = True
        await self._cancel_restart()
        async with self._lock:
            await self._teardown()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_live(self) -> bool:
        """Whether a fully live session exists."""
        return self._session is not None and self._session.is_live

    @property
    def local_port(self) -> int | None:
        """The bound local port of the live session, if any."""
        if self._session is None:
            return None
        return self._session.listener.port

    @property
    def config(self) -> TunnelConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _connect(self) -> TunnelTransport:
        ssh = self._config.ssh
        try:
            _conn, transport = await asyncio.wait_for(
                asyncssh.create_connection(
                    TunnelTransport, ssh.host, ssh.port, **ssh.connect_options()
                ),
                timeout=ssh.ready_timeout,
            )
        except TimeoutError as e:
            record_counter(ServiceName.TUNNEL, "session_faults")
            raise SessionFault(
                f"SSH session to {ssh.host}:{ssh.port} not ready after {ssh.ready_timeout}s"
            ) from e
        except (asyncssh.Error, OSError, ValueError) as e:
            record_counter(ServiceName.TUNNEL, "session_faults")
            raise SessionFault(f"SSH session to {ssh.host}:{ssh.port} failed: {e}") from e
        return transport

    async def _establish(self) -> None:
        ssh = self._config.ssh
        forward = self._config.forward

        async with self._lock:
            await self._teardown()

            self._logger.info(
                "tunnel_starting", host=ssh.host, port=ssh.port, username=ssh.username
            )
            transport = await self._connect()

            listener = ForwardListener(transport, forward)
            try:
                await listener.start()
            except (asyncssh.Error, OSError) as e:
                await transport.close()
                raise ListenerFault(
                    f"cannot bind {forward.local_host}:{forward.local_port}: {e}"
                ) from e

            session = TunnelSession(transport, listener)
            self._session = session
            self._watch_task = asyncio.create_task(self._watch(session))
            record_gauge(ServiceName.TUNNEL, "live", 1)

            self._logger.info(
                "tunnel_ready",
                local=f"{forward.local_host}:{listener.port}",
                remote=f"{forward.remote_host}:{forward.remote_port}",
            )

    async def _teardown(self) -> None:
        """Close the current session, if any. Caller holds ``_lock``."""
        session, self._session = self._session, None
        watch, self._watch_task = self._watch_task, None

        if watch is not None and watch is not asyncio.current_task():
            watch.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watch

        if session is not None:
            await session.close()
            record_gauge(ServiceName.TUNNEL, "live", 0)
            self._logger.info("tunnel_closed")

    async def _watch(self, session: TunnelSession) -> None:
        exc = await session.transport.wait_fault()

        async with self._lock:
            if session is not self._session:
                return
            record_counter(ServiceName.TUNNEL, "session_faults")
            if exc is not None:
                self._logger.error("session_fault", error=str(exc))
            else:
                self._logger.warning("session_fault", error="remote closed the session")
            await self._teardown()

        self._schedule_restart()

    def _schedule_restart(self) -> None:
        if self._closed:
            return
        if self._restart_task is not None and not self._restart_task.done():
            return
        self._restart_task = asyncio.create_task(self._restart_loop())

    async def _restart_loop(self) -> None:
        attempt = 0
        while not self._closed:
            delay = self._backoff.delay(attempt)
            self._logger.info("tunnel_reconnecting", attempt=attempt + 1, delay_s=delay)
            await asyncio.sleep(delay)
            if self._closed:
                return
            try:
                await self._establish()
            except TunnelError as e:
                self._logger.error(
                    "listener_fault" if isinstance(e, ListenerFault) else "tunnel_restart_failed",
                    attempt=attempt + 1,
                    error=str(e),
                )
                attempt += 1
                continue
            except Exception as e:  # Intentionally broad: restart loop boundary
                self._logger.error(
                    "tunnel_restart_failed",
                    attempt=attempt + 1,
                    error=f"{type(e).__name__}: {e}",
                )
                attempt += 1
                continue
            record_counter(ServiceName.TUNNEL, "restarts")
            return

    async def _cancel_restart(self) -> None:
        task, self._restart_task = self._restart_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def __repr__(self) -> str:
        ssh = self._config.ssh
        return f"TunnelSupervisor(host={ssh.host}, live={self.is_live})"
