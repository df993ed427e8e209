"""
Self-healing PostgreSQL connection pool built on asyncpg.

[PoolSupervisor][vtsgate.core.pool.PoolSupervisor] owns at most one
[DataPool][vtsgate.core.pool.DataPool]. A pool is marked live only after a
``SELECT 1`` liveness probe succeeds; until then, and whenever a fault is
detected, [run_query()][vtsgate.core.pool.PoolSupervisor.run_query] fails
fast with [PoolNotReadyError][vtsgate.core.exceptions.PoolNotReadyError]
instead of waiting.

Pool-level faults reach the supervisor through a single fault future per
pool, fed by the periodic health probe and by connection-level errors seen
on queries. Each fault schedules a full recreation (close the old pool,
suppressing close errors, then create and probe a new one) after a backoff
delay. There is no attempt limit.

Query-level errors (bad SQL, statement timeout) are request-scoped: they
raise [QueryError][vtsgate.core.exceptions.QueryError] and leave the pool
alone.

Examples:
    ```python
    supervisor = PoolSupervisor(PoolConfig.model_validate(config_dict))
    await supervisor.start()          # never raises; retries in background
    await supervisor.wait_ready()
    rows = await supervisor.run_query("SELECT imei FROM imei_data LIMIT 10")
    ```
"""

from __future__ import annotations

import asyncio
import contextlib
import os
from typing import Any

import asyncpg
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationInfo,
    field_validator,
    model_validator,
)

from .backoff import BackoffConfig, BackoffPolicy, build_backoff
from .constants import ServiceName
from .exceptions import PoolCreationFault, PoolNotReadyError, PoolRuntimeFault, QueryError
from .logger import Logger
from .metrics import record_counter, record_gauge


_QUERY_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)
_CREATION_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError)


def _is_connection_error(exc: BaseException) -> bool:
    """Whether ``exc`` means the pool or its connection is broken.

    Client-side ``InterfaceError`` subclasses such as ``DataError`` (bad
    query arguments) are request-scoped; only the "closed" and "closing"
    interface errors asyncpg raises for dead connections and pools count.
    """
    if isinstance(exc, TimeoutError):
        return False
    if isinstance(exc, (asyncpg.PostgresConnectionError, OSError)):
        return True
    if type(exc) is asyncpg.InterfaceError:
        message = str(exc)
        return "is closed" in message or "is closing" in message
    return False


# ---------------------------------------------------------------------------
# Configuration Models
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseModel):
    """PostgreSQL connection parameters.

    ``host`` and ``port`` point at the local end of the SSH tunnel, not at
    the database server itself. The password is loaded from the environment
    variable named by ``password_env`` (default: ``DB_PASSWORD``) unless
    given explicitly.

    Warning:
        The ``password`` field is a ``SecretStr`` and never appears in
        string representations or serialized output.
    """

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="127.0.0.1", min_length=1, description="Tunnel local host")
    port: int = Field(default=55432, ge=1, le=65535, description="Tunnel local port")
    database: str = Field(default="vts_data", min_length=1, description="Database name")
    user: str = Field(default="postgres", min_length=1, description="Database user")
    password_env: str = Field(
        default="DB_PASSWORD",  # pragma: allowlist secret
        min_length=1,
        description="Environment variable name for database password",
    )
    password: SecretStr = Field(description="Database password (loaded from password_env)")

    @model_validator(mode="before")
    @classmethod
    def resolve_password(cls, data: Any) -> Any:
        """Resolve the database password from the environment variable."""
        if isinstance(data, dict) and data.get("password") is None:
            env_var = data.get("password_env", "DB_PASSWORD")  # pragma: allowlist secret
            value = os.getenv(env_var)
            if not value:
                raise ValueError(f"{env_var} environment variable not set")
            data = {**data, "password": SecretStr(value)}
        return data


class PoolLimitsConfig(BaseModel):
    """Connection pool size and recycling limits."""

    model_config = ConfigDict(frozen=True)

    min_size: int = Field(default=1, ge=0, le=100, description="Minimum connections")
    max_size: int = Field(default=10, ge=1, le=200, description="Maximum connections")
    max_queries: int = Field(default=50_000, ge=100, description="Queries before recycling")
    max_inactive_connection_lifetime: float = Field(
        default=300.0, ge=0.0, description="Idle timeout (seconds)"
    )

    @field_validator("max_size")
    @classmethod
    def validate_max_size(cls, v: int, info: ValidationInfo) -> int:
        """Ensure max_size >= min_size."""
        min_size = info.data.get("min_size", 1)
        if v < min_size:
            raise ValueError(f"max_size ({v}) must be >= min_size ({min_size})")
        return v


class PoolTimeoutsConfig(BaseModel):
    """Timeout settings for pool operations (in seconds).

    Note:
        ``health_check_interval`` of ``0`` disables the periodic probe; faults
        are then only detected through connection errors on queries.
    """

    model_config = ConfigDict(frozen=True)

    connect: float = Field(default=10.0, gt=0.0, description="Connection establishment timeout")
    probe: float = Field(default=5.0, gt=0.0, description="Liveness probe timeout")
    query: float = Field(default=60.0, gt=0.0, description="Default run_query timeout")
    close: float = Field(default=10.0, gt=0.0, description="Graceful close timeout")
    health_check_interval: float = Field(
        default=30.0, ge=0.0, description="Seconds between health probes (0 = disabled)"
    )


class ServerSettingsConfig(BaseModel):
    """PostgreSQL server-side session settings sent with every connection.

    Note:
        ``statement_timeout`` is in milliseconds (PostgreSQL convention).
        Set to ``0`` to disable.
    """

    model_config = ConfigDict(frozen=True)

    application_name: str = Field(default="vtsgate", description="Application name")
    timezone: str = Field(default="UTC", description="Timezone")
    statement_timeout: int = Field(
        default=300_000, ge=0, description="Max query execution time in milliseconds"
    )


class PoolConfig(BaseModel):
    """Aggregate configuration for the pool supervisor."""

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = Field(default_factory=lambda: DatabaseConfig.model_validate({}))
    limits: PoolLimitsConfig = Field(default_factory=PoolLimitsConfig)
    timeouts: PoolTimeoutsConfig = Field(default_factory=PoolTimeoutsConfig)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    server_settings: ServerSettingsConfig = Field(default_factory=ServerSettingsConfig)


# ---------------------------------------------------------------------------
# DataPool
# ---------------------------------------------------------------------------


class DataPool:
    """One asyncpg pool plus its liveness flag and fault future."""

    def __init__(self, handle: asyncpg.Pool) -> None:
        self.handle = handle
        self.live = False
        self._fault: asyncio.Future[Exception] = asyncio.get_running_loop().create_future()

    def report_fault(self, exc: Exception) -> None:
        """Record a pool-level fault. Only the first report counts."""
        self.live = False
        if not self._fault.done():
            self._fault.set_result(exc)

    @property
    def faulted(self) -> bool:
        return self._fault.done()

    async def wait_fault(self) -> Exception:
        return await asyncio.shield(self._fault)

    async def close(self, timeout: float) -> None:  # noqa: ASYNC109
        """Close gracefully, terminating connections that do not return in time."""
        self.live = False
        try:
            await asyncio.wait_for(self.handle.close(), timeout)
        except TimeoutError:
            self.handle.terminate()


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


class PoolSupervisor:
    """Owns the single DataPool and keeps it alive.

    Attributes:
        _pool: The current pool (live or awaiting recreation), or ``None``.
        _lock: Serializes discard/create so two pools never coexist.
        _recreate_task: The pending backoff-and-recreate loop, at most one.
        _watch_task: Awaits the live pool's fault future.
        _health_task: Periodic liveness probe of the live pool.
        _ready: Set while a live pool exists.
    """

    def __init__(self, config: PoolConfig, backoff: BackoffPolicy | None = None) -> None:
        self._config = config
        self._backoff = backoff or build_backoff(config.backoff)
        self._pool: DataPool | None = None
        self._lock = asyncio.Lock()
        self._recreate_task: asyncio.Task[None] | None = None
        self._watch_task: asyncio.Task[None] | None = None
        self._health_task: asyncio.Task[None] | None = None
        self._ready = asyncio.Event()
        self._closed = False
        self._logger = Logger(ServiceName.POOL)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Create the pool; on failure schedule recreation and return.

        Never raises for connection problems. Poll
        [is_ready][vtsgate.core.pool.PoolSupervisor.is_ready] or await
        [wait_ready()][vtsgate.core.pool.PoolSupervisor.wait_ready].
        """
        self._closed = False
        await self._cancel_recreate()
        try:
            await self._create()
        except PoolCreationFault:
            self._schedule_recreate()

    async def close(self) -> None:
        """Stop recreating and close the current pool. Idempotent."""
        self._closed = True
        await self._cancel_recreate()
        async with self._lock:
            await self._discard()

    async def wait_ready(self) -> None:
        """Wait until a live pool exists."""
        await self._ready.wait()

    # -------------------------------------------------------------------------
    # Query surface
    # -------------------------------------------------------------------------

    async def run_query(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        """Run ``query`` on the live pool and return all rows.

        Args:
            query: SQL with ``$1``, ``$2``, ... placeholders.
            *args: Query parameters.
            timeout: Client-side timeout; defaults to ``timeouts.query``.

        Raises:
            PoolNotReadyError: No live pool right now. Raised immediately.
            PoolRuntimeFault: The pool's connection broke; recreation has
                been scheduled.
            QueryError: The query itself failed or timed out.
        """
        pool = self._pool
        if pool is None or not pool.live:
            raise PoolNotReadyError("Database connection not ready.")

        if timeout is None:
            timeout = self._config.timeouts.query
        try:
            return await pool.handle.fetch(query, *args, timeout=timeout)
        except _QUERY_ERRORS as e:
            if not _is_connection_error(e):
                self._logger.error("query_failed", kind="query", error=str(e) or type(e).__name__)
                raise QueryError(str(e) or type(e).__name__) from e
            self._logger.error("query_failed", kind="connection", error=str(e))
            pool.report_fault(e)
            raise PoolRuntimeFault(f"connection lost during query: {e}") from e

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        """Whether a live pool exists."""
        return self._pool is not None and self._pool.live

    @property
    def config(self) -> PoolConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _create_handle(self) -> asyncpg.Pool:
        db = self._config.database
        limits = self._config.limits
        settings = self._config.server_settings
        return await asyncpg.create_pool(
            host=db.host,
            port=db.port,
            database=db.database,
            user=db.user,
            password=db.password.get_secret_value(),
            min_size=limits.min_size,
            max_size=limits.max_size,
            max_queries=limits.max_queries,
            max_inactive_connection_lifetime=limits.max_inactive_connection_lifetime,
            timeout=self._config.timeouts.connect,
            server_settings={
                "application_name": settings.application_name,
                "timezone": settings.timezone,
                "statement_timeout": str(settings.statement_timeout),
            },
        )

    async def _create(self) -> None:
        """Discard the old pool, then create and probe a new one.

        Raises:
            PoolCreationFault: ``create_pool`` or the probe failed. A pool
                that failed its probe stays in ``_pool`` (not live) and is
                closed by the next attempt.
        """
        db = self._config.database

        async with self._lock:
            await self._discard()

            self._logger.info(
                "pool_creating", host=db.host, port=db.port, database=db.database
            )
            try:
                handle = await self._create_handle()
            except _CREATION_ERRORS as e:
                record_counter(ServiceName.POOL, "creation_faults")
                self._logger.error("pool_creation_failed", stage="connect", error=str(e))
                raise PoolCreationFault(f"cannot create pool: {e}") from e

            pool = DataPool(handle)
            self._pool = pool

            try:
                await handle.fetchval("SELECT 1", timeout=self._config.timeouts.probe)
            except _CREATION_ERRORS as e:
                record_counter(ServiceName.POOL, "creation_faults")
                self._logger.error("pool_creation_failed", stage="probe", error=str(e))
                raise PoolCreationFault(f"liveness probe failed: {e}") from e

            pool.live = True
            self._ready.set()
            record_gauge(ServiceName.POOL, "live", 1)
            self._watch_task = asyncio.create_task(self._watch(pool))
            if self._config.timeouts.health_check_interval > 0:
                self._health_task = asyncio.create_task(self._health_loop(pool))
            self._logger.info("pool_ready", host=db.host, port=db.port)

    async def _discard(self) -> None:
        """Close the current pool, ignoring close errors. Caller holds ``_lock``."""
        pool, self._pool = self._pool, None
        self._ready.clear()

        for attr in ("_watch_task", "_health_task"):
            task = getattr(self, attr)
            setattr(self, attr, None)
            if task is not None and task is not asyncio.current_task():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if pool is None:
            return
        record_gauge(ServiceName.POOL, "live", 0)
        try:
            await pool.close(self._config.timeouts.close)
        except Exception as e:  # Intentionally broad: the pool is being discarded
            self._logger.debug("pool_close_ignored", error=str(e))

    async def _watch(self, pool: DataPool) -> None:
        exc = await pool.wait_fault()

        async with self._lock:
            if pool is not self._pool:
                return
            self._ready.clear()
            record_gauge(ServiceName.POOL, "live", 0)
            record_counter(ServiceName.POOL, "faults")
            self._logger.error("pool_fault", error=str(exc) or type(exc).__name__)

        self._schedule_recreate()

    async def _health_loop(self, pool: DataPool) -> None:
        interval = self._config.timeouts.health_check_interval
        while pool.live:
            await asyncio.sleep(interval)
            if pool is not self._pool or not pool.live:
                return
            try:
                await pool.handle.fetchval("SELECT 1", timeout=self._config.timeouts.probe)
            except _CREATION_ERRORS as e:
                pool.report_fault(PoolRuntimeFault(f"health probe failed: {e}"))
                return

    def _schedule_recreate(self) -> None:
        if self._closed:
            return
        if self._recreate_task is not None and not self._recreate_task.done():
            return
        self._recreate_task = asyncio.create_task(self._recreate_loop())

    async def _recreate_loop(self) -> None:
        attempt = 0
        while not self._closed:
            delay = self._backoff.delay(attempt)
            self._logger.info("pool_recreating", attempt=attempt + 1, delay_s=delay)
            await asyncio.sleep(delay)
            if self._closed:
                return
            try:
                await self._create()
            except PoolCreationFault:
                attempt += 1
                continue
            record_counter(ServiceName.POOL, "recreations")
            return

    async def _cancel_recreate(self) -> None:
        task, self._recreate_task = self._recreate_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def __repr__(self) -> str:
        db = self._config.database
        return f"PoolSupervisor(host={db.host}, database={db.database}, ready={self.is_ready})"
