"""
Startup sequencing for the tunnel and pool supervisors.

The pool connects through the tunnel's local endpoint, so the tunnel must
be live before the pool is created. Only the very first tunnel start may
abort the process: it raises
[FatalStartupError][vtsgate.core.exceptions.FatalStartupError] and no
partial service is exposed. Every later tunnel fault is handled by the
supervisor's own restart loop.

See Also:
    [TunnelSupervisor][vtsgate.core.tunnel.TunnelSupervisor]: Started first.
    [PoolSupervisor][vtsgate.core.pool.PoolSupervisor]: Started once the
        tunnel listener is bound.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Self

from .constants import ServiceName
from .exceptions import FatalStartupError, TunnelError
from .logger import Logger
from .pool import PoolSupervisor
from .tunnel import TunnelSupervisor


if TYPE_CHECKING:
    import asyncpg

    from .config import Settings


class StartupOrchestrator:
    """Starts the tunnel, then the pool, then signals readiness.

    External callers get the query capability
    ([run_query()][vtsgate.core.orchestrator.StartupOrchestrator.run_query])
    and liveness flags, never the pool or session handles.

    Examples:
        ```python
        orchestrator = StartupOrchestrator.from_settings(settings)
        await orchestrator.start()
        try:
            rows = await orchestrator.run_query("SELECT 1")
        finally:
            await orchestrator.close()
        ```
    """

    def __init__(self, tunnel: TunnelSupervisor, pool: PoolSupervisor) -> None:
        self._tunnel = tunnel
        self._pool = pool
        self._ready = asyncio.Event()
        self._logger = Logger(ServiceName.GATEWAY)

    @classmethod
    def from_settings(cls, settings: Settings) -> Self:
        """Build both supervisors from validated settings."""
        return cls(
            tunnel=TunnelSupervisor(settings.tunnel),
            pool=PoolSupervisor(settings.pool),
        )

    async def start(self) -> None:
        """Start the tunnel, then the pool, then set the ready signal.

        Raises:
            FatalStartupError: The first tunnel establishment failed.
        """
        try:
            await self._tunnel.start()
        except TunnelError as e:
            self._logger.critical("startup_failed", error=str(e), fault=type(e).__name__)
            raise FatalStartupError(f"initial tunnel establishment failed: {e}") from e

        await self._pool.start()

        self._ready.set()
        self._logger.info(
            "gateway_ready",
            tunnel_live=self._tunnel.is_live,
            pool_ready=self._pool.is_ready,
        )

    async def close(self) -> None:
        """Close the pool, then the tunnel it connects through."""
        self._ready.clear()
        try:
            await self._pool.close()
        finally:
            await self._tunnel.close()
        self._logger.info("gateway_closed")

    async def run_query(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        """Delegate to [PoolSupervisor.run_query()][vtsgate.core.pool.PoolSupervisor.run_query]."""
        return await self._pool.run_query(query, *args, timeout=timeout)

    @property
    def is_ready(self) -> bool:
        """Whether startup has completed."""
        return self._ready.is_set()

    @property
    def tunnel_live(self) -> bool:
        return self._tunnel.is_live

    @property
    def pool_ready(self) -> bool:
        return self._pool.is_ready

