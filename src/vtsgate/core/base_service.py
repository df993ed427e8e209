"""
Abstract base class for long-running services consuming the gateway.

``BaseService[ConfigT]`` provides the standard lifecycle: structured
logging via [Logger][vtsgate.core.logger.Logger], graceful shutdown via
``asyncio.Event``, interval-based cycling with
[run_forever()][vtsgate.core.base_service.BaseService.run_forever],
consecutive failure limits, and Prometheus cycle metrics.

Services never touch the tunnel or the pool directly. They receive the
[StartupOrchestrator][vtsgate.core.orchestrator.StartupOrchestrator] and
use its query capability and liveness flags.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from types import TracebackType
from typing import ClassVar, Generic, Self, TypeVar, cast

from pydantic import BaseModel, Field

from .constants import ServiceName
from .logger import Logger
from .metrics import (
    CYCLE_DURATION_SECONDS,
    SERVICE_INFO,
    MetricsConfig,
    record_counter,
    record_gauge,
)
from .orchestrator import StartupOrchestrator


# ---------------------------------------------------------------------------
# Base Configuration
# ---------------------------------------------------------------------------


class BaseServiceConfig(BaseModel):
    """Base configuration shared by all services that run in a loop.

    See Also:
        [BaseService][vtsgate.core.base_service.BaseService]: The abstract
            service class that consumes this configuration.
        [MetricsConfig][vtsgate.core.metrics.MetricsConfig]: Embedded
            configuration for the Prometheus metrics endpoint.
    """

    interval: float = Field(
        default=60.0,
        ge=1.0,
        description="Seconds between run cycles",
    )
    max_consecutive_failures: int = Field(
        default=5,
        ge=0,
        description="Stop after this many consecutive errors (0 = unlimited)",
    )
    metrics: MetricsConfig = Field(
        default_factory=MetricsConfig,
        description="Prometheus metrics configuration",
    )


ConfigT = TypeVar("ConfigT", bound=BaseServiceConfig)


class BaseService(ABC, Generic[ConfigT]):
    """Abstract base class for all vtsgate services.

    Subclasses set ``SERVICE_NAME`` and ``CONFIG_CLASS`` and implement
    [run()][vtsgate.core.base_service.BaseService.run].

    Attributes:
        SERVICE_NAME: Service identifier used in logging and metrics.
        CONFIG_CLASS: Pydantic model class used by the factory methods.
        _orchestrator: The started gateway; source of queries and liveness.
        _config: Typed service configuration.
        _logger: [Logger][vtsgate.core.logger.Logger] named after the service.
        _shutdown_event: Clear while running; set once shutdown is requested.

    Note:
        The lifecycle pattern is: ``await orchestrator.start()``, then
        ``async with service:`` then
        [run_forever()][vtsgate.core.base_service.BaseService.run_forever].
    """

    SERVICE_NAME: ClassVar[ServiceName]
    CONFIG_CLASS: ClassVar[type[BaseModel]]

    def __init__(self, orchestrator: StartupOrchestrator, config: ConfigT | None = None) -> None:
        self._orchestrator = orchestrator
        self._config: ConfigT = (
            config if config is not None else cast("ConfigT", self.CONFIG_CLASS())
        )
        self._logger = Logger(self.SERVICE_NAME)
        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> ConfigT:
        """The typed service configuration (read-only)."""
        return self._config

    @abstractmethod
    async def run(self) -> None:
        """Execute one cycle of the service's main logic."""
        ...

    def request_shutdown(self) -> None:
        """Request a graceful shutdown. Safe to call from signal handlers."""
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        """Whether the service is still active (shutdown not yet requested)."""
        return not self._shutdown_event.is_set()

    async def wait(self, timeout: float) -> bool:  # noqa: ASYNC109
        """Wait for a shutdown signal or ``timeout`` seconds.

        Returns ``True`` if shutdown was requested during the wait, ``False``
        if the timeout expired.
        """
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
            return True
        except TimeoutError:
            return False

    async def run_forever(self) -> None:
        """Call [run()][vtsgate.core.base_service.BaseService.run] every ``interval`` seconds.

        Exits on [request_shutdown()][vtsgate.core.base_service.BaseService.request_shutdown]
        or after ``max_consecutive_failures`` failed cycles in a row
        (``0`` disables the limit). ``CancelledError``, ``KeyboardInterrupt``
        and ``SystemExit`` propagate without being counted.
        """
        interval = self._config.interval
        max_consecutive_failures = self._config.max_consecutive_failures

        SERVICE_INFO.info({"service": str(self.SERVICE_NAME)})
        self._logger.info(
            "run_forever_started",
            interval=interval,
            max_consecutive_failures=max_consecutive_failures,
        )

        consecutive_failures = 0

        while self.is_running:
            cycle_start = time.monotonic()

            try:
                await self.run()

                CYCLE_DURATION_SECONDS.labels(service=self.SERVICE_NAME).observe(
                    time.monotonic() - cycle_start
                )
                self.inc_counter("cycles_success")
                self.set_gauge("last_cycle_timestamp", time.time())
                self.set_gauge("consecutive_failures", 0)
                consecutive_failures = 0

            except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
                raise

            except Exception as e:  # Intentionally broad: top-level error boundary for run_forever
                consecutive_failures += 1
                self.inc_counter("cycles_failed")
                self.inc_counter(f"errors_{type(e).__name__}")
                self.set_gauge("consecutive_failures", consecutive_failures)

                self._logger.error(
                    "run_cycle_error",
                    error=str(e),
                    consecutive_failures=consecutive_failures,
                )

                if 0 < max_consecutive_failures <= consecutive_failures:
                    self._logger.critical(
                        "max_consecutive_failures_reached",
                        failures=consecutive_failures,
                        limit=max_consecutive_failures,
                    )
                    break

            if await self.wait(interval):
                break

        self._logger.info("run_forever_stopped")

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Self:
        """Mark the service as running on context entry."""
        self._shutdown_event.clear()
        self._logger.info("service_started")
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        """Signal shutdown on context exit."""
        self._shutdown_event.set()
        self._logger.info("service_stopped")

    # -------------------------------------------------------------------------
    # Custom Metrics
    # -------------------------------------------------------------------------

    def set_gauge(self, name: str, value: float) -> None:
        """Set a named gauge metric for this service."""
        record_gauge(self.SERVICE_NAME, name, value)

    def inc_counter(self, name: str, value: float = 1) -> None:
        """Increment a named counter metric for this service."""
        record_counter(self.SERVICE_NAME, name, value)
