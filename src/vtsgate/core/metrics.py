"""
Prometheus metrics collection and HTTP exposition.

Defines module-level metric objects shared by the supervisors and the API
service. Supervisors record restarts, faults and liveness through
[record_counter()][vtsgate.core.metrics.record_counter] and
[record_gauge()][vtsgate.core.metrics.record_gauge];
``BaseService.run_forever()`` records cycle counts and durations.

The ``MetricsServer`` provides an async HTTP endpoint (via aiohttp) for
Prometheus scraping, configured through ``MetricsConfig``.

Architecture:
    SERVICE_INFO:               Static metadata set once at startup.
    SERVICE_GAUGE:              Point-in-time values (tunnel_live, pool_live).
    SERVICE_COUNTER:            Cumulative totals (restarts, faults).
    CYCLE_DURATION_SECONDS:     Histogram of API service cycle durations.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Configuration for the Prometheus metrics endpoint.

    The endpoint is only started when ``enabled`` is True. Metric objects
    are updated regardless, so enabling exposition never changes behaviour.
    """

    enabled: bool = Field(default=False, description="Expose metrics over HTTP")
    port: int = Field(default=8000, ge=1024, le=65535, description="Metrics HTTP port")
    host: str = Field(default="127.0.0.1", description="Metrics HTTP bind address")
    path: str = Field(default="/metrics", description="Metrics endpoint path")


# ---------------------------------------------------------------------------
# Metric objects
# ---------------------------------------------------------------------------

SERVICE_INFO = Info(
    "vtsgate",
    "Gateway information and metadata",
)

CYCLE_DURATION_SECONDS = Histogram(
    "vtsgate_cycle_duration_seconds",
    "Duration of service cycle in seconds",
    ["service"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30, 60),
)

# Labels:
#   gauge:   {service="tunnel", name="live"},
#            {service="pool", name="live"}
#   counter: {service="tunnel", name="restarts"}, {service="tunnel", name="session_faults"},
#            {service="tunnel", name="relays_opened"}, {service="pool", name="recreations"},
#            {service="pool", name="faults"}
SERVICE_GAUGE = Gauge(
    "vtsgate_service_gauge",
    "Service gauge values (point-in-time state)",
    ["service", "name"],
)

SERVICE_COUNTER = Counter(
    "vtsgate_service_counter",
    "Service counter values (cumulative totals)",
    ["service", "name"],
)


def record_gauge(service: str, name: str, value: float) -> None:
    """Set ``SERVICE_GAUGE{service, name}`` to ``value``."""
    SERVICE_GAUGE.labels(service=service, name=name).set(value)


def record_counter(service: str, name: str, value: float = 1) -> None:
    """Increment ``SERVICE_COUNTER{service, name}`` by ``value``."""
    SERVICE_COUNTER.labels(service=service, name=name).inc(value)


# ---------------------------------------------------------------------------
# HTTP Server
# ---------------------------------------------------------------------------


class MetricsServer:
    """Async HTTP server exposing a Prometheus-compatible /metrics endpoint.

    Example:
        server = MetricsServer(MetricsConfig(enabled=True, port=8001))
        await server.start()
        # ... gateway runs ...
        await server.stop()
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for Prometheus scrape requests.

        No-op if metrics are disabled.

        Raises:
            OSError: If the port is already in use or binding fails.
        """
        if not self._config.enabled:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()

    async def stop(self) -> None:
        """Stop the HTTP server. Idempotent."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        return web.Response(
            body=generate_latest(),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )


async def start_metrics_server(config: MetricsConfig | None = None) -> MetricsServer:
    """Create and start a metrics server.

    Returns:
        A running MetricsServer instance. Caller should call ``stop()``
        during shutdown to release the bound port.
    """
    server = MetricsServer(config or MetricsConfig())
    await server.start()
    return server
