"""HTTP service exposing vehicle telemetry via FastAPI.

The HTTP server runs as a background ``asyncio.Task`` alongside the
standard ``run_forever()`` cycle. Handlers only ever see the gateway's
query capability: a missing pool maps to ``503``, any query failure to
``500``. Each ``run()`` cycle logs request statistics and publishes
tunnel and pool liveness gauges.

See Also:
    [fetch_vehicle_data()][vtsgate.services.common.queries.fetch_vehicle_data]:
        The query behind ``GET /api/vehicle-data``.
    [BaseService][vtsgate.core.base_service.BaseService]: Abstract
        base class providing lifecycle and metrics.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import TYPE_CHECKING, Any, ClassVar

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vtsgate.core.base_service import BaseService
from vtsgate.core.constants import ServiceName
from vtsgate.core.exceptions import PoolNotReadyError, PoolRuntimeFault, QueryError
from vtsgate.services.common.queries import fetch_vehicle_data

from .configs import ApiConfig


if TYPE_CHECKING:
    from types import TracebackType

    from vtsgate.core.orchestrator import StartupOrchestrator

_HTTP_ERROR_THRESHOLD = 400


class Api(BaseService[ApiConfig]):
    """HTTP front end of the gateway.

    Lifecycle:
        1. ``__aenter__``: build the FastAPI app, start uvicorn.
        2. ``run()``: log statistics and update Prometheus gauges.
        3. ``__aexit__``: cancel the HTTP server task.

    Note:
        The service is only constructed after
        [StartupOrchestrator.start()][vtsgate.core.orchestrator.StartupOrchestrator.start]
        returned, so no listener exists when the first tunnel start fails.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.API
    CONFIG_CLASS: ClassVar[type[ApiConfig]] = ApiConfig

    def __init__(self, orchestrator: StartupOrchestrator, config: ApiConfig | None = None) -> None:
        super().__init__(orchestrator, config)
        self._app = self._build_app()
        self._server_task: asyncio.Task[None] | None = None
        self._requests_total = 0
        self._requests_failed = 0

    @property
    def app(self) -> FastAPI:
        """The ASGI application (used directly by tests)."""
        return self._app

    async def __aenter__(self) -> Api:
        await super().__aenter__()

        self._server_task = asyncio.create_task(self._run_server(self._app))
        self._logger.info(
            "http_server_started",
            host=self._config.host,
            port=self._config.port,
        )

        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        if self._server_task is not None:
            self._server_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._server_task
            self._server_task = None
        self._logger.info("http_server_stopped")
        await super().__aexit__(_exc_type, _exc_val, _exc_tb)

    async def run(self) -> None:
        """Log request stats and update Prometheus metrics."""
        if self._server_task is not None and self._server_task.done():
            exc = self._server_task.exception() if not self._server_task.cancelled() else None
            self._logger.error("http_server_crashed", error=str(exc) if exc else "cancelled")
            raise RuntimeError("HTTP server task has stopped unexpectedly") from exc

        # Snapshot and reset per-cycle counters
        total = self._requests_total
        failed = self._requests_failed
        self._requests_total = 0
        self._requests_failed = 0

        tunnel_live = self._orchestrator.tunnel_live
        pool_ready = self._orchestrator.pool_ready
        self._logger.info(
            "cycle_stats",
            requests_total=total,
            requests_failed=failed,
            tunnel_live=tunnel_live,
            pool_ready=pool_ready,
        )
        self.inc_counter("requests_total", total)
        self.inc_counter("requests_failed", failed)
        self.set_gauge("tunnel_live", int(tunnel_live))
        self.set_gauge("pool_ready", int(pool_ready))

    def _build_app(self) -> FastAPI:
        """Construct the FastAPI application and its routes."""
        app = FastAPI(title="vtsgate")

        if self._config.cors_origins:
            app.add_middleware(
                CORSMiddleware,
                allow_origins=self._config.cors_origins,
                allow_methods=["GET"],
                allow_headers=["*"],
            )

        @app.middleware("http")
        async def log_requests(request: Request, call_next: Any) -> Response:
            start = time.monotonic()
            try:
                response: Response = await call_next(request)
            except Exception as exc:  # HTTP request error boundary
                self._logger.error(
                    "unhandled_error",
                    error=str(exc),
                    path=request.url.path,
                )
                response = JSONResponse(
                    {"error": "Internal server error"},
                    status_code=500,
                )
            duration_ms = (time.monotonic() - start) * 1000
            self._requests_total += 1
            if response.status_code >= _HTTP_ERROR_THRESHOLD:
                self._requests_failed += 1
                self._logger.warning(
                    "request_failed",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=round(duration_ms, 1),
                )
            else:
                self._logger.info(
                    "request_completed",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=round(duration_ms, 1),
                )
            return response

        @app.get("/")
        async def status() -> dict[str, str]:
            return {"message": self._config.status_message}

        @app.get("/health")
        async def health() -> JSONResponse:
            tunnel_live = self._orchestrator.tunnel_live
            pool_ready = self._orchestrator.pool_ready
            healthy = tunnel_live and pool_ready
            return JSONResponse(
                {
                    "status": "ok" if healthy else "degraded",
                    "tunnel": tunnel_live,
                    "pool": pool_ready,
                },
                status_code=200 if healthy else 503,
            )

        @app.get("/api/vehicle-data")
        async def vehicle_data() -> JSONResponse:
            try:
                rows = await fetch_vehicle_data(
                    self._orchestrator,
                    self._config.row_limit,
                    timeout=self._config.request_timeout,
                )
            except PoolNotReadyError as e:
                return JSONResponse({"error": str(e)}, status_code=503)
            except (PoolRuntimeFault, QueryError) as e:
                self._logger.error("vehicle_data_failed", error=str(e), fault=type(e).__name__)
                return JSONResponse({"error": "Failed to fetch vehicle data"}, status_code=500)

            return JSONResponse(jsonable_encoder(rows))

        return app

    async def _run_server(self, app: FastAPI) -> None:
        """Run uvicorn as an asyncio server."""
        config = uvicorn.Config(
            app,
            host=self._config.host,
            port=self._config.port,
            log_level="warning",
            access_log=False,
        )
        server = uvicorn.Server(config)
        await server.serve()
