"""Services consuming the gateway.

Each service extends [BaseService][vtsgate.core.base_service.BaseService],
receives the started
[StartupOrchestrator][vtsgate.core.orchestrator.StartupOrchestrator], and
implements ``async def run()`` for one cycle of work.

Attributes:
    Api: FastAPI application served by uvicorn. Exposes ``GET /``,
        ``GET /health`` and ``GET /api/vehicle-data``.
"""

from .api import Api, ApiConfig


__all__ = ["Api", "ApiConfig"]
