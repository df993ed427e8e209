"""Vehicle telemetry queries.

All SQL used by services is centralized here. Each function takes the
[StartupOrchestrator][vtsgate.core.orchestrator.StartupOrchestrator] and
runs through its query capability, so callers inherit the pool's
not-ready and fault semantics.

Warning:
    ``statement_timeout`` from
    [ServerSettingsConfig][vtsgate.core.pool.ServerSettingsConfig] is the
    server-side safety net; the ``timeout`` argument bounds the client side.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from vtsgate.core.orchestrator import StartupOrchestrator


VEHICLE_DATA_MAX_ROWS = 50000

VEHICLE_DATA_COLUMNS: tuple[str, ...] = (
    "imei",
    "timestamp",
    "priority",
    "latitude",
    "longitude",
    "altitude",
    "angle",
    "satellites",
    "speed",
    "voltage",
    "current",
    "soc",
    "max_cell_voltage",
    "max_cell_id",
    "min_cell_voltage",
    "min_cell_id",
    "max_temp",
    "max_temp_cell",
    "min_temp",
    "min_temp_cell",
    *(f"cv{i}" for i in range(1, 19)),
    "created_at",
)

VEHICLE_DATA_QUERY = f"""
    SELECT {", ".join(VEHICLE_DATA_COLUMNS)}
    FROM imei_data
    ORDER BY timestamp DESC
    LIMIT $1
"""  # noqa: S608 (column list is a module constant)


async def fetch_vehicle_data(
    gateway: StartupOrchestrator,
    limit: int = VEHICLE_DATA_MAX_ROWS,
    *,
    timeout: float | None = None,  # noqa: ASYNC109
) -> list[dict[str, Any]]:
    """Fetch the most recent ``imei_data`` rows, newest first.

    ``limit`` is clamped to ``VEHICLE_DATA_MAX_ROWS``.

    Raises:
        PoolNotReadyError: No live pool exists.
        PoolRuntimeFault: The pool failed at connection level.
        QueryError: The query failed against a live pool.
    """
    limit = max(1, min(limit, VEHICLE_DATA_MAX_ROWS))
    rows = await gateway.run_query(VEHICLE_DATA_QUERY, limit, timeout=timeout)
    return [dict(row) for row in rows]
