"""Shared query functions used by services."""

from .queries import (
    VEHICLE_DATA_COLUMNS,
    VEHICLE_DATA_MAX_ROWS,
    VEHICLE_DATA_QUERY,
    fetch_vehicle_data,
)


__all__ = [
    "VEHICLE_DATA_COLUMNS",
    "VEHICLE_DATA_MAX_ROWS",
    "VEHICLE_DATA_QUERY",
    "fetch_vehicle_data",
]
