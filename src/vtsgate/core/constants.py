"""Shared constants for the core and services layers."""

from __future__ import annotations

from enum import StrEnum


class ServiceName(StrEnum):
    """Component identifiers used as logger names and metric labels.

    Attributes:
        API: The HTTP service ([Api][vtsgate.services.api.Api]).
        TUNNEL: The SSH tunnel supervisor and its forward listener.
        POOL: The PostgreSQL pool supervisor.
        GATEWAY: The startup orchestrator.
    """

    API = "api"
    TUNNEL = "tunnel"
    POOL = "pool"
    GATEWAY = "gateway"
