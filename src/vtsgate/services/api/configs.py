"""API service configuration models.

See Also:
    [Api][vtsgate.services.api.Api]: The service class that consumes
        these configurations.
    [BaseServiceConfig][vtsgate.core.base_service.BaseServiceConfig]:
        Base class providing ``interval``, ``max_consecutive_failures``,
        and ``metrics`` fields.
"""

from __future__ import annotations

from pydantic import Field, field_validator

from vtsgate.core.base_service import BaseServiceConfig
from vtsgate.services.common.queries import VEHICLE_DATA_MAX_ROWS


STATUS_MESSAGE = "Backend running and SSH tunnel established."


class ApiConfig(BaseServiceConfig):
    """Configuration for the API service.

    Attributes:
        host: Bind address for the HTTP server.
        port: Port for the HTTP server.
        cors_origins: Allowed CORS origins. ``["*"]`` allows any origin;
            an empty list disables CORS.
        row_limit: Rows returned by ``/api/vehicle-data``.
        request_timeout: Client-side query timeout in seconds.
        status_message: Body text of ``GET /``.
    """

    host: str = Field(default="0.0.0.0", min_length=1, description="HTTP bind address")  # noqa: S104
    port: int = Field(default=3001, ge=1, le=65535, description="HTTP port")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    row_limit: int = Field(default=VEHICLE_DATA_MAX_ROWS, ge=1, le=VEHICLE_DATA_MAX_ROWS)
    request_timeout: float = Field(default=60.0, ge=1.0, le=300.0)
    status_message: str = Field(default=STATUS_MESSAGE, min_length=1)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, v: object) -> object:
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v
