"""HTTP service exposing vehicle telemetry read-only.

See Also:
    [Api][vtsgate.services.api.service.Api]: The service class.
    [ApiConfig][vtsgate.services.api.configs.ApiConfig]: Service configuration.
"""

from .configs import ApiConfig
from .service import Api


__all__ = ["Api", "ApiConfig"]
