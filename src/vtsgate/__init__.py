r"""vtsgate -- vehicle telemetry gateway over a supervised SSH tunnel.

A remote PostgreSQL server is reachable only through an SSH session. The
gateway keeps that session and a local forwarding listener alive, keeps an
asyncpg pool alive on top of the listener, and exposes read-only vehicle
telemetry over HTTP.

```text
      services           HTTP consumer (FastAPI + uvicorn)
         |
       core              tunnel, pool, orchestrator, logging, metrics
```

Attributes:
    core: Tunnel and pool supervisors, startup orchestrator, base service,
        exceptions, logging, metrics, configuration.
    services: The HTTP API service.

Note:
    Top-level imports (``from vtsgate import StartupOrchestrator``) use lazy
    loading and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("vtsgate")

__all__ = [
    "Api",
    "ApiConfig",
    "BaseService",
    "ConfigT",
    "Logger",
    "PoolConfig",
    "PoolSupervisor",
    "Settings",
    "StartupOrchestrator",
    "TunnelConfig",
    "TunnelSupervisor",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseService": ("vtsgate.core", "BaseService"),
    "ConfigT": ("vtsgate.core", "ConfigT"),
    "Logger": ("vtsgate.core", "Logger"),
    "PoolConfig": ("vtsgate.core", "PoolConfig"),
    "PoolSupervisor": ("vtsgate.core", "PoolSupervisor"),
    "Settings": ("vtsgate.core", "Settings"),
    "StartupOrchestrator": ("vtsgate.core", "StartupOrchestrator"),
    "TunnelConfig": ("vtsgate.core", "TunnelConfig"),
    "TunnelSupervisor": ("vtsgate.core", "TunnelSupervisor"),
    "Api": ("vtsgate.services", "Api"),
    "ApiConfig": ("vtsgate.services", "ApiConfig"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'vtsgate' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
