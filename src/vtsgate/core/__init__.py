"""Core layer providing the gateway and the foundation for all vtsgate services.

Attributes:
    TunnelSupervisor: Owns the SSH session and the local forwarding listener;
        restarts both after any fault. See
        [TunnelSupervisor][vtsgate.core.tunnel.TunnelSupervisor].
    PoolSupervisor: Owns the asyncpg pool reached through the tunnel;
        recreates it after creation or runtime faults. See
        [PoolSupervisor][vtsgate.core.pool.PoolSupervisor].
    StartupOrchestrator: Starts the tunnel, then the pool, then exposes the
        query capability. Services use
        [StartupOrchestrator][vtsgate.core.orchestrator.StartupOrchestrator],
        never the supervisors directly.
    BaseService: Abstract generic base class with lifecycle management and
        Prometheus metrics integration.
    Logger: Structured logger with key=value and JSON formatters.
    MetricsServer: Prometheus ``/metrics`` HTTP endpoint.

Examples:
    ```python
    from vtsgate.core import StartupOrchestrator, load_config, parse_settings

    settings = parse_settings(load_config("config/vtsgate.yaml"))
    gateway = StartupOrchestrator.from_settings(settings)
    await gateway.start()
    rows = await gateway.run_query("SELECT 1")
    await gateway.close()
    ```
"""

from .backoff import (
    BackoffConfig,
    BackoffPolicy,
    ExponentialBackoff,
    FixedBackoff,
    build_backoff,
)
from .base_service import (
    BaseService,
    BaseServiceConfig,
    ConfigT,
)
from .config import (
    Settings,
    apply_env_overrides,
    load_config,
    load_yaml,
    parse_settings,
)
from .exceptions import (
    ConfigurationError,
    DatabaseError,
    FatalStartupError,
    ForwardFault,
    ListenerFault,
    PoolCreationFault,
    PoolNotReadyError,
    PoolRuntimeFault,
    QueryError,
    SessionFault,
    TunnelError,
    VtsGateError,
)
from .forward import ForwardConfig, ForwardListener
from .logger import JsonFormatter, Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    CYCLE_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
    MetricsServer,
    start_metrics_server,
)
from .orchestrator import StartupOrchestrator
from .pool import (
    DatabaseConfig,
    DataPool,
    PoolConfig,
    PoolLimitsConfig,
    PoolSupervisor,
    PoolTimeoutsConfig,
    ServerSettingsConfig,
)
from .tunnel import (
    SshConfig,
    TunnelConfig,
    TunnelSession,
    TunnelSupervisor,
    TunnelTransport,
)


__all__ = [
    "CYCLE_DURATION_SECONDS",
    "SERVICE_COUNTER",
    "SERVICE_GAUGE",
    "SERVICE_INFO",
    "BackoffConfig",
    "BackoffPolicy",
    "BaseService",
    "BaseServiceConfig",
    "ConfigT",
    "ConfigurationError",
    "DataPool",
    "DatabaseConfig",
    "DatabaseError",
    "ExponentialBackoff",
    "FatalStartupError",
    "FixedBackoff",
    "ForwardConfig",
    "ForwardFault",
    "ForwardListener",
    "JsonFormatter",
    "ListenerFault",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "PoolConfig",
    "PoolCreationFault",
    "PoolLimitsConfig",
    "PoolNotReadyError",
    "PoolRuntimeFault",
    "PoolSupervisor",
    "PoolTimeoutsConfig",
    "QueryError",
    "ServerSettingsConfig",
    "SessionFault",
    "Settings",
    "SshConfig",
    "StartupOrchestrator",
    "StructuredFormatter",
    "TunnelConfig",
    "TunnelError",
    "TunnelSession",
    "TunnelSupervisor",
    "TunnelTransport",
    "VtsGateError",
    "apply_env_overrides",
    "build_backoff",
    "format_kv_pairs",
    "load_config",
    "load_yaml",
    "parse_settings",
    "start_metrics_server",
]
