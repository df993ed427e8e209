"""vtsgate exception hierarchy.

Every failure the connection-resilience layer can observe maps onto one of
these types, so callers can tell a transient tunnel drop from a bad query
without inspecting library-specific exceptions.

Exception hierarchy:

```text
VtsGateError (base -- never raised directly)
├── ConfigurationError        -- bad YAML, missing env vars, port mismatch
├── TunnelError               -- SSH tunnel failures
│   ├── SessionFault          -- auth rejected, network drop, remote close
│   ├── ListenerFault         -- local bind failed
│   └── ForwardFault          -- one relay could not open its remote stream
├── DatabaseError             -- pool and query failures
│   ├── PoolCreationFault     -- create_pool or liveness probe failed
│   ├── PoolRuntimeFault      -- pool-level fault after a successful probe
│   ├── PoolNotReadyError     -- no live pool at call time
│   └── QueryError            -- request-scoped query failure
└── FatalStartupError         -- first-ever tunnel establishment failed
```

See Also:
    [TunnelSupervisor][vtsgate.core.tunnel.TunnelSupervisor]: Raises
        [SessionFault][vtsgate.core.exceptions.SessionFault] and
        [ListenerFault][vtsgate.core.exceptions.ListenerFault].
    [PoolSupervisor][vtsgate.core.pool.PoolSupervisor]: Raises the
        [DatabaseError][vtsgate.core.exceptions.DatabaseError] family.
    [StartupOrchestrator][vtsgate.core.orchestrator.StartupOrchestrator]:
        Raises [FatalStartupError][vtsgate.core.exceptions.FatalStartupError].
"""

from __future__ import annotations


class VtsGateError(Exception):
    """Base exception for all vtsgate errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(VtsGateError):
    """Invalid or missing configuration (YAML, env vars, CLI flags)."""


# ---------------------------------------------------------------------------
# Tunnel
# ---------------------------------------------------------------------------


class TunnelError(VtsGateError):
    """Base for all SSH tunnel errors.

    The tunnel supervisor retries every subclass except
    [ForwardFault][vtsgate.core.exceptions.ForwardFault], which is scoped to
    a single relayed connection.
    """


class SessionFault(TunnelError):
    """The SSH session could not be established or was lost.

    Covers rejected authentication, network errors, the readiness timeout,
    and the remote side closing the session.
    """


class ListenerFault(TunnelError):
    """The local forward listener could not be bound (port in use, EACCES)."""


class ForwardFault(TunnelError):
    """A remote stream for one accepted local connection could not be opened.

    Only the affected local connection is closed. Never retried. asyncssh's
    local forwarder handles this case itself, so the gateway does not raise
    it; it completes the tunnel fault taxonomy.
    """


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class DatabaseError(VtsGateError):
    """Base for all database-related errors."""


class PoolCreationFault(DatabaseError):
    """Pool construction or its initial liveness probe failed."""


class PoolRuntimeFault(DatabaseError):
    """A pool-level fault surfaced after the pool was marked live.

    Raised to query callers when the failure was connection-level, after the
    pool supervisor has been told to recreate the pool.
    """


class PoolNotReadyError(DatabaseError):
    """No live pool exists at call time. Callers are never queued."""


class QueryError(DatabaseError):
    """A single query failed against an otherwise live pool.

    Callers should NOT expect the pool to be recreated -- the failure is
    scoped to the request.
    """


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


class FatalStartupError(VtsGateError):
    """The first-ever tunnel establishment failed; the process must exit."""
