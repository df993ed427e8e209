"""
Unit tests for core.exceptions module.

Tests:
- Hierarchy: every domain error derives from VtsGateError
- Tunnel and database families are disjoint
- Chaining via ``raise ... from``
"""

import pytest

from vtsgate.core.exceptions import (
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


@pytest.mark.parametrize(
    ("exc_type", "parent"),
    [
        (ConfigurationError, VtsGateError),
        (TunnelError, VtsGateError),
        (SessionFault, TunnelError),
        (ListenerFault, TunnelError),
        (ForwardFault, TunnelError),
        (DatabaseError, VtsGateError),
        (PoolCreationFault, DatabaseError),
        (PoolRuntimeFault, DatabaseError),
        (PoolNotReadyError, DatabaseError),
        (QueryError, DatabaseError),
        (FatalStartupError, VtsGateError),
    ],
)
def test_hierarchy(exc_type, parent):
    assert issubclass(exc_type, parent)


def test_families_disjoint():
    assert not issubclass(QueryError, TunnelError)
    assert not issubclass(SessionFault, DatabaseError)
    assert not issubclass(FatalStartupError, TunnelError)


def test_chaining_preserves_cause():
    cause = OSError("connection refused")
    try:
        raise SessionFault("ssh failed") from cause
    except VtsGateError as e:
        assert e.__cause__ is cause
        assert str(e) == "ssh failed"
