"""Shared fixtures for services.api test package."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from vtsgate.core.orchestrator import StartupOrchestrator
from vtsgate.services.api.service import Api, ApiConfig


@pytest.fixture
def api_config() -> ApiConfig:
    """Minimal API config for testing."""
    return ApiConfig(
        interval=60.0,
        host="127.0.0.1",
        port=9999,
        cors_origins=["http://dashboard.example.com"],
    )


@pytest.fixture
def gateway() -> MagicMock:
    """Started gateway: tunnel live, pool ready, no rows."""
    gateway = MagicMock(spec=StartupOrchestrator)
    gateway.run_query = AsyncMock(return_value=[])
    gateway.tunnel_live = True
    gateway.pool_ready = True
    return gateway


@pytest.fixture
def api_service(gateway: MagicMock, api_config: ApiConfig) -> Api:
    return Api(orchestrator=gateway, config=api_config)


@pytest.fixture
def test_client(api_service: Api) -> TestClient:
    return TestClient(api_service.app)
