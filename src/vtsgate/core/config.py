"""
Configuration loading: YAML file, environment overrides, validation.

Configuration is layered. An optional YAML file (parsed with
``yaml.safe_load``) provides the base dictionary; environment variables
listed in [ENV_OVERRIDES][vtsgate.core.config.ENV_OVERRIDES] override
individual keys; the result is validated by pydantic models. Secrets are
never read from files: ``SSH_PASSWORD`` and ``DB_PASSWORD`` (or whatever
``password_env`` names) are resolved by the models themselves.

Examples:
    ```python
    raw = load_config("config/vtsgate.yaml")
    settings = parse_settings(raw)
    settings.pool.database.port == settings.tunnel.forward.local_port  # True
    ```
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from .exceptions import ConfigurationError
from .pool import PoolConfig
from .tunnel import TunnelConfig


# Environment variable -> path of the key it overrides in the config dict.
ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "SSH_HOST": ("tunnel", "ssh", "host"),
    "SSH_PORT": ("tunnel", "ssh", "port"),
    "SSH_USERNAME": ("tunnel", "ssh", "username"),
    "SSH_KNOWN_HOSTS": ("tunnel", "ssh", "known_hosts"),
    "TUNNEL_REMOTE_HOST": ("tunnel", "forward", "remote_host"),
    "TUNNEL_REMOTE_PORT": ("tunnel", "forward", "remote_port"),
    "TUNNEL_LOCAL_HOST": ("tunnel", "forward", "local_host"),
    "TUNNEL_LOCAL_PORT": ("tunnel", "forward", "local_port"),
    "DB_USER": ("pool", "database", "user"),
    "DB_NAME": ("pool", "database", "database"),
    "HTTP_HOST": ("api", "host"),
    "HTTP_PORT": ("api", "port"),
    "CORS_ORIGINS": ("api", "cors_origins"),
    "METRICS_ENABLED": ("api", "metrics", "enabled"),
    "METRICS_PORT": ("api", "metrics", "port"),
}

_LIST_KEYS = frozenset({"CORS_ORIGINS"})


def load_yaml(config_path: str | Path) -> dict[str, Any]:
    """Load and parse a YAML configuration file.

    Uses ``yaml.safe_load``, which only builds standard YAML types and
    never instantiates Python objects from tags.

    Returns:
        The parsed mapping, or an empty dict for an empty file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not valid YAML or not a mapping.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with path.open(encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"invalid YAML in {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping at top level")
    return data


def apply_env_overrides(
    data: dict[str, Any],
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Write every set variable from ``ENV_OVERRIDES`` into ``data`` in place.

    Empty values are ignored. ``CORS_ORIGINS`` is split on commas.

    Returns:
        ``data``, for chaining.
    """
    environ = os.environ if environ is None else environ
    for env_var, path in ENV_OVERRIDES.items():
        raw = environ.get(env_var)
        if not raw:
            continue
        value: Any = raw
        if env_var in _LIST_KEYS:
            value = [item.strip() for item in raw.split(",") if item.strip()]

        node = data
        for key in path[:-1]:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
            node = child
        node[path[-1]] = value
    return data


def load_config(
    config_path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load the YAML file (if given) and apply environment overrides."""
    data = load_yaml(config_path) if config_path is not None else {}
    return apply_env_overrides(data, environ)


class Settings(BaseModel):
    """Validated tunnel and pool configuration.

    The pool always connects through the tunnel's local endpoint: when
    ``pool.database.host``/``port`` are not given they are copied from
    ``tunnel.forward``; when given, they must match.
    """

    model_config = ConfigDict(frozen=True)

    tunnel: TunnelConfig
    pool: PoolConfig

    @model_validator(mode="before")
    @classmethod
    def bind_pool_to_tunnel(cls, data: Any) -> Any:
        """Default the pool endpoint to the tunnel's local bind address."""
        if not isinstance(data, dict):
            return data
        tunnel = data.get("tunnel")
        forward: dict[str, Any] = {}
        if isinstance(tunnel, dict) and isinstance(tunnel.get("forward"), dict):
            forward = tunnel["forward"]
        pool = dict(data.get("pool") or {})
        database = dict(pool.get("database") or {})
        database.setdefault("host", forward.get("local_host", "127.0.0.1"))
        database.setdefault("port", forward.get("local_port", 55432))
        pool["database"] = database
        return {**data, "pool": pool}

    @model_validator(mode="after")
    def validate_endpoint_match(self) -> Settings:
        forward = self.tunnel.forward
        database = self.pool.database
        if (database.host, database.port) != (forward.local_host, forward.local_port):
            raise ValueError(
                f"pool endpoint {database.host}:{database.port} must match tunnel "
                f"local endpoint {forward.local_host}:{forward.local_port}"
            )
        return self


def parse_settings(data: dict[str, Any]) -> Settings:
    """Validate ``data`` into [Settings][vtsgate.core.config.Settings].

    Raises:
        ConfigurationError: On any validation failure, including missing
            password environment variables.
    """
    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
