"""
Backoff policies for the supervisor restart loops.

Supervisors never compute delays themselves; they ask a
[BackoffPolicy][vtsgate.core.backoff.BackoffPolicy] for the delay before
restart attempt ``n`` (zero-based, reset after every success). The default
is a fixed 5 second delay. Exponential growth and random jitter are
available through [BackoffConfig][vtsgate.core.backoff.BackoffConfig]
without touching supervisor logic.

Examples:
    ```python
    policy = build_backoff(BackoffConfig(strategy="exponential", max_delay=60))
    policy.delay(0)  # 5.0
    policy.delay(3)  # 40.0
    ```
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class BackoffConfig(BaseModel):
    """Restart delay strategy.

    Note:
        ``jitter`` is a fraction of the computed delay: ``0.1`` spreads each
        delay uniformly over ``[0.9 * d, 1.1 * d]``. Keep it at ``0`` for the
        reference fixed-delay behaviour.
    """

    model_config = ConfigDict(frozen=True)

    strategy: Literal["fixed", "exponential"] = Field(
        default="fixed", description="Delay growth strategy"
    )
    initial_delay: float = Field(default=5.0, ge=0.0, description="Delay before first retry")
    max_delay: float = Field(default=60.0, ge=0.0, description="Upper bound for any delay")
    jitter: float = Field(default=0.0, ge=0.0, le=1.0, description="Relative random spread")

    @field_validator("max_delay")
    @classmethod
    def validate_max_delay(cls, v: float, info: ValidationInfo) -> float:
        """Ensure max_delay >= initial_delay."""
        initial_delay = info.data.get("initial_delay", 5.0)
        if v < initial_delay:
            raise ValueError(f"max_delay ({v}) must be >= initial_delay ({initial_delay})")
        return v


class BackoffPolicy(ABC):
    """Computes the delay before a restart attempt."""

    def __init__(self, jitter: float = 0.0) -> None:
        self._jitter = jitter

    @abstractmethod
    def base_delay(self, attempt: int) -> float:
        """Delay for ``attempt`` before jitter is applied."""
        ...

    def delay(self, attempt: int) -> float:
        """Delay in seconds before the zero-based restart ``attempt``."""
        base = self.base_delay(max(attempt, 0))
        if self._jitter and base:
            base *= random.uniform(1.0 - self._jitter, 1.0 + self._jitter)  # noqa: S311
        return max(base, 0.0)


class FixedBackoff(BackoffPolicy):
    """Same delay for every attempt."""

    def __init__(self, delay: float = 5.0, jitter: float = 0.0) -> None:
        super().__init__(jitter)
        self._delay = delay

    def base_delay(self, attempt: int) -> float:
        return self._delay

    def __repr__(self) -> str:
        return f"FixedBackoff(delay={self._delay})"


class ExponentialBackoff(BackoffPolicy):
    """``initial_delay * 2**attempt``, capped at ``max_delay``."""

    def __init__(self, initial_delay: float, max_delay: float, jitter: float = 0.0) -> None:
        super().__init__(jitter)
        self._initial_delay = initial_delay
        self._max_delay = max_delay

    def base_delay(self, attempt: int) -> float:
        # Cap the exponent so huge attempt counts cannot overflow float math
        return float(min(self._initial_delay * (2 ** min(attempt, 32)), self._max_delay))

    def __repr__(self) -> str:
        return f"ExponentialBackoff(initial={self._initial_delay}, max={self._max_delay})"


def build_backoff(config: BackoffConfig | None = None) -> BackoffPolicy:
    """Construct the policy described by ``config`` (defaults: fixed 5s)."""
    config = config or BackoffConfig()
    if config.strategy == "exponential":
        return ExponentialBackoff(config.initial_delay, config.max_delay, config.jitter)
    return FixedBackoff(config.initial_delay, config.jitter)
