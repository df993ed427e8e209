"""
Structured logging with key=value and JSON output support.

Wraps the standard library ``logging`` module. Every call takes an event
name plus keyword fields, which travel on the record as the
``structured_kv`` extra. The output format is chosen once, at handler
level, by installing either
[StructuredFormatter][vtsgate.core.logger.StructuredFormatter] (human
readable ``key=value``) or [JsonFormatter][vtsgate.core.logger.JsonFormatter]
(one JSON object per line).

Examples:
    ```python
    from vtsgate.core.logger import Logger

    logger = Logger("tunnel")
    logger.info("tunnel_ready", local_port=55432)
    # Output: info tunnel tunnel_ready local_port=55432

    forward_logger = logger.bind(remote="10.0.0.5:5432")
    forward_logger.debug("relay_opened", peer="127.0.0.1:50412")
    # Output: debug tunnel relay_opened remote=10.0.0.5:5432 peer=127.0.0.1:50412
    ```
"""

from __future__ import annotations

import datetime
import json
import logging
from typing import Any, ClassVar


def format_kv_pairs(
    kwargs: dict[str, Any],
    max_value_length: int | None = 1000,
    prefix: str = " ",
) -> str:
    """Format a dictionary as space-separated key=value pairs.

    Values are truncated to ``max_value_length`` characters, and values
    containing whitespace, equals signs, or quotes are escaped and quoted.

    Args:
        kwargs: Key-value pairs to format.
        max_value_length: Maximum characters per value before truncation.
            Pass None to disable truncation.
        prefix: String prepended to the output (default: single space).

    Returns:
        Formatted string, e.g. ' key1=value1 key2="value with spaces"'.
        Returns empty string if kwargs is empty.
    """
    if not kwargs:
        return ""

    parts = []
    for k, v in kwargs.items():
        s = _truncate(str(v), max_value_length)
        if not s or " " in s or "=" in s or '"' in s or "'" in s:
            escaped = s.replace("\\", "\\\\").replace('"', '\\"')
            parts.append(f'{k}="{escaped}"')
        else:
            parts.append(f"{k}={s}")

    return prefix + " ".join(parts)


def _truncate(value: str, max_length: int | None) -> str:
    if max_length and len(value) > max_length:
        return value[:max_length] + f"...<truncated {len(value) - max_length} chars>"
    return value


class StructuredFormatter(logging.Formatter):
    """Formats all log records as ``level name message key=value ...``.

    Records without ``structured_kv`` (plain ``logging.getLogger()`` calls
    from asyncssh, asyncpg or uvicorn) are emitted with the same prefix.
    """

    def format(self, record: logging.LogRecord) -> str:
        base = f"{record.levelname.lower()} {record.name} {record.getMessage()}"
        extra: dict[str, Any] = getattr(record, "structured_kv", {})
        if extra:
            base += format_kv_pairs(extra)
        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)
        return base


class JsonFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects for log aggregators.

    Includes ``timestamp`` (ISO 8601, UTC), ``level``, ``logger`` and
    ``message``, followed by the structured fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.datetime.fromtimestamp(
                record.created, datetime.UTC
            ).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            **getattr(record, "structured_kv", {}),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class Logger:
    """Structured logger that attaches keyword arguments as extra fields.

    Wraps a standard ``logging.Logger``. All public methods mirror the
    standard logging API with an added ``**kwargs`` parameter.

    Examples:
        ```python
        logger = Logger("pool")
        logger.warning("pool_fault", error="connection reset")
        ```
    """

    _DEFAULT_MAX_VALUE_LENGTH: ClassVar[int] = 1000

    def __init__(
        self,
        name: str,
        *,
        max_value_length: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize a structured logger.

        Args:
            name: Logger name, typically the component name. Maps to the
                underlying ``logging.getLogger(name)`` call.
            max_value_length: Maximum character length for individual values
                before truncation. Defaults to 1000.
            context: Fields attached to every record emitted by this logger.
        """
        if max_value_length is None:
            max_value_length = self._DEFAULT_MAX_VALUE_LENGTH
        self._logger = logging.getLogger(name)
        self._max_value_length = max_value_length
        self._context: dict[str, Any] = dict(context or {})

    @property
    def name(self) -> str:
        return self._logger.name

    def bind(self, **context: Any) -> Logger:
        """Return a logger sharing this one's name with extra fixed fields."""
        return Logger(
            self._logger.name,
            max_value_length=self._max_value_length,
            context={**self._context, **context},
        )

    def _make_extra(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        fields = {**self._context, **kwargs}
        if not fields:
            return {}
        truncated: dict[str, Any] = {}
        for k, v in fields.items():
            s = str(v)
            if self._max_value_length and len(s) > self._max_value_length:
                truncated[k] = _truncate(s, self._max_value_length)
            else:
                truncated[k] = v
        return {"structured_kv": truncated}

    def _log(self, level: int, msg: str, kwargs: dict[str, Any], **log_kwargs: Any) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, msg, extra=self._make_extra(kwargs), **log_kwargs)

    def debug(self, msg: str, **kwargs: Any) -> None:
        """Log a DEBUG level message with optional key=value pairs."""
        self._log(logging.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        """Log an INFO level message with optional key=value pairs."""
        self._log(logging.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        """Log a WARNING level message with optional key=value pairs."""
        self._log(logging.WARNING, msg, kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        """Log an ERROR level message with optional key=value pairs."""
        self._log(logging.ERROR, msg, kwargs)

    def critical(self, msg: str, **kwargs: Any) -> None:
        """Log a CRITICAL level message with optional key=value pairs."""
        self._log(logging.CRITICAL, msg, kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log an ERROR level message with the current exception traceback."""
        self._log(logging.ERROR, msg, kwargs, exc_info=True)
