"""
Local port forward through the tunnel's SSH session.

[ForwardListener][vtsgate.core.forward.ForwardListener] owns the
``SSHListener`` returned by asyncssh's ``forward_local_port``. asyncssh binds
the local port and, for every accepted socket, opens exactly one
``direct-tcpip`` channel to the configured remote host and port, then relays
bytes both ways until either side closes.

Failure scope is handled by asyncssh: a channel that cannot be opened closes
only its own local socket, and when the SSH connection is lost every channel
and the listener itself are closed together.

See Also:
    [TunnelSupervisor][vtsgate.core.tunnel.TunnelSupervisor]: Owns the
        listener together with its SSH session.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from .constants import ServiceName
from .logger import Logger
from .metrics import record_counter


if TYPE_CHECKING:
    import asyncssh

    from .tunnel import TunnelTransport


class ForwardConfig(BaseModel):
    """Local bind address and fixed remote target of the tunnel.

    Note:
        ``local_port`` must match the pool's database port, since the pool
        connects through this listener. ``0`` asks the OS for an ephemeral
        port (useful in tests); read it back from
        [ForwardListener.port][vtsgate.core.forward.ForwardListener.port].
    """

    model_config = ConfigDict(frozen=True)

    local_host: str = Field(default="127.0.0.1", min_length=1, description="Local bind address")
    local_port: int = Field(default=55432, ge=0, le=65535, description="Local bind port")
    remote_host: str = Field(default="127.0.0.1", min_length=1, description="Forward target host")
    remote_port: int = Field(default=5432, ge=1, le=65535, description="Forward target port")
    close_timeout: float = Field(
        default=5.0, gt=0.0, description="Max seconds to wait for the listener to close"
    )


class ForwardListener:
    """Thin owner of one asyncssh local port forward.

    Attributes:
        _transport: Live SSH session the forward is opened on.
        _config: Bind address and remote target.
        _listener: The asyncssh ``SSHListener``, ``None`` until started
            and after ``wait_closed()``.
        _closing: Set once ``close()`` has stopped accepting.

    Examples:
        ```python
        listener = ForwardListener(transport, ForwardConfig(local_port=55432))
        await listener.start()
        ...
        listener.close()
        await transport.close()
        await listener.wait_closed()
        ```
    """

    def __init__(self, transport: TunnelTransport, config: ForwardConfig) -> None:
        self._transport = transport
        self._config = config
        self._listener: asyncssh.SSHListener | None = None
        self._closing = False
        self._logger = Logger(ServiceName.TUNNEL).bind(
            remote=f"{config.remote_host}:{config.remote_port}"
        )

    async def start(self) -> None:
        """Bind the local port and start forwarding.

        Raises:
            OSError: If the address is in use or binding is not permitted.
            asyncssh.Error: If the SSH session is no longer connected.
        """
        self._listener = await self._transport.forward_local_port(
            self._config.local_host,
            self._config.local_port,
            self._config.remote_host,
            self._config.remote_port,
            accept_handler=self._accept,
        )

    def close(self) -> None:
        """Stop accepting new connections. Idempotent.

        In-flight channels end when the SSH session that carries them is
        closed; await
        [wait_closed()][vtsgate.core.forward.ForwardListener.wait_closed]
        after that to release the port.
        """
        if self._listener is not None and not self._closing:
            self._closing = True
            self._listener.close()

    async def wait_closed(self) -> None:
        """Wait, at most ``close_timeout`` seconds, for the port to be released."""
        listener, self._listener = self._listener, None
        if listener is None:
            return
        if not self._closing:
            listener.close()
        self._closing = False
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(listener.wait_closed(), self._config.close_timeout)

    @property
    def is_serving(self) -> bool:
        """Whether the forward is bound on a connected session."""
        return (
            self._listener is not None and not self._closing and self._transport.is_connected
        )

    @property
    def port(self) -> int | None:
        """The actually bound local port, or ``None`` when not bound."""
        if self._listener is None:
            return None
        return self._listener.get_port()

    def _accept(self, orig_host: str, orig_port: int) -> bool:
        record_counter(ServiceName.TUNNEL, "relays_opened")
        self._logger.debug("relay_opened", peer=f"{orig_host}:{orig_port}")
        return True
