"""
Connection Handle
=================

Server-side representation of one party attached to the relay.

A ConnectionHandle is transport-agnostic: the hub talks to it through
offer(), and whichever transport created it runs pump() to drain the
outbound buffer into the real socket.
"""

import asyncio
import itertools
import logging
import random
import time
from typing import Awaitable, Callable, Optional, Set

from frame_relay.models.state import Role
from frame_relay.relay.buffer import OutboundBuffer


logger = logging.getLogger(__name__)


_id_counter = itertools.count(1)


def new_connection_id() -> str:
    """Issue a Pusher-style socket id ("<counter>.<random>")."""
    return f"{next(_id_counter)}.{random.randint(1, 10**9)}"


class ConnectionHandle:
    """
    One connected party.

    Attributes:
        id: Opaque connection id issued at handshake
        role: None until inferred from the first substantive event
        channels: Channels this connection is admitted to
        last_activity: Monotonic time of the last inbound event
        buffer: Bounded outbound buffer
    """

    def __init__(
        self,
        connection_id: Optional[str] = None,
        buffer_size: int = 4,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.id = connection_id or new_connection_id()
        self.role: Optional[Role] = None
        self.channels: Set[str] = set()
        self.buffer = OutboundBuffer(maxsize=buffer_size)
        self._clock = clock
        self.last_activity: float = clock()
        self.frames_sent: int = 0
        self.frames_received: int = 0

    @property
    def closed(self) -> bool:
        return self.buffer.closed

    def touch(self) -> None:
        """Record inbound activity (heartbeat, frame, control)."""
        self.last_activity = self._clock()

    def observe_publish(self) -> None:
        """The first frame a connection sends marks it as the producer."""
        if self.role is None:
            self.role = Role.PRODUCER
            logger.info(f"Connection {self.id} identified as producer")
        self.frames_sent += 1

    def offer(self, message: str) -> bool:
        """Non-blocking send attempt; False if the connection is closed."""
        return self.buffer.offer(message)

    def idle_for(self, now: Optional[float] = None) -> float:
        return (now if now is not None else self._clock()) - self.last_activity

    async def pump(self, send: Callable[[str], Awaitable[None]]) -> None:
        """
        Drain the outbound buffer into the transport until closed.

        Send failures end the pump; the caller's reader loop notices the
        dead socket and disconnects the handle.
        """
        while True:
            message = await self.buffer.get()
            if message is None:
                break
            try:
                await send(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Send to {self.id} failed: {e}")
                self.close()
                break

    def close(self) -> None:
        self.buffer.close()

    def __repr__(self) -> str:
        role = self.role.value if self.role else "undetermined"
        return f"ConnectionHandle(id={self.id!r}, role={role}, channels={sorted(self.channels)})"
