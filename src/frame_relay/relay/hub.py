"""
Relay Hub
=========

Server-side registry of connections and channels, and fan-out of frames
from a sender to every other member of a channel.

Locking discipline:
    - Each Channel has its own asyncio.Lock
    - join/leave (mutation) and publish (iteration) hold the channel lock
    - Different channels never share a lock
    - Gate verification runs BEFORE the lock is taken
    - Nothing awaits a recipient's socket while holding a lock:
      fan-out only calls the non-blocking ConnectionHandle.offer()

Design Rules:
    - No echo: the sender never receives its own frame
    - No history: late joiners get nothing retroactively
    - One failing recipient never affects the others or the sender
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Union

from frame_relay.auth.gate import ChannelAuthorizationGate
from frame_relay.codec.validator import FrameValidator
from frame_relay.codec.wire import decode_frame_message, encode_frame_message
from frame_relay.models.channel import ChannelPolicy
from frame_relay.models.frame import Frame
from frame_relay.models.messages import FrameBroadcast, FrameMessage, dump_message
from frame_relay.models.reason_codes import DenyReason, DropReason
from frame_relay.models.results import (
    Admission,
    Admitted,
    Delivered,
    Denied,
    Dropped,
    PublishResult,
    Rejected,
)
from frame_relay.relay.connection import ConnectionHandle


logger = logging.getLogger(__name__)


class Channel:
    """A named broadcast domain and its current members."""

    __slots__ = ("name", "lock", "members")

    def __init__(self, name: str) -> None:
        self.name = name
        self.lock = asyncio.Lock()
        self.members: Dict[str, ConnectionHandle] = {}

    def __repr__(self) -> str:
        return f"Channel({self.name!r}, members={len(self.members)})"


class RelayHubMetrics:
    """Metrics for RelayHub observability."""

    __slots__ = (
        "joins",
        "denials",
        "published",
        "delivered",
        "dropped_validation",
        "dropped_not_member",
        "recipient_failures",
        "expired",
    )

    def __init__(self) -> None:
        self.joins: int = 0
        self.denials: int = 0
        self.published: int = 0
        self.delivered: int = 0
        self.dropped_validation: int = 0
        self.dropped_not_member: int = 0
        self.recipient_failures: int = 0
        self.expired: int = 0

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.__slots__}


class RelayHub:
    """
    Fan-out hub for camera frames.

    Attributes:
        validator: Frame validator applied to every publish
        gate: Authorization gate consulted on join
        channel_policy: Channel name format check
        authorize_timeout: Seconds to wait for the gate before denying
        metrics: Operational counters

    Example:
        hub = RelayHub(validator=FrameValidator(), gate=gate)

        admission = await hub.join("room1", connection, grant)
        if isinstance(admission, Admitted):
            result = await hub.publish("room1", connection, frame)
    """

    def __init__(
        self,
        validator: FrameValidator,
        gate: ChannelAuthorizationGate,
        channel_policy: Optional[ChannelPolicy] = None,
        authorize_timeout: float = 2.0,
    ) -> None:
        self.validator = validator
        self.gate = gate
        self.channel_policy = channel_policy or ChannelPolicy()
        self.authorize_timeout = authorize_timeout

        self._channels: Dict[str, Channel] = {}
        self._connections: Dict[str, ConnectionHandle] = {}

        self.metrics = RelayHubMetrics()

    # -------------------------------------------------------------------------
    # Connection registry
    # -------------------------------------------------------------------------

    def register(self, connection: ConnectionHandle) -> None:
        """Track a connection from handshake on, so idle ones can be reaped."""
        self._connections[connection.id] = connection
        logger.info(f"Connection registered: {connection.id}")

    def connection(self, connection_id: str) -> Optional[ConnectionHandle]:
        return self._connections.get(connection_id)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def disconnect(self, connection: ConnectionHandle) -> None:
        """Leave every channel, close the outbound buffer, forget the connection."""
        for channel_id in list(connection.channels):
            await self.leave(channel_id, connection)
        connection.close()
        if self._connections.pop(connection.id, None) is not None:
            logger.info(f"Connection removed: {connection.id}")

    async def expire_idle(self, timeout: float, now: Optional[float] = None) -> List[ConnectionHandle]:
        """
        Disconnect connections with no inbound activity for `timeout` seconds.

        Returns:
            The connections that were expired
        """
        now = now if now is not None else time.monotonic()
        stale = [c for c in self._connections.values() if c.idle_for(now) > timeout]
        for connection in stale:
            logger.warning(
                f"Connection {connection.id} missed heartbeat "
                f"(idle {connection.idle_for(now):.1f}s), disconnecting"
            )
            await self.disconnect(connection)
            self.metrics.expired += 1
        return stale

    # -------------------------------------------------------------------------
    # Channel membership
    # -------------------------------------------------------------------------

    async def _locked_channel(self, channel_id: str) -> Channel:
        """
        Return the live Channel for `channel_id` with its lock held.

        A channel emptied by a concurrent leave() is discarded from the
        registry, so re-check identity after acquiring the lock.
        """
        while True:
            channel = self._channels.get(channel_id)
            if channel is None:
                channel = Channel(channel_id)
                self._channels[channel_id] = channel
            await channel.lock.acquire()
            if self._channels.get(channel_id) is channel:
                return channel
            channel.lock.release()

    async def join(self, channel_id: str, connection: ConnectionHandle, grant: str) -> Admission:
        """
        Admit a connection to a channel.

        Returns:
            Admitted, or Denied with BAD_CHANNEL_NAME / UNAUTHORIZED
        """
        if not self.channel_policy.is_valid(channel_id):
            self.metrics.denials += 1
            logger.warning(f"Join denied for {connection.id}: bad channel name {channel_id!r}")
            return Denied(channel_id, DenyReason.BAD_CHANNEL_NAME)

        try:
            authorized = await asyncio.wait_for(
                self.gate.verify(connection.id, channel_id, grant),
                timeout=self.authorize_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Authorization timed out for {connection.id} on {channel_id!r}")
            authorized = False
        except Exception as e:
            logger.error(f"Authorization failed for {connection.id} on {channel_id!r}: {e}")
            authorized = False

        if not authorized or connection.closed:
            self.metrics.denials += 1
            logger.warning(f"Join denied for {connection.id}: unauthorized on {channel_id!r}")
            return Denied(channel_id, DenyReason.UNAUTHORIZED)

        channel = await self._locked_channel(channel_id)
        try:
            channel.members[connection.id] = connection
        finally:
            channel.lock.release()

        connection.channels.add(channel_id)
        connection.touch()
        self.metrics.joins += 1
        logger.info(f"Connection {connection.id} joined {channel_id!r} ({len(channel.members)} members)")
        return Admitted(channel_id)

    async def leave(self, channel_id: str, connection: ConnectionHandle) -> None:
        """Remove a connection from a channel. Idempotent."""
        connection.channels.discard(channel_id)

        channel = self._channels.get(channel_id)
        if channel is None:
            return

        async with channel.lock:
            removed = channel.members.pop(connection.id, None)
            if not channel.members and self._channels.get(channel_id) is channel:
                del self._channels[channel_id]

        if removed is not None:
            logger.info(f"Connection {connection.id} left {channel_id!r}")

    def is_member(self, channel_id: str, connection: ConnectionHandle) -> bool:
        channel = self._channels.get(channel_id)
        return channel is not None and connection.id in channel.members

    def channel_size(self, channel_id: str) -> int:
        channel = self._channels.get(channel_id)
        return len(channel.members) if channel else 0

    def channels(self) -> List[str]:
        return sorted(self._channels)

    # -------------------------------------------------------------------------
    # Fan-out
    # -------------------------------------------------------------------------

    async def publish(
        self,
        channel_id: str,
        sender: ConnectionHandle,
        frame: Union[Frame, FrameMessage],
    ) -> PublishResult:
        """
        Forward a frame to every other member of the channel.

        Args:
            channel_id: Target channel
            sender: Publishing connection
            frame: Frame, or its wire shape (decoded and validated here)

        Returns:
            Delivered(count) with the number of recipients that accepted
            the frame, or Dropped(reason)
        """
        if isinstance(frame, FrameMessage):
            result = decode_frame_message(frame, self.validator)
        else:
            result = self.validator.revalidate(frame)

        if isinstance(result, Rejected):
            self.metrics.dropped_validation += 1
            logger.debug(f"Frame from {sender.id} rejected: {result.reason.value} {result.detail}")
            return Dropped(DropReason.VALIDATION, result.reason)

        channel = self._channels.get(channel_id)
        if channel is None or sender.id not in channel.members:
            self.metrics.dropped_not_member += 1
            logger.debug(f"Frame from {sender.id} dropped: not a member of {channel_id!r}")
            return Dropped(DropReason.NOT_A_MEMBER)

        sender.touch()
        sender.observe_publish()
        encoded = dump_message(
            FrameBroadcast(channel=channel_id, data=encode_frame_message(result))
        )

        delivered = 0
        async with channel.lock:
            if sender.id not in channel.members:
                self.metrics.dropped_not_member += 1
                return Dropped(DropReason.NOT_A_MEMBER)

            for member_id, recipient in channel.members.items():
                if member_id == sender.id:
                    continue
                try:
                    accepted = recipient.offer(encoded)
                except Exception as e:
                    logger.warning(f"Delivery to {member_id} failed: {e}")
                    accepted = False
                if accepted:
                    recipient.frames_received += 1
                    delivered += 1
                else:
                    self.metrics.recipient_failures += 1

        self.metrics.published += 1
        self.metrics.delivered += delivered
        return Delivered(delivered)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Disconnect every connection."""
        for connection in list(self._connections.values()):
            await self.disconnect(connection)
        self._channels.clear()
        logger.info("RelayHub shut down")

    def snapshot(self) -> dict:
        """Metrics plus current registry sizes."""
        return {
            "connections": len(self._connections),
            "channels": {name: len(ch.members) for name, ch in self._channels.items()},
            **self.metrics.to_dict(),
        }
