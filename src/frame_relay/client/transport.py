"""
Relay Transport
===============

Async WebSocket client for the relay's /ws endpoint.

This transport:
    - Opens the socket and waits for connection_established
    - Fetches a grant for the issued connection id and joins the channel
    - Reads server messages in a background task
    - Publishes frames and waits for the matching ack
    - Sends application-level pings so the relay's heartbeat stays fresh
    - Reports loss of an established connection through `on_lost`

Design Rules:
    - websockets exceptions never escape: they become TransportError
    - Admission denials become AdmissionError
    - Frames received from the relay are validated again before they are
      surfaced as frame-received events
"""

import asyncio
import itertools
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple, Type

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from frame_relay.client.events import ClientEvent, EventBus
from frame_relay.codec.validator import FrameValidator
from frame_relay.codec.wire import decode_frame_message, encode_frame_message
from frame_relay.errors import AdmissionError, TransportError
from frame_relay.models.frame import Frame
from frame_relay.models.messages import (
    AckMessage,
    ConnectionEstablished,
    DeniedMessage,
    ErrorMessage,
    FrameBroadcast,
    FrameRejectedMessage,
    JoinedMessage,
    JoinMessage,
    PingMessage,
    PongMessage,
    PublishMessage,
    dump_message,
    parse_server_message,
)
from frame_relay.models.reason_codes import DenyReason, DropReason, RejectReason
from frame_relay.models.results import Delivered, Dropped, PublishResult, Rejected


logger = logging.getLogger(__name__)


GrantProvider = Callable[[str, str], Awaitable[str]]


def dropped_from_wire(reason: str) -> Dropped:
    """Map a frame-rejected reason string back to a Dropped result."""
    try:
        return Dropped(DropReason.VALIDATION, RejectReason(reason))
    except ValueError:
        pass
    try:
        return Dropped(DropReason(reason))
    except ValueError:
        return Dropped(DropReason.VALIDATION, RejectReason.MALFORMED)


class RelayTransport:
    """
    WebSocket connection to the relay, scoped to one channel.

    Attributes:
        url: WebSocket URL of the relay (ws://host:port/ws)
        channel: Channel to join after the handshake
        connection_id: Id issued by the relay for the current socket
        on_lost: Called with a reason when an established socket dies
        heartbeat_interval: Ping period in seconds, 0 disables pings
        heartbeat_timeout: A ping unanswered this long counts as a lost socket
        frames_received: Valid frames surfaced to listeners

    Example:
        transport = RelayTransport(url, "room1", grant_provider, events, validator)
        transport.on_lost = machine.on_transport_lost
        await transport.connect()
        result = await transport.publish(frame)
    """

    def __init__(
        self,
        url: str,
        channel: str,
        grant_provider: GrantProvider,
        events: EventBus,
        validator: FrameValidator,
        heartbeat_interval: float = 25.0,
        heartbeat_timeout: float = 60.0,
        handshake_timeout: float = 10.0,
        ack_timeout: float = 5.0,
    ) -> None:
        self.url = url
        self.channel = channel
        self.grant_provider = grant_provider
        self.events = events
        self.validator = validator
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_timeout = heartbeat_timeout
        self.handshake_timeout = handshake_timeout
        self.ack_timeout = ack_timeout

        self.on_lost: Optional[Callable[[str], object]] = None
        self.connection_id: Optional[str] = None

        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._refs = itertools.count(1)

        self.frames_received: int = 0
        self.frames_rejected: int = 0

    @property
    def connected(self) -> bool:
        return self._ws is not None

    # -------------------------------------------------------------------------
    # Connect / close
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Open the socket, authorize and join the channel.

        Raises:
            TransportError: Socket could not be opened or the handshake broke
            AdmissionError: The relay or the grant provider refused us
        """
        await self.close()

        try:
            ws = await websockets.connect(
                self.url,
                open_timeout=self.handshake_timeout,
                ping_interval=self.heartbeat_interval or None,
                ping_timeout=self.heartbeat_timeout,
                close_timeout=5,
                max_size=None,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise TransportError(f"Cannot connect to {self.url}: {e}")

        try:
            hello = await self._expect(ws, (ConnectionEstablished,))
            connection_id = hello.connection_id

            grant = await self.grant_provider(connection_id, self.channel)
            await ws.send(dump_message(JoinMessage(channel=self.channel, grant=grant)))

            reply = await self._expect(ws, (JoinedMessage, DeniedMessage))
            if isinstance(reply, DeniedMessage):
                try:
                    reason = DenyReason(reply.reason)
                except ValueError:
                    reason = DenyReason.UNAUTHORIZED
                raise AdmissionError(reason, self.channel)
        except BaseException:
            await self._close_socket(ws)
            raise

        self._ws = ws
        self.connection_id = connection_id
        self._reader_task = asyncio.create_task(self._read_loop(ws), name="relay_reader")
        if self.heartbeat_interval > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(ws), name="relay_heartbeat")
        logger.info(f"Joined {self.channel!r} on {self.url} as {connection_id}")

    async def close(self) -> None:
        """Close the socket without reporting a loss."""
        ws = self._ws
        self._ws = None

        for task in (self._heartbeat_task, self._reader_task):
            if task is not None and not task.done():
                task.cancel()
        self._heartbeat_task = None
        self._reader_task = None

        self._fail_pending("transport closed")

        if ws is not None:
            await self._close_socket(ws)
            logger.info(f"Disconnected from {self.url}")

    async def _close_socket(self, ws) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"Error closing socket: {e}")

    async def _expect(self, ws, expected: Tuple[Type, ...]):
        """Receive messages until one of `expected` arrives (pongs skipped)."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.handshake_timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TransportError("Handshake timed out")
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=remaining)
            except asyncio.TimeoutError:
                raise TransportError("Handshake timed out")
            except ConnectionClosed as e:
                raise TransportError(f"Connection closed during handshake: {e}")

            try:
                message = parse_server_message(raw)
            except ValidationError as e:
                raise TransportError(f"Invalid handshake message: {e}")

            if isinstance(message, expected):
                return message
            if isinstance(message, PongMessage):
                continue
            raise TransportError(f"Unexpected {message.event!r} during handshake")

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish(self, frame: Frame) -> PublishResult:
        """
        Send one frame and wait for the relay's verdict.

        Returns:
            Delivered(count) or Dropped(reason) as reported by the relay

        Raises:
            TransportError: Not connected, send failed, or no ack in time
        """
        ws = self._ws
        if ws is None:
            raise TransportError("Not connected")

        ref = next(self._refs)
        future = asyncio.get_running_loop().create_future()
        self._pending[ref] = future
        message = PublishMessage(channel=self.channel, ref=ref, data=encode_frame_message(frame))

        try:
            try:
                await ws.send(dump_message(message))
            except (ConnectionClosed, OSError) as e:
                raise TransportError(f"Send failed: {e}")
            try:
                return await asyncio.wait_for(future, timeout=self.ack_timeout)
            except asyncio.TimeoutError:
                raise TransportError(f"No ack for frame {ref} within {self.ack_timeout}s")
        finally:
            self._pending.pop(ref, None)

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(TransportError(reason))

    # -------------------------------------------------------------------------
    # Background tasks
    # -------------------------------------------------------------------------

    async def _read_loop(self, ws) -> None:
        reason = "connection closed by relay"
        try:
            async for raw in ws:
                self._dispatch(raw)
        except ConnectionClosed as e:
            reason = f"connection closed: {e}"
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = f"reader error: {e}"
        finally:
            if self._ws is ws:
                self._ws = None
                self._fail_pending(reason)
                if self._heartbeat_task is not None:
                    self._heartbeat_task.cancel()
                    self._heartbeat_task = None
                if self.on_lost is not None:
                    self.on_lost(reason)

    async def _heartbeat_loop(self, ws) -> None:
        ping = dump_message(PingMessage())
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await ws.send(ping)
            except (ConnectionClosed, OSError) as e:
                logger.debug(f"Heartbeat send failed: {e}")
                return

    def _dispatch(self, raw) -> None:
        try:
            message = parse_server_message(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid relay message: {e}")
            return

        if isinstance(message, FrameBroadcast):
            result = decode_frame_message(message.data, self.validator)
            if isinstance(result, Rejected):
                self.frames_rejected += 1
                self.events.emit(ClientEvent.frame_rejected(result.reason.value))
            else:
                self.frames_received += 1
                self.events.emit(ClientEvent.frame_received(result))
        elif isinstance(message, AckMessage):
            self._resolve(message.ref, Delivered(message.delivered))
        elif isinstance(message, FrameRejectedMessage):
            self._resolve(message.ref, dropped_from_wire(message.reason))
        elif isinstance(message, ErrorMessage):
            logger.warning(f"Relay reported error: {message.reason}")
        elif isinstance(message, PongMessage):
            pass
        else:
            logger.debug(f"Ignoring {message.event!r} after join")

    def _resolve(self, ref: int, result: PublishResult) -> None:
        future = self._pending.get(ref)
        if future is not None and not future.done():
            future.set_result(result)
