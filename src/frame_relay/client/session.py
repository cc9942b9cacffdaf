"""
Relay Session
=============

One client of the relay, producer or consumer.

A session wires together:
    - RelayTransport: the WebSocket connection
    - ConnectionStateMachine: connect / reconnect / fail lifecycle
    - CapturePaceLoop: frame capture and publishing (producer only)
    - EventBus: the UI-facing event stream

Both roles share the same machinery; the role is a capability flag that
decides whether a pace loop exists.

Example:
    session = RelaySession.from_settings(settings, Role.PRODUCER)
    session.subscribe(print)

    async with session:
        session.start(OpenCVCaptureSource(0))
        await asyncio.sleep(60)
"""

import logging
from typing import Optional

from frame_relay.auth.grants import HttpGrantProvider, StaticGrantProvider
from frame_relay.client.capture import CaptureSource
from frame_relay.client.events import EventBus, EventListener
from frame_relay.client.pace import CapturePaceLoop
from frame_relay.client.retry import RetryPolicy
from frame_relay.client.state_machine import ConnectionStateMachine
from frame_relay.client.transport import GrantProvider, RelayTransport
from frame_relay.codec.validator import FrameValidator
from frame_relay.models.state import ConnectionState, Role


logger = logging.getLogger(__name__)


class RelaySession:
    """
    Producer or consumer attached to one channel.

    Attributes:
        role: PRODUCER or CONSUMER
        events: UI event bus
        transport: WebSocket transport
        machine: Connection state machine
        pace: Capture-pace loop (None for consumers)
    """

    def __init__(
        self,
        role: Role,
        url: str,
        channel: str,
        grant_provider: GrantProvider,
        retry_policy: RetryPolicy,
        validator: FrameValidator,
        min_capture_interval: float = 0.1,
        heartbeat_interval: float = 25.0,
        heartbeat_timeout: float = 60.0,
        events: Optional[EventBus] = None,
    ) -> None:
        self.role = role
        self.events = events or EventBus()

        self.transport = RelayTransport(
            url=url,
            channel=channel,
            grant_provider=grant_provider,
            events=self.events,
            validator=validator,
            heartbeat_interval=heartbeat_interval,
            heartbeat_timeout=heartbeat_timeout,
        )
        self.machine = ConnectionStateMachine(
            connector=self.transport,
            retry_policy=retry_policy,
            role=role,
            events=self.events,
        )
        self.transport.on_lost = self.machine.on_transport_lost

        self.pace: Optional[CapturePaceLoop] = None
        if role is Role.PRODUCER:
            self.pace = CapturePaceLoop(
                machine=self.machine,
                publisher=self.transport.publish,
                validator=validator,
                min_interval=min_capture_interval,
                events=self.events,
            )

    @classmethod
    def from_settings(cls, settings, role: Role, events: Optional[EventBus] = None) -> "RelaySession":
        """Build a session from a frame_relay.config.Settings instance."""
        if settings.auth.enabled:
            grant_provider = HttpGrantProvider(
                auth_url=settings.client.auth_url,
                caller_identity=settings.client.identity,
            )
        else:
            grant_provider = StaticGrantProvider()

        return cls(
            role=role,
            url=settings.client.url,
            channel=settings.client.channel,
            grant_provider=grant_provider,
            retry_policy=RetryPolicy.from_ms(
                settings.retry.base_delay_ms,
                settings.retry.max_delay_ms,
                settings.retry.max_attempts,
            ),
            validator=FrameValidator(
                max_frame_bytes=settings.relay.max_frame_bytes,
                allowed_types=settings.relay.allowed_frame_types,
            ),
            min_capture_interval=settings.capture.min_capture_interval_ms / 1000.0,
            heartbeat_interval=settings.relay.heartbeat_interval_ms / 1000.0,
            heartbeat_timeout=settings.relay.heartbeat_timeout_ms / 1000.0,
            events=events,
        )

    @property
    def state(self) -> ConnectionState:
        return self.machine.state

    def subscribe(self, listener: EventListener):
        return self.events.subscribe(listener)

    def start(self, source: Optional[CaptureSource] = None) -> bool:
        """
        Start connecting; producers also start capturing once connected.

        Raises:
            ValueError: If a capture source is given to a consumer
        """
        if source is not None:
            if self.pace is None:
                raise ValueError("Only producer sessions take a capture source")
            self.pace.bind(source)
        if self.pace is not None:
            self.pace.start()
        return self.machine.start()

    async def stop(self) -> None:
        """Stop capturing, cancel retries and close the transport."""
        if self.pace is not None:
            self.pace.stop()
            source = self.pace.unbind()
            if source is not None:
                try:
                    source.close()
                except Exception as e:
                    logger.warning(f"Error closing capture source: {e}")
        await self.machine.stop()

    async def __aenter__(self) -> "RelaySession":
        return self

    async def __aexit__(self, *args) -> None:
        await self.stop()
