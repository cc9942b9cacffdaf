"""
Capture-Pace Loop
=================

Producer-side scheduler: capture one frame, validate it, publish it,
and only then schedule the next capture.

    ┌────────────┐   ┌──────────┐   ┌─────────┐   wait min_interval
    │  capture   │──▶│ validate │──▶│ publish │──────────────┐
    └────────────┘   └──────────┘   └─────────┘              │
          ▲                                                  │
          └──────────────────────────────────────────────────┘

Self-paced rather than fixed-rate: there is never more than one captured
frame outstanding, and a slow camera or a slow relay simply lowers the
frame rate instead of building a queue of stale frames.

Runs only while:
    - the state machine is CONNECTED
    - a capture source is bound
    - the loop has been started and not stopped

Leaving any of those conditions cancels the pending timer and the
in-flight cycle synchronously. A timer that already fired re-checks the
conditions and its epoch and does nothing if they changed.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from frame_relay.client.capture import CaptureSource
from frame_relay.client.events import ClientEvent, EventBus
from frame_relay.client.state_machine import (
    CallLater,
    ConnectionStateMachine,
    TimerHandle,
    loop_call_later,
)
from frame_relay.codec.validator import FrameValidator
from frame_relay.errors import TransportError
from frame_relay.models.frame import Frame
from frame_relay.models.results import Dropped, Rejected
from frame_relay.models.state import ConnectionState


logger = logging.getLogger(__name__)


Publisher = Callable[[Frame], Awaitable[Any]]


class CapturePaceLoop:
    """
    Self-throttling capture/publish loop for the producer role.

    Attributes:
        machine: Connection state machine gating the loop
        min_interval: Seconds between the end of one cycle and the next capture
        frames_captured: Captures that produced an image
        frames_published: Frames the relay accepted
        frames_rejected: Frames rejected locally or by the relay
        publish_failures: Publishes that failed at the transport
    """

    def __init__(
        self,
        machine: ConnectionStateMachine,
        publisher: Publisher,
        validator: FrameValidator,
        min_interval: float = 0.1,
        events: Optional[EventBus] = None,
        call_later: Optional[CallLater] = None,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")

        self.machine = machine
        self.min_interval = min_interval
        self._publisher = publisher
        self._validator = validator
        self._events = events or machine.events
        self._call_later = call_later or loop_call_later

        self._source: Optional[CaptureSource] = None
        self._enabled: bool = False
        self._epoch: int = 0
        self._handle: Optional[TimerHandle] = None
        self._cycle_task: Optional[asyncio.Task] = None

        self.frames_captured: int = 0
        self.frames_published: int = 0
        self.frames_rejected: int = 0
        self.publish_failures: int = 0

        machine.add_listener(self._on_state_change)

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    @property
    def source(self) -> Optional[CaptureSource]:
        return self._source

    @property
    def active(self) -> bool:
        """Whether a capture is scheduled or in progress."""
        return self._handle is not None or (
            self._cycle_task is not None and not self._cycle_task.done()
        )

    def bind(self, source: CaptureSource) -> None:
        self._source = source
        self._maybe_start()

    def unbind(self) -> Optional[CaptureSource]:
        """Detach the capture source and stop capturing. Returns the old source."""
        source = self._source
        self._source = None
        self._halt()
        return source

    def start(self) -> None:
        self._enabled = True
        self._maybe_start()

    def stop(self) -> None:
        self._enabled = False
        self._halt()

    def close(self) -> None:
        """Stop and detach from the state machine."""
        self.stop()
        self.machine.remove_listener(self._on_state_change)

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def _should_run(self) -> bool:
        return (
            self._enabled
            and self._source is not None
            and self.machine.state is ConnectionState.CONNECTED
        )

    def _on_state_change(self, old_state: ConnectionState, new_state: ConnectionState) -> None:
        if new_state is ConnectionState.CONNECTED:
            self._maybe_start()
        else:
            self._halt()

    def _maybe_start(self) -> None:
        if not self._should_run() or self.active:
            return
        logger.info("Capture loop started")
        self._schedule(0.0)

    def _halt(self) -> None:
        was_active = self.active
        self._epoch += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._cycle_task is not None and not self._cycle_task.done():
            self._cycle_task.cancel()
        self._cycle_task = None
        if was_active:
            logger.info("Capture loop stopped")

    def _schedule(self, delay: float) -> None:
        epoch = self._epoch
        self._handle = self._call_later(delay, lambda: self._on_tick(epoch))

    def _on_tick(self, epoch: int) -> None:
        if epoch != self._epoch or not self._should_run():
            return
        self._handle = None
        self._cycle_task = asyncio.get_running_loop().create_task(
            self._cycle(epoch),
            name="capture_cycle",
        )

    async def _cycle(self, epoch: int) -> None:
        try:
            await self._run_once(epoch)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Capture cycle error: {e}")

        if epoch != self._epoch:
            return
        self._cycle_task = None
        if self._should_run():
            self._schedule(self.min_interval)

    async def _run_once(self, epoch: int) -> None:
        source = self._source
        if source is None:
            return

        captured = await source.capture()
        if captured is None or epoch != self._epoch:
            return
        self.frames_captured += 1

        result = self._validator.validate(
            captured.payload,
            captured.media_type,
            captured.timestamp_ms,
        )
        if isinstance(result, Rejected):
            self.frames_rejected += 1
            logger.debug(f"Captured frame rejected locally: {result.reason.value}")
            self._events.emit(ClientEvent.frame_rejected(result.reason.value))
            return

        try:
            outcome = await self._publisher(result)
        except TransportError as e:
            self.publish_failures += 1
            logger.warning(f"Publish failed: {e}")
            return

        if isinstance(outcome, Dropped):
            self.frames_rejected += 1
            self._events.emit(ClientEvent.frame_rejected(outcome.wire_reason))
        else:
            self.frames_published += 1

    def metrics(self) -> dict:
        return {
            "frames_captured": self.frames_captured,
            "frames_published": self.frames_published,
            "frames_rejected": self.frames_rejected,
            "publish_failures": self.publish_failures,
        }
