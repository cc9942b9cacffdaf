"""
Client Events
=============

Control events surfaced to the UI collaborator.

These are the ONLY signals a UI may depend on:
    connected, disconnected(reason), reconnecting(attempt, of_max),
    failed(reason), frame-received(frame), frame-rejected(reason)

Raw transport exceptions never appear here.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from frame_relay.models.frame import Frame


logger = logging.getLogger(__name__)


class ClientEventKind(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    FRAME_RECEIVED = "frame-received"
    FRAME_REJECTED = "frame-rejected"


@dataclass(frozen=True)
class ClientEvent:
    """One UI-facing event."""

    kind: ClientEventKind
    reason: Optional[str] = None
    attempt: Optional[int] = None
    max_attempts: Optional[int] = None
    frame: Optional[Frame] = None

    @classmethod
    def connected(cls) -> "ClientEvent":
        return cls(ClientEventKind.CONNECTED)

    @classmethod
    def disconnected(cls, reason: str) -> "ClientEvent":
        return cls(ClientEventKind.DISCONNECTED, reason=reason)

    @classmethod
    def reconnecting(cls, attempt: int, max_attempts: int) -> "ClientEvent":
        return cls(ClientEventKind.RECONNECTING, attempt=attempt, max_attempts=max_attempts)

    @classmethod
    def failed(cls, reason: str = "retry budget exhausted") -> "ClientEvent":
        return cls(ClientEventKind.FAILED, reason=reason)

    @classmethod
    def frame_received(cls, frame: Frame) -> "ClientEvent":
        return cls(ClientEventKind.FRAME_RECEIVED, frame=frame)

    @classmethod
    def frame_rejected(cls, reason: str) -> "ClientEvent":
        return cls(ClientEventKind.FRAME_REJECTED, reason=reason)


EventListener = Callable[[ClientEvent], None]


class EventBus:
    """
    Synchronous fan-out of ClientEvents to subscribed listeners.

    A listener that raises is logged and skipped; it never breaks the
    state machine that emitted the event.
    """

    def __init__(self) -> None:
        self._listeners: List[EventListener] = []

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: ClientEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener failed on {event.kind.value}: {e}")
