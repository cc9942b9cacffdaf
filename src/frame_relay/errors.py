"""
Error Taxonomy
==============

Exceptions used inside the relay and its clients.

    RelayError
    ├── FrameValidationError  bad frame; dropped, never fatal
    ├── AdmissionError        bad channel name or failed authorization
    ├── TransportError        connectivity loss; drives reconnection
    └── FatalError            retry budget exhausted

None of these cross the public client contract: callers observe state
transitions and frame-rejected reasons instead.
"""

from typing import Optional

from frame_relay.models.reason_codes import DenyReason, RejectReason


class RelayError(Exception):
    """Base class for relay errors."""
    pass


class FrameValidationError(RelayError):
    """Raised when a frame cannot be turned into a valid Frame."""

    def __init__(self, reason: RejectReason, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class AdmissionError(RelayError):
    """Raised when a connection is refused admission to a channel."""

    def __init__(self, reason: DenyReason, channel: Optional[str] = None) -> None:
        self.reason = reason
        self.channel = channel
        super().__init__(f"Admission denied for {channel!r}: {reason.value}")


class TransportError(RelayError):
    """Raised when the underlying connection is lost or cannot be opened."""
    pass


class FatalError(RelayError):
    """Raised when the retry budget is exhausted."""
    pass
