"""
Frame Data Model
=================

Internal frame representation shared by the validator, the hub and the
clients.

Design Rules:
    - A Frame only exists after validation succeeded
    - Frames are immutable and never persisted
    - The payload is the encoded image, never decoded pixels
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, slots=True)
class Frame:
    """
    Validated camera frame.

    It is immutable (frozen) to prevent accidental modification while it
    is being fanned out to several recipients.

    Attributes:
        payload: Encoded image bytes (JPEG, PNG, ...)
        declared_type: Media type tag, e.g. "image/jpeg"
        timestamp_ms: Capture time in epoch milliseconds
    """

    payload: bytes
    declared_type: str
    timestamp_ms: int

    @property
    def size(self) -> int:
        return len(self.payload)

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the full image."""
        return (
            f"Frame(declared_type={self.declared_type!r}, "
            f"size={self.size}, "
            f"timestamp_ms={self.timestamp_ms})"
        )


@dataclass(frozen=True, slots=True)
class CapturedImage:
    """Raw output of a capture source, before validation."""

    payload: bytes
    media_type: str
    timestamp_ms: Optional[int] = None
