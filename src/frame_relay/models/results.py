"""
Operation Results
=================

Typed outcomes for validation, admission and publishing.

Failures that are part of normal operation (a bad frame, a denied join,
a publish with no listeners) are returned as values rather than raised,
so a single bad input never tears down a connection.

Example:
    result = validator.validate(payload, "image/jpeg")
    if isinstance(result, Rejected):
        logger.debug(f"Frame rejected: {result.reason.value}")
"""

from dataclasses import dataclass
from typing import Optional, Union

from frame_relay.models.frame import Frame
from frame_relay.models.reason_codes import DenyReason, DropReason, RejectReason


@dataclass(frozen=True)
class Rejected:
    """Frame failed validation."""

    reason: RejectReason
    detail: str = ""


@dataclass(frozen=True)
class Admitted:
    """Connection joined the channel."""

    channel: str


@dataclass(frozen=True)
class Denied:
    """Connection was refused admission."""

    channel: str
    reason: DenyReason


@dataclass(frozen=True)
class Delivered:
    """
    Frame was fanned out.

    count may be zero: a channel with no listeners is not an error.
    """

    count: int


@dataclass(frozen=True)
class Dropped:
    """Frame was not fanned out at all."""

    reason: DropReason
    rejection: Optional[RejectReason] = None

    @property
    def wire_reason(self) -> str:
        """Most specific reason code, as sent to the publisher."""
        if self.rejection is not None:
            return self.rejection.value
        return self.reason.value


ValidationResult = Union[Frame, Rejected]
Admission = Union[Admitted, Denied]
PublishResult = Union[Delivered, Dropped]
