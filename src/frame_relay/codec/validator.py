"""
Frame Validator
===============

Edge validation for captured frames before they are allowed onto the wire.

Design Rules:
    - Pure: no I/O, no logging side effects on the hot path
    - Never raises for bad input; returns Rejected instead
    - Checks the leading signature bytes, never decodes pixels
"""

import time
from typing import FrozenSet, Iterable, Optional

from frame_relay.models.frame import Frame
from frame_relay.models.reason_codes import RejectReason
from frame_relay.models.results import Rejected, ValidationResult


DEFAULT_MAX_FRAME_BYTES = 1_000_000
DEFAULT_ALLOWED_TYPES: FrozenSet[str] = frozenset(
    {"image/jpeg", "image/png", "image/webp"}
)


def _is_jpeg(payload: bytes) -> bool:
    return payload[:3] == b"\xff\xd8\xff"


def _is_png(payload: bytes) -> bool:
    return payload[:8] == b"\x89PNG\r\n\x1a\n"


def _is_webp(payload: bytes) -> bool:
    return payload[:4] == b"RIFF" and payload[8:12] == b"WEBP"


def _is_gif(payload: bytes) -> bool:
    return payload[:6] in (b"GIF87a", b"GIF89a")


SIGNATURE_CHECKS = {
    "image/jpeg": _is_jpeg,
    "image/jpg": _is_jpeg,
    "image/png": _is_png,
    "image/webp": _is_webp,
    "image/gif": _is_gif,
}


def normalize_media_type(declared_type: Optional[str]) -> str:
    """Lower-case a media type and strip parameters ("image/jpeg; q=0.8")."""
    if not declared_type:
        return ""
    return declared_type.split(";", 1)[0].strip().lower()


def now_ms() -> int:
    return int(time.time() * 1000)


class FrameValidator:
    """
    Validates raw payloads into Frames.

    Attributes:
        max_frame_bytes: Largest payload accepted
        allowed_types: Allow-listed media types (normalized)

    Example:
        validator = FrameValidator(max_frame_bytes=500_000)
        result = validator.validate(jpeg_bytes, "image/jpeg")
        if isinstance(result, Frame):
            await hub.publish(channel, connection, result)
    """

    def __init__(
        self,
        max_frame_bytes: int = DEFAULT_MAX_FRAME_BYTES,
        allowed_types: Optional[Iterable[str]] = None,
    ) -> None:
        if max_frame_bytes < 1:
            raise ValueError("max_frame_bytes must be >= 1")

        self.max_frame_bytes = max_frame_bytes
        self.allowed_types: FrozenSet[str] = frozenset(
            normalize_media_type(t)
            for t in (allowed_types if allowed_types is not None else DEFAULT_ALLOWED_TYPES)
        )

    def validate(
        self,
        payload: Optional[bytes],
        declared_type: Optional[str],
        timestamp_ms: Optional[int] = None,
    ) -> ValidationResult:
        """
        Validate a payload and its declared type.

        Args:
            payload: Encoded image bytes
            declared_type: Media type tag
            timestamp_ms: Capture time; defaults to now

        Returns:
            Frame on success, Rejected otherwise
        """
        if not payload:
            return Rejected(RejectReason.EMPTY_PAYLOAD)

        if len(payload) > self.max_frame_bytes:
            return Rejected(
                RejectReason.TOO_LARGE,
                f"{len(payload)} > {self.max_frame_bytes} bytes",
            )

        media_type = normalize_media_type(declared_type)
        if media_type not in self.allowed_types:
            return Rejected(RejectReason.UNSUPPORTED_TYPE, media_type or "<missing>")

        check = SIGNATURE_CHECKS.get(media_type)
        if check is not None and not check(payload):
            return Rejected(RejectReason.MALFORMED, f"not a valid {media_type} payload")

        return Frame(
            payload=bytes(payload),
            declared_type=media_type,
            timestamp_ms=timestamp_ms if timestamp_ms is not None else now_ms(),
        )

    def revalidate(self, frame: Frame) -> ValidationResult:
        """Validate a Frame built elsewhere, e.g. with a different limit."""
        return self.validate(frame.payload, frame.declared_type, frame.timestamp_ms)
