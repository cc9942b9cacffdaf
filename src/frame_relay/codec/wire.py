"""
Wire Codec
==========

Conversion between the JSON frame wire shape and validated Frames.

The payload travels as base64 text. Browser camera pages
send it as a data URL ("data:image/jpeg;base64,/9j/..."); bare base64 is
also accepted. The server always emits bare base64.

Design Rules:
    - This is the ONLY place that base64-decodes frame payloads
    - Oversized payloads are rejected before decoding
    - Decode errors become Rejected(MALFORMED), never exceptions
"""

import base64
import binascii
from typing import Optional, Tuple

from frame_relay.codec.validator import FrameValidator, normalize_media_type
from frame_relay.errors import FrameValidationError
from frame_relay.models.frame import Frame
from frame_relay.models.messages import FrameMessage
from frame_relay.models.reason_codes import RejectReason
from frame_relay.models.results import Rejected, ValidationResult


DATA_URL_PREFIX = "data:"


def split_data_url(text: str) -> Tuple[Optional[str], str]:
    """
    Split a data URL into (media_type, base64 body).

    Bare base64 returns (None, text).

    Raises:
        FrameValidationError: If a data URL is not base64-encoded
    """
    if not text.startswith(DATA_URL_PREFIX):
        return None, text

    header, sep, body = text.partition(",")
    if not sep:
        raise FrameValidationError(RejectReason.MALFORMED, "data URL without body")

    params = header[len(DATA_URL_PREFIX):].split(";")
    if "base64" not in params[1:]:
        raise FrameValidationError(RejectReason.MALFORMED, "data URL is not base64")

    return normalize_media_type(params[0]), body


def decode_payload(text: str, max_bytes: int) -> Tuple[Optional[str], bytes]:
    """
    Decode a wire payload to bytes.

    Args:
        text: Bare base64 or base64 data URL
        max_bytes: Size limit for the decoded payload

    Returns:
        Tuple of (media type from the data URL or None, decoded bytes)

    Raises:
        FrameValidationError: On oversize or undecodable input
    """
    media_type, body = split_data_url(text)

    # base64 expands 3 bytes into 4 chars; reject before allocating
    if (len(body) // 4) * 3 > max_bytes + 2:
        raise FrameValidationError(RejectReason.TOO_LARGE, "encoded payload over limit")

    try:
        return media_type, base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FrameValidationError(RejectReason.MALFORMED, f"base64 decode failed: {e}")


def decode_frame_message(message: FrameMessage, validator: FrameValidator) -> ValidationResult:
    """
    Turn a wire FrameMessage into a validated Frame.

    Returns:
        Frame on success, Rejected otherwise
    """
    try:
        url_type, payload = decode_payload(message.payload, validator.max_frame_bytes)
    except FrameValidationError as e:
        return Rejected(e.reason, e.detail)

    if url_type is not None and url_type != normalize_media_type(message.declared_type):
        return Rejected(
            RejectReason.MALFORMED,
            f"data URL type {url_type} does not match {message.declared_type}",
        )

    return validator.validate(payload, message.declared_type, message.timestamp)


def encode_frame_message(frame: Frame) -> FrameMessage:
    """Build the wire shape for a Frame (bare base64 payload)."""
    return FrameMessage(
        payload=base64.b64encode(frame.payload).decode("ascii"),
        declared_type=frame.declared_type,
        timestamp=frame.timestamp_ms,
    )
