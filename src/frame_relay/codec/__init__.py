"""
Codec Module
============

Frame validation and wire encoding.

Components:
    - FrameValidator: size, type allow-list and signature checks
    - decode_frame_message / encode_frame_message: wire shape <-> Frame

Image decoding for viewers lives in frame_relay.codec.image and is
imported separately so the relay does not need OpenCV loaded.
"""

from frame_relay.codec.validator import (
    DEFAULT_ALLOWED_TYPES,
    DEFAULT_MAX_FRAME_BYTES,
    FrameValidator,
    normalize_media_type,
)
from frame_relay.codec.wire import decode_frame_message, encode_frame_message

__all__ = [
    "FrameValidator",
    "DEFAULT_ALLOWED_TYPES",
    "DEFAULT_MAX_FRAME_BYTES",
    "normalize_media_type",
    "decode_frame_message",
    "encode_frame_message",
]
