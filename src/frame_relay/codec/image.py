"""
Image Decoder
=============

Decoding of received frames into OpenCV matrices, for viewers.

Design Rules:
    - The relay never decodes images; only display code calls this
    - Validates shape and dtype
    - Fails fast on corrupt frames
"""

import logging

import cv2
import numpy as np

from frame_relay.models.frame import Frame


logger = logging.getLogger(__name__)


class ImageDecodeError(Exception):
    """Raised when image decoding fails."""
    pass


def decode_frame_bgr(frame: Frame) -> np.ndarray:
    """
    Decode a frame's encoded payload to a BGR numpy array.

    Args:
        frame: Validated frame (JPEG, PNG or WebP payload)

    Returns:
        BGR image as np.ndarray (H, W, 3), dtype=uint8

    Raises:
        ImageDecodeError: If decoding fails or image is invalid
    """
    nparr = np.frombuffer(frame.payload, np.uint8)
    bgr = cv2.imdecode(nparr, cv2.IMREAD_COLOR)

    if bgr is None:
        raise ImageDecodeError(
            f"Failed to decode {frame!r}: cv2.imdecode returned None"
        )

    if len(bgr.shape) != 3 or bgr.shape[2] != 3:
        raise ImageDecodeError(f"Invalid image shape for {frame!r}: {bgr.shape}")

    if bgr.dtype != np.uint8:
        raise ImageDecodeError(f"Invalid dtype for {frame!r}: {bgr.dtype}")

    return bgr


def encode_jpeg(bgr: np.ndarray, quality: int = 80) -> bytes:
    """
    Encode a BGR image as JPEG.

    Raises:
        ImageDecodeError: If OpenCV refuses to encode the image
    """
    ok, buf = cv2.imencode(".jpg", bgr, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ImageDecodeError("cv2.imencode failed")
    return buf.tobytes()
