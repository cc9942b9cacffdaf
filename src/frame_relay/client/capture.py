"""
Capture Sources
===============

Where the producer's frames come from.

Components:
    - CaptureSource: Protocol for anything that yields encoded images
    - OpenCVCaptureSource: Live camera via cv2.VideoCapture, JPEG-encoded
    - StillImageSource: Replays one encoded image (demos, smoke tests)

Design Rules:
    - capture() returns an encoded image, never raw pixels
    - Blocking camera I/O runs in a worker thread
    - A failed read returns None; the pace loop just tries again later
"""

import asyncio
import logging
import threading
import time
from pathlib import Path
from typing import Optional, Protocol, Union

import cv2

from frame_relay.codec.image import ImageDecodeError, encode_jpeg
from frame_relay.models.frame import CapturedImage


logger = logging.getLogger(__name__)


class CaptureSource(Protocol):
    """
    Protocol for capture backends.

    All implementations must provide an async `capture` method returning
    a CapturedImage, or None when no image is available right now.
    """

    async def capture(self) -> Optional[CapturedImage]:
        ...

    def close(self) -> None:
        ...


class OpenCVCaptureSource:
    """
    Live camera capture through OpenCV.

    Frames are JPEG-encoded at `jpeg_quality` (80 by default, the same
    quality the browser camera page used).

    Attributes:
        device: Camera index or stream URL
        jpeg_quality: JPEG quality 1-100
    """

    def __init__(self, device: Union[int, str] = 0, jpeg_quality: int = 80) -> None:
        self.device = device
        self.jpeg_quality = jpeg_quality
        self._capture: Optional[cv2.VideoCapture] = None
        self._lock = threading.Lock()

    def open(self) -> None:
        with self._lock:
            if self._capture is not None:
                return
            capture = cv2.VideoCapture(self.device)
            if not capture.isOpened():
                capture.release()
                raise RuntimeError(f"Cannot open camera device {self.device!r}")
            self._capture = capture
            logger.info(f"Camera opened: {self.device!r}")

    @property
    def is_open(self) -> bool:
        return self._capture is not None

    def _read(self) -> Optional[CapturedImage]:
        with self._lock:
            if self._capture is None:
                return None
            ok, bgr = self._capture.read()
        if not ok or bgr is None:
            logger.warning("Camera read failed")
            return None

        timestamp_ms = int(time.time() * 1000)
        try:
            payload = encode_jpeg(bgr, self.jpeg_quality)
        except ImageDecodeError as e:
            logger.warning(f"JPEG encode failed: {e}")
            return None
        return CapturedImage(payload=payload, media_type="image/jpeg", timestamp_ms=timestamp_ms)

    async def capture(self) -> Optional[CapturedImage]:
        return await asyncio.to_thread(self._read)

    def close(self) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None
                logger.info(f"Camera released: {self.device!r}")


class StillImageSource:
    """Replays the same encoded image on every capture."""

    def __init__(self, payload: bytes, media_type: str = "image/jpeg") -> None:
        self.payload = payload
        self.media_type = media_type
        self.captures: int = 0

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "StillImageSource":
        path = Path(path)
        suffix = path.suffix.lower().lstrip(".")
        media_type = {
            "jpg": "image/jpeg",
            "jpeg": "image/jpeg",
            "png": "image/png",
            "webp": "image/webp",
        }.get(suffix, "application/octet-stream")
        return cls(path.read_bytes(), media_type)

    async def capture(self) -> Optional[CapturedImage]:
        self.captures += 1
        return CapturedImage(
            payload=self.payload,
            media_type=self.media_type,
            timestamp_ms=int(time.time() * 1000),
        )

    def close(self) -> None:
        pass
