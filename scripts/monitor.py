#!/usr/bin/env python3
"""
Frame Relay Monitor
===================

Joins a relay channel as a consumer and shows the received frames in an
OpenCV window, with the connection status drawn on top.

Architecture:
    Thread 1 (daemon) : asyncio loop running the RelaySession
    Main thread       : cv2.imshow render loop

Status banner:
    connected / reconnecting (n/max) / disconnected / failed

Usage:  python scripts/monitor.py --channel room1
Controls: q/ESC quit, r retry after failure
"""

import argparse
import asyncio
import logging
import os
import sys
import threading
import time
from typing import Optional

import cv2
import numpy as np

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from frame_relay.client import ClientEvent, ClientEventKind, RelaySession
from frame_relay.codec.image import ImageDecodeError, decode_frame_bgr
from frame_relay.config import settings
from frame_relay.models import Role


logger = logging.getLogger("monitor")


# =============================================================================
# Thread-safe shared state
# =============================================================================

_lock = threading.Lock()
_state = {
    "frame": None,
    "frames": 0,
    "rejected": 0,
    "status": "connecting",
    "last_frame_time": 0.0,
}


def _get(k):
    with _lock:
        return _state.get(k)


def _set(k, v):
    with _lock:
        _state[k] = v


def on_event(event: ClientEvent) -> None:
    """EventBus listener; runs on the session thread."""
    if event.kind is ClientEventKind.FRAME_RECEIVED:
        try:
            bgr = decode_frame_bgr(event.frame)
        except ImageDecodeError as e:
            logger.warning(f"Undecodable frame: {e}")
            with _lock:
                _state["rejected"] += 1
            return
        with _lock:
            _state["frame"] = bgr
            _state["frames"] += 1
            _state["last_frame_time"] = time.time()
    elif event.kind is ClientEventKind.FRAME_REJECTED:
        with _lock:
            _state["rejected"] += 1
    elif event.kind is ClientEventKind.RECONNECTING:
        _set("status", f"reconnecting ({event.attempt}/{event.max_attempts})")
    elif event.kind is ClientEventKind.CONNECTED:
        _set("status", "connected")
    elif event.kind is ClientEventKind.DISCONNECTED:
        _set("status", "disconnected")
    elif event.kind is ClientEventKind.FAILED:
        _set("status", f"failed: {event.reason}")


# =============================================================================
# Session thread
# =============================================================================

class SessionThread(threading.Thread):
    """Owns the asyncio loop the consumer session runs on."""

    def __init__(self) -> None:
        super().__init__(name="relay_session", daemon=True)
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.session: Optional[RelaySession] = None
        self._ready = threading.Event()

    def run(self) -> None:
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        self.session = RelaySession.from_settings(settings, Role.CONSUMER)
        self.session.subscribe(on_event)
        self.loop.call_soon(self.session.start)
        self._ready.set()
        self.loop.run_forever()

    def wait_ready(self, timeout: float = 5.0) -> bool:
        return self._ready.wait(timeout)

    def retry(self) -> None:
        if self.loop is not None and self.session is not None:
            self.loop.call_soon_threadsafe(self.session.start)

    def shutdown(self) -> None:
        if self.loop is None or self.session is None:
            return
        future = asyncio.run_coroutine_threadsafe(self.session.stop(), self.loop)
        try:
            future.result(timeout=5.0)
        except Exception as e:
            logger.warning(f"Error stopping session: {e}")
        self.loop.call_soon_threadsafe(self.loop.stop)


# =============================================================================
# Drawing
# =============================================================================

def draw_status(frame: np.ndarray, status: str, frames: int, rejected: int, stale_for: float) -> np.ndarray:
    out = frame.copy()
    color = (0, 200, 0) if status == "connected" else (0, 165, 255)
    if status.startswith("failed") or status == "disconnected":
        color = (0, 0, 220)

    cv2.rectangle(out, (0, 0), (out.shape[1], 28), (20, 20, 20), -1)
    text = f"{status}  frames={frames}  rejected={rejected}"
    if status == "connected" and stale_for > 2.0:
        text += f"  (no frames for {stale_for:.0f}s)"
    cv2.putText(out, text, (8, 19), cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1, cv2.LINE_AA)
    return out


# =============================================================================
# Main render loop
# =============================================================================

def main():
    parser = argparse.ArgumentParser(description="Watch a relay channel")
    parser.add_argument("--url", type=str, default=settings.client.url, help="WebSocket URL of the relay")
    parser.add_argument("--auth-url", type=str, default=settings.client.auth_url, help="Grant endpoint of the relay")
    parser.add_argument("--channel", type=str, default=settings.client.channel, help="Channel to watch")
    parser.add_argument("--identity", type=str, default=settings.client.identity, help="Caller identity")
    args = parser.parse_args()

    settings.client.url = args.url
    settings.client.auth_url = args.auth_url
    settings.client.channel = args.channel
    settings.client.identity = args.identity

    print("=" * 60)
    print("Frame Relay Monitor")
    print("=" * 60)
    print(f"  Relay:   {settings.client.url}")
    print(f"  Channel: {settings.client.channel}")
    print()
    print("  Controls:")
    print("    q/ESC  quit")
    print("    r      retry after failure")
    print("=" * 60)

    worker = SessionThread()
    worker.start()
    worker.wait_ready()

    window_name = "Frame Relay Monitor"
    cv2.namedWindow(window_name, cv2.WINDOW_NORMAL)
    cv2.resizeWindow(window_name, 960, 640)

    while True:
        frame = _get("frame")
        status = _get("status")
        last = _get("last_frame_time")
        stale_for = time.time() - last if last else 0.0

        if frame is None:
            frame = np.full((480, 640, 3), 30, dtype=np.uint8)
            cv2.putText(frame, "Waiting for frames...", (180, 240),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.8, (100, 100, 100), 2)

        cv2.imshow(window_name, draw_status(frame, status, _get("frames"), _get("rejected"), stale_for))

        key = cv2.waitKey(30) & 0xFF
        if key == ord('q') or key == 27:
            break
        elif key == ord('r'):
            print("[monitor] retry requested")
            worker.retry()

    worker.shutdown()
    cv2.destroyAllWindows()
    print("\n[monitor] Shutdown.")


if __name__ == "__main__":
    main()
