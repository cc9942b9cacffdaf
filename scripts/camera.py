#!/usr/bin/env python3
"""
Camera Producer
===============

Captures frames from a local camera (or replays a still image) and
publishes them into a relay channel.

This script:
    1. Connects to the relay and joins the channel
    2. Captures, encodes and publishes frames, one cycle at a time
    3. Reconnects with backoff when the connection drops
    4. Logs publish stats at a fixed interval

Prerequisites:
    - The relay must be running (python -m frame_relay.main)
    - A camera, or --image pointing at a JPEG/PNG/WebP file

Usage:
    python scripts/camera.py --channel room1
    python scripts/camera.py --image sample.jpg --duration 30
"""

import argparse
import asyncio
import logging
import os
import sys
import time

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from frame_relay.client import ClientEvent, ClientEventKind, RelaySession
from frame_relay.client.capture import OpenCVCaptureSource, StillImageSource
from frame_relay.config import settings
from frame_relay.models import ConnectionState, Role


logger = logging.getLogger("camera")


def log_event(event: ClientEvent) -> None:
    if event.kind is ClientEventKind.RECONNECTING:
        logger.warning(f"Reconnecting ({event.attempt}/{event.max_attempts})")
    elif event.kind is ClientEventKind.FRAME_REJECTED:
        logger.warning(f"Frame rejected: {event.reason}")
    elif event.kind in (ClientEventKind.DISCONNECTED, ClientEventKind.FAILED):
        logger.error(f"{event.kind.value}: {event.reason}")
    else:
        logger.info(event.kind.value)


async def run_camera(args: argparse.Namespace) -> dict:
    """
    Publish frames until the duration elapses or the session fails.

    Returns:
        Final pace loop metrics
    """
    settings.client.url = args.url
    settings.client.auth_url = args.auth_url
    settings.client.channel = args.channel
    settings.client.identity = args.identity

    if args.image:
        source = StillImageSource.from_file(args.image)
    else:
        device = int(args.device) if args.device.isdigit() else args.device
        source = OpenCVCaptureSource(device=device, jpeg_quality=args.quality)
        source.open()

    logger.info("=" * 60)
    logger.info("Camera Producer")
    logger.info("=" * 60)
    logger.info(f"Relay URL: {settings.client.url}")
    logger.info(f"Channel: {settings.client.channel}")
    logger.info(f"Source: {args.image or args.device}")
    logger.info(f"Min capture interval: {settings.capture.min_capture_interval_ms} ms")
    logger.info("=" * 60)

    session = RelaySession.from_settings(settings, Role.PRODUCER)
    session.subscribe(log_event)

    start_time = time.time()
    last_report_time = start_time

    async with session:
        session.start(source)
        try:
            while args.duration <= 0 or time.time() - start_time < args.duration:
                if session.state is ConnectionState.FAILED:
                    logger.error("Giving up: retry budget exhausted")
                    break

                if time.time() - last_report_time >= args.report_interval:
                    metrics = session.pace.metrics()
                    logger.info("-" * 40)
                    logger.info(f"  State: {session.state.value}")
                    for key, value in metrics.items():
                        logger.info(f"  {key}: {value}")
                    last_report_time = time.time()

                await asyncio.sleep(0.5)
        except asyncio.CancelledError:
            logger.info("Interrupted")

        return session.pace.metrics()


def main():
    parser = argparse.ArgumentParser(description="Publish camera frames to a relay channel")
    parser.add_argument(
        "--url",
        type=str,
        default=settings.client.url,
        help="WebSocket URL of the relay",
    )
    parser.add_argument(
        "--auth-url",
        type=str,
        default=settings.client.auth_url,
        help="Grant endpoint of the relay",
    )
    parser.add_argument(
        "--channel",
        type=str,
        default=settings.client.channel,
        help="Channel to publish into",
    )
    parser.add_argument(
        "--identity",
        type=str,
        default=settings.client.identity,
        help="Caller identity sent with grant requests",
    )
    parser.add_argument(
        "--device",
        type=str,
        default=settings.capture.device,
        help="Camera index or stream URL (default: 0)",
    )
    parser.add_argument(
        "--image",
        type=str,
        default=None,
        help="Replay this image file instead of opening a camera",
    )
    parser.add_argument(
        "--quality",
        type=int,
        default=settings.capture.jpeg_quality,
        help="JPEG quality (default: 80)",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Seconds to run, 0 for until interrupted",
    )
    parser.add_argument(
        "--report-interval",
        type=int,
        default=10,
        help="Seconds between stats reports (default: 10)",
    )

    args = parser.parse_args()

    try:
        metrics = asyncio.run(run_camera(args))
    except KeyboardInterrupt:
        logger.info("Stopped by user")
        return

    logger.info(f"Final: {metrics}")
    sys.exit(0 if metrics.get("frames_published", 0) > 0 else 1)


if __name__ == "__main__":
    main()
