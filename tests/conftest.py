"""
Test Configuration
==================

Pytest fixtures and test configuration for the frame relay.
"""

import asyncio
import base64
from typing import Callable, List

import pytest

from frame_relay.auth.gate import HmacChannelGate
from frame_relay.client.retry import RetryPolicy
from frame_relay.codec.validator import FrameValidator
from frame_relay.errors import TransportError
from frame_relay.relay.connection import ConnectionHandle
from frame_relay.relay.hub import RelayHub


# =============================================================================
# Sample payloads
# =============================================================================

JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00" + b"\x00" * 64 + b"\xff\xd9"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
WEBP_BYTES = b"RIFF\x24\x00\x00\x00WEBPVP8 " + b"\x00" * 32

TEST_AUTH_KEY = "test-key"
TEST_AUTH_SECRET = "test-secret"


@pytest.fixture
def jpeg_bytes() -> bytes:
    return JPEG_BYTES


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES


@pytest.fixture
def sample_frame_message():
    """Provide a sample frame wire message for testing."""
    return {
        "payload": base64.b64encode(JPEG_BYTES).decode("ascii"),
        "declaredType": "image/jpeg",
        "timestamp": 1707321234567,
    }


@pytest.fixture
def validator() -> FrameValidator:
    return FrameValidator(max_frame_bytes=1_000_000)


# =============================================================================
# Manual timers
# =============================================================================

class ManualTimer:
    """Timer handle recorded by ManualScheduler; fires only when told to."""

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.callback()


class ManualScheduler:
    """Drop-in for loop.call_later that lets tests decide when timers fire."""

    def __init__(self) -> None:
        self.timers: List[ManualTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    @property
    def delays(self) -> List[float]:
        return [t.delay for t in self.timers]

    def fire_next(self) -> ManualTimer:
        timer = self.pending[0]
        timer.fire()
        return timer


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run to their next real suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# Fake transport
# =============================================================================

class FakeConnector:
    """
    Connector whose connect() outcomes are scripted.

    Each entry in `outcomes` is None (success) or an exception to raise.
    Once the script runs out every connect succeeds.
    """

    def __init__(self, outcomes=None) -> None:
        self.outcomes = list(outcomes or [])
        self.connects = 0
        self.closes = 0

    async def connect(self) -> None:
        self.connects += 1
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if outcome is not None:
                raise outcome

    async def close(self) -> None:
        self.closes += 1

    def fail_next(self, count: int, reason: str = "refused") -> None:
        self.outcomes.extend(TransportError(reason) for _ in range(count))


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    return RetryPolicy(base_delay=0.5, max_delay=10.0, max_attempts=3)


# =============================================================================
# Relay hub
# =============================================================================

@pytest.fixture
def gate() -> HmacChannelGate:
    return HmacChannelGate(key=TEST_AUTH_KEY, secret=TEST_AUTH_SECRET)


@pytest.fixture
def hub(validator, gate) -> RelayHub:
    return RelayHub(validator=validator, gate=gate, authorize_timeout=0.5)


@pytest.fixture
def make_connection():
    """Factory for ConnectionHandles with predictable ids."""
    counter = iter(range(1, 1000))

    def factory(buffer_size: int = 4) -> ConnectionHandle:
        return ConnectionHandle(connection_id=f"conn-{next(counter)}", buffer_size=buffer_size)

    return factory
