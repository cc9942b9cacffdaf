"""
Client Module
=============

Producer and consumer side of the relay.

This module provides:
    - RelaySession: one client, role-parameterized
    - ConnectionStateMachine: connect / reconnect / fail lifecycle
    - RetryPolicy: bounded deterministic backoff
    - CapturePaceLoop: self-paced capture and publish (producer only)
    - RelayTransport: WebSocket transport
    - EventBus / ClientEvent: UI-facing events

Capture sources (OpenCV camera, still image) are in frame_relay.client.capture.
"""

from frame_relay.client.events import ClientEvent, ClientEventKind, EventBus
from frame_relay.client.pace import CapturePaceLoop
from frame_relay.client.retry import RetryPolicy
from frame_relay.client.session import RelaySession
from frame_relay.client.state_machine import ConnectionStateMachine
from frame_relay.client.transport import RelayTransport


__all__ = [
    "RelaySession",
    "ConnectionStateMachine",
    "RetryPolicy",
    "CapturePaceLoop",
    "RelayTransport",
    "EventBus",
    "ClientEvent",
    "ClientEventKind",
]
