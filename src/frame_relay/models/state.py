"""
Connection State Models
=======================

Discrete states and roles shared by the relay server and its clients.

State machine (client side, both roles):

    DISCONNECTED ──start()──▶ CONNECTING ──ok──▶ CONNECTED
                                  │                  │ loss
                                  │ fail             ▼
                                  └──────────▶ RECONNECTING ──ok──▶ CONNECTED
                                                     │ budget exhausted
                                                     ▼
                                                  FAILED ──start()──▶ CONNECTING

    stop() from any state ──▶ DISCONNECTED
"""

from enum import Enum


class ConnectionState(str, Enum):
    """
    Client-side connection states.

    Attributes:
        DISCONNECTED: Initial state, and the state after stop()
        CONNECTING: First connect attempt in progress
        CONNECTED: Joined the channel, frames may flow
        RECONNECTING: Connection lost, retry scheduled or in flight
        FAILED: Retry budget exhausted; only start() leaves this state
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class Role(str, Enum):
    """Which side of the relay a party plays."""

    PRODUCER = "producer"
    CONSUMER = "consumer"
