"""
Relay Module
============

Server-side frame fan-out.

This module provides the relay core:
    - RelayHub: channel registry, admission and fan-out
    - ConnectionHandle: one attached party with its outbound buffer
    - OutboundBuffer: bounded drop-oldest queue per recipient

Example:
    from frame_relay.relay import RelayHub, ConnectionHandle

    hub = RelayHub(validator=validator, gate=gate)
    connection = ConnectionHandle()
    hub.register(connection)

    await hub.join("room1", connection, grant)
    result = await hub.publish("room1", connection, frame)
"""

from frame_relay.relay.buffer import OutboundBuffer
from frame_relay.relay.connection import ConnectionHandle, new_connection_id
from frame_relay.relay.hub import Channel, RelayHub, RelayHubMetrics


__all__ = [
    "RelayHub",
    "RelayHubMetrics",
    "Channel",
    "ConnectionHandle",
    "OutboundBuffer",
    "new_connection_id",
]
