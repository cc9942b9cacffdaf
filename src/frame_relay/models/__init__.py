"""
Data Models
===========

Shared data models for the frame relay.

This module re-exports all data models for convenient access.

Models:
    Frame:
        - Frame: Validated, immutable camera frame
        - CapturedImage: Raw capture output before validation

    Results:
        - Rejected, Admitted, Denied, Delivered, Dropped

    Codes:
        - RejectReason, DenyReason, DropReason

    State:
        - ConnectionState: Client connection states
        - Role: PRODUCER / CONSUMER

    Wire:
        - FrameMessage and the client/server event messages
"""

from frame_relay.models.channel import ChannelPolicy
from frame_relay.models.frame import CapturedImage, Frame
from frame_relay.models.messages import FrameMessage
from frame_relay.models.reason_codes import DenyReason, DropReason, RejectReason
from frame_relay.models.results import Admitted, Delivered, Denied, Dropped, Rejected
from frame_relay.models.state import ConnectionState, Role

__all__ = [
    # Frame
    "Frame",
    "CapturedImage",
    "FrameMessage",
    # Channel
    "ChannelPolicy",
    # Results
    "Rejected",
    "Admitted",
    "Denied",
    "Delivered",
    "Dropped",
    # Codes
    "RejectReason",
    "DenyReason",
    "DropReason",
    # State
    "ConnectionState",
    "Role",
]
