"""
Frame Relay
===========

Channel-scoped relay for live camera frames.

One producer captures frames from a camera and publishes them into a named
channel; the relay validates each frame and forwards it to every other
member of that channel. Nothing is stored.

Components:
    - codec: Frame validation and wire encoding
    - relay: Connection registry, channels and fan-out
    - auth: Signed channel grants
    - client: Connection state machine, retry policy, capture-pace loop

Example:
    from frame_relay.config import settings
    from frame_relay.client import RelaySession
    from frame_relay.models import Role

    # The relay server is started via the FastAPI application
    # See main.py for entry point
"""

__version__ = "0.1.0"
__author__ = "Frame Relay Project"

__all__ = [
    "__version__",
]
