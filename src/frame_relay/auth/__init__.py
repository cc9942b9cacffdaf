"""
Auth Module
===========

Channel authorization: signed grants and their retrieval.

Components:
    - ChannelAuthorizationGate: Protocol consumed by the relay hub
    - HmacChannelGate: Pusher-compatible HMAC grants
    - AllowAllGate: Development gate that admits everyone
    - HttpGrantProvider: Client-side grant fetch from POST /auth
"""

from frame_relay.auth.gate import (
    AllowAllGate,
    ChannelAuthorizationGate,
    Grant,
    GrantDenied,
    HmacChannelGate,
)
from frame_relay.auth.grants import HttpGrantProvider, StaticGrantProvider

__all__ = [
    "ChannelAuthorizationGate",
    "HmacChannelGate",
    "AllowAllGate",
    "Grant",
    "GrantDenied",
    "HttpGrantProvider",
    "StaticGrantProvider",
]
