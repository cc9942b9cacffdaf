"""
Channel Naming
==============

Format rules for channel names, enforced at admission time.

A channel name is legal when it:
    - starts with the configured prefix (e.g. "private-"), if any
    - uses only [A-Za-z0-9_-=@,.;]
    - is between 1 and 164 characters long

Malformed names are rejected when a connection tries to join, never
at broadcast time.
"""

import re
from typing import Optional


CHANNEL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_\-=@,.;]{1,164}$")


class ChannelPolicy:
    """
    Channel name format check.

    Attributes:
        prefix: Required name prefix ("" for none)
    """

    def __init__(self, prefix: str = "") -> None:
        self.prefix = prefix

    def is_valid(self, name: Optional[str]) -> bool:
        if not name or not isinstance(name, str):
            return False
        if self.prefix and not name.startswith(self.prefix):
            return False
        if len(name) == len(self.prefix):
            return False
        return CHANNEL_NAME_PATTERN.match(name) is not None

    def __repr__(self) -> str:
        return f"ChannelPolicy(prefix={self.prefix!r})"
