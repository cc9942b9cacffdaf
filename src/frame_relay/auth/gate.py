"""
Channel Authorization Gate
==========================

Issues and verifies signed grants that permit a connection to join a
named channel.

The scheme is the Pusher private-channel one:

    signature = HMAC-SHA256(secret, "<connection_id>:<channel_name>")
    grant     = "<key>:<hex signature>"

The relay hub only ever calls verify(); authorize() backs the server's
POST /auth endpoint. Callers treat the gate as an opaque boundary and
fail closed on any error or timeout.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Protocol, Union

from frame_relay.models.channel import ChannelPolicy
from frame_relay.models.reason_codes import DenyReason


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Grant:
    """Signed proof that a connection may join a channel."""

    connection_id: str
    channel: str
    auth: str


@dataclass(frozen=True)
class GrantDenied:
    """The gate refused to issue a grant."""

    channel: str
    reason: DenyReason


class ChannelAuthorizationGate(Protocol):
    """
    Protocol for authorization backends.

    Implementations must issue grants and verify them. verify() is awaited
    by the hub before admission; raising or hanging counts as a denial.
    """

    def authorize(
        self,
        connection_id: str,
        channel_name: str,
        caller_identity: str,
    ) -> Union[Grant, GrantDenied]:
        ...

    async def verify(self, connection_id: str, channel_name: str, grant: str) -> bool:
        ...


class HmacChannelGate:
    """
    HMAC-signed grants, compatible with Pusher's channel auth format.

    Attributes:
        key: Public application key, prefixed to every grant
        channel_policy: Channel name format check
    """

    def __init__(
        self,
        key: str,
        secret: str,
        channel_policy: ChannelPolicy = None,
    ) -> None:
        if not secret:
            raise ValueError("secret must not be empty")
        self.key = key
        self._secret = secret.encode("utf-8")
        self.channel_policy = channel_policy or ChannelPolicy()

    def sign(self, connection_id: str, channel_name: str) -> str:
        message = f"{connection_id}:{channel_name}".encode("utf-8")
        signature = hmac.new(self._secret, message, hashlib.sha256).hexdigest()
        return f"{self.key}:{signature}"

    def authorize(
        self,
        connection_id: str,
        channel_name: str,
        caller_identity: str,
    ) -> Union[Grant, GrantDenied]:
        """
        Issue a grant for (connection, channel).

        Returns:
            Grant, or GrantDenied for a malformed channel name or a
            missing connection id / caller identity
        """
        if not self.channel_policy.is_valid(channel_name):
            logger.warning(f"Refusing grant for invalid channel name: {channel_name!r}")
            return GrantDenied(channel_name, DenyReason.BAD_CHANNEL_NAME)

        if not connection_id or not caller_identity:
            logger.warning(f"Refusing grant for {channel_name!r}: missing identity")
            return GrantDenied(channel_name, DenyReason.UNAUTHORIZED)

        logger.info(f"Grant issued: user={caller_identity} connection={connection_id} channel={channel_name}")
        return Grant(
            connection_id=connection_id,
            channel=channel_name,
            auth=self.sign(connection_id, channel_name),
        )

    async def verify(self, connection_id: str, channel_name: str, grant: str) -> bool:
        if not grant:
            return False
        expected = self.sign(connection_id, channel_name)
        return hmac.compare_digest(expected.encode("utf-8"), grant.encode("utf-8"))


class AllowAllGate:
    """Gate that admits everyone. For local development only."""

    def authorize(
        self,
        connection_id: str,
        channel_name: str,
        caller_identity: str,
    ) -> Union[Grant, GrantDenied]:
        return Grant(connection_id=connection_id, channel=channel_name, auth="")

    async def verify(self, connection_id: str, channel_name: str, grant: str) -> bool:
        return True
