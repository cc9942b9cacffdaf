"""
Grant Provider
==============

Client-side retrieval of channel grants from the relay's POST /auth
endpoint.

Request:
    POST /auth
    x-user-id: <caller identity>
    {"socket_id": "<connection id>", "channel_name": "<channel>"}

Response:
    {"auth": "<key>:<signature>"}
"""

import asyncio
import logging

import requests

from frame_relay.errors import AdmissionError, TransportError
from frame_relay.models.reason_codes import DenyReason


logger = logging.getLogger(__name__)


class HttpGrantProvider:
    """
    Fetches grants over HTTP.

    Only an explicit refusal is an AdmissionError: 400 means the channel
    name is bad, 401/403 means the caller is not allowed in. Network
    failures, 5xx and any other unexpected answer are TransportErrors, so
    the connection state machine retries them like a dropped socket.
    """

    def __init__(
        self,
        auth_url: str,
        caller_identity: str = "anonymous",
        timeout: float = 5.0,
    ) -> None:
        self.auth_url = auth_url
        self.caller_identity = caller_identity
        self.timeout = timeout

    def _fetch(self, connection_id: str, channel: str) -> str:
        try:
            response = requests.post(
                self.auth_url,
                json={"socket_id": connection_id, "channel_name": channel},
                headers={"x-user-id": self.caller_identity},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Grant request failed: {e}")
            raise TransportError(f"Grant request to {self.auth_url} failed: {e}")

        if response.status_code == 400:
            raise AdmissionError(DenyReason.BAD_CHANNEL_NAME, channel)
        if response.status_code in (401, 403):
            raise AdmissionError(DenyReason.UNAUTHORIZED, channel)
        if response.status_code != 200:
            logger.warning(f"Grant request returned HTTP {response.status_code}")
            raise TransportError(f"Grant endpoint returned HTTP {response.status_code}")

        try:
            return str(response.json()["auth"])
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Invalid grant response: {e}")
            raise TransportError(f"Invalid grant response: {e}")

    async def __call__(self, connection_id: str, channel: str) -> str:
        return await asyncio.to_thread(self._fetch, connection_id, channel)


class StaticGrantProvider:
    """Returns a pre-issued grant; useful for tests and gate-less relays."""

    def __init__(self, grant: str = "") -> None:
        self.grant = grant

    async def __call__(self, connection_id: str, channel: str) -> str:
        return self.grant
