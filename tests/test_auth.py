"""
Channel Authorization Tests
===========================

Tests for HMAC grants and the client-side grant providers.
"""

import hashlib
import hmac

import pytest
import requests

from frame_relay.auth.gate import AllowAllGate, Grant, GrantDenied, HmacChannelGate
from frame_relay.auth.grants import HttpGrantProvider, StaticGrantProvider
from frame_relay.errors import AdmissionError, TransportError
from frame_relay.models.channel import ChannelPolicy
from frame_relay.models.reason_codes import DenyReason


class TestHmacChannelGate:
    """Tests for grant issuing and verification."""

    def test_signature_format(self, gate):
        """Grants are "<key>:<hex HMAC-SHA256 of socket_id:channel>"."""
        expected = hmac.new(b"test-secret", b"123.456:room1", hashlib.sha256).hexdigest()

        assert gate.sign("123.456", "room1") == f"test-key:{expected}"

    def test_authorize_issues_grant(self, gate):
        result = gate.authorize("123.456", "room1", "alice")

        assert isinstance(result, Grant)
        assert result.connection_id == "123.456"
        assert result.channel == "room1"
        assert result.auth == gate.sign("123.456", "room1")

    def test_authorize_rejects_bad_name(self, gate):
        result = gate.authorize("123.456", "bad name", "alice")

        assert result == GrantDenied("bad name", DenyReason.BAD_CHANNEL_NAME)

    def test_authorize_requires_identity(self, gate):
        assert gate.authorize("123.456", "room1", "").reason is DenyReason.UNAUTHORIZED
        assert gate.authorize("", "room1", "alice").reason is DenyReason.UNAUTHORIZED

    def test_prefix_policy(self):
        gate = HmacChannelGate("k", "s", channel_policy=ChannelPolicy(prefix="private-"))

        assert isinstance(gate.authorize("1.1", "camera", "alice"), GrantDenied)
        assert isinstance(gate.authorize("1.1", "private-camera", "alice"), Grant)

    @pytest.mark.asyncio
    async def test_verify(self, gate):
        grant = gate.sign("1.1", "room1")

        assert await gate.verify("1.1", "room1", grant)
        assert not await gate.verify("1.1", "room2", grant)
        assert not await gate.verify("2.2", "room1", grant)
        assert not await gate.verify("1.1", "room1", "")

    @pytest.mark.asyncio
    async def test_different_secret_fails(self, gate):
        other = HmacChannelGate("test-key", "other-secret")

        assert not await gate.verify("1.1", "room1", other.sign("1.1", "room1"))

    def test_empty_secret_refused(self):
        with pytest.raises(ValueError):
            HmacChannelGate("k", "")

    @pytest.mark.asyncio
    async def test_allow_all(self):
        gate = AllowAllGate()
        assert await gate.verify("1.1", "room1", "")
        assert isinstance(gate.authorize("1.1", "room1", "alice"), Grant)


class FakeResponse:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


class TestHttpGrantProvider:
    """Tests for POST /auth grant retrieval."""

    @pytest.mark.asyncio
    async def test_fetches_grant(self, monkeypatch):
        calls = []

        def fake_post(url, json=None, headers=None, timeout=None):
            calls.append((url, json, headers))
            return FakeResponse(200, {"auth": "k:sig"})

        monkeypatch.setattr(requests, "post", fake_post)
        provider = HttpGrantProvider("http://relay/auth", caller_identity="alice")

        assert await provider("1.1", "room1") == "k:sig"
        assert calls == [
            ("http://relay/auth", {"socket_id": "1.1", "channel_name": "room1"}, {"x-user-id": "alice"})
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,reason",
        [(400, DenyReason.BAD_CHANNEL_NAME), (401, DenyReason.UNAUTHORIZED), (403, DenyReason.UNAUTHORIZED)],
    )
    async def test_refusals_are_admission_errors(self, monkeypatch, status, reason):
        monkeypatch.setattr(requests, "post", lambda *a, **kw: FakeResponse(status, {"error": "x"}))
        provider = HttpGrantProvider("http://relay/auth")

        with pytest.raises(AdmissionError) as exc_info:
            await provider("1.1", "room1")
        assert exc_info.value.reason is reason

    @pytest.mark.asyncio
    async def test_network_error(self, monkeypatch):
        def fake_post(*args, **kwargs):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(requests, "post", fake_post)
        provider = HttpGrantProvider("http://relay/auth")

        with pytest.raises(TransportError):
            await provider("1.1", "room1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [500, 502, 503, 404])
    async def test_server_errors_are_transport_errors(self, monkeypatch, status):
        monkeypatch.setattr(requests, "post", lambda *a, **kw: FakeResponse(status, {"error": "x"}))

        with pytest.raises(TransportError):
            await HttpGrantProvider("http://relay/auth")("1.1", "room1")

    @pytest.mark.asyncio
    async def test_malformed_body(self, monkeypatch):
        monkeypatch.setattr(requests, "post", lambda *a, **kw: FakeResponse(200, {"nope": 1}))

        with pytest.raises(TransportError):
            await HttpGrantProvider("http://relay/auth")("1.1", "room1")

    @pytest.mark.asyncio
    async def test_static_provider(self):
        assert await StaticGrantProvider("k:sig")("1.1", "room1") == "k:sig"
