"""
Relay Hub Tests
===============

Tests for channel membership, admission and fan-out.
"""

import asyncio
import json

import pytest

from conftest import JPEG_BYTES, TEST_AUTH_KEY, TEST_AUTH_SECRET
from frame_relay.auth.gate import AllowAllGate, HmacChannelGate
from frame_relay.codec.validator import FrameValidator
from frame_relay.codec.wire import encode_frame_message
from frame_relay.models.channel import ChannelPolicy
from frame_relay.models.frame import Frame
from frame_relay.models.reason_codes import DenyReason, DropReason, RejectReason
from frame_relay.models.results import Admitted, Delivered, Denied, Dropped
from frame_relay.models.state import Role
from frame_relay.relay.buffer import OutboundBuffer
from frame_relay.relay.connection import ConnectionHandle, new_connection_id
from frame_relay.relay.hub import RelayHub


def frame(payload: bytes = JPEG_BYTES, declared_type: str = "image/jpeg") -> Frame:
    return Frame(payload=payload, declared_type=declared_type, timestamp_ms=1)


async def admit(hub, gate, channel, connection):
    return await hub.join(channel, connection, gate.sign(connection.id, channel))


class TestOutboundBuffer:
    """Tests for the per-recipient drop-oldest buffer."""

    def test_offer_and_order(self):
        buffer = OutboundBuffer(maxsize=3)
        for message in ("a", "b", "c"):
            assert buffer.offer(message)

        assert buffer.size == 3
        assert buffer.drain() == ["a", "b", "c"]

    def test_overflow_drops_oldest(self):
        buffer = OutboundBuffer(maxsize=2)
        for message in ("a", "b", "c", "d"):
            buffer.offer(message)

        assert buffer.dropped_count == 2
        assert buffer.total_put == 4
        assert buffer.drain() == ["c", "d"]

    def test_closed_buffer_refuses(self):
        buffer = OutboundBuffer(maxsize=2)
        buffer.offer("a")
        buffer.close()

        assert buffer.closed
        assert buffer.offer("b") is False

    @pytest.mark.asyncio
    async def test_close_wakes_reader(self):
        buffer = OutboundBuffer(maxsize=2)
        reader = asyncio.create_task(buffer.get())
        await asyncio.sleep(0)

        buffer.close()
        assert await asyncio.wait_for(reader, timeout=1.0) is None

    @pytest.mark.asyncio
    async def test_get_timeout(self):
        buffer = OutboundBuffer(maxsize=2)
        assert await buffer.get(timeout=0.01) is None

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            OutboundBuffer(maxsize=0)


class TestConnectionHandle:
    """Tests for the server-side connection handle."""

    def test_ids_are_unique(self):
        assert new_connection_id() != new_connection_id()

    def test_role_inferred_from_first_frame(self):
        connection = ConnectionHandle("c1")
        assert connection.role is None

        connection.observe_publish()
        connection.observe_publish()
        assert connection.role is Role.PRODUCER
        assert connection.frames_sent == 2

    def test_idle_tracking(self):
        now = [100.0]
        connection = ConnectionHandle("c1", clock=lambda: now[0])

        now[0] = 130.0
        assert connection.idle_for() == 30.0

        connection.touch()
        assert connection.idle_for() == 0.0

    @pytest.mark.asyncio
    async def test_pump_drains_until_closed(self):
        connection = ConnectionHandle("c1")
        sent = []

        async def send(message):
            sent.append(message)

        connection.offer("one")
        connection.offer("two")
        pump = asyncio.create_task(connection.pump(send))
        await asyncio.sleep(0.01)
        connection.close()
        await asyncio.wait_for(pump, timeout=1.0)

        assert sent == ["one", "two"]

    @pytest.mark.asyncio
    async def test_pump_stops_on_send_failure(self):
        connection = ConnectionHandle("c1")

        async def send(message):
            raise ConnectionResetError("gone")

        connection.offer("one")
        await asyncio.wait_for(connection.pump(send), timeout=1.0)

        assert connection.closed


class TestAdmission:
    """Tests for RelayHub.join / leave."""

    @pytest.mark.asyncio
    async def test_join_with_valid_grant(self, hub, gate, make_connection):
        consumer = make_connection()

        result = await admit(hub, gate, "room1", consumer)

        assert result == Admitted("room1")
        assert hub.is_member("room1", consumer)
        assert hub.channel_size("room1") == 1
        assert "room1" in consumer.channels

    @pytest.mark.asyncio
    async def test_denied_grant_leaves_registry_unchanged(self, hub, gate, make_connection):
        """A refused grant does not alter the channel's membership."""
        member = make_connection()
        await admit(hub, gate, "room1", member)
        intruder = make_connection()

        result = await hub.join("room1", intruder, "test-key:forged")

        assert result == Denied("room1", DenyReason.UNAUTHORIZED)
        assert hub.channel_size("room1") == 1
        assert not hub.is_member("room1", intruder)

    @pytest.mark.asyncio
    async def test_grant_is_bound_to_connection_and_channel(self, hub, gate, make_connection):
        a, b = make_connection(), make_connection()

        stolen = gate.sign(a.id, "room1")
        assert await hub.join("room1", b, stolen) == Denied("room1", DenyReason.UNAUTHORIZED)

        other_room = gate.sign(a.id, "room2")
        assert await hub.join("room1", a, other_room) == Denied("room1", DenyReason.UNAUTHORIZED)

    @pytest.mark.asyncio
    async def test_bad_channel_name_creates_no_channel(self, hub, gate, make_connection):
        connection = make_connection()

        for name in ("", "has space", "x" * 165, "emoji☃"):
            result = await hub.join(name, connection, gate.sign(connection.id, name))
            assert result == Denied(name, DenyReason.BAD_CHANNEL_NAME)

        assert hub.channels() == []

    @pytest.mark.asyncio
    async def test_channel_prefix_policy(self, validator, make_connection):
        gate = AllowAllGate()
        hub = RelayHub(validator, gate, channel_policy=ChannelPolicy(prefix="private-"))
        connection = make_connection()

        assert isinstance(await hub.join("room1", connection, ""), Denied)
        assert await hub.join("private-room1", connection, "") == Admitted("private-room1")

    @pytest.mark.asyncio
    async def test_gate_timeout_denies(self, validator, make_connection):
        class SlowGate(AllowAllGate):
            async def verify(self, connection_id, channel_name, grant):
                await asyncio.sleep(10)
                return True

        hub = RelayHub(validator, SlowGate(), authorize_timeout=0.01)
        connection = make_connection()

        result = await hub.join("room1", connection, "grant")
        assert result == Denied("room1", DenyReason.UNAUTHORIZED)
        assert hub.channel_size("room1") == 0

    @pytest.mark.asyncio
    async def test_gate_exception_denies(self, validator, make_connection):
        class BrokenGate(AllowAllGate):
            async def verify(self, connection_id, channel_name, grant):
                raise RuntimeError("auth backend down")

        hub = RelayHub(validator, BrokenGate())

        result = await hub.join("room1", make_connection(), "grant")
        assert result == Denied("room1", DenyReason.UNAUTHORIZED)

    @pytest.mark.asyncio
    async def test_leave_is_idempotent(self, hub, gate, make_connection):
        connection = make_connection()
        await admit(hub, gate, "room1", connection)

        await hub.leave("room1", connection)
        await hub.leave("room1", connection)
        await hub.leave("never-joined", connection)

        assert not hub.is_member("room1", connection)
        assert hub.channels() == []

    @pytest.mark.asyncio
    async def test_disconnect_leaves_every_channel(self, hub, gate, make_connection):
        connection = make_connection()
        hub.register(connection)
        await admit(hub, gate, "room1", connection)
        await admit(hub, gate, "room2", connection)

        await hub.disconnect(connection)

        assert hub.channels() == []
        assert hub.connection_count == 0
        assert connection.closed


class TestFanOut:
    """Tests for RelayHub.publish."""

    @pytest.mark.asyncio
    async def test_two_consumers_receive_once_sender_none(self, hub, gate, make_connection):
        producer, c1, c2 = make_connection(), make_connection(), make_connection()
        for connection in (producer, c1, c2):
            await admit(hub, gate, "room1", connection)

        payload = b"\xff\xd8\xff" + b"\x00" * (50 * 1024)
        result = await hub.publish("room1", producer, frame(payload))

        assert result == Delivered(2)
        for consumer in (c1, c2):
            messages = consumer.buffer.drain()
            assert len(messages) == 1
            body = json.loads(messages[0])
            assert body["event"] == "frame"
            assert body["channel"] == "room1"
            assert body["data"]["declaredType"] == "image/jpeg"
        assert producer.buffer.drain() == []
        assert producer.role is Role.PRODUCER
        assert c1.role is None

    @pytest.mark.asyncio
    async def test_empty_payload_reaches_nobody(self, hub, gate, make_connection):
        producer, consumer = make_connection(), make_connection()
        await admit(hub, gate, "room1", producer)
        await admit(hub, gate, "room1", consumer)

        result = await hub.publish("room1", producer, frame(b""))

        assert result == Dropped(DropReason.VALIDATION, RejectReason.EMPTY_PAYLOAD)
        assert result.wire_reason == "empty-payload"
        assert consumer.buffer.drain() == []

    @pytest.mark.asyncio
    async def test_oversized_frame_reaches_nobody(self, gate, make_connection):
        limit = 1024
        hub = RelayHub(validator=FrameValidator(max_frame_bytes=limit), gate=gate)
        producer, consumer = make_connection(), make_connection()
        await admit(hub, gate, "room1", producer)
        await admit(hub, gate, "room1", consumer)

        payload = b"\xff\xd8\xff" + b"\x00" * (limit - 2)
        assert len(payload) == limit + 1
        result = await hub.publish("room1", producer, frame(payload))

        assert result == Dropped(DropReason.VALIDATION, RejectReason.TOO_LARGE)
        assert consumer.buffer.drain() == []
        assert hub.metrics.dropped_validation == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("excess", [1, 4096])
    async def test_oversized_wire_message_reaches_nobody(self, gate, make_connection, excess):
        limit = 1024
        hub = RelayHub(validator=FrameValidator(max_frame_bytes=limit), gate=gate)
        producer, consumer = make_connection(), make_connection()
        await admit(hub, gate, "room1", producer)
        await admit(hub, gate, "room1", consumer)

        payload = b"\xff\xd8\xff" + b"\x00" * (limit + excess - 3)
        result = await hub.publish("room1", producer, encode_frame_message(frame(payload)))

        assert result == Dropped(DropReason.VALIDATION, RejectReason.TOO_LARGE)
        assert consumer.buffer.drain() == []

    @pytest.mark.asyncio
    async def test_wire_message_is_decoded(self, hub, gate, make_connection):
        producer, consumer = make_connection(), make_connection()
        await admit(hub, gate, "room1", producer)
        await admit(hub, gate, "room1", consumer)

        message = encode_frame_message(frame())
        assert await hub.publish("room1", producer, message) == Delivered(1)

    @pytest.mark.asyncio
    async def test_non_member_cannot_publish(self, hub, gate, make_connection):
        member, outsider = make_connection(), make_connection()
        await admit(hub, gate, "room1", member)

        result = await hub.publish("room1", outsider, frame())

        assert result == Dropped(DropReason.NOT_A_MEMBER)
        assert member.buffer.drain() == []

    @pytest.mark.asyncio
    async def test_channels_are_isolated(self, hub, gate, make_connection):
        producer, same, other = make_connection(), make_connection(), make_connection()
        await admit(hub, gate, "room1", producer)
        await admit(hub, gate, "room1", same)
        await admit(hub, gate, "room2", other)

        await hub.publish("room1", producer, frame())

        assert len(same.buffer.drain()) == 1
        assert other.buffer.drain() == []

    @pytest.mark.asyncio
    async def test_no_listeners_is_not_an_error(self, hub, gate, make_connection):
        producer = make_connection()
        await admit(hub, gate, "room1", producer)

        assert await hub.publish("room1", producer, frame()) == Delivered(0)

    @pytest.mark.asyncio
    async def test_late_joiner_gets_no_history(self, hub, gate, make_connection):
        producer, late = make_connection(), make_connection()
        await admit(hub, gate, "room1", producer)
        await hub.publish("room1", producer, frame())

        await admit(hub, gate, "room1", late)
        assert late.buffer.drain() == []

    @pytest.mark.asyncio
    async def test_closed_recipient_does_not_block_others(self, hub, gate, make_connection):
        producer, dead, alive = make_connection(), make_connection(), make_connection()
        for connection in (producer, dead, alive):
            await admit(hub, gate, "room1", connection)
        dead.close()

        result = await hub.publish("room1", producer, frame())

        assert result == Delivered(1)
        assert len(alive.buffer.drain()) == 1
        assert hub.metrics.recipient_failures == 1

    @pytest.mark.asyncio
    async def test_slow_recipient_keeps_latest_frames(self, hub, gate, make_connection):
        producer, slow = make_connection(), make_connection(buffer_size=2)
        await admit(hub, gate, "room1", producer)
        await admit(hub, gate, "room1", slow)

        for ts in range(5):
            await hub.publish(
                "room1", producer, Frame(payload=JPEG_BYTES, declared_type="image/jpeg", timestamp_ms=ts)
            )

        kept = [json.loads(m)["data"]["timestamp"] for m in slow.buffer.drain()]
        assert kept == [3, 4]

    @pytest.mark.asyncio
    async def test_concurrent_publish_and_leave(self, hub, gate, make_connection):
        producer = make_connection()
        consumers = [make_connection() for _ in range(5)]
        await admit(hub, gate, "room1", producer)
        for consumer in consumers:
            await admit(hub, gate, "room1", consumer)

        results = await asyncio.gather(
            *(hub.publish("room1", producer, frame()) for _ in range(10)),
            *(hub.leave("room1", c) for c in consumers),
        )

        for result in results[:10]:
            assert isinstance(result, Delivered)
            assert 0 <= result.count <= 5
        assert hub.channel_size("room1") == 1


class TestHeartbeat:
    """Tests for idle connection expiry."""

    @pytest.mark.asyncio
    async def test_expire_idle(self, validator):
        gate = HmacChannelGate(TEST_AUTH_KEY, TEST_AUTH_SECRET)
        hub = RelayHub(validator, gate)
        now = [0.0]
        idle = ConnectionHandle("idle", clock=lambda: now[0])
        busy = ConnectionHandle("busy", clock=lambda: now[0])
        hub.register(idle)
        hub.register(busy)
        await hub.join("room1", idle, gate.sign("idle", "room1"))

        now[0] = 61.0
        busy.touch()
        expired = await hub.expire_idle(timeout=60.0, now=now[0])

        assert expired == [idle]
        assert hub.connection("idle") is None
        assert hub.connection("busy") is busy
        assert hub.channel_size("room1") == 0
        assert hub.metrics.expired == 1

    @pytest.mark.asyncio
    async def test_snapshot(self, hub, gate, make_connection):
        connection = make_connection()
        hub.register(connection)
        await admit(hub, gate, "room1", connection)

        snapshot = hub.snapshot()
        assert snapshot["connections"] == 1
        assert snapshot["channels"] == {"room1": 1}
        assert snapshot["joins"] == 1
