"""
Frame Relay Main Application
============================

FastAPI entry point for the camera frame relay.

One producer publishes frames into a named channel; every other member of
that channel receives them. The relay keeps no history: a frame exists
only while it is being fanned out.

Endpoints:
    GET  /          - Service information
    GET  /health    - Liveness probe (is process alive?)
    GET  /metrics   - Hub counters and channel sizes
    POST /auth      - Issue a channel grant for a connection
    WS   /ws        - Relay protocol (join, leave, frame, ping)
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Union

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from frame_relay import __version__
from frame_relay.auth import AllowAllGate, GrantDenied, HmacChannelGate
from frame_relay.codec import FrameValidator
from frame_relay.config import settings
from frame_relay.models.channel import ChannelPolicy
from frame_relay.models.messages import (
    AckMessage,
    AuthRequest,
    AuthResponse,
    ConnectionEstablished,
    DeniedMessage,
    ErrorMessage,
    FrameRejectedMessage,
    JoinedMessage,
    JoinMessage,
    LeaveMessage,
    PingMessage,
    PongMessage,
    PublishMessage,
    dump_message,
    parse_client_message,
)
from frame_relay.models.reason_codes import DenyReason, RejectReason
from frame_relay.models.results import Admitted, Delivered
from frame_relay.relay import ConnectionHandle, RelayHub


logger = logging.getLogger(__name__)


# =============================================================================
# Global State
# =============================================================================

# Shutdown flag
_shutdown_flag: bool = False

_hub: Optional[RelayHub] = None
_gate: Optional[Union[HmacChannelGate, AllowAllGate]] = None
_sweeper_task: Optional[asyncio.Task] = None
_startup_time: float = 0.0

# Error counters
_protocol_error_count: int = 0


# =============================================================================
# Getters
# =============================================================================

def get_hub() -> Optional[RelayHub]:
    return _hub

def get_gate() -> Optional[Union[HmacChannelGate, AllowAllGate]]:
    return _gate


# =============================================================================
# Component Factories
# =============================================================================

def create_gate(channel_policy: ChannelPolicy) -> Union[HmacChannelGate, AllowAllGate]:
    """Create the authorization gate based on config."""
    if not settings.auth.enabled:
        logger.warning("Channel authorization DISABLED: every join is admitted")
        return AllowAllGate()

    logger.info(f"Using HmacChannelGate (key={settings.auth.key})")
    return HmacChannelGate(
        key=settings.auth.key,
        secret=settings.auth.secret,
        channel_policy=channel_policy,
    )


def create_hub(gate: Union[HmacChannelGate, AllowAllGate], channel_policy: ChannelPolicy) -> RelayHub:
    validator = FrameValidator(
        max_frame_bytes=settings.relay.max_frame_bytes,
        allowed_types=settings.relay.allowed_frame_types,
    )
    return RelayHub(
        validator=validator,
        gate=gate,
        channel_policy=channel_policy,
        authorize_timeout=settings.auth.timeout_ms / 1000.0,
    )


# =============================================================================
# Heartbeat Sweeper
# =============================================================================

async def sweep_idle_connections(hub: RelayHub, timeout: float, interval: float) -> None:
    """Periodically disconnect connections that missed their heartbeat."""
    logger.info(f"Heartbeat sweeper started (timeout={timeout}s, interval={interval}s)")

    while not _shutdown_flag:
        try:
            await asyncio.sleep(interval)
            expired = await hub.expire_idle(timeout)
            if expired:
                logger.info(f"Expired {len(expired)} idle connection(s)")
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error(f"Heartbeat sweep error: {e}")

    logger.info("Heartbeat sweeper stopped")


# =============================================================================
# Protocol Handling
# =============================================================================

def _frame_ref(raw: Union[str, bytes]) -> Optional[int]:
    """Ref of a frame message whose envelope failed validation, if it carries one."""
    try:
        body = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(body, dict) or body.get("event") != "frame":
        return None
    ref = body.get("ref")
    if isinstance(ref, int) and not isinstance(ref, bool) and ref >= 0:
        return ref
    return None


async def handle_client_message(
    hub: RelayHub,
    connection: ConnectionHandle,
    raw: Union[str, bytes],
) -> Optional[str]:
    """
    Apply one client message to the hub.

    Returns:
        The encoded direct reply, or None when the message needs none
    """
    global _protocol_error_count

    try:
        message = parse_client_message(raw)
    except ValidationError as e:
        _protocol_error_count += 1
        logger.warning(f"Invalid message from {connection.id}: {e.error_count()} error(s)")
        # publishers match replies by ref
        ref = _frame_ref(raw)
        if ref is not None:
            return dump_message(FrameRejectedMessage(ref=ref, reason=RejectReason.MALFORMED.value))
        return dump_message(ErrorMessage(reason="invalid-message"))

    if isinstance(message, PublishMessage):
        result = await hub.publish(message.channel, connection, message.data)
        if isinstance(result, Delivered):
            return dump_message(AckMessage(ref=message.ref, delivered=result.count))
        return dump_message(FrameRejectedMessage(ref=message.ref, reason=result.wire_reason))

    if isinstance(message, PingMessage):
        return dump_message(PongMessage())

    if isinstance(message, JoinMessage):
        admission = await hub.join(message.channel, connection, message.grant)
        if isinstance(admission, Admitted):
            return dump_message(JoinedMessage(channel=admission.channel))
        return dump_message(DeniedMessage(channel=admission.channel, reason=admission.reason.value))

    if isinstance(message, LeaveMessage):
        await hub.leave(message.channel, connection)
        return None

    return None


async def _write_loop(websocket: WebSocket, connection: ConnectionHandle) -> None:
    """Drain the connection's outbound buffer; close the socket if the hub dropped us."""
    await connection.pump(websocket.send_text)

    if websocket.client_state == WebSocketState.CONNECTED:
        try:
            await websocket.close(code=1001)
        except Exception as e:
            logger.debug(f"Error closing socket for {connection.id}: {e}")


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager with graceful shutdown."""
    global _hub, _gate, _sweeper_task, _startup_time, _shutdown_flag

    # Startup
    _shutdown_flag = False
    _startup_time = time.time()
    logger.info(f"Starting frame-relay {__version__}")
    logger.info(f"Configured port: {settings.server.port}")

    channel_policy = ChannelPolicy(prefix=settings.relay.channel_prefix)
    _gate = create_gate(channel_policy)
    _hub = create_hub(_gate, channel_policy)

    timeout = settings.relay.heartbeat_timeout_ms / 1000.0
    _sweeper_task = asyncio.create_task(
        sweep_idle_connections(_hub, timeout=timeout, interval=max(timeout / 4, 0.25)),
        name="heartbeat_sweeper",
    )

    logger.info(
        f"Relay ready: max_frame_bytes={settings.relay.max_frame_bytes}, "
        f"types={settings.relay.allowed_frame_types}, "
        f"heartbeat_timeout={timeout}s"
    )

    yield

    # Shutdown
    logger.info("Shutting down gracefully...")
    _shutdown_flag = True

    if _sweeper_task:
        _sweeper_task.cancel()
        try:
            await _sweeper_task
        except asyncio.CancelledError:
            pass
        _sweeper_task = None

    if _hub:
        await _hub.shutdown()

    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="FrameRelay",
    description="Channel-scoped camera frame relay",
    version=__version__,
    lifespan=lifespan,
)


# =============================================================================
# HTTP Endpoints
# =============================================================================

@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    return JSONResponse({
        "service": "frame-relay",
        "version": __version__,
        "status": "running",
        "auth_enabled": settings.auth.enabled,
        "max_frame_bytes": settings.relay.max_frame_bytes,
        "allowed_frame_types": settings.relay.allowed_frame_types,
    })


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness probe - is the process alive?

    Always returns 200 if the service is running.
    """
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - _startup_time, 1),
    })


@app.get("/metrics")
async def metrics() -> JSONResponse:
    """Detailed metrics for observability."""
    hub = get_hub()

    hub_metrics = hub.snapshot() if hub else {}

    return JSONResponse({
        "uptime_seconds": round(time.time() - _startup_time, 1),
        "protocol_errors": _protocol_error_count,
        **hub_metrics,
    })


@app.post("/auth")
async def auth(request: Request) -> JSONResponse:
    """
    Issue a signed grant for (socket_id, channel_name).

    The caller identity comes from the x-user-id header and defaults to
    "anonymous".
    """
    gate = get_gate()
    if gate is None:
        return JSONResponse({"error": "Relay not started"}, status_code=503)

    try:
        body = AuthRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        logger.warning("Auth request missing socket_id or channel_name")
        return JSONResponse({"error": "Missing socket_id or channel_name"}, status_code=400)

    identity = request.headers.get("x-user-id") or "anonymous"
    result = gate.authorize(body.socket_id, body.channel_name, identity)

    if isinstance(result, GrantDenied):
        if result.reason is DenyReason.BAD_CHANNEL_NAME:
            return JSONResponse({"error": "Invalid channel name"}, status_code=400)
        return JSONResponse({"error": "Failed to authorize channel"}, status_code=403)

    return JSONResponse(AuthResponse(auth=result.auth).model_dump())


# =============================================================================
# WebSocket Endpoints
# =============================================================================

@app.websocket("/ws")
async def relay_socket(websocket: WebSocket) -> None:
    """WebSocket endpoint for producers and consumers."""
    await websocket.accept()

    hub = get_hub()
    if hub is None:
        await websocket.close(code=1013)
        return

    connection = ConnectionHandle(buffer_size=settings.relay.outbound_buffer_size)
    hub.register(connection)
    logger.info(f"Client connected to /ws: {connection.id}")

    writer: Optional[asyncio.Task] = None
    try:
        await websocket.send_text(dump_message(ConnectionEstablished(
            connection_id=connection.id,
            heartbeat_timeout_ms=settings.relay.heartbeat_timeout_ms,
        )))
        writer = asyncio.create_task(
            _write_loop(websocket, connection),
            name=f"relay_writer_{connection.id}",
        )

        while not _shutdown_flag and not connection.closed:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""

            connection.touch()
            reply = await handle_client_message(hub, connection, raw)
            if reply is not None:
                await websocket.send_text(reply)

    except Exception as e:
        logger.warning(f"WebSocket error ({connection.id}): {e}")
    finally:
        await hub.disconnect(connection)
        if writer is not None:
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass
        logger.info(
            f"Client disconnected from /ws: {connection.id} "
            f"(sent={connection.frames_sent}, received={connection.frames_received})"
        )


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "frame_relay.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
        log_level=settings.logging.level.lower(),
    )
