"""
Wire Message Schema
===================

Pydantic models for every JSON message exchanged over the relay's
WebSocket endpoint.

Frame wire shape:
    {
        "payload": "<base64 image, bare or as a data URL>",
        "declaredType": "image/jpeg",
        "timestamp": 1707321234567
    }

Client → server:
    join, leave, frame, ping

Server → client:
    connection_established, joined, denied, ack, frame-rejected,
    frame, pong, error

Example:
    from frame_relay.models.messages import parse_client_message

    message = parse_client_message(await websocket.receive_text())
    if isinstance(message, JoinMessage):
        ...
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class FrameMessage(BaseModel):
    """
    Frame as it travels on the wire.

    Only the structure is enforced here. Payload size, type allow-list and
    image signature are checked by the FrameValidator so that a bad frame
    is reported as a rejection instead of a protocol error.
    """

    payload: str = Field(
        ...,
        description="Base64-encoded image, optionally as a data URL",
    )

    declared_type: str = Field(
        ...,
        alias="declaredType",
        description="Media type of the encoded image",
    )

    timestamp: int = Field(
        ...,
        ge=0,
        description="Capture time in epoch milliseconds",
    )

    class Config:
        """Pydantic model configuration."""

        populate_by_name = True
        json_schema_extra = {
            "example": {
                "payload": "/9j/4AAQSkZJRg...",
                "declaredType": "image/jpeg",
                "timestamp": 1707321234567,
            }
        }


# =============================================================================
# Client → Server
# =============================================================================

class JoinMessage(BaseModel):
    event: Literal["join"] = "join"
    channel: str
    grant: str = ""


class LeaveMessage(BaseModel):
    event: Literal["leave"] = "leave"
    channel: str


class PublishMessage(BaseModel):
    """A producer frame, tagged with a ref the server echoes in its ack."""

    event: Literal["frame"] = "frame"
    channel: str
    ref: int = Field(default=0, ge=0)
    data: FrameMessage


class PingMessage(BaseModel):
    event: Literal["ping"] = "ping"


ClientMessage = Annotated[
    Union[JoinMessage, LeaveMessage, PublishMessage, PingMessage],
    Field(discriminator="event"),
]


# =============================================================================
# Server → Client
# =============================================================================

class ConnectionEstablished(BaseModel):
    event: Literal["connection_established"] = "connection_established"
    connection_id: str
    heartbeat_timeout_ms: int


class JoinedMessage(BaseModel):
    event: Literal["joined"] = "joined"
    channel: str


class DeniedMessage(BaseModel):
    event: Literal["denied"] = "denied"
    channel: str
    reason: str


class AckMessage(BaseModel):
    event: Literal["ack"] = "ack"
    ref: int
    delivered: int


class FrameRejectedMessage(BaseModel):
    event: Literal["frame-rejected"] = "frame-rejected"
    ref: int
    reason: str


class FrameBroadcast(BaseModel):
    event: Literal["frame"] = "frame"
    channel: str
    data: FrameMessage


class PongMessage(BaseModel):
    event: Literal["pong"] = "pong"


class ErrorMessage(BaseModel):
    event: Literal["error"] = "error"
    reason: str


ServerMessage = Annotated[
    Union[
        ConnectionEstablished,
        JoinedMessage,
        DeniedMessage,
        AckMessage,
        FrameRejectedMessage,
        FrameBroadcast,
        PongMessage,
        ErrorMessage,
    ],
    Field(discriminator="event"),
]


_client_adapter: TypeAdapter = TypeAdapter(ClientMessage)
_server_adapter: TypeAdapter = TypeAdapter(ServerMessage)


def parse_client_message(raw: Union[str, bytes]):
    """
    Parse a raw client message.

    Raises:
        pydantic.ValidationError: If the message is not valid JSON or
            does not match any known client event
    """
    return _client_adapter.validate_json(raw)


def parse_server_message(raw: Union[str, bytes]):
    """
    Parse a raw server message.

    Raises:
        pydantic.ValidationError: If the message is not valid JSON or
            does not match any known server event
    """
    return _server_adapter.validate_json(raw)


def dump_message(message: BaseModel) -> str:
    """Serialize a message for the wire (camelCase aliases applied)."""
    return message.model_dump_json(by_alias=True)


# =============================================================================
# HTTP grant endpoint
# =============================================================================

class AuthRequest(BaseModel):
    """Body of POST /auth."""

    socket_id: str = Field(..., min_length=1)
    channel_name: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    auth: str
