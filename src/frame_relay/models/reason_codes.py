"""
Reason Codes
============

Fixed set of machine-readable reason codes surfaced by the relay.

Every rejection, denial or drop carries exactly ONE code. The string
values are what travels on the wire and what the UI collaborator sees.

Rules:
    - No free-text explanations on the wire
    - One clear cause per code
"""

from enum import Enum


class RejectReason(str, Enum):
    """
    Why a frame failed validation at the edge.

    Attributes:
        EMPTY_PAYLOAD: Payload had zero bytes
        TOO_LARGE: Payload exceeded the configured maximum
        UNSUPPORTED_TYPE: Declared type is not allow-listed
        MALFORMED: Payload is not a well-formed encoded image
    """

    EMPTY_PAYLOAD = "empty-payload"
    TOO_LARGE = "too-large"
    UNSUPPORTED_TYPE = "unsupported-type"
    MALFORMED = "malformed"


class DenyReason(str, Enum):
    """Why a connection was not admitted to a channel."""

    BAD_CHANNEL_NAME = "bad-channel-name"
    UNAUTHORIZED = "unauthorized"


class DropReason(str, Enum):
    """Why the hub dropped a published frame instead of fanning it out."""

    VALIDATION = "validation"
    NOT_A_MEMBER = "not-a-member"
