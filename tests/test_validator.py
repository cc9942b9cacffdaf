"""
Frame Validation Tests
======================

Tests for FrameValidator and the wire codec.
"""

import base64

import pytest

from conftest import JPEG_BYTES, PNG_BYTES, WEBP_BYTES
from frame_relay.codec.validator import FrameValidator, normalize_media_type
from frame_relay.codec.wire import (
    decode_frame_message,
    decode_payload,
    encode_frame_message,
    split_data_url,
)
from frame_relay.errors import FrameValidationError
from frame_relay.models.frame import Frame
from frame_relay.models.messages import FrameMessage
from frame_relay.models.reason_codes import RejectReason
from frame_relay.models.results import Rejected


class TestFrameValidator:
    """Tests for size, type and signature checks."""

    def test_valid_jpeg(self, validator):
        """A JPEG payload tagged image/jpeg becomes a Frame."""
        result = validator.validate(JPEG_BYTES, "image/jpeg", 1000)

        assert isinstance(result, Frame)
        assert result.payload == JPEG_BYTES
        assert result.declared_type == "image/jpeg"
        assert result.timestamp_ms == 1000
        assert result.size == len(JPEG_BYTES)

    def test_valid_png_and_webp(self, validator):
        assert isinstance(validator.validate(PNG_BYTES, "image/png"), Frame)
        assert isinstance(validator.validate(WEBP_BYTES, "image/webp"), Frame)

    def test_empty_payload(self, validator):
        for payload in (b"", None):
            result = validator.validate(payload, "image/jpeg")
            assert isinstance(result, Rejected)
            assert result.reason is RejectReason.EMPTY_PAYLOAD

    def test_size_limit_is_inclusive(self):
        """A payload of exactly max_frame_bytes is accepted; one byte more is not."""
        validator = FrameValidator(max_frame_bytes=len(JPEG_BYTES))

        assert isinstance(validator.validate(JPEG_BYTES, "image/jpeg"), Frame)

        result = validator.validate(JPEG_BYTES + b"\x00", "image/jpeg")
        assert isinstance(result, Rejected)
        assert result.reason is RejectReason.TOO_LARGE

    def test_unsupported_type(self, validator):
        result = validator.validate(b"GIF89a" + b"\x00" * 16, "image/gif")

        assert isinstance(result, Rejected)
        assert result.reason is RejectReason.UNSUPPORTED_TYPE

    def test_missing_type(self, validator):
        result = validator.validate(JPEG_BYTES, None)

        assert isinstance(result, Rejected)
        assert result.reason is RejectReason.UNSUPPORTED_TYPE

    def test_signature_mismatch_is_malformed(self, validator):
        """PNG bytes declared as JPEG are rejected without decoding pixels."""
        result = validator.validate(PNG_BYTES, "image/jpeg")

        assert isinstance(result, Rejected)
        assert result.reason is RejectReason.MALFORMED

    def test_check_order(self):
        """Empty beats size, size beats type."""
        validator = FrameValidator(max_frame_bytes=4)

        assert validator.validate(b"", "text/plain").reason is RejectReason.EMPTY_PAYLOAD
        assert validator.validate(b"x" * 10, "text/plain").reason is RejectReason.TOO_LARGE

    def test_media_type_is_normalized(self, validator):
        result = validator.validate(JPEG_BYTES, "IMAGE/JPEG; q=0.8")

        assert isinstance(result, Frame)
        assert result.declared_type == "image/jpeg"
        assert normalize_media_type(None) == ""

    def test_custom_allow_list(self):
        validator = FrameValidator(allowed_types=["image/png"])

        assert isinstance(validator.validate(PNG_BYTES, "image/png"), Frame)
        assert validator.validate(JPEG_BYTES, "image/jpeg").reason is RejectReason.UNSUPPORTED_TYPE

    def test_timestamp_defaults_to_now(self, validator):
        result = validator.validate(JPEG_BYTES, "image/jpeg")
        assert result.timestamp_ms > 1_600_000_000_000

    def test_revalidate_applies_own_limit(self, validator):
        frame = validator.validate(JPEG_BYTES, "image/jpeg", 1)
        strict = FrameValidator(max_frame_bytes=8)

        assert strict.revalidate(frame).reason is RejectReason.TOO_LARGE

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            FrameValidator(max_frame_bytes=0)


class TestWireCodec:
    """Tests for base64 / data URL handling."""

    def test_decode_bare_base64(self, validator, sample_frame_message):
        message = FrameMessage.model_validate(sample_frame_message)
        result = decode_frame_message(message, validator)

        assert isinstance(result, Frame)
        assert result.payload == JPEG_BYTES
        assert result.timestamp_ms == 1707321234567

    def test_decode_data_url(self, validator):
        """The browser camera page sends canvas.toDataURL output."""
        encoded = base64.b64encode(JPEG_BYTES).decode("ascii")
        message = FrameMessage(
            payload=f"data:image/jpeg;base64,{encoded}",
            declared_type="image/jpeg",
            timestamp=5,
        )

        result = decode_frame_message(message, validator)
        assert isinstance(result, Frame)
        assert result.payload == JPEG_BYTES

    def test_data_url_type_mismatch(self, validator):
        encoded = base64.b64encode(JPEG_BYTES).decode("ascii")
        message = FrameMessage(
            payload=f"data:image/png;base64,{encoded}",
            declared_type="image/jpeg",
            timestamp=5,
        )

        result = decode_frame_message(message, validator)
        assert isinstance(result, Rejected)
        assert result.reason is RejectReason.MALFORMED

    def test_invalid_base64(self, validator):
        message = FrameMessage(payload="not base64!!", declared_type="image/jpeg", timestamp=0)

        result = decode_frame_message(message, validator)
        assert isinstance(result, Rejected)
        assert result.reason is RejectReason.MALFORMED

    def test_empty_payload(self, validator):
        message = FrameMessage(payload="", declared_type="image/jpeg", timestamp=0)

        result = decode_frame_message(message, validator)
        assert result.reason is RejectReason.EMPTY_PAYLOAD

    def test_oversize_rejected_before_decoding(self):
        encoded = base64.b64encode(b"\xff" * 300).decode("ascii")

        with pytest.raises(FrameValidationError) as exc_info:
            decode_payload(encoded, max_bytes=100)
        assert exc_info.value.reason is RejectReason.TOO_LARGE

    def test_data_url_must_be_base64(self):
        with pytest.raises(FrameValidationError):
            split_data_url("data:image/jpeg,rawbytes")
        with pytest.raises(FrameValidationError):
            split_data_url("data:image/jpeg;base64")

        assert split_data_url("abcd") == (None, "abcd")

    def test_encode_emits_bare_base64(self, validator):
        frame = validator.validate(JPEG_BYTES, "image/jpeg", 42)
        message = encode_frame_message(frame)

        assert not message.payload.startswith("data:")
        assert base64.b64decode(message.payload) == JPEG_BYTES
        assert message.declared_type == "image/jpeg"
        assert message.timestamp == 42
        assert message.model_dump(by_alias=True)["declaredType"] == "image/jpeg"


class TestImageCodec:
    """Tests for the OpenCV helpers used by capture and the monitor."""

    def test_encoded_capture_passes_validation(self, validator):
        import numpy as np

        from frame_relay.codec.image import decode_frame_bgr, encode_jpeg

        bgr = np.full((48, 64, 3), 127, dtype=np.uint8)
        payload = encode_jpeg(bgr, quality=80)

        frame = validator.validate(payload, "image/jpeg")
        assert isinstance(frame, Frame)
        assert decode_frame_bgr(frame).shape == (48, 64, 3)

    def test_corrupt_frame_raises(self):
        from frame_relay.codec.image import ImageDecodeError, decode_frame_bgr

        frame = Frame(payload=JPEG_BYTES, declared_type="image/jpeg", timestamp_ms=0)
        with pytest.raises(ImageDecodeError):
            decode_frame_bgr(frame)
