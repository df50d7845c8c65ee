"""
Tests for embedding storage encoding.
"""

import json
import struct

import numpy as np
import pytest

from semantic_categorizer.embeddings.codec import (
    BINARY_ENCODING,
    JSON_ENCODING,
    decode_vector,
    encode_vector,
)
from semantic_categorizer.exceptions import (
    MalformedCachedPayloadError,
    ValidationError,
)


class TestEncodeVector:
    """Test vector encoding."""

    def test_binary_layout_is_float32_little_endian(self) -> None:
        """Test that new payloads are 4 bytes per value, little endian."""
        payload, encoding = encode_vector([1.0, -2.5, 0.25])

        assert encoding == BINARY_ENCODING
        assert len(payload) == 12
        assert payload == struct.pack("<3f", 1.0, -2.5, 0.25)

    def test_float32_values_round_trip_bit_exact(self) -> None:
        """Test that float32-representable values decode to identical bits."""
        original = np.array([0.1, 1e-7, -3.75, 123456.0], dtype=np.float32)
        payload, encoding = encode_vector(original)

        decoded = decode_vector(payload, encoding)

        assert decoded.dtype == np.float32
        assert decoded.tobytes() == original.tobytes()

    def test_out_of_range_values_fall_back_to_json(self) -> None:
        """Test that values beyond float32 range are stored as JSON."""
        payload, encoding = encode_vector([1e300, 2.0])

        assert encoding == JSON_ENCODING
        assert json.loads(payload.decode("utf-8")) == [1e300, 2.0]
        assert decode_vector(payload, encoding).tolist() == [1e300, 2.0]

    def test_non_numeric_vector_rejected(self) -> None:
        """Test that non-numeric input raises ValidationError."""
        with pytest.raises(ValidationError):
            encode_vector(["a", "b"])


class TestDecodeVector:
    """Test decoding of stored payloads."""

    def test_legacy_json_text(self) -> None:
        """Test decoding a legacy JSON array stored as text."""
        decoded = decode_vector("[0.5, 1.5, -1]")
        assert decoded.tolist() == [0.5, 1.5, -1.0]

    def test_legacy_json_bytes_without_tag(self) -> None:
        """Test decoding a JSON array stored as UTF-8 bytes without a tag."""
        decoded = decode_vector(b" [1, 2, 3] ")
        assert decoded.tolist() == [1.0, 2.0, 3.0]

    def test_untagged_binary(self) -> None:
        """Test sniffing an untagged binary payload."""
        decoded = decode_vector(struct.pack("<2f", 0.5, 4.0))
        assert decoded.tolist() == [0.5, 4.0]

    def test_memoryview_payload(self) -> None:
        """Test that memoryview payloads from some drivers are accepted."""
        payload, encoding = encode_vector([3.0, 4.0])
        decoded = decode_vector(memoryview(payload), encoding)
        assert decoded.tolist() == [3.0, 4.0]

    def test_decoded_binary_is_writable(self) -> None:
        """Test that decoded arrays are independent copies."""
        payload, encoding = encode_vector([1.0, 2.0])
        decoded = decode_vector(payload, encoding)
        decoded[0] = 9.0
        assert decoded[0] == 9.0

    @pytest.mark.parametrize(
        "raw, encoding",
        [
            (None, None),
            (b"\x00\x01\x02", BINARY_ENCODING),
            (b"", BINARY_ENCODING),
            ("[]", None),
            ('{"a": 1}', None),
            ("[[1, 2], [3, 4]]", None),
            ('["x", "y"]', None),
            (b"[1, 2", None),
            (12345, None),
        ],
    )
    def test_malformed_payloads(self, raw, encoding) -> None:
        """Test that unreadable payloads raise MalformedCachedPayloadError."""
        with pytest.raises(MalformedCachedPayloadError):
            decode_vector(raw, encoding, key="broken")

    def test_error_carries_key(self) -> None:
        """Test that the cache key is included in the error."""
        with pytest.raises(MalformedCachedPayloadError) as exc_info:
            decode_vector(b"\x00", BINARY_ENCODING, key="running shoes")
        assert "running shoes" in str(exc_info.value)
