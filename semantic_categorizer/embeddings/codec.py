"""
Storage encoding for embedding vectors.

New rows are written as float32 little-endian binary (4 bytes per value).
Readers also accept the legacy textual encoding (a JSON array stored as text
or UTF-8 bytes) so caches filled by older writers keep working.
"""

import json
import logging
from typing import Any, Optional, Tuple

import numpy as np

from ..exceptions import MalformedCachedPayloadError, ValidationError

logger = logging.getLogger(__name__)

BINARY_ENCODING = "f32le"
JSON_ENCODING = "json"

_FLOAT32 = np.dtype("<f4")


def encode_vector(vector: Any) -> Tuple[bytes, str]:
    """
    Encode a vector for storage.

    Returns:
        Tuple of (payload, encoding tag). The JSON fallback is only used when
        the values cannot be represented as float32.
    """
    try:
        return _encode_binary(vector), BINARY_ENCODING
    except (TypeError, ValueError) as e:
        logger.warning(f"Binary embedding encoding failed, storing as JSON: {e}")
        try:
            values = [float(v) for v in vector]
        except (TypeError, ValueError) as inner:
            raise ValidationError(
                f"Embedding is not a numeric vector: {inner}", field="vector"
            )
        return json.dumps(values).encode("utf-8"), JSON_ENCODING


def _encode_binary(vector: Any) -> bytes:
    arr = np.asarray(vector, dtype=np.float64)
    if arr.ndim != 1:
        raise ValueError(f"expected a 1-d vector, got shape {arr.shape}")

    with np.errstate(over="ignore"):
        packed = arr.astype(_FLOAT32)

    # float32 overflow turns finite inputs into inf
    if not np.array_equal(np.isfinite(arr), np.isfinite(packed)):
        raise ValueError("vector values exceed float32 range")

    return packed.tobytes()


def decode_vector(
    raw: Any, encoding: Optional[str] = None, key: Optional[str] = None
) -> np.ndarray:
    """
    Decode a stored embedding payload.

    Args:
        raw: Stored payload (bytes, memoryview, str, or an already decoded sequence)
        encoding: Encoding tag written with the row; None for legacy rows
        key: Cache key, used for error reporting only

    Returns:
        1-d numpy array

    Raises:
        MalformedCachedPayloadError: if neither decoder can read the payload
    """
    if raw is None:
        raise MalformedCachedPayloadError("payload is empty", key=key)

    if isinstance(raw, np.ndarray):
        return raw
    if isinstance(raw, (list, tuple)):
        return _from_sequence(raw, key)
    if isinstance(raw, str):
        return _decode_text(raw, key)
    if isinstance(raw, memoryview):
        raw = raw.tobytes()
    if not isinstance(raw, (bytes, bytearray)):
        raise MalformedCachedPayloadError(
            f"unsupported payload type {type(raw).__name__}", key=key
        )

    raw = bytes(raw)

    if encoding == BINARY_ENCODING:
        return _decode_binary(raw, key)
    if encoding == JSON_ENCODING:
        return _decode_text(_utf8(raw, key), key)

    return _decode_untagged(raw, key)


def _decode_untagged(raw: bytes, key: Optional[str]) -> np.ndarray:
    """Sniff a legacy row: JSON text first when it looks like an array."""
    stripped = raw.strip()
    looks_like_json = stripped.startswith(b"[") and stripped.endswith(b"]")

    if looks_like_json:
        try:
            return _decode_text(stripped.decode("utf-8"), key)
        except (MalformedCachedPayloadError, UnicodeDecodeError):
            logger.debug(f"Legacy JSON decode failed for {key!r}, trying binary")

    try:
        return _decode_binary(raw, key)
    except MalformedCachedPayloadError:
        if looks_like_json:
            raise
        return _decode_text(_utf8(raw, key), key)


def _decode_binary(raw: bytes, key: Optional[str]) -> np.ndarray:
    if not raw or len(raw) % _FLOAT32.itemsize != 0:
        raise MalformedCachedPayloadError(
            f"binary payload length {len(raw)} is not a positive multiple of 4",
            key=key,
        )
    return np.frombuffer(raw, dtype=_FLOAT32).copy()


def _decode_text(text: str, key: Optional[str]) -> np.ndarray:
    try:
        values = json.loads(text)
    except ValueError as e:
        raise MalformedCachedPayloadError(f"invalid JSON payload: {e}", key=key)

    if not isinstance(values, list):
        raise MalformedCachedPayloadError(
            f"JSON payload is {type(values).__name__}, expected list", key=key
        )
    return _from_sequence(values, key)


def _from_sequence(values: Any, key: Optional[str]) -> np.ndarray:
    if len(values) == 0:
        raise MalformedCachedPayloadError("vector is empty", key=key)
    try:
        arr = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise MalformedCachedPayloadError(f"non-numeric vector: {e}", key=key)
    if arr.ndim != 1:
        raise MalformedCachedPayloadError(
            f"expected a flat vector, got shape {arr.shape}", key=key
        )
    return arr


def _utf8(raw: bytes, key: Optional[str]) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedCachedPayloadError(f"payload is not UTF-8 text: {e}", key=key)
