"""Payload compression for cache entries.

Serialized payloads above a threshold are deflated with zlib and base64
encoded so the envelope stays valid JSON.
"""

import base64
import binascii
import logging
import zlib

logger = logging.getLogger(__name__)

DEFAULT_COMPRESSION_THRESHOLD = 1024  # bytes of serialized JSON
COMPRESSION_LEVEL = 6


class CompressionError(ValueError):
    """Raised when a compressed payload cannot be restored."""


def should_compress(serialized: str, threshold: int = DEFAULT_COMPRESSION_THRESHOLD) -> bool:
    return len(serialized.encode("utf-8")) > threshold


def compress_payload(serialized: str) -> str:
    """Deflates a serialized payload and returns it as base64 text."""
    raw = serialized.encode("utf-8")
    packed = base64.b64encode(zlib.compress(raw, COMPRESSION_LEVEL)).decode("ascii")
    logger.debug(f"Compressed payload {len(raw)} -> {len(packed)} bytes")
    return packed


def decompress_payload(packed: str) -> str:
    """Inverse of compress_payload.

    Raises:
        CompressionError: If the text is not valid base64/zlib data.
    """
    try:
        return zlib.decompress(base64.b64decode(packed.encode("ascii"), validate=True)).decode("utf-8")
    except (binascii.Error, zlib.error, UnicodeError, AttributeError) as e:
        raise CompressionError(f"Corrupted compressed payload: {e}") from e
