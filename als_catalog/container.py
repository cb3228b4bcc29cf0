"""
Live Set Container Decoder

A ``.als`` file is an XML document wrapped in gzip. The header is walked by
hand (flag bits decide which optional sections follow the fixed 10 bytes)
and the raw deflate stream between header and 8-byte trailer is inflated
into a bounded buffer.

Bytes that don't start with the gzip magic number are treated as XML that
was saved uncompressed and passed through as text.
"""

from __future__ import annotations

import zlib
from pathlib import Path
from typing import Union

from loguru import logger

GZIP_MAGIC = b"\x1f\x8b"
GZIP_BASE_HEADER_SIZE = 10
GZIP_TRAILER_SIZE = 8  # CRC32 + ISIZE

# Header flag bits (RFC 1952)
FHCRC    = 0x02
FEXTRA   = 0x04
FNAME    = 0x08
FCOMMENT = 0x10

# Upper bound on inflated output. Real sets are a few MB to a few tens of MB.
MAX_DECOMPRESSED_BYTES = 100_000_000


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ProjectFileError(Exception):
    """A single project file could not be read. Never fatal for a scan."""


class ProjectFileNotFoundError(ProjectFileError):
    def __init__(self, path: Union[str, Path]) -> None:
        super().__init__(f"Live Set file not found: {path}")
        self.path = str(path)


class DecompressionFailedError(ProjectFileError):
    """Bad gzip header or deflate stream."""


class InvalidTextError(ProjectFileError):
    """Payload decompressed fine but is not UTF-8."""


# ---------------------------------------------------------------------------
# Header walk
# ---------------------------------------------------------------------------

def _skip_zero_terminated(data: bytes, offset: int) -> int:
    end = data.find(b"\x00", offset)
    if end == -1:
        return len(data)
    return end + 1


def deflate_payload(data: bytes) -> bytes:
    """Return the raw deflate stream of a gzip member."""
    if len(data) <= GZIP_BASE_HEADER_SIZE:
        raise DecompressionFailedError(f"gzip data too short ({len(data)} bytes)")

    flags = data[3]
    offset = GZIP_BASE_HEADER_SIZE

    if flags & FEXTRA:
        if offset + 2 > len(data):
            raise DecompressionFailedError("truncated gzip extra field")
        extra_length = data[offset] | (data[offset + 1] << 8)
        offset += 2 + extra_length

    if flags & FNAME:
        offset = _skip_zero_terminated(data, offset)

    if flags & FCOMMENT:
        offset = _skip_zero_terminated(data, offset)

    if flags & FHCRC:
        offset += 2

    if offset >= len(data) - GZIP_TRAILER_SIZE:
        raise DecompressionFailedError("gzip header runs into the trailer")

    return data[offset:len(data) - GZIP_TRAILER_SIZE]


def inflate(payload: bytes, max_size: int = MAX_DECOMPRESSED_BYTES) -> bytes:
    """Inflate a raw deflate stream, keeping at most ``max_size`` bytes."""
    inflater = zlib.decompressobj(-zlib.MAX_WBITS)
    try:
        output = inflater.decompress(payload, max_size)
    except zlib.error as exc:
        raise DecompressionFailedError(f"corrupt deflate stream: {exc}") from exc

    if not output:
        raise DecompressionFailedError("deflate stream produced no output")

    if len(output) >= max_size and not inflater.eof:
        logger.warning(f"Decompressed Live Set exceeds {max_size} bytes, truncating")
    elif not inflater.eof:
        raise DecompressionFailedError("deflate stream ends early")

    return output


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def _decode_text(raw: bytes, truncated: bool) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        # A cut at the size cap can split the last multi-byte character.
        if truncated and exc.start >= len(raw) - 3:
            return raw[:exc.start].decode("utf-8")
        raise InvalidTextError(f"Live Set is not valid UTF-8: {exc}") from exc


def decode_container(data: bytes, max_size: int = MAX_DECOMPRESSED_BYTES) -> str:
    """Turn the bytes of a ``.als`` file into its XML text."""
    if data[:2] != GZIP_MAGIC:
        return _decode_text(data, truncated=False)

    output = inflate(deflate_payload(data), max_size=max_size)
    return _decode_text(output, truncated=len(output) >= max_size)


def read_container(path: Union[str, Path]) -> bytes:
    """Read the raw bytes of a Live Set file."""
    p = Path(path)
    try:
        return p.read_bytes()
    except FileNotFoundError as exc:
        raise ProjectFileNotFoundError(p) from exc
