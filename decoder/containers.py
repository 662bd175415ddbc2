"""
Compressed dump containers.

Field tools sometimes ship dumps wrapped in an lz4 frame or a bz2 stream.
The payload is recognized by its magic bytes and decompressed before any
frame detection runs; unwrapped buffers pass through unchanged.
"""

import bz2
from typing import Tuple

import lz4.frame

from core.constants import BZ2_MAGIC, LZ4_FRAME_MAGIC
from decoder.errors import UnrecognizedFormatError


def unwrap_container(buf: bytes) -> Tuple[bytes, str]:
    """Return (payload, container) where container is "lz4", "bz2", or "raw"."""
    if buf.startswith(LZ4_FRAME_MAGIC):
        try:
            return lz4.frame.decompress(buf), "lz4"
        except RuntimeError as exc:
            raise UnrecognizedFormatError(f"Corrupt lz4 container: {exc}") from exc
    if buf.startswith(BZ2_MAGIC):
        try:
            return bz2.decompress(buf), "bz2"
        except (OSError, ValueError, EOFError) as exc:
            raise UnrecognizedFormatError(f"Corrupt bz2 container: {exc}") from exc
    return buf, "raw"
