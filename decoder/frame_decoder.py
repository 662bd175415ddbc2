"""
Frame Decoder: raw dump bytes -> ordered RawFrame sequence.

Steps:
  1. Unwrap lz4/bz2 containers
  2. Detect the starting layout with a signature/stride scan over the header
  3. Walk the buffer one fixed-width frame at a time; a known signature at
     the cursor selects the layout, so MP and MDG regions may follow each
     other in one buffer
  4. Skip and count frames with a bad checksum; after a damaged signature,
     scan forward to the next frame of any layout that passes its checksum
  5. Drop trailing bytes shorter than one frame

Decoding is a pure function of (buffer, declared format, config).
"""

import struct
from typing import Dict, List, Optional, Sequence, Tuple

from core.config import DumpConfig, default_config
from core.constants import FORMAT_MIXED, KNOWN_FORMATS, MAX_CORRUPT_OFFSETS
from core.models import BYTE_ORDERS, DecodeStats, FrameLayout, RawFrame
from decoder.containers import unwrap_container
from decoder.errors import (
    ExcessiveCorruptionError,
    TooShortError,
    UnrecognizedFormatError,
)


def _checksum_ok(layout: FrameLayout, frame: bytes) -> bool:
    """sum16: low 16 bits of the byte sum of everything before the check word."""
    if layout.checksum == "none":
        return True
    order = BYTE_ORDERS[layout.byte_order]
    (stored,) = struct.unpack_from(order + "H", frame, len(frame) - 2)
    return (sum(frame[:-2]) & 0xFFFF) == stored


def _unpack(layout: FrameLayout, frame: bytes) -> dict:
    unpacked = struct.unpack(layout.struct_format, frame)
    raw_values = unpacked[1:1 + len(layout.fields)]  # skip signature, check word
    return {spec.name: value for spec, value in zip(layout.fields, raw_values)}


def _layout_at(payload: bytes, cursor: int, layouts: Sequence[FrameLayout],
               current: FrameLayout) -> Optional[FrameLayout]:
    """Layout whose signature starts at cursor and whose frame fits; current first."""
    for layout in [current] + [l for l in layouts if l is not current]:
        if cursor + layout.frame_width > len(payload):
            continue
        if payload.startswith(layout.signature, cursor):
            return layout
    return None


def _stride_score(payload: bytes, start: FrameLayout,
                  layouts: Sequence[FrameLayout], scan_frames: int) -> float:
    """Fraction of scanned frame slots that carry a signature when starting as `start`."""
    cursor, current = 0, start
    hits = scanned = 0
    while scanned < scan_frames and cursor + current.frame_width <= len(payload):
        if scanned == 0:
            # The first slot must belong to the candidate itself
            matched = start if payload.startswith(start.signature) else None
        else:
            matched = _layout_at(payload, cursor, layouts, current)
        if matched is not None:
            hits += 1
            current = matched
        scanned += 1
        cursor += current.frame_width
    return hits / scanned if scanned else 0.0


def detect_format(payload: bytes, config: Optional[DumpConfig] = None) -> Optional[FrameLayout]:
    """Pick the layout the buffer starts with, or None if nothing scores high enough."""
    config = config or default_config()
    layouts = [config.layouts[name] for name in sorted(config.layouts)]
    best, best_score = None, 0.0
    for layout in layouts:
        score = _stride_score(payload, layout, layouts, config.scan_frames)
        if score > best_score:
            best, best_score = layout, score
    if best is None or best_score < config.min_signature_score:
        return None
    return best


def _resync(payload: bytes, start: int,
            layouts: Sequence[FrameLayout]) -> Optional[Tuple[int, FrameLayout]]:
    """First offset at or after `start` holding a whole frame that passes its checksum."""
    size = len(payload)
    pos = start
    while pos < size:
        hits = [(payload.find(layout.signature, pos), i) for i, layout in enumerate(layouts)]
        hits = [(offset, i) for offset, i in hits if offset >= 0]
        if not hits:
            return None
        offset, i = min(hits)
        layout = layouts[i]
        end = offset + layout.frame_width
        if end <= size and _checksum_ok(layout, payload[offset:end]):
            return offset, layout
        pos = offset + 1
    return None


def _walk(payload: bytes, start: FrameLayout, layouts: Sequence[FrameLayout],
          container: str = "raw") -> Tuple[List[RawFrame], DecodeStats]:
    frames: List[RawFrame] = []
    by_format: Dict[str, int] = {}
    corrupt_offsets: List[int] = []
    corrupt = truncated = 0
    size = len(payload)
    widest = max(layout.frame_width for layout in layouts)
    cursor, current, index = 0, start, 0

    def mark_corrupt(offset: int, count: int = 1):
        nonlocal corrupt
        corrupt += count
        if len(corrupt_offsets) < MAX_CORRUPT_OFFSETS:
            corrupt_offsets.append(offset)

    while cursor < size:
        layout = _layout_at(payload, cursor, layouts, current)
        if layout is None:
            if cursor + current.frame_width > size:
                truncated = size - cursor
                break
            # Damaged signature: resume at the next frame that checks out,
            # whatever its layout, and charge the gap as lost frames
            found = _resync(payload, cursor + 1, layouts)
            gap_end = found[0] if found is not None else size
            mark_corrupt(cursor, max(1, (gap_end - cursor) // widest))
            index += 1
            if found is None:
                break
            cursor, current = found
            continue

        current = layout
        frame = payload[cursor:cursor + layout.frame_width]
        if _checksum_ok(layout, frame):
            frames.append(RawFrame(format=layout.name, index=index,
                                   offset=cursor, values=_unpack(layout, frame)))
            by_format[layout.name] = by_format.get(layout.name, 0) + 1
        else:
            mark_corrupt(cursor)
        cursor += layout.frame_width
        index += 1

    if len(by_format) > 1:
        detected = FORMAT_MIXED
    elif by_format:
        detected = next(iter(by_format))
    else:
        detected = start.name
    stats = DecodeStats(
        detected_format=detected,
        container=container,
        payload_bytes=size,
        valid_frames=len(frames),
        corrupt_frames=corrupt,
        truncated_bytes=truncated,
        frames_by_format=by_format,
        corrupt_offsets=corrupt_offsets,
    )
    return frames, stats


def normalize_format_name(declared_format: Optional[str]) -> Optional[str]:
    """Upper-case a caller-supplied format tag; reject unknown tags."""
    if declared_format is None:
        return None
    declared = str(declared_format).strip().upper()
    if declared not in KNOWN_FORMATS:
        raise UnrecognizedFormatError(
            f"Unknown declared format {declared_format!r}; expected one of {list(KNOWN_FORMATS)}")
    return declared


def decode(buf: bytes, declared_format: Optional[str] = None,
           config: Optional[DumpConfig] = None) -> Tuple[List[RawFrame], DecodeStats]:
    """
    Decode one dump buffer into raw frames.

    Args:
        buf: Dump bytes, optionally lz4/bz2 wrapped
        declared_format: "MP", "MDG" or "MIXED"; checked against the content
        config: Layouts and decoder limits (defaults to core/default_config.yaml)

    Returns:
        (frames in buffer order, DecodeStats)

    Raises:
        TooShortError, UnrecognizedFormatError, ExcessiveCorruptionError
    """
    config = config or default_config()
    declared = normalize_format_name(declared_format)
    payload, container = unwrap_container(bytes(buf))

    if len(payload) < config.min_frame_width:
        raise TooShortError(len(payload), config.min_frame_width)

    start = detect_format(payload, config)
    if start is None:
        raise UnrecognizedFormatError("No known frame signature found in buffer header")

    layouts = [config.layouts[name] for name in sorted(config.layouts)]
    frames, stats = _walk(payload, start, layouts, container)

    if stats.corruption_ratio > config.max_corrupt_ratio:
        raise ExcessiveCorruptionError(stats.corrupt_frames, stats.valid_frames,
                                       config.max_corrupt_ratio)
    if declared is not None and declared != stats.detected_format:
        raise UnrecognizedFormatError(
            f"Declared format {declared} does not match buffer content "
            f"({stats.detected_format})")
    return frames, stats
