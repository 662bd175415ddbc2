"""
Record Normalizer: RawFrame sequence -> unified SensorRecord sequence.

Each frame fills exactly one reading group (MPReading or MDGReading); the
other group stays None. When both streams are present, every MP sample is
paired with the nearest unused MDG sample inside the merge tolerance and
the pair becomes one MERGED record.
"""

from bisect import bisect_left
from typing import Iterable, List, Optional, Tuple

from core.config import DumpConfig, default_config
from core.constants import FORMAT_MDG, FORMAT_MIXED, FORMAT_MP
from core.models import FieldSpec, MDGReading, MPReading, RawFrame, SensorRecord

READING_TYPES = {FORMAT_MP: MPReading, FORMAT_MDG: MDGReading}


def convert_value(spec: FieldSpec, raw):
    """Raw wire value -> physical value using the field's coefficients."""
    if spec.kind == "flag":
        return bool(raw)
    if spec.kind == "count":
        return int(raw)
    return raw * spec.scale + spec.offset


def _frame_to_reading(frame: RawFrame, config: DumpConfig) -> Tuple[float, object]:
    layout = config.layouts[frame.format]
    converted = {spec.name: convert_value(spec, frame.values[spec.name])
                 for spec in layout.fields}
    rtd = float(converted.pop("rtd"))
    return rtd, READING_TYPES[frame.format](**converted)


def _nearest_unused(times: List[float], used: List[bool], rtd: float,
                    tolerance: float) -> Optional[int]:
    """Index of the closest unused time within tolerance; earliest wins ties."""
    best, best_gap = None, None
    k = bisect_left(times, rtd - tolerance)
    while k < len(times) and times[k] <= rtd + tolerance:
        if not used[k]:
            gap = abs(times[k] - rtd)
            if best_gap is None or gap < best_gap:
                best, best_gap = k, gap
        k += 1
    return best


def merge_streams(mp_items: List[Tuple[float, MPReading]],
                  mdg_items: List[Tuple[float, MDGReading]],
                  tolerance: float) -> List[tuple]:
    """
    Pair MP and MDG samples by timestamp proximity.

    Both inputs must be sorted by rtd. Returns (rtd, mp, mdg, mdg_rtd)
    tuples sorted by rtd; MP-anchored rows keep the MP timestamp.
    """
    mdg_times = [t for t, _ in mdg_items]
    used = [False] * len(mdg_items)
    rows = []
    for rtd, mp in mp_items:
        k = _nearest_unused(mdg_times, used, rtd, tolerance)
        if k is None:
            rows.append((rtd, mp, None, None))
        else:
            used[k] = True
            rows.append((rtd, mp, mdg_items[k][1], mdg_times[k]))
    for k, (rtd, mdg) in enumerate(mdg_items):
        if not used[k]:
            rows.append((rtd, None, mdg, None))
    rows.sort(key=lambda row: row[0])
    return rows


def normalize(frames: Iterable[RawFrame], format: Optional[str] = None,
              config: Optional[DumpConfig] = None) -> List[SensorRecord]:
    """
    Map raw frames to SensorRecords ordered by rtd.

    `format` restricts the accepted frame formats ("MP", "MDG", or "MIXED");
    a frame outside it raises ValueError. None accepts whatever is present.
    """
    config = config or default_config()
    mp_items: List[Tuple[float, MPReading]] = []
    mdg_items: List[Tuple[float, MDGReading]] = []

    for frame in frames:
        if format not in (None, FORMAT_MIXED) and frame.format != format:
            raise ValueError(
                f"Frame {frame.index} is {frame.format}, expected {format}")
        rtd, reading = _frame_to_reading(frame, config)
        if frame.format == FORMAT_MP:
            mp_items.append((rtd, reading))
        else:
            mdg_items.append((rtd, reading))

    # Stable sorts keep buffer order for equal timestamps
    mp_items.sort(key=lambda item: item[0])
    mdg_items.sort(key=lambda item: item[0])

    if mp_items and mdg_items:
        rows = merge_streams(mp_items, mdg_items, config.merge_tolerance_sec)
    else:
        rows = [(rtd, r, None, None) for rtd, r in mp_items] + \
               [(rtd, None, r, None) for rtd, r in mdg_items]

    return [SensorRecord(sequence=i, rtd=rtd, mp=mp, mdg=mdg, mdg_rtd=mdg_rtd)
            for i, (rtd, mp, mdg, mdg_rtd) in enumerate(rows)]
