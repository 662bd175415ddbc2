"""
Aggregator -- report-facing summary statistics over a normalized record sequence.

Pure and order-independent: sums go through math.fsum and histogram bins
are emitted sorted by bin start. Invalid (sentinel / non-finite) readings
never reach a statistic.
"""

import math
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from analysis.welford import WelfordAccumulator
from core.config import DumpConfig, default_config
from core.models import (
    GROUP_FIELDS,
    HistogramBin,
    PumpStats,
    SensorRecord,
    Stats,
)
from core.utils import fahrenheit_to_celsius, is_valid_reading

SHOCK_COUNT_FIELDS = (
    "shock_count_axial_50g", "shock_count_axial_100g",
    "shock_count_lateral_50g", "shock_count_lateral_100g",
)


def _mean(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return round(math.fsum(values) / len(values), 6)


def _valid(values: Iterable[Optional[float]], sentinel: float) -> List[float]:
    return [float(v) for v in values if is_valid_reading(v, sentinel)]


def histogram(values: Iterable[float], width: float) -> List[HistogramBin]:
    """
    Bucket values into fixed-width bins.

    bin_start = floor(value / width) * width; returns (bin_start, bin_end, count)
    tuples sorted ascending. Non-finite values are ignored.
    """
    if width <= 0:
        raise ValueError(f"Histogram width must be positive, got {width}")
    arr = np.asarray(list(values), dtype=float)
    arr = arr[np.isfinite(arr)]
    if arr.size == 0:
        return []
    starts = np.floor(arr / width) * width
    bins, counts = np.unique(starts, return_counts=True)
    return [(float(s), float(s + width), int(c)) for s, c in zip(bins, counts)]


def pump_statistics(records: Sequence[SensorRecord], sentinel: float) -> PumpStats:
    mp = [r.mp for r in records if r.mp is not None]
    on = [m for m in mp if m.flow_on]
    temps_on = _valid((m.temperature for m in on), sentinel)
    return PumpStats(
        total_records=len(mp),
        runtime_records=len(on),
        efficiency_percent=round(100.0 * len(on) / len(mp), 2) if mp else None,
        avg_motor_current=_mean([m.motor_current_avg for m in on]),
        avg_actuation_time=_mean([m.actuation_time for m in on]),
        max_temperature=max(temps_on) if temps_on else None,
    )


def high_shock_count(records: Sequence[SensorRecord], threshold_g: float) -> int:
    return sum(1 for r in records if r.mdg is not None and r.mdg.peak_shock > threshold_g)


def field_ranges(records: Sequence[SensorRecord], sentinel: float) -> Dict[str, dict]:
    """min/max/mean/std per numeric field over the records that carry it."""
    ranges = {}
    for group, names in GROUP_FIELDS.items():
        for name in names:
            qualified = f"{group}.{name}"
            values = [r.get(qualified) for r in records]
            acc = WelfordAccumulator()
            # sorted input keeps the float result independent of record order
            for value in sorted(v for v in values
                                if not isinstance(v, bool) and is_valid_reading(v, sentinel)):
                acc.update(value)
            if acc.count:
                ranges[qualified] = acc.to_dict()
    return ranges


def device_summary(records: Sequence[SensorRecord], sentinel: float) -> Dict[str, object]:
    """Per-dump figures for the device status report."""
    mp_records = [r for r in records if r.mp is not None]
    mdg = [r.mdg for r in records if r.mdg is not None]
    temps = _valid((r.mp.temperature for r in mp_records), sentinel)
    max_temp_f = max(temps) if temps else None
    max_temp_c = fahrenheit_to_celsius(max_temp_f)

    interval = None
    if len(mp_records) > 1:
        interval = float(np.median(np.diff(sorted(r.rtd for r in mp_records))))
    runtime = sum(1 for r in mp_records if r.mp.flow_on)
    pump_on_minutes = round(runtime * interval / 60.0, 3) if interval is not None else None

    span_hours = None
    if records:
        span_hours = round((max(r.rtd for r in records) - min(r.rtd for r in records)) / 3600.0, 6)

    n = len(mp_records)
    summary = {
        "mp_max_temperature_f": max_temp_f,
        "mp_max_temperature_c": round(max_temp_c, 3) if max_temp_c is not None else None,
        "comm_error_percent": round(100.0 * sum(1 for r in mp_records if r.mp.reset_counter > 0) / n, 2) if n else None,
        "hall_active_percent": round(100.0 * sum(1 for r in mp_records if r.mp.hall_pulses > 0) / n, 2) if n else None,
        "number_of_pulses": sum(r.mp.hall_pulses for r in mp_records),
        "sample_interval_sec": interval,
        "pump_on_minutes": pump_on_minutes,
        "recording_span_hours": span_hours,
        "mdg_max_shock_g": max((m.peak_shock for m in mdg), default=None),
    }
    for name in SHOCK_COUNT_FIELDS:
        summary[f"mdg_max_{name}"] = max((getattr(m, name) for m in mdg), default=None)
    return summary


def aggregate(records: Sequence[SensorRecord], config: Optional[DumpConfig] = None) -> Stats:
    """Compute Stats for one record sequence."""
    config = config or default_config()
    sentinel = config.thresholds.sentinel_magnitude

    histograms = {}
    for qualified, width in sorted(config.histogram_widths.items()):
        values = _valid((r.get(qualified) for r in records), sentinel)
        histograms[qualified] = histogram(values, width)

    return Stats(
        record_count=len(records),
        pump=pump_statistics(records, sentinel),
        histograms=histograms,
        high_shock_count=high_shock_count(records, config.thresholds.high_shock_g),
        high_shock_threshold=config.thresholds.high_shock_g,
        field_ranges=field_ranges(records, sentinel),
        device_summary=device_summary(records, sentinel),
    )
