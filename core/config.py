"""
Configuration loading: frame layouts, decoder settings, diagnostic thresholds.

The default layouts live in core/default_config.yaml. A deployment YAML
file is overlaid section by section: scalar sections (decoder, normalizer,
orchestrator, thresholds, histograms) merge key by key, while each entry
under `layouts:` replaces the whole layout of that name.
"""

import functools
import os
from dataclasses import dataclass, field as dataclass_field, fields
from typing import Dict, Optional, Tuple

import yaml

from core import constants as C
from core.models import (
    BYTE_ORDERS,
    CHECKSUMS,
    FIELD_KINDS,
    GROUP_FIELDS,
    MDG_FIELDS,
    MP_FIELDS,
    STRUCT_CODES,
    FieldSpec,
    FrameLayout,
)

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "default_config.yaml")

# Layout name -> reading fields it must populate
LAYOUT_GROUPS = {C.FORMAT_MP: MP_FIELDS, C.FORMAT_MDG: MDG_FIELDS}
SECTIONS = ("decoder", "normalizer", "orchestrator", "thresholds", "histograms", "layouts")


@dataclass(frozen=True)
class Thresholds:
    """Diagnostic limits. Rate pairs are (warning_rate, critical_rate)."""
    sentinel_magnitude: float = C.SENTINEL_MAGNITUDE
    temp_delta: float = C.TEMP_DELTA_THRESHOLD
    voltage_delta: float = C.VOLTAGE_DELTA_THRESHOLD
    current_delta: float = C.CURRENT_DELTA_THRESHOLD
    delta_precision: int = C.DELTA_PRECISION
    spike_magnitude_critical: float = C.SPIKE_MAGNITUDE_CRITICAL

    comm_error_rates: Tuple[float, float] = C.COMM_ERROR_RATES
    invalid_reading_rates: Tuple[float, float] = C.INVALID_READING_RATES
    pulse_error_rates: Tuple[float, float] = C.PULSE_ERROR_RATES
    temp_spike_rates: Tuple[float, float] = C.TEMP_SPIKE_RATES
    voltage_spike_rates: Tuple[float, float] = C.VOLTAGE_SPIKE_RATES
    current_spike_rates: Tuple[float, float] = C.CURRENT_SPIKE_RATES
    high_temperature_rates: Tuple[float, float] = C.HIGH_TEMPERATURE_RATES
    low_battery_rates: Tuple[float, float] = C.LOW_BATTERY_RATES
    high_battery_rates: Tuple[float, float] = C.HIGH_BATTERY_RATES
    motor_overcurrent_rates: Tuple[float, float] = C.MOTOR_OVERCURRENT_RATES
    pump_off_load_rates: Tuple[float, float] = C.PUMP_OFF_LOAD_RATES
    high_shock_rates: Tuple[float, float] = C.HIGH_SHOCK_RATES
    gamma_rates: Tuple[float, float] = C.GAMMA_RATES

    high_temperature_f: float = C.HIGH_TEMPERATURE_F
    low_battery_voltage: float = C.LOW_BATTERY_VOLTAGE
    high_battery_voltage: float = C.HIGH_BATTERY_VOLTAGE
    motor_overcurrent_amps: float = C.MOTOR_OVERCURRENT_AMPS
    pump_off_motor_amps: float = C.PUMP_OFF_MOTOR_AMPS
    high_shock_g: float = C.HIGH_SHOCK_G
    severe_shock_g: float = C.SEVERE_SHOCK_G
    gamma_low_cps: float = C.GAMMA_LOW_CPS
    gamma_high_cps: float = C.GAMMA_HIGH_CPS
    rail_cv_warning: float = C.RAIL_CV_WARNING
    rail_cv_critical: float = C.RAIL_CV_CRITICAL
    rail_deviation_fraction: float = C.RAIL_DEVIATION_FRACTION
    rail_min_samples: int = C.RAIL_MIN_SAMPLES

    elevated_temperature_f: float = C.ELEVATED_TEMPERATURE_F
    elevated_temperature_fraction: float = C.ELEVATED_TEMPERATURE_FRACTION
    low_temperature_f: float = C.LOW_TEMPERATURE_F
    low_temperature_fraction: float = C.LOW_TEMPERATURE_FRACTION
    temperature_iqr_factor: float = C.TEMPERATURE_IQR_FACTOR
    temperature_iqr_min_samples: int = C.TEMPERATURE_IQR_MIN_SAMPLES
    vibration_factor: float = C.VIBRATION_FACTOR
    vibration_fraction: float = C.VIBRATION_FRACTION
    vibration_min_samples: int = C.VIBRATION_MIN_SAMPLES
    high_rpm: float = C.HIGH_RPM
    severe_rpm: float = C.SEVERE_RPM
    high_rpm_critical_fraction: float = C.HIGH_RPM_CRITICAL_FRACTION
    low_rpm: float = C.LOW_RPM
    low_rpm_fraction: float = C.LOW_RPM_FRACTION
    rpm_spread_avg: float = C.RPM_SPREAD_AVG
    rpm_spread_max: float = C.RPM_SPREAD_MAX
    rpm_spread_avg_warning: float = C.RPM_SPREAD_AVG_WARNING
    rpm_spread_critical: float = C.RPM_SPREAD_CRITICAL
    motor_degradation_min_samples: int = C.MOTOR_DEGRADATION_MIN_SAMPLES
    motor_degradation_warning_percent: float = C.MOTOR_DEGRADATION_WARNING_PERCENT
    motor_degradation_critical_percent: float = C.MOTOR_DEGRADATION_CRITICAL_PERCENT


@dataclass(frozen=True)
class DumpConfig:
    """Everything the decode -> analyze pipeline needs, resolved once."""
    layouts: Dict[str, FrameLayout]
    thresholds: Thresholds = dataclass_field(default_factory=Thresholds)
    max_corrupt_ratio: float = C.MAX_CORRUPT_RATIO
    scan_frames: int = C.SIGNATURE_SCAN_FRAMES
    min_signature_score: float = C.MIN_SIGNATURE_SCORE
    max_dump_bytes: int = C.MAX_DUMP_BYTES
    merge_tolerance_sec: float = C.MERGE_TOLERANCE_SEC
    max_workers: int = C.DEFAULT_MAX_WORKERS
    histogram_widths: Dict[str, float] = dataclass_field(
        default_factory=lambda: dict(C.HISTOGRAM_WIDTHS))

    @property
    def min_frame_width(self) -> int:
        return min(layout.frame_width for layout in self.layouts.values())


def _read_yaml(yaml_path: str) -> dict:
    with open(yaml_path, "r") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{yaml_path}: top level must be a mapping")
    return data


def _overlay(base: dict, overrides: dict) -> dict:
    merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in base.items()}
    for section, value in overrides.items():
        if section not in SECTIONS:
            raise ValueError(f"Unknown config section: {section!r}")
        if not isinstance(value, dict):
            raise ValueError(f"Config section {section!r} must be a mapping")
        merged.setdefault(section, {}).update(value)
    return merged


def build_layout(name: str, spec: dict) -> FrameLayout:
    """Validate one `layouts:` entry and turn it into a FrameLayout."""
    if name not in LAYOUT_GROUPS:
        raise ValueError(f"Unknown layout {name!r}; expected one of {sorted(LAYOUT_GROUPS)}")
    try:
        signature = bytes.fromhex(str(spec["signature"]))
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Layout {name}: missing or invalid hex signature") from exc
    if not signature:
        raise ValueError(f"Layout {name}: signature must not be empty")

    byte_order = spec.get("byte_order", "little")
    checksum = spec.get("checksum", "sum16")
    if byte_order not in BYTE_ORDERS:
        raise ValueError(f"Layout {name}: byte_order must be one of {sorted(BYTE_ORDERS)}")
    if checksum not in CHECKSUMS:
        raise ValueError(f"Layout {name}: checksum must be one of {list(CHECKSUMS)}")

    allowed = set(LAYOUT_GROUPS[name]) | {"rtd"}
    field_specs = []
    seen = set()
    for entry in spec.get("fields") or []:
        fname = entry.get("name")
        ftype = entry.get("type")
        kind = entry.get("kind", "value")
        if fname not in allowed:
            raise ValueError(f"Layout {name}: unknown field {fname!r}")
        if fname in seen:
            raise ValueError(f"Layout {name}: duplicate field {fname!r}")
        if ftype not in STRUCT_CODES:
            raise ValueError(f"Layout {name}.{fname}: unknown type {ftype!r}")
        if kind not in FIELD_KINDS:
            raise ValueError(f"Layout {name}.{fname}: unknown kind {kind!r}")
        seen.add(fname)
        field_specs.append(FieldSpec(
            name=fname, type=ftype, kind=kind,
            scale=float(entry.get("scale", 1.0)),
            offset=float(entry.get("offset", 0.0)),
        ))

    missing = allowed - seen
    if missing:
        raise ValueError(f"Layout {name}: missing fields {sorted(missing)}")

    return FrameLayout(name=name, signature=signature, fields=tuple(field_specs),
                       byte_order=byte_order, checksum=checksum)


def _build_thresholds(overrides: dict) -> Thresholds:
    known = {f.name: f for f in fields(Thresholds)}
    values = {}
    for key, value in overrides.items():
        if key not in known:
            raise ValueError(f"Unknown threshold: {key!r}")
        if key.endswith("_rates"):
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                raise ValueError(f"Threshold {key!r} must be [warning_rate, critical_rate]")
            value = (float(value[0]), float(value[1]))
        values[key] = value
    return Thresholds(**values)


def build_config(data: dict) -> DumpConfig:
    layouts = {name: build_layout(name, spec)
               for name, spec in sorted((data.get("layouts") or {}).items())}
    if not layouts:
        raise ValueError("Config defines no frame layouts")
    signatures = [layout.signature for layout in layouts.values()]
    if len(set(signatures)) != len(signatures):
        raise ValueError("Frame layouts must use distinct signatures")

    decoder = data.get("decoder") or {}
    normalizer = data.get("normalizer") or {}
    orchestrator = data.get("orchestrator") or {}
    histograms = data.get("histograms")
    if histograms is None:
        histograms = dict(C.HISTOGRAM_WIDTHS)
    for qualified in histograms:
        group, _, fname = str(qualified).partition(".")
        if fname not in GROUP_FIELDS.get(group, ()):
            raise ValueError(f"Unknown histogram field: {qualified!r}")

    return DumpConfig(
        layouts=layouts,
        thresholds=_build_thresholds(data.get("thresholds") or {}),
        max_corrupt_ratio=float(decoder.get("max_corrupt_ratio", C.MAX_CORRUPT_RATIO)),
        scan_frames=int(decoder.get("scan_frames", C.SIGNATURE_SCAN_FRAMES)),
        min_signature_score=float(decoder.get("min_signature_score", C.MIN_SIGNATURE_SCORE)),
        max_dump_bytes=int(decoder.get("max_dump_bytes", C.MAX_DUMP_BYTES)),
        merge_tolerance_sec=float(normalizer.get("merge_tolerance_sec", C.MERGE_TOLERANCE_SEC)),
        max_workers=int(orchestrator.get("max_workers", C.DEFAULT_MAX_WORKERS)),
        histogram_widths={str(k): float(v) for k, v in histograms.items()},
    )


def load_config(yaml_path: Optional[str] = None) -> DumpConfig:
    """
    Load the default config, optionally overlaid with a deployment file.

    Raises FileNotFoundError when an explicit path does not exist and
    ValueError on any malformed section.
    """
    data = _read_yaml(DEFAULT_CONFIG_PATH)
    if yaml_path is not None:
        if not os.path.exists(yaml_path):
            raise FileNotFoundError(f"Config file not found: {yaml_path}")
        data = _overlay(data, _read_yaml(yaml_path))
    return build_config(data)


@functools.lru_cache(maxsize=1)
def default_config() -> DumpConfig:
    return load_config()
