"""
Shared data models: dataclasses used across multiple packages.

All device-specific data structures live here to avoid circular imports
and ensure consistent serialization. Everything that leaves a decode job
(records, analysis results, dump snapshots) is frozen so that a published
output can be shared between readers without copying.
"""

import struct
from dataclasses import dataclass, field as dataclass_field, fields
from datetime import datetime
from typing import Dict, Mapping, Optional, Tuple, Union

from core.constants import DUMP_PENDING
from core.utils import format_absolute_time, freeze, thaw


# ---------------------------------------------------------------------------
# Frame layout models (physical wire format, injected from YAML)
# ---------------------------------------------------------------------------

STRUCT_CODES = {
    "uint8": "B", "int8": "b",
    "uint16": "H", "int16": "h",
    "uint32": "I", "int32": "i",
    "float32": "f",
}
BYTE_ORDERS = {"little": "<", "big": ">"}
CHECKSUMS = ("sum16", "none")
FIELD_KINDS = ("value", "count", "flag")


@dataclass(frozen=True)
class FieldSpec:
    """One field of a fixed-width frame, packed in declaration order."""
    name: str                 # target attribute on MPReading/MDGReading, or "rtd"
    type: str                 # key of STRUCT_CODES
    kind: str = "value"       # value -> raw*scale+offset, count -> int, flag -> bool
    scale: float = 1.0
    offset: float = 0.0


@dataclass(frozen=True)
class FrameLayout:
    """Physical layout of one device format: signature + fields + check word."""
    name: str                 # "MP" or "MDG"
    signature: bytes          # sync bytes at the start of every frame
    fields: Tuple[FieldSpec, ...]
    byte_order: str = "little"
    checksum: str = "sum16"   # "sum16" appends a uint16 byte-sum of the frame body

    @property
    def struct_format(self) -> str:
        codes = "".join(STRUCT_CODES[f.type] for f in self.fields)
        tail = "H" if self.checksum == "sum16" else ""
        return f"{BYTE_ORDERS[self.byte_order]}{len(self.signature)}s{codes}{tail}"

    @property
    def frame_width(self) -> int:
        return struct.calcsize(self.struct_format)


# ---------------------------------------------------------------------------
# Decoder models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RawFrame:
    """One undecoded-units frame as read from the buffer."""
    format: str                       # layout name
    index: int                        # frame slot number within the buffer
    offset: int                       # byte offset of the frame start
    values: Dict[str, Union[int, float]]


@dataclass(frozen=True)
class DecodeStats:
    """Accounting for one decoded buffer. Built once, at the end of the walk."""
    detected_format: str = ""         # MP, MDG, or MIXED
    container: str = "raw"            # raw, lz4, bz2
    payload_bytes: int = 0
    valid_frames: int = 0
    corrupt_frames: int = 0
    truncated_bytes: int = 0
    frames_by_format: Mapping[str, int] = dataclass_field(default_factory=dict)
    corrupt_offsets: Tuple[int, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "frames_by_format", freeze(self.frames_by_format))
        object.__setattr__(self, "corrupt_offsets", tuple(self.corrupt_offsets))

    @property
    def corruption_ratio(self) -> float:
        total = self.valid_frames + self.corrupt_frames
        if total == 0:
            return 0.0
        return self.corrupt_frames / total

    def to_dict(self) -> dict:
        return {
            "detected_format": self.detected_format,
            "container": self.container,
            "payload_bytes": self.payload_bytes,
            "valid_frames": self.valid_frames,
            "corrupt_frames": self.corrupt_frames,
            "corruption_ratio": round(self.corruption_ratio, 6),
            "truncated_bytes": self.truncated_bytes,
            "frames_by_format": dict(sorted(self.frames_by_format.items())),
            "corrupt_offsets": list(self.corrupt_offsets),
        }


# ---------------------------------------------------------------------------
# Normalized record models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MPReading:
    """Motor/pump controller sample, physical units."""
    temperature: float                # deg F
    reset_counter: int
    battery_current: float            # A
    battery_voltage: float            # V
    flow_on: bool
    vibration_max_x: float            # g
    vibration_max_y: float
    vibration_max_z: float
    vibration_threshold: float
    motor_current_min: float          # A
    motor_current_avg: float
    motor_current_max: float
    hall_pulses: int
    actuation_time: float             # s


@dataclass(frozen=True)
class MDGReading:
    """Multi-sensor downhole gauge sample, physical units."""
    accel_x: float                    # g
    accel_y: float
    accel_z: float
    shock_x: float                    # g, peak over the sample window
    shock_y: float
    shock_z: float
    shock_count_axial_50g: int
    shock_count_axial_100g: int
    shock_count_lateral_50g: int
    shock_count_lateral_100g: int
    rpm_min: float
    rpm_avg: float
    rpm_max: float
    rail_3v3_analog_di: float         # V
    rail_5v_digital: float
    rail_3v3_digital: float
    rail_1v9_digital: float
    rail_1v5_digital: float
    rail_1v8_analog: float
    rail_3v3_analog: float
    battery_voltage: float
    current_5v_digital: float         # A
    current_3v3_digital: float
    battery_current: float
    gamma: float                      # counts per second
    accel_stability_x: float
    accel_stability_y: float
    accel_stability_z: float
    accel_stability_zh: float
    survey_total_gravity: float
    survey_total_magnetic: float
    survey_dip_angle: float           # degrees
    survey_inclination: float
    survey_corrected_inclination: float
    survey_azimuth: float
    survey_corrected_azimuth: float

    @property
    def peak_shock(self) -> float:
        return max(abs(self.shock_x), abs(self.shock_y), abs(self.shock_z))


MP_FIELDS = tuple(f.name for f in fields(MPReading))
MDG_FIELDS = tuple(f.name for f in fields(MDGReading))
RAIL_FIELDS = tuple(name for name in MDG_FIELDS if name.startswith("rail_"))
GROUP_FIELDS = {"mp": MP_FIELDS, "mdg": MDG_FIELDS + ("peak_shock",)}


@dataclass(frozen=True)
class SensorRecord:
    """
    One decoded timestep.

    `mp` / `mdg` are None when the dump carried no such group for this
    timestep; a present group with zero readings is a real measurement.
    """
    sequence: int
    rtd: float                        # device-clock epoch seconds
    mp: Optional[MPReading] = None
    mdg: Optional[MDGReading] = None
    mdg_rtd: Optional[float] = None   # matched MDG sample time on merged records

    @property
    def source(self) -> str:
        if self.mp is not None and self.mdg is not None:
            return "MERGED"
        return "MP" if self.mp is not None else "MDG"

    def get(self, qualified_name: str):
        """Look up "mp.<field>" / "mdg.<field>"; None when the group is absent."""
        group, _, name = qualified_name.partition(".")
        if group not in GROUP_FIELDS or name not in GROUP_FIELDS[group]:
            raise KeyError(qualified_name)
        reading = getattr(self, group)
        if reading is None:
            return None
        return getattr(reading, name)

    def to_dict(self) -> dict:
        d = {
            "sequence": self.sequence,
            "rtd": self.rtd,
            "rtd_str": format_absolute_time(self.rtd),
            "source": self.source,
            "mdg_rtd": self.mdg_rtd,
        }
        for group, names in GROUP_FIELDS.items():
            for name in names:
                d[f"{group}.{name}"] = self.get(f"{group}.{name}")
        return d


# ---------------------------------------------------------------------------
# Analysis models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Issue:
    """One classified anomaly category with its occurrence accounting."""
    category: str                     # "COMMUNICATION_ERRORS", "TEMPERATURE_SPIKES", ...
    severity: str                     # CRITICAL/WARNING/INFO
    description: str
    explanation: str
    count: int
    first_rtd: float
    last_rtd: float
    details: Mapping[str, object] = dataclass_field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "details", freeze(self.details))

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "severity": self.severity,
            "description": self.description,
            "explanation": self.explanation,
            "count": self.count,
            "first_rtd": self.first_rtd,
            "last_rtd": self.last_rtd,
            "first_time_str": format_absolute_time(self.first_rtd),
            "last_time_str": format_absolute_time(self.last_rtd),
            "details": thaw(self.details),
        }


@dataclass(frozen=True)
class AnalysisResult:
    """Health verdict for one record sequence. Immutable once produced."""
    overall_status: str               # CRITICAL/WARNING/OPERATIONAL
    critical_count: int
    warning_count: int
    info_count: int
    issues: Tuple[Issue, ...]
    metrics: Mapping[str, object]
    record_count: int
    generated_at: datetime

    def __post_init__(self):
        object.__setattr__(self, "metrics", freeze(self.metrics))

    def to_dict(self, include_generated_at: bool = True) -> dict:
        d = {
            "overall_status": self.overall_status,
            "critical_count": self.critical_count,
            "warning_count": self.warning_count,
            "info_count": self.info_count,
            "record_count": self.record_count,
            "issues": [i.to_dict() for i in self.issues],
            "metrics": thaw(self.metrics),
        }
        if include_generated_at:
            d["generated_at"] = self.generated_at.isoformat()
        return d


# ---------------------------------------------------------------------------
# Aggregate models
# ---------------------------------------------------------------------------

HistogramBin = Tuple[float, float, int]   # (bin_start, bin_end, count)


@dataclass(frozen=True)
class PumpStats:
    """Pump runtime over MP-bearing records. Averages are None with no on-records."""
    total_records: int
    runtime_records: int
    efficiency_percent: Optional[float]
    avg_motor_current: Optional[float]
    avg_actuation_time: Optional[float]
    max_temperature: Optional[float]

    def to_dict(self) -> dict:
        return {
            "total_records": self.total_records,
            "runtime_records": self.runtime_records,
            "efficiency_percent": self.efficiency_percent,
            "avg_motor_current": self.avg_motor_current,
            "avg_actuation_time": self.avg_actuation_time,
            "max_temperature": self.max_temperature,
        }


@dataclass(frozen=True)
class Stats:
    """Report-facing aggregates for one record sequence."""
    record_count: int
    pump: PumpStats
    histograms: Mapping[str, Tuple[HistogramBin, ...]]
    high_shock_count: int
    high_shock_threshold: float
    field_ranges: Mapping[str, Mapping[str, object]]
    device_summary: Mapping[str, object]

    def __post_init__(self):
        for name in ("histograms", "field_ranges", "device_summary"):
            object.__setattr__(self, name, freeze(getattr(self, name)))

    def to_dict(self) -> dict:
        return {
            "record_count": self.record_count,
            "pump": self.pump.to_dict(),
            "histograms": {
                name: [{"bin_start": s, "bin_end": e, "count": c} for s, e, c in bins]
                for name, bins in self.histograms.items()
            },
            "high_shock_count": self.high_shock_count,
            "high_shock_threshold": self.high_shock_threshold,
            "field_ranges": thaw(self.field_ranges),
            "device_summary": thaw(self.device_summary),
        }


# ---------------------------------------------------------------------------
# Dump lifecycle model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MemoryDump:
    """Status snapshot of one submitted artifact; replaced on every transition."""
    dump_id: str
    filename: str
    size_bytes: int
    file_count: int = 1
    declared_format: Optional[str] = None
    detected_format: Optional[str] = None
    status: str = DUMP_PENDING
    submitted_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "dump_id": self.dump_id,
            "filename": self.filename,
            "size_bytes": self.size_bytes,
            "file_count": self.file_count,
            "declared_format": self.declared_format,
            "detected_format": self.detected_format,
            "status": self.status,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "error_message": self.error_message,
        }
