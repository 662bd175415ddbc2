"""
Core package: shared constants, utilities, data models and configuration.

This is the foundation layer with no local dependencies.
"""

from core.utils import fahrenheit_to_celsius, format_absolute_time, freeze, is_valid_reading, thaw
from core.models import (
    AnalysisResult,
    DecodeStats,
    FieldSpec,
    FrameLayout,
    Issue,
    MDGReading,
    MemoryDump,
    MPReading,
    PumpStats,
    RawFrame,
    SensorRecord,
    Stats,
)
from core.config import DumpConfig, Thresholds, default_config, load_config
