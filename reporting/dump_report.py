"""
Report export -- JSON report assembly plus per-record CSV.

Rendering (PDF, dashboards) happens downstream; this module only produces
the machine-readable artifacts it consumes.
"""

import csv
import json
from datetime import datetime, timezone
from typing import Sequence

from core.models import (
    AnalysisResult,
    DecodeStats,
    GROUP_FIELDS,
    MemoryDump,
    SensorRecord,
    Stats,
)

ANALYZER_VERSION = "0.1.0"

RECORD_COLUMNS = ["sequence", "rtd", "rtd_str", "source", "mdg_rtd"] + [
    f"{group}.{name}" for group, names in GROUP_FIELDS.items() for name in names
]


def build_report(dump: MemoryDump, records: Sequence[SensorRecord],
                 analysis: AnalysisResult, stats: Stats,
                 decode_stats: Sequence[DecodeStats]) -> dict:
    """JSON-serializable report for one completed dump."""
    return {
        "analyzer_version": ANALYZER_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "dump": dump.to_dict(),
        "decode": {
            "record_count": len(records),
            "files": [s.to_dict() for s in decode_stats],
        },
        "analysis": analysis.to_dict(),
        "stats": stats.to_dict(),
    }


def write_json_report(report: dict, output_path: str):
    with open(output_path, "w") as f:
        json.dump(report, f, indent=2, default=str)


def export_records_csv(records: Sequence[SensorRecord], output_path: str):
    """One row per record; absent reading groups become empty cells."""
    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=RECORD_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        for record in records:
            row = record.to_dict()
            writer.writerow({k: ("" if v is None else v) for k, v in row.items()})
