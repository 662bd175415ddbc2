"""
Pipeline orchestrator -- wires the decode stages together for one upload.

decode (per file) → normalize (merge streams) → analyze
"""

import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from analysis.health_analyzer import analyze
from core.config import DumpConfig, default_config
from core.constants import FORMAT_MIXED
from core.models import AnalysisResult, DecodeStats, RawFrame, SensorRecord
from decoder.errors import UnrecognizedFormatError
from decoder.frame_decoder import decode, normalize_format_name
from decoder.normalizer import normalize


@dataclass(frozen=True)
class DumpOutput:
    """Everything a completed dump publishes. Shared read-only after publish."""
    detected_format: str
    records: Tuple[SensorRecord, ...]
    analysis: AnalysisResult
    decode_stats: Tuple[DecodeStats, ...]


def combined_format(stats: Sequence[DecodeStats]) -> str:
    formats = {s.detected_format for s in stats}
    if len(formats) == 1:
        return formats.pop()
    return FORMAT_MIXED


def run_pipeline(
    buffers: Sequence[bytes],
    *,
    declared_format: Optional[str] = None,
    config: Optional[DumpConfig] = None,
    verbose: bool = False,
) -> DumpOutput:
    """
    Decode, normalize and analyze the files of one upload.

    Args:
        buffers: One or more dump files belonging to the same run
        declared_format: Caller's format claim, checked against the content
        config: Layouts and thresholds (defaults to core/default_config.yaml)
        verbose: Print progress details

    Raises:
        DecodeError (any subclass) when a buffer cannot be decoded
    """
    config = config or default_config()
    declared = normalize_format_name(declared_format)

    def log(msg: str):
        if verbose:
            print(msg)

    t_start = time.time()

    # ======================================================================
    # Stage 1: Frame decoding
    # ======================================================================
    log(f"\n--- Stage 1: Frame Decoding ({len(buffers)} file(s)) ---")
    frames: List[RawFrame] = []
    all_stats: List[DecodeStats] = []
    for i, buf in enumerate(buffers):
        # A single file must match the declaration on its own
        file_frames, stats = decode(buf, declared if len(buffers) == 1 else None, config)
        frames.extend(file_frames)
        all_stats.append(stats)
        log(f"  [INFO] file {i}: {stats.detected_format} ({stats.container}), "
            f"{stats.valid_frames} frames, {stats.corrupt_frames} corrupt, "
            f"{stats.truncated_bytes} trailing bytes dropped")
        if stats.corrupt_frames:
            log(f"  [WARN] file {i}: corruption ratio {stats.corruption_ratio:.1%}")

    detected = combined_format(all_stats)
    if declared is not None and declared != detected:
        raise UnrecognizedFormatError(
            f"Declared format {declared} does not match upload content ({detected})")

    # ======================================================================
    # Stage 2: Normalization
    # ======================================================================
    log(f"\n--- Stage 2: Normalization ---")
    t0 = time.time()
    records = normalize(frames, detected, config)
    merged = sum(1 for r in records if r.source == "MERGED")
    log(f"  {len(records)} records ({merged} merged) in {time.time()-t0:.2f}s")

    # ======================================================================
    # Stage 3: Health analysis
    # ======================================================================
    log(f"\n--- Stage 3: Health Analysis ---")
    result = analyze(records, config.thresholds, verbose=verbose)
    log(f"  Status: {result.overall_status} "
        f"(C:{result.critical_count} W:{result.warning_count} I:{result.info_count})")
    log(f"\n  Pipeline finished in {time.time()-t_start:.2f}s")

    return DumpOutput(
        detected_format=detected,
        records=tuple(records),
        analysis=result,
        decode_stats=tuple(all_stats),
    )
