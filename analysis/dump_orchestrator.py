"""
DumpOrchestrator -- asynchronous decode jobs with a polled lifecycle.

Each submitted upload becomes a MemoryDump that moves
pending → processing → {completed, error}. Work runs on a thread pool;
a job's buffers and intermediate results are private to its worker until
the single publish of its terminal state. Published outputs are immutable,
so queries hand them out without copying. Aggregate stats are computed on
first request and cached per dump.
"""

import itertools
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple, Union

from analysis.aggregator import aggregate
from analysis.pipeline import DumpOutput, run_pipeline
from core.config import DumpConfig, default_config
from core.constants import (
    DUMP_COMPLETED,
    DUMP_ERROR,
    DUMP_PENDING,
    DUMP_PROCESSING,
)
from core.models import AnalysisResult, DecodeStats, MemoryDump, SensorRecord, Stats
from decoder.errors import DecodeError
from decoder.frame_decoder import normalize_format_name


class DumpNotFoundError(KeyError):
    """No dump with this id (never submitted, or discarded)."""


class DumpNotReadyError(RuntimeError):
    """The dump has no queryable output: still running, or ended in error."""


class DumpOrchestrator:
    """Runs decode jobs concurrently and serves their immutable outputs."""

    def __init__(self, config: Optional[DumpConfig] = None,
                 max_workers: Optional[int] = None, verbose: bool = False):
        self.config = config or default_config()
        self.verbose = verbose
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or self.config.max_workers,
            thread_name_prefix="dump-decode")
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._dumps: Dict[str, MemoryDump] = {}
        self._outputs: Dict[str, DumpOutput] = {}
        self._stats_cache: Dict[str, Stats] = {}

    def __enter__(self) -> 'DumpOrchestrator':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Submission and worker
    # ------------------------------------------------------------------

    def submit(self, data: Union[bytes, Sequence[bytes]], filename: str,
               declared_format: Optional[str] = None) -> MemoryDump:
        """Accept an upload (one buffer or several files) and queue it."""
        buffers = [bytes(data)] if isinstance(data, (bytes, bytearray, memoryview)) \
            else [bytes(b) for b in data]
        size = sum(len(b) for b in buffers)
        if not buffers or size == 0:
            raise ValueError("Empty upload")
        if size > self.config.max_dump_bytes:
            raise ValueError(
                f"Upload of {size} bytes exceeds the {self.config.max_dump_bytes} byte limit")
        declared = normalize_format_name(declared_format)

        with self._lock:
            dump_id = f"dump-{next(self._ids):05d}"
            dump = MemoryDump(
                dump_id=dump_id,
                filename=filename,
                size_bytes=size,
                file_count=len(buffers),
                declared_format=declared,
                status=DUMP_PENDING,
                submitted_at=datetime.now(timezone.utc),
            )
            self._dumps[dump_id] = dump

        try:
            self._executor.submit(self._process, dump_id, buffers, declared)
        except RuntimeError:
            # Executor already shut down: no worker will ever pick this dump up
            with self._lock:
                self._dumps.pop(dump_id, None)
            raise
        return dump

    def _set_status(self, dump_id: str, **changes) -> bool:
        with self._lock:
            dump = self._dumps.get(dump_id)
            if dump is None:
                return False  # discarded while queued
            self._dumps[dump_id] = replace(dump, **changes)
            return True

    def _process(self, dump_id: str, buffers: List[bytes], declared: Optional[str]):
        if not self._set_status(dump_id, status=DUMP_PROCESSING):
            return
        try:
            output = run_pipeline(buffers, declared_format=declared,
                                  config=self.config, verbose=self.verbose)
        except DecodeError as exc:
            self._publish_error(dump_id, str(exc))
            return
        except Exception as exc:
            print(f"  [WARN] Unexpected failure while processing {dump_id}: {exc!r}")
            self._publish_error(dump_id, f"Internal error: {exc}")
            return

        with self._lock:
            dump = self._dumps.get(dump_id)
            if dump is None:
                return
            self._outputs[dump_id] = output
            self._dumps[dump_id] = replace(
                dump, status=DUMP_COMPLETED, detected_format=output.detected_format,
                processed_at=datetime.now(timezone.utc))

    def _publish_error(self, dump_id: str, message: str):
        if self.verbose:
            print(f"  [WARN] {dump_id} failed: {message}")
        self._set_status(dump_id, status=DUMP_ERROR, error_message=message,
                         processed_at=datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def status(self, dump_id: str) -> MemoryDump:
        with self._lock:
            dump = self._dumps.get(dump_id)
        if dump is None:
            raise DumpNotFoundError(dump_id)
        return dump

    def list_dumps(self) -> List[MemoryDump]:
        with self._lock:
            return [self._dumps[k] for k in sorted(self._dumps)]

    def _output(self, dump_id: str) -> DumpOutput:
        with self._lock:
            dump = self._dumps.get(dump_id)
            output = self._outputs.get(dump_id)
        if dump is None:
            raise DumpNotFoundError(dump_id)
        if output is None:
            raise DumpNotReadyError(f"{dump_id} is {dump.status}")
        return output

    def records(self, dump_id: str) -> Tuple[SensorRecord, ...]:
        return self._output(dump_id).records

    def analysis(self, dump_id: str) -> AnalysisResult:
        return self._output(dump_id).analysis

    def decode_stats(self, dump_id: str) -> Tuple[DecodeStats, ...]:
        return self._output(dump_id).decode_stats

    def stats(self, dump_id: str) -> Stats:
        """Read-through cache over the published records."""
        with self._lock:
            cached = self._stats_cache.get(dump_id)
        if cached is not None:
            return cached
        computed = aggregate(self._output(dump_id).records, self.config)
        with self._lock:
            if dump_id not in self._dumps:
                raise DumpNotFoundError(dump_id)
            return self._stats_cache.setdefault(dump_id, computed)

    def discard(self, dump_id: str):
        """Drop a dump and everything derived from it."""
        with self._lock:
            if self._dumps.pop(dump_id, None) is None:
                raise DumpNotFoundError(dump_id)
            self._outputs.pop(dump_id, None)
            self._stats_cache.pop(dump_id, None)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
