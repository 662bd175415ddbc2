"""
CLI entry point for the MP/MDG memory-dump analyzer.

All files given on the command line are treated as one upload (for example
an MP dump and an MDG dump from the same run, merged by timestamp).

Usage:
  python -m cli.analyze tool_mp.bin
  python -m cli.analyze tool_mp.bin tool_mdg.bin --format MIXED --csv records.csv
  python -m cli.analyze dump.bin --config site.yaml --report-path report.json -v
"""

import argparse
import os
import sys

from analysis.dump_orchestrator import DumpOrchestrator
from core.config import load_config
from core.constants import DUMP_COMPLETED, KNOWN_FORMATS
from core.utils import format_absolute_time
from reporting.dump_report import build_report, export_records_csv, write_json_report


def _print_summary(orchestrator: DumpOrchestrator, dump_id: str):
    analysis = orchestrator.analysis(dump_id)
    stats = orchestrator.stats(dump_id)
    pump = stats.pump

    print(f"\n{'='*70}")
    print(f"HEALTH: {analysis.overall_status}")
    print(f"{'='*70}")
    print(f"  Records: {analysis.record_count} "
          f"(MP: {analysis.metrics['mp_record_count']}, "
          f"MDG: {analysis.metrics['mdg_record_count']}, "
          f"merged: {analysis.metrics['merged_record_count']})")
    print(f"  Issues: C:{analysis.critical_count} W:{analysis.warning_count} "
          f"I:{analysis.info_count}")
    for issue in analysis.issues:
        print(f"    [{issue.severity}] {issue.category}: {issue.description} "
              f"x{issue.count} ({format_absolute_time(issue.first_rtd)} to "
              f"{format_absolute_time(issue.last_rtd)})")

    print(f"\n  Pump runtime: {pump.runtime_records}/{pump.total_records} records"
          + (f" ({pump.efficiency_percent:.2f}%)" if pump.efficiency_percent is not None else ""))
    if pump.max_temperature is not None:
        print(f"  Max temperature while pumping: {pump.max_temperature:.1f} °F")
    print(f"  High shock events (>{stats.high_shock_threshold} g): {stats.high_shock_count}")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Decode MP/MDG memory dumps and run health diagnostics.")
    parser.add_argument(
        "dumps",
        nargs="+",
        help="Dump file(s) belonging to one upload",
    )
    parser.add_argument(
        "--format",
        choices=list(KNOWN_FORMATS),
        default=None,
        help="Declared format; validated against the file content",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="YAML file overriding layouts / thresholds (see core/default_config.yaml)",
    )
    parser.add_argument(
        "--report-path",
        default=None,
        help="Output path for the JSON report (default: <first dump>.report.json)",
    )
    parser.add_argument(
        "--csv",
        default=None,
        help="Path for per-record CSV export",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Decode worker threads (default from config)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Print stage progress and every issue as it is found",
    )
    args = parser.parse_args(argv)

    for path in args.dumps:
        if not os.path.isfile(path):
            print(f"Dump file does not exist: {path}")
            return 1

    config = load_config(args.config)
    buffers = []
    for path in args.dumps:
        with open(path, "rb") as f:
            buffers.append(f.read())
    filename = ", ".join(os.path.basename(p) for p in args.dumps)

    with DumpOrchestrator(config, max_workers=args.workers,
                          verbose=args.verbose) as orchestrator:
        submitted = orchestrator.submit(buffers, filename, declared_format=args.format)
        print(f"Submitted {submitted.dump_id}: {filename} ({submitted.size_bytes} bytes)")
        orchestrator.shutdown(wait=True)

        dump = orchestrator.status(submitted.dump_id)
        if dump.status != DUMP_COMPLETED:
            print(f"\n[ERROR] {dump.dump_id} ended in '{dump.status}': {dump.error_message}")
            return 1

        print(f"  Detected format: {dump.detected_format}")
        for i, s in enumerate(orchestrator.decode_stats(dump.dump_id)):
            print(f"  File {i}: {s.valid_frames} frames, {s.corrupt_frames} corrupt, "
                  f"{s.truncated_bytes} trailing bytes dropped ({s.container})")
        _print_summary(orchestrator, dump.dump_id)

        records = orchestrator.records(dump.dump_id)
        report = build_report(dump, records, orchestrator.analysis(dump.dump_id),
                              orchestrator.stats(dump.dump_id),
                              orchestrator.decode_stats(dump.dump_id))
        report_path = args.report_path or f"{os.path.splitext(args.dumps[0])[0]}.report.json"
        write_json_report(report, report_path)
        print(f"\nReport saved to: {report_path}")

        if args.csv:
            export_records_csv(records, args.csv)
            print(f"Records CSV saved to: {args.csv}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
