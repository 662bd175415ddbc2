"""Reporting package -- JSON report and CSV record export."""
from reporting.dump_report import build_report, export_records_csv, write_json_report
