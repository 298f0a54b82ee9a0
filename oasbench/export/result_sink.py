import csv
import io
import json
import os
import sys
from dataclasses import asdict
from typing import Any, Dict, List, Optional, TextIO, Union

from oasbench.bench.types import BenchmarkSummary, TestSummary
from oasbench.exceptions import ConfigError

FORMATS = ("json", "csv")

TEST_COLUMNS = ["method", "path", "operation_id", "passed", "status_code", "response_time_ms", "error"]
BENCHMARK_COLUMNS = [
    "method", "path", "operation_id", "iterations", "concurrency",
    "min_ms", "max_ms", "avg_ms", "p50_ms", "p90_ms", "p99_ms",
    "requests_per_sec", "success_count", "error_count", "error_rate",
]

Summary = Union[TestSummary, BenchmarkSummary]


def parse_format(value: str) -> str:
    fmt = (value or "").strip().lower()
    if fmt not in FORMATS:
        raise ConfigError(f"invalid format '{value}': must be 'json' or 'csv'")
    return fmt


class ResultSink:
    def write(self, summary: Summary, fmt: str, path: str = "") -> None:
        """Write to ``path`` (parent dirs created) or to stdout when empty."""
        fmt = parse_format(fmt)
        if not path:
            self._render(summary, fmt, sys.stdout)
            return
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            self._render(summary, fmt, f)

    def write_from_plan(self, export_cfg: Optional[Dict[str, Any]], summary: Summary) -> List[str]:
        """Honour a run plan's export section; returns the files written."""
        export_cfg = export_cfg or {}
        written = []
        if export_cfg.get("console") is True:
            self.write(summary, "json")

        for fmt in FORMATS:
            section = export_cfg.get(fmt) or {}
            if isinstance(section, str):
                section = {"path": section}
            if section.get("enabled", True) and section.get("path"):
                self.write(summary, fmt, section["path"])
                written.append(section["path"])
        return written

    def render(self, summary: Summary, fmt: str) -> str:
        buf = io.StringIO()
        self._render(summary, parse_format(fmt), buf)
        return buf.getvalue()

    def _render(self, summary: Summary, fmt: str, out: TextIO) -> None:
        if fmt == "json":
            json.dump(to_dict(summary), out, indent=2)
            out.write("\n")
            return

        writer = csv.writer(out, lineterminator="\n")
        if isinstance(summary, BenchmarkSummary):
            writer.writerow(BENCHMARK_COLUMNS)
            for r in summary.results:
                writer.writerow([
                    r.method, r.path, r.operation_id, r.iterations, r.concurrency,
                    _ms(r.min_time), _ms(r.max_time), _ms(r.avg_time),
                    _ms(r.p50_time), _ms(r.p90_time), _ms(r.p99_time),
                    f"{r.requests_per_sec:.2f}", r.success_count, r.error_count, f"{r.error_rate:.2f}",
                ])
        else:
            writer.writerow(TEST_COLUMNS)
            for r in summary.results:
                writer.writerow([
                    r.method, r.path, r.operation_id, str(r.passed).lower(), r.status_code,
                    _ms(r.response_time), r.error,
                ])


def to_dict(summary: Summary) -> Dict[str, Any]:
    data = asdict(summary)
    # JSON object keys must be strings
    for result in data.get("results", []):
        if "status_codes" in result:
            result["status_codes"] = {str(k): v for k, v in result["status_codes"].items()}
    return data


def _ms(seconds: float) -> str:
    return f"{seconds * 1000:.2f}"
