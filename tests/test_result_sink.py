import csv
import io
import json

import pytest

from oasbench.bench.types import BenchmarkResult, BenchmarkSummary, TestResult, TestSummary
from oasbench.exceptions import ConfigError
from oasbench.export.result_sink import BENCHMARK_COLUMNS, TEST_COLUMNS, ResultSink, parse_format


@pytest.fixture
def bench_summary():
    result = BenchmarkResult(
        path="/pets",
        method="GET",
        operation_id="listPets",
        iterations=4,
        concurrency=2,
        min_time=0.001,
        max_time=0.004,
        avg_time=0.0025,
        p50_time=0.0025,
        p90_time=0.0037,
        p99_time=0.00397,
        requests_per_sec=123.456,
        success_count=3,
        error_count=1,
        error_rate=25.0,
        status_codes={200: 3},
        sample_errors=["request failed: ReadTimeout: timed out"],
    )
    summary = BenchmarkSummary(iterations=4, concurrency=2)
    summary.add_result(result)
    summary.finalize(0.5)
    return summary


@pytest.fixture
def tester_summary():
    summary = TestSummary()
    summary.add_result(TestResult(path="/pets", method="GET", passed=True, status_code=200, response_time=0.0123))
    summary.add_result(
        TestResult(path="/pets", method="POST", status_code=500, error="validation failed: status_code: nope")
    )
    return summary


def test_parse_format():
    assert parse_format(" JSON ") == "json"
    assert parse_format("csv") == "csv"
    with pytest.raises(ConfigError) as exc:
        parse_format("xml")
    assert str(exc.value) == "invalid format 'xml': must be 'json' or 'csv'"


def test_benchmark_json(bench_summary):
    data = json.loads(ResultSink().render(bench_summary, "json"))
    assert data["total_endpoints"] == 1
    assert data["total_requests"] == 4
    assert data["results"][0]["status_codes"] == {"200": 3}
    assert data["results"][0]["sample_errors"] == ["request failed: ReadTimeout: timed out"]
    assert data["overall_requests_per_sec"] == pytest.approx(8.0)


def test_benchmark_csv_reports_milliseconds(bench_summary):
    rows = list(csv.reader(io.StringIO(ResultSink().render(bench_summary, "csv"))))
    assert rows[0] == BENCHMARK_COLUMNS
    row = dict(zip(rows[0], rows[1]))
    assert row["min_ms"] == "1.00"
    assert row["p99_ms"] == "3.97"
    assert row["requests_per_sec"] == "123.46"
    assert row["error_rate"] == "25.00"
    assert len(rows) == 2


def test_tester_csv(tester_summary):
    rows = list(csv.reader(io.StringIO(ResultSink().render(tester_summary, "csv"))))
    assert rows[0] == TEST_COLUMNS
    assert rows[1][3:6] == ["true", "200", "12.30"]
    assert rows[2][3] == "false"
    assert rows[2][6] == "validation failed: status_code: nope"


def test_write_to_stdout(capsys, tester_summary):
    ResultSink().write(tester_summary, "json")
    data = json.loads(capsys.readouterr().out)
    assert (data["total_tests"], data["passed"], data["failed"]) == (2, 1, 1)


def test_write_creates_directories(tmp_path, bench_summary):
    target = tmp_path / "reports" / "nested" / "bench.csv"
    ResultSink().write(bench_summary, "csv", str(target))
    assert target.read_text(encoding="utf-8").startswith("method,path,operation_id")


def test_write_from_plan(tmp_path, capsys, bench_summary):
    json_path = tmp_path / "out" / "bench.json"
    csv_path = tmp_path / "out" / "bench.csv"
    export = {
        "console": True,
        "json": {"path": str(json_path)},
        "csv": str(csv_path),
    }
    written = ResultSink().write_from_plan(export, bench_summary)

    assert written == [str(json_path), str(csv_path)]
    assert json.loads(json_path.read_text(encoding="utf-8"))["total_endpoints"] == 1
    assert csv_path.exists()
    assert json.loads(capsys.readouterr().out)["total_requests"] == 4


def test_write_from_plan_respects_disabled(tmp_path, bench_summary):
    export = {"json": {"enabled": False, "path": str(tmp_path / "x.json")}}
    assert ResultSink().write_from_plan(export, bench_summary) == []
    assert ResultSink().write_from_plan(None, bench_summary) == []
