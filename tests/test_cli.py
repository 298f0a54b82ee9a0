import json

import pytest

from oasbench.cli import build_parser, main

from conftest import write_spec

OK_OBJECT = {"200": {"description": "ok", "content": {"application/json": {"schema": {"type": "object"}}}}}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("OASBENCH_SERVER_URL", "HTTP_TIMEOUT_SECONDS", "HTTP_VERIFY_TLS", "OASBENCH_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)


def test_parser_defaults():
    args = build_parser().parse_args(["benchmark", "api.yaml"])
    assert args.command == "benchmark"
    assert args.iterations is None
    assert args.no_keepalive is False
    assert build_parser().parse_args(["test", "api.yaml", "--tags", "a", "b"]).tags == ["a", "b"]


def test_test_command_passes(tmp_path, live_server, capsys):
    spec = write_spec(tmp_path / "api.json", OK_OBJECT)
    assert main(["test", str(spec), "--server", live_server]) == 0

    out = capsys.readouterr().out
    assert "[1/1] PASS GET /health" in out
    assert "Passed: 1" in out


def test_test_command_fails_on_contract_mismatch(tmp_path, live_server, capsys):
    spec = write_spec(tmp_path / "api.json", {"201": {"description": "created"}})
    assert main(["test", str(spec), "--server", live_server, "-v"]) == 1

    out = capsys.readouterr().out
    assert "FAIL GET /health" in out
    assert "unexpected status code 200" in out


def test_test_command_exports_json(tmp_path, live_server):
    spec = write_spec(tmp_path / "api.json", OK_OBJECT)
    out_file = tmp_path / "reports" / "test.json"
    assert main(["test", str(spec), "--server", live_server, "-o", "json", "--output-file", str(out_file)]) == 0
    data = json.loads(out_file.read_text(encoding="utf-8"))
    assert data["results"][0]["passed"] is True


def test_benchmark_command(tmp_path, live_server, capsys):
    spec = write_spec(tmp_path / "api.json", OK_OBJECT)
    out_file = tmp_path / "bench.json"
    code = main(
        [
            "benchmark", str(spec), "--server", live_server,
            "-n", "6", "-c", "2", "-w", "1", "-o", "json", "--output-file", str(out_file),
        ]
    )
    assert code == 0

    data = json.loads(out_file.read_text(encoding="utf-8"))
    result = data["results"][0]
    assert result["success_count"] == 6
    assert result["status_codes"] == {"200": 6}
    assert data["total_requests"] == 6

    out = capsys.readouterr().out
    assert "=== Benchmark Configuration ===" in out
    assert "OK GET /health" in out
    assert "Total Requests:     6" in out


def test_benchmark_with_plan(tmp_path, live_server):
    spec = write_spec(tmp_path / "api.json", OK_OBJECT)
    csv_path = tmp_path / "plan-out" / "bench.csv"
    plan = tmp_path / "plan.yaml"
    plan.write_text(
        f"run:\n  iterations: 4\n  warmup: 0\n"
        f"targets:\n  server: {live_server}\n"
        f"export:\n  csv:\n    path: {csv_path}\n",
        encoding="utf-8",
    )
    assert main(["benchmark", str(spec), "--plan", str(plan)]) == 0

    lines = csv_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert lines[1].startswith("GET,/health,health,4,1,")


def test_no_matching_operations(tmp_path, capsys):
    spec = write_spec(tmp_path / "api.json", OK_OBJECT)
    assert main(["test", str(spec), "--filter", "/nothing"]) == 0
    assert "No operations found" in capsys.readouterr().out


@pytest.mark.parametrize(
    "argv",
    [
        ["test", "{missing}"],
        ["test", "{spec}", "-o", "xml"],
        ["benchmark", "{spec}", "-n", "0"],
    ],
)
def test_usage_errors_exit_2(tmp_path, capsys, argv):
    spec = write_spec(tmp_path / "api.json", OK_OBJECT)
    argv = [a.format(spec=spec, missing=tmp_path / "missing.yaml") for a in argv]
    assert main(argv) == 2
    assert capsys.readouterr().err.startswith("Error:")
