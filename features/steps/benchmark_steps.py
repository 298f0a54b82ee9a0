import asyncio
import re
from pathlib import Path

from behave import given, then, when

from oasbench.bench.plan_runner import BenchmarkRunner
from oasbench.bench.types import EventKind
from oasbench.config import BenchmarkConfig
from oasbench.sut.factory import SpecLoader

ROOT = Path(__file__).resolve().parents[2]

_BOOL_TRUE = {"true", "yes", "on"}
_BOOL_FALSE = {"false", "no", "off"}

# table key -> BenchmarkConfig field
_CONFIG_KEYS = {
    "iterations": "iterations",
    "concurrency": "concurrency",
    "warmup": "warmup_runs",
    "rate_limit": "rate_limit",
    "timeout": "timeout",
    "seed": "seed",
}


def _coerce_scalar(v: str):
    s = str(v).strip()
    low = s.lower()

    if low in _BOOL_TRUE:
        return True
    if low in _BOOL_FALSE:
        return False

    if re.fullmatch(r"[+-]?\d+", s):
        return int(s)

    if re.fullmatch(r"[+-]?\d+\.\d+", s):
        return float(s)

    return s


def _table_to_dict(table) -> dict:
    out = {}
    for row in table:
        key = row[0].strip()
        val = row[1].strip()
        out[key] = _coerce_scalar(val)
    return out


@given('the OpenAPI document "{path}"')
def step_load_document(context, path):
    p = Path(path)
    context.document = SpecLoader().load(p if p.is_absolute() else ROOT / p)


@given('the service answers {status:d} with body "{body}"')
def step_stub_answer(context, status, body):
    context.stub.status = status
    context.stub.body = body.encode("utf-8")


@when('I benchmark "{operation_id}" with:')
def step_benchmark(context, operation_id):
    config = BenchmarkConfig(timeout=context.timeout, verify_tls=context.verify_tls)
    for key, value in _table_to_dict(context.table).items():
        if key not in _CONFIG_KEYS:
            raise AssertionError(f"Unknown benchmark setting: {key}")
        setattr(config, _CONFIG_KEYS[key], value)

    ops = [op for op in context.document.operations(context.base_url) if op.operation_id == operation_id]
    if not ops:
        raise AssertionError(f"No operation with id {operation_id!r}")

    runner = BenchmarkRunner(config)
    summary = asyncio.run(runner.benchmark_operations(ops, context.document, context.events.append))
    context.result = summary.results[0]


@then("{ok:d} requests succeed and {failed:d} fail")
def step_counts(context, ok, failed):
    r = context.result
    assert (r.success_count, r.error_count) == (ok, failed), f"got {r.success_count} ok / {r.error_count} failed: {r.sample_errors}"


@then("the error rate is {rate:f}%")
def step_error_rate(context, rate):
    assert context.result.error_rate == rate, f"error rate {context.result.error_rate}"


@then("status code {code:d} was seen {count:d} times")
def step_status_codes(context, code, count):
    assert context.result.status_codes.get(code) == count, f"status codes {context.result.status_codes}"


@then("the run emitted warm-up events before the measured phase")
def step_event_order(context):
    kinds = [e.kind for e in context.events]
    assert kinds[0] == EventKind.WARMUP_STARTING, kinds
    assert kinds.index(EventKind.WARMUP_COMPLETED) < kinds.index(EventKind.BENCHMARK_STARTING), kinds
    assert kinds[-1] == EventKind.BENCHMARK_COMPLETED, kinds
