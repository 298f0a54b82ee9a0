import argparse
import asyncio
import logging
import signal
import sys
import time
from typing import List, Optional, Sequence

from oasbench.bench.cancel import CancelScope
from oasbench.bench.plan_runner import BenchmarkRunner
from oasbench.bench.tester import Tester
from oasbench.bench.types import BenchmarkEvent, BenchmarkSummary, EventKind, Operation, TestEvent, TestSummary
from oasbench.config import BenchmarkConfig, RunPlan, Settings, TesterConfig, load_run_plan
from oasbench.exceptions import ConfigError, OasBenchError
from oasbench.export.result_sink import ResultSink, parse_format
from oasbench.sut.factory import OpenAPIDocument, SpecLoader, filter_operations

logger = logging.getLogger("oasbench")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="oasbench",
        description="Test and benchmark REST APIs described by an OpenAPI document.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    shared = argparse.ArgumentParser(add_help=False)
    shared.add_argument("spec", help="OpenAPI document (YAML or JSON)")
    shared.add_argument("--server", default=None, help="Override server URL from the document")
    shared.add_argument("--filter", default=None, help="Filter endpoints by path or operation id substring")
    shared.add_argument("--tags", nargs="*", default=None, help="Filter by OpenAPI tags")
    shared.add_argument("-t", "--timeout", type=float, default=None, help="Request timeout in seconds")
    shared.add_argument("-o", "--output", default=None, help="Output format: json, csv")
    shared.add_argument("--output-file", default="", help="Write output to file (default: stdout)")
    shared.add_argument("--seed", type=int, default=None, help="Seed for synthetic values")
    shared.add_argument("-v", "--verbose", action="store_true", help="Show detailed output")

    sub.add_parser("test", parents=[shared], help="Send one request per endpoint and validate the response")

    bench = sub.add_parser("benchmark", parents=[shared], help="Measure latency and throughput per endpoint")
    bench.add_argument("--plan", default=None, help="YAML run plan (flags override it)")
    bench.add_argument("-n", "--iterations", type=int, default=None, help="Requests per endpoint (default 100)")
    bench.add_argument("-c", "--concurrency", type=int, default=None, help="Concurrent workers (default 1)")
    bench.add_argument("-w", "--warmup", type=int, default=None, help="Warm-up requests, discarded (default 5)")
    bench.add_argument("-r", "--rate", type=float, default=None, help="Max requests per second, 0 = unlimited")
    bench.add_argument("--no-keepalive", action="store_true", help="Disable HTTP connection reuse")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.output:
            parse_format(args.output)
        doc = SpecLoader().load(args.spec)
        if args.command == "test":
            return _run_test(args, settings, doc)
        return _run_benchmark(args, settings, doc)
    except OasBenchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


def _select(doc: OpenAPIDocument, server: str, text: str, tags: List[str]) -> List[Operation]:
    base_url = server or doc.server_urls()[0]
    return filter_operations(doc.operations(base_url), text, tags)


def _run_test(args, settings: Settings, doc: OpenAPIDocument) -> int:
    operations = _select(doc, args.server or settings.server_url, args.filter or "", args.tags or [])
    if not operations:
        print("No operations found matching the criteria")
        return 0

    config = TesterConfig(
        timeout=args.timeout if args.timeout is not None else settings.timeout,
        verify_tls=settings.verify_tls,
        seed=args.seed,
    )

    def on_event(event: TestEvent) -> None:
        prefix = f"[{event.index + 1}/{event.total}]"
        if event.kind == EventKind.TEST_STARTING:
            if args.verbose:
                print(f"{prefix} Running {event.operation.method} {event.operation.path}...")
            return
        result = event.result
        status = "PASS" if result.passed else "FAIL"
        print(f"{prefix} {status} {result.method} {result.path}")
        if args.verbose:
            if result.operation_id:
                print(f"    Operation ID: {result.operation_id}")
            print(f"    Status Code: {result.status_code}")
            print(f"    Response Time: {result.response_time * 1000:.2f}ms")
            if not result.passed and result.error:
                print(f"    Error: {result.error}")

    summary = asyncio.run(Tester(config).test_operations(operations, doc, on_event))

    if args.output:
        ResultSink().write(summary, args.output, args.output_file)
        if args.output_file:
            print(f"\nResults exported to: {args.output_file}")
            _print_test_summary(summary)
    else:
        _print_test_summary(summary)
    return 1 if summary.failed else 0


def _print_test_summary(summary: TestSummary) -> None:
    print("\n=== Test Summary ===")
    print(f"Total Tests: {summary.total_tests}")
    print(f"Passed: {summary.passed}")
    print(f"Failed: {summary.failed}")


def _benchmark_config(args, settings: Settings, plan: RunPlan) -> BenchmarkConfig:
    config = plan.benchmark
    if args.iterations is not None:
        config.iterations = args.iterations
    if args.concurrency is not None:
        config.concurrency = args.concurrency
    if args.warmup is not None:
        config.warmup_runs = args.warmup
    if args.rate is not None:
        config.rate_limit = args.rate
    if args.timeout is not None:
        config.timeout = args.timeout
    elif args.plan is None:
        config.timeout = settings.timeout
    if args.no_keepalive:
        config.disable_keep_alive = True
    if args.seed is not None:
        config.seed = args.seed
    config.verify_tls = settings.verify_tls
    return config.validate()


def _run_benchmark(args, settings: Settings, doc: OpenAPIDocument) -> int:
    plan = load_run_plan(args.plan) if args.plan else RunPlan()
    config = _benchmark_config(args, settings, plan)

    server = args.server or plan.server or settings.server_url
    operations = _select(doc, server, args.filter or plan.filter, args.tags or plan.tags)
    if not operations:
        print("No operations found matching the criteria")
        return 0

    print("\n=== Benchmark Configuration ===")
    print(f"Endpoints:   {len(operations)}")
    print(f"Iterations:  {config.iterations} per endpoint")
    print(f"Concurrency: {config.concurrency}")
    print(f"Warmup:      {config.warmup_runs} iterations")
    if config.rate_limit > 0:
        print(f"Rate Limit:  {config.rate_limit:.0f} req/sec")
    print(f"Timeout:     {config.timeout}s")
    print(f"Keep-Alive:  {not config.disable_keep_alive}")
    print()

    phase_started = [time.perf_counter()]

    def on_event(event: BenchmarkEvent) -> None:
        prefix = f"[{event.index + 1}/{event.total}]"
        op = event.operation
        if event.kind in (EventKind.WARMUP_STARTING, EventKind.BENCHMARK_STARTING):
            phase_started[0] = time.perf_counter()
            what = "Warming up" if event.kind == EventKind.WARMUP_STARTING else "Running benchmark"
            print(f"{prefix} {op.method} {op.path} - {what} ({event.max_iter} iterations)...")
        elif event.kind == EventKind.WARMUP_COMPLETED:
            print(f"{prefix} Warmup completed in {(time.perf_counter() - phase_started[0]) * 1000:.0f}ms")
        elif event.kind == EventKind.BENCHMARK_PROGRESS and args.verbose:
            print(
                f"{prefix} {event.progress}/{event.max_iter} (avg: {event.running_avg * 1000:.1f}ms, "
                f"{event.running_req_sec:.1f} req/s, {event.error_count} errors)"
            )
        elif event.kind == EventKind.BENCHMARK_COMPLETED:
            _print_result(prefix, event.result, args.verbose)

    scope = CancelScope()
    summary = asyncio.run(_benchmark_with_signals(BenchmarkRunner(config), operations, doc, on_event, scope))
    if scope.cancelled:
        print("\nBenchmark interrupted, partial results follow")

    if args.output:
        ResultSink().write(summary, args.output, args.output_file)
        if args.output_file:
            print(f"\nResults exported to: {args.output_file}")
            _print_benchmark_summary(summary, args.verbose)
    else:
        _print_benchmark_summary(summary, args.verbose)

    if plan.export:
        for path in ResultSink().write_from_plan(plan.export, summary):
            print(f"Results exported to: {path}")
    return 0


async def _benchmark_with_signals(runner, operations, doc, on_event, scope: CancelScope) -> BenchmarkSummary:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scope.cancel)
        except (NotImplementedError, RuntimeError):
            logger.debug("signal handlers unavailable for %s", sig)
    return await runner.benchmark_operations(operations, doc, on_event, scope)


def _print_result(prefix: str, result, verbose: bool) -> None:
    if result.error_rate == 0:
        status = "OK"
    elif result.error_rate < 5:
        status = "WARN"
    else:
        status = "FAIL"
    print(f"{prefix} {status} {result.method} {result.path}")
    print(
        f"    -> avg: {result.avg_time * 1000:.2f}ms | p99: {result.p99_time * 1000:.2f}ms | "
        f"{result.requests_per_sec:.1f} req/s | errors: {result.error_count} ({result.error_rate:.1f}%)"
    )
    if verbose:
        print(
            f"    Latency:  min={result.min_time * 1000:.2f}ms | p50={result.p50_time * 1000:.2f}ms | "
            f"p90={result.p90_time * 1000:.2f}ms | max={result.max_time * 1000:.2f}ms"
        )
        if result.status_codes:
            codes = ", ".join(f"{code}:{count}" for code, count in sorted(result.status_codes.items()))
            print(f"    Status codes: {codes}")
        for error in result.sample_errors:
            print(f"      - {error}")


def _print_benchmark_summary(summary: BenchmarkSummary, verbose: bool) -> None:
    print("\n=== Benchmark Summary ===")
    print(f"Total Endpoints:    {summary.total_endpoints}")
    print(f"Total Requests:     {summary.total_requests}")
    print(f"Total Duration:     {summary.total_duration:.3f}s")
    print(f"Overall Throughput: {summary.overall_requests_per_sec:.1f} req/sec")
    print("\nLatency Overview:")
    print(f"  Min: {summary.overall_min_time * 1000:.2f}ms")
    print(f"  Avg: {summary.overall_avg_time * 1000:.2f}ms")
    print(f"  Max: {summary.overall_max_time * 1000:.2f}ms")
    print()
    if summary.total_errors:
        print("Error Summary:")
        print(f"  Total Errors: {summary.total_errors}")
        print(f"  Error Rate:   {summary.overall_error_rate:.2f}%")
    else:
        print("Errors: 0")

    if verbose or len(summary.results) <= 10:
        print("\nPer-Endpoint Results:")
        print(f"{'METHOD':<8} {'PATH':<40} {'AVG(ms)':>10} {'P99(ms)':>10} {'REQ/S':>10} {'ERR%':>10}")
        print("-" * 90)
        for r in summary.results:
            path = r.path if len(r.path) <= 38 else r.path[:35] + "..."
            print(
                f"{r.method:<8} {path:<40} {r.avg_time * 1000:>10.2f} {r.p99_time * 1000:>10.2f} "
                f"{r.requests_per_sec:>10.1f} {r.error_rate:>10.1f}"
            )
