from __future__ import annotations

import asyncio
import logging
import math
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Optional, Sequence, Tuple

import httpx

from oasbench.bench.cancel import CancelScope
from oasbench.bench.data_gen import DataGenerator
from oasbench.bench.metrics import Metrics
from oasbench.bench.rate_limit import TokenBucketRateLimiter
from oasbench.bench.tester import TRANSPORT_ERRORS, describe_error
from oasbench.bench.types import (
    BenchmarkEvent,
    BenchmarkResult,
    BenchmarkSummary,
    EventKind,
    Operation,
    OperationDetails,
    RequestResult,
)
from oasbench.config import BenchmarkConfig
from oasbench.exceptions import OasBenchError, RunCancelled
from oasbench.sut.factory import MetadataProvider
from oasbench.sut.http import build_client, send
from oasbench.sut.request_builder import RequestBuilder

logger = logging.getLogger(__name__)

OnBenchmarkEvent = Callable[[BenchmarkEvent], None]

PROGRESS_STEPS = 20      # ~5% cadence in the measured phase
WARMUP_PROGRESS_STEPS = 5


@dataclass
class _Progress:
    started: float
    completed: int = 0
    total_duration: float = 0.0
    errors: int = 0

    def record(self, res: RequestResult) -> Tuple[int, float, int]:
        # no await between read and write: atomic on the event loop
        self.completed += 1
        self.total_duration += res.duration
        if res.error:
            self.errors += 1
        return self.completed, self.total_duration, self.errors


class BenchmarkRunner:
    """
    Drives the benchmark, one operation at a time, in input order:

      1) fetch OperationDetails and build one request up front; a failure here
         turns the whole operation into `iterations` errors without any HTTP call
      2) warm-up: `warmup_runs` sequential requests, not measured
      3) measured phase: `concurrency` workers drain `iterations` numbered jobs,
         paced by one run-wide token bucket when a rate limit is set
      4) statistics over the per-job slots, appended to the run summary

    Events reach ``on_event`` synchronously. Cancelling the scope stops new
    jobs, aborts in-flight requests and ends the run after the current
    operation, whose partial result is still reported.
    """

    def __init__(
        self,
        config: Optional[BenchmarkConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        request_builder: Optional[RequestBuilder] = None,
        metrics: Optional[Metrics] = None,
    ) -> None:
        self.config = (config or BenchmarkConfig()).validate()
        self.client = client
        self.request_builder = request_builder or RequestBuilder(DataGenerator(seed=self.config.seed))
        self.metrics = metrics or Metrics()

    async def benchmark_operations(
        self,
        operations: Sequence[Operation],
        provider: MetadataProvider,
        on_event: Optional[OnBenchmarkEvent] = None,
        scope: Optional[CancelScope] = None,
    ) -> BenchmarkSummary:
        scope = scope or CancelScope()
        limiter = self._limiter()
        summary = BenchmarkSummary(
            iterations=self.config.iterations,
            concurrency=self.config.concurrency,
            warmup_runs=self.config.warmup_runs,
        )

        started = time.perf_counter()
        async with self._session() as client:
            for i, op in enumerate(operations):
                if scope.cancelled:
                    break
                result = await self._benchmark(client, limiter, scope, op, provider, on_event, i, len(operations))
                if result is not None:
                    summary.add_result(result)
        summary.finalize(time.perf_counter() - started)

        logger.info(
            "benchmark finished: %d endpoints, %d requests, %d errors in %.2fs",
            summary.total_endpoints, summary.total_requests, summary.total_errors, summary.total_duration,
        )
        return summary

    async def benchmark_operation(
        self,
        op: Operation,
        provider: MetadataProvider,
        on_event: Optional[OnBenchmarkEvent] = None,
        index: int = 0,
        total: int = 1,
        scope: Optional[CancelScope] = None,
    ) -> Optional[BenchmarkResult]:
        """Benchmark a single operation. None when cancelled before measuring."""
        async with self._session() as client:
            return await self._benchmark(client, self._limiter(), scope or CancelScope(), op, provider, on_event, index, total)

    async def _benchmark(
        self,
        client: httpx.AsyncClient,
        limiter: Optional[TokenBucketRateLimiter],
        scope: CancelScope,
        op: Operation,
        provider: MetadataProvider,
        on_event: Optional[OnBenchmarkEvent],
        index: int,
        total: int,
    ) -> Optional[BenchmarkResult]:
        def emit(kind: EventKind, **kwargs) -> None:
            if on_event:
                on_event(BenchmarkEvent(kind=kind, operation=op, index=index, total=total, **kwargs))

        try:
            details = provider.operation_details(op.path, op.method)
        except OasBenchError as e:
            result = self._failed_result(op, f"failed to get operation details: {e}")
            emit(EventKind.BENCHMARK_COMPLETED, result=result)
            return result
        try:
            self.request_builder.build(details, op.server_url)
        except OasBenchError as e:
            result = self._failed_result(op, f"failed to build request: {e}")
            emit(EventKind.BENCHMARK_COMPLETED, result=result)
            return result

        if not await self._warmup(client, scope, op, details, emit):
            logger.info("%s %s: cancelled during warm-up", op.method, op.path)
            return None

        emit(EventKind.BENCHMARK_STARTING, max_iter=self.config.iterations)
        started = time.perf_counter()
        raw = await self._measure(client, limiter, scope, op, details, emit)
        elapsed = time.perf_counter() - started

        result = self._new_result(op)
        if len(raw) < self.config.iterations:
            # cancelled mid-phase: report what was attempted
            result.iterations = len(raw)
            result.cancelled = True
        self.metrics.aggregate(result, raw, elapsed)

        emit(EventKind.BENCHMARK_COMPLETED, result=result)
        return result

    async def _warmup(self, client, scope: CancelScope, op: Operation, details: OperationDetails, emit) -> bool:
        runs = self.config.warmup_runs
        if runs <= 0:
            return not scope.cancelled

        emit(EventKind.WARMUP_STARTING, max_iter=runs)
        step = max(1, runs // WARMUP_PROGRESS_STEPS)
        for i in range(runs):
            if scope.cancelled:
                return False
            try:
                await self._execute(client, scope, op, details)
            except RunCancelled:
                return False
            if (i + 1) % step == 0:
                emit(EventKind.WARMUP_PROGRESS, progress=i + 1, max_iter=runs)
        emit(EventKind.WARMUP_COMPLETED)
        return True

    async def _measure(
        self,
        client: httpx.AsyncClient,
        limiter: Optional[TokenBucketRateLimiter],
        scope: CancelScope,
        op: Operation,
        details: OperationDetails,
        emit,
    ) -> List[RequestResult]:
        iterations = self.config.iterations
        slots: List[Optional[RequestResult]] = [None] * iterations
        jobs: asyncio.Queue = asyncio.Queue()
        for i in range(iterations):
            jobs.put_nowait(i)

        progress = _Progress(started=time.perf_counter())
        interval = max(1, math.ceil(iterations / PROGRESS_STEPS))

        async def worker() -> None:
            while not scope.cancelled:
                try:
                    i = jobs.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    if limiter is not None:
                        await scope.guard(limiter.acquire())
                    res = await self._execute(client, scope, op, details)
                except RunCancelled:
                    return
                slots[i] = res  # each job owns its slot

                completed, total_duration, errors = progress.record(res)
                if completed % interval == 0:
                    elapsed = time.perf_counter() - progress.started
                    emit(
                        EventKind.BENCHMARK_PROGRESS,
                        progress=completed,
                        max_iter=iterations,
                        running_avg=total_duration / completed,
                        running_req_sec=completed / elapsed if elapsed > 0 else 0.0,
                        error_count=errors,
                    )

        await asyncio.gather(*(worker() for _ in range(self.config.concurrency)))
        return [r for r in slots if r is not None]

    async def _execute(self, client, scope: CancelScope, op: Operation, details: OperationDetails) -> RequestResult:
        """One attempt. Raises RunCancelled only; every other failure is data."""
        try:
            request = self.request_builder.build(details, op.server_url)
        except OasBenchError as e:
            return RequestResult(error=f"build request failed: {e}")

        started = time.perf_counter()
        try:
            response = await scope.guard(send(client, request))
        except RunCancelled:
            raise
        except Exception as e:
            # any failure of one attempt is recorded, never fatal to the run
            if not isinstance(e, TRANSPORT_ERRORS):
                logger.debug("%s %s: unexpected send failure", op.method, op.path, exc_info=True)
            return RequestResult(duration=time.perf_counter() - started, error=f"request failed: {describe_error(e)}")
        return RequestResult(duration=time.perf_counter() - started, status_code=response.status_code)

    def _new_result(self, op: Operation) -> BenchmarkResult:
        return BenchmarkResult(
            path=op.path,
            method=op.method,
            operation_id=op.operation_id,
            iterations=self.config.iterations,
            concurrency=self.config.concurrency,
            warmup_runs=self.config.warmup_runs,
        )

    def _failed_result(self, op: Operation, message: str) -> BenchmarkResult:
        logger.warning("%s %s: %s", op.method, op.path, message)
        result = self._new_result(op)
        result.error_count = result.iterations
        result.error_rate = 100.0
        result.sample_errors = [message]
        return result

    def _limiter(self) -> Optional[TokenBucketRateLimiter]:
        if self.config.rate_limit > 0:
            return TokenBucketRateLimiter(self.config.rate_limit)
        return None

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.client is not None:
            yield self.client
            return
        async with build_client(
            concurrency=self.config.concurrency,
            timeout=self.config.timeout,
            keep_alive=not self.config.disable_keep_alive,
            verify=self.config.verify_tls,
        ) as client:
            yield client
