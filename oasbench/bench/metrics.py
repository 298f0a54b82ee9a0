import logging
from typing import List, Sequence

from oasbench.bench.types import BenchmarkResult, RequestResult

logger = logging.getLogger(__name__)

MAX_SAMPLE_ERRORS = 5


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """
    p-th percentile of an ascending sequence, linearly interpolated between
    the two ranks around index (n - 1) * p / 100.
    """
    if not sorted_values:
        return 0.0
    if p <= 0:
        return sorted_values[0]
    if p >= 100:
        return sorted_values[-1]

    index = (len(sorted_values) - 1) * p / 100.0
    lower = int(index)
    upper = lower + 1
    if upper >= len(sorted_values):
        return sorted_values[lower]

    weight = index - lower
    return sorted_values[lower] * (1 - weight) + sorted_values[upper] * weight


class Metrics:
    def aggregate(self, result: BenchmarkResult, raw: List[RequestResult], elapsed: float) -> BenchmarkResult:
        """
        Fill ``result`` from the per-attempt slots of one measured phase.

        Latency statistics use successful attempts only; throughput divides
        every attempt by the wall-clock time of the phase.
        """
        result.total_duration = elapsed
        if not raw:
            return result

        durations: List[float] = []
        seen_errors = set()
        for r in raw:
            if r.error:
                result.error_count += 1
                if len(result.sample_errors) < MAX_SAMPLE_ERRORS and r.error not in seen_errors:
                    result.sample_errors.append(r.error)
                    seen_errors.add(r.error)
            else:
                result.success_count += 1
                durations.append(r.duration)

            if r.status_code > 0:
                result.status_codes[r.status_code] = result.status_codes.get(r.status_code, 0) + 1

        if durations:
            durations.sort()
            result.min_time = durations[0]
            result.max_time = durations[-1]
            result.avg_time = sum(durations) / len(durations)
            result.p50_time = percentile(durations, 50)
            result.p90_time = percentile(durations, 90)
            result.p99_time = percentile(durations, 99)

        if elapsed > 0:
            result.requests_per_sec = result.iterations / elapsed
        if result.iterations > 0:
            result.error_rate = result.error_count / result.iterations * 100

        logger.debug(
            "%s %s: %d ok, %d errors, avg %.4fs",
            result.method, result.path, result.success_count, result.error_count, result.avg_time,
        )
        return result
