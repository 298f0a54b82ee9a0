from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

# Synthetic values are plain JSON-shaped Python data. The union is closed:
# every generator path returns one of these and json.dumps accepts all of them.
Value = Union[None, bool, int, float, str, List["Value"], Dict[str, "Value"]]

BODY_METHODS = ("POST", "PUT", "PATCH")


@dataclass(eq=False)
class Schema:
    # eq=False: schemas may form cycles ($ref to self), identity is what matters
    type: List[str] = field(default_factory=list)
    format: str = ""
    enum: List[Any] = field(default_factory=list)
    pattern: str = ""
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    min_items: Optional[int] = None
    max_items: Optional[int] = None
    items: Optional["Schema"] = None
    properties: Dict[str, Optional["Schema"]] = field(default_factory=dict)  # None = unresolvable
    required: List[str] = field(default_factory=list)
    example: Any = None
    default: Any = None
    unresolved_ref: Optional[str] = None  # set when a $ref could not be followed

    @property
    def primary_type(self) -> str:
        return self.type[0] if self.type else ""


@dataclass
class Parameter:
    name: str
    location: str      # "path" | "query" | "header" | "cookie"
    schema: Optional[Schema] = None
    required: bool = False


@dataclass
class RequestBodyDef:
    content: Dict[str, Optional[Schema]] = field(default_factory=dict)  # media type -> schema
    required: bool = False


@dataclass
class ResponseDef:
    description: str = ""
    headers: List[str] = field(default_factory=list)
    content: Dict[str, Optional[Schema]] = field(default_factory=dict)


@dataclass(frozen=True)
class Operation:
    path: str
    method: str
    operation_id: str = ""
    tags: Tuple[str, ...] = ()
    server_url: str = ""
    full_path: str = ""


@dataclass
class OperationDetails:
    path: str
    method: str
    operation_id: str = ""
    parameters: List[Parameter] = field(default_factory=list)
    request_body: Optional[RequestBodyDef] = None
    responses: Dict[str, ResponseDef] = field(default_factory=dict)  # "200" | "2XX" | "default"


@dataclass
class BuiltRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None


@dataclass
class ValidationError:
    field: str
    message: str


@dataclass
class TestResult:
    path: str
    method: str
    operation_id: str = ""
    passed: bool = False
    error: str = ""
    status_code: int = 0
    response_time: float = 0.0  # seconds
    validation_errors: List[ValidationError] = field(default_factory=list)

    __test__ = False  # not a pytest test class


@dataclass
class TestSummary:
    total_tests: int = 0
    passed: int = 0
    failed: int = 0
    results: List[TestResult] = field(default_factory=list)

    __test__ = False

    def add_result(self, result: TestResult) -> None:
        self.total_tests += 1
        self.results.append(result)
        if result.passed:
            self.passed += 1
        else:
            self.failed += 1


@dataclass
class RequestResult:
    duration: float = 0.0
    status_code: int = 0
    error: str = ""


@dataclass
class BenchmarkResult:
    path: str
    method: str
    operation_id: str = ""

    iterations: int = 0
    concurrency: int = 1
    warmup_runs: int = 0

    # latencies in seconds, successful requests only
    min_time: float = 0.0
    max_time: float = 0.0
    avg_time: float = 0.0
    p50_time: float = 0.0
    p90_time: float = 0.0
    p99_time: float = 0.0

    requests_per_sec: float = 0.0
    total_duration: float = 0.0

    success_count: int = 0
    error_count: int = 0
    error_rate: float = 0.0

    status_codes: Dict[int, int] = field(default_factory=dict)
    sample_errors: List[str] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class BenchmarkSummary:
    total_endpoints: int = 0
    iterations: int = 0
    concurrency: int = 1
    warmup_runs: int = 0

    overall_min_time: float = 0.0
    overall_max_time: float = 0.0
    overall_avg_time: float = 0.0

    total_requests: int = 0
    total_successes: int = 0
    total_errors: int = 0
    overall_error_rate: float = 0.0
    total_duration: float = 0.0
    overall_requests_per_sec: float = 0.0

    results: List[BenchmarkResult] = field(default_factory=list)

    def add_result(self, result: BenchmarkResult) -> None:
        self.results.append(result)
        self.total_endpoints = len(self.results)
        self.total_requests += result.iterations
        self.total_successes += result.success_count
        self.total_errors += result.error_count

        if result.success_count:
            if self.overall_min_time == 0 or result.min_time < self.overall_min_time:
                self.overall_min_time = result.min_time
            if result.max_time > self.overall_max_time:
                self.overall_max_time = result.max_time

        if self.total_requests > 0:
            self.overall_error_rate = self.total_errors / self.total_requests * 100

        # weighted by iterations; endpoints are few so a full pass is fine
        weighted = 0.0
        weight = 0
        for r in self.results:
            weighted += r.avg_time * r.iterations
            weight += r.iterations
        if weight > 0:
            self.overall_avg_time = weighted / weight

    def finalize(self, total_duration: float) -> None:
        self.total_duration = total_duration
        if total_duration > 0:
            self.overall_requests_per_sec = self.total_requests / total_duration


class EventKind(str, Enum):
    WARMUP_STARTING = "warmup-starting"
    WARMUP_PROGRESS = "warmup-progress"
    WARMUP_COMPLETED = "warmup-completed"
    BENCHMARK_STARTING = "benchmark-starting"
    BENCHMARK_PROGRESS = "benchmark-progress"
    BENCHMARK_COMPLETED = "benchmark-completed"
    TEST_STARTING = "test-starting"
    TEST_COMPLETED = "test-completed"


@dataclass
class BenchmarkEvent:
    kind: EventKind
    operation: Operation
    index: int                               # 0-based endpoint index
    total: int
    result: Optional[BenchmarkResult] = None  # set on BENCHMARK_COMPLETED
    progress: int = 0
    max_iter: int = 0
    running_avg: float = 0.0
    running_req_sec: float = 0.0
    error_count: int = 0


@dataclass
class TestEvent:
    kind: EventKind
    operation: Operation
    index: int
    total: int
    result: Optional[TestResult] = None

    __test__ = False
