import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from oasbench.exceptions import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

_BOOL_TRUE = {"true", "1", "yes", "y", "on"}
_BOOL_FALSE = {"false", "0", "no", "n", "off"}


@dataclass
class BenchmarkConfig:
    iterations: int = 100        # requests per endpoint
    concurrency: int = 1         # workers in the measured phase
    warmup_runs: int = 5         # discarded, sequential
    rate_limit: float = 0.0      # aggregate req/s, 0 = unlimited
    timeout: float = DEFAULT_TIMEOUT
    disable_keep_alive: bool = False
    verify_tls: bool = True
    seed: Optional[int] = None

    def validate(self) -> "BenchmarkConfig":
        if self.iterations < 1:
            raise ConfigError(f"iterations must be >= 1, got {self.iterations}")
        if self.concurrency < 1:
            raise ConfigError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.warmup_runs < 0:
            raise ConfigError(f"warmup must be >= 0, got {self.warmup_runs}")
        if self.rate_limit < 0:
            raise ConfigError(f"rate limit must be >= 0, got {self.rate_limit}")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be > 0, got {self.timeout}")
        return self


@dataclass
class TesterConfig:
    timeout: float = DEFAULT_TIMEOUT
    verify_tls: bool = True
    seed: Optional[int] = None

    def __post_init__(self):
        if self.timeout <= 0:
            self.timeout = DEFAULT_TIMEOUT


@dataclass
class Settings:
    server_url: str = ""
    timeout: float = DEFAULT_TIMEOUT
    verify_tls: bool = True
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        try:
            timeout = float(env.get("HTTP_TIMEOUT_SECONDS", DEFAULT_TIMEOUT))
        except ValueError as e:
            raise ConfigError(f"HTTP_TIMEOUT_SECONDS is not a number: {env.get('HTTP_TIMEOUT_SECONDS')}") from e
        return cls(
            server_url=env.get("OASBENCH_SERVER_URL", "").strip(),
            timeout=timeout,
            verify_tls=env.get("HTTP_VERIFY_TLS", "true").lower() in _BOOL_TRUE,
            log_level=env.get("OASBENCH_LOG_LEVEL", "WARNING").upper(),
        )


@dataclass
class RunPlan:
    benchmark: BenchmarkConfig = field(default_factory=BenchmarkConfig)
    server: str = ""
    filter: str = ""
    tags: List[str] = field(default_factory=list)
    export: Dict[str, Any] = field(default_factory=dict)


def load_run_plan(path) -> RunPlan:
    """
    Read a YAML run plan:

        run:     {warmup, iterations, concurrency, rate_limit, timeout, keep_alive, seed}
        targets: {server, filter, tags}
        export:  {console, json: {path}, csv: {path}}

    Missing keys keep their defaults.
    """
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"run plan not found: {p}")
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse run plan {p}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"run plan must be a mapping: {p}")

    run = _section(data, "run")
    targets = _section(data, "targets")

    bench = BenchmarkConfig()
    bench.iterations = _as_int(run, "iterations", bench.iterations)
    bench.concurrency = _as_int(run, "concurrency", bench.concurrency)
    bench.warmup_runs = _as_int(run, "warmup", bench.warmup_runs)
    bench.rate_limit = _as_float(run, "rate_limit", bench.rate_limit)
    bench.timeout = _as_float(run, "timeout", bench.timeout)
    bench.disable_keep_alive = not _as_bool(run, "keep_alive", True)
    if run.get("seed") is not None:
        bench.seed = _as_int(run, "seed", 0)
    bench.validate()

    tags = targets.get("tags") or []
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",") if t.strip()]

    plan = RunPlan(
        benchmark=bench,
        server=str(targets.get("server") or ""),
        filter=str(targets.get("filter") or ""),
        tags=list(tags),
        export=_section(data, "export"),
    )
    logger.debug("loaded run plan %s: %s", p, plan)
    return plan


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"plan.{key} must be a mapping")
    return value


def _as_int(section: Dict[str, Any], key: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigError(f"invalid run.{key}: {value!r}")
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"invalid run.{key}: {value!r}") from e


def _as_float(section: Dict[str, Any], key: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool):
        raise ConfigError(f"invalid run.{key}: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid run.{key}: {value!r}") from e


def _as_bool(section: Dict[str, Any], key: str, default: bool) -> bool:
    value = section.get(key, default)
    if isinstance(value, bool):
        return value
    low = str(value).strip().lower()
    if low in _BOOL_TRUE:
        return True
    if low in _BOOL_FALSE:
        return False
    raise ConfigError(f"invalid run.{key}: {value!r}")
