import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional, Sequence

import httpx

from oasbench.bench.assert_engine import ResponseValidator
from oasbench.bench.data_gen import DataGenerator
from oasbench.bench.types import EventKind, Operation, TestEvent, TestResult, TestSummary
from oasbench.config import TesterConfig
from oasbench.exceptions import OasBenchError
from oasbench.sut.factory import MetadataProvider
from oasbench.sut.http import build_client, send
from oasbench.sut.request_builder import RequestBuilder

logger = logging.getLogger(__name__)

OnTestEvent = Callable[[TestEvent], None]

TRANSPORT_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


class Tester:
    """Single-shot correctness check: one request per operation, pass or fail."""

    def __init__(
        self,
        config: Optional[TesterConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        request_builder: Optional[RequestBuilder] = None,
        validator: Optional[ResponseValidator] = None,
    ) -> None:
        self.config = config or TesterConfig()
        self.client = client
        self.request_builder = request_builder or RequestBuilder(DataGenerator(seed=self.config.seed))
        self.validator = validator or ResponseValidator()

    async def test_operation(self, op: Operation, provider: MetadataProvider) -> TestResult:
        async with self._session() as client:
            return await self._test(client, op, provider)

    async def test_operations(
        self,
        operations: Sequence[Operation],
        provider: MetadataProvider,
        on_event: Optional[OnTestEvent] = None,
    ) -> TestSummary:
        summary = TestSummary()
        total = len(operations)

        async with self._session() as client:
            for i, op in enumerate(operations):
                if on_event:
                    on_event(TestEvent(EventKind.TEST_STARTING, op, i, total))

                result = await self._test(client, op, provider)
                summary.add_result(result)
                logger.debug("%s %s -> %s", op.method, op.path, "pass" if result.passed else result.error)

                if on_event:
                    on_event(TestEvent(EventKind.TEST_COMPLETED, op, i, total, result=result))

        return summary

    async def _test(self, client: httpx.AsyncClient, op: Operation, provider: MetadataProvider) -> TestResult:
        result = TestResult(path=op.path, method=op.method, operation_id=op.operation_id)

        try:
            details = provider.operation_details(op.path, op.method)
        except OasBenchError as e:
            result.error = f"failed to get operation details: {e}"
            return result

        try:
            request = self.request_builder.build(details, op.server_url)
        except OasBenchError as e:
            result.error = f"failed to build request: {e}"
            return result

        started = time.perf_counter()
        try:
            response = await send(client, request)
        except Exception as e:
            if not isinstance(e, TRANSPORT_ERRORS):
                logger.warning("%s %s: unexpected send failure", op.method, op.path, exc_info=True)
            result.response_time = time.perf_counter() - started
            result.error = f"request failed: {describe_error(e)}"
            return result
        result.response_time = time.perf_counter() - started

        result.status_code = response.status_code
        result.validation_errors = self.validator.validate(response, details)
        if not result.validation_errors:
            result.passed = True
        else:
            messages = "; ".join(f"{ve.field}: {ve.message}" for ve in result.validation_errors)
            result.error = f"validation failed: {messages}"
        return result

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.client is not None:
            yield self.client
            return
        async with build_client(timeout=self.config.timeout, verify=self.config.verify_tls) as client:
            yield client


def describe_error(error: Exception) -> str:
    text = str(error)
    return f"{type(error).__name__}: {text}" if text else type(error).__name__
