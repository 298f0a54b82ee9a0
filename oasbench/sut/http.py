from typing import Optional

import httpx

from oasbench.bench.types import BuiltRequest

MAX_CONNECTIONS_FLOOR = 100


def build_client(
    concurrency: int = 1,
    timeout: float = 30.0,
    keep_alive: bool = True,
    verify: bool = True,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Shared async client; the pool is never smaller than the worker count."""
    limits = httpx.Limits(
        max_connections=max(MAX_CONNECTIONS_FLOOR, concurrency),
        max_keepalive_connections=concurrency if keep_alive else 0,
        keepalive_expiry=90.0 if keep_alive else 0.0,
    )
    kwargs = {}
    if transport is not None:
        kwargs["transport"] = transport
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        limits=limits,
        verify=verify,
        follow_redirects=False,
        **kwargs,
    )


async def send(client: httpx.AsyncClient, request: BuiltRequest) -> httpx.Response:
    return await client.request(
        request.method,
        request.url,
        headers=request.headers,
        content=request.body,
    )
