"""Test configuration and fixtures for override-proxy."""

from collections.abc import AsyncIterator, Callable

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer, make_mocked_request

from override_proxy.context import RequestContext
from override_proxy.proxy_core import ProxyServer
from override_proxy.registry import Registry


@pytest.fixture
def make_request() -> Callable:
    """Build a bare aiohttp request for predicate and dispatcher tests."""

    def factory(method: str = "GET", path: str = "/", headers=None) -> web.Request:
        return make_mocked_request(method, path, headers=headers)

    return factory


@pytest.fixture
def context() -> RequestContext:
    return RequestContext(seq=1, method="GET", url="/")


@pytest_asyncio.fixture
async def upstream() -> AsyncIterator[TestServer]:
    """A fake upstream that echoes what it received."""

    async def echo(request: web.Request) -> web.Response:
        body = await request.read()
        return web.json_response(
            {
                "method": request.method,
                "path": request.path,
                "query": request.query_string,
                "host": request.headers.get("Host"),
                "tags": request.headers.getall("X-Tag", []),
                "body": body.decode(),
            },
            status=200 if request.path != "/api/missing" else 404,
            headers={"X-Upstream": "echo"},
        )

    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", echo)
    server = TestServer(app)
    await server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def make_proxy(upstream: TestServer) -> AsyncIterator[Callable]:
    """Start a ProxyServer app with the given rules in front of the fake upstream."""
    clients: list[TestClient] = []

    async def factory(rules=(), target=None, **options) -> TestClient:
        server = ProxyServer(
            target=target or str(upstream.make_url("/api/")),
            registry=Registry.from_rules(rules, file="inline.py"),
            **options,
        )
        client = TestClient(TestServer(server.build_app()))
        await client.start_server()
        client.proxy_server = server
        clients.append(client)
        return client

    yield factory
    for client in clients:
        await client.close()
