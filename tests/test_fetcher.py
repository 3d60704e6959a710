import socket

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils

from pipelines.errors import FetchError
from pipelines.fetcher import HttpFetcher


@pytest_asyncio.fixture
async def docs_server():
    hits = {"flaky": 0, "missing": 0, "unavailable": 0}

    async def page(request):
        return web.Response(text="<html><title>Page</title><body>Hello</body></html>", content_type="text/html")

    async def flaky(request):
        hits["flaky"] += 1
        if hits["flaky"] < 3:
            return web.Response(status=503)
        return web.Response(text="recovered", content_type="text/plain")

    async def missing(request):
        hits["missing"] += 1
        return web.Response(status=404)

    async def unavailable(request):
        hits["unavailable"] += 1
        return web.Response(status=503)

    async def moved(request):
        raise web.HTTPFound("/page")

    async def echo(request):
        return web.Response(text=request.headers.get("X-Docs-Token", ""), content_type="text/plain")

    app = web.Application()
    app.router.add_get("/page", page)
    app.router.add_get("/flaky", flaky)
    app.router.add_get("/missing", missing)
    app.router.add_get("/unavailable", unavailable)
    app.router.add_get("/moved", moved)
    app.router.add_get("/echo", echo)

    server = test_utils.TestServer(app)
    await server.start_server()
    yield server, hits
    await server.close()


def unused_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_fetch_returns_content_and_type(docs_server):
    server, _ = docs_server
    async with HttpFetcher(retry_delay=0.01) as fetcher:
        result = await fetcher.fetch(str(server.make_url("/page")))

    assert result.status_code == 200
    assert result.content_type.startswith("text/html")
    assert b"Hello" in result.content
    assert result.retry_count == 0


@pytest.mark.asyncio
async def test_fetch_follows_redirects(docs_server):
    server, _ = docs_server
    async with HttpFetcher(retry_delay=0.01) as fetcher:
        result = await fetcher.fetch(str(server.make_url("/moved")))

    assert result.final_url.endswith("/page")
    assert b"Hello" in result.content


@pytest.mark.asyncio
async def test_retryable_status_is_retried(docs_server):
    server, hits = docs_server
    async with HttpFetcher(max_retries=3, retry_delay=0.01) as fetcher:
        result = await fetcher.fetch(str(server.make_url("/flaky")))

    assert result.content == b"recovered"
    assert result.retry_count == 2
    assert hits["flaky"] == 3


@pytest.mark.asyncio
async def test_client_error_is_not_retried(docs_server):
    server, hits = docs_server
    async with HttpFetcher(max_retries=3, retry_delay=0.01) as fetcher:
        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch(str(server.make_url("/missing")))

    assert exc_info.value.status_code == 404
    assert hits["missing"] == 1


@pytest.mark.asyncio
async def test_retries_are_bounded(docs_server):
    server, hits = docs_server
    async with HttpFetcher(max_retries=2, retry_delay=0.01) as fetcher:
        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch(str(server.make_url("/unavailable")))

    assert exc_info.value.status_code == 503
    assert hits["unavailable"] == 3


@pytest.mark.asyncio
async def test_connection_failure_raises_fetch_error():
    url = f"http://127.0.0.1:{unused_port()}/page"
    async with HttpFetcher(max_retries=1, retry_delay=0.01) as fetcher:
        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch(url)

    assert exc_info.value.url == url
    assert exc_info.value.cause is not None


def test_retry_delay_is_capped():
    fetcher = HttpFetcher(retry_delay=1.0, max_retry_delay=5.0)
    assert fetcher._calculate_retry_delay(0) >= 1.0
    assert fetcher._calculate_retry_delay(10) == 5.0


@pytest.mark.asyncio
async def test_extra_headers_are_sent(docs_server):
    server, _ = docs_server
    async with HttpFetcher(headers={"X-Docs-Token": "secret"}) as fetcher:
        result = await fetcher.fetch(str(server.make_url("/echo")))

    assert result.content == b"secret"
