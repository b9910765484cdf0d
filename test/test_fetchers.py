import asyncio

import httpx
import pytest

from directory_pipeline.errors import ProviderError
from directory_pipeline.fetchers import HttpxFetcher


def _handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/":
        return httpx.Response(200, html="<html><title>Joe's Plumbing</title></html>")
    if path == "/old":
        return httpx.Response(301, headers={"Location": "https://joesplumbing.com/"})
    if path == "/brochure.pdf":
        return httpx.Response(200, content=b"%PDF", headers={"content-type": "application/pdf"})
    if path == "/down":
        raise httpx.ConnectError("connection refused", request=request)
    return httpx.Response(404, html="<html>not found</html>")


def _fetch(url: str):
    async def run():
        client = httpx.AsyncClient(transport=httpx.MockTransport(_handler), follow_redirects=True)
        try:
            async with HttpxFetcher(client=client) as fetcher:
                return await fetcher.fetch(url)
        finally:
            await client.aclose()

    return asyncio.run(run())


def test_fetches_html():
    page = _fetch("https://joesplumbing.com/")
    assert page.status == 200
    assert "Joe's Plumbing" in page.html


def test_follows_redirects():
    page = _fetch("https://joesplumbing.com/old")
    assert page.url == "https://joesplumbing.com/old"
    assert page.final_url == "https://joesplumbing.com/"


@pytest.mark.parametrize("path", ["/missing", "/brochure.pdf", "/down"])
def test_failures_become_provider_errors(path):
    with pytest.raises(ProviderError):
        _fetch(f"https://joesplumbing.com{path}")


def test_fetch_outside_context_manager_is_an_error():
    with pytest.raises(RuntimeError):
        asyncio.run(HttpxFetcher().fetch("https://joesplumbing.com/"))
