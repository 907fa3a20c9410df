"""Tests for the aiohttp-backed WebFetcher."""

from __future__ import annotations

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from link_validator.crawler.fetcher import FetchResult, WebFetcher
from link_validator.crawler.models import DEFAULT_USER_AGENT, TRANSPORT_FAILURE_STATUS


async def echo_user_agent(request):
    return web.Response(text=f"<p>{request.headers.get('User-Agent')}</p>", content_type="text/html")


async def page(request):
    return web.Response(text='<a href="/about">About</a>', content_type="text/html")


async def image(request):
    return web.Response(body=b"\x89PNG", content_type="image/png")


async def rate_limited(request):
    return web.Response(status=429, headers={"Retry-After": "3"})


async def slow(request):
    await asyncio.sleep(1)
    return web.Response(text="too late")


LARGE_BODY = "<p>" + "link " * 40000 + "</p>"


async def large(request):
    return web.Response(text=LARGE_BODY, content_type="text/html")


def make_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/large", large)
    app.router.add_get("/ua", echo_user_agent)
    app.router.add_get("/page", page)
    app.router.add_get("/image.png", image)
    app.router.add_get("/limited", rate_limited)
    app.router.add_get("/slow", slow)
    return app


class TestFetchResult:
    def test_header_lookup_is_case_insensitive(self):
        result = FetchResult(url="http://example.com/", status_code=429, headers={"Retry-After": "5"})
        assert result.header("retry-after") == "5"
        assert result.header("RETRY-AFTER") == "5"
        assert result.header("Content-Type") is None

    def test_header_without_headers(self):
        assert FetchResult(url="http://example.com/", status_code=408).header("Retry-After") is None

    def test_error_is_never_success(self):
        assert not FetchResult(url="http://example.com/", status_code=200, error="boom").is_success


class TestWebFetcher:
    @pytest.mark.asyncio
    async def test_fetches_html_with_user_agent(self):
        server = TestServer(make_app())
        await server.start_server()
        try:
            async with WebFetcher(user_agent=DEFAULT_USER_AGENT, request_timeout=2) as fetcher:
                result = await fetcher.fetch(str(server.make_url("/ua")))
        finally:
            await server.close()

        assert result.status_code == 200
        assert result.error is None
        assert result.content == f"<p>{DEFAULT_USER_AGENT}</p>"
        assert result.content_type.startswith("text/html")

    @pytest.mark.asyncio
    async def test_not_found_has_no_body(self):
        server = TestServer(make_app())
        await server.start_server()
        try:
            async with WebFetcher(user_agent=DEFAULT_USER_AGENT, request_timeout=2) as fetcher:
                result = await fetcher.fetch(str(server.make_url("/nowhere")))
        finally:
            await server.close()

        assert result.status_code == 404
        assert result.content is None
        assert result.error is None

    @pytest.mark.asyncio
    async def test_reads_multi_chunk_body(self):
        server = TestServer(make_app())
        await server.start_server()
        try:
            async with WebFetcher(user_agent=DEFAULT_USER_AGENT, request_timeout=2) as fetcher:
                result = await fetcher.fetch(str(server.make_url("/large")))
        finally:
            await server.close()

        assert result.content == LARGE_BODY

    @pytest.mark.asyncio
    async def test_oversized_body_is_dropped(self):
        server = TestServer(make_app())
        await server.start_server()
        try:
            async with WebFetcher(user_agent=DEFAULT_USER_AGENT, request_timeout=2,
                                  max_content_size=1024) as fetcher:
                result = await fetcher.fetch(str(server.make_url("/large")))
        finally:
            await server.close()

        assert result.status_code == 200
        assert result.content is None

    @pytest.mark.asyncio
    async def test_skips_non_text_bodies(self):
        server = TestServer(make_app())
        await server.start_server()
        try:
            async with WebFetcher(user_agent=DEFAULT_USER_AGENT, request_timeout=2) as fetcher:
                result = await fetcher.fetch(str(server.make_url("/image.png")))
        finally:
            await server.close()

        assert result.status_code == 200
        assert result.content is None

    @pytest.mark.asyncio
    async def test_status_only_fetch(self):
        server = TestServer(make_app())
        await server.start_server()
        try:
            async with WebFetcher(user_agent=DEFAULT_USER_AGENT, request_timeout=2) as fetcher:
                result = await fetcher.fetch(str(server.make_url("/page")), read_body=False)
                limited = await fetcher.fetch(str(server.make_url("/limited")), read_body=False)
        finally:
            await server.close()

        assert result.status_code == 200
        assert result.content is None
        assert limited.status_code == 429
        assert limited.header("retry-after") == "3"

    @pytest.mark.asyncio
    async def test_timeout_maps_to_transport_failure(self):
        server = TestServer(make_app())
        await server.start_server()
        try:
            async with WebFetcher(user_agent=DEFAULT_USER_AGENT, request_timeout=0.2) as fetcher:
                result = await fetcher.fetch(str(server.make_url("/slow")))
                stats = fetcher.get_stats()
        finally:
            await server.close()

        assert result.status_code == TRANSPORT_FAILURE_STATUS
        assert result.error == "Request timeout"
        assert not result.is_success
        assert stats['failed_requests'] == 1

    @pytest.mark.asyncio
    async def test_connection_refused_maps_to_transport_failure(self):
        server = TestServer(make_app())
        await server.start_server()
        url = str(server.make_url("/page"))
        await server.close()

        async with WebFetcher(user_agent=DEFAULT_USER_AGENT, request_timeout=2) as fetcher:
            result = await fetcher.fetch(url)

        assert result.status_code == TRANSPORT_FAILURE_STATUS
        assert result.error is not None
