"""Shared fixtures for the link validator tests."""

from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional, Union

import pytest

from link_validator.crawler.fetcher import FetchResult
from link_validator.crawler.models import CrawlConfiguration
from link_validator.crawler.uri_types import AbsoluteUri


class FakeFetcher:
    """Replays scripted FetchResults per URL; the last one repeats."""

    def __init__(self, responses: Optional[Dict[str, Union[FetchResult, List[FetchResult], Exception]]] = None):
        self.responses = dict(responses or {})
        self.calls: List[str] = []
        self.gates: Dict[str, asyncio.Event] = {}

    def hold(self, url: str) -> asyncio.Event:
        """Make fetches of ``url`` wait until the returned event is set."""
        gate = asyncio.Event()
        self.gates[url] = gate
        return gate

    async def fetch(self, url: str, read_body: bool = True) -> FetchResult:
        self.calls.append(url)
        if url in self.gates:
            await self.gates[url].wait()

        response = self.responses.get(url, FetchResult(url=url, status_code=200, content=""))
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def base_url() -> AbsoluteUri:
    return AbsoluteUri("http://example.com/")


@pytest.fixture
def crawl_config(base_url) -> CrawlConfiguration:
    return CrawlConfiguration(
        base_url=base_url,
        max_inflight_requests=2,
        request_timeout=2.0,
        max_external_retries=3,
        default_external_retry_delay=0.2,
        worker_count=2,
        stats_interval=60.0,
    )


@pytest.fixture
def fake_fetcher_factory() -> Callable[..., FakeFetcher]:
    return FakeFetcher


@pytest.fixture
def wait_for():
    """Poll ``predicate`` on the running loop until it holds or ``timeout`` expires."""

    async def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait_for
