"""
Crawl workers: bounded-concurrency fetchers with 429 retry handling.

Each worker consumes its inbox one message at a time. Fetches run as
separate tasks and post their outcome back to the same inbox, so a worker's
counters are only ever touched from its own loop. Once ``max_inflight_requests``
fetches are outstanding the worker is busy: new ``CrawlUrl`` messages are
stashed and released one per settled fetch, in arrival order.
"""

import asyncio
import logging
import random
from collections import deque
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Deque, Dict, List, Optional, Set

from .fetcher import WebFetcher
from .models import (
    TOO_MANY_REQUESTS_STATUS,
    TRANSPORT_FAILURE_STATUS,
    CrawlConfiguration,
    CrawlResult,
    CrawlUrl,
    ExternalLinkCrawled,
    ExternalLinkRetryScheduled,
    LinkKind,
    PageCrawled,
)
from .parser import LinkExtractor, partition_links
from .uri_helpers import directory_of
from .uri_types import AbsoluteUri
from ..utils.logger import get_crawler_logger

MIN_RETRY_DELAY = 0.1
RETRY_JITTER = 0.25

ReportCallback = Callable[[CrawlResult], None]


def compute_retry_delay(retry_after: Optional[str], default_delay: float,
                        now: Optional[datetime] = None) -> float:
    """
    Base delay in seconds before retrying a rate-limited request.

    ``Retry-After`` is either a number of seconds or an HTTP date. Dates in
    the past give zero; a missing or unparsable header gives ``default_delay``.
    """
    if retry_after is None or not retry_after.strip():
        return default_delay

    value = retry_after.strip()
    if value.isascii() and value.isdigit():
        return float(int(value))

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return default_delay
    if retry_at is None:
        return default_delay

    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max((retry_at - now).total_seconds(), 0.0)


def apply_jitter(base_delay: float, rng: random.Random) -> float:
    """Spread ``base_delay`` by +/-25%, never going under 100ms."""
    jittered = base_delay * rng.uniform(1 - RETRY_JITTER, 1 + RETRY_JITTER)
    return max(jittered, MIN_RETRY_DELAY)


class CrawlWorker:
    """
    Fetches internal pages and checks external links for the coordinator.
    """

    def __init__(self, name: str, config: CrawlConfiguration, fetcher: WebFetcher,
                 report: ReportCallback, rng: Optional[random.Random] = None,
                 extractor: Optional[LinkExtractor] = None):
        self.name = name
        self.config = config
        self.fetcher = fetcher
        self.logger = get_crawler_logger(__name__, worker=name)

        self._report = report
        self._rng = rng or random.Random()
        self._extractor = extractor or LinkExtractor()

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._stash: Deque[CrawlUrl] = deque()
        self._inflight = 0
        self._busy = False

        self._task: Optional[asyncio.Task] = None
        self._fetch_tasks: Set[asyncio.Task] = set()
        self._retry_timers: Dict[AbsoluteUri, asyncio.TimerHandle] = {}

    @property
    def inflight(self) -> int:
        return self._inflight

    @property
    def stashed(self) -> int:
        return len(self._stash)

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def pending_retries(self) -> int:
        return len(self._retry_timers)

    def tell(self, message):
        """Queue a message for this worker."""
        self._inbox.put_nowait(message)

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=self.name)

    async def stop(self):
        """Cancel the inbox loop, outstanding fetches and pending retries."""
        for handle in self._retry_timers.values():
            handle.cancel()
        self._retry_timers.clear()

        tasks = list(self._fetch_tasks)
        if self._task is not None:
            tasks.append(self._task)
            self._task = None

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._fetch_tasks.clear()

    async def _run(self):
        self.logger.debug("Worker started")
        while True:
            message = await self._inbox.get()
            try:
                self._receive(message)
            except Exception as e:
                self.logger.error(f"Error handling {message}: {e}", exc_info=True)

    def _receive(self, message):
        if isinstance(message, CrawlUrl):
            if self._busy:
                self._stash.append(message)
                return

            self._handle_crawl_url(message)
            if self._inflight >= self.config.max_inflight_requests:
                self._busy = True

        elif isinstance(message, (PageCrawled, ExternalLinkCrawled, ExternalLinkRetryScheduled)):
            self._handle_crawl_result(message)

            if self._busy:
                self._busy = False
                if self._stash:
                    self._receive(self._stash.popleft())

        else:
            self.logger.warning(f"Unhandled message: {message!r}")

    def _handle_crawl_url(self, message: CrawlUrl):
        self._inflight += 1
        task = asyncio.create_task(self._fetch_and_reply(message))
        self._fetch_tasks.add(task)
        task.add_done_callback(self._fetch_tasks.discard)

    def _handle_crawl_result(self, result: CrawlResult):
        self._inflight -= 1

        if isinstance(result, ExternalLinkRetryScheduled):
            retry = CrawlUrl(result.url, LinkKind.EXTERNAL, result.retry_count)
            loop = asyncio.get_running_loop()
            self._retry_timers[result.url] = loop.call_later(result.delay, self._fire_retry, retry)
            self.logger.info(
                f"Rate limited by {result.url}, retry {result.retry_count}/"
                f"{self.config.max_external_retries} in {result.delay:.2f}s"
            )

        self._report(result)

    def _fire_retry(self, message: CrawlUrl):
        self._retry_timers.pop(message.url, None)
        self.tell(message)

    async def _fetch_and_reply(self, message: CrawlUrl):
        try:
            if message.link_kind is LinkKind.INTERNAL:
                result = await self._crawl_internal_page(message)
            else:
                result = await self._crawl_external_page(message)
        except Exception as e:
            self.logger.warning(f"Failed to crawl {message.url}: {e}", exc_info=True)
            if message.link_kind is LinkKind.INTERNAL:
                result = PageCrawled(message.url, TRANSPORT_FAILURE_STATUS)
            else:
                result = ExternalLinkCrawled(message.url, TRANSPORT_FAILURE_STATUS)

        self.tell(result)

    async def _crawl_internal_page(self, message: CrawlUrl) -> PageCrawled:
        fetched = await self.fetcher.fetch(str(message.url))
        if fetched.error:
            self.logger.warning(f"Failed to crawl {message.url}: {fetched.error}")
            return PageCrawled(message.url, TRANSPORT_FAILURE_STATUS)

        # links on a page that failed to load are not trusted
        if not fetched.is_success or fetched.content is None:
            return PageCrawled(message.url, fetched.status_code)

        # resolve against the page's own directory so ../ works on deep pages
        links = self._extractor.extract(fetched.content, directory_of(message.url))
        internal, external = partition_links(links)
        return PageCrawled(message.url, fetched.status_code, internal, external)

    async def _crawl_external_page(self, message: CrawlUrl) -> CrawlResult:
        fetched = await self.fetcher.fetch(str(message.url), read_body=False)
        if fetched.error:
            self.logger.warning(f"Failed to check {message.url}: {fetched.error}")
            return ExternalLinkCrawled(message.url, TRANSPORT_FAILURE_STATUS)

        if fetched.status_code != TOO_MANY_REQUESTS_STATUS:
            return ExternalLinkCrawled(message.url, fetched.status_code)

        if message.retry_count >= self.config.max_external_retries:
            self.logger.warning(f"Giving up on {message.url} after {message.retry_count} retries")
            return ExternalLinkCrawled(message.url, TOO_MANY_REQUESTS_STATUS)

        base_delay = compute_retry_delay(fetched.header('Retry-After'),
                                         self.config.default_external_retry_delay)
        return ExternalLinkRetryScheduled(
            url=message.url,
            status_code=TOO_MANY_REQUESTS_STATUS,
            retry_count=message.retry_count + 1,
            delay=apply_jitter(base_delay, self._rng)
        )


class WorkerPool:
    """
    Fixed set of workers fed round-robin.

    The pool does not look at load; each worker's own stash absorbs any
    imbalance.
    """

    def __init__(self, config: CrawlConfiguration, fetcher: WebFetcher,
                 rng: Optional[random.Random] = None):
        self.config = config
        self.fetcher = fetcher
        self.workers: List[CrawlWorker] = []
        self._rng = rng
        self._next = 0
        self.logger = logging.getLogger(__name__)

    def start(self, report: ReportCallback):
        """Create and start ``worker_count`` workers reporting to ``report``."""
        if self.workers:
            return

        for i in range(self.config.worker_count):
            worker = CrawlWorker(f"crawler-{i}", self.config, self.fetcher, report, rng=self._rng)
            worker.start()
            self.workers.append(worker)

        self.logger.info(
            f"Started {len(self.workers)} crawl workers "
            f"({self.config.max_inflight_requests} inflight requests each)"
        )

    async def stop(self):
        await asyncio.gather(*(worker.stop() for worker in self.workers))
        self.workers.clear()

    def dispatch(self, message: CrawlUrl):
        """Hand ``message`` to the next worker in turn."""
        if not self.workers:
            raise RuntimeError("WorkerPool has not been started")

        worker = self.workers[self._next % len(self.workers)]
        self._next += 1
        worker.tell(message)

    def get_stats(self) -> Dict[str, int]:
        return {
            'inflight': sum(w.inflight for w in self.workers),
            'stashed': sum(w.stashed for w in self.workers),
            'pending_retries': sum(w.pending_retries for w in self.workers),
        }
