"""
Crawl coordinator: owns the visited map, dispatches work and decides when
the crawl is done.
"""

import asyncio
import logging
import random
import time
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

from .fetcher import WebFetcher
from .models import (
    CrawlConfiguration,
    CrawlRecord,
    CrawlReport,
    CrawlStatus,
    CrawlUrl,
    ExternalLinkCrawled,
    ExternalLinkRetryScheduled,
    LinkKind,
    PageCrawled,
)
from .uri_helpers import is_same_domain, to_relative_path
from .uri_types import AbsoluteUri
from .worker import WorkerPool
from ..utils.monitoring import CrawlerMonitor


class Dispatcher(Protocol):
    def dispatch(self, message: CrawlUrl) -> None: ...


@dataclass
class CrawlStats:
    """Statistics for crawl operations."""
    start_time: float
    pages_crawled: int = 0
    external_links_checked: int = 0
    retries_scheduled: int = 0
    urls_dispatched: int = 0
    broken_links: int = 0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def pages_per_minute(self) -> float:
        elapsed_minutes = self.elapsed_time / 60
        settled = self.pages_crawled + self.external_links_checked
        return settled / elapsed_minutes if elapsed_minutes > 0 else 0


class CrawlCoordinator:
    """
    Single writer of the crawl state.

    Every URL goes NOT_VISITED -> VISITING -> VISITED and is dispatched at
    most once, so cyclic link graphs terminate. The crawl is complete when
    every known URL is VISITED; rate-limited external links waiting on a
    retry stay VISITING and hold completion back.
    """

    def __init__(self, config: CrawlConfiguration, dispatcher: Optional[Dispatcher] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.base_url = config.base_url.without_fragment()
        self.dispatcher = dispatcher
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)

        self.indexed_documents: Dict[AbsoluteUri, Tuple[CrawlStatus, Optional[CrawlRecord]]] = {}
        self.stats = CrawlStats(start_time=time.time())

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._report: Optional[CrawlReport] = None

    @property
    def report(self) -> Optional[CrawlReport]:
        """The final report, once the crawl has completed."""
        return self._report

    @property
    def is_crawl_complete(self) -> bool:
        return bool(self.indexed_documents) and all(
            status is CrawlStatus.VISITED for status, _ in self.indexed_documents.values()
        )

    @property
    def pending_count(self) -> int:
        return sum(1 for status, _ in self.indexed_documents.values() if status is not CrawlStatus.VISITED)

    def tell(self, message):
        """Queue a worker result for processing."""
        if self._report is not None:
            self.logger.debug(f"Crawl already complete, dropping {message!r}")
            return
        self._inbox.put_nowait(message)

    async def run(self) -> CrawlReport:
        """Crawl from the base URL until every discovered URL has settled."""
        if self.dispatcher is None:
            raise RuntimeError("CrawlCoordinator needs a dispatcher to run")

        self.stats = CrawlStats(start_time=time.time())
        stats_task = asyncio.create_task(self._stats_reporter())

        try:
            self.begin_indexing()
            while self._report is None:
                message = await self._inbox.get()
                self.receive(message)
        finally:
            stats_task.cancel()
            await asyncio.gather(stats_task, return_exceptions=True)

        self._log_final_stats()
        return self._report

    def begin_indexing(self):
        self.logger.info(f"Beginning indexing of [{self.base_url}]")
        self.indexed_documents[self.base_url] = (CrawlStatus.VISITING, CrawlRecord.empty(self.base_url))
        self._dispatch(CrawlUrl(self.base_url, LinkKind.INTERNAL))

    def receive(self, message):
        """Apply one worker result to the crawl state."""
        if self._report is not None:
            self.logger.debug(f"Crawl already complete, ignoring {message!r}")
            return

        if isinstance(message, PageCrawled):
            self._handle_page_crawled(message)
        elif isinstance(message, ExternalLinkCrawled):
            self._handle_external_link_crawled(message)
        elif isinstance(message, ExternalLinkRetryScheduled):
            self._handle_retry_scheduled(message)
            return
        else:
            self.logger.warning(f"Unhandled message: {message!r}")
            return

        if self.is_crawl_complete:
            self._complete()

    def _dispatch(self, message: CrawlUrl):
        self.stats.urls_dispatched += 1
        self.dispatcher.dispatch(message)

    def _settle(self, url: AbsoluteUri, status_code: int):
        entry = self.indexed_documents.get(url)
        if entry is None:
            self.logger.warning(f"Received result for unknown URL {url}")
            record = CrawlRecord.empty(url)
        else:
            status, record = entry
            if status is CrawlStatus.VISITED:
                self.logger.warning(f"Ignoring duplicate result for {url}")
                return
            record = record or CrawlRecord.empty(url)

        self.indexed_documents[url] = (CrawlStatus.VISITED, record.with_status(status_code))
        if not 200 <= status_code < 300:
            self.stats.broken_links += 1

    def _handle_page_crawled(self, message: PageCrawled):
        self._settle(message.url, message.status_code)
        self.stats.pages_crawled += 1
        if self.monitor:
            self.monitor.record_page_crawled(str(message.url), message.status_code)

        # kick off scans of everything this page links to
        for link, kind in message.links:
            entry = self.indexed_documents.get(link)
            if entry is None or entry[0] is CrawlStatus.NOT_VISITED:
                record = (entry[1] if entry and entry[1] else CrawlRecord.empty(link))
                self.indexed_documents[link] = (CrawlStatus.VISITING, record.with_backlink(message.url))
                self._dispatch(CrawlUrl(link, kind))
            else:
                status, record = entry
                record = record or CrawlRecord.empty(link)
                self.indexed_documents[link] = (status, record.with_backlink(message.url))

        self.logger.debug(
            f"Crawled {message.url}: {message.status_code} "
            f"({len(message.internal_links)} internal, {len(message.external_links)} external links)"
        )

    def _handle_external_link_crawled(self, message: ExternalLinkCrawled):
        self._settle(message.url, message.status_code)
        self.stats.external_links_checked += 1
        if self.monitor:
            self.monitor.record_external_checked(str(message.url), message.status_code)

    def _handle_retry_scheduled(self, message: ExternalLinkRetryScheduled):
        # the URL stays VISITING until the retry settles
        self.stats.retries_scheduled += 1
        if self.monitor:
            self.monitor.record_retry_scheduled(str(message.url))
        self.logger.debug(f"Retry {message.retry_count} scheduled for {message.url} in {message.delay:.2f}s")

    def _complete(self):
        internal: Dict[str, CrawlRecord] = {}
        external: Dict[str, CrawlRecord] = {}

        for url, (_, record) in self.indexed_documents.items():
            record = record or CrawlRecord.empty(url)
            if is_same_domain(self.base_url, url):
                key = str(to_relative_path(self.base_url, url))
                if key in internal:
                    # same host and path on another port
                    self.logger.warning(
                        f"Report key {key} already taken by {internal[key].page_crawled}, "
                        f"recording {url} under its absolute URL"
                    )
                    key = str(url)
                internal[key] = record
            else:
                external[str(url)] = record

        by_status = Counter(record.status_code for _, record in self.indexed_documents.values() if record)
        self.logger.info("Crawl complete: " + ", ".join(f"{code}:{count}" for code, count in sorted(by_status.items())))

        self._report = CrawlReport(root_uri=self.base_url, internal_links=internal, external_links=external)

    async def _stats_reporter(self):
        """Periodically log crawl statistics."""
        while True:
            await asyncio.sleep(self.config.stats_interval)
            self._log_current_stats()

    def _log_current_stats(self):
        pending = self.pending_count
        if self.monitor:
            self.monitor.update_pending(pending)

        pool_stats = {}
        get_stats = getattr(self.dispatcher, 'get_stats', None)
        if callable(get_stats):
            pool_stats = get_stats()

        by_status = Counter(status.name for status, _ in self.indexed_documents.values())
        self.logger.info(
            f"Crawl Progress: "
            f"Known={len(self.indexed_documents)} ({dict(sorted(by_status.items()))}), "
            f"Pending={pending}, "
            f"Pages={self.stats.pages_crawled}, "
            f"External={self.stats.external_links_checked}, "
            f"Retries={self.stats.retries_scheduled}, "
            f"Broken={self.stats.broken_links}, "
            f"Rate={self.stats.pages_per_minute:.1f} urls/min"
            + (f", Pool={pool_stats}" if pool_stats else "")
        )

    def _log_final_stats(self):
        self.logger.info("=== CRAWL COMPLETED ===")
        self.logger.info(f"Pages crawled: {self.stats.pages_crawled}")
        self.logger.info(f"External links checked: {self.stats.external_links_checked}")
        self.logger.info(f"Retries scheduled: {self.stats.retries_scheduled}")
        self.logger.info(f"Broken links: {self.stats.broken_links}")
        self.logger.info(f"Total time: {self.stats.elapsed_time:.2f} seconds")
        if self.monitor:
            self.logger.info(f"Metrics: {self.monitor.get_summary()}")


async def crawl_website(config: CrawlConfiguration, monitor: Optional[CrawlerMonitor] = None,
                        rng: Optional[random.Random] = None) -> CrawlReport:
    """
    Crawl ``config.base_url`` and return the finished report.

    Args:
        config: Crawl settings
        monitor: Optional metrics sink
        rng: Random source for retry jitter

    Returns:
        The CrawlReport, produced once every discovered URL has settled
    """
    max_connections = config.worker_count * config.max_inflight_requests
    async with WebFetcher(user_agent=config.user_agent,
                          request_timeout=config.request_timeout,
                          max_connections=max_connections) as fetcher:
        pool = WorkerPool(config, fetcher, rng=rng)
        coordinator = CrawlCoordinator(config, pool, monitor)
        pool.start(coordinator.tell)
        try:
            return await coordinator.run()
        finally:
            await pool.stop()
