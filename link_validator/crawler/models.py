"""
Crawl state, configuration, report and the messages exchanged between the
coordinator and its workers.
"""

from dataclasses import dataclass, field
from enum import Enum
from http import HTTPStatus
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union

from .. import __version__
from .uri_types import AbsoluteUri

# Reported for any fetch that never produced an HTTP response
TRANSPORT_FAILURE_STATUS = int(HTTPStatus.REQUEST_TIMEOUT)
TOO_MANY_REQUESTS_STATUS = int(HTTPStatus.TOO_MANY_REQUESTS)

DEFAULT_USER_AGENT = f"LinkValidator/{__version__}"


class LinkKind(Enum):
    """Whether a link stays on the crawled host."""
    INTERNAL = "internal"
    EXTERNAL = "external"


class CrawlStatus(Enum):
    """Lifecycle of a single document in the crawl."""
    NOT_VISITED = 0
    VISITING = 1
    FAILED = 2
    VISITED = 3


@dataclass(frozen=True)
class CrawlRecord:
    """What we know about one crawled URL and the pages linking to it."""
    page_crawled: AbsoluteUri
    status_code: Optional[int] = None
    links_to_page: Tuple[AbsoluteUri, ...] = ()

    @classmethod
    def empty(cls, page_crawled: AbsoluteUri) -> 'CrawlRecord':
        return cls(page_crawled=page_crawled)

    def with_status(self, status_code: int) -> 'CrawlRecord':
        return CrawlRecord(self.page_crawled, status_code, self.links_to_page)

    def with_backlink(self, referrer: AbsoluteUri) -> 'CrawlRecord':
        return CrawlRecord(self.page_crawled, self.status_code, self.links_to_page + (referrer,))

    @property
    def is_success(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


@dataclass(frozen=True)
class CrawlConfiguration:
    """
    Settings for one crawl. Supplied once, never mutated.

    Durations are in seconds.
    """
    base_url: AbsoluteUri
    max_inflight_requests: int = 10
    request_timeout: float = 5.0
    max_external_retries: int = 3
    default_external_retry_delay: float = 10.0
    worker_count: int = 5
    stats_interval: float = 5.0
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self):
        if not isinstance(self.base_url, AbsoluteUri):
            object.__setattr__(self, 'base_url', AbsoluteUri(self.base_url))
        if self.max_inflight_requests < 1:
            raise ValueError("max_inflight_requests must be at least 1")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if self.max_external_retries < 0:
            raise ValueError("max_external_retries must be non-negative")
        if self.default_external_retry_delay < 0:
            raise ValueError("default_external_retry_delay must be non-negative")
        if self.worker_count < 1:
            raise ValueError("worker_count must be at least 1")


@dataclass(frozen=True)
class CrawlReport:
    """
    Final result of a crawl.

    ``internal_links`` is keyed by the path relative to the root,
    ``external_links`` by the absolute URL string; both are sorted by key.
    """
    root_uri: AbsoluteUri
    internal_links: Mapping[str, CrawlRecord] = field(default_factory=dict)
    external_links: Mapping[str, CrawlRecord] = field(default_factory=dict)

    def __post_init__(self):
        for name in ('internal_links', 'external_links'):
            links = getattr(self, name)
            object.__setattr__(self, name, MappingProxyType(dict(sorted(links.items()))))

    @property
    def broken_links(self) -> Mapping[str, CrawlRecord]:
        """Every record, internal or external, that did not come back 2xx."""
        broken = {k: v for k, v in self.internal_links.items() if not v.is_success}
        broken.update((k, v) for k, v in self.external_links.items() if not v.is_success)
        return broken


# Messages

@dataclass(frozen=True)
class CrawlUrl:
    """Ask a worker to fetch ``url``."""
    url: AbsoluteUri
    link_kind: LinkKind = LinkKind.INTERNAL
    retry_count: int = 0


@dataclass(frozen=True)
class PageCrawled:
    """An internal page settled, with the links found on it."""
    url: AbsoluteUri
    status_code: int
    internal_links: Tuple[AbsoluteUri, ...] = ()
    external_links: Tuple[AbsoluteUri, ...] = ()

    @property
    def links(self) -> Tuple[Tuple[AbsoluteUri, LinkKind], ...]:
        return tuple((u, LinkKind.INTERNAL) for u in self.internal_links) + \
            tuple((u, LinkKind.EXTERNAL) for u in self.external_links)


@dataclass(frozen=True)
class ExternalLinkCrawled:
    """An external link settled. Terminal."""
    url: AbsoluteUri
    status_code: int


@dataclass(frozen=True)
class ExternalLinkRetryScheduled:
    """
    An external link was rate limited and will be retried.

    Transient: the URL stays in flight until a later ``ExternalLinkCrawled``.
    """
    url: AbsoluteUri
    status_code: int
    retry_count: int
    delay: float


CrawlResult = Union[PageCrawled, ExternalLinkCrawled, ExternalLinkRetryScheduled]
