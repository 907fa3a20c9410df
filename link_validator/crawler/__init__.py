"""
Crawl engine components.
"""

from .uri_types import AbsoluteUri, RelativeUri, UriKindError
from .models import (
    CrawlConfiguration, CrawlRecord, CrawlReport, CrawlStatus, LinkKind
)
from .parser import LinkExtractor, extract_links
from .fetcher import WebFetcher, FetchResult
from .worker import CrawlWorker, WorkerPool
from .coordinator import CrawlCoordinator, crawl_website

__all__ = [
    'AbsoluteUri', 'RelativeUri', 'UriKindError',
    'CrawlConfiguration', 'CrawlRecord', 'CrawlReport', 'CrawlStatus', 'LinkKind',
    'LinkExtractor', 'extract_links',
    'WebFetcher', 'FetchResult',
    'CrawlWorker', 'WorkerPool',
    'CrawlCoordinator', 'crawl_website'
]
