"""
Monitoring and metrics collection for the link validator.
"""

import time
import logging
from typing import Dict, Any

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest, start_http_server


class MetricsCollector:
    """Prometheus metrics for one crawl, kept in a private registry."""

    def __init__(self, enable_server: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.enable_server = enable_server
        self.prometheus_port = prometheus_port
        self.registry = CollectorRegistry()

        self.pages_crawled = Counter(
            'link_validator_pages_crawled_total',
            'Internal pages crawled, by status code',
            ['status_code'],
            registry=self.registry
        )
        self.external_links_checked = Counter(
            'link_validator_external_links_checked_total',
            'External links checked, by status code',
            ['status_code'],
            registry=self.registry
        )
        self.retries_scheduled = Counter(
            'link_validator_retries_scheduled_total',
            'Retries scheduled for rate-limited external links',
            registry=self.registry
        )
        self.pending_documents = Gauge(
            'link_validator_pending_documents',
            'URLs discovered but not yet settled',
            registry=self.registry
        )

        # Plain counts for the end-of-crawl summary
        self.totals: Dict[str, int] = {
            'pages_crawled': 0,
            'external_links_checked': 0,
            'retries_scheduled': 0,
            'broken_links': 0,
        }

    def start_server(self):
        """Expose the registry over HTTP if enabled."""
        if not self.enable_server:
            return

        try:
            start_http_server(self.prometheus_port, registry=self.registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def export_text(self) -> str:
        """Current metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry).decode('utf-8')


class CrawlerMonitor:
    """High-level monitoring interface for the crawl engine."""

    def __init__(self, metrics_collector: MetricsCollector):
        self.metrics = metrics_collector
        self.logger = logging.getLogger(__name__)
        self.start_time = time.time()

    def record_page_crawled(self, url: str, status_code: int):
        self.metrics.pages_crawled.labels(status_code=str(status_code)).inc()
        self.metrics.totals['pages_crawled'] += 1
        if not 200 <= status_code < 300:
            self.metrics.totals['broken_links'] += 1

    def record_external_checked(self, url: str, status_code: int):
        self.metrics.external_links_checked.labels(status_code=str(status_code)).inc()
        self.metrics.totals['external_links_checked'] += 1
        if not 200 <= status_code < 300:
            self.metrics.totals['broken_links'] += 1

    def record_retry_scheduled(self, url: str):
        self.metrics.retries_scheduled.inc()
        self.metrics.totals['retries_scheduled'] += 1

    def update_pending(self, count: int):
        self.metrics.pending_documents.set(count)

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        runtime = time.time() - self.start_time
        settled = self.metrics.totals['pages_crawled'] + self.metrics.totals['external_links_checked']

        return {
            'runtime_seconds': round(runtime, 2),
            'metrics': dict(self.metrics.totals),
            'urls_per_second': round(settled / runtime, 2) if runtime > 0 else 0,
        }


def initialize_monitoring(enable_server: bool = False, prometheus_port: int = 8000) -> CrawlerMonitor:
    """Build a monitor and start its metrics endpoint when enabled."""
    metrics_collector = MetricsCollector(enable_server, prometheus_port)
    metrics_collector.start_server()
    return CrawlerMonitor(metrics_collector)
