"""
Command line entry point for the link validator.
"""

import asyncio
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .crawler.coordinator import crawl_website
from .crawler.models import CrawlConfiguration, CrawlReport
from .crawler.uri_helpers import HTTP_SCHEMES
from .crawler.uri_types import AbsoluteUri, UriKindError
from .reporting.diff import compare_sitemaps
from .reporting.markdown import generate_markdown
from .utils.config import Config, ConfigManager
from .utils.logger import log_system_info, setup_logging
from .utils.monitoring import initialize_monitoring


class LinkValidatorApp:
    """Main application class for the link validator."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def build_config(self, args: argparse.Namespace) -> Config:
        """Load configuration and apply command line overrides."""
        config = ConfigManager(args.config).load_config()

        if args.max_external_retries is not None:
            config.crawler.max_external_retries = args.max_external_retries
        if args.retry_delay_seconds is not None:
            config.crawler.retry_delay_seconds = args.retry_delay_seconds
        if args.log_level:
            config.logging.level = args.log_level
        if args.json_logs:
            config.logging.json = True

        return config

    async def crawl(self, config: Config, crawl_config: CrawlConfiguration) -> CrawlReport:
        monitor = initialize_monitoring(config.monitoring.metrics_enabled, config.monitoring.prometheus_port)

        self.logger.info("=== LINK VALIDATOR STARTING ===")
        self.logger.info(f"Base URL: {crawl_config.base_url}")
        self.logger.info(f"Workers: {crawl_config.worker_count} x {crawl_config.max_inflight_requests} inflight requests")
        self.logger.info(f"Request timeout: {crawl_config.request_timeout}s")
        self.logger.info(
            f"External retries: {crawl_config.max_external_retries} "
            f"(default delay {crawl_config.default_external_retry_delay}s)"
        )

        return await crawl_website(crawl_config, monitor=monitor)

    def run(self, args: argparse.Namespace) -> int:
        """Run one crawl and write/diff its report. Returns the exit code."""
        try:
            base_url = AbsoluteUri(args.url)
        except UriKindError:
            base_url = None
        if base_url is None or base_url.scheme not in HTTP_SCHEMES:
            print(f"Invalid URL [{args.url}] - must be an absolute uri.", file=sys.stderr)
            return 1

        try:
            config = self.build_config(args)
            setup_logging(config.logging)
            log_system_info()
            crawl_config = config.to_crawl_configuration(base_url)
        except (OSError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        try:
            report = asyncio.run(self.crawl(config, crawl_config))
        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        markdown = generate_markdown(report)
        if args.output:
            Path(args.output).write_text(markdown, encoding='utf-8')
            self.logger.info(f"Report written to: {args.output}")
        else:
            sys.stdout.write(markdown)

        if args.diff:
            try:
                previous = Path(args.diff).read_text(encoding='utf-8')
            except OSError as e:
                print(f"Error reading previous sitemap: {e}", file=sys.stderr)
                return 1
            differences, has_errors = compare_sitemaps(previous, markdown)
            for difference in differences:
                print(difference)

            if args.strict and has_errors:
                return 1

        return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='link-validator',
        description=(
            "Crawl a website and report on internal and external link status. "
            "Use in CI/CD pipelines to find broken links."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  link-validator --url https://example.com
  link-validator --url https://example.com --output sitemap.md
  link-validator --url https://example.com --diff sitemap.md --strict
        """
    )

    parser.add_argument('--url', required=True, help='The URL to crawl')
    parser.add_argument('--output', help='Write the Markdown sitemap to this file instead of stdout')
    parser.add_argument('--diff', help='Previous sitemap to compare against')
    parser.add_argument(
        '--strict',
        action='store_true',
        help='Return an error code if pages are missing or returning 400+ status codes'
    )
    parser.add_argument(
        '--max-external-retries',
        type=int,
        help='Maximum retry attempts for external URLs returning 429 (default: 3, '
             'or LINK_VALIDATOR_MAX_EXTERNAL_RETRIES)'
    )
    parser.add_argument(
        '--retry-delay-seconds',
        type=float,
        help='Retry delay when no Retry-After header is present (default: 10, '
             'or LINK_VALIDATOR_RETRY_DELAY_SECONDS)'
    )
    parser.add_argument('--config', help='Optional YAML configuration file')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Log level')
    parser.add_argument('--json-logs', action='store_true', help='Emit logs as JSON')
    parser.add_argument('--version', action='version', version=f'LinkValidator {__version__}')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    app = LinkValidatorApp()
    try:
        return app.run(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
