"""
Configuration management for the link validator.

Settings come from built-in defaults, an optional YAML file and a couple of
environment variables, in that order of precedence (last wins). Command
line flags are applied on top by the CLI.
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union
from dataclasses import dataclass, field, fields

from ..crawler.models import DEFAULT_USER_AGENT, CrawlConfiguration
from ..crawler.uri_types import AbsoluteUri

ENV_MAX_EXTERNAL_RETRIES = 'LINK_VALIDATOR_MAX_EXTERNAL_RETRIES'
ENV_RETRY_DELAY_SECONDS = 'LINK_VALIDATOR_RETRY_DELAY_SECONDS'

logger = logging.getLogger(__name__)


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    max_inflight_requests: int = 10
    request_timeout: float = 5.0
    max_external_retries: int = 3
    retry_delay_seconds: float = 10.0
    worker_count: int = 5
    stats_interval: float = 5.0
    user_agent: str = DEFAULT_USER_AGENT


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = 'INFO'
    file: Optional[str] = None
    format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    def to_crawl_configuration(self, base_url: Union[str, AbsoluteUri]) -> CrawlConfiguration:
        """Freeze the crawler section into the settings for one crawl."""
        if not isinstance(base_url, AbsoluteUri):
            base_url = AbsoluteUri(base_url)

        return CrawlConfiguration(
            base_url=base_url,
            max_inflight_requests=self.crawler.max_inflight_requests,
            request_timeout=self.crawler.request_timeout,
            max_external_retries=self.crawler.max_external_retries,
            default_external_retry_delay=self.crawler.retry_delay_seconds,
            worker_count=self.crawler.worker_count,
            stats_interval=self.crawler.stats_interval,
            user_agent=self.crawler.user_agent
        )


def _section(cls, data: Optional[Dict[str, Any]], name: str):
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration section '{name}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in '{name}' section: {', '.join(sorted(unknown))}")
    return cls(**data)


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        self.config_path = Path(config_path) if config_path else None
        self.environ = os.environ if environ is None else environ
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from defaults, the YAML file and the environment."""
        config_data: Dict[str, Any] = {}

        if self.config_path is not None:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            with open(self.config_path, 'r') as file:
                config_data = yaml.safe_load(file) or {}

            if not isinstance(config_data, dict):
                raise ValueError(f"Configuration file must contain a mapping: {self.config_path}")

        self._config = Config(
            crawler=_section(CrawlerConfig, config_data.get('crawler'), 'crawler'),
            logging=_section(LoggingConfig, config_data.get('logging'), 'logging'),
            monitoring=_section(MonitoringConfig, config_data.get('monitoring'), 'monitoring')
        )

        self._apply_environment()
        self._validate_config()
        return self._config

    def _apply_environment(self):
        """Apply the environment variable overrides, ignoring unparsable values."""
        retries = self.environ.get(ENV_MAX_EXTERNAL_RETRIES)
        if retries:
            try:
                self._config.crawler.max_external_retries = int(retries)
            except ValueError:
                logger.warning(f"Ignoring invalid {ENV_MAX_EXTERNAL_RETRIES}={retries!r}")

        delay = self.environ.get(ENV_RETRY_DELAY_SECONDS)
        if delay:
            try:
                self._config.crawler.retry_delay_seconds = float(delay)
            except ValueError:
                logger.warning(f"Ignoring invalid {ENV_RETRY_DELAY_SECONDS}={delay!r}")

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ValueError("Configuration not loaded")

        crawler = self._config.crawler

        if crawler.max_inflight_requests < 1:
            raise ValueError("max_inflight_requests must be at least 1")

        if crawler.worker_count < 1:
            raise ValueError("worker_count must be at least 1")

        if crawler.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")

        if crawler.max_external_retries < 0:
            raise ValueError("max_external_retries must be non-negative")

        if crawler.retry_delay_seconds < 0:
            raise ValueError("retry_delay_seconds must be non-negative")

        if crawler.stats_interval <= 0:
            raise ValueError("stats_interval must be positive")

        if not isinstance(getattr(logging, self._config.logging.level.upper(), None), int):
            raise ValueError(f"Unknown log level: {self._config.logging.level}")

        logger.debug("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration, from ``config_path`` if given."""
    return ConfigManager(config_path).load_config()
