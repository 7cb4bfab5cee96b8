"""
Configuration management for the crawler fleet.

Settings are read once at startup from a YAML file, then overridden from the
environment (a .env file is loaded first), validated, and passed into the
core as plain values.
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field, fields

from dotenv import load_dotenv

from ..errors import ConfigError


@dataclass
class CrawlerConfig:
    """Configuration for crawl agents."""
    seed_urls: List[str] = field(default_factory=list)
    max_depth: int = 2
    agents: int = 4
    agent_type: str = "generic"
    respect_robots_txt: bool = True
    keywords: List[str] = field(default_factory=lambda: ["news", "article", "blog"])
    user_agent: str = "crawlfleet/1.0"
    request_timeout: int = 30
    max_concurrent_requests: int = 10
    stats_interval: float = 30.0


@dataclass
class DedupConfig:
    """Configuration for the visited-URL store."""
    backend: str = "redis"
    visited_key: str = "crawler:visited_urls"


@dataclass
class RedisConfig:
    """Configuration for the Redis cache backing the dedup store."""
    host: str = "127.0.0.1"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


@dataclass
class BrokerConfig:
    """Configuration for the outbound message stream."""
    host: str = "127.0.0.1"
    port: int = 6379
    db: int = 0
    user: Optional[str] = None
    password: Optional[str] = None
    queue: str = "default_queue"
    group: str = "page-consumers"
    consumer_tag: str = "crawler-generic"
    expected_content_type: str = "*"
    block_ms: int = 5000
    batch_size: int = 10
    claim_idle_ms: Optional[int] = None
    max_length: Optional[int] = None
    dead_letter_stream: Optional[str] = None


@dataclass
class StorageConfig:
    """Configuration for the downstream page store."""
    data_directory: str = "data"


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/crawler.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
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
    dedup: DedupConfig = field(default_factory=DedupConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ('1', 'true', 'yes', 'on'):
        return True
    if lowered in ('0', 'false', 'no', 'off'):
        return False
    raise ValueError(f"not a boolean: {value!r}")


# (environment variable, section, attribute, converter)
ENV_OVERRIDES = [
    ('REDIS_HOST', 'redis', 'host', str),
    ('REDIS_PORT', 'redis', 'port', int),
    ('REDIS_DB', 'redis', 'db', int),
    ('BROKER_USER', 'broker', 'user', str),
    ('BROKER_PASSWORD', 'broker', 'password', str),
    ('BROKER_HOST', 'broker', 'host', str),
    ('BROKER_PORT', 'broker', 'port', int),
    ('BROKER_QUEUE', 'broker', 'queue', str),
    ('BROKER_CONSUMER_TAG', 'broker', 'consumer_tag', str),
    ('EXPECTED_CONTENT_TYPE', 'broker', 'expected_content_type', str),
    ('CRAWLER_TYPE', 'crawler', 'agent_type', str),
    ('N_AGENTS', 'crawler', 'agents', int),
    ('MAX_DEPTH', 'crawler', 'max_depth', int),
    ('RESPECT_ROBOTS_TXT', 'crawler', 'respect_robots_txt', _parse_bool),
]

SECTION_TYPES = {f.name: f.default_factory for f in fields(Config)}


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: Optional[str] = "config.yaml",
                 environ: Optional[Dict[str, str]] = None):
        self.config_path = Path(config_path) if config_path else None
        self.environ = environ
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML and the environment, then validate."""
        config_data: Dict[str, Any] = {}
        if self.config_path is not None:
            if not self.config_path.exists():
                raise ConfigError(f"Configuration file not found: {self.config_path}")
            try:
                with open(self.config_path, 'r') as file:
                    config_data = yaml.safe_load(file) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {self.config_path}: {e}")
            if not isinstance(config_data, dict):
                raise ConfigError(f"Configuration root must be a mapping: {self.config_path}")

        self._config = self._build(config_data)

        if self.environ is None:
            load_dotenv()
            environ = os.environ
        else:
            environ = self.environ
        self._apply_env(environ)

        if 'consumer_tag' not in (config_data.get('broker') or {}) and not environ.get('BROKER_CONSUMER_TAG'):
            self._config.broker.consumer_tag = f"crawler-{self._config.crawler.agent_type.strip()}"

        self._validate_config()
        return self._config

    def _build(self, config_data: Dict[str, Any]) -> Config:
        sections = {}
        for name, factory in SECTION_TYPES.items():
            section_data = config_data.get(name) or {}
            if not isinstance(section_data, dict):
                raise ConfigError(f"Section '{name}' must be a mapping")
            try:
                sections[name] = factory(**section_data)
            except TypeError as e:
                raise ConfigError(f"Invalid settings in section '{name}': {e}")
        return Config(**sections)

    def _apply_env(self, environ: Dict[str, str]):
        for variable, section, attribute, convert in ENV_OVERRIDES:
            raw = environ.get(variable)
            if raw is None or raw == '':
                continue
            try:
                value = convert(raw)
            except ValueError as e:
                raise ConfigError(f"Invalid value for {variable}: {e}")
            setattr(getattr(self._config, section), attribute, value)

    def _validate_config(self):
        """Validate configuration values."""
        config = self._config
        if config is None:
            raise ConfigError("Configuration not loaded")

        if config.crawler.agents < 1:
            raise ConfigError("crawler.agents must be at least 1")

        if config.crawler.max_depth < 0:
            raise ConfigError("crawler.max_depth must be non-negative")

        if config.crawler.max_concurrent_requests < 1:
            raise ConfigError("crawler.max_concurrent_requests must be at least 1")

        if config.crawler.stats_interval <= 0:
            raise ConfigError("crawler.stats_interval must be positive")

        if config.dedup.backend not in ('redis', 'memory'):
            raise ConfigError("dedup.backend must be 'redis' or 'memory'")

        for name, port in (('redis.port', config.redis.port), ('broker.port', config.broker.port)):
            if not 0 < port < 65536:
                raise ConfigError(f"{name} must be between 1 and 65535")

        if not config.broker.queue:
            raise ConfigError("broker.queue must not be empty")

        if config.broker.batch_size < 1:
            raise ConfigError("broker.batch_size must be at least 1")

        if config.broker.claim_idle_ms is not None and config.broker.claim_idle_ms < 1:
            raise ConfigError("broker.claim_idle_ms must be at least 1")

        logging.getLogger(__name__).debug("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ConfigError("Configuration not loaded. Call load_config() first.")
        return self._config


def load_config(config_path: Optional[str] = "config.yaml",
                environ: Optional[Dict[str, str]] = None) -> Config:
    """Load configuration from file and environment."""
    return ConfigManager(config_path, environ).load_config()


def load_seeds(path: str, validator: Optional[Callable[[str], bool]] = None) -> List[str]:
    """
    Read seed URLs from a file, one per line. Blank lines and `#` comments
    are skipped; URLs failing the validator are dropped with a warning.
    """
    seeds_path = Path(path)
    if not seeds_path.exists():
        raise ConfigError(f"Seed file not found: {seeds_path}")

    logger = logging.getLogger(__name__)
    seeds = []
    with open(seeds_path, 'r', encoding='utf-8') as file:
        for line in file:
            url = line.split('#', 1)[0].strip()
            if not url:
                continue
            if validator is not None and not validator(url):
                logger.warning(f"Dropping invalid seed URL: {url}")
                continue
            seeds.append(url)
    return seeds
