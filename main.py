#!/usr/bin/env python3
"""
Main entry point for the crawler fleet.

    python main.py crawl --config config.yaml
    python main.py consume --config config.yaml
"""

import asyncio
import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from crawlfleet import __version__
from crawlfleet.crawler.supervisor import CrawlSupervisor
from crawlfleet.crawler.validators import is_valid_url
from crawlfleet.errors import ConfigError, CrawlerError, TransportError
from crawlfleet.messaging.broker import BrokerConnection
from crawlfleet.messaging.consumer import Consumer
from crawlfleet.storage.page_store import PageStore
from crawlfleet.utils.config import Config, load_config, load_seeds
from crawlfleet.utils.logger import log_system_info, setup_logging
from crawlfleet.utils.monitoring import CrawlerMonitor


class CrawlerApp:
    """Main application class for the crawler fleet."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self.monitor: Optional[CrawlerMonitor] = None

    def setup(self, config: Config):
        setup_logging(config.logging)
        log_system_info()
        self.monitor = CrawlerMonitor()
        if config.monitoring.metrics_enabled:
            self.monitor.start_server(config.monitoring.prometheus_port)

    def setup_signal_handlers(self, on_shutdown=None):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            if on_shutdown:
                on_shutdown()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                # add_signal_handler is unavailable on Windows event loops
                pass

    def resolve_seeds(self, config: Config, seeds_file: Optional[str], urls: List[str]) -> List[str]:
        """Seeds from CLI arguments, else the seed file, else the config."""
        if urls:
            candidates = urls
        elif seeds_file:
            return load_seeds(seeds_file, validator=is_valid_url)
        else:
            candidates = config.crawler.seed_urls

        seeds = []
        for url in candidates:
            if is_valid_url(url):
                seeds.append(url)
            else:
                self.logger.warning(f"Dropping invalid seed URL: {url}")
        return seeds

    async def crawl(self, config: Config, seeds: List[str], dry_run: bool = False) -> int:
        """Run the crawl to completion. Returns the process exit code."""
        self.logger.info("=== CRAWLER FLEET STARTING ===")
        self.logger.info(f"Seed URLs: {len(seeds)}")
        self.logger.info(f"Agents: {config.crawler.agents} ({config.crawler.agent_type})")
        self.logger.info(f"Max depth: {config.crawler.max_depth}")
        self.logger.info(f"Respect robots.txt: {config.crawler.respect_robots_txt}")
        self.logger.info(f"Dedup backend: {config.dedup.backend}")

        if not seeds:
            self.logger.error("No valid seed URLs to crawl")
            return 1

        supervisor = CrawlSupervisor(config, monitor=self.monitor)
        try:
            await supervisor.initialize()
            if dry_run:
                self.logger.info("DRY RUN MODE: connections verified, no crawling performed")
                return 0

            crawl_task = asyncio.create_task(supervisor.run(seeds))
            self.setup_signal_handlers(on_shutdown=crawl_task.cancel)
            try:
                report = await crawl_task
            except asyncio.CancelledError:
                self.logger.info("Crawl cancelled by shutdown request")
                return 1

            for failure in report.failures:
                self.logger.error(f"Agent failure: {failure}")
            return 0 if report.succeeded else 1

        except CrawlerError as e:
            self.logger.error(f"Fatal error: {e}")
            return 1
        finally:
            await supervisor.close()
            self.logger.info("=== CRAWLER FLEET FINISHED ===")

    async def consume(self, config: Config, max_messages: Optional[int] = None) -> int:
        """Store consumed page results until stopped. Returns the exit code."""
        self.logger.info("=== PAGE CONSUMER STARTING ===")
        page_store = PageStore(config.storage.data_directory)
        connection = BrokerConnection(config.broker)
        try:
            page_store.initialize()
            await connection.connect()
            consumer = Consumer(connection, monitor=self.monitor)
            self.setup_signal_handlers(on_shutdown=consumer.stop)

            stats = await consumer.consume(page_store.store_page, max_messages=max_messages)
            self.logger.info(f"Consumed {stats.received} messages: "
                             f"{stats.acked} acked, {stats.rejected} rejected")
            return 0

        except TransportError as e:
            self.logger.error(f"Consumer transport failure: {e}")
            return 1
        except CrawlerError as e:
            self.logger.error(f"Fatal error: {e}")
            return 1
        finally:
            page_store.close()
            await connection.close()
            self.logger.info("=== PAGE CONSUMER FINISHED ===")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Distributed crawler fleet",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py crawl                              # Crawl seeds from config.yaml
  python main.py crawl --seeds seeds.txt --agents 8 # Seeds from a file, 8 agents
  python main.py crawl https://example.com/         # Seeds from the command line
  python main.py crawl --dry-run                    # Verify connections only
  python main.py consume --max-messages 100         # Store 100 pages and exit
        """
    )
    parser.add_argument('--version', action='version', version=f'crawlfleet {__version__}')

    subparsers = parser.add_subparsers(dest='command', required=True)

    crawl = subparsers.add_parser('crawl', help='Run crawl agents over the seed URLs')
    crawl.add_argument('urls', nargs='*', help='Seed URLs (override config and --seeds)')
    crawl.add_argument('--config',
                       help='Path to configuration file (default: config.yaml if present)')
    crawl.add_argument('--seeds', help='File with one seed URL per line')
    crawl.add_argument('--agents', type=int, help='Number of concurrent agents')
    crawl.add_argument('--max-depth', type=int, help='Maximum link depth from a seed')
    crawl.add_argument('--no-robots', action='store_true', help='Ignore robots.txt')
    crawl.add_argument('--dry-run', action='store_true',
                       help='Test configuration and connections without crawling')

    consume = subparsers.add_parser('consume', help='Store published pages to disk')
    consume.add_argument('--config',
                         help='Path to configuration file (default: config.yaml if present)')
    consume.add_argument('--max-messages', type=int, help='Stop after this many messages')

    return parser


DEFAULT_CONFIG_PATH = 'config.yaml'


def resolve_config_path(config_path: Optional[str]) -> Optional[str]:
    """An explicit path must exist; the default is used only when present."""
    if config_path:
        return config_path
    if Path(DEFAULT_CONFIG_PATH).exists():
        return DEFAULT_CONFIG_PATH
    return None


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(resolve_config_path(args.config))
        if args.command == 'crawl':
            if args.agents is not None:
                config.crawler.agents = args.agents
            if args.max_depth is not None:
                config.crawler.max_depth = args.max_depth
            if args.no_robots:
                config.crawler.respect_robots_txt = False
            if config.crawler.agents < 1:
                raise ConfigError("--agents must be at least 1")
            if config.crawler.max_depth < 0:
                raise ConfigError("--max-depth must be non-negative")
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    app = CrawlerApp()
    app.setup(config)

    try:
        if args.command == 'crawl':
            seeds = app.resolve_seeds(config, args.seeds, args.urls)
            return asyncio.run(app.crawl(config, seeds, dry_run=args.dry_run))
        return asyncio.run(app.consume(config, max_messages=args.max_messages))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
