"""
Monitoring and metrics collection for the crawler fleet.
"""

import time
import logging
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server


class CrawlerMonitor:
    """
    Prometheus metrics for agents, the publisher and the consumer.

    Metrics live in a private registry so several monitors can coexist in
    one process (tests, embedded use).
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.logger = logging.getLogger(__name__)
        self.registry = registry or CollectorRegistry()
        self.start_time = time.time()

        self.pages_fetched = Counter(
            'crawler_pages_fetched_total',
            'Pages fetched and parsed',
            registry=self.registry
        )
        self.pages_published = Counter(
            'crawler_pages_published_total',
            'Page results accepted by the broker',
            registry=self.registry
        )
        self.errors = Counter(
            'crawler_errors_total',
            'Crawl errors by type',
            ['error_type'],
            registry=self.registry
        )
        self.duplicates_skipped = Counter(
            'crawler_duplicates_skipped_total',
            'Discovered links skipped as already visited',
            registry=self.registry
        )
        self.links_enqueued = Counter(
            'crawler_links_enqueued_total',
            'Child tasks added to agent queues',
            ['priority'],
            registry=self.registry
        )
        self.messages_settled = Counter(
            'crawler_messages_settled_total',
            'Consumed messages by outcome',
            ['outcome'],
            registry=self.registry
        )
        self.queue_size = Gauge(
            'crawler_queue_size',
            'Tasks waiting in an agent queue',
            ['agent'],
            registry=self.registry
        )
        self.active_agents = Gauge(
            'crawler_active_agents',
            'Agents currently running',
            registry=self.registry
        )

    def start_server(self, port: int):
        """Expose the registry over HTTP."""
        start_http_server(port, registry=self.registry)
        self.logger.info(f"Prometheus metrics server started on port {port}")

    def record_page_fetched(self):
        self.pages_fetched.inc()

    def record_page_published(self):
        self.pages_published.inc()

    def record_error(self, error_type: str):
        self.errors.labels(error_type=error_type).inc()

    def record_duplicate_skipped(self):
        self.duplicates_skipped.inc()

    def record_links_enqueued(self, prioritized: int, default: int):
        if prioritized:
            self.links_enqueued.labels(priority='prioritized').inc(prioritized)
        if default:
            self.links_enqueued.labels(priority='default').inc(default)

    def record_message_settled(self, outcome: str):
        self.messages_settled.labels(outcome=outcome).inc()

    def update_queue_size(self, agent: str, size: int):
        self.queue_size.labels(agent=agent).set(size)

    def update_active_agents(self, count: int):
        self.active_agents.set(count)

    def value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Current value of a sample, 0.0 when it has not been recorded."""
        sample = self.registry.get_sample_value(name, labels or {})
        return sample if sample is not None else 0.0

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the headline metrics."""
        runtime = time.time() - self.start_time
        fetched = self.value('crawler_pages_fetched_total')
        published = self.value('crawler_pages_published_total')
        return {
            'runtime_seconds': runtime,
            'pages_fetched': fetched,
            'pages_published': published,
            'duplicates_skipped': self.value('crawler_duplicates_skipped_total'),
            'pages_per_minute': published / (runtime / 60) if runtime > 0 else 0,
        }
