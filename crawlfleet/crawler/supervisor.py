"""
Supervisor that partitions seeds across agents and runs them to completion.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..errors import ConfigError
from ..messaging.broker import BrokerConnection
from ..messaging.publisher import Publisher
from ..storage.dedup_store import DedupStore, MemoryDedupStore, RedisDedupStore
from ..utils.config import Config
from ..utils.monitoring import CrawlerMonitor
from .agent import AgentState, AgentStats, CrawlAgent
from .fetcher import Fetcher, WebFetcher
from .robots import RobotsGate


def partition_seeds(seeds: Sequence[str], n: int) -> List[List[str]]:
    """
    Split seeds into n contiguous chunks of ceil(len(seeds) / n).

    Trailing chunks may be smaller or empty; exactly n chunks are returned.
    """
    if n < 1:
        raise ConfigError(f"agent count must be at least 1, got {n}")
    chunk_size = max(1, math.ceil(len(seeds) / n))
    return [list(seeds[i * chunk_size:(i + 1) * chunk_size]) for i in range(n)]


@dataclass
class AgentFailure:
    """An agent that stopped with a propagated error."""
    agent: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.agent}: {type(self.error).__name__}: {self.error}"


@dataclass
class CrawlReport:
    """Outcome of one supervised crawl."""
    agent_stats: Dict[str, AgentStats] = field(default_factory=dict)
    failures: List[AgentFailure] = field(default_factory=list)
    elapsed_time: float = 0.0

    @property
    def succeeded(self) -> bool:
        return not self.failures

    def totals(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for stats in self.agent_stats.values():
            for key, value in stats.to_dict().items():
                totals[key] = totals.get(key, 0) + value
        return totals


class CrawlSupervisor:
    """
    Builds the shared components, fans seeds out to agents, and waits for
    every agent to drain. One agent's failure is reported, never used to
    cancel its siblings.
    """

    def __init__(self, config: Config, fetcher: Optional[Fetcher] = None,
                 dedup_store: Optional[DedupStore] = None,
                 publisher: Optional[Publisher] = None,
                 robots_gate: Optional[RobotsGate] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.fetcher = fetcher
        self.dedup_store = dedup_store
        self.publisher = publisher
        self.robots_gate = robots_gate
        self.monitor = monitor

        self.agents: List[CrawlAgent] = []
        self.is_running = False
        self._owned: List[object] = []

    async def initialize(self):
        """Create any component that was not injected."""
        crawler = self.config.crawler

        if self.fetcher is None:
            self.fetcher = WebFetcher(
                user_agent=crawler.user_agent,
                request_timeout=crawler.request_timeout,
                max_concurrent_requests=crawler.max_concurrent_requests
            )
            self._owned.append(self.fetcher)

        if self.robots_gate is None and crawler.respect_robots_txt:
            self.robots_gate = RobotsGate(self.fetcher)

        if self.dedup_store is None:
            self.dedup_store = await self._build_dedup_store()
            self._owned.append(self.dedup_store)

        if self.publisher is None:
            connection = await BrokerConnection(self.config.broker).connect()
            self.publisher = Publisher(connection, monitor=self.monitor)
            self._owned.append(self.publisher)

        self.logger.info("Crawl supervisor initialized")

    async def _build_dedup_store(self) -> DedupStore:
        if self.config.dedup.backend == 'memory':
            self.logger.info("Using in-process dedup store")
            return MemoryDedupStore()

        redis_config = self.config.redis
        store = RedisDedupStore.from_url_parts(
            host=redis_config.host,
            port=redis_config.port,
            db=redis_config.db,
            password=redis_config.password,
            visited_key=self.config.dedup.visited_key
        )
        await store.ping()
        return store

    def build_agents(self, seeds: Sequence[str], n_agents: Optional[int] = None) -> List[CrawlAgent]:
        """One agent per non-empty seed chunk."""
        crawler = self.config.crawler
        n = crawler.agents if n_agents is None else n_agents

        agents = []
        for agent_id, chunk in enumerate(partition_seeds(seeds, n)):
            if not chunk:
                continue
            agents.append(CrawlAgent.with_seeds(
                agent_id,
                crawler.agent_type,
                chunk,
                fetcher=self.fetcher,
                dedup_store=self.dedup_store,
                publisher=self.publisher,
                robots_gate=self.robots_gate,
                max_depth=crawler.max_depth,
                respect_robots_txt=crawler.respect_robots_txt,
                keywords=crawler.keywords,
                monitor=self.monitor
            ))
        return agents

    async def run(self, seeds: Sequence[str], n_agents: Optional[int] = None) -> CrawlReport:
        """
        Run one agent per seed chunk concurrently and wait for all of them.

        Returns:
            CrawlReport with per-agent stats and any propagated failures
        """
        await self.initialize()

        report = CrawlReport()
        start_time = time.time()
        self.agents = self.build_agents(seeds, n_agents)
        if not self.agents:
            self.logger.warning("No seeds to crawl")
            return report

        self.is_running = True
        if self.monitor:
            self.monitor.update_active_agents(len(self.agents))
        self.logger.info(f"Started crawling with {len(self.agents)} agents")

        stats_task = asyncio.create_task(self._stats_reporter())
        try:
            results = await asyncio.gather(
                *(agent.run() for agent in self.agents),
                return_exceptions=True
            )
        finally:
            self.is_running = False
            stats_task.cancel()
            await asyncio.gather(stats_task, return_exceptions=True)
            if self.monitor:
                self.monitor.update_active_agents(0)

        for agent, result in zip(self.agents, results):
            report.agent_stats[agent.name] = agent.stats
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                self.logger.error(f"Agent {agent.name} failed: {result}")
                report.failures.append(AgentFailure(agent.name, result))

        report.elapsed_time = time.time() - start_time
        self._log_final_stats(report)
        return report

    async def _stats_reporter(self):
        """Periodically log crawl progress."""
        while self.is_running:
            await asyncio.sleep(self.config.crawler.stats_interval)
            self._log_current_stats()

    def _log_current_stats(self):
        queued = sum(len(agent.frontier) for agent in self.agents)
        executed = sum(agent.stats.executed for agent in self.agents)
        published = sum(agent.stats.published for agent in self.agents)
        running = sum(1 for agent in self.agents if agent.state is AgentState.RUNNING)
        self.logger.info(
            f"Crawl Progress: Agents={running}/{len(self.agents)}, "
            f"Executed={executed}, Published={published}, Queued={queued}"
        )

    def _log_final_stats(self, report: CrawlReport):
        totals = report.totals()
        self.logger.info("=== CRAWL COMPLETED ===")
        self.logger.info(f"Agents: {len(report.agent_stats)}, failed: {len(report.failures)}")
        for key, value in totals.items():
            self.logger.info(f"{key}: {value}")
        self.logger.info(f"Total time: {report.elapsed_time:.2f} seconds")
        if self.robots_gate:
            self.logger.info(f"Robots gate stats: {self.robots_gate.stats}")

    async def close(self):
        """Close every component this supervisor created."""
        for component in reversed(self._owned):
            try:
                await component.close()
            except Exception as e:
                self.logger.error(f"Error during cleanup of {type(component).__name__}: {e}")
        self._owned.clear()
        self.logger.info("Crawl supervisor closed")
