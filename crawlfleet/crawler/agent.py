"""
Crawl agent: drives one URL frontier until it drains.

Each iteration pops the head task, consults the robots gate, fetches and
parses the page, enqueues unvisited children (prioritized batch first) and
publishes the page result. Per-task failures are logged and counted;
TransportError from the publisher, or any unexpected error, ends the loop
and leaves the agent FAILED.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from ..errors import FetchError, PolicyError, SerializationError, StoreError, TransportError
from ..messaging.messages import PageResult
from ..messaging.publisher import Publisher
from ..storage.dedup_store import DedupStore
from ..utils.logger import get_crawler_logger
from ..utils.monitoring import CrawlerMonitor
from ..models import PageContent, PageResponse
from .fetcher import Fetcher
from .robots import RobotsGate
from .url_frontier import CrawlTask, URLFrontier


class AgentState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINED = "drained"
    FAILED = "failed"


@dataclass
class AgentStats:
    """Per-agent task outcome counters."""
    executed: int = 0
    published: int = 0
    policy_denied: int = 0
    fetch_failed: int = 0
    publish_failed: int = 0
    duplicates_skipped: int = 0
    store_errors: int = 0
    links_enqueued: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class CrawlAgent:
    """
    One concurrent worker owning a crawl queue.

    The dedup store, robots gate and publisher may be shared with other
    agents; the frontier is never shared.
    """

    def __init__(self, name: str, fetcher: Fetcher, dedup_store: DedupStore,
                 publisher: Publisher, robots_gate: Optional[RobotsGate] = None,
                 max_depth: int = 2, respect_robots_txt: bool = True,
                 keywords: Optional[Sequence[str]] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        if respect_robots_txt and robots_gate is None:
            raise ValueError("respect_robots_txt requires a robots gate")
        if max_depth < 0:
            raise ValueError(f"max_depth must be non-negative, got {max_depth}")

        self.name = name
        self.fetcher = fetcher
        self.dedup_store = dedup_store
        self.publisher = publisher
        self.robots_gate = robots_gate
        self.max_depth = max_depth
        self.respect_robots_txt = respect_robots_txt
        self.monitor = monitor

        self.frontier = URLFrontier(keywords)
        self.state = AgentState.IDLE
        self.stats = AgentStats()
        self.logger = get_crawler_logger(__name__, agent=name)

    @classmethod
    def with_seeds(cls, agent_id: int, agent_type: str, seeds: Iterable[str],
                   **kwargs) -> 'CrawlAgent':
        """Create an agent named crawler-{type}-{id} with seeds queued at depth 0."""
        agent = cls(f"crawler-{agent_type}-{agent_id}", **kwargs)
        for url in seeds:
            agent.push(CrawlTask(url, 0))
        agent.logger.info(f"Created with {len(agent.frontier)} seed URLs")
        return agent

    @property
    def keywords(self) -> Sequence[str]:
        return self.frontier.keywords

    def push(self, task: CrawlTask):
        """Append a task to the tail of the queue."""
        self.frontier.push(task)

    def pending(self) -> List[CrawlTask]:
        return self.frontier.snapshot()

    async def run(self) -> AgentStats:
        """
        Process tasks until the queue is empty.

        Any exception escaping the loop leaves the agent FAILED.

        Raises:
            TransportError: the publisher lost its broker connection
        """
        self.state = AgentState.RUNNING
        self.logger.info("Starting crawler agent")

        try:
            await self._drain()
        except BaseException as e:
            self.state = AgentState.FAILED
            if isinstance(e, Exception) and not isinstance(e, TransportError):
                self.logger.exception("Crawler agent stopped by an unexpected error")
            raise

        self.state = AgentState.DRAINED
        self.logger.info(f"Crawler agent finished: {self.stats.to_dict()}")
        return self.stats

    async def _drain(self):
        while True:
            task = self.frontier.pop()
            if task is None:
                break

            try:
                response = await self.execute(task)
            except PolicyError as e:
                self.stats.policy_denied += 1
                self._record_error('policy')
                self.logger.warning(str(e))
            except FetchError as e:
                self.stats.fetch_failed += 1
                self._record_error('fetch')
                self.logger.error(f"Error executing request for {task.target}: {e}")
            except TransportError:
                self.logger.error(f"Transport failure while processing {task.target}, stopping")
                raise
            else:
                self.logger.info(f"Processed {task.target} with status code {response.status_code}")

            if self.monitor:
                self.monitor.update_queue_size(self.name, len(self.frontier))

    async def execute(self, task: CrawlTask) -> PageResponse:
        """
        Execute one task.

        Raises:
            PolicyError: robots.txt refused the URL; nothing was fetched
            FetchError: fetching or parsing failed
            TransportError: publishing failed at the connection level
        """
        self.stats.executed += 1
        self.logger.debug(f"Executing request for {task.target} at depth {task.depth}")

        if self.respect_robots_txt and not await self.robots_gate.is_allowed(task.target):
            raise PolicyError(f"URL is not allowed by robots.txt: {task.target}")

        response = await self.fetcher.fetch(task.target)
        if self.monitor:
            self.monitor.record_page_fetched()

        if task.depth < self.max_depth:
            if isinstance(response.extra, PageContent) and response.extra.links:
                await self._expand(task, response.extra.links)
        else:
            self.logger.debug(f"Max depth reached for {task.target}, not enqueuing new links")

        await self._publish(PageResult.from_response(task.target, response))
        return response

    async def _expand(self, parent: CrawlTask, links: Sequence[str]):
        """Mark unvisited links and enqueue them as children of parent."""
        self.logger.debug(f"Found {len(links)} links on {parent.target}")
        unvisited = []
        for link in links:
            if await self._is_visited(link):
                self.stats.duplicates_skipped += 1
                if self.monitor:
                    self.monitor.record_duplicate_skipped()
                continue
            await self._mark_visited(link)
            unvisited.append(link)

        prioritized, default = self.frontier.push_children(parent, unvisited)
        self.stats.links_enqueued += prioritized + default
        if self.monitor:
            self.monitor.record_links_enqueued(prioritized, default)

    async def _is_visited(self, link: str) -> bool:
        # A store failure counts as unvisited.
        try:
            return await self.dedup_store.exists(link)
        except StoreError as e:
            self.stats.store_errors += 1
            self._record_error('store')
            self.logger.warning(f"Dedup check failed, treating as unvisited: {e}")
            return False

    async def _mark_visited(self, link: str):
        try:
            await self.dedup_store.mark(link)
        except StoreError as e:
            self.stats.store_errors += 1
            self._record_error('store')
            self.logger.warning(f"Dedup mark failed for {link}: {e}")

    async def _publish(self, result: PageResult):
        try:
            await self.publisher.enqueue(result)
        except SerializationError as e:
            self.stats.publish_failed += 1
            self._record_error('serialization')
            self.logger.error(f"Failed to publish {result.url}: {e}")
            return
        self.stats.published += 1

    def _record_error(self, error_type: str):
        if self.monitor:
            self.monitor.record_error(error_type)
