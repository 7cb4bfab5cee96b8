"""
Per-agent URL frontier: a FIFO queue of crawl tasks with keyword-weighted
expansion of discovered links.
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Iterable, List, Optional, Sequence, Tuple


DEFAULT_KEYWORDS = ("news", "article", "blog")


class URLPriority(Enum):
    """Expansion batch a discovered link lands in."""
    DEFAULT = 1
    PRIORITIZED = 2


@dataclass(frozen=True)
class CrawlTask:
    """A URL to crawl and its distance in hops from a seed."""
    target: str
    depth: int = 0

    def __post_init__(self):
        if self.depth < 0:
            raise ValueError(f"depth must be non-negative, got {self.depth}")

    def child(self, url: str) -> 'CrawlTask':
        """Task for a link discovered on this task's page."""
        return CrawlTask(target=url, depth=self.depth + 1)

    def to_dict(self) -> dict:
        return {'target': self.target, 'depth': self.depth}


def classify(url: str, keywords: Sequence[str]) -> URLPriority:
    """PRIORITIZED when the URL contains any keyword."""
    if any(keyword in url for keyword in keywords):
        return URLPriority.PRIORITIZED
    return URLPriority.DEFAULT


def split_by_priority(urls: Iterable[str], keywords: Sequence[str]) -> Tuple[List[str], List[str]]:
    """Split URLs into (prioritized, default), each in input order."""
    prioritized: List[str] = []
    default: List[str] = []
    for url in urls:
        if classify(url, keywords) is URLPriority.PRIORITIZED:
            prioritized.append(url)
        else:
            default.append(url)
    return prioritized, default


class URLFrontier:
    """
    FIFO work queue owned by a single agent.

    New tasks go to the tail, the agent pops from the head. Children of one
    parent are appended prioritized batch first, then default batch, which
    gives a priority-weighted FIFO rather than a global priority order.
    """

    def __init__(self, keywords: Optional[Sequence[str]] = None):
        self.keywords = tuple(DEFAULT_KEYWORDS if keywords is None else keywords)
        self.logger = logging.getLogger(__name__)
        self._queue: Deque[CrawlTask] = deque()

    def push(self, task: CrawlTask):
        """Append a task to the tail."""
        self.logger.debug(f"Pushing {task.target} (depth {task.depth})")
        self._queue.append(task)

    def pop(self) -> Optional[CrawlTask]:
        """Remove and return the head task, or None when empty."""
        if not self._queue:
            return None
        return self._queue.popleft()

    def push_children(self, parent: CrawlTask, urls: Iterable[str]) -> Tuple[int, int]:
        """
        Enqueue unvisited links discovered on the parent's page.

        Returns the number of (prioritized, default) tasks added.
        """
        prioritized, default = split_by_priority(urls, self.keywords)
        for url in prioritized:
            self.logger.debug(f"Enqueueing prioritized link: {url}")
            self.push(parent.child(url))
        for url in default:
            self.push(parent.child(url))
        return len(prioritized), len(default)

    def is_empty(self) -> bool:
        return not self._queue

    def __len__(self) -> int:
        return len(self._queue)

    def snapshot(self) -> List[CrawlTask]:
        """Current queue contents, head first."""
        return list(self._queue)
