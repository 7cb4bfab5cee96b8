"""
Crawl orchestration: agents, their frontier, the robots gate and the supervisor.
"""

from .url_frontier import URLFrontier, CrawlTask, URLPriority
from ..models import PageResponse, PageContent, NoContent
from .fetcher import Fetcher, WebFetcher
from .parser import ContentParser, ParsedContent
from .robots import RobotsGate, RobotsRuleSet
from .agent import CrawlAgent, AgentState, AgentStats
from .supervisor import CrawlSupervisor, CrawlReport, partition_seeds

__all__ = [
    'URLFrontier', 'CrawlTask', 'URLPriority',
    'Fetcher', 'WebFetcher', 'PageResponse', 'PageContent', 'NoContent',
    'ContentParser', 'ParsedContent',
    'RobotsGate', 'RobotsRuleSet',
    'CrawlAgent', 'AgentState', 'AgentStats',
    'CrawlSupervisor', 'CrawlReport', 'partition_seeds'
]
