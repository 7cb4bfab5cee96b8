"""
Page response types shared by fetchers, agents and the outbound stream.
"""

from dataclasses import dataclass, field
from typing import List, Union


@dataclass(frozen=True)
class NoContent:
    """Nothing was extracted from the response body."""
    reason: str = ""


@dataclass(frozen=True)
class PageContent:
    """Body and discovered links of a parsed page."""
    links: List[str] = field(default_factory=list)
    body: str = ""


PageExtra = Union[NoContent, PageContent]


@dataclass
class PageResponse:
    """Result of a successful fetch and parse."""
    title: str
    status_code: int
    headers: List[str] = field(default_factory=list)
    meta: List[str] = field(default_factory=list)
    extra: PageExtra = field(default_factory=NoContent)

    @property
    def links(self) -> List[str]:
        if isinstance(self.extra, PageContent):
            return self.extra.links
        return []
