from __future__ import annotations

from unittest.mock import AsyncMock, Mock

import pytest

from conftest import FakeFetcher, RecordingPublisher, html_page
from crawlfleet.crawler.agent import AgentState, CrawlAgent
from crawlfleet.crawler.robots import RobotsGate
from crawlfleet.crawler.url_frontier import CrawlTask
from crawlfleet.crawler.validators import validate_url
from crawlfleet.errors import FetchError, SerializationError, StoreError, TransportError
from crawlfleet.models import NoContent, PageResponse
from crawlfleet.storage.dedup_store import MemoryDedupStore

SITE = "https://site.test"


def make_agent(fetcher, dedup_store, publisher, **kwargs):
    kwargs.setdefault('respect_robots_txt', False)
    return CrawlAgent("crawler-test-0", fetcher=fetcher, dedup_store=dedup_store,
                      publisher=publisher, **kwargs)


def test_with_seeds_names_agent_and_queues_depth_zero(dedup_store, publisher):
    agent = CrawlAgent.with_seeds(
        3, "news", [f"{SITE}/a", f"{SITE}/b"],
        fetcher=FakeFetcher(), dedup_store=dedup_store, publisher=publisher,
        respect_robots_txt=False,
    )

    assert agent.name == "crawler-news-3"
    assert agent.state is AgentState.IDLE
    assert agent.pending() == [CrawlTask(f"{SITE}/a", 0), CrawlTask(f"{SITE}/b", 0)]


def test_constructor_rejects_robots_without_gate(dedup_store, publisher):
    with pytest.raises(ValueError):
        CrawlAgent("a", fetcher=FakeFetcher(), dedup_store=dedup_store,
                   publisher=publisher, respect_robots_txt=True)


def test_constructor_rejects_negative_depth(dedup_store, publisher):
    with pytest.raises(ValueError):
        make_agent(FakeFetcher(), dedup_store, publisher, max_depth=-1)


async def test_seed_links_are_crawled_and_published(dedup_store, publisher):
    """Seed a links to b and c; all three are fetched and published."""
    a, b, c = f"{SITE}/a", f"{SITE}/b", f"{SITE}/c"
    fetcher = FakeFetcher(pages={a: html_page(b, c), b: html_page(), c: html_page()})
    agent = make_agent(fetcher, dedup_store, publisher, max_depth=2)
    agent.push(CrawlTask(a, 0))

    stats = await agent.run()

    assert fetcher.fetched == [a, b, c]
    assert publisher.urls == [a, b, c]
    assert stats.executed == 3
    assert stats.published == 3
    assert stats.links_enqueued == 2
    assert agent.state is AgentState.DRAINED
    assert await dedup_store.exists(b)
    assert await dedup_store.exists(c)


async def test_previously_visited_link_is_not_enqueued(publisher):
    a, b, c = f"{SITE}/a", f"{SITE}/b", f"{SITE}/c"
    dedup_store = MemoryDedupStore({c})
    fetcher = FakeFetcher(pages={a: html_page(b, c)})
    agent = make_agent(fetcher, dedup_store, publisher)
    agent.push(CrawlTask(a, 0))

    stats = await agent.run()

    assert fetcher.fetched == [a, b]
    assert stats.duplicates_skipped == 1


async def test_max_depth_bounds_expansion(dedup_store, publisher):
    a, b, c = f"{SITE}/a", f"{SITE}/b", f"{SITE}/c"
    fetcher = FakeFetcher(pages={a: html_page(b), b: html_page(c), c: html_page()})
    agent = make_agent(fetcher, dedup_store, publisher, max_depth=1)
    agent.push(CrawlTask(a, 0))

    await agent.run()

    # b sits at the depth limit, so its link to c is never followed
    assert fetcher.fetched == [a, b]
    assert publisher.urls == [a, b]
    assert not await dedup_store.exists(c)


async def test_depth_zero_fetches_only_seeds(dedup_store, publisher):
    a = f"{SITE}/a"
    fetcher = FakeFetcher(pages={a: html_page(f"{SITE}/b")})
    agent = make_agent(fetcher, dedup_store, publisher, max_depth=0)
    agent.push(CrawlTask(a, 0))

    await agent.run()

    assert fetcher.fetched == [a]
    assert publisher.urls == [a]


async def test_prioritized_children_run_before_default_children(dedup_store, publisher):
    root = f"{SITE}/"
    about, news, blog = f"{SITE}/about", f"{SITE}/news/1", f"{SITE}/blog/2"
    fetcher = FakeFetcher(pages={root: html_page(about, news, blog)})
    agent = make_agent(fetcher, dedup_store, publisher, max_depth=1)
    agent.push(CrawlTask(root, 0))

    await agent.run()

    assert fetcher.fetched == [root, news, blog, about]


async def test_children_queue_behind_existing_tasks(dedup_store, publisher):
    """Expansion appends to the tail; earlier seeds are not overtaken."""
    s1, s2 = f"{SITE}/s1", f"{SITE}/s2"
    child = f"{SITE}/news/child"
    fetcher = FakeFetcher(pages={s1: html_page(child)})
    agent = make_agent(fetcher, dedup_store, publisher)
    agent.push(CrawlTask(s1, 0))
    agent.push(CrawlTask(s2, 0))

    await agent.run()

    assert fetcher.fetched == [s1, s2, child]


async def test_custom_keywords(dedup_store, publisher):
    root, plain, docs = f"{SITE}/", f"{SITE}/plain", f"{SITE}/docs/x"
    fetcher = FakeFetcher(pages={root: html_page(plain, docs)})
    agent = make_agent(fetcher, dedup_store, publisher, keywords=["docs"])
    agent.push(CrawlTask(root, 0))

    await agent.run()

    assert agent.keywords == ("docs",)
    assert fetcher.fetched == [root, docs, plain]


async def test_robots_denial_skips_fetch_and_publish(dedup_store, publisher):
    private = f"{SITE}/private/page"
    fetcher = FakeFetcher(robots={f"{SITE}/robots.txt": (200, "User-agent: *\nDisallow: /private\n")})
    agent = make_agent(fetcher, dedup_store, publisher,
                       robots_gate=RobotsGate(fetcher), respect_robots_txt=True)
    agent.push(CrawlTask(private, 0))

    stats = await agent.run()

    assert fetcher.fetched == []
    assert publisher.results == []
    assert stats.policy_denied == 1
    assert agent.state is AgentState.DRAINED


async def test_robots_ignored_when_disabled(dedup_store, publisher):
    private = f"{SITE}/private/page"
    fetcher = FakeFetcher(robots={f"{SITE}/robots.txt": (200, "User-agent: *\nDisallow: /\n")})
    agent = make_agent(fetcher, dedup_store, publisher,
                       robots_gate=RobotsGate(fetcher), respect_robots_txt=False)
    agent.push(CrawlTask(private, 0))

    await agent.run()

    assert fetcher.text_fetched == []
    assert fetcher.fetched == [private]


async def test_fetch_error_is_counted_and_loop_continues(dedup_store, publisher, fetch_error):
    bad, good = f"{SITE}/bad", f"{SITE}/good"
    fetcher = FakeFetcher(pages={bad: fetch_error, good: html_page()})
    agent = make_agent(fetcher, dedup_store, publisher)
    agent.push(CrawlTask(bad, 0))
    agent.push(CrawlTask(good, 0))

    stats = await agent.run()

    assert stats.fetch_failed == 1
    assert publisher.urls == [good]


async def test_no_content_response_publishes_empty_links_and_body(dedup_store, publisher):
    url = f"{SITE}/file.pdf"
    fetcher = FakeFetcher(pages={url: PageResponse(
        title="No title", status_code=200, headers=["Content-Type: application/pdf"],
        extra=NoContent(reason="non-text"),
    )})
    agent = make_agent(fetcher, dedup_store, publisher)
    agent.push(CrawlTask(url, 0))

    stats = await agent.run()

    result = publisher.results[0]
    assert result.links == []
    assert result.body == ""
    assert result.headers == ["Content-Type: application/pdf"]
    assert stats.links_enqueued == 0


async def test_store_error_on_exists_treats_link_as_unvisited(publisher):
    a, b = f"{SITE}/a", f"{SITE}/b"
    store = Mock()
    store.exists = AsyncMock(side_effect=StoreError("redis down"))
    store.mark = AsyncMock()
    fetcher = FakeFetcher(pages={a: html_page(b)})
    agent = make_agent(fetcher, store, publisher)
    agent.push(CrawlTask(a, 0))

    stats = await agent.run()

    assert fetcher.fetched == [a, b]
    assert stats.store_errors == 1
    store.mark.assert_awaited_once_with(b)


async def test_store_error_on_mark_still_enqueues(publisher):
    a, b = f"{SITE}/a", f"{SITE}/b"
    store = Mock()
    store.exists = AsyncMock(return_value=False)
    store.mark = AsyncMock(side_effect=StoreError("redis down"))
    fetcher = FakeFetcher(pages={a: html_page(b)})
    agent = make_agent(fetcher, store, publisher)
    agent.push(CrawlTask(a, 0))

    stats = await agent.run()

    assert fetcher.fetched == [a, b]
    assert stats.store_errors == 1


async def test_serialization_error_is_not_fatal(dedup_store):
    a, b = f"{SITE}/a", f"{SITE}/b"
    publisher = RecordingPublisher(fail_on={a: SerializationError("bad payload")})
    fetcher = FakeFetcher(pages={a: html_page(b), b: html_page()})
    agent = make_agent(fetcher, dedup_store, publisher)
    agent.push(CrawlTask(a, 0))

    stats = await agent.run()

    assert stats.publish_failed == 1
    assert stats.published == 1
    assert publisher.urls == [b]
    assert agent.state is AgentState.DRAINED


async def test_transport_error_stops_agent(dedup_store):
    a, b = f"{SITE}/a", f"{SITE}/b"
    publisher = RecordingPublisher(fail_on={a: TransportError("broker gone")})
    fetcher = FakeFetcher(pages={a: html_page(b)})
    agent = make_agent(fetcher, dedup_store, publisher)
    agent.push(CrawlTask(a, 0))

    with pytest.raises(TransportError):
        await agent.run()

    assert agent.state is AgentState.FAILED
    # b was discovered before the publish failed and stays queued
    assert agent.pending() == [CrawlTask(b, 1)]


async def test_execute_returns_response(dedup_store, publisher):
    url = f"{SITE}/a"
    page = html_page(title="Hello")
    agent = make_agent(FakeFetcher(pages={url: page}), dedup_store, publisher)

    response = await agent.execute(CrawlTask(url, 0))

    assert response is page
    assert publisher.results[0].title == "Hello"


async def test_execute_propagates_fetch_error(dedup_store, publisher):
    url = f"{SITE}/a"
    agent = make_agent(FakeFetcher(pages={url: FetchError("timeout")}), dedup_store, publisher)

    with pytest.raises(FetchError):
        await agent.execute(CrawlTask(url, 0))
    assert publisher.results == []


async def test_monitor_receives_agent_metrics(dedup_store, publisher):
    a, b = f"{SITE}/a", f"{SITE}/news/b"
    monitor = Mock()
    fetcher = FakeFetcher(pages={a: html_page(b)})
    agent = make_agent(fetcher, dedup_store, publisher, monitor=monitor)
    agent.push(CrawlTask(a, 0))

    await agent.run()

    assert monitor.record_page_fetched.call_count == 2
    monitor.record_links_enqueued.assert_called_once_with(1, 0)
    monitor.update_queue_size.assert_called_with("crawler-test-0", 0)


async def test_expansion_order_for_news_keyword(dedup_store, publisher):
    a = "https://example.com/a"
    b, c = "https://example.com/news/b", "https://example.com/c"
    fetcher = FakeFetcher(pages={a: html_page(c, b)})
    agent = make_agent(fetcher, dedup_store, publisher, max_depth=1, keywords=["news"])

    await agent.execute(CrawlTask(a, 0))

    assert agent.pending() == [CrawlTask(b, 1), CrawlTask(c, 1)]


async def test_unexpected_error_leaves_agent_failed(dedup_store, publisher):
    a, b = f"{SITE}/a", f"{SITE}/b"
    fetcher = FakeFetcher(pages={a: RuntimeError("parser blew up"), b: html_page()})
    agent = make_agent(fetcher, dedup_store, publisher)
    agent.push(CrawlTask(a, 0))
    agent.push(CrawlTask(b, 0))

    with pytest.raises(RuntimeError):
        await agent.run()

    assert agent.state is AgentState.FAILED
    assert agent.pending() == [CrawlTask(b, 0)]


async def test_link_with_unencodable_host_does_not_stop_agent(dedup_store, publisher):
    """A page linking to a host IDNA cannot encode still lets the crawl go on."""
    a, good = f"{SITE}/a", f"{SITE}/good"
    bad = "https://" + "a" * 64 + ".site.test/"

    class ValidatingFetcher(FakeFetcher):
        async def fetch(self, url):
            validate_url(url)
            return await super().fetch(url)

    fetcher = ValidatingFetcher(pages={a: html_page(bad, good), good: html_page()})
    agent = make_agent(fetcher, dedup_store, publisher)
    agent.push(CrawlTask(a, 0))

    stats = await agent.run()

    assert agent.state is AgentState.DRAINED
    assert stats.fetch_failed == 1
    assert publisher.urls == [a, good]
