from __future__ import annotations

import pytest

from crawlfleet.crawler.parser import DEFAULT_TITLE, ContentParser
from crawlfleet.crawler.validators import is_valid_url, validate_url
from crawlfleet.errors import FetchError

PAGE = """
<html>
  <head>
    <title>
      Example   Page
    </title>
    <meta charset="utf-8">
    <meta name="description" content="A test page">
    <meta name="keywords" content="a, b">
    <meta name="empty">
  </head>
  <body>
    <a href="/a">A</a>
    <a href="b#section">B</a>
    <a href="#top">Top</a>
    <a href="">Empty</a>
    <a href="mailto:someone@site.test">Mail</a>
    <a href="javascript:void(0)">JS</a>
    <a href="HTTPS://Other.TEST/Path">Other</a>
    <a href="/a">A again</a>
  </body>
</html>
"""


@pytest.fixture
def parser():
    return ContentParser()


def test_title_is_whitespace_normalized(parser):
    assert parser.parse("https://site.test/dir/page", PAGE).title == "Example Page"


def test_missing_title_uses_default(parser):
    assert parser.parse("https://site.test/", "<html><body></body></html>").title == DEFAULT_TITLE


def test_meta_named_tags_then_charset(parser):
    meta = parser.parse("https://site.test/dir/page", PAGE).meta

    assert meta == ["description: A test page", "keywords: a, b", "charset: utf-8"]


def test_links_are_resolved_normalized_and_deduplicated(parser):
    links = parser.parse("https://Site.test/dir/page", PAGE).links

    assert links == [
        "https://site.test/a",
        "https://site.test/dir/b",
        "https://other.test/Path",
    ]


def test_page_without_links(parser):
    assert parser.parse("https://site.test/", "<p>plain</p>").links == []


@pytest.mark.parametrize("url", [
    "https://site.test/",
    "http://site.test:8080/path?q=1",
])
def test_valid_urls(url):
    assert validate_url(url) == url
    assert is_valid_url(url)


@pytest.mark.parametrize("url", [
    "ftp://site.test/file",
    "mailto:someone@site.test",
    "//site.test/no-scheme",
    "https://",
    "not a url",
    "http://[::1",
    "https://" + "a" * 64 + ".site.test/",
    "https://site..test/",
])
def test_invalid_urls(url):
    with pytest.raises(FetchError):
        validate_url(url)
    assert not is_valid_url(url)


def test_links_with_unencodable_hosts_are_dropped(parser):
    long_label = "https://" + "a" * 64 + ".site.test/page"
    page = (f'<a href="{long_label}">x</a>'
            '<a href="http://[::1/broken">y</a>'
            '<a href="/kept">z</a>')

    assert parser.parse("https://site.test/", page).links == ["https://site.test/kept"]
