"""Tests for sitemap resolution and grouping.

Every HTTP call goes through an ``httpx.MockTransport`` serving the XML
documents in a dict, so no test touches the network.
"""

import asyncio

import httpx
import pytest

from schemapilot.exceptions import SitemapError
from schemapilot.models.credentials import WpCredentials
from schemapilot.models.sitemap import SitemapGroup
from schemapilot.services.sitemap import (
    categorize_groups,
    collect_page_urls,
    fetch_sitemap_groups,
    is_primary_sitemap,
    resolve,
)

_NS = 'xmlns="http://www.sitemaps.org/schemas/sitemap/0.9"'


def _urlset(*locs: str) -> str:
    entries = "".join(f"<url><loc>{loc}</loc></url>" for loc in locs)
    return f'<?xml version="1.0"?><urlset {_NS}>{entries}</urlset>'


def _index(*locs: str) -> str:
    entries = "".join(f"<sitemap><loc>{loc}</loc></sitemap>" for loc in locs)
    return f'<?xml version="1.0"?><sitemapindex {_NS}>{entries}</sitemapindex>'


def _client(documents: dict, requested: list = None) -> httpx.AsyncClient:
    def handler(request):
        url = str(request.url)
        if requested is not None:
            requested.append(url)
        if url not in documents:
            return httpx.Response(404)
        return httpx.Response(200, text=documents[url])

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _run(coro):
    return asyncio.run(coro)


class TestResolve:
    def test_flat_urlset_is_one_group(self):
        docs = {"https://s.com/sitemap.xml": _urlset("https://s.com/a", "https://s.com/b")}
        groups = _run(resolve("https://s.com/sitemap.xml", client=_client(docs)))
        assert groups == [
            SitemapGroup(
                source_sitemap_url="https://s.com/sitemap.xml",
                page_urls=["https://s.com/a", "https://s.com/b"],
            )
        ]

    def test_index_is_expanded_in_listed_order(self):
        docs = {
            "https://s.com/sitemap.xml": _index(
                "https://s.com/post-sitemap.xml", "https://s.com/page-sitemap.xml"
            ),
            "https://s.com/post-sitemap.xml": _urlset("https://s.com/p1", "https://s.com/p2"),
            "https://s.com/page-sitemap.xml": _urlset("https://s.com/about"),
        }
        groups = _run(resolve("https://s.com/sitemap.xml", client=_client(docs)))
        assert [g.source_sitemap_url for g in groups] == [
            "https://s.com/post-sitemap.xml",
            "https://s.com/page-sitemap.xml",
        ]
        assert sum(len(g.page_urls) for g in groups) == 3

    def test_nested_indexes_are_flattened(self):
        docs = {
            "https://s.com/sitemap.xml": _index("https://s.com/inner.xml"),
            "https://s.com/inner.xml": _index("https://s.com/leaf.xml"),
            "https://s.com/leaf.xml": _urlset("https://s.com/x"),
        }
        groups = _run(resolve("https://s.com/sitemap.xml", client=_client(docs)))
        assert groups[0].source_sitemap_url == "https://s.com/leaf.xml"

    def test_self_referencing_index_terminates(self):
        requested = []
        docs = {
            "https://s.com/sitemap.xml": _index(
                "https://s.com/sitemap.xml", "https://s.com/leaf.xml"
            ),
            "https://s.com/leaf.xml": _urlset("https://s.com/x"),
        }
        groups = _run(resolve("https://s.com/sitemap.xml", client=_client(docs, requested)))
        assert [g.page_urls for g in groups] == [["https://s.com/x"]]
        assert requested.count("https://s.com/sitemap.xml") == 1

    def test_malformed_xml_raises(self):
        docs = {"https://s.com/sitemap.xml": "<urlset><url><loc>oops"}
        with pytest.raises(SitemapError, match="malformed"):
            _run(resolve("https://s.com/sitemap.xml", client=_client(docs)))

    def test_error_status_raises(self):
        with pytest.raises(SitemapError, match="404"):
            _run(resolve("https://s.com/sitemap.xml", client=_client({})))

    def test_empty_tree_raises(self):
        docs = {"https://s.com/sitemap.xml": _urlset()}
        with pytest.raises(SitemapError, match="No URLs"):
            _run(resolve("https://s.com/sitemap.xml", client=_client(docs)))

    def test_failing_nested_sitemap_fails_the_whole_resolution(self):
        docs = {"https://s.com/sitemap.xml": _index("https://s.com/missing.xml")}
        with pytest.raises(SitemapError):
            _run(resolve("https://s.com/sitemap.xml", client=_client(docs)))

    def test_redirect_loop_raises_sitemap_error(self):
        def handler(request):
            return httpx.Response(301, headers={"Location": str(request.url)})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
        with pytest.raises(SitemapError, match="Could not fetch sitemap"):
            _run(resolve("https://s.com/sitemap.xml", client=client))


class TestFetchSitemapGroups:
    def _creds(self, **overrides):
        data = {"site_url": "s.com", "username": "admin", "app_password": "xxxx"}
        data.update(overrides)
        return WpCredentials(**data)

    def test_defaults_to_site_sitemap_xml(self):
        requested = []
        docs = {"https://s.com/sitemap.xml": _urlset("https://s.com/a")}
        _run(fetch_sitemap_groups(self._creds(), client=_client(docs, requested)))
        assert requested == ["https://s.com/sitemap.xml"]

    def test_explicit_sitemap_url_wins(self):
        docs = {"https://s.com/wp-sitemap.xml": _urlset("https://s.com/a")}
        creds = self._creds(sitemap_url="https://s.com/wp-sitemap.xml")
        groups = _run(fetch_sitemap_groups(creds, client=_client(docs)))
        assert groups[0].page_urls == ["https://s.com/a"]

    def test_progress_messages_are_reported(self):
        messages = []
        docs = {"https://s.com/sitemap.xml": _urlset("https://s.com/a")}
        _run(fetch_sitemap_groups(self._creds(), messages.append, client=_client(docs)))
        assert messages[0] == "Fetching and parsing sitemap..."
        assert messages[-1] == "Found 1 URLs across 1 sitemaps."

    def test_failure_is_wrapped_with_the_sitemap_url(self):
        with pytest.raises(SitemapError, match="https://s.com/sitemap.xml"):
            _run(fetch_sitemap_groups(self._creds(), client=_client({})))


class TestGrouping:
    @pytest.mark.parametrize(
        "url",
        [
            "https://s.com/post-sitemap.xml",
            "https://s.com/page-sitemap.xml",
            "https://s.com/wp-sitemap-posts-post-1.xml",
            "https://s.com/wp-sitemap-posts-page-1.xml",
            "https://s.com/post-sitemap2.xml",
        ],
    )
    def test_post_and_page_sitemaps_are_primary(self, url):
        assert is_primary_sitemap(url)

    @pytest.mark.parametrize(
        "url",
        [
            "https://s.com/category-sitemap.xml",
            "https://s.com/post_tag-sitemap.xml",
            "https://s.com/author-sitemap.xml",
            "https://s.com/wp-sitemap-taxonomies-category-1.xml",
            "https://s.com/wp-sitemap-posts-product-1.xml",
            "https://s.com/wp-sitemap-posts-attachment-1.xml",
            "https://s.com/product-sitemap.xml",
            "https://s.com/post-sitemap.xml.gz",
        ],
    )
    def test_other_sitemaps_are_secondary(self, url):
        assert not is_primary_sitemap(url)

    def test_categorize_keeps_every_group(self):
        groups = [
            SitemapGroup(source_sitemap_url="https://s.com/post-sitemap.xml", page_urls=["a"]),
            SitemapGroup(source_sitemap_url="https://s.com/category-sitemap.xml", page_urls=["b"]),
        ]
        result = categorize_groups(groups)
        assert [g.page_urls for g in result.primary] == [["a"]]
        assert [g.page_urls for g in result.secondary] == [["b"]]

    def test_collect_dedupes_and_keeps_first_position(self):
        groups = [
            SitemapGroup(source_sitemap_url="s1", page_urls=["a", "b"]),
            SitemapGroup(source_sitemap_url="s2", page_urls=["b", "c"]),
        ]
        assert collect_page_urls(groups) == ["a", "b", "c"]

    def test_collect_only_selected_groups(self):
        groups = [
            SitemapGroup(source_sitemap_url="s1", page_urls=["a"]),
            SitemapGroup(source_sitemap_url="s2", page_urls=["c"]),
        ]
        assert collect_page_urls(groups, ["s2"]) == ["c"]
