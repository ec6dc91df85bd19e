"""Tests for app.services.crawler."""

import asyncio

import httpx

from app.services.crawler import Crawler
from app.services.fetcher import PageFetcher

HOME = "https://example.com"

HOME_HTML = """<html><head><link rel="stylesheet" href="/wp-content/themes/site/style.css"></head>
<body>
  <nav><a href="/about">About</a><a href="/blog/">Blog</a></nav>
  <main><p>Start with our <a href="/blog/first-post">first post</a>.</p></main>
  <footer><a href="https://other.org/">Partner</a><a href="mailto:hi@example.com">Mail</a></footer>
</body></html>"""

ABOUT_HTML = '<html><body><p>About us.</p><footer><a href="/">Home</a></footer></body></html>'

BLOG_HTML = '<html><body><div class="card"><a href="/blog/first-post">First post</a></div></body></html>'

POST_HTML = '<html><body><article><p>See <a href="/about">who we are</a>.</p></article></body></html>'

SITE = {
    HOME: HOME_HTML,
    f"{HOME}/about": ABOUT_HTML,
    f"{HOME}/blog": BLOG_HTML,
    f"{HOME}/blog/first-post": POST_HTML,
}


def _crawl(site, max_pages=50, sitemap=None, setup=None, start=HOME, **kwargs):
    """Seed HOME, optionally load *sitemap*, crawl and return the crawler."""

    async def run():
        async with site.client() as client:
            crawler = Crawler(PageFetcher(client=client), **kwargs)
            if setup is not None:
                setup(crawler)
            crawler.seed(start)
            if sitemap is not None:
                crawler.load_sitemap(sitemap)
            await crawler.crawl(max_pages)
            crawler.detect_orphans()
            return crawler

    return asyncio.run(run())


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------

class TestTraversal:
    def test_breadth_first_order(self, mock_site):
        crawler = _crawl(mock_site(SITE), check_status=False)
        assert crawler.state.crawled_urls == [
            HOME,
            f"{HOME}/about",
            f"{HOME}/blog",
            f"{HOME}/blog/first-post",
        ]

    def test_each_page_fetched_once(self, mock_site):
        site = mock_site(SITE)
        crawler = _crawl(site, check_status=False)
        assert len(site.requested()) == 4
        assert not crawler.state.frontier
        assert not crawler.state.queued

    def test_visited_or_queued_urls_are_not_enqueued(self):
        crawler = Crawler(fetcher=None)
        crawler.seed(HOME)
        assert not crawler._enqueue("https://www.example.com/")
        crawler.state.visited.add("example.com/about")
        assert not crawler._enqueue(f"{HOME}/about/")
        assert crawler._enqueue(f"{HOME}/blog")
        assert list(crawler.state.frontier) == [HOME, f"{HOME}/blog"]

    def test_seed_keeps_host_spelling(self):
        crawler = Crawler(fetcher=None)
        crawler.seed("https://www.example.com/")
        assert crawler.state.start_url == "https://www.example.com"
        assert list(crawler.state.frontier) == ["https://www.example.com"]

    def test_max_pages(self, mock_site):
        crawler = _crawl(mock_site(SITE), max_pages=2, check_status=False)
        assert crawler.state.crawled_urls == [HOME, f"{HOME}/about"]

    def test_domain_filter_blocks_links(self, mock_site):
        crawler = _crawl(mock_site(SITE), check_status=False, domain_filter=["nomatch"])
        assert crawler.state.crawled_urls == [HOME]
        assert crawler.state.all_edges == []

    def test_stop_ends_after_current_page(self, mock_site):
        def setup(crawler):
            crawler.on_progress = lambda event: crawler.stop()

        crawler = _crawl(mock_site(SITE), check_status=False, setup=setup)
        assert crawler.state.crawled_urls == [HOME]
        assert crawler.state.stopped

    def test_progress_events(self, mock_site):
        events = []
        _crawl(mock_site(SITE), max_pages=10, check_status=False, on_progress=events.append)
        assert [event.step for event in events] == ["crawling"] * 4
        assert events[0].current == 1
        assert events[0].total == 10
        assert events[0].url == HOME
        assert events[-1].current == 4

    def test_failing_callback_is_ignored(self, mock_site):
        def explode(event):
            raise RuntimeError("listener bug")

        crawler = _crawl(mock_site(SITE), check_status=False, on_progress=explode)
        assert len(crawler.state.crawled_urls) == 4


# ---------------------------------------------------------------------------
# Link graph
# ---------------------------------------------------------------------------

class TestLinkGraph:
    def test_edges_keyed_by_target(self, mock_site):
        crawler = _crawl(mock_site(SITE), check_status=False)
        about_edges = crawler.state.edges[f"{HOME}/about"]
        assert [(edge.from_url, edge.context_type) for edge in about_edges] == [
            (HOME, "menu"),
            (f"{HOME}/blog/first-post", "content-main"),
        ]

    def test_external_and_rejected_links_are_not_recorded(self, mock_site):
        crawler = _crawl(mock_site(SITE), check_status=False)
        targets = {edge.to_url for edge in crawler.state.all_edges}
        assert "https://other.org" not in targets
        assert all(target.startswith(HOME) for target in targets)

    def test_page_counters(self, mock_site):
        state = _crawl(mock_site(SITE), check_status=False).state
        home = state.find_page(HOME)
        assert home.outbound_links == 3
        assert home.inbound_links == 1
        about = state.find_page(f"{HOME}/about")
        assert about.inbound_links == 2
        assert about.link_types == {"menu": 1, "content-main": 1}
        post = state.find_page(f"{HOME}/blog/first-post")
        assert post.depth == 2
        assert post.crawled
        assert post.http_status == 200

    def test_cms_tally(self, mock_site):
        state = _crawl(mock_site(SITE), check_status=False).state
        assert state.cms.dominant == "wordpress"

    def test_status_checks(self, mock_site):
        routes = dict(SITE)
        routes[HOME] = HOME_HTML.replace("<nav>", '<nav><a href="/missing">Missing</a>')
        site = mock_site(routes)
        state = _crawl(site, max_pages=1).state
        assert f"{HOME}/missing" in site.requested("HEAD")
        assert state.find_page(f"{HOME}/missing").http_status == 404
        assert state.find_page(f"{HOME}/about").http_status == 200
        assert not state.find_page(f"{HOME}/about").crawled


# ---------------------------------------------------------------------------
# Failures and redirects
# ---------------------------------------------------------------------------

class TestFailures:
    def test_network_error_keeps_crawling(self, mock_site):
        routes = dict(SITE)
        routes[f"{HOME}/about"] = httpx.ConnectError
        state = _crawl(mock_site(routes), check_status=False).state
        assert state.find_page(f"{HOME}/about").http_status == 0
        assert f"{HOME}/blog/first-post" in state.crawled_urls

    def test_timeout_keeps_crawling(self, mock_site):
        routes = dict(SITE)
        routes[f"{HOME}/blog"] = httpx.ReadTimeout
        state = _crawl(mock_site(routes), check_status=False).state
        assert state.find_page(f"{HOME}/blog").http_status == 0
        assert len(state.crawled_urls) == 4

    def test_error_page_links_are_not_followed(self, mock_site):
        routes = {HOME: (500, '<a href="/secret">Secret</a>')}
        state = _crawl(mock_site(routes), check_status=False).state
        assert state.crawled_urls == [HOME]
        assert state.find_page(HOME).http_status == 500

    def test_non_html_is_not_parsed(self, mock_site):
        routes = {HOME: (200, '<a href="/x">X</a>', {"content-type": "application/json"})}
        state = _crawl(mock_site(routes), check_status=False).state
        assert state.all_edges == []

    def test_redirect_bookkeeping(self, mock_site):
        site = mock_site(
            {
                f"{HOME}/old": (301, "", {"location": "/new"}),
                f"{HOME}/new": '<p><a href="/old">Old</a> <a href="/about">About</a></p>',
                f"{HOME}/about": "<html><body>About</body></html>",
            }
        )
        crawler = _crawl(site, check_status=False, start=f"{HOME}/old")
        state = crawler.state
        old = state.find_page(f"{HOME}/old")
        assert old.redirected
        assert old.redirect_target == f"{HOME}/new"
        new = state.find_page(f"{HOME}/new")
        assert new.redirected_from == f"{HOME}/old"
        assert new.crawled
        assert state.site_url == f"{HOME}/new"
        assert state.crawled_urls == [f"{HOME}/old", f"{HOME}/about"]
        assert len(site.requested()) == 3

    def test_redirect_to_crawled_page_is_not_parsed_again(self, mock_site):
        site = mock_site(
            {
                HOME: '<p><a href="/b">B</a> <a href="/old">Old</a></p>',
                f"{HOME}/old": (301, "", {"location": "/b"}),
                f"{HOME}/b": '<p><a href="/c">C</a></p>',
                f"{HOME}/c": "<p>C</p>",
            }
        )
        state = _crawl(site, check_status=False).state
        assert state.crawled_urls == [HOME, f"{HOME}/b", f"{HOME}/old", f"{HOME}/c"]
        from_b = [edge for edge in state.all_edges if edge.from_url == f"{HOME}/b"]
        assert len(from_b) == 1
        page_b = state.find_page(f"{HOME}/b")
        assert page_b.outbound_links == 1
        assert page_b.redirected_from is None
        assert state.find_page(f"{HOME}/c").inbound_links == 1
        old = state.find_page(f"{HOME}/old")
        assert old.redirected
        assert old.redirect_target == f"{HOME}/b"


# ---------------------------------------------------------------------------
# Sitemap and orphans
# ---------------------------------------------------------------------------

class TestOrphans:
    SITEMAP = [
        f"{HOME}/",
        "https://www.example.com/about/",
        f"{HOME}/blog",
        f"{HOME}/orphan-a",
        f"{HOME}/orphan-b",
    ]

    def test_unreached_sitemap_pages(self, mock_site):
        state = _crawl(mock_site(SITE), check_status=False, sitemap=self.SITEMAP).state
        assert state.orphaned_pages == [f"{HOME}/orphan-a", f"{HOME}/orphan-b"]

    def test_sitemap_pages_are_marked(self, mock_site):
        state = _crawl(mock_site(SITE), check_status=False, sitemap=self.SITEMAP).state
        assert state.find_page(f"{HOME}/about").in_sitemap
        assert state.find_page(f"{HOME}/orphan-a").in_sitemap
        assert not state.find_page(f"{HOME}/orphan-a").crawled
        assert not state.find_page(f"{HOME}/blog/first-post").in_sitemap

    def test_sitemap_spellings_are_merged(self, mock_site):
        async def run():
            async with mock_site({}).client() as client:
                crawler = Crawler(PageFetcher(client=client))
                crawler.seed(HOME)
                return crawler.load_sitemap(
                    [f"{HOME}/a", "https://www.example.com/a/", "http://example.com/a", f"{HOME}/file.pdf"]
                )

        assert asyncio.run(run()) == [f"{HOME}/a"]

    def test_no_orphans_without_sitemap(self, mock_site):
        state = _crawl(mock_site(SITE), check_status=False).state
        assert state.orphaned_pages == []
