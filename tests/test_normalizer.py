"""Tests for app.services.normalizer."""

import pytest

from app.services.normalizer import (
    matches_domain_filter,
    normalize_url,
    page_depth,
    page_key,
    parse_domain_filter,
    same_site,
)

BASE = "https://example.com/blog/post"


# ---------------------------------------------------------------------------
# normalize_url
# ---------------------------------------------------------------------------

class TestNormalizeUrl:
    def test_strips_fragment_and_tracking_params(self):
        url = "https://example.com/page?utm_source=news&id=3&fbclid=abc#top"
        assert normalize_url(url) == "https://example.com/page?id=3"

    def test_only_tracking_params_leaves_no_query(self):
        assert normalize_url("https://example.com/page?utm_medium=mail&gclid=1") == "https://example.com/page"

    def test_resolves_relative_href(self):
        assert normalize_url("../about", "https://example.com/blog/post") == "https://example.com/about"

    def test_resolves_root_relative_href(self):
        assert normalize_url("/contact/", BASE) == "https://example.com/contact"

    def test_resolves_protocol_relative_href(self):
        assert normalize_url("//example.com/x", BASE) == "https://example.com/x"

    def test_lowercases_scheme_and_host(self):
        assert normalize_url("HTTPS://Example.COM/Path") == "https://example.com/Path"

    def test_root_becomes_bare_origin(self):
        assert normalize_url("https://example.com/") == "https://example.com"

    def test_drops_default_port(self):
        assert normalize_url("https://example.com:443/a") == "https://example.com/a"

    def test_keeps_custom_port(self):
        assert normalize_url("http://example.com:8080/a/") == "http://example.com:8080/a"

    def test_upgrades_same_host_http_when_base_is_https(self):
        assert normalize_url("http://example.com/x", BASE) == "https://example.com/x"

    def test_www_and_trailing_slash_normalize_identically(self):
        assert normalize_url("https://a.com/p/") == normalize_url("https://www.a.com/p") == "https://a.com/p"

    def test_own_base_keeps_www_spelling(self):
        url = "https://www.example.com/x/"
        assert normalize_url(url, url) == "https://www.example.com/x"

    def test_adopts_www_spelling_of_base(self):
        assert normalize_url("https://example.com/x", "https://www.example.com/") == "https://www.example.com/x"

    def test_other_host_is_left_alone(self):
        assert normalize_url("http://other.org/x/", BASE) == "http://other.org/x"

    def test_query_is_not_reencoded(self):
        assert normalize_url("https://example.com/s?q=a%20b&x=1") == "https://example.com/s?q=a%20b&x=1"

    @pytest.mark.parametrize(
        "href",
        [
            "",
            "#section",
            "javascript:void(0)",
            "mailto:hello@example.com",
            "tel:+33123456789",
            "data:text/plain,hi",
            "ftp://example.com/file",
            "/images/photo.JPG",
            "/files/report.pdf",
            "/wp-admin/options.php",
            "/wp-login.php",
            "/feed",
            "/blog/feed/",
            "/post?replytocom=12",
            "/post?preview=true",
        ],
    )
    def test_rejected_hrefs(self, href):
        assert normalize_url(href, BASE) is None

    def test_malformed_url_is_dropped(self):
        assert normalize_url("http://[::1/broken") is None

    @pytest.mark.parametrize(
        "href",
        [
            "https://www.example.com/a/b/",
            "http://example.com/?utm_source=x",
            "/shop?item=2&utm_campaign=y#reviews",
            "https://example.com:443/",
            "../up/one",
        ],
    )
    def test_idempotent(self, href):
        once = normalize_url(href, BASE)
        assert normalize_url(once, BASE) == once


# ---------------------------------------------------------------------------
# Page identity and depth
# ---------------------------------------------------------------------------

class TestPageKey:
    def test_www_and_trailing_slash_are_equivalent(self):
        assert page_key("https://www.example.com/about/") == page_key("https://example.com/about")

    def test_scheme_is_ignored(self):
        assert page_key("http://example.com/a") == page_key("https://example.com/a")

    def test_query_is_part_of_identity(self):
        assert page_key("https://example.com/a?p=1") != page_key("https://example.com/a?p=2")


class TestPageDepth:
    def test_counts_segments(self):
        assert page_depth("https://example.com/a/b/c") == 3

    def test_root_is_zero(self):
        assert page_depth("https://example.com") == 0

    def test_index_segment_is_ignored(self):
        assert page_depth("https://example.com/docs/index.html") == 1
        assert page_depth("https://example.com/default.aspx") == 0


class TestSameSite:
    def test_www_is_ignored(self):
        assert same_site("https://www.example.com/a", "https://example.com")

    def test_subdomain_is_another_site(self):
        assert not same_site("https://shop.example.com/a", "https://example.com")


# ---------------------------------------------------------------------------
# Domain filter
# ---------------------------------------------------------------------------

class TestDomainFilter:
    def test_parse_comma_separated_string(self):
        assert parse_domain_filter("Example.com, blog.example.com ,") == ["example.com", "blog.example.com"]

    def test_parse_list(self):
        assert parse_domain_filter([" A.com", "", "b.com"]) == ["a.com", "b.com"]

    def test_parse_empty(self):
        assert parse_domain_filter(None) == []
        assert parse_domain_filter("") == []

    def test_empty_filter_passes_everything(self):
        assert matches_domain_filter("https://anything.org/x", [])

    def test_substring_of_hostname(self):
        assert matches_domain_filter("https://blog.example.com/x", ["blog."])
        assert not matches_domain_filter("https://blog.example.com/x", ["shop."])
