"""URL normalisation: canonical forms, crawl filtering, page identity and depth."""

import re
from typing import Iterable, List, Optional, Union
from urllib.parse import urljoin, urlsplit, urlunsplit

from app.exceptions import MalformedUrlError

ALLOWED_SCHEMES = {"http", "https"}
_DEFAULT_PORTS = {"http": 80, "https": 443}

# href prefixes that never point at a crawlable page
_REJECTED_PREFIXES = ("javascript:", "mailto:", "tel:", "data:")

# Query parameters added by ad / analytics platforms
_TRACKING_PARAMS = {"fbclid", "gclid", "dclid", "msclkid"}
_TRACKING_PREFIXES = ("utm_",)

# Query parameters that indicate non-content pages (WordPress previews, comment replies, feeds)
_SKIP_QUERY_PARAMS = {"feed", "preview", "replytocom"}

_BINARY_EXTENSION = re.compile(
    r"\.(?:jpe?g|png|gif|bmp|svg|webp|avif|ico|tiff?"
    r"|pdf|zip|rar|7z|gz|tgz|tar|bz2"
    r"|mp3|mp4|m4a|m4v|avi|mov|wmv|flv|webm|ogg|wav"
    r"|docx?|xlsx?|pptx?|odt|ods|csv"
    r"|exe|dmg|msi|apk|iso"
    r"|css|js|json|woff2?|ttf|otf|eot"
    r"|xml|rss|atom)$",
    re.IGNORECASE,
)

# Admin, login, API and feed endpoints (common on WordPress and other CMSes)
_SKIP_PATH = re.compile(
    r"^/(?:wp-admin|wp-json|wp-content|wp-includes|admin|administrator|login|cgi-bin)(?:/|$)"
    r"|^/wp-login\.php"
    r"|(?:^|/)(?:feed|xmlrpc\.php)$",
    re.IGNORECASE,
)

# Path segments that do not add a level to the page hierarchy
_INDEX_SEGMENT = re.compile(r"^(?:index|default)(?:\.[a-z0-9]+)?$", re.IGNORECASE)


def _strip_www(host: str) -> str:
    return host[4:] if host.startswith("www.") else host


def _is_tracking_param(key: str) -> bool:
    key = key.lower()
    return key in _TRACKING_PARAMS or key.startswith(_TRACKING_PREFIXES)


def _strip_tracking(query: str) -> str:
    """Drop tracking pairs from *query* without re-encoding the others."""
    kept = [pair for pair in query.split("&") if pair and not _is_tracking_param(pair.split("=", 1)[0])]
    return "&".join(kept)


def _is_non_content(path: str, query: str) -> bool:
    if _SKIP_PATH.search(path) or _BINARY_EXTENSION.search(path):
        return True
    keys = {pair.split("=", 1)[0].lower() for pair in query.split("&") if pair}
    return bool(keys & _SKIP_QUERY_PARAMS)


def _canonicalise(href: str, base_url: Optional[str]) -> Optional[str]:
    href = href.strip()
    if not href or href.startswith("#"):
        return None
    if href.lower().startswith(_REJECTED_PREFIXES):
        return None

    try:
        absolute = urljoin(base_url, href) if base_url else href
        parts = urlsplit(absolute)
        port = parts.port
    except ValueError as exc:
        raise MalformedUrlError(f"Cannot parse {href!r}: {exc}") from exc

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        return None
    host = parts.hostname or ""
    if not host:
        raise MalformedUrlError(f"URL {href!r} has no hostname")

    if port == _DEFAULT_PORTS[scheme]:
        port = None

    if not base_url:
        host = _strip_www(host)
    else:
        base = urlsplit(base_url)
        base_host = base.hostname or ""
        if base_host and _strip_www(base_host) == _strip_www(host):
            # Same site: adopt the base's host spelling and prefer its https
            host = base_host
            if base.scheme.lower() == "https" and scheme == "http" and port is None:
                scheme = "https"

    query = _strip_tracking(parts.query)
    path = parts.path.rstrip("/")
    if _is_non_content(path, query):
        return None

    if not path and query:
        path = "/"

    netloc = f"[{host}]" if ":" in host else host
    if port is not None:
        netloc = f"{netloc}:{port}"
    return urlunsplit((scheme, netloc, path, query, ""))


def normalize_url(href: str, base_url: Optional[str] = None) -> Optional[str]:
    """Return the canonical absolute form of *href*, or ``None`` when rejected.

    *href* is resolved against *base_url* (the page it appeared on).  The
    fragment, tracking parameters (``utm_*``, ``fbclid``, ``gclid`` …), default
    ports and trailing slashes are removed.  Links on the same site as
    *base_url* take the base's host spelling (``www.`` or not) and are upgraded
    to ``https`` when the base was served over ``https``.  Without a base the
    ``www.`` prefix is dropped; pass a URL as its own base to keep its spelling.

    Fragment-only hrefs, ``javascript:``/``mailto:``/``tel:`` links, binary
    files and admin/login/feed endpoints are rejected.  Unparseable hrefs are
    dropped silently.

    The function is idempotent: ``normalize_url(normalize_url(u, b), b)``
    equals ``normalize_url(u, b)``.
    """
    if href is None:
        return None
    try:
        return _canonicalise(href, base_url)
    except MalformedUrlError:
        return None


def host_of(url: str) -> str:
    """Return the lowercase hostname of *url* (empty string when absent)."""
    try:
        return urlsplit(url).hostname or ""
    except ValueError:
        return ""


def same_site(url: str, other: str) -> bool:
    """Return True when both URLs live on the same host, ignoring ``www.``."""
    host = host_of(url)
    return bool(host) and _strip_www(host) == _strip_www(host_of(other))


def page_key(url: str) -> str:
    """Return the identity key of a page.

    Two URLs with the same key are the same page: the key ignores the scheme,
    a leading ``www.`` and trailing slashes.
    """
    parts = urlsplit(url)
    host = _strip_www((parts.hostname or "").lower())
    if parts.port and parts.port != _DEFAULT_PORTS.get(parts.scheme.lower()):
        host = f"{host}:{parts.port}"
    key = host + parts.path.rstrip("/")
    if parts.query:
        key = f"{key}?{parts.query}"
    return key


def page_depth(url: str) -> int:
    """Number of path segments in *url*, ignoring ``index.*``/``default.*`` segments."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return 0
    return len([seg for seg in path.split("/") if seg and not _INDEX_SEGMENT.match(seg)])


def parse_domain_filter(value: Union[str, Iterable[str], None]) -> List[str]:
    """Turn a comma-separated string (or an iterable of strings) into a filter list."""
    if not value:
        return []
    items = value.split(",") if isinstance(value, str) else value
    return [item.strip().lower() for item in items if item and item.strip()]


def matches_domain_filter(url: str, filters: List[str]) -> bool:
    """Return True when *url*'s host contains one of *filters* (or no filter is set)."""
    if not filters:
        return True
    host = host_of(url)
    return any(f in host for f in filters)
