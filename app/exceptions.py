"""Error taxonomy for the link audit pipeline."""


class LinkAuditError(Exception):
    """Base class for every error raised by the audit pipeline."""


class FetchError(LinkAuditError):
    """A single URL could not be retrieved."""

    def __init__(self, url: str, message: str = ""):
        self.url = url
        self.message = message or f"Failed to fetch {url}"
        super().__init__(self.message)


class FetchTimeoutError(FetchError, TimeoutError):
    """The request for *url* exceeded its timeout."""

    def __init__(self, url: str, timeout: float):
        self.timeout = timeout
        super().__init__(url, f"Timed out after {timeout}s fetching {url}")


class SitemapFetchError(LinkAuditError):
    """The root sitemap could not be retrieved; aborts the whole run."""

    def __init__(self, sitemap_url: str, reason: str = ""):
        self.sitemap_url = sitemap_url
        message = f"Unable to fetch sitemap {sitemap_url}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class MalformedUrlError(LinkAuditError, ValueError):
    """A candidate href cannot be parsed into an absolute URL."""


class RankingError(LinkAuditError):
    """The ranking engines received input they cannot score."""
