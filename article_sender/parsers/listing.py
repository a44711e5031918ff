"""
HTML listing page parser.

This module provides the HTMLListingParser class which finds article links on
a section page, plus the URL helpers shared by the other parsers.
"""

import logging
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urldefrag, urlparse

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

DEFAULT_MAX_ARTICLES = 3


def resolve_url(href: str, origin: str) -> Optional[str]:
    """
    Turns a link target into an absolute URL.

    Protocol-relative targets get ``https:``; site-relative ones are prefixed
    with ``origin``. Anything that is not http(s) afterwards yields None.
    """
    href = href.strip()
    if not href or href.startswith("data:"):
        return None
    if href.startswith("//"):
        href = "https:" + href
    elif href.startswith("/"):
        href = origin.rstrip("/") + href
    if not href.startswith(("http://", "https://")):
        return None
    return href


class URLFilter:
    """Allow-list of article URLs by host and path fragment."""

    def __init__(
        self,
        origin: str,
        path_fragments: Sequence[str],
        max_articles: int = DEFAULT_MAX_ARTICLES,
    ):
        self.origin = origin.rstrip("/")
        self.host = urlparse(self.origin).netloc
        self.path_fragments = list(path_fragments)
        self.max_articles = max_articles

    def accepts(self, url: str) -> bool:
        """True when ``url`` is on the site and under an allow-listed path."""
        parsed = urlparse(url)
        if parsed.netloc != self.host:
            return False
        return any(fragment in parsed.path for fragment in self.path_fragments)

    def select(self, hrefs: Iterable[str]) -> List[str]:
        """Resolves, filters, deduplicates and caps link targets."""
        selected: List[str] = []
        seen = set()
        for href in hrefs:
            url = resolve_url(href, self.origin)
            if not url:
                continue
            url, _ = urldefrag(url)
            if url in seen or not self.accepts(url):
                continue
            seen.add(url)
            selected.append(url)
            if len(selected) >= self.max_articles:
                break
        return selected


class HTMLListingParser:
    """Finds article links on an HTML listing page."""

    def __init__(self, url_filter: URLFilter):
        self.url_filter = url_filter

    def discover(self, markup: str, source: str) -> List[str]:
        """Returns allow-listed article URLs in document order."""
        soup = BeautifulSoup(markup, "html.parser")
        hrefs = [a["href"] for a in soup.find_all("a", href=True)]
        urls = self.url_filter.select(hrefs)
        logger.info("Found %d article links on %s listing.", len(urls), source)
        return urls
