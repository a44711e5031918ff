"""
RSS/Atom listing parser.

This module provides the FeedListingParser class for sections that publish a
feed instead of (or as well as) an HTML index page.
"""

import logging
from typing import List

import feedparser  # type: ignore

from article_sender.parsers.listing import URLFilter

logger = logging.getLogger(__name__)


class FeedListingParser:
    """Finds article links in the entries of an RSS or Atom feed."""

    def __init__(self, url_filter: URLFilter):
        self.url_filter = url_filter

    def discover(self, markup: str, source: str) -> List[str]:
        """Returns allow-listed entry links in feed order."""
        feed = feedparser.parse(markup)
        if feed.bozo and not feed.entries:
            logger.error("Could not parse %s feed: %s", source, feed.bozo_exception)
            return []

        links = [entry.link for entry in feed.entries if hasattr(entry, "link")]
        urls = self.url_filter.select(links)
        logger.info("Found %d article links in %s feed.", len(urls), source)
        return urls
