"""
Data models for the Article Sender application.
"""

from typing import TypedDict, List, Optional


class SentArticleRecord(TypedDict):
    """An article that has already been delivered."""

    url: str
    title: str
    date: str  # ISO-8601 time the article was sent


class RunState(TypedDict):
    """Persisted state shared between runs."""

    sent: List[SentArticleRecord]
    lastCheck: Optional[str]


class ListingPage(TypedDict):
    """A page that enumerates links to individual articles."""

    url: str
    source: str
    type: str  # "html" or "feed"


class DiscoveredImage(TypedDict):
    """Type definition for an image found in an article body."""

    source_url: str
    position_index: int


class DownloadedImage(TypedDict):
    """An image fetched for embedding into the deliverable."""

    url: str
    filename: str
    content_type: str
    data: bytes
    reference: str  # What the <img src> is rewritten to


class ExtractedArticle(TypedDict):
    """Type definition for an article."""

    title: str
    body: str
    source_url: str
    category: str
    date: Optional[str]
    images: List[DiscoveredImage]
