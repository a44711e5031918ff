"""
Article page content extractor.

This module provides the ArticleExtractor class which turns a full article
page into an ExtractedArticle: title, sanitised body markup, category, date
and the images the body references.
"""

import datetime
import logging
import os
import re
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Comment, Tag

from article_sender.models import DiscoveredImage, ExtractedArticle
from article_sender.parsers.listing import resolve_url

logger = logging.getLogger(__name__)

# Candidate containers for the article body, tried in order.
BODY_SELECTORS: Tuple[str, ...] = (
    "main",
    "article",
    "div[class*=Body-module]",
    "div[class*=prose]",
    "div[class*=article]",
    "div[class*=content]",
)
STRIP_TAGS: Tuple[str, ...] = (
    "script",
    "style",
    "nav",
    "header",
    "footer",
    "aside",
    "iframe",
    "form",
    "noscript",
    "svg",
    "button",
)
IMAGE_DENYLIST: Tuple[str, ...] = ("pixel", "icon", "favicon", "logo", "tracking")
MIN_CANDIDATE_LENGTH = 1000
MIN_BODY_LENGTH = 500
DATE_PATTERN = re.compile(r"\b([A-Z][a-z]+\.? \d{1,2}, \d{4})\b")
DATE_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%b. %d, %Y")

CATEGORY_BY_PATH = (("/engineering/", "Engineering"), ("/research/", "Research"))
CATEGORY_BY_PREFIX = (("eng-", "Engineering"), ("research-", "Research"))
DEFAULT_CATEGORY = "News"


def parse_date(text: Optional[str]) -> Optional[datetime.datetime]:
    """Parses a 'Month D, YYYY' style date, returning None when it can't."""
    if not text:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.datetime.strptime(text.strip(), fmt)
        except ValueError:
            continue
    return None


def derive_category(source_url: str = "", filename: Optional[str] = None) -> str:
    """Derives the section of an article from its filename or URL path."""
    if filename:
        base = os.path.basename(filename).lower()
        for prefix, category in CATEGORY_BY_PREFIX:
            if base.startswith(prefix):
                return category
        return DEFAULT_CATEGORY

    path = urlparse(source_url).path
    for fragment, category in CATEGORY_BY_PATH:
        if fragment in path:
            return category
    return DEFAULT_CATEGORY


def _is_allowed_attr(name: str) -> bool:
    return not (
        name in ("class", "style", "id")
        or name.startswith("data-")
        or name.startswith("on")
    )


class ArticleExtractor:
    """
    Extracts the readable part of an article page.

    Body selection tries every selector in BODY_SELECTORS, keeps the first
    match of each whose markup is longer than MIN_CANDIDATE_LENGTH and uses
    the longest of those. Without any candidate the page <body> is used, and
    without a <body> the whole document.
    """

    def __init__(
        self,
        origin: str,
        site_name: str = "",
        selectors: Sequence[str] = BODY_SELECTORS,
        min_body_length: int = MIN_BODY_LENGTH,
    ):
        self.origin = origin.rstrip("/")
        self.selectors = tuple(selectors)
        self.min_body_length = min_body_length
        self._suffix_re = (
            re.compile(r"\s*[\\|\-–—]\s*" + re.escape(site_name) + r"\s*$")
            if site_name
            else None
        )

    def extract(
        self,
        markup: str,
        source_url: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> Optional[ExtractedArticle]:
        """
        Builds an ExtractedArticle from a full page.

        Returns None when the sanitised body is shorter than the minimum
        length; the caller drops such articles from the batch.
        """
        soup = BeautifulSoup(markup, "html.parser")
        url = source_url or self._canonical_url(soup) or ""
        title = self._extract_title(soup, url, filename)
        date = self._extract_date(soup)

        body = self._select_body(soup)
        self._sanitize(soup, body)
        images = self._collect_images(body)
        self._strip_attributes(body)

        body_markup = body.decode_contents().strip()
        if len(body_markup) < self.min_body_length:
            logger.warning(
                "Dropping '%s': body too short (%d chars).", title, len(body_markup)
            )
            return None

        return ExtractedArticle(
            title=title,
            body=body_markup,
            source_url=url,
            category=derive_category(url, filename),
            date=date,
            images=images,
        )

    def _canonical_url(self, soup: BeautifulSoup) -> Optional[str]:
        link = soup.find("link", rel="canonical", href=True)
        if isinstance(link, Tag):
            return resolve_url(str(link["href"]), self.origin)
        meta = soup.find("meta", attrs={"property": "og:url"})
        if isinstance(meta, Tag) and meta.get("content"):
            return resolve_url(str(meta["content"]), self.origin)
        return None

    def _strip_site_suffix(self, title: str) -> str:
        if self._suffix_re is not None:
            title = self._suffix_re.sub("", title)
        return title.strip()

    def _extract_title(
        self, soup: BeautifulSoup, url: str, filename: Optional[str]
    ) -> str:
        heading = soup.select_one("h1[class*=title]")
        if heading is not None and heading.get_text(strip=True):
            return self._strip_site_suffix(heading.get_text(" ", strip=True))

        title_tag = soup.find("title")
        if title_tag is not None and title_tag.get_text(strip=True):
            return self._strip_site_suffix(title_tag.get_text(" ", strip=True))

        # Fall back to a humanised slug
        if filename:
            slug = os.path.splitext(os.path.basename(filename))[0]
            slug = re.sub(r"^(eng|news|research)-", "", slug, flags=re.IGNORECASE)
        else:
            slug = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
        return slug.replace("-", " ").strip() or "Untitled"

    def _extract_date(self, soup: BeautifulSoup) -> Optional[str]:
        for tag in soup.select("[class*=agate]"):
            match = DATE_PATTERN.search(tag.get_text(" ", strip=True))
            if match and parse_date(match.group(1)):
                return match.group(1)

        for text in soup.find_all(string=DATE_PATTERN):
            if text.find_parent(["script", "style"]) is not None:
                continue
            for candidate in DATE_PATTERN.findall(str(text)):
                if parse_date(candidate):
                    return candidate
        return None

    def _select_body(self, soup: BeautifulSoup) -> Tag:
        best: Optional[Tag] = None
        best_length = 0
        for selector in self.selectors:
            node = soup.select_one(selector)
            if node is None:
                continue
            length = len(node.decode_contents())
            if length > MIN_CANDIDATE_LENGTH and length > best_length:
                best, best_length = node, length

        if best is not None:
            return best
        if soup.body is not None:
            logger.debug("No body candidate matched; using <body>.")
            return soup.body
        return soup

    def _sanitize(self, soup: BeautifulSoup, body: Tag) -> None:
        for tag in body.find_all(list(STRIP_TAGS)):
            tag.extract()
        for comment in body.find_all(string=lambda s: isinstance(s, Comment)):
            comment.extract()

        # Collapse <picture> to a single <img>
        for picture in body.find_all("picture"):
            img = picture.find("img")
            source = picture.find("source", srcset=True)
            if source is not None and (img is None or not img.get("src")):
                first = str(source["srcset"]).split(",")[0].strip().split(" ")[0]
                if img is None:
                    img = soup.new_tag("img")
                    picture.append(img)
                img["src"] = first
            for source_tag in picture.find_all("source"):
                source_tag.extract()
            picture.unwrap()

    def _collect_images(self, body: Tag) -> List[DiscoveredImage]:
        images: List[DiscoveredImage] = []
        for img in body.find_all("img"):
            src = img.get("src") or img.get("data-src") or ""
            url = resolve_url(str(src), self.origin)
            if not url or any(word in url.lower() for word in IMAGE_DENYLIST):
                img.extract()
                continue
            img["src"] = url
            for attr in ("srcset", "sizes", "loading", "decoding"):
                if attr in img.attrs:
                    del img[attr]
            images.append(DiscoveredImage(source_url=url, position_index=len(images)))
        return images

    def _strip_attributes(self, body: Tag) -> None:
        for tag in body.find_all(True):
            tag.attrs = {k: v for k, v in tag.attrs.items() if _is_allowed_attr(k)}
