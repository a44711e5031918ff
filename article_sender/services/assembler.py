"""
Document assembly module.

This module turns a batch of ExtractedArticle objects into the deliverable:
- HTMLAssembler: a styled HTML document with a table of contents
- EpubAssembler: an EPUB book with one chapter per section and per article
- TextAssembler: a plain-text digest with a size ceiling

All three drop duplicate titles and order articles the same way, and produce
identical output for identical input.
"""

import datetime
import hashlib
import html
import io
import logging
import re
import zipfile
from typing import Dict, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup
from ebooklib import epub  # type: ignore

from article_sender.models import DownloadedImage, ExtractedArticle
from article_sender.parsers.article import parse_date

logger = logging.getLogger(__name__)

CATEGORY_ORDER: Dict[str, int] = {"Research": 1, "Engineering": 2, "News": 3}
TEXT_LIMIT = 50_000
TRUNCATED_MARKER = "(truncated)"
EXTENSIONS = {"html": "html", "epub": "epub", "text": "txt"}

DEFAULT_TITLE = "Anthropic Articles"
DEFAULT_AUTHOR = "Anthropic"

# Used for EPUB timestamps when the compile date is unknown
EPOCH = datetime.datetime(1980, 1, 1)
_MODIFIED_RE = re.compile(rb"(<meta\s+property=\"dcterms:modified\"\s*>)[^<]*(</meta>)")


def normalize_title(title: str) -> str:
    """Lower-cases a title and collapses its whitespace."""
    return " ".join(title.lower().split())


def dedupe_articles(articles: Sequence[ExtractedArticle]) -> List[ExtractedArticle]:
    """Keeps the first article for each normalised title."""
    seen = set()
    unique = []
    for article in articles:
        key = normalize_title(article["title"])
        if key in seen:
            logger.info("Skipping duplicate: %s", article["title"][:50])
            continue
        seen.add(key)
        unique.append(article)
    return unique


def _sort_key(article: ExtractedArticle) -> Tuple[int, int, int]:
    priority = CATEGORY_ORDER.get(article["category"], len(CATEGORY_ORDER) + 1)
    parsed = parse_date(article.get("date"))
    if parsed is None:
        return (priority, 1, 0)
    return (priority, 0, -parsed.toordinal())


def sort_articles(articles: Sequence[ExtractedArticle]) -> List[ExtractedArticle]:
    """Orders by category priority, then newest first; undated go last."""
    return sorted(articles, key=_sort_key)


def prepare_articles(articles: Sequence[ExtractedArticle]) -> List[ExtractedArticle]:
    """Deduplicates and sorts a batch for assembly."""
    return sort_articles(dedupe_articles(articles))


def output_filename(fmt: str, run_date: datetime.date, prefix: str = "articles") -> str:
    """Builds the dated filename for a deliverable."""
    return f"{prefix}-{run_date.isoformat()}.{EXTENSIONS[fmt]}"


def body_text(markup: str) -> str:
    """Strips tags and collapses whitespace."""
    text = BeautifulSoup(markup, "html.parser").get_text(" ", strip=True)
    return " ".join(text.split())


class HTMLAssembler:
    """Builds a single styled HTML document."""

    _STYLESHEET = """
    * { box-sizing: border-box; }
    body { font-family: Georgia, "Times New Roman", serif; max-width: 700px;
           margin: 0 auto; padding: 20px; background: #faf9f5; color: #1a1a1a; }
    h1 { text-align: center; font-size: 2em; color: #d4af37;
         border-bottom: 3px solid #d4af37; padding-bottom: 15px; }
    h2.category { color: #d4af37; border-bottom: 3px solid #d4af37;
                  padding: 20px 0 10px; margin-top: 40px; }
    h3 { color: #1a1a1a; font-size: 1.5em; margin-bottom: 5px; }
    img { max-width: 100%; height: auto; display: block; margin: 15px auto; }
    p { line-height: 1.8; margin: 15px 0; }
    a { color: #0066cc; }
    pre, code { background: #f0f0f0; padding: 10px; border-radius: 5px;
                overflow-x: auto; font-size: 0.9em; }
    blockquote { border-left: 4px solid #d4af37; margin: 20px 0;
                 padding-left: 20px; font-style: italic; color: #555; }
    .subtitle, .date, .source { color: #666; font-size: 0.9em; }
    .subtitle { text-align: center; }
    .toc { list-style: none; padding: 0; }
    .toc .toc-category { margin-top: 15px; font-weight: bold; }
    .toc .toc-article { margin: 5px 0; }
    .article { margin-bottom: 50px; page-break-after: always; }
    .article-body { line-height: 1.8; font-size: 1.05em; text-align: justify; }
    footer { text-align: center; color: #999; padding: 30px 0;
             border-top: 2px solid #ddd; margin-top: 50px; }
    """

    def __init__(self, title: str = DEFAULT_TITLE):
        self.title = title

    def _render_article(self, index: int, article: ExtractedArticle) -> str:
        date_html = (
            f'<p class="date">{html.escape(article["date"])}</p>'
            if article.get("date")
            else ""
        )
        source_html = ""
        if article["source_url"]:
            url = html.escape(article["source_url"], quote=True)
            source_html = f'<p class="source">Source: <a href="{url}">{url}</a></p>'
        title = html.escape(article["title"])
        body = article["body"]
        return f"""
  <article class="article" id="article-{index}">
    <h3>{title}</h3>
    {date_html}
    <div class="article-body">
{body}
    </div>
    {source_html}
  </article>
"""

    def assemble(self, articles: Sequence[ExtractedArticle], date_str: str) -> str:
        """Renders the document; ``date_str`` is shown under the heading."""
        prepared = prepare_articles(articles)
        toc = ['<h2>Table of Contents</h2>', '<ul class="toc">']
        sections: List[str] = []
        current_category: Optional[str] = None

        for i, article in enumerate(prepared):
            if article["category"] != current_category:
                current_category = article["category"]
                category = html.escape(current_category)
                sections.append(f'<h2 class="category">{category}</h2>')
                toc.append(f'<li class="toc-category">{category}</li>')
            toc.append(
                f'<li class="toc-article"><a href="#article-{i}">'
                f'{html.escape(article["title"])}</a></li>'
            )
            sections.append(self._render_article(i, article))
        toc.append("</ul>")

        title = html.escape(self.title)
        toc_html = "".join(toc)
        sections_html = "".join(sections)
        return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{title}</title>
  <style>{self._STYLESHEET}</style>
</head>
<body>
  <h1>{title}</h1>
  <p class="subtitle">{html.escape(date_str)} &bull; {len(prepared)} Articles</p>
  {toc_html}
  <hr>
{sections_html}
  <footer><p>End of Collection</p></footer>
</body>
</html>
"""


class TextAssembler:
    """Builds a plain-text digest, truncated past ``limit`` characters."""

    def __init__(self, title: str = DEFAULT_TITLE, limit: int = TEXT_LIMIT):
        self.title = title
        self.limit = limit

    def assemble(self, articles: Sequence[ExtractedArticle], date_str: str) -> str:
        """Renders the digest."""
        prepared = prepare_articles(articles)
        parts = [f"{self.title}\n{date_str}\n"]
        current_category: Optional[str] = None

        for article in prepared:
            if article["category"] != current_category:
                current_category = article["category"]
                parts.append(f"\n== {current_category} ==\n")
            header = [article["title"]]
            if article.get("date"):
                header.append(str(article["date"]))
            if article["source_url"]:
                header.append(article["source_url"])
            parts.append("\n".join(header) + "\n\n" + body_text(article["body"]) + "\n")

        text = "\n".join(parts)
        if len(text) > self.limit:
            logger.info("Digest truncated from %d to %d chars.", len(text), self.limit)
            text = text[: self.limit].rstrip() + f"\n\n{TRUNCATED_MARKER}\n"
        return text


class EpubAssembler:
    """
    Builds an EPUB book in memory.

    Images must already be rewritten to local references (disk mode); each
    downloaded image is packaged at its reference path so the chapters resolve
    it without network access.
    """

    _STYLESHEET = """
    body { font-family: Georgia, serif; line-height: 1.6; }
    h1 { color: #1a1a1a; margin-bottom: 0.5em; }
    h1.section { text-align: center; color: #d4af37; }
    h2, h3 { color: #333; }
    img { max-width: 100%; height: auto; display: block; margin: 1em auto; }
    p { margin: 1em 0; text-align: justify; }
    p.date { color: #666; font-size: 0.9em; }
    pre, code { background: #f5f5f5; padding: 0.5em; font-size: 0.9em; overflow-wrap: break-word; }
    blockquote { border-left: 3px solid #d4af37; padding-left: 1em; margin: 1em 0; font-style: italic; }
    a { color: #0066cc; }
    hr { border: none; border-top: 1px solid #ddd; margin: 2em 0; }
    """

    def __init__(
        self,
        title: str = DEFAULT_TITLE,
        author: str = DEFAULT_AUTHOR,
        language: str = "en",
    ):
        self.title = title
        self.author = author
        self.language = language

    def _identifier(self, articles: Sequence[ExtractedArticle]) -> str:
        digest = hashlib.sha1(
            "\n".join(a["source_url"] or a["title"] for a in articles).encode("utf-8")
        ).hexdigest()
        return f"article-sender-{digest[:16]}"

    def build_book(
        self,
        articles: Sequence[ExtractedArticle],
        images: Sequence[DownloadedImage] = (),
        date_str: str = "",
    ) -> epub.EpubBook:
        """Creates the EpubBook without serialising it."""
        prepared = prepare_articles(articles)
        categories = list(dict.fromkeys(a["category"] for a in prepared))

        book = epub.EpubBook()
        book.set_identifier(self._identifier(prepared))
        book.set_title(self.title)
        book.set_language(self.language)
        book.add_author(self.author)
        book.add_metadata("DC", "publisher", self.author)
        description = (
            f"{len(prepared)} articles from the {', '.join(categories)} sections."
        )
        if date_str:
            description += f" Compiled {date_str}."
        book.add_metadata("DC", "description", description)

        css = epub.EpubItem(
            uid="style",
            file_name="style/style.css",
            media_type="text/css",
            content=self._STYLESHEET,
        )
        book.add_item(css)

        for n, image in enumerate(images, start=1):
            book.add_item(
                epub.EpubImage(
                    uid=f"image-{n}",
                    file_name=image["reference"],
                    media_type=image["content_type"],
                    content=image["data"],
                )
            )

        chapters: List[epub.EpubHtml] = []
        toc: List[Tuple[epub.Section, List[epub.EpubHtml]]] = []
        current_category: Optional[str] = None

        for article in prepared:
            if article["category"] != current_category:
                current_category = article["category"]
                section = epub.EpubHtml(
                    title=current_category,
                    file_name=f"chap-{len(chapters):03d}.xhtml",
                    lang=self.language,
                )
                section.content = (
                    f'<h1 class="section">{html.escape(current_category)}</h1>'
                    f"<p>Section {categories.index(current_category) + 1} "
                    f"of {len(categories)}</p>"
                )
                section.add_item(css)
                book.add_item(section)
                chapters.append(section)
                toc.append(
                    (epub.Section(current_category, href=section.file_name), [])
                )

            chapter = epub.EpubHtml(
                title=article["title"],
                file_name=f"chap-{len(chapters):03d}.xhtml",
                lang=self.language,
            )
            date_html = (
                f'<p class="date">{html.escape(article["date"])}</p>'
                if article.get("date")
                else ""
            )
            chapter.content = (
                f"<h1>{html.escape(article['title'])}</h1>{date_html}<hr/>"
                f"{article['body']}"
            )
            chapter.add_item(css)
            book.add_item(chapter)
            chapters.append(chapter)
            toc[-1][1].append(chapter)

        book.toc = [(section, tuple(items)) for section, items in toc]
        book.add_item(epub.EpubNcx())
        book.add_item(epub.EpubNav())
        book.spine = ["nav"] + chapters
        return book

    def assemble(
        self,
        articles: Sequence[ExtractedArticle],
        images: Sequence[DownloadedImage] = (),
        date_str: str = "",
    ) -> bytes:
        """
        Returns the EPUB container as bytes.

        Timestamps come from ``date_str`` (``EPOCH`` when it doesn't parse),
        so the same input always yields the same bytes.
        """
        book = self.build_book(articles, images, date_str)
        buffer = io.BytesIO()
        modified = parse_date(date_str) or EPOCH
        epub.write_epub(buffer, book, {"mtime": modified})
        return normalize_epub(buffer.getvalue(), modified)


def normalize_epub(data: bytes, modified: datetime.datetime) -> bytes:
    """Rewrites an EPUB with fixed zip entry times and modification date."""
    stamp = modified.strftime("%Y-%m-%dT%H:%M:%SZ").encode("ascii")
    date_time = modified.timetuple()[:6]
    out = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(data)) as src, zipfile.ZipFile(out, "w") as dst:
        for info in src.infolist():
            content = src.read(info)
            if info.filename.endswith(".opf"):
                content = _MODIFIED_RE.sub(
                    lambda m: m.group(1) + stamp + m.group(2), content
                )
            entry = zipfile.ZipInfo(info.filename, date_time=date_time)
            entry.compress_type = info.compress_type
            entry.external_attr = info.external_attr
            dst.writestr(entry, content)
    return out.getvalue()
