"""Unit tests for document assembly."""

import datetime
import io
import unittest
import zipfile
from unittest.mock import patch

from article_sender.models import DownloadedImage, ExtractedArticle
from article_sender.services.assembler import (
    EpubAssembler,
    HTMLAssembler,
    TRUNCATED_MARKER,
    TextAssembler,
    dedupe_articles,
    output_filename,
    sort_articles,
)


def make_article(title, category="News", date=None, body="<p>Body text.</p>", url=None):
    return ExtractedArticle(
        title=title,
        body=body,
        source_url=url or f"https://www.anthropic.com/{category.lower()}/{title.lower()}",
        category=category,
        date=date,
        images=[],
    )


class TestOrdering(unittest.TestCase):
    def test_dedupe_by_normalized_title(self):
        articles = [
            make_article("Hello World"),
            make_article("  hello   WORLD "),
            make_article("Other"),
        ]
        kept = dedupe_articles(articles)
        self.assertEqual([a["title"] for a in kept], ["Hello World", "Other"])

    def test_sort_by_category_then_newest(self):
        articles = [
            make_article("Old news", "News", "Jan 1, 2025"),
            make_article("Undated research", "Research"),
            make_article("New news", "News", "March 3, 2025"),
            make_article("Dated research", "Research", "Feb 2, 2024"),
            make_article("Eng", "Engineering", "Feb 2, 2024"),
            make_article("Policy", "Policy"),
        ]
        ordered = [a["title"] for a in sort_articles(articles)]
        self.assertEqual(
            ordered,
            ["Dated research", "Undated research", "Eng", "New news", "Old news", "Policy"],
        )

    def test_output_filename(self):
        run_date = datetime.date(2026, 1, 31)
        self.assertEqual(output_filename("html", run_date), "articles-2026-01-31.html")
        self.assertEqual(output_filename("text", run_date), "articles-2026-01-31.txt")
        self.assertEqual(output_filename("epub", run_date), "articles-2026-01-31.epub")


class TestHTMLAssembler(unittest.TestCase):
    def setUp(self):
        self.articles = [
            make_article("First news", "News", "Jan 1, 2025"),
            make_article("A <research> paper", "Research", "Jan 2, 2025"),
            make_article("first NEWS", "News"),
        ]

    def test_sections_toc_and_grouping(self):
        document = HTMLAssembler(title="Anthropic Articles").assemble(
            self.articles, "January 31, 2026"
        )
        self.assertEqual(document.count('<article class="article"'), 2)
        self.assertIn('<a href="#article-0">A &lt;research&gt; paper</a>', document)
        self.assertIn('<a href="#article-1">First news</a>', document)
        self.assertLess(document.index(">Research</h2>"), document.index(">News</h2>"))
        self.assertIn("<style>", document)
        self.assertIn("January 31, 2026", document)

    def test_output_is_deterministic(self):
        assembler = HTMLAssembler()
        first = assembler.assemble(self.articles, "January 31, 2026")
        second = assembler.assemble(self.articles, "January 31, 2026")
        self.assertEqual(first, second)


class TestTextAssembler(unittest.TestCase):
    def test_strips_tags_and_collapses_whitespace(self):
        article = make_article("Plain", body="<p>Hello\n\n   <b>bold</b>   world</p>")
        digest = TextAssembler().assemble([article], "January 31, 2026")
        self.assertIn("Hello bold world", digest)
        self.assertNotIn("<b>", digest)
        self.assertNotIn(TRUNCATED_MARKER, digest)

    def test_truncates_past_limit(self):
        article = make_article("Long", body="<p>" + "word " * 500 + "</p>")
        digest = TextAssembler(limit=200).assemble([article], "January 31, 2026")
        self.assertTrue(digest.rstrip().endswith(TRUNCATED_MARKER))
        self.assertLess(len(digest), 200 + len(TRUNCATED_MARKER) + 5)

    def test_output_is_deterministic(self):
        articles = [make_article("One"), make_article("Two", "Research")]
        assembler = TextAssembler()
        self.assertEqual(
            assembler.assemble(articles, "today"), assembler.assemble(articles, "today")
        )


class TestEpubAssembler(unittest.TestCase):
    def test_builds_epub_with_section_and_article_chapters(self):
        articles = [
            make_article(
                "Research paper",
                "Research",
                body='<p>Findings.</p><img alt="" src="images-2026-01-31/img-1.png"/>',
            ),
            make_article("Launch", "News"),
        ]
        images = [
            DownloadedImage(
                url="https://cdn.example.com/a.png",
                filename="img-1.png",
                content_type="image/png",
                data=b"PNGDATA",
                reference="images-2026-01-31/img-1.png",
            )
        ]
        data = EpubAssembler(title="Anthropic Articles", author="Anthropic").assemble(
            articles, images, "January 31, 2026"
        )

        self.assertTrue(data.startswith(b"PK"))
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = archive.namelist()
            self.assertEqual(archive.read("mimetype"), b"application/epub+zip")
            chapters = sorted(n for n in names if "chap-" in n)
            # Research section, research article, News section, news article
            self.assertEqual(len(chapters), 4)
            self.assertIn(b"Research paper", archive.read(chapters[1]))
            self.assertTrue(any(n.endswith("images-2026-01-31/img-1.png") for n in names))
            opf = next(n for n in names if n.endswith(".opf"))
            self.assertIn(b"Anthropic Articles", archive.read(opf))

    @patch("zipfile.time.time")
    def test_output_is_deterministic(self, mock_time):
        articles = [make_article("Launch", "News"), make_article("Paper", "Research")]
        assembler = EpubAssembler()

        mock_time.return_value = 1_700_000_000
        first = assembler.assemble(articles, (), "January 31, 2026")
        mock_time.return_value = 1_800_000_000
        second = assembler.assemble(articles, (), "January 31, 2026")

        self.assertEqual(first, second)
        with zipfile.ZipFile(io.BytesIO(first)) as archive:
            self.assertEqual(archive.namelist()[0], "mimetype")
            for info in archive.infolist():
                self.assertEqual(info.date_time, (2026, 1, 31, 0, 0, 0))
            opf = next(n for n in archive.namelist() if n.endswith(".opf"))
            self.assertIn(b"2026-01-31T00:00:00Z", archive.read(opf))


if __name__ == "__main__":
    unittest.main()
