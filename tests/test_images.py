"""Unit tests for the image downloader."""

import base64
import os
import tempfile
import unittest
from unittest.mock import MagicMock

import requests

from article_sender.models import DiscoveredImage, ExtractedArticle
from article_sender.services.images import ImageDownloader, extension_for

GOOD = "https://cdn.example.com/a.png"
SLOW = "https://cdn.example.com/slow.jpg"


def make_article(urls):
    body = "<p>Intro</p>" + "".join(f'<img alt="" src="{u}"/>' for u in urls)
    return ExtractedArticle(
        title="Article",
        body=body,
        source_url="https://www.anthropic.com/news/a",
        category="News",
        date=None,
        images=[DiscoveredImage(source_url=u, position_index=i) for i, u in enumerate(urls)],
    )


def fake_fetch_bytes(url, timeout=None):
    if url == GOOD:
        return b"PNGDATA", "image/png"
    raise requests.Timeout(f"timed out after {timeout}s")


class TestImageDownloader(unittest.TestCase):
    def setUp(self):
        self.fetcher = MagicMock()
        self.fetcher.fetch_bytes.side_effect = fake_fetch_bytes

    def test_base64_mode_embeds_and_drops_failures(self):
        downloader = ImageDownloader(self.fetcher, "https://www.anthropic.com", timeout=8)
        article = make_article([GOOD, SLOW])

        count = downloader.embed([article])

        self.assertEqual(count, 1)
        encoded = base64.b64encode(b"PNGDATA").decode("ascii")
        self.assertIn(f'src="data:image/png;base64,{encoded}"', article["body"])
        self.assertNotIn(SLOW, article["body"])
        self.assertNotIn(GOOD, article["body"])
        self.assertEqual(article["body"].count("<img"), 1)
        for call in self.fetcher.fetch_bytes.call_args_list:
            self.assertEqual(call.kwargs["timeout"], 8)

    def test_disk_mode_writes_numbered_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            images_dir = os.path.join(tmp, "images-2026-01-31")
            downloader = ImageDownloader(
                self.fetcher, "https://www.anthropic.com", mode="disk", images_dir=images_dir
            )
            article = make_article([GOOD])
            downloader.embed([article])

            self.assertIn('src="images-2026-01-31/img-1.png"', article["body"])
            with open(os.path.join(images_dir, "img-1.png"), "rb") as f:
                self.assertEqual(f.read(), b"PNGDATA")
            self.assertEqual([i["filename"] for i in downloader.successful()], ["img-1.png"])

    def test_each_url_fetched_once_across_articles(self):
        downloader = ImageDownloader(self.fetcher, "https://www.anthropic.com")
        first, second = make_article([GOOD, SLOW]), make_article([GOOD, SLOW])

        downloader.embed([first, second])
        downloader.embed([second])

        fetched = [call.args[0] for call in self.fetcher.fetch_bytes.call_args_list]
        self.assertEqual(sorted(fetched), sorted([GOOD, SLOW]))
        self.assertIn("data:image/png", second["body"])

    def test_unexpected_error_is_absorbed(self):
        self.fetcher.fetch_bytes.side_effect = RuntimeError("boom")
        downloader = ImageDownloader(self.fetcher, "https://www.anthropic.com")
        article = make_article([GOOD])
        self.assertEqual(downloader.embed([article]), 0)
        self.assertNotIn("<img", article["body"])

    def test_disk_mode_requires_directory(self):
        with self.assertRaises(ValueError):
            ImageDownloader(self.fetcher, "https://www.anthropic.com", mode="disk")

    def test_extension_for(self):
        self.assertEqual(extension_for("image/png"), "png")
        self.assertEqual(extension_for("image/gif"), "gif")
        self.assertEqual(extension_for("image/svg+xml"), "svg")
        self.assertEqual(extension_for("image/jpeg"), "jpg")
        self.assertEqual(extension_for(""), "jpg")


if __name__ == "__main__":
    unittest.main()
