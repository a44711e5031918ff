"""
Image download service.

This module provides the ImageDownloader class, which fetches the images an
article body references and rewrites the body so the deliverable works without
network access: either files on disk next to the document, or base64 data URIs.
"""

import base64
import concurrent.futures
import logging
import os
import threading
from typing import Dict, List, Optional

import requests
from bs4 import BeautifulSoup

from article_sender.models import DownloadedImage, ExtractedArticle
from article_sender.parsers.listing import resolve_url
from article_sender.services.fetcher import Fetcher

logger = logging.getLogger(__name__)

MODE_DISK = "disk"
MODE_BASE64 = "base64"
IMAGE_TIMEOUT = 8.0

_EXTENSIONS = (
    ("png", "png"),
    ("gif", "gif"),
    ("svg", "svg"),
    ("webp", "webp"),
)


def _number_of(filename: str) -> int:
    return int(filename.split("-", 1)[1].split(".", 1)[0])


def extension_for(content_type: str) -> str:
    """Infers a file extension from a Content-Type header value."""
    for marker, ext in _EXTENSIONS:
        if marker in content_type:
            return ext
    return "jpg"


class ImageDownloader:
    """
    Downloads images at most once per URL for a whole batch.

    In ``disk`` mode images are written to ``images_dir`` as ``img-N.ext`` and
    referenced relative to its parent, e.g. ``images-2026-01-31/img-N.ext``;
    in ``base64`` mode they become data URIs. A failed download is cached as
    None so it is not retried.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        origin: str,
        mode: str = MODE_BASE64,
        images_dir: Optional[str] = None,
        timeout: float = IMAGE_TIMEOUT,
        max_workers: int = 4,
    ):
        if mode not in (MODE_DISK, MODE_BASE64):
            raise ValueError(f"Unknown image mode: {mode!r}")
        if mode == MODE_DISK and not images_dir:
            raise ValueError("images_dir is required in disk mode")
        self.fetcher = fetcher
        self.origin = origin
        self.mode = mode
        self.images_dir = images_dir
        self.timeout = timeout
        self.max_workers = max(1, max_workers)
        self.downloaded: Dict[str, Optional[DownloadedImage]] = {}
        self._lock = threading.Lock()
        self._counter = 0

    def _reserve_number(self) -> int:
        with self._lock:
            self._counter += 1
            return self._counter

    def download(self, url: str) -> Optional[DownloadedImage]:
        """Fetches one image, returning None on any failure."""
        if url in self.downloaded:
            return self.downloaded[url]

        result = self._download(url, self._reserve_number())
        with self._lock:
            self.downloaded[url] = result
        return result

    def _download(self, url: str, number: int) -> Optional[DownloadedImage]:
        absolute = resolve_url(url, self.origin)
        if not absolute:
            return None

        try:
            data, content_type = self.fetcher.fetch_bytes(absolute, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Image unavailable %s: %s", absolute, e)
            return None
        if not data:
            logger.warning("Image empty %s", absolute)
            return None

        content_type = content_type or "image/jpeg"
        filename = f"img-{number}.{extension_for(content_type)}"

        if self.mode == MODE_DISK:
            path = os.path.join(str(self.images_dir), filename)
            try:
                os.makedirs(str(self.images_dir), exist_ok=True)
                with open(path, "wb") as f:
                    f.write(data)
            except OSError as e:
                logger.error("Could not write image %s: %s", path, e)
                return None
            subdir = os.path.basename(os.path.normpath(str(self.images_dir)))
            reference = f"{subdir}/{filename}"
        else:
            encoded = base64.b64encode(data).decode("ascii")
            reference = f"data:{content_type};base64,{encoded}"

        logger.debug("Downloaded %s as %s", absolute, filename)
        return DownloadedImage(
            url=url,
            filename=filename,
            content_type=content_type,
            data=data,
            reference=reference,
        )

    def download_all(self, urls: List[str]) -> Dict[str, Optional[DownloadedImage]]:
        """Downloads every unique URL with a bounded worker pool."""
        pending = [u for u in dict.fromkeys(urls) if u not in self.downloaded]
        if pending:
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=self.max_workers
            ) as executor:
                future_to_url = {
                    executor.submit(self._download, u, self._reserve_number()): u
                    for u in pending
                }
                for future in concurrent.futures.as_completed(future_to_url):
                    url = future_to_url[future]
                    try:
                        result = future.result()
                    except Exception as exc:  # pylint: disable=broad-exception-caught
                        logger.error("%s generated an exception: %s", url, exc)
                        result = None
                    self.downloaded[url] = result
        return {u: self.downloaded.get(u) for u in urls}

    def rewrite_body(self, body: str) -> str:
        """Points downloaded images at their local form and drops the rest."""
        soup = BeautifulSoup(body, "html.parser")
        references = {i["reference"] for i in self.downloaded.values() if i is not None}
        for img in soup.find_all("img"):
            src = str(img.get("src", ""))
            if src in references:
                continue
            image = self.downloaded.get(src)
            if image is None:
                img.extract()
            else:
                img["src"] = image["reference"]
        return soup.decode()

    def embed(self, articles: List[ExtractedArticle]) -> int:
        """
        Downloads the images of every article and rewrites the bodies in place.

        Returns the number of images that were downloaded successfully.
        """
        urls = [image["source_url"] for a in articles for image in a["images"]]
        results = self.download_all(urls)
        for article in articles:
            article["body"] = self.rewrite_body(article["body"])
        ok = sum(1 for r in results.values() if r is not None)
        logger.info("Images: %d/%d downloaded.", ok, len(results))
        return ok

    def successful(self) -> List[DownloadedImage]:
        """Successfully downloaded images, ordered by file number."""
        images = [image for image in self.downloaded.values() if image is not None]
        return sorted(images, key=lambda image: _number_of(image["filename"]))
