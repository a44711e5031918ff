"""
HTTP fetcher used for listing pages, article pages and images.

Redirects are followed by hand so the chain length can be capped; requests'
own redirect handling is disabled for every call.
"""

import logging
import time
from typing import List, Optional, Tuple
from urllib.parse import urljoin

import requests
from bs4.dammit import EncodingDetector

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
REDIRECT_STATUSES = (301, 302, 303, 307, 308)
MAX_REDIRECTS = 5
DEFAULT_TIMEOUT = 15.0
CHUNK_SIZE = 64 * 1024


def _declared_charset(resp: requests.Response) -> bool:
    return "charset=" in resp.headers.get("Content-Type", "").lower()


def sniff_encoding(content: bytes) -> str:
    """
    Picks an encoding for a page whose headers don't name one.

    A ``<meta charset>`` wins; otherwise UTF-8 when the bytes decode cleanly,
    and windows-1252 when they don't.
    """
    declared = EncodingDetector.find_declared_encoding(content, is_html=True)
    if declared:
        return declared
    try:
        content.decode("utf-8")
    except UnicodeDecodeError:
        return "windows-1252"
    return "utf-8"


class Fetcher:
    """Issues GET requests with a timeout and a bounded redirect chain."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_redirects: int = MAX_REDIRECTS,
    ):
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})
        self.timeout = timeout
        self.max_redirects = max_redirects

    def get(
        self,
        url: str,
        timeout: Optional[float] = None,
        stream: bool = False,
        deadline: Optional[float] = None,
    ) -> requests.Response:
        """
        Fetches ``url``, following up to ``max_redirects`` redirects.

        ``deadline`` is a ``time.monotonic()`` value shared by every hop of the
        chain. Raises ``requests.TooManyRedirects`` when the chain is longer
        than the cap, ``requests.HTTPError`` for a final response outside 2xx,
        ``requests.Timeout`` once the deadline passes, and any other
        ``requests.RequestException`` for transport failures.
        """
        per_request = timeout if timeout is not None else self.timeout
        current = url
        for _ in range(self.max_redirects + 1):
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise requests.Timeout(f"Deadline exceeded fetching {url}")
                per_request = min(per_request, remaining)

            resp = self.session.get(
                current,
                timeout=per_request,
                allow_redirects=False,
                stream=stream,
            )
            location = resp.headers.get("Location")
            if resp.status_code in REDIRECT_STATUSES and location:
                resp.close()
                current = urljoin(current, location)
                logger.debug("Redirected to %s", current)
                continue
            if not 200 <= resp.status_code < 300:
                resp.close()
                resp.raise_for_status()
                # 1xx and 3xx without a usable Location
                raise requests.HTTPError(
                    f"Unexpected status {resp.status_code} for {current}",
                    response=resp,
                )
            return resp

        raise requests.TooManyRedirects(
            f"Exceeded {self.max_redirects} redirects fetching {url}"
        )

    def fetch_text(self, url: str, timeout: Optional[float] = None) -> str:
        """Returns the decoded body of ``url``."""
        resp = self.get(url, timeout=timeout)
        if not _declared_charset(resp):
            resp.encoding = sniff_encoding(resp.content)
        return resp.text

    def fetch_bytes(
        self, url: str, timeout: Optional[float] = None
    ) -> Tuple[bytes, str]:
        """
        Returns the raw body of ``url`` and its content type.

        ``timeout`` bounds the whole download, redirects and body included.
        """
        budget = timeout if timeout is not None else self.timeout
        deadline = time.monotonic() + budget
        resp = self.get(url, timeout=budget, stream=True, deadline=deadline)
        chunks: List[bytes] = []
        try:
            for chunk in resp.iter_content(CHUNK_SIZE):
                if time.monotonic() > deadline:
                    raise requests.Timeout(f"Exceeded {budget}s downloading {url}")
                chunks.append(chunk)
        finally:
            resp.close()
        content_type = resp.headers.get("Content-Type", "")
        return b"".join(chunks), content_type.split(";")[0].strip().lower()
