"""
State service for deduplication across runs.

This module provides the StateManager class which keeps a JSON record of the
articles already delivered, so that a URL is never fetched or sent twice.
"""

import datetime
import json
import logging
import os
import tempfile
from typing import Iterable, List, Optional, Set

from article_sender.models import RunState, SentArticleRecord

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class StateManager:
    """Handles deduplication using a local JSON file."""

    def __init__(self, path: str):
        self.path = path
        self.state: RunState = {"sent": [], "lastCheck": None}
        self._sent_urls: Set[str] = set()

    def load(self) -> RunState:
        """Reads the state file; a missing or corrupt file yields empty state."""
        self.state = {"sent": [], "lastCheck": None}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict) or not isinstance(data.get("sent"), list):
                raise ValueError("unexpected state layout")
            self.state = {
                "sent": [
                    SentArticleRecord(
                        url=str(item["url"]),
                        title=str(item.get("title", "")),
                        date=str(item.get("date", "")),
                    )
                    for item in data["sent"]
                    if isinstance(item, dict) and item.get("url")
                ],
                "lastCheck": data.get("lastCheck"),
            }
            logger.info(
                "Loaded %d sent articles from %s.", len(self.state["sent"]), self.path
            )
        except FileNotFoundError:
            logger.info("No state file at %s. Starting fresh.", self.path)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("State file %s is unreadable (%s). Starting fresh.", self.path, e)

        self._sent_urls = {record["url"] for record in self.state["sent"]}
        return self.state

    def is_sent(self, url: str) -> bool:
        """True when ``url`` was delivered in an earlier run."""
        return url in self._sent_urls

    def filter_new(self, urls: Iterable[str]) -> List[str]:
        """Returns only URLs that haven't been seen before, keeping order."""
        candidates = list(urls)
        new_urls = []
        seen = set()
        for url in candidates:
            if self.is_sent(url) or url in seen:
                continue
            seen.add(url)
            new_urls.append(url)

        logger.info(
            "Deduplication: %d processed -> %d new.", len(candidates), len(new_urls)
        )
        return new_urls

    def record(self, url: str, title: str, sent_at: Optional[str] = None) -> None:
        """Marks an article as sent."""
        if url in self._sent_urls:
            return
        self.state["sent"].append(
            SentArticleRecord(url=url, title=title, date=sent_at or _now_iso())
        )
        self._sent_urls.add(url)

    def touch(self) -> None:
        """Updates the last-check timestamp."""
        self.state["lastCheck"] = _now_iso()

    def save(self) -> None:
        """Writes the state atomically: temp file in the same dir, then rename."""
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            prefix=".sent-articles-", suffix=".json", dir=directory
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.state, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.info("Saved %d articles to history.", len(self.state["sent"]))
