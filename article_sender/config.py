"""
Configuration loading for the Article Sender.

Settings come from a JSON file that lives next to this module (or a path given
on the command line). Mail addresses and SMTP credentials can be overridden
through environment variables so they never need to be committed.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional, TypedDict, cast

from article_sender.models import ListingPage

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "config.json"

DEFAULTS: Dict[str, Any] = {
    "kindle_address": "",
    "notification_address": "",
    "state_path": "sent-articles.json",
    "output_dir": "articles",
    "site_origin": "https://www.anthropic.com",
    "site_name": "Anthropic",
    "listings": [
        {"url": "https://www.anthropic.com/news", "source": "news", "type": "html"},
        {
            "url": "https://www.anthropic.com/engineering",
            "source": "engineering",
            "type": "html",
        },
        {
            "url": "https://www.anthropic.com/research",
            "source": "research",
            "type": "html",
        },
    ],
    "path_fragments": ["/news/", "/engineering/", "/research/"],
    "max_articles": 3,
    "output_format": "html",
    "image_mode": "base64",
    "mail_client": "apple_mail",
    "smtp_server": "smtp.gmail.com",
    "smtp_port": 587,
    "page_timeout": 15,
    "image_timeout": 8,
    "image_workers": 4,
    "run_deadline_seconds": 600,
}

OUTPUT_FORMATS = ("html", "epub", "text")
IMAGE_MODES = ("disk", "base64")
MAIL_CLIENTS = ("apple_mail", "smtp")


class Settings(TypedDict):
    """Explicit configuration passed into a run."""

    kindle_address: str
    notification_address: str
    state_path: str
    output_dir: str
    site_origin: str
    site_name: str
    listings: List[ListingPage]
    path_fragments: List[str]
    max_articles: int
    output_format: str
    image_mode: str
    mail_client: str
    smtp_server: str
    smtp_port: int
    smtp_user: Optional[str]
    smtp_password: Optional[str]
    page_timeout: float
    image_timeout: float
    image_workers: int
    run_deadline_seconds: float


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Loads configuration from a JSON file."""
    if config_path is None:
        # Build absolute path relative to this module
        base_dir = os.path.dirname(os.path.abspath(__file__))
        config_path = os.path.join(base_dir, DEFAULT_CONFIG_FILENAME)

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        logger.warning("Config file not found at %s. Using defaults.", config_path)
        return {}


def _resolve_path(path: str, base_dir: str) -> str:
    expanded = os.path.expanduser(path)
    if os.path.isabs(expanded):
        return expanded
    return os.path.join(base_dir, expanded)


def build_settings(
    raw: Dict[str, Any],
    base_dir: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Settings:
    """
    Merges the raw config over the defaults and applies environment overrides.

    Relative ``state_path`` and ``output_dir`` values are resolved against
    ``base_dir`` (the current working directory when not given).
    """
    env = os.environ if environ is None else environ
    merged: Dict[str, Any] = {**DEFAULTS, **raw}
    base = base_dir or os.getcwd()

    if merged["output_format"] not in OUTPUT_FORMATS:
        raise ValueError(f"Unknown output_format: {merged['output_format']!r}")
    if merged["image_mode"] not in IMAGE_MODES:
        raise ValueError(f"Unknown image_mode: {merged['image_mode']!r}")
    if merged["mail_client"] not in MAIL_CLIENTS:
        raise ValueError(f"Unknown mail_client: {merged['mail_client']!r}")

    listings = [
        cast(
            ListingPage,
            {
                "url": item["url"],
                "source": item.get("source", "news"),
                "type": item.get("type", "html"),
            },
        )
        for item in merged["listings"]
    ]

    return Settings(
        kindle_address=env.get("KINDLE_EMAIL", merged["kindle_address"]),
        notification_address=env.get(
            "NOTIFICATION_EMAIL", merged["notification_address"]
        ),
        state_path=_resolve_path(merged["state_path"], base),
        output_dir=_resolve_path(merged["output_dir"], base),
        site_origin=merged["site_origin"].rstrip("/"),
        site_name=merged["site_name"],
        listings=listings,
        path_fragments=list(merged["path_fragments"]),
        max_articles=int(merged["max_articles"]),
        output_format=merged["output_format"],
        image_mode=merged["image_mode"],
        mail_client=merged["mail_client"],
        smtp_server=merged["smtp_server"],
        smtp_port=int(merged["smtp_port"]),
        smtp_user=env.get("EMAIL_USER"),
        smtp_password=env.get("EMAIL_PASS"),
        page_timeout=float(merged["page_timeout"]),
        image_timeout=float(merged["image_timeout"]),
        image_workers=int(merged["image_workers"]),
        run_deadline_seconds=float(merged["run_deadline_seconds"]),
    )
