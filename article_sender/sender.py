"""
Article Sender
This script checks a site's listing pages for new articles, downloads them with
their images, compiles them into one document (HTML, EPUB or plain text) and
mails it to an e-reader address, followed by a confirmation email.
"""

import argparse
import datetime
import glob
import logging
import os
import sys
import time
from typing import List, Optional, Sequence, Tuple, Union

import requests

from article_sender.config import Settings, build_settings, load_config
from article_sender.models import DownloadedImage, ExtractedArticle, ListingPage
from article_sender.parsers.article import ArticleExtractor
from article_sender.parsers.base import LinkDiscoverer
from article_sender.parsers.feed import FeedListingParser
from article_sender.parsers.listing import HTMLListingParser, URLFilter
from article_sender.services.assembler import (
    EpubAssembler,
    HTMLAssembler,
    TextAssembler,
    output_filename,
    prepare_articles,
)
from article_sender.services.email_service import (
    AppleMailClient,
    DeliveryService,
    MailClient,
    SMTPMailClient,
)
from article_sender.services.fetcher import Fetcher
from article_sender.services.images import MODE_DISK, ImageDownloader
from article_sender.services.state import StateManager


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def make_discoverer(listing: ListingPage, settings: Settings) -> LinkDiscoverer:
    """Returns the parser for a listing page's type."""
    url_filter = URLFilter(
        settings["site_origin"], settings["path_fragments"], settings["max_articles"]
    )
    if listing["type"] == "feed":
        return FeedListingParser(url_filter)
    return HTMLListingParser(url_filter)


def make_mail_client(settings: Settings) -> MailClient:
    """Builds the configured mail client."""
    if settings["mail_client"] == "smtp":
        if not settings["smtp_user"] or not settings["smtp_password"]:
            raise ValueError("EMAIL_USER or EMAIL_PASS not set.")
        return SMTPMailClient(
            settings["smtp_server"],
            settings["smtp_port"],
            settings["smtp_user"],
            settings["smtp_password"],
        )
    return AppleMailClient()


def discover_new(
    settings: Settings, fetcher: Fetcher, state: StateManager
) -> List[str]:
    """Scans every listing page and returns unsent article URLs."""
    found: List[str] = []
    for listing in settings["listings"]:
        logger.info("Checking %s...", listing["source"])
        try:
            markup = fetcher.fetch_text(listing["url"])
        except requests.RequestException as e:
            logger.error("Error fetching %s: %s", listing["source"], e)
            continue
        discoverer = make_discoverer(listing, settings)
        found.extend(discoverer.discover(markup, listing["source"]))
    return state.filter_new(found)


def extract_articles(
    urls: Sequence[str],
    fetcher: Fetcher,
    extractor: ArticleExtractor,
    deadline: Optional[float] = None,
) -> List[Tuple[str, ExtractedArticle]]:
    """Downloads and extracts each article, skipping the ones that fail."""
    processed: List[Tuple[str, ExtractedArticle]] = []
    for url in urls:
        if deadline is not None and time.monotonic() > deadline:
            logger.warning(
                "Run deadline reached; %d articles left for the next run.",
                len(urls) - len(processed),
            )
            break
        logger.info("Downloading: %s", url)
        try:
            markup = fetcher.fetch_text(url)
        except requests.RequestException as e:
            logger.error("Error downloading article %s: %s", url, e)
            continue
        article = extractor.extract(markup, source_url=url)
        if article is None:
            continue
        logger.info(
            "[%s] %s (%d images)",
            article["category"],
            article["title"][:50],
            len(article["images"]),
        )
        processed.append((url, article))
    return processed


def compile_document(
    articles: Sequence[ExtractedArticle],
    settings: Settings,
    fetcher: Fetcher,
    run_date: datetime.date,
    fmt: str,
) -> Tuple[str, List[ExtractedArticle]]:
    """
    Embeds images, assembles the deliverable and writes it to the output dir.

    Returns the written path and the articles it contains, in document order.
    """
    prepared = prepare_articles(articles)
    output_dir = settings["output_dir"]
    os.makedirs(output_dir, exist_ok=True)
    date_str = run_date.strftime("%B %d, %Y")
    title = f"{settings['site_name']} Articles".strip()

    images: List[DownloadedImage] = []
    if fmt != "text":
        mode = MODE_DISK if fmt == "epub" else settings["image_mode"]
        downloader = ImageDownloader(
            fetcher,
            settings["site_origin"],
            mode=mode,
            images_dir=os.path.join(output_dir, f"images-{run_date.isoformat()}"),
            timeout=settings["image_timeout"],
            max_workers=settings["image_workers"],
        )
        downloader.embed(prepared)
        images = downloader.successful()

    document: Union[str, bytes]
    if fmt == "epub":
        document = EpubAssembler(title=title, author=settings["site_name"]).assemble(
            prepared, images, date_str
        )
    elif fmt == "text":
        document = TextAssembler(title=title).assemble(prepared, date_str)
    else:
        document = HTMLAssembler(title=title).assemble(prepared, date_str)

    path = os.path.join(output_dir, output_filename(fmt, run_date))
    if isinstance(document, bytes):
        with open(path, "wb") as f:
            f.write(document)
    else:
        with open(path, "w", encoding="utf-8") as f:
            f.write(document)
    logger.info("Saved %s (%.2f MB)", path, len(document) / 1024 / 1024)
    return path, prepared


def run(
    settings: Settings,
    fetcher: Optional[Fetcher] = None,
    mail_client: Optional[MailClient] = None,
    fmt: Optional[str] = None,
    dry_run: bool = False,
    run_date: Optional[datetime.date] = None,
) -> int:
    """Runs one check-and-send cycle, returning the process exit code."""
    fmt = fmt or settings["output_format"]
    run_date = run_date or datetime.date.today()
    deadline = time.monotonic() + settings["run_deadline_seconds"]
    fetcher = fetcher or Fetcher(timeout=settings["page_timeout"])

    if not dry_run and not settings["kindle_address"]:
        logger.error("Error: kindle_address (or KINDLE_EMAIL) not set.")
        return 1

    state = StateManager(settings["state_path"])
    state.load()

    logger.info("--- Checking for new articles on %s ---", run_date.isoformat())
    new_urls = discover_new(settings, fetcher, state)
    if not new_urls:
        logger.info("No new articles found.")
        if not dry_run:
            state.touch()
            state.save()
        return 0

    logger.info("Found %d new articles.", len(new_urls))
    extractor = ArticleExtractor(settings["site_origin"], settings["site_name"])
    processed = extract_articles(new_urls, fetcher, extractor, deadline)
    if not processed:
        logger.error("No articles could be downloaded.")
        return 0

    path, included = compile_document(
        [article for _, article in processed], settings, fetcher, run_date, fmt
    )
    for url, article in processed:
        state.record(url, article["title"])

    if dry_run:
        logger.info("Dry run: not sending %s.", path)
        return 0

    try:
        client = mail_client or make_mail_client(settings)
    except ValueError as e:
        logger.error("Error: %s", e)
        client = None

    delivered = False
    if client is not None:
        delivery = DeliveryService(
            client, settings["kindle_address"], settings["notification_address"]
        )
        delivered = delivery.deliver(
            [a["title"] for a in included], path, settings["site_name"]
        )

    # State is saved even when delivery fails; the document stays on disk.
    state.touch()
    state.save()
    if not delivered:
        logger.error("Delivery failed; the document is at %s.", path)
        return 1
    logger.info("Done!")
    return 0


def run_batch(
    settings: Settings,
    directory: str,
    fetcher: Optional[Fetcher] = None,
    mail_client: Optional[MailClient] = None,
    fmt: Optional[str] = None,
    send: bool = False,
    run_date: Optional[datetime.date] = None,
) -> int:
    """Compiles every pre-fetched ``*.html`` file in ``directory``."""
    fmt = fmt or settings["output_format"]
    run_date = run_date or datetime.date.today()
    fetcher = fetcher or Fetcher(timeout=settings["page_timeout"])
    extractor = ArticleExtractor(settings["site_origin"], settings["site_name"])

    files = sorted(glob.glob(os.path.join(directory, "*.html")))
    logger.info("Found %d articles in %s", len(files), directory)

    articles: List[ExtractedArticle] = []
    for file_path in files:
        try:
            with open(file_path, "r", encoding="utf-8", errors="replace") as f:
                markup = f.read()
        except OSError as e:
            logger.error("Could not read %s: %s", file_path, e)
            continue
        article = extractor.extract(markup, filename=file_path)
        if article is not None:
            articles.append(article)

    if not articles:
        logger.error("No usable articles in %s.", directory)
        return 1

    path, included = compile_document(articles, settings, fetcher, run_date, fmt)
    logger.info("Total: %d articles", len(included))
    if not send:
        return 0

    try:
        client = mail_client or make_mail_client(settings)
    except ValueError as e:
        logger.error("Error: %s", e)
        return 1
    delivery = DeliveryService(
        client, settings["kindle_address"], settings["notification_address"]
    )
    ok = delivery.deliver([a["title"] for a in included], path, settings["site_name"])
    return 0 if ok else 1


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parses command-line options."""
    parser = argparse.ArgumentParser(
        description="Send new articles from a site to an e-reader by email."
    )
    parser.add_argument("--config", help="Path to a JSON config file.")
    parser.add_argument(
        "--format",
        choices=("html", "epub", "text"),
        help="Deliverable format (default from config).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Write the document but do not send it or update state.",
    )
    parser.add_argument(
        "--from-dir",
        metavar="DIR",
        help="Compile pre-fetched article HTML files instead of checking the site.",
    )
    parser.add_argument(
        "--send",
        action="store_true",
        help="With --from-dir, also email the compiled document.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main execution entry point."""
    args = parse_args(argv)
    raw = load_config(args.config)
    base_dir = os.path.dirname(os.path.abspath(args.config)) if args.config else None
    try:
        settings = build_settings(raw, base_dir=base_dir)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    if args.from_dir:
        return run_batch(settings, args.from_dir, fmt=args.format, send=args.send)
    return run(settings, fmt=args.format, dry_run=args.dry_run)


if __name__ == "__main__":
    sys.exit(main())
