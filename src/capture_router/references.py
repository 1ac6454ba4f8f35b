"""Save web pages as reference notes and summarize linked pages."""

from __future__ import annotations

import logging
import re
from datetime import date
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from capture_router.classifier import AICaller, CallOptions
from capture_router.entities import EntityLookup, extract_entities
from capture_router.models import InboxSettings
from capture_router.store import DocumentStore

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = "You summarize web pages into short, factual takeaways."
MAX_SUMMARY_CONTENT = 12000

SOURCE_TYPES = [
    (("twitter.com", "x.com"), "tweet"),
    (("youtube.com", "youtu.be"), "video"),
    (("github.com",), "repo"),
    (("podcasts.apple.com", "spotify.com/episode", "overcast.fm"), "podcast"),
    (("arxiv.org", "papers.ssrn", "doi.org"), "paper"),
]


def detect_source_type(url: str) -> str:
    lower = url.lower()
    for needles, source_type in SOURCE_TYPES:
        if any(needle in lower for needle in needles):
            return source_type
    return "article"


def infer_title_from_url(url: str) -> str:
    """Best-effort title from the last path segment, else the host name."""
    parsed = urlparse(url)
    if not parsed.netloc:
        return "Untitled Reference"

    segments = [segment for segment in parsed.path.split("/") if segment]
    last = re.sub(r"\.[^.]+$", "", segments[-1]) if segments else ""
    if last and last != "index":
        return re.sub(r"\b\w", lambda m: m.group(0).upper(), re.sub(r"[-_]", " ", last))

    return re.sub(r"^www\.", "", parsed.netloc)


def slugify(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")[:80] or "reference"


def parse_page(html_content: str, url: str) -> tuple[str, str]:
    """Extract (title, description) from a page, inferring the title from url if absent."""
    soup = BeautifulSoup(html_content, "html.parser")

    title = ""
    if soup.title and soup.title.string:
        title = " ".join(soup.title.string.split())

    meta = soup.find("meta", attrs={"name": "description"}) or soup.find(
        "meta", attrs={"property": "og:description"}
    )
    description = (meta.get("content") or "").strip() if meta else ""
    return title or infer_title_from_url(url), description


class WebReferenceSaver:
    """Fetch a URL and write a reference note under References/YYYY/MM/.

    The note carries url, title, source type, and tags in its frontmatter,
    with the page description as the body and links to any known entities.
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: InboxSettings,
        entity_lookup: EntityLookup | None = None,
        timeout: float = 10,
    ):
        self.store = store
        self.settings = settings
        self.entity_lookup = entity_lookup
        self.timeout = timeout

    def fetch(self, url: str) -> tuple[str, str]:
        """Return (title, description) for a page. Raises on HTTP errors."""
        resp = requests.get(
            url, timeout=self.timeout, headers={"User-Agent": "capture-router/0.1"}
        )
        resp.raise_for_status()
        return parse_page(resp.text, url)

    def process_url(self, url: str, today: date | None = None) -> str | None:
        """Create (or overwrite) the reference note for url and return its path."""
        if not self.settings.reference.enabled:
            logger.info("Reference system is disabled")
            return None

        try:
            title, summary = self.fetch(url)
        except requests.RequestException as e:
            logger.warning(f"Failed to fetch {url}: {e}")
            return None

        today = today or date.today()
        folder = f"{self.settings.reference.references_folder}/{today:%Y}/{today:%m}"
        path = f"{folder}/{slugify(title)}.md"

        entities = extract_entities(f"{title} {summary}", self.entity_lookup)
        escaped_title = title.replace('"', '\\"')
        lines = [
            "---",
            f"url: {url}",
            f'title: "{escaped_title}"',
            f"source: {detect_source_type(url)}",
            "tags:",
            "  - uncategorized",
            f"created: {today.isoformat()}",
            "---",
            "",
            f"# {title}",
        ]
        if summary:
            lines += ["", summary]
        if entities:
            links = ", ".join(f"[[{e.path.removesuffix('.md')}|{e.name}]]" for e in entities)
            lines += ["", f"Related: {links}"]
        content = "\n".join(lines) + "\n"

        if self.store.exists(path):
            self.store.modify(path, content)
        else:
            self.store.create(path, content)

        logger.info(f"Reference note created: {path}")
        return path


def extract_page_text(html_content: str) -> str:
    """Visible text of a page with scripts and styles removed."""
    soup = BeautifulSoup(html_content, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    lines = (line.strip() for line in soup.get_text().splitlines())
    return "\n".join(line for line in lines if line)


class AILinkSummarizer:
    """Summarize a linked page with the configured AI model.

    The reply is a few takeaways followed by a "TAGS: ..." line.
    """

    def __init__(self, ai_caller: AICaller, settings: InboxSettings, timeout: float = 10):
        self.ai_caller = ai_caller
        self.settings = settings
        self.timeout = timeout

    def summarize_url(self, url: str) -> str:
        resp = requests.get(
            url, timeout=self.timeout, headers={"User-Agent": "capture-router/0.1"}
        )
        resp.raise_for_status()
        text = extract_page_text(resp.text)[:MAX_SUMMARY_CONTENT]

        summary_config = self.settings.content_summary
        prompt = (
            self.settings.prompts.link_summary.replace("{url}", url)
            .replace("{takeaways}", str(summary_config.takeaways_count))
            .replace("{maxWords}", str(summary_config.max_words_per_takeaway))
            .replace("{content}", text)
        )
        model = self.settings.models.inbox_routing_model or self.settings.models.briefing_model
        result = self.ai_caller.call(SUMMARY_SYSTEM_PROMPT, prompt, model, CallOptions(temperature=0.2))
        if not result:
            raise ValueError(f"No summary returned for {url}")
        return result
