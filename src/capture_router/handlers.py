"""Handlers for explicit trigger commands: follow-up, research, and reference.

Each handler owns its document write and its notices. None of them go
through the routing engine.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime
from pathlib import PurePosixPath
from typing import Protocol

from capture_router.classifier import AICaller, CallOptions
from capture_router.dates import format_due_date, format_time, parse_natural_language_date
from capture_router.entities import EntityLookup, extract_entities, format_with_entity_links
from capture_router.formatter import (
    append_to_thoughts_section,
    format_followup_task,
    indent_block,
    insert_after_meeting_line,
    strip_due_dates_multiline,
)
from capture_router.models import CaptureItem, InboxSettings
from capture_router.notifier import Notifier
from capture_router.store import DocumentStore, get_daily_note_path
from capture_router.triggers import strip_leading_trigger_phrase

logger = logging.getLogger(__name__)

RESEARCH_SYSTEM_PROMPT = "You are a research assistant. Perform deep research using web search."

_PRIMARY_TAG_RE = re.compile(r"tags:\s*\n\s*-\s*([^\n]+)")


class ReferenceSaver(Protocol):
    def process_url(self, url: str) -> str | None:
        """Save a reference note for url and return its path, or None on failure."""
        ...


def _load_daily_note(store: DocumentStore, notifier: Notifier, now: datetime) -> str | None:
    path = get_daily_note_path(store, now.date())
    if not path:
        notifier.notify_error("Could not find today's daily note")
        return None
    return path


async def handle_followup_trigger(
    store: DocumentStore,
    settings: InboxSettings,
    item: CaptureItem,
    notifier: Notifier,
    entity_lookup: EntityLookup | None = None,
    now: datetime | None = None,
) -> bool:
    """Turn "follow up ..." into a dated task with entity links.

    The due date comes from a date phrase in the text when there is one, else
    from the default offset. In a meeting, the task goes under the meeting
    line; otherwise it goes to the thoughts section.

    Returns True when the task was written.
    """
    now = now or datetime.now()
    content = strip_leading_trigger_phrase(
        item.content, settings.triggers.followup_phrases, settings
    )
    if not content:
        notifier.notify_error("No follow-up content provided")
        return False

    # Date parsing runs before entity linking so link syntax can't confuse it
    due_date = parse_natural_language_date(content, now.date()) or format_due_date(
        settings.formatting.default_due_date_offset, now.date()
    )
    content = strip_due_dates_multiline(content, settings)

    entities = await asyncio.to_thread(extract_entities, content, entity_lookup)
    linked = format_with_entity_links(content, entities, settings)
    formatted = format_followup_task(linked, due_date, settings)

    path = _load_daily_note(store, notifier, now)
    if not path:
        return False

    document = store.read(path)
    if item.meeting_context:
        updated = insert_after_meeting_line(
            document, item.meeting_context, indent_block(formatted), settings.thoughts_section
        )
        store.modify(path, updated)
        notifier.notify_filed(
            f'Follow-up task added to meeting "{item.meeting_context.summary}"'
        )
    else:
        updated = append_to_thoughts_section(document, formatted, settings.thoughts_section)
        store.modify(path, updated)
        notifier.notify_filed("Follow-up task added to daily thoughts")
    return True


async def handle_research_trigger(
    store: DocumentStore,
    settings: InboxSettings,
    item: CaptureItem,
    notifier: Notifier,
    ai_caller: AICaller | None,
    now: datetime | None = None,
) -> bool:
    """Run a web-search research call and append the result as a thought.

    Returns True when the result was written.
    """
    query = strip_leading_trigger_phrase(
        item.content, settings.triggers.research_phrases, settings
    )
    if not query:
        notifier.notify_error("No research query provided")
        return False

    if ai_caller is None:
        notifier.notify_error("Research unavailable - no AI provider configured")
        return False

    notifier.notify_info("Starting deep research...")

    prompt = settings.prompts.research.replace("{query}", query)
    model = settings.models.research_model or settings.models.briefing_model
    options = CallOptions(
        use_search=True,
        temperature=settings.models.research_temperature,
        thinking_budget="high",
    )
    result = await asyncio.to_thread(ai_caller.call, RESEARCH_SYSTEM_PROMPT, prompt, model, options)

    if not result:
        notifier.notify_error("Research failed - no response from AI")
        return False

    now = now or datetime.now()
    path = _load_daily_note(store, notifier, now)
    if not path:
        return False

    timestamp = format_time(now, settings.formatting.time_format)
    body = "\n\t".join(result.split("\n"))
    formatted = f"- {timestamp} **Research: {query}**\n\t{body}"

    document = store.read(path)
    store.modify(path, append_to_thoughts_section(document, formatted, settings.thoughts_section))
    notifier.notify_filed("Research completed and added to daily note")
    return True


def reference_title(note_path: str) -> str:
    """Title-case a note's file name: my-great-post.md becomes My Great Post."""
    stem = PurePosixPath(note_path).stem
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), stem.replace("-", " "))


async def handle_reference_trigger(
    store: DocumentStore,
    settings: InboxSettings,
    item: CaptureItem,
    url: str,
    notifier: Notifier,
    reference_saver: ReferenceSaver | None,
    now: datetime | None = None,
) -> bool:
    """Save url as a reference note and link it from the daily note.

    The original capture line is replaced by the link when it is present in
    the daily note; otherwise the link is appended as a thought.

    Returns True when the reference note was saved.
    """
    logger.info(f"Reference trigger detected: {url}")
    if reference_saver is None:
        notifier.notify_error("Reference saving is not configured")
        return False

    note_path = await asyncio.to_thread(reference_saver.process_url, url)
    if not note_path:
        return False

    if not settings.reference.daily_note_link:
        return True

    title = reference_title(note_path)
    primary_tag = "uncategorized"
    if store.exists(note_path):
        tag_match = _PRIMARY_TAG_RE.search(store.read(note_path))
        if tag_match:
            primary_tag = tag_match.group(1).strip()

    now = now or datetime.now()
    path = get_daily_note_path(store, now.date())
    if not path:
        logger.warning("No daily note to link reference from")
        return True

    wikilink = f"[[{note_path.removesuffix('.md')}|{title}]]"
    document = store.read(path)
    if item.content in document:
        updated = document.replace(item.content, f"{wikilink} #{primary_tag}", 1)
    else:
        timestamp = format_time(now, settings.formatting.time_format)
        updated = append_to_thoughts_section(
            document, f"- {timestamp} {wikilink} #{primary_tag}", settings.thoughts_section
        )
    store.modify(path, updated)
    notifier.notify_filed(f"Reference saved: {title}")
    return True
