"""Trigger phrase detection and capture normalization.

A trigger phrase is a configured prefix ("follow up", "research", "Ref:")
that turns a capture into an explicit command instead of ordinary routing.
"""

import logging
import re
from typing import Literal

from capture_router.models import FormattingConfig, InboxSettings

logger = logging.getLogger(__name__)

TriggerKind = Literal["followup", "research"]

_BULLET_RE = re.compile(r"^[-*•]\s+")
_LEADING_TIME_RE = re.compile(r"^\d{1,2}:\d{2}(?::\d{2})?\s*(?:[-–—]\s*)?")
_EMPTY_CHECKBOX_RE = re.compile(r"^-\s*\[\s*\]\s*")
_WORD_CHAR_END_RE = re.compile(r"[A-Za-z0-9_]$")
_URL_AFTER_TRIGGER_RE = re.compile(r"^(https?://\S+)")


def _needs_boundary(phrase: str) -> bool:
    return bool(_WORD_CHAR_END_RE.search(phrase))


def get_leading_phrase_match(content: str, phrases: list[str]) -> str | None:
    """Return the text of the longest phrase found at the start of content.

    Matching is case-insensitive. Phrases ending in a word character must be
    followed by a word boundary; phrases ending in punctuation ("Ref:") need not.
    """
    trimmed = content.strip()
    if not trimmed:
        return None

    cleaned = [phrase.strip() for phrase in phrases or [] if phrase.strip()]
    if not cleaned:
        return None

    alternatives = []
    for phrase in sorted(cleaned, key=len, reverse=True):
        escaped = re.escape(phrase)
        alternatives.append(f"{escaped}\\b" if _needs_boundary(phrase) else escaped)

    match = re.match(f"^({'|'.join(alternatives)})", trimmed, re.IGNORECASE)
    return match.group(1) if match else None


def strip_leading_phrase(
    content: str, phrases: list[str], strip_trailing_colon: bool = False
) -> str:
    """Remove a leading phrase (and optionally a following colon) from content."""
    trimmed = content.strip()
    matched = get_leading_phrase_match(trimmed, phrases)
    if not matched:
        return trimmed

    boundary = "\\b" if _needs_boundary(matched) else ""
    suffix = "\\s*:?" if strip_trailing_colon else ""
    pattern = re.compile(f"^{re.escape(matched)}{boundary}{suffix}\\s*", re.IGNORECASE)
    return pattern.sub("", trimmed, count=1).strip()


def strip_task_prefix(content: str, formatting: FormattingConfig) -> str:
    """Remove a leading task checkbox, using the configured prefix when set."""
    trimmed = content.strip()
    task_prefix = formatting.task_prefix.strip()
    if task_prefix and trimmed.startswith(task_prefix):
        return trimmed[len(task_prefix):].strip()
    return _EMPTY_CHECKBOX_RE.sub("", trimmed, count=1).strip()


def normalize_trigger_content(content: str, settings: InboxSettings) -> str:
    """Strip checkbox, bullet glyph, and leading HH:MM timestamp before matching."""
    normalized = content.strip()
    if not normalized:
        return normalized

    normalized = strip_task_prefix(normalized, settings.formatting)
    normalized = _BULLET_RE.sub("", normalized, count=1)
    normalized = _LEADING_TIME_RE.sub("", normalized, count=1)

    return normalized.strip()


def strip_leading_trigger_phrase(
    content: str,
    phrases: list[str],
    settings: InboxSettings,
    strip_trailing_colon: bool = True,
) -> str:
    """Normalize content, then remove the matched trigger phrase."""
    normalized = normalize_trigger_content(content, settings)
    return strip_leading_phrase(normalized, phrases, strip_trailing_colon=strip_trailing_colon)


def detect_trigger_phrase(content: str, settings: InboxSettings) -> TriggerKind | None:
    """Detect a follow-up or research trigger at the start of content.

    Follow-up phrases are checked before research phrases.
    """
    normalized = normalize_trigger_content(content, settings)

    if get_leading_phrase_match(normalized, settings.triggers.followup_phrases):
        return "followup"

    if get_leading_phrase_match(normalized, settings.triggers.research_phrases):
        return "research"

    return None


def detect_reference_trigger(content: str, settings: InboxSettings) -> str | None:
    """Return the URL following a reference trigger ("Ref: https://..."), if any."""
    trimmed = content.strip()
    lower = trimmed.lower()

    for trigger in settings.reference.url_triggers:
        if not trigger or not lower.startswith(trigger.lower()):
            continue
        after = trimmed[len(trigger):].strip()
        match = _URL_AFTER_TRIGGER_RE.match(after)
        if match:
            return match.group(1)

    return None


def detect_command(content: str, settings: InboxSettings) -> tuple[str, str | None] | None:
    """Check all trigger kinds in priority order: reference > followup > research.

    Each kind is gated by its own enable flag.

    Returns:
        ("reference", url), ("followup", None), ("research", None), or None
    """
    if settings.reference.enabled:
        url = detect_reference_trigger(content, settings)
        if url:
            return "reference", url

    if settings.triggers.enabled:
        kind = detect_trigger_phrase(content, settings)
        if kind:
            return kind, None

    return None


def strip_due_date_markers(line: str, formatting: FormattingConfig) -> str:
    """Remove every "<emoji> YYYY-MM-DD" marker from a line."""
    emoji = formatting.due_date_emoji
    if not emoji:
        return line.strip()
    pattern = re.compile(f"\\s*{re.escape(emoji)}\\s*\\d{{4}}-\\d{{2}}-\\d{{2}}")
    return pattern.sub("", line).strip()
