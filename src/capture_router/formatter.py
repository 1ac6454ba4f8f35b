"""Capture formatting and daily note text surgery.

Every function here is pure: it takes document text and returns new document
text. Reading and writing the document is the caller's job. Nothing is
deduplicated; inserting the same line twice appends it twice.
"""

import logging
import re
from datetime import date, datetime

from capture_router.dates import format_due_date, format_time
from capture_router.models import CaptureItem, InboxSettings, MeetingRef, RouteDecision
from capture_router.router import is_url
from capture_router.triggers import strip_due_date_markers, strip_task_prefix

logger = logging.getLogger(__name__)

_SUB_ITEM_RE = re.compile(r"^[\t ]+[-*\[]|^\t")
_INDENTED_RE = re.compile(r"^[\t ]")
MEETING_ID_SUFFIX_CHARS = 20


# --- Format functions ---


def indent_block(text: str) -> str:
    """Indent every line of text by one tab."""
    return "\n".join(f"\t{line}" for line in text.split("\n"))


def dedent_block(text: str) -> str:
    """Remove one leading tab from every line of text."""
    return "\n".join(line.removeprefix("\t") for line in text.split("\n"))


def _task_text(task_content: str, due_date: str | None, settings: InboxSettings) -> str:
    """Build a task; a multi-line task gets the due date on its first line only."""
    fmt = settings.formatting
    first, *rest = task_content.split("\n")
    head = f"{fmt.task_prefix} {first}"
    if due_date:
        head = f"{head} {fmt.due_date_emoji} {due_date}"
    if not rest:
        return head
    return head + "\n" + "\n".join(f"\t{line}" for line in rest)


def _due_date_for(decision: RouteDecision, settings: InboxSettings, today: date | None) -> str | None:
    if not decision.add_due_date:
        return None
    offset = decision.due_date_offset
    if offset is None:
        offset = settings.formatting.default_due_date_offset
    return format_due_date(offset, today)


def format_as_task(
    item: CaptureItem,
    decision: RouteDecision,
    settings: InboxSettings,
    today: date | None = None,
) -> str:
    """Format a capture as "<prefix> <content> <emoji> <date>"."""
    task_content = strip_task_prefix(item.content.strip(), settings.formatting)
    formatted = _task_text(task_content, _due_date_for(decision, settings, today), settings)
    logger.debug(f"Formatted as task: {formatted[:100]!r}")
    return formatted


def format_as_meeting_followup(
    item: CaptureItem,
    decision: RouteDecision,
    settings: InboxSettings,
    today: date | None = None,
) -> str:
    """A task indented one level, for insertion under a meeting line."""
    return indent_block(format_as_task(item, decision, settings, today))


def format_as_thought(item: CaptureItem, settings: InboxSettings, now: datetime | None = None) -> str:
    """Format a capture as "- <time> <content>", indenting continuation lines."""
    timestamp = format_time(now or datetime.now(), settings.formatting.time_format)
    formatted = item.content.strip()

    if not is_url(formatted) and "\n" in formatted:
        first, *rest = formatted.split("\n")
        formatted = first + "\n" + "\n".join(f"\t{line}" for line in rest)

    return f"- {timestamp} {formatted}"


def strip_due_dates_multiline(content: str, settings: InboxSettings) -> str:
    """Strip due date markers line by line, dropping lines left empty."""
    lines = [strip_due_date_markers(line, settings.formatting) for line in content.split("\n")]
    return "\n".join(line for line in lines if line).strip()


def format_followup_task(content: str, due_date: str | None, settings: InboxSettings) -> str:
    """Format follow-up trigger content as a task with exactly one due date."""
    task_content = strip_task_prefix(content, settings.formatting)
    task_content = strip_due_dates_multiline(task_content, settings)
    return _task_text(task_content, due_date, settings)


# --- Daily note section operations ---


def _find_meeting_line(lines: list[str], meeting: MeetingRef) -> int:
    meeting_id = meeting.id
    if meeting_id:
        for i, line in enumerate(lines):
            if f"~{meeting_id}" in line:
                return i
            # IDs may be truncated in file names
            if len(meeting_id) > MEETING_ID_SUFFIX_CHARS:
                if f"~{meeting_id[-MEETING_ID_SUFFIX_CHARS:]}" in line:
                    return i

    title = (meeting.summary or "").strip()
    if title:
        title_words = [word.lower() for word in title.split() if len(word) > 3]
        needed = min(2, len(title_words))
        for i, line in enumerate(lines):
            if "[[" not in line or "]]" not in line:
                continue
            lower = line.lower()
            if sum(1 for word in title_words if word in lower) >= needed:
                return i

    return -1


def insert_after_meeting_line(
    content: str,
    meeting: MeetingRef,
    text_to_insert: str,
    thoughts_section: str = "## Thoughts",
) -> str:
    """
    Insert text after the meeting's anchor line and its indented sub-items.

    The anchor is found by "~<event id>" (or the last 20 characters of a long
    id), then by a wikilink line sharing at least two significant title words.
    If no anchor exists the text is dedented and appended to the thoughts
    section instead.

    Args:
        content: Current document text
        meeting: The meeting the capture belongs to
        text_to_insert: Formatted line(s), usually tab-indented
        thoughts_section: Heading used for the fallback

    Returns:
        Updated document text
    """
    lines = content.split("\n")
    anchor = _find_meeting_line(lines, meeting)

    if anchor == -1:
        logger.info(
            f"Meeting line not found for {meeting.summary!r} (ID: {meeting.id}), "
            "falling back to thoughts section"
        )
        return append_to_thoughts_section(content, dedent_block(text_to_insert), thoughts_section)

    last_sub_item = anchor
    for i in range(anchor + 1, len(lines)):
        line = lines[i]
        if _SUB_ITEM_RE.match(line):
            last_sub_item = i
        elif line.strip() and not _INDENTED_RE.match(line):
            break

    lines.insert(last_sub_item + 1, text_to_insert)
    logger.debug(f"Inserted after meeting {meeting.summary!r} at line {last_sub_item + 1}")
    return "\n".join(lines)


def append_to_thoughts_section(content: str, text_to_insert: str, section_header: str) -> str:
    """
    Append text at the end of the named section.

    A missing section is created at the end of the document. The section ends
    at the next "#"/"##" heading or at the end of the document.
    """
    lines = content.split("\n")

    section_idx = next(
        (i for i, line in enumerate(lines) if line.strip() == section_header), -1
    )

    if section_idx == -1:
        lines.extend(["", section_header, text_to_insert])
        return "\n".join(lines)

    insert_idx = section_idx + 1
    for i in range(section_idx + 1, len(lines)):
        stripped = lines[i].strip()
        if stripped.startswith("##") or stripped.startswith("# "):
            insert_idx = i
            break
        insert_idx = i + 1

    lines.insert(insert_idx, text_to_insert)
    return "\n".join(lines)


def append_to_end(content: str, text_to_insert: str) -> str:
    separator = "" if content.endswith("\n") or not content else "\n"
    return f"{content}{separator}{text_to_insert}"


# --- Link summaries ---

SUMMARY_PLACEHOLDER = "\t- ⏳ Summarizing..."
SUMMARY_FAILED = "\t- ❌ Summary failed"

_MD_LINK_URL_RE = re.compile(r"\[[^\]]*\]\((https?://[^)]+)\)", re.IGNORECASE)
_BARE_URL_RE = re.compile(r"https?://[^\s<>\"\]]+", re.IGNORECASE)
_WWW_URL_RE = re.compile(r"\bwww\.[^\s<>\"\]]+", re.IGNORECASE)
_TAGS_LINE_RE = re.compile(r"^TAGS?:\s*(.+)$", re.IGNORECASE)
_LIST_MARKER_RE = re.compile(r"^[-*•]\s+")


def extract_first_url(content: str) -> str | None:
    """First URL in content: a Markdown link target, a bare URL, or a www. host."""
    trimmed = content.strip()
    if not trimmed:
        return None

    for pattern in (_MD_LINK_URL_RE, _BARE_URL_RE):
        match = pattern.search(trimmed)
        if match:
            return (match.group(1) if pattern.groups else match.group(0)).strip()

    match = _WWW_URL_RE.search(trimmed)
    if match:
        return f"https://{match.group(0)}"
    return None


def get_link_summary_url(item: CaptureItem, decision: RouteDecision, settings: InboxSettings) -> str | None:
    """URL to summarize for a thought capture, or None when no summary applies."""
    if not settings.content_summary.enabled:
        return None
    if decision.format != "thought" or decision.destination == "meeting_followup":
        return None
    return extract_first_url(item.content)


def parse_summary_with_tags(result: str) -> tuple[str, list[str]]:
    """Split a "summary...\\nTAGS: a, b" reply into the summary and its tags.

    "uncategorized" is dropped from a tag list; an empty list becomes
    ["uncategorized"].
    """
    tags: list[str] = []
    summary_lines = []
    for line in result.strip().split("\n"):
        match = _TAGS_LINE_RE.match(line)
        if match:
            tags = [
                tag.strip().lower().removeprefix("#")
                for tag in match.group(1).split(",")
            ]
            tags = [tag for tag in tags if tag and tag != "uncategorized"]
        else:
            summary_lines.append(line)
    return "\n".join(summary_lines).strip(), tags or ["uncategorized"]


def format_summary_as_indented_bullet(summary: str, tags: list[str] | None = None) -> str:
    cleaned = [
        _LIST_MARKER_RE.sub("", line.strip())
        for line in summary.split("\n")
        if line.strip()
    ]
    if not cleaned:
        return "\t- (No summary)"

    tag_text = "".join(f" #{tag}" for tag in tags or [])
    first, *rest = cleaned
    bullet = f"\t- {first}{tag_text}"
    if not rest:
        return bullet
    return bullet + "\n" + "\n".join(f"\t  {line}" for line in rest)


def replace_summary_placeholder(content: str, original_line: str, replacement: str) -> str | None:
    """Swap the last placeholder under original_line for replacement.

    Returns None when the placeholder is no longer in the document.
    """
    placeholder_block = f"{original_line}\n{SUMMARY_PLACEHOLDER}"
    idx = content.rfind(placeholder_block)
    if idx == -1:
        return None
    return (
        content[:idx]
        + f"{original_line}\n{replacement}"
        + content[idx + len(placeholder_block):]
    )


def apply_decision(
    content: str,
    item: CaptureItem,
    decision: RouteDecision,
    settings: InboxSettings,
    now: datetime | None = None,
    summary_placeholder: bool = False,
) -> str:
    """Format the capture for its decision and merge it into the document text.

    With summary_placeholder, a thought is followed by an indented
    "Summarizing..." line that a later link summary replaces.
    """
    now = now or datetime.now()
    today = now.date()

    if decision.destination == "meeting_followup" and item.meeting_context:
        formatted = format_as_meeting_followup(item, decision, settings, today)
        return insert_after_meeting_line(
            content, item.meeting_context, formatted, settings.thoughts_section
        )

    if decision.format == "task":
        formatted = format_as_task(item, decision, settings, today)
    else:
        formatted = format_as_thought(item, settings, now)
        if summary_placeholder:
            formatted = f"{formatted}\n{SUMMARY_PLACEHOLDER}"

    if decision.destination == "daily_end":
        return append_to_end(content, formatted)

    logger.debug(
        f"Destination: {decision.destination}, format: {decision.format}, "
        f"add_due_date: {decision.add_due_date}"
    )
    return append_to_thoughts_section(content, formatted, settings.thoughts_section)
