"""Capture orchestration: trigger check, fast deterministic capture, async enrichment.

The fast path routes with rules only, writes once, and confirms to the user
without any network call. Enrichment runs afterwards as a detached task
whose failures are logged and never reach the user. A thought carrying a URL
is written with a "Summarizing..." placeholder that a second detached task
replaces with the link summary.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Coroutine, Protocol
from urllib.parse import unquote

from capture_router.classifier import AICaller
from capture_router.dates import format_time
from capture_router.entities import EntityLookup
from capture_router.formatter import (
    SUMMARY_FAILED,
    apply_decision,
    format_as_thought,
    format_summary_as_indented_bullet,
    get_link_summary_url,
    parse_summary_with_tags,
    replace_summary_placeholder,
)
from capture_router.handlers import (
    ReferenceSaver,
    handle_followup_trigger,
    handle_reference_trigger,
    handle_research_trigger,
)
from capture_router.models import CalendarEvent, CaptureItem, InboxSettings, MeetingRef
from capture_router.notifier import Notifier
from capture_router.router import format_destination_label, route_deterministic
from capture_router.store import DailyNoteNotReadyError, DocumentStore, require_daily_note_path
from capture_router.triggers import detect_command

logger = logging.getLogger(__name__)

CONTENT_TYPES = ("task", "thought", "link", "transcript", "screenshot")
SOURCES = ("share", "shortcut", "manual")
MAX_TRACES = 100


class CaptureState(str, Enum):
    RECEIVED = "received"
    TRIGGER_CHECKED = "trigger-checked"
    TRIGGER_HANDLED = "trigger-handled"
    FAST_ROUTED = "fast-routed"
    CONFIRMED = "confirmed"
    ENRICHMENT_PENDING = "enrichment-pending"
    ENRICHMENT_DONE = "enrichment-done"
    ENRICHMENT_FAILED = "enrichment-failed"
    FAILED = "failed"


@dataclass
class CaptureTrace:
    """State transitions of one capture, for logging and inspection."""

    content: str
    states: list[CaptureState] = field(default_factory=list)
    trigger: str | None = None
    destination: str | None = None
    meeting: MeetingRef | None = None
    summary_url: str | None = None

    def advance(self, state: CaptureState) -> None:
        self.states.append(state)
        logger.debug(f"Capture {self.content[:30]!r}: {state.value}")

    @property
    def state(self) -> CaptureState | None:
        return self.states[-1] if self.states else None


class CalendarLookup(Protocol):
    def get_today_events(self) -> list[CalendarEvent]:
        ...


class LinkSummarizer(Protocol):
    def summarize_url(self, url: str) -> str:
        """Summary text for url, optionally ending in a "TAGS: a, b" line."""
        ...


def parse_content_type(value: str | None) -> str:
    if not value:
        return "unknown"
    lower = value.lower()
    return lower if lower in CONTENT_TYPES else "unknown"


def parse_source(value: str | None) -> str:
    if not value:
        return "uri"
    lower = value.lower()
    return lower if lower in SOURCES else "uri"


def _parse_event_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class CaptureOrchestrator:
    """Entry point for inbox captures.

    Collaborators are injected: the document store, a notifier, and optional
    entity lookup, AI caller, calendar lookup, reference saver, and link
    summarizer. Settings are snapshotted per capture so a concurrent
    update_settings() never changes a decision mid-capture.
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: InboxSettings,
        notifier: Notifier,
        entity_lookup: EntityLookup | None = None,
        ai_caller: AICaller | None = None,
        calendar: CalendarLookup | None = None,
        reference_saver: ReferenceSaver | None = None,
        summarizer: LinkSummarizer | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self._settings = settings.model_copy(deep=True)
        self.notifier = notifier
        self.entity_lookup = entity_lookup
        self.ai_caller = ai_caller
        self.calendar = calendar
        self.reference_saver = reference_saver
        self.summarizer = summarizer
        self.clock = clock
        self.pending_tasks: set[asyncio.Task] = set()
        self.traces: deque[CaptureTrace] = deque(maxlen=MAX_TRACES)

    @property
    def settings(self) -> InboxSettings:
        return self._settings.model_copy(deep=True)

    def update_settings(self, settings: InboxSettings) -> None:
        self._settings = settings.model_copy(deep=True)

    # --- Main entry point ---

    async def process_capture(self, params: dict[str, Any]) -> None:
        """
        Process one raw capture.

        Args:
            params: Raw capture parameters with "content" and optional
                "type", "source", and "meeting" (a MeetingRef or dict)
        """
        settings = self.settings
        now = self.clock()

        if not settings.enabled:
            self.notifier.notify_error("Inbox is disabled")
            return

        raw = params.get("content") or ""
        content = unquote(raw).strip()
        if not content:
            self.notifier.notify_error("No content to capture")
            return

        logger.info(f"Processing capture: {content[:50]!r}")

        meeting = params.get("meeting")
        if isinstance(meeting, dict):
            meeting = MeetingRef(**meeting)

        item = CaptureItem(
            content=content,
            content_type=parse_content_type(params.get("type")),
            source=parse_source(params.get("source")),
            timestamp=format_time(now, "YYYY-MM-DD HH:mm"),
            meeting_context=meeting,
        )
        trace = CaptureTrace(content=content)
        self.traces.append(trace)
        trace.advance(CaptureState.RECEIVED)

        command = detect_command(item.content, settings)
        trace.advance(CaptureState.TRIGGER_CHECKED)
        if command:
            kind, url = command
            trace.trigger = kind
            await self._dispatch_trigger(kind, url, item, settings, now, trace)
            return

        path = self._fast_capture(item, settings, now, trace)
        if not path:
            return

        trace.advance(CaptureState.ENRICHMENT_PENDING)
        self._spawn(self._enrich(item, trace), name="enrichment")
        if trace.summary_url:
            self._spawn(
                self._summarize_link(path, item, settings, now, trace.summary_url),
                name="link-summary",
            )

    # --- Trigger dispatch ---

    async def _dispatch_trigger(
        self,
        kind: str,
        url: str | None,
        item: CaptureItem,
        settings: InboxSettings,
        now: datetime,
        trace: CaptureTrace,
    ) -> None:
        """Run follow-ups inline; research and reference run detached.

        A handler that raises or reports failure marks the trace FAILED.
        """
        if kind == "followup":
            try:
                handled = await handle_followup_trigger(
                    self.store, settings, item, self.notifier, self.entity_lookup, now
                )
            except Exception as e:
                logger.error(f"Follow-up trigger failed: {e}", exc_info=True)
                self.notifier.notify_error("Follow-up failed")
                handled = False
            trace.advance(CaptureState.TRIGGER_HANDLED if handled else CaptureState.FAILED)
            return

        if kind == "research":
            coro = handle_research_trigger(
                self.store, settings, item, self.notifier, self.ai_caller, now
            )
            notice = "Research failed - check logs for details"
        else:
            coro = handle_reference_trigger(
                self.store, settings, item, url, self.notifier, self.reference_saver, now
            )
            notice = "Reference save failed - check logs for details"

        trace.advance(CaptureState.TRIGGER_HANDLED)
        self._spawn(self._guarded(coro, notice, trace), name=kind)

    async def _guarded(self, coro: Coroutine, notice: str, trace: CaptureTrace) -> None:
        try:
            handled = await coro
        except Exception as e:
            logger.error(f"{notice}: {e}", exc_info=True)
            self.notifier.notify_error(notice)
            handled = False
        if not handled:
            trace.advance(CaptureState.FAILED)

    # --- Fast path ---

    def _fast_capture(
        self, item: CaptureItem, settings: InboxSettings, now: datetime, trace: CaptureTrace
    ) -> str | None:
        """Route with rules only, write once, confirm. Returns the note path, or None on failure."""
        try:
            decision = route_deterministic(item, settings)
            item.destination = decision.destination
            trace.destination = decision.destination
            trace.advance(CaptureState.FAST_ROUTED)

            if self.summarizer is not None:
                trace.summary_url = get_link_summary_url(item, decision, settings)

            path = require_daily_note_path(self.store, now.date())
            document = self.store.read(path)
            updated = apply_decision(
                document, item, decision, settings, now, summary_placeholder=bool(trace.summary_url)
            )
            self.store.modify(path, updated)
        except DailyNoteNotReadyError as e:
            logger.error(f"Failed to capture item: {e}")
            trace.advance(CaptureState.FAILED)
            self.notifier.notify_error(str(e))
            return None
        except Exception as e:
            logger.error(f"Failed to capture item: {e}", exc_info=True)
            trace.advance(CaptureState.FAILED)
            self.notifier.notify_error("Failed to capture inbox item")
            return None

        self.notifier.notify_filed(f"Captured to {format_destination_label(decision.destination)} ✓")
        trace.advance(CaptureState.CONFIRMED)
        logger.info(f"Fast capture complete: {decision.destination}")
        return path

    # --- Enrichment ---

    async def _enrich(self, item: CaptureItem, trace: CaptureTrace) -> None:
        """Best-effort meeting detection. Never notifies the user."""
        try:
            meeting = await self._find_current_meeting(self.clock())
        except Exception as e:
            logger.warning(f"Enrichment failed (capture still succeeded): {e}")
            trace.advance(CaptureState.ENRICHMENT_FAILED)
            return

        if meeting:
            trace.meeting = meeting
            logger.info(f"Enrichment: detected meeting context {meeting.summary!r}")
        trace.advance(CaptureState.ENRICHMENT_DONE)

    async def _summarize_link(
        self,
        path: str,
        item: CaptureItem,
        settings: InboxSettings,
        now: datetime,
        url: str,
    ) -> None:
        """Replace the capture's "Summarizing..." placeholder with the link summary.

        Tags are kept only while the reference system is enabled. Any failure
        leaves a "Summary failed" line in place of the placeholder.
        """
        original_line = format_as_thought(item, settings, now)
        try:
            result = await asyncio.to_thread(self.summarizer.summarize_url, url)
            summary, tags = parse_summary_with_tags(result)
            if not settings.reference.enabled:
                tags = []
            replacement = format_summary_as_indented_bullet(summary, tags)
            notice = None
        except Exception as e:
            logger.error(f"Link summary failed for {url}: {e}", exc_info=True)
            replacement = SUMMARY_FAILED
            notice = "Link summary failed"

        document = self.store.read(path)
        updated = replace_summary_placeholder(document, original_line, replacement)
        if updated is None:
            logger.info(f"Summary placeholder for {url} no longer in {path}")
            return
        self.store.modify(path, updated)

        if notice:
            self.notifier.notify_error(notice)
        else:
            self.notifier.notify_info("Link summary added")

    def _spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self.pending_tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self.pending_tasks.discard(task)
        if task.cancelled():
            logger.debug(f"Background task {task.get_name()} cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Background task {task.get_name()} failed: {exc}")

    async def drain(self) -> None:
        """Wait for all detached tasks (research, reference, enrichment) to finish."""
        while self.pending_tasks:
            await asyncio.gather(*list(self.pending_tasks), return_exceptions=True)

    # --- Calendar integration ---

    async def _find_current_meeting(self, now: datetime) -> MeetingRef | None:
        if self.calendar is None:
            return None

        settings = self._settings
        window = timedelta(minutes=settings.meeting_window_minutes)
        excluded = {title.lower() for title in settings.exclude_titles}
        events = await asyncio.to_thread(self.calendar.get_today_events)

        for event in events:
            start = _parse_event_time(event.start)
            end = _parse_event_time(event.end)
            if start is None or end is None:
                continue

            current = now
            if start.tzinfo is not None and current.tzinfo is None:
                current = current.astimezone()
            elif start.tzinfo is None and current.tzinfo is not None:
                current = current.replace(tzinfo=None)

            if start - window < current < end + window:
                if (event.summary or "").strip().lower() in excluded:
                    continue
                return event.to_meeting_ref()

        return None

    async def get_current_meeting(self, now: datetime | None = None) -> MeetingRef | None:
        """The meeting in progress (within the configured window), or None on any failure."""
        try:
            return await self._find_current_meeting(now or self.clock())
        except Exception as e:
            logger.debug(f"Failed to get current meeting: {e}")
            return None

    # --- Manual capture ---

    async def capture_from_clipboard(self, read_clipboard: Callable[[], str]) -> None:
        try:
            content = await asyncio.to_thread(read_clipboard)
        except Exception as e:
            logger.error(f"Clipboard read failed: {e}")
            self.notifier.notify_error("Failed to read clipboard")
            return

        if not content or not content.strip():
            self.notifier.notify_error("Clipboard is empty")
            return

        await self.process_capture({"content": content, "source": "manual"})
