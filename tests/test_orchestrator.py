"""End-to-end tests for the capture orchestrator."""

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from capture_router.formatter import SUMMARY_FAILED, SUMMARY_PLACEHOLDER
from capture_router.models import CalendarEvent, InboxSettings
from capture_router.orchestrator import (
    CaptureOrchestrator,
    CaptureState,
    parse_content_type,
    parse_source,
)
from capture_router.store import FileDocumentStore

from conftest import DAILY_NOTE, NOW, ScriptedAICaller, read_daily


def _event(summary, start_offset, end_offset, event_id="evt123"):
    return CalendarEvent(
        id=event_id,
        summary=summary,
        start=(NOW + timedelta(minutes=start_offset)).isoformat(),
        end=(NOW + timedelta(minutes=end_offset)).isoformat(),
    )


def _calendar(events=None, error=None):
    calendar = MagicMock()
    if error:
        calendar.get_today_events.side_effect = error
    else:
        calendar.get_today_events.return_value = events or []
    return calendar


def _orchestrator(store, notifier, settings=None, **kwargs):
    return CaptureOrchestrator(
        store=store,
        settings=settings or InboxSettings(),
        notifier=notifier,
        clock=lambda: NOW,
        **kwargs,
    )


def _capture(orchestrator, *params_list):
    async def scenario():
        await asyncio.gather(*(orchestrator.process_capture(params) for params in params_list))
        await orchestrator.drain()

    asyncio.run(scenario())


class TestParsing:
    """Test raw parameter parsing."""

    def test_parse_content_type(self):
        assert parse_content_type("TASK") == "task"
        assert parse_content_type("screenshot") == "screenshot"
        assert parse_content_type("bogus") == "unknown"
        assert parse_content_type(None) == "unknown"

    def test_parse_source(self):
        assert parse_source("Share") == "share"
        assert parse_source("email") == "uri"
        assert parse_source(None) == "uri"


class TestFastCapture:
    """Test deterministic capture into the daily note."""

    def test_checkbox_task_gets_due_date(self, store, vault, notifier):
        orchestrator = _orchestrator(store, notifier)
        _capture(orchestrator, {"content": "- [ ] call the vendor"})

        assert "- [ ] call the vendor 📅 2026-03-05\n## Log" in read_daily(vault)
        assert notifier.messages() == ["Captured to daily thoughts ✓"]
        assert orchestrator.traces[-1].states == [
            CaptureState.RECEIVED,
            CaptureState.TRIGGER_CHECKED,
            CaptureState.FAST_ROUTED,
            CaptureState.CONFIRMED,
            CaptureState.ENRICHMENT_PENDING,
            CaptureState.ENRICHMENT_DONE,
        ]

    def test_url_becomes_thought(self, store, vault, notifier):
        _capture(_orchestrator(store, notifier), {"content": "https://example.com/a"})
        assert "- 09:30 https://example.com/a\n## Log" in read_daily(vault)

    def test_url_encoded_content_decoded(self, store, vault, notifier):
        _capture(_orchestrator(store, notifier), {"content": "Idea%3A%20tide%20clocks."})
        assert "Idea: tide clocks." in read_daily(vault)

    def test_meeting_context_from_params(self, store, vault, notifier):
        params = {
            "content": "- [ ] send notes",
            "meeting": {"id": "evt123", "summary": "Weekly Sync"},
        }
        _capture(_orchestrator(store, notifier), params)

        assert "\t- agenda reviewed\n\t- [ ] send notes 📅 2026-03-05" in read_daily(vault)
        assert notifier.messages() == ["Captured to meeting follow-ups ✓"]

    def test_explicit_type(self, store, vault, notifier):
        _capture(_orchestrator(store, notifier), {"content": "quarterly numbers", "type": "transcript"})
        assert "- 09:30 quarterly numbers" in read_daily(vault)

    def test_empty_content_not_written(self, store, vault, notifier):
        orchestrator = _orchestrator(store, notifier)
        _capture(orchestrator, {"content": "   "}, {})

        assert read_daily(vault) == DAILY_NOTE
        assert notifier.messages("error") == ["No content to capture", "No content to capture"]
        assert len(orchestrator.traces) == 0

    def test_disabled(self, store, vault, notifier):
        settings = InboxSettings(enabled=False)
        _capture(_orchestrator(store, notifier, settings), {"content": "x"})
        assert read_daily(vault) == DAILY_NOTE
        assert notifier.messages("error") == ["Inbox is disabled"]

    def test_missing_daily_note(self, tmp_path, notifier):
        calendar = _calendar([])
        orchestrator = _orchestrator(FileDocumentStore(str(tmp_path)), notifier, calendar=calendar)
        _capture(orchestrator, {"content": "call the vendor"})

        assert notifier.messages("error") == [
            "Could not find any daily note (tried today, yesterday, and latest)"
        ]
        assert orchestrator.traces[-1].state == CaptureState.FAILED
        calendar.get_today_events.assert_not_called()

    def test_write_failure_notifies(self, notifier):
        store = MagicMock()
        store.exists.return_value = True
        store.read.return_value = DAILY_NOTE
        store.modify.side_effect = PermissionError("read-only")
        orchestrator = _orchestrator(store, notifier)
        _capture(orchestrator, {"content": "call the vendor"})

        assert notifier.messages("error") == ["Failed to capture inbox item"]
        assert orchestrator.traces[-1].state == CaptureState.FAILED

    def test_concurrent_captures_both_land(self, store, vault, notifier):
        _capture(
            _orchestrator(store, notifier),
            {"content": "- [ ] first task"},
            {"content": "- [ ] second task"},
        )
        daily = read_daily(vault)
        assert "- [ ] first task 📅 2026-03-05" in daily
        assert "- [ ] second task 📅 2026-03-05" in daily

    def test_concurrent_captures_create_section_once(self, store, vault, notifier):
        (vault / "Daily notes" / "2026-03-04.md").write_text("# 2026-03-04\n", encoding="utf-8")
        tasks = [f"- [ ] task {n}" for n in range(5)]
        _capture(_orchestrator(store, notifier), *({"content": task} for task in tasks))

        daily = read_daily(vault)
        assert daily.count("## Thoughts") == 1
        for task in tasks:
            assert f"{task} 📅 2026-03-05" in daily
        assert notifier.messages() == ["Captured to daily thoughts ✓"] * 5

    def test_same_capture_twice_written_twice(self, store, vault, notifier):
        orchestrator = _orchestrator(store, notifier)
        _capture(orchestrator, {"content": "https://example.com/a"})
        _capture(orchestrator, {"content": "https://example.com/a"})
        assert read_daily(vault).count("- 09:30 https://example.com/a") == 2


class TestSettingsSnapshot:
    """Test that settings are held by value."""

    def test_caller_mutation_not_seen(self, store, vault, notifier):
        settings = InboxSettings()
        orchestrator = _orchestrator(store, notifier, settings)
        settings.thoughts_section = "## Elsewhere"

        _capture(orchestrator, {"content": "https://example.com/a"})
        assert "## Elsewhere" not in read_daily(vault)

    def test_update_settings(self, store, vault, notifier):
        orchestrator = _orchestrator(store, notifier)
        orchestrator.update_settings(InboxSettings(thoughts_section="## Inbox"))

        _capture(orchestrator, {"content": "https://example.com/a"})
        assert read_daily(vault).endswith("## Inbox\n- 09:30 https://example.com/a")

    def test_settings_property_is_a_copy(self, store, notifier):
        orchestrator = _orchestrator(store, notifier)
        orchestrator.settings.thoughts_section = "## Changed"
        assert orchestrator.settings.thoughts_section == "## Thoughts"


class TestTriggers:
    """Test trigger dispatch, which bypasses routing."""

    def test_research_skips_router(self, store, vault, notifier):
        orchestrator = _orchestrator(store, notifier, ai_caller=ScriptedAICaller("Otters are mustelids."))
        _capture(orchestrator, {"content": "research sea otters"})

        daily = read_daily(vault)
        assert "- 09:30 **Research: sea otters**\n\tOtters are mustelids." in daily
        assert not any(m.startswith("Captured to") for m in notifier.messages())
        assert orchestrator.traces[-1].states == [
            CaptureState.RECEIVED,
            CaptureState.TRIGGER_CHECKED,
            CaptureState.TRIGGER_HANDLED,
        ]
        assert orchestrator.traces[-1].trigger == "research"

    def test_research_failure_notifies(self, store, vault, notifier):
        orchestrator = _orchestrator(store, notifier, ai_caller=ScriptedAICaller(error=RuntimeError("quota")))
        _capture(orchestrator, {"content": "research sea otters"})

        assert notifier.messages("error") == ["Research failed - check logs for details"]
        assert read_daily(vault) == DAILY_NOTE

    def test_followup(self, store, vault, notifier):
        _capture(_orchestrator(store, notifier), {"content": "follow up: call Dana tomorrow"})
        assert "- [ ] call Dana tomorrow 📅 2026-03-05" in read_daily(vault)
        assert notifier.messages() == ["Follow-up task added to daily thoughts"]

    def test_followup_failure_notifies(self, store, notifier):
        with patch(
            "capture_router.orchestrator.handle_followup_trigger",
            side_effect=RuntimeError("boom"),
        ):
            _capture(_orchestrator(store, notifier), {"content": "follow up: call Dana"})
        assert notifier.messages("error") == ["Follow-up failed"]

    def test_reference(self, store, vault, notifier):
        saver = MagicMock()
        saver.process_url.return_value = "References/2026/03/great-post.md"
        orchestrator = _orchestrator(store, notifier, reference_saver=saver)
        _capture(orchestrator, {"content": "Ref: https://example.com/great-post"})

        saver.process_url.assert_called_once_with("https://example.com/great-post")
        assert "[[References/2026/03/great-post|Great Post]] #uncategorized" in read_daily(vault)
        assert orchestrator.traces[-1].trigger == "reference"

    def test_research_failure_marks_trace_failed(self, store, notifier):
        orchestrator = _orchestrator(store, notifier, ai_caller=ScriptedAICaller(error=RuntimeError("quota")))
        _capture(orchestrator, {"content": "research sea otters"})
        assert orchestrator.traces[-1].state == CaptureState.FAILED

    def test_research_without_result_marks_trace_failed(self, store, notifier):
        orchestrator = _orchestrator(store, notifier, ai_caller=ScriptedAICaller(None))
        _capture(orchestrator, {"content": "research sea otters"})
        assert notifier.messages("error") == ["Research failed - no response from AI"]
        assert orchestrator.traces[-1].state == CaptureState.FAILED

    def test_followup_failure_marks_trace_failed(self, store, notifier):
        with patch(
            "capture_router.orchestrator.handle_followup_trigger",
            side_effect=RuntimeError("boom"),
        ):
            orchestrator = _orchestrator(store, notifier)
            _capture(orchestrator, {"content": "follow up: call Dana"})
        states = orchestrator.traces[-1].states
        assert states[-1] == CaptureState.FAILED
        assert CaptureState.TRIGGER_HANDLED not in states

    def test_reference_save_failure_marks_trace_failed(self, store, vault, notifier):
        saver = MagicMock()
        saver.process_url.return_value = None
        orchestrator = _orchestrator(store, notifier, reference_saver=saver)
        _capture(orchestrator, {"content": "Ref: https://example.com/great-post"})

        assert read_daily(vault) == DAILY_NOTE
        assert orchestrator.traces[-1].state == CaptureState.FAILED

    def test_reference_exception_notifies_and_marks_failed(self, store, notifier):
        saver = MagicMock()
        saver.process_url.side_effect = OSError("disk full")
        orchestrator = _orchestrator(store, notifier, reference_saver=saver)
        _capture(orchestrator, {"content": "Ref: https://example.com/great-post"})

        assert notifier.messages("error") == ["Reference save failed - check logs for details"]
        assert orchestrator.traces[-1].state == CaptureState.FAILED


class TestEnrichment:
    """Test the detached meeting-detection step."""

    def test_enrichment_failure_keeps_capture(self, store, vault, notifier, caplog):
        orchestrator = _orchestrator(store, notifier, calendar=_calendar(error=ConnectionError("calendar down")))
        _capture(orchestrator, {"content": "- [ ] call the vendor"})

        assert "- [ ] call the vendor 📅 2026-03-05" in read_daily(vault)
        assert notifier.messages() == ["Captured to daily thoughts ✓"]
        states = orchestrator.traces[-1].states
        assert CaptureState.CONFIRMED in states
        assert states[-1] == CaptureState.ENRICHMENT_FAILED
        assert "Enrichment failed" in caplog.text
        assert orchestrator.pending_tasks == set()

    def test_enrichment_records_meeting(self, store, notifier):
        calendar = _calendar([_event("Weekly Sync", -10, 20)])
        orchestrator = _orchestrator(store, notifier, calendar=calendar)
        _capture(orchestrator, {"content": "https://example.com/a"})

        trace = orchestrator.traces[-1]
        assert trace.state == CaptureState.ENRICHMENT_DONE
        assert trace.meeting.summary == "Weekly Sync"


class TestLinkSummary:
    """Test the placeholder and its detached replacement."""

    URL_LINE = "- 09:30 https://example.com/a"

    def _summarizer(self, reply=None, error=None):
        summarizer = MagicMock()
        if error:
            summarizer.summarize_url.side_effect = error
        else:
            summarizer.summarize_url.return_value = reply
        return summarizer

    def test_summary_replaces_placeholder(self, store, vault, notifier):
        summarizer = self._summarizer("Otters use tools.\nThey float.\nTAGS: nature")
        _capture(_orchestrator(store, notifier, summarizer=summarizer), {"content": "https://example.com/a"})

        daily = read_daily(vault)
        assert f"{self.URL_LINE}\n\t- Otters use tools. #nature\n\t  They float.\n## Log" in daily
        assert SUMMARY_PLACEHOLDER not in daily
        summarizer.summarize_url.assert_called_once_with("https://example.com/a")
        assert notifier.messages() == ["Captured to daily thoughts ✓", "Link summary added"]

    def test_tags_dropped_when_references_disabled(self, store, vault, notifier):
        settings = InboxSettings()
        settings.reference.enabled = False
        summarizer = self._summarizer("Otters use tools.\nTAGS: nature")
        _capture(_orchestrator(store, notifier, settings, summarizer=summarizer), {"content": "https://example.com/a"})
        assert f"{self.URL_LINE}\n\t- Otters use tools.\n## Log" in read_daily(vault)

    def test_failure_leaves_marker(self, store, vault, notifier):
        summarizer = self._summarizer(error=ConnectionError("offline"))
        orchestrator = _orchestrator(store, notifier, summarizer=summarizer)
        _capture(orchestrator, {"content": "https://example.com/a"})

        assert f"{self.URL_LINE}\n{SUMMARY_FAILED}\n## Log" in read_daily(vault)
        assert notifier.messages("error") == ["Link summary failed"]
        assert CaptureState.CONFIRMED in orchestrator.traces[-1].states
        assert orchestrator.traces[-1].state != CaptureState.FAILED

    def test_placeholder_removed_meanwhile(self, store, vault, notifier):
        def summarize(url):
            store.modify("Daily notes/2026-03-04.md", DAILY_NOTE)
            return "Otters use tools."

        summarizer = MagicMock()
        summarizer.summarize_url.side_effect = summarize
        _capture(_orchestrator(store, notifier, summarizer=summarizer), {"content": "https://example.com/a"})

        assert read_daily(vault) == DAILY_NOTE
        assert notifier.messages() == ["Captured to daily thoughts ✓"]

    def test_tasks_are_not_summarized(self, store, vault, notifier):
        summarizer = self._summarizer("unused")
        _capture(_orchestrator(store, notifier, summarizer=summarizer), {"content": "- [ ] read https://example.com/a"})

        assert SUMMARY_PLACEHOLDER not in read_daily(vault)
        summarizer.summarize_url.assert_not_called()

    def test_disabled_in_settings(self, store, vault, notifier):
        settings = InboxSettings()
        settings.content_summary.enabled = False
        summarizer = self._summarizer("unused")
        _capture(_orchestrator(store, notifier, settings, summarizer=summarizer), {"content": "https://example.com/a"})

        assert f"{self.URL_LINE}\n## Log" in read_daily(vault)
        summarizer.summarize_url.assert_not_called()


class TestGetCurrentMeeting:
    """Test calendar window matching."""

    def _meeting(self, orchestrator):
        return asyncio.run(orchestrator.get_current_meeting(NOW))

    def test_no_calendar(self, store, notifier):
        assert self._meeting(_orchestrator(store, notifier)) is None

    def test_inside_window_before_start(self, store, notifier):
        calendar = _calendar([_event("Design Review", 10, 40)])
        meeting = self._meeting(_orchestrator(store, notifier, calendar=calendar))
        assert (meeting.id, meeting.summary) == ("evt123", "Design Review")

    def test_outside_window(self, store, notifier):
        calendar = _calendar([_event("Later", 20, 60), _event("Earlier", -90, -20)])
        assert self._meeting(_orchestrator(store, notifier, calendar=calendar)) is None

    def test_excluded_titles(self, store, notifier):
        settings = InboxSettings(exclude_titles=["focus time"])
        calendar = _calendar([_event("Focus Time", -5, 55, "a"), _event("Standup", -5, 10, "b")])
        meeting = self._meeting(_orchestrator(store, notifier, settings, calendar=calendar))
        assert meeting.id == "b"

    def test_events_without_times_skipped(self, store, notifier):
        calendar = _calendar([CalendarEvent(id="x", summary="All day")])
        assert self._meeting(_orchestrator(store, notifier, calendar=calendar)) is None

    def test_calendar_error_returns_none(self, store, notifier):
        calendar = _calendar(error=RuntimeError("auth expired"))
        assert self._meeting(_orchestrator(store, notifier, calendar=calendar)) is None


class TestClipboardCapture:
    """Test manual capture from the clipboard."""

    def test_clipboard_content_captured(self, store, vault, notifier):
        orchestrator = _orchestrator(store, notifier)
        asyncio.run(orchestrator.capture_from_clipboard(lambda: "https://example.com/clip\n"))
        assert "- 09:30 https://example.com/clip" in read_daily(vault)

    def test_clipboard_read_failure(self, store, notifier):
        def broken():
            raise OSError("no display")

        asyncio.run(_orchestrator(store, notifier).capture_from_clipboard(broken))
        assert notifier.messages("error") == ["Failed to read clipboard"]

    @pytest.mark.parametrize("text", ["", "  \n"])
    def test_clipboard_empty(self, store, notifier, text):
        asyncio.run(_orchestrator(store, notifier).capture_from_clipboard(lambda: text))
        assert notifier.messages("error") == ["Clipboard is empty"]
