"""Shared fixtures: a vault on disk, default settings, and a scripted AI caller."""

from datetime import date, datetime

import pytest

from capture_router.models import InboxSettings
from capture_router.notifier import RecordingNotifier
from capture_router.store import FileDocumentStore

TODAY = date(2026, 3, 4)  # a Wednesday
NOW = datetime(2026, 3, 4, 9, 30)

DAILY_NOTE = """# 2026-03-04

## Meetings
- [[Meetings/Weekly Sync~evt123|Weekly Sync]]
\t- agenda reviewed

## Thoughts
- 08:00 first thought

## Log
"""


class ScriptedAICaller:
    """AI caller returning a canned reply and recording every call."""

    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def call(self, system_prompt, user_prompt, model, options):
        self.calls.append((system_prompt, user_prompt, model, options))
        if self.error:
            raise self.error
        return self.reply


@pytest.fixture
def settings():
    return InboxSettings()


@pytest.fixture
def vault(tmp_path):
    daily = tmp_path / "Daily notes"
    daily.mkdir()
    (daily / "2026-03-04.md").write_text(DAILY_NOTE, encoding="utf-8")
    return tmp_path


@pytest.fixture
def store(vault):
    return FileDocumentStore(str(vault))


@pytest.fixture
def notifier():
    return RecordingNotifier()


def read_daily(vault) -> str:
    return (vault / "Daily notes" / "2026-03-04.md").read_text(encoding="utf-8")
