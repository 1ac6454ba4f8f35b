"""Document store boundary and daily note resolution."""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import date, timedelta
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

_DAILY_NOTE_NAME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DAILY_NOTE_FOLDERS = ["Daily notes", "daily notes", "Daily Notes", ""]


class DailyNoteNotReadyError(Exception):
    """No day document could be resolved for a capture."""


class DocumentStore(ABC):
    """Vault-relative text documents with full-overwrite writes."""

    @abstractmethod
    def read(self, path: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def create(self, path: str, content: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def modify(self, path: str, content: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def exists(self, path: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_files(self) -> list[str]:
        """All markdown document paths, relative to the store root."""
        raise NotImplementedError


class FileDocumentStore(DocumentStore):
    """Markdown files under a vault directory on disk."""

    def __init__(self, vault_dir: str):
        self.root = Path(vault_dir).expanduser()

    def _resolve(self, path: str) -> Path:
        resolved = (self.root / path).resolve()
        if self.root.resolve() not in resolved.parents and resolved != self.root.resolve():
            raise ValueError(f"Path escapes vault: {path}")
        return resolved

    def read(self, path: str) -> str:
        return self._resolve(path).read_text(encoding="utf-8")

    def create(self, path: str, content: str) -> None:
        target = self._resolve(path)
        if target.exists():
            raise FileExistsError(f"Document already exists: {path}")
        self._write(target, content)

    def modify(self, path: str, content: str) -> None:
        target = self._resolve(path)
        if not target.exists():
            raise FileNotFoundError(f"Document not found: {path}")
        self._write(target, content)

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def list_files(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(
            p.relative_to(self.root).as_posix() for p in self.root.rglob("*.md") if p.is_file()
        )

    def _write(self, target: Path, content: str) -> None:
        # Atomic write: write to temp, then rename
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_text(content, encoding="utf-8")
        tmp.replace(target)


def find_daily_note_by_date(store: DocumentStore, day: str) -> str | None:
    """Find the daily note for a YYYY-MM-DD date in the usual folders, then anywhere."""
    for folder in DAILY_NOTE_FOLDERS:
        path = f"{folder}/{day}.md" if folder else f"{day}.md"
        if store.exists(path):
            return path

    for path in store.list_files():
        if PurePosixPath(path).stem == day:
            return path

    return None


def find_latest_daily_note(store: DocumentStore) -> str | None:
    """Most recent document whose file name is a YYYY-MM-DD date."""
    daily_notes = [
        path for path in store.list_files() if _DAILY_NOTE_NAME_RE.match(PurePosixPath(path).stem)
    ]
    if not daily_notes:
        return None
    return max(daily_notes, key=lambda path: PurePosixPath(path).stem)


def get_daily_note_path(store: DocumentStore, today: date | None = None) -> str | None:
    """Resolve today's daily note, falling back to yesterday's, then the latest one."""
    today = today or date.today()

    path = find_daily_note_by_date(store, today.isoformat())
    if path:
        return path

    yesterday = (today - timedelta(days=1)).isoformat()
    path = find_daily_note_by_date(store, yesterday)
    if path:
        logger.info(f"Today's daily note not found, falling back to yesterday: {path}")
        return path

    path = find_latest_daily_note(store)
    if path:
        logger.info(f"No recent daily notes found, falling back to latest: {path}")
        return path

    return None


def require_daily_note_path(store: DocumentStore, today: date | None = None) -> str:
    """Like get_daily_note_path, but raises DailyNoteNotReadyError when none exists."""
    path = get_daily_note_path(store, today)
    if not path:
        raise DailyNoteNotReadyError(
            "Could not find any daily note (tried today, yesterday, and latest)"
        )
    return path
