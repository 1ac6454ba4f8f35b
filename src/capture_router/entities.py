"""Entity lookup and wikilink formatting for people and organizations."""

from __future__ import annotations

import logging
import re
from typing import Protocol

from capture_router.models import Entity, InboxSettings

logger = logging.getLogger(__name__)

_WIKILINK_RE = re.compile(r"\[\[[^\]]*\]\]")
_CONTENT_WORD_RE = re.compile(r"\b[a-z]{3,}\b")


class EntityLookup(Protocol):
    def find_entities_in_content(self, content: str) -> list[Entity]:
        ...


def extract_entities(content: str, lookup: EntityLookup | None) -> list[Entity]:
    """Find known people and organizations mentioned in content.

    Lookup failures are logged and treated as "no entities".
    """
    if lookup is None or not content:
        return []
    try:
        return list(lookup.find_entities_in_content(content))
    except Exception as e:
        logger.warning(f"Entity extraction failed: {e}")
        return []


def _link_outside_existing(text: str, pattern: re.Pattern, wikilink: str) -> str:
    """Substitute pattern everywhere except inside existing [[...]] links."""
    pieces = []
    last = 0
    for link in _WIKILINK_RE.finditer(text):
        pieces.append(pattern.sub(lambda _: wikilink, text[last:link.start()]))
        pieces.append(link.group(0))
        last = link.end()
    pieces.append(pattern.sub(lambda _: wikilink, text[last:]))
    return "".join(pieces)


def format_with_entity_links(
    content: str, entities: list[Entity], settings: InboxSettings
) -> str:
    """
    Replace entity names with [[folder/name|name]] wikilinks.

    Longer names are linked first so "Dana Scully" wins over "Dana". Matching
    is case-insensitive and whole-word; text already inside a wikilink is left
    untouched so later, shorter names never nest inside earlier links.

    Args:
        content: Capture text
        entities: Entities found by the lookup
        settings: Inbox settings (for people/organization folder names)

    Returns:
        Content with wikilinks inserted
    """
    formatted = content

    for entity in sorted(entities, key=lambda e: len(e.name), reverse=True):
        if not entity.name:
            continue
        folder = settings.people_folder if entity.type == "person" else settings.organizations_folder
        wikilink = f"[[{folder}/{entity.name}|{entity.name}]]"
        pattern = re.compile(rf"\b{re.escape(entity.name)}\b", re.IGNORECASE)
        formatted = _link_outside_existing(formatted, pattern, wikilink)

    return formatted


class FolderEntityIndex:
    """Word-keyed index of person and organization notes in a document store.

    Each note's name is indexed under every word of three or more letters and
    under the full lowercase name, so a lookup costs one dictionary probe per
    word of the input rather than one scan per note.
    """

    def __init__(self, store, settings: InboxSettings):
        self.store = store
        self.settings = settings
        self._word_to_entities: dict[str, list[Entity]] = {}
        self._indexed = False

    def build(self) -> None:
        """(Re)build the index from the people and organizations folders."""
        self._word_to_entities.clear()
        folders = [
            ("person", self.settings.people_folder),
            ("org", self.settings.organizations_folder),
        ]
        for entity_type, folder in folders:
            prefix = folder.rstrip("/") + "/"
            for path in self.store.list_files():
                if not path.startswith(prefix) or not path.endswith(".md"):
                    continue
                name = path[len(prefix):-len(".md")]
                if "/" in name or not name:
                    continue
                self._add(Entity(type=entity_type, name=name, path=path))
        self._indexed = True
        logger.debug(f"Entity index built with {len(self._word_to_entities)} keys")

    def _add(self, entity: Entity) -> None:
        lower = entity.name.lower()
        keys = set(_CONTENT_WORD_RE.findall(lower))
        if len(lower) >= 3:
            keys.add(lower)
        for key in keys:
            self._word_to_entities.setdefault(key, []).append(entity)

    def find_entities_in_content(self, content: str) -> list[Entity]:
        if not content:
            return []
        if not self._indexed:
            self.build()

        seen: set[str] = set()
        results: list[Entity] = []
        for word in _CONTENT_WORD_RE.findall(content.lower()):
            for entity in self._word_to_entities.get(word, []):
                if entity.path not in seen:
                    seen.add(entity.path)
                    results.append(entity)
        return results
