"""
VaultResolver - resolves selection criteria against a Markdown vault on disk.

Paths are vault-relative POSIX strings ("folder/note.md"). Hidden files and
directories (leading ".") are never considered, which also keeps the data
directory out of the corpus.
"""

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from atomic_review.domain.constants import NOTE_SUFFIX
from atomic_review.domain.models import NoteInfo, PropertyMatch, SelectionCriteria, Settings
from atomic_review.domain.ports import ContentResolver
from atomic_review.infrastructure.utils.text import (
    extract_tags,
    normalize_tag,
    parse_frontmatter,
    tag_matches,
)

logger = logging.getLogger(__name__)


@dataclass
class NoteMeta:
    path: str
    frontmatter: dict[str, Any]
    tags: list[str]


def _normalize_folder(folder: str) -> str:
    folder = folder.strip().strip("/")
    return "" if folder in ("", ".") else folder


def in_folder(path: str, folder: str) -> bool:
    """True if `path` lives in `folder` or any of its subfolders. "" is the vault root."""
    folder = _normalize_folder(folder)
    if folder == "":
        return True
    parent = path.rsplit("/", 1)[0] if "/" in path else ""
    return parent == folder or parent.startswith(folder + "/")


def property_matches(frontmatter: dict[str, Any], rule: PropertyMatch) -> bool:
    value = frontmatter.get(rule.key)
    if rule.operator == "exists":
        return value is not None
    if value is None:
        return False

    wanted = rule.value.lower()
    if rule.operator == "equals":
        if isinstance(value, str):
            return value.lower() == wanted
        if isinstance(value, bool):
            return str(value).lower() == wanted
        return str(value) == rule.value
    # contains
    if isinstance(value, str):
        return wanted in value.lower()
    if isinstance(value, list):
        return any(wanted in str(v).lower() for v in value)
    return False


class VaultResolver(ContentResolver):
    def __init__(self, root: Path, settings: Callable[[], Settings] | None = None):
        self.root = Path(root)
        self._settings = settings or Settings

    # ---------- Corpus ----------

    def iter_note_paths(self) -> Iterator[str]:
        if not self.root.is_dir():
            logger.warning(f"Vault root does not exist: {self.root}")
            return
        for p in sorted(self.root.rglob(f"*{NOTE_SUFFIX}")):
            rel = p.relative_to(self.root)
            if any(part.startswith(".") for part in rel.parts):
                continue
            if p.is_file():
                yield rel.as_posix()

    def exists(self, path: str) -> bool:
        return (self.root / path).is_file()

    def read_note(self, path: str) -> str:
        return (self.root / path).read_text(encoding="utf-8")

    def load_meta(self, path: str) -> NoteMeta:
        try:
            text = self.read_note(path)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read {path}: {e}")
            return NoteMeta(path, {}, [])
        meta, body = parse_frontmatter(text)
        return NoteMeta(path, meta, extract_tags(meta, body))

    def list_notes(self) -> list[NoteInfo]:
        """Every note with its timestamps, for orphan matching."""
        notes: list[NoteInfo] = []
        for path in self.iter_note_paths():
            try:
                st = (self.root / path).stat()
            except OSError:
                continue
            notes.append(
                NoteInfo(
                    path=path,
                    created_at=datetime.fromtimestamp(
                        getattr(st, "st_birthtime", st.st_ctime), tz=timezone.utc
                    ),
                    modified_at=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                )
            )
        return notes

    # ---------- Matching ----------

    def is_excluded(self, note: NoteMeta, settings: Settings) -> bool:
        stem = note.path.rsplit("/", 1)[-1].removesuffix(NOTE_SUFFIX).lower()
        if stem in {n.lower() for n in settings.excluded_note_names}:
            return True

        excluded_tags = [normalize_tag(t) for t in settings.excluded_tags]
        if any(tag_matches(t, ex) for ex in excluded_tags for t in note.tags):
            return True

        return any(property_matches(note.frontmatter, r) for r in settings.excluded_properties)

    def matches(self, note: NoteMeta, criteria: SelectionCriteria) -> bool:
        if criteria.type == "folder":
            return any(in_folder(note.path, f) for f in criteria.folders)
        if criteria.type == "tag":
            wanted = [normalize_tag(t) for t in criteria.tags]
            return any(tag_matches(t, w) for w in wanted for t in note.tags)
        # Custom criteria have no evaluator yet
        return False

    def resolve(self, criteria: SelectionCriteria) -> list[str]:
        if criteria.type == "folder" and not criteria.folders:
            return []
        if criteria.type == "tag" and not criteria.tags:
            return []
        if criteria.type == "custom":
            return []

        settings = self._settings()
        result: list[str] = []
        for path in self.iter_note_paths():
            if criteria.type == "folder" and not any(in_folder(path, f) for f in criteria.folders):
                # Cheap path check before reading the file
                continue
            note = self.load_meta(path)
            if self.is_excluded(note, settings):
                continue
            if self.matches(note, criteria):
                result.append(path)

        logger.debug(f"Resolved {len(result)} notes for {criteria.type} criteria")
        return result
