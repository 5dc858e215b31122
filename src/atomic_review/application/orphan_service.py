"""
OrphanService - cards whose notes can no longer be found.

An orphan keeps a deep copy of its card so scheduling history survives
until the user relinks it to another note or removes it for good.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import PurePosixPath

from atomic_review.application.id_service import generate_id
from atomic_review.domain.constants import MAX_ORPHAN_MATCHES, MIN_ORPHAN_MATCH_SCORE
from atomic_review.domain.dates import days_between, utcnow
from atomic_review.domain.errors import OrphanNotFoundError
from atomic_review.domain.models import (
    NoteInfo,
    OrphanMatch,
    OrphanRecord,
    OrphanResolution,
)
from atomic_review.infrastructure.persistence.snapshot import clone
from atomic_review.infrastructure.persistence.store import DataStore

logger = logging.getLogger(__name__)


def _stem(path: str) -> str:
    return PurePosixPath(path).stem.lower()


def _folder(path: str) -> str:
    return str(PurePosixPath(path).parent)


def score_candidate(orphan: OrphanRecord, note: NoteInfo) -> tuple[float, list[str]]:
    """Heuristic similarity between an orphan and a candidate note."""
    score = 0.0
    reasons: list[str] = []

    original, name = _stem(orphan.original_path), _stem(note.path)
    if name == original:
        score += 0.5
        reasons.append("Same filename")
    elif original in name:
        score += 0.2
        reasons.append("Similar filename")
    elif name in original:
        score += 0.15
        reasons.append("Partial filename match")

    if _folder(note.path) == _folder(orphan.original_path):
        score += 0.2
        reasons.append("Same folder")

    if note.created_at is not None:
        gap = abs(days_between(orphan.card_data.created_at, note.created_at))
        if gap < 1:
            score += 0.3
            reasons.append("Created same day")
        elif gap < 7:
            score += 0.15
            reasons.append("Created within a week")

    if note.modified_at is not None and note.modified_at >= orphan.detected_at:
        score += 0.1
        reasons.append("Modified recently")

    return min(1.0, score), reasons


class OrphanService:
    def __init__(self, store: DataStore):
        self.store = store

    def detect_orphans(self, exists: Callable[[str], bool]) -> list[OrphanRecord]:
        """
        Sweep all cards and turn those whose note is missing into orphans.

        A path that already has a pending orphan is not recorded twice.
        """
        pending = {o.original_path for o in self.store.get_pending_orphans()}
        found: list[OrphanRecord] = []

        for path, card in self.store.get_cards().items():
            if exists(path) or path in pending:
                continue
            orphan = OrphanRecord(
                id=generate_id(),
                original_path=path,
                card_data=clone(card),
                detected_at=utcnow(),
            )
            self.store.add_orphan(orphan)
            self.store.delete_card(path)
            found.append(orphan)

        if found:
            logger.info(f"Detected {len(found)} orphaned card(s)")
        return found

    def find_potential_matches(
        self, orphan: OrphanRecord, candidates: Iterable[NoteInfo]
    ) -> list[OrphanMatch]:
        """Best candidates first; notes that already have a card are skipped."""
        tracked = set(self.store.get_cards())
        matches: list[OrphanMatch] = []
        for note in candidates:
            if note.path in tracked:
                continue
            score, reasons = score_candidate(orphan, note)
            if score >= MIN_ORPHAN_MATCH_SCORE and reasons:
                matches.append(OrphanMatch(note.path, score, ", ".join(reasons)))

        matches.sort(key=lambda m: m.confidence, reverse=True)
        return matches[:MAX_ORPHAN_MATCHES]

    def _require(self, orphan_id: str) -> OrphanRecord:
        orphan = self.store.get_orphan(orphan_id)
        if orphan is None:
            raise OrphanNotFoundError(orphan_id)
        return orphan

    def relink(
        self,
        orphan_id: str,
        new_path: str,
        exists: Callable[[str], bool] | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Restore the orphan's card at `new_path` and move its review history."""
        orphan = self._require(orphan_id)
        if orphan.status != "pending":
            logger.warning(f"Orphan {orphan_id} is already {orphan.status}")
            return False
        if exists is not None and not exists(new_path):
            logger.warning(f"Cannot relink {orphan_id}: {new_path} does not exist")
            return False
        if self.store.get_card(new_path) is not None:
            logger.warning(f"Cannot relink {orphan_id}: {new_path} already has a card")
            return False

        now = now or utcnow()
        card = clone(orphan.card_data)
        card.note_path = new_path
        card.last_modified = now
        self.store.put_card(card)
        self.store.migrate_review_log_paths(orphan.original_path, new_path)
        self.store.update_orphan(
            orphan_id,
            status="resolved",
            resolution=OrphanResolution(action="relink", new_path=new_path, resolved_at=now),
        )
        logger.info(f"Relinked orphan {orphan.original_path} -> {new_path}")
        return True

    def remove(self, orphan_id: str) -> bool:
        """Give up on an orphan; its scheduling data is discarded."""
        orphan = self._require(orphan_id)
        if orphan.status != "pending":
            return False
        self.store.update_orphan(
            orphan_id,
            status="removed",
            resolution=OrphanResolution(action="remove", resolved_at=utcnow()),
        )
        return True

    def pending(self) -> list[OrphanRecord]:
        return self.store.get_pending_orphans()

    def pending_count(self) -> int:
        return len(self.pending())

    def cleanup(self) -> int:
        """Drop resolved and removed records."""
        return self.store.cleanup_resolved_orphans()
