"""
NoteWatcher - translates host file events into card updates.

Renames move the card (and its review history). Deletions keep a copy of
the card as a pending orphan record before the card is removed.
"""

import logging
from pathlib import PurePosixPath

from atomic_review.application.card_service import CardService
from atomic_review.application.id_service import generate_id
from atomic_review.application.session_service import SessionService
from atomic_review.domain.constants import NOTE_SUFFIX
from atomic_review.domain.dates import utcnow
from atomic_review.domain.models import OrphanRecord
from atomic_review.domain.ports import Notifier
from atomic_review.infrastructure.notifiers import LogNotifier
from atomic_review.infrastructure.persistence.snapshot import clone
from atomic_review.infrastructure.persistence.store import DataStore

logger = logging.getLogger(__name__)


def is_note(path: str) -> bool:
    return path.endswith(NOTE_SUFFIX)


class NoteWatcher:
    def __init__(
        self,
        store: DataStore,
        cards: CardService,
        sessions: SessionService | None = None,
        notifier: Notifier | None = None,
    ):
        self.store = store
        self.cards = cards
        self.sessions = sessions
        self.notifier = notifier or LogNotifier()

    async def on_rename(self, old_path: str, new_path: str) -> bool:
        if not (is_note(old_path) and is_note(new_path)):
            return False
        if not self.cards.has_card(old_path):
            return False
        if self.cards.has_card(new_path):
            logger.warning(f"Not moving card {old_path}: {new_path} already has one")
            return False

        self.cards.rename(old_path, new_path)
        logger.info(f"Card moved: {old_path} -> {new_path}")
        if self.sessions is not None:
            await self.sessions.rename_item(old_path, new_path)
        return True

    def on_delete(self, path: str) -> OrphanRecord | None:
        if not is_note(path):
            return None
        card = self.cards.get_card(path)
        if card is None:
            return None

        orphan = OrphanRecord(
            id=generate_id(),
            original_path=path,
            card_data=clone(card),
            detected_at=utcnow(),
        )
        self.store.add_orphan(orphan)
        self.cards.delete_card(path)

        self.notifier.notify(
            f'Note deleted. Scheduling data saved for "{PurePosixPath(path).stem}"'
        )
        return orphan
