"""
CardService - per-note schedule CRUD.

All state transitions go through the Scheduler; this service only decides
which schedule to transition and records the outcome in the store.
"""

import logging
from datetime import datetime

from atomic_review.application.id_service import generate_id, generate_review_log_id
from atomic_review.application.scheduler import Scheduler
from atomic_review.domain.dates import is_due, is_overdue, utcnow
from atomic_review.domain.errors import CardNotFoundError, ScheduleNotFoundError
from atomic_review.domain.models import (
    Card,
    CardState,
    IntervalPreview,
    Rating,
    ReviewLogEntry,
    Schedule,
)
from atomic_review.infrastructure.persistence.store import DataStore

logger = logging.getLogger(__name__)


class CardService:
    def __init__(self, store: DataStore, scheduler: Scheduler):
        self.store = store
        self.scheduler = scheduler

    # ---------- Mutations ----------

    def create_card(self, path: str, queue_id: str, now: datetime | None = None) -> Card:
        """
        Add `path` to a queue. Idempotent: an existing card only gains the
        missing schedule, and an existing schedule is left untouched.
        """
        now = now or utcnow()
        card = self.store.get_card(path)
        if card is not None:
            if queue_id not in card.schedules:
                schedules = {**card.schedules, queue_id: self.scheduler.create_schedule(now)}
                self.store.update_card(path, schedules=schedules, last_modified=now)
            return card

        card = Card(
            note_path=path,
            note_id=generate_id(),
            schedules={queue_id: self.scheduler.create_schedule(now)},
            created_at=now,
            last_modified=now,
        )
        self.store.put_card(card)
        logger.debug(f"Created card for {path} in queue {queue_id}")
        return card

    def update_schedule(
        self,
        path: str,
        queue_id: str,
        rating: Rating,
        session_id: str = "",
        now: datetime | None = None,
    ) -> ReviewLogEntry:
        """
        Rate a card in one queue and append the review log entry.

        Raises:
            CardNotFoundError: No card for `path`.
            ScheduleNotFoundError: The card is not in `queue_id`.
        """
        card = self.store.get_card(path)
        if card is None:
            raise CardNotFoundError(path)
        schedule = card.schedules.get(queue_id)
        if schedule is None:
            raise ScheduleNotFoundError(path, queue_id)

        now = now or utcnow()
        updated, log = self.scheduler.rate(schedule, Rating(rating), now)

        entry = ReviewLogEntry(
            id=generate_review_log_id(),
            card_path=path,
            queue_id=queue_id,
            rating=log.rating,
            state=log.state,
            due=log.due,
            stability=log.stability,
            difficulty=log.difficulty,
            elapsed_days=log.elapsed_days,
            last_elapsed_days=log.last_elapsed_days,
            last_scheduled_days=log.last_scheduled_days,
            last_review=log.last_review,
            step=log.step,
            scheduled_days=log.scheduled_days,
            next_due=log.next_due,
            next_state=log.next_state,
            review=log.review,
            session_id=session_id,
        )

        self.store.update_card(
            path, schedules={**card.schedules, queue_id: updated}, last_modified=now
        )
        self.store.add_review(entry)
        logger.debug(
            f"Rated {path} [{queue_id}] {log.rating.label}: "
            f"{log.state.label} -> {log.next_state.label}, due {updated.due.isoformat()}"
        )
        return entry

    def restore_schedule(self, path: str, queue_id: str, schedule: Schedule) -> None:
        """Write a saved schedule back verbatim (session undo)."""
        card = self.store.get_card(path)
        if card is None:
            raise CardNotFoundError(path)
        self.store.update_card(
            path, schedules={**card.schedules, queue_id: schedule}, last_modified=utcnow()
        )

    def ensure_schedule(self, path: str, queue_id: str) -> Schedule:
        card = self.store.get_card(path)
        if card is None:
            raise CardNotFoundError(path)
        if queue_id not in card.schedules:
            schedule = self.scheduler.create_schedule()
            self.store.update_card(path, schedules={**card.schedules, queue_id: schedule})
        return card.schedules[queue_id]

    def remove_from_queue(self, path: str, queue_id: str) -> bool:
        """Drop one schedule; a card left with none is deleted."""
        card = self.store.get_card(path)
        if card is None or queue_id not in card.schedules:
            return False

        remaining = {qid: s for qid, s in card.schedules.items() if qid != queue_id}
        if remaining:
            self.store.update_card(path, schedules=remaining, last_modified=utcnow())
        else:
            self.store.delete_card(path)
            logger.debug(f"Deleted card {path}: no schedules left")
        return True

    def rename(self, old_path: str, new_path: str) -> Card:
        """
        Move a card and its review history to `new_path`.

        Raises:
            CardNotFoundError: No card for `old_path`.
            CardExistsError: `new_path` already has a card.
        """
        return self.store.rename_card(old_path, new_path)

    def delete_card(self, path: str) -> bool:
        return self.store.delete_card(path)

    # ---------- Queries ----------

    def get_card(self, path: str) -> Card | None:
        return self.store.get_card(path)

    def has_card(self, path: str) -> bool:
        return self.store.get_card(path) is not None

    def get_schedule(self, path: str, queue_id: str) -> Schedule | None:
        card = self.store.get_card(path)
        return card.schedules.get(queue_id) if card else None

    def get_cards_for_queue(self, queue_id: str) -> list[Card]:
        return [c for c in self.store.get_cards().values() if queue_id in c.schedules]

    def get_due_cards(self, queue_id: str, now: datetime | None = None) -> list[Card]:
        return [
            c for c in self.get_cards_for_queue(queue_id) if is_due(c.schedules[queue_id].due, now)
        ]

    def get_overdue_cards(self, queue_id: str, now: datetime | None = None) -> list[Card]:
        return [
            c
            for c in self.get_cards_for_queue(queue_id)
            if is_overdue(c.schedules[queue_id].due, now)
        ]

    def get_new_cards(self, queue_id: str) -> list[Card]:
        return [
            c
            for c in self.get_cards_for_queue(queue_id)
            if c.schedules[queue_id].state == CardState.NEW
        ]

    def get_card_count(self, queue_id: str) -> int:
        return len(self.get_cards_for_queue(queue_id))

    def get_retrievability(
        self, path: str, queue_id: str, now: datetime | None = None
    ) -> float | None:
        schedule = self.get_schedule(path, queue_id)
        if schedule is None:
            return None
        return self.scheduler.retrievability(schedule, now)

    def get_scheduling_preview(
        self, path: str, queue_id: str, now: datetime | None = None
    ) -> dict[Rating, IntervalPreview] | None:
        schedule = self.get_schedule(path, queue_id)
        if schedule is None:
            return None
        return self.scheduler.preview(schedule, now)
