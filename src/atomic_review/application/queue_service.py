"""
QueueService - named queues, membership sync, stats and due ordering.

Membership is resolved through the ContentResolver port. Sync only adds:
paths that stop matching are reported in SyncResult.removed and left in
place until removed explicitly.
"""

import logging
import random
from datetime import datetime, timedelta

from atomic_review.application.card_service import CardService
from atomic_review.application.id_service import generate_id
from atomic_review.application.queue_builder import order_due_cards
from atomic_review.domain.constants import (
    DEFAULT_QUEUE_ID,
    DEFAULT_QUEUE_NAME,
    STATS_CACHE_TTL,
)
from atomic_review.domain.dates import is_due, start_of_today, utcnow
from atomic_review.domain.errors import QueueNotFoundError
from atomic_review.domain.models import (
    Card,
    CardState,
    DailyLimits,
    Queue,
    QueueOrder,
    QueueStats,
    SelectionCriteria,
    SyncResult,
)
from atomic_review.domain.ports import ContentResolver
from atomic_review.infrastructure.persistence.store import DataStore

logger = logging.getLogger(__name__)


class QueueService:
    def __init__(
        self,
        store: DataStore,
        cards: CardService,
        resolver: ContentResolver,
        stats_cache_ttl: float = STATS_CACHE_TTL,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.cards = cards
        self.resolver = resolver
        self.stats_cache_ttl = stats_cache_ttl
        self.rng = rng

    # ---------- CRUD ----------

    def _default_criteria(self) -> SelectionCriteria:
        settings = self.store.settings
        return SelectionCriteria(
            type=settings.selection_mode,
            folders=list(settings.tracked_folders),
            tags=list(settings.tracked_tags),
        )

    def get_default_queue(self) -> Queue:
        """Get or create the singleton default queue."""
        queue = self.store.get_queue(DEFAULT_QUEUE_ID)
        if queue is None:
            queue = self.create_queue(
                DEFAULT_QUEUE_NAME, self._default_criteria(), queue_id=DEFAULT_QUEUE_ID
            )
        return queue

    def create_queue(
        self,
        name: str,
        criteria: SelectionCriteria | None = None,
        *,
        queue_id: str | None = None,
        order: QueueOrder | None = None,
    ) -> Queue:
        queue = Queue(
            id=queue_id or generate_id(),
            name=name,
            created_at=utcnow(),
            criteria=criteria or SelectionCriteria(),
            order=order,
        )
        self.store.add_queue(queue)
        logger.info(f"Created queue {queue.name!r} ({queue.id})")
        return queue

    def get_queue(self, queue_id: str) -> Queue | None:
        return self.store.get_queue(queue_id)

    def list_queues(self) -> list[Queue]:
        return self.store.get_queues()

    def _require(self, queue_id: str) -> Queue:
        queue = self.store.get_queue(queue_id)
        if queue is None:
            raise QueueNotFoundError(queue_id)
        return queue

    def update_queue(self, queue_id: str, **changes) -> Queue:
        return self.store.update_queue(queue_id, **changes)

    def rename_queue(self, queue_id: str, name: str) -> Queue:
        return self.store.update_queue(queue_id, name=name)

    def delete_queue(self, queue_id: str, remove_cards: bool = False) -> None:
        self._require(queue_id)
        if remove_cards:
            for card in self.cards.get_cards_for_queue(queue_id):
                self.cards.remove_from_queue(card.note_path, queue_id)
        self.store.delete_queue(queue_id)
        logger.info(f"Deleted queue {queue_id} (cards removed: {remove_cards})")

    # ---------- Sync ----------

    def sync(self, queue_id: str) -> SyncResult:
        """Diff the resolver's matches against the queue's cards and add new ones."""
        queue = self._require(queue_id)

        matching = list(dict.fromkeys(self.resolver.resolve(queue.criteria)))
        current = {c.note_path for c in self.cards.get_cards_for_queue(queue_id)}
        matching_set = set(matching)

        result = SyncResult()
        now = utcnow()
        for path in matching:
            if path in current:
                result.unchanged += 1
            else:
                self.cards.create_card(path, queue_id, now)
                result.added.append(path)

        result.removed = sorted(current - matching_set)

        self.update_stats(queue_id)
        logger.info(
            f"Synced queue {queue_id}: +{len(result.added)} new, "
            f"{len(result.removed)} no longer matching, {result.unchanged} unchanged"
        )
        return result

    def sync_default_queue(self) -> SyncResult:
        """Refresh the default queue's criteria from settings, then sync it."""
        queue = self.get_default_queue()
        self.store.update_queue(queue.id, criteria=self._default_criteria())
        return self.sync(queue.id)

    # ---------- Stats ----------

    def update_stats(self, queue_id: str, now: datetime | None = None) -> QueueStats:
        now = now or utcnow()
        today = start_of_today(now)

        new_notes = due_notes = reviewed_today = 0
        cards = self.cards.get_cards_for_queue(queue_id)
        for card in cards:
            schedule = card.schedules[queue_id]
            if schedule.state == CardState.NEW:
                new_notes += 1
            if is_due(schedule.due, now):
                due_notes += 1
            if schedule.last_review is not None and schedule.last_review >= today:
                reviewed_today += 1

        stats = QueueStats(
            total_notes=len(cards),
            new_notes=new_notes,
            due_notes=due_notes,
            reviewed_today=reviewed_today,
            last_updated=now,
        )
        self.store.set_queue_stats(queue_id, stats)
        return stats

    def get_stats(self, queue_id: str, now: datetime | None = None) -> QueueStats:
        """Cached stats, recomputed once older than the TTL."""
        queue = self.store.get_queue(queue_id)
        if queue is None:
            return QueueStats()
        now = now or utcnow()
        if now - queue.stats.last_updated < timedelta(seconds=self.stats_cache_ttl):
            return queue.stats
        return self.update_stats(queue_id, now)

    # ---------- Due items ----------

    def get_daily_limits(self, queue_id: str, now: datetime | None = None) -> DailyLimits:
        """Configured daily caps minus what was already reviewed today in this queue."""
        settings = self.store.settings
        today = start_of_today(now)
        reviewed_new = reviewed_review = 0
        for review in self.store.get_reviews():
            if review.queue_id != queue_id or review.undone or review.review < today:
                continue
            if review.state == CardState.NEW:
                reviewed_new += 1
            elif review.state == CardState.REVIEW:
                reviewed_review += 1
        return DailyLimits(
            new_cards=max(0, settings.new_cards_per_day - reviewed_new),
            reviews=max(0, settings.max_reviews_per_day - reviewed_review),
        )

    def _reviews_today(self, queue_id: str, now: datetime | None) -> int:
        today = start_of_today(now)
        return sum(
            1
            for r in self.store.get_reviews()
            if r.queue_id == queue_id and not r.undone and r.review >= today
        )

    def get_order(self, queue_id: str) -> QueueOrder:
        queue = self.store.get_queue(queue_id)
        if queue is not None and queue.order is not None:
            return queue.order
        return self.store.settings.queue_order

    def get_due_items(
        self,
        queue_id: str,
        strategy: QueueOrder | None = None,
        now: datetime | None = None,
    ) -> list[Card]:
        """Due cards of a queue, ordered (and capped) by the queue's strategy."""
        now = now or utcnow()
        strategy = strategy or self.get_order(queue_id)
        limits = self.get_daily_limits(queue_id, now)
        if strategy == QueueOrder.LOAD_BALANCING:
            remaining = self.store.settings.max_reviews_per_day - self._reviews_today(
                queue_id, now
            )
            limits = DailyLimits(new_cards=limits.new_cards, reviews=max(0, remaining))

        due = self.cards.get_due_cards(queue_id, now)
        return order_due_cards(
            due,
            queue_id,
            strategy,
            limits,
            retrievability=lambda c: self.cards.get_retrievability(c.note_path, queue_id, now),
            rng=self.rng,
        )

    def get_due_count(self, queue_id: str, now: datetime | None = None) -> int:
        return len(self.cards.get_due_cards(queue_id, now))

    def get_new_count(self, queue_id: str) -> int:
        return len(self.cards.get_new_cards(queue_id))

    def get_overdue_count(self, queue_id: str, now: datetime | None = None) -> int:
        return len(self.cards.get_overdue_cards(queue_id, now))
