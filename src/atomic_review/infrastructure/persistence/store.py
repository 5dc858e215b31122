"""
DataStore - the canonical persisted snapshot.

Holds settings, queues, cards, the review log and orphan records in memory.
Every mutator is synchronous and calls save(), which marks the store dirty
and (re)arms a debounce timer; the eventual flush serializes whatever is
current at that point. Reads always see the latest mutation.
"""

import asyncio
import logging
import time
from typing import Any

from atomic_review.domain.constants import (
    BACKUP_INTERVAL,
    MAX_BACKUPS,
    MIN_SAVE_INTERVAL,
    REVIEW_LOG_CAP,
    REVIEW_LOG_SLACK,
    SAVE_DEBOUNCE,
    SAVE_MAX_ATTEMPTS,
    SAVE_RETRY_BASE_DELAY,
)
from atomic_review.domain.dates import utcnow
from atomic_review.domain.errors import (
    CardExistsError,
    CardNotFoundError,
    DataValidationError,
    OrphanNotFoundError,
    QueueExistsError,
    QueueNotFoundError,
    SaveError,
)
from atomic_review.domain.models import (
    BackupEntry,
    Card,
    OrphanRecord,
    Queue,
    QueueStats,
    ReviewLogEntry,
    Settings,
    StoreData,
)
from atomic_review.domain.ports import Notifier, StorageBackend

from .schema import ParseResult, parse_document, parse_record
from .snapshot import backup_payload, clone, dump_document, make_backup
from .timer import DebounceTimer

logger = logging.getLogger(__name__)


class DataStore:
    def __init__(
        self,
        backend: StorageBackend,
        backup_backend: StorageBackend | None = None,
        notifier: Notifier | None = None,
        *,
        save_debounce: float = SAVE_DEBOUNCE,
        min_save_interval: float = MIN_SAVE_INTERVAL,
        save_max_attempts: int = SAVE_MAX_ATTEMPTS,
        save_retry_base_delay: float = SAVE_RETRY_BASE_DELAY,
        max_backups: int = MAX_BACKUPS,
        backup_interval: float = BACKUP_INTERVAL,
        review_log_cap: int = REVIEW_LOG_CAP,
    ):
        self.backend = backend
        self.backup_backend = backup_backend
        self.notifier = notifier

        self.save_debounce = save_debounce
        self.min_save_interval = min_save_interval
        self.save_max_attempts = max(1, save_max_attempts)
        self.save_retry_base_delay = save_retry_base_delay
        self.max_backups = max(1, max_backups)
        self.backup_interval = backup_interval
        self.review_log_cap = review_log_cap

        self._data = StoreData()
        self._backups: list[BackupEntry] = []

        # Dirty tracking: a flush only clears mutations it actually wrote
        self._generation = 0
        self._saved_generation = 0
        self._last_save: float | None = None
        self._disk_document: dict[str, Any] | None = None

        self._lock = asyncio.Lock()
        self._timer = DebounceTimer(self._on_timer)

    # ---------- Lifecycle ----------

    async def load(self) -> ParseResult:
        """
        Load the primary document and the backup ring.

        Never raises on malformed data: defaults are substituted and the
        original blob is quarantined as a backup.
        """
        await self._load_backups()

        raw = await self.backend.read()
        result = parse_document(raw)
        self._data = result.data
        self._disk_document = raw if isinstance(raw, dict) else None

        if raw is None:
            logger.info("No stored data found; starting with defaults")
        elif not result.clean:
            logger.warning("Stored data was partly malformed; original kept as a backup")
            self._backups.append(make_backup(raw))
            self._trim_backups()
            await self._write_backups()
            self._mark_dirty()
        elif result.migrated_from is not None:
            self._mark_dirty()

        logger.debug(
            f"Loaded {len(self._data.cards)} cards, {len(self._data.queues)} queues, "
            f"{len(self._data.reviews)} reviews"
        )
        return result

    async def _load_backups(self) -> None:
        self._backups = []
        if self.backup_backend is None:
            return
        raw = await self.backup_backend.read()
        if raw is None:
            return
        if not isinstance(raw, list):
            logger.warning("Backup store is not a list; ignoring it")
            return
        for i, item in enumerate(raw):
            try:
                self._backups.append(parse_record(BackupEntry, item, f"backups[{i}]"))
            except DataValidationError as e:
                logger.warning(f"Dropping malformed backup: {e}")

    @property
    def is_dirty(self) -> bool:
        return self._generation != self._saved_generation

    def _mark_dirty(self) -> None:
        self._generation += 1

    def save(self) -> None:
        """Mark dirty and schedule a debounced, rate-limited flush."""
        self._mark_dirty()
        since = time.monotonic() - self._last_save if self._last_save is not None else None
        delay = self.save_debounce
        if since is not None:
            delay = max(self.save_debounce, self.min_save_interval - since)
        self._timer.arm(delay)

    async def flush(self) -> None:
        """Write now if there are unsaved changes."""
        async with self._lock:
            if not self.is_dirty:
                return
            self._timer.cancel()
            generation = self._generation
            document = dump_document(self._data)

            await self._rotate_backup()
            await self._write_with_retry(document)

            self._saved_generation = generation
            self._disk_document = document
            self._last_save = time.monotonic()

    async def force_save(self) -> None:
        """Cancel any pending timer and write immediately. Used at shutdown."""
        self._timer.cancel()
        self._mark_dirty()
        await self.flush()

    async def _on_timer(self) -> None:
        try:
            await self.flush()
        except SaveError:
            # Already logged and reported; the store stays dirty
            logger.debug("Debounced save failed; changes remain pending")

    async def _write_with_retry(self, document: dict[str, Any]) -> None:
        last_error: OSError | None = None
        for attempt in range(1, self.save_max_attempts + 1):
            try:
                await self.backend.write(document)
                return
            except OSError as e:
                last_error = e
                if attempt < self.save_max_attempts:
                    delay = self.save_retry_base_delay * (2 ** (attempt - 1))
                    logger.warning(
                        f"Save attempt {attempt}/{self.save_max_attempts} failed: {e}. "
                        f"Retrying in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)

        error = SaveError(self.save_max_attempts, last_error)
        logger.error(str(error))
        if self.notifier is not None:
            self.notifier.notify("Failed to save review data", error=True)
        raise error

    def snapshot(self) -> StoreData:
        """Deep copy of everything in memory (for export and debugging)."""
        return clone(self._data)

    # ---------- Backups ----------

    async def _rotate_backup(self) -> None:
        """
        Back up the document about to be overwritten.

        Throttled against the newest stored backup, so the interval holds
        across restarts; a document identical to that backup is skipped.
        """
        if self.backup_backend is None or self._disk_document is None:
            return
        if self._backups:
            newest = self.list_backups()[0]
            if newest.data == self._disk_document:
                return
            if (utcnow() - newest.timestamp).total_seconds() < self.backup_interval:
                return
        self._backups.append(make_backup(self._disk_document))
        self._trim_backups()
        await self._write_backups()

    async def _write_backups(self) -> None:
        if self.backup_backend is None:
            return
        try:
            await self.backup_backend.write([b.model_dump(mode="json") for b in self._backups])
        except OSError as e:
            logger.error(f"Failed to write backups: {e}")

    def _trim_backups(self, keep: int | None = None) -> int:
        keep = self.max_backups if keep is None else max(0, keep)
        self._backups.sort(key=lambda b: b.timestamp)
        excess = max(0, len(self._backups) - keep)
        if excess:
            del self._backups[:excess]
        return excess

    def list_backups(self) -> list[BackupEntry]:
        """Newest first. Entries with equal timestamps keep insertion order, reversed."""
        return sorted(self._backups, key=lambda b: b.timestamp)[::-1]

    async def create_backup(self) -> BackupEntry:
        entry = make_backup(dump_document(self._data))
        self._backups.append(entry)
        self._trim_backups()
        await self._write_backups()
        logger.info(f"Created backup {entry.id}")
        return entry

    async def restore_from_backup(self, backup_id: str) -> bool:
        entry = next((b for b in self._backups if b.id == backup_id), None)
        if entry is None:
            logger.warning(f"Backup not found: {backup_id}")
            return False

        try:
            payload = backup_payload(entry)
        except DataValidationError as e:
            logger.error(f"Cannot restore backup: {e}")
            return False
        if set(payload) == {"raw"}:
            logger.error(f"Backup {backup_id} holds an unparseable blob; not restoring")
            return False

        result = parse_document(payload)
        self._backups.append(make_backup(dump_document(self._data)))
        self._trim_backups()
        self._data = result.data
        await self._write_backups()
        await self.force_save()
        logger.info(f"Restored data from backup {backup_id}")
        return True

    async def cleanup_old_backups(self, keep: int | None = None) -> int:
        removed = self._trim_backups(keep)
        if removed:
            await self._write_backups()
        return removed

    # ---------- Settings ----------

    @property
    def settings(self) -> Settings:
        return self._data.settings

    def update_settings(self, **changes: Any) -> Settings:
        merged = {**self._data.settings.model_dump(), **changes}
        self._data.settings = Settings.model_validate(merged)
        self.save()
        return self._data.settings

    # ---------- Queues ----------

    def get_queues(self) -> list[Queue]:
        return list(self._data.queues)

    def get_queue(self, queue_id: str) -> Queue | None:
        return next((q for q in self._data.queues if q.id == queue_id), None)

    def add_queue(self, queue: Queue) -> None:
        if self.get_queue(queue.id) is not None:
            raise QueueExistsError(queue.id)
        self._data.queues.append(queue)
        self.save()

    def update_queue(self, queue_id: str, **changes: Any) -> Queue:
        for i, queue in enumerate(self._data.queues):
            if queue.id == queue_id:
                updated = Queue.model_validate({**dict(queue), **changes})
                self._data.queues[i] = updated
                self.save()
                return updated
        raise QueueNotFoundError(queue_id)

    def set_queue_stats(self, queue_id: str, stats: QueueStats) -> None:
        self.update_queue(queue_id, stats=stats)

    def delete_queue(self, queue_id: str) -> None:
        for i, queue in enumerate(self._data.queues):
            if queue.id == queue_id:
                del self._data.queues[i]
                self.save()
                return
        raise QueueNotFoundError(queue_id)

    # ---------- Cards ----------

    def get_cards(self) -> dict[str, Card]:
        return dict(self._data.cards)

    def get_card(self, path: str) -> Card | None:
        return self._data.cards.get(path)

    def put_card(self, card: Card) -> None:
        self._data.cards[card.note_path] = card
        self.save()

    def update_card(self, path: str, **changes: Any) -> Card:
        card = self._data.cards.get(path)
        if card is None:
            raise CardNotFoundError(path)
        for name, value in changes.items():
            setattr(card, name, value)
        self.save()
        return card

    def delete_card(self, path: str) -> bool:
        if self._data.cards.pop(path, None) is None:
            return False
        self.save()
        return True

    def rename_card(self, old_path: str, new_path: str) -> Card:
        """Move a card to a new key and re-point its review history. Never overwrites a card."""
        card = self._data.cards.get(old_path)
        if card is None:
            raise CardNotFoundError(old_path)
        if new_path == old_path:
            return card
        if new_path in self._data.cards:
            raise CardExistsError(new_path)
        del self._data.cards[old_path]
        card.note_path = new_path
        card.last_modified = utcnow()
        self._data.cards[new_path] = card
        self.migrate_review_log_paths(old_path, new_path)
        self.save()
        return card

    def migrate_review_log_paths(self, old_path: str, new_path: str) -> int:
        moved = 0
        for review in self._data.reviews:
            if review.card_path == old_path:
                review.card_path = new_path
                moved += 1
        if moved:
            self.save()
        return moved

    # ---------- Review log ----------

    def add_review(self, review: ReviewLogEntry) -> None:
        self._data.reviews.append(review)
        self._compact_reviews()
        self.save()

    def _compact_reviews(self) -> None:
        cap = self.review_log_cap
        if len(self._data.reviews) <= cap * (1 + REVIEW_LOG_SLACK):
            return
        before = len(self._data.reviews)
        reviews = [r for r in self._data.reviews if not r.undone]
        if len(reviews) > cap:
            reviews = reviews[-cap:]
        self._data.reviews = reviews
        logger.info(f"Compacted review log from {before} to {len(reviews)} entries")

    def get_reviews(self) -> list[ReviewLogEntry]:
        return list(self._data.reviews)

    def get_reviews_for_card(self, path: str) -> list[ReviewLogEntry]:
        return [r for r in self._data.reviews if r.card_path == path]

    def mark_review_undone(self, review_id: str) -> bool:
        for review in self._data.reviews:
            if review.id == review_id:
                if review.undone:
                    return False
                review.undone = True
                self.save()
                return True
        return False

    # ---------- Orphans ----------

    def add_orphan(self, orphan: OrphanRecord) -> None:
        self._data.orphans.append(orphan)
        self.save()

    def get_orphans(self) -> list[OrphanRecord]:
        return list(self._data.orphans)

    def get_pending_orphans(self) -> list[OrphanRecord]:
        return [o for o in self._data.orphans if o.status == "pending"]

    def get_orphan(self, orphan_id: str) -> OrphanRecord | None:
        return next((o for o in self._data.orphans if o.id == orphan_id), None)

    def update_orphan(self, orphan_id: str, **changes: Any) -> OrphanRecord:
        orphan = self.get_orphan(orphan_id)
        if orphan is None:
            raise OrphanNotFoundError(orphan_id)
        for name, value in changes.items():
            setattr(orphan, name, value)
        self.save()
        return orphan

    def cleanup_resolved_orphans(self) -> int:
        before = len(self._data.orphans)
        self._data.orphans = [o for o in self._data.orphans if o.status == "pending"]
        removed = before - len(self._data.orphans)
        if removed:
            self.save()
        return removed
