"""
SessionService - one user-driven review pass over a queue.

States are Idle (the slot is empty) and Active. Usage problems such as
rating with no active session are reported through the Notifier and return
False; they are never raised.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from pydantic import ValidationError

from atomic_review.application.card_service import CardService
from atomic_review.application.errors import handle_error
from atomic_review.application.id_service import generate_session_id
from atomic_review.application.queue_service import QueueService
from atomic_review.domain.dates import utcnow
from atomic_review.domain.models import (
    HistoryEntry,
    IntervalPreview,
    PersistedSession,
    Rating,
    Schedule,
    SessionState,
)
from atomic_review.domain.ports import Notifier, StorageBackend, Workspace
from atomic_review.infrastructure.notifiers import LogNotifier
from atomic_review.infrastructure.persistence.store import DataStore

logger = logging.getLogger(__name__)

SessionCallback = Callable[[SessionState | None], None]


class SessionSlot:
    """Holds the single active session. Acquire fails while occupied."""

    def __init__(self):
        self._state: SessionState | None = None

    @property
    def state(self) -> SessionState | None:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is not None

    def acquire(self, state: SessionState) -> bool:
        if self._state is not None:
            return False
        self._state = state
        return True

    def release(self) -> SessionState | None:
        state, self._state = self._state, None
        return state


@dataclass(frozen=True)
class SessionProgress:
    current: int
    total: int
    percentage: int


class SessionService:
    def __init__(
        self,
        store: DataStore,
        cards: CardService,
        queues: QueueService,
        workspace: Workspace,
        notifier: Notifier | None = None,
        session_backend: StorageBackend | None = None,
        slot: SessionSlot | None = None,
    ):
        self.store = store
        self.cards = cards
        self.queues = queues
        self.workspace = workspace
        self.notifier = notifier or LogNotifier()
        self.session_backend = session_backend
        self.slot = slot or SessionSlot()
        self._callbacks: list[SessionCallback] = []

    # ---------- State ----------

    @property
    def state(self) -> SessionState | None:
        return self.slot.state

    @property
    def is_active(self) -> bool:
        return self.slot.active

    def on_state_change(self, callback: SessionCallback) -> Callable[[], None]:
        """Subscribe to session changes. Returns the unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _emit(self) -> None:
        for callback in list(self._callbacks):
            callback(self.slot.state)

    # ---------- Lifecycle ----------

    async def start(self, queue_id: str) -> bool:
        try:
            return await self._start(queue_id)
        except Exception as e:
            handle_error(e, self.notifier, component="SessionService.start")
            return False

    async def _start(self, queue_id: str) -> bool:
        if self.slot.active:
            self.notifier.notify("A review session is already active. End it first.")
            return False
        if self.queues.get_queue(queue_id) is None:
            self.notifier.notify(f"Queue not found: {queue_id}")
            return False

        self.queues.sync(queue_id)
        due = self.queues.get_due_items(queue_id)
        if not due:
            self.notifier.notify("No notes due for review.")
            return False

        state = SessionState(
            queue_id=queue_id,
            session_id=generate_session_id(),
            review_queue=[c.note_path for c in due],
            started_at=utcnow(),
        )
        if not self.slot.acquire(state):
            self.notifier.notify("A review session is already active. End it first.")
            return False
        logger.info(f"Started session {state.session_id} on {queue_id} with {len(due)} notes")

        if not await self._open_current():
            self.notifier.notify("None of the due notes could be opened.")
            return False
        self._emit()
        await self._persist()
        return True

    async def end(self) -> bool:
        state = self.slot.release()
        if state is None:
            return False

        self._emit()
        logger.info(f"Ended session {state.session_id}: {state.reviewed}/{state.total_notes}")
        if state.reviewed > 0:
            self.notifier.notify(
                f"Session complete! Reviewed {state.reviewed} of {state.total_notes} notes."
            )
        await self._clear_persisted()
        return True

    # ---------- Rating ----------

    async def rate(self, rating: Rating | int) -> bool:
        try:
            return await self._rate(rating)
        except Exception as e:
            handle_error(e, self.notifier, component="SessionService.rate")
            return False

    async def _rate(self, rating: Rating | int) -> bool:
        state = self.slot.state
        if state is None:
            self.notifier.notify("No active review session.")
            return False
        try:
            rating = Rating(rating)
        except ValueError:
            self.notifier.notify(f"Invalid rating: {rating}")
            return False

        path = state.current_note_path
        if path is None:
            return False
        if not self.is_current_item_expected():
            self.notifier.notify(f"Bring back {path} to rate it.")
            return False

        previous = self.cards.get_schedule(path, state.queue_id)
        if previous is None:
            logger.error(f"Schedule not found for {path} in {state.queue_id}")
            self.notifier.notify(f"No schedule for {path}.", error=True)
            return False

        entry = self.cards.update_schedule(path, state.queue_id, rating, state.session_id)
        state.history.append(
            HistoryEntry(
                note_path=path,
                rating=rating,
                review_log_id=entry.id,
                previous_schedule=previous,
            )
        )
        state.reviewed += 1
        state.ratings[rating] += 1
        self.queues.update_stats(state.queue_id)

        await self.advance()
        return True

    # ---------- Navigation ----------

    async def advance(self) -> None:
        state = self.slot.state
        if state is None:
            return
        state.current_index += 1
        if state.is_complete:
            await self.end()
            return
        if await self._open_current():
            self._emit()
            await self._persist()

    async def skip(self) -> bool:
        if self.slot.state is None:
            return False
        await self.advance()
        return True

    async def go_back(self) -> bool:
        state = self.slot.state
        if state is None or state.current_index <= 0:
            return False
        state.current_index -= 1
        path = state.current_note_path
        if not await self.workspace.open_item(path):
            logger.warning(f"Could not reopen {path}")
        self._emit()
        await self._persist()
        return True

    async def undo(self) -> bool:
        state = self.slot.state
        if state is None or not state.history:
            self.notifier.notify("Nothing to undo.")
            return False

        entry = state.history.pop()
        if self.cards.has_card(entry.note_path):
            self.cards.restore_schedule(entry.note_path, state.queue_id, entry.previous_schedule)
        else:
            logger.warning(f"Card for {entry.note_path} is gone; only the log entry is undone")
        self.store.mark_review_undone(entry.review_log_id)

        state.reviewed = max(0, state.reviewed - 1)
        state.ratings[entry.rating] = max(0, state.ratings[entry.rating] - 1)
        self.queues.update_stats(state.queue_id)

        if entry.note_path in state.review_queue:
            state.current_index = state.review_queue.index(entry.note_path)
            await self.workspace.open_item(entry.note_path)

        self._emit()
        await self._persist()
        self.notifier.notify("Rating undone.")
        return True

    async def bring_back(self) -> bool:
        """Reopen the expected note after the user navigated away."""
        state = self.slot.state
        if state is None or state.current_note_path is None:
            return False
        return await self.workspace.open_item(state.current_note_path)

    async def _open_current(self) -> bool:
        """
        Open the note at the current index, skipping notes that no longer exist.

        Returns:
            False if the session ended because nothing was left to open.
        """
        while (state := self.slot.state) is not None and not state.is_complete:
            path = state.current_note_path
            if await self.workspace.open_item(path):
                return True
            logger.warning(f"Note not found, skipping: {path}")
            if self.slot.state is state:
                state.current_index += 1

        if self.slot.state is not None:
            await self.end()
        return False

    # ---------- Read side ----------

    def is_current_item_expected(self) -> bool:
        state = self.slot.state
        if state is None:
            return True
        return self.workspace.active_item() == state.current_note_path

    def expected_item_path(self) -> str | None:
        state = self.slot.state
        return state.current_note_path if state else None

    def progress(self) -> SessionProgress | None:
        state = self.slot.state
        if state is None or state.total_notes == 0:
            return None
        current = min(state.current_index + 1, state.total_notes)
        return SessionProgress(
            current=current,
            total=state.total_notes,
            percentage=round(current / state.total_notes * 100),
        )

    def can_undo(self) -> bool:
        state = self.slot.state
        return bool(state and state.history)

    def can_go_back(self) -> bool:
        state = self.slot.state
        return bool(state and state.current_index > 0)

    def current_schedule(self) -> Schedule | None:
        state = self.slot.state
        if state is None or state.current_note_path is None:
            return None
        return self.cards.get_schedule(state.current_note_path, state.queue_id)

    def current_preview(self) -> dict[Rating, IntervalPreview] | None:
        state = self.slot.state
        if state is None or state.current_note_path is None:
            return None
        return self.cards.get_scheduling_preview(state.current_note_path, state.queue_id)

    def current_retrievability(self) -> float | None:
        state = self.slot.state
        if state is None or state.current_note_path is None:
            return None
        return self.cards.get_retrievability(state.current_note_path, state.queue_id)

    # ---------- Renames ----------

    async def rename_item(self, old_path: str, new_path: str) -> bool:
        """Follow a host rename inside the active session."""
        state = self.slot.state
        if state is None:
            return False

        touched = False
        for i, path in enumerate(state.review_queue):
            if path == old_path:
                state.review_queue[i] = new_path
                touched = True
        for entry in state.history:
            if entry.note_path == old_path:
                entry.note_path = new_path
                touched = True

        if touched:
            self._emit()
            await self._persist()
        return touched

    # ---------- Persistence ----------

    async def _persist(self) -> None:
        if self.session_backend is None:
            return
        state = self.slot.state
        if state is None:
            await self._clear_persisted()
            return
        try:
            await self.session_backend.write(state.to_persisted().model_dump(mode="json"))
        except OSError as e:
            logger.error(f"Failed to persist session: {e}")

    async def _clear_persisted(self) -> None:
        if self.session_backend is None:
            return
        try:
            await self.session_backend.remove()
        except OSError as e:
            logger.warning(f"Failed to clear persisted session: {e}")

    async def resume(self) -> bool:
        """
        Rebuild a session from its persisted snapshot, if there is one.

        Paths whose card (or schedule in the session's queue) is gone are
        dropped. Undo history is not persisted, so it starts empty.
        """
        if self.session_backend is None or self.slot.active:
            return False

        try:
            raw = await self.session_backend.read()
        except OSError as e:
            logger.error(f"Failed to read persisted session: {e}")
            return False
        if raw is None:
            return False

        try:
            persisted = PersistedSession.model_validate(raw)
        except ValidationError as e:
            logger.error(f"Discarding malformed persisted session: {e.error_count()} error(s)")
            await self._clear_persisted()
            return False

        if self.queues.get_queue(persisted.queue_id) is None:
            logger.info(f"Queue {persisted.queue_id} is gone; not resuming session")
            await self._clear_persisted()
            return False

        def live(path: str) -> bool:
            return self.cards.get_schedule(path, persisted.queue_id) is not None

        valid = [p for p in persisted.review_queue if live(p)]
        index = sum(1 for p in persisted.review_queue[: persisted.current_index] if live(p))
        if index >= len(valid):
            await self._clear_persisted()
            return False

        state = SessionState(
            queue_id=persisted.queue_id,
            session_id=persisted.session_id,
            review_queue=valid,
            started_at=persisted.started_at,
            current_index=index,
            reviewed=persisted.reviewed,
            ratings={r: persisted.ratings.get(int(r), 0) for r in Rating},
        )
        if not self.slot.acquire(state):
            return False

        dropped = len(persisted.review_queue) - len(valid)
        logger.info(
            f"Resumed session {state.session_id} at {index}/{len(valid)}"
            + (f" ({dropped} stale notes dropped)" if dropped else "")
        )
        self._emit()
        self.notifier.notify(
            f"Resumed review session ({state.reviewed} reviewed, "
            f"{len(valid) - index} remaining)"
        )
        return True
