"""
Scheduler - FSRS algorithm adapter.

Wraps the `fsrs` package behind a pure interface over Schedule records.
Parameters arrive pre-validated (clamped by the Settings model); nothing is
re-checked per call.
"""

import logging
from datetime import datetime, timezone

from fsrs import Card as FsrsCard
from fsrs import Rating as FsrsRating
from fsrs import Scheduler as FsrsScheduler
from fsrs import State as FsrsState

from atomic_review.domain.dates import days_between, format_interval, utcnow
from atomic_review.domain.models import (
    CardState,
    FsrsParams,
    IntervalPreview,
    Rating,
    RatingLog,
    ReviewLogEntry,
    Schedule,
)

logger = logging.getLogger(__name__)


def _utc(now: datetime | None) -> datetime:
    # fsrs insists on tzinfo == timezone.utc exactly
    return (now or utcnow()).astimezone(timezone.utc)


class Scheduler:
    """
    Stateless given its parameters: every method returns new values and
    never mutates its inputs.
    """

    def __init__(self, params: FsrsParams | None = None):
        self.params = params or FsrsParams()
        self._fsrs = self._build(self.params)

    @staticmethod
    def _build(params: FsrsParams) -> FsrsScheduler:
        return FsrsScheduler(
            desired_retention=params.request_retention,
            maximum_interval=params.maximum_interval,
            enable_fuzzing=params.enable_fuzz,
        )

    def update_params(self, params: FsrsParams) -> None:
        """Rebuild the underlying scheduler after a settings change."""
        self.params = params
        self._fsrs = self._build(params)

    # ---------- Conversion ----------

    def _to_fsrs_card(self, schedule: Schedule) -> FsrsCard:
        stability = schedule.stability if schedule.stability > 0 else None
        difficulty = schedule.difficulty if schedule.difficulty > 0 else None

        if schedule.state == CardState.NEW or stability is None or difficulty is None:
            # No memory state yet: the algorithm's first-review path
            return FsrsCard(card_id=0, state=FsrsState.Learning, step=0, due=schedule.due)

        state = FsrsState(int(schedule.state))
        step = None
        if state in (FsrsState.Learning, FsrsState.Relearning):
            step = schedule.step if schedule.step is not None else 0

        return FsrsCard(
            card_id=0,
            state=state,
            step=step,
            stability=stability,
            difficulty=difficulty,
            due=schedule.due,
            last_review=schedule.last_review,
        )

    # ---------- Contract ----------

    def create_schedule(self, now: datetime | None = None) -> Schedule:
        """The canonical unseen state: New, due immediately."""
        now = _utc(now)
        return Schedule(due=now, added_to_queue_at=now)

    def rate(
        self, schedule: Schedule, rating: Rating, now: datetime | None = None
    ) -> tuple[Schedule, RatingLog]:
        now = _utc(now)
        rating = Rating(rating)

        reviewed, _ = self._fsrs.review_card(
            self._to_fsrs_card(schedule), FsrsRating(int(rating)), now
        )

        elapsed = days_between(schedule.last_review, now) if schedule.last_review else 0.0
        lapses = schedule.lapses
        if rating == Rating.AGAIN and schedule.state == CardState.REVIEW:
            lapses += 1

        next_state = CardState(int(reviewed.state))
        scheduled_days = max(0.0, days_between(now, reviewed.due))

        updated = Schedule(
            due=reviewed.due,
            stability=reviewed.stability or 0.0,
            difficulty=reviewed.difficulty or 0.0,
            elapsed_days=max(0.0, elapsed),
            scheduled_days=scheduled_days,
            reps=schedule.reps + 1,
            lapses=lapses,
            state=next_state,
            last_review=now,
            added_to_queue_at=schedule.added_to_queue_at,
            step=reviewed.step,
        )
        log = RatingLog(
            rating=rating,
            state=schedule.state,
            due=schedule.due,
            stability=schedule.stability,
            difficulty=schedule.difficulty,
            elapsed_days=max(0.0, elapsed),
            last_elapsed_days=schedule.elapsed_days,
            last_scheduled_days=schedule.scheduled_days,
            last_review=schedule.last_review,
            step=schedule.step,
            scheduled_days=scheduled_days,
            next_due=updated.due,
            next_state=next_state,
            review=now,
        )
        return updated, log

    def rollback(self, schedule: Schedule, log: RatingLog | ReviewLogEntry) -> Schedule:
        """
        Invert a transition using its log fields.

        Session undo does not use this: it restores the stored pre-rating
        Schedule verbatim, which is authoritative.
        """
        if log.state == CardState.NEW:
            return Schedule(due=log.due, added_to_queue_at=schedule.added_to_queue_at)

        lapses = schedule.lapses
        if log.rating == Rating.AGAIN and log.state == CardState.REVIEW:
            lapses = max(0, lapses - 1)

        return Schedule(
            due=log.due,
            stability=log.stability,
            difficulty=log.difficulty,
            elapsed_days=log.last_elapsed_days,
            scheduled_days=log.last_scheduled_days,
            reps=max(0, schedule.reps - 1),
            lapses=lapses,
            state=log.state,
            last_review=log.last_review,
            added_to_queue_at=schedule.added_to_queue_at,
            step=log.step,
        )

    def preview(
        self, schedule: Schedule, now: datetime | None = None
    ) -> dict[Rating, IntervalPreview]:
        """Outcome of each rating, without committing anything."""
        now = _utc(now)
        card = self._to_fsrs_card(schedule)
        result: dict[Rating, IntervalPreview] = {}
        for rating in Rating:
            reviewed, _ = self._fsrs.review_card(card, FsrsRating(int(rating)), now)
            interval = max(0.0, days_between(now, reviewed.due))
            result[rating] = IntervalPreview(
                due=reviewed.due,
                interval_days=interval,
                interval_label=format_interval(interval),
            )
        return result

    def retrievability(self, schedule: Schedule, now: datetime | None = None) -> float:
        """Current recall probability; 0.0 for a card that was never reviewed."""
        if schedule.state == CardState.NEW or schedule.last_review is None:
            return 0.0
        value = self._fsrs.get_card_retrievability(self._to_fsrs_card(schedule), _utc(now))
        return max(0.0, min(1.0, float(value)))
