"""
Domain models for scheduling state.

Persisted records are pydantic models so the schema parser can validate a
loaded document field by field. Session state and algorithm results are
in-memory only and use plain dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Annotated, Any, Literal

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    field_validator,
)

from .constants import (
    CURRENT_SCHEMA_VERSION,
    DEFAULT_MAX_REVIEWS_PER_DAY,
    DEFAULT_MAXIMUM_INTERVAL,
    DEFAULT_NEW_CARDS_PER_DAY,
    DEFAULT_REQUEST_RETENTION,
    MAX_DAILY_LIMIT,
    MAX_MAXIMUM_INTERVAL,
    MAX_REQUEST_RETENTION,
    MIN_DAILY_LIMIT,
    MIN_MAXIMUM_INTERVAL,
    MIN_REQUEST_RETENTION,
    SNAPSHOT_VERSION,
)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps come from older documents and were always written in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


Timestamp = Annotated[datetime, AfterValidator(_as_utc)]


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# ---------- Enums ----------


class CardState(IntEnum):
    NEW = 0
    LEARNING = 1
    REVIEW = 2
    RELEARNING = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()


class Rating(IntEnum):
    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()


class QueueOrder(str, Enum):
    MIXED = "mixed-anki"
    DUE_OVERDUE_FIRST = "due-overdue-first"
    DUE_CHRONOLOGICAL = "due-chronological"
    STATE_PRIORITY = "state-priority"
    RETRIEVABILITY_ASC = "retrievability-asc"
    LOAD_BALANCING = "load-balancing"
    RANDOM = "random"
    DIFFICULTY_DESC = "difficulty-desc"
    DIFFICULTY_ASC = "difficulty-asc"


# ---------- Cards ----------


class Schedule(BaseModel):
    """
    Scheduling state of one card inside one queue.

    Frozen: a new Schedule is produced by the Scheduler for every transition,
    so history snapshots can hold references without copying.
    """

    model_config = ConfigDict(frozen=True)

    due: Timestamp
    stability: float = Field(default=0.0, ge=0)
    difficulty: float = Field(default=0.0, ge=0, le=10)
    elapsed_days: float = Field(default=0.0, ge=0)
    scheduled_days: float = Field(default=0.0, ge=0)
    reps: int = Field(default=0, ge=0)
    lapses: int = Field(default=0, ge=0)
    state: CardState = CardState.NEW
    last_review: Timestamp | None = None
    added_to_queue_at: Timestamp = Field(default_factory=_now)
    step: int | None = Field(default=None, ge=0)  # learning step for (re)learning cards


class Card(BaseModel):
    note_path: str
    note_id: str
    schedules: dict[str, Schedule]
    created_at: Timestamp = Field(default_factory=_now)
    last_modified: Timestamp = Field(default_factory=_now)

    @field_validator("schedules")
    @classmethod
    def _has_schedule(cls, v: dict[str, Schedule]) -> dict[str, Schedule]:
        if not v:
            raise ValueError("a card must hold at least one schedule")
        return v


# ---------- Queues ----------


class QueueStats(BaseModel):
    total_notes: int = Field(default=0, ge=0)
    new_notes: int = Field(default=0, ge=0)
    due_notes: int = Field(default=0, ge=0)
    reviewed_today: int = Field(default=0, ge=0)
    last_updated: Timestamp = EPOCH  # stale until first computed


class CriterionConfig(BaseModel):
    type: str
    params: dict[str, Any] = Field(default_factory=dict)


class SelectionCriteria(BaseModel):
    type: Literal["folder", "tag", "custom"] = "folder"
    folders: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    custom_criteria: list[CriterionConfig] = Field(default_factory=list)


class Queue(BaseModel):
    id: str
    name: str
    created_at: Timestamp = Field(default_factory=_now)
    criteria: SelectionCriteria = Field(default_factory=SelectionCriteria)
    stats: QueueStats = Field(default_factory=QueueStats)
    order: QueueOrder | None = None  # overrides Settings.queue_order


# ---------- Review log ----------


class ReviewLogEntry(BaseModel):
    """
    One rating event. Only `undone` may change after creation (False -> True),
    and `card_path` follows renames.
    """

    id: str
    card_path: str
    queue_id: str
    rating: Rating

    # Pre-rating snapshot
    state: CardState
    due: Timestamp
    stability: float = 0.0
    difficulty: float = 0.0
    elapsed_days: float = 0.0
    last_elapsed_days: float = 0.0
    last_scheduled_days: float = 0.0
    last_review: Timestamp | None = None
    step: int | None = None

    # Post-rating
    scheduled_days: float = 0.0
    next_due: Timestamp | None = None
    next_state: CardState | None = None

    review: Timestamp
    session_id: str = ""
    undone: bool = False


# ---------- Orphans ----------


class OrphanResolution(BaseModel):
    action: Literal["relink", "remove"]
    new_path: str | None = None
    resolved_at: Timestamp = Field(default_factory=_now)


class OrphanRecord(BaseModel):
    id: str
    original_path: str
    card_data: Card
    detected_at: Timestamp = Field(default_factory=_now)
    status: Literal["pending", "resolved", "removed"] = "pending"
    resolution: OrphanResolution | None = None


# ---------- Settings ----------


class PropertyMatch(BaseModel):
    key: str
    value: str = ""
    operator: Literal["equals", "contains", "exists"] = "equals"


class FsrsParams(BaseModel):
    """Algorithm parameters. Out-of-range values are clamped, never rejected."""

    request_retention: float = DEFAULT_REQUEST_RETENTION
    maximum_interval: int = DEFAULT_MAXIMUM_INTERVAL
    enable_fuzz: StrictBool = True

    @field_validator("request_retention")
    @classmethod
    def _clamp_retention(cls, v: float) -> float:
        return _clamp(v, MIN_REQUEST_RETENTION, MAX_REQUEST_RETENTION)

    @field_validator("maximum_interval")
    @classmethod
    def _clamp_interval(cls, v: int) -> int:
        return int(_clamp(v, MIN_MAXIMUM_INTERVAL, MAX_MAXIMUM_INTERVAL))


class Settings(BaseModel):
    # Note selection
    selection_mode: Literal["folder", "tag"] = "folder"
    tracked_folders: list[str] = Field(default_factory=list)
    tracked_tags: list[str] = Field(default_factory=list)

    # Exclusions
    excluded_note_names: list[str] = Field(default_factory=list)
    excluded_tags: list[str] = Field(default_factory=list)
    excluded_properties: list[PropertyMatch] = Field(default_factory=list)

    # Review
    queue_order: QueueOrder = QueueOrder.MIXED
    new_cards_per_day: int = DEFAULT_NEW_CARDS_PER_DAY
    max_reviews_per_day: int = DEFAULT_MAX_REVIEWS_PER_DAY
    show_note_stats: StrictBool = True
    show_predicted_intervals: StrictBool = True
    show_session_stats: StrictBool = True

    # UI
    sidebar_position: Literal["left", "right"] = "right"

    fsrs_params: FsrsParams = Field(default_factory=FsrsParams)

    @field_validator("new_cards_per_day", "max_reviews_per_day")
    @classmethod
    def _clamp_daily_limit(cls, v: int) -> int:
        return int(_clamp(v, MIN_DAILY_LIMIT, MAX_DAILY_LIMIT))


# ---------- Documents ----------


class StoreData(BaseModel):
    """The primary persisted document."""

    version: int = CURRENT_SCHEMA_VERSION
    settings: Settings = Field(default_factory=Settings)
    queues: list[Queue] = Field(default_factory=list)
    cards: dict[str, Card] = Field(default_factory=dict)
    reviews: list[ReviewLogEntry] = Field(default_factory=list)
    orphans: list[OrphanRecord] = Field(default_factory=list)


class BackupEntry(BaseModel):
    id: str
    timestamp: Timestamp
    snapshot_version: int = SNAPSHOT_VERSION
    data: dict[str, Any]  # raw primary document, re-validated on restore


class PersistedSession(BaseModel):
    """Lightweight projection of a session for resume. Undo history is not kept."""

    queue_id: str
    session_id: str
    current_index: int = Field(ge=0)
    reviewed: int = Field(default=0, ge=0)
    ratings: dict[int, int] = Field(default_factory=dict)
    review_queue: list[str]
    started_at: Timestamp


# ---------- In-memory ----------


def empty_ratings() -> dict[Rating, int]:
    return {r: 0 for r in Rating}


@dataclass
class HistoryEntry:
    note_path: str
    rating: Rating
    review_log_id: str
    previous_schedule: Schedule


@dataclass
class SessionState:
    queue_id: str
    session_id: str
    review_queue: list[str]
    started_at: datetime
    current_index: int = 0
    reviewed: int = 0
    ratings: dict[Rating, int] = field(default_factory=empty_ratings)
    history: list[HistoryEntry] = field(default_factory=list)

    @property
    def total_notes(self) -> int:
        return len(self.review_queue)

    @property
    def is_complete(self) -> bool:
        return self.current_index >= len(self.review_queue)

    @property
    def current_note_path(self) -> str | None:
        if self.is_complete:
            return None
        return self.review_queue[self.current_index]

    def to_persisted(self) -> PersistedSession:
        return PersistedSession(
            queue_id=self.queue_id,
            session_id=self.session_id,
            current_index=self.current_index,
            reviewed=self.reviewed,
            ratings={int(r): n for r, n in self.ratings.items()},
            review_queue=list(self.review_queue),
            started_at=self.started_at,
        )


@dataclass
class SyncResult:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)  # recorded only, never deleted
    unchanged: int = 0


@dataclass(frozen=True)
class IntervalPreview:
    due: datetime
    interval_days: float
    interval_label: str


@dataclass(frozen=True)
class RatingLog:
    """
    Log fields produced by one scheduling transition.

    Carries the pre-rating snapshot so Scheduler.rollback can invert it.
    """

    rating: Rating
    state: CardState
    due: datetime
    stability: float
    difficulty: float
    elapsed_days: float
    last_elapsed_days: float
    last_scheduled_days: float
    last_review: datetime | None
    step: int | None
    scheduled_days: float
    next_due: datetime
    next_state: CardState
    review: datetime


@dataclass(frozen=True)
class DailyLimits:
    """Remaining per-day budgets for capped ordering strategies."""

    new_cards: int
    reviews: int


@dataclass(frozen=True)
class NoteInfo:
    """A note on the host side, as offered for orphan matching."""

    path: str
    created_at: datetime | None = None
    modified_at: datetime | None = None


@dataclass(frozen=True)
class OrphanMatch:
    path: str
    confidence: float
    reason: str
