"""Exception taxonomy for atomic-review.

Session-usage problems (no active session, nothing to undo, empty queue) are
not exceptions: they are reported through the Notifier and return False.
"""


class ReviewError(Exception):
    """Base class for all atomic-review errors."""


class DataValidationError(ReviewError):
    """A persisted field is malformed. Always recovered by the schema parser."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class NotFoundError(ReviewError):
    """A targeted mutation referenced a record that does not exist."""


class CardNotFoundError(NotFoundError):
    def __init__(self, path: str):
        super().__init__(f"Card not found for path: {path}")
        self.path = path


class ScheduleNotFoundError(NotFoundError):
    def __init__(self, path: str, queue_id: str):
        super().__init__(f"Schedule not found for queue {queue_id!r} on {path}")
        self.path = path
        self.queue_id = queue_id


class QueueNotFoundError(NotFoundError):
    def __init__(self, queue_id: str):
        super().__init__(f"Queue not found: {queue_id}")
        self.queue_id = queue_id


class OrphanNotFoundError(NotFoundError):
    def __init__(self, orphan_id: str):
        super().__init__(f"Orphan not found: {orphan_id}")
        self.orphan_id = orphan_id


class CardExistsError(ReviewError):
    def __init__(self, path: str):
        super().__init__(f"A card already exists for path: {path}")
        self.path = path


class QueueExistsError(ReviewError):
    def __init__(self, queue_id: str):
        super().__init__(f'Queue with ID "{queue_id}" already exists')
        self.queue_id = queue_id


class SaveError(ReviewError):
    """Writing the primary store failed after every retry."""

    def __init__(self, attempts: int, cause: BaseException | None = None):
        super().__init__(f"Failed to save data after {attempts} attempts: {cause}")
        self.attempts = attempts
        self.cause = cause
