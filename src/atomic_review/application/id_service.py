"""Stable identifiers for cards, queues, reviews and sessions."""

from ulid import ULID


def generate_id() -> str:
    """Generate a sortable unique ID using ULID."""
    return str(ULID())


def generate_session_id() -> str:
    return f"session_{ULID()}"


def generate_review_log_id() -> str:
    return f"review_{ULID()}"
