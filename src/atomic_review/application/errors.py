"""Centralized error reporting: log, optionally notify the user, and move on."""

import logging

from atomic_review.domain.ports import Notifier

logger = logging.getLogger(__name__)

MAX_NOTICE_LENGTH = 80


def handle_error(
    error: BaseException,
    notifier: Notifier | None = None,
    component: str = "atomic-review",
    notify_user: bool = True,
) -> None:
    logger.error(f"{component}: {error}", exc_info=error)

    if notify_user and notifier is not None:
        message = str(error) or type(error).__name__
        if len(message) > MAX_NOTICE_LENGTH:
            message = message[: MAX_NOTICE_LENGTH - 3] + "..."
        notifier.notify(message, error=True)
