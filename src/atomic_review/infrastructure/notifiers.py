"""Notifier adapters for user-facing notices."""

import logging

from atomic_review.domain.ports import Notifier

logger = logging.getLogger(__name__)


class LogNotifier(Notifier):
    """Routes notices to the log. The default when no UI is attached."""

    def notify(self, message: str, *, error: bool = False) -> None:
        if error:
            logger.error(message)
        else:
            logger.info(message)
