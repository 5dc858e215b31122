"""
Ordering strategies for a queue's due set.

order_due_cards() is a pure function of its inputs: the cards, the queue
they are ordered for, the strategy and the remaining daily budgets. Every
comparator falls back to due ascending unless the strategy says otherwise.
"""

import logging
import random
from collections.abc import Callable

from atomic_review.domain.models import Card, CardState, DailyLimits, QueueOrder

logger = logging.getLogger(__name__)

# Learning > Relearning > Review > New
STATE_PRIORITY: dict[CardState, int] = {
    CardState.LEARNING: 1,
    CardState.RELEARNING: 2,
    CardState.REVIEW: 3,
    CardState.NEW: 4,
}


def _by_due(cards: list[Card], queue_id: str) -> list[Card]:
    return sorted(cards, key=lambda c: c.schedules[queue_id].due)


def _mixed(cards: list[Card], queue_id: str, limits: DailyLimits) -> list[Card]:
    """Learning first, then capped new, then capped review; each by due."""
    learning: list[Card] = []
    new: list[Card] = []
    review: list[Card] = []
    for card in cards:
        state = card.schedules[queue_id].state
        if state in (CardState.LEARNING, CardState.RELEARNING):
            learning.append(card)
        elif state == CardState.NEW:
            new.append(card)
        else:
            review.append(card)

    selected_new = _by_due(new, queue_id)[: max(0, limits.new_cards)]
    selected_review = _by_due(review, queue_id)[: max(0, limits.reviews)]
    if len(new) > len(selected_new) or len(review) > len(selected_review):
        logger.debug(
            f"Daily caps held back {len(new) - len(selected_new)} new and "
            f"{len(review) - len(selected_review)} review cards in {queue_id}"
        )
    return _by_due(learning, queue_id) + selected_new + selected_review


def order_due_cards(
    cards: list[Card],
    queue_id: str,
    strategy: QueueOrder,
    limits: DailyLimits,
    retrievability: Callable[[Card], float | None] | None = None,
    rng: random.Random | None = None,
) -> list[Card]:
    """
    Order (and for capped strategies, trim) the due cards of one queue.

    Args:
        cards: Due cards, each holding a schedule for `queue_id`
        queue_id: Queue whose schedules drive the ordering
        strategy: Ordering strategy
        limits: Remaining new/review budgets for today
        retrievability: Recall estimate per card; a missing estimate sorts last
        rng: Randomness source for the random strategy

    Returns:
        A new list; `cards` is not modified.
    """
    def due(card: Card):
        return card.schedules[queue_id].due

    if strategy == QueueOrder.MIXED:
        return _mixed(cards, queue_id, limits)

    if strategy == QueueOrder.STATE_PRIORITY:
        return sorted(
            cards, key=lambda c: (STATE_PRIORITY.get(c.schedules[queue_id].state, 5), due(c))
        )

    if strategy == QueueOrder.RETRIEVABILITY_ASC:
        def recall(card: Card) -> float:
            value = retrievability(card) if retrievability else None
            return 1.0 if value is None else value

        return sorted(cards, key=lambda c: (recall(c), due(c)))

    if strategy == QueueOrder.LOAD_BALANCING:
        return _by_due(cards, queue_id)[: max(0, limits.reviews)]

    if strategy == QueueOrder.DIFFICULTY_DESC:
        return sorted(cards, key=lambda c: (-c.schedules[queue_id].difficulty, due(c)))

    if strategy == QueueOrder.DIFFICULTY_ASC:
        return sorted(cards, key=lambda c: (c.schedules[queue_id].difficulty, due(c)))

    if strategy == QueueOrder.RANDOM:
        shuffled = list(cards)
        (rng or random).shuffle(shuffled)  # Fisher-Yates
        return shuffled

    # due-chronological and due-overdue-first: overdue items already sort first
    return _by_due(cards, queue_id)
