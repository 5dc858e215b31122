from datetime import timedelta

import pytest

from atomic_review.domain.errors import (
    CardExistsError,
    CardNotFoundError,
    ScheduleNotFoundError,
)
from atomic_review.domain.models import Card, CardState, Rating, Schedule


def _review_card(path: str, queue_id: str, now, days_overdue: int = 3) -> Card:
    return Card(
        note_path=path,
        note_id="01TESTCARD",
        schedules={
            queue_id: Schedule(
                due=now - timedelta(days=days_overdue),
                stability=4.0,
                difficulty=6.0,
                scheduled_days=4.0,
                reps=2,
                lapses=0,
                state=CardState.REVIEW,
                last_review=now - timedelta(days=days_overdue + 4),
            )
        },
    )


# ---------- create_card ----------


def test_create_card_is_idempotent(card_service, store, now):
    first = card_service.create_card("a.md", "q1", now)
    second = card_service.create_card("a.md", "q1", now + timedelta(hours=1))

    assert first.note_id == second.note_id
    assert list(store.get_cards()) == ["a.md"]
    assert list(store.get_card("a.md").schedules) == ["q1"]
    assert store.get_card("a.md").schedules["q1"].due == now


def test_create_card_adds_missing_queue(card_service, store, now):
    card_service.create_card("a.md", "q1", now)
    card_service.create_card("a.md", "q2", now)

    card = store.get_card("a.md")
    assert set(card.schedules) == {"q1", "q2"}
    assert card.schedules["q2"].state == CardState.NEW


# ---------- update_schedule ----------


def test_update_schedule_overdue_again(card_service, store, now):
    store.put_card(_review_card("a.md", "q1", now))

    entry = card_service.update_schedule("a.md", "q1", Rating.AGAIN, "session_1", now)

    schedule = store.get_card("a.md").schedules["q1"]
    assert schedule.reps == 3
    assert schedule.lapses == 1
    assert schedule.state in (CardState.LEARNING, CardState.RELEARNING)

    reviews = store.get_reviews()
    assert reviews == [entry]
    assert entry.rating == Rating.AGAIN
    assert entry.card_path == "a.md"
    assert entry.queue_id == "q1"
    assert entry.session_id == "session_1"
    assert entry.state == CardState.REVIEW
    assert entry.next_state == schedule.state
    assert entry.next_due == schedule.due
    assert not entry.undone


def test_update_schedule_touches_only_its_queue(card_service, store, now):
    card_service.create_card("a.md", "q1", now)
    card_service.create_card("a.md", "q2", now)
    untouched = store.get_card("a.md").schedules["q2"]

    card_service.update_schedule("a.md", "q1", Rating.GOOD, now=now)

    card = store.get_card("a.md")
    assert card.schedules["q1"].reps == 1
    assert card.schedules["q2"] == untouched


def test_update_schedule_missing_card(card_service):
    with pytest.raises(CardNotFoundError):
        card_service.update_schedule("missing.md", "q1", Rating.GOOD)


def test_update_schedule_missing_queue(card_service, now):
    card_service.create_card("a.md", "q1", now)
    with pytest.raises(ScheduleNotFoundError):
        card_service.update_schedule("a.md", "other", Rating.GOOD)


def test_restore_schedule_is_verbatim(card_service, store, now):
    card_service.create_card("a.md", "q1", now)
    before = store.get_card("a.md").schedules["q1"]

    card_service.update_schedule("a.md", "q1", Rating.EASY, now=now)
    card_service.restore_schedule("a.md", "q1", before)

    assert store.get_card("a.md").schedules["q1"] == before


def test_restore_schedule_missing_card(card_service, now):
    with pytest.raises(CardNotFoundError):
        card_service.restore_schedule("x.md", "q1", Schedule(due=now))


# ---------- Membership ----------


def test_ensure_schedule(card_service, store, now):
    card_service.create_card("a.md", "q1", now)
    created = card_service.ensure_schedule("a.md", "q2")
    assert created.state == CardState.NEW
    assert card_service.ensure_schedule("a.md", "q2") == created
    assert set(store.get_card("a.md").schedules) == {"q1", "q2"}


def test_remove_from_queue_deletes_empty_card(card_service, store, now):
    card_service.create_card("a.md", "q1", now)
    card_service.create_card("a.md", "q2", now)

    assert card_service.remove_from_queue("a.md", "q1")
    assert set(store.get_card("a.md").schedules) == {"q2"}

    assert card_service.remove_from_queue("a.md", "q2")
    assert store.get_card("a.md") is None

    assert not card_service.remove_from_queue("a.md", "q2")


def test_rename_moves_card_and_history(card_service, store, now):
    card_service.create_card("old.md", "q1", now)
    card_service.update_schedule("old.md", "q1", Rating.GOOD, now=now)

    card_service.rename("old.md", "new.md")

    assert not card_service.has_card("old.md")
    assert card_service.get_card("new.md").note_path == "new.md"
    assert [r.card_path for r in store.get_reviews()] == ["new.md"]


def test_rename_onto_existing_card_is_refused(card_service, store, now):
    card_service.create_card("a.md", "q1", now)
    card_service.create_card("b.md", "q2", now)
    card_service.update_schedule("b.md", "q2", Rating.GOOD, now=now)

    with pytest.raises(CardExistsError):
        card_service.rename("a.md", "b.md")

    assert list(card_service.get_card("a.md").schedules) == ["q1"]
    assert list(card_service.get_card("b.md").schedules) == ["q2"]
    assert [r.card_path for r in store.get_reviews()] == ["b.md"]


def test_rename_to_same_path_is_a_no_op(card_service, now):
    card = card_service.create_card("a.md", "q1", now)
    assert card_service.rename("a.md", "a.md") is card
    assert card_service.has_card("a.md")


# ---------- Queries ----------


def test_due_overdue_and_new_queries(card_service, store, now):
    store.put_card(_review_card("overdue.md", "q1", now, days_overdue=3))
    card_service.create_card("new.md", "q1", now)
    future = _review_card("future.md", "q1", now)
    future.schedules["q1"] = future.schedules["q1"].model_copy(
        update={"due": now + timedelta(days=5)}
    )
    store.put_card(future)
    card_service.create_card("elsewhere.md", "q2", now)

    assert {c.note_path for c in card_service.get_cards_for_queue("q1")} == {
        "overdue.md",
        "new.md",
        "future.md",
    }
    assert {c.note_path for c in card_service.get_due_cards("q1", now)} == {
        "overdue.md",
        "new.md",
    }
    assert [c.note_path for c in card_service.get_overdue_cards("q1", now)] == ["overdue.md"]
    assert [c.note_path for c in card_service.get_new_cards("q1")] == ["new.md"]
    assert card_service.get_card_count("q1") == 3


def test_retrievability_and_preview(card_service, store, now):
    store.put_card(_review_card("a.md", "q1", now))

    r = card_service.get_retrievability("a.md", "q1", now)
    assert r is not None and 0.0 < r < 1.0
    preview = card_service.get_scheduling_preview("a.md", "q1", now)
    assert set(preview) == set(Rating)

    assert card_service.get_retrievability("a.md", "other", now) is None
    assert card_service.get_scheduling_preview("missing.md", "q1", now) is None
