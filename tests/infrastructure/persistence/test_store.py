"""Tests for DataStore: debounced saves, retries, backups, compaction and record CRUD."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from conftest import FailingBackend, RecordingNotifier

from atomic_review.domain.errors import (
    CardExistsError,
    CardNotFoundError,
    OrphanNotFoundError,
    QueueExistsError,
    QueueNotFoundError,
    SaveError,
)
from atomic_review.domain.models import (
    Card,
    CardState,
    OrphanRecord,
    Queue,
    QueueStats,
    Rating,
    ReviewLogEntry,
    Schedule,
)
from atomic_review.infrastructure.persistence import DataStore, JsonFileBackend, MemoryBackend

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_card(path: str) -> Card:
    return Card(note_path=path, note_id=f"id-{path}", schedules={"q1": Schedule(due=T0)})


def make_review(i: int, path: str = "a.md", undone: bool = False) -> ReviewLogEntry:
    return ReviewLogEntry(
        id=f"review_{i}",
        card_path=path,
        queue_id="q1",
        rating=Rating.GOOD,
        state=CardState.NEW,
        due=T0,
        review=T0 + timedelta(minutes=i),
        undone=undone,
    )


def fast_store(backend, backups=None, **kwargs) -> DataStore:
    options = {"save_debounce": 0.05, "min_save_interval": 0.0, "save_retry_base_delay": 0.001}
    options.update(kwargs)
    return DataStore(backend, backups, RecordingNotifier(), **options)


# ---------- Debounce ----------


@pytest.mark.asyncio
async def test_saves_in_one_window_coalesce():
    backend = MemoryBackend()
    store = fast_store(backend)
    await store.load()

    for i in range(5):
        store.put_card(make_card(f"{i}.md"))
    assert backend.writes == 0
    assert store.is_dirty

    await asyncio.sleep(0.2)

    assert backend.writes == 1
    assert sorted(backend.data["cards"]) == [f"{i}.md" for i in range(5)]
    assert not store.is_dirty


@pytest.mark.asyncio
async def test_flush_without_changes_does_not_write():
    backend = MemoryBackend()
    store = fast_store(backend)
    await store.load()

    await store.flush()

    assert backend.writes == 0


@pytest.mark.asyncio
async def test_force_save_writes_immediately():
    backend = MemoryBackend()
    store = fast_store(backend, save_debounce=60.0)
    await store.load()
    store.put_card(make_card("a.md"))

    await store.force_save()

    assert backend.writes == 1
    assert "a.md" in backend.data["cards"]
    assert not store.is_dirty


@pytest.mark.asyncio
async def test_reads_see_unsaved_mutations():
    store = fast_store(MemoryBackend(), save_debounce=60.0)
    await store.load()
    store.put_card(make_card("a.md"))
    assert store.get_card("a.md").note_id == "id-a.md"


# ---------- Retry ----------


@pytest.mark.asyncio
async def test_write_retries_then_succeeds():
    backend = FailingBackend(failures=2)
    store = fast_store(backend)
    await store.load()
    store.put_card(make_card("a.md"))

    await store.flush()

    assert backend.attempts == 3
    assert backend.writes == 1
    assert not store.is_dirty


@pytest.mark.asyncio
async def test_exhausted_retries_raise_and_stay_dirty():
    backend = FailingBackend(failures=10)
    store = fast_store(backend, save_max_attempts=3)
    await store.load()
    store.put_card(make_card("a.md"))

    with pytest.raises(SaveError) as exc:
        await store.flush()

    assert exc.value.attempts == 3
    assert backend.attempts == 3
    assert store.is_dirty
    assert ("Failed to save review data", True) in store.notifier.messages

    # A later attempt can still succeed
    backend.failures = 0
    await store.flush()
    assert not store.is_dirty
    assert "a.md" in backend.data["cards"]


@pytest.mark.asyncio
async def test_timer_failure_is_contained():
    backend = FailingBackend(failures=10)
    store = fast_store(backend, save_max_attempts=1)
    await store.load()
    store.put_card(make_card("a.md"))

    await asyncio.sleep(0.2)

    assert store.is_dirty
    assert backend.writes == 0


# ---------- Round trip ----------


@pytest.mark.asyncio
async def test_save_then_load_round_trip():
    backend = MemoryBackend()
    store = fast_store(backend)
    await store.load()
    store.add_queue(Queue(id="q1", name="Q1", created_at=T0))
    store.put_card(make_card("a.md"))
    store.add_review(make_review(1))
    store.update_settings(new_cards_per_day=3)
    await store.force_save()

    reloaded = fast_store(backend)
    result = await reloaded.load()

    assert result.clean
    assert reloaded.get_cards() == store.get_cards()
    assert reloaded.get_queues() == store.get_queues()
    assert reloaded.get_reviews() == store.get_reviews()
    assert reloaded.settings == store.settings
    assert not reloaded.is_dirty


@pytest.mark.asyncio
async def test_load_empty_backend():
    store = fast_store(MemoryBackend())
    result = await store.load()
    assert result.clean
    assert store.get_cards() == {}
    assert not store.is_dirty


# ---------- Quarantine ----------


@pytest.mark.asyncio
async def test_malformed_queues_are_quarantined():
    raw = {
        "version": 2,
        "settings": {"new_cards_per_day": 4},
        "queues": "not-a-list",
        "cards": {"a.md": make_card("a.md").model_dump(mode="json")},
    }
    backups = MemoryBackend()
    store = fast_store(MemoryBackend(raw), backups)

    result = await store.load()

    assert result.defaulted == ["queues"]
    assert store.get_queues() == []
    assert store.settings.new_cards_per_day == 4
    assert "a.md" in store.get_cards()
    assert store.is_dirty
    [backup] = store.list_backups()
    assert backup.data == raw
    assert backups.data[0]["data"] == raw


@pytest.mark.asyncio
async def test_corrupt_blob_is_quarantined_raw():
    store = fast_store(MemoryBackend("{truncated"), MemoryBackend())
    result = await store.load()
    assert not result.clean
    [backup] = store.list_backups()
    assert backup.data == {"raw": "{truncated"}
    assert not await store.restore_from_backup(backup.id)


@pytest.mark.asyncio
async def test_invalid_utf8_file_loads_with_defaults(tmp_path):
    path = tmp_path / "data.json"
    path.write_bytes(b'{"version": 2, "queues": "\xff\xfe", "settings": {"new_cards_per_day": 7}}')
    store = fast_store(JsonFileBackend(path), MemoryBackend())

    result = await store.load()

    assert result.defaulted == ["queues"]
    assert store.get_queues() == []
    assert store.settings.new_cards_per_day == 7
    [backup] = store.list_backups()
    assert backup.data["queues"] == "\ufffd\ufffd"


@pytest.mark.asyncio
async def test_migrated_document_is_rewritten():
    backend = MemoryBackend({"version": 1, "settings": {"newCardsPerDay": 9}})
    store = fast_store(backend)
    await store.load()
    assert store.is_dirty

    await store.flush()

    assert backend.data["version"] == 2
    assert backend.data["settings"]["new_cards_per_day"] == 9


# ---------- Backups ----------


@pytest.mark.asyncio
async def test_flush_rotates_previous_document():
    backend = MemoryBackend()
    backups = MemoryBackend()
    store = fast_store(backend, backups, backup_interval=0.0, max_backups=2)
    await store.load()

    for i in range(4):
        store.put_card(make_card(f"{i}.md"))
        await store.flush()

    listed = store.list_backups()
    assert len(listed) == 2
    assert len(backups.data) == 2
    # Newest first, each holding the document as it was before the next write
    assert sorted(listed[0].data["cards"]) == ["0.md", "1.md", "2.md"]
    assert sorted(listed[1].data["cards"]) == ["0.md", "1.md"]


@pytest.mark.asyncio
async def test_backup_rotation_is_throttled():
    backups = MemoryBackend()
    store = fast_store(MemoryBackend(), backups, backup_interval=3600.0)
    await store.load()

    for i in range(3):
        store.put_card(make_card(f"{i}.md"))
        await store.flush()

    assert len(store.list_backups()) == 1


@pytest.mark.asyncio
async def test_restarts_without_changes_keep_backups():
    backend, backups = MemoryBackend(), MemoryBackend()
    store = fast_store(backend, backups, max_backups=5)
    await store.load()
    store.put_card(make_card("a.md"))
    await store.force_save()
    entry = await store.create_backup()

    for _ in range(6):
        restarted = fast_store(backend, backups, max_backups=5)
        await restarted.load()
        await restarted.force_save()

    assert [b.id for b in restarted.list_backups()] == [entry.id]


@pytest.mark.asyncio
async def test_unchanged_document_is_not_backed_up_twice():
    backend, backups = MemoryBackend(), MemoryBackend()
    store = fast_store(backend, backups, backup_interval=0.0)
    await store.load()
    store.put_card(make_card("a.md"))

    await store.force_save()
    await store.force_save()
    await store.force_save()

    [backup] = store.list_backups()
    assert list(backup.data["cards"]) == ["a.md"]


@pytest.mark.asyncio
async def test_backup_throttle_uses_newest_backup_time():
    backend = MemoryBackend()
    writer = fast_store(backend)
    await writer.load()
    writer.put_card(make_card("a.md"))
    await writer.force_save()

    old = {"id": "backup_old", "timestamp": T0.isoformat(), "data": {}}
    stale = fast_store(backend, MemoryBackend([old]), backup_interval=3600.0)
    await stale.load()
    await stale.force_save()
    assert len(stale.list_backups()) == 2

    now = datetime.now(timezone.utc)
    recent = {"id": "backup_recent", "timestamp": now.isoformat(), "data": {}}
    fresh = fast_store(backend, MemoryBackend([recent]), backup_interval=3600.0)
    await fresh.load()
    await fresh.force_save()
    assert [b.id for b in fresh.list_backups()] == ["backup_recent"]


@pytest.mark.asyncio
async def test_create_and_restore_backup():
    backend = MemoryBackend()
    store = fast_store(backend, MemoryBackend(), max_backups=5)
    await store.load()
    store.put_card(make_card("keep.md"))
    entry = await store.create_backup()

    store.delete_card("keep.md")
    store.put_card(make_card("later.md"))

    assert await store.restore_from_backup(entry.id)

    assert list(store.get_cards()) == ["keep.md"]
    assert list(backend.data["cards"]) == ["keep.md"]
    # The replaced state is kept as a backup too
    assert any("later.md" in (b.data.get("cards") or {}) for b in store.list_backups())


@pytest.mark.asyncio
async def test_restore_unknown_or_newer_backup():
    store = fast_store(MemoryBackend(), MemoryBackend())
    await store.load()
    assert not await store.restore_from_backup("backup_missing")

    entry = await store.create_backup()
    entry.snapshot_version = 99
    assert not await store.restore_from_backup(entry.id)


@pytest.mark.asyncio
async def test_cleanup_old_backups():
    backups = MemoryBackend()
    store = fast_store(MemoryBackend(), backups, max_backups=10)
    await store.load()
    for _ in range(4):
        await store.create_backup()

    assert await store.cleanup_old_backups(keep=1) == 3
    assert len(store.list_backups()) == 1
    assert len(backups.data) == 1
    assert await store.cleanup_old_backups(keep=1) == 0


@pytest.mark.asyncio
async def test_malformed_backup_entries_are_dropped():
    good = {"id": "backup_1", "timestamp": T0.isoformat(), "data": {}}
    store = fast_store(MemoryBackend(), MemoryBackend([good, {"id": 5}]))
    await store.load()
    assert [b.id for b in store.list_backups()] == ["backup_1"]


# ---------- Review log ----------


@pytest.mark.asyncio
async def test_review_log_compaction():
    store = fast_store(MemoryBackend(), review_log_cap=10)
    await store.load()

    for i in range(11):
        store.add_review(make_review(i, undone=(i == 0)))
    assert len(store.get_reviews()) == 11

    store.add_review(make_review(11))

    reviews = store.get_reviews()
    assert len(reviews) == 10
    assert all(not r.undone for r in reviews)
    assert reviews[-1].id == "review_11"


def test_mark_review_undone(store):
    store.add_review(make_review(1))
    assert store.mark_review_undone("review_1")
    assert not store.mark_review_undone("review_1")
    assert not store.mark_review_undone("missing")
    assert store.get_reviews()[0].undone


# ---------- Records ----------


def test_queue_crud(store):
    store.add_queue(Queue(id="q1", name="Q1"))
    with pytest.raises(QueueExistsError):
        store.add_queue(Queue(id="q1", name="Dup"))

    updated = store.update_queue("q1", name="Renamed")
    assert updated.name == "Renamed"
    store.set_queue_stats("q1", QueueStats(total_notes=2))
    assert store.get_queue("q1").stats.total_notes == 2

    store.delete_queue("q1")
    assert store.get_queue("q1") is None
    with pytest.raises(QueueNotFoundError):
        store.delete_queue("q1")
    with pytest.raises(QueueNotFoundError):
        store.update_queue("q1", name="x")


def test_card_crud_and_rename(store):
    store.put_card(make_card("a.md"))
    store.add_review(make_review(1, "a.md"))
    store.add_review(make_review(2, "other.md"))

    moved = store.rename_card("a.md", "b.md")

    assert moved.note_path == "b.md"
    assert store.get_card("a.md") is None
    assert store.get_card("b.md") is moved
    assert [r.card_path for r in store.get_reviews()] == ["b.md", "other.md"]
    assert len(store.get_reviews_for_card("b.md")) == 1

    with pytest.raises(CardNotFoundError):
        store.rename_card("a.md", "c.md")
    store.put_card(make_card("c.md"))
    with pytest.raises(CardExistsError):
        store.rename_card("b.md", "c.md")
    assert store.get_card("b.md") is moved
    with pytest.raises(CardNotFoundError):
        store.update_card("a.md", last_modified=T0)

    assert store.delete_card("b.md")
    assert not store.delete_card("b.md")


def test_get_cards_returns_a_copy(store):
    store.put_card(make_card("a.md"))
    cards = store.get_cards()
    cards.pop("a.md")
    assert store.get_card("a.md") is not None


def test_orphan_crud(store):
    orphan = OrphanRecord(id="o1", original_path="a.md", card_data=make_card("a.md"))
    store.add_orphan(orphan)

    assert store.get_pending_orphans() == [orphan]
    store.update_orphan("o1", status="removed")
    assert store.get_pending_orphans() == []
    assert store.cleanup_resolved_orphans() == 1
    assert store.get_orphans() == []
    with pytest.raises(OrphanNotFoundError):
        store.update_orphan("o1", status="pending")


def test_snapshot_is_independent(store):
    store.put_card(make_card("a.md"))
    snap = store.snapshot()
    store.delete_card("a.md")
    assert "a.md" in snap.cards


def test_update_settings_revalidates(store):
    settings = store.update_settings(new_cards_per_day=5000, fsrs_params={"enable_fuzz": False})
    assert settings.new_cards_per_day == 1000
    assert settings.fsrs_params.enable_fuzz is False
    assert store.settings is settings
