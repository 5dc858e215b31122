from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from atomic_review.application.card_service import CardService
from atomic_review.application.queue_service import QueueService
from atomic_review.application.scheduler import Scheduler
from atomic_review.application.session_service import SessionService
from atomic_review.domain.models import FsrsParams, SelectionCriteria
from atomic_review.domain.ports import ContentResolver, Notifier, StorageBackend, Workspace
from atomic_review.infrastructure.persistence import DataStore, MemoryBackend

# Midday keeps "today" arithmetic away from local midnight in any timezone offset
NOW = datetime.now(timezone.utc).astimezone().replace(hour=12, minute=0, second=0, microsecond=0)
NOW = NOW.astimezone(timezone.utc)


# ---------- Fakes ----------


class FailingBackend(StorageBackend):
    """Raises OSError on the first `failures` writes, then behaves like MemoryBackend."""

    def __init__(self, failures: int, data: Any | None = None):
        self.failures = failures
        self.inner = MemoryBackend(data)
        self.attempts = 0

    @property
    def writes(self) -> int:
        return self.inner.writes

    @property
    def data(self) -> Any:
        return self.inner.data

    async def read(self) -> Any | None:
        return await self.inner.read()

    async def write(self, data: Any) -> None:
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise OSError("disk full")
        await self.inner.write(data)

    async def remove(self) -> None:
        await self.inner.remove()


class RecordingWorkspace(Workspace):
    """Opens any path not listed in `missing` and remembers what was opened."""

    def __init__(self, missing: set[str] | None = None):
        self.missing = set(missing or ())
        self.opened: list[str] = []
        self.active: str | None = None

    async def open_item(self, path: str) -> bool:
        if path in self.missing:
            return False
        self.opened.append(path)
        self.active = path
        return True

    def active_item(self) -> str | None:
        return self.active


class RecordingNotifier(Notifier):
    def __init__(self):
        self.messages: list[tuple[str, bool]] = []

    def notify(self, message: str, *, error: bool = False) -> None:
        self.messages.append((message, error))

    @property
    def texts(self) -> list[str]:
        return [m for m, _ in self.messages]


class FakeResolver(ContentResolver):
    """Returns the paths registered for a folder, regardless of what is on disk."""

    def __init__(self, folders: dict[str, list[str]] | None = None):
        self.folders = folders or {}
        self.calls = 0

    def resolve(self, criteria: SelectionCriteria) -> list[str]:
        self.calls += 1
        paths: list[str] = []
        for folder in criteria.folders:
            paths.extend(self.folders.get(folder, []))
        return paths


# ---------- Fixtures ----------


@pytest.fixture
def mock_vault(tmp_path):
    """Creates a temporary directory structure mimicking a vault."""
    d = tmp_path / "MyVault"
    d.mkdir()
    return d


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config/logs
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def yesterday():
    return NOW - timedelta(days=1)


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store(backend, notifier):
    # Long debounce: tests flush explicitly
    return DataStore(backend, MemoryBackend(), notifier, save_debounce=60.0)


@pytest.fixture
def scheduler():
    return Scheduler(FsrsParams(enable_fuzz=False))


@pytest.fixture
def card_service(store, scheduler):
    return CardService(store, scheduler)


@pytest.fixture
def resolver():
    return FakeResolver({"Notes": ["Notes/a.md", "Notes/b.md", "Notes/c.md"]})


@pytest.fixture
def queue_service(store, card_service, resolver):
    return QueueService(store, card_service, resolver)


@pytest.fixture
def workspace():
    return RecordingWorkspace()


@pytest.fixture
def session_backend():
    return MemoryBackend()


@pytest.fixture
def session_service(store, card_service, queue_service, workspace, notifier, session_backend):
    return SessionService(store, card_service, queue_service, workspace, notifier, session_backend)


@pytest.fixture
def notes_queue(queue_service):
    return queue_service.create_queue(
        "Notes", SelectionCriteria(type="folder", folders=["Notes"]), queue_id="notes"
    )
