"""
Versioned deep copies of persisted records.

Backups, orphan records and undo history all need copies that cannot alias
live state. Copies go through the pydantic models so their shape is checked.
"""

import copy
from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import BaseModel
from ulid import ULID

from atomic_review.domain.constants import SNAPSHOT_VERSION
from atomic_review.domain.errors import DataValidationError
from atomic_review.domain.models import BackupEntry, StoreData

M = TypeVar("M", bound=BaseModel)


def clone(record: M) -> M:
    return record.model_copy(deep=True)


def dump_document(data: StoreData) -> dict[str, Any]:
    """JSON-ready copy of the primary document. Never shares structure with `data`."""
    return data.model_dump(mode="json")


def make_backup(document: Any, timestamp: datetime | None = None) -> BackupEntry:
    if not isinstance(document, dict):
        # Quarantined blobs are not always documents
        document = {"raw": document}
    return BackupEntry(
        id=f"backup_{ULID()}",
        timestamp=timestamp or datetime.now(timezone.utc),
        snapshot_version=SNAPSHOT_VERSION,
        data=copy.deepcopy(document),
    )


def backup_payload(entry: BackupEntry) -> dict[str, Any]:
    if entry.snapshot_version > SNAPSHOT_VERSION:
        raise DataValidationError(
            f"backups[{entry.id}]",
            f"snapshot version {entry.snapshot_version} is newer than {SNAPSHOT_VERSION}",
        )
    return copy.deepcopy(entry.data)
