"""Storage backends for persisted JSON documents."""

import asyncio
import copy
import json
import logging
import os
from pathlib import Path
from typing import Any

from atomic_review.domain.ports import StorageBackend

logger = logging.getLogger(__name__)


class JsonFileBackend(StorageBackend):
    """
    One JSON document in one file.

    Writes go to a sibling temp file that then replaces the target, so a
    process killed mid-write leaves the previous document intact.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    async def read(self) -> Any | None:
        return await asyncio.to_thread(self._read)

    async def write(self, data: Any) -> None:
        text = json.dumps(data, ensure_ascii=False, indent=2)
        await asyncio.to_thread(self._write, text)

    async def remove(self) -> None:
        await asyncio.to_thread(self.path.unlink, missing_ok=True)

    def _read(self) -> Any | None:
        if not self.path.exists():
            return None
        raw = self.path.read_bytes()
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            # Undecodable bytes become U+FFFD; the loader defaults and quarantines what breaks
            logger.warning(f"Invalid UTF-8 in {self.path}: {e}")
            text = raw.decode("utf-8", errors="replace")
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            # Hand the raw text up so the loader can quarantine it
            logger.warning(f"Corrupt JSON in {self.path}: {e}")
            return text

    def _write(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, self.path)


class MemoryBackend(StorageBackend):
    """In-process document store. Holds deep copies so callers cannot alias it."""

    def __init__(self, data: Any | None = None):
        self.data = copy.deepcopy(data)
        self.writes = 0

    async def read(self) -> Any | None:
        return copy.deepcopy(self.data)

    async def write(self, data: Any) -> None:
        self.data = copy.deepcopy(data)
        self.writes += 1

    async def remove(self) -> None:
        self.data = None
