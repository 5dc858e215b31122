"""
Ports (interfaces) to the host application and to storage.

These define the contracts that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from typing import Any

from .models import SelectionCriteria


class ContentResolver(ABC):
    """
    Port for asking the host which items match a selection.

    Implementations:
        - VaultResolver: Walks a Markdown vault on disk.
    """

    @abstractmethod
    def resolve(self, criteria: SelectionCriteria) -> list[str]:
        """
        Return the paths of all items currently matching the criteria.

        Must be a pure, synchronous, idempotent query over the live corpus.
        """
        pass


class Workspace(ABC):
    """
    Port for bringing items into view in the host.

    Implementations:
        - TerminalWorkspace: Prints the item and tracks it as active.
    """

    @abstractmethod
    async def open_item(self, path: str) -> bool:
        """
        Open an item in the host.

        Returns:
            False if the item no longer exists.
        """
        pass

    @abstractmethod
    def active_item(self) -> str | None:
        """Path of the item the user currently has open, if any."""
        pass


class Notifier(ABC):
    """Port for short user-facing notices."""

    @abstractmethod
    def notify(self, message: str, *, error: bool = False) -> None:
        pass


class StorageBackend(ABC):
    """
    Port for a single persisted JSON document.

    Implementations:
        - JsonFileBackend: One file on disk, atomic replace on write.
        - MemoryBackend: In-process, used for tests and dry runs.
    """

    @abstractmethod
    async def read(self) -> Any | None:
        """Return the stored document, or None if nothing was stored yet."""
        pass

    @abstractmethod
    async def write(self, data: Any) -> None:
        pass

    @abstractmethod
    async def remove(self) -> None:
        """Delete the stored document. A no-op when nothing is stored."""
        pass
