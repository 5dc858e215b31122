from .backends import JsonFileBackend, MemoryBackend
from .store import DataStore

__all__ = ["DataStore", "JsonFileBackend", "MemoryBackend"]
