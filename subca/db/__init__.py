"""Persistence layer."""

from .store import MemoryStore, Store, YAMLStore
from .unit_of_work import UnitOfWork

__all__ = ["Store", "MemoryStore", "YAMLStore", "UnitOfWork"]
