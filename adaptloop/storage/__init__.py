"""Storage layer: reference SQLite store for specs, scores, attributes and targets."""

from .locks import KeyedLocks, store_locks
from .store import AdaptStore, open_store
from .schemas import (
    SpecDBRecord,
    ScoreEventDBRecord,
    AttributeDBRecord,
    TargetDBRecord,
)

__all__ = [
    "AdaptStore",
    "KeyedLocks",
    "store_locks",
    "open_store",
    "SpecDBRecord",
    "ScoreEventDBRecord",
    "AttributeDBRecord",
    "TargetDBRecord",
]
