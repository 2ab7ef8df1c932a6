"""
Historical model performance store.

The router reads sample-size-weighted history per (model, repo, language)
and writes feedback per (model, repo, language, task type). Stores are
injected objects; an in-memory implementation is provided for single
processes.
"""

import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, NamedTuple, Optional

from reviewpilot.models import PerformanceRecord


class PerformanceKey(NamedTuple):
    model_id: str
    repo_id: str
    language: str
    task_type: str


Updater = Callable[[Optional[PerformanceRecord]], PerformanceRecord]


class PerformanceStore(ABC):
    """Read/update contract for historical performance data."""

    @abstractmethod
    def get(self, key: PerformanceKey) -> Optional[PerformanceRecord]:
        """Return the record for a key, or None."""

    @abstractmethod
    def query(self, model_id: str, repo_id: str, language: str) -> List[PerformanceRecord]:
        """Return every task-type record for a (model, repo, language)."""

    @abstractmethod
    def update(self, key: PerformanceKey, updater: Updater) -> PerformanceRecord:
        """
        Atomically replace the record for ``key`` with ``updater(current)``.

        Implementations must serialize concurrent updates of the same key.
        """


class InMemoryPerformanceStore(PerformanceStore):
    """Process-local store with one lock per key."""

    def __init__(self):
        self._records: Dict[PerformanceKey, PerformanceRecord] = {}
        self._locks: Dict[PerformanceKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: PerformanceKey) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def get(self, key: PerformanceKey) -> Optional[PerformanceRecord]:
        record = self._records.get(key)
        return record.model_copy() if record else None

    def query(self, model_id: str, repo_id: str, language: str) -> List[PerformanceRecord]:
        # Snapshot first; another thread may insert while we iterate
        items = list(self._records.items())
        return [
            record.model_copy()
            for key, record in items
            if key.model_id == model_id and key.repo_id == repo_id and key.language == language
        ]

    def update(self, key: PerformanceKey, updater: Updater) -> PerformanceRecord:
        with self._lock_for(key):
            current = self._records.get(key)
            updated = updater(current.model_copy() if current else None)
            if current is not None and updated.sample_size < current.sample_size:
                raise ValueError(
                    f"sample_size cannot decrease ({current.sample_size} -> {updated.sample_size})"
                )
            self._records[key] = updated
            return updated.model_copy()

    def __len__(self) -> int:
        return len(self._records)
