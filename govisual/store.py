"""Storage interface for request logs and the in-memory ring buffer."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import deque

from govisual.model import RequestLog

DEFAULT_CAPACITY = 100


class StoreError(Exception):
    """Raised when a storage backend cannot do what was asked."""


class Store(ABC):
    """A place where captured request logs are kept."""

    @abstractmethod
    def add(self, log: RequestLog) -> None:
        """Add a request log."""

    @abstractmethod
    def get(self, request_id: str) -> RequestLog | None:
        """Return the log with the given ID, or None."""

    @abstractmethod
    def get_all(self) -> list[RequestLog]:
        """Return every stored log."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every stored log."""

    @abstractmethod
    def get_latest(self, n: int) -> list[RequestLog]:
        """Return the n most recent logs."""

    @abstractmethod
    def close(self) -> None:
        """Release any resources held by the store."""

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class InMemoryStore(Store):
    """Keeps at most ``capacity`` logs, dropping the oldest first."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            capacity = DEFAULT_CAPACITY
        self.capacity = capacity
        self._logs: deque[RequestLog] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def add(self, log: RequestLog) -> None:
        with self._lock:
            self._logs.append(log)

    def get(self, request_id: str) -> RequestLog | None:
        with self._lock:
            return next((log for log in self._logs if log.id == request_id), None)

    def get_all(self) -> list[RequestLog]:
        """Return the stored logs, oldest first."""
        with self._lock:
            return list(self._logs)

    def get_latest(self, n: int) -> list[RequestLog]:
        """Return the last n logs, oldest first."""
        logs = self.get_all()
        return logs[max(len(logs) - n, 0):]

    def clear(self) -> None:
        with self._lock:
            self._logs.clear()

    def close(self) -> None:
        """Nothing to release for memory storage."""