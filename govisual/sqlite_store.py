"""Request log storage in an SQLite database."""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
from datetime import datetime
from typing import Any, Sequence

from govisual.model import RequestLog
from govisual.store import DEFAULT_CAPACITY, Store, StoreError

logger = logging.getLogger(__name__)

_TABLE_NAME_RE = re.compile(r"[a-zA-Z0-9_]+")

DEFAULT_TABLE_NAME = "govisual_requests"


def is_valid_table_name(table_name: str) -> bool:
    """Return True if the name holds only letters, digits and underscores."""
    return _TABLE_NAME_RE.fullmatch(table_name) is not None


def _loads(text: str | None, default: Any) -> Any:
    if text is None:
        return default
    try:
        return json.loads(text)
    except ValueError:
        return default


class SQLiteStore(Store):
    """Keeps request logs in an SQLite table, trimmed to ``capacity`` rows."""

    def __init__(
        self,
        connection: sqlite3.Connection,
        table_name: str = DEFAULT_TABLE_NAME,
        capacity: int = DEFAULT_CAPACITY,
        owns_connection: bool = False,
    ) -> None:
        if connection is None:
            raise StoreError("database connection cannot be None")
        if capacity <= 0:
            capacity = DEFAULT_CAPACITY
        if not is_valid_table_name(table_name):
            raise StoreError(
                "invalid table name: table name can only contain letters, "
                "numbers, and underscores"
            )
        self._connection = connection
        self.table_name = table_name
        self.capacity = capacity
        self.owns_connection = owns_connection
        self._lock = threading.RLock()
        try:
            connection.execute("SELECT 1").fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"failed to ping SQLite DB: {exc}") from exc
        try:
            self._create_table()
        except sqlite3.Error as exc:
            raise StoreError(f"failed to create table: {exc}") from exc

    @classmethod
    def open(
        cls,
        db_path: str,
        table_name: str = DEFAULT_TABLE_NAME,
        capacity: int = DEFAULT_CAPACITY,
    ) -> SQLiteStore:
        """Open the database at ``db_path``; the store closes it on close()."""
        if not is_valid_table_name(table_name):
            raise StoreError(
                "invalid table name: table name can only contain letters, "
                "numbers, and underscores"
            )
        try:
            connection = sqlite3.connect(str(db_path), check_same_thread=False)
        except sqlite3.Error as exc:
            raise StoreError(f"failed to open SQLite DB: {exc}") from exc
        try:
            return cls(connection, table_name, capacity, owns_connection=True)
        except StoreError:
            connection.close()
            raise

    @classmethod
    def with_connection(
        cls,
        connection: sqlite3.Connection,
        table_name: str = DEFAULT_TABLE_NAME,
        capacity: int = DEFAULT_CAPACITY,
    ) -> SQLiteStore:
        """Use an existing connection, which stays open after close()."""
        return cls(connection, table_name, capacity, owns_connection=False)

    def _create_table(self) -> None:
        with self._lock:
            self._connection.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table_name} (
                    id TEXT PRIMARY KEY,
                    timestamp DATETIME,
                    method TEXT,
                    path TEXT,
                    query TEXT,
                    request_headers TEXT,
                    response_headers TEXT,
                    status_code INTEGER,
                    duration INTEGER,
                    request_body TEXT,
                    response_body TEXT,
                    error TEXT,
                    middleware_trace TEXT,
                    route_trace TEXT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            self._connection.execute(
                f"CREATE INDEX IF NOT EXISTS {self.table_name}_timestamp_idx "
                f"ON {self.table_name}(timestamp DESC)"
            )
            self._connection.commit()

    def _select(self, tail: str) -> str:
        return f"""
            SELECT
                id, timestamp, method, path, query,
                COALESCE(request_headers, '{{}}'),
                COALESCE(response_headers, '{{}}'),
                status_code, duration, request_body, response_body, error,
                COALESCE(middleware_trace, '[]'),
                COALESCE(route_trace, '{{}}')
            FROM {self.table_name}
            {tail}
        """

    def add(self, log: RequestLog) -> None:
        middleware_trace = "[]"
        if log.middleware_trace:
            middleware_trace = json.dumps(log.middleware_trace, default=str)
        route_trace = "{}"
        if log.route_trace is not None:
            route_trace = json.dumps(log.route_trace, default=str)

        query = f"""
            INSERT OR REPLACE INTO {self.table_name} (
                id, timestamp, method, path, query, request_headers, response_headers,
                status_code, duration, request_body, response_body, error,
                middleware_trace, route_trace
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        params = (
            log.id,
            log.timestamp.isoformat(),
            log.method,
            log.path,
            log.query,
            json.dumps(log.request_headers or {}),
            json.dumps(log.response_headers or {}),
            log.status_code,
            log.duration,
            log.request_body,
            log.response_body,
            log.error,
            middleware_trace,
            route_trace,
        )
        with self._lock:
            try:
                self._connection.execute(query, params)
                self._connection.commit()
            except sqlite3.Error as exc:
                logger.error("Failed to store request log in SQLite: %s", exc)
            self._cleanup()

    def _cleanup(self) -> None:
        try:
            (count,) = self._connection.execute(
                f"SELECT COUNT(*) FROM {self.table_name}"
            ).fetchone()
        except sqlite3.Error as exc:
            logger.error("Failed to count logs: %s", exc)
            return
        if count <= self.capacity:
            return
        try:
            self._connection.execute(
                f"""
                DELETE FROM {self.table_name}
                WHERE id IN (
                    SELECT id FROM {self.table_name}
                    ORDER BY created_at ASC, timestamp ASC
                    LIMIT ?
                )
                """,
                (count - self.capacity,),
            )
            self._connection.commit()
        except sqlite3.Error as exc:
            logger.error("Failed to clean up old logs: %s", exc)

    @staticmethod
    def _row_to_log(row: Sequence[Any]) -> RequestLog:
        if row[1] is None:
            raise ValueError("missing timestamp")
        return RequestLog(
            id=row[0],
            timestamp=datetime.fromisoformat(row[1]),
            method=row[2] or "",
            path=row[3] or "",
            query=row[4] or "",
            request_headers=_loads(row[5], {}) or {},
            response_headers=_loads(row[6], {}) or {},
            status_code=int(row[7] or 0),
            duration=int(row[8] or 0),
            request_body=row[9] or "",
            response_body=row[10] or "",
            error=row[11] or "",
            middleware_trace=_loads(row[12], []) or [],
            route_trace=_loads(row[13], None),
        )

    def get(self, request_id: str) -> RequestLog | None:
        with self._lock:
            try:
                row = self._connection.execute(
                    self._select("WHERE id = ?"), (request_id,)
                ).fetchone()
            except sqlite3.Error as exc:
                logger.error("Failed to get request log from SQLite: %s", exc)
                return None
        if row is None:
            return None
        try:
            return self._row_to_log(row)
        except (ValueError, TypeError) as exc:
            logger.error("Failed to get request log from SQLite: %s", exc)
            return None

    def _query_logs(self, query: str, params: tuple = ()) -> list[RequestLog]:
        with self._lock:
            try:
                rows = self._connection.execute(query, params).fetchall()
            except sqlite3.Error as exc:
                logger.error("Failed to query logs from SQLite: %s", exc)
                return []
        logs = []
        for row in rows:
            try:
                logs.append(self._row_to_log(row))
            except (ValueError, TypeError) as exc:
                logger.error("Failed to scan row: %s", exc)
        return logs

    def get_all(self) -> list[RequestLog]:
        """Return every stored log, newest first."""
        return self._query_logs(self._select("ORDER BY timestamp DESC"))

    def get_latest(self, n: int) -> list[RequestLog]:
        """Return the n newest logs, newest first."""
        return self._query_logs(self._select("ORDER BY timestamp DESC LIMIT ?"), (n,))

    def clear(self) -> None:
        with self._lock:
            try:
                self._connection.execute(f"DELETE FROM {self.table_name}")
                self._connection.commit()
            except sqlite3.Error as exc:
                raise StoreError(f"failed to clear logs: {exc}") from exc

    def close(self) -> None:
        """Close the connection if this store opened it."""
        if not self.owns_connection:
            return
        with self._lock:
            try:
                self._connection.close()
            except sqlite3.Error as exc:
                raise StoreError(f"failed to close SQLite DB: {exc}") from exc