"""Settings for the request visualizer and the options that change them."""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass, field
from typing import Callable

from govisual.factory import StorageType
from govisual.redis_store import DEFAULT_TTL_SECONDS
from govisual.sqlite_store import DEFAULT_TABLE_NAME
from govisual.store import DEFAULT_CAPACITY


def _translate_class(pattern: str, start: int) -> tuple[str, int]:
    """Translate a ``[...]`` class starting after '['; return regex and next index."""
    pos = start
    negate = pos < len(pattern) and pattern[pos] == "^"
    if negate:
        pos += 1
    items: list[str] = []

    def read_char() -> str:
        nonlocal pos
        if pos >= len(pattern):
            raise ValueError("syntax error in pattern")
        char = pattern[pos]
        if char == "\\":
            pos += 1
            if pos >= len(pattern):
                raise ValueError("syntax error in pattern")
            char = pattern[pos]
        elif char in "-]":
            raise ValueError("syntax error in pattern")
        pos += 1
        return char

    while True:
        if pos >= len(pattern):
            raise ValueError("syntax error in pattern")
        if pattern[pos] == "]" and items:
            pos += 1
            break
        low = read_char()
        if pos < len(pattern) and pattern[pos] == "-":
            pos += 1
            high = read_char()
            if high < low:
                raise ValueError("syntax error in pattern")
            items.append(f"{re.escape(low)}-{re.escape(high)}")
        else:
            items.append(re.escape(low))
    return ("[^" if negate else "[") + "".join(items) + "]", pos


def _compile_path_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a shell-style path pattern in which '*' and '?' stop at '/'."""
    parts: list[str] = []
    pos = 0
    while pos < len(pattern):
        char = pattern[pos]
        pos += 1
        if char == "*":
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        elif char == "\\":
            if pos >= len(pattern):
                raise ValueError("syntax error in pattern")
            parts.append(re.escape(pattern[pos]))
            pos += 1
        elif char == "[":
            translated, pos = _translate_class(pattern, pos)
            parts.append(translated)
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.DOTALL)


def _path_matches(pattern: str, path: str) -> bool:
    try:
        return _compile_path_pattern(pattern).fullmatch(path) is not None
    except ValueError:
        return False


@dataclass
class Config:
    """How requests are captured, where they are stored and where the dashboard lives."""

    max_requests: int = DEFAULT_CAPACITY
    dashboard_path: str = "/__viz"
    log_request_body: bool = False
    log_response_body: bool = False
    ignore_paths: list[str] = field(default_factory=list)
    storage_type: StorageType = StorageType.MEMORY
    connection_string: str = ""
    table_name: str = DEFAULT_TABLE_NAME
    redis_ttl: int = DEFAULT_TTL_SECONDS
    existing_db: sqlite3.Connection | None = None

    def should_ignore_path(self, path: str) -> bool:
        """Return True if requests to ``path`` are not to be recorded."""
        if path == self.dashboard_path or path.startswith(self.dashboard_path + "/"):
            return True
        for pattern in self.ignore_paths:
            if _path_matches(pattern, path):
                return True
            if pattern.endswith("/") and path.startswith(pattern):
                return True
        return False


Option = Callable[[Config], None]


def default_config() -> Config:
    """Return the configuration used when no options are given."""
    return Config()


def with_max_requests(max_requests: int) -> Option:
    """Set how many requests are kept."""

    def apply(config: Config) -> None:
        config.max_requests = max_requests

    return apply


def with_dashboard_path(path: str) -> Option:
    """Set the path the dashboard is served under."""

    def apply(config: Config) -> None:
        config.dashboard_path = path

    return apply


def with_request_body_logging(enabled: bool) -> Option:
    """Turn recording of request bodies on or off."""

    def apply(config: Config) -> None:
        config.log_request_body = enabled

    return apply


def with_response_body_logging(enabled: bool) -> Option:
    """Turn recording of response bodies on or off."""

    def apply(config: Config) -> None:
        config.log_response_body = enabled

    return apply


def with_ignore_paths(*args: str) -> Option:
    """Add path patterns whose requests are not recorded."""

    def apply(config: Config) -> None:
        config.ignore_paths.extend(args)

    return apply


def with_memory_storage() -> Option:
    """Keep requests in memory."""

    def apply(config: Config) -> None:
        config.storage_type = StorageType.MEMORY

    return apply


def with_sqlite_storage(db_path: str, table_name: str) -> Option:
    """Keep requests in the SQLite database at ``db_path``."""

    def apply(config: Config) -> None:
        config.storage_type = StorageType.SQLITE
        config.connection_string = db_path
        config.table_name = table_name

    return apply


def with_sqlite_storage_db(connection: sqlite3.Connection, table_name: str) -> Option:
    """Keep requests in an SQLite database through an existing connection."""

    def apply(config: Config) -> None:
        config.storage_type = StorageType.SQLITE_WITH_DB
        config.existing_db = connection
        config.table_name = table_name

    return apply


def with_redis_storage(url: str, ttl_seconds: int) -> Option:
    """Keep requests in Redis, each expiring after ``ttl_seconds``."""

    def apply(config: Config) -> None:
        config.storage_type = StorageType.REDIS
        config.connection_string = url
        config.redis_ttl = ttl_seconds

    return apply