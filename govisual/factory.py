"""Choosing and building a storage backend from configuration."""

from __future__ import annotations

import enum
import sqlite3
from dataclasses import dataclass

from govisual.redis_store import DEFAULT_TTL_SECONDS, RedisStore
from govisual.sqlite_store import DEFAULT_TABLE_NAME, SQLiteStore
from govisual.store import DEFAULT_CAPACITY, InMemoryStore, Store, StoreError


class StorageType(str, enum.Enum):
    """The kinds of storage backend."""

    MEMORY = "memory"
    POSTGRES = "postgres"
    REDIS = "redis"
    SQLITE = "sqlite"
    SQLITE_WITH_DB = "sqlite_with_db"

    def __str__(self) -> str:
        return self.value


@dataclass
class StorageConfig:
    """Settings for building a storage backend."""

    type: StorageType | str = StorageType.MEMORY
    capacity: int = DEFAULT_CAPACITY
    connection_string: str = ""
    table_name: str = DEFAULT_TABLE_NAME
    ttl: int = DEFAULT_TTL_SECONDS
    existing_db: sqlite3.Connection | None = None


def new_store(config: StorageConfig) -> Store:
    """Build the storage backend that ``config`` describes."""
    try:
        kind = StorageType(config.type)
    except ValueError:
        raise StoreError(f"unknown storage type: {config.type}") from None

    if kind is StorageType.MEMORY:
        return InMemoryStore(config.capacity)
    if kind is StorageType.REDIS:
        return RedisStore.from_url(config.connection_string, config.capacity, config.ttl)
    if kind is StorageType.SQLITE:
        return SQLiteStore.open(config.connection_string, config.table_name, config.capacity)
    if kind is StorageType.SQLITE_WITH_DB:
        if config.existing_db is None:
            raise StoreError(
                "existing DB connection is required for sqlite_with_db storage type"
            )
        return SQLiteStore.with_connection(
            config.existing_db, config.table_name, config.capacity
        )
    raise StoreError(f"storage type {kind} is not available")