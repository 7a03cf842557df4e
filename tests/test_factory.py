import sqlite3

import pytest

from govisual.factory import StorageConfig, StorageType, new_store
from govisual.sqlite_store import SQLiteStore
from govisual.store import InMemoryStore, StoreError


def test_memory_store_uses_capacity():
    store = new_store(StorageConfig(type=StorageType.MEMORY, capacity=7))
    assert isinstance(store, InMemoryStore)
    assert store.capacity == 7


def test_memory_store_from_plain_string():
    store = new_store(StorageConfig(type="memory", capacity=3))
    assert isinstance(store, InMemoryStore)
    assert store.capacity == 3


def test_unknown_type_is_rejected():
    with pytest.raises(StoreError, match="unknown storage type: bogus"):
        new_store(StorageConfig(type="bogus"))


def test_sqlite_with_db_requires_connection():
    with pytest.raises(StoreError, match="existing DB connection is required"):
        new_store(StorageConfig(type=StorageType.SQLITE_WITH_DB))


def test_sqlite_with_db_keeps_connection_open():
    connection = sqlite3.connect(":memory:")
    store = new_store(
        StorageConfig(
            type=StorageType.SQLITE_WITH_DB,
            capacity=5,
            table_name="logs",
            existing_db=connection,
        )
    )
    assert isinstance(store, SQLiteStore)
    assert store.owns_connection is False
    assert store.capacity == 5
    store.close()
    assert connection.execute("SELECT 1").fetchone() == (1,)
    connection.close()


def test_sqlite_store_from_path(tmp_path):
    path = tmp_path / "logs.db"
    store = new_store(
        StorageConfig(type=StorageType.SQLITE, connection_string=str(path), table_name="logs")
    )
    assert isinstance(store, SQLiteStore)
    assert store.owns_connection is True
    assert store.table_name == "logs"
    store.close()
    assert path.exists()


def test_sqlite_invalid_table_name():
    with pytest.raises(StoreError, match="invalid table name"):
        new_store(
            StorageConfig(
                type=StorageType.SQLITE, connection_string=":memory:", table_name="bad name"
            )
        )


def test_redis_bad_url_is_rejected():
    with pytest.raises(StoreError, match="invalid Redis connection string"):
        new_store(StorageConfig(type=StorageType.REDIS, connection_string="not-a-url"))


def test_postgres_is_not_available():
    with pytest.raises(StoreError):
        new_store(StorageConfig(type=StorageType.POSTGRES))


def test_default_config_values():
    config = StorageConfig()
    assert config.type == StorageType.MEMORY
    assert config.capacity == 100
    assert config.table_name == "govisual_requests"
    assert config.ttl == 86400