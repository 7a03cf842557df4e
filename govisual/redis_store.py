"""Request log storage in Redis."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

import redis

from govisual.model import RequestLog
from govisual.store import DEFAULT_CAPACITY, Store, StoreError

logger = logging.getLogger(__name__)

KEY_PREFIX = "govisual:"
DEFAULT_TTL_SECONDS = 86400


def _text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


def _parse_log(data: Any) -> RequestLog:
    return RequestLog.from_dict(json.loads(_text(data)))


class RedisStore(Store):
    """Keeps request logs as JSON strings, indexed by time in a sorted set."""

    def __init__(
        self,
        client: Any,
        capacity: int = DEFAULT_CAPACITY,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        if capacity <= 0:
            capacity = DEFAULT_CAPACITY
        if ttl_seconds <= 0:
            ttl_seconds = DEFAULT_TTL_SECONDS
        self._client = client
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self.key_prefix = KEY_PREFIX
        self._index_key = KEY_PREFIX + "logs"

    @classmethod
    def from_url(
        cls,
        url: str,
        capacity: int = DEFAULT_CAPACITY,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> RedisStore:
        """Connect to the Redis server at ``url`` and check that it answers."""
        try:
            client = redis.Redis.from_url(url)
        except ValueError as exc:
            raise StoreError(f"invalid Redis connection string: {exc}") from exc
        try:
            client.ping()
        except redis.RedisError as exc:
            client.close()
            raise StoreError(f"failed to connect to Redis: {exc}") from exc
        return cls(client, capacity, ttl_seconds)

    def _key(self, request_id: str) -> str:
        return self.key_prefix + request_id

    def add(self, log: RequestLog) -> None:
        try:
            data = json.dumps(log.to_dict())
        except (TypeError, ValueError) as exc:
            log.error = f"Failed to marshal log: {exc}"
            return

        try:
            self._client.set(self._key(log.id), data, ex=self.ttl_seconds)
        except redis.RedisError as exc:
            logger.error("Failed to store log in Redis: %s", exc)
            return

        score = log.timestamp.timestamp() * 1e9
        try:
            self._client.zadd(self._index_key, {log.id: score})
        except redis.RedisError as exc:
            logger.error("Failed to add log ID to sorted set: %s", exc)

        self._cleanup()

    def _cleanup(self) -> None:
        try:
            count = int(self._client.zcard(self._index_key))
        except redis.RedisError as exc:
            logger.error("Failed to count logs: %s", exc)
            return
        if count <= self.capacity:
            return

        try:
            oldest = self._client.zrange(
                self._index_key, 0, count - self.capacity - 1
            )
        except redis.RedisError as exc:
            logger.error("Failed to get oldest log IDs: %s", exc)
            return
        ids = [_text(member) for member in oldest]
        if not ids:
            return

        pipe = self._client.pipeline()
        pipe.zrem(self._index_key, *ids)
        for request_id in ids:
            pipe.delete(self._key(request_id))
        try:
            pipe.execute()
        except redis.RedisError as exc:
            logger.error("Failed to clean up old logs: %s", exc)

    def get(self, request_id: str) -> RequestLog | None:
        try:
            data = self._client.get(self._key(request_id))
        except redis.RedisError as exc:
            logger.error("Failed to get log from Redis: %s", exc)
            return None
        if data is None:
            return None
        try:
            return _parse_log(data)
        except (ValueError, TypeError, AttributeError) as exc:
            logger.error("Failed to unmarshal log data: %s", exc)
            return None

    def get_all(self) -> list[RequestLog]:
        """Return every stored log, newest first."""
        try:
            ids = self._client.zrevrange(self._index_key, 0, -1)
        except redis.RedisError as exc:
            logger.error("Failed to get log IDs: %s", exc)
            return []
        return self._get_logs(_text(member) for member in ids)

    def get_latest(self, n: int) -> list[RequestLog]:
        """Return the n newest logs, newest first."""
        try:
            ids = self._client.zrevrange(self._index_key, 0, n - 1)
        except redis.RedisError as exc:
            logger.error("Failed to get latest log IDs: %s", exc)
            return []
        return self._get_logs(_text(member) for member in ids)

    def _get_logs(self, ids: Iterable[str]) -> list[RequestLog]:
        ids = list(ids)
        if not ids:
            return []

        pipe = self._client.pipeline()
        for request_id in ids:
            pipe.get(self._key(request_id))
        try:
            results = pipe.execute()
        except redis.RedisError as exc:
            logger.error("Failed to execute pipeline: %s", exc)
            return []

        logs = []
        for request_id, data in zip(ids, results):
            if data is None:
                continue
            try:
                logs.append(_parse_log(data))
            except (ValueError, TypeError, AttributeError) as exc:
                logger.error("Failed to unmarshal log data for %s: %s", request_id, exc)

        logs.sort(key=lambda entry: entry.timestamp, reverse=True)
        return logs

    def clear(self) -> None:
        try:
            ids = [_text(m) for m in self._client.zrange(self._index_key, 0, -1)]
        except redis.RedisError as exc:
            raise StoreError(f"failed to get log IDs: {exc}") from exc

        if ids:
            pipe = self._client.pipeline()
            pipe.zrem(self._index_key, *ids)
            for request_id in ids:
                pipe.unlink(self._key(request_id))
            try:
                pipe.execute()
            except redis.RedisError as exc:
                raise StoreError(f"failed to clear logs: {exc}") from exc

        try:
            self._client.delete(self._index_key)
        except redis.RedisError as exc:
            raise StoreError(f"failed to delete sorted set: {exc}") from exc

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError as exc:
            raise StoreError(f"failed to close Redis client: {exc}") from exc