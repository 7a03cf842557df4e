# govisual

`govisual` is WSGI middleware that records every HTTP request your
application handles and serves a live dashboard for looking through them.
It records the method, path, query, headers, status code and duration of
each request. It can also record the request and response bodies.

## Installation

```
pip install govisual
```

## Wrapping an application

```python
from govisual.visualizer import wrap
from govisual.options import (
    with_max_requests,
    with_request_body_logging,
    with_response_body_logging,
    with_ignore_paths,
)

def app(environ, start_response):
    start_response("200 OK", [("Content-Type", "text/plain")])
    return [b"hello"]

application = wrap(
    app,
    with_max_requests(200),
    with_request_body_logging(True),
    with_response_body_logging(True),
    with_ignore_paths("/health", "/static/"),
)
```

You can serve `application` with any WSGI server. Open `/__viz/` to see the
dashboard. A request to `/__viz` itself is redirected to `/__viz/`.
Requests to the dashboard are never recorded.

Each request is stored once the server closes the response body.

### Options

Options are applied in the order given, on top of `default_config()`.

| Option | Effect |
| --- | --- |
| `with_max_requests(n)` | keep at most `n` requests (default 100; a value of 0 or less means 100) |
| `with_dashboard_path(path)` | serve the dashboard under `path` (default `/__viz`) |
| `with_request_body_logging(enabled)` | record request bodies |
| `with_response_body_logging(enabled)` | record response bodies |
| `with_ignore_paths(*patterns)` | skip paths that match shell-style patterns, where `*` and `?` do not cross `/`; a pattern ending in `/` skips every path under it |
| `with_memory_storage()` | keep requests in memory (the default) |
| `with_sqlite_storage(db_path, table_name)` | store requests in an SQLite file |
| `with_sqlite_storage_db(connection, table_name)` | store requests through an existing `sqlite3` connection, which you remain responsible for closing |
| `with_redis_storage(url, ttl_seconds)` | store requests in Redis, each expiring after `ttl_seconds` |

If the configured storage cannot be set up, `wrap` logs a warning and falls
back to in-memory storage. The store is closed when the interpreter exits.

SQLite table names may contain only letters, digits and underscores.

## Dashboard endpoints

These paths are relative to the dashboard path:

- `/` – the HTML dashboard, with host, Python and environment information.
  The value of any variable whose name contains `KEY`, `SECRET`, `PASSWORD`,
  `TOKEN`, `CREDENTIAL`, `AUTH`, `CERTIFICATE` or `PRIVATE` is shown as
  `[REDACTED]`.
- `/api/requests` – all recorded requests as JSON.
- `/api/events` – server-sent events that repeat the recorded requests every
  two seconds.
- `/api/clear` – send a `POST` here to delete all recorded requests.
- `/api/compare?id=A&id=B` – the listed requests as JSON. At least two ids are
  required; fewer gives a 400 response.
- `/api/replay` – `POST` a JSON body with `requestId`, `url`, `method`,
  `headers` and `body`. The request is sent again, and the reply holds
  `statusCode`, `headers`, `body`, `duration` (milliseconds) and
  `originalRequest`.

## Using the stores directly

```python
from govisual.store import InMemoryStore
from govisual.model import RequestLog

store = InMemoryStore(10)
store.add(RequestLog(id="test-1", method="GET", path="/test", status_code=200))
store.get("test-1")      # the log, or None if there is no such id
store.get_latest(5)
store.clear()
```

`govisual.sqlite_store.SQLiteStore` and `govisual.redis_store.RedisStore`
offer the same methods. Create them with:

- `SQLiteStore.open(db_path, table_name, capacity)`
- `SQLiteStore.with_connection(connection, table_name, capacity)`
- `RedisStore.from_url(url, capacity, ttl_seconds)`

The stores differ in the order they return logs. `InMemoryStore` returns
them oldest first. The SQLite and Redis stores return them newest first.
When a store cannot do what was asked, it raises `govisual.store.StoreError`.

`govisual.factory.new_store` builds any of these stores from a
`StorageConfig`. `RequestLog.to_dict()` and `RequestLog.from_dict()` convert
a log to and from its JSON form.

## Demo server

```
govisual-demo
```

This starts a small example application with request and response body
logging enabled, on `--port` or the `PORT` variable (default 8080). Its
dashboard is at `/__viz`.

The `GOVISUAL_STORAGE_TYPE` environment variable chooses the storage
backend:

- `memory` – the default.
- `sqlite` or `sqlite_with_db` – set `GOVISUAL_SQLITE_DBPATH`, and
  optionally `GOVISUAL_SQLITE_TABLE`.
- `redis` – set `GOVISUAL_REDIS_CONN`, and optionally `GOVISUAL_REDIS_TTL`.

## What the package does not do

- **No PostgreSQL storage.** `StorageType.POSTGRES` exists, but `new_store`
  raises `StoreError` for it. As a result, `wrap` (and the demo with
  `GOVISUAL_STORAGE_TYPE=postgres`) falls back to in-memory storage.
- **No tracing export.** There is no OpenTelemetry or other tracing export.

## Running the tests

```
pip install -e ".[test]"
pytest
```