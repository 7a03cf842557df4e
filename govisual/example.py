"""A small demo web application wrapped with the request visualizer."""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import socketserver
import sqlite3
import time
from http import HTTPStatus
from typing import Any, Callable, Mapping
from wsgiref.simple_server import WSGIServer, make_server

from govisual.factory import StorageType
from govisual.options import (
    Config,
    Option,
    with_max_requests,
    with_memory_storage,
    with_redis_storage,
    with_request_body_logging,
    with_response_body_logging,
    with_sqlite_storage,
    with_sqlite_storage_db,
)
from govisual.redis_store import DEFAULT_TTL_SECONDS
from govisual.sqlite_store import DEFAULT_TABLE_NAME
from govisual.visualizer import wrap

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080

_LEADING_INT_RE = re.compile(r"\s*([+-]?\d+)")

_HOME_PAGE = """<html><body>
<h1>Request Visualizer Example</h1>
<p>Visit <a href="/__viz">/__viz</a> to access the request visualizer</p>
<p>API Endpoints:</p>
<ul>
<li><a href="/api/hello">/api/hello</a> - Simple JSON response</li>
<li><a href="/api/slow">/api/slow</a> - Slow response (500ms)</li>
<li><a href="/api/error">/api/error</a> - Error response</li>
<li><a href="/api/users">/api/users</a> - List users (POST to create one)</li>
<li><a href="/api/products">/api/products</a> - List products (POST to create one)</li>
</ul>
</body></html>"""


def _status(code: int) -> str:
    return f"{code} {HTTPStatus(code).phrase}"


def _respond(
    start_response: Callable, code: int, body: bytes, content_type: str | None = None
) -> list[bytes]:
    headers = []
    if content_type is not None:
        headers.append(("Content-Type", content_type))
    headers.append(("Content-Length", str(len(body))))
    start_response(_status(code), headers)
    return [body]


def _json(start_response: Callable, code: int, value: Any) -> list[bytes]:
    body = (json.dumps(value, sort_keys=True, separators=(",", ":")) + "\n").encode()
    return _respond(start_response, code, body, "application/json")


def _home(environ: dict, start_response: Callable) -> list[bytes]:
    return _respond(start_response, 200, _HOME_PAGE.encode("utf-8"), "text/html")


def _hello(environ: dict, start_response: Callable) -> list[bytes]:
    time.sleep(0.1)
    return _json(start_response, 200, {"message": "Hello, World!"})


def _slow(environ: dict, start_response: Callable) -> list[bytes]:
    time.sleep(0.5)
    return _json(
        start_response, 200, {"message": "This was slow", "duration": "500ms"}
    )


def _error(environ: dict, start_response: Callable) -> list[bytes]:
    return _json(start_response, 500, {"error": "Internal Server Error"})


def _collection(
    list_body: bytes, create_body: bytes, delay: float, create_delay: float
) -> Callable[[dict, Callable], list[bytes]]:
    def handler(environ: dict, start_response: Callable) -> list[bytes]:
        time.sleep(delay)
        method = environ.get("REQUEST_METHOD", "GET")
        if method == "GET":
            return _respond(start_response, 200, list_body, "application/json")
        if method == "POST":
            time.sleep(create_delay)
            return _respond(start_response, 201, create_body, "application/json")
        return _respond(start_response, 405, b"")

    return handler


_ROUTES: dict[str, Callable[[dict, Callable], list[bytes]]] = {
    "/": _home,
    "/api/hello": _hello,
    "/api/slow": _slow,
    "/api/error": _error,
    "/api/users": _collection(
        b'{"users": [{"id": 1, "name": "Alice"}, {"id": 2, "name": "Bob"}]}',
        b'{"id": 3, "name": "New User", "created": true}',
        0.05,
        0.1,
    ),
    "/api/products": _collection(
        b'{"products": [{"id": 1, "name": "Laptop"}, {"id": 2, "name": "Phone"}]}',
        b'{"id": 3, "name": "New Product", "created": true}',
        0.075,
        0.125,
    ),
}


def demo_app(environ: dict, start_response: Callable) -> list[bytes]:
    """A WSGI app with a home page and a few JSON endpoints."""
    handler = _ROUTES.get(environ.get("PATH_INFO", "") or "/")
    if handler is None:
        return _respond(
            start_response, 404, b"404 page not found\n", "text/plain; charset=utf-8"
        )
    return handler(environ, start_response)


def _parse_leading_int(text: str) -> int:
    match = _LEADING_INT_RE.match(text)
    if match is None:
        raise ValueError(f"expected an integer: {text!r}")
    return int(match.group(1))


def _postgres_storage(connection_string: str, table_name: str) -> Option:
    def apply(config: Config) -> None:
        config.storage_type = StorageType.POSTGRES
        config.connection_string = connection_string
        config.table_name = table_name

    return apply


def _require(env: Mapping[str, str], name: str, what: str) -> str:
    value = env.get(name, "")
    if not value:
        raise ValueError(f"{what} not provided in {name}")
    return value


def options_from_env(env: Mapping[str, str]) -> list[Option]:
    """Return the visualizer options chosen by the GOVISUAL_* variables in ``env``.

    Raises ValueError when the chosen storage lacks its connection setting.
    """
    options: list[Option] = [
        with_max_requests(100),
        with_request_body_logging(True),
        with_response_body_logging(True),
    ]
    storage_type = env.get("GOVISUAL_STORAGE_TYPE", "")

    if storage_type == "postgres":
        conn = _require(env, "GOVISUAL_PG_CONN", "PostgreSQL connection string")
        table = env.get("GOVISUAL_PG_TABLE") or DEFAULT_TABLE_NAME
        options.append(_postgres_storage(conn, table))
        logger.info("Using PostgreSQL storage with table: %s", table)
    elif storage_type == "redis":
        conn = _require(env, "GOVISUAL_REDIS_CONN", "Redis connection string")
        ttl = DEFAULT_TTL_SECONDS
        ttl_text = env.get("GOVISUAL_REDIS_TTL", "")
        if ttl_text:
            try:
                ttl = _parse_leading_int(ttl_text)
            except ValueError:
                logger.warning(
                    "Invalid TTL value: %s, using default of %d seconds",
                    ttl_text,
                    DEFAULT_TTL_SECONDS,
                )
                ttl = DEFAULT_TTL_SECONDS
        options.append(with_redis_storage(conn, ttl))
        logger.info("Using Redis storage with TTL: %d seconds", ttl)
    elif storage_type == "sqlite":
        db_path = _require(env, "GOVISUAL_SQLITE_DBPATH", "SQLite database path")
        table = env.get("GOVISUAL_SQLITE_TABLE") or DEFAULT_TABLE_NAME
        options.append(with_sqlite_storage(db_path, table))
        logger.info("Using SQLite storage with table: %s", table)
    elif storage_type == "sqlite_with_db":
        db_path = _require(env, "GOVISUAL_SQLITE_DBPATH", "SQLite database path")
        table = env.get("GOVISUAL_SQLITE_TABLE") or DEFAULT_TABLE_NAME
        try:
            connection = sqlite3.connect(db_path, check_same_thread=False)
            connection.execute("SELECT 1").fetchone()
        except sqlite3.Error as exc:
            raise ValueError(f"Failed to open SQLite database: {exc}") from exc
        options.append(with_sqlite_storage_db(connection, table))
        logger.info(
            "Using SQLite storage with existing connection and table: %s", table
        )
    else:
        options.append(with_memory_storage())
        logger.info("Using in-memory storage (default)")
    return options


class _ThreadingWSGIServer(socketserver.ThreadingMixIn, WSGIServer):
    daemon_threads = True


def main(argv: list[str] | None = None) -> int:
    """Run the demo application with the visualizer until interrupted."""
    parser = argparse.ArgumentParser(
        description="Serve a demo application with the request visualizer."
    )
    parser.add_argument("--port", type=int, default=None, help="HTTP server port")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    try:
        options = options_from_env(os.environ)
    except ValueError as exc:
        logger.error("%s", exc)
        return 1

    port = args.port
    if port is None:
        port_text = os.environ.get("PORT", "")
        try:
            port = int(port_text) if port_text else DEFAULT_PORT
        except ValueError:
            logger.error("Invalid PORT value: %s", port_text)
            return 1

    app = wrap(demo_app, *options)
    try:
        server = make_server("", port, app, server_class=_ThreadingWSGIServer)
    except OSError as exc:
        logger.error("Server error: %s", exc)
        return 1
    with server:
        logger.info("Server started at http://localhost:%d", port)
        logger.info("Visit http://localhost:%d/__viz to see the dashboard", port)
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            pass
    return 0