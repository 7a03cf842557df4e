"""Wrapping a WSGI application with request recording and the dashboard."""

from __future__ import annotations

import atexit
import html
import logging
from typing import Callable, Iterable

from govisual.dashboard import DashboardApp
from govisual.factory import StorageConfig, new_store
from govisual.middleware import wrap as record_requests
from govisual.options import Config, Option, default_config
from govisual.store import InMemoryStore, Store, StoreError

logger = logging.getLogger(__name__)


def _close_store(store: Store) -> None:
    try:
        store.close()
    except StoreError as exc:
        logger.error("Error closing storage: %s", exc)


class _VisualizerApp:
    """Serves the dashboard under its path and records every other request."""

    def __init__(self, app: Callable, config: Config, store: Store) -> None:
        self.config = config
        self.store = store
        self._recorded = record_requests(
            app, store, config.log_request_body, config.log_response_body, config
        )
        self._dashboard = DashboardApp(store)

    def __call__(self, environ: dict, start_response) -> Iterable[bytes]:
        prefix = self.config.dashboard_path
        path = environ.get("PATH_INFO", "")
        if not path.startswith(prefix):
            return self._recorded(environ, start_response)

        rest = path[len(prefix):]
        if not rest:
            return self._redirect(environ, start_response)
        inner = dict(environ)
        inner["SCRIPT_NAME"] = environ.get("SCRIPT_NAME", "") + prefix
        inner["PATH_INFO"] = rest
        return self._dashboard(inner, start_response)

    def _redirect(self, environ: dict, start_response) -> list[bytes]:
        location = environ.get("SCRIPT_NAME", "") + self.config.dashboard_path + "/"
        headers = [("Location", location)]
        body = b""
        if environ.get("REQUEST_METHOD", "GET") in ("GET", "HEAD"):
            headers.append(("Content-Type", "text/html; charset=utf-8"))
            body = f'<a href="{html.escape(location)}">Found</a>.\n\n'.encode()
        headers.append(("Content-Length", str(len(body))))
        start_response("302 Found", headers)
        return [body]


def wrap(app: Callable, *args: Option) -> _VisualizerApp:
    """Return ``app`` wrapped with request recording and the dashboard.

    Options are applied to the default configuration in order. If the
    configured storage cannot be created, requests are kept in memory.
    """
    config = default_config()
    for option in args:
        option(config)

    storage = StorageConfig(
        type=config.storage_type,
        capacity=config.max_requests,
        connection_string=config.connection_string,
        table_name=config.table_name,
        ttl=config.redis_ttl,
        existing_db=config.existing_db,
    )
    try:
        store = new_store(storage)
    except StoreError as exc:
        logger.warning(
            "Failed to create configured storage backend: %s. "
            "Falling back to in-memory storage.",
            exc,
        )
        store = InMemoryStore(config.max_requests)

    atexit.register(_close_store, store)
    return _VisualizerApp(app, config, store)