"""WSGI middleware that records each request and its response in a store."""

from __future__ import annotations

import io
import json
import time
from typing import Any, Callable, Iterable, Iterator

from govisual.model import RequestLog, new_request_log
from govisual.store import Store

MIDDLEWARE_ENVIRON_KEY = "govisual.middleware"
ROUTE_ENVIRON_KEY = "govisual.route"

StartResponse = Callable[..., Callable[[bytes], Any]]
WSGIApp = Callable[[dict, StartResponse], Iterable[bytes]]


class PathMatcher:
    """Decides which request paths are left unrecorded; this one records every path."""

    def should_ignore_path(self, path: str) -> bool:
        return False


def _request_path(environ: dict) -> str:
    raw = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
    try:
        text = raw.encode("latin-1").decode("utf-8")
    except UnicodeError:
        text = raw
    return text or "/"


def _read_body(environ: dict) -> bytes:
    stream = environ.get("wsgi.input")
    if stream is None:
        return b""
    length = environ.get("CONTENT_LENGTH")
    try:
        size = int(length) if length else None
    except ValueError:
        size = None
    if size is None:
        return stream.read() if environ.get("wsgi.input_terminated") else b""
    return stream.read(size) if size > 0 else b""


class _Recorder:
    """Collects what the application sends back and stores the finished log."""

    def __init__(
        self, store: Store, log: RequestLog, capture_body: bool, environ: dict
    ) -> None:
        self._store = store
        self._log = log
        self._environ = environ
        self._chunks: list[bytes] | None = [] if capture_body else None
        self._status_code = 200
        self._started = time.perf_counter()
        self._finished = False

    def capture(self, data: bytes) -> None:
        if self._chunks is not None and data:
            self._chunks.append(bytes(data))

    def wrap_start_response(self, start_response: StartResponse) -> StartResponse:
        def recording_start_response(status, headers, exc_info=None):
            try:
                self._status_code = int(status.split(None, 1)[0])
            except (ValueError, IndexError):
                pass
            if exc_info is not None:
                write = start_response(status, headers, exc_info)
            else:
                write = start_response(status, headers)

            def recording_write(data: bytes):
                self.capture(data)
                return write(data)

            return recording_write

        return recording_start_response

    def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        log = self._log
        log.duration = int((time.perf_counter() - self._started) * 1000)
        log.status_code = self._status_code

        middleware_info = self._environ.get(MIDDLEWARE_ENVIRON_KEY)
        if isinstance(middleware_info, dict):
            stack = middleware_info.get("stack")
            if isinstance(stack, list) and all(isinstance(e, dict) for e in stack):
                log.middleware_trace = stack

        route = self._environ.get(ROUTE_ENVIRON_KEY)
        if isinstance(route, str):
            try:
                route_info = json.loads(route)
            except ValueError:
                route_info = None
            if isinstance(route_info, dict):
                log.route_trace = route_info

        if self._chunks is not None:
            log.response_body = b"".join(self._chunks).decode("utf-8", errors="replace")

        self._store.add(log)


class _RecordedBody:
    """The application's response body; the log is stored when it is closed."""

    def __init__(self, result: Iterable[bytes], recorder: _Recorder) -> None:
        self._result = result
        self._recorder = recorder

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._result:
            self._recorder.capture(chunk)
            yield chunk

    def close(self) -> None:
        try:
            close = getattr(self._result, "close", None)
            if close is not None:
                close()
        finally:
            self._recorder.finish()


def wrap(
    app: WSGIApp,
    store: Store,
    log_request_body: bool = False,
    log_response_body: bool = False,
    path_matcher: PathMatcher | None = None,
) -> WSGIApp:
    """Return a WSGI app that runs ``app`` and records each request in ``store``.

    The record is stored when the server closes the response body.
    """

    def recorded_app(environ: dict, start_response: StartResponse):
        if path_matcher is not None and path_matcher.should_ignore_path(
            _request_path(environ)
        ):
            return app(environ, start_response)

        log = new_request_log(environ)
        if log_request_body:
            body = _read_body(environ)
            log.request_body = body.decode("utf-8", errors="replace")
            environ["wsgi.input"] = io.BytesIO(body)
            environ["CONTENT_LENGTH"] = str(len(body))

        recorder = _Recorder(store, log, log_response_body, environ)
        result = app(environ, recorder.wrap_start_response(start_response))
        return _RecordedBody(result, recorder)

    return recorded_app