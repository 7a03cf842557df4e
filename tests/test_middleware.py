import io
import json
from wsgiref.util import setup_testing_defaults

from govisual.middleware import (
    MIDDLEWARE_ENVIRON_KEY,
    ROUTE_ENVIRON_KEY,
    PathMatcher,
    wrap,
)
from govisual.store import InMemoryStore


def make_environ(method="GET", path="/", query="", body=b"", headers=None):
    environ = {}
    setup_testing_defaults(environ)
    environ.update(
        {
            "REQUEST_METHOD": method,
            "SCRIPT_NAME": "",
            "PATH_INFO": path,
            "QUERY_STRING": query,
            "CONTENT_LENGTH": str(len(body)),
            "wsgi.input": io.BytesIO(body),
        }
    )
    for name, value in (headers or {}).items():
        environ["HTTP_" + name.upper().replace("-", "_")] = value
    return environ


def call(app, environ):
    captured = {"written": []}

    def start_response(status, headers, exc_info=None):
        captured["status"] = status
        captured["headers"] = headers
        return captured["written"].append

    result = app(environ, start_response)
    try:
        body = b"".join(result)
    finally:
        close = getattr(result, "close", None)
        if close is not None:
            close()
    return captured["status"], b"".join(captured["written"]) + body


class IgnoreHealth(PathMatcher):
    def should_ignore_path(self, path):
        return path == "/health"


def created_app(environ, start_response):
    start_response("201 Created", [("Content-Type", "text/plain")])
    return [b"hello world"]


def test_wrap_records_request_and_response():
    store = InMemoryStore(10)
    wrapped = wrap(created_app, store, True, True, PathMatcher())

    environ = make_environ("POST", "/test", "x=1", b"sample-body", {"X-Test": "test"})
    status, body = call(wrapped, environ)

    assert status == "201 Created"
    assert body == b"hello world"
    logs = store.get_all()
    assert len(logs) == 1
    log = logs[0]
    assert log.method == "POST"
    assert log.path == "/test"
    assert log.query == "x=1"
    assert log.request_body == "sample-body"
    assert log.response_body == "hello world"
    assert log.status_code == 201
    assert log.duration >= 0
    assert log.request_headers["X-Test"] == ["test"]


def test_request_body_still_readable_by_app():
    seen = []

    def reading_app(environ, start_response):
        length = int(environ["CONTENT_LENGTH"])
        seen.append(environ["wsgi.input"].read(length))
        start_response("200 OK", [])
        return [b"ok"]

    store = InMemoryStore(10)
    call(wrap(reading_app, store, True, False), make_environ("POST", "/x", body=b"abc"))
    assert seen == [b"abc"]
    assert store.get_all()[0].request_body == "abc"


def test_bodies_not_recorded_when_disabled():
    store = InMemoryStore(10)
    call(wrap(created_app, store, False, False), make_environ("POST", "/t", body=b"data"))
    log = store.get_all()[0]
    assert log.request_body == ""
    assert log.response_body == ""
    assert log.status_code == 201


def test_ignored_path_is_not_recorded():
    store = InMemoryStore(10)
    wrapped = wrap(created_app, store, True, True, IgnoreHealth())
    status, body = call(wrapped, make_environ(path="/health"))
    assert body == b"hello world"
    assert store.get_all() == []
    call(wrapped, make_environ(path="/other"))
    assert [log.path for log in store.get_all()] == ["/other"]


def test_write_callable_output_is_captured():
    def writing_app(environ, start_response):
        write = start_response("200 OK", [])
        write(b"first ")
        return [b"second"]

    store = InMemoryStore(10)
    status, body = call(wrap(writing_app, store, False, True), make_environ())
    assert body == b"first second"
    assert store.get_all()[0].response_body == "first second"


def test_default_status_is_taken_from_start_response():
    def ok_app(environ, start_response):
        start_response("200 OK", [])
        return [b""]

    store = InMemoryStore(10)
    call(wrap(ok_app, store, False, False), make_environ())
    assert store.get_all()[0].status_code == 200


def test_traces_taken_from_environ():
    def tracing_app(environ, start_response):
        environ[MIDDLEWARE_ENVIRON_KEY] = {"stack": [{"name": "auth"}]}
        environ[ROUTE_ENVIRON_KEY] = json.dumps({"pattern": "/users/{id}"})
        start_response("200 OK", [])
        return [b""]

    store = InMemoryStore(10)
    call(wrap(tracing_app, store, False, False), make_environ(path="/users/7"))
    log = store.get_all()[0]
    assert log.middleware_trace == [{"name": "auth"}]
    assert log.route_trace == {"pattern": "/users/{id}"}


def test_invalid_route_trace_is_ignored():
    def tracing_app(environ, start_response):
        environ[ROUTE_ENVIRON_KEY] = "not json"
        start_response("200 OK", [])
        return [b""]

    store = InMemoryStore(10)
    call(wrap(tracing_app, store, False, False), make_environ())
    assert store.get_all()[0].route_trace is None


def test_inner_result_is_closed():
    closed = []

    class Body(list):
        def close(self):
            closed.append(True)

    def app(environ, start_response):
        start_response("200 OK", [])
        return Body([b"x"])

    store = InMemoryStore(10)
    call(wrap(app, store, False, False), make_environ())
    assert closed == [True]
    assert len(store.get_all()) == 1