import io
import json
import threading
from http import HTTPStatus
from wsgiref.simple_server import WSGIRequestHandler, make_server
from wsgiref.util import setup_testing_defaults

import pytest

from govisual.dashboard import (
    REDACTED,
    DashboardApp,
    filter_env_vars,
    is_sensitive_env_var,
)
from govisual.model import RequestLog
from govisual.store import InMemoryStore, Store, StoreError


def make_environ(method="GET", path="/", query="", body=b""):
    environ = {}
    setup_testing_defaults(environ)
    environ.update(
        {
            "REQUEST_METHOD": method,
            "SCRIPT_NAME": "/__viz",
            "PATH_INFO": path,
            "QUERY_STRING": query,
            "CONTENT_LENGTH": str(len(body)),
            "wsgi.input": io.BytesIO(body),
        }
    )
    return environ


def call(app, environ):
    captured = {}

    def start_response(status, headers, exc_info=None):
        captured["status"] = status
        captured["headers"] = dict(headers)
        return lambda data: None

    result = app(environ, start_response)
    body = b"".join(result)
    return int(captured["status"].split()[0]), captured["headers"], body


def store_with(*paths):
    store = InMemoryStore(10)
    for number, path in enumerate(paths):
        store.add(RequestLog(id=f"req-{number}", method="GET", path=path, status_code=200))
    return store


class FailingStore(Store):
    def add(self, log):
        pass

    def get(self, request_id):
        return None

    def get_all(self):
        return []

    def clear(self):
        raise StoreError("cannot clear")

    def get_latest(self, n):
        return []

    def close(self):
        pass


def test_sensitive_env_var_names():
    assert is_sensitive_env_var("API_KEY")
    assert is_sensitive_env_var("my_password")
    assert is_sensitive_env_var("GITHUB_TOKEN")
    assert not is_sensitive_env_var("HOME")
    assert not is_sensitive_env_var("PATH")


def test_filter_env_vars_redacts_only_sensitive():
    env = {"HOME": "/home/user", "DB_PASSWORD": "password"}
    assert filter_env_vars(env) == {"HOME": "/home/user", "DB_PASSWORD": REDACTED}


def test_api_requests_lists_logs():
    app = DashboardApp(store_with("/a", "/b"))
    status, headers, body = call(app, make_environ(path="/api/requests"))
    assert status == HTTPStatus.OK
    assert headers["Content-Type"] == "application/json"
    assert [entry["Path"] for entry in json.loads(body)] == ["/a", "/b"]


def test_compare_needs_two_ids():
    app = DashboardApp(store_with("/a"))
    status, _, body = call(app, make_environ(path="/api/compare", query="id=req-0"))
    assert status == HTTPStatus.BAD_REQUEST
    assert body == b"At least two request IDs are required\n"


def test_compare_filters_by_id():
    app = DashboardApp(store_with("/a", "/b", "/c"))
    query = "id=req-2&id=req-0"
    status, _, body = call(app, make_environ(path="/api/compare", query=query))
    assert status == HTTPStatus.OK
    assert [entry["ID"] for entry in json.loads(body)] == ["req-0", "req-2"]


def test_clear_requires_post():
    store = store_with("/a")
    status, _, body = call(DashboardApp(store), make_environ(path="/api/clear"))
    assert status == HTTPStatus.METHOD_NOT_ALLOWED
    assert len(store.get_all()) == 1


def test_clear_empties_store():
    store = store_with("/a", "/b")
    status, _, body = call(DashboardApp(store), make_environ("POST", "/api/clear"))
    assert status == HTTPStatus.OK
    assert json.loads(body) == {"success": True}
    assert store.get_all() == []


def test_clear_failure_reports_error():
    status, _, body = call(DashboardApp(FailingStore()), make_environ("POST", "/api/clear"))
    assert status == HTTPStatus.INTERNAL_SERVER_ERROR
    assert body == b"Error clearing requests\n"


def test_unknown_path_is_404():
    status, _, body = call(DashboardApp(store_with()), make_environ(path="/nothing"))
    assert status == HTTPStatus.NOT_FOUND
    assert body == b"404 - Not Found"


def test_path_is_cleaned_before_routing():
    app = DashboardApp(store_with("/a"))
    status, _, body = call(app, make_environ(path="/api/../api/requests/"))
    assert status == HTTPStatus.OK
    assert json.loads(body)[0]["Path"] == "/a"


def test_dashboard_page(monkeypatch):
    monkeypatch.setenv("GOVISUAL_SAMPLE_TOKEN", "token")
    app = DashboardApp(store_with("/shown-path"))
    status, headers, body = call(app, make_environ(path="/"))
    page = body.decode()
    assert status == HTTPStatus.OK
    assert headers["Content-Type"] == "text/html"
    assert "/shown-path" in page
    assert "GOVISUAL_SAMPLE_TOKEN" in page
    assert REDACTED in page


def test_events_stream_first_message():
    app = DashboardApp(store_with("/a"))
    captured = {}

    def start_response(status, headers, exc_info=None):
        captured["headers"] = dict(headers)

    stream = app(make_environ(path="/api/events"), start_response)
    first = next(iter(stream))
    stream.close()
    assert captured["headers"]["Content-Type"] == "text/event-stream"
    assert first.startswith(b"data: ")
    assert first.endswith(b"\n\n")
    payload = json.loads(first[len(b"data: "):].decode())
    assert payload[0]["Path"] == "/a"


def test_replay_requires_post():
    status, _, _ = call(DashboardApp(store_with()), make_environ(path="/api/replay"))
    assert status == HTTPStatus.METHOD_NOT_ALLOWED


def test_replay_rejects_bad_json():
    env = make_environ("POST", "/api/replay", body=b"{not json")
    status, _, body = call(DashboardApp(store_with()), env)
    assert status == HTTPStatus.BAD_REQUEST
    assert body.startswith(b"Invalid request format: ")


def test_replay_rejects_bad_url():
    payload = json.dumps({"url": "no-scheme", "method": "GET"}).encode()
    env = make_environ("POST", "/api/replay", body=payload)
    status, _, body = call(DashboardApp(store_with()), env)
    assert status == HTTPStatus.INTERNAL_SERVER_ERROR
    assert body.startswith(b"Error creating request: ")


@pytest.fixture
def echo_url(monkeypatch):
    for name in ("http_proxy", "HTTP_PROXY", "all_proxy", "ALL_PROXY"):
        monkeypatch.delenv(name, raising=False)

    def echo_app(environ, start_response):
        size = int(environ.get("CONTENT_LENGTH") or 0)
        body = environ["wsgi.input"].read(size) if size else b""
        code = "404 Not Found" if environ["PATH_INFO"] == "/missing" else "200 OK"
        start_response(
            code,
            [
                ("Content-Type", "text/plain"),
                ("X-Echo-Method", environ["REQUEST_METHOD"]),
                ("X-Echo-Header", environ.get("HTTP_X_REPLAY", "")),
            ],
        )
        return [body]

    class QuietHandler(WSGIRequestHandler):
        def log_message(self, *args):
            pass

    server = make_server("127.0.0.1", 0, echo_app, handler_class=QuietHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_port}"
    server.shutdown()
    server.server_close()


def test_replay_sends_request(echo_url):
    payload = {
        "requestId": "req-0",
        "url": echo_url + "/echo",
        "method": "PUT",
        "headers": {"X-Replay": "yes"},
        "body": "payload-body",
    }
    env = make_environ("POST", "/api/replay", body=json.dumps(payload).encode())
    status, _, body = call(DashboardApp(store_with()), env)
    result = json.loads(body)
    assert status == HTTPStatus.OK
    assert result["statusCode"] == 200
    assert result["body"] == "payload-body"
    assert result["originalRequest"] == "req-0"
    assert result["headers"]["X-Echo-Method"] == ["PUT"]
    assert result["headers"]["X-Echo-Header"] == ["yes"]
    assert result["duration"] >= 0


def test_replay_passes_error_status_through(echo_url):
    payload = {"requestId": "req-1", "url": echo_url + "/missing", "method": "GET"}
    env = make_environ("POST", "/api/replay", body=json.dumps(payload).encode())
    status, _, body = call(DashboardApp(store_with()), env)
    assert status == HTTPStatus.OK
    assert json.loads(body)["statusCode"] == HTTPStatus.NOT_FOUND