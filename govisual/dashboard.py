"""The dashboard: an HTML page and a JSON API over the stored request logs."""

from __future__ import annotations

import html
import json
import os
import platform
import posixpath
import socket
import string
import time
import urllib.error
import urllib.request
from http import HTTPStatus
from http.client import HTTPException
from typing import Any, Iterable, Iterator, Mapping
from urllib.parse import parse_qs

from govisual.store import Store, StoreError

REDACTED = "[REDACTED]"
REPLAY_TIMEOUT = 30.0

_SENSITIVE_KEYS = (
    "API_KEY",
    "SECRET",
    "PASSWORD",
    "TOKEN",
    "CREDENTIAL",
    "AUTH",
    "CERTIFICATE",
    "PRIVATE",
    "KEY",
)

_ASCII_UPPER = str.maketrans(string.ascii_lowercase, string.ascii_uppercase)


def is_sensitive_env_var(key: str) -> bool:
    """Return True if an environment variable name looks like it holds a secret."""
    upper = key.translate(_ASCII_UPPER)
    return any(word in upper for word in _SENSITIVE_KEYS)


def filter_env_vars(env: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return the environment with the values of sensitive variables redacted."""
    source = os.environ if env is None else env
    return {
        key: REDACTED if is_sensitive_env_var(key) else value
        for key, value in source.items()
    }


def _status(code: int) -> str:
    return f"{code} {HTTPStatus(code).phrase}"


def _clean_path(path: str) -> str:
    if not path:
        return "."
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _encode_json(value: Any, escape_html: bool) -> str:
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    if escape_html:
        text = (
            text.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")
        )
    return text.replace("\u2028", "\\u2028").replace("\u2029", "\\u2029")


def _canonical_header(name: str) -> str:
    return "-".join(part.capitalize() for part in name.split("-"))


def _read_body(environ: dict) -> bytes:
    stream = environ.get("wsgi.input")
    if stream is None:
        return b""
    try:
        size = int(environ.get("CONTENT_LENGTH") or 0)
    except ValueError:
        size = 0
    return stream.read(size) if size > 0 else b""


def _parse_replay(raw: bytes) -> dict[str, Any]:
    data = json.loads(raw.decode("utf-8"))
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    parsed: dict[str, Any] = {}
    for name in ("requestId", "url", "method", "body"):
        value = data.get(name)
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise ValueError(f"{name} must be a string")
        parsed[name] = value
    headers = data.get("headers") or {}
    if not isinstance(headers, dict) or not all(
        isinstance(v, str) for v in headers.values()
    ):
        raise ValueError("headers must be an object of strings")
    parsed["headers"] = headers
    return parsed


_PAGE = string.Template(
    """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Request Visualizer</title>
<style>
body { font-family: sans-serif; margin: 2em; }
table { border-collapse: collapse; margin-bottom: 2em; }
th, td { border: 1px solid #ccc; padding: 4px 8px; text-align: left; }
</style>
</head>
<body>
<h1>Request Visualizer</h1>
<section>
<h2>Requests</h2>
<button id="clear" type="button">Clear</button>
<table id="requests">
<thead><tr><th>Time</th><th>Method</th><th>Path</th><th>Status</th><th>Duration</th></tr></thead>
<tbody>
$rows
</tbody>
</table>
</section>
<section>
<h2>System</h2>
<table>
$system
</table>
</section>
<section>
<h2>Environment</h2>
<table>
$env
</table>
</section>
<script>
var source = new EventSource("api/events");
source.onmessage = function (event) {
  var logs = JSON.parse(event.data) || [];
  var body = document.querySelector("#requests tbody");
  body.textContent = "";
  logs.forEach(function (log) {
    var row = body.insertRow();
    var target = log.Path + (log.Query ? "?" + log.Query : "");
    [log.Timestamp, log.Method, target, log.StatusCode, log.Duration + " ms"].forEach(
      function (value) { row.insertCell().textContent = value; });
  });
};
document.getElementById("clear").onclick = function () {
  fetch("api/clear", {method: "POST"}).then(function () { location.reload(); });
};
</script>
</body>
</html>
"""
)


def _cells(values: Iterable[Any]) -> str:
    return "<tr>" + "".join(f"<td>{html.escape(str(v))}</td>" for v in values) + "</tr>"


class DashboardApp:
    """WSGI app serving the dashboard page and its API under its mount point."""

    def __init__(self, store: Store) -> None:
        self.store = store
        self.event_interval = 2.0

    def __call__(self, environ: dict, start_response):
        route = _clean_path(environ.get("PATH_INFO", ""))
        if route == "/api/requests":
            return self._requests(start_response)
        if route == "/api/events":
            return self._events(start_response)
        if route == "/api/clear":
            return self._clear(environ, start_response)
        if route == "/api/compare":
            return self._compare(environ, start_response)
        if route == "/api/replay":
            return self._replay(environ, start_response)
        if route == "/":
            return self._dashboard(start_response)
        return self._respond(start_response, 404, b"404 - Not Found", [])

    @staticmethod
    def _respond(start_response, code: int, body: bytes, headers: list) -> list[bytes]:
        start_response(_status(code), headers + [("Content-Length", str(len(body)))])
        return [body]

    def _error(self, start_response, code: int, message: str) -> list[bytes]:
        headers = [
            ("Content-Type", "text/plain; charset=utf-8"),
            ("X-Content-Type-Options", "nosniff"),
        ]
        return self._respond(start_response, code, (message + "\n").encode(), headers)

    def _json(self, start_response, value: Any) -> list[bytes]:
        body = (_encode_json(value, escape_html=False) + "\n").encode("utf-8")
        return self._respond(
            start_response, 200, body, [("Content-Type", "application/json")]
        )

    def _logs_payload(self) -> list[dict[str, Any]]:
        return [log.to_dict() for log in self.store.get_all()]

    def _dashboard(self, start_response) -> list[bytes]:
        rows = "\n".join(
            _cells(
                (
                    log.timestamp.isoformat(),
                    log.method,
                    log.path + (f"?{log.query}" if log.query else ""),
                    log.status_code,
                    f"{log.duration} ms",
                )
            )
            for log in self.store.get_all()
        )
        system = {
            "Python": platform.python_version(),
            "OS": platform.system(),
            "Architecture": platform.machine(),
            "Hostname": socket.gethostname(),
            "CPUs": os.cpu_count() or 0,
        }
        page = _PAGE.substitute(
            rows=rows,
            system="\n".join(_cells(item) for item in system.items()),
            env="\n".join(_cells(item) for item in sorted(filter_env_vars().items())),
        )
        return self._respond(
            start_response, 200, page.encode("utf-8"), [("Content-Type", "text/html")]
        )

    def _requests(self, start_response) -> list[bytes]:
        return self._json(start_response, self._logs_payload())

    def _events(self, start_response) -> Iterator[bytes]:
        start_response(
            _status(200),
            [
                ("Content-Type", "text/event-stream"),
                ("Cache-Control", "no-cache"),
                ("Access-Control-Allow-Origin", "*"),
            ],
        )
        return self._event_stream()

    def _event_stream(self) -> Iterator[bytes]:
        while True:
            payload = _encode_json(self._logs_payload(), escape_html=True)
            yield f"data: {payload}\n\n".encode("utf-8")
            time.sleep(self.event_interval)

    def _clear(self, environ: dict, start_response) -> list[bytes]:
        if environ.get("REQUEST_METHOD") != "POST":
            return self._respond(start_response, 405, b"", [])
        try:
            self.store.clear()
        except StoreError:
            return self._error(start_response, 500, "Error clearing requests")
        return self._respond(
            start_response,
            200,
            b'{"success":true}',
            [("Content-Type", "application/json")],
        )

    def _compare(self, environ: dict, start_response) -> list[bytes]:
        ids = parse_qs(environ.get("QUERY_STRING", ""), keep_blank_values=True).get(
            "id", []
        )
        if len(ids) < 2:
            return self._error(
                start_response, 400, "At least two request IDs are required"
            )
        wanted = set(ids)
        selected = [log.to_dict() for log in self.store.get_all() if log.id in wanted]
        return self._json(start_response, selected)

    def _replay(self, environ: dict, start_response) -> list[bytes]:
        if environ.get("REQUEST_METHOD") != "POST":
            return self._respond(start_response, 405, b"", [])
        try:
            replay = _parse_replay(_read_body(environ))
        except (ValueError, UnicodeDecodeError) as exc:
            return self._error(start_response, 400, f"Invalid request format: {exc}")

        body = replay["body"].encode("utf-8")
        try:
            request = urllib.request.Request(
                replay["url"], data=body or None, method=replay["method"] or "GET"
            )
        except ValueError as exc:
            return self._error(start_response, 500, f"Error creating request: {exc}")
        for key, value in replay["headers"].items():
            request.add_header(key, value)

        started = time.perf_counter()
        try:
            response = urllib.request.urlopen(request, timeout=REPLAY_TIMEOUT)
            status_code = response.status
        except urllib.error.HTTPError as err:
            response = err
            status_code = err.code
        except (OSError, ValueError, HTTPException) as exc:
            return self._error(start_response, 500, f"Error executing request: {exc}")
        duration = int((time.perf_counter() - started) * 1000)

        try:
            response_body = response.read()
        except (OSError, HTTPException) as exc:
            return self._error(
                start_response, 500, f"Error reading response body: {exc}"
            )
        finally:
            response.close()

        message = response.headers
        headers: dict[str, list[str]] = {}
        for key in dict.fromkeys(message.keys() if message is not None else []):
            headers[_canonical_header(key)] = list(message.get_all(key) or [])

        return self._json(
            start_response,
            {
                "statusCode": status_code,
                "headers": headers,
                "body": response_body.decode("utf-8", errors="replace"),
                "duration": duration,
                "originalRequest": replay["requestId"],
            },
        )