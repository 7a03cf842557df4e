"""Captured HTTP request records."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

Headers = dict[str, list[str]]

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_TIMESTAMP_RE = re.compile(
    r"(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?"
    r"(?P<tz>Z|[+-]\d{2}:\d{2})?"
)


def _now() -> datetime:
    return datetime.now().astimezone()


def _format_timestamp(ts: datetime) -> str:
    text = ts.isoformat()
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text


def _parse_timestamp(text: str) -> datetime:
    match = _TIMESTAMP_RE.fullmatch(text)
    if match is None:
        raise ValueError(f"invalid timestamp: {text!r}")
    fraction = (match["frac"] or "")[:6].ljust(6, "0")
    tz = match["tz"]
    suffix = "" if tz is None else ("+00:00" if tz == "Z" else tz)
    return datetime.fromisoformat(f"{match['base']}.{fraction}{suffix}")


def _canonical_header(name: str) -> str:
    return "-".join(part.capitalize() for part in name.split("-"))


def _wsgi_text(value: str) -> str:
    try:
        return value.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return value


def _copy_headers(headers: Mapping[str, Any] | None) -> Headers:
    if not headers:
        return {}
    return {
        key: [values] if isinstance(values, str) else list(values)
        for key, values in headers.items()
    }


@dataclass
class RequestLog:
    """One captured request and the response it produced."""

    id: str = ""
    timestamp: datetime = field(default_factory=_now)
    method: str = ""
    path: str = ""
    query: str = ""
    request_headers: Headers = field(default_factory=dict)
    response_headers: Headers = field(default_factory=dict)
    status_code: int = 0
    duration: int = 0
    request_body: str = ""
    response_body: str = ""
    error: str = ""
    middleware_trace: list[dict[str, Any]] = field(default_factory=list)
    route_trace: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form of the record; empty optional fields are left out."""
        data: dict[str, Any] = {
            "ID": self.id,
            "Timestamp": _format_timestamp(self.timestamp),
            "Method": self.method,
            "Path": self.path,
            "Query": self.query,
            "RequestHeaders": _copy_headers(self.request_headers),
            "ResponseHeaders": _copy_headers(self.response_headers),
            "StatusCode": self.status_code,
            "Duration": self.duration,
        }
        if self.request_body:
            data["RequestBody"] = self.request_body
        if self.response_body:
            data["ResponseBody"] = self.response_body
        if self.error:
            data["Error"] = self.error
        if self.middleware_trace:
            data["MiddlewareTrace"] = [dict(entry) for entry in self.middleware_trace]
        if self.route_trace:
            data["RouteTrace"] = dict(self.route_trace)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RequestLog:
        """Build a record from its JSON form."""
        stamp = data.get("Timestamp")
        route_trace = data.get("RouteTrace")
        return cls(
            id=data.get("ID", ""),
            timestamp=_parse_timestamp(stamp) if stamp else _ZERO_TIME,
            method=data.get("Method", ""),
            path=data.get("Path", ""),
            query=data.get("Query", ""),
            request_headers=_copy_headers(data.get("RequestHeaders")),
            response_headers=_copy_headers(data.get("ResponseHeaders")),
            status_code=int(data.get("StatusCode", 0)),
            duration=int(data.get("Duration", 0)),
            request_body=data.get("RequestBody", ""),
            response_body=data.get("ResponseBody", ""),
            error=data.get("Error", ""),
            middleware_trace=[dict(e) for e in data.get("MiddlewareTrace") or []],
            route_trace=dict(route_trace) if route_trace is not None else None,
        )


def generate_id() -> str:
    """Return an identifier made from the current local time."""
    return datetime.now().strftime("%Y%m%d-%H%M%S.%f")


def new_request_log(environ: Mapping[str, Any]) -> RequestLog:
    """Start a record for the request described by a WSGI environ."""
    headers: Headers = {}
    for key, value in environ.items():
        if key.startswith("HTTP_"):
            name = key[5:]
        elif key in ("CONTENT_TYPE", "CONTENT_LENGTH") and value:
            name = key
        else:
            continue
        headers.setdefault(_canonical_header(name.replace("_", "-")), []).append(
            str(value)
        )

    path = _wsgi_text(environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", ""))
    return RequestLog(
        id=generate_id(),
        timestamp=_now(),
        method=environ.get("REQUEST_METHOD", "GET"),
        path=path or "/",
        query=environ.get("QUERY_STRING", ""),
        request_headers=headers,
    )