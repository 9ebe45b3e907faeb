"""Decode one WAF log line into an Event.

A record looks like (abridged):

    {"timestamp": 1700000000123,
     "httpRequest": {"clientIp": "10.0.0.1", "country": "NL",
                     "headers": [{"name": "Host", "value": "example.com"}],
                     "httpMethod": "GET", "uri": "/login", ...}}

The raw text is kept verbatim as the event detail; it is what ends up in
the state store and, pretty-printed, in the alert body.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from detector.errors import DecodeError

DEFAULT_TZ = ZoneInfo("Asia/Shanghai")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class HttpRequest:
    client_ip: str
    args: str = ""
    country: str = ""
    headers: list[tuple[str, str]] = field(default_factory=list)
    http_method: str = ""
    http_version: str = ""
    request_id: str = ""
    uri: str = ""


@dataclass
class Event:
    client_ip: str
    timestamp: datetime          # aware, UTC, millisecond precision
    detail: str                  # raw record, verbatim
    formatted_timestamp: str
    request: HttpRequest

    @property
    def timestamp_ms(self) -> int:
        return (self.timestamp - _EPOCH) // timedelta(milliseconds=1)


def format_timestamp(dt: datetime, tz: tzinfo = DEFAULT_TZ) -> str:
    """Render *dt* as ``2023-11-14T22:13:20 +08:00:00`` in *tz*."""
    local = dt.astimezone(tz)
    offset = local.utcoffset() or timedelta(0)
    sign = "-" if offset < timedelta(0) else "+"
    seconds = int(abs(offset).total_seconds())
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{local:%Y-%m-%dT%H:%M:%S} {sign}{hours:02d}:{minutes:02d}:{secs:02d}"


def decode_record(raw: str | bytes, tz: tzinfo = DEFAULT_TZ) -> Event:
    """Parse one raw record.  Raises DecodeError on anything malformed."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"record is not valid UTF-8: {e}") from e

    try:
        doc = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DecodeError(f"record is not valid JSON: {e}") from e

    if not isinstance(doc, dict):
        raise DecodeError("record must be a JSON object")

    req = doc.get("httpRequest")
    if not isinstance(req, dict):
        raise DecodeError("record has no httpRequest object")

    client_ip = req.get("clientIp")
    if not isinstance(client_ip, str) or not client_ip:
        raise DecodeError("httpRequest.clientIp is missing or empty")

    ts = _parse_timestamp(doc.get("timestamp"))
    try:
        formatted = format_timestamp(ts, tz)
    except (OverflowError, ValueError) as e:
        # Fits in UTC but not once shifted into the display zone.
        raise DecodeError(f"timestamp out of range for {tz}: {doc['timestamp']}") from e

    return Event(
        client_ip=client_ip,
        timestamp=ts,
        detail=raw,
        formatted_timestamp=formatted,
        request=HttpRequest(
            client_ip=client_ip,
            args=str(req.get("args") or ""),
            country=str(req.get("country") or ""),
            headers=_parse_headers(req.get("headers")),
            http_method=str(req.get("httpMethod") or ""),
            http_version=str(req.get("httpVersion") or ""),
            request_id=str(req.get("requestId") or ""),
            uri=str(req.get("uri") or ""),
        ),
    )


def _parse_timestamp(value) -> datetime:
    # bool is an int subclass; true/false is not a timestamp
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"timestamp must be integer epoch milliseconds, got {value!r}")
    try:
        return _EPOCH + timedelta(milliseconds=value)
    except OverflowError as e:
        raise DecodeError(f"timestamp out of range: {value}") from e


def _parse_headers(value) -> list[tuple[str, str]]:
    if not isinstance(value, list):
        return []
    headers = []
    for h in value:
        if isinstance(h, dict):
            headers.append((str(h.get("name", "")), str(h.get("value", ""))))
    return headers
