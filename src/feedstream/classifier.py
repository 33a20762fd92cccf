from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any

from .errors import DecodeError
from .messages import DataMessage, MatchingRule, NoticeKind, SystemMessage, SystemNotice, Tweet

# RFC 3339 date-time; the offset is mandatory.
_RFC3339_RE = re.compile(
    r"^[0-9]{4}-[0-9]{2}-[0-9]{2}[Tt][0-9]{2}:[0-9]{2}:[0-9]{2}(\.[0-9]+)?([Zz]|[+-][0-9]{2}:[0-9]{2})$"
)


def parse_rfc3339(s: str) -> datetime:
    if not _RFC3339_RE.match(s):
        raise ValueError(f"not an RFC 3339 timestamp: {s!r}")
    # fromisoformat wants an upper-case separator and zone designator.
    return datetime.fromisoformat(s.upper())


def _as_str(v: Any) -> str | None:
    return v if isinstance(v, str) else None


def _tweet(obj: Any, *, line: str) -> Tweet:
    if not isinstance(obj, dict):
        raise DecodeError("data payload is not an object", line=line)
    tid = _as_str(obj.get("id"))
    text = _as_str(obj.get("text"))
    if tid is None or text is None:
        raise DecodeError("data payload needs string id and text", line=line)
    extra = {k: v for k, v in obj.items() if k not in ("id", "text")}
    return Tweet(id=tid, text=text, extra=extra)


def _matching_rules(v: Any, *, line: str) -> tuple[MatchingRule, ...]:
    if v is None:
        return ()
    if not isinstance(v, list):
        raise DecodeError("matching_rules is not an array", line=line)
    out: list[MatchingRule] = []
    for item in v:
        rid = _as_str(item.get("id")) if isinstance(item, dict) else None
        tag = _as_str(item.get("tag")) if isinstance(item, dict) else None
        if rid is None or tag is None:
            raise DecodeError("matching rule needs string id and tag", line=line)
        out.append(MatchingRule(id=rid, tag=tag))
    return tuple(out)


def decode_data(obj: dict[str, Any], *, line: str) -> DataMessage:
    payload = obj["data"]
    if isinstance(payload, list):
        if not payload:
            raise DecodeError("data payload is an empty array", line=line)
        tweets = tuple(_tweet(p, line=line) for p in payload)
    else:
        tweets = (_tweet(payload, line=line),)

    includes = obj.get("includes")
    if includes is not None and not isinstance(includes, dict):
        raise DecodeError("includes is not an object", line=line)

    return DataMessage(
        tweets=tweets,
        matching_rules=_matching_rules(obj.get("matching_rules"), line=line),
        includes=includes or {},
        raw=obj,
    )


def decode_notice(kind: NoticeKind, body: Any, *, line: str) -> SystemNotice:
    if not isinstance(body, dict):
        raise DecodeError(f"{kind.value} notice is not an object", line=line)
    message = _as_str(body.get("message"))
    sent = _as_str(body.get("sent"))
    if message is None or sent is None:
        raise DecodeError(f"{kind.value} notice needs string message and sent", line=line)
    try:
        sent_at = parse_rfc3339(sent)
    except ValueError as e:
        raise DecodeError(f"{kind.value} notice has a bad timestamp ({e})", line=line) from e
    return {kind: SystemMessage(message=message, sent=sent_at)}


def classify(line: bytes | str) -> DataMessage | SystemNotice | None:
    """Turn one record into a DataMessage, a one-entry SystemNotice, or None.

    None means the record was a keep-alive. Every other outcome that is not a
    message raises DecodeError; nothing is dropped silently.

    Envelopes are matched by key presence, data first and then each notice
    kind in NoticeKind order. The first match decides the shape even if its
    body turns out to be invalid.
    """

    if isinstance(line, bytes):
        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"invalid utf-8 ({e})", line=line.decode("utf-8", errors="replace")) from e
    else:
        text = line

    if not text:
        return None

    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(f"json_decode_error: {e}", line=text) from e

    if not isinstance(obj, dict):
        raise DecodeError(f"unexpected_json_type: {type(obj).__name__}", line=text)

    if "data" in obj:
        return decode_data(obj, line=text)

    for kind in NoticeKind:
        if kind.value in obj:
            return decode_notice(kind, obj[kind.value], line=text)

    raise DecodeError("unrecognized envelope", line=text)
