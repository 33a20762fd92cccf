from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class Tweet:
    id: str
    text: str

    # Remaining payload fields (author_id, created_at, ...), kept as received.
    extra: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {**self.extra, "id": self.id, "text": self.text}


@dataclass(frozen=True)
class MatchingRule:
    id: str
    tag: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "tag": self.tag}


@dataclass(frozen=True)
class DataMessage:
    tweets: tuple[Tweet, ...]
    matching_rules: tuple[MatchingRule, ...] = ()
    includes: dict[str, Any] = field(default_factory=dict, compare=False)
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [t.to_dict() for t in self.tweets],
            "matching_rules": [r.to_dict() for r in self.matching_rules],
            "includes": self.includes,
        }


class NoticeKind(str, Enum):
    # Declaration order is the classifier's priority order.
    ERROR = "error"
    DISCONNECT = "disconnect"
    WARN = "warn"
    INFO = "info"


@dataclass(frozen=True)
class SystemMessage:
    message: str
    sent: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "sent": self.sent.isoformat()}


# Exactly one entry per record; the mapping keeps the container uniform.
SystemNotice = dict[NoticeKind, SystemMessage]


def notice_to_dict(notice: SystemNotice) -> dict[str, Any]:
    return {kind.value: msg.to_dict() for kind, msg in notice.items()}
