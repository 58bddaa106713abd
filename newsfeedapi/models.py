"""Data records served by the news API and their JSON representations."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

_FRACTION = re.compile(r"\.(\d+)")


def _parse_time(value: Any) -> datetime:
    """Parse an RFC 3339 timestamp, accepting 'Z' and any fraction length."""
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    return datetime.fromisoformat(text)


def _format_time(value: datetime) -> str:
    """Render a timestamp as RFC 3339, using 'Z' for UTC."""
    text = value.isoformat()
    return text[:-6] + "Z" if text.endswith("+00:00") else text


def _text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _without(data: dict[str, Any], *optional: str) -> dict[str, Any]:
    """Drop the optional keys whose value is None."""
    return {k: v for k, v in data.items() if k not in optional or v is not None}


@dataclass
class ListItem:
    """A group as shown in news lists."""

    id: int
    time: datetime
    title: str
    description: str = ""
    enclosure: Optional[str] = None
    is_rt: bool = False
    source_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return _without(
            {
                "id": self.id,
                "date": _format_time(self.time),
                "title": self.title,
                "description": self.description or None,
                "enclosure": self.enclosure,
                "isRT": self.is_rt,
                "sourceName": self.source_name,
            },
            "description",
            "enclosure",
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ListItem":
        return cls(
            id=int(data["id"]),
            time=_parse_time(data["date"]),
            title=data.get("title") or "",
            description=data.get("description") or "",
            enclosure=_text(data.get("enclosure")),
            is_rt=bool(data.get("isRT", False)),
            source_name=data.get("sourceName") or "",
        )


@dataclass
class Source:
    """One feed entry belonging to a group."""

    title: str
    name: str
    time: datetime
    link: str
    description: Optional[str] = None
    full_text: Optional[str] = None
    enclosure: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return _without(
            {
                "title": self.title,
                "name": self.name,
                "pubDate": _format_time(self.time),
                "link": self.link,
                "description": self.description,
                "full_text": self.full_text,
                "enclosure": self.enclosure,
            },
            "description",
            "enclosure",
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Source":
        return cls(
            title=data.get("title") or "",
            name=data.get("name") or "",
            time=_parse_time(data["pubDate"]),
            link=data.get("link") or "",
            description=_text(data.get("description")),
            full_text=_text(data.get("full_text", data.get("fullText"))),
            enclosure=_text(data.get("enclosure")),
        )


@dataclass
class News:
    """A group with its full text and all of its sources."""

    id: int
    title: str
    time: datetime
    description: Optional[str] = None
    full_text: Optional[str] = None
    enclosure: Optional[str] = None
    sources: list[Source] = field(default_factory=list)
    views_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return _without(
            {
                "id": self.id,
                "title": self.title,
                "description": self.description,
                "date": _format_time(self.time),
                "rewrite": self.full_text,
                "enclosure": self.enclosure,
                "sources": [source.to_dict() for source in self.sources],
                "viewsCount": self.views_count,
            },
            "description",
            "enclosure",
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "News":
        return cls(
            id=int(data["id"]),
            title=data.get("title") or "",
            time=_parse_time(data["date"]),
            description=_text(data.get("description")),
            full_text=_text(data.get("rewrite")),
            enclosure=_text(data.get("enclosure")),
            sources=[Source.from_dict(item) for item in data.get("sources") or []],
            views_count=int(data.get("viewsCount") or 0),
        )