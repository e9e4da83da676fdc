"""Data model for a go link."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class Link:
    """A single alias → URL mapping as stored in links.json."""

    alias: str
    url: str
    description: str = ""
    category: str = ""
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, d: dict[str, Any], alias: str | None = None) -> Link:
        """Build a Link from its JSON object. `alias` is the mapping key, used if the object lacks one."""
        if not isinstance(d, dict):
            msg = f"link {alias!r} must be an object, got {type(d).__name__}"
            raise ValueError(msg)
        # null reads as empty, the way other tools write these files
        fields = {
            "alias": d.get("alias") if d.get("alias") is not None else alias,
            "url": d.get("url"),
            "description": d.get("description") or "",
            "category": d.get("category") or "",
            "created_at": d.get("created_at") or "",
            "updated_at": d.get("updated_at") or "",
        }
        for name, value in fields.items():
            if not isinstance(value, str):
                msg = f"link {alias!r}: field {name!r} must be a string"
                raise ValueError(msg)
        return cls(**fields)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "alias": self.alias,
            "url": self.url,
        }
        if self.description:
            d["description"] = self.description
        if self.category:
            d["category"] = self.category
        d["created_at"] = self.created_at
        d["updated_at"] = self.updated_at
        return d


def check_url(url: str) -> str:
    """Return url unchanged, or raise ValueError if it is empty or holds control characters."""
    if not url:
        msg = "url cannot be empty"
        raise ValueError(msg)
    if any(ord(c) < 0x20 or ord(c) == 0x7F for c in url):
        msg = "url cannot contain control characters (CR, LF, tab, ...)"
        raise ValueError(msg)
    return url


def new_link(alias: str, url: str, description: str = "", category: str = "") -> Link:
    """Create a link stamped with the current time."""
    now = _now()
    return Link(
        alias=alias,
        url=url,
        description=description,
        category=category,
        created_at=now,
        updated_at=now,
    )
