"""Data models for sitemap entries and snapshots."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

CHANGE_FREQUENCIES = frozenset(
    {"always", "hourly", "daily", "weekly", "monthly", "yearly", "never"}
)

# Sort key for entries without a usable lastmod
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_w3c_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a W3C datetime string as used in sitemap ``<lastmod>`` elements.

    Reduced forms are read as the start of their period, so ``2024`` is
    January 1st and ``2024-06`` is June 1st.

    Args:
        value: Date string such as ``2024-06``, ``2024-01-02`` or
            ``2024-01-02T10:00:00.5+08:00``

    Returns:
        Timezone-aware datetime, or None if the value cannot be parsed
    """
    if not value:
        return None

    try:
        parsed = date_parser.isoparse(value.strip())
    except (ValueError, OverflowError):
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_priority(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        priority = float(value)
    except (TypeError, ValueError):
        return None
    if 0.0 <= priority <= 1.0:
        return priority
    return None


@dataclass
class UrlEntry:
    """A single ``<url>`` record from a sitemap."""

    location: str
    last_modified: Optional[str] = None
    change_frequency: Optional[str] = None
    priority: Optional[float] = None

    def __post_init__(self) -> None:
        if self.change_frequency is not None:
            freq = str(self.change_frequency).strip().lower()
            self.change_frequency = freq if freq in CHANGE_FREQUENCIES else None
        self.priority = _parse_priority(self.priority)

    @property
    def last_modified_at(self) -> Optional[datetime]:
        """Parsed ``last_modified`` value."""
        return parse_w3c_datetime(self.last_modified)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loc": self.location,
            "lastmod": self.last_modified,
            "changefreq": self.change_frequency,
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UrlEntry":
        return cls(
            location=data["loc"],
            last_modified=data.get("lastmod"),
            change_frequency=data.get("changefreq"),
            priority=data.get("priority"),
        )


def _recency_key(entry: UrlEntry) -> datetime:
    return entry.last_modified_at or _EPOCH


def sort_by_recency(entries: Iterable[UrlEntry]) -> List[UrlEntry]:
    """
    Sort entries newest first.

    Entries without a parseable ``last_modified`` sort after every dated
    entry. The sort is stable, so ties keep their sitemap order.

    Args:
        entries: URL entries to sort

    Returns:
        New list of entries, most recently modified first
    """
    entries = list(entries)
    dated = [e for e in entries if e.last_modified_at is not None]
    undated = [e for e in entries if e.last_modified_at is None]
    return sorted(dated, key=_recency_key, reverse=True) + undated


def dedupe_entries(entries: Iterable[UrlEntry]) -> List[UrlEntry]:
    """
    Collapse entries sharing a location, keeping the latest ``last_modified``.

    The first-seen position of each location is preserved.

    Args:
        entries: URL entries, possibly with repeated locations

    Returns:
        List of entries with unique locations
    """
    entries = list(entries)
    by_location: Dict[str, UrlEntry] = {}
    for entry in entries:
        existing = by_location.get(entry.location)
        if existing is None:
            by_location[entry.location] = entry
            continue
        if _recency_key(entry) > _recency_key(existing):
            by_location[entry.location] = entry

    duplicates = len(entries) - len(by_location)
    if duplicates > 0:
        logger.debug(f"Collapsed {duplicates} duplicate sitemap entries")

    return list(by_location.values())


@dataclass
class SitemapSnapshot:
    """Parsed view of one sitemap fetch."""

    urls: List[UrlEntry] = field(default_factory=list)
    content_hash: str = ""
    fetched_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def __post_init__(self) -> None:
        self.urls = dedupe_entries(self.urls)

    @property
    def locations(self) -> List[str]:
        """Entry locations in sitemap order."""
        return [entry.location for entry in self.urls]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "urls": [entry.to_dict() for entry in self.urls],
            "hash": self.content_hash,
            "lastFetched": self.fetched_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SitemapSnapshot":
        return cls(
            urls=[UrlEntry.from_dict(item) for item in data.get("urls", [])],
            content_hash=data.get("hash", ""),
            fetched_at=data.get("lastFetched", ""),
        )
