from __future__ import annotations

import dataclasses
import datetime as dt

from .version import VersionIdentity

SOURCE_TAG = "tag"
SOURCE_ARCHIVE = "archive"


@dataclasses.dataclass(frozen=True)
class TagRef:
    name: str
    commit: str = ""


@dataclasses.dataclass(frozen=True)
class ManifestEntry:
    version: str
    url: str
    date: dt.datetime | None = None
    important: bool = False


@dataclasses.dataclass(frozen=True)
class ReleaseDescriptor:
    version: VersionIdentity
    kind: str  # SOURCE_TAG or SOURCE_ARCHIVE
    locator: str  # tag name, or archive URL/path
    declared_date: dt.datetime | None = None

    @property
    def is_tag(self) -> bool:
        return self.kind == SOURCE_TAG


@dataclasses.dataclass(frozen=True)
class SkippedRelease:
    label: str
    reason: str


@dataclasses.dataclass(frozen=True)
class LineCounts:
    total: int
    languages: dict[str, int]


@dataclasses.dataclass(frozen=True)
class StatsRecord:
    version: VersionIdentity
    timestamp: str  # ISO 8601 in UTC, "" when unknown
    total: int
    languages: dict[str, int]

    def __post_init__(self) -> None:
        object.__setattr__(self, "languages", dict(sorted(self.languages.items())))


def format_timestamp(value: dt.datetime | None) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc).isoformat()


def parse_timestamp(value: object) -> dt.datetime | None:
    """Accepts dates, datetimes and ISO strings (`2011-07-21`, `2011-07-21T19:17:23-07:00`)."""
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        parsed = value
    elif isinstance(value, dt.date):
        parsed = dt.datetime(value.year, value.month, value.day)
    else:
        s = str(value).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        parsed = dt.datetime.fromisoformat(s)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed
