"""Domain models flowing through the ingestion pipeline."""

from __future__ import annotations

import calendar
import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ContentType(str, Enum):
    """Kind of playable item stored in the catalog."""

    LIVE = "live"
    MOVIE = "movie"
    SERIES = "series"
    SERIES_EPISODE = "series_episode"

    @property
    def is_episodic(self) -> bool:
        return self in (ContentType.SERIES, ContentType.SERIES_EPISODE)


class SourceKind(str, Enum):
    """Upstream protocol of a playlist source."""

    M3U = "m3u"
    XTREAM = "xtream"


# Content types in the order a sync run processes them.
SYNC_ORDER: tuple[ContentType, ...] = (
    ContentType.LIVE,
    ContentType.MOVIE,
    ContentType.SERIES,
)


class PlaylistSource(BaseModel):
    """A configured upstream playlist."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    url: str
    kind: SourceKind
    last_synced_at: datetime | None = None

    def is_fresh(self, window_seconds: int, *, now: datetime | None = None) -> bool:
        """Return whether the last successful sync happened inside the window."""

        if self.last_synced_at is None or window_seconds <= 0:
            return False
        reference = now or datetime.utcnow()
        return (reference - self.last_synced_at).total_seconds() < window_seconds


class CatalogEntry(BaseModel):
    """One playable item as produced by a fetcher or read back from storage."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int | None = None
    source_id: str
    url: str
    title: str
    canonical_title: str
    group: str = Field(default="Uncategorized", alias="group_title")
    content_type: ContentType
    cover: str | None = None
    quality: str | None = None
    year: str | None = None
    season: int | None = None
    episode: int | None = None
    series_id: str | None = None
    stream_id: int | None = None
    tvg_id: str | None = None
    tmdb_id: int | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    added_at: datetime | None = None

    def content_hash(self) -> str:
        """Return a stable digest over the sync-owned fields that can change upstream."""

        parts = (
            self.title,
            self.canonical_title,
            self.group,
            self.content_type.value,
            self.cover or "",
            self.quality or "",
            self.series_id or "",
            str(self.season or 0),
            str(self.episode or 0),
            self.tvg_id or "",
        )
        return hashlib.sha1("\x1f".join(parts).encode("utf-8")).hexdigest()


@dataclass(slots=True)
class MatchResult:
    """External metadata reference for a catalog entry."""

    tmdb_id: int
    poster_path: str | None = None
    backdrop_path: str | None = None
    title: str | None = None
    media_type: str | None = None


class SyncStage(str, Enum):
    """States of one source's sync run."""

    IDLE = "idle"
    CONNECTING = "connecting"
    FETCHING = "fetching"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class SyncStats:
    """Running counters for a sync run, surfaced with every progress event."""

    live_added: int = 0
    movies_added: int = 0
    series_added: int = 0
    episodes_added: int = 0
    updated: int = 0
    unchanged: int = 0
    purged: int = 0
    total_processed: int = 0
    stage: str = "Idle"

    def record_added(self, content_type: ContentType, count: int) -> None:
        if content_type is ContentType.LIVE:
            self.live_added += count
        elif content_type is ContentType.MOVIE:
            self.movies_added += count
        elif content_type is ContentType.SERIES:
            self.series_added += count
        else:
            self.episodes_added += count

    @property
    def added(self) -> int:
        return self.live_added + self.movies_added + self.series_added + self.episodes_added

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.purged)


@dataclass(slots=True)
class SyncProgress:
    """Progress event emitted by the sync engine."""

    source_id: str
    stage: SyncStage
    label: str
    stats: SyncStats
    content_type: ContentType | None = None


@dataclass(slots=True)
class UpsertOutcome:
    """Per-batch persistence counters."""

    inserted: dict[ContentType, int] = field(default_factory=dict)
    updated: int = 0
    unchanged: int = 0

    @property
    def inserted_total(self) -> int:
        return sum(self.inserted.values())


@dataclass(slots=True)
class Programme:
    """Short EPG listing for a live channel."""

    channel_url: str
    source_id: str
    title: str
    start: datetime
    end: datetime
    description: str | None = None

    @property
    def programme_id(self) -> str:
        return f"{self.channel_url}_{calendar.timegm(self.start.utctimetuple())}"

    def is_live(self, now: datetime | None = None) -> bool:
        reference = now or datetime.utcnow()
        return self.start <= reference < self.end


@dataclass(slots=True)
class SearchFilters:
    """Optional narrowing applied to library searches."""

    content_types: tuple[ContentType, ...] = ()
    source_id: str | None = None
    only_4k: bool = False

    @property
    def active(self) -> bool:
        return bool(self.content_types or self.source_id or self.only_4k)
