"""Streaming M3U playlist parser and fetcher."""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from typing import AsyncIterator

from ..config import Settings
from ..exceptions import EmptyResponseError, FetchError, FlixSyncError
from ..models import CatalogEntry, ContentType, PlaylistSource, SourceKind
from ..normalizer import normalize
from .fetchers import BaseFetcher, FetchedBatch
from .http import ResilientHttpClient

logger = logging.getLogger(__name__)

EXTINF_PREFIX = "#EXTINF:"
DEFAULT_GROUP = "Uncategorized"
UNKNOWN_TITLE = "Unknown Channel"

_STREAM_ID_RE = re.compile(r"/(\d+)(?:\.[A-Za-z0-9]+)?$")


@dataclass(slots=True)
class M3UDirective:
    """Attributes read from an ``#EXTINF`` line, waiting for its URL line."""

    title: str
    group: str = DEFAULT_GROUP
    logo: str | None = None
    tvg_id: str | None = None


def extract_attribute(line: str, key: str) -> str | None:
    """Return ``key``'s value from an ``#EXTINF`` line.

    The quoted form ``key="value"`` wins; otherwise the unquoted form is read
    up to the next space or comma.
    """

    quoted = f'{key}="'
    start = line.find(quoted)
    if start != -1:
        start += len(quoted)
        end = line.find('"', start)
        if end != -1:
            return line[start:end]

    plain = f"{key}="
    start = line.find(plain)
    if start == -1:
        return None
    start += len(plain)
    end = len(line)
    for separator in (" ", ","):
        position = line.find(separator, start)
        if position != -1:
            end = min(end, position)
    return line[start:end]


def parse_directive(line: str) -> M3UDirective:
    """Parse the metadata part and display title of an ``#EXTINF`` line."""

    title = UNKNOWN_TITLE
    meta = line
    comma = line.rfind(",")
    if comma != -1:
        title = line[comma + 1 :].strip() or UNKNOWN_TITLE
        meta = line[:comma]
    return M3UDirective(
        title=title,
        group=extract_attribute(meta, "group-title") or DEFAULT_GROUP,
        logo=extract_attribute(meta, "tvg-logo") or None,
        tvg_id=extract_attribute(meta, "tvg-id") or None,
    )


def detect_content_type(url: str) -> ContentType:
    """Infer the content type from the stream URL's path and extension."""

    lowered = url.lower()
    if "/movie/" in lowered or lowered.endswith(".mp4") or lowered.endswith(".mkv"):
        return ContentType.MOVIE
    if "/series/" in lowered:
        return ContentType.SERIES
    return ContentType.LIVE


def build_entry(source_id: str, directive: M3UDirective, url: str) -> CatalogEntry:
    info = normalize(directive.title)
    stream_id = _STREAM_ID_RE.search(url)
    return CatalogEntry(
        source_id=source_id,
        url=url,
        title=directive.title,
        canonical_title=info.title or directive.title,
        group=directive.group,
        content_type=detect_content_type(url),
        cover=directive.logo,
        quality=info.quality,
        year=info.year,
        season=info.season,
        episode=info.episode,
        stream_id=int(stream_id.group(1)) if stream_id else None,
        tvg_id=directive.tvg_id,
    )


class M3UParser:
    """Line-at-a-time state machine turning M3U text into catalog entries."""

    def __init__(self, source_id: str):
        self._source_id = source_id
        self._pending: M3UDirective | None = None
        self.parsed = 0
        self.discarded = 0

    def feed(self, line: str) -> CatalogEntry | None:
        """Consume one line and return an entry once a directive has its URL."""

        stripped = line.strip()
        if not stripped:
            return None
        if stripped.startswith(EXTINF_PREFIX):
            if self._pending is not None:
                self.discarded += 1
            self._pending = parse_directive(stripped)
            return None
        if stripped.startswith("#") or self._pending is None:
            return None

        directive, self._pending = self._pending, None
        self.parsed += 1
        return build_entry(self._source_id, directive, stripped)

    def close(self) -> None:
        if self._pending is not None:
            self.discarded += 1
            self._pending = None


def parse_m3u(text: str, source_id: str) -> list[CatalogEntry]:
    """Parse a complete playlist held in memory."""

    parser = M3UParser(source_id)
    entries: list[CatalogEntry] = []
    for line in io.StringIO(text):
        entry = parser.feed(line)
        if entry is not None:
            entries.append(entry)
    parser.close()
    return entries


class M3UFetcher(BaseFetcher):
    """Download an M3U playlist as a line stream and yield entry batches."""

    kind = SourceKind.M3U

    def __init__(self, settings: Settings, http: ResilientHttpClient):
        self._settings = settings
        self._http = http

    async def fetch_batches(self, source: PlaylistSource) -> AsyncIterator[FetchedBatch]:
        parser = M3UParser(source.id)
        batch: list[CatalogEntry] = []
        received_lines = False
        try:
            async for line in self._http.stream_lines(source.url):
                if not received_lines and line.strip():
                    received_lines = True
                entry = parser.feed(line)
                if entry is None:
                    continue
                batch.append(entry)
                if len(batch) >= self._settings.sync_batch_size:
                    yield FetchedBatch(None, batch, label="Playlist")
                    batch = []
        except FlixSyncError as exc:
            raise FetchError(
                str(exc), source_id=source.id, content_type=None, cause=exc
            ) from exc
        parser.close()

        if not received_lines:
            error = EmptyResponseError(source.url)
            raise FetchError(str(error), source_id=source.id, cause=error)
        if parser.discarded:
            logger.debug(
                "Discarded %s dangling directives in playlist %s",
                parser.discarded,
                source.title,
            )
        if batch:
            yield FetchedBatch(None, batch, label="Playlist")
        logger.info("Parsed %s entries from playlist %s", parser.parsed, source.title)
