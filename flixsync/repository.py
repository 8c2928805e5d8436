"""Storage collaborator for playlists, catalog entries and programmes."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Iterable, Mapping, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from .database import Database
from .db_models import (
    SYNC_OWNED_COLUMNS,
    CatalogEntryRecord,
    PlaylistRecord,
    ProgrammeRecord,
)
from .models import (
    CatalogEntry,
    ContentType,
    MatchResult,
    PlaylistSource,
    Programme,
    SearchFilters,
    SourceKind,
    UpsertOutcome,
)
from .normalizer import canonical_key, normalize, similarity
from .utils import chunked

logger = logging.getLogger(__name__)

# Upper bound for IN (...) lists sent in one statement.
_IN_CHUNK = 500
_SEARCH_FETCH_LIMIT = 400
_MATCH_FETCH_LIMIT = 100
_MATCH_TITLE_LIMIT = 50


class CatalogRepository:
    """Persist and query the catalog through explicit, per-field statements.

    The sync engine writes only the columns listed in ``SYNC_OWNED_COLUMNS``
    and the enrichment service only the metadata columns, so the two may run
    against the same rows concurrently without overwriting each other.
    """

    def __init__(self, database: Database):
        self._database = database
        self._session_factory = database.session_factory

    # Playlists ---------------------------------------------------------

    async def add_source(self, title: str, url: str, kind: SourceKind) -> PlaylistSource:
        """Register a playlist; adding a known URL renames the existing source."""

        now = datetime.utcnow()
        async with self._session_factory() as session:
            result = await session.execute(select(PlaylistRecord).where(PlaylistRecord.url == url))
            record = result.scalar_one_or_none()
            if record is None:
                record = PlaylistRecord(
                    id=uuid.uuid4().hex,
                    title=title,
                    url=url,
                    kind=kind.value,
                    created_at=now,
                    updated_at=now,
                )
                session.add(record)
            else:
                record.title = title
                record.kind = kind.value
            await session.commit()
            return PlaylistSource.model_validate(record)

    async def get_source(self, source_id: str) -> PlaylistSource | None:
        async with self._session_factory() as session:
            record = await session.get(PlaylistRecord, source_id)
            if record is None:
                return None
            return PlaylistSource.model_validate(record)

    async def list_sources(self) -> list[PlaylistSource]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PlaylistRecord).order_by(PlaylistRecord.created_at, PlaylistRecord.title)
            )
            return [PlaylistSource.model_validate(record) for record in result.scalars()]

    async def delete_source(self, source_id: str) -> bool:
        """Delete a playlist together with its entries and programmes."""

        async with self._session_factory() as session:
            await session.execute(
                delete(ProgrammeRecord).where(ProgrammeRecord.source_id == source_id)
            )
            await session.execute(
                delete(CatalogEntryRecord).where(CatalogEntryRecord.source_id == source_id)
            )
            result = await session.execute(
                delete(PlaylistRecord).where(PlaylistRecord.id == source_id)
            )
            await session.commit()
            return bool(result.rowcount)

    async def mark_synced(self, source_id: str, when: datetime | None = None) -> None:
        now = when or datetime.utcnow()
        async with self._session_factory() as session:
            await session.execute(
                update(PlaylistRecord)
                .where(PlaylistRecord.id == source_id)
                .values(last_synced_at=now, updated_at=now)
            )
            await session.commit()

    # Catalog writes ----------------------------------------------------

    def _insert(self, table):
        if self._database.dialect_name == "postgresql":
            return postgresql_insert(table)
        return sqlite_insert(table)

    async def upsert_entries(
        self, source_id: str, entries: Iterable[CatalogEntry]
    ) -> UpsertOutcome:
        """Insert new URLs and rewrite changed ones in a single transaction.

        Rows whose content hash is unchanged are not written at all. On
        conflict only the sync-owned columns are replaced, leaving metadata
        written by enrichment intact.
        """

        outcome = UpsertOutcome()
        unique: dict[str, CatalogEntry] = {}
        for entry in entries:
            unique[entry.url] = entry
        if not unique:
            return outcome

        now = datetime.utcnow()
        async with self._session_factory() as session:
            existing: dict[str, str] = {}
            for chunk in chunked(list(unique), _IN_CHUNK):
                result = await session.execute(
                    select(CatalogEntryRecord.url, CatalogEntryRecord.content_hash).where(
                        CatalogEntryRecord.source_id == source_id,
                        CatalogEntryRecord.url.in_(chunk),
                    )
                )
                existing.update({url: digest or "" for url, digest in result.all()})

            rows: list[dict[str, object]] = []
            for url, entry in unique.items():
                digest = entry.content_hash()
                previous = existing.get(url)
                if previous == digest:
                    outcome.unchanged += 1
                    continue
                if previous is None:
                    outcome.inserted[entry.content_type] = (
                        outcome.inserted.get(entry.content_type, 0) + 1
                    )
                else:
                    outcome.updated += 1
                rows.append(_entry_row(source_id, entry, digest, now))

            if rows:
                insert_stmt = self._insert(CatalogEntryRecord)
                stmt = insert_stmt.on_conflict_do_update(
                    index_elements=["source_id", "url"],
                    set_={name: getattr(insert_stmt.excluded, name) for name in SYNC_OWNED_COLUMNS},
                )
                await session.execute(stmt, rows)
            await session.commit()
        return outcome

    async def purge_source(self, source_id: str) -> int:
        """Delete every entry of a source in one transaction."""

        async with self._session_factory() as session:
            result = await session.execute(
                delete(CatalogEntryRecord).where(CatalogEntryRecord.source_id == source_id)
            )
            await session.commit()
            return result.rowcount or 0

    # Catalog reads -----------------------------------------------------

    async def count_entries(
        self, source_id: str | None = None, content_type: ContentType | None = None
    ) -> int:
        stmt = select(func.count(CatalogEntryRecord.id))
        if source_id is not None:
            stmt = stmt.where(CatalogEntryRecord.source_id == source_id)
        if content_type is not None:
            stmt = stmt.where(CatalogEntryRecord.content_type == content_type.value)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def entries_for_source(
        self, source_id: str, content_type: ContentType | None = None
    ) -> list[CatalogEntry]:
        stmt = select(CatalogEntryRecord).where(CatalogEntryRecord.source_id == source_id)
        if content_type is not None:
            stmt = stmt.where(CatalogEntryRecord.content_type == content_type.value)
        stmt = stmt.order_by(CatalogEntryRecord.id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [CatalogEntry.model_validate(record) for record in result.scalars()]

    async def get_entries(self, entry_ids: Sequence[int]) -> list[CatalogEntry]:
        entries: list[CatalogEntry] = []
        async with self._session_factory() as session:
            for chunk in chunked(list(entry_ids), _IN_CHUNK):
                result = await session.execute(
                    select(CatalogEntryRecord).where(CatalogEntryRecord.id.in_(chunk))
                )
                entries.extend(CatalogEntry.model_validate(record) for record in result.scalars())
        return entries

    async def get_entry_by_url(self, source_id: str, url: str) -> CatalogEntry | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CatalogEntryRecord).where(
                    CatalogEntryRecord.source_id == source_id,
                    CatalogEntryRecord.url == url,
                )
            )
            record = result.scalar_one_or_none()
            return CatalogEntry.model_validate(record) if record is not None else None

    # Enrichment --------------------------------------------------------

    async def unmatched_entries(
        self,
        *,
        source_id: str | None = None,
        entry_ids: Sequence[int] | None = None,
        checked_before: datetime | None = None,
        only_unmatched: bool = True,
        limit: int | None = None,
    ) -> list[CatalogEntry]:
        """Return entries that still need a metadata lookup, newest first.

        Live channels are never returned. ``checked_before`` skips entries
        whose last failed lookup is more recent than the given instant.
        """

        stmt = select(CatalogEntryRecord).where(
            CatalogEntryRecord.content_type != ContentType.LIVE.value
        )
        if only_unmatched:
            stmt = stmt.where(CatalogEntryRecord.tmdb_id.is_(None))
        if source_id is not None:
            stmt = stmt.where(CatalogEntryRecord.source_id == source_id)
        if entry_ids is not None:
            if not entry_ids:
                return []
            stmt = stmt.where(CatalogEntryRecord.id.in_(list(entry_ids)))
        if checked_before is not None:
            stmt = stmt.where(
                or_(
                    CatalogEntryRecord.metadata_checked_at.is_(None),
                    CatalogEntryRecord.metadata_checked_at < checked_before,
                )
            )
        stmt = stmt.order_by(CatalogEntryRecord.added_at.desc(), CatalogEntryRecord.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [CatalogEntry.model_validate(record) for record in result.scalars()]

    async def apply_matches(self, matches: Mapping[int, MatchResult]) -> int:
        """Write metadata references; only enrichment-owned columns change."""

        if not matches:
            return 0
        now = datetime.utcnow()
        updated = 0
        async with self._session_factory() as session:
            for entry_id, match in matches.items():
                result = await session.execute(
                    update(CatalogEntryRecord)
                    .where(CatalogEntryRecord.id == entry_id)
                    .values(
                        tmdb_id=match.tmdb_id,
                        poster_path=match.poster_path,
                        backdrop_path=match.backdrop_path,
                        metadata_updated_at=now,
                        metadata_checked_at=now,
                    )
                )
                updated += result.rowcount or 0
            await session.commit()
        return updated

    async def mark_checked(self, entry_ids: Sequence[int]) -> None:
        """Stamp entries whose lookup found nothing so they are retried later."""

        if not entry_ids:
            return
        now = datetime.utcnow()
        async with self._session_factory() as session:
            for chunk in chunked(list(entry_ids), _IN_CHUNK):
                await session.execute(
                    update(CatalogEntryRecord)
                    .where(CatalogEntryRecord.id.in_(chunk))
                    .values(metadata_checked_at=now)
                )
            await session.commit()

    # Lookups -----------------------------------------------------------

    async def find_matches(self, titles: Sequence[str], limit: int = 20) -> list[CatalogEntry]:
        """Map external titles (e.g. trending lists) onto local entries.

        Titles are normalized, matched case-insensitively as substrings of the
        canonical title, collapsed to one entry per canonical title and
        returned newest first.
        """

        cleaned = [
            normalize(title).title for title in titles[:_MATCH_TITLE_LIMIT] if title
        ]
        cleaned = [title for title in cleaned if title]
        if not cleaned or limit <= 0:
            return []
        stmt = (
            select(CatalogEntryRecord)
            .where(
                or_(
                    *(CatalogEntryRecord.canonical_title.ilike(f"%{title}%") for title in cleaned)
                )
            )
            .limit(_MATCH_FETCH_LIMIT)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            candidates = [CatalogEntry.model_validate(record) for record in result.scalars()]
        unique = deduplicate(candidates)
        unique.sort(key=lambda entry: entry.added_at or datetime.min, reverse=True)
        return unique[:limit]

    async def search(
        self,
        query: str,
        filters: SearchFilters | None = None,
        *,
        limit: int = 50,
    ) -> list[CatalogEntry]:
        """Token search over titles: all tokens first, any token as fallback."""

        filters = filters or SearchFilters()
        tokens = [token.casefold() for token in query.split() if token]
        if not tokens and not filters.active:
            return []

        base = select(CatalogEntryRecord)
        if filters.content_types:
            values = {content_type.value for content_type in filters.content_types}
            if ContentType.SERIES.value in values:
                values.add(ContentType.SERIES_EPISODE.value)
            base = base.where(CatalogEntryRecord.content_type.in_(sorted(values)))
        if filters.source_id:
            base = base.where(CatalogEntryRecord.source_id == filters.source_id)
        if filters.only_4k:
            base = base.where(CatalogEntryRecord.quality.in_(["4K", "2160p"]))

        title_clauses = [CatalogEntryRecord.title.ilike(f"%{token}%") for token in tokens]
        strict = base.where(*title_clauses) if title_clauses else base
        async with self._session_factory() as session:
            result = await session.execute(strict.limit(_SEARCH_FETCH_LIMIT))
            records = list(result.scalars())
            if not records and len(tokens) > 1:
                result = await session.execute(
                    base.where(or_(*title_clauses)).limit(_SEARCH_FETCH_LIMIT)
                )
                records = list(result.scalars())
            candidates = [CatalogEntry.model_validate(record) for record in records]

        phrase = " ".join(tokens)
        ranked = sorted(candidates, key=lambda entry: _relevance(phrase, entry), reverse=True)
        return deduplicate(ranked)[:limit]

    # Programmes --------------------------------------------------------

    async def replace_programmes(
        self,
        channel_url: str,
        source_id: str,
        programmes: Sequence[Programme],
        *,
        now: datetime | None = None,
    ) -> int:
        """Swap the channel's current and upcoming listings for ``programmes``."""

        reference = now or datetime.utcnow()
        async with self._session_factory() as session:
            await session.execute(
                delete(ProgrammeRecord).where(
                    ProgrammeRecord.channel_url == channel_url,
                    ProgrammeRecord.end > reference,
                )
            )
            if programmes:
                insert_stmt = self._insert(ProgrammeRecord)
                stmt = insert_stmt.on_conflict_do_update(
                    index_elements=["id"],
                    set_={
                        "title": insert_stmt.excluded.title,
                        "description": insert_stmt.excluded.description,
                        "end": insert_stmt.excluded.end,
                    },
                )
                await session.execute(
                    stmt,
                    [
                        {
                            "id": programme.programme_id,
                            "source_id": source_id,
                            "channel_url": channel_url,
                            "title": programme.title,
                            "description": programme.description,
                            "start": programme.start,
                            "end": programme.end,
                        }
                        for programme in programmes
                    ],
                )
            await session.commit()
        return len(programmes)

    async def current_programmes(
        self, channel_urls: Sequence[str], *, now: datetime | None = None
    ) -> dict[str, Programme]:
        reference = now or datetime.utcnow()
        current: dict[str, Programme] = {}
        async with self._session_factory() as session:
            for chunk in chunked(list(channel_urls), _IN_CHUNK):
                result = await session.execute(
                    select(ProgrammeRecord)
                    .where(
                        ProgrammeRecord.channel_url.in_(chunk),
                        ProgrammeRecord.start <= reference,
                        ProgrammeRecord.end > reference,
                    )
                    .order_by(ProgrammeRecord.start)
                )
                for record in result.scalars():
                    current.setdefault(record.channel_url, _programme(record))
        return current

    async def schedule(
        self, channel_url: str, *, now: datetime | None = None, limit: int = 24
    ) -> list[Programme]:
        reference = now or datetime.utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProgrammeRecord)
                .where(ProgrammeRecord.channel_url == channel_url, ProgrammeRecord.end > reference)
                .order_by(ProgrammeRecord.start)
                .limit(limit)
            )
            return [_programme(record) for record in result.scalars()]

    async def search_programmes(
        self, query: str, *, now: datetime | None = None, limit: int = 50
    ) -> list[Programme]:
        text = query.strip()
        if not text:
            return []
        reference = now or datetime.utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProgrammeRecord)
                .where(ProgrammeRecord.title.ilike(f"%{text}%"), ProgrammeRecord.end > reference)
                .order_by(ProgrammeRecord.start)
                .limit(limit)
            )
            return [_programme(record) for record in result.scalars()]

    async def prune_programmes(self, ended_before: datetime) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ProgrammeRecord).where(ProgrammeRecord.end < ended_before)
            )
            await session.commit()
            return result.rowcount or 0


def _entry_row(
    source_id: str, entry: CatalogEntry, digest: str, now: datetime
) -> dict[str, object]:
    return {
        "source_id": source_id,
        "url": entry.url,
        "title": entry.title,
        "canonical_title": entry.canonical_title,
        "group_title": entry.group,
        "content_type": entry.content_type.value,
        "cover": entry.cover,
        "quality": entry.quality,
        "year": entry.year,
        "season": entry.season,
        "episode": entry.episode,
        "series_id": entry.series_id,
        "stream_id": entry.stream_id,
        "tvg_id": entry.tvg_id,
        "content_hash": digest,
        "added_at": now,
        "updated_at": now,
    }


def _programme(record: ProgrammeRecord) -> Programme:
    return Programme(
        channel_url=record.channel_url,
        source_id=record.source_id,
        title=record.title,
        start=record.start,
        end=record.end,
        description=record.description,
    )


def _relevance(phrase: str, entry: CatalogEntry) -> tuple[float, int, int]:
    score = similarity(phrase, entry.canonical_title)
    # Scores within 0.1 of each other are ties, broken by cover art then brevity.
    return (round(score * 10), 1 if entry.cover else 0, -len(entry.title))


def _preference(entry: CatalogEntry) -> tuple[int, int, int]:
    return (
        1 if entry.cover else 0,
        1 if entry.content_type is ContentType.SERIES else 0,
        normalize(entry.title).quality_score,
    )


def deduplicate(entries: Sequence[CatalogEntry]) -> list[CatalogEntry]:
    """Collapse variants of the same title, keeping the first-seen position.

    The surviving variant prefers cover art, then the series container over
    single episodes, then the higher quality.
    """

    order: list[str] = []
    best: dict[str, CatalogEntry] = {}
    for entry in entries:
        key = canonical_key(entry.canonical_title or entry.title)
        current = best.get(key)
        if current is None:
            order.append(key)
            best[key] = entry
        elif _preference(entry) > _preference(current):
            best[key] = entry
    return [best[key] for key in order]
