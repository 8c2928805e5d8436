"""Catalog repository persistence tests."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, AsyncIterator

import pytest

from flixsync.database import Database
from flixsync.models import (
    CatalogEntry,
    ContentType,
    MatchResult,
    Programme,
    SearchFilters,
    SourceKind,
)
from flixsync.repository import CatalogRepository, deduplicate


@asynccontextmanager
async def open_repository(tmp_path: Path) -> AsyncIterator[CatalogRepository]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    await database.create_all()
    try:
        yield CatalogRepository(database)
    finally:
        await database.dispose()


def entry(source_id: str, url: str, title: str, **fields: Any) -> CatalogEntry:
    data: dict[str, Any] = {
        "source_id": source_id,
        "url": url,
        "title": title,
        "canonical_title": fields.pop("canonical_title", title),
        "content_type": fields.pop("content_type", ContentType.MOVIE),
    }
    data.update(fields)
    return CatalogEntry(**data)


@pytest.mark.anyio("asyncio")
async def test_upsert_is_idempotent_and_detects_changes(tmp_path: Path) -> None:
    async with open_repository(tmp_path) as repository:
        source = await repository.add_source("Panel", "http://panel/get.php", SourceKind.M3U)
        first = [
            entry(source.id, "http://panel/1.mp4", "Heat", group="Action"),
            entry(source.id, "http://panel/2.mp4", "Alien", group="Horror"),
        ]

        outcome = await repository.upsert_entries(source.id, first)
        assert outcome.inserted == {ContentType.MOVIE: 2}

        repeat = await repository.upsert_entries(source.id, first)
        assert repeat.inserted_total == 0
        assert repeat.unchanged == 2
        assert repeat.updated == 0

        moved = [entry(source.id, "http://panel/1.mp4", "Heat", group="Crime"), first[1]]
        changed = await repository.upsert_entries(source.id, moved)
        assert changed.updated == 1
        assert changed.unchanged == 1

        assert await repository.count_entries(source.id) == 2
        stored = await repository.get_entry_by_url(source.id, "http://panel/1.mp4")
        assert stored is not None
        assert stored.group == "Crime"


@pytest.mark.anyio("asyncio")
async def test_duplicate_urls_in_one_batch_collapse(tmp_path: Path) -> None:
    async with open_repository(tmp_path) as repository:
        source = await repository.add_source("Panel", "http://panel/get.php", SourceKind.M3U)
        outcome = await repository.upsert_entries(
            source.id,
            [
                entry(source.id, "http://panel/1.ts", "One", content_type=ContentType.LIVE),
                entry(source.id, "http://panel/1.ts", "One HD", content_type=ContentType.LIVE),
            ],
        )

        assert outcome.inserted == {ContentType.LIVE: 1}
        stored = await repository.get_entry_by_url(source.id, "http://panel/1.ts")
        assert stored is not None and stored.title == "One HD"


@pytest.mark.anyio("asyncio")
async def test_sync_update_keeps_metadata_fields(tmp_path: Path) -> None:
    async with open_repository(tmp_path) as repository:
        source = await repository.add_source("Panel", "http://panel/get.php", SourceKind.M3U)
        await repository.upsert_entries(
            source.id, [entry(source.id, "http://panel/1.mp4", "Heat", group="Action")]
        )
        stored = await repository.get_entry_by_url(source.id, "http://panel/1.mp4")
        assert stored is not None and stored.id is not None

        await asyncio.gather(
            repository.apply_matches({stored.id: MatchResult(tmdb_id=949, poster_path="/heat.jpg")}),
            repository.upsert_entries(
                source.id, [entry(source.id, "http://panel/1.mp4", "Heat", group="Crime")]
            ),
        )

        merged = await repository.get_entry_by_url(source.id, "http://panel/1.mp4")
        assert merged is not None
        assert merged.group == "Crime"
        assert merged.tmdb_id == 949
        assert merged.poster_path == "/heat.jpg"

        # Another sync pass must not reset the metadata either.
        await repository.upsert_entries(
            source.id, [entry(source.id, "http://panel/1.mp4", "Heat 1080p", group="Crime")]
        )
        again = await repository.get_entry_by_url(source.id, "http://panel/1.mp4")
        assert again is not None
        assert again.title == "Heat 1080p"
        assert again.tmdb_id == 949


@pytest.mark.anyio("asyncio")
async def test_delete_source_removes_entries_and_programmes(tmp_path: Path) -> None:
    async with open_repository(tmp_path) as repository:
        keep = await repository.add_source("Keep", "http://keep/get.php", SourceKind.M3U)
        drop = await repository.add_source("Drop", "http://drop/get.php", SourceKind.M3U)
        await repository.upsert_entries(keep.id, [entry(keep.id, "http://keep/1.mp4", "Heat")])
        await repository.upsert_entries(drop.id, [entry(drop.id, "http://drop/1.mp4", "Alien")])
        start = datetime(2030, 1, 1, 12, 0)
        await repository.replace_programmes(
            "http://drop/live/1.ts",
            drop.id,
            [Programme("http://drop/live/1.ts", drop.id, "News", start, start + timedelta(hours=1))],
            now=start,
        )

        assert await repository.delete_source(drop.id) is True
        assert await repository.delete_source(drop.id) is False
        assert await repository.count_entries(drop.id) == 0
        assert await repository.count_entries(keep.id) == 1
        assert await repository.schedule("http://drop/live/1.ts", now=start) == []
        assert [source.id for source in await repository.list_sources()] == [keep.id]


@pytest.mark.anyio("asyncio")
async def test_adding_known_url_renames_source(tmp_path: Path) -> None:
    async with open_repository(tmp_path) as repository:
        first = await repository.add_source("Old name", "http://panel/get.php", SourceKind.M3U)
        second = await repository.add_source("New name", "http://panel/get.php", SourceKind.M3U)

        assert first.id == second.id
        assert second.title == "New name"
        assert len(await repository.list_sources()) == 1


@pytest.mark.anyio("asyncio")
async def test_purge_source_counts_removed_entries(tmp_path: Path) -> None:
    async with open_repository(tmp_path) as repository:
        source = await repository.add_source("Panel", "http://panel/get.php", SourceKind.M3U)
        await repository.upsert_entries(
            source.id,
            [entry(source.id, f"http://panel/{index}.mp4", f"Film {index}") for index in range(3)],
        )

        assert await repository.purge_source(source.id) == 3
        assert await repository.count_entries(source.id) == 0


@pytest.mark.anyio("asyncio")
async def test_find_matches_collapses_variants(tmp_path: Path) -> None:
    async with open_repository(tmp_path) as repository:
        source = await repository.add_source("Panel", "http://panel/get.php", SourceKind.M3U)
        await repository.upsert_entries(
            source.id,
            [
                entry(source.id, "http://panel/1.mp4", "The Matrix", canonical_title="The Matrix"),
                entry(
                    source.id,
                    "http://panel/2.mp4",
                    "The Matrix 4K",
                    canonical_title="The Matrix",
                    cover="http://img/matrix.jpg",
                ),
                entry(source.id, "http://panel/3.mp4", "Alien", canonical_title="Alien"),
            ],
        )

        matches = await repository.find_matches(["The.Matrix.1999", "Unknown Film"])

        assert [match.url for match in matches] == ["http://panel/2.mp4"]
        assert await repository.find_matches([]) == []


@pytest.mark.anyio("asyncio")
async def test_search_prefers_all_tokens_and_applies_filters(tmp_path: Path) -> None:
    async with open_repository(tmp_path) as repository:
        source = await repository.add_source("Panel", "http://panel/get.php", SourceKind.M3U)
        await repository.upsert_entries(
            source.id,
            [
                entry(
                    source.id,
                    "series://1",
                    "Breaking Bad",
                    content_type=ContentType.SERIES,
                    series_id="1",
                ),
                entry(
                    source.id,
                    "http://panel/series/11.mp4",
                    "Breaking Bad S01E01",
                    canonical_title="Breaking Bad",
                    content_type=ContentType.SERIES_EPISODE,
                    season=1,
                    episode=1,
                ),
                entry(source.id, "http://panel/2.mp4", "Bad Boys"),
                entry(source.id, "http://panel/3.mp4", "Better Call Saul", content_type=ContentType.SERIES),
            ],
        )

        strict = await repository.search("breaking bad")
        assert [item.url for item in strict] == ["series://1"]

        loose = await repository.search("bad saul")
        assert {item.canonical_title for item in loose} == {
            "Breaking Bad",
            "Bad Boys",
            "Better Call Saul",
        }

        movies = await repository.search("bad", SearchFilters(content_types=(ContentType.MOVIE,)))
        assert [item.title for item in movies] == ["Bad Boys"]

        shows = await repository.search("", SearchFilters(content_types=(ContentType.SERIES,)))
        assert {item.canonical_title for item in shows} == {"Breaking Bad", "Better Call Saul"}


@pytest.mark.anyio("asyncio")
async def test_unmatched_entries_skip_live_and_recent_checks(tmp_path: Path) -> None:
    async with open_repository(tmp_path) as repository:
        source = await repository.add_source("Panel", "http://panel/get.php", SourceKind.M3U)
        await repository.upsert_entries(
            source.id,
            [
                entry(source.id, "http://panel/1.ts", "CNN", content_type=ContentType.LIVE),
                entry(source.id, "http://panel/2.mp4", "Heat"),
                entry(source.id, "http://panel/3.mp4", "Alien"),
            ],
        )
        candidates = await repository.unmatched_entries()
        assert {item.title for item in candidates} == {"Heat", "Alien"}

        alien = next(item for item in candidates if item.title == "Alien")
        await repository.mark_checked([alien.id])
        recent_cutoff = datetime.utcnow() - timedelta(hours=1)

        due = await repository.unmatched_entries(checked_before=recent_cutoff)
        assert [item.title for item in due] == ["Heat"]
        assert await repository.unmatched_entries(entry_ids=[]) == []


@pytest.mark.anyio("asyncio")
async def test_programme_window_queries(tmp_path: Path) -> None:
    async with open_repository(tmp_path) as repository:
        source = await repository.add_source("Panel", "http://panel|u|p", SourceKind.XTREAM)
        channel = "http://panel/live/u/p/1.m3u8"
        now = datetime(2030, 1, 1, 12, 0)
        programmes = [
            Programme(channel, source.id, "Morning News", now - timedelta(hours=1), now + timedelta(minutes=30)),
            Programme(channel, source.id, "Weather", now + timedelta(minutes=30), now + timedelta(hours=1)),
        ]

        assert await repository.replace_programmes(channel, source.id, programmes, now=now) == 2
        current = await repository.current_programmes([channel], now=now)
        assert current[channel].title == "Morning News"
        assert [item.title for item in await repository.schedule(channel, now=now)] == [
            "Morning News",
            "Weather",
        ]
        assert [item.title for item in await repository.search_programmes("weath", now=now)] == [
            "Weather"
        ]

        # Replacing with a fresh listing drops the stale future programme.
        await repository.replace_programmes(channel, source.id, programmes[:1], now=now)
        assert [item.title for item in await repository.schedule(channel, now=now)] == [
            "Morning News"
        ]

        removed = await repository.prune_programmes(now + timedelta(hours=1))
        assert removed == 1
        assert await repository.schedule(channel, now=now - timedelta(hours=2)) == []


def test_deduplicate_prefers_cover_then_series_container() -> None:
    episode = entry(
        "s",
        "http://p/1.mp4",
        "Dark S01E01",
        canonical_title="Dark",
        content_type=ContentType.SERIES_EPISODE,
    )
    container = entry("s", "series://1", "Dark", content_type=ContentType.SERIES)
    covered = entry("s", "http://p/2.mp4", "Heat", cover="c.jpg")
    plain = entry("s", "http://p/3.mp4", "Heat 1080p", canonical_title="Heat")

    result = deduplicate([episode, plain, container, covered])

    assert [item.url for item in result] == ["series://1", "http://p/2.mp4"]
