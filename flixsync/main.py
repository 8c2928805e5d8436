"""Entry point wiring the ingestion pipeline together."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager, suppress
from dataclasses import dataclass, field
from typing import AsyncIterator, Sequence

import httpx

from .config import Settings, get_settings
from .database import Database
from .exceptions import FlixSyncError, SyncError
from .models import (
    CatalogEntry,
    ContentType,
    PlaylistSource,
    SearchFilters,
    SourceKind,
)
from .repository import CatalogRepository
from .services.enrichment import EnrichmentReport, EnrichmentScope, EnrichmentService
from .services.epg import EpgService
from .services.http import ResilientHttpClient, create_http_client
from .services.m3u import M3UFetcher
from .services.omdb import OMDBClient, OMDBSeriesDetails
from .services.sync import ProgressSink, SyncEngine
from .services.tmdb import TMDBClient
from .services.xtream import XtreamClient, XtreamFetcher

logger = logging.getLogger(__name__)


def detect_source_kind(url: str) -> SourceKind:
    """Pipe-encoded credentials and ``player_api.php`` URLs are Xtream panels."""

    if "|" in url or "player_api.php" in url:
        return SourceKind.XTREAM
    return SourceKind.M3U


@dataclass(slots=True)
class SyncAllResult:
    changed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed: dict[str, SyncError] = field(default_factory=dict)


class Pipeline:
    """High level operations over playlists, the catalog and its metadata."""

    def __init__(
        self,
        settings: Settings,
        repository: CatalogRepository,
        engine: SyncEngine,
        epg: EpgService,
        *,
        enrichment: EnrichmentService | None = None,
        tmdb: TMDBClient | None = None,
        omdb: OMDBClient | None = None,
    ):
        self._settings = settings
        self._repository = repository
        self._engine = engine
        self._enrichment = enrichment
        self._tmdb = tmdb
        self._omdb = omdb
        self.epg = epg
        self._status: str | None = None
        self._status_handle: asyncio.TimerHandle | None = None
        self._enrichment_job: asyncio.Task[None] | None = None
        self._enrichment_pending: EnrichmentScope | None = None

    @property
    def repository(self) -> CatalogRepository:
        return self._repository

    @property
    def engine(self) -> SyncEngine:
        return self._engine

    @property
    def status_message(self) -> str | None:
        return self._status

    # Sources -----------------------------------------------------------

    async def add_source(
        self, title: str, url: str, kind: SourceKind | None = None
    ) -> PlaylistSource:
        clean_url = url.strip()
        if not clean_url:
            raise ValueError("Playlist URL must not be empty")
        return await self._repository.add_source(
            title.strip() or clean_url, clean_url, kind or detect_source_kind(clean_url)
        )

    async def delete_source(self, source_id: str) -> bool:
        return await self._repository.delete_source(source_id)

    async def list_sources(self) -> list[PlaylistSource]:
        return await self._repository.list_sources()

    # Sync --------------------------------------------------------------

    async def sync(
        self,
        source_id: str,
        force: bool = False,
        *,
        progress: ProgressSink = None,
        enrich: bool = True,
    ) -> bool:
        """Sync one playlist and queue enrichment for it when anything changed."""

        source = await self._require_source(source_id)
        changed = await self._run_sync(source, progress=progress, force=force)
        if changed and enrich:
            self._schedule_enrichment(EnrichmentScope.for_playlist(source.id))
        return changed

    async def full_resync(
        self, source_id: str, *, progress: ProgressSink = None, enrich: bool = True
    ) -> bool:
        source = await self._require_source(source_id)
        changed = await self._run_sync(source, progress=progress, force=True, full=True)
        if changed and enrich:
            self._schedule_enrichment(EnrichmentScope.for_playlist(source.id))
        return changed

    async def sync_all(self, force: bool = False) -> SyncAllResult:
        """Sync every playlist one after another.

        A failing playlist is recorded and the next one still runs. When
        anything changed, a library-wide enrichment pass is started in the
        background afterwards.
        """

        result = SyncAllResult()
        for source in await self._repository.list_sources():
            try:
                changed = await self._run_sync(source, force=force)
            except SyncError as exc:
                result.failed[source.id] = exc
                continue
            (result.changed if changed else result.unchanged).append(source.id)
        if result.changed:
            self._schedule_enrichment(EnrichmentScope.whole_library())
        return result

    async def sync_series_episodes(
        self, source_id: str, series_id: str, *, progress: ProgressSink = None
    ) -> int:
        source = await self._require_source(source_id)
        try:
            count = await self._engine.sync_series_episodes(source, series_id, progress=progress)
        except SyncError as exc:
            self._set_status(str(exc))
            raise
        if count:
            self._schedule_enrichment(EnrichmentScope.for_playlist(source.id))
        return count

    async def _run_sync(
        self,
        source: PlaylistSource,
        *,
        force: bool,
        full: bool = False,
        progress: ProgressSink = None,
    ) -> bool:
        self._set_status(f"Syncing {source.title}...", sticky=True)
        try:
            changed = await self._engine.sync(
                source, force, full_resync=full, progress=progress
            )
        except SyncError as exc:
            self._set_status(str(exc))
            raise
        self._set_status("Sync complete" if changed else f"{source.title} is up to date")
        return changed

    async def _require_source(self, source_id: str) -> PlaylistSource:
        source = await self._repository.get_source(source_id)
        if source is None:
            raise KeyError(f"Unknown playlist {source_id}")
        return source

    # Enrichment --------------------------------------------------------

    async def enrich_library(self, scope: EnrichmentScope | None = None) -> EnrichmentReport:
        if self._enrichment is None:
            logger.info("Skipping enrichment; no TMDB credentials configured")
            return EnrichmentReport()
        report = await self._enrichment.enrich_library(scope, on_status=self._sticky_status)
        if report.lookups:
            self._set_status(f"Library enriched ({report.matched} matched)")
        return report

    def _sticky_status(self, message: str) -> None:
        self._set_status(message, sticky=True)

    def _schedule_enrichment(self, scope: EnrichmentScope) -> None:
        if self._enrichment is None:
            return
        existing = self._enrichment_job
        if existing and not existing.done():
            self._enrichment_pending = (
                scope if self._enrichment_pending is None else EnrichmentScope.whole_library()
            )
            return

        async def _runner() -> None:
            next_scope: EnrichmentScope | None = scope
            try:
                while next_scope is not None:
                    await self.enrich_library(next_scope)
                    next_scope, self._enrichment_pending = self._enrichment_pending, None
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Background enrichment failed: %s", exc)
            finally:
                self._enrichment_job = None

        self._enrichment_job = asyncio.create_task(_runner())

    async def wait_for_background(self) -> None:
        """Wait until the queued enrichment work has finished."""

        job = self._enrichment_job
        if job is not None:
            await asyncio.gather(job, return_exceptions=True)

    # Lookups -----------------------------------------------------------

    async def find_matches(self, titles: Sequence[str], limit: int = 20) -> list[CatalogEntry]:
        return await self._repository.find_matches(titles, limit)

    async def trending_matches(
        self, content_type: ContentType | None = None, limit: int = 20
    ) -> list[CatalogEntry]:
        """Return local entries for this week's TMDB trending titles."""

        if self._tmdb is None:
            return []
        try:
            trending = await self._tmdb.get_trending(content_type)
        except FlixSyncError as exc:
            logger.warning("Failed to load trending titles: %s", exc)
            return []
        titles = [item.display_title for item in trending if item.display_title]
        matches = await self._repository.find_matches(titles, limit)
        if content_type is None:
            return matches
        wanted = content_type.is_episodic
        return [entry for entry in matches if entry.content_type.is_episodic == wanted]

    async def search(
        self, query: str, filters: SearchFilters | None = None, *, limit: int = 50
    ) -> list[CatalogEntry]:
        return await self._repository.search(query, filters, limit=limit)

    async def series_metadata(
        self, title: str, year: str | None = None
    ) -> OMDBSeriesDetails | None:
        if self._omdb is None:
            return None
        return await self._omdb.get_series_metadata(title, year)

    # Status ------------------------------------------------------------

    def _set_status(self, message: str, *, sticky: bool = False) -> None:
        self._status = message
        if self._status_handle is not None:
            self._status_handle.cancel()
            self._status_handle = None
        delay = self._settings.status_clear_seconds
        if sticky or delay <= 0:
            return
        loop = asyncio.get_running_loop()
        self._status_handle = loop.call_later(delay, self._clear_status, message)

    def _clear_status(self, message: str) -> None:
        if self._status == message:
            self._status = None
        self._status_handle = None

    async def aclose(self) -> None:
        if self._status_handle is not None:
            self._status_handle.cancel()
            self._status_handle = None
        job = self._enrichment_job
        if job is not None:
            job.cancel()
            with suppress(asyncio.CancelledError):
                await job


@asynccontextmanager
async def create_pipeline(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[Pipeline]:
    """Open clients and storage, yield a ready :class:`Pipeline`, then tear down."""

    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    async with AsyncExitStack() as exit_stack:
        panel_client = await exit_stack.enter_async_context(
            create_http_client(settings, transport=transport)
        )
        metadata_client = await exit_stack.enter_async_context(
            create_http_client(settings, transport=transport)
        )
        database = Database(settings.database_url)
        exit_stack.push_async_callback(database.dispose)
        await database.create_all()

        panel_http = ResilientHttpClient(settings, panel_client)
        metadata_http = ResilientHttpClient(settings, metadata_client)
        repository = CatalogRepository(database)
        xtream = XtreamClient(settings, panel_http)
        engine = SyncEngine(
            settings,
            repository,
            {
                SourceKind.M3U: M3UFetcher(settings, panel_http),
                SourceKind.XTREAM: XtreamFetcher(settings, xtream),
            },
        )

        tmdb = (
            TMDBClient(settings, metadata_http)
            if settings.tmdb_api_key or settings.tmdb_access_token
            else None
        )
        omdb = OMDBClient(settings, metadata_http) if settings.omdb_api_key else None
        enrichment = EnrichmentService(settings, repository, tmdb) if tmdb else None

        pipeline = Pipeline(
            settings,
            repository,
            engine,
            EpgService(settings, repository, xtream),
            enrichment=enrichment,
            tmdb=tmdb,
            omdb=omdb,
        )
        exit_stack.push_async_callback(pipeline.aclose)
        logger.info("Pipeline ready using %s", database.dialect_name)
        yield pipeline
