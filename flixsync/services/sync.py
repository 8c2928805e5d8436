"""Incremental playlist synchronisation."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import replace
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Union

from ..config import Settings
from ..exceptions import FetchError, SyncError
from ..models import (
    ContentType,
    PlaylistSource,
    SourceKind,
    SyncProgress,
    SyncStage,
    SyncStats,
)
from ..repository import CatalogRepository
from ..utils import chunked
from .fetchers import FetchedBatch, PlaylistFetcher, select_fetcher
from .xtream import XtreamCredentials, XtreamFetcher, episode_entry, series_container_url

logger = logging.getLogger(__name__)

_TERMINAL_STAGES = frozenset({SyncStage.DONE, SyncStage.FAILED})


class ProgressStream:
    """Queue of progress events that a UI layer drains with ``async for``.

    Iteration ends after a terminal (done or failed) event, or once
    :meth:`close` is called when ``stop_on_terminal`` is false.
    """

    _CLOSED = object()

    def __init__(self, *, stop_on_terminal: bool = True):
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._stop_on_terminal = stop_on_terminal

    def publish(self, event: SyncProgress) -> None:
        self._queue.put_nowait(event)

    def close(self) -> None:
        self._queue.put_nowait(self._CLOSED)

    def __aiter__(self) -> AsyncIterator[SyncProgress]:
        return self._drain()

    async def _drain(self) -> AsyncIterator[SyncProgress]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item
            if self._stop_on_terminal and item.stage in _TERMINAL_STAGES:
                return


ProgressCallback = Callable[[SyncProgress], Union[None, Awaitable[None]]]
ProgressSink = Union[ProgressCallback, ProgressStream, None]


class _RunReporter:
    """Publish snapshots of one run's stats to the caller's sink."""

    def __init__(self, source: PlaylistSource, sink: ProgressSink):
        self.source = source
        self.stats = SyncStats()
        self._sink = sink

    async def emit(
        self, stage: SyncStage, label: str, content_type: ContentType | None = None
    ) -> None:
        self.stats.stage = label
        if self._sink is None:
            return
        event = SyncProgress(
            source_id=self.source.id,
            stage=stage,
            label=label,
            stats=replace(self.stats),
            content_type=content_type,
        )
        if isinstance(self._sink, ProgressStream):
            self._sink.publish(event)
            return
        try:
            result = self._sink(event)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:  # pragma: no cover - consumer safety net
            logger.exception("Progress callback failed for %s: %s", self.source.title, exc)


class SyncEngine:
    """Run fetch-and-persist cycles for playlist sources.

    A run moves through connecting, fetching, persisting and finally done or
    failed. Batches are committed as they arrive, so a failure part way
    through keeps everything already written. Runs for the same source are
    serialised by a per-source lock; different sources sync independently.
    """

    def __init__(
        self,
        settings: Settings,
        repository: CatalogRepository,
        fetchers: Mapping[SourceKind, PlaylistFetcher],
    ):
        self._settings = settings
        self._repository = repository
        self._fetchers = dict(fetchers)
        xtream = self._fetchers.get(SourceKind.XTREAM)
        self._xtream: XtreamFetcher | None = xtream if isinstance(xtream, XtreamFetcher) else None
        self._locks: dict[str, asyncio.Lock] = {}

    def is_syncing(self, source_id: str) -> bool:
        lock = self._locks.get(source_id)
        return lock is not None and lock.locked()

    async def sync(
        self,
        source: PlaylistSource,
        force: bool = False,
        *,
        full_resync: bool = False,
        progress: ProgressSink = None,
    ) -> bool:
        """Synchronise ``source`` and return whether stored entries changed.

        Without ``force`` a source synced inside the freshness window is left
        alone. ``full_resync`` purges the source's entries first.
        """

        lock = self._locks.setdefault(source.id, asyncio.Lock())
        async with lock:
            current = await self._repository.get_source(source.id)
            reporter = _RunReporter(current or source, progress)
            if current is None:
                error = SyncError(source.id, LookupError(f"Unknown playlist {source.id}"))
                await reporter.emit(SyncStage.FAILED, str(error))
                raise error

            if (
                not (force or full_resync)
                and current.is_fresh(self._settings.sync_freshness_seconds)
            ):
                logger.info(
                    "Skipping %s; last synced at %s", current.title, current.last_synced_at
                )
                await reporter.emit(SyncStage.DONE, "Up to date")
                return False

            try:
                return await self._run(current, reporter, full_resync=full_resync)
            except Exception as exc:
                error = SyncError(current.id, exc)
                reporter.stats.stage = "Failed"
                await reporter.emit(SyncStage.FAILED, str(error))
                logger.warning("Sync of %s failed: %s", current.title, error)
                raise error from exc

    async def full_resync(
        self, source: PlaylistSource, *, progress: ProgressSink = None
    ) -> bool:
        """Purge and re-fetch every entry of ``source``."""

        return await self.sync(source, True, full_resync=True, progress=progress)

    async def sync_series_episodes(
        self, source: PlaylistSource, series_id: str, *, progress: ProgressSink = None
    ) -> int:
        """Fetch and store the episodes of one Xtream series on demand."""

        if self._xtream is None:
            raise SyncError(source.id, ValueError("No Xtream fetcher configured"))
        credentials = self._credentials_for(source)
        if credentials is None:
            raise SyncError(source.id, ValueError(f"{source.title} is not an Xtream source"))

        lock = self._locks.setdefault(source.id, asyncio.Lock())
        async with lock:
            reporter = _RunReporter(source, progress)
            try:
                await reporter.emit(SyncStage.CONNECTING, "Loading episodes...")
                container = await self._repository.get_entry_by_url(
                    source.id, series_container_url(series_id)
                )
                episodes = await self._xtream.client.get_series_info(credentials, series_id)
                entries = [
                    entry
                    for entry in (
                        episode_entry(
                            source.id,
                            credentials,
                            episode,
                            series_id=str(series_id),
                            cover=container.cover if container else None,
                        )
                        for episode in episodes
                    )
                    if entry is not None
                ]
                for chunk in chunked(entries, self._settings.sync_batch_size):
                    await self._persist(
                        source,
                        FetchedBatch(ContentType.SERIES_EPISODE, list(chunk), label="Episodes"),
                        reporter,
                    )
            except Exception as exc:
                error = SyncError(source.id, exc)
                await reporter.emit(SyncStage.FAILED, str(error))
                raise error from exc
            await reporter.emit(SyncStage.DONE, f"Loaded {len(entries)} episodes")
            return len(entries)

    async def _run(
        self, source: PlaylistSource, reporter: _RunReporter, *, full_resync: bool
    ) -> bool:
        stats = reporter.stats
        await reporter.emit(SyncStage.CONNECTING, f"Connecting to {source.title}...")
        fetcher = select_fetcher(source, self._fetchers)

        if full_resync:
            stats.purged = await self._repository.purge_source(source.id)
            logger.info("Purged %s entries of %s for full resync", stats.purged, source.title)

        try:
            await self._consume(source, fetcher.fetch_batches(source), reporter)
        except FetchError as exc:
            credentials = self._fallback_credentials(source, exc)
            if credentials is None or self._xtream is None:
                raise
            logger.warning(
                "Playlist download for %s rejected (%s); retrying via Xtream categories",
                source.title,
                exc,
            )
            await reporter.emit(SyncStage.CONNECTING, "Provider busy, switching to safe mode...")
            await self._consume(
                source,
                self._xtream.fetch_batches(source, strategy="category", credentials=credentials),
                reporter,
            )

        await self._repository.mark_synced(source.id)
        await reporter.emit(SyncStage.DONE, "Sync complete")
        logger.info(
            "Synced %s: %s added, %s updated, %s unchanged",
            source.title,
            stats.added,
            stats.updated,
            stats.unchanged,
        )
        return stats.changed

    async def _consume(
        self,
        source: PlaylistSource,
        batches: AsyncIterator[FetchedBatch],
        reporter: _RunReporter,
    ) -> None:
        current_type: ContentType | None = None
        first = True
        async for batch in batches:
            if first or batch.content_type is not current_type:
                first = False
                current_type = batch.content_type
                await reporter.emit(
                    SyncStage.FETCHING, f"Fetching {batch.label or 'Playlist'}...", current_type
                )
            await self._persist(source, batch, reporter)

    async def _persist(
        self, source: PlaylistSource, batch: FetchedBatch, reporter: _RunReporter
    ) -> None:
        stats = reporter.stats
        await reporter.emit(
            SyncStage.PERSISTING,
            f"Saving {len(batch.entries)} {batch.label or 'items'}...",
            batch.content_type,
        )
        outcome = await self._repository.upsert_entries(source.id, batch.entries)
        for content_type, count in outcome.inserted.items():
            stats.record_added(content_type, count)
        stats.updated += outcome.updated
        stats.unchanged += outcome.unchanged
        stats.total_processed += len(batch.entries)

    def _credentials_for(self, source: PlaylistSource) -> XtreamCredentials | None:
        if source.kind is SourceKind.XTREAM:
            return XtreamCredentials.from_playlist_url(source.url)
        return XtreamCredentials.from_m3u_url(source.url)

    def _fallback_credentials(
        self, source: PlaylistSource, error: FetchError
    ) -> XtreamCredentials | None:
        if source.kind is not SourceKind.M3U or not error.overloaded:
            return None
        return XtreamCredentials.from_m3u_url(source.url)
