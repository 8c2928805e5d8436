"""Short-EPG refresh and lookup for Xtream live channels."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Sequence

from ..cache import TTLCache
from ..config import Settings
from ..models import CatalogEntry, ContentType, PlaylistSource, Programme, SourceKind
from ..repository import CatalogRepository
from ..utils import decode_base64_if_possible
from .xtream import XtreamClient, XtreamCredentials, XtreamEpgListing

logger = logging.getLogger(__name__)

_REFRESH_CONCURRENCY = 4
NO_INFORMATION = "No Information"


def listing_to_programme(
    listing: XtreamEpgListing, *, channel_url: str, source_id: str
) -> Programme | None:
    start = listing.start_time()
    end = listing.end_time()
    if start is None or end is None or end <= start:
        return None
    title = decode_base64_if_possible(listing.title) or NO_INFORMATION
    description = decode_base64_if_possible(listing.description)
    return Programme(
        channel_url=channel_url,
        source_id=source_id,
        title=title.strip() or NO_INFORMATION,
        start=start,
        end=end,
        description=description.strip() if description else None,
    )


class EpgService:
    """Keep a rolling window of programme listings for live channels."""

    def __init__(
        self,
        settings: Settings,
        repository: CatalogRepository,
        client: XtreamClient,
        *,
        refreshed: TTLCache[str, bool] | None = None,
    ):
        self._settings = settings
        self._repository = repository
        self._client = client
        self._refreshed = (
            refreshed
            if refreshed is not None
            else TTLCache(settings.epg_refresh_seconds, max_entries=8_192)
        )
        self._semaphore = asyncio.Semaphore(_REFRESH_CONCURRENCY)

    async def refresh_epg(self, entries: Sequence[CatalogEntry], *, force: bool = False) -> int:
        """Fetch listings for live entries not refreshed recently.

        Returns the number of programmes stored. Channels whose panel call
        fails are logged and skipped.
        """

        due = [
            entry
            for entry in entries
            if entry.content_type is ContentType.LIVE
            and entry.stream_id is not None
            and (force or entry.url not in self._refreshed)
        ]
        if not due:
            return 0

        credentials: dict[str, XtreamCredentials | None] = {}
        for source_id in {entry.source_id for entry in due}:
            source = await self._repository.get_source(source_id)
            credentials[source_id] = _credentials(source) if source else None

        jobs = [
            (entry, credentials[entry.source_id])
            for entry in due
            if credentials.get(entry.source_id) is not None
        ]
        results = await asyncio.gather(
            *(self._refresh_channel(entry, creds) for entry, creds in jobs),
            return_exceptions=True,
        )
        stored = 0
        for (entry, _), result in zip(jobs, results):
            if isinstance(result, BaseException):
                logger.warning("EPG refresh for %s failed: %s", entry.title, result)
                continue
            stored += result
        return stored

    async def _refresh_channel(self, entry: CatalogEntry, credentials: XtreamCredentials) -> int:
        async with self._semaphore:
            listings = await self._client.get_short_epg(
                credentials, entry.stream_id, self._settings.epg_limit
            )
        programmes = [
            programme
            for programme in (
                listing_to_programme(listing, channel_url=entry.url, source_id=entry.source_id)
                for listing in listings
            )
            if programme is not None
        ]
        programmes.sort(key=lambda programme: programme.start)
        await self._repository.replace_programmes(entry.url, entry.source_id, programmes)
        self._refreshed.set(entry.url, True)
        return len(programmes)

    async def current_programmes(
        self, channel_urls: Sequence[str], *, now: datetime | None = None
    ) -> dict[str, Programme]:
        return await self._repository.current_programmes(channel_urls, now=now)

    async def schedule(
        self, channel_url: str, *, now: datetime | None = None, limit: int = 24
    ) -> list[Programme]:
        return await self._repository.schedule(channel_url, now=now, limit=limit)

    async def search_programmes(
        self, query: str, *, now: datetime | None = None, limit: int = 50
    ) -> list[Programme]:
        return await self._repository.search_programmes(query, now=now, limit=limit)

    async def prune_expired(self, *, now: datetime | None = None) -> int:
        """Delete programmes that ended more than ``EPG_RETENTION_HOURS`` ago."""

        reference = now or datetime.utcnow()
        cutoff = reference - timedelta(hours=self._settings.epg_retention_hours)
        removed = await self._repository.prune_programmes(cutoff)
        if removed:
            logger.info("Pruned %s expired programmes", removed)
        return removed


def _credentials(source: PlaylistSource) -> XtreamCredentials | None:
    if source.kind is SourceKind.XTREAM:
        return XtreamCredentials.from_playlist_url(source.url)
    return XtreamCredentials.from_m3u_url(source.url)
