"""Background backfill of TMDB references onto stored catalog entries."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, Protocol, Union

from ..config import Settings
from ..models import CatalogEntry, ContentType, MatchResult
from ..normalizer import canonical_key
from ..repository import CatalogRepository
from ..utils import chunked

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], Union[None, Awaitable[None]]]
LookupKey = tuple[str, str, Union[str, None]]


class MetadataMatcher(Protocol):
    async def find_best_match(
        self, title: str, year: str | None, content_type: ContentType
    ) -> MatchResult | None:
        ...


@dataclass(frozen=True, slots=True)
class EnrichmentScope:
    """Which entries an enrichment run considers."""

    source_id: str | None = None
    entry_ids: tuple[int, ...] | None = None

    @classmethod
    def for_playlist(cls, source_id: str) -> "EnrichmentScope":
        return cls(source_id=source_id)

    @classmethod
    def for_entries(cls, entry_ids: Iterable[int]) -> "EnrichmentScope":
        return cls(entry_ids=tuple(entry_ids))

    @classmethod
    def whole_library(cls) -> "EnrichmentScope":
        return cls()

    @property
    def explicit(self) -> bool:
        return self.entry_ids is not None


@dataclass(slots=True)
class EnrichmentReport:
    candidates: int = 0
    lookups: int = 0
    matched: int = 0
    unmatched: int = 0
    failed: int = 0
    timed_out: int = 0


class EnrichmentService:
    """Match stored entries against TMDB with bounded concurrency.

    Entries sharing (media type, canonical title, year) share one lookup.
    Every lookup runs under its own timeout, so a stalled request only costs
    its own slot. Results are written back per chunk through
    :meth:`CatalogRepository.apply_matches`, which touches metadata columns
    only and is therefore safe while a sync is running.
    """

    def __init__(
        self,
        settings: Settings,
        repository: CatalogRepository,
        matcher: MetadataMatcher,
    ):
        self._settings = settings
        self._repository = repository
        self._matcher = matcher
        self._semaphore = asyncio.Semaphore(settings.enrichment_concurrency)

    async def enrich_library(
        self,
        scope: EnrichmentScope | None = None,
        on_status: StatusCallback | None = None,
    ) -> EnrichmentReport:
        scope = scope or EnrichmentScope.whole_library()
        report = EnrichmentReport()

        checked_before: datetime | None = None
        if not scope.explicit:
            checked_before = datetime.utcnow() - timedelta(
                seconds=self._settings.enrichment_retry_seconds
            )
        entries = await self._repository.unmatched_entries(
            source_id=scope.source_id,
            entry_ids=scope.entry_ids,
            checked_before=checked_before,
            only_unmatched=not scope.explicit,
            limit=self._settings.enrichment_candidate_limit,
        )
        report.candidates = len(entries)
        if not entries:
            return report

        groups: dict[LookupKey, list[CatalogEntry]] = {}
        for entry in entries:
            groups.setdefault(_lookup_key(entry), []).append(entry)
        keys = list(groups)
        report.lookups = len(keys)
        logger.info(
            "Enriching %s entries with %s lookups", report.candidates, report.lookups
        )

        done = 0
        for chunk in chunked(keys, self._settings.enrichment_batch_size):
            results = await asyncio.gather(
                *(self._lookup(groups[key][0]) for key in chunk),
                return_exceptions=True,
            )
            matches: dict[int, MatchResult] = {}
            misses: list[int] = []
            for key, result in zip(chunk, results):
                ids = [entry.id for entry in groups[key] if entry.id is not None]
                if isinstance(result, MatchResult):
                    matches.update({entry_id: result for entry_id in ids})
                    report.matched += len(ids)
                elif result is None:
                    misses.extend(ids)
                    report.unmatched += len(ids)
                elif isinstance(result, asyncio.TimeoutError):
                    logger.info("Metadata lookup for %r timed out", key[1])
                    report.timed_out += len(ids)
                else:
                    logger.warning("Metadata lookup for %r failed: %s", key[1], result)
                    report.failed += len(ids)

            await self._repository.apply_matches(matches)
            await self._repository.mark_checked(misses)
            done += len(chunk)
            await _notify(on_status, f"Enriching Library ({done}/{len(keys)})...")

        logger.info(
            "Enrichment finished: %s matched, %s unmatched, %s failed, %s timed out",
            report.matched,
            report.unmatched,
            report.failed,
            report.timed_out,
        )
        return report

    async def _lookup(self, entry: CatalogEntry) -> MatchResult | None:
        async with self._semaphore:
            return await asyncio.wait_for(
                self._matcher.find_best_match(
                    entry.canonical_title, entry.year, entry.content_type
                ),
                timeout=self._settings.enrichment_timeout_seconds,
            )


def _lookup_key(entry: CatalogEntry) -> LookupKey:
    media = "tv" if entry.content_type.is_episodic else "movie"
    return (media, canonical_key(entry.canonical_title), entry.year)


async def _notify(callback: StatusCallback | None, message: str) -> None:
    if callback is None:
        return
    try:
        result = callback(message)
        if inspect.isawaitable(result):
            await result
    except Exception as exc:  # pragma: no cover - consumer safety net
        logger.exception("Status callback failed: %s", exc)
