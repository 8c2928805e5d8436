"""Shared fetcher contract used by the sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator, Protocol

from ..models import CatalogEntry, ContentType, PlaylistSource, SourceKind


@dataclass(slots=True)
class FetchedBatch:
    """A group of entries produced by a fetcher, ready to be persisted."""

    content_type: ContentType | None
    entries: list[CatalogEntry] = field(default_factory=list)
    label: str = ""

    def __len__(self) -> int:
        return len(self.entries)


class PlaylistFetcher(Protocol):
    """Anything that can turn a playlist source into catalog entries."""

    def fetch_batches(self, source: PlaylistSource) -> AsyncIterator[FetchedBatch]:
        ...

    async def fetch(self, source: PlaylistSource) -> list[CatalogEntry]:
        ...


class BaseFetcher:
    """Provide :meth:`fetch` on top of a batch generator."""

    kind: SourceKind

    def fetch_batches(self, source: PlaylistSource) -> AsyncIterator[FetchedBatch]:
        raise NotImplementedError

    async def fetch(self, source: PlaylistSource) -> list[CatalogEntry]:
        """Collect every batch into a single list."""

        entries: list[CatalogEntry] = []
        async for batch in self.fetch_batches(source):
            entries.extend(batch.entries)
        return entries


def select_fetcher(
    source: PlaylistSource, fetchers: dict[SourceKind, PlaylistFetcher]
) -> PlaylistFetcher:
    """Return the fetcher registered for the source's protocol."""

    try:
        return fetchers[source.kind]
    except KeyError as exc:
        raise ValueError(f"No fetcher registered for {source.kind.value} sources") from exc
