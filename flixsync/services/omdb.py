"""OMDB lookups used for deep series details."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..cache import TTLCache
from ..config import Settings
from ..exceptions import FlixSyncError
from .http import ResilientHttpClient

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SECONDS = 6 * 60 * 60


class OMDBRating(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source: str = Field(alias="Source")
    value: str = Field(alias="Value")


class OMDBSeriesDetails(BaseModel):
    """Subset of OMDB's title record relevant to series pages."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    imdb_id: str = Field(alias="imdbID")
    title: str = Field(alias="Title")
    year: str | None = Field(default=None, alias="Year")
    rated: str | None = Field(default=None, alias="Rated")
    released: str | None = Field(default=None, alias="Released")
    runtime: str | None = Field(default=None, alias="Runtime")
    genre: str | None = Field(default=None, alias="Genre")
    director: str | None = Field(default=None, alias="Director")
    writer: str | None = Field(default=None, alias="Writer")
    actors: str | None = Field(default=None, alias="Actors")
    plot: str | None = Field(default=None, alias="Plot")
    language: str | None = Field(default=None, alias="Language")
    country: str | None = Field(default=None, alias="Country")
    awards: str | None = Field(default=None, alias="Awards")
    poster: str | None = Field(default=None, alias="Poster")
    ratings: list[OMDBRating] = Field(default_factory=list, alias="Ratings")
    metascore: str | None = Field(default=None, alias="Metascore")
    imdb_rating: str | None = Field(default=None, alias="imdbRating")
    imdb_votes: str | None = Field(default=None, alias="imdbVotes")
    total_seasons: str | None = Field(default=None, alias="totalSeasons")


class OMDBClient:
    """Search-then-details client with an injected response cache."""

    def __init__(
        self,
        settings: Settings,
        http: ResilientHttpClient,
        *,
        cache: TTLCache[str, OMDBSeriesDetails] | None = None,
    ):
        if not settings.omdb_api_key:
            raise ValueError("OMDB API key is required when initialising OMDBClient")
        self._settings = settings
        self._http = http
        self._url = str(settings.omdb_api_url)
        self._cache = cache if cache is not None else TTLCache(DEFAULT_CACHE_SECONDS)

    async def get_series_metadata(
        self, title: str, year: str | None = None
    ) -> OMDBSeriesDetails | None:
        """Return series details for ``title`` or ``None`` when OMDB has nothing."""

        clean_title = title.strip()
        if not clean_title:
            return None
        cached = self._cache.get(clean_title.casefold())
        if cached is not None:
            return cached

        imdb_id = await self._search_series_id(clean_title, year)
        if imdb_id is None:
            return None
        details = await self._fetch_details(imdb_id)
        if details is not None:
            self._cache.set(clean_title.casefold(), details)
        return details

    async def _search_series_id(self, title: str, year: str | None) -> str | None:
        params: dict[str, Any] = {"s": title, "type": "series"}
        if year:
            params["y"] = year
        try:
            payload = await self._get(params)
        except FlixSyncError as exc:
            logger.warning("OMDB search failed for %s: %s", title, exc)
            payload = {}
        for item in payload.get("Search") or []:
            if isinstance(item, dict) and item.get("imdbID"):
                return str(item["imdbID"])
        if year:
            logger.info("No OMDB series match for %r (%s); retrying without year", title, year)
            return await self._search_series_id(title, None)
        return None

    async def _fetch_details(self, imdb_id: str) -> OMDBSeriesDetails | None:
        try:
            payload = await self._get({"i": imdb_id, "plot": "full"})
        except FlixSyncError as exc:
            logger.warning("OMDB details failed for %s: %s", imdb_id, exc)
            return None
        if str(payload.get("Response", "True")).lower() == "false":
            return None
        try:
            return OMDBSeriesDetails.model_validate(payload)
        except ValidationError:
            logger.debug("Unexpected OMDB payload for %s", imdb_id)
            return None

    async def _get(self, params: dict[str, Any]) -> dict[str, Any]:
        query = {"apikey": self._settings.omdb_api_key, **params}
        return await self._http.get_json(self._url, params=query, expect=dict)
