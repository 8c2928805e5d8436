"""Utilities for resolving metadata from The Movie Database (TMDB)."""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..config import Settings
from ..exceptions import DecodeError
from ..models import ContentType, MatchResult
from .http import ResilientHttpClient

logger = logging.getLogger(__name__)

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
BACKDROP_BASE_URL = "https://image.tmdb.org/t/p/w780"
DEFAULT_LANGUAGE = "en-US"
CERTIFICATION_COUNTRY = "US"

MediaType = Literal["movie", "tv"]


class TMDBModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TMDBSearchResult(TMDBModel):
    """Normalized view of a TMDB search, trending or credits result."""

    id: int
    title: str | None = None
    name: str | None = None
    overview: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    release_date: str | None = None
    first_air_date: str | None = None
    media_type: str | None = None
    character: str | None = None
    job: str | None = None

    @property
    def display_title(self) -> str:
        return self.title or self.name or ""

    @property
    def year(self) -> int | None:
        value = self.release_date or self.first_air_date
        if not value or len(value) < 4:
            return None
        try:
            return int(value[:4])
        except ValueError:
            return None

    def to_match(self, media_type: MediaType | None = None) -> MatchResult:
        return MatchResult(
            tmdb_id=self.id,
            poster_path=self.poster_path,
            backdrop_path=self.backdrop_path,
            title=self.display_title or None,
            media_type=media_type or self.media_type,
        )


class TMDBGenre(TMDBModel):
    id: int | None = None
    name: str | None = None


class TMDBCastMember(TMDBModel):
    id: int | None = None
    name: str | None = None
    character: str | None = None
    profile_path: str | None = None
    roles: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def role(self) -> str | None:
        if self.character:
            return self.character
        for role in self.roles:
            if role.get("character"):
                return str(role["character"])
        return None


class TMDBCrewMember(TMDBModel):
    id: int | None = None
    name: str | None = None
    job: str | None = None
    jobs: list[dict[str, Any]] = Field(default_factory=list)


class TMDBCredits(TMDBModel):
    cast: list[TMDBCastMember] = Field(default_factory=list)
    crew: list[TMDBCrewMember] = Field(default_factory=list)


class TMDBVideo(TMDBModel):
    id: str | None = None
    key: str | None = None
    name: str | None = None
    site: str | None = None
    type: str | None = None


class TMDBImage(TMDBModel):
    file_path: str | None = None
    iso_639_1: str | None = None


class TMDBImages(TMDBModel):
    logos: list[TMDBImage] = Field(default_factory=list)
    backdrops: list[TMDBImage] = Field(default_factory=list)


def _results(value: Any) -> list[Any]:
    if isinstance(value, dict):
        value = value.get("results")
    return value if isinstance(value, list) else []


class TMDBDetails(TMDBModel):
    """Deep details for one movie or show, with appended sub-resources."""

    id: int
    title: str | None = None
    name: str | None = None
    overview: str | None = None
    genres: list[TMDBGenre] = Field(default_factory=list)
    vote_average: float | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    release_date: str | None = None
    first_air_date: str | None = None
    runtime: int | None = None
    episode_run_time: list[int] = Field(default_factory=list)
    number_of_seasons: int | None = None
    credits: TMDBCredits | None = None
    aggregate_credits: TMDBCredits | None = None
    similar: list[TMDBSearchResult] = Field(default_factory=list)
    videos: list[TMDBVideo] = Field(default_factory=list)
    release_dates: list[dict[str, Any]] = Field(default_factory=list)
    content_ratings: list[dict[str, Any]] = Field(default_factory=list)
    images: TMDBImages | None = None
    external_ids: dict[str, Any] = Field(default_factory=dict)

    @field_validator("similar", "videos", "release_dates", "content_ratings", mode="before")
    @classmethod
    def _unwrap_results(cls, value: Any) -> list[Any]:
        return _results(value)

    @field_validator("genres", "episode_run_time", mode="before")
    @classmethod
    def _as_list(cls, value: Any) -> list[Any]:
        return value if isinstance(value, list) else []

    @property
    def display_title(self) -> str:
        return self.title or self.name or ""

    @property
    def cast(self) -> list[TMDBCastMember]:
        credits = self.credits or self.aggregate_credits
        return credits.cast if credits else []

    @property
    def directors(self) -> list[str]:
        credits = self.credits or self.aggregate_credits
        if credits is None:
            return []
        names: list[str] = []
        for member in credits.crew:
            jobs = {member.job} | {str(job.get("job")) for job in member.jobs}
            if "Director" in jobs and member.name and member.name not in names:
                names.append(member.name)
        return names

    @property
    def certification(self) -> str | None:
        """Return the US rating from release dates (movies) or content ratings (TV)."""

        for country in self.release_dates:
            if country.get("iso_3166_1") != CERTIFICATION_COUNTRY:
                continue
            for release in country.get("release_dates") or []:
                value = (release or {}).get("certification")
                if value:
                    return str(value)
        for rating in self.content_ratings:
            if rating.get("iso_3166_1") == CERTIFICATION_COUNTRY and rating.get("rating"):
                return str(rating["rating"])
        return None

    @property
    def trailer(self) -> TMDBVideo | None:
        for video in self.videos:
            if video.site == "YouTube" and video.type == "Trailer" and video.key:
                return video
        return None

    @property
    def logo_path(self) -> str | None:
        if self.images is None:
            return None
        for logo in self.images.logos:
            if logo.file_path and logo.iso_639_1 in ("en", None):
                return logo.file_path
        return None


class TMDBEpisode(TMDBModel):
    id: int | None = None
    name: str | None = None
    overview: str | None = None
    episode_number: int = 0
    season_number: int = 0
    still_path: str | None = None
    air_date: str | None = None
    runtime: int | None = None


class TMDBSeason(TMDBModel):
    id: int | None = None
    name: str | None = None
    overview: str | None = None
    season_number: int = 0
    poster_path: str | None = None
    episodes: list[TMDBEpisode] = Field(default_factory=list)

    @field_validator("episodes", mode="after")
    @classmethod
    def _sort_episodes(cls, value: list[TMDBEpisode]) -> list[TMDBEpisode]:
        return sorted(value, key=lambda episode: (episode.season_number, episode.episode_number))


class TMDBPerson(TMDBModel):
    id: int
    name: str | None = None
    profile_path: str | None = None
    known_for_department: str | None = None


class TMDBPersonCredits(TMDBModel):
    cast: list[TMDBSearchResult] = Field(default_factory=list)
    crew: list[TMDBSearchResult] = Field(default_factory=list)


class TMDBClient:
    """Client responsible for searching TMDB for media identifiers."""

    def __init__(self, settings: Settings, http: ResilientHttpClient):
        if not (settings.tmdb_api_key or settings.tmdb_access_token):
            raise ValueError("TMDB API key or access token is required when initialising TMDBClient")
        self._settings = settings
        self._http = http
        self._base_url = str(settings.tmdb_api_url).rstrip("/")

    async def find_best_match(
        self, title: str, year: str | None, content_type: ContentType
    ) -> MatchResult | None:
        """Return TMDB's top result for a title, or ``None``.

        Episodic content searches TV, everything else movies. When a search
        with a year finds nothing it is repeated without the year, since
        playlist years often name a season rather than the show's premiere.
        Failures are logged and reported as no match.
        """

        if content_type is ContentType.LIVE or not title or not title.strip():
            return None
        media_type: MediaType = "tv" if content_type.is_episodic else "movie"
        search = self.search_tv if media_type == "tv" else self.search_movie
        try:
            results = await search(title, year)
            if not results and year:
                logger.info("No %s match for %r (%s); retrying without year", media_type, title, year)
                results = await search(title, None)
        except Exception as exc:
            logger.warning("TMDB search failed for %s: %s", title, exc)
            return None
        if not results:
            return None
        return results[0].to_match(media_type)

    async def search_movie(self, query: str, year: str | int | None = None) -> list[TMDBSearchResult]:
        params: dict[str, Any] = {"query": query, "include_adult": "false", "language": DEFAULT_LANGUAGE}
        if year:
            params["primary_release_year"] = year
        return await self._search("/search/movie", params)

    async def search_tv(self, query: str, year: str | int | None = None) -> list[TMDBSearchResult]:
        params: dict[str, Any] = {"query": query, "include_adult": "false", "language": DEFAULT_LANGUAGE}
        if year:
            params["first_air_date_year"] = year
        return await self._search("/search/tv", params)

    async def get_movie_details(self, tmdb_id: int) -> TMDBDetails:
        payload = await self._get(
            f"/movie/{tmdb_id}",
            {
                "append_to_response": "credits,similar,release_dates,videos,images,external_ids",
                "language": DEFAULT_LANGUAGE,
                "include_image_language": "en,null",
            },
        )
        return self._validate(TMDBDetails, payload)

    async def get_tv_details(self, tmdb_id: int) -> TMDBDetails:
        payload = await self._get(
            f"/tv/{tmdb_id}",
            {
                "append_to_response": "aggregate_credits,similar,content_ratings,videos,images,external_ids",
                "language": DEFAULT_LANGUAGE,
                "include_image_language": "en,null",
            },
        )
        return self._validate(TMDBDetails, payload)

    async def get_tv_season(self, tmdb_id: int, season_number: int) -> TMDBSeason:
        payload = await self._get(
            f"/tv/{tmdb_id}/season/{season_number}", {"language": DEFAULT_LANGUAGE}
        )
        return self._validate(TMDBSeason, payload)

    async def get_trending(self, content_type: ContentType | None = None) -> list[TMDBSearchResult]:
        if content_type is None:
            media = "all"
        else:
            media = "tv" if content_type.is_episodic else "movie"
        return await self._search(f"/trending/{media}/week", {"language": DEFAULT_LANGUAGE})

    async def search_person(self, query: str) -> list[TMDBPerson]:
        payload = await self._get(
            "/search/person",
            {"query": query, "include_adult": "false", "language": DEFAULT_LANGUAGE, "page": 1},
        )
        return self._validate_list(TMDBPerson, payload.get("results"))

    async def get_person_credits(self, person_id: int) -> TMDBPersonCredits:
        payload = await self._get(
            f"/person/{person_id}/combined_credits", {"language": DEFAULT_LANGUAGE}
        )
        return self._validate(TMDBPersonCredits, payload)

    async def _search(self, endpoint: str, params: dict[str, Any]) -> list[TMDBSearchResult]:
        payload = await self._get(endpoint, params)
        return self._validate_list(TMDBSearchResult, payload.get("results"))

    async def _get(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        query = dict(params)
        if self._settings.tmdb_api_key:
            query["api_key"] = self._settings.tmdb_api_key
        headers = {"Accept": "application/json"}
        if self._settings.tmdb_access_token:
            headers["Authorization"] = f"Bearer {self._settings.tmdb_access_token}"
        return await self._http.get_json(
            f"{self._base_url}{endpoint}", params=query, headers=headers, expect=dict
        )

    @staticmethod
    def _validate(model: type[TMDBModel], payload: dict[str, Any]) -> Any:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise DecodeError(f"Unexpected TMDB payload for {model.__name__}") from exc

    @staticmethod
    def _validate_list(model: type[TMDBModel], payload: Any) -> list[Any]:
        items: list[Any] = []
        for raw in payload if isinstance(payload, list) else []:
            try:
                items.append(model.model_validate(raw))
            except ValidationError:
                logger.debug("Skipping malformed TMDB %s entry", model.__name__)
        return items


def build_image_url(path: str | None, base_url: str = POSTER_BASE_URL) -> str | None:
    if not path:
        return None
    if path.startswith("http"):
        return path
    return f"{base_url}{path}"
