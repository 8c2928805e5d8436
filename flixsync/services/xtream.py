"""Client and fetcher for Xtream-Codes ``player_api.php`` panels."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Literal, TypeVar
from urllib.parse import parse_qs, urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..config import Settings
from ..exceptions import (
    DecodeError,
    EmptyResponseError,
    FetchError,
    FlixSyncError,
    XtreamAuthError,
    is_overload_error,
)
from ..models import SYNC_ORDER, CatalogEntry, ContentType, PlaylistSource, SourceKind
from ..normalizer import normalize
from ..utils import chunked
from .fetchers import BaseFetcher, FetchedBatch
from .http import ResilientHttpClient

logger = logging.getLogger(__name__)

FetchStrategy = Literal["bulk", "category"]
ModelT = TypeVar("ModelT", bound=BaseModel)

API_SCRIPT = "/player_api.php"

STREAM_ACTIONS: dict[ContentType, str] = {
    ContentType.LIVE: "get_live_streams",
    ContentType.MOVIE: "get_vod_streams",
    ContentType.SERIES: "get_series",
}
CATEGORY_ACTIONS: dict[ContentType, str] = {
    ContentType.LIVE: "get_live_categories",
    ContentType.MOVIE: "get_vod_categories",
    ContentType.SERIES: "get_series_categories",
}
DEFAULT_GROUPS: dict[ContentType, str] = {
    ContentType.LIVE: "Uncategorized",
    ContentType.MOVIE: "Movies",
    ContentType.SERIES: "Series",
    ContentType.SERIES_EPISODE: "Episodes",
}
BATCH_LABELS: dict[ContentType, str] = {
    ContentType.LIVE: "Live TV",
    ContentType.MOVIE: "Movies",
    ContentType.SERIES: "Series",
    ContentType.SERIES_EPISODE: "Episodes",
}


@dataclass(frozen=True, slots=True)
class XtreamCredentials:
    """Panel base URL plus account credentials."""

    base_url: str
    username: str
    password: str

    @classmethod
    def from_playlist_url(cls, value: str) -> "XtreamCredentials":
        """Decode credentials stored as ``base|user|pass`` or as an API URL."""

        if "|" in value:
            parts = value.split("|")
            base = parts[0] if parts else ""
            username = parts[1] if len(parts) > 1 else ""
            password = parts[2] if len(parts) > 2 else ""
            base = base.replace(": //", "://").replace(" ", "")
            return cls(_strip_script(base), username.strip(), password.strip())

        parts = urlsplit(value.strip())
        query = parse_qs(parts.query)
        scheme = parts.scheme or "http"
        base = f"{scheme}://{parts.netloc}{parts.path}".replace(" ", "")
        return cls(
            _strip_script(base),
            _first(query, "username"),
            _first(query, "password"),
        )

    @classmethod
    def from_m3u_url(cls, value: str) -> "XtreamCredentials | None":
        """Return credentials when an M3U URL points at an Xtream panel.

        Panels serve playlists from ``/get.php?username=..&password=..``; any
        other URL shape yields ``None``.
        """

        parts = urlsplit(value.strip())
        if not parts.netloc:
            return None
        query = parse_qs(parts.query)
        username = _first(query, "username")
        password = _first(query, "password")
        if not (username and password):
            return None
        path = parts.path
        for script in ("/get.php", API_SCRIPT):
            if path.endswith(script):
                path = path[: -len(script)]
                break
        else:
            return None
        base = f"{parts.scheme or 'http'}://{parts.netloc}{path}".rstrip("/")
        return cls(base, username, password)

    @property
    def api_url(self) -> str:
        return f"{self.base_url}{API_SCRIPT}"

    def query(self, action: str | None = None, **extra: Any) -> dict[str, Any]:
        params: dict[str, Any] = {"username": self.username, "password": self.password}
        if action:
            params["action"] = action
        params.update({key: value for key, value in extra.items() if value is not None})
        return params

    def live_url(self, stream_id: int) -> str:
        return f"{self.base_url}/live/{self.username}/{self.password}/{stream_id}.m3u8"

    def movie_url(self, stream_id: int, extension: str) -> str:
        return f"{self.base_url}/movie/{self.username}/{self.password}/{stream_id}.{extension}"

    def episode_url(self, episode_id: str, extension: str) -> str:
        return f"{self.base_url}/series/{self.username}/{self.password}/{episode_id}.{extension}"

    def to_playlist_url(self) -> str:
        return f"{self.base_url}|{self.username}|{self.password}"


def series_container_url(series_id: str | int) -> str:
    return f"series://{series_id}"


def _strip_script(base: str) -> str:
    if base.endswith(API_SCRIPT):
        base = base[: -len(API_SCRIPT)]
    return base.rstrip("/")


def _first(query: dict[str, list[str]], key: str) -> str:
    values = query.get(key) or [""]
    return values[0].strip()


def _coerce_str(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _coerce_int(value: Any) -> int | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return int(float(str(value).strip()))
    except ValueError:
        return None


class XtreamModel(BaseModel):
    """Base for panel payloads: unknown keys ignored, every field optional."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class XtreamCategory(XtreamModel):
    category_id: str | None = None
    category_name: str | None = None
    parent_id: int = 0

    @field_validator("category_id", "category_name", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> str | None:
        return _coerce_str(value)

    @field_validator("parent_id", mode="before")
    @classmethod
    def _as_parent(cls, value: Any) -> int:
        return _coerce_int(value) or 0


class XtreamLiveStream(XtreamModel):
    stream_id: int | None = None
    name: str | None = None
    stream_icon: str | None = None
    category_id: str | None = None
    epg_channel_id: str | None = None

    @field_validator("name", "stream_icon", "category_id", "epg_channel_id", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> str | None:
        return _coerce_str(value)

    @field_validator("stream_id", mode="before")
    @classmethod
    def _as_number(cls, value: Any) -> int | None:
        return _coerce_int(value)


class XtreamVodStream(XtreamModel):
    stream_id: int | None = None
    name: str | None = None
    stream_icon: str | None = None
    category_id: str | None = None
    container_extension: str = "mp4"
    rating: str | None = None

    @field_validator("name", "stream_icon", "category_id", "rating", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> str | None:
        return _coerce_str(value)

    @field_validator("container_extension", mode="before")
    @classmethod
    def _as_extension(cls, value: Any) -> str:
        return _coerce_str(value) or "mp4"

    @field_validator("stream_id", mode="before")
    @classmethod
    def _as_number(cls, value: Any) -> int | None:
        return _coerce_int(value)


class XtreamSeries(XtreamModel):
    series_id: int | None = None
    name: str | None = None
    cover: str | None = None
    category_id: str | None = None
    rating: str | None = None

    @field_validator("name", "cover", "category_id", "rating", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> str | None:
        return _coerce_str(value)

    @field_validator("series_id", mode="before")
    @classmethod
    def _as_number(cls, value: Any) -> int | None:
        return _coerce_int(value)


class XtreamEpisode(XtreamModel):
    id: str | None = None
    title: str | None = None
    container_extension: str = "mp4"
    season: int = 0
    episode_num: int = 0

    @field_validator("id", "title", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> str | None:
        return _coerce_str(value)

    @field_validator("container_extension", mode="before")
    @classmethod
    def _as_extension(cls, value: Any) -> str:
        return _coerce_str(value) or "mp4"

    @field_validator("season", "episode_num", mode="before")
    @classmethod
    def _as_count(cls, value: Any) -> int:
        return _coerce_int(value) or 0


class XtreamSeriesInfo(XtreamModel):
    episodes: dict[str, list[XtreamEpisode]] = Field(default_factory=dict)

    @field_validator("episodes", mode="before")
    @classmethod
    def _group_episodes(cls, value: Any) -> dict[str, list[Any]]:
        """Accept the season map, a flat list, or per-season index maps."""

        if not value:
            return {}
        if isinstance(value, list):
            grouped: dict[str, list[Any]] = {}
            for item in value:
                if isinstance(item, dict):
                    grouped.setdefault(str(item.get("season") or 0), []).append(item)
            return grouped
        if isinstance(value, dict):
            normalized: dict[str, list[Any]] = {}
            for season, items in value.items():
                if isinstance(items, dict):
                    items = list(items.values())
                if isinstance(items, list):
                    normalized[str(season)] = [item for item in items if isinstance(item, dict)]
            return normalized
        return {}

    def flatten(self) -> list[XtreamEpisode]:
        """Return every episode sorted by (season, episode number)."""

        episodes = [episode for items in self.episodes.values() for episode in items]
        return sorted(episodes, key=lambda episode: (episode.season, episode.episode_num))


class XtreamEpgListing(XtreamModel):
    id: str | None = None
    title: str | None = None
    description: str | None = None
    start: str | None = None
    end: str | None = None
    start_timestamp: int | None = None
    stop_timestamp: int | None = None

    @field_validator("id", "title", "description", "start", "end", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> str | None:
        return _coerce_str(value)

    @field_validator("start_timestamp", "stop_timestamp", mode="before")
    @classmethod
    def _as_number(cls, value: Any) -> int | None:
        return _coerce_int(value)

    def start_time(self) -> datetime | None:
        return _listing_time(self.start_timestamp, self.start)

    def end_time(self) -> datetime | None:
        return _listing_time(self.stop_timestamp, self.end)


class XtreamEpgResponse(XtreamModel):
    epg_listings: list[XtreamEpgListing] = Field(default_factory=list)

    @field_validator("epg_listings", mode="before")
    @classmethod
    def _as_list(cls, value: Any) -> list[Any]:
        if isinstance(value, dict):
            value = list(value.values())
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]


class XtreamUserInfo(XtreamModel):
    username: str | None = None
    auth: int | None = None
    status: str | None = None
    exp_date: str | None = None
    max_connections: int | None = None

    @field_validator("username", "status", "exp_date", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> str | None:
        return _coerce_str(value)

    @field_validator("auth", "max_connections", mode="before")
    @classmethod
    def _as_number(cls, value: Any) -> int | None:
        return _coerce_int(value)


def _listing_time(timestamp: int | None, text: str | None) -> datetime | None:
    """Return a naive UTC datetime from an epoch value or ``YYYY-MM-DD HH:MM:SS``."""

    if timestamp:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc).replace(tzinfo=None)
    if text:
        try:
            return datetime.strptime(text, "%Y-%m-%d %H:%M:%S")
        except ValueError:
            return None
    return None


def parse_items(model: type[ModelT], payload: Iterable[Any]) -> list[ModelT]:
    """Validate each element, skipping malformed ones instead of failing the page."""

    items: list[ModelT] = []
    for raw in payload:
        if not isinstance(raw, dict):
            continue
        try:
            items.append(model.model_validate(raw))
        except ValidationError as exc:
            logger.debug("Skipping malformed %s payload: %s", model.__name__, exc)
    return items


class XtreamClient:
    """Thin wrapper around the panel's JSON actions."""

    def __init__(self, settings: Settings, http: ResilientHttpClient):
        self._settings = settings
        self._http = http

    async def _call(
        self,
        credentials: XtreamCredentials,
        action: str | None,
        *,
        expect: type = list,
        **params: Any,
    ) -> Any:
        return await self._http.get_json(
            credentials.api_url, params=credentials.query(action, **params), expect=expect
        )

    async def authenticate(self, credentials: XtreamCredentials) -> XtreamUserInfo:
        """Validate the account, raising :class:`XtreamAuthError` when rejected."""

        payload = await self._call(credentials, None, expect=dict)
        raw_user = payload.get("user_info")
        user = XtreamUserInfo.model_validate(raw_user if isinstance(raw_user, dict) else {})
        if not raw_user or user.auth == 0:
            raise XtreamAuthError(
                f"Xtream panel rejected credentials for {credentials.username or 'user'}"
            )
        return user

    async def get_live_streams(
        self, credentials: XtreamCredentials, category_id: str | None = None
    ) -> list[XtreamLiveStream]:
        payload = await self._call(credentials, "get_live_streams", category_id=category_id)
        return parse_items(XtreamLiveStream, payload)

    async def get_vod_streams(
        self, credentials: XtreamCredentials, category_id: str | None = None
    ) -> list[XtreamVodStream]:
        payload = await self._call(credentials, "get_vod_streams", category_id=category_id)
        return parse_items(XtreamVodStream, payload)

    async def get_series(
        self, credentials: XtreamCredentials, category_id: str | None = None
    ) -> list[XtreamSeries]:
        payload = await self._call(credentials, "get_series", category_id=category_id)
        return parse_items(XtreamSeries, payload)

    async def get_live_categories(self, credentials: XtreamCredentials) -> list[XtreamCategory]:
        return parse_items(XtreamCategory, await self._call(credentials, "get_live_categories"))

    async def get_vod_categories(self, credentials: XtreamCredentials) -> list[XtreamCategory]:
        return parse_items(XtreamCategory, await self._call(credentials, "get_vod_categories"))

    async def get_series_categories(self, credentials: XtreamCredentials) -> list[XtreamCategory]:
        return parse_items(
            XtreamCategory, await self._call(credentials, "get_series_categories")
        )

    async def get_streams(
        self,
        credentials: XtreamCredentials,
        content_type: ContentType,
        category_id: str | None = None,
    ) -> list[XtreamLiveStream] | list[XtreamVodStream] | list[XtreamSeries]:
        if content_type is ContentType.LIVE:
            return await self.get_live_streams(credentials, category_id)
        if content_type is ContentType.MOVIE:
            return await self.get_vod_streams(credentials, category_id)
        if content_type is ContentType.SERIES:
            return await self.get_series(credentials, category_id)
        raise ValueError(f"No stream listing for {content_type.value}")

    async def get_categories(
        self, credentials: XtreamCredentials, content_type: ContentType
    ) -> list[XtreamCategory]:
        if content_type is ContentType.LIVE:
            return await self.get_live_categories(credentials)
        if content_type is ContentType.MOVIE:
            return await self.get_vod_categories(credentials)
        if content_type is ContentType.SERIES:
            return await self.get_series_categories(credentials)
        raise ValueError(f"No category listing for {content_type.value}")

    async def get_short_epg(
        self,
        credentials: XtreamCredentials,
        stream_id: int,
        limit: int | None = None,
    ) -> list[XtreamEpgListing]:
        """Return upcoming listings; unusable payloads mean "no data"."""

        try:
            payload = await self._call(
                credentials,
                "get_short_epg",
                expect=dict,
                stream_id=stream_id,
                limit=limit or self._settings.epg_limit,
            )
        except (DecodeError, EmptyResponseError) as exc:
            logger.debug("No EPG data for stream %s: %s", stream_id, exc)
            return []
        try:
            return XtreamEpgResponse.model_validate(payload).epg_listings
        except ValidationError:
            return []

    async def get_series_info(
        self, credentials: XtreamCredentials, series_id: str | int
    ) -> list[XtreamEpisode]:
        """Return the series' episodes flattened and sorted by (season, episode)."""

        payload = await self._call(
            credentials, "get_series_info", expect=dict, series_id=series_id
        )
        try:
            info = XtreamSeriesInfo.model_validate(payload)
        except ValidationError as exc:
            raise DecodeError(f"Unexpected series info shape for {series_id}") from exc
        return info.flatten()


def live_entry(
    source_id: str, credentials: XtreamCredentials, stream: XtreamLiveStream, group: str | None
) -> CatalogEntry | None:
    if stream.stream_id is None:
        return None
    raw = stream.name or ""
    info = normalize(raw)
    return CatalogEntry(
        source_id=source_id,
        url=credentials.live_url(stream.stream_id),
        title=raw,
        canonical_title=info.title or raw,
        group=group or DEFAULT_GROUPS[ContentType.LIVE],
        content_type=ContentType.LIVE,
        cover=stream.stream_icon,
        quality=info.quality,
        stream_id=stream.stream_id,
        tvg_id=stream.epg_channel_id,
    )


def vod_entry(
    source_id: str, credentials: XtreamCredentials, stream: XtreamVodStream, group: str | None
) -> CatalogEntry | None:
    if stream.stream_id is None:
        return None
    raw = stream.name or ""
    info = normalize(raw)
    # Panels file loose episodes under VOD; the title's S/E tokens give them away.
    content_type = ContentType.SERIES_EPISODE if info.is_episodic else ContentType.MOVIE
    return CatalogEntry(
        source_id=source_id,
        url=credentials.movie_url(stream.stream_id, stream.container_extension),
        title=raw,
        canonical_title=info.title or raw,
        group=group or DEFAULT_GROUPS[ContentType.MOVIE],
        content_type=content_type,
        cover=stream.stream_icon,
        quality=info.quality,
        year=info.year,
        season=info.season,
        episode=info.episode,
        stream_id=stream.stream_id,
    )


def series_entry(source_id: str, series: XtreamSeries, group: str | None) -> CatalogEntry | None:
    if series.series_id is None:
        return None
    raw = series.name or ""
    info = normalize(raw)
    return CatalogEntry(
        source_id=source_id,
        url=series_container_url(series.series_id),
        title=raw,
        canonical_title=info.title or raw,
        group=group or DEFAULT_GROUPS[ContentType.SERIES],
        content_type=ContentType.SERIES,
        cover=series.cover,
        year=info.year,
        series_id=str(series.series_id),
    )


def episode_entry(
    source_id: str,
    credentials: XtreamCredentials,
    episode: XtreamEpisode,
    *,
    series_id: str,
    cover: str | None = None,
) -> CatalogEntry | None:
    if not episode.id:
        return None
    raw = episode.title or f"Episode {episode.episode_num}"
    info = normalize(raw)
    return CatalogEntry(
        source_id=source_id,
        url=credentials.episode_url(episode.id, episode.container_extension),
        title=raw,
        canonical_title=info.title or raw,
        group=DEFAULT_GROUPS[ContentType.SERIES_EPISODE],
        content_type=ContentType.SERIES_EPISODE,
        cover=cover,
        quality=info.quality,
        season=episode.season,
        episode=episode.episode_num,
        series_id=series_id,
    )


class XtreamFetcher(BaseFetcher):
    """Produce catalog batches from a panel, live then movies then series.

    Each content type is requested in bulk first. When the panel answers a
    bulk call with an overload status, the fetcher switches to listing
    categories and requesting them one at a time with a pause in between.
    """

    kind = SourceKind.XTREAM

    def __init__(
        self,
        settings: Settings,
        client: XtreamClient,
        *,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        self._settings = settings
        self._client = client
        self._sleep = sleep or asyncio.sleep

    @property
    def client(self) -> XtreamClient:
        return self._client

    async def fetch_batches(
        self,
        source: PlaylistSource,
        *,
        strategy: FetchStrategy = "bulk",
        credentials: XtreamCredentials | None = None,
    ) -> AsyncIterator[FetchedBatch]:
        credentials = credentials or XtreamCredentials.from_playlist_url(source.url)
        await self._check_account(source, credentials)
        mode: FetchStrategy = strategy
        for content_type in SYNC_ORDER:
            if mode == "bulk":
                try:
                    items = await self._client.get_streams(credentials, content_type)
                except FlixSyncError as exc:
                    if not is_overload_error(exc):
                        raise FetchError(
                            f"{BATCH_LABELS[content_type]} fetch failed: {exc}",
                            source_id=source.id,
                            content_type=content_type.value,
                            cause=exc,
                        ) from exc
                    logger.warning(
                        "Bulk %s fetch for %s rejected (%s); switching to category mode",
                        content_type.value,
                        source.title,
                        exc,
                    )
                    mode = "category"
                else:
                    group_names = await self._group_names(credentials, content_type)
                    for batch in self._to_batches(
                        source, credentials, content_type, items, group_names
                    ):
                        yield batch
                    continue

            async for batch in self._fetch_by_category(source, credentials, content_type):
                yield batch

        if self._settings.sync_series_episodes:
            async for batch in self.fetch_episode_batches(source, credentials=credentials):
                yield batch

    async def fetch_episode_batches(
        self,
        source: PlaylistSource,
        *,
        credentials: XtreamCredentials | None = None,
        series: Iterable[tuple[str, str | None]] | None = None,
    ) -> AsyncIterator[FetchedBatch]:
        """Expand series into episode entries, one ``get_series_info`` call each.

        ``series`` holds ``(series_id, cover)`` pairs; when omitted the full
        series listing is requested first. Failing series are logged and skipped.
        """

        credentials = credentials or XtreamCredentials.from_playlist_url(source.url)
        if series is None:
            listing = await self._client.get_series(credentials)
            series = [
                (str(item.series_id), item.cover)
                for item in listing
                if item.series_id is not None
            ]
        for index, (series_id, cover) in enumerate(series):
            if index:
                await self._sleep(self._settings.category_delay_seconds)
            try:
                episodes = await self._client.get_series_info(credentials, series_id)
            except FlixSyncError as exc:
                logger.warning("Skipping episodes of series %s: %s", series_id, exc)
                continue
            entries = [
                entry
                for entry in (
                    episode_entry(
                        source.id, credentials, episode, series_id=series_id, cover=cover
                    )
                    for episode in episodes
                )
                if entry is not None
            ]
            for chunk in chunked(entries, self._settings.sync_batch_size):
                yield FetchedBatch(
                    ContentType.SERIES_EPISODE,
                    list(chunk),
                    label=BATCH_LABELS[ContentType.SERIES_EPISODE],
                )

    async def _check_account(
        self, source: PlaylistSource, credentials: XtreamCredentials
    ) -> None:
        # Rejected panels answer every action with the user_info object, which
        # would otherwise decode as an empty listing.
        try:
            user = await self._client.authenticate(credentials)
        except XtreamAuthError as exc:
            exc.source_id = source.id
            raise
        except FlixSyncError as exc:
            if not is_overload_error(exc):
                raise FetchError(
                    f"Account check failed: {exc}", source_id=source.id, cause=exc
                ) from exc
            logger.warning("Account check for %s throttled (%s); continuing", source.title, exc)
            return
        logger.debug("Panel account %s is %s", user.username, user.status or "active")

    async def _group_names(
        self, credentials: XtreamCredentials, content_type: ContentType
    ) -> dict[str, str]:
        try:
            categories = await self._client.get_categories(credentials, content_type)
        except FlixSyncError as exc:
            logger.info("Category names unavailable for %s: %s", content_type.value, exc)
            return {}
        return {
            category.category_id: category.category_name
            for category in categories
            if category.category_id and category.category_name
        }

    async def _fetch_by_category(
        self,
        source: PlaylistSource,
        credentials: XtreamCredentials,
        content_type: ContentType,
    ) -> AsyncIterator[FetchedBatch]:
        try:
            categories = await self._client.get_categories(credentials, content_type)
        except FlixSyncError as exc:
            raise FetchError(
                f"{BATCH_LABELS[content_type]} categories unavailable: {exc}",
                source_id=source.id,
                content_type=content_type.value,
                cause=exc,
            ) from exc

        succeeded = 0
        last_error: FlixSyncError | None = None
        for category in categories:
            if not category.category_id:
                continue
            await self._sleep(self._settings.category_delay_seconds)
            try:
                items = await self._client.get_streams(
                    credentials, content_type, category.category_id
                )
            except FlixSyncError as exc:
                logger.warning(
                    "Skipping %s category %s (%s): %s",
                    content_type.value,
                    category.category_name,
                    category.category_id,
                    exc,
                )
                last_error = exc
                continue
            succeeded += 1
            for batch in self._to_batches(
                source,
                credentials,
                content_type,
                items,
                {},
                default_group=category.category_name,
            ):
                yield batch

        if last_error is not None and not succeeded:
            raise FetchError(
                f"Every {BATCH_LABELS[content_type]} category failed: {last_error}",
                source_id=source.id,
                content_type=content_type.value,
                cause=last_error,
            )

    def _to_batches(
        self,
        source: PlaylistSource,
        credentials: XtreamCredentials,
        content_type: ContentType,
        items: list[Any],
        group_names: dict[str, str],
        *,
        default_group: str | None = None,
    ) -> list[FetchedBatch]:
        entries: list[CatalogEntry] = []
        for item in items:
            group = group_names.get(item.category_id or "") or default_group or None
            if content_type is ContentType.LIVE:
                entry = live_entry(source.id, credentials, item, group)
            elif content_type is ContentType.MOVIE:
                entry = vod_entry(source.id, credentials, item, group)
            else:
                entry = series_entry(source.id, item, group)
            if entry is not None:
                entries.append(entry)
        return [
            FetchedBatch(content_type, list(chunk), label=BATCH_LABELS[content_type])
            for chunk in chunked(entries, self._settings.sync_batch_size)
        ]
