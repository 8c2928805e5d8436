"""Tests for the Xtream-Codes client and fetcher."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from flixsync.config import Settings
from flixsync.exceptions import FetchError, XtreamAuthError
from flixsync.models import ContentType, PlaylistSource, SourceKind
from flixsync.services.http import ResilientHttpClient
from flixsync.services.xtream import (
    XtreamClient,
    XtreamCredentials,
    XtreamFetcher,
    XtreamVodStream,
    vod_entry,
)

PANEL_URL = "http://panel.example.com:8080|user|pass"
ACCOUNT = {"user_info": {"username": "user", "auth": 1, "status": "Active"}}


def build_settings(**overrides: Any) -> Settings:
    base: dict[str, Any] = {"USER_AGENTS": "only-agent", "CATEGORY_DELAY_SECONDS": 0.5}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def source() -> PlaylistSource:
    return PlaylistSource(id="panel", title="Panel", url=PANEL_URL, kind=SourceKind.XTREAM)


def make_fetcher(
    http_client: httpx.AsyncClient,
    settings: Settings,
    sleep: RecordingSleep,
) -> XtreamFetcher:
    client = XtreamClient(settings, ResilientHttpClient(settings, http_client, sleep=sleep))
    return XtreamFetcher(settings, client, sleep=sleep)


def test_credentials_from_pipe_encoded_value() -> None:
    creds = XtreamCredentials.from_playlist_url("http://panel.example.com:8080/player_api.php|user|pass")

    assert creds == XtreamCredentials("http://panel.example.com:8080", "user", "pass")
    assert creds.api_url == "http://panel.example.com:8080/player_api.php"
    assert creds.live_url(5) == "http://panel.example.com:8080/live/user/pass/5.m3u8"
    assert creds.to_playlist_url() == "http://panel.example.com:8080|user|pass"


def test_credentials_from_api_url() -> None:
    creds = XtreamCredentials.from_playlist_url(
        "http://panel.example.com/player_api.php?username=u&password=p"
    )

    assert creds == XtreamCredentials("http://panel.example.com", "u", "p")


def test_credentials_from_m3u_url() -> None:
    creds = XtreamCredentials.from_m3u_url(
        "http://panel.example.com/get.php?username=u&password=p&type=m3u_plus"
    )

    assert creds == XtreamCredentials("http://panel.example.com", "u", "p")
    assert XtreamCredentials.from_m3u_url("http://cdn.example.com/list.m3u") is None
    assert XtreamCredentials.from_m3u_url("http://panel.example.com/get.php?username=u") is None


def test_vod_titles_with_episode_markers_become_episodes() -> None:
    creds = XtreamCredentials("http://panel", "u", "p")
    stream = XtreamVodStream.model_validate(
        {"stream_id": "77", "name": "Dark S02E03", "container_extension": "mkv"}
    )

    entry = vod_entry("panel", creds, stream, None)

    assert entry is not None
    assert entry.content_type is ContentType.SERIES_EPISODE
    assert entry.url == "http://panel/movie/u/p/77.mkv"
    assert (entry.season, entry.episode) == (2, 3)
    assert entry.group == "Movies"


@pytest.mark.anyio("asyncio")
async def test_bulk_fetch_processes_live_movies_series_in_order() -> None:
    requested: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        action = request.url.params.get("action")
        requested.append(action)
        if action is None:
            return httpx.Response(200, json=ACCOUNT)
        if action == "get_live_streams":
            return httpx.Response(
                200,
                json=[
                    {"stream_id": 1, "name": "CNN HD", "category_id": "1", "epg_channel_id": "cnn"},
                    {"stream_id": None, "name": "Broken"},
                ],
            )
        if action == "get_live_categories":
            return httpx.Response(200, json=[{"category_id": "1", "category_name": "News"}])
        if action == "get_vod_streams":
            return httpx.Response(200, json=[{"stream_id": "2", "name": "Heat (1995)"}])
        if action == "get_series":
            # Some panels answer with an object keyed by index.
            return httpx.Response(200, json={"0": {"series_id": 3, "name": "Dark", "cover": "c.jpg"}})
        return httpx.Response(200, json=[])

    settings = build_settings()
    sleep = RecordingSleep()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        fetcher = make_fetcher(http_client, settings, sleep)
        batches = [batch async for batch in fetcher.fetch_batches(source())]

    assert [batch.content_type for batch in batches] == [
        ContentType.LIVE,
        ContentType.MOVIE,
        ContentType.SERIES,
    ]
    live, movie, series = (batch.entries for batch in batches)
    assert [entry.title for entry in live] == ["CNN HD"]
    assert live[0].group == "News"
    assert live[0].tvg_id == "cnn"
    assert movie[0].year == "1995"
    assert movie[0].canonical_title == "Heat"
    assert movie[0].group == "Movies"
    assert series[0].url == "series://3"
    assert series[0].series_id == "3"
    assert sleep.delays == []
    assert requested[:2] == [None, "get_live_streams"]


@pytest.mark.anyio("asyncio")
async def test_overloaded_bulk_call_switches_to_category_mode() -> None:
    calls: list[tuple[str | None, str | None]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        action = request.url.params.get("action")
        category = request.url.params.get("category_id")
        calls.append((action, category))
        if action is None:
            return httpx.Response(200, json=ACCOUNT)
        if action == "get_live_streams":
            return httpx.Response(200, json=[{"stream_id": 1, "name": "One"}])
        if action == "get_vod_streams" and category is None:
            return httpx.Response(512, text="Rate limited")
        if action == "get_vod_categories":
            return httpx.Response(
                200,
                json=[
                    {"category_id": "10", "category_name": "Action"},
                    {"category_id": "11", "category_name": "Drama"},
                ],
            )
        if action == "get_vod_streams" and category == "10":
            return httpx.Response(200, json=[{"stream_id": 20, "name": "Heat"}])
        if action == "get_vod_streams" and category == "11":
            return httpx.Response(500)
        if action == "get_series_categories":
            return httpx.Response(200, json=[{"category_id": "30", "category_name": "Comedy"}])
        if action == "get_series" and category == "30":
            return httpx.Response(200, json=[{"series_id": 40, "name": "Friends"}])
        return httpx.Response(200, json=[])

    settings = build_settings()
    sleep = RecordingSleep()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        fetcher = make_fetcher(http_client, settings, sleep)
        batches = [batch async for batch in fetcher.fetch_batches(source())]

    movies = [entry for batch in batches for entry in batch.entries if entry.content_type is ContentType.MOVIE]
    series = [entry for batch in batches for entry in batch.entries if entry.content_type is ContentType.SERIES]
    assert [entry.title for entry in movies] == ["Heat"]
    assert movies[0].group == "Action"
    assert [entry.title for entry in series] == ["Friends"]
    assert series[0].group == "Comedy"
    # Series never tried bulk again once the panel signalled overload.
    assert ("get_series", None) not in calls
    assert sleep.delays == [0.5, 0.5, 0.5]


@pytest.mark.anyio("asyncio")
async def test_category_mode_fails_when_every_category_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        action = request.url.params.get("action")
        if action is None:
            return httpx.Response(200, json=ACCOUNT)
        if action == "get_live_categories":
            return httpx.Response(200, json=[{"category_id": "1", "category_name": "News"}])
        return httpx.Response(500)

    settings = build_settings()
    sleep = RecordingSleep()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        fetcher = make_fetcher(http_client, settings, sleep)
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch(source())

    assert excinfo.value.content_type == "live"
    assert not excinfo.value.overloaded

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        fetcher = make_fetcher(http_client, settings, sleep)
        with pytest.raises(FetchError, match="Every Live TV category failed"):
            async for _ in fetcher.fetch_batches(source(), strategy="category"):
                pass


@pytest.mark.anyio("asyncio")
async def test_series_info_episodes_are_sorted() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params.get("action") == "get_series_info"
        assert request.url.params.get("series_id") == "9"
        return httpx.Response(
            200,
            json={
                "info": {"name": "Dark"},
                "episodes": {
                    "2": [{"id": "201", "season": 2, "episode_num": 1, "title": "S2 Opener"}],
                    "1": [
                        {"id": "102", "season": "1", "episode_num": "2"},
                        {"id": "101", "season": "1", "episode_num": "1"},
                    ],
                },
            },
        )

    settings = build_settings()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = XtreamClient(settings, ResilientHttpClient(settings, http_client))
        episodes = await client.get_series_info(XtreamCredentials("http://panel", "u", "p"), "9")

    assert [episode.id for episode in episodes] == ["101", "102", "201"]


@pytest.mark.anyio("asyncio")
async def test_short_epg_treats_unusable_payloads_as_no_data() -> None:
    bodies = iter([b"[]", b"<html>maintenance</html>", b""])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=next(bodies))

    settings = build_settings()
    creds = XtreamCredentials("http://panel", "u", "p")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = XtreamClient(settings, ResilientHttpClient(settings, http_client))
        assert await client.get_short_epg(creds, 1) == []
        assert await client.get_short_epg(creds, 1) == []
        assert await client.get_short_epg(creds, 1) == []


@pytest.mark.anyio("asyncio")
async def test_authenticate_rejects_disabled_accounts() -> None:
    payloads = iter(
        [
            {"user_info": {"username": "u", "auth": 1, "status": "Active"}},
            {"user_info": {"auth": 0}},
            [],
        ]
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=next(payloads))

    settings = build_settings()
    creds = XtreamCredentials("http://panel", "u", "p")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = XtreamClient(settings, ResilientHttpClient(settings, http_client))
        user = await client.authenticate(creds)
        assert user.status == "Active"
        with pytest.raises(XtreamAuthError):
            await client.authenticate(creds)
        with pytest.raises(XtreamAuthError):
            await client.authenticate(creds)


@pytest.mark.anyio("asyncio")
async def test_rejected_account_stops_fetch_before_listing() -> None:
    actions: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        actions.append(request.url.params.get("action"))
        # Rejected panels answer every action with the same user_info object.
        return httpx.Response(200, json={"user_info": {"auth": 0}})

    settings = build_settings()
    sleep = RecordingSleep()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        fetcher = make_fetcher(http_client, settings, sleep)
        with pytest.raises(XtreamAuthError) as excinfo:
            await fetcher.fetch(source())

    assert excinfo.value.source_id == "panel"
    assert actions == [None]


@pytest.mark.anyio("asyncio")
async def test_throttled_account_check_does_not_block_fetch() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        action = request.url.params.get("action")
        if action is None:
            return httpx.Response(429)
        if action == "get_live_streams":
            return httpx.Response(200, json=[{"stream_id": 1, "name": "One"}])
        return httpx.Response(200, json=[])

    settings = build_settings()
    sleep = RecordingSleep()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        fetcher = make_fetcher(http_client, settings, sleep)
        entries = await fetcher.fetch(source())

    assert [entry.title for entry in entries] == ["One"]
    assert entries[0].group == "Uncategorized"
