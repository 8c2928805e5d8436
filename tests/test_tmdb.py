from __future__ import annotations

from typing import Any

import httpx
import pytest

from flixsync.config import Settings
from flixsync.models import ContentType
from flixsync.services.http import ResilientHttpClient
from flixsync.services.tmdb import TMDBClient, build_image_url


async def _no_sleep(delay: float) -> None:
    return None


def build_client(http_client: httpx.AsyncClient, **overrides: Any) -> TMDBClient:
    base: dict[str, Any] = {"TMDB_API_KEY": "secret"}
    base.update(overrides)
    settings = Settings(_env_file=None, **base)  # type: ignore[arg-type]
    return TMDBClient(settings, ResilientHttpClient(settings, http_client, sleep=_no_sleep))


def test_client_requires_credentials() -> None:
    settings = Settings(_env_file=None)

    with pytest.raises(ValueError):
        TMDBClient(settings, None)  # type: ignore[arg-type]


@pytest.mark.anyio("asyncio")
async def test_search_without_year_after_empty_result() -> None:
    seen: list[dict[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/search/tv"
        params = dict(request.url.params)
        seen.append(params)
        if "first_air_date_year" in params:
            return httpx.Response(200, json={"results": []})
        return httpx.Response(
            200,
            json={"results": [{"id": 1396, "name": "Breaking Bad", "poster_path": "/bb.jpg"}]},
        )

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = build_client(http_client)
        match = await client.find_best_match("Breaking Bad", "2013", ContentType.SERIES_EPISODE)

    assert match is not None
    assert match.tmdb_id == 1396
    assert match.media_type == "tv"
    assert match.poster_path == "/bb.jpg"
    assert [params.get("first_air_date_year") for params in seen] == ["2013", None]
    assert all(params["api_key"] == "secret" for params in seen)


@pytest.mark.anyio("asyncio")
async def test_movie_search_uses_release_year_and_bearer_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/search/movie"
        assert request.url.params["primary_release_year"] == "1995"
        assert request.headers["Authorization"] == "Bearer token"
        assert "api_key" not in request.url.params
        return httpx.Response(200, json={"results": [{"id": 949, "title": "Heat"}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = build_client(http_client, TMDB_API_KEY=None, TMDB_ACCESS_TOKEN="token")
        match = await client.find_best_match("Heat", "1995", ContentType.MOVIE)

    assert match is not None
    assert (match.tmdb_id, match.title, match.media_type) == (949, "Heat", "movie")


@pytest.mark.anyio("asyncio")
async def test_lookup_failures_and_live_channels_yield_no_match() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(500, json={"status_message": "boom"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = build_client(http_client)
        assert await client.find_best_match("Heat", None, ContentType.MOVIE) is None
        assert await client.find_best_match("CNN", None, ContentType.LIVE) is None
        assert await client.find_best_match("   ", None, ContentType.MOVIE) is None

    assert calls == 1


@pytest.mark.anyio("asyncio")
async def test_movie_details_expose_appended_resources() -> None:
    payload = {
        "id": 949,
        "title": "Heat",
        "runtime": 170,
        "genres": [{"id": 80, "name": "Crime"}],
        "credits": {
            "cast": [{"id": 1, "name": "Al Pacino", "character": "Vincent Hanna"}],
            "crew": [
                {"id": 2, "name": "Michael Mann", "job": "Director"},
                {"id": 3, "name": "Dante Spinotti", "job": "Director of Photography"},
            ],
        },
        "release_dates": {
            "results": [
                {"iso_3166_1": "DE", "release_dates": [{"certification": "16"}]},
                {"iso_3166_1": "US", "release_dates": [{"certification": ""}, {"certification": "R"}]},
            ]
        },
        "videos": {
            "results": [
                {"key": "abc", "site": "YouTube", "type": "Teaser"},
                {"key": "xyz", "site": "YouTube", "type": "Trailer"},
            ]
        },
        "images": {"logos": [{"file_path": "/fr.png", "iso_639_1": "fr"}, {"file_path": "/en.png", "iso_639_1": "en"}]},
        "similar": {"results": [{"id": 1, "title": "Collateral", "release_date": "2004-08-06"}]},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/movie/949"
        assert "credits" in request.url.params["append_to_response"]
        return httpx.Response(200, json=payload)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        details = await build_client(http_client).get_movie_details(949)

    assert details.display_title == "Heat"
    assert details.directors == ["Michael Mann"]
    assert details.certification == "R"
    assert details.trailer is not None and details.trailer.key == "xyz"
    assert details.logo_path == "/en.png"
    assert details.cast[0].role == "Vincent Hanna"
    assert details.similar[0].year == 2004


@pytest.mark.anyio("asyncio")
async def test_tv_details_read_content_ratings_and_aggregate_credits() -> None:
    payload = {
        "id": 1396,
        "name": "Breaking Bad",
        "number_of_seasons": 5,
        "content_ratings": {"results": [{"iso_3166_1": "US", "rating": "TV-MA"}]},
        "aggregate_credits": {
            "cast": [{"id": 1, "name": "Bryan Cranston", "roles": [{"character": "Walter White"}]}],
            "crew": [{"id": 2, "name": "Vince Gilligan", "jobs": [{"job": "Director"}]}],
        },
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        details = await build_client(http_client).get_tv_details(1396)

    assert details.certification == "TV-MA"
    assert details.directors == ["Vince Gilligan"]
    assert details.cast[0].role == "Walter White"


def test_build_image_url() -> None:
    assert build_image_url("/p.jpg") == "https://image.tmdb.org/t/p/w500/p.jpg"
    assert build_image_url("https://cdn/p.jpg") == "https://cdn/p.jpg"
    assert build_image_url(None) is None
