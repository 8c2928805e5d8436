"""Title normalisation behaviour tests."""

from __future__ import annotations

import pytest

from flixsync.normalizer import (
    canonical_key,
    detect_language,
    normalize,
    parse_season_episode,
    similarity,
)


def test_dotted_release_name_extracts_year_and_quality() -> None:
    info = normalize("The.Matrix.1999.1080p")

    assert info.title == "The Matrix"
    assert info.year == "1999"
    assert info.quality == "1080p"
    assert info.season is None
    assert info.episode is None


def test_season_pack_with_year_and_quality() -> None:
    info = normalize("The.Bear.S03.2024.1080p")

    assert info.title == "The Bear"
    assert info.season == 3
    assert info.episode is None
    assert info.year == "2024"
    assert info.quality == "1080p"


@pytest.mark.parametrize(
    ("raw", "title", "season", "episode"),
    [
        ("Breaking Bad S01E02 720p", "Breaking Bad", 1, 2),
        ("Friends 1x05", "Friends", 1, 5),
        ("The Office Season 2 Episode 3", "The Office", 2, 3),
    ],
)
def test_season_episode_forms(raw: str, title: str, season: int, episode: int) -> None:
    info = normalize(raw)

    assert info.title == title
    assert (info.season, info.episode) == (season, episode)
    assert info.is_episodic


def test_bracketed_noise_is_removed() -> None:
    info = normalize("Inception (2010) [4K]")

    assert info.title == "Inception"
    assert info.year == "2010"
    assert info.quality == "4K"
    assert info.quality_score == 4000


def test_first_quality_token_by_priority_wins() -> None:
    info = normalize("Dune Part Two 2024 2160p HDR")

    assert info.title == "Dune Part Two"
    assert info.year == "2024"
    assert info.quality == "2160p"


def test_title_that_is_only_a_year_is_kept() -> None:
    info = normalize("1984")

    assert info.title == "1984"
    assert info.year is None


def test_missing_fields_are_absent_not_zero() -> None:
    info = normalize("Planet Earth")

    assert info.title == "Planet Earth"
    assert info.year is None
    assert info.season is None
    assert info.episode is None
    assert info.quality is None
    assert not info.is_episodic


def test_language_prefix_is_stripped() -> None:
    info = normalize("EN: Sky News HD")

    assert info.title == "Sky News HD"
    assert info.language == "English"


@pytest.mark.parametrize(
    ("raw", "title"),
    [
        ("The Office US", "The Office US"),
        ("Sky News | FR", "Sky News"),
        ("Dark - DE 1080p", "Dark"),
        ("Spider-MAN", "Spider-MAN"),
    ],
)
def test_trailing_language_needs_a_separator(raw: str, title: str) -> None:
    assert normalize(raw).title == title


def test_regional_remakes_keep_distinct_keys() -> None:
    assert canonical_key("The Office US") != canonical_key("The Office")


def test_normalize_is_deterministic() -> None:
    assert normalize("Movie.Name.2019.720p") == normalize("Movie.Name.2019.720p")


def test_lowercase_words_are_not_language_tags() -> None:
    assert detect_language("it follows") is None
    assert detect_language("La Casa de Papel ES") == "Spanish"


def test_parse_season_episode_handles_underscores() -> None:
    assert parse_season_episode("Show_S02E10") == (2, 10)
    assert parse_season_episode("Standalone Film") == (None, None)


def test_canonical_key_groups_variants() -> None:
    assert canonical_key("The.Matrix.1999") == canonical_key("the matrix")


def test_similarity_bounds() -> None:
    assert similarity("Alien", "ALIEN") == 1.0
    assert similarity("", "Alien") == 0.0
    assert 0.0 < similarity("Aliens", "Alien") < 1.0
