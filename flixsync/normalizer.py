"""Parse noisy IPTV titles into canonical title, year, season/episode and quality."""

from __future__ import annotations

import re
from dataclasses import dataclass
from difflib import SequenceMatcher

LANGUAGE_MAP: dict[str, str] = {
    "AR": "Arabic",
    "ARA": "Arabic",
    "EN": "English",
    "ENG": "English",
    "UK": "English",
    "US": "English",
    "FR": "French",
    "FRE": "French",
    "VF": "French",
    "ES": "Spanish",
    "SPA": "Spanish",
    "DE": "German",
    "GER": "German",
    "IT": "Italian",
    "ITA": "Italian",
    "RU": "Russian",
    "RUS": "Russian",
    "TR": "Turkish",
    "TUR": "Turkish",
    "MULTI": "Multi-Audio",
}
# Extra region prefixes seen in panel naming ("CA: News 24") that carry no language.
REGION_PREFIXES = frozenset({"CA", "AU", "NL", "PT", "PL", "IN", "BE", "CH", "SE", "NO", "DK"})

# Highest priority first; the first token found becomes the quality label.
QUALITY_TOKENS: tuple[tuple[str, str], ...] = (
    ("2160p", "2160p"),
    ("1080p", "1080p"),
    ("720p", "720p"),
    ("480p", "480p"),
    ("uhd", "4K"),
    ("4k", "4K"),
    ("hdr", "HDR"),
    ("sd", "SD"),
)
_QUALITY_RES = tuple(
    (re.compile(rf"(?<![A-Za-z0-9]){token}(?![A-Za-z0-9])", re.IGNORECASE), label)
    for token, label in QUALITY_TOKENS
)
_QUALITY_SCORES = {"4K": 4000, "2160p": 4000, "1080p": 1080, "720p": 720}

_SEASON_EPISODE_RES = (
    re.compile(r"\bS(\d{1,2})\s*[._-]?\s*E(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"\b(\d{1,2})x(\d{1,3})\b", re.IGNORECASE),
    re.compile(r"\bSeason\s*(\d{1,2})\s*[,._-]?\s*Episode\s*(\d{1,3})\b", re.IGNORECASE),
)
_SEASON_ONLY_RES = (
    re.compile(r"\bSeason\s*(\d{1,2})\b", re.IGNORECASE),
    re.compile(r"\bS(\d{1,2})\b", re.IGNORECASE),
)
_EPISODE_ONLY_RES = (
    re.compile(r"\b(?:Episode|Ep)\.?\s*(\d{1,4})\b", re.IGNORECASE),
    re.compile(r"\bE(\d{2,3})\b", re.IGNORECASE),
)

_BRACKETED_YEAR_RE = re.compile(r"[(\[]\s*((?:19|20)\d{2})\s*[)\]]")
_BARE_YEAR_RE = re.compile(r"(?<![A-Za-z0-9])((?:19|20)\d{2})(?![A-Za-z0-9])")
_BRACKETED_RE = re.compile(r"\[[^\]]*\]|\([^)]*\)|\{[^}]*\}")
_CODEC_RE = re.compile(
    r"(?<![A-Za-z0-9])(?:h\.?26[45]|hevc|x26[45]|aac|ac3|dts|web[- ]?dl|webrip|bluray|brrip|hdtv)(?![A-Za-z0-9])",
    re.IGNORECASE,
)
_PREFIX_RE = re.compile(r"^\s*\|?\s*([A-Za-z]{2,5})\s*\|?\s*(?::|\||\s-\s)\s*")
# Trailing tags only count after a separator ("Sky News | FR"); "The Office US" is a title.
_SUFFIX_RE = re.compile(r"\s*[|:-]\s*([A-Z]{2,5})\s*$")
_TOKEN_SPLIT_RE = re.compile(r"[\s.\-_\[\]()|:]+")
_SEPARATOR_RE = re.compile(r"[._]+|\s+-+(?=\s)|^-+|-+$")
_SPACES_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class NormalizedTitleInfo:
    """Canonical view of a raw playlist title."""

    raw_title: str
    title: str
    year: str | None = None
    season: int | None = None
    episode: int | None = None
    quality: str | None = None
    language: str | None = None

    @property
    def quality_score(self) -> int:
        """Return a sortable score for the quality label (higher is better)."""

        if self.quality is None:
            return 480
        return _QUALITY_SCORES.get(self.quality, 480)

    @property
    def is_episodic(self) -> bool:
        return self.season is not None or self.episode is not None


def parse_season_episode(title: str) -> tuple[int | None, int | None]:
    """Return ``(season, episode)`` found in ``title``; missing parts are ``None``."""

    season, episode, _ = _extract_season_episode(title.replace("_", " "))
    return season, episode


def _extract_season_episode(text: str) -> tuple[int | None, int | None, str]:
    for pattern in _SEASON_EPISODE_RES:
        match = pattern.search(text)
        if match:
            season, episode = int(match.group(1)), int(match.group(2))
            return season, episode, _cut(text, match)

    season: int | None = None
    for pattern in _SEASON_ONLY_RES:
        match = pattern.search(text)
        if match:
            season = int(match.group(1))
            text = _cut(text, match)
            break

    episode: int | None = None
    for pattern in _EPISODE_ONLY_RES:
        match = pattern.search(text)
        if match:
            episode = int(match.group(1))
            text = _cut(text, match)
            break
    return season, episode, text


def _extract_quality(text: str) -> tuple[str | None, str]:
    quality: str | None = None
    for pattern, label in _QUALITY_RES:
        if pattern.search(text):
            if quality is None:
                quality = label
            text = pattern.sub(" ", text)
    return quality, text


def _extract_year(text: str) -> tuple[str | None, str]:
    bracketed = list(_BRACKETED_YEAR_RE.finditer(text))
    match = bracketed[-1] if bracketed else None
    if match is None:
        bare = list(_BARE_YEAR_RE.finditer(text))
        match = bare[-1] if bare else None
    if match is None:
        return None, text
    remainder = _cut(text, match)
    if not _clean(_BRACKETED_RE.sub(" ", remainder)):
        # The number is the whole title ("1984"), keep it as the title.
        return None, text
    return match.group(1), remainder


def detect_language(raw_title: str) -> str | None:
    """Return the language named by a tag in ``raw_title``, searching from the end."""

    tokens = [token for token in _TOKEN_SPLIT_RE.split(raw_title) if token]
    for token in reversed(tokens):
        # Lower-case words are title text ("it", "es"); tags are upper-case.
        if token.isupper() and token in LANGUAGE_MAP:
            return LANGUAGE_MAP[token]
    return None


def _strip_prefix(text: str) -> str:
    match = _PREFIX_RE.match(text)
    if not match:
        return text
    code = match.group(1).upper()
    if code not in LANGUAGE_MAP and code not in REGION_PREFIXES:
        return text
    remainder = text[match.end() :]
    return remainder if _clean(remainder) else text


def _strip_trailing_language(text: str) -> str:
    match = _SUFFIX_RE.search(text)
    if not match or match.group(1) not in LANGUAGE_MAP:
        return text
    remainder = text[: match.start()]
    return remainder if _clean(remainder) else text


def _cut(text: str, match: re.Match[str]) -> str:
    return f"{text[: match.start()]} {text[match.end() :]}"


def _clean(text: str) -> str:
    text = _SEPARATOR_RE.sub(" ", text)
    text = _SPACES_RE.sub(" ", text)
    return text.strip(" -:|,")


def normalize(raw_title: str) -> NormalizedTitleInfo:
    """Parse ``raw_title`` into a :class:`NormalizedTitleInfo`.

    Season/episode, quality and year tokens are extracted first and removed from
    the text, then bracketed noise, codec tags and language/region prefixes are
    dropped and separators collapsed. The function is pure.
    """

    raw = raw_title or ""
    text = raw.replace("_", " ")
    language = detect_language(raw)

    season, episode, text = _extract_season_episode(text)
    quality, text = _extract_quality(text)
    year, text = _extract_year(text)

    stripped = _BRACKETED_RE.sub(" ", text)
    if _clean(stripped):
        text = stripped
    text = _CODEC_RE.sub(" ", text)
    text = _strip_prefix(text)
    text = _strip_trailing_language(text)
    title = _clean(text)

    return NormalizedTitleInfo(
        raw_title=raw,
        title=title,
        year=year,
        season=season,
        episode=episode,
        quality=quality,
        language=language,
    )


def canonical_key(title: str) -> str:
    """Return the case-insensitive grouping key for a raw or canonical title."""

    return normalize(title).title.casefold()


def similarity(first: str, second: str) -> float:
    """Return a 0..1 similarity ratio between two titles, ignoring case."""

    left = first.casefold().strip()
    right = second.casefold().strip()
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    return SequenceMatcher(None, left, right).ratio()
