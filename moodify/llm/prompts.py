"""Prompt builders and reply parsers for the completion endpoint.

Everything here is pure: the same input always yields the same prompt, and the
parsers never touch the network.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from ..models import Mood, QuestionnaireResponse, TrackSuggestion

MOOD_SYSTEM = (
    "You are a helpful assistant that determines a user's mood from a list of statements."
)
TITLE_SYSTEM = "You are a creative assistant that names music playlists."
SUGGESTION_SYSTEM = (
    "You are a music assistant that provides song recommendations based on mood."
)

MAX_TITLE_WORDS = 4

_MOOD_CHOICES = ", ".join(m.value for m in list(Mood)[:-1]) + f", or {list(Mood)[-1].value}"
_LIST_PREFIX = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s*")
_BY = re.compile(r"\s+by\s+", re.IGNORECASE)
_QUOTES = "\"'“”‘’"


def build_mood_prompt(responses: Sequence[QuestionnaireResponse]) -> str:
    lines = ["Determine the user's overall mood from these statements:"]
    for index, resp in enumerate(responses, start=1):
        lines.append(f'{index}) Question: "{resp.question}"')
        lines.append(f'   Answer: "{resp.answer}"')
        lines.append("")
    lines.append(f"Please give me one of these moods: {_MOOD_CHOICES}.")
    return "\n".join(lines) + "\n"


def parse_mood(text: str) -> Mood | None:
    """Return the known mood mentioned earliest in ``text``, case-insensitively."""
    lowered = text.lower()
    best: tuple[int, Mood] | None = None
    for mood in Mood:
        pos = lowered.find(mood.value.lower())
        if pos != -1 and (best is None or pos < best[0]):
            best = (pos, mood)
    return best[1] if best else None


def build_title_prompt(mood: Mood) -> str:
    return (
        f"Create a short, catchy playlist title of 2 to {MAX_TITLE_WORDS} words "
        f"for someone feeling {mood.value}. Reply with the title only."
    )


def parse_title(text: str) -> str | None:
    """Normalise a title reply to 2-4 words, or ``None`` when nothing is usable."""
    lines = [ln for ln in text.strip().splitlines() if ln.strip()]
    if not lines:
        return None
    first = lines[0].strip()
    if ":" in first and first.lower().startswith("title"):
        first = first.split(":", 1)[1]
    first = first.strip().strip(_QUOTES).strip().rstrip(".!?,;:").strip(_QUOTES).strip()
    words = first.split()
    if not words:
        return None
    words = words[:MAX_TITLE_WORDS]
    if len(words) == 1:
        words.append("Mix")
    return " ".join(words)


def build_suggestion_prompt(mood: Mood, count: int) -> str:
    return (
        f"Based on the mood '{mood.value}', suggest a Spotify playlist with {count} songs.\n"
        "Format: one song per line as: Song Title by Artist. "
        "Do not add any other text."
    )


def parse_suggestion_line(line: str) -> TrackSuggestion | None:
    cleaned = _LIST_PREFIX.sub("", line).strip()
    if not cleaned:
        return None
    parts = _BY.split(cleaned)
    if len(parts) < 2:
        return None
    # Split at the last " by " so titles like "Stand by Me" survive
    title = " by ".join(parts[:-1]).strip().strip(_QUOTES).strip()
    artist = parts[-1].strip().strip(_QUOTES).rstrip(".").strip()
    if not title or not artist:
        return None
    return TrackSuggestion(title=title, artist=artist)


def parse_suggestions(text: str) -> list[TrackSuggestion]:
    suggestions: list[TrackSuggestion] = []
    seen: set[tuple[str, str]] = set()
    for line in text.splitlines():
        suggestion = parse_suggestion_line(line)
        if suggestion is None:
            continue
        key = (suggestion.title.lower(), suggestion.artist.lower())
        if key in seen:
            continue
        seen.add(key)
        suggestions.append(suggestion)
    return suggestions
