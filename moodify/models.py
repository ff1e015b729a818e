from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


class Mood(str, Enum):
    """Closed set of moods the classifier may return."""

    HAPPY = "Happy"
    SAD = "Sad"
    RELAXED = "Relaxed"
    ENERGETIC = "Energetic"
    SLEEPY = "Sleepy"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class AuthToken:
    """Provider OAuth token. Access token and expiry are always written together."""

    access_token: str
    expires_at: float  # epoch seconds
    refresh_token: str | None = None
    scope: str | None = None

    def is_valid(self, now: float | None = None, margin: float = 300.0) -> bool:
        if not self.access_token:
            return False
        current = time.time() if now is None else now
        return self.expires_at - margin > current

    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def seconds_until_expiry(self, now: float | None = None) -> int:
        current = time.time() if now is None else now
        return int(self.expires_at - current)


@dataclass(frozen=True)
class QuestionnaireResponse:
    question: str
    answer: str


@dataclass(frozen=True)
class TrackSuggestion:
    title: str
    artist: str

    def search_query(self) -> str:
        return f"track:{self.title} artist:{self.artist}"


@dataclass(frozen=True)
class PlaylistResult:
    playlist_id: str
    title: str
    track_count: int
    mood: Mood | None = None


@dataclass(frozen=True)
class MoodSelectionRecord:
    user_id: str
    mood: str
    playlist_id: str
    title: str
    created_at: str | None = None
    id: int | None = None


@dataclass
class PendingAuthorization:
    """PKCE verifier remembered between ``authorize()`` and the redirect."""

    state: str
    verifier: str
    created_at: float = field(default_factory=time.time)

    def is_expired(self, now: float | None = None, max_age: float = 600.0) -> bool:
        current = time.time() if now is None else now
        return current - self.created_at >= max_age


__all__ = [
    "Mood",
    "AuthToken",
    "QuestionnaireResponse",
    "TrackSuggestion",
    "PlaylistResult",
    "MoodSelectionRecord",
    "PendingAuthorization",
]
