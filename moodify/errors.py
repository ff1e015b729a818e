"""Typed error taxonomy shared by every stage of the playlist pipeline.

Each family maps to one component: auth, raw HTTP, completion parsing, track
resolution, playlist building and persistence. ``PipelineError`` is the single
error surfaced by ``PlaylistOrchestrator.run`` and names the failing stage.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - only for type checkers
    from .pipeline.stages import PipelineStage


class MoodifyError(Exception):
    """Base class for all library errors."""


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class AuthError(MoodifyError):
    pass


class MissingCode(AuthError):
    def __init__(self, message: str = "redirect URL carries no authorization code") -> None:
        super().__init__(message)


class NoRefreshToken(AuthError):
    def __init__(self, message: str = "no refresh token available; authorize again") -> None:
        super().__init__(message)


class ExchangeFailed(AuthError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"token exchange failed: {reason}")
        self.reason = reason


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


class RequestError(MoodifyError):
    pass


class RateLimited(RequestError):
    def __init__(self, retries: int) -> None:
        super().__init__(f"rate limited after {retries} retries")
        self.retries = retries


class RequestFailed(RequestError):
    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"request failed with HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class TransportFailure(RequestError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"transport failure: {reason}")
        self.reason = reason


class MalformedResponse(RequestError):
    """A 2xx reply whose body does not match the endpoint schema."""


# ---------------------------------------------------------------------------
# Completion / classification
# ---------------------------------------------------------------------------


class ClassificationError(MoodifyError):
    pass


class NoMoodDetected(ClassificationError):
    def __init__(self, message: str = "no known mood found in completion") -> None:
        super().__init__(message)


class DecodingFailed(ClassificationError):
    pass


# ---------------------------------------------------------------------------
# Track resolution
# ---------------------------------------------------------------------------


class ResolveError(MoodifyError):
    pass


class NoMatches(ResolveError):
    def __init__(self, attempted: int) -> None:
        super().__init__(f"none of {attempted} track searches produced a match")
        self.attempted = attempted


# ---------------------------------------------------------------------------
# Playlist building
# ---------------------------------------------------------------------------


class BuildError(MoodifyError):
    pass


class ProfileFailed(BuildError):
    pass


class CreateFailed(BuildError):
    pass


class TrackAdditionFailed(BuildError):
    pass


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class PersistenceError(MoodifyError):
    pass


class WriteFailed(PersistenceError):
    pass


class ReadFailed(PersistenceError):
    pass


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class PipelineError(MoodifyError):
    """A pipeline run failed in ``stage``; ``cause`` is the stage's own error.

    ``playlist_id`` names a playlist that was created on the provider and left
    behind (empty, partial, or complete but unrecorded), or ``None``.
    """

    def __init__(
        self,
        stage: PipelineStage,
        cause: BaseException | None,
        playlist_id: str | None = None,
        message: str | None = None,
    ) -> None:
        if message is None:
            detail = f": {cause}" if cause is not None else ""
            message = f"pipeline failed at {stage.value}{detail}"
        super().__init__(message)
        self.stage = stage
        self.cause = cause
        self.playlist_id = playlist_id


class PipelineCancelled(PipelineError):
    def __init__(self, stage: PipelineStage, playlist_id: str | None = None) -> None:
        super().__init__(
            stage, None, playlist_id, message=f"pipeline cancelled at {stage.value}"
        )


__all__ = [
    "MoodifyError",
    "AuthError",
    "MissingCode",
    "NoRefreshToken",
    "ExchangeFailed",
    "RequestError",
    "RateLimited",
    "RequestFailed",
    "TransportFailure",
    "MalformedResponse",
    "ClassificationError",
    "NoMoodDetected",
    "DecodingFailed",
    "ResolveError",
    "NoMatches",
    "BuildError",
    "ProfileFailed",
    "CreateFailed",
    "TrackAdditionFailed",
    "PersistenceError",
    "WriteFailed",
    "ReadFailed",
    "PipelineError",
    "PipelineCancelled",
]
