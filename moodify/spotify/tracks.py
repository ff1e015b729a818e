from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..errors import AuthError, NoMatches, RequestError
from ..models import TrackSuggestion
from .client import ProviderClient

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10
# Provider limit on URIs per add-tracks request
MAX_PLAYLIST_TRACKS = 100


@dataclass(frozen=True)
class ResolvedTrack:
    id: str
    name: str
    artist: str
    suggestion: TrackSuggestion


def merge_track_ids(
    recommended: Iterable[str], liked: Iterable[str], cap: int = MAX_PLAYLIST_TRACKS
) -> list[str]:
    """Union of both id lists, recommended first, without duplicates, at most ``cap``."""
    merged: dict[str, None] = {}
    for track_id in recommended:
        merged.setdefault(track_id, None)
    for track_id in liked:
        if len(merged) >= cap:
            break
        merged.setdefault(track_id, None)
    return list(merged)[:cap]


class TrackResolver:
    """Resolves suggestions to provider track ids with a bounded search fan-out."""

    def __init__(self, client: ProviderClient, *, max_concurrency: int = DEFAULT_CONCURRENCY):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.client = client
        self.max_concurrency = max_concurrency
        # Searches abandoned by a cancelled run, kept referenced until they finish
        self._abandoned: set[asyncio.Future] = set()

    async def _search(
        self,
        suggestion: TrackSuggestion,
        sem: asyncio.Semaphore,
        found: dict[str, ResolvedTrack],
        cancel_event: asyncio.Event | None,
    ) -> ResolvedTrack | None:
        async with sem:
            if cancel_event is not None and cancel_event.is_set():
                return None
            track = await self.client.search_track(suggestion.search_query())
        if track is None or not track.id:
            logger.info(
                "resolver.no_match",
                extra={"meta": {"title": suggestion.title, "artist": suggestion.artist}},
            )
            return None
        resolved = ResolvedTrack(
            id=track.id, name=track.name, artist=track.artist_names, suggestion=suggestion
        )
        found.setdefault(resolved.id, resolved)
        return resolved

    async def resolve_tracks(
        self,
        suggestions: Sequence[TrackSuggestion],
        cancel_event: asyncio.Event | None = None,
    ) -> list[ResolvedTrack]:
        """Search every suggestion and return the distinct matches in suggestion order.

        A failed or empty search is logged and skipped; only when nothing at all
        resolves is :class:`NoMatches` raised. Auth errors abort immediately.

        If ``cancel_event`` fires first, the matches gathered so far are
        returned without waiting for searches still in flight.
        """
        if not suggestions:
            raise NoMatches(0)

        sem = asyncio.Semaphore(self.max_concurrency)
        found: dict[str, ResolvedTrack] = {}
        gathered = asyncio.gather(
            *(self._search(s, sem, found, cancel_event) for s in suggestions),
            return_exceptions=True,
        )

        if cancel_event is not None:
            waiter = asyncio.ensure_future(cancel_event.wait())
            done, _ = await asyncio.wait(
                {gathered, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
            if cancel_event.is_set():
                if gathered not in done:
                    self._abandoned.add(gathered)
                    gathered.add_done_callback(self._discard)
                else:
                    waiter.cancel()
                logger.info(
                    "resolver.cancelled",
                    extra={"meta": {"requested": len(suggestions), "matched": len(found)}},
                )
                return list(found.values())
            waiter.cancel()

        results = await gathered

        tracks: dict[str, ResolvedTrack] = {}
        failures = 0
        for suggestion, result in zip(suggestions, results):
            if isinstance(result, AuthError):
                raise result
            if isinstance(result, RequestError):
                failures += 1
                logger.warning(
                    "resolver.search_failed",
                    extra={
                        "meta": {
                            "title": suggestion.title,
                            "artist": suggestion.artist,
                            "error": str(result),
                        }
                    },
                )
                continue
            if isinstance(result, BaseException):
                raise result
            if result is not None:
                tracks.setdefault(result.id, result)

        logger.info(
            "resolver.done",
            extra={
                "meta": {
                    "requested": len(suggestions),
                    "matched": len(tracks),
                    "failed": failures,
                }
            },
        )
        if not tracks:
            raise NoMatches(len(suggestions))
        return list(tracks.values())

    def _discard(self, fut: asyncio.Future) -> None:
        self._abandoned.discard(fut)
        if not fut.cancelled():
            fut.exception()

    async def fetch_liked_track_ids(self, limit: int = 50) -> list[str]:
        """Liked-song ids, or ``[]`` when the provider call fails."""
        try:
            return await self.client.get_saved_track_ids(limit)
        except RequestError as e:
            logger.warning("resolver.liked_tracks_failed", extra={"meta": {"error": str(e)}})
            return []


__all__ = ["TrackResolver", "ResolvedTrack", "merge_track_ids", "MAX_PLAYLIST_TRACKS"]
