"""Mood to playlist pipeline.

One run walks the fixed stage chain
``classifying -> titling_mood -> creating_playlist -> resolving_tracks ->
adding_tracks -> persisting -> done``. Each stage's own error is re-raised as a
:class:`PipelineError` naming the stage, so callers see exactly one typed error
or a :class:`PlaylistResult`.

Runs are deduplicated per (session, responses) fingerprint and throttled per
session by a minimum start interval; runs inside the interval are deferred.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
import uuid
from collections import OrderedDict
from collections.abc import Callable, Sequence
from time import perf_counter

from ..auth.flow import AuthFlow
from ..errors import MoodifyError, PipelineCancelled, PipelineError
from ..http_utils import SleepFunc
from ..llm.mood_classifier import MoodClassifier
from ..llm.suggestions import TrackSuggester
from ..logging_config import run_id_var
from ..metrics import PIPELINE_RUNS, PIPELINE_STAGE_SECONDS
from ..models import PlaylistResult, QuestionnaireResponse
from ..persistence.gateway import PersistenceGateway
from ..spotify.playlists import MAX_TITLE_LENGTH, PlaylistBuilder, truncate
from ..spotify.tracks import MAX_PLAYLIST_TRACKS, TrackResolver, merge_track_ids
from .stages import ORPHANING_STAGES, PipelineRun, PipelineStage, StageCallback

logger = logging.getLogger(__name__)

DEFAULT_MIN_RUN_INTERVAL = 120.0
# Completed results remembered for duplicate submissions
COMPLETED_CACHE_SIZE = 128


def submission_fingerprint(session_id: str, responses: Sequence[QuestionnaireResponse]) -> str:
    payload = json.dumps(
        [session_id, [[r.question, r.answer] for r in responses]],
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class _Session:
    __slots__ = ("lock", "last_start", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.last_start: float | None = None
        # runs holding or waiting on the lock
        self.users = 0


class PlaylistOrchestrator:
    def __init__(
        self,
        auth: AuthFlow,
        classifier: MoodClassifier,
        suggester: TrackSuggester,
        resolver: TrackResolver,
        builder: PlaylistBuilder,
        gateway: PersistenceGateway,
        *,
        min_run_interval: float = DEFAULT_MIN_RUN_INTERVAL,
        include_liked_tracks: bool = False,
        liked_tracks_limit: int = 50,
        cleanup_orphaned_playlists: bool = True,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.auth = auth
        self.classifier = classifier
        self.suggester = suggester
        self.resolver = resolver
        self.builder = builder
        self.gateway = gateway
        self.min_run_interval = min_run_interval
        self.include_liked_tracks = include_liked_tracks
        self.liked_tracks_limit = liked_tracks_limit
        self.cleanup_orphaned_playlists = cleanup_orphaned_playlists
        self._clock = clock
        self._sleep = sleep

        self._sessions: dict[str, _Session] = {}
        self._inflight: dict[str, asyncio.Task[PlaylistResult]] = {}
        self._completed: OrderedDict[str, PlaylistResult] = OrderedDict()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        responses: Sequence[QuestionnaireResponse],
        *,
        session_id: str = "default",
        user_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
        on_stage: StageCallback | None = None,
    ) -> PlaylistResult:
        """Turn questionnaire ``responses`` into a filled playlist.

        Raises :class:`PipelineError` (or :class:`PipelineCancelled` when
        ``cancel_event`` is set) naming the stage that stopped the run.
        Submitting the same responses again for the same session returns the
        earlier result instead of building a second playlist. A duplicate sent
        while the first run is still going joins that run: its own
        ``cancel_event`` and ``on_stage`` are not used, and cancelling the run
        stays with the first caller.
        """
        key = submission_fingerprint(session_id, responses)

        cached = self._completed.get(key)
        if cached is not None:
            logger.info(
                "pipeline.duplicate_cached",
                extra={"meta": {"session": session_id, "playlist_id": cached.playlist_id}},
            )
            return cached

        task = self._inflight.get(key)
        if task is None:
            ctx = PipelineRun(
                run_id=uuid.uuid4().hex[:12],
                session_id=session_id,
                responses=tuple(responses),
                user_id=user_id,
                cancel_event=cancel_event,
                on_stage=on_stage,
            )
            task = asyncio.ensure_future(self._run_throttled(ctx))
            self._inflight[key] = task
            task.add_done_callback(lambda t: self._run_done(key, t))
        else:
            logger.info(
                "pipeline.duplicate_joined",
                extra={
                    "meta": {
                        "session": session_id,
                        "ignored_cancel_event": cancel_event is not None,
                        "ignored_on_stage": on_stage is not None,
                    }
                },
            )

        return await asyncio.shield(task)

    def _run_done(self, key: str, task: asyncio.Task[PlaylistResult]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled() or task.exception() is not None:
            return
        self._completed[key] = task.result()
        while len(self._completed) > COMPLETED_CACHE_SIZE:
            self._completed.popitem(last=False)

    async def _run_throttled(self, ctx: PipelineRun) -> PlaylistResult:
        self._prune_sessions()
        session = self._sessions.setdefault(ctx.session_id, _Session())
        session.users += 1
        try:
            async with session.lock:
                if session.last_start is not None:
                    wait = session.last_start + self.min_run_interval - self._clock()
                    if wait > 0:
                        logger.info(
                            "pipeline.deferred",
                            extra={"meta": {"session": ctx.session_id, "delay": round(wait, 3)}},
                        )
                        await self._sleep(wait)
                session.last_start = self._clock()
                return await self._execute(ctx)
        finally:
            session.users -= 1

    def _prune_sessions(self) -> None:
        """Forget idle sessions whose minimum interval has already passed."""
        now = self._clock()
        stale = [
            sid
            for sid, s in self._sessions.items()
            if s.users == 0
            and (s.last_start is None or now - s.last_start >= self.min_run_interval)
        ]
        for sid in stale:
            del self._sessions[sid]

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _advance(self, ctx: PipelineRun, stage: PipelineStage) -> None:
        if ctx.stage is not None:
            PIPELINE_STAGE_SECONDS.labels(ctx.stage.value).observe(
                perf_counter() - ctx.stage_started
            )
        ctx.stage = stage
        ctx.stage_started = perf_counter()
        if stage is not PipelineStage.DONE and ctx.cancelled:
            raise PipelineCancelled(stage, ctx.playlist_id)
        logger.debug("pipeline.stage", extra={"meta": {"stage": stage.value}})
        if ctx.on_stage is not None:
            ctx.on_stage(stage)

    async def _execute(self, ctx: PipelineRun) -> PlaylistResult:
        token = run_id_var.set(ctx.run_id)
        logger.info(
            "pipeline.start",
            extra={"meta": {"session": ctx.session_id, "responses": len(ctx.responses)}},
        )
        try:
            result = await self._stages(ctx)
        except PipelineCancelled as e:
            e.playlist_id = await self._cleanup(ctx)
            PIPELINE_RUNS.labels("cancelled", e.stage.value).inc()
            logger.info(
                "pipeline.cancelled",
                extra={"meta": {"stage": e.stage.value, "playlist_id": e.playlist_id}},
            )
            raise
        except MoodifyError as e:
            stage = ctx.stage or PipelineStage.CLASSIFYING
            leftover = await self._cleanup(ctx)
            PIPELINE_RUNS.labels("failed", stage.value).inc()
            logger.error(
                "pipeline.failed",
                extra={
                    "meta": {
                        "stage": stage.value,
                        "error": str(e),
                        "error_type": type(e).__name__,
                        "playlist_id": leftover,
                    }
                },
            )
            raise PipelineError(stage, e, leftover) from e
        finally:
            run_id_var.reset(token)

        PIPELINE_RUNS.labels("ok", PipelineStage.DONE.value).inc()
        logger.info(
            "pipeline.done",
            extra={
                "meta": {
                    "mood": result.mood.value if result.mood else None,
                    "playlist_id": result.playlist_id,
                    "tracks": result.track_count,
                }
            },
        )
        return result

    async def _stages(self, ctx: PipelineRun) -> PlaylistResult:
        self._advance(ctx, PipelineStage.CLASSIFYING)
        # No completion quota is spent for a user who cannot create playlists
        await self.auth.ensure_valid_token()
        ctx.mood = await self.classifier.classify(ctx.responses)

        self._advance(ctx, PipelineStage.TITLING_MOOD)
        ctx.title = await self.classifier.generate_title(ctx.mood)

        self._advance(ctx, PipelineStage.CREATING_PLAYLIST)
        ctx.owner_id = await self.builder.fetch_owner_id()
        # The stored title must match the name the provider keeps
        ctx.title = truncate(ctx.title, MAX_TITLE_LENGTH)
        ctx.playlist_id = await self.builder.create_playlist(
            ctx.owner_id, ctx.title, f"A {ctx.mood.value.lower()} mix made by Moodify"
        )

        self._advance(ctx, PipelineStage.RESOLVING_TRACKS)
        suggestions = await self.suggester.suggest(ctx.mood)
        resolved = await self.resolver.resolve_tracks(suggestions, ctx.cancel_event)
        track_ids = [t.id for t in resolved]
        if self.include_liked_tracks and not ctx.cancelled:
            liked = await self.resolver.fetch_liked_track_ids(self.liked_tracks_limit)
            track_ids = merge_track_ids(track_ids, liked, MAX_PLAYLIST_TRACKS)
        else:
            track_ids = merge_track_ids(track_ids, (), MAX_PLAYLIST_TRACKS)

        self._advance(ctx, PipelineStage.ADDING_TRACKS)
        await self.builder.add_tracks(ctx.playlist_id, track_ids)
        ctx.track_count = len(track_ids)

        self._advance(ctx, PipelineStage.PERSISTING)
        await self.gateway.insert_mood_selection(
            ctx.user_id or ctx.owner_id, ctx.mood.value, ctx.playlist_id, ctx.title
        )

        self._advance(ctx, PipelineStage.DONE)
        return PlaylistResult(
            playlist_id=ctx.playlist_id,
            title=ctx.title,
            track_count=ctx.track_count,
            mood=ctx.mood,
        )

    async def _cleanup(self, ctx: PipelineRun) -> str | None:
        """Delete an incomplete playlist if configured; return the id still left behind."""
        if ctx.playlist_id is None:
            return None
        if not self.cleanup_orphaned_playlists or ctx.stage not in ORPHANING_STAGES:
            return ctx.playlist_id
        try:
            await self.builder.delete_playlist(ctx.playlist_id)
        except MoodifyError as e:
            logger.warning(
                "pipeline.cleanup_failed",
                extra={"meta": {"playlist_id": ctx.playlist_id, "error": str(e)}},
            )
            return ctx.playlist_id
        return None


__all__ = ["PlaylistOrchestrator", "submission_fingerprint"]
