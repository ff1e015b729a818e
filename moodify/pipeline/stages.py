from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from time import perf_counter

from ..models import Mood, QuestionnaireResponse


class PipelineStage(str, Enum):
    """Stages of one playlist run, in execution order."""

    CLASSIFYING = "classifying"
    TITLING_MOOD = "titling_mood"
    CREATING_PLAYLIST = "creating_playlist"
    RESOLVING_TRACKS = "resolving_tracks"
    ADDING_TRACKS = "adding_tracks"
    PERSISTING = "persisting"
    DONE = "done"


# Stages in which a created playlist is still incomplete
ORPHANING_STAGES = frozenset({PipelineStage.RESOLVING_TRACKS, PipelineStage.ADDING_TRACKS})

StageCallback = Callable[[PipelineStage], None]


@dataclass
class PipelineRun:
    """Mutable bookkeeping for a single orchestrator run."""

    run_id: str
    session_id: str
    responses: tuple[QuestionnaireResponse, ...]
    user_id: str | None = None
    cancel_event: asyncio.Event | None = None
    on_stage: StageCallback | None = None

    stage: PipelineStage | None = None
    stage_started: float = field(default_factory=perf_counter)
    mood: Mood | None = None
    title: str | None = None
    owner_id: str | None = None
    playlist_id: str | None = None
    track_count: int = 0

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()
