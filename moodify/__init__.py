"""Moodify core: questionnaire answers in, a mood-matched playlist out."""

from .errors import MoodifyError, PipelineCancelled, PipelineError
from .factories import MoodifyServices, build_services
from .models import Mood, PlaylistResult, QuestionnaireResponse
from .pipeline import PipelineStage, PlaylistOrchestrator
from .settings import MoodifySettings, get_settings

__version__ = "0.1.0"

__all__ = [
    "Mood",
    "MoodifyError",
    "MoodifyServices",
    "MoodifySettings",
    "PipelineCancelled",
    "PipelineError",
    "PipelineStage",
    "PlaylistOrchestrator",
    "PlaylistResult",
    "QuestionnaireResponse",
    "build_services",
    "get_settings",
]
