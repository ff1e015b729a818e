"""Completion-endpoint clients: mood classification, titles and song suggestions."""

from .completion import CompletionClient
from .mood_classifier import MoodClassifier
from .suggestions import TrackSuggester

__all__ = ["CompletionClient", "MoodClassifier", "TrackSuggester"]
