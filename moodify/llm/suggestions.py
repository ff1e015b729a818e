from __future__ import annotations

import logging

from ..errors import DecodingFailed
from ..models import Mood, TrackSuggestion
from .completion import CompletionClient
from .prompts import SUGGESTION_SYSTEM, build_suggestion_prompt, parse_suggestions

logger = logging.getLogger(__name__)


class TrackSuggester:
    """Asks the completion endpoint for songs that fit a mood."""

    def __init__(
        self, completion: CompletionClient, *, count: int = 10, temperature: float = 0.7
    ) -> None:
        self.completion = completion
        self.count = count
        self.temperature = temperature

    async def suggest(self, mood: Mood) -> list[TrackSuggestion]:
        text = await self.completion.complete(
            SUGGESTION_SYSTEM,
            build_suggestion_prompt(mood, self.count),
            max_tokens=40 * self.count,
            temperature=self.temperature,
        )
        suggestions = parse_suggestions(text)
        if not suggestions:
            raise DecodingFailed("no 'Title by Artist' lines in suggestion reply")
        logger.info(
            "suggester.parsed",
            extra={"meta": {"mood": mood.value, "suggestions": len(suggestions)}},
        )
        return suggestions[: self.count]
