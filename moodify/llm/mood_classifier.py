from __future__ import annotations

import logging
from collections.abc import Sequence

from ..errors import DecodingFailed, NoMoodDetected
from ..models import Mood, QuestionnaireResponse
from .completion import CompletionClient
from .prompts import (
    MOOD_SYSTEM,
    TITLE_SYSTEM,
    build_mood_prompt,
    build_title_prompt,
    parse_mood,
    parse_title,
)

logger = logging.getLogger(__name__)


class MoodClassifier:
    """Turns questionnaire answers into a :class:`Mood` and a display title."""

    def __init__(
        self,
        completion: CompletionClient,
        *,
        temperature: float = 0.0,
        title_temperature: float = 0.7,
    ) -> None:
        self.completion = completion
        self.temperature = temperature
        self.title_temperature = title_temperature

    async def classify(self, responses: Sequence[QuestionnaireResponse]) -> Mood:
        if not responses:
            raise NoMoodDetected("no questionnaire responses to classify")

        prompt = build_mood_prompt(responses)
        text = await self.completion.complete(
            MOOD_SYSTEM, prompt, max_tokens=50, temperature=self.temperature
        )
        mood = parse_mood(text)
        if mood is None:
            logger.warning(
                "classifier.no_mood",
                extra={"meta": {"responses": len(responses), "reply": text[:200]}},
            )
            raise NoMoodDetected()

        logger.info(
            "classifier.mood_detected",
            extra={"meta": {"mood": mood.value, "responses": len(responses)}},
        )
        return mood

    async def generate_title(self, mood: Mood) -> str:
        text = await self.completion.complete(
            TITLE_SYSTEM,
            build_title_prompt(mood),
            max_tokens=20,
            temperature=self.title_temperature,
        )
        title = parse_title(text)
        if title is None:
            raise DecodingFailed("title reply was empty")
        logger.info("classifier.title", extra={"meta": {"mood": mood.value, "title": title}})
        return title
