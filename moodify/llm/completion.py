from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from ..errors import DecodingFailed
from ..http_utils import RateLimitedRequester
from ..settings import MoodifySettings
from .schemas import ChatCompletionRequest, ChatCompletionResponse, ChatMessage

logger = logging.getLogger(__name__)


class CompletionClient:
    """Chat-completions endpoint client; returns the first choice's text."""

    def __init__(self, settings: MoodifySettings, requester: RateLimitedRequester) -> None:
        if not settings.openai_api_key:
            raise ValueError("MOODIFY_OPENAI_API_KEY is required")
        self._api_key = settings.openai_api_key
        self.endpoint = settings.openai_base_url.rstrip("/") + "/chat/completions"
        self.model = settings.openai_model
        self.requester = requester

    async def complete(
        self,
        system: str,
        user: str,
        *,
        max_tokens: int,
        temperature: float,
    ) -> str:
        body = ChatCompletionRequest(
            model=self.model,
            messages=[
                ChatMessage(role="system", content=system),
                ChatMessage(role="user", content=user),
            ],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        request = httpx.Request(
            "POST",
            self.endpoint,
            json=body.model_dump(),
            headers={"Authorization": f"Bearer {self._api_key}"},
        )
        response = await self.requester.send(request)

        try:
            decoded = ChatCompletionResponse.model_validate_json(response.content)
        except ValidationError as e:
            logger.warning(
                "completion.decode_failed",
                extra={"meta": {"model": self.model, "errors": e.error_count()}},
            )
            raise DecodingFailed("completion response did not match the expected schema") from e

        text = decoded.choices[0].message.content
        logger.debug(
            "completion.ok",
            extra={"meta": {"model": self.model, "chars": len(text)}},
        )
        return text
