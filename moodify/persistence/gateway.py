"""Storage of questionnaire answers and mood selections.

``SupabaseGateway`` talks to the PostgREST API that fronts the ``responses``
and ``moodSelections`` tables. ``InMemoryGateway`` keeps the same rows in
process and backs tests and offline use.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError

from ..errors import ReadFailed, RequestError, WriteFailed
from ..http_utils import RateLimitedRequester
from ..models import MoodSelectionRecord, QuestionnaireResponse
from .schemas import MoodSelectionRows, ResponseRows

logger = logging.getLogger(__name__)

RESPONSES_TABLE = "responses"
MOOD_SELECTIONS_TABLE = "moodSelections"


@runtime_checkable
class PersistenceGateway(Protocol):
    async def insert_mood_selection(
        self, user_id: str, mood: str, playlist_id: str, title: str
    ) -> None: ...

    async def fetch_latest_responses(self, limit: int = 1) -> list[QuestionnaireResponse]: ...

    async def submit_responses(self, responses: Sequence[QuestionnaireResponse]) -> None: ...

    async def fetch_mood_selections(self, user_id: str) -> list[MoodSelectionRecord]: ...


class SupabaseGateway:
    def __init__(self, base_url: str, api_key: str, requester: RateLimitedRequester) -> None:
        if not base_url or not api_key:
            raise ValueError("MOODIFY_SUPABASE_URL and MOODIFY_SUPABASE_KEY are required")
        self.rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self.api_key = api_key
        self.requester = requester

    def _headers(self, *, write: bool = False) -> dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }
        if write:
            headers["Prefer"] = "return=minimal"
        return headers

    async def _insert(self, table: str, rows: list[dict[str, Any]]) -> None:
        request = httpx.Request(
            "POST",
            f"{self.rest_url}/{table}",
            json=rows,
            headers=self._headers(write=True),
        )
        try:
            await self.requester.send(request)
        except RequestError as e:
            logger.error(
                "persistence.insert_failed",
                extra={"meta": {"table": table, "rows": len(rows), "error": str(e)}},
            )
            raise WriteFailed(f"insert into {table} failed: {e}") from e

    async def _select(self, table: str, params: dict[str, Any]) -> bytes:
        request = httpx.Request(
            "GET", f"{self.rest_url}/{table}", params=params, headers=self._headers()
        )
        try:
            response = await self.requester.send(request)
        except RequestError as e:
            logger.error(
                "persistence.select_failed",
                extra={"meta": {"table": table, "error": str(e)}},
            )
            raise ReadFailed(f"select from {table} failed: {e}") from e
        return response.content

    async def insert_mood_selection(
        self, user_id: str, mood: str, playlist_id: str, title: str
    ) -> None:
        await self._insert(
            MOOD_SELECTIONS_TABLE,
            [{"user_id": user_id, "mood": mood, "playlist_id": playlist_id, "title": title}],
        )
        logger.info(
            "persistence.mood_selection_stored",
            extra={"meta": {"mood": mood, "playlist_id": playlist_id}},
        )

    async def submit_responses(self, responses: Sequence[QuestionnaireResponse]) -> None:
        if not responses:
            return
        await self._insert(
            RESPONSES_TABLE,
            [{"question": r.question, "answer": r.answer} for r in responses],
        )

    async def fetch_latest_responses(self, limit: int = 1) -> list[QuestionnaireResponse]:
        body = await self._select(
            RESPONSES_TABLE,
            {"select": "*", "order": "created_at.desc", "limit": limit},
        )
        try:
            rows = ResponseRows.validate_json(body)
        except ValidationError as e:
            raise ReadFailed(f"unexpected {RESPONSES_TABLE} rows") from e
        return [row.to_model() for row in rows]

    async def fetch_mood_selections(self, user_id: str) -> list[MoodSelectionRecord]:
        body = await self._select(
            MOOD_SELECTIONS_TABLE,
            {"select": "*", "user_id": f"eq.{user_id}", "order": "created_at.desc"},
        )
        try:
            rows = MoodSelectionRows.validate_json(body)
        except ValidationError as e:
            raise ReadFailed(f"unexpected {MOOD_SELECTIONS_TABLE} rows") from e
        return [row.to_model() for row in rows]


class InMemoryGateway:
    """Process-local gateway; rows are kept newest-last."""

    def __init__(self) -> None:
        self.responses: list[tuple[str, QuestionnaireResponse]] = []
        self.mood_selections: list[MoodSelectionRecord] = []
        self._lock = asyncio.Lock()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    async def insert_mood_selection(
        self, user_id: str, mood: str, playlist_id: str, title: str
    ) -> None:
        async with self._lock:
            self.mood_selections.append(
                MoodSelectionRecord(
                    user_id=user_id,
                    mood=mood,
                    playlist_id=playlist_id,
                    title=title,
                    created_at=self._now(),
                    id=len(self.mood_selections) + 1,
                )
            )

    async def submit_responses(self, responses: Sequence[QuestionnaireResponse]) -> None:
        async with self._lock:
            stamp = self._now()
            self.responses.extend((stamp, r) for r in responses)

    async def fetch_latest_responses(self, limit: int = 1) -> list[QuestionnaireResponse]:
        async with self._lock:
            return [r for _, r in reversed(self.responses)][:limit]

    async def fetch_mood_selections(self, user_id: str) -> list[MoodSelectionRecord]:
        async with self._lock:
            return [m for m in reversed(self.mood_selections) if m.user_id == user_id]


__all__ = ["PersistenceGateway", "SupabaseGateway", "InMemoryGateway"]
