from __future__ import annotations

from pydantic import BaseModel, TypeAdapter

from ..models import MoodSelectionRecord, QuestionnaireResponse


class ResponseRow(BaseModel):
    question: str
    answer: str
    created_at: str | None = None

    def to_model(self) -> QuestionnaireResponse:
        return QuestionnaireResponse(question=self.question, answer=self.answer)


class MoodSelectionRow(BaseModel):
    user_id: str
    mood: str
    playlist_id: str
    title: str | None = None
    created_at: str | None = None
    id: int | None = None

    def to_model(self) -> MoodSelectionRecord:
        return MoodSelectionRecord(
            user_id=self.user_id,
            mood=self.mood,
            playlist_id=self.playlist_id,
            title=self.title or "",
            created_at=self.created_at,
            id=self.id,
        )


ResponseRows = TypeAdapter(list[ResponseRow])
MoodSelectionRows = TypeAdapter(list[MoodSelectionRow])
