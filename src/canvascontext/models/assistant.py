from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class IntentClassification(BaseModel):
    files: bool = False
    pages: bool = False
    assignments: bool = False
    discussions: bool = False
    grades: bool = False
    calendar: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""

    def active_categories(self) -> list[str]:
        flags = ("files", "pages", "assignments", "discussions", "grades", "calendar")
        return [name for name in flags if getattr(self, name)]


class RerankCandidate(BaseModel):
    id: str
    title: str
    source: str = ""
    snippet: str | None = None
    type: Literal["file", "page", "link", "assignment"]


class RerankResult(BaseModel):
    # The model replies with "id"; we expose it as candidate_id.
    model_config = ConfigDict(populate_by_name=True)

    candidate_id: str = Field(alias="id")
    score: float
    reasoning: str = ""
