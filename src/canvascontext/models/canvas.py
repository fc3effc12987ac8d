from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class CanvasModel(BaseModel):
    """Base for objects decoded from Canvas REST responses.

    Canvas returns many more fields than we use; unknown keys are dropped at
    the boundary so nothing untyped travels further into the pipeline.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Course(CanvasModel):
    id: int
    name: str = ""
    course_code: str = ""
    nickname: str | None = None
    workflow_state: str | None = None
    syllabus_body: str | None = None


class CanvasFile(CanvasModel):
    id: int
    display_name: str = ""
    filename: str = ""
    content_type: str | None = Field(default=None, alias="content-type")
    size: int | None = None
    url: str | None = None  # Signed download URL
    updated_at: str | None = None
    modified_at: str | None = None

    @property
    def name(self) -> str:
        return self.display_name or self.filename or f"File {self.id}"


class CanvasPage(CanvasModel):
    url: str = ""  # Page slug
    title: str = ""
    body: str | None = None
    updated_at: str | None = None


class CanvasTab(CanvasModel):
    id: str
    label: str = ""
    html_url: str = ""
    type: str | None = None
    visibility: str | None = None
    hidden: bool | None = None


class Assignment(CanvasModel):
    id: int
    name: str = ""
    description: str | None = None
    due_at: str | None = None
    html_url: str | None = None


# ---------------------------------------------------------------------------
# Lookup variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Found(Generic[T]):
    value: T


@dataclass(frozen=True)
class NotFound:
    url: str


@dataclass(frozen=True)
class Restricted:
    url: str
    status_code: int
    message: str


# ---------------------------------------------------------------------------
# Parsed Canvas URLs
# ---------------------------------------------------------------------------

UrlKind = Literal["file", "page", "assignment", "discussion", "module", "course", "unknown"]


class CanvasUrlInfo(BaseModel):
    """Typed view of a Canvas web URL."""

    kind: UrlKind = "unknown"
    course_id: str | None = None
    resource_id: str | None = None
    resource_name: str | None = None
    base_url: str = ""
    query_params: dict[str, str] = {}
    module_item_id: str | None = None
    is_valid: bool = False
