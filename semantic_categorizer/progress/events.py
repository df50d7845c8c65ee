"""
Pydantic schemas for the records emitted while a job runs.

Every record is self-contained and carries a ``type`` discriminator so a
consumer reading a mixed stream can dispatch on it.
"""

from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..models import AssignmentResult


class ProgressEvent(BaseModel):
    """Schema for progress updates of a running stage."""

    type: Literal["progress"] = "progress"
    stage: str = Field(description="Stage the update belongs to", min_length=1)
    total: int = Field(description="Units of work in the stage", ge=0)
    percent: int = Field(description="Completion percentage", ge=0, le=100)
    fetched: Optional[int] = Field(
        default=None, description="Unique texts fetched from the provider", ge=0
    )
    processed: Optional[int] = Field(
        default=None, description="Target items fully matched", ge=0
    )
    epoch: Optional[int] = Field(
        default=None, description="Completed training epochs", ge=0
    )


class InfoEvent(BaseModel):
    """Schema for informational milestones."""

    type: Literal["info"] = "info"
    message: str = Field(description="Human-readable message")
    stage: Optional[str] = Field(default=None, description="Related stage")
    data: Optional[Dict[str, Any]] = Field(
        default=None, description="Structured details"
    )


class ErrorEvent(BaseModel):
    """Schema for the single failure record of a job."""

    type: Literal["error"] = "error"
    message: str = Field(description="Error message")
    code: str = Field(description="Machine-checkable error code")
    stage: Optional[str] = Field(default=None, description="Stage that failed")


class CompleteEvent(BaseModel):
    """Schema for the final record of a successful job."""

    type: Literal["complete"] = "complete"
    stage: Optional[str] = Field(default=None, description="Completed job or stage")
    summary: Dict[str, Any] = Field(
        default_factory=dict, description="Counters describing the run"
    )


class ResultEvent(BaseModel):
    """Schema for one assignment on the result channel."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["result"] = "result"
    id: int = Field(description="Target item id")
    best_category_id: Optional[int] = Field(default=None, alias="bestCategoryId")
    best_category_name: Optional[str] = Field(default=None, alias="bestCategoryName")
    similarity: Optional[float] = Field(
        default=None, description="Cosine similarity or class probability"
    )
    embedding_source: str = Field(default="unknown", alias="embeddingSource")

    @classmethod
    def from_assignment(cls, result: AssignmentResult) -> "ResultEvent":
        return cls(
            id=result.item_id,
            best_category_id=result.best_category_id,
            best_category_name=result.best_category_name,
            similarity=result.similarity_score,
            embedding_source=result.embedding_source.value,
        )


JobEvent = Union[ProgressEvent, InfoEvent, ErrorEvent, CompleteEvent]


def event_to_record(event: BaseModel) -> Dict[str, Any]:
    """Wire representation of an event."""
    if isinstance(event, ResultEvent):
        # Results keep explicit nulls so every record has the same keys
        return event.model_dump(by_alias=True)
    return event.model_dump(exclude_none=True)
