from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CSV_HEADERS = ["File Name", "Summary", "Topics", "Processed At"]
TOPIC_SEPARATOR = ", "


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Provider(str, Enum):
    """Enum for the supported model providers."""

    OPENAI = "openai"
    GEMINI = "gemini"
    OLLAMA = "ollama"


class ReasoningEffort(str, Enum):
    """Enum for the reasoning effort hint forwarded to reasoning models."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ProcessingProgress(BaseModel):
    """Persisted record of which files already reached a terminal result."""

    model_config = ConfigDict(populate_by_name=True)

    completed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    total_files: int = Field(default=0, ge=0, alias="totalFiles")
    start_time: datetime = Field(default_factory=utc_now, alias="startTime")
    last_update: datetime = Field(default_factory=utc_now, alias="lastUpdate")

    @field_validator("completed", "failed", mode="after")
    @classmethod
    def _deduplicate(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    @model_validator(mode="after")
    def _keep_sets_disjoint(self) -> ProcessingProgress:
        # A file that eventually succeeded is no longer a failure.
        completed = set(self.completed)
        self.failed = [name for name in self.failed if name not in completed]
        return self

    def is_terminal(self, filename: str) -> bool:
        return filename in self.completed or filename in self.failed

    def mark_completed(self, filename: str) -> None:
        if filename in self.failed:
            self.failed.remove(filename)
        if filename not in self.completed:
            self.completed.append(filename)

    def mark_failed(self, filename: str) -> None:
        if filename in self.completed:
            raise ValueError(f"{filename} is already recorded as completed")
        if filename not in self.failed:
            self.failed.append(filename)

    def touch(self) -> None:
        self.last_update = utc_now()

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


@dataclass(frozen=True)
class WorkItem:
    """A single document queued for extraction."""

    filename: str
    path: Path

    @classmethod
    def from_folder(cls, folder: Path, filename: str) -> WorkItem:
        return cls(filename=filename, path=Path(folder) / filename)


@dataclass(frozen=True)
class TaskAttemptResult:
    """Terminal outcome of running one work item through the provider."""

    filename: str
    success: bool
    attempts: int
    data: dict[str, Any] | None = None
    error: str | None = None
    cancelled: bool = False


class ExtractionPayload(BaseModel):
    """Structured output every provider must return."""

    summary: str
    topics: list[str] = Field(default_factory=list)


class ExtractionRecord(BaseModel):
    """One row of the streamed output table."""

    file_name: str
    summary: str
    topics: list[str] = Field(default_factory=list)
    processed_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_result(cls, result: TaskAttemptResult) -> ExtractionRecord:
        payload = ExtractionPayload.model_validate(result.data or {})
        return cls(
            file_name=result.filename,
            summary=payload.summary,
            topics=payload.topics,
        )

    def to_row(self) -> list[str]:
        return [
            self.file_name,
            self.summary,
            TOPIC_SEPARATOR.join(self.topics),
            self.processed_at.isoformat(),
        ]


class ProviderRequest(BaseModel):
    """Request contract handed to a model provider."""

    files: list[Path]
    model: str
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    reasoning_effort: ReasoningEffort | None = None


class ProviderResponse(BaseModel):
    """Response contract returned by a model provider. Never raised as an error."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> ProviderResponse:
        return cls(success=False, error=error)


@dataclass
class RunSummary:
    """Totals reported at the end of a run."""

    succeeded: int = 0
    failed: int = 0
    elapsed_seconds: float = 0.0
    discovered: int = 0
    skipped: int = 0
    failed_files: list[str] = field(default_factory=list)
    output_path: Path | None = None
    progress_cleared: bool = False
    cancelled: bool = False
