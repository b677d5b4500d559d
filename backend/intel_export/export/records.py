from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


Priority = Literal["critical", "high", "medium", "low"]
WarningSeverity = Literal["error", "warning"]
BatchWarningType = Literal["empty", "collision", "truncated", "validation", "skipped"]

PRIORITIES: tuple[str, ...] = ("critical", "high", "medium", "low")


class IntelLocation(BaseModel):
    lat: float
    lon: float
    name: str | None = None


class IntelExportRecord(BaseModel):
    """Canonical exportable unit written out as one `.intel` document."""

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    created: str
    updated: str | None = None
    classification: str = "UNCLASS"
    priority: Priority = "medium"
    sources: list[str] = Field(default_factory=list)
    tags: list[str] | None = None
    location: IntelLocation | None = None
    summary: str | None = None
    body: str = ""
    confidence: float | int | str | None = None


class ValidationWarning(BaseModel):
    field: str
    message: str
    severity: WarningSeverity = "warning"


class BatchWarning(BaseModel):
    type: BatchWarningType
    message: str
    record_id: str | None = None
    file_name: str | None = None


class IntelRecordError(ValueError):
    """Raised when a feed cannot be mapped to even a fallback record."""
