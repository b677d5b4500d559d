from typing import Any

from pydantic import BaseModel, Field

from intel_export.config import settings


class FeedExportRequest(BaseModel):
    feed: Any


class BatchExportRequest(BaseModel):
    feeds: list[Any] = Field(default_factory=list)
    limit: int | None = Field(default=None, ge=0, le=settings.export_max_limit)


class ProvenanceHashRequest(BaseModel):
    bundle: Any
