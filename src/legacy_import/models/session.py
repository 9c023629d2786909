"""Import session model.

A session scopes one legacy import: its documents, clusters and re-cluster job.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field

from legacy_import.models.base import CamelModel


class PipelineStatus(StrEnum):
    """Coarse pipeline state shown on the import dashboard."""

    IMPORTING = "Importing"
    READY_FOR_VALIDATION = "ReadyForValidation"
    RECLUSTERING = "ReClustering"
    FAILED = "Failed"


class PipelineProgress(CamelModel):
    """Progress snapshot of the current pipeline stage."""

    stage: str
    current: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    message: str | None = None
    updated_at: datetime | None = None


class ImportSession(CamelModel):
    """A tenant-owned legacy import session."""

    id: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1)
    name: str = Field(default="")
    pipeline_status: PipelineStatus = Field(default=PipelineStatus.IMPORTING)
    pipeline_error: str | None = None
    pipeline_progress: PipelineProgress | None = None
    pipeline_completed_at: datetime | None = None
    last_clustered_at: datetime | None = None
    created_at: datetime | None = None
