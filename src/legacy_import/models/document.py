"""Document model for triaged legacy import documents.

A document is created at ingestion with a triage classification assigned by an
external classifier. Its validation status is independent of the triage status
and only changes through explicit reviewer action or re-clustering.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator, model_validator

from legacy_import.models.base import CamelModel


class TriageStatus(StrEnum):
    """Classification assigned by the triage classifier."""

    FIRM_DRAFTED = "FirmDrafted"
    THIRD_PARTY = "ThirdParty"
    IRRELEVANT = "Irrelevant"
    COURT_DOC = "CourtDoc"
    UNCERTAIN = "Uncertain"


class ValidationStatus(StrEnum):
    """Reviewer decision on a document."""

    PENDING = "Pending"
    ACCEPTED = "Accepted"
    DELETED = "Deleted"
    RECLASSIFIED = "Reclassified"


class DocumentAction(StrEnum):
    """Reviewer actions on a single document."""

    ACCEPT = "accept"
    DELETE = "delete"
    RECLASSIFY = "reclassify"


class BulkDocumentAction(StrEnum):
    """Reviewer actions allowed on a selection of documents."""

    ACCEPT = "accept"
    DELETE = "delete"


ACTION_TO_VALIDATION_STATUS: dict[str, ValidationStatus] = {
    DocumentAction.ACCEPT: ValidationStatus.ACCEPTED,
    DocumentAction.DELETE: ValidationStatus.DELETED,
    DocumentAction.RECLASSIFY: ValidationStatus.RECLASSIFIED,
}


class Document(CamelModel):
    """A triaged document awaiting or carrying a reviewer decision."""

    id: str = Field(..., description="Document identifier")
    session_id: str = Field(..., description="Import session the document belongs to")
    file_name: str = Field(..., description="Original file name")
    file_extension: str = Field(default="", description="File extension without dot")
    text_preview: str | None = Field(default=None, description="Leading extracted text")
    email_subject: str | None = Field(default=None)
    email_sender: str | None = Field(default=None)
    email_date: datetime | None = Field(default=None)
    has_file: bool = Field(default=True, description="Whether the original binary is stored")
    triage_status: TriageStatus | None = Field(default=None)
    triage_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    triage_reason: str | None = Field(default=None)
    suggested_doc_type: str | None = Field(default=None)
    validation_status: ValidationStatus = Field(default=ValidationStatus.PENDING)
    reclassification_note: str | None = Field(default=None)
    validated_by: str | None = Field(default=None)
    validated_at: datetime | None = Field(default=None)
    reclassification_round: int = Field(default=0, ge=0)
    cluster_id: str | None = Field(default=None)
    created_at: datetime | None = Field(default=None)

    @field_validator("id", "session_id", "file_name", mode="before")
    @classmethod
    def validate_non_empty(cls, v: Any) -> str:
        """Validate identifiers and file name are non-empty strings."""
        if not isinstance(v, str) or not v.strip():
            raise ValueError("must be a non-empty string")
        return v

    @model_validator(mode="after")
    def check_reclassification_note(self) -> Document:
        """A reclassification note is present iff the document is Reclassified."""
        reclassified = self.validation_status == ValidationStatus.RECLASSIFIED
        has_note = bool(self.reclassification_note and self.reclassification_note.strip())
        if reclassified != has_note:
            raise ValueError("reclassification_note must be set iff validation_status=Reclassified")
        return self

    @property
    def is_uncertain(self) -> bool:
        """Return True if the triage classifier could not decide."""
        return self.triage_status == TriageStatus.UNCERTAIN

    @property
    def is_reclassified(self) -> bool:
        """Return True while the document waits for re-clustering."""
        return self.validation_status == ValidationStatus.RECLASSIFIED

    def with_decision(
        self,
        status: ValidationStatus,
        *,
        actor_id: str | None,
        at: datetime | None,
        note: str | None = None,
    ) -> Document:
        """Return a copy carrying a new validation decision.

        The note is kept only for Reclassified; any other status clears it.
        """
        return self.model_copy(
            update={
                "validation_status": status,
                "reclassification_note": note if status == ValidationStatus.RECLASSIFIED else None,
                "validated_by": actor_id,
                "validated_at": at,
            }
        )
