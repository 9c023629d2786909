"""Read models returned by the listing operations."""

from __future__ import annotations

import math

from pydantic import Field

from legacy_import.models.base import CamelModel
from legacy_import.models.cluster import Cluster, ClusterStats, ValidationCounts
from legacy_import.models.document import Document, TriageStatus, ValidationStatus

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class DocumentSample(CamelModel):
    """Compact document preview shown on a cluster card."""

    id: str
    file_name: str
    file_extension: str = ""
    triage_status: TriageStatus | None = None
    validation_status: ValidationStatus = ValidationStatus.PENDING

    @classmethod
    def from_document(cls, document: Document) -> DocumentSample:
        return cls(
            id=document.id,
            file_name=document.file_name,
            file_extension=document.file_extension,
            triage_status=document.triage_status,
            validation_status=document.validation_status,
        )


class ClusterView(Cluster):
    """A cluster together with its sample documents."""

    sample_documents: list[DocumentSample] = Field(default_factory=list)


class ClusterListing(CamelModel):
    """Result of listing a session's clusters."""

    clusters: list[ClusterView]
    stats: ClusterStats


class Pagination(CamelModel):
    """Page coordinates of a document listing."""

    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_more: bool

    @classmethod
    def for_page(cls, page: int, page_size: int, total_count: int) -> Pagination:
        total_pages = math.ceil(total_count / page_size) if total_count else 0
        return cls(
            page=page,
            page_size=page_size,
            total_count=total_count,
            total_pages=total_pages,
            has_more=page < total_pages,
        )


class DocumentPage(CamelModel):
    """One page of documents plus validation counts over the whole population."""

    documents: list[Document]
    stats: ValidationCounts
    pagination: Pagination
