"""Audit module - append-only log of reviewer decisions."""

from legacy_import.audit.events import make_audit_event
from legacy_import.audit.sink import (
    AuditSink,
    AuditSinkError,
    InMemoryAuditSink,
    JsonlFileAuditSink,
)

__all__ = [
    "AuditSink",
    "AuditSinkError",
    "InMemoryAuditSink",
    "JsonlFileAuditSink",
    "make_audit_event",
]
