"""Audit event sinks for reviewer decisions.

All sinks implement the AuditSink protocol.

Design requirements:
- Append-only: never truncate/overwrite
- Fail closed: any IO failure raises AuditSinkError
- Deterministic: sorted keys, no extra whitespace
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

AUDIT_LOG_PATH_ENV = "LEGACY_IMPORT_AUDIT_LOG_PATH"
DEFAULT_AUDIT_LOG_PATH = "./var/audit/legacy_import_events.jsonl"


class AuditSinkError(Exception):
    """Raised when audit event emission fails.

    The API maps this to a 500 AUDIT_FAILURE response.
    """

    pass


@runtime_checkable
class AuditSink(Protocol):
    """Protocol for audit event sinks."""

    def emit(self, event: dict[str, Any]) -> None:
        """Emit an audit event to the sink.

        Raises:
            AuditSinkError: If emission fails for any reason
        """
        ...


class JsonlFileAuditSink:
    """Append-only JSONL file sink.

    The file path comes from the constructor, else LEGACY_IMPORT_AUDIT_LOG_PATH,
    else DEFAULT_AUDIT_LOG_PATH. Parent directories are created on first write.
    """

    def __init__(self, file_path: str | None = None) -> None:
        if file_path is not None:
            self._file_path = Path(file_path)
        else:
            self._file_path = Path(os.environ.get(AUDIT_LOG_PATH_ENV) or DEFAULT_AUDIT_LOG_PATH)
        self._write_lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        """Return the configured file path."""
        return self._file_path

    def emit(self, event: dict[str, Any]) -> None:
        """Append the event as one JSON line.

        Raises:
            AuditSinkError: If serialization, directory creation or the write fails
        """
        try:
            line = json.dumps(event, sort_keys=True, separators=(",", ":")) + "\n"
        except (TypeError, ValueError) as e:
            raise AuditSinkError(f"Failed to serialize audit event: {e}") from e

        parent = self._file_path.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AuditSinkError(f"Failed to create audit log directory {parent}: {e}") from e

        try:
            with self._write_lock, open(self._file_path, mode="a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            raise AuditSinkError(f"Failed to write audit event to {self._file_path}: {e}") from e


class InMemoryAuditSink:
    """In-memory audit sink for testing (no disk writes)."""

    def __init__(self) -> None:
        self._events: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def emit(self, event: dict[str, Any]) -> None:
        """Store a JSON round-tripped copy of the event.

        Raises:
            AuditSinkError: If the event is not JSON serializable
        """
        try:
            line = json.dumps(event, sort_keys=True, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise AuditSinkError(f"Failed to serialize audit event: {e}") from e
        with self._lock:
            self._events.append(json.loads(line))

    @property
    def events(self) -> list[dict[str, Any]]:
        """Return all emitted events."""
        with self._lock:
            return list(self._events)

    def event_types(self) -> list[str]:
        """Return the event_type of every emitted event, in order."""
        return [event["event_type"] for event in self.events]

    def clear(self) -> None:
        """Clear all stored events."""
        with self._lock:
            self._events.clear()
