"""Helpers shared by the document, cluster, session and re-cluster services.

Every mutation runs inside a store unit holding the lock keys of everything it
touches. Which keys a mutation needs depends on where documents currently
live, so the key set is resolved optimistically: read without locks, lock the
keys, then resolve again under the locks. If a document moved in between, the
unit is abandoned without writes and retried with the larger key set.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator, Iterable
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypeVar

from legacy_import.audit import AuditSink, make_audit_event
from legacy_import.errors import ConflictError, NotFoundError, ValidationError
from legacy_import.models import (
    SAMPLE_DOCUMENT_LIMIT,
    Cluster,
    Document,
    ImportSession,
    ValidationCounts,
)
from legacy_import.persistence import (
    DocumentQuery,
    ImportStore,
    StoreUnit,
    cluster_lock_key,
    document_lock_key,
)

logger = logging.getLogger(__name__)

MAX_LOCK_ATTEMPTS = 5

KeyResolver = Callable[[StoreUnit], Iterable[str]]

ActionT = TypeVar("ActionT", bound=StrEnum)


@dataclass(frozen=True)
class Actor:
    """The reviewer or service on whose behalf a mutation runs."""

    actor_id: str
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.actor_id


SYSTEM_ACTOR = Actor(actor_id="system", name="System")


def utc_now() -> datetime:
    return datetime.now(UTC)


def document_keys(documents: Iterable[Document]) -> set[str]:
    """Return the lock keys guarding the given documents where they live now."""
    keys: set[str] = set()
    for document in documents:
        if document.cluster_id is not None:
            keys.add(cluster_lock_key(document.cluster_id))
        else:
            keys.add(document_lock_key(document.id))
    return keys


@contextmanager
def locked_unit(
    store: ImportStore,
    tenant_id: str,
    session_id: str,
    resolve_keys: KeyResolver,
) -> Generator[StoreUnit, None, None]:
    """Open a unit holding every key ``resolve_keys`` asks for.

    ``resolve_keys`` may raise (e.g. NotFoundError); the error propagates
    before any lock is taken.

    Raises:
        ConflictError: If the key set kept changing for MAX_LOCK_ATTEMPTS rounds.
    """
    with store.unit(tenant_id, session_id) as preview:
        keys = set(resolve_keys(preview))

    for attempt in range(1, MAX_LOCK_ATTEMPTS + 1):
        with store.unit(tenant_id, session_id, lock_keys=keys) as unit:
            required = set(resolve_keys(unit))
            if required <= keys:
                yield unit
                return
        logger.debug(
            "Lock set changed under lock (attempt %d/%d): missing %s",
            attempt,
            MAX_LOCK_ATTEMPTS,
            sorted(required - keys),
        )
        keys |= required

    raise ConflictError(
        "Documents kept moving while the change was being applied; retry the request",
        details={"session_id": session_id},
    )


def require_session(unit: StoreUnit) -> ImportSession:
    session = unit.get_session()
    if session is None:
        raise NotFoundError("session", unit.session_id)
    return session


def require_cluster(unit: StoreUnit, cluster_id: str) -> Cluster:
    cluster = unit.get_cluster(cluster_id)
    if cluster is None:
        raise NotFoundError("cluster", cluster_id)
    return cluster


def require_document(unit: StoreUnit, document_id: str) -> Document:
    document = unit.get_document(document_id)
    if document is None:
        raise NotFoundError("document", document_id)
    return document


def recount_cluster(unit: StoreUnit, cluster: Cluster) -> Cluster:
    """Recompute derived counters from the cluster's current members and stage it.

    Retired clusters own no documents and always carry zero counters.
    """
    if cluster.is_retired:
        members: list[Document] = []
    else:
        members = unit.find_documents(DocumentQuery(cluster_id=cluster.id))
    updated = cluster.model_copy(
        update={
            "document_count": len(members),
            "validation_counts": ValidationCounts.from_statuses(
                d.validation_status for d in members
            ),
            "sample_document_ids": [d.id for d in members[:SAMPLE_DOCUMENT_LIMIT]],
        }
    )
    unit.save_clusters([updated])
    return updated


def retire_cluster(cluster: Cluster, *, at: datetime, superseded_by: str | None) -> Cluster:
    """Return the retired form of a cluster: status and naming kept, counters zeroed."""
    return cluster.model_copy(
        update={
            "retired_at": at,
            "superseded_by": superseded_by,
            "document_count": 0,
            "validation_counts": ValidationCounts(),
            "sample_document_ids": [],
        }
    )


def emit_audit_event(
    sink: AuditSink,
    unit: StoreUnit,
    *,
    event_type: str,
    resource_type: str,
    resource_id: str,
    actor: Actor,
    summary: str,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit an audit event for a mutation staged on ``unit``.

    Called before the unit commits, so an AuditSinkError discards the
    mutation along with the event.
    """
    sink.emit(
        make_audit_event(
            tenant_id=unit.tenant_id,
            session_id=unit.session_id,
            event_type=event_type,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=actor.actor_id,
            summary=summary,
            details=details,
        )
    )


def parse_action(action_type: type[ActionT], value: str) -> ActionT:
    """Coerce a wire action string into its enum, as a ValidationError on mismatch."""
    try:
        return action_type(value)
    except ValueError:
        raise ValidationError(
            f"Unsupported action: {value!r}",
            details={"allowed": [member.value for member in action_type]},
        ) from None
