"""ClusterService - listing, review actions and merges over a session's clusters.

Implements the cluster review state machine:
- approve/reject/delete are legal only from Pending
- approve records approvedName, falling back to suggestedName
- merge retires every source cluster and moves their documents into one new
  Pending cluster, all in one unit of work
- execute_merges applies a list of merge groups, each atomic on its own, and
  reports the groups that failed instead of stopping at the first
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime

from legacy_import.audit import AuditSink, InMemoryAuditSink
from legacy_import.errors import ImportServiceError, InvalidStateError, ValidationError
from legacy_import.models import (
    ACTION_TO_CLUSTER_STATUS,
    TERMINAL_CLUSTER_STATUSES,
    Cluster,
    ClusterAction,
    ClusterListing,
    ClusterStats,
    ClusterStatus,
    ClusterView,
    Document,
    DocumentSample,
)
from legacy_import.persistence import (
    DocumentQuery,
    ImportStore,
    StoreUnit,
    cluster_lock_key,
)
from legacy_import.services.common import (
    Actor,
    emit_audit_event,
    locked_unit,
    parse_action,
    recount_cluster,
    require_cluster,
    require_session,
    retire_cluster,
    utc_now,
)
from legacy_import.services.merge_analysis import (
    MergeAnalysis,
    MergeAnalyzer,
    MergeGroup,
    MergeResult,
    PatternMergeAnalyzer,
    build_merge_analysis,
)
from legacy_import.services.merge_suggestions import MergeSuggestion, suggest_merges

logger = logging.getLogger(__name__)


def with_samples(unit: StoreUnit, clusters: Sequence[Cluster]) -> list[ClusterView]:
    """Attach sample documents to clusters with one document query."""
    wanted = frozenset(doc_id for c in clusters for doc_id in c.sample_document_ids)
    by_id: dict[str, Document] = {}
    if wanted:
        by_id = {d.id: d for d in unit.find_documents(DocumentQuery(document_ids=wanted))}
    views = []
    for cluster in clusters:
        samples = [
            DocumentSample.from_document(by_id[doc_id])
            for doc_id in cluster.sample_document_ids
            if doc_id in by_id
        ]
        views.append(
            ClusterView.model_validate({**cluster.model_dump(), "sample_documents": samples})
        )
    return views


class ClusterService:
    """Service for cluster review within one tenant.

    Args:
        store: Import store the sessions live in.
        tenant_id: Tenant of the caller.
        actor: Reviewer recorded as validatedBy/validatorName.
        audit_sink: Sink for review events. Defaults to an in-memory sink.
        clock: Time source for validatedAt and retirement.
        merge_analyzer: Proposes merge groups. Defaults to the pattern analyzer.
    """

    def __init__(
        self,
        store: ImportStore,
        tenant_id: str,
        actor: Actor,
        audit_sink: AuditSink | None = None,
        clock: Callable[[], datetime] = utc_now,
        merge_analyzer: MergeAnalyzer | None = None,
    ) -> None:
        self._store = store
        self._tenant_id = tenant_id
        self._actor = actor
        self._audit_sink = audit_sink or InMemoryAuditSink()
        self._clock = clock
        self._merge_analyzer = merge_analyzer or PatternMergeAnalyzer()

    def list_clusters(
        self,
        session_id: str,
        status: ClusterStatus | None = None,
        include_deleted: bool = False,
    ) -> ClusterListing:
        """List a session's live clusters with stats.

        Deleted clusters are hidden from both the list and the stats unless
        ``include_deleted`` is set or ``status`` is Deleted. Stats cover the
        whole visible population, not just the status-filtered list.

        Raises:
            NotFoundError: If the session does not exist.
        """
        show_deleted = include_deleted or status == ClusterStatus.DELETED
        with self._store.unit(self._tenant_id, session_id) as unit:
            require_session(unit)
            visible = [
                c
                for c in unit.list_clusters()
                if show_deleted or c.status != ClusterStatus.DELETED
            ]
            listed = [c for c in visible if status is None or c.status == status]
            views = with_samples(unit, listed)
        return ClusterListing(clusters=views, stats=ClusterStats.from_clusters(visible))

    def get_cluster(self, session_id: str, cluster_id: str) -> ClusterView:
        """Return one cluster, retired ones included.

        Raises:
            NotFoundError: If the session or cluster does not exist.
        """
        with self._store.unit(self._tenant_id, session_id) as unit:
            require_session(unit)
            cluster = require_cluster(unit, cluster_id)
            return with_samples(unit, [cluster])[0]

    def apply_cluster_action(
        self,
        session_id: str,
        cluster_id: str,
        action: ClusterAction | str,
        approved_name: str | None = None,
    ) -> Cluster:
        """Approve, reject or delete a Pending cluster.

        Args:
            session_id: Session owning the cluster.
            cluster_id: Cluster to act on.
            action: approve, reject or delete.
            approved_name: Name recorded on approve; blank or missing falls back
                to the suggested name. Ignored for other actions.

        Returns:
            The updated cluster.

        Raises:
            ValidationError: Unknown action.
            NotFoundError: Unknown session or cluster.
            InvalidStateError: The cluster is retired or no longer Pending.
        """
        action = parse_action(ClusterAction, action)
        target = ACTION_TO_CLUSTER_STATUS[action]

        def resolve(unit: StoreUnit) -> list[str]:
            require_session(unit)
            return [cluster_lock_key(cluster_id)]

        with locked_unit(self._store, self._tenant_id, session_id, resolve) as unit:
            cluster = require_cluster(unit, cluster_id)
            if cluster.is_retired:
                raise InvalidStateError(
                    "Cluster was merged or replaced and can no longer be reviewed",
                    details={"cluster_id": cluster_id, "superseded_by": cluster.superseded_by},
                )
            if cluster.status in TERMINAL_CLUSTER_STATUSES:
                raise InvalidStateError(
                    f"Cannot {action.value} a cluster in status {cluster.status.value}",
                    details={"cluster_id": cluster_id, "status": cluster.status.value},
                )

            update: dict[str, object] = {
                "status": target,
                "validated_by": self._actor.actor_id,
                "validated_at": self._clock(),
                "validator_name": self._actor.display_name,
            }
            if action == ClusterAction.APPROVE:
                name = approved_name.strip() if approved_name else ""
                update["approved_name"] = name or cluster.suggested_name
            updated = cluster.model_copy(update=update)
            unit.save_clusters([updated])
            emit_audit_event(
                self._audit_sink,
                unit,
                event_type=f"cluster.{target.value.lower()}",
                resource_type="cluster",
                resource_id=cluster_id,
                actor=self._actor,
                summary=f"Cluster {cluster_id} {target.value}",
                details={"approved_name": updated.approved_name},
            )

        logger.info(
            "Cluster %s %s by %s",
            cluster_id,
            target.value,
            self._actor.actor_id,
            extra={"session_id": session_id},
        )
        return updated

    def merge_clusters(
        self,
        session_id: str,
        cluster_ids: Sequence[str],
        new_name: str,
        new_name_en: str | None = None,
        description: str | None = None,
    ) -> Cluster:
        """Merge two or more live clusters into a new Pending cluster.

        Member documents keep their validation status. Source clusters are
        retired with supersededBy pointing at the new cluster.

        Returns:
            The new cluster.

        Raises:
            ValidationError: Fewer than two distinct ids, or a blank name.
            NotFoundError: Unknown session or cluster.
            InvalidStateError: A source cluster is already retired.
        """
        source_ids = list(dict.fromkeys(cluster_ids))
        if len(source_ids) < 2:
            raise ValidationError(
                "At least two distinct clusters are required to merge",
                details={"cluster_ids": list(cluster_ids)},
            )
        name = new_name.strip() if new_name else ""
        if not name:
            raise ValidationError("newName must not be blank")

        def resolve(unit: StoreUnit) -> list[str]:
            require_session(unit)
            return [cluster_lock_key(cid) for cid in source_ids]

        with locked_unit(self._store, self._tenant_id, session_id, resolve) as unit:
            sources = [require_cluster(unit, cid) for cid in source_ids]
            for source in sources:
                if source.is_retired:
                    raise InvalidStateError(
                        "Cluster was already merged or replaced",
                        details={"cluster_id": source.id, "superseded_by": source.superseded_by},
                    )

            now = self._clock()
            merged = Cluster(
                id=str(uuid.uuid4()),
                session_id=session_id,
                suggested_name=name,
                suggested_name_en=(new_name_en or "").strip() or name,
                description=description or f"Merged from {len(sources)} clusters",
                created_at=now,
            )
            moved = [
                d.model_copy(update={"cluster_id": merged.id})
                for source in sources
                for d in unit.find_documents(DocumentQuery(cluster_id=source.id))
            ]
            unit.save_documents(moved)
            unit.save_clusters(retire_cluster(s, at=now, superseded_by=merged.id) for s in sources)
            merged = recount_cluster(unit, merged)
            emit_audit_event(
                self._audit_sink,
                unit,
                event_type="cluster.merged",
                resource_type="cluster",
                resource_id=merged.id,
                actor=self._actor,
                summary=f"{len(sources)} clusters merged into {merged.id}",
                details={"source_cluster_ids": source_ids, "document_count": merged.document_count},
            )

        logger.info(
            "Merged %d clusters into %s (%d documents)",
            len(source_ids),
            merged.id,
            merged.document_count,
            extra={"session_id": session_id},
        )
        return merged

    def suggest_merges(self, session_id: str) -> list[MergeSuggestion]:
        """Return pattern-based merge suggestions over the session's live clusters.

        Raises:
            NotFoundError: If the session does not exist.
        """
        with self._store.unit(self._tenant_id, session_id) as unit:
            require_session(unit)
            clusters = unit.list_clusters()
        return suggest_merges(clusters)

    def analyze_merges(self, session_id: str) -> MergeAnalysis:
        """Propose merge groups over the session's live, non-deleted clusters.

        Nothing is changed; the analyzer may call an LLM, so it runs outside
        any unit of work.

        Raises:
            NotFoundError: If the session does not exist.
        """
        clusters = self._reviewable_clusters(session_id)
        groups = self._merge_analyzer.propose_merges(clusters)
        analysis = build_merge_analysis(session_id, clusters, groups)
        logger.info(
            "Merge analysis for session %s: %d -> %d clusters",
            session_id,
            analysis.original_cluster_count,
            analysis.suggested_cluster_count,
            extra={"tenant_id": self._tenant_id},
        )
        return analysis

    def execute_merges(self, session_id: str, groups: Sequence[MergeGroup]) -> MergeResult:
        """Apply merge groups one by one, each through merge_clusters.

        Each group is atomic on its own. A group that fails (a source already
        merged, an unknown id, a blank name) is reported in ``errors`` and the
        remaining groups are still applied. Groups of fewer than two distinct
        clusters are skipped.

        Raises:
            NotFoundError: If the session does not exist.
        """
        with self._store.unit(self._tenant_id, session_id) as unit:
            require_session(unit)

        merged_ids: list[str] = []
        errors: list[str] = []
        for group in groups:
            if len(set(group.cluster_ids)) < 2:
                continue
            try:
                merged = self.merge_clusters(
                    session_id,
                    group.cluster_ids,
                    group.target_name,
                    new_name_en=group.target_name_en,
                    description=group.description,
                )
            except ImportServiceError as e:
                logger.warning(
                    "Merge group %r failed: %s",
                    group.target_name,
                    e.message,
                    extra={"session_id": session_id, "code": e.code},
                )
                errors.append(f'Failed to merge "{group.target_name}": {e.message}')
                continue
            merged_ids.append(merged.id)

        return MergeResult(
            success=not errors,
            merged_count=len(merged_ids),
            new_cluster_count=len(self._reviewable_clusters(session_id)),
            merged_cluster_ids=merged_ids,
            errors=errors,
        )

    def quick_merge(self, session_id: str) -> MergeResult:
        """Apply every pattern-based merge suggestion of the session.

        Raises:
            NotFoundError: If the session does not exist.
        """
        groups = [MergeGroup.from_suggestion(s) for s in self.suggest_merges(session_id)]
        return self.execute_merges(session_id, groups)

    def _reviewable_clusters(self, session_id: str) -> list[Cluster]:
        with self._store.unit(self._tenant_id, session_id) as unit:
            require_session(unit)
            return [c for c in unit.list_clusters() if c.status != ClusterStatus.DELETED]
