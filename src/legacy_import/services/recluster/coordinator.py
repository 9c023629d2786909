"""ReclusterCoordinator - runs at most one re-clustering job per session.

Lifecycle of a session's job record:

    idle -> processing (trigger) -> completed (run_job)
                                  -> error (engine failure or watchdog)

trigger() does its check-and-set under the session's re-cluster lock and
saves the job as processing before it returns, then hands the work to a
background executor. run_job() reads a snapshot, asks the engine for a plan
outside any lock, and applies the plan in one unit of work. Every write made
on behalf of a job first checks that the job is still the session's current
processing job, so the result of a job the watchdog already failed is
discarded instead of applied.
"""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Callable, Sequence
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta

from legacy_import.audit import AuditSink, InMemoryAuditSink
from legacy_import.errors import ConflictError, InvalidStateError
from legacy_import.models import (
    Cluster,
    ClusterStatus,
    Document,
    PipelineProgress,
    PipelineStatus,
    ReclusterJob,
    ReclusterJobStatus,
    ReclusterProgress,
    ReclusterStats,
    ReclusterStatusView,
    ValidationStatus,
)
from legacy_import.observability import start_span
from legacy_import.persistence import (
    DocumentQuery,
    ImportStore,
    StoreUnit,
    cluster_lock_key,
    recluster_lock_key,
)
from legacy_import.services.common import (
    SYSTEM_ACTOR,
    Actor,
    document_keys,
    emit_audit_event,
    locked_unit,
    recount_cluster,
    require_session,
    utc_now,
)
from legacy_import.services.recluster.engine import (
    REVIEW_GROUP_THRESHOLD,
    ClusterCandidate,
    ClusterGroup,
    ReclassifiedDocument,
    ReclusterEngine,
    review_group,
)

logger = logging.getLogger(__name__)

MAX_SECONDS_ENV = "LEGACY_IMPORT_RECLUSTER_MAX_SECONDS"
MIN_DOCUMENTS_ENV = "LEGACY_IMPORT_RECLUSTER_MIN_DOCUMENTS"
WORKERS_ENV = "LEGACY_IMPORT_RECLUSTER_WORKERS"
WATCHDOG_INTERVAL_ENV = "LEGACY_IMPORT_WATCHDOG_INTERVAL_SECONDS"

PIPELINE_STAGE = "recluster"
MATCHABLE_STATUSES = frozenset({ClusterStatus.PENDING, ClusterStatus.APPROVED})

QUEUED_MESSAGE = "Re-clustering queued"
MATCHING_MESSAGE = "Matching documents to clusters"
APPLYING_MESSAGE = "Applying cluster assignments"


def _env_number(name: str, default: float, *, minimum: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {raw!r}")
    return value


@dataclass(frozen=True)
class ReclusterSettings:
    """Coordinator limits.

    Attributes:
        max_duration_seconds: A job processing longer than this is failed as timed out.
        min_documents: Reclassified documents needed before a job may be triggered.
        workers: Background threads running jobs.
        watchdog_interval_seconds: Period of the stale-job sweeper.
    """

    max_duration_seconds: float = 900.0
    min_documents: int = 1
    workers: int = 2
    watchdog_interval_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> ReclusterSettings:
        """Read settings from LEGACY_IMPORT_RECLUSTER_* and LEGACY_IMPORT_WATCHDOG_*.

        Raises:
            ValueError: If a variable is set to a non-number or out of range.
        """
        return cls(
            max_duration_seconds=_env_number(MAX_SECONDS_ENV, 900.0, minimum=1),
            min_documents=int(_env_number(MIN_DOCUMENTS_ENV, 1, minimum=1)),
            workers=int(_env_number(WORKERS_ENV, 2, minimum=1)),
            watchdog_interval_seconds=_env_number(WATCHDOG_INTERVAL_ENV, 30.0, minimum=0.01),
        )


class _JobSupersededError(Exception):
    """The job was failed by the watchdog or replaced while it ran."""


def _sanitize_groups(
    groups: Sequence[ClusterGroup], unmatched: Sequence[ReclassifiedDocument]
) -> list[ClusterGroup]:
    """Keep each unmatched document in exactly one group.

    Ids the engine invented or repeated are dropped; documents the engine left
    out go to the review group.
    """
    wanted = {d.id for d in unmatched}
    seen: set[str] = set()
    result: list[ClusterGroup] = []
    for group in groups:
        ids = tuple(i for i in dict.fromkeys(group.document_ids) if i in wanted and i not in seen)
        if not ids:
            continue
        seen.update(ids)
        result.append(
            ClusterGroup(
                name=group.name,
                name_en=group.name_en,
                description=group.description,
                document_ids=ids,
            )
        )
    leftovers = [d for d in unmatched if d.id not in seen]
    if leftovers:
        result.append(review_group(leftovers))
    return result


def _rehomed(document: Document, cluster_id: str) -> Document:
    """Return a reclassified document moved to its new cluster, awaiting review again."""
    return document.model_copy(
        update={
            "cluster_id": cluster_id,
            "validation_status": ValidationStatus.PENDING,
            "reclassification_note": None,
            "validated_by": None,
            "validated_at": None,
            "reclassification_round": document.reclassification_round + 1,
        }
    )


class ReclusterCoordinator:
    """Coordinates re-clustering jobs for every session of every tenant.

    Args:
        store: Import store holding sessions and job records.
        engine: Matching and grouping engine.
        settings: Limits; defaults to ReclusterSettings.from_env().
        audit_sink: Sink for trigger/completion events. Defaults to in-memory.
        executor: Executor running jobs. Defaults to a thread pool owned by
            the coordinator and shut down by shutdown().
        clock: Time source for job timestamps and the watchdog.
    """

    def __init__(
        self,
        store: ImportStore,
        engine: ReclusterEngine,
        *,
        settings: ReclusterSettings | None = None,
        audit_sink: AuditSink | None = None,
        executor: Executor | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._engine = engine
        self._settings = settings or ReclusterSettings.from_env()
        self._audit_sink = audit_sink or InMemoryAuditSink()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._settings.workers, thread_name_prefix="recluster"
        )
        self._clock = clock

    @property
    def settings(self) -> ReclusterSettings:
        return self._settings

    def get_status(self, tenant_id: str, session_id: str) -> ReclusterStatusView:
        """Return the poll snapshot of a session's job. Never writes.

        Raises:
            NotFoundError: If the session does not exist.
        """
        with self._store.unit(tenant_id, session_id) as unit:
            require_session(unit)
            job = unit.get_job() or ReclusterJob.idle(session_id)
            reclassified = self._count_reclassified(unit)
        processing = job.is_processing
        return ReclusterStatusView(
            status=job.status,
            can_trigger=not processing and reclassified >= self._settings.min_documents,
            progress=job.progress if processing else None,
            message=job.message,
        )

    def trigger(self, tenant_id: str, session_id: str, actor: Actor = SYSTEM_ACTOR) -> ReclusterJob:
        """Start a re-clustering job.

        The job is saved as processing before this returns; the work itself
        runs on the executor.

        Returns:
            The processing job record.

        Raises:
            NotFoundError: If the session does not exist.
            ConflictError: If a job is already processing for the session.
            InvalidStateError: If fewer than min_documents documents are Reclassified.
        """
        self._expire_if_stale(tenant_id, session_id)

        with self._store.unit(
            tenant_id, session_id, lock_keys=[recluster_lock_key(session_id)]
        ) as unit:
            session = require_session(unit)
            current = unit.get_job()
            if current is not None and current.is_processing:
                raise ConflictError(
                    "A re-clustering job is already processing for this session",
                    details={"session_id": session_id, "job_id": current.job_id},
                )
            reclassified = self._count_reclassified(unit)
            if reclassified < self._settings.min_documents:
                raise InvalidStateError(
                    "Nothing to re-cluster: not enough reclassified documents",
                    details={
                        "reclassified": reclassified,
                        "required": self._settings.min_documents,
                    },
                )

            now = self._clock()
            job = ReclusterJob(
                session_id=session_id,
                job_id=str(uuid.uuid4()),
                status=ReclusterJobStatus.PROCESSING,
                progress=ReclusterProgress(current=0, total=reclassified, message=QUEUED_MESSAGE),
                message=QUEUED_MESSAGE,
                started_at=now,
                triggered_by=actor.actor_id,
            )
            unit.save_job(job)
            unit.save_session(
                session.model_copy(
                    update={
                        "pipeline_status": PipelineStatus.RECLUSTERING,
                        "pipeline_error": None,
                        "pipeline_progress": PipelineProgress(
                            stage=PIPELINE_STAGE,
                            current=0,
                            total=reclassified,
                            message=QUEUED_MESSAGE,
                            updated_at=now,
                        ),
                    }
                )
            )
            emit_audit_event(
                self._audit_sink,
                unit,
                event_type="recluster.triggered",
                resource_type="recluster_job",
                resource_id=job.job_id,
                actor=actor,
                summary=f"Re-clustering triggered for {reclassified} documents",
                details={"reclassified": reclassified},
            )

        logger.info(
            "Re-cluster job %s triggered for session %s (%d documents)",
            job.job_id,
            session_id,
            reclassified,
            extra={"tenant_id": tenant_id, "actor_id": actor.actor_id},
        )
        try:
            self._executor.submit(self.run_job, tenant_id, session_id, job.job_id)
        except RuntimeError as e:
            self._fail(tenant_id, session_id, job.job_id, f"Re-clustering could not start: {e}")
            raise
        return job

    def run_job(self, tenant_id: str, session_id: str, job_id: str) -> None:
        """Execute a triggered job. Failures are recorded on the job, never raised."""
        with start_span(
            "recluster.job",
            {"legacy_import.session_id": session_id, "legacy_import.job_id": job_id},
        ) as span:
            try:
                stats = self._execute(tenant_id, session_id, job_id)
            except _JobSupersededError:
                logger.warning(
                    "Discarding result of re-cluster job %s: no longer the current job",
                    job_id,
                    extra={"tenant_id": tenant_id, "session_id": session_id},
                )
                span.set_attribute("legacy_import.outcome", "discarded")
                return
            except Exception as e:
                logger.exception(
                    "Re-cluster job %s failed",
                    job_id,
                    extra={"tenant_id": tenant_id, "session_id": session_id},
                )
                span.set_attribute("legacy_import.outcome", "error")
                self._fail(tenant_id, session_id, job_id, f"Re-clustering failed: {e}")
                return
            span.set_attribute("legacy_import.outcome", "completed")

        logger.info(
            "Re-cluster job %s completed: %d matched, %d new clusters",
            job_id,
            stats.matched_to_existing,
            stats.new_clusters_created,
            extra={"tenant_id": tenant_id, "session_id": session_id},
        )

    def report_progress(
        self,
        tenant_id: str,
        session_id: str,
        job_id: str,
        current: int,
        total: int,
        message: str | None = None,
    ) -> bool:
        """Record progress of a processing job.

        ``current`` never moves backwards: a smaller value than the recorded
        one is raised to it.

        Returns:
            False if the job is no longer the session's processing job.
        """
        with self._store.unit(
            tenant_id, session_id, lock_keys=[recluster_lock_key(session_id)]
        ) as unit:
            job = unit.get_job()
            if job is None or job.job_id != job_id or not job.is_processing:
                return False
            previous = job.progress or ReclusterProgress()
            current = max(current, previous.current)
            total = max(total, current)
            progress = ReclusterProgress(current=current, total=total, message=message)
            unit.save_job(job.model_copy(update={"progress": progress, "message": message}))
            session = unit.get_session()
            if session is not None:
                unit.save_session(
                    session.model_copy(
                        update={
                            "pipeline_progress": PipelineProgress(
                                stage=PIPELINE_STAGE,
                                current=current,
                                total=total,
                                message=message,
                                updated_at=self._clock(),
                            )
                        }
                    )
                )
        logger.debug("Re-cluster job %s progress %d/%d: %s", job_id, current, total, message)
        return True

    def expire_stale_jobs(self) -> int:
        """Fail every processing job older than max_duration_seconds.

        Returns:
            Number of jobs failed.
        """
        expired = 0
        for tenant_id, session_id in self._store.processing_jobs():
            if self._expire_if_stale(tenant_id, session_id):
                expired += 1
        return expired

    def shutdown(self, wait: bool = True) -> None:
        """Stop the executor if the coordinator created it."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def _count_reclassified(self, unit: StoreUnit) -> int:
        return unit.count_documents(DocumentQuery(validation_status=ValidationStatus.RECLASSIFIED))

    def _is_stale(self, job: ReclusterJob) -> bool:
        if job.started_at is None:
            return True
        limit = timedelta(seconds=self._settings.max_duration_seconds)
        return self._clock() - job.started_at > limit

    def _advance(
        self, tenant_id: str, session_id: str, job_id: str, current: int, total: int, message: str
    ) -> None:
        if not self.report_progress(tenant_id, session_id, job_id, current, total, message):
            raise _JobSupersededError(job_id)

    def _execute(self, tenant_id: str, session_id: str, job_id: str) -> ReclusterStats:
        with self._store.unit(tenant_id, session_id) as unit:
            self._require_current(unit, job_id)
            documents = [
                ReclassifiedDocument(
                    id=d.id,
                    file_name=d.file_name,
                    note=d.reclassification_note or "",
                    text_preview=d.text_preview,
                    suggested_doc_type=d.suggested_doc_type,
                )
                for d in unit.find_documents(
                    DocumentQuery(validation_status=ValidationStatus.RECLASSIFIED)
                )
            ]
            candidates = [
                ClusterCandidate(
                    id=c.id,
                    name=c.display_name,
                    name_en=c.suggested_name_en,
                    description=c.description,
                )
                for c in unit.list_clusters()
                if c.status in MATCHABLE_STATUSES
            ]

        total = len(documents)
        self._advance(tenant_id, session_id, job_id, 0, total, MATCHING_MESSAGE)

        candidate_ids = {c.id for c in candidates}
        matches = self._engine.match_documents(documents, candidates) if candidates else {}
        matched: dict[str, str] = {}
        for document in documents:
            cluster_id = matches.get(document.id)
            if cluster_id is not None and cluster_id in candidate_ids:
                matched[document.id] = cluster_id
        self._advance(
            tenant_id,
            session_id,
            job_id,
            len(matched),
            total,
            f"Matched {len(matched)} documents to existing clusters",
        )

        unmatched = [d for d in documents if d.id not in matched]
        groups: list[ClusterGroup] = []
        if unmatched:
            self._advance(
                tenant_id,
                session_id,
                job_id,
                len(matched),
                total,
                f"Creating new clusters for {len(unmatched)} unmatched documents",
            )
            if len(unmatched) <= REVIEW_GROUP_THRESHOLD:
                groups = [review_group(unmatched)]
            else:
                groups = _sanitize_groups(self._engine.group_documents(unmatched), unmatched)

        self._advance(tenant_id, session_id, job_id, total, total, APPLYING_MESSAGE)
        return self._apply(tenant_id, session_id, job_id, matched, groups, total)

    def _apply(
        self,
        tenant_id: str,
        session_id: str,
        job_id: str,
        matched: dict[str, str],
        groups: Sequence[ClusterGroup],
        total: int,
    ) -> ReclusterStats:
        moving_ids = [*matched, *(i for g in groups for i in g.document_ids)]
        target_ids = set(matched.values())

        def resolve(unit: StoreUnit) -> set[str]:
            keys = {recluster_lock_key(session_id)}
            keys.update(cluster_lock_key(cid) for cid in target_ids)
            present = [unit.get_document(doc_id) for doc_id in moving_ids]
            keys |= document_keys(d for d in present if d is not None)
            return keys

        with locked_unit(self._store, tenant_id, session_id, resolve) as unit:
            session = require_session(unit)
            job = self._require_current(unit, job_id)
            now = self._clock()

            live_targets: set[str] = set()
            for cluster_id in target_ids:
                cluster = unit.get_cluster(cluster_id)
                if (
                    cluster is not None
                    and not cluster.is_retired
                    and cluster.status in MATCHABLE_STATUSES
                ):
                    live_targets.add(cluster_id)

            affected: set[str] = set()
            moved: list[Document] = []

            def still_reclassified(doc_id: str) -> Document | None:
                document = unit.get_document(doc_id)
                if document is not None and document.is_reclassified:
                    return document
                return None

            for doc_id, cluster_id in matched.items():
                document = still_reclassified(doc_id)
                if document is None or cluster_id not in live_targets:
                    continue
                if document.cluster_id is not None:
                    affected.add(document.cluster_id)
                affected.add(cluster_id)
                moved.append(_rehomed(document, cluster_id))
            matched_count = len(moved)

            new_clusters: list[Cluster] = []
            for group in groups:
                members = [d for d in map(still_reclassified, group.document_ids) if d is not None]
                if not members:
                    continue
                cluster = Cluster(
                    id=str(uuid.uuid4()),
                    session_id=session_id,
                    suggested_name=group.name,
                    suggested_name_en=group.name_en or group.name,
                    description=group.description,
                    created_at=now,
                )
                new_clusters.append(cluster)
                for document in members:
                    if document.cluster_id is not None:
                        affected.add(document.cluster_id)
                    moved.append(_rehomed(document, cluster.id))

            unit.save_documents(moved)
            unit.save_clusters(new_clusters)
            for cluster_id in sorted(affected):
                cluster = unit.get_cluster(cluster_id)
                if cluster is not None:
                    recount_cluster(unit, cluster)
            for cluster in new_clusters:
                recount_cluster(unit, cluster)

            stats = ReclusterStats(
                total_reclassified=total,
                matched_to_existing=matched_count,
                new_clusters_created=len(new_clusters),
                unmatched_docs=len(moved) - matched_count,
            )
            unit.save_job(
                job.model_copy(
                    update={
                        "status": ReclusterJobStatus.COMPLETED,
                        "progress": ReclusterProgress(
                            current=total, total=total, message="Re-clustering complete"
                        ),
                        "message": stats.summary(),
                        "finished_at": now,
                        "stats": stats,
                    }
                )
            )
            unit.save_session(
                session.model_copy(
                    update={
                        "pipeline_status": PipelineStatus.READY_FOR_VALIDATION,
                        "pipeline_error": None,
                        "pipeline_progress": None,
                        "pipeline_completed_at": now,
                        "last_clustered_at": now,
                    }
                )
            )
            emit_audit_event(
                self._audit_sink,
                unit,
                event_type="recluster.completed",
                resource_type="recluster_job",
                resource_id=job_id,
                actor=Actor(actor_id=job.triggered_by or SYSTEM_ACTOR.actor_id),
                summary=stats.summary(),
                details=stats.model_dump(),
            )
        return stats

    def _require_current(self, unit: StoreUnit, job_id: str) -> ReclusterJob:
        job = unit.get_job()
        if job is None or job.job_id != job_id or not job.is_processing:
            raise _JobSupersededError(job_id)
        return job

    def _mark_failed(self, unit: StoreUnit, job: ReclusterJob, message: str) -> None:
        now = self._clock()
        unit.save_job(
            job.model_copy(
                update={
                    "status": ReclusterJobStatus.ERROR,
                    "progress": None,
                    "message": message,
                    "finished_at": now,
                }
            )
        )
        session = unit.get_session()
        if session is not None:
            unit.save_session(
                session.model_copy(
                    update={
                        "pipeline_status": PipelineStatus.FAILED,
                        "pipeline_error": message,
                        "pipeline_progress": None,
                    }
                )
            )
        emit_audit_event(
            self._audit_sink,
            unit,
            event_type="recluster.failed",
            resource_type="recluster_job",
            resource_id=job.job_id or "",
            actor=SYSTEM_ACTOR,
            summary=message,
        )

    def _fail(self, tenant_id: str, session_id: str, job_id: str, message: str) -> bool:
        with self._store.unit(
            tenant_id, session_id, lock_keys=[recluster_lock_key(session_id)]
        ) as unit:
            job = unit.get_job()
            if job is None or job.job_id != job_id or not job.is_processing:
                return False
            self._mark_failed(unit, job, message)
        return True

    def _expire_if_stale(self, tenant_id: str, session_id: str) -> bool:
        with self._store.unit(
            tenant_id, session_id, lock_keys=[recluster_lock_key(session_id)]
        ) as unit:
            job = unit.get_job()
            if job is None or not job.is_processing or not self._is_stale(job):
                return False
            message = (
                f"Re-clustering timed out after {int(self._settings.max_duration_seconds)} seconds"
            )
            self._mark_failed(unit, job, message)
        logger.warning(
            "Re-cluster job %s timed out",
            job.job_id,
            extra={"tenant_id": tenant_id, "session_id": session_id},
        )
        return True
