"""Legacy import FastAPI application factory.

This module provides the create_app() factory for bootstrapping the legacy
import validation API.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from legacy_import import __version__
from legacy_import.api.errors import (
    ApiHttpError,
    api_http_error_handler,
    audit_sink_error_handler,
    generic_exception_handler,
    http_exception_handler,
    import_service_error_handler,
    request_validation_error_handler,
)
from legacy_import.api.middleware.request_id import RequestIdMiddleware
from legacy_import.api.routes.cluster_documents import router as cluster_documents_router
from legacy_import.api.routes.clusters import router as clusters_router
from legacy_import.api.routes.health import router as health_router
from legacy_import.api.routes.recluster import router as recluster_router
from legacy_import.api.routes.sessions import router as sessions_router
from legacy_import.api.routes.uncertain_docs import router as uncertain_docs_router
from legacy_import.audit import AuditSink, AuditSinkError, JsonlFileAuditSink
from legacy_import.errors import ImportServiceError
from legacy_import.observability import configure_tracing, instrument_fastapi
from legacy_import.persistence import ImportStore, get_import_store
from legacy_import.services import MergeAnalyzer, build_merge_analyzer
from legacy_import.services.recluster import (
    ReclusterCoordinator,
    ReclusterEngine,
    ReclusterWatchdog,
    build_recluster_engine,
)


def create_app(
    store: ImportStore | None = None,
    audit_sink: AuditSink | None = None,
    recluster_engine: ReclusterEngine | None = None,
    coordinator: ReclusterCoordinator | None = None,
    merge_analyzer: MergeAnalyzer | None = None,
) -> FastAPI:
    """Create and configure the legacy import application.

    The store, audit sink and coordinator live on ``app.state`` for the
    lifetime of the app. The lifespan starts the re-cluster watchdog and
    shuts the coordinator's executor down on exit.

    Args:
        store: Import store. Defaults to Postgres when configured, else in-memory.
        audit_sink: Audit sink. Defaults to the JSONL file sink.
        recluster_engine: Engine for a default coordinator. Defaults to the
            backend named by LEGACY_IMPORT_RECLUSTER_BACKEND.
        coordinator: Pre-built coordinator, e.g. with an inline executor in tests.
            Takes precedence over ``recluster_engine``.
        merge_analyzer: Merge analyzer for cluster consolidation. Defaults to the
            backend named by LEGACY_IMPORT_MERGE_BACKEND.

    Returns:
        Configured FastAPI application instance.
    """
    store = store or get_import_store()
    audit_sink = audit_sink or JsonlFileAuditSink()
    merge_analyzer = merge_analyzer or build_merge_analyzer()
    if coordinator is None:
        coordinator = ReclusterCoordinator(
            store, recluster_engine or build_recluster_engine(), audit_sink=audit_sink
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        watchdog = ReclusterWatchdog(coordinator)
        app.state.watchdog = watchdog
        await watchdog.start()
        try:
            yield
        finally:
            await watchdog.stop()
            coordinator.shutdown(wait=False)

    app = FastAPI(
        title="Legacy Import Validation API",
        description="Cluster validation and re-clustering for legacy document imports",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.store = store
    app.state.audit_sink = audit_sink
    app.state.coordinator = coordinator
    app.state.merge_analyzer = merge_analyzer

    configure_tracing()

    app.add_middleware(RequestIdMiddleware)

    instrument_fastapi(app)

    app.add_exception_handler(ApiHttpError, api_http_error_handler)
    app.add_exception_handler(ImportServiceError, import_service_error_handler)
    app.add_exception_handler(AuditSinkError, audit_sink_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    app.include_router(sessions_router)
    app.include_router(clusters_router)
    app.include_router(cluster_documents_router)
    app.include_router(uncertain_docs_router)
    app.include_router(recluster_router)

    return app
