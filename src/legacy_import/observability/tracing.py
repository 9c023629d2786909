"""OpenTelemetry tracing configuration for the legacy import service.

Tracing is off unless LEGACY_IMPORT_OTEL_ENABLED=1. When enabled, FastAPI
requests are instrumented and the re-cluster job runs inside its own span.

Environment Variables:
    LEGACY_IMPORT_OTEL_ENABLED: Set to "1" to enable tracing (default: disabled)
    LEGACY_IMPORT_OTEL_SERVICE_NAME: Service name for spans (default: "legacy-import")
    LEGACY_IMPORT_OTEL_EXPORTER: "console" or "none" (default: "console")
    LEGACY_IMPORT_OTEL_TEST_CAPTURE: Set to "1" to use the in-memory exporter

Span attributes never carry document text, reclassification notes or API keys.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import ReadableSpan, TracerProvider

logger = logging.getLogger(__name__)

OTEL_ENABLED_ENV = "LEGACY_IMPORT_OTEL_ENABLED"
OTEL_SERVICE_NAME_ENV = "LEGACY_IMPORT_OTEL_SERVICE_NAME"
OTEL_EXPORTER_ENV = "LEGACY_IMPORT_OTEL_EXPORTER"
OTEL_TEST_CAPTURE_ENV = "LEGACY_IMPORT_OTEL_TEST_CAPTURE"

TRACER_NAME = "legacy_import"

_tracer_provider: TracerProvider | None = None
_test_exporter: Any = None


class TracingConfigError(Exception):
    """Raised when the exporter named in configuration is unknown."""

    pass


def _get_env_bool(key: str) -> bool:
    return os.environ.get(key, "").strip().lower() in ("1", "true", "yes")


def is_tracing_enabled() -> bool:
    """Return True if LEGACY_IMPORT_OTEL_ENABLED is set."""
    return _get_env_bool(OTEL_ENABLED_ENV)


def configure_tracing() -> bool:
    """Configure the global tracer provider.

    Idempotent - safe to call from every create_app().

    Returns:
        True if tracing is enabled and configured, False otherwise.

    Raises:
        TracingConfigError: If LEGACY_IMPORT_OTEL_EXPORTER names an unknown exporter.
    """
    global _tracer_provider, _test_exporter

    if not is_tracing_enabled():
        logger.debug("OpenTelemetry tracing disabled (%s not set)", OTEL_ENABLED_ENV)
        return False

    if _tracer_provider is not None:
        return True

    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

    service_name = os.environ.get(OTEL_SERVICE_NAME_ENV, "").strip() or "legacy-import"
    exporter_type = os.environ.get(OTEL_EXPORTER_ENV, "").strip().lower() or "console"
    test_capture = _get_env_bool(OTEL_TEST_CAPTURE_ENV)

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    if test_capture:
        from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
            InMemorySpanExporter,
        )

        _test_exporter = InMemorySpanExporter()
        provider.add_span_processor(SimpleSpanProcessor(_test_exporter))
        exporter_type = "in-memory"
    elif exporter_type == "console":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    elif exporter_type != "none":
        raise TracingConfigError(f"Unknown {OTEL_EXPORTER_ENV} value: {exporter_type!r}")

    trace.set_tracer_provider(provider)
    _tracer_provider = provider
    logger.info(
        "OpenTelemetry tracing configured: service=%s, exporter=%s",
        service_name,
        exporter_type,
    )
    return True


def instrument_fastapi(app: Any) -> None:
    """Instrument a FastAPI application when tracing is enabled."""
    if not is_tracing_enabled():
        return

    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

    FastAPIInstrumentor.instrument_app(app, excluded_urls="health")
    logger.debug("FastAPI instrumented with OpenTelemetry")


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None) -> Generator[Any, None, None]:
    """Run a block inside a span on the service tracer.

    Without a configured provider the OpenTelemetry API hands out
    non-recording spans, so callers need no enabled check.

    Args:
        name: Span name, e.g. "recluster.job".
        attributes: Attributes set on the span; None values are skipped.
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def get_test_spans() -> list[ReadableSpan]:
    """Return spans captured by the in-memory exporter (tests only)."""
    if _test_exporter is None:
        return []
    return list(_test_exporter.get_finished_spans())


def clear_test_spans() -> None:
    """Clear spans captured by the in-memory exporter (tests only)."""
    if _test_exporter is not None:
        _test_exporter.clear()
