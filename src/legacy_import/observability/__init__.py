"""Observability module - OpenTelemetry tracing."""

from legacy_import.observability.tracing import (
    TracingConfigError,
    configure_tracing,
    instrument_fastapi,
    start_span,
)

__all__ = ["TracingConfigError", "configure_tracing", "instrument_fastapi", "start_span"]
