"""OpenTelemetry tracing support for compaction and checkpointing."""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
)
from opentelemetry.trace import Span, Status, StatusCode

logger = logging.getLogger(__name__)

# Global state
_tracer_provider: TracerProvider | None = None
_tracer: trace.Tracer | None = None


def get_tracer() -> trace.Tracer:
    """Get or create the OpenTelemetry tracer instance."""
    global _tracer
    if _tracer is None:
        initialize_otel()
    return _tracer


def initialize_otel(exporter: SpanExporter | None = None, enabled: bool | None = None) -> None:
    """Initialize OpenTelemetry SDK.

    Tracing is off unless ``enabled`` is true or ``CTXKEEP_OTEL_ENABLED=true``.
    Spans go to ``exporter``, or to the console when none is given.
    """
    global _tracer_provider, _tracer

    if enabled is None:
        enabled = os.getenv("CTXKEEP_OTEL_ENABLED", "false").lower() == "true"

    if not enabled:
        _tracer = trace.NoOpTracer()
        return

    try:
        _tracer_provider = TracerProvider()
        _tracer_provider.add_span_processor(BatchSpanProcessor(exporter or ConsoleSpanExporter()))

        service_name = os.getenv("CTXKEEP_OTEL_SERVICE_NAME", "ctxkeep")
        _tracer = _tracer_provider.get_tracer(service_name)

        logger.info("OpenTelemetry initialized for %s", service_name)

    except Exception as e:
        # Log error but continue with no-op tracer
        logger.warning("Failed to initialize OpenTelemetry: %s. Tracing disabled.", e)
        _tracer = trace.NoOpTracer()


def shutdown_otel() -> None:
    """Flush pending spans and drop the tracer so the next call re-initializes."""
    global _tracer_provider, _tracer
    if _tracer_provider is not None:
        _tracer_provider.shutdown()
    _tracer_provider = None
    _tracer = None


@contextmanager
def traced_span(name: str, attributes: dict[str, Any] | None = None) -> Iterator[Span]:
    """Run a block inside a span, marking it OK or ERROR.

    Example:
        with traced_span("checkpoint.save", {"checkpoint.thread_id": thread_id}):
            await store.save(checkpoint)
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(name=name, attributes=attributes or {}) as span:
        try:
            yield span
            span.set_status(Status(StatusCode.OK))
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
