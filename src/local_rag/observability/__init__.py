"""
Observability Module - OpenTelemetry + Phoenix Integration

Traces ingestion and retrieval through the engine, with OpenInference
auto-instrumentation for OpenAI embedding calls.

USAGE:
------
# At application startup:
from local_rag.observability import init_tracing

init_tracing()  # No-op unless RAG_TRACING_ENABLED=true

# In code that needs tracing:
from local_rag.observability import get_tracer

tracer = get_tracer()
with tracer.start_span("rag.retrieve", attributes={"rag.retrieve.top_k": 5}) as span:
    ...
    span.set_attribute("rag.retrieve.hit_count", 3)
"""

from __future__ import annotations

import logging

from local_rag.observability.config import (
    TracingConfig,
    get_tracing_config,
    reset_tracing_config,
)
from local_rag.observability.tracer import (
    NoOpSpan,
    NoOpTracer,
    SpanProtocol,
    TracerProtocol,
    get_tracer,
    reset_tracer,
)
from local_rag.observability import attributes

logger = logging.getLogger(__name__)

_tracing_initialized = False


def init_tracing(config: TracingConfig | None = None) -> bool:
    """
    Install an OpenTelemetry tracer provider and the OpenAI instrumentor.

    With a collector endpoint, spans go to it over OTLP/HTTP. Without one,
    a local Phoenix app is launched and spans are exported to it.

    Returns:
        True if tracing is active, False if disabled or unavailable
    """
    global _tracing_initialized
    if _tracing_initialized:
        return True

    config = config or get_tracing_config()
    if not config.enabled:
        logger.debug("Tracing disabled")
        return False

    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        if config.collector_endpoint:
            endpoint = config.collector_endpoint
            logger.info(f"Tracing to remote collector: {endpoint}")
        else:
            import phoenix as px

            session = px.launch_app()
            endpoint = f"{session.url.rstrip('/')}/v1/traces"
            logger.info(f"Phoenix UI available at: {session.url}")

        provider = TracerProvider(
            resource=Resource.create({"openinference.project.name": config.project_name})
        )
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)

        from local_rag.observability.instrumentation import register_instrumentors
        register_instrumentors()

        reset_tracer()
        _tracing_initialized = True
        return True

    except ImportError as e:
        logger.warning(f"Tracing dependencies not installed, tracing disabled: {e}")
        return False
    except Exception as e:
        logger.error(f"Failed to initialize tracing: {e}")
        return False


def shutdown_tracing() -> None:
    """Flush and shut down the tracer provider."""
    global _tracing_initialized
    if not _tracing_initialized:
        return

    try:
        from opentelemetry import trace
        provider = trace.get_tracer_provider()
        if hasattr(provider, "shutdown"):
            provider.shutdown()
    except Exception as e:
        logger.warning(f"Error shutting down tracing: {e}")

    from local_rag.observability.instrumentation import uninstrument
    uninstrument()

    reset_tracer()
    reset_tracing_config()
    _tracing_initialized = False


__all__ = [
    "init_tracing",
    "shutdown_tracing",
    "TracingConfig",
    "get_tracing_config",
    "reset_tracing_config",
    "TracerProtocol",
    "SpanProtocol",
    "NoOpTracer",
    "NoOpSpan",
    "get_tracer",
    "reset_tracer",
    "attributes",
]
