"""
Engine Tracer

The engine only ever opens a span and sets attributes on it, so that is the
whole surface here: start_span() as a context manager and set_attribute().

get_tracer() hands out an OpenTelemetry-backed tracer once init_tracing()
has installed an SDK provider, and a NoOpTracer in every other case
(tracing disabled, SDK missing, provider not installed yet).
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Protocol


class SpanProtocol(Protocol):
    def set_attribute(self, key: str, value: Any) -> None:
        ...


class TracerProtocol(Protocol):
    def start_span(
        self, name: str, attributes: dict[str, Any] | None = None
    ) -> Iterator[SpanProtocol]:
        ...


class NoOpSpan:
    def set_attribute(self, key: str, value: Any) -> None:
        pass


class NoOpTracer:
    """Used whenever tracing is off. Exceptions pass straight through."""

    @contextmanager
    def start_span(
        self, name: str, attributes: dict[str, Any] | None = None
    ) -> Iterator[NoOpSpan]:
        yield NoOpSpan()


def _otel_value(value: Any) -> Any:
    """OTel accepts primitives and homogeneous sequences; None is dropped."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        return [v for v in value if v is not None]
    return str(value)


class _EngineSpan:
    """Drops None attributes instead of letting the SDK warn about them."""

    def __init__(self, span: Any):
        self._span = span

    def set_attribute(self, key: str, value: Any) -> None:
        value = _otel_value(value)
        if value is not None:
            self._span.set_attribute(key, value)


class OTelTracer:
    """
    Wraps an OpenTelemetry tracer.

    start_as_current_span already records an escaping exception and marks the
    span as errored, so the engine never sets status itself.
    """

    def __init__(self, tracer: Any):
        self._tracer = tracer

    @contextmanager
    def start_span(
        self, name: str, attributes: dict[str, Any] | None = None
    ) -> Iterator[_EngineSpan]:
        cleaned = {
            key: _otel_value(value)
            for key, value in (attributes or {}).items()
            if value is not None
        }
        with self._tracer.start_as_current_span(name, attributes=cleaned) as span:
            yield _EngineSpan(span)


_tracer: TracerProtocol | None = None


def get_tracer(scope: str = "local_rag") -> TracerProtocol:
    """Return the process tracer; the scope name only matters on first use."""
    global _tracer
    if _tracer is not None:
        return _tracer

    from local_rag.observability.config import get_tracing_config

    if not get_tracing_config().enabled:
        _tracer = NoOpTracer()
        return _tracer

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
    except ImportError:
        _tracer = NoOpTracer()
        return _tracer

    if not isinstance(trace.get_tracer_provider(), TracerProvider):
        # init_tracing() has not run yet; ask again next time
        return NoOpTracer()

    _tracer = OTelTracer(trace.get_tracer(scope))
    return _tracer


def reset_tracer() -> None:
    global _tracer
    _tracer = None
