"""
Span API used by the harness and orchestrator.

Call sites only see start_span / set_attribute / set_status /
record_exception. Until init_tracing() installs an SDK provider they get
inert spans, so a bench run without tracing pays for nothing but a
context manager.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Protocol

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace import StatusCode


# ---------------------------------------------------------------------------
# PROTOCOLS
# ---------------------------------------------------------------------------


class SpanProtocol(Protocol):
    """What a bench span accepts while it is open."""

    def set_attribute(self, key: str, value: Any) -> None:
        ...

    def set_status(self, status: str, description: str | None = None) -> None:
        """`status` is "ok" or "error"; the description is kept for errors only."""
        ...

    def record_exception(self, exception: BaseException) -> None:
        ...


class TracerProtocol(Protocol):
    @contextmanager
    def start_span(self, name: str, attributes: dict[str, Any] | None = None) -> Iterator[SpanProtocol]:
        """Open `name` as a child of the current span for the duration of the block."""
        ...


# ---------------------------------------------------------------------------
# TRACING OFF
# ---------------------------------------------------------------------------


class NoOpSpan:
    """Accepts every call and keeps nothing."""

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def set_status(self, status: str, description: str | None = None) -> None:
        pass

    def record_exception(self, exception: BaseException) -> None:
        pass


class NoOpTracer:
    @contextmanager
    def start_span(self, name: str, attributes: dict[str, Any] | None = None) -> Iterator[NoOpSpan]:
        yield NoOpSpan()


# ---------------------------------------------------------------------------
# TRACING ON
# ---------------------------------------------------------------------------


class OTelSpan:
    """Bench span backed by an SDK span; maps "ok"/"error" onto StatusCode."""

    def __init__(self, span: Any):
        self._span = span

    def set_attribute(self, key: str, value: Any) -> None:
        self._span.set_attribute(key, value)

    def set_status(self, status: str, description: str | None = None) -> None:
        code = StatusCode.OK if status == "ok" else StatusCode.ERROR
        # OTel ignores descriptions on OK statuses
        self._span.set_status(code, description if code == StatusCode.ERROR else None)

    def record_exception(self, exception: BaseException) -> None:
        self._span.record_exception(exception)


class OTelTracer:
    """
    Opens SDK spans as the current span.

    Exceptions are not recorded automatically: run_case decides which
    failures are case-scoped and records them itself.
    """

    def __init__(self, tracer: Any):
        self._tracer = tracer

    @contextmanager
    def start_span(self, name: str, attributes: dict[str, Any] | None = None) -> Iterator[OTelSpan]:
        with self._tracer.start_as_current_span(
            name,
            attributes=attributes,
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            yield OTelSpan(span)


# ---------------------------------------------------------------------------
# FACTORY
# ---------------------------------------------------------------------------


_tracer: TracerProtocol | None = None


def get_tracer(service_name: str = "instrument-bench") -> TracerProtocol:
    """
    The tracer bench spans are opened on.

    An OTelTracer bound to `service_name` once init_tracing() has set an
    SDK TracerProvider, cached from then on. Before that a fresh
    NoOpTracer per call.
    """
    global _tracer
    if _tracer is not None:
        return _tracer

    provider = trace.get_tracer_provider()
    if not isinstance(provider, TracerProvider):
        # not cached, so a later init_tracing() takes effect
        return NoOpTracer()

    _tracer = OTelTracer(trace.get_tracer(service_name))
    return _tracer


def reset_tracer() -> None:
    """Forget the cached tracer; shutdown_tracing() and the tests call this."""
    global _tracer
    _tracer = None
