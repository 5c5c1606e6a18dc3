"""
Observability Module - OpenTelemetry tracing for benchmark runs.

USAGE:
------
# At application startup:
from instrument_bench.observability import init_tracing

init_tracing(config)  # no-op unless config.tracing_enabled

# In code that needs tracing:
from instrument_bench.observability import get_tracer

tracer = get_tracer()
with tracer.start_span("bench_case", attributes={"bench.case.id": key}) as span:
    # ... do work ...
    span.set_attribute("bench.case.status", "passed")

Spans go to the OTLP/HTTP endpoint from the config, or to the console
when tracing is enabled without an endpoint.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from instrument_bench.observability.tracer import (
    TracerProtocol,
    SpanProtocol,
    NoOpTracer,
    NoOpSpan,
    OTelTracer,
    OTelSpan,
    get_tracer,
    reset_tracer,
)
from instrument_bench.observability.attributes import (
    # Batch
    BENCH_RUN_ID,
    BENCH_RUN_CASES_COUNT,
    BENCH_RUN_JOBS,
    BENCH_RUN_EXIT_CODE,
    # Case
    BENCH_CASE_ID,
    BENCH_CASE_STATUS,
    BENCH_CASE_ERROR,
    BENCH_CASE_ATTEMPTS,
    # Tool
    BENCH_TOOL,
    BENCH_TOOL_EXIT_CODE,
    BENCH_TARGET_EXIT_CODE,
    BENCH_TARGET_TIMED_OUT,
    BENCH_ARTIFACT_COUNT,
    # Analysis
    BENCH_REGRESSION_STATUS,
    BENCH_REGRESSION_RULE,
    # Helpers
    bench_case_attributes,
    tool_run_attributes,
)

if TYPE_CHECKING:
    from instrument_bench.config import HarnessConfig

logger = logging.getLogger(__name__)

_provider: TracerProvider | None = None


def init_tracing(config: HarnessConfig) -> bool:
    """
    Initialize OpenTelemetry tracing.

    This should be called once at application startup.

    Args:
        config: Harness config; only tracing_enabled and otlp_endpoint are read

    Returns:
        True if tracing was initialized, False if disabled
    """
    global _provider
    if _provider is not None:
        return True

    if not config.tracing_enabled:
        logger.debug("Tracing disabled")
        return False

    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: config.service_name}))
    if config.otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=config.otlp_endpoint)
        logger.info(f"Exporting traces to {config.otlp_endpoint}")
    else:
        exporter = ConsoleSpanExporter()
        logger.info("Exporting traces to the console")
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    _provider = provider
    reset_tracer()
    return True


def shutdown_tracing() -> None:
    """Flush pending spans and drop the cached tracer."""
    global _provider

    if _provider is None:
        return

    _provider.shutdown()
    reset_tracer()
    _provider = None


__all__ = [
    # Initialization
    "init_tracing",
    "shutdown_tracing",
    # Tracer
    "TracerProtocol",
    "SpanProtocol",
    "NoOpTracer",
    "NoOpSpan",
    "OTelTracer",
    "OTelSpan",
    "get_tracer",
    "reset_tracer",
    # Attributes
    "BENCH_RUN_ID",
    "BENCH_RUN_CASES_COUNT",
    "BENCH_RUN_JOBS",
    "BENCH_RUN_EXIT_CODE",
    "BENCH_CASE_ID",
    "BENCH_CASE_STATUS",
    "BENCH_CASE_ERROR",
    "BENCH_CASE_ATTEMPTS",
    "BENCH_TOOL",
    "BENCH_TOOL_EXIT_CODE",
    "BENCH_TARGET_EXIT_CODE",
    "BENCH_TARGET_TIMED_OUT",
    "BENCH_ARTIFACT_COUNT",
    "BENCH_REGRESSION_STATUS",
    "BENCH_REGRESSION_RULE",
    # Helpers
    "bench_case_attributes",
    "tool_run_attributes",
]
