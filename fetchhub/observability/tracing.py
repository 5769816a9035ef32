"""OpenTelemetry tracing setup.

Configures an OTLP gRPC exporter (Jaeger/Tempo/Collector compatible) when
OTEL_EXPORTER_OTLP_ENDPOINT is set.  Without an endpoint, or without the
``otlp`` extra installed, spans are still created but never exported, so
the hub runs without a collector present.
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter

logger = logging.getLogger(__name__)

TRACER_NAME = "fetchhub"


def setup_tracing(service_name: str, exporter: Optional[SpanExporter] = None) -> TracerProvider:
    """Install a global TracerProvider for *service_name*.

    *exporter* wins over the environment; tests pass an in-memory exporter.
    """
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")
    if exporter is None and endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )
            exporter = OTLPSpanExporter(endpoint=endpoint, insecure=True)
            logger.info("otel_tracing_configured", extra={"endpoint": endpoint})
        except ImportError as exc:
            logger.warning("otel_exporter_unavailable", extra={"error": str(exc)})

    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    return provider


def get_tracer(name: str = TRACER_NAME) -> trace.Tracer:
    return trace.get_tracer(name)
