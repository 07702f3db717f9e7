"""OpenTelemetry tracing: provider setup and the span helper used by the engines."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

logger = logging.getLogger(__name__)

SERVICE_NAME = "rolodex"
OTLP_ENDPOINT_ENV = "OTEL_EXPORTER_OTLP_ENDPOINT"

_installed_provider: TracerProvider | None = None


def init_telemetry(service_name: str = SERVICE_NAME) -> trace.Tracer:
    """Install an OTLP-exporting TracerProvider when an endpoint is configured.

    Without ``OTEL_EXPORTER_OTLP_ENDPOINT`` the global no-op provider stays in
    place. Repeated calls reuse the provider installed by the first one.
    """
    global _installed_provider

    endpoint = os.environ.get(OTLP_ENDPOINT_ENV)
    if not endpoint:
        logger.debug("%s not set; tracing disabled", OTLP_ENDPOINT_ENV)
    elif _installed_provider is None:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)
        _installed_provider = provider
        logger.info("Exporting traces to %s", endpoint)
    return trace.get_tracer(service_name)


@contextmanager
def operation_span(
    operation: str, *, owner_id: str | None = None, **attributes: str
) -> Iterator[trace.Span]:
    """Current span ``rolodex.<operation>`` carrying the owner and extra attributes.

    An exception escaping the block is recorded on the span, which ends with
    status ERROR.
    """
    span_attributes = {f"rolodex.{key}": value for key, value in attributes.items()}
    if owner_id is not None:
        span_attributes["rolodex.owner"] = owner_id
    tracer = trace.get_tracer(SERVICE_NAME)
    with tracer.start_as_current_span(
        f"rolodex.{operation}", attributes=span_attributes
    ) as span:
        yield span
