"""OpenTelemetry metrics instruments for contact resolution and sync.

Instruments are created lazily from the global MeterProvider, so callers do
not need to pass a Meter around. When OTEL_EXPORTER_OTLP_ENDPOINT is not set,
all recordings are silent no-ops.

Instruments
-----------
  rolodex.contacts.observed_total        Counter (label: classifier=quick|ai|fallback)
  rolodex.contacts.auto_verified_total   Counter
  rolodex.contacts.queued_total          Counter
  rolodex.classifier.fallback_total      Counter
  rolodex.verification.actions_total     Counter (label: action)
  rolodex.sync.runs_total                Counter (labels: mode, status)
  rolodex.sync.records_total             Counter (label: outcome)
  rolodex.sync.duration_ms               Histogram
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "rolodex"


def init_metrics(service_name: str = "rolodex") -> metrics.Meter:
    """Install an OTLP-exporting MeterProvider when an endpoint is configured."""
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    resource = Resource.create({"service.name": service_name})
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=endpoint), export_interval_millis=15_000
    )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)
    return metrics.get_meter(_METER_NAME)


def get_meter() -> metrics.Meter:
    return metrics.get_meter(_METER_NAME)


def contacts_observed_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="rolodex.contacts.observed_total",
        description="Sender occurrences processed by the identity pipeline",
        unit="occurrences",
    )


def contacts_auto_verified_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="rolodex.contacts.auto_verified_total",
        description="Contacts verified automatically after repeated high-confidence sightings",
        unit="contacts",
    )


def contacts_queued_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="rolodex.contacts.queued_total",
        description="Contacts placed in the human verification queue",
        unit="contacts",
    )


def classifier_fallback_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="rolodex.classifier.fallback_total",
        description="AI classification failures degraded to the heuristic result",
        unit="calls",
    )


def verification_actions_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="rolodex.verification.actions_total",
        description="Reviewer actions applied to verification queue items",
        unit="actions",
    )


def sync_runs_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="rolodex.sync.runs_total",
        description="Directory sync runs by mode and terminal status",
        unit="runs",
    )


def sync_records_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="rolodex.sync.records_total",
        description="Directory records processed by outcome",
        unit="records",
    )


def contacts_exported_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="rolodex.sync.exported_total",
        description="Contacts pushed to an external directory by action",
        unit="contacts",
    )


def sync_duration_ms() -> metrics.Histogram:
    return get_meter().create_histogram(
        name="rolodex.sync.duration_ms",
        description="Wall-clock duration of one directory sync run",
        unit="ms",
    )
