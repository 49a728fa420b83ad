"""OpenTelemetry + Prometheus fallback wiring for the devarchive server."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from devarchive import config

logger = logging.getLogger("devarchive.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_sync_counter: Any | None = None
_sync_latency_hist: Any | None = None
_sync_entities_counter: Any | None = None
_sync_failure_counter: Any | None = None

_prom_enabled = False
_prom_sync_counter: Any | None = None
_prom_sync_latency_hist: Any | None = None
_prom_sync_entities_counter: Any | None = None
_prom_sync_failure_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _prom_labels(*, host: str, **extra: str) -> dict[str, str]:
    labels = {"host": host or "unknown"}
    for key, value in extra.items():
        labels[key] = (value or "").strip() or "unknown"
    return labels


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _sync_counter, _sync_latency_hist, _sync_entities_counter, _sync_failure_counter
    global _prom_enabled
    global _prom_sync_counter, _prom_sync_latency_hist, _prom_sync_entities_counter, _prom_sync_failure_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (DEVARCHIVE_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "devarchive-server"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "devarchive",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("devarchive.server")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("devarchive.server")

    _sync_counter = meter.create_counter(
        "devarchive_sync_requests_total",
        unit="1",
        description="Sync uploads reconciled, by outcome",
    )
    _sync_latency_hist = meter.create_histogram(
        "devarchive_sync_latency_ms",
        unit="ms",
        description="Wall time spent reconciling one sync upload",
    )
    _sync_entities_counter = meter.create_counter(
        "devarchive_sync_entities_total",
        unit="1",
        description="Entities created or updated by reconciliation",
    )
    _sync_failure_counter = meter.create_counter(
        "devarchive_sync_failures_total",
        unit="1",
        description="Reconciliation failures by stage",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_sync_counter = Counter(
                "devarchive_sync_requests_total",
                "Sync uploads reconciled, by outcome",
                ["result", "host"],
            )
            _prom_sync_latency_hist = Histogram(
                "devarchive_sync_latency_ms",
                "Wall time spent reconciling one sync upload",
                ["result", "host"],
            )
            _prom_sync_entities_counter = Counter(
                "devarchive_sync_entities_total",
                "Entities created or updated by reconciliation",
                ["counter", "host"],
            )
            _prom_sync_failure_counter = Counter(
                "devarchive_sync_failures_total",
                "Reconciliation failures by stage",
                ["stage", "host"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except (ImportError, OSError, ValueError) as exc:
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    if app and _fastapi_instrumentor:
        try:
            _fastapi_instrumentor.uninstrument_app(app)
        except Exception as exc:  # noqa: BLE001
            logger.debug("FastAPI uninstrumentation failed: %s", exc)
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_sync(result: str, duration_ms: float, *, host: str, counters: dict[str, int] | None = None) -> None:
    labels = {"result": result or "unknown", "host": host or "unknown"}
    if _enabled and _sync_counter is not None:
        _sync_counter.add(1, labels)
    if _enabled and _sync_latency_hist is not None:
        _sync_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_sync_counter is not None:
        _prom_sync_counter.labels(**_prom_labels(host=host, result=result)).inc()
    if _prom_enabled and _prom_sync_latency_hist is not None:
        _prom_sync_latency_hist.labels(**_prom_labels(host=host, result=result)).observe(max(0.0, float(duration_ms)))

    for counter, value in (counters or {}).items():
        amount = max(0, int(value))
        if amount == 0:
            continue
        if _enabled and _sync_entities_counter is not None:
            _sync_entities_counter.add(amount, {"counter": counter, "host": host or "unknown"})
        if _prom_enabled and _prom_sync_entities_counter is not None:
            _prom_sync_entities_counter.labels(**_prom_labels(host=host, counter=counter)).inc(amount)


def record_sync_failure(stage: str, *, host: str) -> None:
    labels = {"stage": stage or "unknown", "host": host or "unknown"}
    if _enabled and _sync_failure_counter is not None:
        _sync_failure_counter.add(1, labels)
    if _prom_enabled and _prom_sync_failure_counter is not None:
        _prom_sync_failure_counter.labels(**_prom_labels(host=host, stage=stage)).inc()
