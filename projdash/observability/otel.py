"""OpenTelemetry + Prometheus fallback wiring for the projdash backend."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Counter, Histogram, start_http_server

from projdash import config

logger = logging.getLogger("projdash.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_scan_counter: Any | None = None
_scan_latency_hist: Any | None = None
_scan_projects_hist: Any | None = None
_command_failure_counter: Any | None = None

_prom_enabled = False
_prom_scan_counter: Any | None = None
_prom_scan_latency_hist: Any | None = None
_prom_scan_projects_hist: Any | None = None
_prom_command_failure_counter: Any | None = None


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


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _scan_counter, _scan_latency_hist, _scan_projects_hist, _command_failure_counter
    global _prom_enabled, _prom_scan_counter, _prom_scan_latency_hist, _prom_scan_projects_hist
    global _prom_command_failure_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (PROJDASH_OTEL_ENABLED=false)")
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "projdash"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "projdash",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("projdash.backend")

    _scan_counter = meter.create_counter(
        "projdash_scans_total",
        unit="1",
        description="Count of project scan cycles",
    )
    _scan_latency_hist = meter.create_histogram(
        "projdash_scan_latency_ms",
        unit="ms",
        description="Latency of project scan cycles",
    )
    _scan_projects_hist = meter.create_histogram(
        "projdash_scan_projects",
        unit="1",
        description="Projects produced per scan cycle",
    )
    _command_failure_counter = meter.create_counter(
        "projdash_git_command_failures_total",
        unit="1",
        description="Count of failed or timed out git commands",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("projdash.backend")
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            start_http_server(config.PROM_PORT)
        except OSError as exc:
            logger.warning("Prometheus fallback not started: %s", exc)
        else:
            _prom_enabled = True
            _prom_scan_counter = Counter(
                "projdash_scans_total",
                "Count of project scan cycles",
                ["kind", "result"],
            )
            _prom_scan_latency_hist = Histogram(
                "projdash_scan_latency_ms",
                "Latency of project scan cycles",
                ["kind"],
            )
            _prom_scan_projects_hist = Histogram(
                "projdash_scan_projects",
                "Projects produced per scan cycle",
                ["kind"],
                buckets=(0, 1, 5, 10, 25, 50, 100, 250),
            )
            _prom_command_failure_counter = Counter(
                "projdash_git_command_failures_total",
                "Count of failed or timed out git commands",
                ["command"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized or not _enabled:
        return
    if app and _fastapi_instrumentor:
        _fastapi_instrumentor.uninstrument_app(app)
    if _meter_provider is not None:
        _meter_provider.shutdown()
    if _trace_provider is not None:
        _trace_provider.shutdown()
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


def record_scan(kind: str, result: str, duration_ms: float, *, project_count: int = 0) -> None:
    labels = {"kind": kind or "unknown", "result": result or "unknown"}
    if _enabled and _scan_counter is not None:
        _scan_counter.add(1, labels)
    if _enabled and _scan_latency_hist is not None:
        _scan_latency_hist.record(max(0.0, float(duration_ms)), {"kind": labels["kind"]})
    if _enabled and _scan_projects_hist is not None and labels["result"] == "ok":
        _scan_projects_hist.record(max(0, int(project_count)), {"kind": labels["kind"]})
    if _prom_enabled and _prom_scan_counter is not None:
        _prom_scan_counter.labels(**labels).inc()
    if _prom_enabled and _prom_scan_latency_hist is not None:
        _prom_scan_latency_hist.labels(kind=labels["kind"]).observe(max(0.0, float(duration_ms)))
    if _prom_enabled and _prom_scan_projects_hist is not None and labels["result"] == "ok":
        _prom_scan_projects_hist.labels(kind=labels["kind"]).observe(max(0, int(project_count)))


def record_command_failure(command: str) -> None:
    name = (command or "").strip() or "unknown"
    if _enabled and _command_failure_counter is not None:
        _command_failure_counter.add(1, {"command": name})
    if _prom_enabled and _prom_command_failure_counter is not None:
        _prom_command_failure_counter.labels(command=name).inc()
