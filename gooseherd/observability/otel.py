"""OpenTelemetry + Prometheus fallback wiring for the Gooseherd dashboard."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from gooseherd import config

logger = logging.getLogger("gooseherd.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_parse_counter: Any | None = None
_parse_latency_hist: Any | None = None
_parse_events_hist: Any | None = None
_log_read_failure_counter: Any | None = None

_prom_enabled = False
_prom_parse_counter: Any | None = None
_prom_parse_latency_hist: Any | None = None
_prom_log_read_failure_counter: Any | None = None


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
    global _parse_counter, _parse_latency_hist, _parse_events_hist, _log_read_failure_counter
    global _prom_enabled, _prom_parse_counter, _prom_parse_latency_hist, _prom_log_read_failure_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (GOOSEHERD_OTEL_ENABLED=false)")
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
    service_name = config.OTEL_SERVICE_NAME or "gooseherd-dashboard"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "gooseherd",
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
    meter = metrics.get_meter("gooseherd.dashboard")

    _parse_counter = meter.create_counter(
        "gooseherd_log_parses_total",
        unit="1",
        description="Count of run log parses",
    )
    _parse_latency_hist = meter.create_histogram(
        "gooseherd_log_parse_latency_ms",
        unit="ms",
        description="Latency of run log parses",
    )
    _parse_events_hist = meter.create_histogram(
        "gooseherd_log_parse_events",
        unit="1",
        description="Events emitted per run log parse",
    )
    _log_read_failure_counter = meter.create_counter(
        "gooseherd_log_read_failures_total",
        unit="1",
        description="Run logs that could not be read",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("gooseherd.dashboard")
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_parse_counter = Counter(
                "gooseherd_log_parses_total",
                "Count of run log parses",
                ["result"],
            )
            _prom_parse_latency_hist = Histogram(
                "gooseherd_log_parse_latency_ms",
                "Latency of run log parses",
                ["result"],
            )
            _prom_log_read_failure_counter = Counter(
                "gooseherd_log_read_failures_total",
                "Run logs that could not be read",
                ["endpoint"],
            )
            _prom_enabled = True
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
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
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception as exc:  # noqa: BLE001
        logger.debug("FastAPI uninstrument failed: %s", exc)
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _enabled = False


def is_enabled() -> bool:
    return _enabled


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


def record_parse(result: str, duration_ms: float, event_count: int) -> None:
    labels = {"result": result or "unknown"}
    if _enabled and _parse_counter is not None:
        _parse_counter.add(1, labels)
    if _enabled and _parse_latency_hist is not None:
        _parse_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _enabled and _parse_events_hist is not None:
        _parse_events_hist.record(max(0, int(event_count)), labels)
    if _prom_enabled and _prom_parse_counter is not None:
        _prom_parse_counter.labels(**labels).inc()
    if _prom_enabled and _prom_parse_latency_hist is not None:
        _prom_parse_latency_hist.labels(**labels).observe(max(0.0, float(duration_ms)))


def record_log_read_failure(endpoint: str) -> None:
    labels = {"endpoint": endpoint or "unknown"}
    if _enabled and _log_read_failure_counter is not None:
        _log_read_failure_counter.add(1, labels)
    if _prom_enabled and _prom_log_read_failure_counter is not None:
        _prom_log_read_failure_counter.labels(**labels).inc()
