"""OpenTelemetry + Prometheus fallback wiring for SessionLens."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from sessionlens import config

logger = logging.getLogger("sessionlens.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_reconstruction_counter: Any | None = None
_reconstruction_latency_hist: Any | None = None
_diagnostic_counter: Any | None = None
_tool_calls_counter: Any | None = None
_tool_duration_hist: Any | None = None
_tokens_counter: Any | None = None
_cost_counter: Any | None = None

_prom_enabled = False
_prom_reconstruction_counter: Any | None = None
_prom_reconstruction_latency_hist: Any | None = None
_prom_diagnostic_counter: Any | None = None
_prom_tool_calls_counter: Any | None = None
_prom_tokens_counter: Any | None = None
_prom_cost_counter: Any | None = None


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


def _prom_labels(*, project_id: str, **extra: str) -> dict[str, str]:
    labels = {"project": project_id or "unknown"}
    for key, value in extra.items():
        labels[key] = (value or "").strip() or "unknown"
    return labels


def _start_prometheus() -> None:
    global _prom_enabled
    global _prom_reconstruction_counter, _prom_reconstruction_latency_hist, _prom_diagnostic_counter
    global _prom_tool_calls_counter, _prom_tokens_counter, _prom_cost_counter

    try:
        from prometheus_client import Counter, Histogram, start_http_server
    except ImportError as exc:
        logger.warning("Prometheus fallback unavailable: %s", exc)
        return

    try:
        start_http_server(config.PROM_PORT)
    except OSError as exc:
        logger.warning("Prometheus fallback not started: %s", exc)
        return

    _prom_reconstruction_counter = Counter(
        "sessionlens_reconstructions_total",
        "Count of session reconstructions",
        ["entity", "result", "project"],
    )
    _prom_reconstruction_latency_hist = Histogram(
        "sessionlens_reconstruction_latency_ms",
        "Latency of session reconstructions",
        ["entity", "result", "project"],
    )
    _prom_diagnostic_counter = Counter(
        "sessionlens_parse_diagnostics_total",
        "Count of skipped log lines and unresolved references",
        ["parser", "reason", "project"],
    )
    _prom_tool_calls_counter = Counter(
        "sessionlens_tool_calls_total",
        "Tool call outcomes observed while reconstructing sessions",
        ["tool", "status", "project"],
    )
    _prom_tokens_counter = Counter(
        "sessionlens_tokens_total",
        "Token totals by model",
        ["model", "direction", "project"],
    )
    _prom_cost_counter = Counter(
        "sessionlens_cost_usd_total",
        "Cost totals by model",
        ["model", "project"],
    )
    _prom_enabled = True
    logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _reconstruction_counter, _reconstruction_latency_hist, _diagnostic_counter
    global _tool_calls_counter, _tool_duration_hist, _tokens_counter, _cost_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (SESSIONLENS_OTEL_ENABLED=false)")
        if config.PROM_PORT > 0:
            _start_prometheus()
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
        if config.PROM_PORT > 0:
            _start_prometheus()
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "sessionlens"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "sessionlens",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("sessionlens.engine")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("sessionlens.engine")

    _reconstruction_counter = meter.create_counter(
        "sessionlens_reconstructions_total",
        unit="1",
        description="Count of session reconstructions",
    )
    _reconstruction_latency_hist = meter.create_histogram(
        "sessionlens_reconstruction_latency_ms",
        unit="ms",
        description="Latency of session reconstructions",
    )
    _diagnostic_counter = meter.create_counter(
        "sessionlens_parse_diagnostics_total",
        unit="1",
        description="Count of skipped log lines and unresolved references",
    )
    _tool_calls_counter = meter.create_counter(
        "sessionlens_tool_calls_total",
        unit="1",
        description="Tool call outcomes observed while reconstructing sessions",
    )
    _tool_duration_hist = meter.create_histogram(
        "sessionlens_tool_duration_ms",
        unit="ms",
        description="Observed tool execution durations",
    )
    _tokens_counter = meter.create_counter(
        "sessionlens_tokens_total",
        unit="1",
        description="Token totals by model",
    )
    _cost_counter = meter.create_counter(
        "sessionlens_cost_usd_total",
        unit="usd",
        description="Cost totals by model",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        _start_prometheus()

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
        _fastapi_instrumentor.uninstrument_app(app)
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Telemetry provider shutdown failed: %s", exc)
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


def record_reconstruction(entity: str, result: str, duration_ms: float, *, project_id: str) -> None:
    labels = {
        "entity": entity or "unknown",
        "result": result or "unknown",
        "project_id": project_id or "unknown",
    }
    if _enabled and _reconstruction_counter is not None:
        _reconstruction_counter.add(1, labels)
    if _enabled and _reconstruction_latency_hist is not None:
        _reconstruction_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_reconstruction_counter is not None:
        prom = _prom_labels(project_id=project_id, entity=entity, result=result)
        _prom_reconstruction_counter.labels(**prom).inc()
    if _prom_enabled and _prom_reconstruction_latency_hist is not None:
        prom = _prom_labels(project_id=project_id, entity=entity, result=result)
        _prom_reconstruction_latency_hist.labels(**prom).observe(max(0.0, float(duration_ms)))


def record_parse_diagnostic(parser: str, reason: str, *, project_id: str = "", count: int = 1) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    labels = {
        "parser": parser or "unknown",
        "reason": reason or "unknown",
        "project_id": project_id or "unknown",
    }
    if _enabled and _diagnostic_counter is not None:
        _diagnostic_counter.add(safe_count, labels)
    if _prom_enabled and _prom_diagnostic_counter is not None:
        prom = _prom_labels(project_id=project_id, parser=parser, reason=reason)
        _prom_diagnostic_counter.labels(**prom).inc(safe_count)


def record_tool_result(tool: str, status: str, *, project_id: str = "", count: int = 1, duration_ms: float = 0.0) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    labels = {
        "tool": tool or "unknown",
        "status": status or "unknown",
        "project_id": project_id or "unknown",
    }
    if _enabled and _tool_calls_counter is not None:
        _tool_calls_counter.add(safe_count, labels)
    if _enabled and _tool_duration_hist is not None and duration_ms > 0:
        _tool_duration_hist.record(float(duration_ms), labels)
    if _prom_enabled and _prom_tool_calls_counter is not None:
        prom = _prom_labels(project_id=project_id, tool=tool, status=status)
        _prom_tool_calls_counter.labels(**prom).inc(safe_count)


def record_token_cost(
    *,
    project_id: str,
    model: str,
    token_input: int,
    token_output: int,
    cost_usd: float | None,
) -> None:
    labels_base = {
        "model": (model or "unknown").strip() or "unknown",
        "project_id": project_id or "unknown",
    }
    in_tokens = max(0, int(token_input))
    out_tokens = max(0, int(token_output))
    cost = float(cost_usd or 0.0)
    if _enabled and _tokens_counter is not None:
        if in_tokens > 0:
            _tokens_counter.add(in_tokens, {**labels_base, "direction": "input"})
        if out_tokens > 0:
            _tokens_counter.add(out_tokens, {**labels_base, "direction": "output"})
    if _enabled and _cost_counter is not None and cost > 0:
        _cost_counter.add(cost, labels_base)

    if _prom_enabled and _prom_tokens_counter is not None:
        prom_base = _prom_labels(project_id=project_id, model=model)
        if in_tokens > 0:
            _prom_tokens_counter.labels(**{**prom_base, "direction": "input"}).inc(in_tokens)
        if out_tokens > 0:
            _prom_tokens_counter.labels(**{**prom_base, "direction": "output"}).inc(out_tokens)
    if _prom_enabled and _prom_cost_counter is not None and cost > 0:
        _prom_cost_counter.labels(**_prom_labels(project_id=project_id, model=model)).inc(cost)
