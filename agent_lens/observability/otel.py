"""Tracing and metrics for session parsing.

Everything here is opt-in. Unless ``AGENT_LENS_OTEL_ENABLED`` is set, no
OpenTelemetry package is imported and every recorder is a no-op.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

from agent_lens import config

logger = logging.getLogger("agent_lens.observability")

_SESSIONS_PARSED = ("agent_lens_sessions_parsed_total", "Count of session parse operations")
_PARSE_LATENCY = ("agent_lens_parse_latency_ms", "Latency of session parse operations")
_PARSER_FAILURES = ("agent_lens_parser_failures_total", "Count of session files that could not be parsed")


@dataclass
class _Instruments:
    sessions_parsed: Any = None
    parse_latency: Any = None
    parser_failures: Any = None


_initialized = False
_tracer: Any | None = None
_providers: list[Any] = []
_otel = _Instruments()
_prom: _Instruments | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    endpoint = endpoint.rstrip("/")
    if endpoint.endswith("/v1"):
        # signal_path already starts with /v1
        return endpoint + signal_path[len("/v1"):]
    return endpoint + signal_path


def _label(value: str) -> str:
    return (value or "").strip() or "unknown"


def _setup_otel() -> bool:
    global _tracer, _otel

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry packages missing, telemetry stays off: %s", exc)
        return False

    resource = Resource.create({
        "service.name": config.OTEL_SERVICE_NAME or "agent-lens",
        "service.namespace": "agent-lens",
    })

    span_exporter = OTLPSpanExporter(
        endpoint=_normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces") or None
    )
    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    trace.set_tracer_provider(trace_provider)

    metric_exporter = OTLPMetricExporter(
        endpoint=_normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics") or None
    )
    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[PeriodicExportingMetricReader(metric_exporter)],
    )
    metrics.set_meter_provider(meter_provider)

    meter = meter_provider.get_meter("agent_lens.parsers")
    _otel = _Instruments(
        sessions_parsed=meter.create_counter(_SESSIONS_PARSED[0], unit="1", description=_SESSIONS_PARSED[1]),
        parse_latency=meter.create_histogram(_PARSE_LATENCY[0], unit="ms", description=_PARSE_LATENCY[1]),
        parser_failures=meter.create_counter(_PARSER_FAILURES[0], unit="1", description=_PARSER_FAILURES[1]),
    )
    _providers.extend([meter_provider, trace_provider])
    _tracer = trace_provider.get_tracer("agent_lens.parsers")
    return True


def _setup_prometheus(port: int) -> None:
    global _prom

    # Collectors and the HTTP server are process-wide and outlive shutdown().
    if _prom is not None:
        return
    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(port)
        _prom = _Instruments(
            sessions_parsed=Counter(*_SESSIONS_PARSED, ["format", "result"]),
            parse_latency=Histogram(*_PARSE_LATENCY, ["format", "result"]),
            parser_failures=Counter(*_PARSER_FAILURES, ["format"]),
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("Prometheus fallback not started: %s", exc)
        _prom = None
        return
    logger.info("Prometheus fallback metrics on port %s", port)


def initialize() -> None:
    """Set up exporters; repeat calls before shutdown() are ignored."""
    global _initialized

    if _initialized:
        return
    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("Telemetry disabled (AGENT_LENS_OTEL_ENABLED=false)")
        return
    if not _setup_otel():
        return
    if config.PROM_PORT > 0:
        _setup_prometheus(config.PROM_PORT)
    logger.info(
        "Telemetry exporting to %s as %s",
        config.OTEL_ENDPOINT,
        config.OTEL_SERVICE_NAME,
    )


def shutdown() -> None:
    """Flush and close exporters so a later initialize() starts fresh."""
    global _initialized, _tracer, _otel

    while _providers:
        provider = _providers.pop()
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _tracer = None
    _otel = _Instruments()
    _initialized = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def record_ingestion(fmt: str, result: str, duration_ms: float) -> None:
    labels = {"format": _label(fmt), "result": _label(result)}
    duration = max(0.0, float(duration_ms))
    if _otel.sessions_parsed is not None:
        _otel.sessions_parsed.add(1, labels)
    if _otel.parse_latency is not None:
        _otel.parse_latency.record(duration, labels)
    if _prom is not None:
        _prom.sessions_parsed.labels(**labels).inc()
        _prom.parse_latency.labels(**labels).observe(duration)


def record_parser_failure(fmt: str) -> None:
    labels = {"format": _label(fmt)}
    if _otel.parser_failures is not None:
        _otel.parser_failures.add(1, labels)
    if _prom is not None:
        _prom.parser_failures.labels(**labels).inc()
