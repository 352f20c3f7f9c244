from __future__ import annotations

import os

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.celery import CeleryInstrumentor
from opentelemetry.instrumentation.flask import FlaskInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

tracer = trace.get_tracer("vidpipe")


def tracing_enabled() -> bool:
    return os.environ.get("VIDPIPE_OTEL_ENABLED", "false").lower() == "true"


def configure_tracing(app=None) -> bool:
    if not tracing_enabled():
        return False

    service_name = os.environ.get("VIDPIPE_OTEL_SERVICE_NAME", "vidpipe")
    exporter_otlp_endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT", "")

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    if exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=exporter_otlp_endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(exporter))
    else:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)

    if app is not None:
        FlaskInstrumentor().instrument_app(app)

    CeleryInstrumentor().instrument()
    return True
