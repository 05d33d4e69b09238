"""Logging and tracing setup for the helpdesk API.

Ticket lifecycle messages are emitted under ``helpdesk.tickets`` and can be
tuned separately from the rest of the application through
``HELPDESK_TICKET_LOG_LEVEL``.
"""

from __future__ import annotations

import logging
from logging.config import dictConfig

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from helpdesk.core.config import Settings

APP_LOGGER = "helpdesk"
TICKET_LOGGER = "helpdesk.tickets"


def parse_headers(header_string: str | None) -> dict[str, str]:
    """Parse ``key=value,key2=value2`` OTLP header strings."""

    if not header_string:
        return {}
    headers: dict[str, str] = {}
    for item in header_string.split(","):
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            continue
        headers[key.strip()] = value.strip()
    return headers


def _level(name: str | None, fallback: int = logging.INFO) -> int:
    if not name:
        return fallback
    return getattr(logging, name.upper(), fallback)


def configure_logging(settings: Settings) -> logging.Logger:
    """Configure the application and ticket loggers from settings."""

    level = _level(settings.log_level)
    ticket_level = _level(settings.ticket_log_level, level)
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": f"[{settings.environment}] {settings.log_format}",
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                }
            },
            "root": {
                "handlers": ["default"],
                "level": level,
            },
            "loggers": {
                APP_LOGGER: {"level": level},
                TICKET_LOGGER: {"level": ticket_level},
            },
        }
    )
    return logging.getLogger(APP_LOGGER)


def build_resource(settings: Settings) -> Resource:
    return Resource(
        attributes={
            "service.name": settings.otel_service_name,
            "service.namespace": settings.app_name,
            "deployment.environment": settings.environment,
            "helpdesk.storage_backend": settings.storage_backend,
            "helpdesk.ticket_number_prefix": settings.ticket_number_prefix,
        }
    )


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP exporting tracer provider when tracing is enabled.

    Returns ``None`` when tracing is disabled or an SDK provider is already
    installed for this process.
    """

    if not settings.otel_enabled:
        return None
    if isinstance(trace.get_tracer_provider(), TracerProvider):
        return None

    provider = TracerProvider(resource=build_resource(settings))

    exporter_kwargs: dict[str, object] = {}
    if settings.otel_exporter_otlp_endpoint:
        exporter_kwargs["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = parse_headers(settings.otel_exporter_otlp_headers)
    if headers:
        exporter_kwargs["headers"] = headers

    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_kwargs)))
    trace.set_tracer_provider(provider)
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush and shut down a provider returned by :func:`init_tracer`."""

    if provider is not None:
        provider.shutdown()
