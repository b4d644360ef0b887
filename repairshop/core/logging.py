"""Log and trace setup for the repair shop API.

Package loggers live under ``repairshop``. Database and websocket chatter from
third-party libraries is tuned separately so ticket activity stays readable.
"""

from __future__ import annotations

import logging
from logging.config import dictConfig

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from repairshop import __version__
from repairshop.core.config import Settings

PACKAGE_LOGGER = "repairshop"
TRACER_NAME = "repairshop.tickets"

_provider: TracerProvider | None = None


def _level(name: str, fallback: int = logging.INFO) -> int:
    return getattr(logging, name.upper(), fallback)


def _parse_headers(header_string: str | None) -> dict[str, str]:
    """Parse ``key=value,key=value`` OTLP headers, skipping malformed pairs."""

    headers: dict[str, str] = {}
    for item in (header_string or "").split(","):
        key, sep, value = item.partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def configure_logging(settings: Settings) -> logging.Logger:
    level = _level(settings.log_level)
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"format": settings.log_format}},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "level": level,
                }
            },
            "root": {"handlers": ["console"], "level": level},
            "loggers": {
                PACKAGE_LOGGER: {"level": level},
                "sqlalchemy.engine": {"level": _level(settings.sql_log_level, logging.WARNING)},
                "uvicorn.access": {"level": _level(settings.access_log_level, logging.INFO)},
            },
        }
    )
    return logging.getLogger(PACKAGE_LOGGER)


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP-exporting tracer provider when tracing is enabled.

    Returns ``None`` when tracing is off or a provider is already installed.
    """

    global _provider

    if _provider is not None or not settings.otel_enabled:
        return None

    resource = Resource(
        attributes={
            "service.name": settings.otel_service_name,
            "service.version": __version__,
            "deployment.environment": settings.environment,
        }
    )
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(
        endpoint=settings.otel_exporter_otlp_endpoint,
        headers=_parse_headers(settings.otel_exporter_otlp_headers) or None,
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def get_tracer() -> trace.Tracer:
    """Tracer for ticket lifecycle spans; a no-op until a provider is installed."""

    return trace.get_tracer(TRACER_NAME, __version__)


def shutdown_tracer(provider: TracerProvider | None) -> None:
    global _provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _provider:
        _provider = None
