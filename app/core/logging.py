"""Logging and tracing setup for the NPDI portal API.

Ticket lifecycle events (status changes, NPDI hand-offs, rejected guards) are
logged under ``app.tickets``; the traces carry the rule-set version so a
rejected transition can be matched to the rules that were in force.
"""

from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from app.core.config import Settings
from app.tickets.state import RULESET_VERSION

TICKET_LOGGER = "app.tickets"

_provider: TracerProvider | None = None


def parse_key_values(raw: str | None) -> dict[str, str]:
    """Parse ``key=value,key=value`` strings used by OTLP headers and log level overrides."""

    if not raw:
        return {}
    pairs: dict[str, str] = {}
    for item in raw.split(","):
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            continue
        pairs[key.strip()] = value.strip()
    return pairs


def _level_name(value: str, fallback: str) -> str:
    name = value.upper()
    return name if isinstance(logging.getLevelName(name), int) else fallback


def build_logging_config(settings: Settings) -> dict[str, Any]:
    level = _level_name(settings.log_level, "INFO")
    loggers: dict[str, dict[str, Any]] = {TICKET_LOGGER: {"level": level}}
    for name, override in parse_key_values(settings.log_levels).items():
        loggers[name] = {"level": _level_name(override, level)}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": {"format": settings.log_format}},
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
            }
        },
        "root": {"handlers": ["default"], "level": level},
        "loggers": loggers,
    }


def configure_logging(settings: Settings) -> logging.Logger:
    """Apply the logging configuration and return the application logger."""

    config = build_logging_config(settings)
    dictConfig(config)
    logger = logging.getLogger(settings.app_name)
    logger.setLevel(config["root"]["level"])
    return logger


def build_resource(settings: Settings) -> Resource:
    return Resource(
        attributes={
            "service.name": settings.otel_service_name,
            "deployment.environment": settings.environment,
            "npdi.ruleset_version": RULESET_VERSION,
            "npdi.edit_lockout_policy": settings.edit_lockout_policy.value,
        }
    )


def init_tracer(settings: Settings) -> TracerProvider | None:
    """Install an OTLP-exporting tracer provider when tracing is enabled.

    Repeated calls return the provider installed first.
    """

    global _provider

    if not settings.otel_enabled:
        return None
    if _provider is not None:
        return _provider

    exporter_kwargs: dict[str, Any] = {}
    if settings.otel_exporter_otlp_endpoint:
        exporter_kwargs["endpoint"] = settings.otel_exporter_otlp_endpoint
    headers = parse_key_values(settings.otel_exporter_otlp_headers)
    if headers:
        exporter_kwargs["headers"] = headers

    provider = TracerProvider(resource=build_resource(settings))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**exporter_kwargs)))
    trace.set_tracer_provider(provider)
    _provider = provider
    return provider


def shutdown_tracer(provider: TracerProvider | None) -> None:
    """Flush and shut down ``provider``."""

    global _provider

    if provider is None:
        return
    provider.shutdown()
    if provider is _provider:
        _provider = None
