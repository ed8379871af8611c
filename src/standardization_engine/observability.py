"""
OpenTelemetry tracing and logging setup.
"""

import logging
from typing import Optional, Union

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_observability(
    service_name: str = "standardization-engine", console_export: bool = True
) -> None:
    """
    Configure OpenTelemetry tracing.

    Args:
        service_name: Name of the service for tracing
        console_export: Whether to export traces to console (useful for dev/testing)
    """
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    if console_export:
        # Export to console for development/debugging
        console_exporter = ConsoleSpanExporter()
        provider.add_span_processor(BatchSpanProcessor(console_exporter))

    # Set as global default
    trace.set_tracer_provider(provider)


def setup_logging(
    level: Union[int, str] = logging.INFO, logger_name: Optional[str] = None
) -> logging.Logger:
    """
    Attach a console handler to the package logger.

    Args:
        level: Log level name or number
        logger_name: Logger to configure; defaults to the package logger

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name or "standardization_engine")
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    logger.setLevel(level)

    # Avoid adding handlers multiple times
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(handler)
    return logger
