#!/usr/bin/env python3
"""
OpenTelemetry tracing for the ingestion workers.

Spans cover the units of work worth timing: HTTP fetches, scrapes, feed
refreshes, database operations, job runs and cron ticks. Without an exporter
the spans are still created, so any auto-instrumentation that installs its
own provider picks them up.

Environment variables:
  - OTEL_SERVICE_NAME: service.name resource attribute (default feed-ingest)
  - OTEL_ENVIRONMENT: deployment.environment resource attribute
  - OTEL_CONSOLE_EXPORT=true: print finished spans to stdout
  - DISABLE_TELEMETRY=true: skip provider setup entirely
"""

from __future__ import annotations

import atexit
import functools
import inspect
import logging
import os
import threading
from typing import Any, Callable, Dict, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Status, StatusCode

DEFAULT_SERVICE_NAME = "feed-ingest"

_lock = threading.Lock()
_provider: Optional[TracerProvider] = None

_logger = logging.getLogger(__name__)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "false").strip().lower() == "true"


def init_telemetry(service_name: Optional[str] = None) -> None:
    """Install the tracer provider once per process. Later calls do nothing."""
    global _provider
    if _env_flag("DISABLE_TELEMETRY") or _provider is not None:
        return

    with _lock:
        if _provider is not None:
            return

        current = trace.get_tracer_provider()
        if isinstance(current, TracerProvider):
            # Someone (e.g. opentelemetry-instrument) already configured tracing
            provider = current
        else:
            attributes = {"service.name": service_name or os.environ.get("OTEL_SERVICE_NAME", DEFAULT_SERVICE_NAME)}
            environment = os.environ.get("OTEL_ENVIRONMENT")
            if environment:
                attributes["deployment.environment"] = environment
            provider = TracerProvider(resource=Resource.create(attributes))
            trace.set_tracer_provider(provider)

        if _env_flag("OTEL_CONSOLE_EXPORT"):
            provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
            _logger.info("Tracing to console")

        _provider = provider
        # shutdown() flushes the batch processor
        atexit.register(provider.shutdown)


def get_tracer(name: str = DEFAULT_SERVICE_NAME):
    return trace.get_tracer(name)


def trace_span(
    span_name: str | None = None,
    *,
    tracer_name: str | None = None,
    static_attrs: Dict[str, Any] | None = None,
    attr_from_args: Optional[Callable[..., Dict[str, Any]]] = None,
):
    """Run the decorated function (sync or async) inside a span.

    Args:
        span_name: Span name; defaults to "<module>.<function>"
        tracer_name: Tracer to use; defaults to the span name's first dotted part
        static_attrs: Attributes set on every span
        attr_from_args: Called with the function's arguments, returns more attributes

    An exception escaping the function is recorded on the span, which is
    marked as an error, and re-raised as is.
    """

    def _decorator(func):
        name = span_name or f"{func.__module__}.{func.__name__}"
        tracer_key = tracer_name or name.split(".")[0] or DEFAULT_SERVICE_NAME

        def _start():
            return get_tracer(tracer_key).start_as_current_span(
                name, record_exception=False, set_status_on_exception=False
            )

        def _annotate(span, args, kwargs):
            attributes = dict(static_attrs or {})
            if attr_from_args is not None:
                try:
                    attributes.update(attr_from_args(*args, **kwargs) or {})
                except Exception as e:
                    _logger.debug("No span attributes for %s: %s", name, e)
            for key, value in attributes.items():
                span.set_attribute(key, value)

        def _fail(span, error):
            span.record_exception(error)
            span.set_status(Status(StatusCode.ERROR, str(error)))

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def _async_wrapper(*args, **kwargs):
                with _start() as span:
                    _annotate(span, args, kwargs)
                    try:
                        return await func(*args, **kwargs)
                    except Exception as e:
                        _fail(span, e)
                        raise

            return _async_wrapper

        @functools.wraps(func)
        def _wrapper(*args, **kwargs):
            with _start() as span:
                _annotate(span, args, kwargs)
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    _fail(span, e)
                    raise

        return _wrapper

    return _decorator
