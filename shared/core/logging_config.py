"""
Structured logging configuration
JSON log lines carrying service, location, error and trace context so one
order workflow can be followed across request, persistence and notification
log entries.
"""

import logging
import logging.handlers
import os
import re
import sys
import json
import time
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

# Context variables for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
actor_id_var: ContextVar[Optional[str]] = ContextVar('actor_id', default=None)
# Entity ids bound for the duration of one workflow invocation
order_id_var: ContextVar[Optional[str]] = ContextVar('order_id', default=None)
invoice_id_var: ContextVar[Optional[str]] = ContextVar('invoice_id', default=None)

_CONTEXT_VARS = {
    "request_id": request_id_var,
    "correlation_id": correlation_id_var,
    "actor_id": actor_id_var,
    "order_id": order_id_var,
    "invoice_id": invoice_id_var,
}


def current_context() -> Dict[str, str]:
    """Return the non-empty trace/workflow context values"""
    return {name: var.get() for name, var in _CONTEXT_VARS.items() if var.get()}


class StructuredFormatter(logging.Formatter):
    """
    JSON structured logging formatter
    Compatible with ELK, CloudWatch Insights and Datadog log ingestion
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "@timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": os.getenv('SERVICE_NAME', 'fulfillment-service'),
            "environment": os.getenv('ENVIRONMENT', 'development'),
        }

        trace_context = current_context()
        if trace_context:
            log_obj["trace"] = trace_context

        log_obj["location"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
            "module": record.module
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_obj["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": traceback.format_exception(*record.exc_info)
            }

        if hasattr(record, 'extra_fields'):
            log_obj["custom"] = record.extra_fields

        if hasattr(record, 'duration_ms'):
            log_obj["performance"] = {"duration_ms": record.duration_ms}

        return json.dumps(log_obj, default=str)


class RedactionFilter(logging.Filter):
    """Mask e-mail addresses and payment references before they reach a handler"""

    EMAIL_RE = re.compile(r"([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+\.[A-Za-z]{2,})")
    REFERENCE_RE = re.compile(r"(reference[=:]\s*)(\S+)", re.IGNORECASE)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.EMAIL_RE.sub(r"\1***@\2", message)
        redacted = self.REFERENCE_RE.sub(r"\1***", redacted)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(
    service_name: str,
    level: str = "INFO",
    enable_console: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Setup structured logging for the service

    Args:
        service_name: Name reported in every log line
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_console: Emit to stdout
        log_file: Optional path of a rotating log file
    """
    os.environ['SERVICE_NAME'] = service_name

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = []

    formatter = StructuredFormatter()
    handlers = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=5
        ))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(RedactionFilter())
        root_logger.addHandler(handler)

    logging.getLogger('uvicorn').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)

    root_logger.info(
        "Logging initialized",
        extra={'extra_fields': {'service': service_name, 'level': level, 'file': log_file}}
    )


class LoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that folds keyword context into ``extra_fields``

        logger.info("Invoice created", invoice_number="INV-25-01-0001")
    """

    def process(self, msg, kwargs):
        extra = kwargs.get('extra', {})
        fields = dict(extra.get('extra_fields', {}))
        for key in list(kwargs):
            if key not in ('exc_info', 'stack_info', 'stacklevel', 'extra'):
                fields[key] = kwargs.pop(key)
        if fields:
            extra['extra_fields'] = fields
        kwargs['extra'] = extra
        return msg, kwargs


def get_logger(name: str) -> LoggerAdapter:
    """
    Get a logger instance with context support

    Args:
        name: Logger name (usually __name__)
    """
    return LoggerAdapter(logging.getLogger(name), {})


def set_request_context(
    request_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    actor_id: Optional[str] = None
) -> None:
    if request_id:
        request_id_var.set(request_id)
    if correlation_id:
        correlation_id_var.set(correlation_id)
    if actor_id:
        actor_id_var.set(actor_id)


@contextmanager
def workflow_context(order_id: Optional[str] = None, invoice_id: Optional[str] = None) -> Iterator[None]:
    """Bind order/invoice ids to every log line emitted inside the block"""
    tokens = []
    if order_id:
        tokens.append((order_id_var, order_id_var.set(order_id)))
    if invoice_id:
        tokens.append((invoice_id_var, invoice_id_var.set(invoice_id)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def generate_request_id() -> str:
    return str(uuid.uuid4())


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every request and response with duration
    Propagates X-Request-ID and X-Actor-ID into the log context
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        set_request_context(
            request_id=request_id,
            correlation_id=request.headers.get('X-Correlation-ID'),
            actor_id=request.headers.get('X-Actor-ID'),
        )

        logger = get_logger(__name__)
        logger.info(
            f"Request started: {request.method} {request.url.path}",
            method=request.method,
            path=request.url.path,
        )

        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                exc_info=True,
                duration_ms=(time.perf_counter() - start_time) * 1000,
            )
            raise

        logger.info(
            f"Request completed: {request.method} {request.url.path}",
            status_code=response.status_code,
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )
        response.headers['X-Request-ID'] = request_id
        return response
