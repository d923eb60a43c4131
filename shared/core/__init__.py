"""Shared core utilities.

Structured logging and request/workflow context propagation.
"""

from .logging_config import (
    setup_logging,
    get_logger,
    RequestLoggingMiddleware,
    RedactionFilter,
    StructuredFormatter,
    set_request_context,
    workflow_context,
    current_context,
    generate_request_id,
    LoggerAdapter,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "RequestLoggingMiddleware",
    "RedactionFilter",
    "StructuredFormatter",
    "set_request_context",
    "workflow_context",
    "current_context",
    "generate_request_id",
    "LoggerAdapter",
]
