"""Utils module for the Vintage Vision identification pipeline."""

from src.utils.errors import (
    EmptyResponse,
    InvalidInput,
    PipelineCancelled,
    PipelineError,
    PipelineFailed,
    SchemaViolation,
    ServiceUnavailable,
    StageTimeout,
)
from src.utils.formatters import ReportFormatter
from src.utils.logger import LogContext, get_logger, setup_logging
from src.utils.marketplace import build_marketplace_links
from src.utils.retry import ErrorHandler, calculate_backoff, is_recoverable, stage_retry_policy

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "ReportFormatter",
    "build_marketplace_links",
    "ErrorHandler",
    "calculate_backoff",
    "is_recoverable",
    "stage_retry_policy",
    "PipelineError",
    "InvalidInput",
    "ServiceUnavailable",
    "StageTimeout",
    "EmptyResponse",
    "SchemaViolation",
    "PipelineFailed",
    "PipelineCancelled",
]
