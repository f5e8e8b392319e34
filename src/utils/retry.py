"""
Retry and error-classification utilities.

Provides the backoff calculation used by the reasoning client, the tenacity
policy the orchestrator applies around whole stages, and centralized mapping
of foreign exceptions onto the pipeline error taxonomy.
"""

import asyncio
import random

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from src.models.schemas import ErrorType
from src.utils.errors import (
    InvalidInput,
    PipelineError,
    SchemaViolation,
    ServiceUnavailable,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)

MAX_BACKOFF_SECONDS = 60.0


# =============================================================================
# Backoff
# =============================================================================

def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = MAX_BACKOFF_SECONDS,
    jitter_ratio: float = 0.1,
) -> float:
    """
    Exponential backoff with additive jitter.
    
    Args:
        attempt: Zero-based attempt number.
        base_delay: Delay for the first retry.
        max_delay: Upper bound on the returned delay.
        jitter_ratio: Jitter as a fraction of the exponential delay.
    """
    backoff = base_delay * (2 ** attempt)
    jitter = random.uniform(0, jitter_ratio * backoff)
    return min(backoff + jitter, max_delay)


# =============================================================================
# Stage Retry Policy
# =============================================================================

def is_recoverable(error: BaseException) -> bool:
    """Whether re-running a whole stage may succeed."""
    if isinstance(error, (SchemaViolation, InvalidInput)):
        return False
    if isinstance(error, PipelineError):
        return error.recoverable
    return False


def _log_stage_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "stage_retry_scheduled",
        attempt=retry_state.attempt_number,
        wait_seconds=round(retry_state.next_action.sleep, 2) if retry_state.next_action else None,
        error=str(error),
        error_type=type(error).__name__,
    )


def stage_retry_policy(max_attempts: int, wait_seconds: float) -> AsyncRetrying:
    """
    Build the tenacity policy used around a single stage.
    
    Only recoverable errors are retried; the last error is re-raised once
    the attempt budget is exhausted.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_random_exponential(multiplier=wait_seconds, max=MAX_BACKOFF_SECONDS),
        retry=retry_if_exception(is_recoverable),
        before_sleep=_log_stage_retry,
        reraise=True,
    )


# =============================================================================
# Error Handler
# =============================================================================

class ErrorHandler:
    """Centralized error categorization."""
    
    @staticmethod
    def categorize_error(error: BaseException) -> ErrorType:
        """Map any exception onto the pipeline error taxonomy."""
        if isinstance(error, PipelineError):
            return error.error_type
        if isinstance(error, asyncio.CancelledError):
            return ErrorType.CANCELLED
        if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
            return ErrorType.TIMEOUT
        if isinstance(error, (ConnectionError, OSError)):
            return ErrorType.SERVICE_UNAVAILABLE
        if isinstance(error, (ValueError, TypeError)):
            return ErrorType.INVALID_INPUT
        
        err_str = str(error).lower()
        if "rate limit" in err_str or "overloaded" in err_str:
            return ErrorType.SERVICE_UNAVAILABLE
        if "timeout" in err_str or "timed out" in err_str:
            return ErrorType.TIMEOUT
        
        return ErrorType.INTERNAL_ERROR
    
    @staticmethod
    def wrap(error: BaseException, stage: str) -> PipelineError:
        """Return ``error`` as a stage-tagged PipelineError."""
        if isinstance(error, PipelineError):
            return error.with_stage(stage)
        error_type = ErrorHandler.categorize_error(error)
        if error_type in (ErrorType.SERVICE_UNAVAILABLE, ErrorType.TIMEOUT):
            return ServiceUnavailable(str(error) or type(error).__name__, stage=stage)
        wrapped = PipelineError(str(error) or type(error).__name__, stage=stage)
        wrapped.error_type = error_type
        return wrapped
