"""
Pipeline error taxonomy.

Lower layers (reasoning client, schema validator) raise these tagged with
stage context; the orchestrator is the only place that decides retry vs fail.
"""

from typing import Any, Optional

from src.models.schemas import ErrorDetail, ErrorResponse, ErrorType


# =============================================================================
# Base Exception
# =============================================================================

class PipelineError(Exception):
    """Base exception for all pipeline errors."""
    
    error_type: ErrorType = ErrorType.INTERNAL_ERROR
    
    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.details = details or {}
        self.recoverable = recoverable
    
    def with_stage(self, stage: str) -> "PipelineError":
        """Attach the originating stage if none was recorded yet."""
        if self.stage is None:
            self.stage = stage
        return self
    
    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to the public error descriptor."""
        return ErrorResponse(
            error_type=self.error_type,
            message=self.message,
            stage=self.stage,
            details=[
                ErrorDetail(field=key, message=str(value))
                for key, value in self.details.items()
            ],
            request_id=request_id,
            recoverable=self.recoverable,
        )
    
    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


# =============================================================================
# Taxonomy
# =============================================================================

class InvalidInput(PipelineError):
    """Bad image format, size or asking price. Never retried."""
    
    error_type = ErrorType.INVALID_INPUT
    
    def __init__(self, message: str, field: Optional[str] = None, **kwargs: Any):
        details = kwargs.pop("details", None) or {}
        if field:
            details.setdefault("field", field)
        super().__init__(message, details=details, recoverable=False, **kwargs)
        self.field = field


class ServiceUnavailable(PipelineError):
    """
    Reasoning service timeout, rate limit, 5xx or connection failure.
    
    Raised after the client's own retries are exhausted. Authentication and
    other 4xx failures are raised with ``recoverable=False``.
    """
    
    error_type = ErrorType.SERVICE_UNAVAILABLE
    
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        recoverable: bool = True,
        **kwargs: Any,
    ):
        details = kwargs.pop("details", None) or {}
        if status_code is not None:
            details.setdefault("status_code", status_code)
        super().__init__(message, details=details, recoverable=recoverable, **kwargs)
        self.status_code = status_code


class StageTimeout(ServiceUnavailable):
    """A stage exceeded its time budget."""
    
    error_type = ErrorType.TIMEOUT


class EmptyResponse(PipelineError):
    """The reasoning service returned no text content."""
    
    error_type = ErrorType.EMPTY_RESPONSE
    
    def __init__(self, message: str = "Reasoning service returned no content", **kwargs: Any):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class SchemaViolation(PipelineError):
    """Stage output did not match its contract. Not retried automatically."""
    
    error_type = ErrorType.SCHEMA_VIOLATION
    
    def __init__(
        self,
        stage: str,
        raw_snippet: str,
        errors: Optional[list[str]] = None,
        message: Optional[str] = None,
    ):
        self.raw_snippet = raw_snippet
        self.errors = errors or []
        summary = "; ".join(self.errors[:3]) if self.errors else "unparseable output"
        super().__init__(
            message or f"Output for stage '{stage}' violated its schema: {summary}",
            stage=stage,
            details={"errors": self.errors},
            recoverable=False,
        )


class PipelineFailed(PipelineError):
    """Terminal failure of a pipeline run; no partial result is produced."""
    
    error_type = ErrorType.PIPELINE_FAILED
    
    def __init__(self, stage: Optional[str], cause: BaseException, message: Optional[str] = None):
        self.cause = cause
        recoverable = getattr(cause, "recoverable", False)
        super().__init__(
            message or f"Pipeline failed at stage '{stage or 'unknown'}': {cause}",
            stage=stage,
            details={"cause": type(cause).__name__},
            recoverable=recoverable,
        )
    
    @property
    def cause_type(self) -> ErrorType:
        """Error type of the underlying cause."""
        if isinstance(self.cause, PipelineError):
            return self.cause.error_type
        return ErrorType.INTERNAL_ERROR
    
    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        response = super().to_response(request_id)
        # Callers care about why it failed, not that it failed
        return response.model_copy(update={"error_type": self.cause_type})


class PipelineCancelled(PipelineError):
    """The run was cancelled by its caller."""
    
    error_type = ErrorType.CANCELLED


__all__ = [
    "PipelineError",
    "InvalidInput",
    "ServiceUnavailable",
    "StageTimeout",
    "EmptyResponse",
    "SchemaViolation",
    "PipelineFailed",
    "PipelineCancelled",
]
