"""
Services package for the Vintage Vision identification pipeline.

Services:
    - ClaudeService: Reasoning client over Anthropic Claude (vision)
    - SchemaValidator: Per-stage output validation
    - ValidationService: Request intake and image validation
    - StageExecutor: Base for the pipeline's stage executors
"""

from src.services.llm_service import (
    ClaudeService,
    TokenUsage,
    create_claude_service,
)
from src.services.stage_executor import StageExecutor
from src.services.validation_service import SchemaValidator, ValidationService

__all__ = [
    # Reasoning client
    "ClaudeService",
    "create_claude_service",
    "TokenUsage",
    # Validation
    "SchemaValidator",
    "ValidationService",
    # Stages
    "StageExecutor",
]
