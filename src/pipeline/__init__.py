"""Pipeline module for the Vintage Vision identification pipeline."""

from src.pipeline.orchestrator import (
    ALLOWED_TRANSITIONS,
    STAGE_MESSAGES,
    STAGE_PROGRESS,
    IdentificationPipeline,
    PipelineStateDict,
    ProgressChannel,
    analyze_image,
    run_concurrently,
)

__all__ = [
    "IdentificationPipeline",
    "PipelineStateDict",
    "ProgressChannel",
    "run_concurrently",
    "analyze_image",
    "STAGE_PROGRESS",
    "STAGE_MESSAGES",
    "ALLOWED_TRANSITIONS",
]
