"""
Base class for pipeline stage executors.

Each executor packages one stage's instruction template, invokes the
reasoning client once, and validates the result. Errors from either side
are tagged with the stage name and propagated; executors never retry.
"""

import time
from typing import Any, Generic, Optional, TypeVar

from src.knowledge.templates import Instructions, TemplateRegistry, default_registry
from src.models.schemas import AnalysisRequest, DomainExpert, PipelineStage
from src.services.llm_service import ClaudeService
from src.services.validation_service import SchemaValidator
from src.utils.errors import PipelineError
from src.utils.logger import LogContext, get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class StageExecutor(Generic[T]):
    """
    One reasoning-service call for one pipeline stage.
    
    Subclasses set ``stage`` and implement ``build_context``.
    """
    
    stage: PipelineStage
    
    def __init__(
        self,
        llm_service: ClaudeService,
        validator: Optional[SchemaValidator] = None,
        registry: Optional[TemplateRegistry] = None,
    ):
        self.llm_service = llm_service
        self.validator = validator or SchemaValidator()
        self.registry = registry or default_registry()
    
    @property
    def stage_name(self) -> str:
        return self.stage.value
    
    def build_context(self, **inputs: Any) -> dict[str, Any]:
        """Template context for this stage from the previous stages' outputs."""
        raise NotImplementedError
    
    def domain_for(self, **inputs: Any) -> DomainExpert | str:
        """Specialty used to select the template; stages after triage use triage's."""
        triage = inputs.get("triage")
        return triage.domain_expert if triage is not None else DomainExpert.GENERAL
    
    def instructions(self, **inputs: Any) -> Instructions:
        return self.registry.resolve(
            self.stage,
            self.domain_for(**inputs),
            **self.build_context(**inputs),
        )
    
    async def run(self, request: AnalysisRequest, **inputs: Any) -> T:
        """
        Execute the stage.
        
        Args:
            request: The pipeline request carrying the image
            **inputs: Validated outputs of earlier stages
        
        Returns:
            The stage's validated, typed output
        
        Raises:
            ServiceUnavailable, EmptyResponse, SchemaViolation: tagged with
                this stage's name
        """
        instructions = self.instructions(**inputs)
        start = time.monotonic()
        
        with LogContext(stage=self.stage_name):
            logger.info("Stage invoking reasoning service", template=instructions.template_id)
            try:
                raw_text = await self.llm_service.invoke(instructions, request, instructions.config)
                result = self.validator.validate(self.stage, raw_text)
            except PipelineError as e:
                e.with_stage(self.stage_name)
                logger.warning(
                    "Stage failed",
                    error_type=e.error_type.value if hasattr(e.error_type, "value") else e.error_type,
                    recoverable=e.recoverable,
                    error=e.message,
                )
                raise
            
            logger.info(
                "Stage output accepted",
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        return result
