"""
Triage stage executor.

The only stage that runs without prior pipeline state: classifies the
item's age category, specialty and quality tier, and transcribes any
visible branding. Its output selects the instruction profile for every
later stage and is never mutated.

Example:
    >>> extractor = TriageExtractor(llm_service)
    >>> triage = await extractor.run(request)
    >>> print(triage.domain_expert, triage.confidence)
"""

from typing import Any

from src.models.schemas import DomainExpert, PipelineStage, TriageResult
from src.services.stage_executor import StageExecutor
from src.utils.logger import get_logger

logger = get_logger(__name__)


class TriageExtractor(StageExecutor[TriageResult]):
    """Classifies an item from its photograph."""
    
    stage = PipelineStage.TRIAGE
    
    def build_context(self, **inputs: Any) -> dict[str, Any]:
        return {}
    
    def domain_for(self, **inputs: Any) -> DomainExpert:
        return DomainExpert.GENERAL
    
    async def run(self, request, **inputs: Any) -> TriageResult:
        triage = await super().run(request)
        logger.info(
            "Triage complete",
            category=triage.category,
            domain_expert=triage.domain_expert,
            quality_tier=triage.quality_tier,
            confidence=triage.confidence,
            visible_branding=triage.visible_branding,
        )
        return triage
