"""
Candidate generation stage executor.

Produces up to three ranked identification hypotheses, each with explicit
evidence for and against and a value estimate. Reads only the immutable
triage result, so it runs concurrently with evidence extraction.

Ranks reflect the reasoning service's own ordering and do not imply
descending confidence.
"""

from typing import Any

from src.analyzers.prompts import format_candidates_context
from src.models.schemas import CandidateSet, PipelineStage, TriageResult
from src.services.stage_executor import StageExecutor
from src.utils.logger import get_logger

logger = get_logger(__name__)


class CandidateGenerator(StageExecutor[CandidateSet]):
    """Matches an item against the specialty's maker knowledge."""
    
    stage = PipelineStage.CANDIDATES
    
    def build_context(self, triage: TriageResult, **_: Any) -> dict[str, Any]:
        return format_candidates_context(triage)
    
    async def run(self, request, triage: TriageResult, **inputs: Any) -> CandidateSet:
        candidates = await super().run(request, triage=triage)
        top = candidates.top
        logger.info(
            "Candidates generated",
            count=len(candidates.candidates),
            top_label=top.label,
            top_confidence=top.confidence,
            top_value_high=top.value_estimate.high,
        )
        return candidates
