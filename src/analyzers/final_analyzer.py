"""
Combined final analysis stage executor.

Merges identification and authentication into a single reasoning-service
call. Receives triage, the evidence report and the top candidates; produces
an AnalysisDraft that the orchestrator calibrates into a FinalAnalysis.

Example:
    >>> analyzer = FinalAnalyzer(llm_service)
    >>> draft = await analyzer.run(request, triage=triage, evidence=evidence, candidates=candidates)
    >>> print(draft.name, draft.estimated_value_min, draft.estimated_value_max)
"""

from typing import Any

from src.analyzers.prompts import format_analysis_context
from src.models.schemas import (
    AnalysisDraft,
    AnalysisRequest,
    CandidateSet,
    EvidenceReport,
    PipelineStage,
    TriageResult,
)
from src.services.stage_executor import StageExecutor
from src.utils.logger import get_logger

logger = get_logger(__name__)


class FinalAnalyzer(StageExecutor[AnalysisDraft]):
    """
    Produces the merged identification and authentication report.
    
    Watches and jewelry resolve to specialized templates with stricter
    authentication requirements; every other specialty uses the default.
    """
    
    stage = PipelineStage.ANALYSIS
    
    def build_context(
        self,
        triage: TriageResult,
        evidence: EvidenceReport,
        candidates: CandidateSet,
        asking_price: int | None = None,
        **_: Any,
    ) -> dict[str, Any]:
        return format_analysis_context(triage, evidence, candidates, asking_price)
    
    async def run(
        self,
        request: AnalysisRequest,
        triage: TriageResult,
        evidence: EvidenceReport,
        candidates: CandidateSet,
        **inputs: Any,
    ) -> AnalysisDraft:
        draft = await super().run(
            request,
            triage=triage,
            evidence=evidence,
            candidates=candidates,
            asking_price=request.asking_price,
        )
        logger.info(
            "Final analysis drafted",
            name=draft.name,
            confidence=draft.confidence,
            value_min=draft.estimated_value_min,
            value_max=draft.estimated_value_max,
            reported_risk=draft.authentication.risk_level,
            checks=len(draft.authentication.checklist),
        )
        return draft
