"""
Evidence extraction stage executor.

Records every observable fact (marks, materials, condition, red flags)
without attempting identification. Reads only the immutable triage result,
so it runs concurrently with candidate generation.
"""

from typing import Any

from src.extractors.prompts import format_triage_context
from src.models.schemas import EvidenceReport, PipelineStage, TriageResult
from src.services.stage_executor import StageExecutor
from src.utils.logger import get_logger

logger = get_logger(__name__)


class EvidenceExtractor(StageExecutor[EvidenceReport]):
    """Extracts observable evidence for the specialty chosen at triage."""
    
    stage = PipelineStage.EVIDENCE
    
    def build_context(self, triage: TriageResult, **_: Any) -> dict[str, Any]:
        return format_triage_context(triage)
    
    async def run(self, request, triage: TriageResult, **inputs: Any) -> EvidenceReport:
        report = await super().run(request, triage=triage)
        logger.info(
            "Evidence extracted",
            text_readings=len(report.text_readings),
            maker_marks=len(report.maker_marks),
            condition=report.condition.grade,
            red_flags=len(report.red_flags),
        )
        return report
