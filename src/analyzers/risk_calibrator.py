"""
Deterministic counterfeit-risk calibration.

Starts from the specialty's baseline risk and escalates on two signals:
a luxury-maker match or a high value estimate on the top candidate, then
any red flag in the extracted evidence. Escalation is monotonic and capped
at the highest level; the same inputs always produce the same level.
"""

from typing import Optional

from src.knowledge.domain_table import base_risk_for, match_luxury_maker
from src.models.schemas import (
    Candidate,
    DomainExpert,
    EvidenceReport,
    RiskAssessment,
    RiskLevel,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)

# 5,000.00 in minor units
DEFAULT_LUXURY_VALUE_THRESHOLD = 500_000


class RiskCalibrator:
    """
    Pure risk step function.
    
    Example:
        >>> calibrator = RiskCalibrator()
        >>> calibrator.adjust(RiskLevel.HIGH, top_candidate, evidence)
        <RiskLevel.VERY_HIGH: 'very_high'>
    """
    
    def __init__(self, luxury_value_threshold: int = DEFAULT_LUXURY_VALUE_THRESHOLD):
        if luxury_value_threshold < 0:
            raise ValueError("luxury_value_threshold must be >= 0")
        self.luxury_value_threshold = luxury_value_threshold
    
    def luxury_signal(self, candidate: Optional[Candidate]) -> Optional[str]:
        """Reason the candidate warrants escalation, or None."""
        if candidate is None:
            return None
        maker = match_luxury_maker(candidate.maker) or match_luxury_maker(candidate.label)
        if maker:
            return f"Top candidate matches high-counterfeit maker '{maker}'"
        if candidate.value_estimate.high > self.luxury_value_threshold:
            return (
                f"Top candidate value estimate {candidate.value_estimate.high} exceeds "
                f"luxury threshold {self.luxury_value_threshold}"
            )
        return None
    
    def adjust(
        self,
        base: RiskLevel | str,
        candidate: Optional[Candidate],
        evidence: Optional[EvidenceReport],
    ) -> RiskLevel:
        """Calibrated risk level; never lower than ``base``."""
        return self._calibrate(RiskLevel(base), candidate, evidence)[0]
    
    def assess(
        self,
        domain: DomainExpert | str,
        candidate: Optional[Candidate],
        evidence: Optional[EvidenceReport],
        reported: Optional[RiskLevel | str] = None,
    ) -> RiskAssessment:
        """Calibrate from the specialty baseline and record why."""
        baseline = base_risk_for(domain)
        level, reasons = self._calibrate(baseline, candidate, evidence)
        
        assessment = RiskAssessment(
            baseline=baseline,
            level=level,
            reported_level=RiskLevel(reported) if reported is not None else None,
            reasons=reasons,
        )
        logger.info(
            "Risk calibrated",
            domain=str(domain.value if isinstance(domain, DomainExpert) else domain),
            baseline=baseline.value,
            level=level.value,
            reported=assessment.reported_level,
            escalations=len(reasons),
        )
        return assessment
    
    def _calibrate(
        self,
        base: RiskLevel,
        candidate: Optional[Candidate],
        evidence: Optional[EvidenceReport],
    ) -> tuple[RiskLevel, list[str]]:
        level = base
        reasons: list[str] = []
        
        luxury_reason = self.luxury_signal(candidate)
        if luxury_reason:
            level = level.escalate()
            reasons.append(luxury_reason)
        
        if evidence is not None and evidence.has_red_flags and level != RiskLevel.maximum():
            level = level.escalate()
            reasons.append(f"Evidence lists {len(evidence.red_flags)} red flag(s)")
        
        return level, reasons


__all__ = ["RiskCalibrator", "DEFAULT_LUXURY_VALUE_THRESHOLD"]
