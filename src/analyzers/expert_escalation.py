"""
Expert-referral escalation.

Decides from the calibrated result whether a human expert review should be
offered, how urgently, and at which tier. Runs after risk calibration and
price humanization so it sees the same numbers the caller does.
"""

from typing import Optional

from src.models.schemas import (
    DomainExpert,
    ExpertReferral,
    ExpertService,
    ReferralUrgency,
    RiskLevel,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)

# Midpoint thresholds in minor units: 100.00 offers a review, 5,000.00 urges one
DEFAULT_OFFER_VALUE_THRESHOLD = 10_000
DEFAULT_PREMIUM_VALUE_THRESHOLD = 500_000
DEFAULT_LOW_CONFIDENCE_THRESHOLD = 0.6
DEFAULT_MAX_VALUE_SPREAD = 3.0

HIGH_RISK_DOMAINS: frozenset[str] = frozenset({
    DomainExpert.WATCHES.value,
    DomainExpert.JEWELRY.value,
    DomainExpert.SILVER.value,
    DomainExpert.ART.value,
    DomainExpert.CERAMICS.value,
})

URGENCY_ORDER = [
    ReferralUrgency.LOW,
    ReferralUrgency.MEDIUM,
    ReferralUrgency.HIGH,
    ReferralUrgency.CRITICAL,
]
SERVICE_ORDER = [
    ExpertService.QUICK_REVIEW,
    ExpertService.FULL_AUTHENTICATION,
    ExpertService.PREMIUM_APPRAISAL,
]


def _raise_urgency(current: ReferralUrgency, floor: ReferralUrgency) -> ReferralUrgency:
    return max(current, floor, key=URGENCY_ORDER.index)


def _raise_service(current: Optional[ExpertService], floor: ExpertService) -> ExpertService:
    if current is None:
        return floor
    return max(current, floor, key=SERVICE_ORDER.index)


class ExpertEscalation:
    """
    Pure referral decision; the same inputs always give the same referral.

    Example:
        >>> escalation = ExpertEscalation()
        >>> escalation.evaluate("watches", 0.9, "very_high", 120000, 250000).urgency
        'critical'
    """

    def __init__(
        self,
        offer_value_threshold: int = DEFAULT_OFFER_VALUE_THRESHOLD,
        premium_value_threshold: int = DEFAULT_PREMIUM_VALUE_THRESHOLD,
        low_confidence_threshold: float = DEFAULT_LOW_CONFIDENCE_THRESHOLD,
        max_value_spread: float = DEFAULT_MAX_VALUE_SPREAD,
    ):
        if premium_value_threshold < offer_value_threshold:
            raise ValueError("premium_value_threshold must be >= offer_value_threshold")
        self.offer_value_threshold = offer_value_threshold
        self.premium_value_threshold = premium_value_threshold
        self.low_confidence_threshold = low_confidence_threshold
        self.max_value_spread = max_value_spread

    def evaluate(
        self,
        domain: DomainExpert | str,
        confidence: float,
        risk_level: RiskLevel | str,
        value_min: int,
        value_max: int,
        model_recommended: bool = False,
        model_reason: Optional[str] = None,
    ) -> ExpertReferral:
        """
        Evaluate every trigger and combine them into one referral.

        Args:
            domain: Specialty chosen at triage
            confidence: Identification confidence
            risk_level: Calibrated risk level
            value_min: Humanized value floor in minor units
            value_max: Humanized value ceiling in minor units
            model_recommended: Whether the reasoning service asked for a referral
            model_reason: The reasoning service's stated reason
        """
        domain = DomainExpert(domain)
        risk_level = RiskLevel(risk_level)
        midpoint = (value_min + value_max) / 2

        urgency = ReferralUrgency.LOW
        service: Optional[ExpertService] = None
        reasons: list[str] = []

        if midpoint >= self.premium_value_threshold:
            reasons.append(f"High-value item: ${midpoint / 100:,.0f} estimated")
            urgency = _raise_urgency(urgency, ReferralUrgency.HIGH)
            service = _raise_service(service, ExpertService.PREMIUM_APPRAISAL)
        elif midpoint >= self.offer_value_threshold:
            reasons.append(f"Notable value: ${midpoint / 100:,.0f} estimated")
            urgency = _raise_urgency(urgency, ReferralUrgency.MEDIUM)
            service = _raise_service(service, ExpertService.FULL_AUTHENTICATION)

        if confidence < self.low_confidence_threshold:
            reasons.append(f"Low identification confidence: {confidence:.0%}")
            urgency = _raise_urgency(urgency, ReferralUrgency.MEDIUM)
            service = _raise_service(service, ExpertService.QUICK_REVIEW)

        if risk_level.rank >= RiskLevel.HIGH.rank:
            reasons.append(f"High authenticity risk: {risk_level.value}")
            urgency = _raise_urgency(urgency, ReferralUrgency.CRITICAL)
            service = _raise_service(service, ExpertService.FULL_AUTHENTICATION)

        if model_recommended:
            reasons.append(f"Reasoning service recommended expert review: {model_reason or 'verification advised'}")
            urgency = _raise_urgency(urgency, ReferralUrgency.MEDIUM)
            service = _raise_service(service, ExpertService.QUICK_REVIEW)

        if domain.value in HIGH_RISK_DOMAINS:
            reasons.append(f"High-risk category: {domain.value}")
            urgency = _raise_urgency(urgency, ReferralUrgency.MEDIUM)

        spread = value_max / max(value_min, 1)
        if spread > self.max_value_spread:
            reasons.append(f"Wide value range: {spread:.1f}x spread indicates uncertainty")
            service = _raise_service(service, ExpertService.QUICK_REVIEW)

        referral = ExpertReferral(
            recommended=bool(reasons),
            urgency=urgency,
            service=service,
            reasons=reasons,
        )
        logger.info(
            "Expert referral evaluated",
            domain=domain.value,
            recommended=referral.recommended,
            urgency=referral.urgency,
            service=referral.service,
            triggers=len(reasons),
        )
        return referral


__all__ = [
    "ExpertEscalation",
    "HIGH_RISK_DOMAINS",
    "DEFAULT_OFFER_VALUE_THRESHOLD",
    "DEFAULT_PREMIUM_VALUE_THRESHOLD",
]
