"""
Confidence calibration policy.

Shared by every stage executor: the same bands are rendered into prompts and
used to label the final result, so the policy lives here rather than in
prompt text.
"""

from dataclasses import dataclass

from src.models.schemas import ConfidenceBand


@dataclass(frozen=True)
class BandRule:
    band: ConfidenceBand
    floor: float
    requirement: str


# Ordered from the highest floor down; the first rule whose floor is met wins
CONFIDENCE_BANDS: tuple[BandRule, ...] = (
    BandRule(
        ConfidenceBand.DEFINITIVE,
        0.95,
        "requires an unambiguous maker's mark or brand match",
    ),
    BandRule(
        ConfidenceBand.STRONG,
        0.85,
        "requires strong construction/style agreement with a known maker",
    ),
    BandRule(
        ConfidenceBand.PROBABLE,
        0.70,
        "period/style identification with an uncertain maker",
    ),
    BandRule(
        ConfidenceBand.PLAUSIBLE,
        0.50,
        "a plausible guess",
    ),
    BandRule(
        ConfidenceBand.LOW,
        0.0,
        "a low-confidence best guess; say so explicitly",
    ),
)

LOW_CONFIDENCE_FLOOR = 0.50


def band_for(confidence: float) -> ConfidenceBand:
    """Band containing ``confidence``."""
    for rule in CONFIDENCE_BANDS:
        if confidence >= rule.floor:
            return rule.band
    return ConfidenceBand.LOW


def is_low_confidence(confidence: float) -> bool:
    """Below the plausible-guess floor; must be surfaced, never rounded up."""
    return confidence < LOW_CONFIDENCE_FLOOR


def render_policy() -> str:
    """Policy text injected into stage instructions."""
    lines = ["CONFIDENCE CALIBRATION (apply to every confidence value you report):"]
    upper = 1.0
    for rule in CONFIDENCE_BANDS:
        if rule.floor == 0.0:
            lines.append(f"- below {upper:.2f}: {rule.requirement}")
        elif upper == 1.0:
            lines.append(f"- {rule.floor:.2f} or higher: {rule.requirement}")
        else:
            lines.append(f"- {rule.floor:.2f}-{upper - 0.01:.2f}: {rule.requirement}")
        upper = rule.floor
    lines.append("Never inflate confidence to sound authoritative.")
    return "\n".join(lines)
