"""
Instruction templates for the analysis stages.

This module contains the templates for:
    1. Candidate Generation - ranked identification hypotheses with explicit
       evidence for and against and a value estimate
    2. Combined Final Analysis - merged identification and authentication
       report in a single call
    3. Specialty overrides of the final analysis for high-counterfeit domains

All monetary values exchanged with the model are integer US cents.
Literal braces are doubled; templates are rendered with str.format.
"""

import json
from typing import Any, Optional

from src.extractors.prompts import TEMPLATE_VERSION, format_triage_context
from src.knowledge.templates import InstructionTemplate, InvocationConfig
from src.models.schemas import (
    CandidateSet,
    DomainExpert,
    EvidenceReport,
    PipelineStage,
    TriageResult,
)


# =============================================================================
# PROMPT 1: Candidate Generation
# =============================================================================

CANDIDATES_CONFIG = InvocationConfig(
    task_type=PipelineStage.CANDIDATES.value,
    temperature=0.3,
    max_tokens=2000,
)

CANDIDATES_SYSTEM = """You are a senior specialist in {domain_expert}, matching an item against your knowledge of makers, models and periods.

{domain_profile}

<guidelines>
1. Produce between 1 and 3 identification hypotheses, ranked 1..N by plausibility.
2. For each, list the visual evidence FOR and AGAINST it. Be specific.
3. Give a realistic resale value range for the hypothesis in integer US CENTS
   (e.g. $120.00 is 12000), based on recent sold prices, not asking prices.
4. Leave maker, model or period null rather than guessing.
5. Confidence for one hypothesis does not need to be lower than the one ranked above it.
</guidelines>

{calibration_policy}

<output_format>
Respond with a single JSON object and nothing else:
{{
  "candidates": [
    {{
      "rank": 1,
      "label": "specific identification",
      "maker": "maker or null",
      "model": "model or pattern name or null",
      "period": "period or null",
      "confidence": 0.0,
      "evidence_for": ["..."],
      "evidence_against": ["..."],
      "value_estimate": {{"low": 0, "high": 0, "basis": "how the range was determined"}}
    }}
  ]
}}
Ranks must be contiguous starting at 1. Do not add any other keys.
</output_format>"""

CANDIDATES_USER = """<triage>
Item type: {item_type}
Category: {category}
Estimated era: {estimated_era}
Quality tier: {quality_tier}
Visible branding: {visible_branding}
Visible text: {visible_text}
</triage>

<task>
Generate ranked identification hypotheses for the item in the image.
</task>"""


# =============================================================================
# PROMPT 2: Combined Final Analysis
# =============================================================================

ANALYSIS_CONFIG = InvocationConfig(
    task_type=PipelineStage.ANALYSIS.value,
    temperature=0.2,
    max_tokens=4500,
)

ANALYSIS_SYSTEM = """You are a world-class appraiser and authenticator specializing in {domain_expert}. You receive the triage, the extracted evidence and ranked hypotheses for one item and produce the final identification together with an authentication assessment.

{domain_profile}

<guidelines>
1. Decide on one identification. Prefer the candidate best supported by the extracted
   evidence; explain runner-ups in alternative_candidates.
2. Be honest about confidence. Never round a weak identification up.
3. Values are integer US CENTS. estimated_value_max must be >= estimated_value_min.
4. The authentication checklist must be specific to THIS item, not generic advice.
   category: visual | physical | documentation | provenance
   priority: critical | important | helpful
5. Request follow-up photos that would resolve open questions.
   priority: required | recommended | optional
6. risk_level: low | medium | high | very_high
7. flip_difficulty: easy | moderate | hard | very_hard, or null
8. Recommend an expert referral when value is high and authenticity is uncertain.
</guidelines>

{calibration_policy}

<output_format>
Respond with a single JSON object and nothing else:
{{
  "name": "specific name with maker/model if known",
  "maker": "or null",
  "brand": "or null",
  "model_number": "or null",
  "era": "or null",
  "style": "or null",
  "origin_region": "or null",
  "description": "2-4 sentences on what the item is, its materials and condition",
  "historical_context": "2-4 sentences on its significance",
  "estimated_value_min": 0,
  "estimated_value_max": 0,
  "valuation_basis": "how the value was determined",
  "confidence": 0.0,
  "evidence_for": ["..."],
  "evidence_against": ["..."],
  "alternative_candidates": [{{"name": "...", "confidence": 0.0, "reason": "..."}}],
  "verification_tips": ["..."],
  "red_flags": ["..."],
  "flip_difficulty": "moderate",
  "flip_time_estimate": "e.g. 2-4 weeks",
  "resale_channels": ["..."],
  "authentication": {{
    "authentication_confidence": 0.0,
    "risk_level": "low",
    "checklist": [
      {{
        "id": "check-1",
        "category": "visual",
        "priority": "critical",
        "check": "what to check",
        "how_to": "how to check it",
        "what_to_look_for": "expected result for a genuine example",
        "red_flag_signs": ["..."],
        "requires_expert": false,
        "photo_helpful": true
      }}
    ],
    "known_fake_indicators": ["..."],
    "photos_requested": [
      {{"id": "photo-1", "area": "...", "reason": "...", "what_to_capture": "...", "priority": "recommended"}}
    ],
    "expert_referral_recommended": false,
    "expert_referral_reason": null,
    "overall_assessment": "narrative assessment"
  }}
}}
Do not add any other keys.
</output_format>"""

ANALYSIS_USER = """<triage>
Item type: {item_type}
Category: {category}
Estimated era: {estimated_era}
Quality tier: {quality_tier}
Visible branding: {visible_branding}
Visible text: {visible_text}
</triage>

<evidence>
{evidence_json}
</evidence>

<candidates>
{candidates_json}
</candidates>
{asking_price_block}
<task>
Produce the final identification and authentication assessment for the item in the image.
</task>"""

ASKING_PRICE_BLOCK = """
<asking_price>
The seller is asking {asking_price_display} ({asking_price} cents). Do not let the asking
price influence your value estimate.
</asking_price>
"""


# =============================================================================
# Specialty Overrides
# =============================================================================

LUXURY_AUTHENTICATION_APPENDIX = """<luxury_authentication>
This specialty has a HIGH counterfeit rate. Superfakes exist for every major house.
- Treat a visible logo as a claim to verify, never as proof.
- Include at least two critical checks tied to serial/reference numbers, hallmarks or
  movement/construction details that a counterfeit is unlikely to get right.
- Request the photos needed to read serials, hallmarks and the caseback or clasp.
- If authentication_confidence is below 0.85 and the value exceeds $1,000, recommend
  an expert referral and name the type of expert.
</luxury_authentication>"""


# =============================================================================
# Helper Functions
# =============================================================================

def format_price(cents: int) -> str:
    """Render minor units as a dollar string."""
    return f"${cents / 100:,.2f}"


def format_candidates_context(triage: TriageResult) -> dict[str, Any]:
    return format_triage_context(triage)


def format_analysis_context(
    triage: TriageResult,
    evidence: EvidenceReport,
    candidates: CandidateSet,
    asking_price: Optional[int] = None,
) -> dict[str, Any]:
    """Template context for the final analysis."""
    context = format_triage_context(triage)
    context["evidence_json"] = json.dumps(evidence.model_dump(mode="json"), indent=2, ensure_ascii=False)
    context["candidates_json"] = json.dumps(
        [c.model_dump(mode="json") for c in candidates.top_n(3)],
        indent=2,
        ensure_ascii=False,
    )
    if asking_price is not None:
        context["asking_price_block"] = ASKING_PRICE_BLOCK.format(
            asking_price=asking_price,
            asking_price_display=format_price(asking_price),
        )
    else:
        context["asking_price_block"] = ""
    return context


# =============================================================================
# Template Registry
# =============================================================================

CANDIDATES_TEMPLATE = InstructionTemplate(
    stage=PipelineStage.CANDIDATES.value,
    version=TEMPLATE_VERSION,
    config=CANDIDATES_CONFIG,
    system=CANDIDATES_SYSTEM,
    user_template=CANDIDATES_USER,
    description="Ranked identification hypotheses with evidence and value estimates",
    required_context=("item_type", "category", "visible_branding"),
)

ANALYSIS_TEMPLATE = InstructionTemplate(
    stage=PipelineStage.ANALYSIS.value,
    version=TEMPLATE_VERSION,
    config=ANALYSIS_CONFIG,
    system=ANALYSIS_SYSTEM,
    user_template=ANALYSIS_USER,
    description="Merged identification and authentication report",
    required_context=("evidence_json", "candidates_json", "asking_price_block"),
)

ANALYZER_TEMPLATES: tuple[InstructionTemplate, ...] = (
    CANDIDATES_TEMPLATE,
    ANALYSIS_TEMPLATE,
    ANALYSIS_TEMPLATE.specialize(DomainExpert.WATCHES, LUXURY_AUTHENTICATION_APPENDIX),
    ANALYSIS_TEMPLATE.specialize(DomainExpert.JEWELRY, LUXURY_AUTHENTICATION_APPENDIX),
)


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "CANDIDATES_CONFIG",
    "ANALYSIS_CONFIG",
    "CANDIDATES_SYSTEM",
    "ANALYSIS_SYSTEM",
    "CANDIDATES_USER",
    "ANALYSIS_USER",
    "LUXURY_AUTHENTICATION_APPENDIX",
    "format_price",
    "format_candidates_context",
    "format_analysis_context",
    "CANDIDATES_TEMPLATE",
    "ANALYSIS_TEMPLATE",
    "ANALYZER_TEMPLATES",
]
