"""
Instruction templates for the extraction stages.

Prompt Categories:
    1. Triage - classify category, specialty and quality tier; transcribe
       every visible piece of text
    2. Evidence Extraction - record observable facts without identifying

Best Practices Applied:
    - XML tags for clear structure
    - Transcription before classification
    - Explicit JSON schema specifications (snake_case keys, no extras)
    - Low temperature for extraction tasks
    - Literal braces are doubled; templates are rendered with str.format
"""

import json
from typing import Any

from src.knowledge.templates import InstructionTemplate, InvocationConfig
from src.models.schemas import DomainExpert, PipelineStage, QualityTier, TriageResult

TEMPLATE_VERSION = "2024.11"


def _choices(enum_cls) -> str:
    return " | ".join(member.value for member in enum_cls)


# =============================================================================
# PROMPT 1: Triage
# =============================================================================

TRIAGE_CONFIG = InvocationConfig(
    task_type=PipelineStage.TRIAGE.value,
    temperature=0.1,
    max_tokens=800,
)

TRIAGE_SYSTEM = """You are an expert appraiser doing initial triage of an item from a single photograph.

<first_step>
Carefully examine the image and transcribe ALL visible text before anything else:
- Brand names (e.g. "POLAROID", "Rolex", "Tiffany & Co.")
- Model names and numbers (e.g. "OneStep 2", "Submariner", "Model 1234")
- Maker's marks, signatures, stamps, hallmarks
- Labels, tags, engravings
This text is essential for accurate identification.
</first_step>

<classification>
1. category: the AGE category, not the item type. Exactly one of:
   - "antique": pre-1920, shows authentic age or patina
   - "vintage": 1920-1990, collectible
   - "modern_branded": post-1990 with an identifiable brand (a brand must be visible)
   - "modern_generic": post-1990 with no clear brand, or when uncertain
2. domain_expert: exactly one of: """ + _choices(DomainExpert) + """
   Photographs and architecture use "art". Anything that does not fit uses "general".
3. quality_tier: exactly one of: """ + _choices(QualityTier) + """
</classification>

<examples>
- A painting from 1890: category "antique", domain_expert "art"
- Modern jewelry without a visible maker: category "modern_generic", domain_expert "jewelry"
</examples>

{calibration_policy}

<output_format>
Respond with a single JSON object and nothing else:
{{
  "category": "antique | vintage | modern_branded | modern_generic",
  "domain_expert": "one of the specialties above",
  "item_type": "specific description WITH brand/model if visible (e.g. 'Polaroid OneStep 2 Camera', not 'camera')",
  "estimated_era": "specific period (e.g. '2017' or '1890-1910') or null",
  "quality_tier": "museum | high | mid | low | unknown",
  "confidence": 0.0,
  "reasoning": "brief explanation, citing any visible text that helped",
  "visible_branding": "EXACT brand name as visible, or null",
  "all_visible_text": ["every", "transcribed", "piece", "of", "text"]
}}
Do not add any other keys.
</output_format>"""

TRIAGE_USER = """<task>
First, read and transcribe ALL visible text in this image. Then categorize the item.
</task>"""


# =============================================================================
# PROMPT 2: Evidence Extraction
# =============================================================================

EVIDENCE_CONFIG = InvocationConfig(
    task_type=PipelineStage.EVIDENCE.value,
    temperature=0.1,
    max_tokens=1500,
)

EVIDENCE_SYSTEM = """You are a forensic examiner of {domain_expert} items. Your only job is to record what can be OBSERVED in the photograph. Do not identify the item, name a maker you cannot read, or estimate value.

{domain_profile}

<guidelines>
1. EXTRACT, DO NOT INFER: every reading must be visible in the image.
2. TEXT: transcribe each piece of text with where it appears and what it is
   (brand | model_number | maker_mark | signature | label | inscription | date | other).
3. MARKS: describe each maker's mark, stamp, signature, hallmark or label; only
   name a possible maker when the mark itself names or clearly depicts it.
4. CONSTRUCTION: list materials and techniques you can see.
5. CONDITION: grade as mint | excellent | good | fair | poor and itemize issues.
6. RED FLAGS: list anything inconsistent with the claimed age or maker. An empty
   list is correct when nothing is suspicious.
</guidelines>

{calibration_policy}

<output_format>
Respond with a single JSON object and nothing else:
{{
  "text_readings": [
    {{"text": "exact text", "location": "where on the item", "category": "brand", "confidence": 0.0}}
  ],
  "maker_marks": [
    {{"description": "what the mark looks like", "location": "where", "mark_type": "stamp", "possible_maker": null, "confidence": 0.0}}
  ],
  "construction": {{"materials": ["..."], "techniques": ["..."]}},
  "condition": {{"grade": "good", "issues": ["..."]}},
  "distinctive_features": ["..."],
  "red_flags": []
}}
Do not add any other keys.
</output_format>"""

EVIDENCE_USER = """<triage>
Item type: {item_type}
Category: {category}
Estimated era: {estimated_era}
Visible branding: {visible_branding}
Text already transcribed: {visible_text}
</triage>

<task>
Extract every observable fact from the image. Confirm or correct the transcribed
text above and add anything that was missed.
</task>"""


# =============================================================================
# Helper Functions
# =============================================================================

def format_triage_context(triage: TriageResult) -> dict[str, Any]:
    """Template context shared by every stage that follows triage."""
    return {
        "item_type": triage.item_type,
        "category": triage.category,
        "estimated_era": triage.estimated_era or "unknown",
        "quality_tier": triage.quality_tier,
        "visible_branding": triage.visible_branding or "none",
        "visible_text": json.dumps(triage.all_visible_text, ensure_ascii=False) if triage.all_visible_text else "none",
        "triage_confidence": f"{triage.confidence:.2f}",
    }


# =============================================================================
# Template Registry
# =============================================================================

TRIAGE_TEMPLATE = InstructionTemplate(
    stage=PipelineStage.TRIAGE.value,
    version=TEMPLATE_VERSION,
    config=TRIAGE_CONFIG,
    system=TRIAGE_SYSTEM,
    user_template=TRIAGE_USER,
    description="Classify category, specialty and quality tier; transcribe visible text",
)

EVIDENCE_TEMPLATE = InstructionTemplate(
    stage=PipelineStage.EVIDENCE.value,
    version=TEMPLATE_VERSION,
    config=EVIDENCE_CONFIG,
    system=EVIDENCE_SYSTEM,
    user_template=EVIDENCE_USER,
    description="Record observable facts without identifying the item",
    required_context=("item_type", "category", "visible_branding", "visible_text"),
)

EXTRACTOR_TEMPLATES: tuple[InstructionTemplate, ...] = (
    TRIAGE_TEMPLATE,
    EVIDENCE_TEMPLATE,
)


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "TEMPLATE_VERSION",
    "TRIAGE_CONFIG",
    "EVIDENCE_CONFIG",
    "TRIAGE_SYSTEM",
    "EVIDENCE_SYSTEM",
    "TRIAGE_USER",
    "EVIDENCE_USER",
    "format_triage_context",
    "TRIAGE_TEMPLATE",
    "EVIDENCE_TEMPLATE",
    "EXTRACTOR_TEMPLATES",
]
