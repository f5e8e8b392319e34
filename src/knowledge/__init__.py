"""
Domain knowledge for the Vintage Vision identification pipeline.

Pure data and lookups, no I/O:
    - domain_table: per-specialty instruction profiles and baseline risk
    - calibration: confidence bands shared by every stage
    - templates: versioned instruction templates keyed by (stage, domain)
"""

from src.knowledge.calibration import (
    CONFIDENCE_BANDS,
    band_for,
    is_low_confidence,
    render_policy,
)
from src.knowledge.domain_table import (
    BASE_RISK,
    DOMAIN_PROFILES,
    LUXURY_MAKERS,
    DomainProfile,
    base_risk_for,
    match_luxury_maker,
    profile_for,
    profile_text,
)
from src.knowledge.templates import (
    InstructionTemplate,
    Instructions,
    InvocationConfig,
    TemplateRegistry,
    default_registry,
)

__all__ = [
    "CONFIDENCE_BANDS",
    "band_for",
    "is_low_confidence",
    "render_policy",
    "BASE_RISK",
    "DOMAIN_PROFILES",
    "LUXURY_MAKERS",
    "DomainProfile",
    "base_risk_for",
    "match_luxury_maker",
    "profile_for",
    "profile_text",
    "InstructionTemplate",
    "Instructions",
    "InvocationConfig",
    "TemplateRegistry",
    "default_registry",
]
