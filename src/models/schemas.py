"""
Pydantic models and schemas for the Vintage Vision identification pipeline.

This module defines all data structures used throughout the pipeline,
ensuring type safety, validation, and serialization consistency.

Models:
    - AnalysisRequest: Immutable pipeline input (image + optional asking price)
    - TriageResult: Stage 1 output
    - EvidenceReport: Stage 2a output (extracted facts, no inference)
    - CandidateSet: Stage 2b output (ranked identification hypotheses)
    - AnalysisDraft: Stage 3 output (merged identification + authentication)
    - FinalAnalysis: Complete, calibrated decision artifact
    - ProgressEvent: Streaming notification
    - ErrorResponse: Standardized error handling

All monetary values are integers in minor currency units (cents).
"""

from __future__ import annotations

import base64
import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Self
from uuid import uuid4

from pydantic import (
    BaseModel as PydanticBaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_serializer,
    field_validator,
    model_validator,
)


# =============================================================================
# Base Configuration
# =============================================================================

class BaseModel(PydanticBaseModel):
    """Base model with common configuration for all schemas."""
    
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=False,  # Disable to prevent recursion with model_validators
        populate_by_name=True,
        use_enum_values=True,
        json_schema_extra={"examples": []},
        ser_json_timedelta="iso8601",
        ser_json_bytes="base64",
    )
    
    def to_json(self, **kwargs) -> str:
        """Serialize model to JSON string."""
        return self.model_dump_json(indent=2, **kwargs)
    
    def to_dict(self, **kwargs) -> dict[str, Any]:
        """Serialize model to dictionary."""
        return self.model_dump(**kwargs)
    
    @classmethod
    def from_json(cls, json_str: str) -> Self:
        """Deserialize model from JSON string."""
        return cls.model_validate_json(json_str)


class StageOutput(BaseModel):
    """
    Base for every model produced by a reasoning-service stage.
    
    Unknown keys are rejected; optional fields are declared explicitly.
    Instances are frozen once validated.
    """
    
    model_config = ConfigDict(extra="forbid", frozen=True)


class TimestampMixin(BaseModel):
    """Mixin for models that need timestamp tracking."""
    
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Record creation timestamp in ISO 8601 format",
    )
    
    @field_serializer("created_at")
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        """Serialize datetime to ISO format string."""
        if not value:
            return None
        if value.tzinfo is None:
            return value.isoformat() + "Z"
        return value.isoformat()


# =============================================================================
# Enums
# =============================================================================

class ItemCategory(str, Enum):
    """Age/market category of an item (not its type)."""
    ANTIQUE = "antique"
    VINTAGE = "vintage"
    MODERN_BRANDED = "modern_branded"
    MODERN_GENERIC = "modern_generic"


class DomainExpert(str, Enum):
    """Specialty used to select instruction profiles and baseline risk."""
    FURNITURE = "furniture"
    CERAMICS = "ceramics"
    GLASS = "glass"
    SILVER = "silver"
    JEWELRY = "jewelry"
    WATCHES = "watches"
    ART = "art"
    TEXTILES = "textiles"
    TOYS = "toys"
    BOOKS = "books"
    TOOLS = "tools"
    LIGHTING = "lighting"
    ELECTRONICS = "electronics"
    VEHICLES = "vehicles"
    GENERAL = "general"


class QualityTier(str, Enum):
    """Coarse quality tier assigned at triage."""
    MUSEUM = "museum"
    HIGH = "high"
    MID = "mid"
    LOW = "low"
    UNKNOWN = "unknown"


class ConditionGrade(str, Enum):
    """Observed physical condition."""
    MINT = "mint"
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class RiskLevel(str, Enum):
    """Counterfeit / authenticity risk, ordered from lowest to highest."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"
    
    @classmethod
    def ordered(cls) -> list["RiskLevel"]:
        return [cls.LOW, cls.MEDIUM, cls.HIGH, cls.VERY_HIGH]
    
    @classmethod
    def maximum(cls) -> "RiskLevel":
        return cls.VERY_HIGH
    
    @property
    def rank(self) -> int:
        return RiskLevel.ordered().index(self)
    
    def escalate(self, steps: int = 1) -> "RiskLevel":
        """Move up ``steps`` levels, capped at the maximum."""
        levels = RiskLevel.ordered()
        return levels[min(self.rank + max(steps, 0), len(levels) - 1)]


class DealRating(str, Enum):
    """Asking price relative to estimated market value."""
    EXCEPTIONAL = "exceptional"
    GOOD = "good"
    FAIR = "fair"
    OVERPRICED = "overpriced"


class ReferralUrgency(str, Enum):
    """How strongly a human expert review is advised."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ExpertService(str, Enum):
    """Human review tiers, cheapest first."""
    QUICK_REVIEW = "quick_review"
    FULL_AUTHENTICATION = "full_authentication"
    PREMIUM_APPRAISAL = "premium_appraisal"


class FlipDifficulty(str, Enum):
    """How hard the item is to resell."""
    EASY = "easy"
    MODERATE = "moderate"
    HARD = "hard"
    VERY_HARD = "very_hard"


class ConfidenceBand(str, Enum):
    """Named identification-confidence bands."""
    DEFINITIVE = "definitive"
    STRONG = "strong"
    PROBABLE = "probable"
    PLAUSIBLE = "plausible"
    LOW = "low"


class MediaType(str, Enum):
    """Accepted image media types."""
    JPEG = "image/jpeg"
    PNG = "image/png"
    GIF = "image/gif"
    WEBP = "image/webp"


class TextCategory(str, Enum):
    """What a transcribed piece of text represents."""
    BRAND = "brand"
    MODEL_NUMBER = "model_number"
    MAKER_MARK = "maker_mark"
    SIGNATURE = "signature"
    LABEL = "label"
    INSCRIPTION = "inscription"
    DATE = "date"
    OTHER = "other"


class CheckCategory(str, Enum):
    """Kind of authentication check."""
    VISUAL = "visual"
    PHYSICAL = "physical"
    DOCUMENTATION = "documentation"
    PROVENANCE = "provenance"


class CheckPriority(str, Enum):
    """Priority of an authentication check."""
    CRITICAL = "critical"
    IMPORTANT = "important"
    HELPFUL = "helpful"


class PhotoPriority(str, Enum):
    """Priority of a follow-up photo request."""
    REQUIRED = "required"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"


class PipelineStage(str, Enum):
    """Pipeline stages as reported in progress events and errors."""
    TRIAGE = "triage"
    EVIDENCE = "evidence"
    CANDIDATES = "candidates"
    ANALYSIS = "analysis"
    COMPLETE = "complete"


class PipelinePhase(str, Enum):
    """Orchestrator state machine phases."""
    IDLE = "idle"
    TRIAGING = "triaging"
    RESEARCHING = "researching"  # evidence extraction and candidate generation in flight
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


class ProgressEventType(str, Enum):
    """Progress event kinds delivered to streaming clients."""
    STAGE_START = "stage:start"
    STAGE_COMPLETE = "stage:complete"
    COMPLETE = "complete"
    ERROR = "error"


class ErrorType(str, Enum):
    """Error type classification."""
    INVALID_INPUT = "invalid_input"
    SERVICE_UNAVAILABLE = "service_unavailable"
    EMPTY_RESPONSE = "empty_response"
    SCHEMA_VIOLATION = "schema_violation"
    TIMEOUT = "timeout"
    PIPELINE_FAILED = "pipeline_failed"
    CANCELLED = "cancelled"
    INTERNAL_ERROR = "internal_error"


# =============================================================================
# Validators (Reusable)
# =============================================================================

# Out-of-vocabulary specialties the reasoning service tends to emit
DOMAIN_ALIASES: dict[str, str] = {
    "architecture": "art",
    "photography": "art",
    "photograph": "art",
    "photos": "art",
    "painting": "art",
    "prints": "art",
    "pottery": "ceramics",
    "porcelain": "ceramics",
    "clocks": "watches",
    "timepieces": "watches",
    "music": "general",
    "records": "general",
    "collectibles": "general",
    "memorabilia": "general",
    "unknown": "general",
}


def normalize_enum_text(value: Any) -> Any:
    """Lower-case and trim free text destined for an enum field."""
    if isinstance(value, str):
        return value.strip().lower().replace("-", "_").replace(" ", "_")
    return value


def check_value_range(low: int, high: int, label: str = "value") -> None:
    """Raise if a value range is inverted."""
    if high < low:
        raise ValueError(f"{label} range is inverted: high ({high}) < low ({low})")


# =============================================================================
# Input Models
# =============================================================================

class AnalysisRequest(BaseModel):
    """
    Immutable input for one pipeline run.
    
    The size ceiling is not fixed here: pass ``{"max_image_bytes": n}`` as
    validation context, as ``ValidationService`` does with the configured
    ``MAX_IMAGE_BYTES``.
    
    Example:
        >>> request = AnalysisRequest(
        ...     image_bytes=b"\\xff\\xd8\\xff...",
        ...     media_type=MediaType.JPEG,
        ...     asking_price=4500,
        ... )
    """
    
    model_config = ConfigDict(frozen=True)
    
    image_bytes: bytes = Field(
        ...,
        min_length=1,
        description="Raw image bytes",
    )
    media_type: MediaType = Field(..., description="Declared image media type")
    asking_price: Optional[int] = Field(
        default=None,
        ge=0,
        description="Asking price in minor currency units",
        examples=[4500, 125000],
    )
    request_id: str = Field(
        default_factory=lambda: uuid4().hex,
        description="Unique request identifier",
    )
    caller_id: Optional[str] = Field(
        default=None,
        description="Optional caller identity, used only for analytics tagging",
    )
    
    @field_validator("media_type", mode="before")
    @classmethod
    def normalize_media_type(cls, v: Any) -> Any:
        """Accept bare subtypes and the common 'jpg' spelling."""
        if isinstance(v, str):
            v = v.strip().lower()
            if "/" not in v:
                v = f"image/{v}"
            if v == "image/jpg":
                v = "image/jpeg"
        return v
    
    @field_validator("image_bytes")
    @classmethod
    def check_image_size(cls, v: bytes, info: ValidationInfo) -> bytes:
        limit = (info.context or {}).get("max_image_bytes")
        if limit is not None and len(v) > limit:
            raise ValueError(f"image is {len(v)} bytes; maximum is {limit}")
        return v
    
    @property
    def base64_data(self) -> str:
        """Image bytes encoded as base64 text."""
        return base64.b64encode(self.image_bytes).decode("ascii")
    
    @property
    def data_url(self) -> str:
        """Image as an inline data URL."""
        return f"data:{self.media_type};base64,{self.base64_data}"
    
    def __repr__(self) -> str:
        return (
            f"AnalysisRequest(request_id={self.request_id!r}, media_type={self.media_type!r}, "
            f"size={len(self.image_bytes)}, asking_price={self.asking_price!r})"
        )


# =============================================================================
# Stage 1: Triage
# =============================================================================

class TriageResult(StageOutput):
    """Coarse classification that selects the specialty for later stages."""
    
    category: ItemCategory = Field(..., description="Age/market category")
    domain_expert: DomainExpert = Field(..., description="Selected specialty")
    item_type: str = Field(
        ...,
        min_length=1,
        description="Specific item description, with brand/model if visible",
        examples=["Polaroid OneStep 2 Camera", "Victorian walnut side chair"],
    )
    estimated_era: Optional[str] = Field(default=None, description="Period estimate")
    quality_tier: QualityTier = Field(..., description="Quality tier")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Triage confidence")
    reasoning: str = Field(default="", description="Brief explanation")
    visible_branding: Optional[str] = Field(
        default=None,
        description="Exact brand name as visible in the image",
    )
    all_visible_text: list[str] = Field(
        default_factory=list,
        description="Every transcribed piece of visible text",
    )
    
    @field_validator("category", "quality_tier", mode="before")
    @classmethod
    def normalize_enums(cls, v: Any) -> Any:
        return normalize_enum_text(v)
    
    @field_validator("domain_expert", mode="before")
    @classmethod
    def normalize_domain(cls, v: Any) -> Any:
        """Map common out-of-vocabulary specialties onto the fixed set."""
        v = normalize_enum_text(v)
        if isinstance(v, str):
            return DOMAIN_ALIASES.get(v, v)
        return v
    
    @field_validator("all_visible_text", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v


# =============================================================================
# Stage 2a: Evidence Extraction
# =============================================================================

class TextReading(StageOutput):
    """One transcribed piece of text."""
    
    text: str = Field(..., min_length=1)
    location: str = Field(default="", description="Where on the item it appears")
    category: TextCategory = Field(default=TextCategory.OTHER)
    confidence: float = Field(..., ge=0.0, le=1.0)
    
    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, v: Any) -> Any:
        return normalize_enum_text(v)


class MakerMarkIndicator(StageOutput):
    """A mark, stamp, signature, hallmark or label suggesting a maker."""
    
    description: str = Field(..., min_length=1)
    location: str = Field(default="")
    mark_type: str = Field(
        default="other",
        description="stamp, signature, hallmark, label, engraving, impressed, painted or other",
    )
    possible_maker: Optional[str] = Field(default=None)
    confidence: float = Field(..., ge=0.0, le=1.0)


class ConstructionDetails(StageOutput):
    """Materials and techniques observed on the item."""
    
    materials: list[str] = Field(default_factory=list)
    techniques: list[str] = Field(default_factory=list)


class ConditionAssessment(StageOutput):
    """Condition grade with itemized issues."""
    
    grade: ConditionGrade
    issues: list[str] = Field(default_factory=list)
    
    @field_validator("grade", mode="before")
    @classmethod
    def normalize_grade(cls, v: Any) -> Any:
        return normalize_enum_text(v)


class EvidenceReport(StageOutput):
    """Observable facts only; no identification is attempted."""
    
    text_readings: list[TextReading] = Field(default_factory=list)
    maker_marks: list[MakerMarkIndicator] = Field(default_factory=list)
    construction: ConstructionDetails = Field(default_factory=ConstructionDetails)
    condition: ConditionAssessment
    distinctive_features: list[str] = Field(default_factory=list)
    red_flags: list[str] = Field(default_factory=list)
    
    @property
    def has_red_flags(self) -> bool:
        return any(flag.strip() for flag in self.red_flags)


# =============================================================================
# Stage 2b: Candidate Generation
# =============================================================================

class ValueEstimate(StageOutput):
    """Estimated market value range in minor currency units."""
    
    low: int = Field(..., ge=0)
    high: int = Field(..., ge=0)
    basis: str = Field(default="", description="How the range was determined")
    
    @model_validator(mode="after")
    def check_range(self) -> Self:
        check_value_range(self.low, self.high)
        return self
    
    @property
    def midpoint(self) -> float:
        return (self.low + self.high) / 2


class Candidate(StageOutput):
    """One identification hypothesis."""
    
    rank: int = Field(..., ge=1, le=3)
    label: str = Field(..., min_length=1)
    maker: Optional[str] = Field(default=None)
    model: Optional[str] = Field(default=None)
    period: Optional[str] = Field(default=None)
    confidence: float = Field(..., ge=0.0, le=1.0)
    evidence_for: list[str] = Field(default_factory=list)
    evidence_against: list[str] = Field(default_factory=list)
    value_estimate: ValueEstimate


class CandidateSet(StageOutput):
    """
    Ranked identification hypotheses.
    
    Ranks are contiguous from 1. Confidence is not required to decrease
    with rank: the model may order by plausibility.
    """
    
    candidates: list[Candidate] = Field(..., min_length=1, max_length=3)
    
    @model_validator(mode="after")
    def check_ranks(self) -> Self:
        self.candidates.sort(key=lambda c: c.rank)
        ranks = [c.rank for c in self.candidates]
        expected = list(range(1, len(self.candidates) + 1))
        if ranks != expected:
            raise ValueError(f"candidate ranks must be contiguous from 1, got {ranks}")
        return self
    
    @property
    def top(self) -> Candidate:
        """The rank-1 candidate."""
        return self.candidates[0]
    
    def top_n(self, n: int = 3) -> list[Candidate]:
        return self.candidates[:n]


# =============================================================================
# Stage 3: Combined Final Analysis
# =============================================================================

class AuthenticationCheck(StageOutput):
    """One item-specific authentication check."""
    
    id: str = Field(..., min_length=1)
    category: CheckCategory
    priority: CheckPriority
    check: str = Field(..., min_length=1)
    how_to: str = Field(default="")
    what_to_look_for: str = Field(default="")
    red_flag_signs: tuple[str, ...] = Field(default_factory=tuple)
    requires_expert: bool = Field(default=False)
    photo_helpful: bool = Field(default=False)
    
    @field_validator("category", "priority", mode="before")
    @classmethod
    def normalize_enums(cls, v: Any) -> Any:
        return normalize_enum_text(v)


class PhotoRequest(StageOutput):
    """A follow-up photo that would improve the assessment."""
    
    id: str = Field(..., min_length=1)
    area: str = Field(..., min_length=1)
    reason: str = Field(default="")
    what_to_capture: str = Field(default="")
    priority: PhotoPriority = Field(default=PhotoPriority.RECOMMENDED)
    
    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v: Any) -> Any:
        return normalize_enum_text(v)


class AuthenticationAssessment(StageOutput):
    """Authentication sub-report produced alongside the identification."""
    
    authentication_confidence: float = Field(..., ge=0.0, le=1.0)
    risk_level: RiskLevel
    checklist: tuple[AuthenticationCheck, ...] = Field(default_factory=tuple)
    known_fake_indicators: tuple[str, ...] = Field(default_factory=tuple)
    photos_requested: tuple[PhotoRequest, ...] = Field(default_factory=tuple)
    expert_referral_recommended: bool = Field(default=False)
    expert_referral_reason: Optional[str] = Field(default=None)
    overall_assessment: str = Field(default="")
    
    @field_validator("risk_level", mode="before")
    @classmethod
    def normalize_risk(cls, v: Any) -> Any:
        return normalize_enum_text(v)


class AlternativeCandidate(StageOutput):
    """A runner-up identification kept for the caller."""
    
    name: str = Field(..., min_length=1)
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str = Field(default="")


class AnalysisDraft(StageOutput):
    """Identification plus authentication as returned by the final stage."""
    
    # Core identification
    name: str = Field(..., min_length=1)
    maker: Optional[str] = Field(default=None)
    brand: Optional[str] = Field(default=None)
    model_number: Optional[str] = Field(default=None)
    
    # Period and origin
    era: Optional[str] = Field(default=None)
    style: Optional[str] = Field(default=None)
    origin_region: Optional[str] = Field(default=None)
    
    # Description
    description: str = Field(default="")
    historical_context: str = Field(default="")
    
    # Valuation
    estimated_value_min: int = Field(..., ge=0)
    estimated_value_max: int = Field(..., ge=0)
    valuation_basis: str = Field(default="")
    
    # Confidence and evidence
    confidence: float = Field(..., ge=0.0, le=1.0)
    evidence_for: tuple[str, ...] = Field(default_factory=tuple)
    evidence_against: tuple[str, ...] = Field(default_factory=tuple)
    alternative_candidates: tuple[AlternativeCandidate, ...] = Field(default_factory=tuple)
    verification_tips: tuple[str, ...] = Field(default_factory=tuple)
    red_flags: tuple[str, ...] = Field(default_factory=tuple)
    
    # Resale guidance
    flip_difficulty: Optional[FlipDifficulty] = Field(default=None)
    flip_time_estimate: Optional[str] = Field(default=None)
    resale_channels: tuple[str, ...] = Field(default_factory=tuple)
    
    # Authentication
    authentication: AuthenticationAssessment
    
    @field_validator("flip_difficulty", mode="before")
    @classmethod
    def normalize_flip(cls, v: Any) -> Any:
        return normalize_enum_text(v)
    
    @model_validator(mode="after")
    def check_estimate_range(self) -> Self:
        check_value_range(self.estimated_value_min, self.estimated_value_max, "estimated value")
        return self


# =============================================================================
# Derived Models
# =============================================================================

class RiskAssessment(BaseModel):
    """Calibrated authenticity risk."""
    
    model_config = ConfigDict(frozen=True)
    
    baseline: RiskLevel = Field(..., description="Domain baseline risk")
    level: RiskLevel = Field(..., description="Calibrated risk level")
    reported_level: Optional[RiskLevel] = Field(
        default=None,
        description="Risk level reported by the reasoning service",
    )
    reasons: tuple[str, ...] = Field(default_factory=tuple, description="Escalation reasons")
    
    @property
    def escalation_steps(self) -> int:
        return RiskLevel(self.level).rank - RiskLevel(self.baseline).rank


class DealAssessment(BaseModel):
    """Asking price compared to the estimated value range."""
    
    model_config = ConfigDict(frozen=True)
    
    rating: DealRating
    explanation: str
    asking_price: int = Field(..., ge=0)
    market_midpoint: float = Field(..., gt=0)
    percent_of_market: float = Field(..., ge=0)
    profit_potential_low: int = Field(..., description="valueMin - asking; may be negative")
    profit_potential_high: int = Field(..., description="valueMax - asking; may be negative")


class MarketplaceLink(BaseModel):
    """Search URL on a resale or retail marketplace."""
    
    model_config = ConfigDict(frozen=True)
    
    marketplace_name: str
    url: str


class ExpertReferral(BaseModel):
    """Deterministic decision on offering a human expert review."""
    
    model_config = ConfigDict(frozen=True)
    
    recommended: bool = Field(default=False)
    urgency: ReferralUrgency = Field(default=ReferralUrgency.LOW)
    service: Optional[ExpertService] = Field(
        default=None,
        description="Suggested review tier",
    )
    reasons: tuple[str, ...] = Field(default_factory=tuple)


class FinalAnalysis(AnalysisDraft, TimestampMixin):
    """
    Terminal artifact of a pipeline run.
    
    Immutable once constructed, nested models and sequences included. Risk
    is the calibrated level; the level the reasoning service reported is
    kept in ``risk.reported_level``.
    """
    
    model_config = ConfigDict(frozen=True, extra="ignore")
    
    request_id: str
    
    # Triage context
    category: ItemCategory
    domain_expert: DomainExpert
    item_type: str
    quality_tier: QualityTier = Field(default=QualityTier.UNKNOWN)
    
    # Calibration
    risk: RiskAssessment
    confidence_band: ConfidenceBand
    low_confidence: bool = Field(
        default=False,
        description="True when confidence is below the plausible-guess floor",
    )
    
    # Deal
    asking_price: Optional[int] = Field(default=None, ge=0)
    deal: Optional[DealAssessment] = Field(default=None)
    
    marketplace_links: tuple[MarketplaceLink, ...] = Field(default_factory=tuple)
    expert_referral: ExpertReferral = Field(default_factory=ExpertReferral)
    
    @property
    def deal_rating(self) -> Optional[str]:
        return self.deal.rating if self.deal else None
    
    @property
    def risk_level(self) -> str:
        return self.risk.level
    
    @property
    def authentication_confidence(self) -> float:
        return self.authentication.authentication_confidence


# =============================================================================
# Progress Models
# =============================================================================

class ProgressEvent(BaseModel):
    """Ephemeral, ordered notification emitted by the orchestrator."""
    
    type: ProgressEventType
    stage: Optional[PipelineStage] = Field(default=None)
    message: str
    percent: int = Field(..., ge=0, le=100)
    payload: Optional[dict[str, Any]] = Field(default=None)
    
    @property
    def is_terminal(self) -> bool:
        return self.type in (ProgressEventType.COMPLETE.value, ProgressEventType.ERROR.value)
    
    def to_sse(self) -> str:
        """Frame as a server-sent event."""
        return f"data: {json.dumps(self.model_dump(mode='json', exclude_none=True))}\n\n"


# =============================================================================
# Error Models
# =============================================================================

class ErrorDetail(BaseModel):
    """Detailed error information."""
    
    field: Optional[str] = Field(
        default=None,
        description="Field that caused the error",
    )
    message: str = Field(..., description="Error message")
    code: Optional[str] = Field(
        default=None,
        description="Error code for programmatic handling",
    )


class ErrorResponse(BaseModel):
    """
    Standardized error descriptor.
    
    Carried by the terminal error event and returned to synchronous callers.
    
    Example:
        >>> error = ErrorResponse(
        ...     error_type=ErrorType.SCHEMA_VIOLATION,
        ...     message="Evidence output did not match its contract",
        ...     stage="evidence",
        ... )
    """
    
    error_id: str = Field(
        default_factory=lambda: uuid4().hex,
        description="Unique error identifier for tracking",
    )
    error_type: ErrorType = Field(..., description="Error classification")
    message: str = Field(..., description="Human-readable error message")
    stage: Optional[str] = Field(default=None, description="Originating stage")
    details: list[ErrorDetail] = Field(
        default_factory=list,
        description="Detailed error information",
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the error occurred",
    )
    request_id: Optional[str] = Field(
        default=None,
        description="Associated request ID",
    )
    recoverable: bool = Field(
        default=False,
        description="Whether retrying the whole pipeline may succeed",
    )
    
    @field_serializer("timestamp")
    def serialize_timestamp(self, value: datetime) -> str:
        """Serialize timestamp to ISO format."""
        return value.isoformat() + "Z"
    
    def to_dict_safe(self) -> dict[str, Any]:
        """Return error as dict, safe for logging (no raw model output)."""
        return self.model_dump(mode="json", exclude={"details"})


# =============================================================================
# Convenience Type Aliases
# =============================================================================

StageResult = TriageResult | EvidenceReport | CandidateSet | AnalysisDraft


# =============================================================================
# Export All Models
# =============================================================================

__all__ = [
    # Base
    "BaseModel",
    "StageOutput",
    "TimestampMixin",
    
    # Enums
    "ItemCategory",
    "DomainExpert",
    "QualityTier",
    "ConditionGrade",
    "RiskLevel",
    "DealRating",
    "ReferralUrgency",
    "ExpertService",
    "FlipDifficulty",
    "ConfidenceBand",
    "MediaType",
    "TextCategory",
    "CheckCategory",
    "CheckPriority",
    "PhotoPriority",
    "PipelineStage",
    "PipelinePhase",
    "ProgressEventType",
    "ErrorType",
    
    # Input
    "AnalysisRequest",
    
    # Stage outputs
    "TriageResult",
    "TextReading",
    "MakerMarkIndicator",
    "ConstructionDetails",
    "ConditionAssessment",
    "EvidenceReport",
    "ValueEstimate",
    "Candidate",
    "CandidateSet",
    "AuthenticationCheck",
    "PhotoRequest",
    "AuthenticationAssessment",
    "AlternativeCandidate",
    "AnalysisDraft",
    
    # Derived
    "RiskAssessment",
    "DealAssessment",
    "MarketplaceLink",
    "ExpertReferral",
    "FinalAnalysis",
    
    # Progress
    "ProgressEvent",
    
    # Errors
    "ErrorDetail",
    "ErrorResponse",
    
    # Helpers
    "DOMAIN_ALIASES",
    "normalize_enum_text",
    "StageResult",
]
