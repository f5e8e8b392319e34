"""Data models module for the Vintage Vision identification pipeline."""

from src.models.schemas import (
    # Base Models
    BaseModel,
    StageOutput,
    TimestampMixin,
    
    # Enums
    ItemCategory,
    DomainExpert,
    QualityTier,
    ConditionGrade,
    RiskLevel,
    DealRating,
    FlipDifficulty,
    ConfidenceBand,
    MediaType,
    TextCategory,
    CheckCategory,
    CheckPriority,
    PhotoPriority,
    PipelineStage,
    PipelinePhase,
    ProgressEventType,
    ErrorType,
    
    # Input Models
    AnalysisRequest,
    
    # Stage Outputs
    TriageResult,
    TextReading,
    MakerMarkIndicator,
    ConstructionDetails,
    ConditionAssessment,
    EvidenceReport,
    ValueEstimate,
    Candidate,
    CandidateSet,
    AuthenticationCheck,
    PhotoRequest,
    AuthenticationAssessment,
    AlternativeCandidate,
    AnalysisDraft,
    
    # Derived Models
    RiskAssessment,
    DealAssessment,
    MarketplaceLink,
    FinalAnalysis,
    
    # Progress
    ProgressEvent,
    
    # Error Models
    ErrorDetail,
    ErrorResponse,
)

__all__ = [
    "BaseModel",
    "StageOutput",
    "TimestampMixin",
    "ItemCategory",
    "DomainExpert",
    "QualityTier",
    "ConditionGrade",
    "RiskLevel",
    "DealRating",
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
    "AnalysisRequest",
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
    "RiskAssessment",
    "DealAssessment",
    "MarketplaceLink",
    "FinalAnalysis",
    "ProgressEvent",
    "ErrorDetail",
    "ErrorResponse",
]
