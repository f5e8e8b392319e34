"""Analysis stages and calibrators for the Vintage Vision identification pipeline."""

from src.analyzers.candidate_generator import CandidateGenerator
from src.analyzers.deal_calculator import DealCalculator, humanize_price
from src.analyzers.expert_escalation import ExpertEscalation
from src.analyzers.final_analyzer import FinalAnalyzer
from src.analyzers.prompts import (
    ANALYSIS_TEMPLATE,
    ANALYZER_TEMPLATES,
    CANDIDATES_TEMPLATE,
    format_analysis_context,
    format_candidates_context,
)
from src.analyzers.risk_calibrator import RiskCalibrator

__all__ = [
    # Stages
    "CandidateGenerator",
    "FinalAnalyzer",
    # Calibrators
    "RiskCalibrator",
    "DealCalculator",
    "humanize_price",
    "ExpertEscalation",
    # Prompts
    "CANDIDATES_TEMPLATE",
    "ANALYSIS_TEMPLATE",
    "ANALYZER_TEMPLATES",
    "format_candidates_context",
    "format_analysis_context",
]
