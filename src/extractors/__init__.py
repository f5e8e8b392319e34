"""
Extraction stages for the Vintage Vision identification pipeline.

This module provides the stages that observe rather than identify:
triage (classification and transcription) and evidence extraction.

Example:
    >>> from src.extractors import TriageExtractor, EvidenceExtractor
    >>> triage = await TriageExtractor(llm_service).run(request)
    >>> evidence = await EvidenceExtractor(llm_service).run(request, triage=triage)
"""

from src.extractors.evidence_extractor import EvidenceExtractor
from src.extractors.prompts import (
    EVIDENCE_TEMPLATE,
    EXTRACTOR_TEMPLATES,
    TRIAGE_TEMPLATE,
    format_triage_context,
)
from src.extractors.triage_extractor import TriageExtractor

__all__ = [
    "TriageExtractor",
    "EvidenceExtractor",
    "TRIAGE_TEMPLATE",
    "EVIDENCE_TEMPLATE",
    "EXTRACTOR_TEMPLATES",
    "format_triage_context",
]
