import asyncio
import copy
import inspect
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.analyzers.deal_calculator import DealCalculator
from src.config.settings import Settings, get_settings
from src.models.schemas import (
    AnalysisDraft,
    AnalysisRequest,
    CandidateSet,
    EvidenceReport,
    FinalAnalysis,
    MediaType,
    RiskAssessment,
    TriageResult,
)
from src.utils.marketplace import build_marketplace_links

# Smallest byte strings the image sniffer recognizes
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00\xff\xd9"
PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"

TEST_API_KEY = "sk-ant-api-mock-key"


def make_settings(**overrides) -> Settings:
    """Real settings with fast retries and short timeouts."""
    values = {
        "ANTHROPIC_API_KEY": TEST_API_KEY,
        "MAX_RETRIES": 1,
        "STAGE_MAX_ATTEMPTS": 2,
        "STAGE_RETRY_WAIT_SECONDS": 0,
        "STAGE_TIMEOUT_SECONDS": 5,
        "PIPELINE_TIMEOUT_SECONDS": 10,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture(autouse=True)
def clean_settings_cache(monkeypatch):
    """get_settings() reads a test key and never a cached instance."""
    monkeypatch.setenv("ANTHROPIC_API_KEY", TEST_API_KEY)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path):
    return make_settings(OUTPUT_DIR=str(tmp_path / "reports"))


# =============================================================================
# Stage payloads (as the reasoning service would return them)
# =============================================================================

@pytest.fixture
def triage_payload():
    return {
        "category": "vintage",
        "domain_expert": "watches",
        "item_type": "Omega Seamaster wristwatch",
        "estimated_era": "1960s",
        "quality_tier": "high",
        "confidence": 0.82,
        "reasoning": "Dial text reads OMEGA Seamaster",
        "visible_branding": "OMEGA",
        "all_visible_text": ["OMEGA", "Seamaster", "Automatic"],
    }


@pytest.fixture
def evidence_payload():
    return {
        "text_readings": [
            {"text": "OMEGA", "location": "dial", "category": "brand", "confidence": 0.95},
            {"text": "Seamaster", "location": "dial", "category": "model_number", "confidence": 0.9},
        ],
        "maker_marks": [
            {
                "description": "Omega logo on crown",
                "location": "crown",
                "mark_type": "engraving",
                "possible_maker": "Omega",
                "confidence": 0.8,
            }
        ],
        "construction": {"materials": ["stainless steel"], "techniques": ["automatic movement"]},
        "condition": {"grade": "good", "issues": ["light scratches on crystal"]},
        "distinctive_features": ["dauphine hands"],
        "red_flags": [],
    }


@pytest.fixture
def candidates_payload():
    return {
        "candidates": [
            {
                "rank": 1,
                "label": "Omega Seamaster Automatic",
                "maker": "Omega",
                "model": "166.010",
                "period": "1960s",
                "confidence": 0.78,
                "evidence_for": ["Dial text", "Case shape"],
                "evidence_against": [],
                "value_estimate": {"low": 120000, "high": 250000, "basis": "Recent sold listings"},
            },
            {
                "rank": 2,
                "label": "Omega Seamaster De Ville",
                "maker": "Omega",
                "model": None,
                "period": "1960s",
                "confidence": 0.4,
                "evidence_for": [],
                "evidence_against": ["Case shape"],
                "value_estimate": {"low": 80000, "high": 150000, "basis": ""},
            },
        ]
    }


@pytest.fixture
def analysis_payload():
    return {
        "name": "Omega Seamaster Automatic",
        "maker": "Omega",
        "brand": "Omega",
        "model_number": "166.010",
        "era": "1960s",
        "style": "Mid-century sports dress watch",
        "origin_region": "Switzerland",
        "description": "Steel automatic wristwatch with a silvered dial.",
        "historical_context": "The Seamaster line was introduced in 1948.",
        "estimated_value_min": 123456,
        "estimated_value_max": 245000,
        "valuation_basis": "Recent sold listings for the reference",
        "confidence": 0.8,
        "evidence_for": ["OMEGA dial text"],
        "evidence_against": [],
        "alternative_candidates": [
            {"name": "Omega Seamaster De Ville", "confidence": 0.3, "reason": "Similar dial layout"}
        ],
        "verification_tips": ["Open the caseback and check the caliber"],
        "red_flags": [],
        "flip_difficulty": "moderate",
        "flip_time_estimate": "2-4 weeks",
        "resale_channels": ["eBay", "Watch forums"],
        "authentication": {
            "authentication_confidence": 0.6,
            "risk_level": "high",
            "checklist": [
                {
                    "id": "font",
                    "category": "visual",
                    "priority": "helpful",
                    "check": "Compare dial font",
                    "how_to": "Use a loupe",
                    "what_to_look_for": "Crisp serif printing",
                    "red_flag_signs": [],
                    "requires_expert": False,
                    "photo_helpful": True,
                },
                {
                    "id": "movement",
                    "category": "physical",
                    "priority": "critical",
                    "check": "Verify movement caliber",
                    "how_to": "Open the caseback",
                    "what_to_look_for": "Signed Omega caliber 565",
                    "red_flag_signs": ["Unsigned movement"],
                    "requires_expert": True,
                    "photo_helpful": True,
                },
            ],
            "known_fake_indicators": ["Misaligned dial printing"],
            "photos_requested": [
                {
                    "id": "caseback",
                    "area": "Caseback",
                    "reason": "Reference number",
                    "what_to_capture": "Inside of the caseback",
                    "priority": "required",
                }
            ],
            "expert_referral_recommended": True,
            "expert_referral_reason": "High-value watch",
            "overall_assessment": "Consistent with a genuine 1960s Seamaster.",
        },
    }


@pytest.fixture
def stage_payloads(triage_payload, evidence_payload, candidates_payload, analysis_payload):
    return {
        "triage": triage_payload,
        "evidence": evidence_payload,
        "candidates": candidates_payload,
        "analysis": analysis_payload,
    }


@pytest.fixture
def stage_responses(stage_payloads):
    """Raw response text per task type."""
    return {stage: json.dumps(payload) for stage, payload in stage_payloads.items()}


# =============================================================================
# Model fixtures
# =============================================================================

@pytest.fixture
def triage_result(triage_payload):
    return TriageResult.model_validate(triage_payload)


@pytest.fixture
def evidence_report(evidence_payload):
    return EvidenceReport.model_validate(evidence_payload)


@pytest.fixture
def candidate_set(candidates_payload):
    return CandidateSet.model_validate(candidates_payload)


@pytest.fixture
def analysis_draft(analysis_payload):
    return AnalysisDraft.model_validate(copy.deepcopy(analysis_payload))


@pytest.fixture
def final_analysis(analysis_payload, triage_result):
    """Calibrated result for the Omega fixture with a $900 asking price."""
    fields = copy.deepcopy(analysis_payload)
    fields.update(estimated_value_min=120000, estimated_value_max=250000)
    return FinalAnalysis(
        **fields,
        request_id="req-test-001",
        category=triage_result.category,
        domain_expert=triage_result.domain_expert,
        item_type=triage_result.item_type,
        quality_tier=triage_result.quality_tier,
        risk=RiskAssessment(
            baseline="high",
            level="very_high",
            reported_level="high",
            reasons=["Top candidate matches high-counterfeit maker 'omega'"],
        ),
        confidence_band="probable",
        low_confidence=False,
        asking_price=90000,
        deal=DealCalculator().rate(90000, 120000, 250000),
        marketplace_links=build_marketplace_links(fields["name"], triage_result.category, fields["brand"]),
    )


@pytest.fixture
def jpeg_bytes():
    return JPEG_BYTES


@pytest.fixture
def png_bytes():
    return PNG_BYTES


@pytest.fixture
def analysis_request(jpeg_bytes):
    return AnalysisRequest(
        image_bytes=jpeg_bytes,
        media_type=MediaType.JPEG,
        asking_price=90000,
        request_id="req-test-001",
    )


@pytest.fixture
def analysis_request_no_price(jpeg_bytes):
    return AnalysisRequest(image_bytes=jpeg_bytes, media_type=MediaType.JPEG)


# =============================================================================
# Reasoning service double
# =============================================================================

def make_reasoning_service(responses: dict):
    """
    Reasoning client double keyed by task type.

    A response may be text, an exception to raise, a list consumed one
    entry per call, or an async function awaited for the text.
    """
    responses = {key: (list(value) if isinstance(value, list) else value) for key, value in responses.items()}
    service = MagicMock()
    service.calls = []

    async def invoke(instructions, image, config=None):
        task_type = (config or instructions.config).task_type
        service.calls.append(task_type)
        response = responses[task_type]
        if isinstance(response, list):
            response = response.pop(0)
        if isinstance(response, BaseException):
            raise response
        if inspect.iscoroutinefunction(response):
            return await response()
        return response

    service.invoke = AsyncMock(side_effect=invoke)
    service.close = AsyncMock()
    service.get_usage_stats.return_value = {"total_requests": 4, "total_tokens": 1200, "total_cost": 0.0123}
    return service


@pytest.fixture
def reasoning_service(stage_responses):
    return make_reasoning_service(stage_responses)


@pytest.fixture
def reasoning_service_factory():
    return make_reasoning_service


@pytest.fixture
def settings_factory(tmp_path):
    def factory(**overrides):
        overrides.setdefault("OUTPUT_DIR", str(tmp_path / "reports"))
        return make_settings(**overrides)
    return factory
