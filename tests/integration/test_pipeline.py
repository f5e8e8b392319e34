"""
Integration tests for the identification pipeline.

Runs the full LangGraph workflow against a reasoning-service double:
- Stage ordering and fan-out
- Progress events and the single terminal event
- Retry, fail-fast and timeout behavior
- Cancellation
"""

import asyncio
import json

import pytest

from src.models.schemas import FinalAnalysis, PipelinePhase, ProgressEventType
from src.pipeline.orchestrator import IdentificationPipeline, analyze_image
from src.utils.errors import (
    PipelineCancelled,
    PipelineFailed,
    SchemaViolation,
    ServiceUnavailable,
    StageTimeout,
)


# =============================================================================
# Fixtures
# =============================================================================

def hanging(cancelled=None):
    """Response that never arrives; records its cancellation."""
    async def respond():
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            if cancelled is not None:
                cancelled.set()
            raise
        return "{}"
    return respond


async def wait_for_call(service, task_type):
    while task_type not in service.calls:
        await asyncio.sleep(0.01)


@pytest.fixture
def build_pipeline(settings_factory, reasoning_service_factory):
    def build(responses, **overrides):
        service = reasoning_service_factory(responses)
        pipeline = IdentificationPipeline(settings=settings_factory(**overrides), llm_service=service)
        return pipeline, service
    return build


# =============================================================================
# Happy path
# =============================================================================

@pytest.mark.asyncio
async def test_full_pipeline_with_asking_price(build_pipeline, stage_responses, analysis_request):
    pipeline, service = build_pipeline(stage_responses)

    analysis = await pipeline.run(analysis_request)

    assert isinstance(analysis, FinalAnalysis)
    assert analysis.name == "Omega Seamaster Automatic"
    assert analysis.request_id == "req-test-001"
    assert analysis.category == "vintage"
    assert analysis.domain_expert == "watches"

    # Humanized before the deal is rated
    assert analysis.estimated_value_min == 120000
    assert analysis.estimated_value_max == 250000
    assert analysis.deal.rating == "exceptional"
    assert analysis.deal.percent_of_market == pytest.approx(48.65, abs=0.01)
    assert analysis.deal.profit_potential_low == 30000
    assert analysis.deal.profit_potential_high == 160000

    assert analysis.risk.baseline == "high"
    assert analysis.risk.level == "very_high"
    assert analysis.risk.reported_level == "high"
    assert analysis.confidence_band == "probable"
    assert analysis.low_confidence is False

    assert analysis.expert_referral.recommended is True
    assert analysis.expert_referral.urgency == "critical"
    assert analysis.expert_referral.service == "full_authentication"
    assert "High-risk category: watches" in analysis.expert_referral.reasons

    assert len(analysis.marketplace_links) == 5
    assert "Omega+Seamaster+Automatic" in analysis.marketplace_links[0].url
    assert pipeline.phase == PipelinePhase.COMPLETE


@pytest.mark.asyncio
async def test_stage_call_order(build_pipeline, stage_responses, analysis_request):
    pipeline, service = build_pipeline(stage_responses)
    await pipeline.run(analysis_request)

    assert service.calls[0] == "triage"
    assert sorted(service.calls[1:3]) == ["candidates", "evidence"]
    assert service.calls[3] == "analysis"
    assert len(service.calls) == 4


@pytest.mark.asyncio
async def test_progress_events_in_order(build_pipeline, stage_responses, analysis_request):
    pipeline, _ = build_pipeline(stage_responses)
    await pipeline.run(analysis_request)

    history = pipeline.progress.history
    assert [(e.type, e.stage) for e in history[:2]] == [
        (ProgressEventType.STAGE_START, "triage"),
        (ProgressEventType.STAGE_COMPLETE, "triage"),
    ]
    assert sorted((e.type, e.stage) for e in history[2:6]) == [
        ("stage:complete", "candidates"),
        ("stage:complete", "evidence"),
        ("stage:start", "candidates"),
        ("stage:start", "evidence"),
    ]
    assert [(e.type, e.stage) for e in history[6:]] == [
        (ProgressEventType.STAGE_START, "analysis"),
        (ProgressEventType.STAGE_COMPLETE, "analysis"),
        (ProgressEventType.COMPLETE, "complete"),
    ]

    percents = [e.percent for e in history]
    assert percents == sorted(percents)
    assert percents[0] == 5
    assert percents[-1] == 100
    assert sum(1 for e in history if e.is_terminal) == 1


@pytest.mark.asyncio
async def test_without_asking_price_has_no_deal(build_pipeline, stage_responses, analysis_request_no_price):
    pipeline, _ = build_pipeline(stage_responses)
    analysis = await pipeline.run(analysis_request_no_price)

    assert analysis.asking_price is None
    assert analysis.deal is None
    assert analysis.deal_rating is None


@pytest.mark.asyncio
async def test_cheap_item_keeps_a_value_and_a_deal(build_pipeline, stage_payloads, analysis_request):
    stage_payloads["analysis"].update(estimated_value_min=300, estimated_value_max=450)
    responses = {stage: json.dumps(payload) for stage, payload in stage_payloads.items()}
    pipeline, _ = build_pipeline(responses)
    request = analysis_request.model_copy(update={"asking_price": 100})

    analysis = await pipeline.run(request)

    assert analysis.estimated_value_min == 1000
    assert analysis.estimated_value_max == 1000
    assert analysis.deal is not None
    assert analysis.deal.market_midpoint == 1000
    assert analysis.deal.rating == "exceptional"


@pytest.mark.asyncio
async def test_red_flags_escalate_risk(build_pipeline, stage_payloads, analysis_request):
    stage_payloads["candidates"]["candidates"][0].update(label="Timex Marlin", maker="Timex")
    stage_payloads["evidence"]["red_flags"] = ["Dial printing is blurred"]
    responses = {stage: json.dumps(payload) for stage, payload in stage_payloads.items()}
    pipeline, _ = build_pipeline(responses)

    analysis = await pipeline.run(analysis_request)

    assert analysis.risk.baseline == "high"
    assert analysis.risk.level == "very_high"
    assert len(analysis.risk.reasons) == 1
    assert "red flag" in analysis.risk.reasons[0]


@pytest.mark.asyncio
async def test_low_confidence_result_is_flagged(build_pipeline, stage_payloads, analysis_request):
    stage_payloads["analysis"]["confidence"] = 0.3
    responses = {stage: json.dumps(payload) for stage, payload in stage_payloads.items()}
    pipeline, _ = build_pipeline(responses)

    analysis = await pipeline.run(analysis_request)

    assert analysis.confidence_band == "low"
    assert analysis.low_confidence is True


@pytest.mark.asyncio
async def test_analyze_image_closes_nothing_it_does_not_own(settings, reasoning_service, analysis_request):
    analysis = await analyze_image(analysis_request, settings=settings, llm_service=reasoning_service)

    assert analysis.name == "Omega Seamaster Automatic"
    reasoning_service.close.assert_not_awaited()


# =============================================================================
# Failures
# =============================================================================

@pytest.mark.asyncio
async def test_recoverable_triage_error_is_retried(build_pipeline, stage_responses, analysis_request):
    stage_responses["triage"] = [ServiceUnavailable("overloaded"), stage_responses["triage"]]
    pipeline, service = build_pipeline(stage_responses)

    analysis = await pipeline.run(analysis_request)

    assert analysis.name == "Omega Seamaster Automatic"
    assert service.calls.count("triage") == 2


@pytest.mark.asyncio
async def test_retries_exhausted(build_pipeline, stage_responses, analysis_request):
    stage_responses["triage"] = [ServiceUnavailable("down 1"), ServiceUnavailable("down 2")]
    pipeline, service = build_pipeline(stage_responses)

    with pytest.raises(PipelineFailed) as exc_info:
        await pipeline.run(analysis_request)

    assert isinstance(exc_info.value.cause, ServiceUnavailable)
    assert exc_info.value.stage == "triage"
    assert service.calls == ["triage", "triage"]


@pytest.mark.asyncio
async def test_schema_violation_is_not_retried(build_pipeline, stage_responses, analysis_request):
    stage_responses["analysis"] = '{"name": "Incomplete"}'
    pipeline, service = build_pipeline(stage_responses)

    with pytest.raises(PipelineFailed) as exc_info:
        await pipeline.run(analysis_request)

    failure = exc_info.value
    assert isinstance(failure.cause, SchemaViolation)
    assert failure.stage == "analysis"
    assert service.calls.count("analysis") == 1
    assert pipeline.phase == PipelinePhase.FAILED

    terminal = pipeline.progress.history[-1]
    assert terminal.type == ProgressEventType.ERROR
    assert terminal.payload["error_type"] == "schema_violation"
    assert terminal.payload["stage"] == "analysis"


@pytest.mark.asyncio
async def test_invalid_evidence_output_fails_pipeline(build_pipeline, stage_responses, analysis_request):
    stage_responses["evidence"] = "```json\n{not valid\n```"
    pipeline, service = build_pipeline(stage_responses)

    with pytest.raises(PipelineFailed) as exc_info:
        await pipeline.run(analysis_request)

    assert isinstance(exc_info.value.cause, SchemaViolation)
    assert exc_info.value.cause.stage == "evidence"
    assert "analysis" not in service.calls
    assert all(e.type != ProgressEventType.COMPLETE for e in pipeline.progress.history)


@pytest.mark.asyncio
async def test_failed_branch_cancels_sibling(build_pipeline, stage_responses, analysis_request):
    evidence_cancelled = asyncio.Event()
    stage_responses["evidence"] = hanging(evidence_cancelled)
    stage_responses["candidates"] = '{"candidates": "none"}'
    pipeline, service = build_pipeline(stage_responses)

    with pytest.raises(PipelineFailed) as exc_info:
        await pipeline.run(analysis_request)

    assert exc_info.value.stage == "candidates"
    assert isinstance(exc_info.value.cause, SchemaViolation)
    assert evidence_cancelled.is_set()
    assert "analysis" not in service.calls

    terminal = pipeline.progress.history[-1]
    assert terminal.stage == "candidates"
    assert terminal.payload["error_type"] == "schema_violation"
    assert sum(1 for e in pipeline.progress.history if e.is_terminal) == 1


@pytest.mark.asyncio
async def test_stage_timeout(build_pipeline, stage_responses, analysis_request):
    stage_responses["analysis"] = hanging()
    pipeline, _ = build_pipeline(stage_responses, STAGE_TIMEOUT_SECONDS=0.1, STAGE_MAX_ATTEMPTS=1)

    with pytest.raises(PipelineFailed) as exc_info:
        await pipeline.run(analysis_request)

    assert isinstance(exc_info.value.cause, StageTimeout)
    terminal = pipeline.progress.history[-1]
    assert terminal.payload["error_type"] == "timeout"
    assert terminal.stage == "analysis"
    assert terminal.percent == 45


@pytest.mark.asyncio
async def test_pipeline_timeout(build_pipeline, stage_responses, analysis_request):
    stage_responses["triage"] = hanging()
    pipeline, _ = build_pipeline(
        stage_responses,
        STAGE_TIMEOUT_SECONDS=0.2,
        STAGE_MAX_ATTEMPTS=5,
        PIPELINE_TIMEOUT_SECONDS=0.5,
    )

    with pytest.raises(PipelineFailed) as exc_info:
        await pipeline.run(analysis_request)

    cause = exc_info.value.cause
    assert isinstance(cause, StageTimeout)
    assert "Pipeline exceeded" in cause.message
    assert exc_info.value.stage == "triage"
    assert pipeline.phase == PipelinePhase.FAILED
    assert pipeline.progress.history[-1].payload["error_type"] == "timeout"


@pytest.mark.asyncio
async def test_cancel_run(build_pipeline, stage_responses, analysis_request):
    triage_cancelled = asyncio.Event()
    stage_responses["triage"] = hanging(triage_cancelled)
    pipeline, service = build_pipeline(stage_responses)

    task = asyncio.ensure_future(pipeline.run(analysis_request))
    await wait_for_call(service, "triage")
    pipeline.cancel()

    with pytest.raises(PipelineFailed) as exc_info:
        await task

    assert isinstance(exc_info.value.cause, PipelineCancelled)
    assert triage_cancelled.is_set()
    assert pipeline.phase == PipelinePhase.FAILED
    terminal = pipeline.progress.history[-1]
    assert terminal.type == ProgressEventType.ERROR
    assert terminal.payload["error_type"] == "cancelled"


@pytest.mark.asyncio
async def test_cancel_during_research_cancels_both_branches(build_pipeline, stage_responses, analysis_request):
    evidence_cancelled = asyncio.Event()
    candidates_cancelled = asyncio.Event()
    stage_responses["evidence"] = hanging(evidence_cancelled)
    stage_responses["candidates"] = hanging(candidates_cancelled)
    pipeline, service = build_pipeline(stage_responses)

    task = asyncio.ensure_future(pipeline.run(analysis_request))
    await wait_for_call(service, "evidence")
    await wait_for_call(service, "candidates")
    pipeline.cancel()

    with pytest.raises(PipelineFailed):
        await task
    assert evidence_cancelled.is_set()
    assert candidates_cancelled.is_set()


@pytest.mark.asyncio
async def test_instances_are_single_use(build_pipeline, stage_responses, analysis_request):
    pipeline, _ = build_pipeline(stage_responses)
    await pipeline.run(analysis_request)

    with pytest.raises(RuntimeError, match="single-use"):
        await pipeline.run(analysis_request)


# =============================================================================
# Streaming
# =============================================================================

@pytest.mark.asyncio
async def test_stream_delivers_single_terminal_event(build_pipeline, stage_responses, analysis_request):
    pipeline, _ = build_pipeline(stage_responses)

    events = [event async for event in pipeline.stream(analysis_request)]

    assert events[-1].type == ProgressEventType.COMPLETE
    assert sum(1 for e in events if e.is_terminal) == 1
    percents = [e.percent for e in events]
    assert percents == sorted(percents)

    analysis = FinalAnalysis.model_validate(events[-1].payload)
    assert analysis.name == "Omega Seamaster Automatic"
    assert analysis.deal.rating == "exceptional"


@pytest.mark.asyncio
async def test_stream_ends_with_error_event(build_pipeline, stage_responses, analysis_request):
    stage_responses["triage"] = "I cannot tell what this is."
    pipeline, _ = build_pipeline(stage_responses)

    events = [event async for event in pipeline.stream(analysis_request)]

    assert [e.type for e in events] == [ProgressEventType.STAGE_START, ProgressEventType.ERROR]
    assert events[-1].payload["error_type"] == "schema_violation"
    assert events[-1].payload["request_id"] == "req-test-001"


@pytest.mark.asyncio
async def test_closing_stream_cancels_run(build_pipeline, stage_responses, analysis_request):
    triage_cancelled = asyncio.Event()
    stage_responses["triage"] = hanging(triage_cancelled)
    pipeline, service = build_pipeline(stage_responses)

    stream = pipeline.stream(analysis_request)
    first = await stream.__anext__()
    assert first.stage == "triage"
    await wait_for_call(service, "triage")
    await stream.aclose()

    assert triage_cancelled.is_set()
    assert pipeline.phase == PipelinePhase.FAILED
    assert pipeline.progress.history[-1].payload["error_type"] == "cancelled"
