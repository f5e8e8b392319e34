"""
Pipeline orchestrator using LangGraph.

Coordinates the identification pipeline for one request: triage, then
evidence extraction and candidate generation concurrently, then the
combined final analysis followed by risk calibration and deal rating.

Features:
    - Stateful execution with LangGraph StateGraph
    - Explicit phase state machine with an allowed-transition table
    - Fan-out/fan-in for the two independent stages; the first fatal error
      cancels the sibling branch
    - Per-stage timeout and retry, plus an overall pipeline timeout
    - Ordered progress events with exactly one terminal event
    - Cancellation of every in-flight reasoning call
    - Testing hooks for step-by-step execution
"""

import asyncio
import operator
import time
from datetime import datetime
from functools import wraps
from typing import (
    Annotated,
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Literal,
    Optional,
    TypedDict,
)
from uuid import uuid4

from langgraph.graph import END, StateGraph

from src.analyzers.candidate_generator import CandidateGenerator
from src.analyzers.deal_calculator import DealCalculator, humanize_price
from src.analyzers.expert_escalation import ExpertEscalation
from src.analyzers.final_analyzer import FinalAnalyzer
from src.analyzers.risk_calibrator import RiskCalibrator
from src.config.settings import Settings, get_settings
from src.extractors.evidence_extractor import EvidenceExtractor
from src.extractors.triage_extractor import TriageExtractor
from src.knowledge.calibration import band_for, is_low_confidence
from src.models.schemas import (
    AnalysisDraft,
    AnalysisRequest,
    CandidateSet,
    EvidenceReport,
    FinalAnalysis,
    PipelinePhase,
    PipelineStage,
    ProgressEvent,
    ProgressEventType,
    TriageResult,
)
from src.services.llm_service import ClaudeService
from src.utils.errors import (
    PipelineCancelled,
    PipelineError,
    PipelineFailed,
    StageTimeout,
)
from src.utils.logger import LogContext, get_logger
from src.utils.marketplace import build_marketplace_links
from src.utils.retry import ErrorHandler, stage_retry_policy

logger = get_logger(__name__)


# =============================================================================
# Constants and Configuration
# =============================================================================

# (start, end) percent for each stage; evidence and candidates run in parallel
STAGE_PROGRESS: dict[str, tuple[int, int]] = {
    PipelineStage.TRIAGE.value: (5, 20),
    PipelineStage.EVIDENCE.value: (20, 45),
    PipelineStage.CANDIDATES.value: (20, 45),
    PipelineStage.ANALYSIS.value: (45, 95),
    PipelineStage.COMPLETE.value: (95, 100),
}

STAGE_MESSAGES: dict[str, tuple[str, str]] = {
    PipelineStage.TRIAGE.value: ("Identifying item category...", "Category identified"),
    PipelineStage.EVIDENCE.value: ("Examining maker marks and details...", "Evidence extracted"),
    PipelineStage.CANDIDATES.value: (
        "Matching against expert knowledge base...",
        "Identification candidates found",
    ),
    PipelineStage.ANALYSIS.value: ("Generating comprehensive analysis...", "Analysis complete"),
    PipelineStage.COMPLETE.value: ("Finalizing results...", "Ready to view"),
}

ALLOWED_TRANSITIONS: dict[PipelinePhase, frozenset[PipelinePhase]] = {
    PipelinePhase.IDLE: frozenset({PipelinePhase.TRIAGING, PipelinePhase.FAILED}),
    PipelinePhase.TRIAGING: frozenset({PipelinePhase.RESEARCHING, PipelinePhase.FAILED}),
    PipelinePhase.RESEARCHING: frozenset({PipelinePhase.FINALIZING, PipelinePhase.FAILED}),
    PipelinePhase.FINALIZING: frozenset({PipelinePhase.COMPLETE, PipelinePhase.FAILED}),
    PipelinePhase.COMPLETE: frozenset(),
    PipelinePhase.FAILED: frozenset(),
}

# Phase a node expects to find on entry; used by run_step
NODE_ENTRY_PHASES: dict[str, PipelinePhase] = {
    "triage": PipelinePhase.IDLE,
    "research": PipelinePhase.TRIAGING,
    "finalize": PipelinePhase.RESEARCHING,
}

PHASE_STAGES: dict[PipelinePhase, PipelineStage] = {
    PipelinePhase.IDLE: PipelineStage.TRIAGE,
    PipelinePhase.TRIAGING: PipelineStage.TRIAGE,
    PipelinePhase.RESEARCHING: PipelineStage.EVIDENCE,
    PipelinePhase.FINALIZING: PipelineStage.ANALYSIS,
    PipelinePhase.COMPLETE: PipelineStage.COMPLETE,
}


# =============================================================================
# Pipeline State Definition (TypedDict for LangGraph)
# =============================================================================

class PipelineStateDict(TypedDict, total=False):
    """
    TypedDict-based pipeline state for LangGraph.

    Stage outputs are validated, immutable models; each node writes only
    its own slots.
    """
    # Identifiers
    run_id: str

    # Input
    request: AnalysisRequest

    # Stage outputs
    triage: Optional[TriageResult]
    evidence: Optional[EvidenceReport]
    candidates: Optional[CandidateSet]
    draft: Optional[AnalysisDraft]
    final_analysis: Optional[FinalAnalysis]

    # Status tracking
    phase: str
    failed_stage: Optional[str]
    error: Optional[PipelineError]

    # Error messages (uses operator.add for accumulation)
    errors: Annotated[list[str], operator.add]

    # Metadata
    step_timings: dict  # Node name -> duration_ms
    started_at: str
    completed_at: Optional[str]


# =============================================================================
# Decorators for Node Execution
# =============================================================================

def track_timing(func: Callable):
    """Decorator to track node execution timing."""
    @wraps(func)
    async def wrapper(self, state: PipelineStateDict) -> dict[str, Any]:
        start_time = time.time()
        node_name = func.__name__.strip("_").replace("_node", "")

        logger.info("Starting node", node=node_name, run_id=state.get("run_id"))

        try:
            result = await func(self, state)
        except BaseException as e:
            logger.error(
                "Node aborted",
                node=node_name,
                run_id=state.get("run_id"),
                duration_ms=int((time.time() - start_time) * 1000),
                error_type=type(e).__name__,
            )
            raise

        duration_ms = int((time.time() - start_time) * 1000)
        step_timings = state.get("step_timings", {}).copy()
        step_timings[node_name] = duration_ms
        result["step_timings"] = step_timings

        logger.info(
            "Completed node",
            node=node_name,
            run_id=state.get("run_id"),
            duration_ms=duration_ms,
            failed=bool(result.get("error")),
        )
        return result

    return wrapper


async def with_stage_timeout(awaitable: Awaitable[Any], timeout_seconds: float, stage: str) -> Any:
    """Await ``awaitable``, converting a timeout into a recoverable StageTimeout."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        raise StageTimeout(
            f"Stage '{stage}' timed out after {timeout_seconds} seconds",
            stage=stage,
            details={"timeout_seconds": timeout_seconds},
        )


# =============================================================================
# Fan-out / Fan-in
# =============================================================================

async def run_concurrently(
    branches: dict[str, Awaitable[Any]],
    on_spawn: Optional[Callable[[asyncio.Task], None]] = None,
) -> dict[str, Any]:
    """
    Run named branches concurrently and wait for all of them.

    The first branch to fail cancels the others and its error is raised.
    Cancelling the caller cancels every branch before re-raising. No branch
    outlives this call.

    Returns:
        Branch name -> result, in the order given
    """
    tasks = {name: asyncio.ensure_future(branch) for name, branch in branches.items()}
    if on_spawn is not None:
        for task in tasks.values():
            on_spawn(task)

    try:
        done, pending = await asyncio.wait(tasks.values(), return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks.values():
            task.cancel()
        await asyncio.gather(*tasks.values(), return_exceptions=True)
        raise

    failed = [
        task for task in tasks.values()
        if task in done and not task.cancelled() and task.exception() is not None
    ]
    if failed or pending:
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if failed:
            raise failed[0].exception()

    return {name: task.result() for name, task in tasks.items()}


# =============================================================================
# Progress Channel
# =============================================================================

class ProgressChannel:
    """
    Ordered progress events for one pipeline run.

    Percent never decreases. Exactly one terminal event (complete or error)
    is published; the channel is closed afterwards.
    """

    def __init__(self, callback: Optional[Callable[[ProgressEvent], None]] = None):
        """
        Initialize progress channel.

        Args:
            callback: Optional callback(event) invoked for every event
        """
        self.callback = callback
        self.queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
        self.history: list[ProgressEvent] = []
        self.percent = 0
        self.closed = False

    def publish(
        self,
        event_type: ProgressEventType,
        message: str,
        percent: int,
        stage: Optional[PipelineStage] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> ProgressEvent:
        if self.closed:
            raise RuntimeError("Progress channel already delivered its terminal event")

        self.percent = max(self.percent, percent)
        event = ProgressEvent(
            type=event_type,
            stage=stage,
            message=message,
            percent=self.percent,
            payload=payload,
        )
        self.history.append(event)
        self.queue.put_nowait(event)
        if event.is_terminal:
            self.closed = True

        if self.callback:
            try:
                self.callback(event)
            except Exception as cb_err:
                logger.warning("Progress callback failed", error=str(cb_err))
        return event

    def stage_start(self, stage: PipelineStage) -> ProgressEvent:
        return self.publish(
            ProgressEventType.STAGE_START,
            STAGE_MESSAGES[stage.value][0],
            STAGE_PROGRESS[stage.value][0],
            stage=stage,
        )

    def stage_complete(self, stage: PipelineStage, payload: Optional[dict[str, Any]] = None) -> ProgressEvent:
        return self.publish(
            ProgressEventType.STAGE_COMPLETE,
            STAGE_MESSAGES[stage.value][1],
            STAGE_PROGRESS[stage.value][1],
            stage=stage,
            payload=payload,
        )

    def complete(self, payload: dict[str, Any]) -> ProgressEvent:
        return self.publish(
            ProgressEventType.COMPLETE,
            STAGE_MESSAGES[PipelineStage.COMPLETE.value][1],
            100,
            stage=PipelineStage.COMPLETE,
            payload=payload,
        )

    def error(self, message: str, stage: Optional[str], payload: dict[str, Any]) -> ProgressEvent:
        stage_enum = PipelineStage(stage) if stage in STAGE_PROGRESS else None
        return self.publish(
            ProgressEventType.ERROR,
            message,
            self.percent,
            stage=stage_enum,
            payload=payload,
        )


# =============================================================================
# Main Pipeline Class
# =============================================================================

class IdentificationPipeline:
    """
    LangGraph-based pipeline identifying one item from one photograph.

    Each request gets its own instance: the phase machine, progress channel
    and cancellation scope are per-run. The reasoning client (and its HTTP
    connection pool) may be shared between instances.

    Example:
        >>> async with IdentificationPipeline() as pipeline:
        ...     analysis = await pipeline.run(request)
        ...     print(analysis.name, analysis.risk_level, analysis.deal_rating)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        llm_service: Optional[ClaudeService] = None,
        triage_extractor: Optional[TriageExtractor] = None,
        evidence_extractor: Optional[EvidenceExtractor] = None,
        candidate_generator: Optional[CandidateGenerator] = None,
        final_analyzer: Optional[FinalAnalyzer] = None,
        risk_calibrator: Optional[RiskCalibrator] = None,
        deal_calculator: Optional[DealCalculator] = None,
        expert_escalation: Optional[ExpertEscalation] = None,
        progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            settings: Application settings (uses defaults if not provided)
            llm_service: Reasoning client; created (and closed) by the
                pipeline if not provided
            triage_extractor, evidence_extractor, candidate_generator,
            final_analyzer: Pre-configured stage executors
            risk_calibrator: Risk step function (threshold from settings)
            deal_calculator: Deal rating
            expert_escalation: Expert-referral decision
            progress_callback: Callback invoked with every ProgressEvent
        """
        self.settings = settings or get_settings()
        self.progress = ProgressChannel(progress_callback)

        self._llm_service = llm_service
        self._owns_llm_service = False
        self._triage_extractor = triage_extractor
        self._evidence_extractor = evidence_extractor
        self._candidate_generator = candidate_generator
        self._final_analyzer = final_analyzer

        self.risk_calibrator = risk_calibrator or RiskCalibrator(self.settings.luxury_value_threshold)
        self.deal_calculator = deal_calculator or DealCalculator()
        self.expert_escalation = expert_escalation or ExpertEscalation()

        # Build graph
        self._graph = self._build_graph()

        # Run state
        self._phase = PipelinePhase.IDLE
        self._started = False
        self._inflight: list[str] = []
        self._branch_tasks: set[asyncio.Task] = set()
        self._run_task: Optional[asyncio.Task] = None
        self._cancel_requested = False
        self._failure: Optional[PipelineFailed] = None
        self._request_id: Optional[str] = None

        # Testing hooks
        self._mock_nodes: dict[str, Callable] = {}

    async def __aenter__(self):
        """Async context manager entry."""
        self._initialize_services()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    def _initialize_services(self) -> None:
        """Initialize required services."""
        if self._llm_service is None:
            self._llm_service = ClaudeService(self.settings)
            self._owns_llm_service = True

        if self._triage_extractor is None:
            self._triage_extractor = TriageExtractor(self._llm_service)
        if self._evidence_extractor is None:
            self._evidence_extractor = EvidenceExtractor(self._llm_service)
        if self._candidate_generator is None:
            self._candidate_generator = CandidateGenerator(self._llm_service)
        if self._final_analyzer is None:
            self._final_analyzer = FinalAnalyzer(self._llm_service)

    @property
    def phase(self) -> PipelinePhase:
        """Current phase of the run."""
        return self._phase

    @property
    def triage_extractor(self) -> TriageExtractor:
        if self._triage_extractor is None:
            raise RuntimeError("Pipeline not initialized. Use async context manager.")
        return self._triage_extractor

    @property
    def evidence_extractor(self) -> EvidenceExtractor:
        if self._evidence_extractor is None:
            raise RuntimeError("Pipeline not initialized. Use async context manager.")
        return self._evidence_extractor

    @property
    def candidate_generator(self) -> CandidateGenerator:
        if self._candidate_generator is None:
            raise RuntimeError("Pipeline not initialized. Use async context manager.")
        return self._candidate_generator

    @property
    def final_analyzer(self) -> FinalAnalyzer:
        if self._final_analyzer is None:
            raise RuntimeError("Pipeline not initialized. Use async context manager.")
        return self._final_analyzer

    def _build_graph(self):
        """
        Build the LangGraph state machine with all nodes and edges.

        Graph structure:
            triage --ok--> research --ok--> finalize --ok--> END
               |              |                |
               +-----error----+------error-----+
                              |
                              v
                         handle_error --> END

        ``research`` fans out to evidence extraction and candidate
        generation and joins on both.
        """
        graph = StateGraph(PipelineStateDict)

        # Add nodes
        graph.add_node("triage", self._triage_node)
        graph.add_node("research", self._research_node)
        graph.add_node("finalize", self._finalize_node)
        graph.add_node("handle_error", self._handle_error_node)

        # Set entry point
        graph.set_entry_point("triage")

        # Conditional edges: any stage failure goes to handle_error
        graph.add_conditional_edges(
            "triage",
            self._route_after_stage,
            {"continue": "research", "error": "handle_error"},
        )
        graph.add_conditional_edges(
            "research",
            self._route_after_stage,
            {"continue": "finalize", "error": "handle_error"},
        )
        graph.add_conditional_edges(
            "finalize",
            self._route_after_stage,
            {"continue": END, "error": "handle_error"},
        )
        graph.add_edge("handle_error", END)

        return graph.compile()

    def _route_after_stage(self, state: PipelineStateDict) -> Literal["continue", "error"]:
        return "error" if state.get("error") is not None else "continue"

    # =========================================================================
    # Phase Machine
    # =========================================================================

    def _transition(self, target: PipelinePhase) -> None:
        """Move to ``target``; raises RuntimeError on an illegal transition."""
        if target not in ALLOWED_TRANSITIONS[self._phase]:
            raise RuntimeError(
                f"Illegal pipeline transition {self._phase.value} -> {target.value}"
            )
        logger.debug("Pipeline phase change", source=self._phase.value, target=target.value)
        self._phase = target

    def _fail(self, stage: Optional[str], cause: BaseException) -> PipelineFailed:
        """
        Enter FAILED and publish the terminal error event.

        Idempotent: the first failure wins.
        """
        if self._failure is not None:
            return self._failure

        if isinstance(cause, PipelineFailed):
            failure = cause
        else:
            failure = PipelineFailed(stage, cause)
        self._failure = failure

        if self._phase != PipelinePhase.FAILED:
            self._transition(PipelinePhase.FAILED)

        response = failure.to_response(self._request_id)
        logger.error(
            "Pipeline failed",
            stage=stage,
            error_type=response.error_type,
            cause=str(cause),
            recoverable=failure.recoverable,
        )
        if not self.progress.closed:
            self.progress.error(failure.message, stage, response.to_dict_safe())
        return failure

    def _active_stage(self) -> str:
        """Stage to blame for a failure raised outside any node."""
        if self._inflight:
            return self._inflight[0]
        return PHASE_STAGES.get(self._phase, PipelineStage.TRIAGE).value

    # =========================================================================
    # Stage Execution
    # =========================================================================

    async def _run_stage(
        self,
        stage: PipelineStage,
        call: Callable[[], Awaitable[Any]],
        state: PipelineStateDict,
    ) -> Any:
        """
        Execute one stage with the stage timeout and retry policy.

        Only recoverable errors (service unavailable, empty response,
        timeout) are retried. Errors leave here tagged with ``stage``.
        """
        mock = self._mock_nodes.get(stage.value)
        if mock is not None:
            def call() -> Awaitable[Any]:
                return mock(state)

        self._inflight.append(stage.value)
        try:
            async for attempt in stage_retry_policy(
                self.settings.stage_max_attempts,
                self.settings.stage_retry_wait_seconds,
            ):
                with attempt:
                    try:
                        result = await with_stage_timeout(
                            call(),
                            self.settings.stage_timeout_seconds,
                            stage.value,
                        )
                    except PipelineError as e:
                        raise e.with_stage(stage.value)
                    except Exception as e:
                        raise ErrorHandler.wrap(e, stage.value) from e
            return result
        finally:
            self._inflight.remove(stage.value)

    def _error_update(self, stage: str, error: PipelineError) -> dict[str, Any]:
        return {
            "error": error,
            "failed_stage": error.stage or stage,
            "errors": [str(error)],
        }

    # =========================================================================
    # Node Implementations
    # =========================================================================

    @track_timing
    async def _triage_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Node 1: classify the item; its output selects every later profile."""
        request = state["request"]
        self._transition(PipelinePhase.TRIAGING)
        self.progress.stage_start(PipelineStage.TRIAGE)

        try:
            triage = await self._run_stage(
                PipelineStage.TRIAGE,
                lambda: self.triage_extractor.run(request),
                state,
            )
        except PipelineError as e:
            return self._error_update(PipelineStage.TRIAGE.value, e)

        self.progress.stage_complete(
            PipelineStage.TRIAGE,
            payload={
                "category": triage.category,
                "domain_expert": triage.domain_expert,
                "item_type": triage.item_type,
                "confidence": triage.confidence,
            },
        )
        return {"triage": triage, "phase": PipelinePhase.TRIAGING.value}

    @track_timing
    async def _research_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """
        Node 2: evidence extraction and candidate generation, concurrently.

        Both branches read only the triage result. Either failing fails the
        whole node; the other branch is cancelled.
        """
        request = state["request"]
        triage = state["triage"]
        self._transition(PipelinePhase.RESEARCHING)

        async def evidence_branch() -> EvidenceReport:
            evidence = await self._run_stage(
                PipelineStage.EVIDENCE,
                lambda: self.evidence_extractor.run(request, triage=triage),
                state,
            )
            self.progress.stage_complete(
                PipelineStage.EVIDENCE,
                payload={
                    "maker_marks": len(evidence.maker_marks),
                    "red_flags": len(evidence.red_flags),
                },
            )
            return evidence

        async def candidates_branch() -> CandidateSet:
            candidates = await self._run_stage(
                PipelineStage.CANDIDATES,
                lambda: self.candidate_generator.run(request, triage=triage),
                state,
            )
            self.progress.stage_complete(
                PipelineStage.CANDIDATES,
                payload={"labels": [c.label for c in candidates.candidates]},
            )
            return candidates

        self.progress.stage_start(PipelineStage.EVIDENCE)
        self.progress.stage_start(PipelineStage.CANDIDATES)

        try:
            results = await run_concurrently(
                {
                    PipelineStage.EVIDENCE.value: evidence_branch(),
                    PipelineStage.CANDIDATES.value: candidates_branch(),
                },
                on_spawn=self._branch_tasks.add,
            )
        except PipelineError as e:
            return self._error_update(PipelineStage.EVIDENCE.value, e)

        return {
            "evidence": results[PipelineStage.EVIDENCE.value],
            "candidates": results[PipelineStage.CANDIDATES.value],
            "phase": PipelinePhase.RESEARCHING.value,
        }

    @track_timing
    async def _finalize_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Node 3: combined final analysis, then risk, deal and links."""
        request = state["request"]
        triage = state["triage"]
        evidence = state["evidence"]
        candidates = state["candidates"]
        self._transition(PipelinePhase.FINALIZING)
        self.progress.stage_start(PipelineStage.ANALYSIS)

        try:
            draft = await self._run_stage(
                PipelineStage.ANALYSIS,
                lambda: self.final_analyzer.run(
                    request,
                    triage=triage,
                    evidence=evidence,
                    candidates=candidates,
                ),
                state,
            )
            final_analysis = self.build_final_analysis(request, triage, evidence, candidates, draft)
        except PipelineError as e:
            return self._error_update(PipelineStage.ANALYSIS.value, e)
        except ValueError as e:
            return self._error_update(
                PipelineStage.ANALYSIS.value,
                ErrorHandler.wrap(e, PipelineStage.ANALYSIS.value),
            )

        self.progress.stage_complete(
            PipelineStage.ANALYSIS,
            payload={"name": final_analysis.name, "confidence": final_analysis.confidence},
        )
        return {
            "draft": draft,
            "final_analysis": final_analysis,
            "phase": PipelinePhase.FINALIZING.value,
        }

    @track_timing
    async def _handle_error_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Node 4: terminal failure; no partial result is produced."""
        error = state.get("error")
        stage = state.get("failed_stage")
        self._fail(stage, error)
        return {
            "phase": PipelinePhase.FAILED.value,
            "completed_at": datetime.utcnow().isoformat(),
        }

    def build_final_analysis(
        self,
        request: AnalysisRequest,
        triage: TriageResult,
        evidence: EvidenceReport,
        candidates: CandidateSet,
        draft: AnalysisDraft,
    ) -> FinalAnalysis:
        """
        Calibrate a validated draft into the terminal artifact.

        Value ranges are humanized before the deal is rated; risk is
        recalibrated from the specialty baseline and the model's own level
        is kept as ``risk.reported_level``. The expert referral is decided on
        the calibrated risk and the humanized range.
        """
        risk = self.risk_calibrator.assess(
            triage.domain_expert,
            candidates.top,
            evidence,
            reported=draft.authentication.risk_level,
        )
        value_min = humanize_price(draft.estimated_value_min)
        value_max = humanize_price(draft.estimated_value_max)
        deal = self.deal_calculator.rate(request.asking_price, value_min, value_max)
        referral = self.expert_escalation.evaluate(
            triage.domain_expert,
            draft.confidence,
            risk.level,
            value_min,
            value_max,
            model_recommended=draft.authentication.expert_referral_recommended,
            model_reason=draft.authentication.expert_referral_reason,
        )
        links = build_marketplace_links(draft.name, triage.category, draft.brand or draft.maker)

        fields = draft.model_dump(exclude={"estimated_value_min", "estimated_value_max"})
        return FinalAnalysis(
            **fields,
            estimated_value_min=value_min,
            estimated_value_max=value_max,
            request_id=request.request_id,
            category=triage.category,
            domain_expert=triage.domain_expert,
            item_type=triage.item_type,
            quality_tier=triage.quality_tier,
            risk=risk,
            confidence_band=band_for(draft.confidence),
            low_confidence=is_low_confidence(draft.confidence),
            asking_price=request.asking_price,
            deal=deal,
            marketplace_links=links,
            expert_referral=referral,
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def run(self, request: AnalysisRequest) -> FinalAnalysis:
        """
        Execute the complete pipeline for one request.

        Args:
            request: Validated analysis request

        Returns:
            FinalAnalysis with calibrated risk, deal and marketplace links

        Raises:
            PipelineFailed: If any stage fails, the overall timeout expires
                or the run is cancelled via ``cancel()``; the originating
                stage and cause are attached
            RuntimeError: If this instance was already used
        """
        if self._started:
            raise RuntimeError("IdentificationPipeline instances are single-use")
        self._started = True
        self._request_id = request.request_id
        self._initialize_services()

        self._run_task = asyncio.ensure_future(self._execute(request))
        try:
            return await self._run_task
        except asyncio.CancelledError:
            if self._phase == PipelinePhase.COMPLETE:
                raise
            failure = self._fail(
                self._active_stage(),
                PipelineCancelled("Pipeline run was cancelled", stage=self._active_stage()),
            )
            if self._cancel_requested:
                raise failure
            raise

    async def _execute(self, request: AnalysisRequest) -> FinalAnalysis:
        run_id = str(uuid4())
        initial_state: PipelineStateDict = {
            "run_id": run_id,
            "request": request,
            "triage": None,
            "evidence": None,
            "candidates": None,
            "draft": None,
            "final_analysis": None,
            "phase": PipelinePhase.IDLE.value,
            "failed_stage": None,
            "error": None,
            "errors": [],
            "step_timings": {},
            "started_at": datetime.utcnow().isoformat(),
            "completed_at": None,
        }

        with LogContext(run_id=run_id, request_id=request.request_id):
            logger.info(
                "Starting pipeline run",
                media_type=request.media_type,
                image_bytes=len(request.image_bytes),
                has_asking_price=request.asking_price is not None,
            )

            try:
                final_state = await asyncio.wait_for(
                    self._graph.ainvoke(initial_state),
                    timeout=self.settings.pipeline_timeout_seconds,
                )
            except asyncio.TimeoutError:
                stage = self._active_stage()
                raise self._fail(
                    stage,
                    StageTimeout(
                        f"Pipeline exceeded {self.settings.pipeline_timeout_seconds} seconds",
                        stage=stage,
                        details={"timeout_seconds": self.settings.pipeline_timeout_seconds},
                    ),
                )

            if final_state.get("error") is not None or self._failure is not None:
                raise self._fail(final_state.get("failed_stage"), final_state.get("error"))

            final_analysis = final_state.get("final_analysis")
            if final_analysis is None:
                raise self._fail(
                    PipelineStage.ANALYSIS.value,
                    PipelineError("Pipeline completed but produced no analysis"),
                )

            self._transition(PipelinePhase.COMPLETE)
            self.progress.complete(final_analysis.model_dump(mode="json"))

            logger.info(
                "Pipeline completed successfully",
                duration_ms=sum(final_state.get("step_timings", {}).values()),
                name=final_analysis.name,
                confidence=final_analysis.confidence,
                risk=final_analysis.risk_level,
                deal=final_analysis.deal_rating,
            )
            return final_analysis

    async def stream(self, request: AnalysisRequest) -> AsyncIterator[ProgressEvent]:
        """
        Run the pipeline, yielding progress events as they happen.

        The last event is the single terminal event, carrying either the
        FinalAnalysis or an error descriptor. Closing the iterator early
        cancels the run.

        Example:
            >>> async for event in pipeline.stream(request):
            ...     print(event.percent, event.message)
        """
        task = asyncio.ensure_future(self.run(request))
        try:
            while True:
                if self.progress.queue.empty() and task.done():
                    # Raised before any terminal event, e.g. reuse of an instance
                    task.result()
                    return

                getter = asyncio.ensure_future(self.progress.queue.get())
                await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if not getter.done():
                    getter.cancel()
                    continue

                event = getter.result()
                yield event
                if event.is_terminal:
                    return
        finally:
            if not task.done() and not self.progress.closed:
                self.cancel()
                task.cancel()
            # The outcome is delivered as the terminal event
            await asyncio.gather(task, return_exceptions=True)

    def cancel(self) -> None:
        """Cancel the run, including every in-flight reasoning call."""
        if self._run_task is not None and not self._run_task.done():
            logger.info("Pipeline cancellation requested", in_flight=list(self._inflight))
            self._cancel_requested = True
            self._run_task.cancel()
            for task in self._branch_tasks:
                task.cancel()

    async def run_step(
        self,
        step_name: str,
        state: PipelineStateDict,
    ) -> PipelineStateDict:
        """
        Execute a single pipeline node (for testing/debugging).

        Args:
            step_name: Name of the node to execute
            state: Current pipeline state

        Returns:
            Updated pipeline state
        """
        node_methods = {
            "triage": self._triage_node,
            "research": self._research_node,
            "finalize": self._finalize_node,
            "handle_error": self._handle_error_node,
        }

        if step_name not in node_methods:
            raise ValueError(f"Unknown step: {step_name}")

        self._initialize_services()
        if step_name in NODE_ENTRY_PHASES:
            self._phase = NODE_ENTRY_PHASES[step_name]

        result = await node_methods[step_name](state)

        # Merge result into state
        updated_state = {**state, **result}
        if "errors" in result:
            updated_state["errors"] = state.get("errors", []) + result["errors"]
        return updated_state

    # =========================================================================
    # Testing Hooks
    # =========================================================================

    def mock_node(self, stage_name: str, mock_func: Callable) -> None:
        """
        Register a mock for a stage call (testing).

        The mock receives the pipeline state and replaces the executor call;
        stage timeout and retry still apply.

        Args:
            stage_name: triage, evidence, candidates or analysis
            mock_func: Async function to use instead
        """
        if stage_name not in STAGE_PROGRESS or stage_name == PipelineStage.COMPLETE.value:
            raise ValueError(f"Unknown stage: {stage_name}")
        self._mock_nodes[stage_name] = mock_func

    def clear_mocks(self) -> None:
        """Clear all registered mocks."""
        self._mock_nodes.clear()

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def close(self) -> None:
        """Close the reasoning client if this pipeline created it."""
        if self._owns_llm_service and self._llm_service is not None:
            await self._llm_service.close()
            self._llm_service = None
            self._owns_llm_service = False


# =============================================================================
# Convenience Functions
# =============================================================================

async def analyze_image(
    request: AnalysisRequest,
    settings: Optional[Settings] = None,
    llm_service: Optional[ClaudeService] = None,
    progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
) -> FinalAnalysis:
    """
    Convenience function to identify one item.

    Args:
        request: Validated analysis request
        settings: Optional settings override
        llm_service: Optional shared reasoning client
        progress_callback: Optional progress callback

    Returns:
        FinalAnalysis for the item

    Example:
        >>> request = ValidationService().request_from_file("lamp.jpg", asking_price=4500)
        >>> analysis = await analyze_image(request)
        >>> print(analysis.name, analysis.deal_rating)
    """
    async with IdentificationPipeline(
        settings=settings,
        llm_service=llm_service,
        progress_callback=progress_callback,
    ) as pipeline:
        return await pipeline.run(request)


__all__ = [
    "IdentificationPipeline",
    "PipelineStateDict",
    "ProgressChannel",
    "run_concurrently",
    "with_stage_timeout",
    "analyze_image",
    "STAGE_PROGRESS",
    "STAGE_MESSAGES",
    "ALLOWED_TRANSITIONS",
]
