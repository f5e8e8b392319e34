import pytest

from src.analyzers.risk_calibrator import DEFAULT_LUXURY_VALUE_THRESHOLD, RiskCalibrator
from src.models.schemas import Candidate, EvidenceReport, RiskLevel


def make_candidate(label="Oak side chair", maker=None, high=20000):
    return Candidate(
        rank=1,
        label=label,
        maker=maker,
        confidence=0.7,
        value_estimate={"low": 0, "high": high},
    )


def make_evidence(red_flags=()):
    return EvidenceReport(condition={"grade": "good"}, red_flags=list(red_flags))


@pytest.fixture
def calibrator():
    return RiskCalibrator()


def test_default_threshold(calibrator):
    assert calibrator.luxury_value_threshold == DEFAULT_LUXURY_VALUE_THRESHOLD == 500_000


def test_negative_threshold_rejected():
    with pytest.raises(ValueError):
        RiskCalibrator(luxury_value_threshold=-1)


def test_no_signals_keeps_base(calibrator):
    assert calibrator.adjust(RiskLevel.LOW, make_candidate(), make_evidence()) == RiskLevel.LOW
    assert calibrator.adjust("medium", None, None) == RiskLevel.MEDIUM


def test_luxury_maker_escalates_once(calibrator):
    candidate = make_candidate(label="Submariner", maker="Rolex")
    assert calibrator.adjust(RiskLevel.MEDIUM, candidate, make_evidence()) == RiskLevel.HIGH


def test_luxury_maker_matched_in_label(calibrator):
    candidate = make_candidate(label="Cartier Tank Louis", maker=None)
    assert calibrator.luxury_signal(candidate) is not None


def test_high_value_escalates(calibrator):
    candidate = make_candidate(high=DEFAULT_LUXURY_VALUE_THRESHOLD + 1)
    assert calibrator.adjust(RiskLevel.LOW, candidate, make_evidence()) == RiskLevel.MEDIUM


def test_value_at_threshold_does_not_escalate(calibrator):
    candidate = make_candidate(high=DEFAULT_LUXURY_VALUE_THRESHOLD)
    assert calibrator.luxury_signal(candidate) is None


def test_luxury_and_high_value_escalate_only_once(calibrator):
    candidate = make_candidate(label="Daytona", maker="Rolex", high=5_000_000)
    assert calibrator.adjust(RiskLevel.LOW, candidate, make_evidence()) == RiskLevel.MEDIUM


def test_red_flags_escalate(calibrator):
    evidence = make_evidence(["Modern Phillips screws"])
    assert calibrator.adjust(RiskLevel.LOW, make_candidate(), evidence) == RiskLevel.MEDIUM


def test_both_signals_escalate_twice(calibrator):
    candidate = make_candidate(maker="Omega")
    evidence = make_evidence(["Dial font is wrong"])
    assert calibrator.adjust(RiskLevel.LOW, candidate, evidence) == RiskLevel.HIGH


def test_escalation_capped_at_maximum(calibrator):
    candidate = make_candidate(maker="Rolex")
    evidence = make_evidence(["Cyclops magnification wrong"])
    assert calibrator.adjust(RiskLevel.HIGH, candidate, evidence) == RiskLevel.VERY_HIGH
    assert calibrator.adjust(RiskLevel.VERY_HIGH, candidate, evidence) == RiskLevel.VERY_HIGH


@pytest.mark.parametrize("base", list(RiskLevel))
def test_never_below_base(calibrator, base):
    level = calibrator.adjust(base, make_candidate(maker="Chanel"), make_evidence(["flag"]))
    assert level.rank >= base.rank


def test_assess_uses_domain_baseline(calibrator, candidate_set, evidence_report):
    assessment = calibrator.assess("watches", candidate_set.top, evidence_report, reported="high")
    assert assessment.baseline == "high"
    assert assessment.level == "very_high"
    assert assessment.reported_level == "high"
    assert assessment.escalation_steps == 1
    assert "omega" in assessment.reasons[0]


def test_assess_is_deterministic(calibrator, candidate_set, evidence_report):
    first = calibrator.assess("jewelry", candidate_set.top, evidence_report)
    second = calibrator.assess("jewelry", candidate_set.top, evidence_report)
    assert first.level == second.level
    assert first.reasons == second.reasons
    assert first.reported_level is None


def test_custom_threshold():
    calibrator = RiskCalibrator(luxury_value_threshold=10_000)
    assert calibrator.adjust(RiskLevel.LOW, make_candidate(high=20_000), None) == RiskLevel.MEDIUM
