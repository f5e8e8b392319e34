"""
Integration tests for the CLI using Click's CliRunner.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from src.main import cli
from src.models.schemas import ProgressEvent, ProgressEventType
from src.utils.errors import PipelineFailed, SchemaViolation

# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def patch_settings(settings):
    with patch("src.main.get_settings", return_value=settings):
        yield settings


@pytest.fixture
def mock_llm_service():
    service = MagicMock()
    service.__aenter__ = AsyncMock(return_value=service)
    service.__aexit__ = AsyncMock(return_value=None)
    service.check_health = AsyncMock(return_value=True)
    service.get_usage_stats.return_value = {"total_requests": 4, "total_tokens": 1200, "total_cost": 0.0123}
    with patch("src.main.ClaudeService", return_value=service):
        yield service


@pytest.fixture
def mock_pipeline(mock_llm_service, final_analysis):
    pipeline = MagicMock()
    pipeline.run = AsyncMock(return_value=final_analysis)
    with patch("src.main.IdentificationPipeline", return_value=pipeline) as pipeline_cls:
        pipeline.cls = pipeline_cls
        yield pipeline


@pytest.fixture
def image_path(tmp_path, jpeg_bytes):
    path = tmp_path / "watch.jpg"
    path.write_bytes(jpeg_bytes)
    return path


# =============================================================================
# analyze
# =============================================================================

def test_analyze_success(runner, mock_pipeline, image_path, tmp_path):
    output = tmp_path / "report.md"
    result = runner.invoke(
        cli,
        ["analyze", str(image_path), "--asking-price", "90000", "--format", "markdown", "--output", str(output)],
    )

    assert result.exit_code == 0, result.output
    assert "Identification Summary" in result.output
    assert "Report saved" in result.output
    assert output.read_text(encoding="utf-8").startswith("# Identification Report: Omega Seamaster Automatic")

    request = mock_pipeline.run.await_args.args[0]
    assert request.asking_price == 90000
    assert request.media_type == "image/jpeg"


def test_analyze_saves_to_output_dir(runner, mock_pipeline, image_path, tmp_path):
    result = runner.invoke(
        cli,
        ["analyze", str(image_path), "--format", "json", "--output-dir", str(tmp_path / "custom")],
    )

    assert result.exit_code == 0, result.output
    saved = list((tmp_path / "custom").glob("*.json"))
    assert len(saved) == 1


def test_analyze_pipeline_failure(runner, mock_pipeline, image_path):
    mock_pipeline.run.side_effect = PipelineFailed("triage", SchemaViolation("triage", "??", ["invalid JSON"]))

    result = runner.invoke(cli, ["analyze", str(image_path)])

    assert result.exit_code == 1
    assert "Error:" in result.output
    assert "[triage]" in result.output


def test_analyze_rejects_unknown_image_type(runner, mock_pipeline, tmp_path):
    path = tmp_path / "notes.txt"
    path.write_bytes(b"hello")

    result = runner.invoke(cli, ["analyze", str(path)])

    assert result.exit_code == 1
    assert "Unsupported image type" in result.output
    mock_pipeline.run.assert_not_awaited()


def test_analyze_missing_file(runner):
    result = runner.invoke(cli, ["analyze", "does-not-exist.jpg"])
    assert result.exit_code == 2


def test_analyze_stream_prints_events(runner, mock_pipeline, image_path, final_analysis):
    async def fake_stream(request):
        yield ProgressEvent(type=ProgressEventType.STAGE_START, stage="triage", message="Identifying", percent=5)
        yield ProgressEvent(
            type=ProgressEventType.COMPLETE,
            stage="complete",
            message="Ready to view",
            percent=100,
            payload=final_analysis.model_dump(mode="json"),
        )

    mock_pipeline.stream = fake_stream

    result = runner.invoke(cli, ["analyze", str(image_path), "--stream", "--format", "json"])

    assert result.exit_code == 0, result.output
    frames = [line for line in result.output.splitlines() if line.startswith("data: ")]
    assert len(frames) == 2
    assert '"type": "complete"' in frames[-1]
    assert "Identification Summary" not in result.output


def test_analyze_stream_reports_intake_error(runner, tmp_path, mock_pipeline):
    path = tmp_path / "notes.txt"
    path.write_bytes(b"hello")

    result = runner.invoke(cli, ["analyze", str(path), "--stream"])

    assert result.exit_code == 1
    frames = [line for line in result.output.splitlines() if line.startswith("data: ")]
    assert len(frames) == 1
    event = json.loads(frames[0][len("data: "):])
    assert event["type"] == "error"
    assert event["payload"]["error_type"] == "invalid_input"
    assert "Unsupported image type" in event["message"]


# =============================================================================
# deal / links
# =============================================================================

def test_deal_command(runner):
    result = runner.invoke(cli, ["deal", "90000", "120000", "250000"])

    assert result.exit_code == 0, result.output
    assert "Exceptional" in result.output
    assert "$900.00" in result.output


def test_deal_without_usable_range(runner):
    result = runner.invoke(cli, ["deal", "5000", "0", "0"])

    assert result.exit_code == 0
    assert "No deal rating" in result.output


def test_deal_rejects_inverted_range(runner):
    result = runner.invoke(cli, ["deal", "5000", "9000", "1000"])
    assert result.exit_code == 2


def test_links_command(runner):
    result = runner.invoke(cli, ["links", "Walnut chair", "--category", "antique"])

    assert result.exit_code == 0, result.output
    assert "Chairish" in result.output
    assert "1stDibs" in result.output


def test_links_rejects_unknown_category(runner):
    result = runner.invoke(cli, ["links", "Walnut chair", "--category", "prehistoric"])
    assert result.exit_code == 2


# =============================================================================
# validate-setup
# =============================================================================

def test_validate_setup_offline(runner):
    result = runner.invoke(cli, ["validate-setup", "--offline"])

    assert result.exit_code == 0, result.output
    assert "Anthropic API Key" in result.output
    assert "Skipped" in result.output


def test_validate_setup_unhealthy_service(runner, mock_llm_service):
    mock_llm_service.check_health.return_value = False

    result = runner.invoke(cli, ["validate-setup"])

    assert result.exit_code == 1
    mock_llm_service.check_health.assert_awaited_once()
