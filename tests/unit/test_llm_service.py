import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import anthropic
import httpx
import pytest

from src.knowledge.templates import Instructions, InvocationConfig
from src.services.llm_service import ClaudeService, TokenUsage, create_claude_service
from src.utils.errors import EmptyResponse, ServiceUnavailable

API_URL = "https://api.anthropic.com/v1/messages"


def make_response(text='{"ok": true}', input_tokens=100, output_tokens=50):
    response = MagicMock()
    response.content = [MagicMock(text=text)] if text is not None else []
    response.usage.input_tokens = input_tokens
    response.usage.output_tokens = output_tokens
    response.stop_reason = "end_turn"
    return response


def status_error(cls, status_code):
    request = httpx.Request("POST", API_URL)
    return cls(f"HTTP {status_code}", response=httpx.Response(status_code, request=request), body=None)


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=make_response())
    client.close = AsyncMock()
    return client


@pytest.fixture
def service(settings, mock_client):
    return ClaudeService(settings=settings, client=mock_client, max_retries=3)


@pytest.fixture
def instructions():
    return Instructions(
        system="You are an appraiser.",
        user="Describe the item.",
        config=InvocationConfig(task_type="triage", temperature=0.1, max_tokens=800),
        template_id="triage/*@test",
    )


@pytest.fixture(autouse=True)
def no_backoff():
    with patch("src.services.llm_service.calculate_backoff", return_value=0):
        yield


@pytest.mark.asyncio
async def test_llm_service_init(settings, mock_client):
    service = ClaudeService(settings=settings, client=mock_client)
    assert service.settings == settings
    assert service.client is mock_client
    assert service.max_retries == 1


@pytest.mark.asyncio
async def test_invoke_sends_image_and_instructions(service, mock_client, instructions, analysis_request):
    text = await service.invoke(instructions, analysis_request)

    assert text == '{"ok": true}'
    kwargs = mock_client.messages.create.await_args.kwargs
    assert kwargs["system"] == "You are an appraiser."
    assert kwargs["temperature"] == 0.1
    assert kwargs["max_tokens"] == 800
    content = kwargs["messages"][0]["content"]
    assert content[0]["type"] == "image"
    assert content[0]["source"]["media_type"] == "image/jpeg"
    assert content[0]["source"]["data"] == analysis_request.base64_data
    assert content[1] == {"type": "text", "text": "Describe the item."}


@pytest.mark.asyncio
async def test_invoke_caps_token_budget(settings_factory, mock_client, analysis_request):
    service = ClaudeService(settings=settings_factory(CLAUDE_MAX_TOKENS=500), client=mock_client)
    instructions = Instructions(
        system="s",
        user="u",
        config=InvocationConfig(task_type="analysis", temperature=0.2, max_tokens=4500),
        template_id="analysis/*@test",
    )
    await service.invoke(instructions, analysis_request)
    assert mock_client.messages.create.await_args.kwargs["max_tokens"] == 500


@pytest.mark.asyncio
async def test_invoke_concatenates_text_blocks(service, mock_client, instructions, analysis_request):
    response = make_response()
    response.content = [MagicMock(text='{"a": '), MagicMock(text=None), MagicMock(text="1}")]
    mock_client.messages.create.return_value = response
    assert await service.invoke(instructions, analysis_request) == '{"a": 1}'


@pytest.mark.asyncio
async def test_empty_response_raises(service, mock_client, instructions, analysis_request):
    mock_client.messages.create.return_value = make_response(text=None)
    with pytest.raises(EmptyResponse) as exc_info:
        await service.invoke(instructions, analysis_request)
    assert exc_info.value.recoverable is True
    # Empty responses are left to the orchestrator's stage retry
    assert mock_client.messages.create.await_count == 1


@pytest.mark.asyncio
async def test_rate_limit_then_success(service, mock_client, instructions, analysis_request):
    mock_client.messages.create.side_effect = [
        status_error(anthropic.RateLimitError, 429),
        make_response(),
    ]
    assert await service.invoke(instructions, analysis_request) == '{"ok": true}'
    assert mock_client.messages.create.await_count == 2


@pytest.mark.asyncio
async def test_server_errors_exhaust_retries(service, mock_client, instructions, analysis_request):
    mock_client.messages.create.side_effect = status_error(anthropic.InternalServerError, 500)
    with pytest.raises(ServiceUnavailable) as exc_info:
        await service.invoke(instructions, analysis_request)
    assert exc_info.value.recoverable is True
    assert exc_info.value.status_code == 500
    assert mock_client.messages.create.await_count == 3


@pytest.mark.asyncio
async def test_authentication_error_not_retried(service, mock_client, instructions, analysis_request):
    mock_client.messages.create.side_effect = status_error(anthropic.AuthenticationError, 401)
    with pytest.raises(ServiceUnavailable) as exc_info:
        await service.invoke(instructions, analysis_request)
    assert exc_info.value.recoverable is False
    assert mock_client.messages.create.await_count == 1


@pytest.mark.asyncio
async def test_bad_request_not_retried(service, mock_client, instructions, analysis_request):
    mock_client.messages.create.side_effect = status_error(anthropic.BadRequestError, 400)
    with pytest.raises(ServiceUnavailable) as exc_info:
        await service.invoke(instructions, analysis_request)
    assert exc_info.value.status_code == 400
    assert exc_info.value.recoverable is False


@pytest.mark.asyncio
async def test_connection_error_retried(service, mock_client, instructions, analysis_request):
    mock_client.messages.create.side_effect = [
        anthropic.APIConnectionError(request=httpx.Request("POST", API_URL)),
        make_response(),
    ]
    assert await service.invoke(instructions, analysis_request) == '{"ok": true}'


@pytest.mark.asyncio
async def test_call_timeout_retried(settings_factory, mock_client, instructions, analysis_request):
    service = ClaudeService(
        settings=settings_factory(REQUEST_TIMEOUT_SECONDS=1),
        client=mock_client,
        max_retries=2,
    )
    service.request_timeout = 0.05

    async def hang(**kwargs):
        await asyncio.sleep(1)

    mock_client.messages.create.side_effect = hang
    with pytest.raises(ServiceUnavailable, match="after 2 attempts"):
        await service.invoke(instructions, analysis_request)
    assert mock_client.messages.create.await_count == 2


@pytest.mark.asyncio
async def test_usage_tracking(service, instructions, analysis_request):
    await service.invoke(instructions, analysis_request)
    await service.invoke(instructions, analysis_request)

    stats = service.get_usage_stats()
    assert stats["total_requests"] == 2
    assert stats["total_tokens"] == 300
    assert stats["by_task"] == {"triage": 300}
    assert stats["total_cost"] == pytest.approx(0.0021)

    service.reset_usage_stats()
    assert service.get_usage_stats()["total_requests"] == 0


def test_token_usage_cost_for_unknown_model():
    usage = TokenUsage(input_tokens=1000, output_tokens=1000)
    assert usage.calculate_cost("unknown-model") == 0.0
    assert usage.calculate_cost("claude-sonnet-4-20250514") == pytest.approx(0.018)


@pytest.mark.asyncio
async def test_check_health(service, mock_client):
    assert await service.check_health() is True

    mock_client.messages.create.side_effect = anthropic.APIConnectionError(
        request=httpx.Request("POST", API_URL)
    )
    assert await service.check_health() is False


@pytest.mark.asyncio
async def test_context_manager_closes_client(settings, mock_client):
    async with ClaudeService(settings=settings, client=mock_client) as service:
        assert service.client is mock_client
    mock_client.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_factory_builds_real_client(settings):
    service = create_claude_service(settings)
    assert isinstance(service.client, anthropic.AsyncAnthropic)
    assert service.client.max_retries == 0
    await service.close()
