"""
Claude reasoning client for vision stages.

A single abstraction for "submit an image plus instructions, get back text",
used by every stage executor. The client owns retries and the timeout for
one call; it never interprets or validates content.

Key Features:
    - Async/await support for non-blocking operations
    - Exponential backoff retry logic with jitter
    - One shared httpx connection pool, safe for concurrent stages
    - Token counting and cost tracking
    - Typed failures: ServiceUnavailable and EmptyResponse

Example:
    >>> async with ClaudeService() as service:
    ...     text = await service.invoke(instructions, request)
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import anthropic
import httpx
from anthropic import APIError, APIStatusError, RateLimitError

from src.config.settings import Settings, get_settings
from src.knowledge.templates import Instructions, InvocationConfig
from src.models.schemas import AnalysisRequest
from src.utils.errors import EmptyResponse, ServiceUnavailable
from src.utils.logger import get_logger
from src.utils.retry import calculate_backoff

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Token costs per model (per 1K tokens)
TOKEN_COSTS = {
    "claude-sonnet-4-20250514": {"input": 0.003, "output": 0.015},
    "claude-3-7-sonnet-20250219": {"input": 0.003, "output": 0.015},
    "claude-3-5-sonnet-20241022": {"input": 0.003, "output": 0.015},
    "claude-opus-4-20250514": {"input": 0.015, "output": 0.075},
    "claude-3-5-haiku-20241022": {"input": 0.0008, "output": 0.004},
}

RATE_LIMIT_BASE_DELAY = 5.0
SERVER_ERROR_BASE_DELAY = 1.0

DEFAULT_CONFIG = InvocationConfig(task_type="generic", temperature=0.2, max_tokens=2000)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class TokenUsage:
    """Token usage tracking for a single request."""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0
    model: str = ""
    task_type: str = ""
    timestamp: datetime = field(default_factory=datetime.utcnow)
    
    def calculate_cost(self, model: str) -> float:
        """Calculate estimated cost based on token usage."""
        if model in TOKEN_COSTS:
            costs = TOKEN_COSTS[model]
            input_cost = (self.input_tokens / 1000) * costs["input"]
            output_cost = (self.output_tokens / 1000) * costs["output"]
            self.estimated_cost = input_cost + output_cost
        return self.estimated_cost


# =============================================================================
# Main Service Class
# =============================================================================

class ClaudeService:
    """
    Vision-capable reasoning client.
    
    One instance is owned by one pipeline run (or shared by a caller that
    runs several); the underlying HTTP pool is the only shared resource and
    is safe for the concurrent evidence/candidate stages.
    
    Example:
        >>> service = ClaudeService()
        >>> async with service:
        ...     raw = await service.invoke(instructions, request)
    
    Attributes:
        settings: Application settings
        client: Anthropic API client
        token_usage_history: List of token usage records
        total_cost: Running total of API costs
    """
    
    def __init__(
        self,
        settings: Optional[Settings] = None,
        api_key: Optional[str] = None,
        max_retries: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        """
        Initialize the Claude service.
        
        Args:
            settings: Application settings instance
            api_key: Override API key (uses settings if not provided)
            max_retries: Attempts per call (uses settings if not provided)
            http_client: Shared connection pool (created if not provided)
            client: Pre-built Anthropic client, mainly for tests
        """
        self.settings = settings or get_settings()
        self.max_retries = max(1, max_retries if max_retries is not None else self.settings.max_retries)
        self.request_timeout = float(self.settings.request_timeout_seconds)
        
        self._owns_http_client = http_client is None and client is None
        self._http_client = http_client
        if client is None:
            if self._http_client is None:
                self._http_client = httpx.AsyncClient(
                    limits=httpx.Limits(
                        max_connections=self.settings.max_concurrent_requests,
                        max_keepalive_connections=self.settings.max_concurrent_requests,
                    ),
                    timeout=httpx.Timeout(self.request_timeout),
                )
            api_key = api_key or self.settings.anthropic_api_key.get_secret_value()
            # Retries are handled here, not by the SDK
            client = anthropic.AsyncAnthropic(
                api_key=api_key,
                http_client=self._http_client,
                max_retries=0,
            )
        self.client = client
        
        # Token tracking
        self.token_usage_history: list[TokenUsage] = []
        self.total_cost: float = 0.0
        
        logger.info(
            "ClaudeService initialized",
            model=self.settings.claude_model,
            max_retries=self.max_retries,
            request_timeout=self.request_timeout,
        )
    
    async def __aenter__(self) -> "ClaudeService":
        """Async context manager entry."""
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
    
    async def close(self) -> None:
        """Close the client connection."""
        await self.client.close()
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
        logger.info(
            "ClaudeService closed",
            total_requests=len(self.token_usage_history),
            total_cost=f"${self.total_cost:.4f}",
        )
    
    # =========================================================================
    # Public API
    # =========================================================================
    
    async def invoke(
        self,
        instructions: Instructions,
        image: AnalysisRequest,
        config: Optional[InvocationConfig] = None,
    ) -> str:
        """
        Submit an image and instructions; return the model's raw text.
        
        Args:
            instructions: Rendered system and user instructions
            image: Request carrying the image bytes and media type
            config: Token/temperature configuration (defaults to the template's)
        
        Returns:
            Raw response text, unvalidated
        
        Raises:
            ServiceUnavailable: Timeout, rate limit, 5xx or transport failure
                after retries, or a non-retryable 4xx
            EmptyResponse: The service returned no text
        """
        config = (config or instructions.config or DEFAULT_CONFIG).capped(
            self.settings.claude_max_tokens
        )
        messages = [
            {
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": str(image.media_type),
                            "data": image.base64_data,
                        },
                    },
                    {"type": "text", "text": instructions.user},
                ],
            }
        ]
        
        text, _ = await self._call_api(
            messages=messages,
            system=instructions.system,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            task_type=config.task_type,
        )
        return text
    
    async def check_health(self) -> bool:
        """Minimal text-only round trip; True when the service answers."""
        try:
            response = await asyncio.wait_for(
                self.client.messages.create(
                    model=self.settings.claude_model,
                    max_tokens=5,
                    messages=[{"role": "user", "content": "ping"}],
                ),
                timeout=self.request_timeout,
            )
        except (APIError, asyncio.TimeoutError) as e:
            logger.warning("Health check failed", error=str(e), error_type=type(e).__name__)
            return False
        return bool(response.content)
    
    # =========================================================================
    # Core API Methods
    # =========================================================================
    
    async def _call_api(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        task_type: str = "generic",
    ) -> tuple[str, TokenUsage]:
        """
        Make an API call with retry logic.
        
        Args:
            messages: List of message dicts with role and content
            system: System prompt
            temperature: Sampling temperature
            max_tokens: Maximum tokens in response
            task_type: Stage name for logging and usage tracking
        
        Returns:
            Tuple of (response_text, token_usage)
        """
        max_tokens = max_tokens or self.settings.claude_max_tokens
        
        last_error: Optional[BaseException] = None
        for attempt in range(self.max_retries):
            try:
                start_time = time.time()
                
                response = await asyncio.wait_for(
                    self.client.messages.create(
                        model=self.settings.claude_model,
                        max_tokens=max_tokens,
                        temperature=temperature,
                        system=system,
                        messages=messages,
                    ),
                    timeout=self.request_timeout,
                )
                
                elapsed = time.time() - start_time
                
                usage = TokenUsage(
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens,
                    total_tokens=response.usage.input_tokens + response.usage.output_tokens,
                    model=self.settings.claude_model,
                    task_type=task_type,
                )
                usage.calculate_cost(self.settings.claude_model)
                self.token_usage_history.append(usage)
                self.total_cost += usage.estimated_cost
                
                response_text = self._response_text(response)
                if not response_text.strip():
                    logger.warning(
                        "Empty response",
                        task_type=task_type,
                        stop_reason=getattr(response, "stop_reason", None),
                    )
                    raise EmptyResponse(details={"stop_reason": getattr(response, "stop_reason", None)})
                
                logger.info(
                    "API call successful",
                    task_type=task_type,
                    attempt=attempt + 1,
                    elapsed_seconds=f"{elapsed:.2f}",
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                    cost=f"${usage.estimated_cost:.4f}",
                )
                
                return response_text, usage
                
            except RateLimitError as e:
                last_error = e
                wait_time = calculate_backoff(attempt, base_delay=RATE_LIMIT_BASE_DELAY)
                logger.warning(
                    "Rate limit hit, backing off",
                    task_type=task_type,
                    attempt=attempt + 1,
                    wait_seconds=wait_time,
                    error=str(e),
                )
                if attempt + 1 < self.max_retries:
                    await asyncio.sleep(wait_time)
                
            except APIStatusError as e:
                last_error = e
                if e.status_code >= 500:
                    wait_time = calculate_backoff(attempt, base_delay=SERVER_ERROR_BASE_DELAY)
                    logger.warning(
                        "Server error, retrying",
                        task_type=task_type,
                        attempt=attempt + 1,
                        status_code=e.status_code,
                        wait_seconds=wait_time,
                    )
                    if attempt + 1 < self.max_retries:
                        await asyncio.sleep(wait_time)
                elif e.status_code == 401:
                    logger.error("Authentication failed", error=str(e))
                    raise ServiceUnavailable(
                        f"Authentication failed: {e}",
                        status_code=e.status_code,
                        recoverable=False,
                    ) from e
                else:
                    logger.error("API error", status_code=e.status_code, error=str(e))
                    raise ServiceUnavailable(
                        f"API error: {e}",
                        status_code=e.status_code,
                        recoverable=False,
                    ) from e
                    
            except APIError as e:
                # Connection failures and SDK-level timeouts
                last_error = e
                wait_time = calculate_backoff(attempt, base_delay=SERVER_ERROR_BASE_DELAY)
                logger.warning(
                    "API error, retrying",
                    task_type=task_type,
                    attempt=attempt + 1,
                    wait_seconds=wait_time,
                    error=str(e),
                )
                if attempt + 1 < self.max_retries:
                    await asyncio.sleep(wait_time)
                
            except asyncio.TimeoutError as e:
                last_error = e
                wait_time = calculate_backoff(attempt, base_delay=SERVER_ERROR_BASE_DELAY)
                logger.warning(
                    "Request timeout, retrying",
                    task_type=task_type,
                    attempt=attempt + 1,
                    timeout_seconds=self.request_timeout,
                    wait_seconds=wait_time,
                )
                if attempt + 1 < self.max_retries:
                    await asyncio.sleep(wait_time)
        
        logger.error(
            "Max retries exceeded",
            task_type=task_type,
            max_retries=self.max_retries,
            last_error=str(last_error),
        )
        raise ServiceUnavailable(
            f"Reasoning service unavailable after {self.max_retries} attempts: "
            f"{last_error or 'timeout'}",
            status_code=getattr(last_error, "status_code", None),
            recoverable=True,
        ) from last_error
    
    # =========================================================================
    # Utility Methods
    # =========================================================================
    
    @staticmethod
    def _response_text(response: Any) -> str:
        """Concatenate the text blocks of a message response."""
        parts = []
        for block in getattr(response, "content", None) or []:
            text = getattr(block, "text", None)
            if text:
                parts.append(text)
        return "".join(parts)
    
    def get_usage_stats(self) -> dict[str, Any]:
        """Get usage statistics for the service."""
        if not self.token_usage_history:
            return {
                "total_requests": 0,
                "total_tokens": 0,
                "total_cost": 0.0,
                "avg_tokens_per_request": 0,
                "by_task": {},
            }
        
        total_tokens = sum(u.total_tokens for u in self.token_usage_history)
        total_input = sum(u.input_tokens for u in self.token_usage_history)
        total_output = sum(u.output_tokens for u in self.token_usage_history)
        
        by_task: dict[str, int] = {}
        for usage in self.token_usage_history:
            by_task[usage.task_type] = by_task.get(usage.task_type, 0) + usage.total_tokens
        
        return {
            "total_requests": len(self.token_usage_history),
            "total_tokens": total_tokens,
            "total_input_tokens": total_input,
            "total_output_tokens": total_output,
            "total_cost": self.total_cost,
            "avg_tokens_per_request": total_tokens // len(self.token_usage_history),
            "by_task": by_task,
        }
    
    def reset_usage_stats(self) -> None:
        """Reset usage statistics."""
        self.token_usage_history.clear()
        self.total_cost = 0.0
        logger.info("Usage statistics reset")


# =============================================================================
# Convenience Functions
# =============================================================================

def create_claude_service(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ClaudeService:
    """
    Factory function to create a configured ClaudeService.
    
    Args:
        settings: Optional settings override
        http_client: Optional shared connection pool
    
    Returns:
        Configured ClaudeService instance
    """
    return ClaudeService(settings=settings, http_client=http_client)


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "ClaudeService",
    "create_claude_service",
    "TokenUsage",
    "TOKEN_COSTS",
]
