# =============================================================================
# Resilient Client — Cache, Circuit Breaker, Retry, Timeout, Cost Accounting
# =============================================================================
#
# The only path from the pipeline to the remote model service. One
# instance per endpoint, shared by every run in the process.
#
# CALL PATH for invoke(request):
#
#   cache hit? ──yes──> return cached ChatResponse (cached=True, not billed)
#       │ no
#   usage limits ok? ──no──> BudgetExceededError
#       │
#   CircuitBreaker.call(
#       call_with_retry(
#           wait_for(provider.complete(request), timeout)   # one attempt
#       )
#   )
#       │ success
#   price tokens ─> record usage ─> cache ─> return
#
# Provider exceptions are classified once, per attempt, so the retry
# layer and the breaker only ever see ClientError subclasses.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, TypeVar

from app.config import Settings
from app.services.cache import ResponseCache, describe_attachment, make_cache_key
from app.services.circuit_breaker import CircuitBreaker, CircuitState
from app.services.errors import (
    BudgetExceededError,
    ClientError,
    RequestTimeoutError,
    classify_error,
)
from app.services.llm import ChatRequest, LLMProvider, create_provider
from app.services.pricing import (
    ModelBudget,
    ModelRequirements,
    ModelSelection,
    calculate_cost,
    select_model,
)
from app.services.retry import RetryPolicy, call_with_retry
from app.services.usage import UsageTracker

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ChatResponse:
    """
    One completed model call.

    `cached` is True when the response was served from the cache; its
    cost and tokens describe the original call, not a new charge.
    `audio` holds the synthesized bytes for audio requests.
    """

    model_id: str
    generated_text: str
    input_tokens: int
    output_tokens: int
    cost_usd: float | None
    duration_ms: int
    cached: bool = False
    audio: bytes | None = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def completion_cache_key(request: ChatRequest) -> str:
    """Deterministic key over everything that affects the completion."""
    return make_cache_key(
        "completion",
        {
            "model_id": request.model_id,
            "messages": [
                {
                    "role": message.role,
                    "content": message.content,
                    "attachments": [
                        describe_attachment(a.data, a.media_type, a.name)
                        for a in message.attachments
                    ],
                }
                for message in request.messages
            ],
            "temperature": request.temperature,
            "max_output_tokens": request.max_output_tokens,
            "response_format": request.response_format,
            "voice": request.voice,
        },
    )


class ResilientClient:
    """
    Resilient wrapper around an LLMProvider.

    All collaborators are injected so tests can substitute fakes and
    zero-delay sleeps. Use `from_settings()` for the production wiring.
    """

    def __init__(
        self,
        provider: LLMProvider,
        *,
        cache: ResponseCache | None = None,
        breaker: CircuitBreaker | None = None,
        retry_policy: RetryPolicy | None = None,
        usage: UsageTracker | None = None,
        timeout: float = 30.0,
        completion_ttl: float = 300.0,
        catalog_ttl: float = 3600.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.cache = cache if cache is not None else ResponseCache()
        self.breaker = breaker if breaker is not None else CircuitBreaker()
        self.retry_policy = retry_policy if retry_policy is not None else RetryPolicy()
        self.usage = usage if usage is not None else UsageTracker()
        self.timeout = timeout
        self.completion_ttl = completion_ttl
        self.catalog_ttl = catalog_ttl
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        provider: LLMProvider | None = None,
    ) -> ResilientClient:
        """
        Build a client from configuration.

        Raises:
            ValueError: When no provider is given and the configured one
                cannot be built (unknown type or missing API key).
        """
        return cls(
            provider or create_provider(settings),
            cache=ResponseCache(
                max_entries=settings.cache_max_entries,
                default_ttl=settings.cache_completion_ttl_seconds,
            ),
            breaker=CircuitBreaker(
                failure_threshold=settings.circuit_failure_threshold,
                reset_timeout=settings.circuit_reset_timeout_seconds,
                failure_window=settings.circuit_failure_window_seconds,
            ),
            retry_policy=RetryPolicy(
                max_retries=settings.retry_max_retries,
                base_delay=settings.retry_base_delay_seconds,
                max_delay=settings.retry_max_delay_seconds,
                backoff_factor=settings.retry_backoff_factor,
                jitter=settings.retry_jitter_ratio,
            ),
            usage=UsageTracker(
                daily_limit_usd=settings.usage_daily_limit_usd,
                monthly_limit_usd=settings.usage_monthly_limit_usd,
            ),
            timeout=settings.request_timeout_seconds,
            completion_ttl=settings.cache_completion_ttl_seconds,
            catalog_ttl=settings.cache_catalog_ttl_seconds,
        )

    # -----------------------------------------------------------------------
    # Completions
    # -----------------------------------------------------------------------

    async def invoke(self, request: ChatRequest) -> ChatResponse:
        """
        Run a completion through cache, breaker, retry and timeout.

        Raises:
            ClientError: Classified failure after retries are exhausted,
                or immediately for non-retryable failures.
        """
        key = completion_cache_key(request)
        cached = self.cache.get(key)
        if cached is not None:
            logger.info("Cache hit for %s (%s)", request.model_id, key[:12])
            return cached

        self._enforce_limits()

        start = time.perf_counter()
        llm_response = await self._resilient(lambda: self.provider.complete(request))
        duration_ms = int((time.perf_counter() - start) * 1000)

        # Price by the model the API reports, falling back to the requested id
        cost = calculate_cost(
            llm_response.model, llm_response.input_tokens, llm_response.output_tokens
        )
        if cost is None:
            cost = calculate_cost(
                request.model_id,
                llm_response.input_tokens,
                llm_response.output_tokens,
            )

        response = ChatResponse(
            model_id=llm_response.model or request.model_id,
            generated_text=llm_response.content,
            input_tokens=llm_response.input_tokens,
            output_tokens=llm_response.output_tokens,
            cost_usd=cost,
            duration_ms=duration_ms,
            audio=llm_response.audio,
        )

        if cost is not None:
            self.usage.record(
                model_id=response.model_id,
                task_type=request.task_type,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                cost_usd=cost,
                duration_ms=duration_ms,
            )
        else:
            logger.warning("No pricing for model %s, cost unknown", response.model_id)

        self.cache.put(key, replace(response, cached=True), ttl=self.completion_ttl)
        logger.info(
            "Completion from %s: %d in / %d out tokens, %d ms",
            response.model_id,
            response.input_tokens,
            response.output_tokens,
            duration_ms,
        )
        return response

    # -----------------------------------------------------------------------
    # Catalog and credentials
    # -----------------------------------------------------------------------

    async def list_models(self) -> list[str]:
        key = make_cache_key("catalog", {"operation": "list_models"})
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        models = await self._resilient(self.provider.list_models)
        self.cache.put(key, models, ttl=self.catalog_ttl)
        return models

    async def validate_credential(self) -> bool:
        """True if the configured key can list models on the endpoint."""
        try:
            await self._resilient(self.provider.list_models)
        except ClientError as exc:
            logger.warning("Credential validation failed (%s)", exc.category)
            return False
        return True

    def select_model(
        self,
        task_type: str,
        requirements: ModelRequirements | None = None,
        budget: ModelBudget | None = None,
    ) -> ModelSelection:
        return select_model(task_type, requirements, budget)

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------

    @property
    def circuit_state(self) -> CircuitState:
        return self.breaker.state

    def reset_circuit(self) -> None:
        self.breaker.reset()

    def clear_cache(self) -> int:
        return self.cache.clear()

    def cache_stats(self) -> dict:
        return self.cache.stats().to_dict()

    def close(self) -> None:
        self.breaker.close()

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _enforce_limits(self) -> None:
        limits = self.usage.within_limits()
        if not limits["daily"]:
            raise BudgetExceededError("Daily usage limit reached")
        if not limits["monthly"]:
            raise BudgetExceededError("Monthly usage limit reached")

    async def _resilient(self, call: Callable[[], Awaitable[T]]) -> T:
        async def attempt() -> T:
            try:
                return await asyncio.wait_for(call(), timeout=self.timeout)
            except asyncio.TimeoutError as exc:
                raise RequestTimeoutError(
                    f"No response within {self.timeout:.0f}s"
                ) from exc
            except ClientError:
                raise
            except Exception as exc:
                classified = classify_error(exc)
                logger.warning(
                    "Model endpoint error classified as %s: %s",
                    classified.category,
                    exc,
                )
                raise classified from exc

        return await self.breaker.call(
            lambda: call_with_retry(attempt, self.retry_policy, sleep=self._sleep)
        )
