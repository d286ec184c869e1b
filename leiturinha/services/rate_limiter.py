"""
Concurrency Limiter for Provider Calls

Features:
1. Per-provider in-flight tracking (openai, anthropic)
2. Dynamic scaling based on rate limit responses
3. Async context manager for easy integration
4. Statistics for observability

Unlike a retrying limiter, this one never sleeps and never retries: a rate
limited chapter falls back to a backup image right away, and the lowered
ceiling only affects the calls that have not started yet.

Usage:
    from leiturinha.services.rate_limiter import get_concurrency_limiter

    limiter = get_concurrency_limiter()

    async with limiter.acquire("openai"):
        result = await gateway.generate_chapter_image(params)
    await limiter.record_result("openai", result)
"""

import asyncio
import time
import logging
from typing import Dict, Optional, Any
from dataclasses import dataclass, field
from contextlib import asynccontextmanager

from leiturinha.services.errors import ProviderOutcome, ProviderResult

logger = logging.getLogger(__name__)


@dataclass
class ProviderState:
    """Tracks state for a single provider"""

    name: str
    max_concurrent: int = 2
    in_flight: int = 0
    condition: asyncio.Condition = field(default_factory=asyncio.Condition)

    # Metrics
    total_calls: int = 0
    successful_calls: int = 0
    rate_limited_calls: int = 0
    last_rate_limit_time: Optional[float] = None
    consecutive_successes: int = 0

    # Scaling parameters
    min_concurrent: int = 1
    scale_down_factor: float = 0.5  # Halve on rate limit
    scale_up_threshold: int = 5  # Successes before scaling up
    scale_up_increment: int = 1


class ProviderConcurrencyLimiter:
    """
    Bounds concurrent provider calls per provider.

    - On rate limit: halve max_concurrent (never below min_concurrent)
    - On sustained success: grow back one slot at a time up to the ceiling
    """

    def __init__(
        self,
        max_concurrent: int = 2,
        min_concurrent: int = 1,
        ceiling: Optional[int] = None,
        scale_up_threshold: int = 5,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.initial_max = max_concurrent
        self.min_concurrent = max(1, min(min_concurrent, max_concurrent))
        self.ceiling = ceiling or max_concurrent
        self.scale_up_threshold = scale_up_threshold

        self._providers: Dict[str, ProviderState] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        logger.info(
            f"ProviderConcurrencyLimiter initialized: max={max_concurrent}, "
            f"min={self.min_concurrent}, ceiling={self.ceiling}"
        )

    def _get_provider_state(self, provider: str) -> ProviderState:
        """Get or create state for a provider"""
        # asyncio.Condition belongs to one loop; a new loop starts fresh
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            self._loop = loop
            self._providers = {}

        if provider not in self._providers:
            self._providers[provider] = ProviderState(
                name=provider,
                max_concurrent=self.initial_max,
                min_concurrent=self.min_concurrent,
                scale_up_threshold=self.scale_up_threshold,
            )
            logger.debug(f"Created provider state for '{provider}' with max={self.initial_max}")
        return self._providers[provider]

    @asynccontextmanager
    async def acquire(self, provider: str = "openai"):
        """
        Async context manager to acquire a slot for a provider call.

        Waits while the provider already has max_concurrent calls in flight.
        """
        state = self._get_provider_state(provider)

        async with state.condition:
            await state.condition.wait_for(lambda: state.in_flight < state.max_concurrent)
            state.in_flight += 1
            state.total_calls += 1

        try:
            yield state
        finally:
            async with state.condition:
                state.in_flight -= 1
                state.condition.notify_all()

    async def record_result(self, provider: str, result: ProviderResult):
        """Feed a gateway result back into the scaling logic"""
        if result.ok:
            await self.record_success(provider)
        elif result.outcome == ProviderOutcome.RATE_LIMIT:
            await self.record_rate_limit(provider)
        else:
            self._get_provider_state(provider).consecutive_successes = 0

    async def record_success(self, provider: str):
        """Record successful call and potentially scale up"""
        state = self._get_provider_state(provider)
        state.successful_calls += 1
        state.consecutive_successes += 1

        if state.consecutive_successes >= state.scale_up_threshold:
            async with state.condition:
                new_max = min(state.max_concurrent + state.scale_up_increment, self.ceiling)
                if new_max > state.max_concurrent:
                    old_max = state.max_concurrent
                    state.max_concurrent = new_max
                    state.condition.notify_all()
                    logger.info(
                        f"📈 {provider}: Scaled UP concurrency {old_max} → {new_max} "
                        f"(after {state.scale_up_threshold} successes)"
                    )
                state.consecutive_successes = 0

    async def record_rate_limit(self, provider: str):
        """Scale down after a rate limit; calls already in flight finish normally"""
        state = self._get_provider_state(provider)
        state.rate_limited_calls += 1
        state.consecutive_successes = 0
        state.last_rate_limit_time = time.time()

        async with state.condition:
            new_max = max(
                int(state.max_concurrent * state.scale_down_factor),
                state.min_concurrent,
            )
            if new_max < state.max_concurrent:
                old_max = state.max_concurrent
                state.max_concurrent = new_max
                logger.warning(
                    f"📉 {provider}: Scaled DOWN concurrency {old_max} → {new_max} "
                    f"(rate limit hit)"
                )

    def get_provider_concurrency(self, provider: str) -> int:
        """Get current max concurrency for a provider"""
        if provider in self._providers:
            return self._providers[provider].max_concurrent
        return self.initial_max

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics for all providers"""
        return {
            provider: {
                "max_concurrent": state.max_concurrent,
                "in_flight": state.in_flight,
                "total_calls": state.total_calls,
                "successful_calls": state.successful_calls,
                "rate_limited_calls": state.rate_limited_calls,
                "success_rate": (
                    round(state.successful_calls / state.total_calls * 100, 1)
                    if state.total_calls > 0
                    else 100.0
                ),
                "last_rate_limit": state.last_rate_limit_time,
                "consecutive_successes": state.consecutive_successes,
            }
            for provider, state in self._providers.items()
        }

    def log_stats(self):
        stats = self.get_stats()
        if not stats:
            logger.info("📊 ProviderConcurrencyLimiter: No providers tracked yet")
            return

        logger.info("📊 ProviderConcurrencyLimiter Statistics:")
        for provider, data in stats.items():
            logger.info(
                f"   {provider}: {data['successful_calls']}/{data['total_calls']} calls "
                f"({data['success_rate']}% success), "
                f"max_concurrent={data['max_concurrent']}, "
                f"rate_limits={data['rate_limited_calls']}"
            )


# Singleton instance
_limiter: Optional[ProviderConcurrencyLimiter] = None


def get_concurrency_limiter() -> ProviderConcurrencyLimiter:
    """Get the singleton limiter instance"""
    global _limiter
    if _limiter is None:
        _limiter = ProviderConcurrencyLimiter()
    return _limiter


def init_concurrency_limiter(max_concurrent: int = 2, **kwargs) -> ProviderConcurrencyLimiter:
    """Initialize the limiter with custom settings"""
    global _limiter
    _limiter = ProviderConcurrencyLimiter(max_concurrent=max_concurrent, **kwargs)
    return _limiter


def reset_concurrency_limiter():
    """Reset the singleton (for testing)"""
    global _limiter
    _limiter = None
