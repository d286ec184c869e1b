"""
Unit tests for the provider concurrency limiter.

Run with: python -m pytest tests/test_rate_limiter.py -v
"""

import asyncio
import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from leiturinha.services.errors import (
    GenerationFormatError,
    ProviderRateLimitError,
    ProviderResult,
)
from leiturinha.services.rate_limiter import (
    ProviderConcurrencyLimiter,
    get_concurrency_limiter,
    init_concurrency_limiter,
    reset_concurrency_limiter,
)


class TestScaling:
    """Halve on rate limit, grow back after consecutive successes"""

    def test_rate_limit_halves_down_to_minimum(self):
        limiter = ProviderConcurrencyLimiter(max_concurrent=4, min_concurrent=1)

        async def run():
            await limiter.record_rate_limit("openai")
            after_first = limiter.get_provider_concurrency("openai")
            await limiter.record_rate_limit("openai")
            await limiter.record_rate_limit("openai")
            return after_first, limiter.get_provider_concurrency("openai")

        assert asyncio.run(run()) == (2, 1)

    def test_successes_scale_up_to_ceiling(self):
        limiter = ProviderConcurrencyLimiter(max_concurrent=2, ceiling=3, scale_up_threshold=2)

        async def run():
            await limiter.record_rate_limit("openai")
            for _ in range(10):
                await limiter.record_success("openai")
            return limiter.get_provider_concurrency("openai")

        assert asyncio.run(run()) == 3

    def test_record_result_dispatches_on_outcome(self):
        limiter = ProviderConcurrencyLimiter(max_concurrent=2)

        async def run():
            await limiter.record_result("openai", ProviderResult.success("ok", "openai"))
            await limiter.record_result("openai", ProviderResult.failure(GenerationFormatError("x")))
            await limiter.record_result("openai", ProviderResult.failure(ProviderRateLimitError("429")))
            return limiter.get_stats()["openai"]

        stats = asyncio.run(run())
        assert stats["successful_calls"] == 1
        assert stats["rate_limited_calls"] == 1
        assert stats["max_concurrent"] == 1
        assert stats["consecutive_successes"] == 0

    def test_invalid_max(self):
        with pytest.raises(ValueError):
            ProviderConcurrencyLimiter(max_concurrent=0)


class TestAcquire:
    def test_in_flight_never_exceeds_max(self):
        limiter = ProviderConcurrencyLimiter(max_concurrent=2)
        counters = {"now": 0, "peak": 0}

        async def call():
            async with limiter.acquire("openai"):
                counters["now"] += 1
                counters["peak"] = max(counters["peak"], counters["now"])
                await asyncio.sleep(0.01)
                counters["now"] -= 1

        async def run():
            await asyncio.gather(*(call() for _ in range(6)))

        asyncio.run(run())
        assert counters["peak"] == 2

    def test_providers_are_independent(self):
        limiter = ProviderConcurrencyLimiter(max_concurrent=2)

        async def run():
            await limiter.record_rate_limit("openai")
            return limiter.get_provider_concurrency("openai"), limiter.get_provider_concurrency("anthropic")

        assert asyncio.run(run()) == (1, 2)

    def test_works_across_event_loops(self):
        limiter = ProviderConcurrencyLimiter(max_concurrent=1)

        async def once():
            async with limiter.acquire("openai"):
                await asyncio.sleep(0)

        asyncio.run(once())
        asyncio.run(once())


class TestSingleton:
    def setup_method(self):
        reset_concurrency_limiter()

    def teardown_method(self):
        reset_concurrency_limiter()

    def test_init_replaces_instance(self):
        default = get_concurrency_limiter()
        custom = init_concurrency_limiter(max_concurrent=3)
        assert get_concurrency_limiter() is custom
        assert custom is not default
        assert custom.initial_max == 3
