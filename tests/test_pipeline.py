"""
Тесты для модуля pipeline.py
"""
from datetime import datetime

import pytest

from src.adapters import LLMRequest
from src.exceptions import AIErrorCode, AIServiceError
from src.models import UsageLimits, UsageRecord
from src.pipeline import InvocationPipeline
from src.usage import UsageTracker, estimate_cost
from tests.conftest import ScriptedAdapter, make_test_config

REQUEST = LLMRequest(messages=[{"role": "user", "content": "test"}])


def retryable(code=AIErrorCode.NETWORK_ERROR, retry_after=None):
    return AIServiceError(code, "временная ошибка", retryable=True, retry_after=retry_after)


def make_pipeline(script, clock, usage=None, **kwargs):
    adapter = ScriptedAdapter(script)
    pipeline = InvocationPipeline(
        adapter,
        usage or UsageTracker(),
        clock=clock,
        sleep=clock.sleep,
        **kwargs,
    )
    return pipeline, adapter


class TestInvocationPipeline:
    """Тесты для конвейера вызовов AI."""

    @pytest.mark.asyncio
    async def test_success_records_usage(self, fake_clock):
        """Тест успешного вызова с учетом использования."""
        usage = UsageTracker()
        pipeline, _ = make_pipeline(['{"ok": true}'], fake_clock, usage=usage)

        response = await pipeline.call(REQUEST, "cleanup_analysis")

        assert response.content == '{"ok": true}'
        stats = await usage.get_stats()
        assert stats.total_tokens == 150
        assert stats.total_cost == pytest.approx(estimate_cost("gpt-4o-mini", 100, 50))
        assert "cleanup_analysis" in stats.operation_breakdown
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_retry_then_success(self, fake_clock):
        """Тест повтора после временной ошибки."""
        pipeline, adapter = make_pipeline([retryable(), "ok"], fake_clock)

        response = await pipeline.call(REQUEST, "cleanup_analysis")

        assert response.content == "ok"
        assert len(adapter.requests) == 2
        assert fake_clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_exponential_backoff_and_last_error(self, fake_clock):
        """Тест исчерпания попыток: задержки 1, 2 и последняя ошибка."""
        last = retryable(AIErrorCode.TIMEOUT)
        pipeline, adapter = make_pipeline([retryable(), retryable(), last], fake_clock)

        with pytest.raises(AIServiceError) as exc_info:
            await pipeline.call(REQUEST, "cleanup_analysis")

        assert exc_info.value is last
        assert len(adapter.requests) == 3
        assert fake_clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_retry_after_overrides_backoff(self, fake_clock):
        """Тест задержки, заданной провайдером."""
        pipeline, _ = make_pipeline(
            [retryable(AIErrorCode.RATE_LIMITED, retry_after=60.0), "ok"], fake_clock
        )

        await pipeline.call(REQUEST, "cleanup_analysis")

        assert fake_clock.sleeps == [60.0]

    @pytest.mark.asyncio
    async def test_fatal_error_not_retried(self, fake_clock):
        """Тест немедленного завершения при фатальной ошибке."""
        pipeline, adapter = make_pipeline(
            [AIServiceError(AIErrorCode.INVALID_API_KEY, "Неверный API-ключ"), "ok"], fake_clock
        )

        with pytest.raises(AIServiceError) as exc_info:
            await pipeline.call(REQUEST, "cleanup_analysis")

        assert exc_info.value.code == AIErrorCode.INVALID_API_KEY
        assert len(adapter.requests) == 1
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_unknown_error_is_retryable(self, fake_clock):
        """Тест неклассифицированной ошибки адаптера."""
        pipeline, _ = make_pipeline([RuntimeError("socket closed")] * 3, fake_clock)

        with pytest.raises(AIServiceError) as exc_info:
            await pipeline.call(REQUEST, "cleanup_analysis")

        assert exc_info.value.code == AIErrorCode.NETWORK_ERROR
        assert exc_info.value.retryable
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_usage_limit_blocks_call(self, fake_clock):
        """Тест блокировки вызова при исчерпанном лимите."""
        usage = UsageTracker(limits=UsageLimits(daily_token_limit=100))
        await usage.record_usage(UsageRecord(
            timestamp=datetime.now(),
            operation="cleanup_analysis",
            prompt_tokens=100,
            completion_tokens=50,
            total_tokens=150,
            estimated_cost=0.0,
            model="gpt-4o-mini",
        ))
        pipeline, adapter = make_pipeline(["ok"], fake_clock, usage=usage)

        with pytest.raises(AIServiceError) as exc_info:
            await pipeline.call(REQUEST, "cleanup_analysis")

        assert exc_info.value.code == AIErrorCode.USAGE_LIMIT_REACHED
        assert not exc_info.value.retryable
        assert adapter.requests == []

    @pytest.mark.asyncio
    async def test_min_interval_between_calls(self, fake_clock):
        """Тест минимального интервала между вызовами."""
        pipeline, _ = make_pipeline(["first", "second"], fake_clock, min_interval=0.1)

        await pipeline.call(REQUEST, "cleanup_analysis")
        fake_clock.now += 0.03
        await pipeline.call(REQUEST, "cleanup_analysis")

        assert fake_clock.sleeps == [pytest.approx(0.07)]

    @pytest.mark.asyncio
    async def test_independent_pipelines(self, fake_clock):
        """Тест независимости интервалов разных конвейеров."""
        first, _ = make_pipeline(["a"], fake_clock)
        second, _ = make_pipeline(["b"], fake_clock)

        await first.call(REQUEST, "cleanup_analysis")
        await second.call(REQUEST, "cleanup_analysis")

        assert fake_clock.sleeps == []

    def test_from_config(self):
        """Тест создания конвейера из конфигурации."""
        config = make_test_config(ai_min_request_interval_ms=250, ai_retry_attempts=4, ai_retry_delay=0.5)

        pipeline = InvocationPipeline.from_config(config, ScriptedAdapter([]), UsageTracker())

        assert pipeline.min_interval == 0.25
        assert pipeline.retry_attempts == 4
        assert pipeline.retry_delay == 0.5
        assert pipeline.model == "gpt-4o-mini"
