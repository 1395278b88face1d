"""
Тесты для модуля usage.py
"""
from datetime import datetime

import pytest

from src.models import UsageLimits, UsageRecord
from src.usage import UsageTracker, estimate_cost

NOW = datetime(2024, 5, 17, 12, 0, 0)


def make_record(timestamp, tokens=1000, cost=0.01, operation="cleanup_analysis"):
    """Создает запись использования."""
    return UsageRecord(
        timestamp=timestamp,
        operation=operation,
        prompt_tokens=tokens // 2,
        completion_tokens=tokens - tokens // 2,
        total_tokens=tokens,
        estimated_cost=cost,
        model="gpt-4o-mini",
    )


def make_tracker(limits=None, file_path=None):
    return UsageTracker(file_path=file_path, limits=limits, clock=lambda: NOW)


class TestEstimateCost:
    """Тесты для оценки стоимости."""

    def test_known_model(self):
        assert estimate_cost("gpt-4o", 1000, 1000) == pytest.approx(0.0125)

    def test_unknown_model_uses_default_price(self):
        assert estimate_cost("some-model", 1000, 1000) == pytest.approx(estimate_cost("gpt-4o-mini", 1000, 1000))


class TestUsageStats:
    """Тесты для статистики использования."""

    @pytest.mark.asyncio
    async def test_stats_by_period(self):
        """Тест разбивки по операциям и дням."""
        tracker = make_tracker()
        await tracker.record_usage(make_record(datetime(2024, 5, 16, 10), tokens=100, cost=0.1))
        await tracker.record_usage(make_record(datetime(2024, 5, 17, 9), tokens=200, cost=0.2))
        await tracker.record_usage(
            make_record(datetime(2024, 5, 17, 10), tokens=300, cost=0.3, operation="folder_suggestion")
        )

        stats = await tracker.get_stats()

        assert stats.total_tokens == 600
        assert stats.total_cost == pytest.approx(0.6)
        assert stats.operation_breakdown["cleanup_analysis"].tokens == 300
        assert stats.operation_breakdown["folder_suggestion"].tokens == 300
        assert list(stats.daily_usage) == ["2024-05-16", "2024-05-17"]
        assert stats.daily_usage["2024-05-17"].tokens == 500

    @pytest.mark.asyncio
    async def test_period_is_half_open(self):
        """Тест полуинтервала [start, end)."""
        tracker = make_tracker()
        await tracker.record_usage(make_record(datetime(2024, 5, 17, 0, 0), tokens=10))
        await tracker.record_usage(make_record(datetime(2024, 5, 18, 0, 0), tokens=20))

        stats = await tracker.get_stats(datetime(2024, 5, 17), datetime(2024, 5, 18))

        assert stats.total_tokens == 10

    @pytest.mark.asyncio
    async def test_today_and_month(self):
        """Тест статистики за сегодня и за месяц."""
        tracker = make_tracker()
        await tracker.record_usage(make_record(datetime(2024, 4, 30, 23), tokens=1))
        await tracker.record_usage(make_record(datetime(2024, 5, 2, 8), tokens=10))
        await tracker.record_usage(make_record(datetime(2024, 5, 17, 8), tokens=100))

        assert (await tracker.get_today_stats()).tokens == 100
        assert (await tracker.get_month_stats()).tokens == 110

    @pytest.mark.asyncio
    async def test_recent_records_and_clear(self):
        """Тест последних записей и очистки журнала."""
        tracker = make_tracker()
        await tracker.record_usage(make_record(datetime(2024, 5, 1)))
        await tracker.record_usage(make_record(datetime(2024, 5, 10)))
        await tracker.record_usage(make_record(datetime(2024, 5, 5)))

        recent = await tracker.get_recent_records(limit=2)
        assert [record.timestamp.day for record in recent] == [10, 5]

        assert await tracker.clear_history_before(datetime(2024, 5, 6)) == 2
        await tracker.clear_history()
        assert (await tracker.get_stats()).total_tokens == 0


class TestUsageLimits:
    """Тесты для проверки лимитов."""

    @pytest.mark.asyncio
    async def test_no_limits(self):
        """Тест отсутствия лимитов."""
        tracker = make_tracker()
        await tracker.record_usage(make_record(NOW, tokens=10**6))

        check = await tracker.check_limits()

        assert not check.exceeded
        assert not check.warning
        assert check.message is None

    @pytest.mark.asyncio
    async def test_warning_threshold(self):
        """Тест предупреждения при использовании 80% лимита."""
        tracker = make_tracker(UsageLimits(daily_token_limit=1000))
        await tracker.record_usage(make_record(NOW, tokens=800))

        check = await tracker.check_limits()

        assert check.warning
        assert not check.exceeded
        assert check.details["daily_tokens"].percentage == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_exceeded(self):
        """Тест исчерпания лимита."""
        tracker = make_tracker(UsageLimits(daily_token_limit=1000, monthly_cost_limit=10.0))
        await tracker.record_usage(make_record(NOW, tokens=1000, cost=1.0))

        check = await tracker.check_limits()

        assert check.exceeded
        assert "Дневной лимит токенов" in check.message
        assert "monthly_cost" in check.details
        assert check.details["monthly_cost"].percentage == pytest.approx(0.1)

    @pytest.mark.asyncio
    async def test_limits_independent(self):
        """Тест независимой проверки каждого лимита."""
        tracker = make_tracker(UsageLimits(daily_cost_limit=1.0, monthly_token_limit=100))
        await tracker.record_usage(make_record(NOW, tokens=50, cost=0.9))

        check = await tracker.check_limits()

        assert check.warning
        assert not check.exceeded
        assert set(check.details) == {"daily_cost", "monthly_tokens"}


class TestUsagePersistence:
    """Тесты для сохранения журнала в файл."""

    @pytest.mark.asyncio
    async def test_records_persisted(self, temp_dir):
        """Тест чтения журнала новым экземпляром."""
        file_path = temp_dir / "usage.json"
        await make_tracker(file_path=file_path).record_usage(make_record(NOW, tokens=42))

        stats = await make_tracker(file_path=file_path).get_stats()

        assert stats.total_tokens == 42

    @pytest.mark.asyncio
    async def test_corrupted_file_starts_empty(self, temp_dir):
        """Тест поврежденного журнала."""
        file_path = temp_dir / "usage.json"
        file_path.write_text("not json", encoding="utf-8")

        stats = await make_tracker(file_path=file_path).get_stats()

        assert stats.total_tokens == 0
