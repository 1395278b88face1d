"""
Модуль usage.py
Учет использования AI: токены, оценка стоимости, дневные и месячные лимиты.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from .logger import get_logger, log_error_with_context, log_performance
from .models import UsageLimits, UsageRecord
from .storage import JsonFileStore
from .utils import DateUtils

logger = get_logger(__name__)

WARNING_THRESHOLD = 0.8

# Цена за 1000 токенов в долларах: (запрос, ответ)
TOKEN_COSTS: Dict[str, Dict[str, float]] = {
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-4o": {"input": 0.0025, "output": 0.01},
    "gpt-4-turbo": {"input": 0.01, "output": 0.03},
    "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
    "claude-3-5-sonnet-20241022": {"input": 0.003, "output": 0.015},
    "claude-3-5-haiku-20241022": {"input": 0.0008, "output": 0.004},
    "claude-3-haiku-20240307": {"input": 0.00025, "output": 0.00125},
    "claude-3-opus-20240229": {"input": 0.015, "output": 0.075},
}
DEFAULT_TOKEN_COST = TOKEN_COSTS["gpt-4o-mini"]


def estimate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """
    Оценивает стоимость вызова по таблице цен.
    Для неизвестной модели используется цена gpt-4o-mini.

    Аргументы:
        model: Название модели
        prompt_tokens: Токены запроса
        completion_tokens: Токены ответа

    Возвращает:
        float: Стоимость в долларах
    """
    costs = TOKEN_COSTS.get(model, DEFAULT_TOKEN_COST)
    return (prompt_tokens * costs["input"] + completion_tokens * costs["output"]) / 1000


@dataclass
class UsageTotals:
    tokens: int = 0
    cost: float = 0.0


@dataclass
class UsageStats:
    """
    Статистика использования за период.

    Атрибуты:
        total_tokens: Всего токенов
        total_cost: Общая стоимость
        operation_breakdown: Токены и стоимость по операциям
        daily_usage: Токены и стоимость по дням (ключ - дата ISO), по возрастанию даты
    """
    total_tokens: int = 0
    total_cost: float = 0.0
    operation_breakdown: Dict[str, UsageTotals] = field(default_factory=dict)
    daily_usage: Dict[str, UsageTotals] = field(default_factory=dict)


@dataclass
class LimitDetail:
    current: float
    limit: float
    percentage: float


@dataclass
class LimitCheck:
    """
    Результат проверки лимитов.

    Атрибуты:
        exceeded: Хотя бы один лимит исчерпан
        warning: Хотя бы один лимит использован на WARNING_THRESHOLD и более
        message: Описание превышений и предупреждений
        details: Подробности по каждому заданному лимиту
    """
    exceeded: bool = False
    warning: bool = False
    message: Optional[str] = None
    details: Dict[str, LimitDetail] = field(default_factory=dict)


class UsageTracker:
    """
    Журнал вызовов AI с проверкой лимитов.

    Аргументы:
        file_path: Файл журнала (None - хранение только в памяти)
        limits: Лимиты использования
        clock: Источник текущего времени
    """

    def __init__(
        self,
        file_path: Optional[Union[str, Path]] = None,
        limits: Optional[UsageLimits] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._file = JsonFileStore(file_path, default={"records": []}) if file_path else None
        self.limits = limits or UsageLimits()
        self.clock = clock
        self._records: Optional[List[UsageRecord]] = None

    async def _load(self) -> List[UsageRecord]:
        if self._records is None:
            self._records = []
            if self._file is not None:
                try:
                    data = await self._file.read()
                    self._records = [UsageRecord.from_dict(item) for item in data.get("records", [])]
                except (OSError, ValueError, KeyError, TypeError) as e:
                    log_error_with_context(e, {"operation": "usage_load"})
                    logger.warning("Не удалось загрузить журнал использования, начинаем с пустого")
        return self._records

    async def _persist(self) -> None:
        if self._file is not None:
            await self._file.write({"records": [record.to_dict() for record in self._records or []]})

    async def record_usage(self, record: UsageRecord) -> None:
        """
        Добавляет запись об одном вызове AI.

        Аргументы:
            record: Запись использования
        """
        start_time = time.time()
        records = await self._load()
        records.append(record)
        await self._persist()

        logger.debug(
            f"Использование записано: operation={record.operation}, tokens={record.total_tokens}, "
            f"cost=${record.estimated_cost:.6f}"
        )
        log_performance("UsageTracker.record_usage", time.time() - start_time)

    async def get_stats(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> UsageStats:
        """
        Считает статистику за полуинтервал [start, end).

        Аргументы:
            start: Начало периода (по умолчанию без ограничения)
            end: Конец периода (по умолчанию текущий момент включительно)

        Возвращает:
            UsageStats: Статистика за период
        """
        records = await self._load()
        stats = UsageStats()
        daily: Dict[str, UsageTotals] = {}

        for record in records:
            if start is not None and record.timestamp < start:
                continue
            if end is not None and record.timestamp >= end:
                continue

            stats.total_tokens += record.total_tokens
            stats.total_cost += record.estimated_cost

            by_operation = stats.operation_breakdown.setdefault(record.operation, UsageTotals())
            by_operation.tokens += record.total_tokens
            by_operation.cost += record.estimated_cost

            by_day = daily.setdefault(record.timestamp.date().isoformat(), UsageTotals())
            by_day.tokens += record.total_tokens
            by_day.cost += record.estimated_cost

        stats.daily_usage = dict(sorted(daily.items()))
        return stats

    async def get_today_stats(self) -> UsageTotals:
        start = DateUtils.start_of_day(self.clock())
        stats = await self.get_stats(start, start + timedelta(days=1))
        return UsageTotals(tokens=stats.total_tokens, cost=stats.total_cost)

    async def get_month_stats(self) -> UsageTotals:
        start = DateUtils.start_of_month(self.clock())
        next_month = (start + timedelta(days=32)).replace(day=1)
        stats = await self.get_stats(start, next_month)
        return UsageTotals(tokens=stats.total_tokens, cost=stats.total_cost)

    async def check_limits(self) -> LimitCheck:
        """
        Проверяет все заданные лимиты. Каждый лимит проверяется независимо.

        Возвращает:
            LimitCheck: Результат проверки
        """
        today = await self.get_today_stats()
        month = await self.get_month_stats()
        result = LimitCheck()
        messages: List[str] = []

        checks = [
            ("daily_tokens", "Дневной лимит токенов", today.tokens, self.limits.daily_token_limit),
            ("monthly_tokens", "Месячный лимит токенов", month.tokens, self.limits.monthly_token_limit),
            ("daily_cost", "Дневной лимит стоимости", today.cost, self.limits.daily_cost_limit),
            ("monthly_cost", "Месячный лимит стоимости", month.cost, self.limits.monthly_cost_limit),
        ]

        for name, label, current, limit in checks:
            if not limit:
                continue
            percentage = current / limit
            result.details[name] = LimitDetail(current=current, limit=limit, percentage=percentage)
            if percentage >= 1:
                result.exceeded = True
                messages.append(f"{label} исчерпан ({current:g}/{limit:g})")
            elif percentage >= WARNING_THRESHOLD:
                result.warning = True
                messages.append(f"{label} использован на {round(percentage * 100)}%")

        if messages:
            result.message = "; ".join(messages)
            if result.exceeded:
                logger.warning(f"Лимит использования превышен: {result.message}")
        return result

    async def get_recent_records(self, limit: int = 50) -> List[UsageRecord]:
        records = await self._load()
        return sorted(records, key=lambda record: record.timestamp, reverse=True)[:limit]

    async def clear_history(self) -> None:
        records = await self._load()
        records.clear()
        await self._persist()
        logger.info("Журнал использования очищен")

    async def clear_history_before(self, moment: datetime) -> int:
        """Удаляет записи старше moment. Возвращает количество удаленных."""
        records = await self._load()
        kept = [record for record in records if record.timestamp >= moment]
        removed = len(records) - len(kept)
        self._records = kept
        if removed:
            await self._persist()
        return removed
