"""
Модуль pipeline.py
Конвейер вызова AI: проверка лимитов, минимальный интервал между вызовами,
вызов адаптера, учет использования, повторы с экспоненциальной задержкой.
"""

import asyncio
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional

from .adapters import LLMAdapter, LLMRequest, LLMResponse
from .config import Config
from .exceptions import AIErrorCode, AIServiceError
from .logger import get_logger, log_error_with_context, log_function_call, log_performance
from .models import UsageRecord
from .usage import UsageTracker, estimate_cost

logger = get_logger(__name__)


class InvocationPipeline:
    """
    Устойчивый вызов AI-провайдера.

    Время последнего вызова хранится в экземпляре конвейера, поэтому
    независимые конвейеры не влияют друг на друга.

    Аргументы:
        adapter: Адаптер провайдера
        usage: Журнал использования с лимитами
        min_interval: Минимальный интервал между вызовами (секунды)
        retry_attempts: Число дополнительных попыток после первой
        retry_delay: Базовая задержка экспоненциального отката (секунды)
        model: Модель для оценки стоимости
        clock: Монотонные часы
        sleep: Асинхронная функция ожидания
    """

    def __init__(
        self,
        adapter: LLMAdapter,
        usage: UsageTracker,
        min_interval: float = 0.1,
        retry_attempts: int = 2,
        retry_delay: float = 1.0,
        model: str = "",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.adapter = adapter
        self.usage = usage
        self.min_interval = min_interval
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.model = model
        self.clock = clock
        self.sleep = sleep
        self._last_call: Optional[float] = None

    @classmethod
    def from_config(cls, config: Config, adapter: LLMAdapter, usage: UsageTracker) -> "InvocationPipeline":
        return cls(
            adapter,
            usage,
            min_interval=config.min_request_interval,
            retry_attempts=config.ai_retry_attempts,
            retry_delay=config.ai_retry_delay,
            model=config.llm_model,
        )

    async def _wait_for_slot(self) -> None:
        if self._last_call is not None:
            elapsed = self.clock() - self._last_call
            if elapsed < self.min_interval:
                wait = self.min_interval - elapsed
                logger.debug(f"Ожидание {wait:.3f} сек перед следующим вызовом AI")
                await self.sleep(wait)
        self._last_call = self.clock()

    async def _record_usage(self, response: LLMResponse, operation: str) -> None:
        usage = response.usage
        await self.usage.record_usage(
            UsageRecord(
                timestamp=datetime.now(),
                operation=operation,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
                estimated_cost=estimate_cost(
                    self.model or response.model, usage.prompt_tokens, usage.completion_tokens
                ),
                model=response.model,
            )
        )

    def _backoff(self, error: AIServiceError, attempt: int) -> float:
        if error.retry_after is not None:
            return error.retry_after
        return self.retry_delay * (2 ** attempt)

    async def call(self, request: LLMRequest, operation: str) -> LLMResponse:
        """
        Выполняет вызов AI с проверкой лимитов и повторами.

        Аргументы:
            request: Запрос к LLM
            operation: Название операции для учета использования

        Возвращает:
            LLMResponse: Ответ провайдера

        Raises:
            AIServiceError: USAGE_LIMIT_REACHED до вызова, фатальная ошибка провайдера
                или последняя ошибка после исчерпания попыток
        """
        start_time = time.time()
        log_function_call("InvocationPipeline.call", (operation,))

        limit_check = await self.usage.check_limits()
        if limit_check.exceeded:
            raise AIServiceError(
                AIErrorCode.USAGE_LIMIT_REACHED,
                limit_check.message or "Лимит использования исчерпан",
                retryable=False,
            )

        last_error: Optional[AIServiceError] = None
        total_attempts = self.retry_attempts + 1

        for attempt in range(total_attempts):
            await self._wait_for_slot()
            try:
                response = await self.adapter.chat(request)
            except AIServiceError as e:
                if not e.retryable:
                    log_error_with_context(e, {"operation": operation, "attempt": attempt + 1})
                    raise
                last_error = e
            except Exception as e:
                # Неклассифицированные ошибки считаются временными
                last_error = AIServiceError(AIErrorCode.NETWORK_ERROR, str(e), retryable=True)
                last_error.__cause__ = e
            else:
                await self._record_usage(response, operation)
                log_performance(
                    "InvocationPipeline.call",
                    time.time() - start_time,
                    f"operation={operation}, attempts={attempt + 1}",
                )
                return response

            if attempt < total_attempts - 1:
                delay = self._backoff(last_error, attempt)
                logger.warning(
                    f"Вызов AI не удался ({last_error.code.value}), попытка {attempt + 1}/{total_attempts}, "
                    f"повтор через {delay:.1f} сек"
                )
                await self.sleep(delay)

        log_error_with_context(last_error, {"operation": operation, "attempts": total_attempts})
        raise last_error
