"""
Модуль adapters.py
Единый интерфейс обращения к LLM-провайдерам.
OpenAI-совместимые провайдеры вызываются через SDK openai, Claude - через httpx.
Все ошибки провайдеров приводятся к AIServiceError с признаком retryable.
"""

import json
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from .config import Config
from .exceptions import AIErrorCode, AIServiceError
from .logger import get_logger, log_error_with_context, log_function_call, log_performance

logger = get_logger(__name__)

CLAUDE_BASE_URL = "https://api.anthropic.com/v1"
CLAUDE_API_VERSION = "2023-06-01"
DEFAULT_RETRY_AFTER = 60.0

_JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


@dataclass
class LLMRequest:
    """
    Запрос к LLM.

    Атрибуты:
        messages: Сообщения в формате {"role": ..., "content": ...}
        max_tokens: Ограничение длины ответа (None - из конфигурации)
        temperature: Температура (None - из конфигурации)
    """
    messages: List[Dict[str, str]]
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class LLMResponse:
    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""


def classify_http_error(
    status: int, body: str = "", retry_after: Optional[str] = None
) -> AIServiceError:
    """
    Преобразует HTTP-статус ответа провайдера в AIServiceError.

    Аргументы:
        status: HTTP-статус
        body: Тело ответа
        retry_after: Значение заголовка Retry-After, если есть

    Возвращает:
        AIServiceError: Классифицированная ошибка
    """
    if status == 401:
        return AIServiceError(AIErrorCode.INVALID_API_KEY, "Неверный API-ключ")

    if status == 429:
        delay = DEFAULT_RETRY_AFTER
        if retry_after:
            try:
                delay = float(retry_after)
            except ValueError:
                pass
        else:
            try:
                error_info = json.loads(body).get("error") or {}
                if isinstance(error_info, dict) and error_info.get("retry_after"):
                    delay = float(error_info["retry_after"])
            except (ValueError, AttributeError, TypeError):
                pass
        return AIServiceError(
            AIErrorCode.RATE_LIMITED, "Превышен лимит запросов провайдера", retryable=True, retry_after=delay
        )

    if status in (402, 403):
        return AIServiceError(AIErrorCode.QUOTA_EXCEEDED, "Квота API исчерпана или доступ запрещен")

    if status in (500, 502, 503, 504):
        return AIServiceError(AIErrorCode.PROVIDER_ERROR, f"Ошибка провайдера: {status}", retryable=True)

    return AIServiceError(
        AIErrorCode.NETWORK_ERROR, f"HTTP ошибка: {status} - {body[:200]}", retryable=status >= 500
    )


def parse_json_response(content: str) -> Dict[str, Any]:
    """
    Извлекает JSON-объект из текста ответа LLM.
    Поддерживает блоки ```json ... ``` и объект внутри произвольного текста.

    Аргументы:
        content: Текст ответа

    Возвращает:
        Dict[str, Any]: Разобранный объект

    Raises:
        AIServiceError: INVALID_RESPONSE, если JSON не найден или не разбирается
    """
    text = content.strip()
    block = _JSON_BLOCK_RE.search(text)
    if block:
        text = block.group(1).strip()

    match = _JSON_OBJECT_RE.search(text)
    if not match:
        raise AIServiceError(AIErrorCode.INVALID_RESPONSE, "JSON не найден в ответе")

    try:
        return json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise AIServiceError(
            AIErrorCode.INVALID_RESPONSE, f"Не удалось разобрать JSON ответа: {content[:100]}..."
        ) from e


class LLMAdapter(ABC):
    """Базовый адаптер LLM-провайдера."""

    def __init__(self, config: Config):
        self.config = config

    @abstractmethod
    async def chat(self, request: LLMRequest) -> LLMResponse:
        """Выполняет один вызов чата. Ошибки - AIServiceError."""

    @abstractmethod
    async def validate_api_key(self) -> bool:
        """Проверяет API-ключ. Никогда не выбрасывает исключений."""

    def _max_tokens(self, request: LLMRequest) -> int:
        return request.max_tokens if request.max_tokens is not None else self.config.llm_max_tokens

    def _temperature(self, request: LLMRequest) -> float:
        return request.temperature if request.temperature is not None else self.config.llm_temperature


class OpenAIAdapter(LLMAdapter):
    """
    Адаптер OpenAI-совместимых API (OpenAI, OpenRouter, локальные серверы).
    Повторы SDK отключены: ими управляет конвейер вызовов.
    """

    def __init__(self, config: Config, client: Optional[AsyncOpenAI] = None):
        super().__init__(config)
        self.client = client or AsyncOpenAI(
            api_key=config.llm_api_key or "not-set",
            base_url=config.llm_base_url,
            timeout=config.llm_timeout,
            max_retries=0,
        )
        logger.debug(f"OpenAIAdapter инициализирован: model={config.llm_model}, base_url={config.llm_base_url}")

    async def chat(self, request: LLMRequest) -> LLMResponse:
        start_time = time.time()
        log_function_call("OpenAIAdapter.chat", (), {"messages": len(request.messages)})

        try:
            response = await self.client.chat.completions.create(
                model=self.config.llm_model,
                messages=request.messages,
                max_tokens=self._max_tokens(request),
                temperature=self._temperature(request),
            )
        except openai.APITimeoutError as e:
            raise AIServiceError(AIErrorCode.TIMEOUT, f"Превышено время ожидания ответа: {e}", retryable=True) from e
        except openai.APIConnectionError as e:
            raise AIServiceError(AIErrorCode.NETWORK_ERROR, f"Ошибка соединения: {e}", retryable=True) from e
        except openai.APIStatusError as e:
            raise classify_http_error(
                e.status_code, e.response.text, e.response.headers.get("retry-after")
            ) from e

        if not response.choices or response.choices[0].message.content is None:
            raise AIServiceError(AIErrorCode.INVALID_RESPONSE, "Провайдер вернул пустой ответ")

        usage = response.usage
        result = LLMResponse(
            content=response.choices[0].message.content,
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
            ),
            model=response.model or self.config.llm_model,
        )
        log_performance("OpenAIAdapter.chat", time.time() - start_time, f"tokens={result.usage.total_tokens}")
        return result

    async def validate_api_key(self) -> bool:
        try:
            await self.client.models.list()
            return True
        except openai.OpenAIError as e:
            log_error_with_context(e, {"operation": "validate_api_key", "provider": self.config.llm_provider})
            return False


class ClaudeAdapter(LLMAdapter):
    """Адаптер Anthropic Messages API поверх httpx."""

    def __init__(self, config: Config, client: Optional[httpx.AsyncClient] = None):
        super().__init__(config)
        self.base_url = (config.llm_base_url or CLAUDE_BASE_URL).rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=config.llm_timeout)
        logger.debug(f"ClaudeAdapter инициализирован: model={config.llm_model}, base_url={self.base_url}")

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.config.llm_api_key,
            "anthropic-version": CLAUDE_API_VERSION,
        }

    def _build_payload(self, request: LLMRequest) -> Dict[str, Any]:
        # Системное сообщение передается отдельным полем
        system = [m["content"] for m in request.messages if m["role"] == "system"]
        payload: Dict[str, Any] = {
            "model": self.config.llm_model,
            "max_tokens": self._max_tokens(request),
            "temperature": self._temperature(request),
            "messages": [
                {"role": m["role"], "content": m["content"]}
                for m in request.messages
                if m["role"] != "system"
            ],
        }
        if system:
            payload["system"] = "\n\n".join(system)
        return payload

    async def chat(self, request: LLMRequest) -> LLMResponse:
        start_time = time.time()
        log_function_call("ClaudeAdapter.chat", (), {"messages": len(request.messages)})

        try:
            response = await self.client.post(
                f"{self.base_url}/messages", headers=self._headers(), json=self._build_payload(request)
            )
        except httpx.TimeoutException as e:
            raise AIServiceError(AIErrorCode.TIMEOUT, f"Превышено время ожидания ответа: {e}", retryable=True) from e
        except httpx.RequestError as e:
            raise AIServiceError(AIErrorCode.NETWORK_ERROR, f"Ошибка соединения: {e}", retryable=True) from e

        if response.status_code >= 400:
            raise classify_http_error(response.status_code, response.text, response.headers.get("retry-after"))

        try:
            data = response.json()
        except ValueError as e:
            raise AIServiceError(AIErrorCode.INVALID_RESPONSE, "Не удалось разобрать ответ Claude") from e
        if not isinstance(data, dict):
            raise AIServiceError(AIErrorCode.INVALID_RESPONSE, "Ответ Claude не является JSON-объектом")

        blocks = data.get("content") or []
        if not isinstance(blocks, list) or not all(isinstance(block, dict) for block in blocks):
            raise AIServiceError(AIErrorCode.INVALID_RESPONSE, "Некорректные блоки содержимого в ответе Claude")
        if not blocks:
            raise AIServiceError(AIErrorCode.INVALID_RESPONSE, "Ответ Claude не содержит текста")

        usage = data.get("usage") or {}
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)
        result = LLMResponse(
            content="".join(block.get("text", "") for block in blocks if block.get("type") == "text"),
            usage=TokenUsage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
            model=data.get("model", self.config.llm_model),
        )
        log_performance("ClaudeAdapter.chat", time.time() - start_time, f"tokens={result.usage.total_tokens}")
        return result

    async def validate_api_key(self) -> bool:
        try:
            response = await self.client.post(
                f"{self.base_url}/messages",
                headers=self._headers(),
                json={
                    "model": self.config.llm_model,
                    "max_tokens": 1,
                    "messages": [{"role": "user", "content": "Hi"}],
                },
            )
        except httpx.HTTPError as e:
            log_error_with_context(e, {"operation": "validate_api_key", "provider": "claude"})
            return False
        # Любой статус, кроме 401, означает, что ключ принят
        return response.status_code != 401


def create_adapter(config: Config) -> LLMAdapter:
    """
    Создает адаптер для провайдера из конфигурации.

    Аргументы:
        config: Конфигурация приложения

    Возвращает:
        LLMAdapter: Адаптер провайдера

    Raises:
        ValueError: Если провайдер не поддерживается
    """
    provider = config.llm_provider
    if provider == "claude":
        return ClaudeAdapter(config)
    if provider in ("openai", "custom"):
        if provider == "custom" and not config.llm_base_url:
            raise ValueError("Для провайдера custom требуется LLM_BASE_URL")
        return OpenAIAdapter(config)
    raise ValueError(f"Неподдерживаемый провайдер: {provider}")
