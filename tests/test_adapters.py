"""
Тесты для модуля adapters.py
"""
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from src.adapters import (
    ClaudeAdapter,
    LLMRequest,
    OpenAIAdapter,
    classify_http_error,
    create_adapter,
    parse_json_response,
)
from src.exceptions import AIErrorCode, AIServiceError
from tests.conftest import make_test_config

OPENAI_URL = "https://api.openai.com/v1/chat/completions"


def make_request():
    return LLMRequest(
        messages=[
            {"role": "system", "content": "Системная инструкция"},
            {"role": "user", "content": "Проанализируй закладки"},
        ]
    )


def http_response(status, headers=None, body=b""):
    return httpx.Response(status, headers=headers, content=body, request=httpx.Request("POST", OPENAI_URL))


class TestClassifyHttpError:
    """Тесты для классификации HTTP-ошибок."""

    def test_invalid_key(self):
        error = classify_http_error(401)
        assert error.code == AIErrorCode.INVALID_API_KEY
        assert not error.retryable

    @pytest.mark.parametrize("status", [402, 403])
    def test_quota(self, status):
        error = classify_http_error(status)
        assert error.code == AIErrorCode.QUOTA_EXCEEDED
        assert not error.retryable

    def test_rate_limit_default_delay(self):
        error = classify_http_error(429)
        assert error.code == AIErrorCode.RATE_LIMITED
        assert error.retryable
        assert error.retry_after == 60.0

    def test_rate_limit_header(self):
        assert classify_http_error(429, "", "7").retry_after == 7.0

    def test_rate_limit_body(self):
        body = json.dumps({"error": {"retry_after": 12}})
        assert classify_http_error(429, body).retry_after == 12.0

    @pytest.mark.parametrize("status", [500, 502, 503, 504])
    def test_provider_error(self, status):
        error = classify_http_error(status)
        assert error.code == AIErrorCode.PROVIDER_ERROR
        assert error.retryable

    def test_other_client_error(self):
        error = classify_http_error(400, "bad request")
        assert error.code == AIErrorCode.NETWORK_ERROR
        assert not error.retryable


class TestParseJsonResponse:
    """Тесты для извлечения JSON из ответа."""

    def test_plain_json(self):
        assert parse_json_response('{"recommendations": []}') == {"recommendations": []}

    def test_fenced_block(self):
        content = 'Вот ответ:\n```json\n{"suggestions": [{"name": "Dev"}]}\n```\nГотово.'
        assert parse_json_response(content) == {"suggestions": [{"name": "Dev"}]}

    def test_object_inside_text(self):
        assert parse_json_response('Результат: {"a": 1} конец') == {"a": 1}

    def test_no_json(self):
        with pytest.raises(AIServiceError) as exc_info:
            parse_json_response("Не могу помочь")
        assert exc_info.value.code == AIErrorCode.INVALID_RESPONSE

    def test_broken_json(self):
        with pytest.raises(AIServiceError) as exc_info:
            parse_json_response('{"a": }')
        assert exc_info.value.code == AIErrorCode.INVALID_RESPONSE


class TestOpenAIAdapter:
    """Тесты для адаптера OpenAI-совместимых API."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock()
        client.models.list = AsyncMock()
        return client

    @pytest.fixture
    def adapter(self, client):
        return OpenAIAdapter(make_test_config(llm_max_tokens=700, llm_temperature=0.2), client=client)

    @pytest.mark.asyncio
    async def test_chat_success(self, adapter, client):
        """Тест успешного вызова."""
        response = MagicMock()
        response.choices = [MagicMock(message=MagicMock(content='{"ok": true}'))]
        response.usage = MagicMock(prompt_tokens=10, completion_tokens=5, total_tokens=15)
        response.model = "gpt-4o-mini-2024"
        client.chat.completions.create.return_value = response

        result = await adapter.chat(make_request())

        assert result.content == '{"ok": true}'
        assert result.usage.total_tokens == 15
        assert result.model == "gpt-4o-mini-2024"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 700
        assert kwargs["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_request_overrides(self, adapter, client):
        """Тест параметров запроса, перекрывающих конфигурацию."""
        response = MagicMock()
        response.choices = [MagicMock(message=MagicMock(content="{}"))]
        response.usage = None
        response.model = None
        client.chat.completions.create.return_value = response

        result = await adapter.chat(LLMRequest(messages=[], max_tokens=50, temperature=0.9))

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["max_tokens"] == 50
        assert kwargs["temperature"] == 0.9
        assert result.usage.total_tokens == 0
        assert result.model == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_empty_response(self, adapter, client):
        """Тест пустого ответа провайдера."""
        response = MagicMock()
        response.choices = []
        client.chat.completions.create.return_value = response

        with pytest.raises(AIServiceError) as exc_info:
            await adapter.chat(make_request())
        assert exc_info.value.code == AIErrorCode.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_timeout(self, adapter, client):
        """Тест таймаута."""
        client.chat.completions.create.side_effect = openai.APITimeoutError(
            request=httpx.Request("POST", OPENAI_URL)
        )

        with pytest.raises(AIServiceError) as exc_info:
            await adapter.chat(make_request())
        assert exc_info.value.code == AIErrorCode.TIMEOUT
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_connection_error(self, adapter, client):
        """Тест ошибки соединения."""
        client.chat.completions.create.side_effect = openai.APIConnectionError(
            request=httpx.Request("POST", OPENAI_URL)
        )

        with pytest.raises(AIServiceError) as exc_info:
            await adapter.chat(make_request())
        assert exc_info.value.code == AIErrorCode.NETWORK_ERROR
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_rate_limited(self, adapter, client):
        """Тест ответа 429 с заголовком Retry-After."""
        client.chat.completions.create.side_effect = openai.RateLimitError(
            "Rate limit", response=http_response(429, {"retry-after": "5"}), body=None
        )

        with pytest.raises(AIServiceError) as exc_info:
            await adapter.chat(make_request())
        assert exc_info.value.code == AIErrorCode.RATE_LIMITED
        assert exc_info.value.retry_after == 5.0

    @pytest.mark.asyncio
    async def test_invalid_key(self, adapter, client):
        """Тест ответа 401."""
        client.chat.completions.create.side_effect = openai.AuthenticationError(
            "Invalid key", response=http_response(401), body=None
        )

        with pytest.raises(AIServiceError) as exc_info:
            await adapter.chat(make_request())
        assert exc_info.value.code == AIErrorCode.INVALID_API_KEY
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_validate_api_key(self, adapter, client):
        """Тест проверки ключа."""
        assert await adapter.validate_api_key() is True

        client.models.list.side_effect = openai.AuthenticationError(
            "Invalid key", response=http_response(401), body=None
        )
        assert await adapter.validate_api_key() is False


class TestClaudeAdapter:
    """Тесты для адаптера Claude."""

    def make_adapter(self, handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ClaudeAdapter(make_test_config(llm_provider="claude", llm_model="claude-3-5-haiku-20241022"), client=client)

    @pytest.mark.asyncio
    async def test_chat_success(self):
        """Тест успешного вызова и формата запроса."""
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["headers"] = request.headers
            captured["payload"] = json.loads(request.content)
            return httpx.Response(200, json={
                "model": "claude-3-5-haiku-20241022",
                "content": [{"type": "text", "text": '{"ok": '}, {"type": "text", "text": "true}"}],
                "usage": {"input_tokens": 30, "output_tokens": 12},
            })

        result = await self.make_adapter(handler).chat(make_request())

        assert result.content == '{"ok": true}'
        assert result.usage.prompt_tokens == 30
        assert result.usage.total_tokens == 42
        assert captured["url"] == "https://api.anthropic.com/v1/messages"
        assert captured["headers"]["x-api-key"] == "test_key"
        assert captured["headers"]["anthropic-version"] == "2023-06-01"
        assert captured["payload"]["system"] == "Системная инструкция"
        assert captured["payload"]["messages"] == [{"role": "user", "content": "Проанализируй закладки"}]

    @pytest.mark.asyncio
    async def test_http_error(self):
        """Тест ошибки провайдера."""
        adapter = self.make_adapter(lambda request: httpx.Response(503, text="overloaded"))

        with pytest.raises(AIServiceError) as exc_info:
            await adapter.chat(make_request())
        assert exc_info.value.code == AIErrorCode.PROVIDER_ERROR
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_empty_content(self):
        """Тест ответа без текстовых блоков."""
        adapter = self.make_adapter(lambda request: httpx.Response(200, json={"content": []}))

        with pytest.raises(AIServiceError) as exc_info:
            await adapter.chat(make_request())
        assert exc_info.value.code == AIErrorCode.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_non_object_body(self):
        """Тест ответа, который является JSON, но не объектом."""
        for body in ([{"type": "text", "text": "{}"}], "ok", {"content": ["text"]}):
            adapter = self.make_adapter(lambda request, body=body: httpx.Response(200, json=body))

            with pytest.raises(AIServiceError) as exc_info:
                await adapter.chat(make_request())
            assert exc_info.value.code == AIErrorCode.INVALID_RESPONSE
            assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Тест таймаута запроса."""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(AIServiceError) as exc_info:
            await self.make_adapter(handler).chat(make_request())
        assert exc_info.value.code == AIErrorCode.TIMEOUT

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Тест ошибки соединения."""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(AIServiceError) as exc_info:
            await self.make_adapter(handler).chat(make_request())
        assert exc_info.value.code == AIErrorCode.NETWORK_ERROR
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_validate_api_key(self):
        """Тест проверки ключа: отклонен только при 401."""
        assert await self.make_adapter(lambda request: httpx.Response(400)).validate_api_key() is True
        assert await self.make_adapter(lambda request: httpx.Response(401)).validate_api_key() is False


class TestCreateAdapter:
    """Тесты для выбора адаптера по провайдеру."""

    def test_claude(self):
        assert isinstance(create_adapter(make_test_config(llm_provider="claude")), ClaudeAdapter)

    def test_openai(self):
        assert isinstance(create_adapter(make_test_config()), OpenAIAdapter)

    def test_custom_without_base_url(self):
        with pytest.raises(ValueError):
            create_adapter(make_test_config(llm_provider="custom", llm_base_url=None))

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_adapter(make_test_config(llm_provider="unknown"))
