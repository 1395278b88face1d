"""
Модуль exceptions.py
Единая иерархия исключений движка очистки закладок.
"""
from enum import Enum
from typing import Optional


class CleanupError(Exception):
    """Базовое исключение движка очистки."""


class StoreError(CleanupError):
    """Ошибка ввода-вывода хранилища записей."""


class SessionStoreError(CleanupError):
    """Ошибка сохранения или загрузки сессии."""


class UndoRefusedError(CleanupError):
    """Отмена операции невозможна в текущем состоянии сессии."""


class AIErrorCode(str, Enum):
    INVALID_API_KEY = "INVALID_API_KEY"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    RATE_LIMITED = "RATE_LIMITED"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    USAGE_LIMIT_REACHED = "USAGE_LIMIT_REACHED"


class AIServiceError(CleanupError):
    """
    Ошибка обращения к AI-провайдеру.

    Атрибуты:
        code: Код ошибки
        retryable: Можно ли повторить вызов
        retry_after: Задержка перед повтором, заданная провайдером (секунды)
    """

    def __init__(
        self,
        code: AIErrorCode,
        message: str,
        retryable: bool = False,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.retry_after = retry_after

    def __repr__(self) -> str:
        return (
            f"AIServiceError(code={self.code.value}, retryable={self.retryable}, "
            f"message={self.message!r})"
        )
