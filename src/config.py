"""
Модуль config.py
Управляет конфигурацией движка очистки закладок через .env-файл.
Обеспечивает валидацию и доступ к параметрам конфигурации.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .logger import get_logger
from .models import UsageLimits

logger = get_logger(__name__)

SUPPORTED_PROVIDERS = ("openai", "claude", "custom")


@dataclass
class Config:
    """
    Класс конфигурации приложения.
    Все поля загружаются из .env-файла.
    """

    # Настройки AI-провайдера
    llm_provider: str
    llm_api_key: str
    llm_base_url: Optional[str]
    llm_model: str
    llm_max_tokens: int
    llm_temperature: float
    llm_timeout: float

    # Настройки конвейера вызовов
    ai_min_request_interval_ms: int
    ai_retry_attempts: int
    ai_retry_delay: float
    ai_batch_size: int
    ai_folder_batch_size: int

    # Кэш и локальное хранилище
    cache_ttl_hours: float
    data_dir: str

    # Настройки логирования
    log_level: str
    log_file: str

    # Лимиты использования (каждый опционален)
    usage_daily_token_limit: Optional[int] = None
    usage_monthly_token_limit: Optional[int] = None
    usage_daily_cost_limit: Optional[float] = None
    usage_monthly_cost_limit: Optional[float] = None

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_hours * 3600

    @property
    def min_request_interval(self) -> float:
        return self.ai_min_request_interval_ms / 1000.0

    @property
    def ai_enabled(self) -> bool:
        return bool(self.llm_api_key)

    def usage_limits(self) -> UsageLimits:
        """
        Собирает лимиты использования из конфигурации.

        Возвращает:
            UsageLimits: Лимиты токенов и стоимости
        """
        return UsageLimits(
            daily_token_limit=self.usage_daily_token_limit,
            monthly_token_limit=self.usage_monthly_token_limit,
            daily_cost_limit=self.usage_daily_cost_limit,
            monthly_cost_limit=self.usage_monthly_cost_limit,
        )

    def data_path(self, filename: str) -> Path:
        return Path(self.data_dir) / filename


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else None


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else None


class ConfigManager:
    """
    Менеджер конфигурации приложения.
    Загружает параметры из .env-файла и предоставляет валидацию.
    """

    def __init__(self, env_path: Optional[str] = None):
        """
        Инициализация менеджера конфигурации.

        Аргументы:
            env_path: Путь к .env-файлу (по умолчанию .env в текущей директории)
        """
        logger.debug(f"Инициализация ConfigManager с env_path: {env_path}")

        load_dotenv(env_path or ".env", override=True)
        self.config = self._load_config()
        self._validate_config()

        logger.info("ConfigManager успешно инициализирован")
        logger.debug(
            f"Загружена конфигурация: provider={self.config.llm_provider}, "
            f"model={self.config.llm_model}, data_dir={self.config.data_dir}"
        )

    def _load_config(self) -> Config:
        """
        Загружает конфигурацию из переменных окружения.

        Возвращает:
            Config: Объект с загруженной конфигурацией

        Raises:
            ValueError: Если числовой параметр не удается разобрать
        """
        logger.debug("Загрузка конфигурации из переменных окружения")

        try:
            config = Config(
                llm_provider=os.getenv("LLM_PROVIDER", "openai").lower(),
                llm_api_key=os.getenv("LLM_API_KEY", ""),
                llm_base_url=os.getenv("LLM_BASE_URL") or None,
                llm_model=os.getenv("LLM_MODEL", "gpt-4o-mini"),
                llm_max_tokens=int(os.getenv("LLM_MAX_TOKENS", "2000")),
                llm_temperature=float(os.getenv("LLM_TEMPERATURE", "0.3")),
                llm_timeout=float(os.getenv("LLM_TIMEOUT", "60")),
                ai_min_request_interval_ms=int(os.getenv("AI_MIN_REQUEST_INTERVAL_MS", "100")),
                ai_retry_attempts=int(os.getenv("AI_RETRY_ATTEMPTS", "2")),
                ai_retry_delay=float(os.getenv("AI_RETRY_DELAY", "1.0")),
                ai_batch_size=int(os.getenv("AI_BATCH_SIZE", "20")),
                ai_folder_batch_size=int(os.getenv("AI_FOLDER_BATCH_SIZE", "50")),
                cache_ttl_hours=float(os.getenv("CACHE_TTL_HOURS", "168")),
                data_dir=os.getenv("DATA_DIR", "./cleanup_data"),
                log_level=os.getenv("LOG_LEVEL", "INFO"),
                log_file=os.getenv("LOG_FILE", "./cleanup.log"),
                usage_daily_token_limit=_optional_int("USAGE_DAILY_TOKEN_LIMIT"),
                usage_monthly_token_limit=_optional_int("USAGE_MONTHLY_TOKEN_LIMIT"),
                usage_daily_cost_limit=_optional_float("USAGE_DAILY_COST_LIMIT"),
                usage_monthly_cost_limit=_optional_float("USAGE_MONTHLY_COST_LIMIT"),
            )

            logger.debug("Конфигурация успешно загружена из переменных окружения")
            return config

        except ValueError as e:
            logger.error(f"Ошибка при загрузке конфигурации: {e}")
            raise

    def _validate_config(self) -> None:
        """
        Валидирует параметры конфигурации.
        Собирает все ошибки и вызывает одно исключение со списком.

        Raises:
            ValueError: Если параметры конфигурации некорректны
        """
        logger.debug("Валидация конфигурации")

        config = self.config
        validation_errors = []

        if config.llm_provider not in SUPPORTED_PROVIDERS:
            validation_errors.append(
                f"LLM_PROVIDER должен быть одним из {', '.join(SUPPORTED_PROVIDERS)}: {config.llm_provider}"
            )

        if config.llm_provider == "custom" and not config.llm_base_url:
            validation_errors.append("LLM_BASE_URL обязателен для провайдера custom")

        if config.llm_max_tokens <= 0:
            validation_errors.append(
                f"LLM_MAX_TOKENS должен быть положительным числом: {config.llm_max_tokens}"
            )

        if config.llm_timeout <= 0:
            validation_errors.append(
                f"LLM_TIMEOUT должен быть положительным числом: {config.llm_timeout}"
            )

        if config.ai_min_request_interval_ms < 0:
            validation_errors.append(
                f"AI_MIN_REQUEST_INTERVAL_MS должен быть неотрицательным числом: {config.ai_min_request_interval_ms}"
            )

        if config.ai_retry_attempts < 0:
            validation_errors.append(
                f"AI_RETRY_ATTEMPTS должен быть неотрицательным числом: {config.ai_retry_attempts}"
            )

        if config.ai_batch_size <= 0 or config.ai_folder_batch_size <= 0:
            validation_errors.append(
                f"Размеры пакетов должны быть положительными: "
                f"AI_BATCH_SIZE={config.ai_batch_size}, AI_FOLDER_BATCH_SIZE={config.ai_folder_batch_size}"
            )

        if config.cache_ttl_hours <= 0:
            validation_errors.append(
                f"CACHE_TTL_HOURS должен быть положительным числом: {config.cache_ttl_hours}"
            )

        for name in (
            "usage_daily_token_limit",
            "usage_monthly_token_limit",
            "usage_daily_cost_limit",
            "usage_monthly_cost_limit",
        ):
            value = getattr(config, name)
            if value is not None and value < 0:
                validation_errors.append(f"{name.upper()} не может быть отрицательным: {value}")

        for error_msg in validation_errors:
            logger.error(error_msg)

        if validation_errors:
            logger.error(
                f"Валидация конфигурации не пройдена: {len(validation_errors)} ошибок"
            )
            raise ValueError(
                f"Ошибки валидации конфигурации: {'; '.join(validation_errors)}"
            )

        if not config.llm_api_key:
            logger.warning("LLM_API_KEY не задан: AI-анализ недоступен, доступна только ручная очистка")

        logger.info("Валидация конфигурации успешно пройдена")

    def get(self) -> Config:
        """
        Возвращает объект конфигурации.

        Возвращает:
            Config: Объект с конфигурацией
        """
        return self.config
