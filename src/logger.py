"""
Модуль logger.py
Централизованная система логирования для модулей движка очистки закладок.
Обеспечивает единообразное форматирование, вывод в консоль и файл с ротацией.
"""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .config import Config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 МБ
LOG_BACKUP_COUNT = 5


class LoggerManager:
    """
    Менеджер логирования приложения.

    Настраивает корневой логгер один раз при запуске и выдает именованные
    логгеры модулям. Повторная настройка заменяет обработчики, а не дублирует их.
    """

    _instance: Optional["LoggerManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "LoggerManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if not self._initialized:
            self._loggers: Dict[str, logging.Logger] = {}
            self._root_logger: Optional[logging.Logger] = None
            self._log_file: Optional[str] = None
            LoggerManager._initialized = True

    def setup_logging(self, config: "Config", level_override: Optional[str] = None) -> None:
        """
        Настраивает логирование на основе конфигурации.

        Аргументы:
            config: Объект конфигурации приложения
            level_override: Уровень, перекрывающий LOG_LEVEL (например, DEBUG для --verbose)
        """
        level_name = (level_override or config.log_level).upper()

        self._root_logger = logging.getLogger()
        self._root_logger.setLevel(getattr(logging, level_name, logging.INFO))
        self._root_logger.handlers.clear()

        formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        self._root_logger.addHandler(console_handler)

        if config.log_file:
            file_handler = self._create_file_handler(config.log_file)
            file_handler.setFormatter(formatter)
            self._root_logger.addHandler(file_handler)
            self._log_file = config.log_file

        logger = self.get_logger(__name__)
        logger.info(f"Логирование настроено с уровнем: {level_name}")
        logger.debug(f"Файл лога: {config.log_file or 'не задан'}")

    def _create_file_handler(self, log_file: str) -> logging.Handler:
        """
        Создает файловый обработчик с ротацией по размеру.

        Аргументы:
            log_file: Путь к файлу лога

        Возвращает:
            logging.Handler: Файловый обработчик с ротацией
        """
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        return logging.handlers.RotatingFileHandler(
            filename=log_path,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )

    def get_logger(self, name: str) -> logging.Logger:
        """
        Получает логгер для указанного модуля.

        Аргументы:
            name: Имя модуля (обычно __name__)

        Возвращает:
            logging.Logger: Логгер модуля
        """
        if name not in self._loggers:
            self._loggers[name] = logging.getLogger(name)
        return self._loggers[name]

    def set_level(self, level: str) -> None:
        """Изменяет уровень логирования корневого логгера."""
        if self._root_logger:
            self._root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
            self.get_logger(__name__).info(f"Уровень логирования изменен на: {level}")


def get_logger(name: str) -> logging.Logger:
    """
    Получает логгер для указанного модуля.

    Аргументы:
        name: Имя модуля (обычно __name__)

    Возвращает:
        logging.Logger: Логгер модуля

    Пример:
        >>> from src.logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Сессия очистки создана")
    """
    return LoggerManager().get_logger(name)


def setup_logging(config: "Config", level_override: Optional[str] = None) -> None:
    """
    Настраивает логирование приложения.

    Вызывается один раз при запуске командной строки.

    Аргументы:
        config: Объект конфигурации приложения
        level_override: Уровень, перекрывающий значение из конфигурации
    """
    LoggerManager().setup_logging(config, level_override)


def set_log_level(level: str) -> None:
    """
    Изменяет уровень логирования для всего приложения.

    Аргументы:
        level: Новый уровень логирования (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    LoggerManager().set_level(level)


def log_function_call(func_name: str, args: tuple = (), kwargs: Optional[dict] = None) -> None:
    """
    Логирует вызов функции с аргументами в режиме DEBUG.

    Аргументы:
        func_name: Имя функции
        args: Позиционные аргументы
        kwargs: Именованные аргументы
    """
    logger = get_logger(__name__)

    if logger.isEnabledFor(logging.DEBUG):
        parts = [str(arg) for arg in args]
        parts.extend(f"{k}={v}" for k, v in (kwargs or {}).items())
        logger.debug(f"Вызов функции: {func_name}({', '.join(parts)})")


def log_performance(func_name: str, duration: float, details: str = "") -> None:
    """
    Логирует длительность операции.

    Аргументы:
        func_name: Имя операции или функции
        duration: Длительность в секундах
        details: Дополнительные детали
    """
    details_str = f" ({details})" if details else ""
    get_logger(__name__).info(
        f"Производительность: {func_name} выполнена за {duration:.2f}с{details_str}"
    )


def log_error_with_context(error: BaseException, context: Dict[str, Any]) -> None:
    """
    Логирует ошибку с контекстной информацией.

    Аргументы:
        error: Исключение
        context: Контекстная информация (операция, идентификаторы и т.д.)

    Пример:
        >>> try:
        ...     await store.delete_by_ids(ids)
        ... except Exception as e:
        ...     log_error_with_context(e, {"operation": "delete_selected", "count": len(ids)})
    """
    context_str = ", ".join(f"{k}={v}" for k, v in context.items())
    get_logger(__name__).error(
        f"Ошибка: {type(error).__name__}: {error} | Контекст: {context_str}"
    )
