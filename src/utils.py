"""
Модуль utils.py
Содержит вспомогательные утилиты движка очистки.
Обеспечивает переиспользуемые функции для работы с путями папок, текстом, датами и хешами.
"""

import hashlib
import json
import logging
import time
from datetime import datetime
from typing import Any, Optional, Sequence
from urllib.parse import urlparse

# Настройка логера для модуля
logger = logging.getLogger(__name__)

PATH_SEPARATOR = "/"


class PathUtils:
    """Утилиты для работы с путями папок закладок (списками сегментов)."""

    @staticmethod
    def parse_path(value: str) -> list[str]:
        """
        Разбирает путь вида 'Dev/Python' в список сегментов.

        Аргументы:
            value: Строка пути с разделителем '/'

        Возвращает:
            list[str]: Непустые сегменты пути
        """
        return [segment.strip() for segment in value.split(PATH_SEPARATOR) if segment.strip()]

    @staticmethod
    def format_path(path: Sequence[str], root_label: str = "(корень)") -> str:
        return PATH_SEPARATOR.join(path) if path else root_label

    @staticmethod
    def paths_equal(left: Sequence[str], right: Sequence[str]) -> bool:
        """Точное сравнение путей с учетом регистра."""
        return list(left) == list(right)

    @staticmethod
    def starts_with(path: Sequence[str], prefix: Sequence[str]) -> bool:
        """
        Проверяет, начинается ли путь с префикса (посегментно, без учета регистра).

        Аргументы:
            path: Проверяемый путь
            prefix: Префикс

        Возвращает:
            bool: True если каждый сегмент префикса совпадает с сегментом пути
        """
        if len(path) < len(prefix):
            return False
        return all(
            path[index].lower() == segment.lower() for index, segment in enumerate(prefix)
        )


class TextUtils:
    """Утилиты для обработки текста и строк."""

    @staticmethod
    def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
        """
        Обрезает текст до указанной длины.

        Аргументы:
            text: Исходный текст
            max_length: Максимальная длина
            suffix: Суффикс для обозначения обрезки

        Возвращает:
            str: Обрезанный текст
        """
        if len(text) <= max_length:
            return text

        return text[: max_length - len(suffix)] + suffix

    @staticmethod
    def extract_domain(url: str) -> Optional[str]:
        """
        Извлекает домен из URL.

        Аргументы:
            url: URL-адрес

        Возвращает:
            str: Домен или None, если URL не содержит хоста
        """
        try:
            parsed = urlparse(url)
        except ValueError:
            return None
        return parsed.hostname or None


class DateUtils:
    """Утилиты для работы с датами и временем."""

    @staticmethod
    def format_duration(seconds: float) -> str:
        """
        Форматирует продолжительность в человекочитаемый вид.

        Аргументы:
            seconds: Продолжительность в секундах

        Возвращает:
            str: Отформатированная продолжительность
        """
        if seconds < 60:
            return f"{seconds:.1f} сек"
        elif seconds < 3600:
            return f"{seconds / 60:.1f} мин"
        else:
            return f"{seconds / 3600:.1f} час"

    @staticmethod
    def start_of_day(moment: datetime) -> datetime:
        return moment.replace(hour=0, minute=0, second=0, microsecond=0)

    @staticmethod
    def start_of_month(moment: datetime) -> datetime:
        return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class HashUtils:
    """Утилиты для хеширования данных."""

    @staticmethod
    def generate_text_hash(text: str, algorithm: str = "md5") -> str:
        """
        Генерирует хеш текста.

        Аргументы:
            text: Текст для хеширования
            algorithm: Алгоритм хеширования (md5, sha1, sha256)

        Возвращает:
            str: Хеш текста

        Raises:
            ValueError: Если указан неподдерживаемый алгоритм
        """
        if algorithm not in hashlib.algorithms_available:
            raise ValueError(f"Неподдерживаемый алгоритм хеширования: {algorithm}")

        hash_obj = hashlib.new(algorithm)
        hash_obj.update(text.encode("utf-8"))
        return hash_obj.hexdigest()

    @staticmethod
    def generate_data_hash(data: Any, algorithm: str = "sha256") -> str:
        """
        Генерирует хеш содержимого произвольных JSON-совместимых данных.
        Ключи словарей сортируются, поэтому порядок ключей не влияет на результат.

        Аргументы:
            data: Данные (словари, списки, строки, числа; datetime приводится к строке)
            algorithm: Алгоритм хеширования

        Возвращает:
            str: Хеш содержимого
        """
        serialized = json.dumps(data, sort_keys=True, ensure_ascii=False, default=str)
        return HashUtils.generate_text_hash(serialized, algorithm)


class ProgressTracker:
    """Класс для отслеживания прогресса пакетной обработки."""

    def __init__(self, total_items: int, description: str = "Обработка"):
        """
        Инициализация трекера прогресса.

        Аргументы:
            total_items: Общее количество элементов
            description: Описание операции
        """
        self.total_items = total_items
        self.processed_items = 0
        self.description = description
        self.start_time = time.time()
        self.last_log_time = 0.0
        self.log_interval = 5  # Логировать не чаще чем раз в 5 секунд

    def update(self, processed: int = 1, item_description: str = "") -> None:
        """
        Обновляет прогресс.

        Аргументы:
            processed: Количество обработанных элементов
            item_description: Описание текущего элемента
        """
        self.processed_items += processed
        current_time = time.time()

        if (
            current_time - self.last_log_time >= self.log_interval
            or self.processed_items >= self.total_items
        ):
            self._log_progress(item_description)
            self.last_log_time = current_time

    def get_progress_percentage(self) -> float:
        """
        Возвращает процент выполнения.

        Возвращает:
            float: Процент выполнения (0-100)
        """
        if self.total_items == 0:
            return 100.0
        return (self.processed_items / self.total_items) * 100.0

    def get_elapsed_time(self) -> float:
        return time.time() - self.start_time

    def _log_progress(self, item_description: str = "") -> None:
        percentage = self.get_progress_percentage()
        elapsed = DateUtils.format_duration(self.get_elapsed_time())
        item_str = f" ({item_description})" if item_description else ""

        logger.info(
            f"{self.description}: {self.processed_items}/{self.total_items} "
            f"({percentage:.1f}%), затрачено: {elapsed}{item_str}"
        )
