"""
Модуль cache.py
Кэш результатов AI-анализа с адресацией по содержимому.
Запись пригодна, только если не истек срок жизни и хеш входных данных совпадает с сохраненным.
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from .logger import get_logger, log_error_with_context, log_function_call, log_performance
from .storage import JsonFileStore

logger = get_logger(__name__)

CACHE_TYPES = ("cleanup", "folder_suggestion")
DEFAULT_TTL_SECONDS = 7 * 24 * 3600
# Грубая оценка: символ строки в памяти занимает около двух байт
SIZE_FACTOR = 2


def generate_cache_key(cache_type: str, identifier: str) -> str:
    """
    Формирует ключ кэша из типа операции и идентичности входных данных.

    Аргументы:
        cache_type: Тип кэшируемой операции
        identifier: Идентификатор входных данных (обычно хеш)

    Возвращает:
        str: Ключ вида '<тип>:<идентификатор>'
    """
    return f"{cache_type}:{identifier}"


@dataclass
class CacheEntry:
    """
    Запись кэша.

    Атрибуты:
        key: Ключ записи
        cache_type: Тип операции
        value: Сохраненное значение (JSON-совместимое)
        input_hash: Хеш входных данных, по которым вычислено значение
        created_at: Время создания (секунды эпохи)
        expires_at: Время истечения (секунды эпохи)
    """
    key: str
    cache_type: str
    value: Any
    input_hash: str
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(**data)


@dataclass
class CacheStats:
    """Статистика кэша: число записей, примерный размер и разбивка по типам."""
    entries: int
    size_bytes: int
    by_type: Dict[str, int] = field(default_factory=dict)


class CacheBackend(ABC):
    """Хранилище записей кэша."""

    @abstractmethod
    async def load(self) -> Dict[str, CacheEntry]:
        """Загружает все записи."""

    @abstractmethod
    async def save(self, entries: Dict[str, CacheEntry]) -> None:
        """Сохраняет все записи."""


class MemoryCacheBackend(CacheBackend):
    def __init__(self) -> None:
        self._entries: Dict[str, CacheEntry] = {}

    async def load(self) -> Dict[str, CacheEntry]:
        return dict(self._entries)

    async def save(self, entries: Dict[str, CacheEntry]) -> None:
        self._entries = dict(entries)


class JsonFileCacheBackend(CacheBackend):
    """Записи кэша в JSON-файле вида {"entries": {key: entry}}."""

    def __init__(self, file_path: Union[str, Path]):
        self._file = JsonFileStore(file_path, default={"entries": {}})

    async def load(self) -> Dict[str, CacheEntry]:
        data = await self._file.read()
        return {
            key: CacheEntry.from_dict(item) for key, item in data.get("entries", {}).items()
        }

    async def save(self, entries: Dict[str, CacheEntry]) -> None:
        await self._file.write({"entries": {key: entry.to_dict() for key, entry in entries.items()}})


class ResultCache:
    """
    Кэш результатов AI-операций.

    Записи загружаются из хранилища при первом обращении и записываются
    обратно после каждого изменения.

    Аргументы:
        backend: Хранилище записей
        default_ttl: Срок жизни записи по умолчанию (секунды)
        clock: Источник текущего времени (секунды эпохи)
    """

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend or MemoryCacheBackend()
        self.default_ttl = default_ttl
        self.clock = clock
        self._entries: Optional[Dict[str, CacheEntry]] = None

        logger.debug(
            f"ResultCache инициализирован: backend={type(self.backend).__name__}, ttl={default_ttl}с"
        )

    async def _load(self) -> Dict[str, CacheEntry]:
        if self._entries is None:
            start_time = time.time()
            try:
                self._entries = await self.backend.load()
            except (OSError, ValueError, TypeError) as e:
                # Поврежденный кэш равнозначен пустому
                log_error_with_context(e, {"operation": "cache_load"})
                logger.warning("Не удалось загрузить кэш, используется пустой кэш")
                self._entries = {}
            log_performance("ResultCache.load", time.time() - start_time, f"entries={len(self._entries)}")
        return self._entries

    async def _persist(self) -> None:
        start_time = time.time()
        try:
            await self.backend.save(self._entries or {})
        except OSError as e:
            # Записи остаются в памяти; на диск они попадут при следующем успешном сохранении
            log_error_with_context(e, {"operation": "cache_save", "entries": len(self._entries or {})})
            logger.warning("Не удалось сохранить кэш на диск")
            return
        log_performance("ResultCache.save", time.time() - start_time)

    async def get(self, key: str) -> Optional[Any]:
        """
        Возвращает значение непросроченной записи.

        Аргументы:
            key: Ключ записи

        Возвращает:
            Any: Значение или None, если записи нет или она истекла
        """
        entry = await self.get_with_meta(key)
        return entry.value if entry else None

    async def get_with_meta(self, key: str) -> Optional[CacheEntry]:
        entries = await self._load()
        entry = entries.get(key)
        if entry is None or entry.is_expired(self.clock()):
            return None
        return entry

    async def set(
        self,
        key: str,
        value: Any,
        cache_type: str,
        input_hash: str,
        ttl: Optional[float] = None,
    ) -> None:
        """
        Сохраняет значение с новым сроком жизни, заменяя прежнюю запись.

        Аргументы:
            key: Ключ записи
            value: JSON-совместимое значение
            cache_type: Тип операции
            input_hash: Хеш входных данных
            ttl: Срок жизни в секундах (по умолчанию default_ttl)
        """
        log_function_call("ResultCache.set", (key, cache_type), {"input_hash": input_hash})

        entries = await self._load()
        now = self.clock()
        entries[key] = CacheEntry(
            key=key,
            cache_type=cache_type,
            value=value,
            input_hash=input_hash,
            created_at=now,
            expires_at=now + (ttl if ttl is not None else self.default_ttl),
        )
        await self._persist()

    async def has(self, key: str) -> bool:
        return await self.get_with_meta(key) is not None

    async def remove(self, key: str) -> None:
        entries = await self._load()
        if entries.pop(key, None) is not None:
            await self._persist()
            logger.debug(f"Запись кэша удалена: {key}")

    async def clear_expired(self) -> int:
        """
        Удаляет истекшие записи.

        Возвращает:
            int: Количество удаленных записей
        """
        entries = await self._load()
        now = self.clock()
        expired = [key for key, entry in entries.items() if entry.is_expired(now)]
        for key in expired:
            del entries[key]
        if expired:
            await self._persist()
        logger.info(f"Удалено истекших записей кэша: {len(expired)}")
        return len(expired)

    async def clear_all(self) -> None:
        entries = await self._load()
        count = len(entries)
        entries.clear()
        await self._persist()
        logger.info(f"Кэш очищен, удалено записей: {count}")

    async def clear_by_type(self, cache_type: str) -> int:
        """
        Удаляет записи указанного типа.

        Аргументы:
            cache_type: Тип операции

        Возвращает:
            int: Количество удаленных записей
        """
        entries = await self._load()
        matching = [key for key, entry in entries.items() if entry.cache_type == cache_type]
        for key in matching:
            del entries[key]
        if matching:
            await self._persist()
        logger.info(f"Удалено записей кэша типа {cache_type}: {len(matching)}")
        return len(matching)

    async def get_stats(self) -> CacheStats:
        """
        Собирает статистику кэша.
        Размер приблизительный: длина сериализованного значения, умноженная на SIZE_FACTOR.

        Возвращает:
            CacheStats: Статистика
        """
        entries = await self._load()
        by_type = {cache_type: 0 for cache_type in CACHE_TYPES}
        size_bytes = 0
        for entry in entries.values():
            by_type[entry.cache_type] = by_type.get(entry.cache_type, 0) + 1
            size_bytes += len(json.dumps(entry.value, ensure_ascii=False, default=str)) * SIZE_FACTOR
        return CacheStats(entries=len(entries), size_bytes=size_bytes, by_type=by_type)

    async def is_valid_for_hash(self, key: str, current_hash: str) -> bool:
        entry = await self.get_with_meta(key)
        return entry is not None and entry.input_hash == current_hash

    async def get_or_compute(
        self,
        key: str,
        cache_type: str,
        input_hash: str,
        compute: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
        force_refresh: bool = False,
    ) -> Tuple[Any, bool]:
        """
        Возвращает закэшированное значение или вычисляет и сохраняет новое.

        Попадание требует непросроченной записи с тем же хешем входных данных.
        При force_refresh кэш не читается.

        Аргументы:
            key: Ключ записи
            cache_type: Тип операции
            input_hash: Хеш текущих входных данных
            compute: Асинхронная функция вычисления значения
            ttl: Срок жизни новой записи
            force_refresh: Пропустить чтение кэша

        Возвращает:
            Tuple[Any, bool]: Значение и признак того, что оно взято из кэша
        """
        if not force_refresh:
            entry = await self.get_with_meta(key)
            if entry is not None and entry.input_hash == input_hash:
                logger.debug(f"Попадание в кэш: {key}")
                return entry.value, True
            if entry is not None:
                logger.debug(f"Хеш входных данных изменился, пересчет: {key}")

        value = await compute()
        await self.set(key, value, cache_type, input_hash, ttl)
        return value, False
