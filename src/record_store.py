"""
Модуль record_store.py
Хранилище канонических записей закладок.
Движок очистки обращается к нему только через четыре операции:
удаление по идентификаторам, массовое обновление путей, восстановление и загрузку.
"""

import json
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple, Union

from .exceptions import StoreError
from .logger import get_logger, log_error_with_context, log_function_call, log_performance
from .models import BookmarkRecord
from .storage import JsonFileStore

logger = get_logger(__name__)

PathUpdate = Tuple[str, List[str]]


class RecordStore(ABC):
    """Интерфейс хранилища записей закладок."""

    @abstractmethod
    async def delete_by_ids(self, ids: Sequence[str]) -> None:
        """Удаляет записи с указанными идентификаторами."""

    @abstractmethod
    async def bulk_update_paths(self, updates: Sequence[PathUpdate]) -> None:
        """Обновляет пути записей; updates - пары (идентификатор, новый путь)."""

    @abstractmethod
    async def restore(self, records: Sequence[BookmarkRecord]) -> None:
        """Записывает снимки записей обратно (вставка или замена)."""

    @abstractmethod
    async def load_all(self) -> List[BookmarkRecord]:
        """Возвращает все записи в порядке хранения."""


class InMemoryRecordStore(RecordStore):
    """Хранилище записей в памяти процесса. Порядок вставки сохраняется."""

    def __init__(self, records: Iterable[BookmarkRecord] = ()):
        self._records: Dict[str, BookmarkRecord] = {record.id: record.copy() for record in records}

    async def delete_by_ids(self, ids: Sequence[str]) -> None:
        for record_id in ids:
            self._records.pop(record_id, None)

    async def bulk_update_paths(self, updates: Sequence[PathUpdate]) -> None:
        for record_id, path in updates:
            record = self._records.get(record_id)
            if record is not None:
                record.path = list(path)

    async def restore(self, records: Sequence[BookmarkRecord]) -> None:
        for record in records:
            self._records[record.id] = record.copy()

    async def load_all(self) -> List[BookmarkRecord]:
        return [record.copy() for record in self._records.values()]


class JsonFileRecordStore(RecordStore):
    """
    Хранилище записей в JSON-файле.

    Каждая операция читает документ, применяет изменение и атомарно записывает его.
    Ошибки ввода-вывода оборачиваются в StoreError.

    Аргументы:
        file_path: Путь к файлу записей
    """

    def __init__(self, file_path: Union[str, Path]):
        self._file = JsonFileStore(file_path, default={"records": []})
        logger.debug(f"JsonFileRecordStore инициализирован: {file_path}")

    @property
    def file_path(self) -> Path:
        return self._file.file_path

    async def _read_records(self) -> Dict[str, BookmarkRecord]:
        data = await self._file.read()
        return {
            record.id: record
            for record in (BookmarkRecord.from_dict(item) for item in data.get("records", []))
        }

    async def _write_records(self, records: Dict[str, BookmarkRecord]) -> None:
        await self._file.write({"records": [record.to_dict() for record in records.values()]})

    async def _mutate(self, operation: str, mutate) -> None:
        start_time = time.time()
        try:
            records = await self._read_records()
            mutate(records)
            await self._write_records(records)
        except (OSError, ValueError, KeyError) as e:
            log_error_with_context(e, {"operation": operation, "file": str(self.file_path)})
            raise StoreError(f"Ошибка хранилища записей при операции {operation}: {e}") from e
        log_performance(f"JsonFileRecordStore.{operation}", time.time() - start_time)

    async def delete_by_ids(self, ids: Sequence[str]) -> None:
        log_function_call("JsonFileRecordStore.delete_by_ids", (), {"count": len(ids)})

        def mutate(records: Dict[str, BookmarkRecord]) -> None:
            for record_id in ids:
                records.pop(record_id, None)

        await self._mutate("delete_by_ids", mutate)

    async def bulk_update_paths(self, updates: Sequence[PathUpdate]) -> None:
        log_function_call("JsonFileRecordStore.bulk_update_paths", (), {"count": len(updates)})

        def mutate(records: Dict[str, BookmarkRecord]) -> None:
            for record_id, path in updates:
                if record_id in records:
                    records[record_id].path = list(path)

        await self._mutate("bulk_update_paths", mutate)

    async def restore(self, records_to_restore: Sequence[BookmarkRecord]) -> None:
        log_function_call("JsonFileRecordStore.restore", (), {"count": len(records_to_restore)})

        def mutate(records: Dict[str, BookmarkRecord]) -> None:
            for record in records_to_restore:
                records[record.id] = record.copy()

        await self._mutate("restore", mutate)

    async def load_all(self) -> List[BookmarkRecord]:
        try:
            records = await self._read_records()
        except (OSError, ValueError, KeyError) as e:
            log_error_with_context(e, {"operation": "load_all", "file": str(self.file_path)})
            raise StoreError(f"Не удалось загрузить записи: {e}") from e
        logger.info(f"Загружено записей из хранилища: {len(records)}")
        return list(records.values())

    async def replace_all(self, records: Sequence[BookmarkRecord]) -> None:
        """
        Заменяет содержимое хранилища (используется при импорте).

        Аргументы:
            records: Новый набор записей
        """
        await self._mutate("replace_all", lambda current: _replace(current, records))


def _replace(current: Dict[str, BookmarkRecord], records: Sequence[BookmarkRecord]) -> None:
    current.clear()
    current.update({record.id: record.copy() for record in records})


def load_records_file(file_path: Union[str, Path]) -> List[BookmarkRecord]:
    """
    Читает записи из JSON-файла импорта: список объектов или {"records": [...]}.

    Аргументы:
        file_path: Путь к файлу

    Возвращает:
        List[BookmarkRecord]: Прочитанные записи

    Raises:
        ValueError: Если структура файла некорректна
    """
    with open(file_path, encoding="utf-8") as f:
        data = json.load(f)

    items = data.get("records") if isinstance(data, dict) else data
    if not isinstance(items, list):
        raise ValueError("Файл записей должен содержать список или объект с ключом 'records'")

    records = [BookmarkRecord.from_dict(item) for item in items]
    logger.info(f"Прочитано записей из {file_path}: {len(records)}")
    return records
