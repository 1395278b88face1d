"""
Модуль storage.py
Асинхронное хранение JSON-документов в локальных файлах.
Запись выполняется атомарно через временный файл.
"""

import asyncio
import copy
import json
import os
import time
from pathlib import Path
from typing import Any, Optional, Union

import aiofiles

from .logger import get_logger, log_function_call, log_performance

logger = get_logger(__name__)


class JsonFileStore:
    """
    JSON-документ в файле с асинхронным чтением и атомарной записью.

    Аргументы:
        file_path: Путь к файлу
        default: Значение, возвращаемое при отсутствии файла
    """

    def __init__(self, file_path: Union[str, Path], default: Any = None):
        self.file_path = Path(file_path)
        self.default = default
        self._lock = asyncio.Lock()

    async def read(self) -> Any:
        """
        Читает документ из файла.

        Возвращает:
            Any: Разобранный JSON или значение по умолчанию, если файла нет

        Raises:
            json.JSONDecodeError: Если файл поврежден
            OSError: При ошибке чтения
        """
        start_time = time.time()
        log_function_call("JsonFileStore.read", (str(self.file_path),))

        if not self.file_path.exists():
            logger.debug(f"Файл не найден, используется значение по умолчанию: {self.file_path}")
            return self._fresh_default()

        async with aiofiles.open(self.file_path, "r", encoding="utf-8") as f:
            raw = await f.read()

        data = json.loads(raw) if raw.strip() else self._fresh_default()
        log_performance("JsonFileStore.read", time.time() - start_time, f"file={self.file_path.name}")
        return data

    async def write(self, data: Any) -> None:
        """
        Атомарно записывает документ в файл.

        Аргументы:
            data: JSON-совместимые данные

        Raises:
            OSError: При ошибке записи
        """
        start_time = time.time()
        log_function_call("JsonFileStore.write", (str(self.file_path),))

        async with self._lock:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self.file_path.with_suffix(self.file_path.suffix + ".tmp")

            async with aiofiles.open(temp_file, "w", encoding="utf-8") as f:
                await f.write(json.dumps(data, indent=2, ensure_ascii=False))

            os.replace(temp_file, self.file_path)

        log_performance("JsonFileStore.write", time.time() - start_time, f"file={self.file_path.name}")

    async def remove(self) -> bool:
        """Удаляет файл. Возвращает True, если файл существовал."""
        async with self._lock:
            if self.file_path.exists():
                self.file_path.unlink()
                return True
            return False

    def _fresh_default(self) -> Optional[Any]:
        # Изменяемые значения по умолчанию копируются, чтобы вызовы не делили состояние
        return copy.deepcopy(self.default)
