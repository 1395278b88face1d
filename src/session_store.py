"""
Модуль session_store.py
Хранилище сессий очистки.
Сессия хранится как непрозрачная JSON-строка; хранилище не разбирает ее содержимое.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Union

from .exceptions import SessionStoreError
from .logger import get_logger, log_error_with_context, log_function_call, log_performance
from .storage import JsonFileStore

logger = get_logger(__name__)

SESSION_FILE_VERSION = "1.0"


class SessionStore(ABC):
    """Интерфейс хранилища сессий."""

    @abstractmethod
    async def save(self, session_id: str, session_data: str) -> None:
        """Сохраняет сессию (вставка или замена)."""

    @abstractmethod
    async def load(self, session_id: str) -> Optional[str]:
        """Возвращает данные сессии или None."""

    @abstractmethod
    async def load_latest(self) -> Optional[str]:
        """Возвращает данные последней обновленной сессии или None."""

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        """Удаляет сессию, если она существует."""


class InMemorySessionStore(SessionStore):
    """Хранилище сессий в памяти процесса."""

    def __init__(self) -> None:
        self._sessions: Dict[str, str] = {}
        self._updated: Dict[str, int] = {}
        self._counter = 0

    async def save(self, session_id: str, session_data: str) -> None:
        self._counter += 1
        self._sessions[session_id] = session_data
        self._updated[session_id] = self._counter

    async def load(self, session_id: str) -> Optional[str]:
        return self._sessions.get(session_id)

    async def load_latest(self) -> Optional[str]:
        if not self._sessions:
            return None
        latest_id = max(self._updated, key=self._updated.get)
        return self._sessions[latest_id]

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._updated.pop(session_id, None)


class JsonFileSessionStore(SessionStore):
    """
    Хранилище сессий в JSON-файле.

    Формат файла:
        {"version": "1.0", "sessions": {id: {"session_data", "created_at", "updated_at"}}}

    Аргументы:
        file_path: Путь к файлу сессий
    """

    def __init__(self, file_path: Union[str, Path]):
        self._file = JsonFileStore(
            file_path, default={"version": SESSION_FILE_VERSION, "sessions": {}}
        )
        logger.debug(f"JsonFileSessionStore инициализирован: {file_path}")

    async def _read(self) -> dict:
        try:
            data = await self._file.read()
        except (OSError, ValueError) as e:
            log_error_with_context(e, {"operation": "read_sessions", "file": str(self._file.file_path)})
            raise SessionStoreError(f"Не удалось прочитать файл сессий: {e}") from e

        if data.get("version") != SESSION_FILE_VERSION:
            logger.warning(f"Несовместимая версия файла сессий: {data.get('version')}")
            raise SessionStoreError(f"Несовместимая версия файла сессий: {data.get('version')}")
        return data

    async def _write(self, data: dict) -> None:
        try:
            await self._file.write(data)
        except OSError as e:
            log_error_with_context(e, {"operation": "write_sessions", "file": str(self._file.file_path)})
            raise SessionStoreError(f"Не удалось записать файл сессий: {e}") from e

    async def save(self, session_id: str, session_data: str) -> None:
        start_time = time.time()
        log_function_call("JsonFileSessionStore.save", (session_id,), {"size": len(session_data)})

        data = await self._read()
        now = datetime.now().isoformat()
        previous = data["sessions"].get(session_id, {})
        data["sessions"][session_id] = {
            "session_data": session_data,
            "created_at": previous.get("created_at", now),
            "updated_at": now,
        }
        await self._write(data)

        log_performance("JsonFileSessionStore.save", time.time() - start_time, f"session={session_id}")

    async def load(self, session_id: str) -> Optional[str]:
        data = await self._read()
        entry = data["sessions"].get(session_id)
        return entry["session_data"] if entry else None

    async def load_latest(self) -> Optional[str]:
        data = await self._read()
        sessions = data["sessions"]
        if not sessions:
            logger.debug("Сохраненные сессии отсутствуют")
            return None
        # ISO-строки одного формата сравниваются лексикографически
        latest = max(sessions.values(), key=lambda entry: entry["updated_at"])
        return latest["session_data"]

    async def delete(self, session_id: str) -> None:
        log_function_call("JsonFileSessionStore.delete", (session_id,))

        data = await self._read()
        if data["sessions"].pop(session_id, None) is not None:
            await self._write(data)
            logger.info(f"Сессия удалена: {session_id}")
