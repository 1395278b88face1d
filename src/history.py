"""
Модуль history.py
Журнал операций сессии очистки и обратные действия для отмены.
Журнал хранит не больше MAX_HISTORY_SIZE последних операций.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set

from .exceptions import UndoRefusedError
from .logger import get_logger
from .models import (
    BookmarkMove,
    BookmarkRecord,
    CreateFolderOperation,
    DeleteOperation,
    MoveOperation,
    Operation,
)
from .record_store import RecordStore
from .utils import PathUtils

logger = get_logger(__name__)

MAX_HISTORY_SIZE = 10


class OperationHistory:
    """Окно последних операций; при переполнении отбрасываются самые старые."""

    def __init__(self, max_size: int = MAX_HISTORY_SIZE):
        self.max_size = max_size
        self._operations: List[Operation] = []

    def record(self, operation: Operation) -> None:
        self._operations.append(operation)
        if len(self._operations) > self.max_size:
            dropped = len(self._operations) - self.max_size
            self._operations = self._operations[-self.max_size:]
            logger.debug(f"Из журнала операций удалено старых записей: {dropped}")

    def peek(self) -> Optional[Operation]:
        return self._operations[-1] if self._operations else None

    def pop(self) -> Optional[Operation]:
        return self._operations.pop() if self._operations else None

    def can_undo(self) -> bool:
        return bool(self._operations)

    def size(self) -> int:
        return len(self._operations)

    def __len__(self) -> int:
        return len(self._operations)

    def clear(self) -> None:
        self._operations = []

    def get_all(self) -> List[Operation]:
        return list(self._operations)

    def restore(self, operations: Sequence[Operation]) -> None:
        """Заменяет журнал сохраненными операциями (оставляя последние max_size)."""
        self._operations = list(operations)[-self.max_size:]


@dataclass
class UndoContext:
    """
    Изменяемое состояние сессии, которое затрагивает отмена.
    Контейнеры передаются по ссылке и изменяются на месте.
    """
    store: RecordStore
    records: Dict[str, BookmarkRecord]
    deleted_ids: Set[str]
    pending_moves: List[BookmarkMove]
    created_folders: List[List[str]]


async def undo_delete(operation: DeleteOperation, context: UndoContext) -> List[str]:
    """
    Восстанавливает удаленные записи в хранилище и снимает с них мягкое удаление.

    Raises:
        StoreError: Если хранилище не смогло восстановить записи
    """
    await context.store.restore(operation.records)
    for record in operation.records:
        context.records[record.id] = record.copy()
        context.deleted_ids.discard(record.id)
    return [record.id for record in operation.records]


async def undo_move(operation: MoveOperation, context: UndoContext) -> List[str]:
    """
    Возвращает записи на исходные пути и убирает соответствующие отложенные перемещения.

    Raises:
        StoreError: Если хранилище не смогло обновить пути
    """
    await context.store.bulk_update_paths(
        [(move.bookmark_id, list(move.from_path)) for move in operation.moves]
    )
    for move in operation.moves:
        record = context.records.get(move.bookmark_id)
        if record is not None:
            record.path = list(move.from_path)
        _drop_pending_move(context.pending_moves, move)
    return [move.bookmark_id for move in operation.moves]


def _drop_pending_move(pending_moves: List[BookmarkMove], move: BookmarkMove) -> None:
    # Удаляется последнее совпадение: более ранние перемещения той же записи остаются
    for index in range(len(pending_moves) - 1, -1, -1):
        candidate = pending_moves[index]
        if (
            candidate.bookmark_id == move.bookmark_id
            and candidate.from_path == move.from_path
            and candidate.to_path == move.to_path
        ):
            del pending_moves[index]
            return


async def undo_create_folder(operation: CreateFolderOperation, context: UndoContext) -> List[str]:
    """
    Убирает папку из списка созданных.

    Raises:
        UndoRefusedError: Если в папке или ее подпапках есть активные записи
    """
    occupants = [
        record.id
        for record in context.records.values()
        if record.id not in context.deleted_ids and PathUtils.starts_with(record.path, operation.path)
    ]
    if occupants:
        raise UndoRefusedError(
            f'Папка "{PathUtils.format_path(operation.path)}" содержит закладки ({len(occupants)}); '
            f"сначала отмените перемещения в нее"
        )

    for index, path in enumerate(context.created_folders):
        if PathUtils.paths_equal(path, operation.path):
            del context.created_folders[index]
            break
    return []


_UNDO_HANDLERS = {
    DeleteOperation.kind: undo_delete,
    MoveOperation.kind: undo_move,
    CreateFolderOperation.kind: undo_create_folder,
}


async def execute_undo(operation: Operation, context: UndoContext) -> List[str]:
    """
    Применяет обратное действие для операции любого типа.

    Аргументы:
        operation: Отменяемая операция
        context: Состояние сессии

    Возвращает:
        List[str]: Идентификаторы затронутых записей

    Raises:
        StoreError: При ошибке хранилища (состояние в памяти не изменено)
        UndoRefusedError: Если отмена недопустима
    """
    handler = _UNDO_HANDLERS.get(operation.kind)
    if handler is None:
        raise ValueError(f"Неизвестный тип операции: {operation.kind}")
    logger.debug(f"Отмена операции {operation.kind} ({operation.id})")
    return await handler(operation, context)
