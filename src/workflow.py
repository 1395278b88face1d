"""
Модуль workflow.py
Сессия очистки закладок: стадии, выделение, удаление, перемещения, папки,
рекомендации AI, отмена операций и сохранение сессии.

Действия не выбрасывают исключений наружу: результат возвращается как OperationResult,
ошибки логируются.
"""

import json
import time
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from .analysis import CleanupAnalyzer, ProgressCallback
from .exceptions import AIServiceError, SessionStoreError, StoreError, UndoRefusedError
from .filters import combine_filters, recommendations_by_id
from .folders import (
    apply_pending_moves,
    build_folder_tree,
    collect_folder_paths,
    has_blank_segment,
    validate_new_folder,
)
from .history import OperationHistory, UndoContext, execute_undo
from .logger import get_logger, log_error_with_context, log_function_call, log_performance
from .models import (
    STAGE_ORDER,
    AICleanupRecommendation,
    BookmarkMove,
    BookmarkRecord,
    ChangeSummary,
    CleanupFilters,
    CreateFolderOperation,
    DeleteOperation,
    FolderTreeNode,
    MovedRecord,
    MoveOperation,
    OperationResult,
    SuggestedFolder,
    new_id,
    operation_from_dict,
)
from .record_store import RecordStore
from .session_store import SessionStore
from .utils import PathUtils

logger = get_logger(__name__)

# Стадии, для которых действие предусмотрено; вне их действие допускается с предупреждением
STAGE_ACTIONS = {
    "analyze": ("review",),
    "delete": ("review",),
    "suggest": ("organize",),
    "move": ("organize",),
    "create_folder": ("organize",),
    "export": ("preview",),
}


class CleanupWorkflow:
    """
    Состояние и действия одной сессии очистки.

    Рабочий набор записей изменяется на месте; удаление и перемещение сразу
    записываются в хранилище, а отмена выполняет компенсирующую запись.

    Аргументы:
        store: Хранилище записей
        session_store: Хранилище сессий
        analyzer: AI-анализатор (None - AI-действия недоступны)
        clock: Источник текущего времени
    """

    def __init__(
        self,
        store: RecordStore,
        session_store: SessionStore,
        analyzer: Optional[CleanupAnalyzer] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.session_store = session_store
        self.analyzer = analyzer
        self.clock = clock

        self.is_loading = False
        self.is_saving = False
        self.is_analyzing = False
        self._clear_state()

    def _clear_state(self) -> None:
        self.session_id: Optional[str] = None
        self.workflow_started = False
        self.has_unsaved_changes = False
        self.current_stage = STAGE_ORDER[0]
        self.started_at: Optional[datetime] = None
        self.updated_at: Optional[datetime] = None

        self.records: Dict[str, BookmarkRecord] = {}
        self.selected_ids: Set[str] = set()
        self.deleted_ids: Set[str] = set()
        self.recommendations: List[AICleanupRecommendation] = []
        self.suggested_folders: List[SuggestedFolder] = []
        self.pending_moves: List[BookmarkMove] = []
        self.created_folders: List[List[str]] = []
        self.history = OperationHistory()
        self.filters = CleanupFilters()
        self.analysis_error: Optional[str] = None

    def _touch(self) -> None:
        self.has_unsaved_changes = True
        self.updated_at = self.clock()

    def _check_stage(self, action: str) -> None:
        stages = STAGE_ACTIONS.get(action)
        if stages and self.current_stage not in stages:
            logger.warning(
                f"Действие '{action}' выполняется на стадии '{self.current_stage}', "
                f"обычно оно выполняется на стадии: {', '.join(stages)}"
            )

    # Запуск

    def start(self, records: Sequence[BookmarkRecord]) -> OperationResult:
        """
        Начинает новую сессию на стадии 'review'.

        Аргументы:
            records: Рабочий набор записей

        Возвращает:
            OperationResult: Неудача, если набор пуст
        """
        if not records:
            return OperationResult.failed("Нельзя начать очистку без закладок")

        self._clear_state()
        self.session_id = new_id()
        self.workflow_started = True
        self.started_at = self.updated_at = self.clock()
        self.records = {record.id: record.copy() for record in records}
        self._touch()
        logger.info(f"Начата сессия очистки {self.session_id}: {len(self.records)} закладок")
        return OperationResult(success=True, affected_ids=list(self.records))

    # Стадии

    def set_stage(self, stage: str) -> bool:
        if stage not in STAGE_ORDER:
            logger.warning(f"Неизвестная стадия: {stage}")
            return False
        if stage != self.current_stage:
            logger.info(f"Переход на стадию: {self.current_stage} -> {stage}")
            self.current_stage = stage
            self._touch()
        return True

    def next_stage(self) -> bool:
        index = STAGE_ORDER.index(self.current_stage)
        if index >= len(STAGE_ORDER) - 1:
            return False
        return self.set_stage(STAGE_ORDER[index + 1])

    def prev_stage(self) -> bool:
        index = STAGE_ORDER.index(self.current_stage)
        if index == 0:
            return False
        return self.set_stage(STAGE_ORDER[index - 1])

    # Выделение

    @property
    def selected_count(self) -> int:
        return len(self.selected_ids)

    def toggle_selection(self, bookmark_id: str) -> None:
        if bookmark_id in self.selected_ids:
            self.selected_ids.discard(bookmark_id)
        else:
            self.selected_ids.add(bookmark_id)
        self._touch()

    def select_all(self, ids: Iterable[str]) -> None:
        self.selected_ids = set(ids)
        self._touch()

    def deselect_all(self) -> None:
        self.selected_ids = set()
        self._touch()

    def select_by_recommendation(self, recommendation_type: str) -> int:
        """
        Заменяет выделение активными неотклоненными записями с указанной рекомендацией.

        Возвращает:
            int: Размер нового выделения
        """
        active = self._active_ids()
        self.selected_ids = {
            item.bookmark_id
            for item in self.recommendations
            if item.recommendation == recommendation_type
            and not item.rejected
            and item.bookmark_id in active
        }
        self._touch()
        logger.debug(f"Выделено по рекомендации '{recommendation_type}': {len(self.selected_ids)}")
        return len(self.selected_ids)

    # Активные записи и фильтры

    def _active_ids(self) -> Set[str]:
        return {record_id for record_id in self.records if record_id not in self.deleted_ids}

    def get_active_records(self) -> List[BookmarkRecord]:
        return [record for record in self.records.values() if record.id not in self.deleted_ids]

    def set_filters(self, **changes) -> None:
        """Обновляет только переданные поля фильтров."""
        for name, value in changes.items():
            if not hasattr(self.filters, name):
                raise ValueError(f"Неизвестный фильтр: {name}")
            setattr(self.filters, name, value)

    def clear_filters(self) -> None:
        self.filters = CleanupFilters()

    def get_filtered_records(self) -> List[BookmarkRecord]:
        return combine_filters(
            self.get_active_records(), self.filters, recommendations_by_id(self.recommendations)
        )

    # Удаление

    async def delete_selected(self) -> OperationResult:
        """
        Удаляет выделенные записи: из хранилища сразу, из активного набора мягко.

        Возвращает:
            OperationResult: Результат с записью журнала; при пустом выделении ничего не делает
        """
        self._check_stage("delete")
        ids = [record_id for record_id in self.records if record_id in self.selected_ids]
        ids = [record_id for record_id in ids if record_id not in self.deleted_ids]
        if not ids:
            return OperationResult(success=True)

        start_time = time.time()
        log_function_call("CleanupWorkflow.delete_selected", (), {"count": len(ids)})

        snapshots = [self.records[record_id].copy() for record_id in ids]
        try:
            await self.store.delete_by_ids(ids)
        except StoreError as e:
            log_error_with_context(e, {"operation": "delete_selected", "count": len(ids)})
            return OperationResult.failed(str(e))

        operation = DeleteOperation(records=snapshots)
        self.history.record(operation)
        self.deleted_ids.update(ids)
        self.selected_ids = set()
        self._touch()

        log_performance("CleanupWorkflow.delete_selected", time.time() - start_time, f"deleted={len(ids)}")
        logger.info(f"Удалено закладок: {len(ids)}")
        return OperationResult(success=True, affected_ids=ids, operation=operation)

    async def restore_deleted(self, ids: Iterable[str]) -> OperationResult:
        """
        Снимает мягкое удаление и возвращает записи в хранилище.
        Журнал операций не меняется.
        """
        to_restore = [record_id for record_id in ids if record_id in self.deleted_ids]
        if not to_restore:
            return OperationResult(success=True)

        try:
            await self.store.restore([self.records[record_id] for record_id in to_restore])
        except StoreError as e:
            log_error_with_context(e, {"operation": "restore_deleted", "count": len(to_restore)})
            return OperationResult.failed(str(e))

        self.deleted_ids.difference_update(to_restore)
        self._touch()
        logger.info(f"Восстановлено закладок: {len(to_restore)}")
        return OperationResult(success=True, affected_ids=to_restore)

    # Рекомендации AI

    def set_recommendations(self, recommendations: Sequence[AICleanupRecommendation]) -> None:
        self.recommendations = list(recommendations)
        self._touch()

    def _find_recommendation(self, bookmark_id: str) -> Optional[AICleanupRecommendation]:
        return next((item for item in self.recommendations if item.bookmark_id == bookmark_id), None)

    def accept_recommendation(self, bookmark_id: str) -> bool:
        recommendation = self._find_recommendation(bookmark_id)
        if recommendation is None:
            return False
        recommendation.accepted = True
        recommendation.rejected = False
        if recommendation.recommendation == "delete":
            self.selected_ids.add(bookmark_id)
        self._touch()
        return True

    def reject_recommendation(self, bookmark_id: str) -> bool:
        recommendation = self._find_recommendation(bookmark_id)
        if recommendation is None:
            return False
        recommendation.accepted = False
        recommendation.rejected = True
        self.selected_ids.discard(bookmark_id)
        self._touch()
        return True

    def accept_all_recommendations(self, recommendation_type: str) -> int:
        """
        Принимает все неотклоненные рекомендации типа; для 'delete' добавляет их в выделение.

        Возвращает:
            int: Количество принятых рекомендаций
        """
        accepted = 0
        for recommendation in self.recommendations:
            if recommendation.recommendation == recommendation_type and not recommendation.rejected:
                recommendation.accepted = True
                accepted += 1
                if recommendation_type == "delete":
                    self.selected_ids.add(recommendation.bookmark_id)
        if accepted:
            self._touch()
        return accepted

    async def analyze(
        self, force_refresh: bool = False, on_progress: Optional[ProgressCallback] = None
    ) -> OperationResult:
        """
        Запрашивает рекомендации по очистке для активных записей.
        Повторный вызов во время выполняющегося анализа отклоняется.
        """
        if self.analyzer is None:
            return OperationResult.failed("AI-анализ не настроен: задайте LLM_API_KEY")
        if self.is_analyzing:
            return OperationResult.failed("Анализ уже выполняется")
        self.is_analyzing = True
        self._check_stage("analyze")

        try:
            self.analysis_error = None
            recommendations = await self.analyzer.analyze_for_cleanup(
                self.get_active_records(), force_refresh=force_refresh, on_progress=on_progress
            )
        except AIServiceError as e:
            self.analysis_error = e.message
            log_error_with_context(e, {"operation": "analyze"})
            return OperationResult.failed(e.message)
        finally:
            self.is_analyzing = False

        self.set_recommendations(recommendations)
        logger.info(f"Получено рекомендаций: {len(recommendations)}")
        return OperationResult(success=True, affected_ids=[item.bookmark_id for item in recommendations])

    async def suggest_folders(
        self, force_refresh: bool = False, on_progress: Optional[ProgressCallback] = None
    ) -> OperationResult:
        if self.analyzer is None:
            return OperationResult.failed("AI-анализ не настроен: задайте LLM_API_KEY")
        if self.is_analyzing:
            return OperationResult.failed("Анализ уже выполняется")
        self.is_analyzing = True
        self._check_stage("suggest")

        active = self.get_active_records()
        try:
            self.analysis_error = None
            suggestions = await self.analyzer.suggest_folder_structure(
                active,
                collect_folder_paths(active),
                force_refresh=force_refresh,
                on_progress=on_progress,
            )
        except AIServiceError as e:
            self.analysis_error = e.message
            log_error_with_context(e, {"operation": "suggest_folders"})
            return OperationResult.failed(e.message)
        finally:
            self.is_analyzing = False

        self.suggested_folders = suggestions
        self._touch()
        logger.info(f"Получено предложений папок: {len(suggestions)}")
        return OperationResult(success=True)

    # Папки и перемещения

    def create_folder(self, path: Sequence[str]) -> OperationResult:
        """
        Создает папку в сессии.

        Аргументы:
            path: Путь новой папки

        Возвращает:
            OperationResult: Неудача при пустом пути, занятом имени на уровне
                или повторном создании; состояние при этом не меняется
        """
        self._check_stage("create_folder")
        error = validate_new_folder(self.records.values(), self.created_folders, path)
        if error:
            logger.debug(f"Папка не создана: {error}")
            return OperationResult.failed(error)

        operation = CreateFolderOperation(path=list(path))
        self.created_folders.append(list(path))
        self.history.record(operation)
        self._touch()
        logger.info(f"Создана папка: {PathUtils.format_path(path)}")
        return OperationResult(success=True, operation=operation)

    async def move_bookmarks(self, ids: Iterable[str], target_path: Sequence[str]) -> OperationResult:
        """
        Перемещает активные записи в папку target_path.

        Аргументы:
            ids: Идентификаторы записей (отсутствующие и удаленные пропускаются)
            target_path: Путь назначения

        Возвращает:
            OperationResult: Результат с записью журнала
        """
        self._check_stage("move")
        if has_blank_segment(target_path):
            return OperationResult.failed("Имя папки не может быть пустым")
        active = self._active_ids()
        move_ids = []
        for record_id in ids:
            if record_id in active and record_id not in move_ids:
                move_ids.append(record_id)
        if not move_ids:
            return OperationResult.failed("Нет закладок для перемещения")

        start_time = time.time()
        log_function_call("CleanupWorkflow.move_bookmarks", (PathUtils.format_path(target_path),), {"count": len(move_ids)})

        moves = [
            BookmarkMove(
                bookmark_id=record_id,
                from_path=list(self.records[record_id].path),
                to_path=list(target_path),
            )
            for record_id in move_ids
        ]
        try:
            await self.store.bulk_update_paths([(record_id, list(target_path)) for record_id in move_ids])
        except StoreError as e:
            log_error_with_context(e, {"operation": "move_bookmarks", "count": len(move_ids)})
            return OperationResult.failed(str(e))

        for move in moves:
            self.records[move.bookmark_id].path = list(target_path)
        operation = MoveOperation(moves=moves)
        self.history.record(operation)
        self.pending_moves.extend(moves)
        self.selected_ids = set()
        self._touch()

        log_performance("CleanupWorkflow.move_bookmarks", time.time() - start_time, f"moved={len(moves)}")
        logger.info(f"Перемещено закладок в {PathUtils.format_path(target_path)}: {len(moves)}")
        return OperationResult(success=True, affected_ids=move_ids, operation=operation)

    async def accept_folder_suggestion(self, suggestion: SuggestedFolder) -> OperationResult:
        """
        Принимает предложение папки: создает папку (если ее нет) и перемещает
        в нее предложенные записи, которые еще активны.
        """
        history_before = self.history.get_all()
        created = self.create_folder(suggestion.path)
        if not created.success:
            if not suggestion.path or has_blank_segment(suggestion.path):
                return created
            logger.debug(f"Папка предложения уже существует: {created.error}")

        active = self._active_ids()
        ids = [record_id for record_id in suggestion.suggested_bookmark_ids if record_id in active]
        if not ids:
            return created if created.success else OperationResult(success=True)

        moved = await self.move_bookmarks(ids, suggestion.path)
        if not moved.success and created.success:
            # Папка, созданная только под это перемещение, убирается вместе с его записью в журнале
            self.created_folders.remove(list(suggestion.path))
            self.history.restore(history_before)
            logger.info(f"Создание папки {PathUtils.format_path(suggestion.path)} отменено: {moved.error}")
        return moved

    # Отмена

    @property
    def can_undo(self) -> bool:
        return self.history.can_undo()

    async def undo(self) -> OperationResult:
        """
        Отменяет последнюю операцию журнала.
        Если обратное действие не удалось, операция возвращается в журнал.
        """
        operation = self.history.pop()
        if operation is None:
            return OperationResult.failed("Нет операций для отмены")

        context = UndoContext(
            store=self.store,
            records=self.records,
            deleted_ids=self.deleted_ids,
            pending_moves=self.pending_moves,
            created_folders=self.created_folders,
        )
        try:
            affected = await execute_undo(operation, context)
        except (StoreError, UndoRefusedError) as e:
            self.history.record(operation)
            log_error_with_context(e, {"operation": "undo", "kind": operation.kind})
            return OperationResult.failed(str(e))

        self._touch()
        logger.info(f"Отменена операция: {operation.kind}")
        return OperationResult(success=True, affected_ids=affected, operation=operation)

    # Предпросмотр и экспорт

    def get_change_summary(self) -> ChangeSummary:
        deleted_records = [record for record in self.records.values() if record.id in self.deleted_ids]
        moved_records = [
            MovedRecord(record=self.records[move.bookmark_id], from_path=move.from_path, to_path=move.to_path)
            for move in self.pending_moves
            if move.bookmark_id in self.records
        ]
        return ChangeSummary(
            deleted=len(self.deleted_ids),
            moved=len(self.pending_moves),
            new_folders=len(self.created_folders),
            deleted_records=deleted_records,
            moved_records=moved_records,
            created_folder_paths=[list(path) for path in self.created_folders],
        )

    def get_export_records(self) -> List[BookmarkRecord]:
        """Итоговые активные записи с путями после перемещений."""
        return apply_pending_moves(self.get_active_records(), self.pending_moves)

    def get_folder_tree(self) -> FolderTreeNode:
        return build_folder_tree(self.get_export_records(), self.created_folders)

    # Сохранение сессии

    def serialize(self) -> str:
        """Сериализует состояние сессии в JSON-строку. Записи хранятся в хранилище записей."""
        data = {
            "id": self.session_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "current_stage": self.current_stage,
            "selected_bookmark_ids": sorted(self.selected_ids),
            "deleted_bookmark_ids": sorted(self.deleted_ids),
            # Удаленных записей уже нет в хранилище, поэтому их снимки хранятся в сессии
            "deleted_records": [
                record.to_dict() for record in self.records.values() if record.id in self.deleted_ids
            ],
            "pending_moves": [move.to_dict() for move in self.pending_moves],
            "created_folders": [list(path) for path in self.created_folders],
            "operation_history": [operation.to_dict() for operation in self.history.get_all()],
            "ai_recommendations": [item.to_dict() for item in self.recommendations],
            "suggested_folders": [item.to_dict() for item in self.suggested_folders],
            "filters": self.filters.to_dict(),
        }
        return json.dumps(data, ensure_ascii=False)

    def _apply_serialized(self, raw: str, records: Sequence[BookmarkRecord]) -> None:
        data = json.loads(raw)
        working = {record.id: record for record in records}
        for item in data.get("deleted_records", []):
            snapshot = BookmarkRecord.from_dict(item)
            working.setdefault(snapshot.id, snapshot)

        stage = data.get("current_stage", STAGE_ORDER[0])
        if stage not in STAGE_ORDER:
            raise ValueError(f"Некорректная стадия в сессии: {stage}")

        history = OperationHistory()
        history.restore([operation_from_dict(item) for item in data.get("operation_history", [])])

        self._clear_state()
        self.session_id = data["id"]
        self.workflow_started = True
        self.current_stage = stage
        self.started_at = datetime.fromisoformat(data["started_at"]) if data.get("started_at") else None
        self.updated_at = datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else None
        self.records = working
        self.selected_ids = set(data.get("selected_bookmark_ids", []))
        self.deleted_ids = set(data.get("deleted_bookmark_ids", []))
        self.pending_moves = [BookmarkMove.from_dict(item) for item in data.get("pending_moves", [])]
        self.created_folders = [list(path) for path in data.get("created_folders", [])]
        self.history = history
        self.recommendations = [
            AICleanupRecommendation.from_dict(item) for item in data.get("ai_recommendations", [])
        ]
        self.suggested_folders = [SuggestedFolder.from_dict(item) for item in data.get("suggested_folders", [])]
        self.filters = CleanupFilters.from_dict(data.get("filters"))

    async def save_session(self) -> bool:
        """
        Сохраняет сессию в хранилище сессий.

        Возвращает:
            bool: True если сессия сохранена
        """
        if not self.session_id:
            return False

        start_time = time.time()
        self.is_saving = True
        try:
            self.updated_at = self.clock()
            await self.session_store.save(self.session_id, self.serialize())
            self.has_unsaved_changes = False
            log_performance("CleanupWorkflow.save_session", time.time() - start_time, f"session={self.session_id}")
            return True
        except SessionStoreError as e:
            log_error_with_context(e, {"operation": "save_session", "session_id": self.session_id})
            return False
        finally:
            self.is_saving = False

    async def load_session(self, session_id: Optional[str] = None) -> bool:
        """
        Загружает сессию (указанную или последнюю) и рабочие записи из хранилища.
        Любая ошибка загрузки означает отсутствие сессии.

        Аргументы:
            session_id: Идентификатор сессии (None - последняя)

        Возвращает:
            bool: True если сессия загружена
        """
        start_time = time.time()
        self.is_loading = True
        try:
            if session_id:
                raw = await self.session_store.load(session_id)
            else:
                raw = await self.session_store.load_latest()
            if raw is None:
                logger.info("Сохраненная сессия не найдена")
                return False

            records = await self.store.load_all()
            self._apply_serialized(raw, records)
            log_performance("CleanupWorkflow.load_session", time.time() - start_time, f"session={self.session_id}")
            logger.info(
                f"Сессия {self.session_id} загружена: стадия {self.current_stage}, "
                f"{len(self.records)} закладок, {self.history.size()} операций в журнале"
            )
            return True
        except (SessionStoreError, StoreError, ValueError, KeyError, TypeError) as e:
            log_error_with_context(e, {"operation": "load_session", "session_id": session_id})
            return False
        finally:
            self.is_loading = False

    async def reset(self) -> None:
        """Удаляет сохраненную сессию и сбрасывает состояние."""
        if self.session_id:
            try:
                await self.session_store.delete(self.session_id)
            except SessionStoreError as e:
                log_error_with_context(e, {"operation": "reset", "session_id": self.session_id})
        logger.info(f"Сессия очистки сброшена: {self.session_id}")
        self._clear_state()
