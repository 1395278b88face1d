"""
Модуль models.py
Содержит модели данных движка очистки закладок.
Используется dataclass для удобного представления структур и их сериализации в JSON.
"""
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Union

from typing_extensions import Literal

CleanupStage = Literal["review", "organize", "preview"]
RecommendationType = Literal["delete", "keep", "review"]
ReasonType = Literal["duplicate", "broken", "outdated", "low_quality", "valuable"]
OperationKind = Literal["delete", "move", "create_folder"]

STAGE_ORDER: List[str] = ["review", "organize", "preview"]
RECOMMENDATION_TYPES: List[str] = ["delete", "keep", "review"]
REASON_TYPES: List[str] = ["duplicate", "broken", "outdated", "low_quality", "valuable"]


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value)
    return datetime.fromisoformat(str(value))


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class BookmarkRecord:
    """
    Класс для представления одной закладки в хранилище записей.

    Атрибуты:
        id: Стабильный идентификатор записи
        title: Заголовок закладки
        url: URL-адрес страницы
        path: Путь папок (корень - пустой список)
        date_added: Дата добавления закладки
        source: Метка источника (браузер или файл экспорта)
    """
    id: str
    title: str
    url: str
    path: List[str] = field(default_factory=list)
    date_added: Optional[datetime] = None
    source: str = ""

    def copy(self) -> "BookmarkRecord":
        return BookmarkRecord(
            id=self.id,
            title=self.title,
            url=self.url,
            path=list(self.path),
            date_added=self.date_added,
            source=self.source,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "path": list(self.path),
            "date_added": _format_datetime(self.date_added),
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BookmarkRecord":
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            url=data.get("url", ""),
            path=list(data.get("path") or []),
            date_added=_parse_datetime(data.get("date_added")),
            source=data.get("source", ""),
        )


@dataclass
class AICleanupRecommendation:
    """
    Рекомендация AI по очистке одной закладки.

    Атрибуты:
        bookmark_id: Идентификатор закладки
        recommendation: Рекомендация ('delete', 'keep', 'review')
        reason: Пояснение в свободной форме
        reason_type: Категория причины
        confidence: Уверенность 0-100
        accepted: Пользователь принял рекомендацию
        rejected: Пользователь отклонил рекомендацию
    """
    bookmark_id: str
    recommendation: RecommendationType
    reason: str
    reason_type: ReasonType
    confidence: int
    accepted: Optional[bool] = None
    rejected: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AICleanupRecommendation":
        return cls(**data)


@dataclass
class SuggestedFolder:
    """
    Предложенная AI папка.

    Атрибуты:
        name: Название папки
        path: Полный путь папки
        description: Пояснение, зачем нужна папка
        suggested_bookmark_ids: Закладки, которые предлагается переместить
    """
    name: str
    path: List[str]
    description: str
    suggested_bookmark_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SuggestedFolder":
        return cls(
            name=data["name"],
            path=list(data["path"]),
            description=data.get("description", ""),
            suggested_bookmark_ids=list(data.get("suggested_bookmark_ids") or []),
        )


@dataclass
class BookmarkMove:
    """Перемещение одной закладки: откуда и куда."""
    bookmark_id: str
    from_path: List[str]
    to_path: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BookmarkMove":
        return cls(
            bookmark_id=data["bookmark_id"],
            from_path=list(data["from_path"]),
            to_path=list(data["to_path"]),
        )


@dataclass
class DeleteOperation:
    """
    Запись журнала об удалении.
    Хранит полные снимки удаленных записей, чтобы восстановить их без обращения к хранилищу.
    """
    kind: ClassVar[str] = "delete"

    records: List[BookmarkRecord]
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "records": [record.to_dict() for record in self.records],
        }


@dataclass
class MoveOperation:
    """Запись журнала о перемещении: для каждой закладки исходный и новый путь."""
    kind: ClassVar[str] = "move"

    moves: List[BookmarkMove]
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "moves": [move.to_dict() for move in self.moves],
        }


@dataclass
class CreateFolderOperation:
    """Запись журнала о создании папки."""
    kind: ClassVar[str] = "create_folder"

    path: List[str]
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "path": list(self.path),
        }


Operation = Union[DeleteOperation, MoveOperation, CreateFolderOperation]


def operation_from_dict(data: Dict[str, Any]) -> Operation:
    """
    Восстанавливает запись журнала операций из словаря.

    Аргументы:
        data: Словарь с полем 'kind'

    Возвращает:
        Operation: Операция соответствующего типа

    Raises:
        ValueError: Если тип операции неизвестен
    """
    kind = data.get("kind")
    common = {
        "id": data["id"],
        "timestamp": _parse_datetime(data["timestamp"]) or datetime.now(),
    }
    if kind == "delete":
        return DeleteOperation(
            records=[BookmarkRecord.from_dict(item) for item in data["records"]], **common
        )
    if kind == "move":
        return MoveOperation(
            moves=[BookmarkMove.from_dict(item) for item in data["moves"]], **common
        )
    if kind == "create_folder":
        return CreateFolderOperation(path=list(data["path"]), **common)
    raise ValueError(f"Неизвестный тип операции: {kind}")


@dataclass
class DateRange:
    """Включающий диапазон дат добавления."""
    start: datetime
    end: datetime


@dataclass
class CleanupFilters:
    """
    Набор фильтров представления. Незаданный фильтр не ограничивает выборку.

    Атрибуты:
        domain: Подстрока домена (без учета регистра)
        folder: Префикс пути папок
        date_range: Диапазон дат добавления
        recommendation_status: Тип рекомендации AI или 'all'
        search_query: Текст для поиска по заголовку, URL и пути
    """
    domain: Optional[str] = None
    folder: Optional[List[str]] = None
    date_range: Optional[DateRange] = None
    recommendation_status: Optional[str] = None
    search_query: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(
            [
                self.domain,
                self.folder,
                self.date_range,
                self.recommendation_status not in (None, "all"),
                self.search_query,
            ]
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "folder": list(self.folder) if self.folder is not None else None,
            "date_range": {
                "start": self.date_range.start.isoformat(),
                "end": self.date_range.end.isoformat(),
            }
            if self.date_range
            else None,
            "recommendation_status": self.recommendation_status,
            "search_query": self.search_query,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CleanupFilters":
        if not data:
            return cls()
        date_range = data.get("date_range")
        return cls(
            domain=data.get("domain"),
            folder=list(data["folder"]) if data.get("folder") is not None else None,
            date_range=DateRange(
                start=_parse_datetime(date_range["start"]),
                end=_parse_datetime(date_range["end"]),
            )
            if date_range
            else None,
            recommendation_status=data.get("recommendation_status"),
            search_query=data.get("search_query"),
        )


@dataclass
class MovedRecord:
    record: BookmarkRecord
    from_path: List[str]
    to_path: List[str]


@dataclass
class ChangeSummary:
    """
    Сводка изменений для предпросмотра экспорта.

    Атрибуты:
        deleted: Количество удаленных закладок
        moved: Количество перемещений
        new_folders: Количество созданных папок
        deleted_records: Удаленные закладки
        moved_records: Перемещенные закладки с путями
        created_folder_paths: Пути созданных папок
    """
    deleted: int
    moved: int
    new_folders: int
    deleted_records: List[BookmarkRecord]
    moved_records: List[MovedRecord]
    created_folder_paths: List[List[str]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deleted": self.deleted,
            "moved": self.moved,
            "new_folders": self.new_folders,
            "deleted_records": [record.to_dict() for record in self.deleted_records],
            "moved_records": [
                {
                    "record": item.record.to_dict(),
                    "from_path": list(item.from_path),
                    "to_path": list(item.to_path),
                }
                for item in self.moved_records
            ],
            "created_folder_paths": [list(path) for path in self.created_folder_paths],
        }


@dataclass
class FolderTreeNode:
    """
    Узел дерева папок для предпросмотра экспорта.

    Атрибуты:
        name: Название папки
        path: Полный путь папки
        records: Закладки непосредственно в этой папке
        children: Вложенные папки
        is_new: Папка создана в текущей сессии
    """
    name: str
    path: List[str]
    records: List[BookmarkRecord] = field(default_factory=list)
    children: List["FolderTreeNode"] = field(default_factory=list)
    is_new: bool = False

    @property
    def bookmark_count(self) -> int:
        return len(self.records)

    @property
    def total_count(self) -> int:
        return self.bookmark_count + sum(child.total_count for child in self.children)

    def find(self, path: List[str]) -> Optional["FolderTreeNode"]:
        """Ищет узел по точному пути относительно этого узла."""
        node = self
        for segment in path:
            node = next((child for child in node.children if child.name == segment), None)
            if node is None:
                return None
        return node


@dataclass
class OperationResult:
    """
    Результат действия над сессией очистки.

    Атрибуты:
        success: Действие выполнено
        error: Сообщение об ошибке при неудаче
        affected_ids: Затронутые закладки
        operation: Запись журнала, созданная или отмененная действием
    """
    success: bool
    error: Optional[str] = None
    affected_ids: List[str] = field(default_factory=list)
    operation: Optional[Operation] = None

    @classmethod
    def failed(cls, error: str) -> "OperationResult":
        return cls(success=False, error=error)


@dataclass
class UsageRecord:
    """
    Учет одного вызова AI.

    Атрибуты:
        timestamp: Время вызова
        operation: Название операции (cleanup_analysis, folder_suggestion)
        prompt_tokens: Токены запроса
        completion_tokens: Токены ответа
        total_tokens: Всего токенов
        estimated_cost: Оценка стоимости в долларах
        model: Модель, вернувшая ответ
    """
    timestamp: datetime
    operation: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    estimated_cost: float
    model: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageRecord":
        values = dict(data)
        values["timestamp"] = _parse_datetime(values["timestamp"])
        return cls(**values)


@dataclass
class UsageLimits:
    """Необязательные дневные и месячные лимиты токенов и стоимости."""
    daily_token_limit: Optional[int] = None
    monthly_token_limit: Optional[int] = None
    daily_cost_limit: Optional[float] = None
    monthly_cost_limit: Optional[float] = None
