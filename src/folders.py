"""
Модуль folders.py
Проверки папок, проекция перемещений и дерево папок для предпросмотра экспорта.
Папки не хранятся отдельно: они существуют как пути записей и как созданные в сессии пути.
"""

from typing import Iterable, List, Optional, Sequence

from .logger import get_logger
from .models import BookmarkMove, BookmarkRecord, FolderTreeNode
from .utils import PathUtils

logger = get_logger(__name__)

ROOT_NAME = "(корень)"


def folder_exists(records: Iterable[BookmarkRecord], folder_path: Sequence[str]) -> bool:
    """Проверяет, лежит ли хотя бы одна запись в папке folder_path или глубже."""
    if not folder_path:
        return False
    return any(PathUtils.starts_with(record.path, folder_path) for record in records)


def has_blank_segment(folder_path: Sequence[str]) -> bool:
    """Проверяет, есть ли в пути пустое или состоящее из пробелов имя папки."""
    return any(not segment or not segment.strip() for segment in folder_path)


def folder_name_exists_at_level(
    records: Iterable[BookmarkRecord], parent_path: Sequence[str], folder_name: str
) -> bool:
    """
    Проверяет, есть ли в parent_path папка с именем folder_name (без учета регистра).

    Аргументы:
        records: Текущие записи
        parent_path: Путь родительской папки
        folder_name: Имя проверяемой папки

    Возвращает:
        bool: True если папка с таким именем уже есть на этом уровне
    """
    level = len(parent_path)
    target = folder_name.lower()
    for record in records:
        if len(record.path) > level and PathUtils.starts_with(record.path, parent_path):
            if record.path[level].lower() == target:
                return True
    return False


def validate_new_folder(
    records: Iterable[BookmarkRecord],
    created_folders: Sequence[Sequence[str]],
    folder_path: Sequence[str],
) -> Optional[str]:
    """
    Проверяет, можно ли создать папку.

    Аргументы:
        records: Текущие записи
        created_folders: Папки, уже созданные в сессии
        folder_path: Путь новой папки

    Возвращает:
        Optional[str]: Текст ошибки или None, если создание допустимо
    """
    if not folder_path:
        return "Путь папки не может быть пустым"
    if has_blank_segment(folder_path):
        return "Имя папки не может быть пустым"

    parent_path, folder_name = list(folder_path[:-1]), folder_path[-1]
    if folder_name_exists_at_level(records, parent_path, folder_name):
        return f'Папка "{folder_name}" уже существует на этом уровне'

    if any(PathUtils.paths_equal(path, folder_path) for path in created_folders):
        return f'Папка "{PathUtils.format_path(folder_path)}" уже создана в этой сессии'

    return None


def apply_pending_moves(
    records: Sequence[BookmarkRecord], moves: Sequence[BookmarkMove]
) -> List[BookmarkRecord]:
    """
    Возвращает копии записей с путями после отложенных перемещений.
    Для записи с несколькими перемещениями действует последнее.
    """
    targets = {move.bookmark_id: move.to_path for move in moves}
    result = []
    for record in records:
        copy = record.copy()
        if record.id in targets:
            copy.path = list(targets[record.id])
        result.append(copy)
    return result


def _sort_children(node: FolderTreeNode) -> None:
    node.children.sort(key=lambda child: child.name.lower())
    for child in node.children:
        _sort_children(child)


def _ensure_path(root: FolderTreeNode, path: Sequence[str]) -> FolderTreeNode:
    node = root
    for index, segment in enumerate(path):
        child = next((item for item in node.children if item.name == segment), None)
        if child is None:
            child = FolderTreeNode(name=segment, path=list(path[: index + 1]))
            node.children.append(child)
        node = child
    return node


def build_folder_tree(
    records: Iterable[BookmarkRecord],
    created_folders: Sequence[Sequence[str]] = (),
) -> FolderTreeNode:
    """
    Строит дерево папок из путей записей.

    Созданные в сессии папки попадают в дерево даже пустыми и помечаются is_new.
    Дочерние папки сортируются по имени.

    Аргументы:
        records: Записи с итоговыми путями
        created_folders: Папки, созданные в сессии

    Возвращает:
        FolderTreeNode: Корневой узел
    """
    root = FolderTreeNode(name=ROOT_NAME, path=[])

    for record in records:
        _ensure_path(root, record.path).records.append(record)

    for folder_path in created_folders:
        _ensure_path(root, folder_path).is_new = True

    _sort_children(root)
    logger.debug(f"Дерево папок построено: {root.total_count} закладок, {len(root.children)} папок верхнего уровня")
    return root


def collect_folder_paths(records: Iterable[BookmarkRecord]) -> List[str]:
    """Возвращает все различные пути папок (включая промежуточные) в виде строк 'A/B'."""
    paths = set()
    for record in records:
        for depth in range(1, len(record.path) + 1):
            paths.add(PathUtils.format_path(record.path[:depth]))
    return sorted(paths)
