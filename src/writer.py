"""
Модуль writer.py
Запись результатов очистки: итоговые записи в JSON для внешнего сериализатора
и сводка изменений в YAML. Также текстовое представление дерева папок для консоли.
"""

import json
import time
from datetime import datetime
from pathlib import Path
from typing import List, Sequence, Union

import yaml

from src.logger import (
    get_logger,
    log_error_with_context,
    log_function_call,
    log_performance,
)
from src.models import BookmarkRecord, ChangeSummary, FolderTreeNode
from src.utils import PathUtils, TextUtils

logger = get_logger(__name__)

EXPORT_FORMAT_VERSION = "1.0"


class ExportWriter:
    """
    Класс для записи результатов сессии очистки в файлы.

    Итоговые записи сохраняются в JSON (формат импорта record store),
    сводка изменений - в YAML для чтения человеком.
    """

    def write_records(self, records: Sequence[BookmarkRecord], file_path: Union[str, Path]) -> Path:
        """
        Записывает итоговые активные записи в JSON-файл.

        Аргументы:
            records: Записи с итоговыми путями
            file_path: Путь к выходному файлу

        Возвращает:
            Path: Путь к записанному файлу
        """
        start_time = time.time()
        file_path = Path(file_path)
        log_function_call("write_records", (str(file_path),), {"count": len(records)})

        document = {
            "version": EXPORT_FORMAT_VERSION,
            "exported_at": datetime.now().isoformat(),
            "count": len(records),
            "records": [record.to_dict() for record in records],
        }

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
        except OSError as e:
            log_error_with_context(e, {"file_path": str(file_path), "operation": "write_records"})
            raise

        log_performance("write_records", time.time() - start_time, f"file={file_path}, records={len(records)}")
        logger.info(f"Итоговые закладки сохранены: {file_path} ({len(records)} записей)")
        return file_path

    def write_change_summary(self, summary: ChangeSummary, file_path: Union[str, Path]) -> Path:
        """
        Записывает сводку изменений в YAML-файл.

        Аргументы:
            summary: Сводка изменений сессии
            file_path: Путь к выходному файлу

        Возвращает:
            Path: Путь к записанному файлу
        """
        file_path = Path(file_path)
        log_function_call("write_change_summary", (str(file_path),))

        document = {
            "generated_at": datetime.now().isoformat(),
            "totals": {
                "deleted": summary.deleted,
                "moved": summary.moved,
                "new_folders": summary.new_folders,
            },
            "deleted": [
                {"title": record.title, "url": record.url, "path": PathUtils.format_path(record.path)}
                for record in summary.deleted_records
            ],
            "moved": [
                {
                    "title": item.record.title,
                    "url": item.record.url,
                    "from": PathUtils.format_path(item.from_path),
                    "to": PathUtils.format_path(item.to_path),
                }
                for item in summary.moved_records
            ],
            "new_folders": [PathUtils.format_path(path) for path in summary.created_folder_paths],
        }

        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(document, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
        except OSError as e:
            log_error_with_context(e, {"file_path": str(file_path), "operation": "write_change_summary"})
            raise

        logger.info(f"Сводка изменений сохранена: {file_path}")
        return file_path


def render_folder_tree(root: FolderTreeNode, show_records: bool = False, max_title: int = 60) -> str:
    """
    Формирует текстовое дерево папок с количеством закладок.

    Аргументы:
        root: Корневой узел
        show_records: Выводить заголовки закладок
        max_title: Максимальная длина заголовка

    Возвращает:
        str: Многострочное представление
    """
    lines: List[str] = [f"{root.name} [{root.bookmark_count}/{root.total_count}]"]
    _render_node(root, lines, "", show_records, max_title)
    return "\n".join(lines)


def _render_node(
    node: FolderTreeNode, lines: List[str], indent: str, show_records: bool, max_title: int
) -> None:
    if show_records:
        for record in node.records:
            lines.append(f"{indent}  - {TextUtils.truncate_text(record.title or record.url, max_title)}")
    for child in node.children:
        marker = " (новая)" if child.is_new else ""
        lines.append(f"{indent}  {child.name}{marker} [{child.bookmark_count}/{child.total_count}]")
        _render_node(child, lines, indent + "  ", show_records, max_title)


def render_change_summary(summary: ChangeSummary) -> str:
    lines = [
        f"Удалено: {summary.deleted}",
        f"Перемещено: {summary.moved}",
        f"Новых папок: {summary.new_folders}",
    ]
    for item in summary.moved_records:
        lines.append(
            f"  {TextUtils.truncate_text(item.record.title or item.record.url, 60)}: "
            f"{PathUtils.format_path(item.from_path)} -> {PathUtils.format_path(item.to_path)}"
        )
    for path in summary.created_folder_paths:
        lines.append(f"  + {PathUtils.format_path(path)}")
    return "\n".join(lines)
