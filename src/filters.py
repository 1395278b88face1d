"""
Модуль filters.py
Фильтрация записей закладок для представлений очистки.
Фильтры объединяются по И: запись проходит, только если удовлетворяет каждому заданному фильтру.
"""

from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .logger import get_logger
from .models import AICleanupRecommendation, BookmarkRecord, CleanupFilters
from .utils import PathUtils, TextUtils

logger = get_logger(__name__)


def filter_by_domain(records: Sequence[BookmarkRecord], domain: str) -> List[BookmarkRecord]:
    """Оставляет записи, хост которых содержит подстроку domain (без учета регистра)."""
    if not domain:
        return list(records)
    needle = domain.lower()
    result = []
    for record in records:
        host = TextUtils.extract_domain(record.url)
        if host and needle in host.lower():
            result.append(record)
    return result


def filter_by_folder(records: Sequence[BookmarkRecord], folder: Sequence[str]) -> List[BookmarkRecord]:
    """Оставляет записи, путь которых начинается с folder (посегментно, без учета регистра)."""
    if not folder:
        return list(records)
    return [record for record in records if PathUtils.starts_with(record.path, folder)]


def filter_by_date_range(
    records: Sequence[BookmarkRecord], start: datetime, end: datetime
) -> List[BookmarkRecord]:
    """Оставляет записи с датой добавления в [start, end]. Записи без даты отбрасываются."""
    return [
        record
        for record in records
        if record.date_added is not None and start <= record.date_added <= end
    ]


def filter_by_recommendation(
    records: Sequence[BookmarkRecord],
    recommendations: Mapping[str, AICleanupRecommendation],
    status: str,
) -> List[BookmarkRecord]:
    if status == "all":
        return list(records)
    result = []
    for record in records:
        recommendation = recommendations.get(record.id)
        if recommendation is not None and recommendation.recommendation == status:
            result.append(record)
    return result


def filter_by_search_query(records: Sequence[BookmarkRecord], query: str) -> List[BookmarkRecord]:
    """
    Оставляет записи, у которых заголовок, URL или один из сегментов пути содержит query.

    Аргументы:
        records: Исходные записи
        query: Поисковая строка (пробелы по краям игнорируются)

    Возвращает:
        List[BookmarkRecord]: Подходящие записи
    """
    if not query or not query.strip():
        return list(records)
    needle = query.strip().lower()
    return [
        record
        for record in records
        if needle in (record.title or "").lower()
        or needle in (record.url or "").lower()
        or any(needle in segment.lower() for segment in record.path)
    ]


def combine_filters(
    records: Sequence[BookmarkRecord],
    filters: CleanupFilters,
    recommendations: Optional[Mapping[str, AICleanupRecommendation]] = None,
) -> List[BookmarkRecord]:
    """
    Применяет все заданные фильтры по И.

    Аргументы:
        records: Исходные записи
        filters: Набор фильтров
        recommendations: Рекомендации по идентификатору записи

    Возвращает:
        List[BookmarkRecord]: Записи, прошедшие все фильтры
    """
    result = list(records)

    if filters.domain:
        result = filter_by_domain(result, filters.domain)
    if filters.folder:
        result = filter_by_folder(result, filters.folder)
    if filters.date_range:
        result = filter_by_date_range(result, filters.date_range.start, filters.date_range.end)
    if filters.search_query:
        result = filter_by_search_query(result, filters.search_query)
    if filters.recommendation_status and filters.recommendation_status != "all":
        result = filter_by_recommendation(result, recommendations or {}, filters.recommendation_status)

    logger.debug(f"Фильтры применены: {len(records)} -> {len(result)} записей")
    return result


def get_unique_domains(records: Sequence[BookmarkRecord]) -> List[str]:
    domains = {TextUtils.extract_domain(record.url) for record in records}
    return sorted(domain for domain in domains if domain)


def get_unique_folders(records: Sequence[BookmarkRecord]) -> List[str]:
    """Возвращает отсортированные папки верхнего уровня."""
    return sorted({record.path[0] for record in records if record.path})


def get_date_range(records: Sequence[BookmarkRecord]) -> Optional[Tuple[datetime, datetime]]:
    dates = [record.date_added for record in records if record.date_added is not None]
    if not dates:
        return None
    return min(dates), max(dates)


def recommendations_by_id(
    recommendations: Sequence[AICleanupRecommendation],
) -> Dict[str, AICleanupRecommendation]:
    return {recommendation.bookmark_id: recommendation for recommendation in recommendations}
