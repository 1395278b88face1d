"""
Модуль analysis.py
AI-анализ закладок для очистки: рекомендации delete/keep/review и предложения структуры папок.
Запросы выполняются пакетами через кэш результатов и конвейер вызовов.
"""

import time
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from .adapters import LLMRequest, parse_json_response
from .cache import ResultCache, generate_cache_key
from .exceptions import AIErrorCode, AIServiceError
from .logger import get_logger, log_error_with_context, log_function_call, log_performance
from .models import (
    RECOMMENDATION_TYPES,
    REASON_TYPES,
    AICleanupRecommendation,
    BookmarkRecord,
    SuggestedFolder,
)
from .pipeline import InvocationPipeline
from .utils import HashUtils, ProgressTracker

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]

DEFAULT_REASON = "Причина не указана"
FALLBACK_REASON = "Не удалось проанализировать, проверьте вручную"
DEFAULT_CONFIDENCE = 50

CLEANUP_SYSTEM_PROMPT = """Ты помощник по наведению порядка в закладках браузера.
Для каждой закладки реши, удалить ее, оставить или передать пользователю на проверку.
Учитывай: похож ли URL на рабочий, осмысленен ли заголовок, не устарело ли содержимое,
не является ли страница низкокачественной, и является ли ресурс ценным.
Отвечай только JSON."""

FOLDER_SYSTEM_PROMPT = """Ты помощник по организации закладок браузера.
Предложи понятную и практичную структуру папок с учетом тематики закладок и существующих папок.
Отвечай только JSON."""

CLEANUP_PROMPT_TEMPLATE = """Проанализируй закладки и дай рекомендацию для каждой:

{bookmarks}

Верни JSON вида:
{{
  "recommendations": [
    {{
      "bookmark_id": "ID закладки",
      "recommendation": "delete | keep | review",
      "reason": "подробное пояснение",
      "reason_type": "duplicate | broken | outdated | low_quality | valuable",
      "confidence": 0-100
    }}
  ]
}}"""

FOLDER_PROMPT_TEMPLATE = """Предложи структуру папок для закладок.

Существующие папки:
{folders}

Закладки:
{bookmarks}

Верни JSON вида:
{{
  "suggestions": [
    {{
      "name": "название папки",
      "path": ["родительская папка", "папка"],
      "description": "назначение папки",
      "suggested_bookmark_ids": ["ID закладок"]
    }}
  ]
}}

Глубина вложенности не больше 2-3 уровней."""


class RawRecommendation(BaseModel):
    """Рекомендация в том виде, в каком ее вернул провайдер."""

    model_config = ConfigDict(extra="ignore")

    bookmark_id: str = Field(validation_alias=AliasChoices("bookmark_id", "bookmarkId"))
    recommendation: str = ""
    reason: Optional[str] = None
    reason_type: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("reason_type", "reasonType")
    )
    confidence: Optional[float] = None


class RecommendationPayload(BaseModel):
    recommendations: List[RawRecommendation] = Field(default_factory=list)


class RawSuggestion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    path: Optional[List[str]] = None
    description: Optional[str] = None
    suggested_bookmark_ids: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("suggested_bookmark_ids", "suggestedBookmarkIds"),
    )


class SuggestionPayload(BaseModel):
    suggestions: List[RawSuggestion] = Field(default_factory=list)


def clamp_confidence(value: Optional[float]) -> int:
    if value is None:
        return DEFAULT_CONFIDENCE
    return int(round(max(0.0, min(100.0, float(value)))))


def normalize_recommendation(raw: RawRecommendation) -> AICleanupRecommendation:
    """
    Приводит рекомендацию провайдера к допустимым значениям.
    Неизвестный тип рекомендации становится 'review', неизвестная причина - 'low_quality',
    уверенность ограничивается диапазоном 0..100.
    """
    return AICleanupRecommendation(
        bookmark_id=raw.bookmark_id,
        recommendation=raw.recommendation if raw.recommendation in RECOMMENDATION_TYPES else "review",
        reason=raw.reason or DEFAULT_REASON,
        reason_type=raw.reason_type if raw.reason_type in REASON_TYPES else "low_quality",
        confidence=clamp_confidence(raw.confidence),
    )


def fallback_recommendations(batch: Sequence[BookmarkRecord]) -> List[AICleanupRecommendation]:
    return [
        AICleanupRecommendation(
            bookmark_id=record.id,
            recommendation="review",
            reason=FALLBACK_REASON,
            reason_type="low_quality",
            confidence=0,
        )
        for record in batch
    ]


def normalize_suggestion(raw: RawSuggestion, valid_ids: Iterable[str]) -> SuggestedFolder:
    allowed = set(valid_ids)
    return SuggestedFolder(
        name=raw.name,
        path=list(raw.path) if raw.path else [raw.name],
        description=raw.description or "",
        suggested_bookmark_ids=[item for item in raw.suggested_bookmark_ids if item in allowed],
    )


def merge_suggestions(suggestions: Iterable[SuggestedFolder]) -> List[SuggestedFolder]:
    """
    Объединяет предложения с одинаковым путем, сохраняя порядок первого появления.

    Аргументы:
        suggestions: Предложения из всех пакетов

    Возвращает:
        List[SuggestedFolder]: Предложения с уникальными путями
    """
    merged: Dict[tuple, SuggestedFolder] = {}
    for suggestion in suggestions:
        key = tuple(suggestion.path)
        existing = merged.get(key)
        if existing is None:
            merged[key] = SuggestedFolder(
                name=suggestion.name,
                path=list(suggestion.path),
                description=suggestion.description,
                suggested_bookmark_ids=list(suggestion.suggested_bookmark_ids),
            )
            continue
        for bookmark_id in suggestion.suggested_bookmark_ids:
            if bookmark_id not in existing.suggested_bookmark_ids:
                existing.suggested_bookmark_ids.append(bookmark_id)
        if not existing.description:
            existing.description = suggestion.description
    return list(merged.values())


def _format_record(record: BookmarkRecord) -> str:
    added = record.date_added.strftime("%Y-%m-%d") if record.date_added else "неизвестно"
    return (
        f"ID: {record.id}\nЗаголовок: {record.title}\nURL: {record.url}\n"
        f"Путь: {' > '.join(record.path) or 'корень'}\n"
        f"Добавлено: {added}"
    )


def _batches(records: Sequence[BookmarkRecord], size: int) -> Iterable[List[BookmarkRecord]]:
    for start in range(0, len(records), size):
        yield list(records[start:start + size])


class CleanupAnalyzer:
    """
    Пакетный AI-анализ закладок.

    Аргументы:
        pipeline: Конвейер вызовов AI
        cache: Кэш результатов
        batch_size: Размер пакета для рекомендаций
        folder_batch_size: Размер пакета для предложений папок
        cache_ttl: Срок жизни записей кэша (None - по умолчанию кэша)
    """

    def __init__(
        self,
        pipeline: InvocationPipeline,
        cache: ResultCache,
        batch_size: int = 20,
        folder_batch_size: int = 50,
        cache_ttl: Optional[float] = None,
    ):
        self.pipeline = pipeline
        self.cache = cache
        self.batch_size = batch_size
        self.folder_batch_size = folder_batch_size
        self.cache_ttl = cache_ttl

    async def _request_recommendations(self, batch: List[BookmarkRecord]) -> List[dict]:
        prompt = CLEANUP_PROMPT_TEMPLATE.format(
            bookmarks="\n\n---\n\n".join(_format_record(record) for record in batch)
        )
        response = await self.pipeline.call(
            LLMRequest(
                messages=[
                    {"role": "system", "content": CLEANUP_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ]
            ),
            operation="cleanup_analysis",
        )
        payload = RecommendationPayload.model_validate(parse_json_response(response.content))

        batch_ids = {record.id for record in batch}
        recommendations = []
        for raw in payload.recommendations:
            if raw.bookmark_id not in batch_ids:
                logger.debug(f"Пропущена рекомендация для закладки вне пакета: {raw.bookmark_id}")
                continue
            recommendations.append(normalize_recommendation(raw).to_dict())
        return recommendations

    async def analyze_for_cleanup(
        self,
        records: Sequence[BookmarkRecord],
        force_refresh: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[AICleanupRecommendation]:
        """
        Получает рекомендации по очистке для всех записей.

        Ошибка в пакете заменяется рекомендацией 'review' для каждой записи пакета;
        такая замена не кэшируется. Исчерпание лимита использования прерывает анализ.

        Аргументы:
            records: Анализируемые записи
            force_refresh: Игнорировать кэш
            on_progress: Вызывается как (обработано, всего) после каждого пакета

        Возвращает:
            List[AICleanupRecommendation]: Рекомендации

        Raises:
            AIServiceError: USAGE_LIMIT_REACHED
        """
        start_time = time.time()
        log_function_call("analyze_for_cleanup", (), {"records": len(records), "force_refresh": force_refresh})

        total = len(records)
        tracker = ProgressTracker(total, "AI-анализ закладок")
        results: List[AICleanupRecommendation] = []
        processed = 0

        for batch in _batches(records, self.batch_size):
            cache_key = generate_cache_key(
                "cleanup", HashUtils.generate_data_hash([record.id for record in batch])
            )
            input_hash = HashUtils.generate_data_hash([record.to_dict() for record in batch])

            try:
                value, from_cache = await self.cache.get_or_compute(
                    cache_key,
                    "cleanup",
                    input_hash,
                    lambda batch=batch: self._request_recommendations(batch),
                    ttl=self.cache_ttl,
                    force_refresh=force_refresh,
                )
                batch_results = [AICleanupRecommendation.from_dict(item) for item in value]
                if from_cache:
                    logger.debug(f"Рекомендации для пакета взяты из кэша: {cache_key}")
            except AIServiceError as e:
                if e.code == AIErrorCode.USAGE_LIMIT_REACHED:
                    raise
                log_error_with_context(e, {"operation": "analyze_for_cleanup", "batch_size": len(batch)})
                batch_results = fallback_recommendations(batch)
            except (ValidationError, ValueError, TypeError) as e:
                log_error_with_context(e, {"operation": "analyze_for_cleanup", "batch_size": len(batch)})
                batch_results = fallback_recommendations(batch)

            results.extend(batch_results)
            processed += len(batch)
            tracker.update(len(batch))
            if on_progress:
                on_progress(processed, total)

        log_performance("analyze_for_cleanup", time.time() - start_time, f"recommendations={len(results)}")
        return results

    async def _request_suggestions(
        self, batch: List[BookmarkRecord], existing_folders: Sequence[str]
    ) -> List[dict]:
        bookmarks_text = "\n".join(
            f"ID: {record.id} | {record.title} | {record.url} | "
            f"Путь: {' > '.join(record.path) or 'корень'}"
            for record in batch
        )
        prompt = FOLDER_PROMPT_TEMPLATE.format(
            folders="\n".join(existing_folders) if existing_folders else "(нет)",
            bookmarks=bookmarks_text,
        )
        response = await self.pipeline.call(
            LLMRequest(
                messages=[
                    {"role": "system", "content": FOLDER_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.5,
            ),
            operation="folder_suggestion",
        )
        payload = SuggestionPayload.model_validate(parse_json_response(response.content))
        batch_ids = [record.id for record in batch]
        return [normalize_suggestion(raw, batch_ids).to_dict() for raw in payload.suggestions]

    async def suggest_folder_structure(
        self,
        records: Sequence[BookmarkRecord],
        existing_folders: Sequence[str] = (),
        force_refresh: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[SuggestedFolder]:
        """
        Предлагает структуру папок для записей.
        Предложения разных пакетов с одинаковым путем объединяются.
        Ошибка в пакете дает пустой список предложений для этого пакета.

        Аргументы:
            records: Записи для раскладки
            existing_folders: Существующие папки в виде строк 'A/B'
            force_refresh: Игнорировать кэш
            on_progress: Вызывается как (обработано, всего) после каждого пакета

        Возвращает:
            List[SuggestedFolder]: Предложенные папки

        Raises:
            AIServiceError: USAGE_LIMIT_REACHED
        """
        start_time = time.time()
        log_function_call("suggest_folder_structure", (), {"records": len(records)})

        total = len(records)
        collected: List[SuggestedFolder] = []
        processed = 0

        for batch in _batches(records, self.folder_batch_size):
            identity = {
                "bookmark_ids": [record.id for record in batch],
                "existing_folders": list(existing_folders),
            }
            cache_key = generate_cache_key("folder_suggestion", HashUtils.generate_data_hash(identity))
            input_hash = HashUtils.generate_data_hash(
                {"records": [record.to_dict() for record in batch], "existing_folders": list(existing_folders)}
            )

            try:
                value, _ = await self.cache.get_or_compute(
                    cache_key,
                    "folder_suggestion",
                    input_hash,
                    lambda batch=batch: self._request_suggestions(batch, existing_folders),
                    ttl=self.cache_ttl,
                    force_refresh=force_refresh,
                )
                collected.extend(SuggestedFolder.from_dict(item) for item in value)
            except AIServiceError as e:
                if e.code == AIErrorCode.USAGE_LIMIT_REACHED:
                    raise
                log_error_with_context(e, {"operation": "suggest_folder_structure", "batch_size": len(batch)})
            except (ValidationError, ValueError, TypeError, KeyError) as e:
                log_error_with_context(e, {"operation": "suggest_folder_structure", "batch_size": len(batch)})

            processed += len(batch)
            if on_progress:
                on_progress(processed, total)

        suggestions = merge_suggestions(collected)
        log_performance("suggest_folder_structure", time.time() - start_time, f"suggestions={len(suggestions)}")
        return suggestions


def group_recommendations_by_type(
    recommendations: Iterable[AICleanupRecommendation],
) -> Dict[str, List[AICleanupRecommendation]]:
    groups: Dict[str, List[AICleanupRecommendation]] = {kind: [] for kind in RECOMMENDATION_TYPES}
    for recommendation in recommendations:
        groups[recommendation.recommendation].append(recommendation)
    return groups


def get_recommendation_stats(recommendations: Sequence[AICleanupRecommendation]) -> Dict[str, int]:
    """
    Считает рекомендации по типам и среднюю уверенность (с округлением).

    Возвращает:
        Dict[str, int]: Ключи total, delete, keep, review, avg_confidence
    """
    stats = {"total": len(recommendations), "delete": 0, "keep": 0, "review": 0, "avg_confidence": 0}
    if not recommendations:
        return stats
    for recommendation in recommendations:
        stats[recommendation.recommendation] += 1
    stats["avg_confidence"] = round(
        sum(recommendation.confidence for recommendation in recommendations) / len(recommendations)
    )
    return stats
