"""
Главный модуль утилиты очистки закладок.
Командная строка над сохраняемой сессией: каждая команда загружает последнюю сессию,
выполняет одно действие и сохраняет сессию обратно.
"""

import argparse
import asyncio
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from src.adapters import create_adapter
from src.analysis import CleanupAnalyzer, get_recommendation_stats
from src.cache import JsonFileCacheBackend, ResultCache
from src.config import Config, ConfigManager
from src.logger import (
    get_logger,
    log_error_with_context,
    log_function_call,
    log_performance,
    setup_logging,
)
from src.models import RECOMMENDATION_TYPES, STAGE_ORDER, DateRange
from src.pipeline import InvocationPipeline
from src.record_store import JsonFileRecordStore, load_records_file
from src.session_store import JsonFileSessionStore
from src.usage import UsageTracker
from src.utils import PathUtils, TextUtils
from src.workflow import CleanupWorkflow
from src.writer import ExportWriter, render_change_summary, render_folder_tree

logger = get_logger(__name__)

RECORDS_FILE = "records.json"
SESSIONS_FILE = "sessions.json"
CACHE_FILE = "ai_cache.json"
USAGE_FILE = "ai_usage.json"

# Команды, которые работают без загруженной сессии
SESSIONLESS_COMMANDS = {"import", "cache-stats", "cache-clear", "usage"}
# Команды, которые не меняют сессию
READ_ONLY_COMMANDS = {"status", "list", "summary"}


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Парсит аргументы командной строки.

    Аргументы:
        argv: Аргументы (по умолчанию sys.argv[1:])

    Возвращает:
        argparse.Namespace: Объект с аргументами командной строки
    """
    log_function_call("parse_arguments", (), {"argv": argv if argv is not None else sys.argv[1:]})

    parser = argparse.ArgumentParser(
        description="Очистка и реорганизация закладок с помощью AI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Примеры использования:
  python -m src.main import bookmarks.json
  python -m src.main analyze
  python -m src.main select-recommended delete && python -m src.main delete
  python -m src.main move Dev/Python id1 id2
  python -m src.main export result.json --summary changes.yaml
        """,
    )
    parser.add_argument("--config", dest="config_path", help="Путь к .env файлу (по умолчанию: .env)")
    parser.add_argument("--data-dir", dest="data_dir", help="Директория данных (переопределяет DATA_DIR)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Подробное логирование (DEBUG уровень)")

    commands = parser.add_subparsers(dest="command", required=True)

    cmd = commands.add_parser("import", help="Загрузить записи и начать новую сессию")
    cmd.add_argument("records_file", help="JSON-файл записей")

    commands.add_parser("status", help="Состояние текущей сессии")

    cmd = commands.add_parser("list", help="Активные записи с фильтрами")
    cmd.add_argument("--domain", help="Подстрока домена")
    cmd.add_argument("--folder", help="Префикс пути папки, например Dev/Python")
    cmd.add_argument("--search", help="Текст для поиска по заголовку, URL и пути")
    cmd.add_argument("--recommendation", choices=RECOMMENDATION_TYPES + ["all"], help="Рекомендация AI")
    cmd.add_argument("--since", type=datetime.fromisoformat, help="Добавлены не раньше (ISO дата)")
    cmd.add_argument("--until", type=datetime.fromisoformat, help="Добавлены не позже (ISO дата)")

    cmd = commands.add_parser("analyze", help="Получить рекомендации AI по очистке")
    cmd.add_argument("--force", action="store_true", help="Игнорировать кэш")

    cmd = commands.add_parser("suggest", help="Получить предложения AI по папкам")
    cmd.add_argument("--force", action="store_true", help="Игнорировать кэш")

    cmd = commands.add_parser("select-recommended", help="Выделить записи по рекомендации")
    cmd.add_argument("type", choices=RECOMMENDATION_TYPES)

    cmd = commands.add_parser("select", help="Выделить записи по идентификаторам")
    cmd.add_argument("ids", nargs="+")

    cmd = commands.add_parser("accept", help="Принять рекомендацию для записи")
    cmd.add_argument("id")
    cmd = commands.add_parser("reject", help="Отклонить рекомендацию для записи")
    cmd.add_argument("id")
    cmd = commands.add_parser("accept-all", help="Принять все рекомендации типа")
    cmd.add_argument("type", choices=RECOMMENDATION_TYPES)

    commands.add_parser("delete", help="Удалить выделенные записи")

    cmd = commands.add_parser("restore", help="Восстановить удаленные записи")
    cmd.add_argument("ids", nargs="+")

    cmd = commands.add_parser("move", help="Переместить записи в папку")
    cmd.add_argument("path", help="Путь папки через '/'")
    cmd.add_argument("ids", nargs="+")

    cmd = commands.add_parser("mkdir", help="Создать папку")
    cmd.add_argument("path", help="Путь папки через '/'")

    cmd = commands.add_parser("accept-folder", help="Принять предложение папки по номеру")
    cmd.add_argument("index", type=int)

    commands.add_parser("undo", help="Отменить последнюю операцию")

    cmd = commands.add_parser("stage", help="Сменить стадию")
    cmd.add_argument("target", choices=["next", "prev"] + STAGE_ORDER)

    commands.add_parser("summary", help="Сводка изменений и дерево папок")

    cmd = commands.add_parser("export", help="Записать итог и завершить сессию")
    cmd.add_argument("output", help="JSON-файл для итоговых записей")
    cmd.add_argument("--summary", dest="summary_file", help="YAML-файл для сводки изменений")

    commands.add_parser("reset", help="Сбросить сессию")
    commands.add_parser("cache-stats", help="Статистика кэша AI")
    cmd = commands.add_parser("cache-clear", help="Очистить кэш AI")
    cmd.add_argument("--type", dest="cache_type", help="Очистить только записи этого типа")
    cmd.add_argument("--expired", action="store_true", help="Удалить только истекшие записи")
    commands.add_parser("usage", help="Статистика использования AI и лимиты")

    args = parser.parse_args(argv)
    logger.debug(f"Аргументы командной строки разобраны: {vars(args)}")
    return args


def setup_application_logging(args: argparse.Namespace, config: Config) -> None:
    setup_logging(config, level_override="DEBUG" if args.verbose else None)
    logger.debug(f"Файл лога: {config.log_file}")


@dataclass
class Application:
    """Собранные компоненты приложения."""
    config: Config
    store: JsonFileRecordStore
    cache: ResultCache
    usage: UsageTracker
    workflow: CleanupWorkflow


def build_application(config: Config) -> Application:
    """
    Собирает хранилища, кэш, учет использования и сессию очистки.
    AI-анализатор создается, только если задан API-ключ.

    Аргументы:
        config: Конфигурация приложения

    Возвращает:
        Application: Компоненты приложения
    """
    store = JsonFileRecordStore(config.data_path(RECORDS_FILE))
    session_store = JsonFileSessionStore(config.data_path(SESSIONS_FILE))
    cache = ResultCache(JsonFileCacheBackend(config.data_path(CACHE_FILE)), default_ttl=config.cache_ttl_seconds)
    usage = UsageTracker(config.data_path(USAGE_FILE), limits=config.usage_limits())

    analyzer = None
    if config.ai_enabled:
        pipeline = InvocationPipeline.from_config(config, create_adapter(config), usage)
        analyzer = CleanupAnalyzer(
            pipeline,
            cache,
            batch_size=config.ai_batch_size,
            folder_batch_size=config.ai_folder_batch_size,
            cache_ttl=config.cache_ttl_seconds,
        )

    workflow = CleanupWorkflow(store, session_store, analyzer)
    return Application(config=config, store=store, cache=cache, usage=usage, workflow=workflow)


def print_progress(processed: int, total: int) -> None:
    print(f"  обработано {processed}/{total}")


def _report(result: Any, success_message: str) -> int:
    if result.success:
        print(success_message)
        return 0
    print(f"Ошибка: {result.error}")
    return 1


async def _cmd_import(app: Application, args: argparse.Namespace) -> int:
    records = load_records_file(args.records_file)
    if await app.workflow.load_session():
        await app.workflow.reset()
    await app.store.replace_all(records)
    result = app.workflow.start(records)
    if not result.success:
        print(f"Ошибка: {result.error}")
        return 1
    if not await app.workflow.save_session():
        print("Ошибка: не удалось сохранить сессию")
        return 1
    print(f"Импортировано закладок: {len(records)}; сессия {app.workflow.session_id}")
    return 0


def _cmd_status(app: Application, args: argparse.Namespace) -> int:
    workflow = app.workflow
    stats = get_recommendation_stats(workflow.recommendations)
    print(f"Сессия: {workflow.session_id}")
    print(f"Стадия: {workflow.current_stage} ({' -> '.join(STAGE_ORDER)})")
    print(f"Закладок: {len(workflow.records)}, активных: {len(workflow.get_active_records())}")
    print(f"Выделено: {workflow.selected_count}, удалено: {len(workflow.deleted_ids)}")
    print(f"Перемещений: {len(workflow.pending_moves)}, новых папок: {len(workflow.created_folders)}")
    print(
        f"Рекомендации: всего {stats['total']}, delete {stats['delete']}, keep {stats['keep']}, "
        f"review {stats['review']}, средняя уверенность {stats['avg_confidence']}"
    )
    for index, suggestion in enumerate(workflow.suggested_folders):
        print(
            f"  [{index}] {PathUtils.format_path(suggestion.path)}: "
            f"{len(suggestion.suggested_bookmark_ids)} закладок. {suggestion.description}"
        )
    print(f"Отмена доступна: {'да' if workflow.can_undo else 'нет'} ({workflow.history.size()} операций)")
    return 0


def _cmd_list(app: Application, args: argparse.Namespace) -> int:
    workflow = app.workflow
    date_range = None
    if args.since or args.until:
        date_range = DateRange(start=args.since or datetime.min, end=args.until or datetime.max)
    workflow.set_filters(
        domain=args.domain,
        folder=PathUtils.parse_path(args.folder) if args.folder else None,
        search_query=args.search,
        recommendation_status=args.recommendation,
        date_range=date_range,
    )
    recommendations = {item.bookmark_id: item for item in workflow.recommendations}
    records = workflow.get_filtered_records()
    for record in records:
        recommendation = recommendations.get(record.id)
        mark = "*" if record.id in workflow.selected_ids else " "
        tag = f" [{recommendation.recommendation} {recommendation.confidence}]" if recommendation else ""
        print(
            f"{mark} {record.id}  {PathUtils.format_path(record.path)}  "
            f"{TextUtils.truncate_text(record.title or record.url, 60)}{tag}"
        )
    print(f"Найдено: {len(records)}")
    return 0


async def _cmd_analyze(app: Application, args: argparse.Namespace) -> int:
    result = await app.workflow.analyze(force_refresh=args.force, on_progress=print_progress)
    return _report(result, f"Получено рекомендаций: {len(app.workflow.recommendations)}")


async def _cmd_suggest(app: Application, args: argparse.Namespace) -> int:
    result = await app.workflow.suggest_folders(force_refresh=args.force, on_progress=print_progress)
    if not result.success:
        print(f"Ошибка: {result.error}")
        return 1
    for index, suggestion in enumerate(app.workflow.suggested_folders):
        print(f"[{index}] {PathUtils.format_path(suggestion.path)}: {len(suggestion.suggested_bookmark_ids)} закладок")
    return 0


async def _cmd_accept_folder(app: Application, args: argparse.Namespace) -> int:
    suggestions = app.workflow.suggested_folders
    if not 0 <= args.index < len(suggestions):
        print(f"Ошибка: нет предложения с номером {args.index}")
        return 1
    suggestion = suggestions[args.index]
    result = await app.workflow.accept_folder_suggestion(suggestion)
    return _report(result, f"Предложение принято: {PathUtils.format_path(suggestion.path)}")


def _cmd_stage(app: Application, args: argparse.Namespace) -> int:
    workflow = app.workflow
    if args.target == "next":
        workflow.next_stage()
    elif args.target == "prev":
        workflow.prev_stage()
    else:
        workflow.set_stage(args.target)
    print(f"Стадия: {workflow.current_stage}")
    return 0


def _cmd_summary(app: Application, args: argparse.Namespace) -> int:
    print(render_change_summary(app.workflow.get_change_summary()))
    print()
    print(render_folder_tree(app.workflow.get_folder_tree()))
    return 0


async def _cmd_export(app: Application, args: argparse.Namespace) -> int:
    workflow = app.workflow
    writer = ExportWriter()
    writer.write_records(workflow.get_export_records(), args.output)
    if args.summary_file:
        writer.write_change_summary(workflow.get_change_summary(), args.summary_file)
    await workflow.reset()
    print(f"Экспорт завершен: {args.output}")
    return 0


async def _cmd_cache(app: Application, args: argparse.Namespace) -> int:
    if args.command == "cache-stats":
        stats = await app.cache.get_stats()
        print(f"Записей: {stats.entries}, примерный размер: {stats.size_bytes} байт")
        for cache_type, count in stats.by_type.items():
            print(f"  {cache_type}: {count}")
        return 0

    if args.expired:
        removed = await app.cache.clear_expired()
    elif args.cache_type:
        removed = await app.cache.clear_by_type(args.cache_type)
    else:
        removed = (await app.cache.get_stats()).entries
        await app.cache.clear_all()
    print(f"Удалено записей кэша: {removed}")
    return 0


async def _cmd_usage(app: Application, args: argparse.Namespace) -> int:
    today = await app.usage.get_today_stats()
    month = await app.usage.get_month_stats()
    check = await app.usage.check_limits()
    print(f"Сегодня: {today.tokens} токенов, ${today.cost:.4f}")
    print(f"За месяц: {month.tokens} токенов, ${month.cost:.4f}")
    if check.message:
        print(f"Лимиты: {check.message}")
    return 1 if check.exceeded else 0


async def run_command(args: argparse.Namespace, app: Application) -> int:
    """
    Выполняет одну команду.

    Аргументы:
        args: Аргументы командной строки
        app: Компоненты приложения

    Возвращает:
        int: Код завершения
    """
    start_time = time.time()
    command = args.command
    workflow = app.workflow

    if command == "import":
        return await _cmd_import(app, args)
    if command in ("cache-stats", "cache-clear"):
        return await _cmd_cache(app, args)
    if command == "usage":
        return await _cmd_usage(app, args)

    if not await workflow.load_session():
        print("Нет активной сессии. Начните с команды import.")
        return 1

    if command == "status":
        code = _cmd_status(app, args)
    elif command == "list":
        code = _cmd_list(app, args)
    elif command == "summary":
        code = _cmd_summary(app, args)
    elif command == "analyze":
        code = await _cmd_analyze(app, args)
    elif command == "suggest":
        code = await _cmd_suggest(app, args)
    elif command == "select-recommended":
        count = workflow.select_by_recommendation(args.type)
        print(f"Выделено: {count}")
        code = 0
    elif command == "select":
        workflow.select_all(args.ids)
        print(f"Выделено: {workflow.selected_count}")
        code = 0
    elif command in ("accept", "reject"):
        action = workflow.accept_recommendation if command == "accept" else workflow.reject_recommendation
        if action(args.id):
            print(f"Рекомендация для {args.id}: {'принята' if command == 'accept' else 'отклонена'}")
            code = 0
        else:
            print(f"Ошибка: нет рекомендации для {args.id}")
            code = 1
    elif command == "accept-all":
        print(f"Принято рекомендаций: {workflow.accept_all_recommendations(args.type)}")
        code = 0
    elif command == "delete":
        result = await workflow.delete_selected()
        code = _report(result, f"Удалено: {len(result.affected_ids)}")
    elif command == "restore":
        result = await workflow.restore_deleted(args.ids)
        code = _report(result, f"Восстановлено: {len(result.affected_ids)}")
    elif command == "move":
        result = await workflow.move_bookmarks(args.ids, PathUtils.parse_path(args.path))
        code = _report(result, f"Перемещено: {len(result.affected_ids)}")
    elif command == "mkdir":
        result = workflow.create_folder(PathUtils.parse_path(args.path))
        code = _report(result, f"Папка создана: {args.path}")
    elif command == "accept-folder":
        code = await _cmd_accept_folder(app, args)
    elif command == "undo":
        result = await workflow.undo()
        code = _report(result, f"Отменено: {result.operation.kind if result.operation else ''}")
    elif command == "stage":
        code = _cmd_stage(app, args)
    elif command == "export":
        return await _cmd_export(app, args)
    elif command == "reset":
        await workflow.reset()
        print("Сессия сброшена")
        return 0
    else:
        raise ValueError(f"Неизвестная команда: {command}")

    if command not in READ_ONLY_COMMANDS and workflow.has_unsaved_changes:
        if not await workflow.save_session():
            print("Ошибка: не удалось сохранить сессию")
            code = 1

    log_performance("run_command", time.time() - start_time, f"command={command}, code={code}")
    return code


def main(argv: Optional[List[str]] = None) -> None:
    """
    Главная функция приложения.
    """
    try:
        args = parse_arguments(argv)

        config = ConfigManager(args.config_path).get()
        if args.data_dir:
            config.data_dir = args.data_dir
            logger.debug(f"Переопределена директория данных: {config.data_dir}")

        setup_application_logging(args, config)
        logger.info(f"Команда: {args.command}")

        app = build_application(config)
        code = asyncio.run(run_command(args, app))
        sys.exit(code)

    except KeyboardInterrupt:
        logger.info("Программа прервана пользователем")
        sys.exit(1)
    except (ValueError, OSError) as e:
        log_error_with_context(e, {"operation": "main"})
        logger.error(f"Критическая ошибка: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
