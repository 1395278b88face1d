"""
Общие фикстуры для тестов движка очистки.
Содержит вспомогательные функции и фикстуры для создания тестовых данных.
"""
import json
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

from src.adapters import LLMAdapter, LLMResponse, TokenUsage
from src.cache import ResultCache
from src.config import Config, ConfigManager
from src.models import AICleanupRecommendation, BookmarkRecord
from src.record_store import InMemoryRecordStore
from src.session_store import InMemorySessionStore
from src.usage import UsageTracker
from src.workflow import CleanupWorkflow


@pytest.fixture(autouse=True)
def restore_environ():
    """ConfigManager загружает .env в os.environ; окружение восстанавливается после теста."""
    saved = dict(os.environ)
    yield
    os.environ.clear()
    os.environ.update(saved)


@pytest.fixture
def temp_dir():
    """Создает временную директорию для тестов."""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir)


@pytest.fixture
def sample_config(temp_dir):
    """Создает тестовую конфигурацию."""
    config_file = temp_dir / ".env"
    with open(config_file, 'w', encoding='utf-8') as f:
        f.write(f"""
LLM_PROVIDER=openai
LLM_API_KEY=test_key
LLM_BASE_URL=https://api.openai.com/v1
LLM_MODEL=gpt-4o-mini
LLM_MAX_TOKENS=1000
LLM_TEMPERATURE=0.3
LLM_TIMEOUT=30
AI_MIN_REQUEST_INTERVAL_MS=100
AI_RETRY_ATTEMPTS=2
AI_RETRY_DELAY=1.0
AI_BATCH_SIZE=20
AI_FOLDER_BATCH_SIZE=50
CACHE_TTL_HOURS=168
DATA_DIR={temp_dir}/data
USAGE_DAILY_TOKEN_LIMIT=
USAGE_MONTHLY_TOKEN_LIMIT=
USAGE_DAILY_COST_LIMIT=
USAGE_MONTHLY_COST_LIMIT=
LOG_LEVEL=INFO
LOG_FILE={temp_dir}/test.log
""")

    return str(config_file)


@pytest.fixture
def config_manager(sample_config):
    """Создает менеджер конфигурации с тестовыми параметрами."""
    return ConfigManager(sample_config)


@pytest.fixture
def config(config_manager):
    """Возвращает объект конфигурации."""
    return config_manager.get()


def make_test_config(**overrides):
    """Создает объект конфигурации без чтения .env."""
    values = dict(
        llm_provider="openai",
        llm_api_key="test_key",
        llm_base_url=None,
        llm_model="gpt-4o-mini",
        llm_max_tokens=1000,
        llm_temperature=0.3,
        llm_timeout=30,
        ai_min_request_interval_ms=100,
        ai_retry_attempts=2,
        ai_retry_delay=1.0,
        ai_batch_size=20,
        ai_folder_batch_size=50,
        cache_ttl_hours=168,
        data_dir="./test_data",
        log_level="INFO",
        log_file="",
    )
    values.update(overrides)
    return Config(**values)


def create_test_record(record_id="1", title="Test Bookmark", url="https://example.com", path=None, date_added=None):
    """Создает тестовую закладку."""
    return BookmarkRecord(
        id=record_id,
        title=title,
        url=url,
        path=list(path) if path is not None else [],
        date_added=date_added,
    )


def create_test_recommendation(bookmark_id, recommendation="delete", confidence=80, rejected=None):
    """Создает тестовую рекомендацию."""
    return AICleanupRecommendation(
        bookmark_id=bookmark_id,
        recommendation=recommendation,
        reason="Тестовая причина",
        reason_type="outdated",
        confidence=confidence,
        rejected=rejected,
    )


@pytest.fixture
def sample_records():
    """Возвращает набор закладок в нескольких папках."""
    return [
        create_test_record("1", "Python docs", "https://docs.python.org/3/", ["Dev", "Python"], datetime(2024, 1, 5)),
        create_test_record("2", "Real Python", "https://realpython.com/", ["Dev", "Python"], datetime(2024, 2, 10)),
        create_test_record("3", "MDN", "https://developer.mozilla.org/", ["Dev", "Web"], datetime(2023, 6, 1)),
        create_test_record("4", "Новости", "https://news.example.com/", ["Misc"], datetime(2022, 3, 15)),
        create_test_record("5", "Старый блог", "http://old-blog.example.org/", [], None),
    ]


@pytest.fixture
def records_file(temp_dir, sample_records):
    """Создает файл импорта с тестовыми закладками."""
    file_path = temp_dir / "records.json"
    with open(file_path, 'w', encoding='utf-8') as f:
        json.dump([record.to_dict() for record in sample_records], f, ensure_ascii=False)
    return str(file_path)


@pytest.fixture
def record_store(sample_records):
    return InMemoryRecordStore(sample_records)


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def workflow(record_store, session_store, sample_records):
    """Создает запущенную сессию очистки без AI."""
    workflow = CleanupWorkflow(record_store, session_store)
    workflow.start(sample_records)
    return workflow


class FakeClock:
    """Управляемые часы для конвейера и кэша."""

    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


class ScriptedAdapter(LLMAdapter):
    """
    Адаптер с заранее заданными ответами.
    Элемент сценария - строка ответа или исключение.
    """

    def __init__(self, script, usage=None, model="gpt-4o-mini"):
        self.config = None
        self.script = list(script)
        self.requests = []
        self.usage = usage or TokenUsage(prompt_tokens=100, completion_tokens=50, total_tokens=150)
        self.model = model

    async def chat(self, request):
        self.requests.append(request)
        if not self.script:
            raise AssertionError("Сценарий адаптера исчерпан")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return LLMResponse(content=item, usage=self.usage, model=self.model)

    async def validate_api_key(self):
        return True


@pytest.fixture
def usage_tracker():
    return UsageTracker()


@pytest.fixture
def result_cache():
    return ResultCache()
