"""
Модуль test_utils.py
Содержит unit-тесты для вспомогательных утилит из модуля src/utils.py.
"""
from datetime import datetime
from unittest.mock import patch

import pytest

from src.utils import DateUtils, HashUtils, PathUtils, ProgressTracker, TextUtils


class TestPathUtils:
    """Тесты для утилит работы с путями папок."""

    def test_parse_path(self):
        """Тест разбора пути с разделителем '/'."""
        assert PathUtils.parse_path("Dev/Python") == ["Dev", "Python"]
        assert PathUtils.parse_path(" Dev / Web ") == ["Dev", "Web"]
        assert PathUtils.parse_path("/Dev//Python/") == ["Dev", "Python"]
        assert PathUtils.parse_path("") == []

    def test_format_path(self):
        """Тест форматирования пути."""
        assert PathUtils.format_path(["Dev", "Python"]) == "Dev/Python"
        assert PathUtils.format_path([]) == "(корень)"

    def test_paths_equal_is_case_sensitive(self):
        """Тест точного сравнения путей."""
        assert PathUtils.paths_equal(["Dev"], ["Dev"])
        assert not PathUtils.paths_equal(["Dev"], ["dev"])

    def test_starts_with(self):
        """Тест посегментной проверки префикса без учета регистра."""
        assert PathUtils.starts_with(["Dev", "Python"], ["dev"])
        assert PathUtils.starts_with(["Dev", "Python"], ["Dev", "Python"])
        assert PathUtils.starts_with(["Dev"], [])
        assert not PathUtils.starts_with(["Development"], ["Dev"])
        assert not PathUtils.starts_with(["Dev"], ["Dev", "Python"])


class TestTextUtils:
    """Тесты для утилит обработки текста."""

    def test_truncate_text(self):
        """Тест обрезки текста."""
        assert TextUtils.truncate_text("short", 10) == "short"
        assert TextUtils.truncate_text("a" * 20, 10) == "a" * 7 + "..."

    @pytest.mark.parametrize("url,expected", [
        ("https://docs.python.org/3/", "docs.python.org"),
        ("http://Example.COM:8080/path", "example.com"),
        ("not a url", None),
        ("", None),
    ])
    def test_extract_domain(self, url, expected):
        """Тест извлечения домена."""
        assert TextUtils.extract_domain(url) == expected


class TestDateUtils:
    """Тесты для утилит работы с датами."""

    def test_format_duration(self):
        """Тест форматирования продолжительности."""
        assert DateUtils.format_duration(30) == "30.0 сек"
        assert DateUtils.format_duration(90) == "1.5 мин"
        assert DateUtils.format_duration(5400) == "1.5 час"

    def test_period_boundaries(self):
        """Тест начала дня и месяца."""
        moment = datetime(2024, 5, 17, 13, 45, 10, 500)
        assert DateUtils.start_of_day(moment) == datetime(2024, 5, 17)
        assert DateUtils.start_of_month(moment) == datetime(2024, 5, 1)


class TestHashUtils:
    """Тесты для утилит хеширования."""

    def test_generate_text_hash(self):
        """Тест хеширования текста."""
        assert HashUtils.generate_text_hash("abc") == "900150983cd24fb0d6963f7d28e17f72"
        assert len(HashUtils.generate_text_hash("abc", "sha256")) == 64

    def test_unsupported_algorithm(self):
        """Тест неподдерживаемого алгоритма."""
        with pytest.raises(ValueError):
            HashUtils.generate_text_hash("abc", "no-such-algorithm")

    def test_data_hash_ignores_key_order(self):
        """Тест независимости хеша данных от порядка ключей."""
        first = HashUtils.generate_data_hash({"id": "1", "path": ["Dev"]})
        second = HashUtils.generate_data_hash({"path": ["Dev"], "id": "1"})
        assert first == second

    def test_data_hash_depends_on_content(self):
        """Тест изменения хеша при изменении содержимого."""
        first = HashUtils.generate_data_hash([{"id": "1", "title": "A"}])
        second = HashUtils.generate_data_hash([{"id": "1", "title": "B"}])
        assert first != second


class TestProgressTracker:
    """Тесты для трекера прогресса."""

    def test_progress_percentage(self):
        """Тест расчета процента выполнения."""
        tracker = ProgressTracker(4, "Тест")
        tracker.update(1)
        assert tracker.get_progress_percentage() == 25.0

    def test_empty_total(self):
        """Тест пустого набора."""
        assert ProgressTracker(0).get_progress_percentage() == 100.0

    def test_logs_on_completion(self):
        """Тест логирования при завершении обработки."""
        tracker = ProgressTracker(2, "Анализ")
        with patch.object(tracker, "_log_progress") as mock_log:
            tracker.last_log_time = float("inf")
            tracker.update(2)
            mock_log.assert_called_once()
