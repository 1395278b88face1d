"""
Тесты для модуля folders.py
"""
from src.folders import (
    ROOT_NAME,
    apply_pending_moves,
    build_folder_tree,
    collect_folder_paths,
    folder_exists,
    folder_name_exists_at_level,
    has_blank_segment,
    validate_new_folder,
)
from src.models import BookmarkMove


class TestFolderChecks:
    """Тесты для проверок папок."""

    def test_folder_exists(self, sample_records):
        assert folder_exists(sample_records, ["Dev"])
        assert folder_exists(sample_records, ["dev", "python"])
        assert not folder_exists(sample_records, ["Dev", "Rust"])
        assert not folder_exists(sample_records, [])

    def test_name_at_level(self, sample_records):
        """Тест поиска имени на конкретном уровне без учета регистра."""
        assert folder_name_exists_at_level(sample_records, ["Dev"], "PYTHON")
        assert folder_name_exists_at_level(sample_records, [], "misc")
        assert not folder_name_exists_at_level(sample_records, [], "Python")

    def test_duplicate_folder_rejected(self, sample_records):
        """Тест: создать Dev/Python нельзя, Dev/Rust можно."""
        error = validate_new_folder(sample_records, [], ["Dev", "Python"])

        assert error is not None
        assert "Python" in error
        assert validate_new_folder(sample_records, [], ["Dev", "Rust"]) is None

    def test_folder_created_in_session(self, sample_records):
        error = validate_new_folder(sample_records, [["Dev", "Rust"]], ["Dev", "Rust"])
        assert "уже создана" in error

    def test_empty_path(self, sample_records):
        assert validate_new_folder(sample_records, [], []) == "Путь папки не может быть пустым"

    def test_blank_segment(self, sample_records):
        """Тест: имя из пробелов недопустимо на любом уровне пути."""
        assert has_blank_segment(["Dev", " "])
        assert not has_blank_segment(["Dev", "Rust"])
        assert validate_new_folder(sample_records, [], ["   "]) == "Имя папки не может быть пустым"
        assert validate_new_folder(sample_records, [], ["", "Rust"]) == "Имя папки не может быть пустым"


class TestApplyPendingMoves:
    """Тесты для проекции отложенных перемещений."""

    def test_last_move_wins(self, sample_records):
        moves = [
            BookmarkMove("1", ["Dev", "Python"], ["Archive"]),
            BookmarkMove("1", ["Archive"], ["Reading"]),
            BookmarkMove("4", ["Misc"], []),
        ]

        result = {record.id: record.path for record in apply_pending_moves(sample_records, moves)}

        assert result["1"] == ["Reading"]
        assert result["4"] == []
        assert result["2"] == ["Dev", "Python"]

    def test_source_records_untouched(self, sample_records):
        apply_pending_moves(sample_records, [BookmarkMove("1", ["Dev", "Python"], ["Archive"])])
        assert sample_records[0].path == ["Dev", "Python"]


class TestFolderTree:
    """Тесты для дерева папок."""

    def test_tree_structure(self, sample_records):
        """Тест вложенности, сортировки и подсчета закладок."""
        root = build_folder_tree(sample_records)

        assert root.name == ROOT_NAME
        assert [child.name for child in root.children] == ["Dev", "Misc"]
        assert root.bookmark_count == 1
        assert root.total_count == 5
        dev = root.find(["Dev"])
        assert [child.name for child in dev.children] == ["Python", "Web"]
        assert dev.total_count == 3
        assert root.find(["Dev", "Python"]).bookmark_count == 2

    def test_created_folders_marked_new(self, sample_records):
        """Тест пустой созданной папки в дереве."""
        root = build_folder_tree(sample_records, [["Dev", "Rust"]])

        rust = root.find(["Dev", "Rust"])
        assert rust is not None
        assert rust.is_new
        assert rust.total_count == 0
        assert not root.find(["Dev"]).is_new

    def test_find_missing(self, sample_records):
        assert build_folder_tree(sample_records).find(["Nope"]) is None

    def test_collect_folder_paths(self, sample_records):
        assert collect_folder_paths(sample_records) == ["Dev", "Dev/Python", "Dev/Web", "Misc"]
