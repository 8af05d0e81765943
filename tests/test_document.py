"""Tests for the persisted settings document."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ternity_auth.document import SettingsDocument


if TYPE_CHECKING:
    from pathlib import Path


class TestSettingsDocument:
    """Tests for SettingsDocument."""

    def test_missing_file(self, tmp_path: Path) -> None:
        assert SettingsDocument(tmp_path / "nope.json").read() == {}

    def test_corrupt_file(self, tmp_path: Path) -> None:
        """Unparseable or non-object documents read as empty."""
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")
        assert SettingsDocument(path).read() == {}
        path.write_text("[1, 2, 3]", encoding="utf-8")
        assert SettingsDocument(path).read() == {}

    def test_write_creates_directory(self, tmp_path: Path) -> None:
        """write() creates parent directories and leaves no temp files."""
        path = tmp_path / "nested" / "dir" / "config.json"
        doc = SettingsDocument(path)
        doc.write({"a": 1})
        assert doc.read() == {"a": 1}
        assert [p.name for p in path.parent.iterdir()] == ["config.json"]

    def test_write_replaces(self, tmp_path: Path) -> None:
        doc = SettingsDocument(tmp_path / "config.json")
        doc.write({"a": 1})
        doc.write({"b": 2})
        assert doc.read() == {"b": 2}

    def test_selected_environment(self, tmp_path: Path) -> None:
        """The chosen environment is kept alongside other settings."""
        doc = SettingsDocument(tmp_path / "config.json")
        assert doc.get_selected_environment() is None
        doc.write({"auth": {"dev": "blob"}})
        doc.set_selected_environment("dev")
        assert doc.get_selected_environment() == "dev"
        assert doc.read()["auth"] == {"dev": "blob"}
