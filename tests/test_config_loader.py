"""Tests for config_loader module."""

from __future__ import annotations

from pathlib import Path

import pytest

from notesync.config_loader import (
    ENV_MAPPING,
    ConfigError,
    _apply_env_overlay,
    _deep_merge,
    _get_project_config_dir,
    clear_config_cache,
    get_config,
    load_config,
)
from notesync.config_schema import NotesyncConfig


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch):
    """Point the user config at an empty temp home and clear NOTESYNC_* env."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr(Path, "home", lambda: home)
    for name in ENV_MAPPING:
        monkeypatch.delenv(name, raising=False)
    clear_config_cache()
    yield home
    clear_config_cache()


def _write_config(directory: Path, text: str) -> Path:
    config_dir = directory / ".notesync"
    config_dir.mkdir(parents=True, exist_ok=True)
    path = config_dir / "config.toml"
    path.write_text(text, encoding="utf-8")
    return path


class TestDeepMerge:
    """Tests for _deep_merge function."""

    def test_nested_merge(self):
        base = {"outer": {"a": 1, "b": 2}}
        override = {"outer": {"b": 3, "c": 4}}
        assert _deep_merge(base, override) == {"outer": {"a": 1, "b": 3, "c": 4}}

    def test_base_unchanged(self):
        base = {"a": {"x": 1}}
        _deep_merge(base, {"a": {"x": 2}})
        assert base == {"a": {"x": 1}}


class TestEnvOverlay:
    def test_env_values_land_in_sections(self, monkeypatch):
        monkeypatch.setenv("NOTESYNC_GIT_BRANCH", "notes")
        monkeypatch.setenv("NOTESYNC_REUSE_UNCHANGED", "false")
        result = _apply_env_overlay({"git": {"author": "me"}})
        assert result["git"] == {"author": "me", "branch": "notes"}
        assert result["sync"] == {"reuse_unchanged": "false"}


class TestLoadConfig:
    def test_defaults_without_files(self, tmp_path: Path):
        config = load_config(tmp_path)
        assert config == NotesyncConfig.default()

    def test_user_then_project_then_env(self, tmp_path: Path, isolated_home: Path, monkeypatch):
        _write_config(isolated_home, '[git]\nauthor = "user"\nbranch = "user-branch"\n')
        project = tmp_path / "project"
        _write_config(project, '[git]\nbranch = "project-branch"\n[sync]\nbackups_keep = 7\n')
        monkeypatch.setenv("NOTESYNC_GIT_EMAIL", "env@example.com")

        config = load_config(project / "sub")
        assert config.git.author == "user"
        assert config.git.branch == "project-branch"
        assert config.git.email == "env@example.com"
        assert config.sync.backups_keep == 7

    def test_skip_env(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("NOTESYNC_GIT_BRANCH", "env-branch")
        assert load_config(tmp_path, skip_env=True).git.branch == "main"

    def test_invalid_project_toml_raises(self, tmp_path: Path):
        _write_config(tmp_path, "not = [valid")
        with pytest.raises(ConfigError):
            load_config(tmp_path)

    def test_invalid_user_toml_warns(self, tmp_path: Path, isolated_home: Path):
        _write_config(isolated_home, "not = [valid")
        with pytest.warns(UserWarning):
            config = load_config(tmp_path)
        assert config.git.branch == "main"

    def test_validation_error(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("NOTESYNC_BACKUPS_KEEP", "-1")
        with pytest.raises(ConfigError):
            load_config(tmp_path)


def test_project_config_dir_discovery(tmp_path: Path):
    project = tmp_path / "project"
    _write_config(project, "")
    nested = project / "a" / "b"
    nested.mkdir(parents=True)
    assert _get_project_config_dir(nested) == project / ".notesync"


def test_get_config_is_cached(tmp_path: Path, monkeypatch):
    first = get_config(tmp_path)
    assert get_config(tmp_path) is first
    monkeypatch.setenv("NOTESYNC_GIT_BRANCH", "other")
    assert get_config(tmp_path).git.branch == "main"
    assert get_config(tmp_path, force_reload=True).git.branch == "other"
