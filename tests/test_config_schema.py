"""Tests for config_schema module."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from notesync.config_schema import GitConfig, LoggingConfig, NotesyncConfig, StorageConfig, SyncConfig


def test_defaults():
    config = NotesyncConfig.default()
    assert config.version == 1
    assert config.git.branch == "main"
    assert config.git.conflict_branch_prefix == "notesync/conflict"
    assert config.sync.reuse_unchanged is True
    assert config.sync.backups_keep == 3
    assert config.logging.level == "INFO"


def test_storage_root_resolution(tmp_path: Path):
    assert StorageConfig().resolve_root() == Path.home() / ".notesync" / "data"
    assert StorageConfig(root=str(tmp_path)).resolve_root() == tmp_path


@pytest.mark.parametrize("branch", ["", "   ", "-main", "my branch"])
def test_invalid_branch(branch):
    with pytest.raises(ValidationError):
        GitConfig(branch=branch)


def test_branch_is_stripped():
    assert GitConfig(branch=" notes ").branch == "notes"


def test_backups_keep_non_negative():
    with pytest.raises(ValidationError):
        SyncConfig(backups_keep=-1)


def test_string_booleans_are_coerced():
    assert SyncConfig.model_validate({"reuse_unchanged": "false"}).reuse_unchanged is False


def test_log_dir_pointing_at_file_warns(tmp_path: Path):
    target = tmp_path / "file.log"
    target.write_text("x", encoding="utf-8")
    with pytest.warns(UserWarning):
        LoggingConfig(dir=str(target))


def test_invalid_log_level():
    with pytest.raises(ValidationError):
        LoggingConfig(level="TRACE")
