"""Configuration schema for notesync.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class StorageConfig(BaseModel):
    """Local notebook storage settings."""

    root: str = Field(
        default="",
        description="Storage root directory (empty = ~/.notesync/data)",
    )

    def resolve_root(self) -> Path:
        if self.root:
            return Path(self.root).expanduser()
        return Path.home() / ".notesync" / "data"


class GitConfig(BaseModel):
    """Settings for git repositories."""

    author: str = Field(
        default="notesync",
        description="Commit author name",
    )
    email: str = Field(
        default="notesync@localhost",
        description="Commit author email",
    )
    branch: str = Field(
        default="main",
        description="Branch notebooks are synced against",
    )
    conflict_branch_prefix: str = Field(
        default="notesync/conflict",
        description="Prefix of branches holding local content after a merge conflict",
    )

    @field_validator("branch")
    @classmethod
    def validate_branch(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("branch must not be empty")
        if " " in v or v.startswith("-"):
            raise ValueError(f"invalid branch name: {v!r}")
        return v


class SyncConfig(BaseModel):
    """Sync cycle behavior."""

    reuse_unchanged: bool = Field(
        default=True,
        description="Skip listing repositories that report no remote change",
    )
    backups_keep: int = Field(
        default=3,
        ge=0,
        description="Local backups kept per notebook when remote content is loaded",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.notesync/logs)",
    )
    max_bytes: int = Field(
        default=10485760,  # 10MB
        ge=0,
        description="Maximum log file size in bytes",
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of backup log files to keep",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )

    @field_validator("dir")
    @classmethod
    def validate_log_dir(cls, v: str) -> str:
        """Warn if log path exists but is not a directory."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Log path exists but is not a directory: {v}",
                    UserWarning,
                )
        return v


class NotesyncConfig(BaseModel):
    """Root configuration model."""

    version: int = Field(
        default=1,
        ge=1,
        description="Config schema version",
    )

    storage: StorageConfig = Field(default_factory=StorageConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "NotesyncConfig":
        """Create config with all defaults."""
        return cls()
