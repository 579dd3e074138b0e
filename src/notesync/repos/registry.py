"""Repository backend registry helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from ..config_schema import NotesyncConfig
from ..models import Repository
from . import SyncRepo, UnknownRepoKindError
from .directory import DirectoryRepo
from .git import GitRepo

RepoFactory = Callable[[Repository, Path, NotesyncConfig], SyncRepo]


def _directory_factory(repo: Repository, work_root: Path, config: NotesyncConfig) -> SyncRepo:
    return DirectoryRepo(repo)


def _git_factory(repo: Repository, work_root: Path, config: NotesyncConfig) -> SyncRepo:
    return GitRepo(
        repo,
        work_root / str(repo.id),
        branch=config.git.branch,
        author_name=config.git.author,
        author_email=config.git.email,
        conflict_branch_prefix=config.git.conflict_branch_prefix,
    )


_REGISTRY: dict[str, RepoFactory] = {
    "dir": _directory_factory,
    "git": _git_factory,
}


def register_repo_kind(kind: str, factory: RepoFactory) -> None:
    """Register a backend factory for a repository kind."""
    _REGISTRY[kind] = factory


def list_repo_kinds() -> list[str]:
    """List registered repository kinds."""
    return sorted(_REGISTRY)


def guess_repo_kind(url: str) -> str:
    """Guess the backend kind from a repository URL."""
    if url.endswith(".git") or url.startswith(("git@", "ssh://", "https://", "http://")):
        return "git"
    return "dir"


def create_repo(
    repo: Repository,
    work_root: Path,
    config: Optional[NotesyncConfig] = None,
) -> SyncRepo:
    """Instantiate the backend for a configured repository.

    Args:
        repo: Configured repository record
        work_root: Directory where backends may keep working copies
        config: Loaded configuration (defaults when None)

    Raises:
        UnknownRepoKindError: If no backend is registered for ``repo.kind``
    """
    try:
        factory = _REGISTRY[repo.kind]
    except KeyError as exc:
        raise UnknownRepoKindError(f"Repository kind '{repo.kind}' is not registered") from exc
    return factory(repo, work_root, config or NotesyncConfig.default())
