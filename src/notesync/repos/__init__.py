"""Repository backend contract.

A repository is anything that can list notebook revisions and move notebook
files in and out of itself. Backends come in two capability levels:

- :class:`SyncRepo` (one-way): list, retrieve and store whole files.
- :class:`TwoWaySyncRepo`: additionally performs a native merge of local
  content against a known ancestor revision and reports whether the merge
  introduced conflicts.

The engine checks the capability once per namesake with ``isinstance`` on
these runtime-checkable protocols.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence, runtime_checkable

from ..models import RemoteRevision


class RepoError(Exception):
    """Base exception for repository backend failures."""


class RepoNotFoundError(RepoError):
    """Raised when a repository location does not exist or cannot be opened."""


class UnknownRepoKindError(RepoError):
    """Raised when no backend is registered for a repository kind."""


@dataclass(frozen=True)
class SyncBookResult:
    """Result of a native two-way merge.

    Attributes:
        new_rook: Revision of the notebook after the merge
        merged: True when the merge introduced no new conflicts
        load_file: Path of the merged file when its content differs from
            what was sent and must be reloaded locally
    """

    new_rook: RemoteRevision
    merged: bool
    load_file: Optional[Path] = None


@runtime_checkable
class SyncRepo(Protocol):
    """One-way repository capability."""

    @property
    def url(self) -> str:
        """Repository address; revision URLs are prefixed with it."""

    def get_books(self) -> Sequence[RemoteRevision]:
        """List the current revision of every notebook in the repository.

        Raises:
            RepoError: If the repository cannot be read
            OSError: On filesystem failures
        """

    def retrieve_book(self, repo_relative_path: str, destination: Path) -> RemoteRevision:
        """Copy a notebook out of the repository into ``destination``."""

    def store_book(self, source: Path, repo_relative_path: str) -> RemoteRevision:
        """Upload ``source`` to ``repo_relative_path`` and return the new revision."""


@runtime_checkable
class ChangeTrackingRepo(Protocol):
    """Repository that can cheaply tell whether anything changed remotely."""

    def is_unchanged(self) -> bool:
        """Return True when nothing changed remotely since the last sync."""


@runtime_checkable
class TwoWaySyncRepo(SyncRepo, ChangeTrackingRepo, Protocol):
    """Repository that can merge local content with remote history."""

    @property
    def current_branch(self) -> str:
        """Name of the branch (or equivalent) notebooks are synced against."""

    def sync_book(
        self,
        url: str,
        current: Optional[RemoteRevision],
        file: Path,
    ) -> SyncBookResult:
        """Merge ``file`` into the notebook at ``url``.

        Args:
            url: Revision URL of the notebook to sync against
            current: Last synced revision used as merge ancestor (None on first sync)
            file: Local content exported to a temporary file

        Raises:
            RepoError: If the merge cannot be performed
        """


__all__ = [
    "RepoError",
    "RepoNotFoundError",
    "UnknownRepoKindError",
    "SyncBookResult",
    "SyncRepo",
    "ChangeTrackingRepo",
    "TwoWaySyncRepo",
]
