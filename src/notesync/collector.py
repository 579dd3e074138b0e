"""Collect remote notebook revisions across configured repositories."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .exceptions import CollectionError
from .models import Notebook, RemoteRevision
from .observability import log_debug
from .repos import ChangeTrackingRepo, RepoError, SyncRepo
from .storage import LocalStorage


def _reusable_revisions(repo: SyncRepo, books: Sequence[Notebook]) -> List[RemoteRevision]:
    """Last synced revisions of notebooks linked to ``repo``.

    Returns an empty list when any linked notebook has never been synced,
    since its remote copy could only be found by a full listing.
    """
    linked = [b for b in books if b.link is not None and b.link.url == repo.url]
    if not linked or any(b.synced_to is None for b in linked):
        return []
    return [b.synced_to for b in linked if b.synced_to is not None]


def collect_revisions(
    storage: LocalStorage,
    repos: Optional[Sequence[SyncRepo]] = None,
    *,
    reuse_unchanged: bool = True,
    logger: Optional[logging.Logger] = None,
) -> List[RemoteRevision]:
    """Return every remote notebook revision across ``repos``.

    Repositories that can report "unchanged since last sync" are not listed
    again; the last synced revision of each notebook linked to them stands in
    for the listing.

    Args:
        storage: Local storage (source of links and synced revisions)
        repos: Repositories to collect from (default: all configured)
        reuse_unchanged: Allow the unchanged-repository shortcut
        logger: Diagnostic sink

    Raises:
        CollectionError: If any repository cannot be listed
    """
    repo_list = list(repos) if repos is not None else storage.get_sync_repos()
    books: Optional[List[Notebook]] = None
    result: List[RemoteRevision] = []

    for repo in repo_list:
        try:
            if reuse_unchanged and isinstance(repo, ChangeTrackingRepo):
                if books is None:
                    books = storage.get_books()
                reused = _reusable_revisions(repo, books)
                if reused and repo.is_unchanged():
                    log_debug(
                        f"Repository {repo.url} unchanged, reusing {len(reused)} synced revisions",
                        logger=logger,
                    )
                    result.extend(reused)
                    continue
            listed = repo.get_books()
        except (OSError, RepoError) as e:
            raise CollectionError(f"Failed to list notebooks in {repo.url}: {e}", repo.url) from e
        log_debug(f"Listed {len(listed)} notebooks in {repo.url}", logger=logger)
        result.extend(listed)

    return result
