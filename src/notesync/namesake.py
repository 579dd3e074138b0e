"""Group local notebooks and remote revisions by notebook name."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from .collector import collect_revisions
from .models import Notebook, RemoteRevision
from .naming import BookName
from .observability import log_debug, log_warning
from .repos import SyncRepo
from .status import SyncStatus, classify
from .storage import LocalStorage


@dataclass
class Namesake:
    """One notebook name with its local notebook and remote revisions.

    Built fresh every sync cycle and discarded after dispatch.
    """

    name: str
    book: Optional[Notebook] = None
    rooks: List[RemoteRevision] = field(default_factory=list)
    status: Optional[SyncStatus] = None
    latest_linked_rook: Optional[RemoteRevision] = None

    def update_status(self, repo_count: int) -> SyncStatus:
        self.status, self.latest_linked_rook = classify(self.book, self.rooks, repo_count)
        return self.status

    def __str__(self) -> str:
        return f"{self.name}: {self.status.name if self.status else '?'} ({len(self.rooks)} remote)"


def group_by_name(
    books: Sequence[Notebook],
    rooks: Sequence[RemoteRevision],
    *,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Namesake]:
    """Group notebooks and revisions into one namesake per name, ordered by name.

    Unlinked placeholders with no remote revision left produce no namesake.
    """
    namesakes: Dict[str, Namesake] = {}

    for book in books:
        namesakes[book.name] = Namesake(name=book.name, book=book)

    for rook in rooks:
        try:
            name = BookName.from_url(rook.repo_url, rook.url).name
        except ValueError as e:
            log_warning(f"Skipping remote revision {rook.url}: {e}", logger=logger)
            continue
        namesake = namesakes.get(name)
        if namesake is None:
            namesake = namesakes[name] = Namesake(name=name)
        namesake.rooks.append(rook)

    return {
        name: namesakes[name]
        for name in sorted(namesakes)
        if not (
            namesakes[name].book is not None
            and namesakes[name].book.is_dummy
            and not namesakes[name].book.has_link()
            and not namesakes[name].rooks
        )
    }


def _linked_elsewhere(namesake: Namesake, repo_urls: Set[str]) -> bool:
    book = namesake.book
    return book is not None and book.link is not None and book.link.url not in repo_urls


def group_all_notebooks_by_name(
    storage: LocalStorage,
    repos: Optional[Sequence[SyncRepo]] = None,
    *,
    reuse_unchanged: bool = True,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Namesake]:
    """Collect local and remote notebooks and classify every name.

    A placeholder notebook is created for every name that only exists
    remotely, so each namesake has a local notebook to load into.

    When ``repos`` is a subset of the configured repositories, notebooks
    linked to a repository outside it are left out: their remote copies were
    not listed, so they cannot be classified this cycle.

    Raises:
        CollectionError: If any repository cannot be listed
    """
    log_debug("Collecting all local and remote notebooks ...", logger=logger)

    repo_count = len(storage.get_repos())
    rooks = collect_revisions(storage, repos, reuse_unchanged=reuse_unchanged, logger=logger)
    namesakes = group_by_name(storage.get_books(), rooks, logger=logger)
    if repos is not None:
        listed = {repo.url for repo in repos}
        for name in [n for n, ns in namesakes.items() if _linked_elsewhere(ns, listed)]:
            log_debug(f"Skipping {name}: linked to a repository outside this cycle", logger=logger)
            del namesakes[name]

    for namesake in namesakes.values():
        if namesake.book is None:
            namesake.book = storage.create_dummy_book(namesake.name)
        namesake.update_status(repo_count)
        log_debug(f"Namesake {namesake}", logger=logger)

    return namesakes
