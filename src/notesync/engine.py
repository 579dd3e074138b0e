"""Reconciliation engine.

A sync cycle runs in three steps:

1. Collect remote revisions from every repository and group them with local
   notebooks by name (:func:`notesync.namesake.group_all_notebooks_by_name`).
2. Classify each namesake into exactly one :class:`SyncStatus`.
3. Dispatch each namesake to its corrective action: nothing, report, unlink,
   load, save, or a two-way merge for repositories that support it.

Namesakes are processed sequentially. Link and synced-revision updates are
written only after the load, save or merge they describe has completed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence

from .exceptions import MergeConflictError, SyncError
from .models import ActionType, BookAction, Notebook, RemoteRevision, Repository
from .namesake import Namesake, group_all_notebooks_by_name
from .naming import BookName, get_repo_relative_path, repo_relative_path
from .observability import get_logger, log_debug, log_error, timeit
from .repos import RepoError, SyncRepo, TwoWaySyncRepo
from .status import ActionFamily, SyncStatus
from .storage import LocalStorage, StorageError


MERGE_CONFLICT_MESSAGE = "Merge conflict; saved to temporary branch."


class SyncEngine:
    """Runs sync cycles against one local storage.

    Args:
        storage: Local storage engine
        reuse_unchanged: Allow skipping listings of unchanged repositories
        logger: Diagnostic sink (defaults to the package logger)
    """

    def __init__(
        self,
        storage: LocalStorage,
        *,
        reuse_unchanged: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        self.storage = storage
        self.reuse_unchanged = reuse_unchanged
        self.logger = logger or get_logger()
        self._handlers: Dict[ActionFamily, Callable[[Namesake], BookAction]] = {
            ActionFamily.NO_CHANGE: self._report,
            ActionFamily.ERROR: self._report,
            ActionFamily.UNLINK: self._unlink,
            ActionFamily.LOAD: self._load,
            ActionFamily.SAVE: self._save,
        }

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def group(self, repos: Optional[Sequence[SyncRepo]] = None) -> Dict[str, Namesake]:
        return group_all_notebooks_by_name(
            self.storage,
            repos,
            reuse_unchanged=self.reuse_unchanged,
            logger=self.logger,
        )

    def reconcile_all(self, repos: Optional[Sequence[SyncRepo]] = None) -> Dict[str, BookAction]:
        """Run one sync cycle and return the outcome for every notebook name.

        Collection failures abort the cycle. Failures while processing one
        notebook are reported as its error action and do not stop the others.

        Raises:
            CollectionError: If any repository cannot be listed
        """
        namesakes = self.group(repos)
        actions: Dict[str, BookAction] = {}

        for name, namesake in namesakes.items():
            status_name = namesake.status.name if namesake.status else None
            with timeit("sync.namesake", logger=self.logger, notebook=name, status=status_name) as info:
                try:
                    action = self.reconcile(namesake)
                except MergeConflictError as e:
                    action = BookAction.for_now(ActionType.ERROR, str(e))
                except (OSError, RepoError, StorageError, SyncError) as e:
                    log_error(f"Failed to sync notebook {name}: {e}", logger=self.logger)
                    action = BookAction.for_now(ActionType.ERROR, f"Sync failed: {e}")
                info["outcome"] = "error" if action.is_error else "ok"

            actions[name] = action
            if namesake.book is not None:
                self.storage.set_last_action(namesake.book.id, action)

        return actions

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def reconcile(self, namesake: Namesake) -> BookAction:
        """Execute the corrective action for one namesake.

        Does not refresh ``namesake`` after loading or saving.

        Raises:
            MergeConflictError: If a two-way merge left conflicts
            RepoError: On repository failures
            OSError: On filesystem failures
        """
        if namesake.status is None:
            namesake.update_status(len(self.storage.get_repos()))
        if namesake.book is None:
            namesake.book = self.storage.create_dummy_book(namesake.name)
        status = namesake.status

        if status is not SyncStatus.NO_CHANGE:
            two_way = self._two_way_target(namesake)
            if two_way is not None:
                repo, rook = two_way
                if not self.handle_two_way_sync(repo, namesake, rook):
                    raise MergeConflictError(MERGE_CONFLICT_MESSAGE, namesake.name, repo.current_branch)
                return BookAction.for_now(
                    ActionType.INFO,
                    status.msg(f"branch '{repo.current_branch}'"),
                )

        return self._handlers[status.family](namesake)

    def _two_way_target(self, namesake: Namesake) -> Optional[tuple[TwoWaySyncRepo, RemoteRevision]]:
        """Pick the two-way repository (and its revision) to merge with, if any.

        The linked revision wins; otherwise the first revision that lives in
        a two-way repository.
        """
        candidates = list(namesake.rooks)
        if namesake.latest_linked_rook is not None:
            candidates.insert(0, namesake.latest_linked_rook)
        for rook in candidates:
            repo = self.storage.get_repo_instance(rook.repo_id, rook.repo_kind, rook.repo_url)
            if isinstance(repo, TwoWaySyncRepo):
                return repo, rook
        return None

    def _report(self, namesake: Namesake) -> BookAction:
        return BookAction.for_now(namesake.status.action_type, namesake.status.msg())

    def _unlink(self, namesake: Namesake) -> BookAction:
        # The notebook stays local; the user must relink it to sync again.
        book = namesake.book
        self.storage.set_link(book.id, None)
        self.storage.remove_book_synced_to(book.id)
        log_debug(f"Removed link of {namesake.name}", logger=self.logger)
        return BookAction.for_now(ActionType.ERROR, namesake.status.msg())

    def _load(self, namesake: Namesake) -> BookAction:
        status = namesake.status
        if status in (SyncStatus.DUMMY_WITH_LINK, SyncStatus.BOOK_WITH_LINK_AND_ROOK_MODIFIED):
            rook = namesake.latest_linked_rook
        else:
            rook = namesake.rooks[0]
        if rook is None:
            raise SyncError(f"No remote revision to load for {namesake.name}")
        self.storage.load_book_from_repo(rook)
        return BookAction.for_now(ActionType.INFO, status.msg(rook.url))

    def _save(self, namesake: Namesake) -> BookAction:
        status = namesake.status
        book = namesake.book

        if status is SyncStatus.ONLY_BOOK_WITHOUT_LINK_AND_ONE_REPO:
            repos = self.storage.get_repos()
            if len(repos) != 1:
                raise SyncError(f"Expected exactly one repository, found {len(repos)}")
            repo = repos[0]
            repository_path = repo_relative_path(book.name, book.format)
            # Link before saving so repository-side ignore rules see it
            self.storage.set_link(book.id, repo)
        else:
            repo = self._linked_repo(book)
            if status is SyncStatus.BOOK_WITH_LINK_LOCAL_MODIFIED and book.synced_to is not None:
                repository_path = get_repo_relative_path(repo.url, book.synced_to.url)
            else:
                repository_path = repo_relative_path(book.name, book.format)

        self.storage.save_book_to_repo(repo, repository_path, book)
        return BookAction.for_now(ActionType.INFO, status.msg(repo.url))

    def _linked_repo(self, book: Notebook) -> Repository:
        if book.link is None:
            raise SyncError(f"Notebook {book.name} has no repository link")
        return book.link

    # ------------------------------------------------------------------
    # Two-way merge
    # ------------------------------------------------------------------

    def handle_two_way_sync(
        self,
        repo: TwoWaySyncRepo,
        namesake: Namesake,
        rook: Optional[RemoteRevision] = None,
    ) -> bool:
        """Merge the local notebook with a two-way repository.

        Returns:
            True when the merge introduced no new conflicts
        """
        book = namesake.book
        current = book.synced_to
        if current is not None and current.repo_url != repo.url:
            current = None

        # Only local changes: a plain push is enough
        if namesake.status is SyncStatus.BOOK_WITH_LINK_LOCAL_MODIFIED and current is not None:
            repository_path = get_repo_relative_path(repo.url, current.url)
            self.storage.save_book_to_repo(self._linked_repo(book), repository_path, book)
            return True

        some_rook = current or rook
        if some_rook is None:
            some_rook = next(r for r in namesake.rooks if r.repo_url == repo.url)

        # Placeholders have no content of their own to merge
        if book.is_dummy:
            self.storage.load_book_from_repo(rook or some_rook)
            return True

        db_file = self.storage.get_temp_book_file()
        try:
            self.storage.export_book(book, db_file)
            result = repo.sync_book(some_rook.url, current, db_file)
            # Only reload when the merge changed what we sent
            if result.load_file is not None:
                try:
                    repository_path = get_repo_relative_path(repo.url, result.new_rook.url)
                    book_name = BookName.from_repo_relative_path(repository_path)
                except ValueError as e:
                    raise SyncError(f"Cannot load merged revision {result.new_rook.url}: {e}") from e
                log_debug(f"Loading from file '{result.load_file}'", logger=self.logger)
                self.storage.load_book_from_file(
                    book_name.name,
                    book_name.format,
                    Path(result.load_file),
                    result.new_rook,
                )
        finally:
            Path(db_file).unlink(missing_ok=True)

        self.storage.update_book_link_and_sync(book.id, result.new_rook)
        return result.merged


def reconcile_all(
    storage: LocalStorage,
    repos: Optional[Sequence[SyncRepo]] = None,
    *,
    reuse_unchanged: bool = True,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, BookAction]:
    """Run one sync cycle; see :meth:`SyncEngine.reconcile_all`."""
    engine = SyncEngine(storage, reuse_unchanged=reuse_unchanged, logger=logger)
    return engine.reconcile_all(repos)
