"""Sync status classification for a single notebook name.

Every sync cycle computes exactly one :class:`SyncStatus` per namesake from
the local notebook (or placeholder), the remote revisions observed for that
name, and the number of configured repositories. Classification is pure: it
never touches storage or repositories, and never looks at other namesakes.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence

from .models import ActionType, Notebook, RemoteRevision


class ActionFamily(str, Enum):
    """What the dispatcher does for a status."""

    NO_CHANGE = "no-change"
    ERROR = "error"
    UNLINK = "unlink"
    LOAD = "load"
    SAVE = "save"


class SyncStatus(Enum):
    """Closed set of per-namesake sync states."""

    def __new__(cls, family: ActionFamily, template: str):
        obj = object.__new__(cls)
        obj._value_ = len(cls.__members__) + 1
        obj.family = family
        obj.template = template
        return obj

    NO_CHANGE = (ActionFamily.NO_CHANGE, "No change")

    BOOK_WITHOUT_LINK_AND_ONE_OR_MORE_ROOKS_EXIST = (
        ActionFamily.ERROR,
        "Notebook has no link and one or more remote notebooks with the same name exist",
    )
    DUMMY_WITHOUT_LINK_AND_MULTIPLE_ROOKS = (
        ActionFamily.ERROR,
        "Notebook has no link and multiple remote notebooks with the same name exist",
    )
    NO_BOOK_MULTIPLE_ROOKS = (
        ActionFamily.ERROR,
        "There are multiple remote notebooks with the same name",
    )
    ONLY_BOOK_WITHOUT_LINK_AND_MULTIPLE_REPOS = (
        ActionFamily.ERROR,
        "Notebook has no link and multiple repositories exist",
    )
    BOOK_WITH_LINK_AND_ROOK_EXISTS_BUT_LINK_POINTING_TO_DIFFERENT_ROOK = (
        ActionFamily.ERROR,
        "Notebook has link and remote notebook with the same name exists, "
        "but link is pointing to a different repository",
    )
    CONFLICT_BOTH_BOOK_AND_ROOK_MODIFIED = (
        ActionFamily.ERROR,
        "Both local and remote notebook have been modified",
    )
    CONFLICT_BOOK_WITH_LINK_AND_ROOK_BUT_NEVER_SYNCED_BEFORE = (
        ActionFamily.ERROR,
        "Link and remote notebook exist but notebook has never been synced",
    )
    CONFLICT_LAST_SYNCED_ROOK_AND_LATEST_ROOK_ARE_DIFFERENT = (
        ActionFamily.ERROR,
        "Last synced notebook and latest remote notebook differ",
    )
    ROOK_AND_VROOK_HAVE_DIFFERENT_REPOS = (
        ActionFamily.ERROR,
        "Linked and synced notebooks are in different repositories",
    )
    ONLY_DUMMY = (ActionFamily.ERROR, "Only local placeholder exists")
    BOOK_WITH_PREVIOUS_ERROR_AND_NO_LINK = (
        ActionFamily.ERROR,
        "Notebook has a previous error and no link",
    )

    ROOK_NO_LONGER_EXISTS = (
        ActionFamily.UNLINK,
        "Remote notebook no longer exists; link removed",
    )

    NO_BOOK_ONE_ROOK = (ActionFamily.LOAD, "Loaded from {0}")
    DUMMY_WITHOUT_LINK_AND_ONE_ROOK = (ActionFamily.LOAD, "Loaded from {0}")
    DUMMY_WITH_LINK = (ActionFamily.LOAD, "Loaded from {0}")
    BOOK_WITH_LINK_AND_ROOK_MODIFIED = (ActionFamily.LOAD, "Loaded from {0}")

    ONLY_BOOK_WITHOUT_LINK_AND_ONE_REPO = (ActionFamily.SAVE, "Saved to {0}")
    BOOK_WITH_LINK_LOCAL_MODIFIED = (ActionFamily.SAVE, "Saved to {0}")
    ONLY_BOOK_WITH_LINK = (ActionFamily.SAVE, "Saved to {0}")

    @property
    def action_type(self) -> ActionType:
        if self.family in (ActionFamily.ERROR, ActionFamily.UNLINK):
            return ActionType.ERROR
        return ActionType.INFO

    def msg(self, arg: object = None) -> str:
        if "{0}" in self.template:
            return self.template.format(arg if arg is not None else "")
        if arg is not None:
            return f"{self.template} ({arg})"
        return self.template


def find_latest_linked_rook(
    book: Notebook, rooks: Sequence[RemoteRevision]
) -> Optional[RemoteRevision]:
    """Return the revision that lives in the repository the book is linked to."""
    if book.link is None:
        return None
    for rook in rooks:
        if rook.repo_url == book.link.url:
            return rook
    return None


def classify(
    book: Optional[Notebook],
    rooks: Sequence[RemoteRevision],
    repo_count: int,
) -> tuple[SyncStatus, Optional[RemoteRevision]]:
    """Compute the sync status of one namesake.

    Args:
        book: Local notebook, a placeholder, or None when only remote copies exist
        rooks: Remote revisions observed this cycle for the notebook name
        repo_count: Number of configured repositories

    Returns:
        Tuple of (status, latest linked revision or None)

    Raises:
        ValueError: If neither a local notebook nor any remote revision exists
    """
    if book is None:
        if not rooks:
            raise ValueError("Both local and remote notebooks are absent")
        if len(rooks) == 1:
            return SyncStatus.NO_BOOK_ONE_ROOK, None
        return SyncStatus.NO_BOOK_MULTIPLE_ROOKS, None

    if book.is_dummy:
        if not rooks:
            if book.has_link():
                return SyncStatus.ROOK_NO_LONGER_EXISTS, None
            return SyncStatus.ONLY_DUMMY, None
        if book.has_link():
            linked = find_latest_linked_rook(book, rooks)
            if linked is None:
                return SyncStatus.BOOK_WITH_LINK_AND_ROOK_EXISTS_BUT_LINK_POINTING_TO_DIFFERENT_ROOK, None
            return SyncStatus.DUMMY_WITH_LINK, linked
        if len(rooks) == 1:
            return SyncStatus.DUMMY_WITHOUT_LINK_AND_ONE_ROOK, None
        return SyncStatus.DUMMY_WITHOUT_LINK_AND_MULTIPLE_ROOKS, None

    if not rooks:
        if book.has_link():
            if book.has_sync():
                return SyncStatus.ROOK_NO_LONGER_EXISTS, None
            return SyncStatus.ONLY_BOOK_WITH_LINK, None
        if book.last_action is not None and book.last_action.is_error:
            return SyncStatus.BOOK_WITH_PREVIOUS_ERROR_AND_NO_LINK, None
        if repo_count > 1:
            return SyncStatus.ONLY_BOOK_WITHOUT_LINK_AND_MULTIPLE_REPOS, None
        return SyncStatus.ONLY_BOOK_WITHOUT_LINK_AND_ONE_REPO, None

    if not book.has_link():
        return SyncStatus.BOOK_WITHOUT_LINK_AND_ONE_OR_MORE_ROOKS_EXIST, None

    linked = find_latest_linked_rook(book, rooks)
    if linked is None:
        return SyncStatus.BOOK_WITH_LINK_AND_ROOK_EXISTS_BUT_LINK_POINTING_TO_DIFFERENT_ROOK, None

    synced = book.synced_to
    if synced is None:
        return SyncStatus.CONFLICT_BOOK_WITH_LINK_AND_ROOK_BUT_NEVER_SYNCED_BEFORE, linked

    if synced.repo_url != linked.repo_url:
        return SyncStatus.ROOK_AND_VROOK_HAVE_DIFFERENT_REPOS, linked
    if synced.url != linked.url:
        return SyncStatus.CONFLICT_LAST_SYNCED_ROOK_AND_LATEST_ROOK_ARE_DIFFERENT, linked

    if synced.revision == linked.revision:
        if book.is_modified:
            return SyncStatus.BOOK_WITH_LINK_LOCAL_MODIFIED, linked
        return SyncStatus.NO_CHANGE, linked

    if book.is_modified:
        return SyncStatus.CONFLICT_BOTH_BOOK_AND_ROOK_MODIFIED, linked
    return SyncStatus.BOOK_WITH_LINK_AND_ROOK_MODIFIED, linked
