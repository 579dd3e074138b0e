"""Exceptions raised by the sync engine."""


class SyncError(Exception):
    """Base exception for sync cycle failures."""


class CollectionError(SyncError):
    """Listing a repository failed; the whole cycle is aborted."""

    def __init__(self, message: str, repo_url: str):
        self.repo_url = repo_url
        super().__init__(message)


class MergeConflictError(SyncError):
    """A two-way merge left conflicts; local content was set aside.

    Terminal for one notebook only. Sibling notebooks keep syncing.
    """

    def __init__(self, message: str, name: str, branch: str | None = None):
        self.name = name
        self.branch = branch
        super().__init__(message)
