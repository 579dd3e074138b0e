"""Notesync: keep local notebooks in sync with one or more repositories."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("notesync")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .engine import SyncEngine, reconcile_all  # noqa: F401
from .exceptions import CollectionError, MergeConflictError, SyncError  # noqa: F401
from .models import ActionType, BookAction, Notebook, RemoteRevision, Repository  # noqa: F401
from .status import SyncStatus, classify  # noqa: F401
from .storage import FileStorage  # noqa: F401

__all__ = [
    "SyncEngine",
    "reconcile_all",
    "CollectionError",
    "MergeConflictError",
    "SyncError",
    "ActionType",
    "BookAction",
    "Notebook",
    "RemoteRevision",
    "Repository",
    "SyncStatus",
    "classify",
    "FileStorage",
    "__version__",
]
