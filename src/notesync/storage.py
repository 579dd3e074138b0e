"""File-based local notebook storage.

Layout under the storage root::

    notebooks/<name>.<ext>      notebook content
    notebooks/.backups/         previous content replaced by remote loads
    .notesync/state.json        repositories, links, synced revisions
    .notesync/state.lock        advisory lock for state updates
    .notesync/repos/<id>/       backend working copies (git clones)
    .notesync/tmp/              scoped temporary files

A notebook counts as modified when its content hash differs from the hash
recorded when it was last synced. Notebooks that were never synced are
modified by definition.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol

from .config_schema import NotesyncConfig
from .fs import backup_file, read, read_json, write, write_json
from .lock import StateLock
from .models import BookAction, Notebook, RemoteRevision, Repository
from .naming import FORMAT_EXTENSIONS, DEFAULT_FORMAT, BookName, get_repo_relative_path, repo_relative_path, sanitize_name
from .observability import get_logger, log_debug, log_warning
from .repos import SyncRepo
from .repos.registry import create_repo


STATE_DIR = ".notesync"
STATE_FILE = "state.json"
NOTEBOOKS_DIR = "notebooks"


class StorageError(Exception):
    """Local storage is missing, corrupt or inconsistent."""


class LocalStorage(Protocol):
    """Operations the sync engine needs from local storage."""

    def get_books(self) -> List[Notebook]: ...

    def get_repos(self) -> List[Repository]: ...

    def get_sync_repos(self) -> List[SyncRepo]: ...

    def get_repo_instance(self, repo_id: int, kind: str, url: str) -> SyncRepo: ...

    def create_dummy_book(self, name: str) -> Notebook: ...

    def set_link(self, book_id: int, repo: Optional[Repository]) -> None: ...

    def remove_book_synced_to(self, book_id: int) -> None: ...

    def update_book_link_and_sync(self, book_id: int, rook: RemoteRevision) -> None: ...

    def set_last_action(self, book_id: int, action: BookAction) -> None: ...

    def get_temp_book_file(self) -> Path: ...

    def export_book(self, book: Notebook, file: Path) -> None: ...

    def save_book_to_repo(self, repo: Repository, repo_relative: str, book: Notebook) -> RemoteRevision: ...

    def load_book_from_repo(self, rook: RemoteRevision) -> Notebook: ...

    def load_book_from_file(
        self, name: str, format: str, file: Path, rook: Optional[RemoteRevision] = None
    ) -> Notebook: ...


def _content_hash(path: Path) -> Optional[str]:
    if not path.exists():
        return None
    return hashlib.sha1(path.read_bytes()).hexdigest()


def _empty_state() -> Dict[str, Any]:
    return {"version": 1, "next_book_id": 1, "next_repo_id": 1, "repos": [], "books": {}}


class FileStorage:
    """Local storage engine consumed by the sync engine.

    Args:
        root: Storage root directory (created if missing)
        config: Loaded configuration; defaults when None
        logger: Diagnostic sink; defaults to the package logger
    """

    def __init__(
        self,
        root: Path,
        *,
        config: Optional[NotesyncConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.root = Path(root)
        self.config = config or NotesyncConfig.default()
        self.logger = logger or get_logger()
        self.notebooks_dir = self.root / NOTEBOOKS_DIR
        self.state_dir = self.root / STATE_DIR
        self.state_path = self.state_dir / STATE_FILE
        self.tmp_dir = self.state_dir / "tmp"
        self.repos_dir = self.state_dir / "repos"
        self._repo_instances: Dict[int, SyncRepo] = {}
        self.notebooks_dir.mkdir(parents=True, exist_ok=True)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # State persistence
    # ------------------------------------------------------------------

    def _load_state(self) -> Dict[str, Any]:
        try:
            state = read_json(self.state_path, default=None)
        except ValueError as e:
            raise StorageError(f"Corrupt state file {self.state_path}: {e}") from e
        return state if state is not None else _empty_state()

    @contextmanager
    def _mutate(self) -> Iterator[Dict[str, Any]]:
        with StateLock(self.state_dir / "state.lock"):
            state = self._load_state()
            yield state
            write_json(self.state_path, state)

    def _book_file(self, name: str, format: str) -> Path:
        return self.notebooks_dir / repo_relative_path(name, format)

    def _entry_by_id(self, state: Dict[str, Any], book_id: int) -> tuple[str, Dict[str, Any]]:
        for name, entry in state["books"].items():
            if entry["id"] == book_id:
                return name, entry
        raise StorageError(f"Notebook {book_id} does not exist")

    def _scan_files(self) -> Dict[str, Path]:
        found: Dict[str, Path] = {}
        for path in sorted(self.notebooks_dir.iterdir()):
            if not path.is_file() or path.name.startswith("."):
                continue
            try:
                book_name = BookName.from_repo_relative_path(path.name)
            except ValueError:
                continue
            if book_name.name in found:
                log_warning(
                    f"Ignoring {path.name}: notebook '{book_name.name}' already stored as {found[book_name.name].name}",
                    logger=self.logger,
                )
                continue
            found[book_name.name] = path
        return found

    def _reconcile_files(self, state: Dict[str, Any]) -> None:
        """Register notebook files created outside the engine and forget deleted ones."""
        files = self._scan_files()
        books = state["books"]
        for name, path in files.items():
            entry = books.get(name)
            fmt = BookName.from_repo_relative_path(path.name).format
            if entry is None:
                books[name] = self._new_entry(state, fmt)
                log_debug(f"Registered local notebook {path.name}", logger=self.logger)
            else:
                entry["format"] = fmt
                entry["dummy"] = False
        for name in [n for n, e in books.items() if n not in files and not e.get("dummy")]:
            log_debug(f"Forgetting deleted notebook {name}", logger=self.logger)
            del books[name]

    def _new_entry(self, state: Dict[str, Any], fmt: str, *, dummy: bool = False) -> Dict[str, Any]:
        book_id = state["next_book_id"]
        state["next_book_id"] = book_id + 1
        return {
            "id": book_id,
            "format": fmt,
            "dummy": dummy,
            "link_repo_id": None,
            "synced_to": None,
            "synced_hash": None,
            "last_action": None,
        }

    def _to_notebook(self, state: Dict[str, Any], name: str, entry: Dict[str, Any]) -> Notebook:
        repos = {r["id"]: Repository.from_payload(r) for r in state["repos"]}
        link = repos.get(entry["link_repo_id"]) if entry["link_repo_id"] is not None else None
        synced = RemoteRevision.from_payload(entry["synced_to"]) if entry["synced_to"] else None
        last_action = BookAction.from_payload(entry["last_action"]) if entry["last_action"] else None
        is_modified = False
        if not entry["dummy"]:
            current = _content_hash(self._book_file(name, entry["format"]))
            is_modified = entry["synced_hash"] is None or current != entry["synced_hash"]
        return Notebook(
            id=entry["id"],
            name=name,
            format=entry["format"],
            is_dummy=entry["dummy"],
            is_modified=is_modified,
            link=link,
            synced_to=synced,
            last_action=last_action,
        )

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    def get_repos(self) -> List[Repository]:
        return [Repository.from_payload(r) for r in self._load_state()["repos"]]

    def add_repo(self, url: str, kind: str) -> Repository:
        url = url.rstrip("/")
        with self._mutate() as state:
            for existing in state["repos"]:
                if existing["url"] == url:
                    raise StorageError(f"Repository {url} is already configured")
            repo = Repository(id=state["next_repo_id"], url=url, kind=kind)
            state["next_repo_id"] = repo.id + 1
            state["repos"].append(repo.to_payload())
        return repo

    def remove_repo(self, repo_id: int) -> None:
        """Remove a repository and every link pointing to it."""
        with self._mutate() as state:
            before = len(state["repos"])
            state["repos"] = [r for r in state["repos"] if r["id"] != repo_id]
            if len(state["repos"]) == before:
                raise StorageError(f"Repository {repo_id} does not exist")
            for entry in state["books"].values():
                if entry["link_repo_id"] == repo_id:
                    entry["link_repo_id"] = None
                    entry["synced_to"] = None
                    entry["synced_hash"] = None
        self._repo_instances.pop(repo_id, None)
        shutil.rmtree(self.repos_dir / str(repo_id), ignore_errors=True)

    def get_repo_instance(self, repo_id: int, kind: str, url: str) -> SyncRepo:
        instance = self._repo_instances.get(repo_id)
        if instance is None:
            instance = create_repo(Repository(id=repo_id, url=url, kind=kind), self.repos_dir, self.config)
            self._repo_instances[repo_id] = instance
        return instance

    def get_sync_repos(self) -> List[SyncRepo]:
        return [self.get_repo_instance(r.id, r.kind, r.url) for r in self.get_repos()]

    # ------------------------------------------------------------------
    # Notebooks
    # ------------------------------------------------------------------

    def get_books(self) -> List[Notebook]:
        with self._mutate() as state:
            self._reconcile_files(state)
            return [self._to_notebook(state, name, entry) for name, entry in sorted(state["books"].items())]

    def get_book(self, name: str) -> Optional[Notebook]:
        for book in self.get_books():
            if book.name == name:
                return book
        return None

    def create_book(self, name: str, content: str = "", format: str = DEFAULT_FORMAT) -> Notebook:
        if format not in FORMAT_EXTENSIONS:
            raise StorageError(f"Unsupported notebook format: {format}")
        if sanitize_name(name, default="") != name:
            raise StorageError(f"Invalid notebook name: {name!r}")
        with self._mutate() as state:
            self._reconcile_files(state)
            entry = state["books"].get(name)
            if entry is not None and not entry["dummy"]:
                raise StorageError(f"Notebook '{name}' already exists")
            if entry is None:
                entry = self._new_entry(state, format)
                state["books"][name] = entry
            entry["format"] = format
            entry["dummy"] = False
            write(self._book_file(name, format), content)
            return self._to_notebook(state, name, entry)

    def read_book(self, name: str) -> str:
        book = self.get_book(name)
        if book is None:
            raise StorageError(f"Notebook '{name}' does not exist")
        if book.is_dummy:
            return ""
        return read(self._book_file(name, book.format))

    def write_book(self, name: str, content: str) -> None:
        book = self.get_book(name)
        if book is None or book.is_dummy:
            raise StorageError(f"Notebook '{name}' does not exist")
        write(self._book_file(name, book.format), content)

    def create_dummy_book(self, name: str) -> Notebook:
        """Create a placeholder for a name that only exists remotely."""
        with self._mutate() as state:
            entry = state["books"].get(name)
            if entry is None:
                entry = self._new_entry(state, DEFAULT_FORMAT, dummy=True)
                state["books"][name] = entry
            return self._to_notebook(state, name, entry)

    def set_link(self, book_id: int, repo: Optional[Repository]) -> None:
        with self._mutate() as state:
            _, entry = self._entry_by_id(state, book_id)
            entry["link_repo_id"] = repo.id if repo is not None else None

    def remove_book_synced_to(self, book_id: int) -> None:
        with self._mutate() as state:
            _, entry = self._entry_by_id(state, book_id)
            entry["synced_to"] = None
            entry["synced_hash"] = None

    def update_book_link_and_sync(self, book_id: int, rook: RemoteRevision) -> None:
        """Link the notebook to the revision's repository and record it as synced."""
        with self._mutate() as state:
            name, entry = self._entry_by_id(state, book_id)
            entry["link_repo_id"] = rook.repo_id
            entry["synced_to"] = rook.to_payload()
            entry["synced_hash"] = _content_hash(self._book_file(name, entry["format"]))

    def set_last_action(self, book_id: int, action: BookAction) -> None:
        with self._mutate() as state:
            _, entry = self._entry_by_id(state, book_id)
            entry["last_action"] = action.to_payload()

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def get_temp_book_file(self) -> Path:
        """Allocate a temporary file; the caller deletes it."""
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix="book-", suffix=".tmp", dir=self.tmp_dir)
        os.close(fd)
        return Path(name)

    def export_book(self, book: Notebook, file: Path) -> None:
        """Write the notebook's current content to ``file``."""
        if book.is_dummy:
            file.write_bytes(b"")
            return
        shutil.copyfile(self._book_file(book.name, book.format), file)

    def save_book_to_repo(
        self,
        repo: Repository,
        repo_relative: str,
        book: Notebook,
    ) -> RemoteRevision:
        """Upload the notebook and record the resulting revision as synced."""
        instance = self.get_repo_instance(repo.id, repo.kind, repo.url)
        tmp = self.get_temp_book_file()
        try:
            self.export_book(book, tmp)
            rook = instance.store_book(tmp, repo_relative)
        finally:
            tmp.unlink(missing_ok=True)
        self.update_book_link_and_sync(book.id, rook)
        return rook

    def load_book_from_repo(self, rook: RemoteRevision) -> Notebook:
        """Download a revision into local storage and record it as synced."""
        instance = self.get_repo_instance(rook.repo_id, rook.repo_kind, rook.repo_url)
        relative = get_repo_relative_path(rook.repo_url, rook.url)
        book_name = BookName.from_repo_relative_path(relative)
        tmp = self.get_temp_book_file()
        try:
            fetched = instance.retrieve_book(relative, tmp)
            return self.load_book_from_file(book_name.name, book_name.format, tmp, fetched)
        finally:
            tmp.unlink(missing_ok=True)

    def load_book_from_file(
        self,
        name: str,
        format: str,
        file: Path,
        rook: Optional[RemoteRevision] = None,
    ) -> Notebook:
        """Replace a notebook's content with ``file``.

        Existing content is backed up first. When ``rook`` is given the
        notebook is linked to its repository and marked as synced to it.
        """
        target = self._book_file(name, format)
        with self._mutate() as state:
            entry = state["books"].get(name)
            if entry is None:
                entry = self._new_entry(state, format)
                state["books"][name] = entry
            elif not entry["dummy"]:
                previous = self._book_file(name, entry["format"])
                backup_file(previous, keep=self.config.sync.backups_keep)
                if previous != target:
                    previous.unlink(missing_ok=True)
            shutil.copyfile(file, target)
            entry["format"] = format
            entry["dummy"] = False
            if rook is not None:
                entry["link_repo_id"] = rook.repo_id
                entry["synced_to"] = rook.to_payload()
                entry["synced_hash"] = _content_hash(target)
            return self._to_notebook(state, name, entry)
