"""Plain directory repository (one-way)."""

from __future__ import annotations

import hashlib
import shutil
from pathlib import Path
from typing import List

from ..models import RemoteRevision, Repository
from ..naming import is_supported, join_url
from . import RepoError, RepoNotFoundError


def _content_revision(path: Path) -> str:
    digest = hashlib.sha1()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def path_from_file_url(url: str) -> Path:
    if url.startswith("file://"):
        return Path(url[len("file://"):])
    return Path(url)


class DirectoryRepo:
    """Notebooks stored as files in a local (or mounted) directory.

    The revision marker is the SHA-1 of the file content, so touching a file
    without changing it does not count as a remote change.
    """

    kind = "dir"

    def __init__(self, repo: Repository, *, create: bool = False):
        self.repo_id = repo.id
        self._url = repo.url.rstrip("/")
        self.root = path_from_file_url(self._url)
        if create:
            self.root.mkdir(parents=True, exist_ok=True)

    @property
    def url(self) -> str:
        return self._url

    def _ensure_root(self) -> None:
        if not self.root.is_dir():
            raise RepoNotFoundError(f"Repository directory does not exist: {self.root}")

    def _rook(self, relative: str, path: Path) -> RemoteRevision:
        return RemoteRevision(
            repo_id=self.repo_id,
            repo_kind=self.kind,
            repo_url=self._url,
            url=join_url(self._url, relative),
            revision=_content_revision(path),
            mtime=path.stat().st_mtime,
        )

    def get_books(self) -> List[RemoteRevision]:
        self._ensure_root()
        result: List[RemoteRevision] = []
        for path in sorted(self.root.rglob("*")):
            if not path.is_file():
                continue
            relative = path.relative_to(self.root).as_posix()
            # Skip hidden files and directories (.git, .backups, ...)
            if any(part.startswith(".") for part in relative.split("/")):
                continue
            if not is_supported(relative):
                continue
            result.append(self._rook(relative, path))
        return result

    def retrieve_book(self, repo_relative_path: str, destination: Path) -> RemoteRevision:
        self._ensure_root()
        source = self.root / repo_relative_path
        if not source.is_file():
            raise RepoError(f"Notebook {repo_relative_path} not found in {self._url}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, destination)
        return self._rook(repo_relative_path, source)

    def store_book(self, source: Path, repo_relative_path: str) -> RemoteRevision:
        self._ensure_root()
        target = self.root / repo_relative_path
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(f".{target.name}.tmp")
        shutil.copyfile(source, tmp)
        tmp.replace(target)
        return self._rook(repo_relative_path, target)

    def __repr__(self) -> str:
        return f"DirectoryRepo(id={self.repo_id}, url={self._url!r})"
