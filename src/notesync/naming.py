"""Notebook names, formats and repository-relative paths."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath


FORMAT_EXTENSIONS = {
    "org": ".org",
    "md": ".md",
    "txt": ".txt",
}
DEFAULT_FORMAT = "org"

_EXTENSION_FORMATS = {ext: fmt for fmt, ext in FORMAT_EXTENSIONS.items()}
_SANITIZE_PATTERN = re.compile(r"[^A-Za-z0-9._ -]+")


def sanitize_name(value: str, *, default: str = "notebook") -> str:
    value = value.strip()
    if not value:
        return default
    sanitized = _SANITIZE_PATTERN.sub("-", value)
    sanitized = sanitized.strip("-. ")
    return sanitized or default


def is_supported(path: str) -> bool:
    suffix = PurePosixPath(path).suffix.lower()
    return suffix in _EXTENSION_FORMATS


def repo_relative_path(name: str, format: str = DEFAULT_FORMAT) -> str:
    try:
        ext = FORMAT_EXTENSIONS[format]
    except KeyError:
        raise ValueError(f"Unsupported notebook format: {format}")
    return f"{name}{ext}"


def get_repo_relative_path(repo_url: str, revision_url: str) -> str:
    """Strip the repository URL from a revision URL.

    Example:
        get_repo_relative_path("file:///tmp/repo", "file:///tmp/repo/sub/todo.org")
        -> "sub/todo.org"
    """
    base = repo_url.rstrip("/")
    if revision_url == base:
        return ""
    if not revision_url.startswith(base + "/"):
        raise ValueError(f"{revision_url} is not inside repository {repo_url}")
    return revision_url[len(base):].lstrip("/")


def join_url(repo_url: str, repo_relative: str) -> str:
    return f"{repo_url.rstrip('/')}/{repo_relative.lstrip('/')}"


@dataclass(frozen=True)
class BookName:
    """Notebook name and format derived from a file path."""

    name: str
    format: str

    @property
    def file_name(self) -> str:
        return repo_relative_path(self.name, self.format)

    @classmethod
    def from_repo_relative_path(cls, path: str) -> "BookName":
        """Build a name from a repository-relative path such as ``sub/todo.org``.

        Directories are dropped; the name is the file stem.

        Raises:
            ValueError: If the extension is not a supported notebook format
        """
        pure = PurePosixPath(path)
        fmt = _EXTENSION_FORMATS.get(pure.suffix.lower())
        if fmt is None or not pure.stem:
            raise ValueError(f"Not a notebook file: {path}")
        return cls(name=pure.stem, format=fmt)

    @classmethod
    def from_url(cls, repo_url: str, revision_url: str) -> "BookName":
        return cls.from_repo_relative_path(get_repo_relative_path(repo_url, revision_url))
