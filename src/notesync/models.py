"""Core records shared by the sync engine, storage and repository backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ActionType(str, Enum):
    """Severity of a per-notebook sync outcome."""

    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class BookAction:
    """Outcome of processing one namesake during a sync cycle."""

    type: ActionType
    message: str
    timestamp: str = field(default_factory=_now_iso)

    @classmethod
    def for_now(cls, type: ActionType, message: str) -> "BookAction":
        return cls(type=type, message=message, timestamp=_now_iso())

    @property
    def is_error(self) -> bool:
        return self.type is ActionType.ERROR

    def to_payload(self) -> dict:
        return {
            "type": self.type.value,
            "message": self.message,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "BookAction":
        return cls(
            type=ActionType(payload.get("type", ActionType.INFO.value)),
            message=payload.get("message", ""),
            timestamp=payload.get("timestamp") or _now_iso(),
        )


@dataclass(frozen=True)
class Repository:
    """A configured sync target."""

    id: int
    url: str
    kind: str

    def to_payload(self) -> dict:
        return {"id": self.id, "url": self.url, "kind": self.kind}

    @classmethod
    def from_payload(cls, payload: dict) -> "Repository":
        return cls(id=int(payload["id"]), url=payload["url"], kind=payload["kind"])


@dataclass(frozen=True)
class RemoteRevision:
    """An observed, versioned copy of a notebook inside one repository.

    ``revision`` is the backend's version marker (content hash, commit SHA).
    Two revisions of the same file compare equal only when the marker matches.
    """

    repo_id: int
    repo_kind: str
    repo_url: str
    url: str
    revision: str
    mtime: float = 0.0

    def to_payload(self) -> dict:
        return {
            "repo_id": self.repo_id,
            "repo_kind": self.repo_kind,
            "repo_url": self.repo_url,
            "url": self.url,
            "revision": self.revision,
            "mtime": self.mtime,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "RemoteRevision":
        return cls(
            repo_id=int(payload["repo_id"]),
            repo_kind=payload["repo_kind"],
            repo_url=payload["repo_url"],
            url=payload["url"],
            revision=payload["revision"],
            mtime=float(payload.get("mtime", 0.0)),
        )


@dataclass
class Notebook:
    """Local view of a notebook as the engine sees it.

    Attributes:
        id: Storage identity
        name: Logical notebook name (file name without extension)
        format: Notebook file format ("org", "md", "txt")
        is_dummy: Placeholder created for a name that only exists remotely
        is_modified: Local content changed since the last sync
        link: Repository the notebook syncs to, if any
        synced_to: Remote revision the notebook was last reconciled against
        last_action: Outcome recorded by the previous sync cycle
    """

    id: int
    name: str
    format: str = "org"
    is_dummy: bool = False
    is_modified: bool = False
    link: Optional[Repository] = None
    synced_to: Optional[RemoteRevision] = None
    last_action: Optional[BookAction] = None

    def has_link(self) -> bool:
        return self.link is not None

    def has_sync(self) -> bool:
        return self.synced_to is not None
