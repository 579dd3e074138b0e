from __future__ import annotations

import json
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def read(p: Path) -> str:
    return p.read_text(encoding="utf-8")


def write(p: Path, s: str) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(s, encoding="utf-8")


def write_atomic(p: Path, data: bytes) -> None:
    """Write bytes through a sibling temp file and rename into place."""
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_name(f".{p.name}.tmp")
    try:
        tmp.write_bytes(data)
        tmp.replace(p)
    finally:
        if tmp.exists():
            tmp.unlink()


def read_json(p: Path, default: Any = None) -> Any:
    if not p.exists():
        return default
    with p.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def write_json(p: Path, payload: Any) -> None:
    write_atomic(p, (json.dumps(payload, indent=2, sort_keys=True) + "\n").encode("utf-8"))


def _now_ts() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")


def backup_file(p: Path, keep: int = 3) -> Path | None:
    """Copy ``p`` into ``.backups`` next to it, keeping the newest ``keep`` copies."""
    if not p.exists() or keep <= 0:
        return None
    backups_dir = p.parent / ".backups"
    backups_dir.mkdir(parents=True, exist_ok=True)
    ts = _now_ts()
    # ensure uniqueness even within same second
    dest = backups_dir / f"{p.stem}.{ts}{p.suffix}"
    i = 1
    while dest.exists():
        dest = backups_dir / f"{p.stem}.{ts}.{i}{p.suffix}"
        i += 1
    shutil.copyfile(p, dest)
    bks = [x for x in backups_dir.glob(f"{p.stem}.*{p.suffix}") if x.is_file()]
    bks.sort(key=lambda x: (x.stat().st_mtime, x.name), reverse=True)
    for old in bks[keep:]:
        try:
            old.unlink()
        except OSError:
            pass
    return dest
