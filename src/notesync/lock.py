from __future__ import annotations

import os
import time
from pathlib import Path


class StateLock:
    """File-based advisory lock guarding the storage state file.

    A lock older than ``ttl`` seconds is considered abandoned and broken.

    Environment variables (optional):
    - NOTESYNC_LOCK_TTL: seconds to consider a lock stale
    - NOTESYNC_LOCK_POLL: polling interval in seconds while waiting
    """

    def __init__(self, path: Path, *, ttl: int | None = None, timeout: float | None = 10.0):
        self.path = Path(path)
        self.ttl = ttl if ttl is not None else int(os.getenv("NOTESYNC_LOCK_TTL", "30"))
        self.poll = float(os.getenv("NOTESYNC_LOCK_POLL", "0.05"))
        self.timeout = timeout
        self.acquired = False

    def _is_stale(self) -> bool:
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return False
        return (time.time() - mtime) > self.ttl

    def holder_pid(self) -> int | None:
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        if not content.startswith("pid="):
            return None
        try:
            return int(content.split()[0].split("=", 1)[1])
        except ValueError:
            return None

    def acquire(self) -> bool:
        start = time.time()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        while True:
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if self.ttl > 0 and self._is_stale():
                    try:
                        self.path.unlink()
                    except FileNotFoundError:
                        pass
                    continue
                if self.timeout is not None and (time.time() - start) >= self.timeout:
                    return False
                time.sleep(self.poll)
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(f"pid={os.getpid()} time={time.time():.0f}\n")
            self.acquired = True
            return True

    def release(self) -> None:
        if self.acquired:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            self.acquired = False

    def __enter__(self):
        if not self.acquire():
            raise TimeoutError(
                f"Failed to acquire lock {self.path} within timeout (held by pid {self.holder_pid()})"
            )
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
