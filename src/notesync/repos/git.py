"""Git repository backend with native two-way merge.

The backend keeps a working clone of the remote under the storage directory
and syncs one branch. Every write is committed and pushed immediately, so the
local branch only ever trails ``origin/<branch>`` and can be reset to it
before each operation.

Revision marker: SHA of the last commit on the branch that touched the file.
Commits to other notebooks do not change a notebook's revision.

The remote head seen by the last full listing is kept under the
``refs/notesync/listed`` ref of the clone; the branch itself moves with every
write and cannot tell whether a listing is still current.
"""

from __future__ import annotations

import os
import shutil
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import git
from git import Actor, GitCommandError, InvalidGitRepositoryError, NoSuchPathError, PushInfo, Repo

from ..models import RemoteRevision, Repository
from ..naming import get_repo_relative_path, is_supported, join_url
from ..observability import log_debug, log_warning
from . import RepoError, RepoNotFoundError, SyncBookResult


_PUSH_FAILURE_FLAGS = PushInfo.ERROR | PushInfo.REJECTED | PushInfo.REMOTE_REJECTED
_LISTED_REF = "refs/notesync/listed"


class GitRepo:
    """Two-way sync repository backed by a remote git repository.

    Attributes:
        repo_id: Storage identity of the configured repository
        work_dir: Path of the local working clone
    """

    kind = "git"

    def __init__(
        self,
        repo: Repository,
        work_dir: Path,
        *,
        branch: str = "main",
        author_name: str = "notesync",
        author_email: str = "notesync@localhost",
        conflict_branch_prefix: str = "notesync/conflict",
    ):
        self.repo_id = repo.id
        self._url = repo.url.rstrip("/")
        self.work_dir = Path(work_dir)
        self._branch = branch
        self._actor = Actor(author_name, author_email)
        self._conflict_prefix = conflict_branch_prefix

        # Fail fast instead of prompting for credentials
        self._env = {
            "GIT_TERMINAL_PROMPT": "0",
            "GCM_INTERACTIVE": "never",
            "GIT_ASKPASS": os.environ.get("GIT_ASKPASS", "echo"),
        }
        if self._url.startswith("git@") or self._url.startswith("ssh://"):
            self._env["GIT_SSH_COMMAND"] = os.environ.get(
                "GIT_SSH_COMMAND", "ssh -o BatchMode=yes"
            )

        self._repo = self._setup()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _setup(self) -> Repo:
        if (self.work_dir / ".git").exists():
            try:
                repo = Repo(self.work_dir)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise RepoNotFoundError(f"Not a git repository: {self.work_dir}") from e
        else:
            self.work_dir.parent.mkdir(parents=True, exist_ok=True)
            log_debug(f"GIT_OP_START: clone {self._url}")
            try:
                repo = Repo.clone_from(self._url, self.work_dir, env=self._env)
            except GitCommandError as e:
                raise RepoNotFoundError(f"Failed to clone {self._url}: {e}") from e
            log_debug("GIT_OP_END: clone")
        repo.git.update_environment(**self._env)
        with repo.config_writer() as cw:
            cw.set_value("user", "name", self._actor.name)
            cw.set_value("user", "email", self._actor.email)
        return repo

    # ------------------------------------------------------------------
    # Protocol surface
    # ------------------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def current_branch(self) -> str:
        return self._branch

    def is_unchanged(self) -> bool:
        """Return True when ``origin/<branch>`` is still the head seen by the last full listing."""
        with self._git_errors("check"):
            self._fetch()
            remote = self._remote_commit()
            if remote is None:
                return False
            return self._listed_head() == remote.hexsha

    def get_books(self) -> List[RemoteRevision]:
        with self._git_errors("list notebooks"):
            self._fetch()
            remote = self._remote_commit()
            if remote is None:
                self._record_listed_head(None)
                return []
            result: List[RemoteRevision] = []
            for item in remote.tree.traverse():
                if item.type != "blob":
                    continue
                relative = item.path
                if any(part.startswith(".") for part in relative.split("/")):
                    continue
                if not is_supported(relative):
                    continue
                result.append(self._rook(relative, remote))
            self._record_listed_head(remote)
            return result

    def retrieve_book(self, repo_relative_path: str, destination: Path) -> RemoteRevision:
        with self._git_errors(f"retrieve {repo_relative_path}"):
            self._fetch()
            self._reset_to_remote()
            source = self.work_dir / repo_relative_path
            if not source.is_file():
                raise RepoError(f"Notebook {repo_relative_path} not found in {self._url}")
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, destination)
            return self._rook(repo_relative_path, self._repo.head.commit)

    def store_book(self, source: Path, repo_relative_path: str) -> RemoteRevision:
        with self._git_errors(f"store {repo_relative_path}"):
            self._fetch()
            self._reset_to_remote()
            self._write_and_commit(source, repo_relative_path, f"Update {repo_relative_path}")
            self._push(self._branch)
            return self._rook(repo_relative_path, self._repo.head.commit)

    def sync_book(
        self,
        url: str,
        current: Optional[RemoteRevision],
        file: Path,
    ) -> SyncBookResult:
        """Merge local content into the branch using git's three-way merge.

        The local file is committed on a temporary branch that starts at the
        ancestor commit (the last synced revision) and merged into the
        branch. Without a usable ancestor, identical content is accepted as
        is and differing content counts as a conflict. On conflict the local
        commit is pushed to a conflict branch for manual resolution and the
        remote content is handed back for reload.

        Raises:
            RepoError: If any git operation fails
        """
        relative = get_repo_relative_path(self._url, url)
        with self._git_errors(f"sync {relative}"):
            return self._sync_book(relative, current, file)

    def _sync_book(self, relative: str, current: Optional[RemoteRevision], file: Path) -> SyncBookResult:
        self._fetch()
        self._reset_to_remote()
        repo = self._repo
        remote_file = self.work_dir / relative

        if not repo.head.is_valid():
            self._write_and_commit(file, relative, f"Add {relative}")
            self._push(self._branch)
            return SyncBookResult(new_rook=self._rook(relative, repo.head.commit), merged=True)

        has_ancestor = current is not None and self._has_commit(current.revision)
        if not has_ancestor:
            if not remote_file.is_file():
                self._write_and_commit(file, relative, f"Add {relative}")
                self._push(self._branch)
                return SyncBookResult(new_rook=self._rook(relative, repo.head.commit), merged=True)
            if remote_file.read_bytes() == Path(file).read_bytes():
                return SyncBookResult(new_rook=self._rook(relative, repo.head.commit), merged=True)

        ancestor = repo.commit(current.revision) if has_ancestor else repo.head.commit
        temp_name = f"notesync-sync-{uuid.uuid4().hex[:8]}"
        temp_head = repo.create_head(temp_name, ancestor)
        try:
            temp_head.checkout()
            self._write_and_commit(file, relative, f"Sync {relative}")
            repo.heads[self._branch].checkout()
            merged = has_ancestor and self._merge(temp_name, relative)
            if not merged:
                conflict_branch = f"{self._conflict_prefix}-{temp_name.rsplit('-', 1)[-1]}"
                log_warning(f"Conflict in {relative}; local content pushed to {conflict_branch}")
                self._push(f"{temp_name}:refs/heads/{conflict_branch}")
                return SyncBookResult(
                    new_rook=self._rook(relative, repo.head.commit),
                    merged=False,
                    load_file=remote_file if remote_file.is_file() else None,
                )
            self._push(self._branch)
        finally:
            if repo.active_branch.name != self._branch:
                repo.heads[self._branch].checkout(force=True)
            repo.delete_head(temp_head, force=True)

        new_rook = self._rook(relative, repo.head.commit)
        load_file = None
        if remote_file.read_bytes() != Path(file).read_bytes():
            load_file = remote_file
        return SyncBookResult(new_rook=new_rook, merged=True, load_file=load_file)

    def _merge(self, branch: str, relative: str) -> bool:
        log_debug(f"GIT_OP_START: merge {branch}")
        try:
            self._repo.git.merge(branch, "--no-edit", "-m", f"Merge local changes to {relative}")
        except GitCommandError as e:
            log_warning(f"Merge of {relative} failed: {e}")
            self._abort_merge()
            return False
        log_debug(f"GIT_OP_END: merge {branch}")
        return True

    # ------------------------------------------------------------------
    # GitPython helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _git_errors(self, operation: str):
        try:
            yield
        except GitCommandError as e:
            raise RepoError(f"Failed to {operation} in {self._url}: {e}") from e

    def _listed_head(self) -> Optional[str]:
        try:
            return self._repo.git.rev_parse("--verify", "--quiet", _LISTED_REF).strip()
        except GitCommandError:
            return None

    def _record_listed_head(self, commit: Optional[git.Commit]) -> None:
        if commit is not None:
            self._repo.git.update_ref(_LISTED_REF, commit.hexsha)
        elif self._listed_head() is not None:
            self._repo.git.update_ref("-d", _LISTED_REF)

    def _fetch(self) -> None:
        log_debug("GIT_OP_START: fetch origin")
        try:
            self._repo.git.fetch("origin", "--prune")
        except GitCommandError as e:
            raise RepoError(f"Failed to fetch {self._url}: {e}") from e
        log_debug("GIT_OP_END: fetch origin")

    def _remote_commit(self) -> Optional[git.Commit]:
        ref_name = f"origin/{self._branch}"
        for ref in self._repo.refs:
            if ref.name == ref_name:
                return ref.commit
        return None

    def _has_commit(self, sha: str) -> bool:
        try:
            self._repo.git.cat_file("-e", f"{sha}^{{commit}}")
        except GitCommandError:
            return False
        return True

    def _reset_to_remote(self) -> None:
        repo = self._repo
        remote = self._remote_commit()
        if self._branch in repo.heads:
            head = repo.heads[self._branch]
            if remote is not None:
                head.commit = remote
            head.checkout(force=True)
        elif remote is not None:
            repo.create_head(self._branch, remote).checkout(force=True)
        else:
            # Empty remote: start the branch on the unborn HEAD
            repo.git.symbolic_ref("HEAD", f"refs/heads/{self._branch}")
            return
        repo.head.reset(index=True, working_tree=True)

    def _write_and_commit(self, source: Path, relative: str, message: str) -> bool:
        repo = self._repo
        target = self.work_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        repo.git.add(relative)
        if repo.head.is_valid() and not repo.is_dirty(index=True, working_tree=False):
            log_debug(f"No changes to commit for {relative}")
            return False
        repo.index.commit(message, author=self._actor, committer=self._actor)
        return True

    def _push(self, refspec: str) -> None:
        log_debug(f"GIT_OP_START: push {refspec}")
        try:
            results = self._repo.remote("origin").push(refspec)
        except GitCommandError as e:
            raise RepoError(f"Failed to push to {self._url}: {e}") from e
        for info in results:
            if info.flags & _PUSH_FAILURE_FLAGS:
                raise RepoError(f"Push to {self._url} rejected: {info.summary.strip()}")
        log_debug(f"GIT_OP_END: push {refspec}")

    def _abort_merge(self) -> None:
        try:
            self._repo.git.merge("--abort")
        except GitCommandError:
            self._repo.head.reset(index=True, working_tree=True)

    def _rook(self, relative: str, commit: git.Commit) -> RemoteRevision:
        last = next(self._repo.iter_commits(commit, paths=relative, max_count=1), None)
        if last is None:
            raise RepoError(f"Notebook {relative} has no history in {self._url}")
        return RemoteRevision(
            repo_id=self.repo_id,
            repo_kind=self.kind,
            repo_url=self._url,
            url=join_url(self._url, relative),
            revision=last.hexsha,
            mtime=float(last.committed_date),
        )

    def __repr__(self) -> str:
        return f"GitRepo(id={self.repo_id}, url={self._url!r}, branch={self._branch!r})"
