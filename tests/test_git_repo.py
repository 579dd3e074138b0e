from __future__ import annotations

import shutil
from pathlib import Path
from typing import Dict

import pytest
from git import Repo

from notesync.engine import MERGE_CONFLICT_MESSAGE, SyncEngine
from notesync.models import ActionType, Repository
from notesync.repos import RepoError, RepoNotFoundError, TwoWaySyncRepo
from notesync.repos.git import GitRepo
from notesync.storage import FileStorage


pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


def init_remote_repo(remote_path: Path) -> Repo:
    remote_path.mkdir(parents=True, exist_ok=True)
    bare = Repo.init(remote_path, bare=True)
    bare.git.symbolic_ref("HEAD", "refs/heads/main")
    return bare


def push_files(remote_path: Path, files: Dict[str, str], message: str = "update") -> None:
    """Commit ``files`` on top of the remote's main branch from a scratch clone."""
    workdir = remote_path.parent / f"scratch-{len(list(remote_path.parent.iterdir()))}"
    bare = Repo(remote_path)
    if "main" in [h.name for h in bare.heads]:
        repo = Repo.clone_from(remote_path.as_posix(), workdir, branch="main")
    else:
        repo = Repo.init(workdir)
        repo.git.symbolic_ref("HEAD", "refs/heads/main")
        repo.create_remote("origin", remote_path.as_posix())
    with repo.config_writer() as cw:
        cw.set_value("user", "name", "Other")
        cw.set_value("user", "email", "other@example.com")
    for name, content in files.items():
        path = workdir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        repo.index.add([name])
    repo.index.commit(message)
    repo.remotes.origin.push("main:main")
    shutil.rmtree(workdir)


def remote_file(remote_path: Path, ref: str, name: str) -> str:
    return Repo(remote_path).git.show(f"{ref}:{name}") + "\n"


def make_git_repo(remote: Path, work: Path) -> GitRepo:
    return GitRepo(Repository(id=1, url=remote.as_posix(), kind="git"), work)


def test_git_repo_is_two_way(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    repo = make_git_repo(remote, tmp_path / "work")
    assert isinstance(repo, TwoWaySyncRepo)
    assert repo.current_branch == "main"


def test_clone_failure(tmp_path: Path):
    with pytest.raises(RepoNotFoundError):
        make_git_repo(tmp_path / "missing.git", tmp_path / "work")


def test_empty_remote(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    repo = make_git_repo(remote, tmp_path / "work")
    assert repo.get_books() == []
    assert repo.is_unchanged() is False


def test_store_and_retrieve_on_empty_remote(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    repo = make_git_repo(remote, tmp_path / "work")
    source = tmp_path / "todo.org"
    source.write_text("* TODO one\n", encoding="utf-8")

    stored = repo.store_book(source, "todo.org")
    assert stored.url == f"{remote.as_posix()}/todo.org"
    assert remote_file(remote, "main", "todo.org") == "* TODO one\n"

    dest = tmp_path / "out.org"
    fetched = repo.retrieve_book("todo.org", dest)
    assert dest.read_text(encoding="utf-8") == "* TODO one\n"
    assert fetched.revision == stored.revision
    assert [b.url for b in repo.get_books()] == [stored.url]


def test_is_unchanged_tracks_remote_pushes(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    push_files(remote, {"todo.org": "v1\n"})
    repo = make_git_repo(remote, tmp_path / "work")
    repo.get_books()
    repo.retrieve_book("todo.org", tmp_path / "x.org")
    assert repo.is_unchanged() is True

    push_files(remote, {"other.md": "x\n"})
    assert repo.is_unchanged() is False


def test_is_unchanged_ignores_commits_absorbed_by_writes(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    push_files(remote, {"todo.org": "v1\n", "ideas.org": "v1\n"})
    repo = make_git_repo(remote, tmp_path / "work")
    repo.get_books()

    push_files(remote, {"ideas.org": "v2\n"})
    source = tmp_path / "todo.org"
    source.write_text("local\n", encoding="utf-8")
    repo.store_book(source, "todo.org")
    # The store moved the branch past the unlisted commit; a listing is still due
    assert repo.is_unchanged() is False

    repo.get_books()
    assert repo.is_unchanged() is True


def test_revision_is_per_file(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    push_files(remote, {"todo.org": "v1\n", "README": "ignored\n", ".hidden/x.org": "x\n"})
    repo = make_git_repo(remote, tmp_path / "work")
    before = {b.url: b.revision for b in repo.get_books()}
    assert list(before) == [f"{remote.as_posix()}/todo.org"]

    push_files(remote, {"ideas.md": "# ideas\n"})
    after = {b.url: b.revision for b in repo.get_books()}
    assert after[f"{remote.as_posix()}/todo.org"] == before[f"{remote.as_posix()}/todo.org"]
    assert f"{remote.as_posix()}/ideas.md" in after


def test_sync_book_merges_non_overlapping_changes(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    push_files(remote, {"notes.org": "a\nb\nc\nd\ne\n"})
    repo = make_git_repo(remote, tmp_path / "work")
    ancestor = repo.get_books()[0]

    push_files(remote, {"notes.org": "A\nb\nc\nd\ne\n"})
    local = tmp_path / "local.org"
    local.write_text("a\nb\nc\nd\nE\n", encoding="utf-8")

    result = repo.sync_book(ancestor.url, ancestor, local)
    assert result.merged is True
    assert result.load_file is not None
    assert Path(result.load_file).read_text(encoding="utf-8") == "A\nb\nc\nd\nE\n"
    assert remote_file(remote, "main", "notes.org") == "A\nb\nc\nd\nE\n"
    assert result.new_rook.revision != ancestor.revision
    assert [h.name for h in Repo(remote).heads] == ["main"]


def test_sync_book_without_remote_changes_pushes_local(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    push_files(remote, {"notes.org": "a\n"})
    repo = make_git_repo(remote, tmp_path / "work")
    ancestor = repo.get_books()[0]
    local = tmp_path / "local.org"
    local.write_text("a\nb\n", encoding="utf-8")

    result = repo.sync_book(ancestor.url, ancestor, local)
    assert result.merged is True
    assert result.load_file is None
    assert remote_file(remote, "main", "notes.org") == "a\nb\n"


def test_sync_book_conflict_sets_local_content_aside(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    push_files(remote, {"notes.org": "a\n"})
    repo = make_git_repo(remote, tmp_path / "work")
    ancestor = repo.get_books()[0]

    push_files(remote, {"notes.org": "remote\n"})
    local = tmp_path / "local.org"
    local.write_text("local\n", encoding="utf-8")

    result = repo.sync_book(ancestor.url, ancestor, local)
    assert result.merged is False
    assert Path(result.load_file).read_text(encoding="utf-8") == "remote\n"
    assert remote_file(remote, "main", "notes.org") == "remote\n"

    conflict = [h.name for h in Repo(remote).heads if h.name.startswith("notesync/conflict-")]
    assert len(conflict) == 1
    assert remote_file(remote, conflict[0], "notes.org") == "local\n"
    # Working clone is back on the sync branch with no leftover temp branches
    work = Repo(tmp_path / "work")
    assert work.active_branch.name == "main"
    assert [h.name for h in work.heads] == ["main"]


def test_sync_book_first_sync_identical_content(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    push_files(remote, {"notes.org": "same\n"})
    head = Repo(remote).heads.main.commit.hexsha
    repo = make_git_repo(remote, tmp_path / "work")
    local = tmp_path / "local.org"
    local.write_text("same\n", encoding="utf-8")

    result = repo.sync_book(f"{remote.as_posix()}/notes.org", None, local)
    assert result.merged is True
    assert result.load_file is None
    assert Repo(remote).heads.main.commit.hexsha == head


def test_sync_book_first_sync_different_content_conflicts(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    push_files(remote, {"notes.org": "remote\n"})
    repo = make_git_repo(remote, tmp_path / "work")
    local = tmp_path / "local.org"
    local.write_text("local\n", encoding="utf-8")

    result = repo.sync_book(f"{remote.as_posix()}/notes.org", None, local)
    assert result.merged is False
    assert remote_file(remote, "main", "notes.org") == "remote\n"


def test_sync_book_adds_missing_file(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    push_files(remote, {"other.org": "x\n"})
    repo = make_git_repo(remote, tmp_path / "work")
    local = tmp_path / "local.org"
    local.write_text("new\n", encoding="utf-8")

    result = repo.sync_book(f"{remote.as_posix()}/new.org", None, local)
    assert result.merged is True
    assert remote_file(remote, "main", "new.org") == "new\n"


def test_full_cycle_against_git(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    storage = FileStorage(tmp_path / "storage")
    storage.add_repo(remote.as_posix(), "git")
    storage.create_book("todo", "a\nb\nc\nd\ne\n")
    engine = SyncEngine(storage)

    actions = engine.reconcile_all()
    assert actions["todo"].message == f"Saved to {remote.as_posix()}"
    assert remote_file(remote, "main", "todo.org") == "a\nb\nc\nd\ne\n"

    assert engine.reconcile_all()["todo"].message == "No change"

    push_files(remote, {"todo.org": "A\nb\nc\nd\ne\n"})
    storage.write_book("todo", "a\nb\nc\nd\nE\n")
    actions = engine.reconcile_all()
    assert actions["todo"].type is ActionType.INFO
    assert storage.read_book("todo") == "A\nb\nc\nd\nE\n"
    assert remote_file(remote, "main", "todo.org") == "A\nb\nc\nd\nE\n"
    assert engine.reconcile_all()["todo"].message == "No change"

    push_files(remote, {"todo.org": "remote\nb\nc\nd\nE\n"})
    storage.write_book("todo", "local\nb\nc\nd\nE\n")
    actions = engine.reconcile_all()
    assert actions["todo"].type is ActionType.ERROR
    assert actions["todo"].message == MERGE_CONFLICT_MESSAGE
    assert storage.read_book("todo") == "remote\nb\nc\nd\nE\n"


def test_git_failure_in_one_notebook_does_not_stop_others(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    push_files(remote, {".gitignore": "secret.org\n"})
    storage = FileStorage(tmp_path / "storage")
    storage.add_repo(remote.as_posix(), "git")
    for name in ("alpha", "secret", "zeta"):
        storage.create_book(name, f"{name}\n")

    actions = SyncEngine(storage).reconcile_all()
    assert actions["secret"].type is ActionType.ERROR
    assert actions["secret"].message.startswith("Sync failed: Failed to store secret.org")
    assert actions["alpha"].type is ActionType.INFO
    assert actions["zeta"].type is ActionType.INFO
    assert remote_file(remote, "main", "zeta.org") == "zeta\n"
    assert storage.get_book("zeta").synced_to is not None


def test_git_command_failure_is_a_repo_error(tmp_path: Path):
    remote = tmp_path / "remote.git"
    init_remote_repo(remote)
    push_files(remote, {".gitignore": "secret.org\n"})
    repo = make_git_repo(remote, tmp_path / "work")
    source = tmp_path / "secret.org"
    source.write_text("x\n", encoding="utf-8")

    with pytest.raises(RepoError, match="Failed to store secret.org"):
        repo.store_book(source, "secret.org")
