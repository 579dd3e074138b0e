from __future__ import annotations

from pathlib import Path

from notesync.models import Notebook, RemoteRevision, Repository
from notesync.namesake import Namesake, group_all_notebooks_by_name, group_by_name
from notesync.status import SyncStatus
from notesync.storage import FileStorage


REPO = Repository(id=1, url="/repos/a", kind="dir")


def rook(path: str) -> RemoteRevision:
    return RemoteRevision(
        repo_id=REPO.id, repo_kind=REPO.kind, repo_url=REPO.url, url=f"{REPO.url}/{path}", revision="r"
    )


def test_group_by_name_is_ordered_and_merges_sources():
    books = [Notebook(id=1, name="zeta"), Notebook(id=2, name="alpha")]
    rooks = [rook("alpha.org"), rook("sub/alpha.md"), rook("beta.org")]
    groups = group_by_name(books, rooks)
    assert list(groups) == ["alpha", "beta", "zeta"]
    assert groups["alpha"].book.id == 2
    assert len(groups["alpha"].rooks) == 2
    assert groups["beta"].book is None
    assert groups["zeta"].rooks == []


def test_group_by_name_skips_unsupported_revisions():
    groups = group_by_name([], [rook("notes.pdf"), rook("todo.org")])
    assert list(groups) == ["todo"]


def test_unlinked_placeholder_without_rooks_is_dropped():
    stale = Notebook(id=1, name="gone", is_dummy=True)
    linked = Notebook(id=2, name="linked", is_dummy=True, link=REPO)
    groups = group_by_name([stale, linked], [])
    assert list(groups) == ["linked"]


def test_namesake_update_status():
    namesake = Namesake(name="todo", rooks=[rook("todo.org")])
    assert namesake.update_status(1) is SyncStatus.NO_BOOK_ONE_ROOK
    assert "NO_BOOK_ONE_ROOK" in str(namesake)


def test_group_all_creates_placeholders(storage_root: Path, repo_dir: Path):
    storage = FileStorage(storage_root)
    storage.add_repo(str(repo_dir), "dir")
    (repo_dir / "remote.org").write_text("* remote\n", encoding="utf-8")
    storage.create_book("local", "* local\n")

    groups = group_all_notebooks_by_name(storage)
    assert list(groups) == ["local", "remote"]
    assert groups["local"].status is SyncStatus.ONLY_BOOK_WITHOUT_LINK_AND_ONE_REPO
    assert groups["remote"].book.is_dummy
    assert groups["remote"].status is SyncStatus.DUMMY_WITHOUT_LINK_AND_ONE_ROOK
    assert storage.get_book("remote").is_dummy
