#!/usr/bin/env python3
"""Notesync CLI - command-line interface for notebook sync."""
from __future__ import annotations

import argparse
import sys

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"Notesync CLI requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)


def _open_storage(root: str | None):
    from pathlib import Path
    from .config_loader import get_config
    from .observability import apply_logging_config
    from .storage import FileStorage

    config = get_config()
    apply_logging_config(config.logging)
    resolved = Path(root).expanduser() if root else config.storage.resolve_root()
    return FileStorage(resolved, config=config)


def _fail(message: str) -> None:
    print(f"error: {message}", file=sys.stderr)
    sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(
        prog="notesync",
        description="Sync local notebooks with notebook repositories",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--root", help="Storage root (default: config storage.root or $NOTESYNC_ROOT)")

    sub = ap.add_subparsers(dest="cmd")

    p_repo_add = sub.add_parser("repo-add", parents=[common], help="Configure a repository")
    p_repo_add.add_argument("url", help="Repository URL or directory path")
    p_repo_add.add_argument("--kind", help="Backend kind (default: guessed from URL)")

    sub.add_parser("repo-list", parents=[common], help="List configured repositories")

    p_repo_remove = sub.add_parser("repo-remove", parents=[common], help="Remove a repository and its links")
    p_repo_remove.add_argument("repo_id", type=int)

    p_new = sub.add_parser("new", parents=[common], help="Create a local notebook")
    p_new.add_argument("name")
    p_new.add_argument("--format", default="org", help="Notebook format: org, md or txt (default: org)")
    p_new.add_argument("--content", default="", help="Initial content")

    p_link = sub.add_parser("link", parents=[common], help="Link a notebook to a repository")
    p_link.add_argument("name")
    p_link.add_argument("repo_id", type=int, nargs="?")
    p_link.add_argument("--clear", action="store_true", help="Remove the notebook's link")

    sub.add_parser("status", parents=[common], help="Show the sync status of every notebook")

    p_sync = sub.add_parser("sync", parents=[common], help="Run one sync cycle")
    p_sync.add_argument("--repo", type=int, dest="repo_id", help="Only collect from this repository")

    args = ap.parse_args(argv)

    if not args.cmd:
        ap.print_help()
        sys.exit(0)

    from .config_loader import ConfigError
    from .exceptions import SyncError
    from .repos import RepoError
    from .storage import StorageError

    try:
        storage = _open_storage(args.root)
    except ConfigError as exc:
        _fail(str(exc))

    if args.cmd == "repo-add":
        from .repos.registry import guess_repo_kind, list_repo_kinds

        kind = args.kind or guess_repo_kind(args.url)
        if kind not in list_repo_kinds():
            _fail(f"unknown repository kind '{kind}' (known: {', '.join(list_repo_kinds())})")
        try:
            repo = storage.add_repo(args.url, kind)
        except StorageError as exc:
            _fail(str(exc))
        print(f"{repo.id}\t{repo.kind}\t{repo.url}")
        sys.exit(0)

    if args.cmd == "repo-list":
        for repo in storage.get_repos():
            print(f"{repo.id}\t{repo.kind}\t{repo.url}")
        sys.exit(0)

    if args.cmd == "repo-remove":
        try:
            storage.remove_repo(args.repo_id)
        except StorageError as exc:
            _fail(str(exc))
        sys.exit(0)

    if args.cmd == "new":
        try:
            book = storage.create_book(args.name, args.content, args.format)
        except StorageError as exc:
            _fail(str(exc))
        print(f"{book.id}\t{book.name}\t{book.format}")
        sys.exit(0)

    if args.cmd == "link":
        book = storage.get_book(args.name)
        if book is None:
            _fail(f"notebook '{args.name}' does not exist")
        if args.clear:
            storage.set_link(book.id, None)
            sys.exit(0)
        if args.repo_id is None:
            _fail("either REPO_ID or --clear is required")
        repo = next((r for r in storage.get_repos() if r.id == args.repo_id), None)
        if repo is None:
            _fail(f"repository {args.repo_id} does not exist")
        storage.set_link(book.id, repo)
        sys.exit(0)

    if args.cmd == "status":
        from .engine import SyncEngine

        engine = SyncEngine(storage, reuse_unchanged=storage.config.sync.reuse_unchanged)
        try:
            namesakes = engine.group()
        except (SyncError, RepoError, StorageError) as exc:
            _fail(str(exc))
        for name, namesake in namesakes.items():
            print(f"{name}\t{namesake.status.name}\t{namesake.status.family.value}")
        sys.exit(0)

    if args.cmd == "sync":
        from .engine import SyncEngine

        repos = None
        if args.repo_id is not None:
            repo = next((r for r in storage.get_repos() if r.id == args.repo_id), None)
            if repo is None:
                _fail(f"repository {args.repo_id} does not exist")
            try:
                repos = [storage.get_repo_instance(repo.id, repo.kind, repo.url)]
            except RepoError as exc:
                _fail(str(exc))

        engine = SyncEngine(storage, reuse_unchanged=storage.config.sync.reuse_unchanged)
        try:
            actions = engine.reconcile_all(repos)
        except (SyncError, RepoError, StorageError) as exc:
            _fail(f"sync failed: {exc}")

        failed = False
        for name, action in actions.items():
            print(f"{name}\t{action.type.value}\t{action.message}")
            failed = failed or action.is_error
        sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
