"""CLI sync client: snapshot, fetch, and store workflows against a bitfog server."""

from __future__ import annotations

import argparse
import logging
import shutil
import sys
from pathlib import Path

import httpx

from cli.http_client import TransportClient, join_url
from cli.reconcile import SyncPlan, compute_sync_plan
from cli.state_store import LocalStateStore

logger = logging.getLogger(__name__)


class UnsafePathError(ValueError):
    """A manifest path would land outside the local staging directory."""


def _is_safe_local_path(staging_dir: Path, file_path: str) -> Path | None:
    """Resolve a server-provided path within staging_dir, returning None on traversal."""
    local_path = (staging_dir / file_path.lstrip("/")).resolve()
    if not local_path.is_relative_to(staging_dir.resolve()) or local_path == staging_dir.resolve():
        return None
    return local_path


def build_snapshot(client: TransportClient, url: str, store_path: Path) -> int:
    """Record a remote manifest as a fresh local store. Returns the record count."""
    manifest = client.fetch_manifest(url)
    store = LocalStateStore.new(store_path)
    for record in manifest.values():
        store.add_file(record)
    store.release()
    logger.info("Stored %d record(s) from %s in %s", len(manifest), url, store_path)
    return len(manifest)


def empty_snapshot(store_path: Path) -> None:
    """Write an empty store, as if the destination had no files."""
    LocalStateStore.new(store_path).release()


def fetch(
    client: TransportClient,
    dest_store_path: Path,
    src_url: str,
    staging_dir: Path,
) -> SyncPlan:
    """Download everything the local store is missing into an empty staging directory.

    Removals are only reported; nothing outside the staging directory is touched.
    """
    with LocalStateStore.open(dest_store_path) as store:
        src = client.fetch_manifest(src_url)
        plan = compute_sync_plan(src, store.manifest)

        if staging_dir.exists():
            shutil.rmtree(staging_dir)
        staging_dir.mkdir(parents=True)

        for path in plan.to_add:
            record = src[path]
            if record.is_symlink:
                print(f"  Link: {path} -> {record.link_target}")
                continue
            local_path = _is_safe_local_path(staging_dir, path)
            if local_path is None:
                raise UnsafePathError(f"Refusing to stage {path!r} outside {staging_dir}")
            client.download_file(join_url(src_url, path), str(local_path))
            print(f"  Download: {path} ({record.size} bytes)")

        for path in plan.to_remove:
            print(f"  Remove: {path}")

    print(f"Fetch complete. {len(plan.to_add)} to add, {len(plan.to_remove)} to remove.")
    return plan


def store(
    client: TransportClient,
    src_store_path: Path,
    dest_url: str,
    staging_dir: Path,
) -> SyncPlan:
    """Push staged content so the remote tree matches the local store.

    Remote deletions run first. A staged file that no longer exists is
    skipped; any other failure stops the run where it is.
    """
    with LocalStateStore.open(src_store_path) as source:
        dest = client.fetch_manifest(dest_url)
        plan = compute_sync_plan(source.manifest, dest)

        for path in plan.to_remove:
            client.delete_file(join_url(dest_url, path))
            print(f"  Delete remote: {path}")

        uploaded = 0
        for path in plan.to_add:
            record = source.manifest[path]
            url = join_url(dest_url, path)
            if record.is_symlink:
                client.create_symlink(record.link_target, url)
                print(f"  Link: {path} -> {record.link_target}")
                uploaded += 1
                continue
            local_path = _is_safe_local_path(staging_dir, path)
            if local_path is None:
                raise UnsafePathError(f"Refusing to upload {path!r} from outside {staging_dir}")
            try:
                client.upload_file(str(local_path), url)
            except FileNotFoundError:
                logger.warning("Skipping %s: not present in %s", path, staging_dir)
                continue
            print(f"  Upload: {path} ({record.size} bytes)")
            uploaded += 1

    print(f"Store complete. {uploaded} uploaded, {len(plan.to_remove)} removed.")
    return plan


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.INFO if verbose else logging.WARNING)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="bitfog",
        description="Mirror directory trees to and from a bitfog server",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log every record")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="HTTP timeout in seconds (default: none)",
    )

    subparsers = parser.add_subparsers(dest="command")
    builddb = subparsers.add_parser("builddb", help="Snapshot a remote manifest locally")
    builddb.add_argument("url")
    builddb.add_argument("dbpath", type=Path)
    emptydb = subparsers.add_parser("emptydb", help="Create an empty local snapshot")
    emptydb.add_argument("dbpath", type=Path)
    fetch_cmd = subparsers.add_parser("fetch", help="Stage files the local snapshot lacks")
    fetch_cmd.add_argument("destdb", type=Path)
    fetch_cmd.add_argument("srcurl")
    fetch_cmd.add_argument("stagingdir", type=Path)
    store_cmd = subparsers.add_parser("store", help="Upload staged files to a remote mount")
    store_cmd.add_argument("srcdb", type=Path)
    store_cmd.add_argument("desturl")
    store_cmd.add_argument("stagingdir", type=Path)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(1)
    _configure_logging(args.verbose)

    try:
        if args.command == "emptydb":
            empty_snapshot(args.dbpath)
            return
        with TransportClient(timeout=args.timeout) as client:
            if args.command == "builddb":
                count = build_snapshot(client, args.url, args.dbpath)
                print(f"Recorded {count} file(s) in {args.dbpath}")
            elif args.command == "fetch":
                fetch(client, args.destdb, args.srcurl, args.stagingdir)
            elif args.command == "store":
                store(client, args.srcdb, args.desturl, args.stagingdir)
    except (httpx.HTTPError, OSError, ValueError) as exc:
        logger.debug("%s failed", args.command, exc_info=exc)
        print(f"Error: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
