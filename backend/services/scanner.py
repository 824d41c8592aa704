"""Directory scanner: builds a manifest by walking a mount root."""

from __future__ import annotations

import logging
import os
import stat
import time
from typing import TYPE_CHECKING

import xxhash

from backend.models.manifest import FileRecord

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from backend.filesystem.mount_config import MountConfig

logger = logging.getLogger(__name__)

_HASH_CHUNK_SIZE = 64 * 1024
_MAX_BUFFERED_BYTES = 64 * 1024


class SkipEntry(Exception):
    """Raised by ``describe`` for entries that are not part of a manifest."""


def hash_file(file_path: str) -> int:
    """Compute the 64-bit xxHash of a file's full content."""
    digest = xxhash.xxh64()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(_HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.intdigest()


def describe(file_path: str, name: str, checksum: bool) -> FileRecord:
    """Build a record for one non-directory entry.

    Symlinks carry their target and no hash. Named pipes and sockets raise
    ``SkipEntry``. Everything else is hashed when ``checksum`` is set.
    """
    info = os.lstat(file_path)
    mode = info.st_mode
    if stat.S_ISLNK(mode):
        return FileRecord(
            path=name,
            size=info.st_size,
            mode=mode,
            mtime=int(info.st_mtime),
            link_target=os.readlink(file_path),
        )
    if stat.S_ISFIFO(mode):
        logger.info("Ignoring named pipe: %s", file_path)
        raise SkipEntry(file_path)
    if stat.S_ISSOCK(mode):
        logger.info("Ignoring socket: %s", file_path)
        raise SkipEntry(file_path)
    return FileRecord(
        path=name,
        size=info.st_size,
        mode=mode,
        mtime=int(info.st_mtime),
        content_hash=hash_file(file_path) if checksum else 0,
    )


def _relative_name(root: str, file_path: str) -> str:
    name = file_path[len(root) :].lstrip(os.sep)
    if os.sep != "/":
        name = name.replace(os.sep, "/")
    return name


def _walk(root: str, directory: str, checksum: bool) -> Iterator[FileRecord]:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda entry: entry.name)
    except OSError as exc:
        logger.warning("Traversal error in %s: %s", directory, exc)
        return

    for entry in entries:
        try:
            is_dir = entry.is_dir(follow_symlinks=False)
        except OSError as exc:
            logger.warning("Traversal error at %s: %s", entry.path, exc)
            continue
        if is_dir:
            yield from _walk(root, entry.path, checksum)
            continue
        try:
            record = describe(entry.path, _relative_name(root, entry.path), checksum)
        except SkipEntry:
            continue
        except (OSError, ValueError) as exc:
            logger.warning("Error describing %s: %s", entry.path, exc)
            continue
        yield record


def scan_tree(mount: MountConfig) -> Iterator[FileRecord]:
    """Lazily yield a record for every file and symlink under the mount root.

    The walk is pre-order and sorted by name within each directory, so the
    output is deterministic. Directories themselves are not emitted.
    """
    root = os.fspath(mount.root)
    return _walk(root, root, mount.checksum)


def stream_manifest(
    records: Iterable[FileRecord],
    flush_interval: float,
    clock: Callable[[], float] = time.monotonic,
) -> Iterator[bytes]:
    """Encode records as concatenated JSON lines, flushing on an interval.

    Output is held back until ``flush_interval`` seconds have passed since the
    last flush or the buffer grows past a fixed size, whichever comes first.
    Whatever remains is flushed once the records are exhausted.
    """
    buffer: list[bytes] = []
    buffered = 0
    last_flush = clock()
    for record in records:
        line = record.to_json_line().encode("utf-8")
        buffer.append(line)
        buffered += len(line)
        now = clock()
        if buffered >= _MAX_BUFFERED_BYTES or now - last_flush >= flush_interval:
            yield b"".join(buffer)
            buffer.clear()
            buffered = 0
            last_flush = now
    if buffer:
        yield b"".join(buffer)
