"""HTTP transport for the sync client: manifest streaming and file transfer."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, BinaryIO
from urllib.parse import quote

import httpx

from backend.models.manifest import FileRecord

if TYPE_CHECKING:
    from collections.abc import Callable, Generator, Iterable, Iterator

    from backend.models.manifest import Manifest

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_OCTET_STREAM = "application/octet-stream"
_SYMLINK = "application/symlink"
_DECODER = json.JSONDecoder()
_WHITESPACE = re.compile(r"[ \t\n\r]*")
_NUMBER_TAIL = re.compile(r"[0-9eE+.-]+")
_LITERALS = ("true", "false", "null", "NaN", "Infinity", "-Infinity")


@dataclass(frozen=True)
class FsOps:
    """Local filesystem operations used by the transport client.

    Swapping these out lets tests exercise transfer error paths without
    touching the disk.
    """

    create: Callable[[str], BinaryIO]
    open: Callable[[str], BinaryIO]
    makedirs: Callable[[str], None]


def _posix_create(path: str) -> BinaryIO:
    return open(path, "wb")


def _posix_open(path: str) -> BinaryIO:
    return open(path, "rb")


def _posix_makedirs(path: str) -> None:
    os.makedirs(path, exist_ok=True)


POSIX_FS_OPS = FsOps(create=_posix_create, open=_posix_open, makedirs=_posix_makedirs)


class ManifestDecodeError(ValueError):
    """A manifest stream broke off part way.

    ``records`` holds everything decoded before the failure.
    """

    def __init__(self, message: str, records: Manifest) -> None:
        super().__init__(message)
        self.records = records


def join_url(base: str, path: str) -> str:
    """Append a manifest path to a mount URL."""
    return base.rstrip("/") + "/" + quote(path.lstrip("/"))


def _needs_more_input(buffer: str, exc: json.JSONDecodeError) -> bool:
    """Whether a decode failure could be cured by appending more input.

    Only a record cut off at the end of the buffer qualifies. Anything else is
    malformed and must not hold the rest of the stream in memory.
    """
    if exc.msg.startswith("Unterminated string"):
        return True
    tail = buffer[exc.pos :]
    if not tail:
        return True
    if exc.msg.startswith("Invalid \\uXXXX escape"):
        return len(tail) <= len("uXXXX")
    return _NUMBER_TAIL.fullmatch(tail) is not None or any(
        literal.startswith(tail) for literal in _LITERALS
    )


def _drain(buffer: str, final: bool) -> Generator[FileRecord, None, str]:
    """Yield every complete record in ``buffer`` and return the unconsumed tail."""
    pos = 0
    while True:
        pos = _WHITESPACE.match(buffer, pos).end()  # type: ignore[union-attr]
        if pos == len(buffer):
            return ""
        try:
            value, end = _DECODER.raw_decode(buffer, pos)
        except json.JSONDecodeError as exc:
            if final or not _needs_more_input(buffer, exc):
                raise
            # A record split across chunks; wait for the rest.
            return buffer[pos:]
        if not isinstance(value, dict):
            msg = f"Expected a record object, got {type(value).__name__}"
            raise ValueError(msg)
        yield FileRecord.from_wire(value)
        pos = end


def iter_manifest_records(chunks: Iterable[str]) -> Iterator[FileRecord]:
    """Decode a stream of concatenated JSON records from text chunks.

    Records are yielded as soon as they are complete. Raises ``ValueError`` at
    the first malformed record; everything yielded before it is valid.
    """
    buffer = ""
    for chunk in chunks:
        buffer = yield from _drain(buffer + chunk, final=False)
    yield from _drain(buffer, final=True)


def _iter_file(f: BinaryIO) -> Iterator[bytes]:
    yield from iter(lambda: f.read(_CHUNK_SIZE), b"")


class TransportClient:
    """Talks to a bitfog server: manifests, file transfer, and delta sync."""

    def __init__(
        self,
        http: httpx.Client | None = None,
        fs: FsOps = POSIX_FS_OPS,
        timeout: float | None = None,
    ) -> None:
        self._owns_http = http is None
        self.http = http if http is not None else httpx.Client(timeout=timeout)
        self.fs = fs

    def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._owns_http:
            self.http.close()

    def __enter__(self) -> TransportClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def fetch_manifest(self, url: str) -> Manifest:
        """Stream and decode a remote manifest.

        Raises ``httpx.HTTPStatusError`` on a non-success status and
        ``ManifestDecodeError`` (carrying the records decoded so far) if the
        body is malformed part way through.
        """
        records: dict[str, FileRecord] = {}
        with self.http.stream("GET", url) as response:
            response.raise_for_status()
            try:
                for record in iter_manifest_records(response.iter_text()):
                    logger.debug("got %s", record)
                    records[record.path] = record
            except ValueError as exc:
                logger.error(
                    "Error decoding manifest from %s after %d record(s)", url, len(records)
                )
                raise ManifestDecodeError(
                    f"error decoding manifest from {url}: {exc}",
                    MappingProxyType(records),
                ) from exc
        return MappingProxyType(records)

    def _open_dest(self, dest: str) -> BinaryIO:
        try:
            return self.fs.create(dest)
        except OSError:
            self.fs.makedirs(os.path.dirname(dest))
            return self.fs.create(dest)

    def _save_response(self, response: httpx.Response, dest: str) -> None:
        response.raise_for_status()
        with self._open_dest(dest) as f:
            for chunk in response.iter_bytes():
                f.write(chunk)

    def download_file(self, url: str, dest: str) -> None:
        """Download a file, creating the destination's parent directories if needed."""
        with self.http.stream("GET", url) as response:
            self._save_response(response, dest)

    def upload_file(self, src: str, url: str) -> None:
        """Upload a local file. Raises ``FileNotFoundError`` if ``src`` is missing."""
        with self.fs.open(src) as f:
            response = self.http.put(
                url,
                content=_iter_file(f),
                headers={"Content-Type": _OCTET_STREAM},
            )
        response.raise_for_status()

    def delete_file(self, url: str) -> None:
        response = self.http.delete(url)
        response.raise_for_status()

    def create_symlink(self, target: str, url: str) -> None:
        response = self.http.put(
            url,
            content=target.encode("utf-8"),
            headers={"Content-Type": _SYMLINK},
        )
        response.raise_for_status()

    def fetch_signature(self, url: str, dest: str) -> None:
        """Save the delta signature of a remote file."""
        with self.http.stream("GET", url, params={"rdiff": "sig"}) as response:
            self._save_response(response, dest)

    def fetch_delta(self, url: str, signature: str, dest: str) -> None:
        """Send the signature of a stale local copy and save the server's delta."""
        with self.fs.open(signature) as f:
            with self.http.stream(
                "PATCH",
                url,
                params={"rdiff": "delta"},
                content=_iter_file(f),
                headers={"Content-Type": _OCTET_STREAM},
            ) as response:
                self._save_response(response, dest)

    def send_patch(self, url: str, delta: str) -> None:
        """Ask the server to apply a delta to its copy of a file."""
        with self.fs.open(delta) as f:
            response = self.http.patch(
                url,
                params={"rdiff": "patch"},
                content=_iter_file(f),
                headers={"Content-Type": _OCTET_STREAM},
            )
        response.raise_for_status()
