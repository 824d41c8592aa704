"""File endpoints: path-safe content transfer and delta sync within a mount."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, BinaryIO, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import FileResponse, Response, StreamingResponse

from backend.api.deps import get_delta_engine, get_mount, get_settings
from backend.config import Settings
from backend.filesystem.mount_config import MountConfig
from backend.services.delta_service import DeltaEngine

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["files"])

_CHUNK_SIZE = 64 * 1024
_OCTET_STREAM = "application/octet-stream"
_SYMLINK = "application/symlink"

_T = TypeVar("_T")


def _resolve_safe_path(root: Path, subpath: str) -> Path:
    """Resolve a subpath within a mount root, raising 400 if it escapes the root.

    Resolution is lexical so that a symlink at the target is addressed itself
    rather than followed. The root must remain a strict prefix of the result,
    the result's parent must not resolve through a symlink to somewhere
    outside the root, and the result must not be an existing directory.
    """
    if "\x00" in subpath:
        raise HTTPException(status_code=400, detail=f"Invalid file path: {subpath!r}")
    root_str = os.path.abspath(root)
    prefix = root_str if root_str.endswith(os.sep) else root_str + os.sep
    full = os.path.abspath(os.path.join(root_str, os.path.normpath(subpath.lstrip("/"))))
    if not full.startswith(prefix):
        logger.warning("Rejected path escaping %s: %r", root_str, subpath)
        raise HTTPException(status_code=400, detail=f"Path escapes root: {subpath}")
    full_path = Path(full)
    real_root = os.path.realpath(root_str)
    real_parent = os.path.realpath(full_path.parent)
    if real_parent != real_root and not real_parent.startswith(real_root.rstrip(os.sep) + os.sep):
        logger.warning("Rejected path through a symlink out of %s: %r", root_str, subpath)
        raise HTTPException(status_code=400, detail=f"Path escapes root: {subpath}")
    if full_path.is_dir() and not full_path.is_symlink():
        raise HTTPException(status_code=400, detail=f"Not a file: {subpath}")
    return full_path


def _require_writable(config: MountConfig, method: str) -> None:
    if not config.writable:
        raise HTTPException(
            status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
            detail=f"Can't {method} here.",
        )


def _require_regular_file(target: Path, subpath: str) -> None:
    """Require an existing regular file.

    Symlinks are rejected since reading one would follow it out of the mount.
    Pipes and device nodes are rejected since reading them can block.
    """
    if target.is_symlink():
        raise HTTPException(status_code=400, detail=f"Not a file: {subpath}")
    if not target.exists():
        raise HTTPException(status_code=404, detail="File not found")
    if not target.is_file():
        raise HTTPException(status_code=400, detail=f"Not a file: {subpath}")


@contextmanager
def _temp_file(prefix: str, directory: Path | None) -> Iterator[Path]:
    """Create an empty temp file that is removed on every exit path."""
    fd, name = tempfile.mkstemp(prefix=prefix, dir=directory)
    os.close(fd)
    path = Path(name)
    try:
        yield path
    finally:
        path.unlink(missing_ok=True)


def _iter_and_remove(path: Path) -> Iterator[bytes]:
    """Stream a temp file's content, removing it once streaming ends or is abandoned."""
    try:
        with open(path, "rb") as f:
            yield from iter(lambda: f.read(_CHUNK_SIZE), b"")
    finally:
        path.unlink(missing_ok=True)


async def _spool_body(request: Request, dest: Path) -> None:
    with open(dest, "wb") as f:
        async for chunk in request.stream():
            f.write(chunk)


async def _stream_engine_output(
    operation: Callable[..., None],
    *inputs: Path,
    temp_dir: Path | None,
) -> StreamingResponse:
    """Run a delta engine operation into a temp file and stream the result back."""
    fd, name = tempfile.mkstemp(prefix="bitfog-out.", dir=temp_dir)
    os.close(fd)
    out = Path(name)
    try:
        await asyncio.to_thread(operation, *inputs, out)
    except BaseException:
        out.unlink(missing_ok=True)
        raise
    return StreamingResponse(_iter_and_remove(out), media_type=_OCTET_STREAM)


def _retry_after_mkdir(target: Path, create: Callable[[], _T]) -> _T:
    """Run ``create``; on any OSError, create the parent directories and retry once.

    The first error is discarded, so a permission problem surfaces as the
    retry's error rather than its own.
    """
    try:
        return create()
    except OSError:
        target.parent.mkdir(parents=True, exist_ok=True)
        return create()


async def _write_file(target: Path, request: Request) -> None:
    if target.is_symlink():
        target.unlink()

    def _create() -> BinaryIO:
        return open(target, "wb")

    with _retry_after_mkdir(target, _create) as f:
        async for chunk in request.stream():
            f.write(chunk)


def _replace_with_symlink(link_target: str, target: Path) -> None:
    if target.is_symlink() or target.exists():
        target.unlink()
    _retry_after_mkdir(target, lambda: target.symlink_to(link_target))


# ── Endpoints ────────────────────────────────────────


@router.get("/{mount}/{subpath:path}")
async def get_file(
    subpath: str,
    config: Annotated[MountConfig, Depends(get_mount)],
    settings: Annotated[Settings, Depends(get_settings)],
    engine: Annotated[DeltaEngine, Depends(get_delta_engine)],
    rdiff: str = "",
) -> Response:
    """Download a file, or its delta signature with ``?rdiff=sig``."""
    target = _resolve_safe_path(config.root, subpath)
    if rdiff == "":
        _require_regular_file(target, subpath)
        logger.info("Getting %s", target)
        return FileResponse(target, media_type=_OCTET_STREAM)
    if rdiff == "sig":
        _require_regular_file(target, subpath)
        logger.info("Computing a signature of %s", target)
        return await _stream_engine_output(engine.signature, target, temp_dir=settings.temp_dir)
    raise HTTPException(status_code=400, detail=f"Invalid rdiff param: {rdiff}")


@router.put("/{mount}/{subpath:path}", status_code=204)
async def put_file(
    subpath: str,
    request: Request,
    config: Annotated[MountConfig, Depends(get_mount)],
) -> Response:
    """Create or replace a file or symlink, dispatching on Content-Type."""
    _require_writable(config, "PUT")
    target = _resolve_safe_path(config.root, subpath)
    content_type = request.headers.get("content-type", "").split(";", 1)[0].strip().lower()

    if content_type == _OCTET_STREAM:
        await _write_file(target, request)
        logger.info("Created %s", target)
    elif content_type == _SYMLINK:
        body = await request.body()
        try:
            link_target = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise HTTPException(status_code=400, detail="Symlink target must be UTF-8") from exc
        if not link_target:
            raise HTTPException(status_code=400, detail="Symlink target must not be empty")
        _replace_with_symlink(link_target, target)
        logger.info("Linked %s -> %s", target, link_target)
    else:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported content type: {content_type or 'none'}",
        )
    return Response(status_code=204)


@router.delete("/{mount}/{subpath:path}", status_code=204)
async def delete_file(
    subpath: str,
    config: Annotated[MountConfig, Depends(get_mount)],
) -> Response:
    """Remove a file or symlink."""
    _require_writable(config, "DELETE")
    target = _resolve_safe_path(config.root, subpath)
    try:
        target.unlink()
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail="File not found") from exc
    logger.info("Deleted %s", target)
    return Response(status_code=204)


@router.patch("/{mount}/{subpath:path}")
async def patch_file(
    subpath: str,
    request: Request,
    config: Annotated[MountConfig, Depends(get_mount)],
    settings: Annotated[Settings, Depends(get_settings)],
    engine: Annotated[DeltaEngine, Depends(get_delta_engine)],
    rdiff: str = "",
) -> Response:
    """Delta sync against the current file.

    ``?rdiff=delta``: the body is a signature of a stale copy; respond with
    the delta that turns that copy into the current file.

    ``?rdiff=patch``: the body is a delta; apply it to the current file. The
    result is written beside the target and renamed over it only once the
    patch has fully succeeded.
    """
    if rdiff == "patch":
        _require_writable(config, "PATCH")
    target = _resolve_safe_path(config.root, subpath)

    if rdiff == "delta":
        _require_regular_file(target, subpath)
        logger.info("Computing a delta of %s", target)
        with _temp_file("bitfog-sig.", settings.temp_dir) as sig_path:
            await _spool_body(request, sig_path)
            return await _stream_engine_output(
                engine.delta, sig_path, target, temp_dir=settings.temp_dir
            )

    if rdiff == "patch":
        _require_regular_file(target, subpath)
        logger.info("Patching %s", target)
        with _temp_file("bitfog-diff.", settings.temp_dir) as delta_path:
            await _spool_body(request, delta_path)
            with _temp_file(".bitfog-result.", target.parent) as result_path:
                await asyncio.to_thread(engine.patch, target, delta_path, result_path)
                shutil.copymode(target, result_path)
                os.replace(result_path, target)
        logger.info("Patched %s", target)
        return Response(status_code=204)

    raise HTTPException(status_code=400, detail=f"Invalid mode: {rdiff}")
