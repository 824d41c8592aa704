"""Shared test fixtures for bitfog."""

from __future__ import annotations

import os
from types import MappingProxyType
from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient

from backend.config import Settings
from backend.exceptions import DeltaEngineError
from backend.filesystem.mount_config import MountConfig
from backend.main import create_app

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Mapping
    from pathlib import Path

    from fastapi import FastAPI

SRC_FILES = {
    "a.txt": b"hello world\n",
    "nested/b.bin": bytes(range(256)) * 4,
    "nested/deeper/c.txt": b"c" * 10,
}


class FakeDeltaEngine:
    """Deterministic stand-in for rdiff.

    A signature is the basis prefixed with ``SIG:``, a delta is the whole new
    content prefixed with ``DELTA:``, and patching writes the delta payload.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []

    def signature(self, basis: Path, out: Path) -> None:
        self.calls.append("signature")
        out.write_bytes(b"SIG:" + basis.read_bytes())

    def delta(self, signature: Path, new: Path, out: Path) -> None:
        self.calls.append("delta")
        if not signature.read_bytes().startswith(b"SIG:"):
            raise DeltaEngineError("not a signature")
        out.write_bytes(b"DELTA:" + new.read_bytes())

    def patch(self, basis: Path, delta: Path, out: Path) -> None:
        self.calls.append("patch")
        data = delta.read_bytes()
        if not data.startswith(b"DELTA:"):
            raise DeltaEngineError("not a delta")
        out.write_bytes(data[len(b"DELTA:") :])


def populate(root: Path, files: Mapping[str, bytes]) -> None:
    """Write a set of relative paths and contents under root."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)


@pytest.fixture
def src_root(tmp_path: Path) -> Path:
    """Read-only mount root with a few files and a symlink."""
    root = tmp_path / "src"
    root.mkdir()
    populate(root, SRC_FILES)
    os.symlink("a.txt", root / "link")
    return root


@pytest.fixture
def dst_root(tmp_path: Path) -> Path:
    """Writable mount root, initially empty."""
    root = tmp_path / "dst"
    root.mkdir()
    return root


@pytest.fixture
def mounts(src_root: Path, dst_root: Path) -> Mapping[str, MountConfig]:
    return MappingProxyType(
        {
            "src": MountConfig(root=src_root, writable=False, checksum=True),
            "dst": MountConfig(root=dst_root, writable=True, checksum=True),
        }
    )


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Scratch directory the server uses for signature and delta temp files."""
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def test_settings(tmp_path: Path, temp_dir: Path) -> Settings:
    """Create test settings with temporary paths."""
    return Settings(
        debug=True,
        mounts_file=tmp_path / "bitfog.toml",
        manifest_flush_seconds=0.01,
        temp_dir=temp_dir,
    )


@pytest.fixture
def delta_engine() -> FakeDeltaEngine:
    return FakeDeltaEngine()


@pytest.fixture
def app(
    test_settings: Settings,
    mounts: Mapping[str, MountConfig],
    delta_engine: FakeDeltaEngine,
) -> FastAPI:
    return create_app(test_settings, mounts=mounts, delta_engine=delta_engine)


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client bound to the app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
