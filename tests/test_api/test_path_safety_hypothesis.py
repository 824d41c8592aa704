"""Property-based tests for mount path safety boundaries."""

from __future__ import annotations

import os
import string
from typing import TYPE_CHECKING

from fastapi import HTTPException
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from backend.api.files import _resolve_safe_path
from cli.sync_client import _is_safe_local_path

if TYPE_CHECKING:
    from pathlib import Path

PROPERTY_SETTINGS = settings(
    max_examples=220,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)

_SEGMENT = st.text(
    alphabet=string.ascii_lowercase + string.digits + "-_.",
    min_size=1,
    max_size=10,
).filter(lambda s: s not in {".", ".."})


@st.composite
def _raw_path(draw: st.DrawFn) -> str:
    part = st.sampled_from(
        [
            "nested",
            "deeper",
            "a.txt",
            "etc",
            "..",
            ".",
            "",
            "passwd",
            "src",
            "...",
            "esc",
            "inner",
        ]
    )
    parts = draw(st.lists(part, min_size=1, max_size=7))
    path = "/".join(parts)
    if draw(st.booleans()):
        path = "/" + path
    return path


@st.composite
def _safe_relative_path(draw: st.DrawFn) -> str:
    segments = draw(st.lists(_SEGMENT, min_size=1, max_size=4))
    return "/".join(segments)


class TestPathBoundaryProperties:
    @PROPERTY_SETTINGS
    @given(file_path=_raw_path())
    def test_resolve_safe_path_never_returns_outside_root(
        self,
        tmp_path: Path,
        file_path: str,
    ) -> None:
        root = tmp_path / "mount"
        (root / "nested" / "deeper").mkdir(parents=True, exist_ok=True)

        try:
            resolved = _resolve_safe_path(root, file_path)
        except HTTPException as exc:
            assert exc.status_code == 400
        else:
            assert resolved.is_relative_to(root)
            assert resolved != root
            assert not resolved.is_dir()

    @PROPERTY_SETTINGS
    @given(file_path=_raw_path())
    def test_resolve_safe_path_never_crosses_a_symlink_out_of_root(
        self,
        tmp_path: Path,
        file_path: str,
    ) -> None:
        root = tmp_path / "linked"
        outside = tmp_path / "outside"
        (root / "nested").mkdir(parents=True, exist_ok=True)
        (outside / "nested").mkdir(parents=True, exist_ok=True)
        if not (root / "esc").is_symlink():
            (root / "esc").symlink_to(outside)
            (root / "inner").symlink_to("nested")

        try:
            resolved = _resolve_safe_path(root, file_path)
        except HTTPException as exc:
            assert exc.status_code == 400
        else:
            real_root = os.path.realpath(root)
            real_parent = os.path.realpath(resolved.parent)
            assert real_parent == real_root or real_parent.startswith(real_root + os.sep)

    @PROPERTY_SETTINGS
    @given(file_path=_safe_relative_path())
    def test_resolve_safe_path_accepts_plain_relative_paths(
        self,
        tmp_path: Path,
        file_path: str,
    ) -> None:
        root = tmp_path / "plain"
        root.mkdir(exist_ok=True)
        resolved = _resolve_safe_path(root, file_path)
        assert resolved == root.joinpath(*file_path.split("/"))

    @PROPERTY_SETTINGS
    @given(file_path=_raw_path())
    def test_cli_is_safe_local_path_never_returns_outside_root(
        self,
        tmp_path: Path,
        file_path: str,
    ) -> None:
        staging = tmp_path / "staging"
        staging.mkdir(exist_ok=True)

        resolved = _is_safe_local_path(staging, file_path)
        if resolved is not None:
            assert resolved.is_relative_to(staging.resolve())
            assert resolved != staging.resolve()
