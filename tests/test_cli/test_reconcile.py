"""Tests for manifest reconciliation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from backend.models import FileRecord, build_manifest
from cli.reconcile import SyncPlan, compute_sync_plan

if TYPE_CHECKING:
    from backend.models import Manifest


def _manifest(*records: FileRecord) -> Manifest:
    return build_manifest(records)


class TestComputeSyncPlan:
    def test_identical_manifests_need_nothing(self) -> None:
        m = _manifest(FileRecord(path="a", size=1, content_hash=1))
        assert compute_sync_plan(m, m) == SyncPlan()

    def test_empty_source_removes_everything(self) -> None:
        dest = _manifest(FileRecord(path="b", size=1), FileRecord(path="a", size=2))
        plan = compute_sync_plan(_manifest(), dest)
        assert plan.to_add == []
        assert plan.to_remove == ["a", "b"]

    def test_empty_destination_adds_everything(self) -> None:
        src = _manifest(FileRecord(path="a", size=1), FileRecord(path="b", size=5))
        plan = compute_sync_plan(src, _manifest())
        assert plan.to_add == ["b", "a"]
        assert plan.to_remove == []

    def test_changed_hash_is_added(self) -> None:
        src = _manifest(FileRecord(path="a", size=3, content_hash=1))
        dest = _manifest(FileRecord(path="a", size=3, content_hash=2))
        assert compute_sync_plan(src, dest).to_add == ["a"]

    def test_mode_and_mtime_changes_ignored(self) -> None:
        src = _manifest(FileRecord(path="a", size=3, mode=0o100755, mtime=5, content_hash=1))
        dest = _manifest(FileRecord(path="a", size=3, mode=0o100644, mtime=1, content_hash=1))
        assert compute_sync_plan(src, dest) == SyncPlan()

    def test_file_replaced_by_symlink_is_added(self) -> None:
        src = _manifest(FileRecord(path="a", size=5, link_target="b"))
        dest = _manifest(FileRecord(path="a", size=5, content_hash=9))
        assert compute_sync_plan(src, dest).to_add == ["a"]

    def test_largest_first_with_path_tiebreak(self) -> None:
        src = _manifest(
            FileRecord(path="small", size=1),
            FileRecord(path="big-b", size=100),
            FileRecord(path="big-a", size=100),
            FileRecord(path="medium", size=50),
        )
        plan = compute_sync_plan(src, _manifest())
        assert plan.to_add == ["big-a", "big-b", "medium", "small"]

    def test_add_and_remove_together(self) -> None:
        src = _manifest(FileRecord(path="keep", size=1), FileRecord(path="new", size=2))
        dest = _manifest(FileRecord(path="keep", size=1), FileRecord(path="old", size=3))
        plan = compute_sync_plan(src, dest)
        assert plan.to_add == ["new"]
        assert plan.to_remove == ["old"]
