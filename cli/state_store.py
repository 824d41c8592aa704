"""Durable local snapshot of one manifest."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from types import MappingProxyType
from typing import TYPE_CHECKING

from backend.models.manifest import FileRecord

if TYPE_CHECKING:
    from pathlib import Path

    from backend.models.manifest import Manifest

logger = logging.getLogger(__name__)


class LocalStateStore:
    """A named manifest persisted to a single JSON file.

    Changes are kept in memory and written back as one full document on
    ``release`` only when something changed. The write is not atomic: a
    failure part way through can leave a truncated file behind.
    """

    def __init__(self, path: Path, files: dict[str, FileRecord], dirty: bool) -> None:
        self.path = path
        self._files = files
        self.dirty = dirty

    @classmethod
    def new(cls, path: Path) -> LocalStateStore:
        """Create an empty store. It is written on release even if left untouched."""
        return cls(path, {}, dirty=True)

    @classmethod
    def open(cls, path: Path) -> LocalStateStore:
        """Load a store. A missing file yields an empty store that is not dirty.

        Raises ``ValueError`` if the file exists but cannot be decoded.
        """
        if not path.exists():
            logger.debug("No state at %s, starting empty", path)
            return cls(path, {}, dirty=False)
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            msg = f"State file {path} does not contain a manifest object"
            raise ValueError(msg)
        try:
            files = {key: FileRecord(path=key, **value) for key, value in data.items()}
        except TypeError as exc:
            msg = f"Malformed record in state file {path}: {exc}"
            raise ValueError(msg) from exc
        return cls(path, files, dirty=False)

    @property
    def manifest(self) -> Manifest:
        return MappingProxyType(self._files)

    def add_file(self, record: FileRecord) -> None:
        self._files[record.path] = record
        self.dirty = True

    def remove_file(self, path: str) -> None:
        # Marks the store dirty even when the path was absent.
        self._files.pop(path, None)
        self.dirty = True

    def release(self) -> None:
        """Persist the full manifest if it changed since it was loaded."""
        if not self.dirty:
            return
        data = {}
        for key, record in self._files.items():
            fields = asdict(record)
            del fields["path"]
            data[key] = fields
        self.path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        self.dirty = False
        logger.debug("Wrote %d record(s) to %s", len(data), self.path)

    def __enter__(self) -> LocalStateStore:
        return self

    def __exit__(self, *args: object) -> None:
        self.release()
