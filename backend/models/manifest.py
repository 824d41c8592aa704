"""File records and manifests shared by the server and the sync client."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from backend.schemas.manifest import ManifestRecordSchema

if TYPE_CHECKING:
    from collections.abc import Iterable


@dataclass(frozen=True)
class FileRecord:
    """Metadata and content fingerprint for one file or symlink."""

    path: str
    size: int = 0
    mode: int = 0
    mtime: int = 0
    content_hash: int = 0
    link_target: str = ""

    def __post_init__(self) -> None:
        if self.link_target and self.content_hash:
            msg = f"Symlink record {self.path!r} must not carry a content hash"
            raise ValueError(msg)

    @property
    def is_symlink(self) -> bool:
        return bool(self.link_target)

    @property
    def fingerprint(self) -> tuple[int, int, str]:
        """The fields that decide whether two records describe the same content."""
        return (self.size, self.content_hash, self.link_target)

    def same_content(self, other: FileRecord) -> bool:
        return self.fingerprint == other.fingerprint

    def to_wire(self) -> dict[str, Any]:
        """Encode as a wire object, omitting empty name, zero hash and empty link."""
        data: dict[str, Any] = {}
        if self.path:
            data["name"] = self.path
        data["size"] = self.size
        data["mode"] = self.mode
        data["mtime"] = self.mtime
        if self.content_hash:
            data["hash"] = self.content_hash
        if self.link_target:
            data["linkdest"] = self.link_target
        return data

    def to_json_line(self) -> str:
        return json.dumps(self.to_wire(), separators=(",", ":")) + "\n"

    @classmethod
    def from_wire(cls, data: Any) -> FileRecord:
        """Validate a decoded wire object and build a record from it.

        Raises ``pydantic.ValidationError`` (a ``ValueError``) on malformed input.
        """
        schema = ManifestRecordSchema.model_validate(data)
        return cls(
            path=schema.name,
            size=schema.size,
            mode=schema.mode,
            mtime=schema.mtime,
            content_hash=schema.hash,
            link_target=schema.linkdest,
        )


Manifest = Mapping[str, FileRecord]


def build_manifest(records: Iterable[FileRecord]) -> Manifest:
    """Index records by path into a read-only manifest. Later duplicates win."""
    return MappingProxyType({record.path: record for record in records})
