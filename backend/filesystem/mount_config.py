"""TOML reader for the server's mount table."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MountConfig:
    """A named root directory exposed by the server."""

    root: Path
    writable: bool = False
    checksum: bool = True


def _require_bool(name: str, key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        msg = f"Mount '{name}': '{key}' must be a boolean, got {value!r}"
        raise ValueError(msg)
    return value


def parse_mounts(data: Mapping[str, Any], base_dir: Path) -> Mapping[str, MountConfig]:
    """Build the mount table from parsed TOML data.

    Relative mount paths are resolved against ``base_dir``. The result is
    read-only.
    """
    raw_mounts = data.get("mounts", {})
    if not isinstance(raw_mounts, dict):
        msg = "'mounts' must be a table"
        raise ValueError(msg)

    mounts: dict[str, MountConfig] = {}
    for name, entry in raw_mounts.items():
        if not name or "/" in name:
            msg = f"Invalid mount name: {name!r}"
            raise ValueError(msg)
        if not isinstance(entry, dict):
            msg = f"Mount '{name}' must be a table"
            raise ValueError(msg)
        raw_path = entry.get("path")
        if not isinstance(raw_path, str) or not raw_path:
            msg = f"Mount '{name}' missing required 'path' field"
            raise ValueError(msg)
        root = Path(raw_path).expanduser()
        if not root.is_absolute():
            root = base_dir / root
        mounts[name] = MountConfig(
            root=Path(os.path.normpath(os.path.abspath(root))),
            writable=_require_bool(name, "writable", entry.get("writable", False)),
            checksum=_require_bool(name, "checksum", entry.get("checksum", True)),
        )
    return MappingProxyType(mounts)


def load_mounts(config_path: Path) -> Mapping[str, MountConfig]:
    """Read the mount table from a TOML file."""
    if not config_path.is_file():
        msg = f"Mount configuration not found: {config_path}"
        raise ValueError(msg)
    data = tomllib.loads(config_path.read_text(encoding="utf-8"))
    mounts = parse_mounts(data, config_path.parent.absolute())
    for name, mount in mounts.items():
        logger.info(
            "Mount %s -> %s (writable=%s, checksum=%s)",
            name,
            mount.root,
            mount.writable,
            mount.checksum,
        )
    return mounts
