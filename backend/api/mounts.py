"""Mount index and manifest listing endpoints."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from backend.api.deps import get_mount, get_mounts, get_settings
from backend.config import Settings
from backend.filesystem.mount_config import MountConfig
from backend.services.scanner import scan_tree, stream_manifest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["mounts"])


@router.get("/")
async def list_mounts(
    mounts: Annotated[Mapping[str, MountConfig], Depends(get_mounts)],
) -> list[str]:
    """List the configured mount names."""
    logger.info("Listing mounts")
    return sorted(mounts)


@router.get("/{mount}")
@router.get("/{mount}/")
async def list_mount(
    mount: str,
    config: Annotated[MountConfig, Depends(get_mount)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> StreamingResponse:
    """Stream the mount's manifest as concatenated JSON records."""
    logger.info("Listing %s (%s)", mount, config.root)
    return StreamingResponse(
        stream_manifest(scan_tree(config), settings.manifest_flush_seconds),
        media_type="application/json",
    )
