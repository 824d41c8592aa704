"""Shared API dependencies: settings, mount table, delta engine."""

from __future__ import annotations

from collections.abc import Mapping

from fastapi import HTTPException, Request, status

from backend.config import Settings
from backend.filesystem.mount_config import MountConfig
from backend.services.delta_service import DeltaEngine


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_mounts(request: Request) -> Mapping[str, MountConfig]:
    """Get the read-only mount table from app state."""
    mounts: Mapping[str, MountConfig] = request.app.state.mounts
    return mounts


def get_mount(mount: str, request: Request) -> MountConfig:
    """Look up the mount named in the request path. Raises 404 if unknown."""
    config = get_mounts(request).get(mount)
    if config is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Path not found: {mount}",
        )
    return config


def get_delta_engine(request: Request) -> DeltaEngine:
    """Get the delta engine from app state."""
    engine: DeltaEngine = request.app.state.delta_engine
    return engine
