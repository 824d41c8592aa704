"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Bitfog server settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Mounts
    mounts_file: Path = Path("./bitfog.toml")

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8675, ge=1, le=65535)

    # Manifest streaming
    manifest_flush_seconds: float = Field(default=10.0, gt=0)

    # Delta sync
    rdiff_command: str = "rdiff"
    temp_dir: Path | None = None
