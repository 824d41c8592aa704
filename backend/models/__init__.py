"""Data model shared by the bitfog server and client."""

from backend.models.manifest import FileRecord, Manifest, build_manifest

__all__ = [
    "FileRecord",
    "Manifest",
    "build_manifest",
]
