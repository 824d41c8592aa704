"""Wire schema for manifest records."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

_UINT64_LIMIT = 1 << 64


class ManifestRecordSchema(BaseModel):
    """One file entry as it appears in a manifest stream.

    Field names match the wire format; missing numeric fields decode as zero.
    """

    model_config = ConfigDict(strict=True, extra="ignore")

    name: str = ""
    size: int = Field(default=0, ge=0)
    mode: int = 0
    mtime: int = 0
    hash: int = Field(default=0, ge=0, lt=_UINT64_LIMIT)
    linkdest: str = ""
