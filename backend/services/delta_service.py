"""Delta engine: signature, delta and patch over files via the rdiff CLI."""

from __future__ import annotations

import logging
import subprocess
from typing import TYPE_CHECKING, Protocol

from backend.exceptions import DeltaEngineError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class DeltaEngine(Protocol):
    """Synchronous signature/delta/patch contract.

    Each call reads its inputs from existing files and writes its whole result
    to ``out``. Implementations raise ``DeltaEngineError`` on failure.
    """

    def signature(self, basis: Path, out: Path) -> None: ...

    def delta(self, signature: Path, new: Path, out: Path) -> None: ...

    def patch(self, basis: Path, delta: Path, out: Path) -> None: ...


class RdiffEngine:
    """Runs librsync's ``rdiff`` tool for each operation."""

    def __init__(self, command: str = "rdiff") -> None:
        self.command = command

    def _run(self, operation: str, *paths: Path) -> None:
        """Run one rdiff operation, translating failures into DeltaEngineError."""
        # Outputs are pre-created temp files, which rdiff only overwrites with --force.
        try:
            subprocess.run(
                [self.command, "--force", operation, *(str(p) for p in paths)],
                check=True,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as exc:
            logger.error("rdiff not found (%s). Install librsync tools.", self.command)
            raise DeltaEngineError(f"rdiff executable not found: {self.command}") from exc
        except subprocess.CalledProcessError as exc:
            logger.error(
                "rdiff %s failed (exit %d): %s",
                operation,
                exc.returncode,
                exc.stderr.strip() if exc.stderr else "no stderr",
            )
            raise DeltaEngineError(f"rdiff {operation} failed with exit {exc.returncode}") from exc

    def signature(self, basis: Path, out: Path) -> None:
        self._run("signature", basis, out)

    def delta(self, signature: Path, new: Path, out: Path) -> None:
        self._run("delta", signature, new, out)

    def patch(self, basis: Path, delta: Path, out: Path) -> None:
        self._run("patch", basis, delta, out)
