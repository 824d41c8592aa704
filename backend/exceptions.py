"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients
  (delta engine failures, unexpected tool output, etc.).  The global handler
  logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``ValueError``: for validation errors that are safe to forward to clients.
  The global ``ValueError`` handler returns ``str(exc)`` as the 422 detail.
- ``HTTPException``: for protocol-level rejections (bad path, unknown mount,
  read-only mount) raised directly by the endpoints.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``backend/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class DeltaEngineError(InternalServerError):
    """Raised when computing a signature, delta, or patch fails.

    The target file is never modified when this is raised.
    """
