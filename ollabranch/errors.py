from __future__ import annotations

"""Centralised error types for ollabranch.

Each custom error is JSON-serialisable via ``to_dict`` so callers (CLI,
monitors, web front-ends) can expose machine-readable diagnostics instead of
free-form strings.

Cancellation of a streamed turn is *not* an error; see
:data:`ollabranch.stream.CANCELLED`.
"""

from typing import Any, Dict, Optional


class OllabranchError(Exception):
    """Base class for all structured ollabranch exceptions."""

    code: str = "OLLABRANCH_ERROR"
    status: str = "error"

    def __init__(self, message: str, *, data: Optional[Dict[str, Any]] = None) -> None:  # noqa: D401 – simple init
        super().__init__(message)
        self.message = message
        self.data = data or {}

    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:  # noqa: D401 – utility
        return {
            "status": self.status,
            "code": self.code,
            "message": self.message,
            "data": self.data,
        }

    def __str__(self) -> str:  # noqa: D401 – friendly repr
        return f"{self.code}: {self.message}"


class NetworkError(OllabranchError):
    """Connection refused, timeout, HTTP error status or I/O failure."""

    code = "NETWORK_ERROR"


class DecodeError(OllabranchError):
    """Malformed JSON body/line, or a stream that ended without a final object."""

    code = "DECODE_ERROR"


class SessionStateError(OllabranchError):
    """Programming error against the session registry (e.g. cloning nothing)."""

    code = "SESSION_STATE_ERROR"


class RenderError(OllabranchError):
    """An external render tool or remote executor could not do its job."""

    code = "RENDER_ERROR"
