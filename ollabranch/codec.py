from __future__ import annotations

"""Wire codec: Request → JSON body, JSON body/line → Response.

Kept free of any I/O so both the sync and async clients (and tests) share the
exact same encoding rules.
"""

import json
from typing import Any, Dict, List

from pydantic import ValidationError

from ollabranch.errors import DecodeError
from ollabranch.models import ModelInfo, Request, Response

# A streamed line starting with this literal carries a server error payload
ERROR_SENTINEL = '{"error'


def request_to_dict(request: Request) -> Dict[str, Any]:
    """Return the wire dictionary for *request* (unset optionals omitted).

    ``options`` bypasses the serializer so its values reach the wire as given.
    """
    body = request.model_dump(mode="json", exclude_none=True, exclude={"options"})
    if request.options is not None:
        body["options"] = dict(request.options)
    return body


def encode_request(request: Request) -> str:
    return json.dumps(request_to_dict(request))


def decode_request(body: str | bytes) -> Request:
    """Parse a wire request back into a :class:`Request` (used by monitors and tests)."""
    try:
        return Request.model_validate(json.loads(body))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise DecodeError(f"Malformed request body: {exc}") from exc


def is_error_line(line: str) -> bool:
    """True when *line* is a sentinel error payload rather than a partial response."""
    return line.startswith(ERROR_SENTINEL)


def decode_response(body: str | bytes) -> Response:
    """Decode one complete response object.

    Raises
    ------
    DecodeError
        If *body* is not JSON, not an object, or does not fit the Response shape.
    """
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"Malformed JSON: {exc.msg}", data={"body": _preview(body)}) from exc
    if not isinstance(payload, dict):
        raise DecodeError("Expected a JSON object", data={"body": _preview(body)})
    try:
        return Response.model_validate(payload)
    except ValidationError as exc:
        raise DecodeError(f"Unexpected response shape: {exc.error_count()} error(s)", data={"body": _preview(body)}) from exc


def decode_model_list(body: str | bytes) -> List[ModelInfo]:
    """Decode the ``/api/tags`` document into model descriptors."""
    try:
        payload = json.loads(body)
        return [ModelInfo.model_validate(m) for m in payload.get("models") or []]
    except (json.JSONDecodeError, AttributeError, ValidationError) as exc:
        raise DecodeError(f"Malformed model list: {exc}", data={"body": _preview(body)}) from exc


def _preview(body: str | bytes, limit: int = 200) -> str:
    text = body.decode("utf-8", errors="replace") if isinstance(body, (bytes, bytearray)) else str(body)
    return text if len(text) <= limit else text[:limit] + "..."
