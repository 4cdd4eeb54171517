from __future__ import annotations

"""Wire-level data models for the Ollama ``/api/generate`` protocol.

The shapes mirror the JSON documents exchanged with the server.  Field names
match the wire names so ``model_dump(exclude_none=True)`` is the request body
and ``model_validate`` accepts a response object as-is.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Request(BaseModel):
    """Payload for one generation call."""

    model: str = Field(..., min_length=1, description="(required) the model name")
    prompt: str = Field("", description="The prompt to generate a response for")
    images: Optional[List[str]] = Field(None, description="Base64 encoded images for multimodal models")
    stream: bool = Field(False, description="Return a stream of partial objects instead of one object")
    context: Optional[List[int]] = Field(None, description="Continuation tokens from the previous response")
    options: Optional[Dict[str, Any]] = Field(
        None, description="Model parameters such as temperature; opaque, sent exactly as given"
    )

    # Less common request fields, omitted from the wire when unset
    system: Optional[str] = Field(None, description="System prompt (overrides the Modelfile)")
    template: Optional[str] = Field(None, description="Prompt template (overrides the Modelfile)")
    format: Optional[str] = Field(None, description='Response format, currently only "json"')
    raw: Optional[bool] = Field(None, description="Skip prompt templating; no context is returned")

    @field_validator("model")
    @classmethod
    def _model_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("model must be a non-empty name")
        return value


class Response(BaseModel):
    """A generation result.

    Partial responses (``done=False``) only carry the newest fragment in
    ``response``.  A terminal response (``done=True``) carries the complete
    text, the continuation tokens and the timing counters (nanoseconds).
    """

    model_config = ConfigDict(extra="ignore")

    model: str = ""
    created_at: Optional[str] = None
    response: str = ""
    done: bool = False
    done_reason: Optional[str] = None
    context: List[int] = Field(default_factory=list)
    total_duration: int = 0
    load_duration: int = 0
    prompt_eval_count: int = 0
    prompt_eval_duration: int = 0
    eval_count: int = 0
    eval_duration: int = 0

    def tokens_per_second(self) -> float:
        """How fast the response was generated (tokens/s)."""
        if not self.eval_duration:
            return 0.0
        return 1e9 * self.eval_count / self.eval_duration

    @classmethod
    def error_placeholder(cls, raw_line: str) -> "Response":
        """Synthetic terminal response carrying a server error line verbatim."""
        return cls(
            model="?",
            created_at=datetime.now(timezone.utc).isoformat(),
            response=raw_line,
            done=True,
            context=[],
            total_duration=3,
            load_duration=1,
            prompt_eval_count=0,
            prompt_eval_duration=1,
            eval_count=0,
            eval_duration=1,
        )


class Interaction(BaseModel):
    """Immutable (request, response) pair recorded in a session."""

    model_config = ConfigDict(frozen=True)

    request: Request
    response: Response
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def record(cls, request: Request, response: Response) -> "Interaction":
        """Snapshot both sides so later mutation by the caller cannot leak in."""
        return cls(request=request.model_copy(deep=True), response=response.model_copy(deep=True))


# ---------------------------------------------------------------------------
# /api/tags
# ---------------------------------------------------------------------------

class ModelDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    format: Optional[str] = None
    family: Optional[str] = None
    families: Optional[List[str]] = None
    parameter_size: Optional[str] = None
    quantization_level: Optional[str] = None
    parent_model: Optional[str] = None


class ModelInfo(BaseModel):
    """One entry of the server's installed-model list."""

    model_config = ConfigDict(extra="ignore", protected_namespaces=())

    name: str
    model: Optional[str] = None
    modified_at: Optional[str] = None
    size: int = 0
    digest: Optional[str] = None
    details: Optional[ModelDetails] = None

    def summary(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "size_gb": round(self.size / 1e9, 1),
            "family": self.details.family if self.details else None,
            "parameter_size": self.details.parameter_size if self.details else None,
        }
