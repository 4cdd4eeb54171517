"""ollabranch – branching, streaming conversations with an Ollama server."""

from .artifacts import Artifact, ArtifactKind, scan  # noqa: F401
from .client import AsyncProtocolClient, ProtocolClient  # noqa: F401
from .conversation import AsyncConversation, Conversation  # noqa: F401
from .errors import DecodeError, NetworkError, OllabranchError, RenderError, SessionStateError  # noqa: F401
from .models import Interaction, ModelInfo, Request, Response  # noqa: F401
from .monitor import LoggingMonitor, Monitor, MonitorRegistry  # noqa: F401
from .sessions import Session, SessionRegistry  # noqa: F401
from .stream import CANCELLED, FinalChunk, PartialChunk, StreamDecoder  # noqa: F401

__version__ = "0.1.0"

__all__ = [
    "Artifact",
    "ArtifactKind",
    "scan",
    "ProtocolClient",
    "AsyncProtocolClient",
    "Conversation",
    "AsyncConversation",
    "OllabranchError",
    "NetworkError",
    "DecodeError",
    "SessionStateError",
    "RenderError",
    "Request",
    "Response",
    "Interaction",
    "ModelInfo",
    "Monitor",
    "MonitorRegistry",
    "LoggingMonitor",
    "Session",
    "SessionRegistry",
    "StreamDecoder",
    "PartialChunk",
    "FinalChunk",
    "CANCELLED",
]
