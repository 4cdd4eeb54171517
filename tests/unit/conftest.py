"""Shared helpers for the unit tests: NDJSON bodies and stub transports."""

import json
from typing import Any, Callable, Dict, Iterable, List

import httpx
import pytest

from ollabranch.client import AsyncProtocolClient, ProtocolClient
from ollabranch.monitor import MonitorRegistry

BASE_URL = "http://ollama.test:11434"
NDJSON_HEADERS = {"Content-Type": "application/x-ndjson; charset=utf-8"}


def partial(text: str, model: str = "mistral") -> Dict[str, Any]:
    return {"model": model, "created_at": "2024-01-01T00:00:00Z", "response": text, "done": False}


def final(context: List[int], model: str = "mistral", **counters: int) -> Dict[str, Any]:
    body = {
        "model": model,
        "created_at": "2024-01-01T00:00:01Z",
        "response": "",
        "done": True,
        "context": context,
        "total_duration": 5_000_000,
        "load_duration": 1_000,
        "prompt_eval_count": 3,
        "prompt_eval_duration": 2_000,
        "eval_count": 4,
        "eval_duration": 2_000_000_000,
    }
    body.update(counters)
    return body


def line(obj: Any) -> bytes:
    return (json.dumps(obj) + "\n").encode()


class CountingStream(httpx.SyncByteStream):
    """Yields one chunk per line and remembers how many chunks were pulled."""

    def __init__(self, chunks: Iterable[bytes]) -> None:
        self.chunks = list(chunks)
        self.pulled = 0
        self.closed = False

    def __iter__(self):
        for chunk in self.chunks:
            self.pulled += 1
            yield chunk

    def close(self) -> None:
        self.closed = True


class RecordingMonitor:
    def __init__(self, name: str = "recorder") -> None:
        self.name = name
        self.requests: List[str] = []
        self.responses: List[str] = []
        self.errors: List[BaseException] = []
        self.closed = False

    def requested(self, request: str) -> None:
        self.requests.append(request)

    def responded(self, response: str) -> None:
        self.responses.append(response)

    def oops(self, exception: BaseException) -> None:
        self.errors.append(exception)

    def close(self) -> None:
        self.closed = True


Handler = Callable[[httpx.Request], httpx.Response]


def make_client(handler: Handler, **kwargs: Any) -> ProtocolClient:
    return ProtocolClient(BASE_URL, transport=httpx.MockTransport(handler), **kwargs)


def make_async_client(handler: Handler, **kwargs: Any) -> AsyncProtocolClient:
    return AsyncProtocolClient(BASE_URL, transport=httpx.MockTransport(handler), **kwargs)


@pytest.fixture
def monitor() -> RecordingMonitor:
    return RecordingMonitor()


@pytest.fixture
def monitors(monitor: RecordingMonitor) -> MonitorRegistry:
    registry = MonitorRegistry()
    registry.register(monitor)
    return registry
