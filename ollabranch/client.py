from __future__ import annotations

"""HTTP protocol client for the Ollama generate API.

Two flavours share one set of rules:

* :class:`ProtocolClient` – blocking, built on ``httpx.Client``.  Streaming
  runs on the calling thread and callbacks are invoked synchronously there.
* :class:`AsyncProtocolClient` – the same operations on ``httpx.AsyncClient``.

Neither keeps conversation state; continuation tokens must already be set on
the :class:`~ollabranch.models.Request` (see :mod:`ollabranch.conversation`).
"""

import asyncio
import inspect
import json
import threading
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterator, List, Optional, Union

import httpx
from loguru import logger

from ollabranch.codec import decode_model_list, decode_response, encode_request
from ollabranch.errors import DecodeError, NetworkError, OllabranchError
from ollabranch.models import ModelInfo, Request, Response
from ollabranch.monitor import MonitorRegistry
from ollabranch.settings import settings
from ollabranch.stream import CANCELLED, FinalChunk, StreamDecoder, StreamEvent, _Cancelled

GENERATE_PATH = "/api/generate"
TAGS_PATH = "/api/tags"

# Failures that happen before a single byte is exchanged; safe to retry.
_CONNECT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)

ChunkCallback = Callable[[Response], Optional[bool]]
AsyncChunkCallback = Callable[[Response], Union[Optional[bool], Awaitable[Optional[bool]]]]


def default_timeout() -> httpx.Timeout:
    return httpx.Timeout(settings.READ_TIMEOUT, connect=settings.CONNECT_TIMEOUT)


class _ClientBase:
    """Configuration and error translation shared by both clients."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        max_retries: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
        monitors: Optional[MonitorRegistry] = None,
    ) -> None:
        self.base_url = (base_url or settings.base_url).rstrip("/")
        self.max_retries = settings.MAX_RETRIES if max_retries is None else max_retries
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.monitors = monitors if monitors is not None else MonitorRegistry()

    # ------------------------------------------------------------------
    def _should_retry(self, exc: Exception, attempt: int) -> bool:
        if isinstance(exc, _CONNECT_ERRORS) and attempt < self.max_retries:
            logger.warning(f"[CLIENT] Connection to {self.base_url} failed ({exc!r}); retry {attempt + 1}/{self.max_retries}")
            return True
        return False

    def _network_error(self, exc: Exception) -> NetworkError:
        return NetworkError(f"Request to {self.base_url} failed: {exc}", data={"endpoint": self.base_url})

    @staticmethod
    def _status_error(status: int, body: str) -> NetworkError:
        message = body.strip()
        try:
            message = json.loads(body).get("error", message)
        except (json.JSONDecodeError, AttributeError):
            pass
        return NetworkError(f"HTTP {status}: {message}", data={"status": status, "body": body[:500]})

    def _fail(self, exc: OllabranchError) -> OllabranchError:
        logger.error(f"[CLIENT] {exc}")
        self.monitors.oops(exc)
        return exc


class ProtocolClient(_ClientBase):
    """Blocking client: ``send``, ``stream``, ``send_streaming``, ``list_models``."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[httpx.Timeout] = None,
        max_retries: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
        monitors: Optional[MonitorRegistry] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        super().__init__(base_url, max_retries=max_retries, headers=headers, monitors=monitors)
        self._http = httpx.Client(base_url=self.base_url, timeout=timeout or default_timeout(), transport=transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "ProtocolClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    def _send_http(self, method: str, path: str, body: Optional[str] = None, *, stream: bool = False) -> httpx.Response:
        http_request = self._http.build_request(method, path, content=body, headers=self.headers)
        attempt = 0
        while True:
            try:
                return self._http.send(http_request, stream=stream)
            except httpx.HTTPError as exc:
                if self._should_retry(exc, attempt):
                    attempt += 1
                    continue
                raise self._fail(self._network_error(exc)) from exc

    @contextmanager
    def _open_stream(self, body: str) -> Iterator[httpx.Response]:
        resp = self._send_http("POST", GENERATE_PATH, body, stream=True)
        try:
            if resp.is_error:
                resp.read()
                raise self._fail(self._status_error(resp.status_code, resp.text))
            yield resp
        finally:
            resp.close()

    def _lines(self, resp: httpx.Response) -> Iterator[str]:
        try:
            for line in resp.iter_lines():
                self.monitors.responded(line)
                yield line
        except httpx.HTTPError as exc:
            raise self._fail(self._network_error(exc)) from exc

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def send(self, request: Request) -> Response:
        """One POST, whole body decoded as a single response."""
        body = encode_request(request.model_copy(update={"stream": False}))
        self.monitors.requested(body)
        logger.info(f"[CLIENT] POST {GENERATE_PATH} model={request.model} context={len(request.context or [])} tokens")

        resp = self._send_http("POST", GENERATE_PATH, body)
        self.monitors.responded(resp.text)
        if resp.is_error:
            raise self._fail(self._status_error(resp.status_code, resp.text))
        try:
            result = decode_response(resp.text)
        except DecodeError as exc:
            self._fail(exc)
            raise
        logger.info(f"[CLIENT] Response done: {result.eval_count} tokens at {result.tokens_per_second():.1f} tok/s")
        return result

    def stream(self, request: Request) -> Iterator[StreamEvent]:
        """Pull-based streaming: yields partial chunks, then one final chunk.

        Closing the iterator early (``break`` or ``.close()``) stops reading
        and releases the connection.
        """
        body = encode_request(request.model_copy(update={"stream": True}))
        self.monitors.requested(body)
        logger.info(f"[STREAM] POST {GENERATE_PATH} model={request.model} context={len(request.context or [])} tokens")

        decoder = StreamDecoder()
        with self._open_stream(body) as resp:
            try:
                yield from decoder.iter_events(self._lines(resp))
            except DecodeError as exc:
                self._fail(exc)
                raise

    def send_streaming(
        self,
        request: Request,
        on_chunk: ChunkCallback,
        cancel: Optional[threading.Event] = None,
    ) -> Union[Response, _Cancelled]:
        """Stream a turn through a callback.

        *on_chunk* receives every partial response (newest fragment only) and
        finally the terminal response (full text).  Returning ``False`` from it
        stops reading at once and the call returns :data:`CANCELLED`.  Setting
        *cancel* has the same effect before the next delivery.
        """
        events = self.stream(request)
        try:
            for event in events:
                if cancel is not None and cancel.is_set():
                    logger.info("[STREAM] Cancelled by token")
                    return CANCELLED
                keep_going = on_chunk(event.response)
                if isinstance(event, FinalChunk):
                    return event.response
                if keep_going is False:
                    logger.info(f"[STREAM] Cancelled by consumer after chunk {event.index}")
                    return CANCELLED
        finally:
            events.close()
        raise self._fail(DecodeError("Stream ended without a final response"))

    def list_models(self) -> List[ModelInfo]:
        """Models installed on the server (``GET /api/tags``)."""
        resp = self._send_http("GET", TAGS_PATH)
        self.monitors.responded(resp.text)
        if resp.is_error:
            raise self._fail(self._status_error(resp.status_code, resp.text))
        try:
            return decode_model_list(resp.text)
        except DecodeError as exc:
            self._fail(exc)
            raise


class AsyncProtocolClient(_ClientBase):
    """Asyncio flavour of :class:`ProtocolClient`."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[httpx.Timeout] = None,
        max_retries: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
        monitors: Optional[MonitorRegistry] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(base_url, max_retries=max_retries, headers=headers, monitors=monitors)
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout or default_timeout(), transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "AsyncProtocolClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    async def _send_http(self, method: str, path: str, body: Optional[str] = None, *, stream: bool = False) -> httpx.Response:
        http_request = self._http.build_request(method, path, content=body, headers=self.headers)
        attempt = 0
        while True:
            try:
                return await self._http.send(http_request, stream=stream)
            except httpx.HTTPError as exc:
                if self._should_retry(exc, attempt):
                    attempt += 1
                    continue
                raise self._fail(self._network_error(exc)) from exc

    @asynccontextmanager
    async def _open_stream(self, body: str) -> AsyncIterator[httpx.Response]:
        resp = await self._send_http("POST", GENERATE_PATH, body, stream=True)
        try:
            if resp.is_error:
                await resp.aread()
                raise self._fail(self._status_error(resp.status_code, resp.text))
            yield resp
        finally:
            await resp.aclose()

    async def _lines(self, resp: httpx.Response) -> AsyncIterator[str]:
        try:
            async for line in resp.aiter_lines():
                self.monitors.responded(line)
                yield line
        except httpx.HTTPError as exc:
            raise self._fail(self._network_error(exc)) from exc

    # ------------------------------------------------------------------
    async def send(self, request: Request) -> Response:
        body = encode_request(request.model_copy(update={"stream": False}))
        self.monitors.requested(body)
        logger.info(f"[CLIENT] POST {GENERATE_PATH} model={request.model} (async)")

        resp = await self._send_http("POST", GENERATE_PATH, body)
        self.monitors.responded(resp.text)
        if resp.is_error:
            raise self._fail(self._status_error(resp.status_code, resp.text))
        try:
            return decode_response(resp.text)
        except DecodeError as exc:
            self._fail(exc)
            raise

    async def stream(self, request: Request) -> AsyncIterator[StreamEvent]:
        body = encode_request(request.model_copy(update={"stream": True}))
        self.monitors.requested(body)
        logger.info(f"[STREAM] POST {GENERATE_PATH} model={request.model} (async)")

        decoder = StreamDecoder()
        async with self._open_stream(body) as resp:
            lines = self._lines(resp)
            events = decoder.aiter_events(lines)
            try:
                async for event in events:
                    yield event
            except DecodeError as exc:
                self._fail(exc)
                raise
            finally:
                await events.aclose()
                await lines.aclose()

    async def send_streaming(
        self,
        request: Request,
        on_chunk: AsyncChunkCallback,
        cancel: Optional[asyncio.Event] = None,
    ) -> Union[Response, _Cancelled]:
        """Like :meth:`ProtocolClient.send_streaming`; *on_chunk* may be a coroutine function."""
        events = self.stream(request)
        try:
            async for event in events:
                if cancel is not None and cancel.is_set():
                    logger.info("[STREAM] Cancelled by token")
                    return CANCELLED
                keep_going = on_chunk(event.response)
                if inspect.isawaitable(keep_going):
                    keep_going = await keep_going
                if isinstance(event, FinalChunk):
                    return event.response
                if keep_going is False:
                    logger.info(f"[STREAM] Cancelled by consumer after chunk {event.index}")
                    return CANCELLED
        finally:
            await events.aclose()
        raise self._fail(DecodeError("Stream ended without a final response"))

    async def list_models(self) -> List[ModelInfo]:
        resp = await self._send_http("GET", TAGS_PATH)
        self.monitors.responded(resp.text)
        if resp.is_error:
            raise self._fail(self._status_error(resp.status_code, resp.text))
        try:
            return decode_model_list(resp.text)
        except DecodeError as exc:
            self._fail(exc)
            raise
