#!/usr/bin/env python3
"""
Tests for the HTTP protocol client against stubbed transports.
"""

import asyncio
import json
import threading

import httpx
import pytest

from ollabranch.client import GENERATE_PATH, TAGS_PATH
from ollabranch.errors import DecodeError, NetworkError
from ollabranch.models import Request, Response
from ollabranch.stream import CANCELLED, FinalChunk, PartialChunk

from conftest import NDJSON_HEADERS, CountingStream, final, line, make_async_client, make_client, partial


def streaming_handler(stream: CountingStream, seen: list = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(json.loads(request.content))
        return httpx.Response(200, headers=NDJSON_HEADERS, stream=stream)

    return handler


class TestSend:
    """Synchronous single-object exchange."""

    def test_send_posts_and_decodes(self, monitors, monitor):
        captured = {}

        def handler(request):
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={**final([5, 6]), "response": "Hello there"})

        client = make_client(handler, monitors=monitors)
        resp = client.send(Request(model="mistral", prompt="hi", context=[1, 2], stream=True))

        assert captured["path"] == GENERATE_PATH
        assert captured["body"]["stream"] is False
        assert captured["body"]["context"] == [1, 2]
        assert resp.response == "Hello there"
        assert resp.context == [5, 6]
        assert json.loads(monitor.requests[0])["prompt"] == "hi"
        assert "Hello there" in monitor.responses[0]

    def test_malformed_body(self, monitors, monitor):
        client = make_client(lambda request: httpx.Response(200, text="<html>oops</html>"), monitors=monitors)
        with pytest.raises(DecodeError):
            client.send(Request(model="m"))
        assert isinstance(monitor.errors[0], DecodeError)

    def test_http_error_status(self):
        client = make_client(lambda request: httpx.Response(404, json={"error": "model 'nope' not found"}))
        with pytest.raises(NetworkError) as excinfo:
            client.send(Request(model="nope"))
        assert "model 'nope' not found" in str(excinfo.value)
        assert excinfo.value.data["status"] == 404

    def test_connection_refused(self, monitors, monitor):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler, monitors=monitors)
        with pytest.raises(NetworkError):
            client.send(Request(model="m"))
        assert len(monitor.errors) == 1

    def test_bounded_retry_on_connect_error(self):
        attempts = []

        def handler(request):
            attempts.append(1)
            if len(attempts) < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json=final([1]))

        assert make_client(handler, max_retries=2).send(Request(model="m")).context == [1]
        assert len(attempts) == 3

    def test_retries_exhausted(self):
        attempts = []

        def handler(request):
            attempts.append(1)
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkError):
            make_client(handler, max_retries=1).send(Request(model="m"))
        assert len(attempts) == 2

    def test_read_timeout_is_not_retried(self):
        attempts = []

        def handler(request):
            attempts.append(1)
            raise httpx.ReadTimeout("stalled", request=request)

        with pytest.raises(NetworkError):
            make_client(handler, max_retries=3).send(Request(model="m"))
        assert len(attempts) == 1

    def test_extra_headers_are_passed_through(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json=final([1]))

        make_client(handler, headers={"Authorization": "Bearer t0k"}).send(Request(model="m"))
        assert seen["authorization"] == "Bearer t0k"
        assert seen["content-type"] == "application/json"


class TestStreaming:
    """Line-by-line streaming, callbacks and cancellation."""

    def test_send_streaming_accumulates_full_text(self):
        stream = CountingStream([line(partial("Why ")), line(partial("hello")), line(partial("!")), line(final([9, 9]))])
        seen = []
        client = make_client(streaming_handler(stream, seen))
        chunks = []

        result = client.send_streaming(Request(model="m", prompt="p"), lambda r: chunks.append(r) or True)

        assert seen[0]["stream"] is True
        assert isinstance(result, Response)
        assert result.response == "Why hello!"
        assert result.context == [9, 9]
        assert [c.response for c in chunks[:-1]] == ["Why ", "hello", "!"]
        assert "".join(c.response for c in chunks[:-1]) == chunks[-1].response
        assert chunks[-1] is result
        assert stream.closed

    def test_callback_returning_none_keeps_reading(self):
        stream = CountingStream([line(partial("a")), line(partial("b")), line(final([1]))])
        result = make_client(streaming_handler(stream)).send_streaming(Request(model="m"), lambda r: None)
        assert result.response == "ab"

    def test_stop_on_second_chunk(self):
        stream = CountingStream([line(partial("one")), line(partial("two")), line(partial("three")), line(final([1]))])
        calls = []

        def on_chunk(resp):
            calls.append(resp.response)
            return len(calls) < 2

        result = make_client(streaming_handler(stream)).send_streaming(Request(model="m"), on_chunk)

        assert result is CANCELLED
        assert calls == ["one", "two"]
        assert stream.pulled == 2
        assert stream.closed

    def test_error_sentinel_mid_stream(self, monitors, monitor):
        stream = CountingStream(
            [line(partial("par")), b'{"error": "x"}\n', line(partial("unread")), line(final([1]))]
        )
        calls = []
        client = make_client(streaming_handler(stream), monitors=monitors)

        result = client.send_streaming(Request(model="m"), lambda r: calls.append(r) or True)

        assert result.done is True
        assert result.response == '{"error": "x"}'
        assert calls[-1] is result
        assert len(calls) == 2
        assert stream.pulled == 2
        assert monitor.responses[-1] == '{"error": "x"}'

    def test_stream_without_final_is_decode_error(self, monitors, monitor):
        stream = CountingStream([line(partial("never")), line(partial(" ends"))])
        client = make_client(streaming_handler(stream), monitors=monitors)
        with pytest.raises(DecodeError):
            client.send_streaming(Request(model="m"), lambda r: True)
        assert isinstance(monitor.errors[-1], DecodeError)

    def test_cancel_token(self):
        stream = CountingStream([line(partial("a")), line(partial("b")), line(final([1]))])
        cancel = threading.Event()
        calls = []

        def on_chunk(resp):
            calls.append(resp)
            cancel.set()
            return True

        result = make_client(streaming_handler(stream)).send_streaming(Request(model="m"), on_chunk, cancel=cancel)
        assert result is CANCELLED
        assert len(calls) == 1

    def test_pull_based_stream_can_be_abandoned(self):
        stream = CountingStream([line(partial("a")), line(partial("b")), line(partial("c")), line(final([1]))])
        events = make_client(streaming_handler(stream)).stream(Request(model="m"))
        first = next(events)
        events.close()
        assert isinstance(first, PartialChunk)
        assert stream.pulled == 1
        assert stream.closed

    def test_pull_based_stream_full(self):
        stream = CountingStream([line(partial("x")), line(final([2]))])
        events = list(make_client(streaming_handler(stream)).stream(Request(model="m")))
        assert isinstance(events[-1], FinalChunk)
        assert events[-1].text == "x"

    def test_streaming_http_error(self):
        client = make_client(lambda request: httpx.Response(500, text="internal"))
        with pytest.raises(NetworkError) as excinfo:
            client.send_streaming(Request(model="m"), lambda r: True)
        assert "internal" in str(excinfo.value)


class TestListModels:
    def test_list_models(self):
        def handler(request):
            assert request.url.path == TAGS_PATH
            return httpx.Response(200, json={"models": [{"name": "mistral:latest", "size": 1}, {"name": "llava:7b"}]})

        assert [m.name for m in make_client(handler).list_models()] == ["mistral:latest", "llava:7b"]


class TestAsyncClient:
    """The asyncio client mirrors the blocking one."""

    @pytest.mark.asyncio
    async def test_send(self):
        client = make_async_client(lambda request: httpx.Response(200, json={**final([3]), "response": "hi"}))
        resp = await client.send(Request(model="m"))
        await client.aclose()
        assert resp.response == "hi"

    @pytest.mark.asyncio
    async def test_send_streaming_with_async_callback(self):
        body = line(partial("as")) + line(partial("ync")) + line(final([1, 2]))
        client = make_async_client(lambda request: httpx.Response(200, headers=NDJSON_HEADERS, content=body))
        seen = []

        async def on_chunk(resp):
            seen.append(resp.response)
            return True

        result = await client.send_streaming(Request(model="m"), on_chunk)
        await client.aclose()
        assert result.response == "async"
        assert seen == ["as", "ync", "async"]

    @pytest.mark.asyncio
    async def test_stop_and_sentinel(self):
        body = line(partial("a")) + line(partial("b")) + line(final([1]))
        client = make_async_client(lambda request: httpx.Response(200, headers=NDJSON_HEADERS, content=body))
        assert await client.send_streaming(Request(model="m"), lambda r: False) is CANCELLED

        body = line(partial("a")) + b'{"error": "boom"}\n' + line(final([1]))
        client = make_async_client(lambda request: httpx.Response(200, headers=NDJSON_HEADERS, content=body))
        result = await client.send_streaming(Request(model="m"), lambda r: True)
        assert result.response == '{"error": "boom"}'
        await client.aclose()

    @pytest.mark.asyncio
    async def test_stream_events(self):
        body = line(partial("x")) + line(partial("y")) + line(final([1]))
        client = make_async_client(lambda request: httpx.Response(200, headers=NDJSON_HEADERS, content=body))
        events = [e async for e in client.stream(Request(model="m"))]
        await client.aclose()
        assert [e.text for e in events] == ["x", "y", "xy"]

    @pytest.mark.asyncio
    async def test_cancel_token(self):
        body = line(partial("a")) + line(partial("b")) + line(final([1]))
        client = make_async_client(lambda request: httpx.Response(200, headers=NDJSON_HEADERS, content=body))
        cancel = asyncio.Event()
        calls = []

        async def on_chunk(resp):
            calls.append(resp.response)
            cancel.set()
            return True

        result = await client.send_streaming(Request(model="m"), on_chunk, cancel=cancel)
        await client.aclose()
        assert result is CANCELLED
        assert calls == ["a"]

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_async_client(handler)
        with pytest.raises(NetworkError):
            await client.send(Request(model="m"))
        await client.aclose()
