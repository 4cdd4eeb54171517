from __future__ import annotations

"""Multi-turn conversations over the generate API.

:class:`Conversation` is what callers normally use: it picks (or creates) the
session for a model, seeds the request with that session's continuation
tokens, sends it, and records the finished turn on the branch that was
current when the turn started.

Cancelled streamed turns are not recorded; the branch keeps the tokens of the
last completed turn.
"""

import asyncio
import threading
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from loguru import logger

from ollabranch.artifacts import Artifact, scan
from ollabranch.client import AsyncChunkCallback, AsyncProtocolClient, ChunkCallback, ProtocolClient
from ollabranch.models import Request, Response
from ollabranch.sessions import Session, SessionRegistry
from ollabranch.settings import settings
from ollabranch.stream import FinalChunk, StreamEvent, _Cancelled


class _ConversationBase:
    def __init__(self, registry: Optional[SessionRegistry] = None) -> None:
        self.sessions = registry if registry is not None else SessionRegistry()

    def _prepare(
        self,
        model: Optional[str],
        prompt: str,
        images: Optional[Sequence[str]],
        options: Optional[Dict[str, Any]],
        system: Optional[str],
    ) -> Tuple[Request, str]:
        """Build the request for the next turn and capture its branch."""
        model = model or settings.DEFAULT_MODEL
        branch, context = self.sessions.checkout(model)
        request = Request(
            model=model,
            prompt=prompt,
            images=list(images) if images else None,
            context=context,
            options=dict(options) if options is not None else None,
            system=system,
        )
        return request, branch

    def _record(self, request: Request, response: Response, branch: str) -> None:
        self.sessions.append(request, response, branch=branch)
        logger.debug(f"[CONVERSATION] Recorded turn on {branch} ({len(response.context)} context tokens)")

    # ------------------------------------------------------------------
    def branch(self, name: str) -> Session:
        """Fork the current session into *name* and continue there."""
        return self.sessions.clone_branch(name)

    def switch(self, name: str) -> Session:
        return self.sessions.switch_branch(name)

    def history(self, branch: Optional[str] = None) -> Tuple:
        session = self.sessions.get_branch(branch) if branch else self.sessions.current_session()
        return session.interactions if session is not None else ()

    @staticmethod
    def artifacts(response: Response | str) -> List[Artifact]:
        """Diagram / command blocks embedded in a finished response."""
        text = response.response if isinstance(response, Response) else response
        return scan(text)


class Conversation(_ConversationBase):
    """Blocking conversation engine."""

    def __init__(self, client: Optional[ProtocolClient] = None, registry: Optional[SessionRegistry] = None) -> None:
        super().__init__(registry)
        self.client = client if client is not None else ProtocolClient()

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "Conversation":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def ask(
        self,
        model: Optional[str],
        prompt: str,
        *,
        images: Optional[Sequence[str]] = None,
        options: Optional[Dict[str, Any]] = None,
        system: Optional[str] = None,
    ) -> Response:
        """One non-streamed turn."""
        request, branch = self._prepare(model, prompt, images, options, system)
        response = self.client.send(request)
        self._record(request, response, branch)
        return response

    def ask_streaming(
        self,
        model: Optional[str],
        prompt: str,
        on_chunk: ChunkCallback,
        *,
        images: Optional[Sequence[str]] = None,
        options: Optional[Dict[str, Any]] = None,
        system: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Union[Response, _Cancelled]:
        """One streamed turn through a callback; see :meth:`ProtocolClient.send_streaming`."""
        request, branch = self._prepare(model, prompt, images, options, system)
        result = self.client.send_streaming(request, on_chunk, cancel=cancel)
        if isinstance(result, Response):
            self._record(request, result, branch)
        return result

    def stream(
        self,
        model: Optional[str],
        prompt: str,
        *,
        images: Optional[Sequence[str]] = None,
        options: Optional[Dict[str, Any]] = None,
        system: Optional[str] = None,
    ) -> Iterator[StreamEvent]:
        """One streamed turn as an event iterator; recorded when the final chunk arrives."""
        request, branch = self._prepare(model, prompt, images, options, system)
        for event in self.client.stream(request):
            if isinstance(event, FinalChunk):
                self._record(request, event.response, branch)
            yield event


class AsyncConversation(_ConversationBase):
    """Asyncio conversation engine sharing the same registry semantics."""

    def __init__(self, client: Optional[AsyncProtocolClient] = None, registry: Optional[SessionRegistry] = None) -> None:
        super().__init__(registry)
        self.client = client if client is not None else AsyncProtocolClient()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def ask(
        self,
        model: Optional[str],
        prompt: str,
        *,
        images: Optional[Sequence[str]] = None,
        options: Optional[Dict[str, Any]] = None,
        system: Optional[str] = None,
    ) -> Response:
        request, branch = self._prepare(model, prompt, images, options, system)
        response = await self.client.send(request)
        self._record(request, response, branch)
        return response

    async def ask_streaming(
        self,
        model: Optional[str],
        prompt: str,
        on_chunk: AsyncChunkCallback,
        *,
        images: Optional[Sequence[str]] = None,
        options: Optional[Dict[str, Any]] = None,
        system: Optional[str] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Union[Response, _Cancelled]:
        request, branch = self._prepare(model, prompt, images, options, system)
        result = await self.client.send_streaming(request, on_chunk, cancel=cancel)
        if isinstance(result, Response):
            self._record(request, result, branch)
        return result

    async def stream(
        self,
        model: Optional[str],
        prompt: str,
        *,
        images: Optional[Sequence[str]] = None,
        options: Optional[Dict[str, Any]] = None,
        system: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        request, branch = self._prepare(model, prompt, images, options, system)
        async for event in self.client.stream(request):
            if isinstance(event, FinalChunk):
                self._record(request, event.response, branch)
            yield event
