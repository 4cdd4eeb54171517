from __future__ import annotations

"""Stream decoding for newline-delimited ``/api/generate`` bodies.

The decoder turns raw lines into an ordered sequence of events:

* zero or more :class:`PartialChunk` – one per ordinary line, carrying only
  the newest fragment;
* exactly one :class:`FinalChunk` – either the server's ``done=true`` object
  with its text replaced by the *full* accumulated output, or a synthetic
  terminal response built from a sentinel error line.

After the final event no further line is pulled from the source.  A source
that runs dry before a final event is a :class:`~ollabranch.errors.DecodeError`.
"""

from typing import AsyncIterable, AsyncIterator, Iterable, Iterator, List, Optional, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict

from ollabranch.codec import decode_response, is_error_line
from ollabranch.errors import DecodeError
from ollabranch.models import Response


class PartialChunk(BaseModel):
    """One streamed fragment (``response.done`` is False)."""

    model_config = ConfigDict(frozen=True)

    response: Response
    index: int

    @property
    def text(self) -> str:
        return self.response.response


class FinalChunk(BaseModel):
    """The single terminal event of a stream."""

    model_config = ConfigDict(frozen=True)

    response: Response
    error: bool = False

    @property
    def text(self) -> str:
        return self.response.response


StreamEvent = Union[PartialChunk, FinalChunk]


class _Cancelled:
    """Outcome of a streamed turn stopped by its consumer."""

    _instance: Optional["_Cancelled"] = None

    def __new__(cls) -> "_Cancelled":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "CANCELLED"


CANCELLED = _Cancelled()


class StreamDecoder:
    """Stateful line decoder; one instance per streamed exchange."""

    def __init__(self) -> None:
        self._fragments: List[str] = []
        self._count = 0
        self.final: Optional[FinalChunk] = None

    @property
    def finished(self) -> bool:
        return self.final is not None

    @property
    def text(self) -> str:
        """Everything received so far, concatenated."""
        return "".join(self._fragments)

    def feed(self, line: str) -> Optional[StreamEvent]:
        """Decode one raw line; blank lines yield ``None``."""
        if self.finished:
            raise DecodeError("Line received after the final response", data={"line": line[:200]})
        if not line.strip():
            return None

        if is_error_line(line):
            logger.warning(f"[STREAM] Server reported an error: {line.strip()}")
            self.final = FinalChunk(response=Response.error_placeholder(line), error=True)
            return self.final

        part = decode_response(line)
        if part.done:
            part.response = self.text
            self.final = FinalChunk(response=part)
            logger.debug(f"[STREAM] Final response after {self._count} chunk(s), {len(part.response)} chars")
            return self.final

        self._fragments.append(part.response)
        self._count += 1
        return PartialChunk(response=part, index=self._count - 1)

    def finish(self) -> FinalChunk:
        """Assert the stream produced its terminal object."""
        if self.final is None:
            raise DecodeError(
                "Stream ended without a final response",
                data={"chunks": self._count, "partial_text": self.text[-200:]},
            )
        return self.final

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------

    def iter_events(self, lines: Iterable[str]) -> Iterator[StreamEvent]:
        """Pull lines lazily and yield events; stops reading after the final one."""
        for line in lines:
            event = self.feed(line)
            if event is None:
                continue
            yield event
            if isinstance(event, FinalChunk):
                return
        self.finish()

    async def aiter_events(self, lines: AsyncIterable[str]) -> AsyncIterator[StreamEvent]:
        """Async counterpart of :meth:`iter_events`."""
        async for line in lines:
            event = self.feed(line)
            if event is None:
                continue
            yield event
            if isinstance(event, FinalChunk):
                return
        self.finish()
