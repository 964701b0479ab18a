"""Pull-based stream over an upstream chat completion response."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import AsyncIterator, Awaitable
from types import TracebackType
from typing import TypeVar

import httpx
from pydantic import ValidationError

from chatbridge.errors import ChatBridgeError, DecodeError, TransportError, normalize_upstream_error
from chatbridge.sse import SSEEvent, SSEReader
from chatbridge.types import ChatCompletionChunk, ChatCompletionResponse

_HTTP_ERRORS = (httpx.HTTPError, httpx.StreamError)
_T = TypeVar("_T")


class StreamState(enum.Enum):
    UNCHECKED = "unchecked"
    BUFFERED_READ = "buffered_read"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"
    CLOSED = "closed"


_TERMINAL = frozenset({StreamState.DONE, StreamState.FAILED, StreamState.CLOSED})


class ChatStream:
    """Single-consumer stream of canonical chunks.

    Streaming and buffered upstream responses look the same to the caller:
    pull with ``await stream.next()`` (or ``async for``) until
    ``StopAsyncIteration``. A buffered (non-streaming) call yields no chunks;
    its result is exposed on :attr:`response` once the stream is exhausted.

    The first pull inspects the HTTP status. A failed status raises an
    :class:`~chatbridge.errors.UpstreamError` once, after which the stream is
    exhausted. The terminal error, if any, stays available on :attr:`error`.
    Malformed event-stream frames are skipped.

    ``next`` must not be called concurrently, ``aclose`` may be called at any
    time, including while a read is in flight.
    """

    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        response: httpx.Response,
        *,
        streaming: bool,
        model_hint: str | None = None,
    ) -> None:
        self._response = response
        self._streaming = streaming
        self._model_hint = model_hint
        self._state = StreamState.UNCHECKED
        self._events: AsyncIterator[SSEEvent] | None = None
        self._result: ChatCompletionResponse | None = None
        self._error: ChatBridgeError | None = None
        self._closed = False

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def streaming(self) -> bool:
        return self._streaming

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def response(self) -> ChatCompletionResponse | None:
        """Buffered result of a non-streaming call, set once exhausted."""
        return self._result

    @property
    def error(self) -> ChatBridgeError | None:
        return self._error

    def __aiter__(self) -> ChatStream:
        return self

    async def __anext__(self) -> ChatCompletionChunk:
        return await self.next()

    async def __aenter__(self) -> ChatStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def next(self) -> ChatCompletionChunk:
        """Return the next chunk or raise ``StopAsyncIteration`` when exhausted."""
        if self._state is StreamState.UNCHECKED:
            await self._start()
        if self._state is StreamState.STREAMING:
            return await self._read_chunk()
        raise StopAsyncIteration

    async def aclose(self) -> None:
        """Release the underlying connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._state not in _TERMINAL:
            self._state = StreamState.CLOSED
        await self._response.aclose()

    async def _start(self) -> None:
        if not self._response.is_success:
            body = await self._drain_error_body()
            error = normalize_upstream_error(
                self._response.status_code, body, model_hint=self._model_hint
            )
            raise self._fail(error)

        if not self._streaming:
            self._state = StreamState.BUFFERED_READ
            body = await self._read(self._response.aread())
            try:
                result = ChatCompletionResponse.model_validate_json(body)
            except ValidationError as exc:
                raise self._fail(DecodeError(f"failed to decode completion response: {exc}")) from exc
            self._result = result.normalized()
            self._state = StreamState.DONE
            return

        self._events = SSEReader(self._response.aiter_lines()).__aiter__()
        self._state = StreamState.STREAMING

    async def _read_chunk(self) -> ChatCompletionChunk:
        assert self._events is not None
        while True:
            try:
                event = await self._read(self._events.__anext__())
            except StopAsyncIteration:
                if self._state is StreamState.STREAMING:
                    self._state = StreamState.DONE
                raise

            if not event.data or event.is_done:
                continue
            try:
                chunk = ChatCompletionChunk.model_validate_json(event.data)
            except ValidationError:
                self._logger.debug("Skipping malformed stream frame: %.200s", event.data)
                continue
            return chunk.normalized()

    async def _read(self, pending: Awaitable[_T]) -> _T:
        try:
            return await pending
        except asyncio.CancelledError:
            if self._state not in _TERMINAL:
                self._fail(TransportError("read cancelled"))
            raise
        except _HTTP_ERRORS as exc:
            if self._state is StreamState.CLOSED:
                raise StopAsyncIteration from None
            raise self._fail(TransportError(f"failed to read response: {exc}")) from exc

    async def _drain_error_body(self) -> bytes:
        try:
            return await self._response.aread()
        except asyncio.CancelledError:
            self._fail(TransportError("read cancelled"))
            raise
        except _HTTP_ERRORS as exc:
            self._logger.debug("Could not read error body (status %s): %s", self.status_code, exc)
            return b""

    def _fail(self, error: ChatBridgeError) -> ChatBridgeError:
        self._state = StreamState.FAILED
        self._error = error
        return error
