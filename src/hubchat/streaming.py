"""Single-writer, single-subscriber incremental value cell."""

from __future__ import annotations

import asyncio
from typing import Any, Generic, TypeVar

from hubchat.errors import ClosedStreamError, StreamAlreadySubscribedError

T = TypeVar("T")

_UNSET: Any = object()


class StreamableValue(Generic[T]):
    """Incremental value with an open/closed lifecycle.

    The producer calls `update` any number of times and then `done` once.
    One consumer may `subscribe` and iterate the values it has not seen yet.
    Intermediate values can be coalesced when the consumer is slower than the
    producer; the latest value is never lost and the final value is observed
    exactly once.
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._closed = False
        self._version = 0
        self._changed = asyncio.Event()
        self._closed_event = asyncio.Event()
        self._subscribed = False

    @property
    def value(self) -> T:
        return self._value

    @property
    def closed(self) -> bool:
        return self._closed

    def update(self, value: T) -> None:
        if self._closed:
            raise ClosedStreamError("update() called on a stream that is already done")
        self._value = value
        self._version += 1
        self._changed.set()

    def done(self, value: T = _UNSET) -> None:
        """Close the stream, optionally replacing the value first. Repeat calls are no-ops."""
        if self._closed:
            return
        if value is not _UNSET and value != self._value:
            self._value = value
            self._version += 1
        self._closed = True
        self._changed.set()
        self._closed_event.set()

    def subscribe(self) -> tuple[T, StreamSubscription[T]]:
        """Attach the single consumer.

        Returns the current value and an async iterator over later values.
        A consumer that attaches after `done` gets the final value here and an
        iterator that is already exhausted.
        """
        if self._subscribed:
            raise StreamAlreadySubscribedError("stream already has a subscriber")
        self._subscribed = True
        return self._value, StreamSubscription(self, seen_version=self._version, finished=self._closed)

    async def final(self) -> T:
        await self._closed_event.wait()
        return self._value

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"StreamableValue({self._value!r}, {state})"


class StreamSubscription(Generic[T]):
    """Async iterator handed to the one subscriber of a StreamableValue."""

    def __init__(self, source: StreamableValue[T], *, seen_version: int, finished: bool) -> None:
        self._source = source
        self._seen_version = seen_version
        self._finished = finished

    def __aiter__(self) -> StreamSubscription[T]:
        return self

    async def __anext__(self) -> T:
        source = self._source
        while not self._finished:
            if source._version != self._seen_version:
                self._seen_version = source._version
                self._finished = source._closed
                return source._value
            if source._closed:
                self._finished = True
                break
            source._changed.clear()
            await source._changed.wait()
        raise StopAsyncIteration
