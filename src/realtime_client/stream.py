import asyncio
from collections import deque
from typing import Deque, Generic, Optional, TypeVar

T = TypeVar("T")


class EventStream(Generic[T]):
    """
    Single-consumer, non-restartable asynchronous event channel.

    The transport receive loop pushes events; one consumer iterates with
    ``async for``. Closing the stream is terminal: later pushes are ignored,
    events already queued are still delivered in order, and the consumer then
    observes either the end of the sequence or, once, the error the stream
    was closed with.
    """

    def __init__(self) -> None:
        self._items: Deque[T] = deque()
        self._waiter: Optional[asyncio.Future] = None
        self._closed = False
        self._error: Optional[BaseException] = None
        self._iterated = False
        self._error_raised = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def push(self, item: T) -> None:
        if self._closed:
            return
        self._items.append(item)
        self._wake()

    def close(self, error: Optional[BaseException] = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._error = error
        self._wake()

    def _wake(self) -> None:
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(None)

    def __aiter__(self) -> "EventStream[T]":
        if self._iterated:
            raise RuntimeError("EventStream can only be iterated once")
        self._iterated = True
        return self

    async def __anext__(self) -> T:
        while True:
            if self._items:
                return self._items.popleft()
            if self._closed:
                if self._error is not None and not self._error_raised:
                    self._error_raised = True
                    raise self._error
                raise StopAsyncIteration
            if self._waiter is not None and not self._waiter.done():
                raise RuntimeError("EventStream already has a pending consumer")
            self._waiter = asyncio.get_running_loop().create_future()
            try:
                await self._waiter
            finally:
                self._waiter = None
