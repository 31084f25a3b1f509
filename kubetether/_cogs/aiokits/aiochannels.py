"""
Bounded single-consumer channels between the streaming tasks and their consumers.

A channel is an asyncio queue with two ways of ending it:

* :meth:`Channel.finish` -- the producer has nothing more to say;
  the items already in the channel are still delivered, then the iteration ends.
* :meth:`Channel.abort` -- the consumer is not interested anymore;
  the buffered items are discarded and the iteration ends immediately.

The bounded size makes the backpressure explicit: when the consumer is slow,
the producing task is blocked in :meth:`Channel.put`, stops reading from its
network stream, and so the remote side is slowed down by TCP itself.
"""
import asyncio
import enum
from typing import Generic, TypeVar

_T = TypeVar('_T')


# An end-of-stream marker sent from the producer to the consumer.
# See: https://www.python.org/dev/peps/pep-0484/#support-for-singleton-types-in-unions
class EOS(enum.Enum):
    token = enum.auto()


class Channel(Generic[_T]):

    def __init__(self, maxsize: int = 0) -> None:
        super().__init__()
        self._closed = False
        self._queue: asyncio.Queue[_T | EOS] = asyncio.Queue(maxsize=maxsize)

    def __repr__(self) -> str:
        state = 'closed' if self._closed else 'open'
        return f'<{self.__class__.__name__} {state} qsize={self._queue.qsize()}>'

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def put(self, item: _T) -> None:
        """
        Put an item, waiting for the free space if the channel is full.

        Items put into a closed channel are silently dropped: the producer
        can be a step behind the consumer's decision to stop.
        """
        if not self._closed:
            await self._queue.put(item)

    async def finish(self) -> None:
        """ End the channel after all the items that are already in it. """
        if not self._closed:
            self._closed = True
            await self._queue.put(EOS.token)

    def abort(self) -> None:
        """ End the channel now, discarding the items that were not consumed yet. """
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()

        # There is always a free slot after draining: the consumer wakes up from waiting.
        self._queue.put_nowait(EOS.token)

    def __aiter__(self) -> "Channel[_T]":
        return self

    async def __anext__(self) -> _T:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if isinstance(item, EOS):
            # Whatever was put after the end (by a producer unblocked by the abort) is stale.
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(EOS.token)  # for other/repeated iterations; there is space.
            raise StopAsyncIteration
        return item
