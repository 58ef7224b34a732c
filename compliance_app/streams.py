"""
Cancellable live streams.

Store read-streams are async iterators that yield a full snapshot on every
change. `subscribe` drives one of them in a background task and hands back a
`Subscription`; cancelling a subscription cancels every child added to it and
closes the underlying iterator so the database change stream is released.
"""
import asyncio
import inspect
import logging
from typing import AsyncIterator, Awaitable, Callable, Generic, List, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

Callback = Callable[[T], Union[None, Awaitable[None]]]


class Subscription:
    """Handle for a running stream consumer, composable like a task group."""

    def __init__(self, task: Optional["asyncio.Task[None]"] = None) -> None:
        self._task = task
        self._children: List["Subscription"] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def add(self, child: "Subscription") -> "Subscription":
        """Attach a child; it is cancelled together with this subscription."""
        if self._closed:
            child.cancel()
        else:
            self._children.append(child)
        return child

    def remove(self, child: "Subscription") -> None:
        if child in self._children:
            self._children.remove(child)

    def cancel(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        children, self._children = self._children, []
        for child in children:
            child.cancel()

    async def wait_closed(self) -> None:
        """Wait for the consumer task (and children) to finish unwinding."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
        for child in list(self._children):
            await child.wait_closed()


async def _maybe_await(result) -> None:
    if inspect.isawaitable(result):
        await result


def subscribe(
    stream: AsyncIterator[T],
    on_next: Callback,
    on_error: Optional[Callable[[Exception], Union[None, Awaitable[None]]]] = None,
) -> Subscription:
    """Consume `stream` in a task, calling `on_next` for every emission."""

    async def _consume() -> None:
        try:
            async for value in stream:
                await _maybe_await(on_next(value))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if on_error is None:
                logger.exception("Live stream failed")
            else:
                await _maybe_await(on_error(exc))
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    task = asyncio.get_running_loop().create_task(_consume())
    return Subscription(task)


class StateFeed(Generic[T]):
    """
    Current-value feed. New listeners receive the latest value first (when one
    has been set) and then every subsequent value.
    """

    def __init__(self) -> None:
        self._value: Optional[T] = None
        self._has_value = False
        self._queues: List["asyncio.Queue[T]"] = []

    @property
    def value(self) -> Optional[T]:
        return self._value

    @property
    def has_value(self) -> bool:
        return self._has_value

    @property
    def listener_count(self) -> int:
        return len(self._queues)

    def set(self, value: T) -> None:
        self._value = value
        self._has_value = True
        for queue in list(self._queues):
            queue.put_nowait(value)

    async def changes(self) -> AsyncIterator[T]:
        queue: "asyncio.Queue[T]" = asyncio.Queue()
        if self._has_value:
            queue.put_nowait(self._value)
        self._queues.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.remove(queue)
