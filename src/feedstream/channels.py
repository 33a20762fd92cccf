from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ChannelClosed(Exception):
    """Raised by receives once a channel is closed and drained."""


class ChannelGroup:
    """Shared lock, cancellation flag and sequence counter for a stream's channels.

    One condition covers every channel in the group so a consumer can wait on
    all of them at once (see `select`) and a single `cancel()` wakes any
    producer blocked on a full channel.
    """

    def __init__(self) -> None:
        self.cond = threading.Condition()
        self.cancelled = threading.Event()
        self._seq = itertools.count()
        self._channels: list[Channel[Any]] = []

    def channel(self, name: str, *, maxsize: int = 0) -> Channel[Any]:
        ch: Channel[Any] = Channel(name, group=self, maxsize=maxsize)
        self._channels.append(ch)
        return ch

    def next_seq(self) -> int:
        return next(self._seq)

    def cancel(self) -> None:
        with self.cond:
            self.cancelled.set()
            self.cond.notify_all()

    def close_all(self) -> None:
        with self.cond:
            for ch in self._channels:
                ch._closed = True
            self.cond.notify_all()


class Channel(Generic[T]):
    """Single-producer, single-consumer FIFO.

    `maxsize=0` means unbounded. Items buffered before `close` stay receivable.
    """

    def __init__(self, name: str, *, group: ChannelGroup, maxsize: int = 0):
        self.name = name
        self._group = group
        self._maxsize = maxsize
        self._buf: deque[tuple[int, T]] = deque()
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._group.cond:
            return self._closed

    def __len__(self) -> int:
        with self._group.cond:
            return len(self._buf)

    def put(self, item: T) -> bool:
        """Block until there is room. Returns False if the group was cancelled first."""

        g = self._group
        with g.cond:
            while self._maxsize > 0 and len(self._buf) >= self._maxsize:
                if g.cancelled.is_set():
                    return False
                g.cond.wait()
            if g.cancelled.is_set() or self._closed:
                return False
            self._buf.append((g.next_seq(), item))
            g.cond.notify_all()
            return True

    def get(self, timeout: float | None = None) -> T:
        g = self._group
        deadline = None if timeout is None else time.monotonic() + timeout
        with g.cond:
            while not self._buf:
                if self._closed:
                    raise ChannelClosed(self.name)
                _wait(g.cond, deadline)
            return self._pop()

    def get_nowait(self) -> T:
        return self.get(timeout=0)

    def _pop(self) -> T:
        _, item = self._buf.popleft()
        self._group.cond.notify_all()
        return item

    def _head_seq(self) -> int | None:
        return self._buf[0][0] if self._buf else None

    def __iter__(self) -> Iterator[T]:
        while True:
            try:
                yield self.get()
            except ChannelClosed:
                return


@dataclass(frozen=True)
class Received:
    channel: str
    item: Any


def select(*channels: Channel[Any], timeout: float | None = None) -> Received:
    """Receive from whichever channel has an item ready.

    When several are ready the item that was sent first wins, so a consumer
    sees records in stream order across channels. All channels must belong to
    the same group.
    """

    if not channels:
        raise ValueError("select needs at least one channel")
    g = channels[0]._group
    deadline = None if timeout is None else time.monotonic() + timeout
    with g.cond:
        while True:
            ready = [ch for ch in channels if ch._buf]
            if ready:
                ch = min(ready, key=lambda c: c._head_seq())
                return Received(channel=ch.name, item=ch._pop())
            if all(ch._closed for ch in channels):
                raise ChannelClosed(", ".join(ch.name for ch in channels))
            _wait(g.cond, deadline)


def _wait(cond: threading.Condition, deadline: float | None) -> None:
    if deadline is None:
        cond.wait()
        return
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise TimeoutError("no item received before the timeout")
    cond.wait(remaining)
