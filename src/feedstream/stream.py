from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any

from .channels import Channel, ChannelGroup, Received, select
from .config import StreamConfig
from .dispatcher import BodyGuard, Dispatcher
from .errors import StreamClosedError
from .line_reader import ByteSource
from .messages import DataMessage, SystemNotice

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class StreamHandle:
    """Caller side of one open stream.

    Receive from `messages`, `notices` and `errors` (or all three via
    `select`) and call `close()` when done. Once the stream ends, from either
    side, every channel is closed; buffered items can still be received.
    """

    def __init__(self, source: ByteSource, *, cfg: StreamConfig | None = None, name: str = "feedstream"):
        self._cfg = cfg or StreamConfig()
        self._name = name

        self._group = ChannelGroup()
        size = self._cfg.buffer_size
        self._messages: Channel[DataMessage] = self._group.channel("messages", maxsize=size)
        self._notices: Channel[SystemNotice] = self._group.channel("notices", maxsize=size)
        self._errors: Channel[Exception] = self._group.channel("errors", maxsize=size)

        self._body = BodyGuard(source)
        self._dispatcher = Dispatcher(
            source=source,
            body=self._body,
            group=self._group,
            messages=self._messages,
            notices=self._notices,
            errors=self._errors,
            cfg=self._cfg,
            on_exit=self._on_dispatcher_exit,
        )

        self._state_lock = threading.Lock()
        self._state = StreamState.OPEN
        self._thread: threading.Thread | None = None

    def start(self) -> "StreamHandle":
        with self._state_lock:
            if self._thread is not None or self._state is not StreamState.OPEN:
                raise StreamClosedError("stream already started; open a new stream instead")
            self._thread = threading.Thread(target=self._dispatcher.run, name=self._name, daemon=True)
        self._thread.start()
        logger.info("Stream %s started", self._name)
        return self

    @property
    def state(self) -> StreamState:
        with self._state_lock:
            return self._state

    @property
    def messages(self) -> Channel[DataMessage]:
        return self._messages

    @property
    def notices(self) -> Channel[SystemNotice]:
        return self._notices

    @property
    def errors(self) -> Channel[Exception]:
        return self._errors

    @property
    def body_released(self) -> bool:
        return self._body.released

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def select(self, timeout: float | None = None) -> Received:
        return select(self._messages, self._notices, self._errors, timeout=timeout)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the dispatcher to exit. Returns True once it has."""

        t = self._thread
        if t is None:
            return True
        if t is not threading.current_thread():
            t.join(timeout)
        return not t.is_alive()

    def close(self) -> bool:
        """Stop the stream and release the body. Safe to call repeatedly.

        Returns True if the dispatcher has exited by the time close() returns.
        """

        with self._state_lock:
            if self._state is StreamState.OPEN:
                self._state = StreamState.CLOSING
                first = True
            else:
                first = False

        if first:
            logger.info("Closing stream %s", self._name)
            self._group.cancel()
            # Unblocks a dispatcher parked in a network read.
            self._body.release()
            if self._thread is None:
                # Never started: nothing else will finish the shutdown.
                self._group.close_all()
                self._on_dispatcher_exit()

        return self.join(self._cfg.close_timeout_s)

    def _on_dispatcher_exit(self) -> None:
        with self._state_lock:
            self._state = StreamState.CLOSED

    def __enter__(self) -> "StreamHandle":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def start_stream(source: ByteSource, cfg: StreamConfig | None = None, *, name: str = "feedstream") -> StreamHandle:
    """Start dispatching `source` on a background thread and return its handle."""

    return StreamHandle(source, cfg=cfg, name=name).start()
