from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from .channels import Channel, ChannelGroup
from .classifier import classify
from .config import StreamConfig
from .errors import DecodeError, DecodeErrorLimitExceeded, TransportError
from .line_reader import ByteSource, LineReader
from .messages import DataMessage

logger = logging.getLogger(__name__)


class BodyGuard:
    """Releases a ByteSource exactly once, from whichever side gets there first."""

    def __init__(self, source: ByteSource):
        self._source = source
        self._lock = threading.Lock()
        self._released = False

    @property
    def released(self) -> bool:
        with self._lock:
            return self._released

    def release(self) -> bool:
        with self._lock:
            if self._released:
                return False
            self._released = True
        try:
            self._source.close()
        except Exception:
            logger.warning("Closing the stream body failed", exc_info=True)
        return True


class Dispatcher:
    """Reads records, classifies them and routes each one to its channel.

    Runs `run()` on its own thread. The only thing it shares with the consumer
    is the channel group.
    """

    def __init__(
        self,
        *,
        source: ByteSource,
        body: BodyGuard,
        group: ChannelGroup,
        messages: Channel[DataMessage],
        notices: Channel[Any],
        errors: Channel[Exception],
        cfg: StreamConfig,
        on_exit: Callable[[], None] | None = None,
    ):
        self._reader = LineReader(source)
        self._body = body
        self._group = group
        self._messages = messages
        self._notices = notices
        self._errors = errors
        self._cfg = cfg
        self._on_exit = on_exit

        self.records = 0
        self.keepalives = 0
        self._consecutive_decode_errors = 0

    @property
    def cancelled(self) -> bool:
        return self._group.cancelled.is_set()

    def run(self) -> None:
        reason = "eof"
        try:
            reason = self._loop()
        except Exception as e:
            # Anything unexpected still ends the stream through the error channel.
            if self.cancelled:
                reason = "cancelled"
            else:
                logger.exception("Stream dispatcher crashed")
                err = TransportError(f"stream dispatcher failed: {e}")
                err.__cause__ = e
                self._errors.put(err)
                reason = "crashed"
        finally:
            self._body.release()
            self._group.close_all()
            logger.info(
                "Stream stopped (%s): %d records, %d keep-alives",
                reason,
                self.records,
                self.keepalives,
            )
            if self._on_exit is not None:
                self._on_exit()

    def _loop(self) -> str:
        while not self.cancelled:
            try:
                line = self._reader.read_line()
            except TransportError as e:
                if self.cancelled:
                    # The consumer closed the body under a blocked read.
                    return "cancelled"
                logger.warning("Stream transport failed: %s", e)
                self._errors.put(e)
                return "transport_error"

            if line is None:
                return "eof"

            if not self._dispatch(line):
                return "cancelled" if self.cancelled else "decode_error_limit"

        return "cancelled"

    def _dispatch(self, line: bytes) -> bool:
        """Route one record. False means stop reading."""

        try:
            result = classify(line)
        except DecodeError as e:
            self.records += 1
            return self._on_decode_error(e)

        if result is None:
            self.keepalives += 1
            logger.debug("Keep-alive")
            return True

        self.records += 1
        self._consecutive_decode_errors = 0
        if isinstance(result, DataMessage):
            return self._messages.put(result)
        return self._notices.put(result)

    def _on_decode_error(self, e: DecodeError) -> bool:
        logger.warning("Undecodable stream record: %s", e)
        if not self._errors.put(e):
            return False

        self._consecutive_decode_errors += 1
        limit = self._cfg.max_consecutive_decode_errors
        if limit is not None and self._consecutive_decode_errors >= limit:
            self._errors.put(DecodeErrorLimitExceeded(self._consecutive_decode_errors))
            return False
        return True
