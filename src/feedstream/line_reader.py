from __future__ import annotations

import logging
import socket
from collections.abc import Iterable, Iterator
from typing import BinaryIO, Protocol

import httpx

from .errors import TransportError

logger = logging.getLogger(__name__)

# Exceptions a body read can raise when the connection fails or is closed underneath us.
_READ_ERRORS = (httpx.HTTPError, httpx.StreamError, OSError)


class ByteSource(Protocol):
    """An open response body: a chunk iterator plus a way to release it."""

    def chunks(self) -> Iterator[bytes]: ...

    def close(self) -> None: ...


class HttpxBody:
    """Body of an `httpx.Response` sent with `stream=True`."""

    def __init__(self, response: httpx.Response, *, chunk_size: int | None = None):
        self._response = response
        self._chunk_size = chunk_size

    @property
    def response(self) -> httpx.Response:
        return self._response

    def chunks(self) -> Iterator[bytes]:
        return self._response.iter_bytes(chunk_size=self._chunk_size)

    def close(self) -> None:
        # Closing the socket alone does not wake a recv() already blocked on
        # another thread; shutting it down does.
        ns = self._response.extensions.get("network_stream")
        sock = ns.get_extra_info("socket") if ns is not None else None
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                logger.debug("Socket already shut down", exc_info=True)
        self._response.close()


class IterableBody:
    """Scripted body; replays the given chunks."""

    def __init__(self, chunks: Iterable[bytes]):
        self._chunks = chunks
        self.close_calls = 0

    def chunks(self) -> Iterator[bytes]:
        return iter(self._chunks)

    def close(self) -> None:
        self.close_calls += 1


class FileBody:
    """A captured stream read back from a binary file."""

    def __init__(self, f: BinaryIO, *, chunk_size: int = 8192):
        self._f = f
        self._chunk_size = chunk_size

    def chunks(self) -> Iterator[bytes]:
        while True:
            try:
                chunk = self._f.read(self._chunk_size)
            except ValueError as e:
                # Reading a file that was closed by another thread.
                raise OSError(str(e)) from e
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        self._f.close()


class LineReader:
    """Split a chunked body into delimiter-terminated records.

    `\\n` ends a record and a single `\\r` in front of it is dropped, so both
    `\\r\\n` and bare `\\n` streams work. Blank records come back as `b""`;
    `None` means the body ended cleanly.
    """

    def __init__(self, source: ByteSource):
        self._source = source
        self._chunks: Iterator[bytes] | None = None
        self._buf = bytearray()
        self._eof = False

    def read_line(self) -> bytes | None:
        while True:
            idx = self._buf.find(b"\n")
            if idx >= 0:
                line = bytes(self._buf[:idx])
                del self._buf[: idx + 1]
                return line[:-1] if line.endswith(b"\r") else line

            if self._eof:
                if not self._buf:
                    return None
                # Body closed mid-record: hand back the fragment as the last line.
                line = bytes(self._buf)
                self._buf.clear()
                logger.debug("Body ended without a trailing delimiter (%d bytes)", len(line))
                return line[:-1] if line.endswith(b"\r") else line

            chunk = self._next_chunk()
            if chunk is None:
                self._eof = True
            else:
                self._buf.extend(chunk)

    def _next_chunk(self) -> bytes | None:
        try:
            if self._chunks is None:
                self._chunks = self._source.chunks()
            return next(self._chunks)
        except StopIteration:
            return None
        except _READ_ERRORS as e:
            raise TransportError(f"reading stream body failed: {e}") from e

    def __iter__(self) -> Iterator[bytes]:
        while True:
            line = self.read_line()
            if line is None:
                return
            yield line
