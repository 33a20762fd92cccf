from __future__ import annotations


class FeedStreamError(Exception):
    """Base class for everything raised or emitted by feedstream."""


class TransportError(FeedStreamError):
    """The response body could not be read. Terminal for the stream."""


class DecodeError(FeedStreamError):
    """A non-empty record could not be classified.

    Non-terminal: the dispatcher reports it and keeps reading.
    """

    def __init__(self, reason: str, *, line: str):
        super().__init__(f"{reason}: {line[:200]!r}")
        self.reason = reason
        self.line = line


class DecodeErrorLimitExceeded(FeedStreamError):
    def __init__(self, count: int):
        super().__init__(f"{count} consecutive records failed to decode")
        self.count = count


class StreamSetupError(FeedStreamError):
    """Opening the stream failed before any record was read."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class StreamClosedError(FeedStreamError):
    pass
