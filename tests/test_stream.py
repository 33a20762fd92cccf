from __future__ import annotations

import threading
from collections.abc import Iterator
from datetime import datetime, timezone

import pytest

from feedstream.channels import ChannelClosed
from feedstream.config import StreamConfig
from feedstream.errors import DecodeError, DecodeErrorLimitExceeded, StreamClosedError, TransportError
from feedstream.line_reader import IterableBody
from feedstream.messages import DataMessage, MatchingRule, NoticeKind, SystemMessage, Tweet
from feedstream.stream import StreamHandle, StreamState, start_stream

CALIBRATION_STREAM = "\r\n".join(
    [
        '{"data":{"id":"1","text":"hello"}, "matching_rules": [{ "id": "rule 1", "tag": "rule tag 1" }]}',
        '{"error":{"message":"Forced Disconnect: Too many connections. (Allowed Connections = 2)","sent":"2017-01-11T18:12:52+00:00"}}',
        '{"data":{"id":"2","text":"world"}, "matching_rules": [{ "id": "rule 2", "tag": "rule tag 2" }]}',
        "",
        "",
        "",
        '{"data":{"id":"3","text":"!!"}}',
        '{"error":{"message":"Invalid date format for query parameter \'fromDate\'. Expected format is \'yyyyMMddHHmm\'. For example, \'201701012315\' for January 1st, 11:15 pm 2017 UTC.\\n\\n","sent":"2017-01-11T17:04:13+00:00"}}',
        # No trailing delimiter after the last record.
        '{"error":{"message":"Force closing connection to because it reached the maximum allowed backup (buffer size is ).","sent":"2017-01-11T17:04:13+00:00"}}',
    ]
)


class BlockingBody:
    """Sends some chunks, then blocks like an idle connection until closed."""

    def __init__(self, *chunks: bytes):
        self._chunks = chunks
        self._closed = threading.Event()
        self.close_calls = 0

    def chunks(self) -> Iterator[bytes]:
        yield from self._chunks
        self._closed.wait()
        raise OSError("connection closed")

    def close(self) -> None:
        self.close_calls += 1
        self._closed.set()


class EndlessBody:
    def __init__(self) -> None:
        self.close_calls = 0

    def chunks(self) -> Iterator[bytes]:
        i = 0
        while True:
            i += 1
            yield b'{"data":{"id":"%d","text":"t"}}\r\n' % i

    def close(self) -> None:
        self.close_calls += 1


def _collect(handle: StreamHandle) -> dict[str, list]:
    got: dict[str, list] = {"messages": [], "notices": [], "errors": []}
    while True:
        try:
            r = handle.select(timeout=5)
        except ChannelClosed:
            return got
        got[r.channel].append(r.item)


def _sent(s: str) -> datetime:
    return datetime.fromisoformat(s)


def test_calibration_stream_is_classified_in_order() -> None:
    body = IterableBody([CALIBRATION_STREAM.encode()])
    handle = start_stream(body)

    got = _collect(handle)

    assert got["errors"] == []
    assert got["messages"] == [
        DataMessage(tweets=(Tweet("1", "hello"),), matching_rules=(MatchingRule("rule 1", "rule tag 1"),)),
        DataMessage(tweets=(Tweet("2", "world"),), matching_rules=(MatchingRule("rule 2", "rule tag 2"),)),
        DataMessage(tweets=(Tweet("3", "!!"),)),
    ]
    assert got["notices"] == [
        {
            NoticeKind.ERROR: SystemMessage(
                "Forced Disconnect: Too many connections. (Allowed Connections = 2)",
                _sent("2017-01-11T18:12:52+00:00"),
            )
        },
        {
            NoticeKind.ERROR: SystemMessage(
                "Invalid date format for query parameter 'fromDate'. Expected format is 'yyyyMMddHHmm'. "
                "For example, '201701012315' for January 1st, 11:15 pm 2017 UTC.\n\n",
                _sent("2017-01-11T17:04:13+00:00"),
            )
        },
        {
            NoticeKind.ERROR: SystemMessage(
                "Force closing connection to because it reached the maximum allowed backup (buffer size is ).",
                _sent("2017-01-11T17:04:13+00:00"),
            )
        },
    ]
    assert handle.join(timeout=5)
    assert handle.state is StreamState.CLOSED
    assert body.close_calls == 1


def test_select_preserves_source_order_across_channels() -> None:
    handle = start_stream(IterableBody([CALIBRATION_STREAM.encode()]))

    order = []
    while True:
        try:
            order.append(handle.select(timeout=5).channel)
        except ChannelClosed:
            break

    assert order == ["messages", "notices", "messages", "messages", "notices", "notices"]


def test_records_split_into_single_bytes() -> None:
    raw = CALIBRATION_STREAM.encode()
    handle = start_stream(IterableBody([raw[i : i + 1] for i in range(len(raw))]))

    got = _collect(handle)

    assert [m.tweets[0].id for m in got["messages"]] == ["1", "2", "3"]
    assert len(got["notices"]) == 3
    assert got["errors"] == []


def test_malformed_record_is_reported_and_stream_continues() -> None:
    body = IterableBody([b'{"data":{"id":"1","text":"a"}}\r\nnot-json\r\n{"data":{"id":"2","text":"b"}}\r\n'])
    handle = start_stream(body)

    got = _collect(handle)

    assert [m.tweets[0].id for m in got["messages"]] == ["1", "2"]
    assert len(got["errors"]) == 1
    assert isinstance(got["errors"][0], DecodeError)
    assert got["errors"][0].line == "not-json"


def test_truncated_last_record_surfaces_one_decode_error() -> None:
    handle = start_stream(IterableBody([b'{"data":{"id":"1","text":"a"}}\r\n{"data":{"id":"2","te']))

    got = _collect(handle)

    assert len(got["messages"]) == 1
    assert len(got["errors"]) == 1
    assert isinstance(got["errors"][0], DecodeError)
    assert handle.join(timeout=5)


def test_keepalives_only_produce_nothing() -> None:
    handle = start_stream(IterableBody([b"\r\n" * 10]))

    assert _collect(handle) == {"messages": [], "notices": [], "errors": []}


def test_transport_error_is_terminal_and_reported_once() -> None:
    def chunks():
        yield b'{"data":{"id":"1","text":"a"}}\r\n'
        raise ConnectionResetError("reset by peer")

    body = IterableBody(chunks())
    handle = start_stream(body)

    got = _collect(handle)

    assert len(got["messages"]) == 1
    assert len(got["errors"]) == 1
    assert isinstance(got["errors"][0], TransportError)
    assert handle.join(timeout=5)
    assert handle.state is StreamState.CLOSED
    assert body.close_calls == 1


def test_close_unblocks_producer_stuck_on_full_channel() -> None:
    body = EndlessBody()
    handle = start_stream(body, StreamConfig(buffer_size=1))

    # Wait until the dispatcher has filled the channel and is blocked.
    handle.messages.get(timeout=5)
    handle.messages.get(timeout=5)

    assert handle.close() is True
    assert not handle.is_alive()
    assert handle.state is StreamState.CLOSED
    assert body.close_calls == 1
    assert handle.messages.closed


def test_close_unblocks_dispatcher_waiting_on_read() -> None:
    body = BlockingBody(b'{"data":{"id":"1","text":"a"}}\r\n', b"\r\n")
    handle = start_stream(body)

    assert handle.messages.get(timeout=5).tweets[0].id == "1"
    assert handle.is_alive()

    assert handle.close() is True
    assert handle.state is StreamState.CLOSED
    assert body.close_calls == 1
    # A caller-initiated close is not an error.
    with pytest.raises(ChannelClosed):
        handle.errors.get(timeout=1)


def test_close_is_idempotent_under_concurrency() -> None:
    body = BlockingBody()
    handle = start_stream(body)

    results: list[bool] = []
    threads = [threading.Thread(target=lambda: results.append(handle.close())) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert results == [True] * 8
    assert body.close_calls == 1
    assert handle.close() is True
    assert handle.state is StreamState.CLOSED


def test_closed_handle_cannot_restart() -> None:
    handle = start_stream(IterableBody([b""]))
    handle.close()

    with pytest.raises(StreamClosedError):
        handle.start()


def test_close_before_start_releases_body() -> None:
    body = IterableBody([b'{"data":{"id":"1","text":"a"}}\n'])
    handle = StreamHandle(body)

    assert handle.close() is True
    assert handle.state is StreamState.CLOSED
    assert body.close_calls == 1
    with pytest.raises(ChannelClosed):
        handle.select(timeout=1)


def test_context_manager_closes() -> None:
    body = BlockingBody()
    with start_stream(body) as handle:
        assert handle.state is StreamState.OPEN

    assert handle.state is StreamState.CLOSED
    assert body.close_calls == 1


def test_decode_error_limit_ends_stream() -> None:
    body = IterableBody([b"bad1\r\nbad2\r\nbad3\r\n{\"data\":{\"id\":\"1\",\"text\":\"a\"}}\r\n"])
    handle = start_stream(body, StreamConfig(max_consecutive_decode_errors=2))

    got = _collect(handle)

    assert got["messages"] == []
    assert [type(e) for e in got["errors"]] == [DecodeError, DecodeError, DecodeErrorLimitExceeded]
    assert body.close_calls == 1


def test_decode_error_counter_resets_on_good_record() -> None:
    body = IterableBody([b"bad\r\n{\"data\":{\"id\":\"1\",\"text\":\"a\"}}\r\nbad\r\n\r\n{\"info\":{\"message\":\"m\",\"sent\":\"2020-01-01T00:00:00Z\"}}\r\n"])
    handle = start_stream(body, StreamConfig(max_consecutive_decode_errors=2))

    got = _collect(handle)

    assert len(got["messages"]) == 1
    assert got["notices"] == [{NoticeKind.INFO: SystemMessage("m", datetime(2020, 1, 1, tzinfo=timezone.utc))}]
    assert len(got["errors"]) == 2


def test_whitespace_only_record_is_one_decode_error() -> None:
    handle = start_stream(IterableBody([b"\r\n \r\n\r\n{\"data\":{\"id\":\"1\",\"text\":\"a\"}}\r\n"]))

    got = _collect(handle)

    assert len(got["messages"]) == 1
    assert len(got["errors"]) == 1
    assert got["errors"][0].line == " "
