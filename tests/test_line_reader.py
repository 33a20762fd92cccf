from __future__ import annotations

import io

import pytest

from feedstream.errors import TransportError
from feedstream.line_reader import FileBody, IterableBody, LineReader


def _lines(*chunks: bytes) -> list[bytes]:
    return list(LineReader(IterableBody(chunks)))


def test_read_line_splits_crlf_and_lf() -> None:
    assert _lines(b'{"a":1}\r\n{"b":2}\n') == [b'{"a":1}', b'{"b":2}']


def test_read_line_joins_records_across_chunks() -> None:
    assert _lines(b'{"da', b'ta":1', b"}\r\nnext\n") == [b'{"data":1}', b"next"]


def test_delimiter_split_across_chunks_loses_nothing() -> None:
    assert _lines(b"one\r", b"\ntwo\r", b"\n") == [b"one", b"two"]


def test_blank_lines_are_empty_records_not_eof() -> None:
    reader = LineReader(IterableBody([b"a\r\n\r\n\r\nb\r\n"]))

    assert reader.read_line() == b"a"
    assert reader.read_line() == b""
    assert reader.read_line() == b""
    assert reader.read_line() == b"b"
    assert reader.read_line() is None
    assert reader.read_line() is None


def test_trailing_fragment_is_returned_at_eof() -> None:
    assert _lines(b"full\r\n", b'{"part') == [b"full", b'{"part']


def test_empty_body_is_clean_eof() -> None:
    assert LineReader(IterableBody([])).read_line() is None


def test_transport_failure_raises_transport_error() -> None:
    def chunks():
        yield b"ok\n"
        raise ConnectionResetError("peer reset")

    reader = LineReader(IterableBody(chunks()))

    assert reader.read_line() == b"ok"
    with pytest.raises(TransportError) as ei:
        reader.read_line()
    assert isinstance(ei.value.__cause__, ConnectionResetError)


def test_file_body_reads_in_chunks() -> None:
    body = FileBody(io.BytesIO(b"x\r\ny\r\nz"), chunk_size=2)
    assert list(LineReader(body)) == [b"x", b"y", b"z"]
