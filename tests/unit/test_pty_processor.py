"""Unit tests for boundary-safe PTY output chunking."""

from __future__ import annotations

import pytest

from polyexec.models import Direction
from polyexec.streams.input_handler import InputHandler
from polyexec.streams.pty_processor import PtyStreamProcessor


@pytest.fixture
def processor() -> PtyStreamProcessor:
    return PtyStreamProcessor("sess-1", "python", InputHandler(1024))


def _collect(processor: PtyStreamProcessor, *reads: bytes) -> bytes:
    out = b""
    for data in reads:
        chunk = processor.process_output(data)
        if chunk is not None:
            out += chunk.data
    tail = processor.flush()
    if tail is not None:
        out += tail.data
    return out


def test_plain_output_emitted_immediately(processor: PtyStreamProcessor) -> None:
    chunk = processor.process_output(b">>> ")
    assert chunk is not None
    assert chunk.data == b">>> "
    assert chunk.direction == Direction.FROM_CONTAINER
    assert processor.pending == b""


def test_ansi_round_trip(processor: PtyStreamProcessor) -> None:
    chunk = processor.process_output(b"\x1b[31mred\x1b[0m\r\n")
    assert chunk is not None
    assert chunk.data == b"\x1b[31mred\x1b[0m\n"
    assert chunk.has_ansi


def test_crlf_split_across_reads(processor: PtyStreamProcessor) -> None:
    first = processor.process_output(b"hi\r")
    assert first is not None and first.data == b"hi"
    assert processor.pending == b"\r"
    second = processor.process_output(b"\nthere")
    assert second is not None and second.data == b"\nthere"


def test_lone_cr_becomes_lf_on_flush(processor: PtyStreamProcessor) -> None:
    assert _collect(processor, b"50%\r", b"100%") == b"50%\n100%"


def test_split_csi_is_rejoined(processor: PtyStreamProcessor) -> None:
    first = processor.process_output(b"ok\x1b[3")
    assert first is not None and first.data == b"ok"
    second = processor.process_output(b"2mgreen")
    assert second is not None and second.data == b"\x1b[32mgreen"


def test_lone_escape_is_held(processor: PtyStreamProcessor) -> None:
    assert processor.process_output(b"\x1b") is None
    chunk = processor.process_output(b"[0m")
    assert chunk is not None and chunk.data == b"\x1b[0m"


def test_split_osc_is_rejoined(processor: PtyStreamProcessor) -> None:
    assert _collect(processor, b"\x1b]0;tit", b"le\x07$ ") == b"\x1b]0;title\x07$ "


def test_osc_with_st_terminator_split_at_escape(processor: PtyStreamProcessor) -> None:
    first = processor.process_output(b"\x1b]0;title\x1b")
    assert first is None
    second = processor.process_output(b"\\$ ")
    assert second is not None and second.data == b"\x1b]0;title\x1b\\$ "


def test_split_utf8_is_rejoined(processor: PtyStreamProcessor) -> None:
    encoded = "✓ done".encode()
    first = processor.process_output(encoded[:2])
    assert first is None
    second = processor.process_output(encoded[2:])
    assert second is not None
    assert second.data.decode("utf-8") == "✓ done"
    assert not second.is_binary


def test_carry_is_bounded() -> None:
    processor = PtyStreamProcessor("s", "shell", InputHandler(1024), max_carry_bytes=8)
    chunk = processor.process_output(b"\x1b]" + b"x" * 20)
    assert chunk is not None
    assert processor.pending == b""


def test_binary_output_flagged(processor: PtyStreamProcessor) -> None:
    chunk = processor.process_output(b"\xff\xfe\x00data")
    assert chunk is not None
    assert chunk.is_binary
    assert chunk.data == b"\xff\xfe\x00data"


def test_line_endings_left_alone_when_disabled() -> None:
    processor = PtyStreamProcessor("s", "shell", InputHandler(1024), fix_line_endings=False)
    chunk = processor.process_output(b"a\r\n")
    assert chunk is not None and chunk.data == b"a\r\n"


def test_flush_on_empty_returns_none(processor: PtyStreamProcessor) -> None:
    assert processor.flush() is None


def test_prepare_input_normalizes_and_tags(processor: PtyStreamProcessor) -> None:
    chunk = processor.prepare_input("print(1)\r")
    assert chunk.data == b"print(1)\n"
    assert chunk.direction == Direction.TO_CONTAINER
    assert chunk.has_control_chars
