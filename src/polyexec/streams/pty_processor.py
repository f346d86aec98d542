"""PTY stream processor — boundary-safe chunking of terminal output.

Docker hands back PTY output in arbitrary slices. A slice can end halfway
through a ``\\r\\n`` pair, an escape sequence or a multibyte character, so the
processor holds back the shortest unsafe tail and prepends it to the next read.
"""

from __future__ import annotations

from polyexec.models import Direction, StreamChunk
from polyexec.streams.input_handler import (
    InputContext,
    InputHandler,
    has_ansi,
    has_control_chars,
    is_binary,
    normalize_line_endings,
)
from polyexec.utils.logging import get_logger

logger = get_logger(__name__)

ESC = 0x1B
BEL = 0x07


def _csi_incomplete(tail: bytes) -> bool:
    # tail starts with ESC [
    for byte in tail[2:]:
        if 0x40 <= byte <= 0x7E:
            return False
        if not 0x20 <= byte <= 0x3F:
            # Malformed; nothing to wait for
            return False
    return True


def _osc_incomplete(tail: bytes) -> bool:
    # tail starts with ESC ], ends at BEL or ST (ESC \)
    body = tail[2:]
    return BEL not in body and b"\x1b\\" not in body


def _escape_incomplete(tail: bytes) -> bool:
    """True when ``tail`` (starting at ESC) is an unfinished escape sequence."""
    if len(tail) == 1:
        return True
    introducer = tail[1]
    if introducer == ord("["):
        return _csi_incomplete(tail)
    if introducer == ord("]"):
        return _osc_incomplete(tail)
    return False


def _utf8_incomplete_start(buf: bytes) -> int | None:
    """Index of a trailing, not-yet-complete UTF-8 sequence, or None."""
    for back in range(1, min(4, len(buf)) + 1):
        byte = buf[-back]
        if byte & 0xC0 == 0x80:
            continue  # continuation byte, keep looking for the lead
        if byte & 0xE0 == 0xC0:
            needed = 2
        elif byte & 0xF0 == 0xE0:
            needed = 3
        elif byte & 0xF8 == 0xF0:
            needed = 4
        else:
            return None
        return len(buf) - back if back < needed else None
    return None


class PtyStreamProcessor:
    """Per-session adapter between raw PTY bytes and StreamChunks."""

    def __init__(
        self,
        session_id: str,
        language: str,
        input_handler: InputHandler,
        fix_line_endings: bool = True,
        max_carry_bytes: int = 64,
    ) -> None:
        """Initialize the processor.

        Args:
            session_id: Session the stream belongs to.
            language: Language id, used for log context.
            input_handler: Handler used for the inbound direction.
            fix_line_endings: Normalize CRLF / lone CR in output text.
            max_carry_bytes: Upper bound on bytes held back between reads.
        """
        self.session_id = session_id
        self.language = language
        self._input_handler = input_handler
        self._fix_line_endings = fix_line_endings
        self._max_carry_bytes = max_carry_bytes
        self._carry = b""

    @property
    def pending(self) -> bytes:
        return self._carry

    def _safe_cut(self, buf: bytes) -> int:
        """Return the index up to which ``buf`` can be emitted now."""
        cut = len(buf)
        window = max(0, len(buf) - self._max_carry_bytes)

        # An OSC body may itself end in the ESC of its ST terminator
        for start in (buf.rfind(b"\x1b]", window), buf.rfind(bytes([ESC]), window)):
            if start != -1 and _escape_incomplete(buf[start:]):
                cut = min(cut, start)

        utf8_at = _utf8_incomplete_start(buf[:cut])
        if utf8_at is not None:
            cut = utf8_at

        if self._fix_line_endings and cut > 0 and buf[cut - 1] == 0x0D:
            cut -= 1

        if len(buf) - cut > self._max_carry_bytes:
            logger.debug("pty_carry_overflow", session_id=self.session_id, pending=len(buf) - cut)
            return len(buf)
        return cut

    def _make_chunk(self, data: bytes, direction: Direction) -> StreamChunk:
        binary = is_binary(data)
        if not binary and self._fix_line_endings:
            data = normalize_line_endings(data)
        return StreamChunk(
            data=data,
            direction=direction,
            has_control_chars=has_control_chars(data),
            has_ansi=has_ansi(data),
            is_binary=binary,
        )

    def process_output(self, data: bytes) -> StreamChunk | None:
        """Turn a raw PTY read into a chunk, holding back an unsafe tail.

        Args:
            data: Bytes read from the container.

        Returns:
            A StreamChunk, or None when everything was held back.
        """
        buf = self._carry + data
        if not buf:
            return None
        cut = self._safe_cut(buf)
        self._carry = buf[cut:]
        if cut == 0:
            return None
        return self._make_chunk(buf[:cut], Direction.FROM_CONTAINER)

    def flush(self) -> StreamChunk | None:
        """Emit whatever is held back, e.g. when the stream ends."""
        if not self._carry:
            return None
        data, self._carry = self._carry, b""
        return self._make_chunk(data, Direction.FROM_CONTAINER)

    def prepare_input(self, payload: str | bytes) -> StreamChunk:
        """Validate and normalize client input bound for the PTY.

        Raises:
            InputTooLargeError: If the payload exceeds the PTY input limit.
        """
        processed = self._input_handler.process_input(
            payload,
            InputContext(language=self.language, session_id=self.session_id, purpose="pty"),
        )
        return StreamChunk(
            data=processed.data,
            direction=Direction.TO_CONTAINER,
            has_control_chars=processed.metadata.has_control_chars,
            has_ansi=processed.metadata.has_ansi,
            is_binary=processed.metadata.type == "binary",
        )
