"""Input handler — validates and normalizes payloads before they reach a container.

Rules, applied in order:

1. Reject payloads whose encoded size exceeds the configured maximum.
2. Bytes that do not decode as UTF-8 are binary and pass through untouched.
3. Text gets ``\\r\\n`` and lone ``\\r`` rewritten to ``\\n``. Every other byte,
   including C0 control characters, DEL and ANSI escape sequences, is kept
   as-is so cursor movement, colours and Ctrl+C/Ctrl+D survive the trip.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from polyexec.errors import InputTooLargeError
from polyexec.models import InputMetadata, ProcessedInput
from polyexec.utils.logging import get_logger

logger = get_logger(__name__)

CONTROL_CHARS_RE = re.compile(rb"[\x00-\x1f\x7f]")
ANSI_RE = re.compile(rb"\x1b(?:\[[0-?]*[ -/]*[@-~]|\][^\x07\x1b]*(?:\x07|\x1b\\)|[@-Z\\-_])")

# Keystrokes the handler never alters
CTRL_C = b"\x03"
CTRL_D = b"\x04"


@dataclass(frozen=True)
class InputContext:
    """Where a payload is headed."""

    language: str = "shell"
    session_id: str = "unknown"
    purpose: Literal["pty", "stdin", "source"] = "pty"


def normalize_line_endings(data: bytes) -> bytes:
    """Rewrite CRLF and lone CR to LF. Idempotent."""
    return data.replace(b"\r\n", b"\n").replace(b"\r", b"\n")


def has_control_chars(data: bytes) -> bool:
    return CONTROL_CHARS_RE.search(data) is not None


def has_ansi(data: bytes) -> bool:
    return ANSI_RE.search(data) is not None


def is_binary(data: bytes) -> bool:
    """True when the payload is not valid UTF-8."""
    try:
        data.decode("utf-8")
    except UnicodeDecodeError:
        return True
    return False


class InputHandler:
    """Validates size, detects binary data and normalizes line endings."""

    def __init__(self, max_input_bytes: int = 1_048_576) -> None:
        """Initialize the handler.

        Args:
            max_input_bytes: Largest accepted payload, measured after UTF-8 encoding.
        """
        self._max_input_bytes = max_input_bytes

    def process_input(self, payload: str | bytes | bytearray | memoryview, context: InputContext | None = None) -> ProcessedInput:
        """Validate and normalize a payload.

        Args:
            payload: Text or raw bytes from the caller.
            context: Destination details used for logging and error messages.

        Returns:
            ProcessedInput with normalized bytes and metadata.

        Raises:
            InputTooLargeError: If the payload exceeds the configured maximum.
        """
        context = context or InputContext()
        raw = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)

        if len(raw) > self._max_input_bytes:
            logger.warning(
                "input_rejected_too_large",
                session_id=context.session_id,
                purpose=context.purpose,
                size=len(raw),
                limit=self._max_input_bytes,
            )
            raise InputTooLargeError(len(raw), self._max_input_bytes, what=context.purpose)

        if is_binary(raw):
            return ProcessedInput(
                data=raw,
                metadata=InputMetadata(
                    type="binary",
                    length=len(raw),
                    has_control_chars=has_control_chars(raw),
                    has_ansi=has_ansi(raw),
                ),
            )

        data = normalize_line_endings(raw)
        return ProcessedInput(
            data=data,
            metadata=InputMetadata(
                type="text",
                length=len(data),
                has_control_chars=has_control_chars(data),
                has_ansi=has_ansi(data),
                normalized=data != raw,
            ),
        )

    def normalize_stdin(self, stdin: str | None, context: InputContext | None = None) -> str:
        """Prepare batch stdin: validate, normalize, and terminate with a newline.

        Args:
            stdin: Raw stdin text, or None.
            context: Destination details.

        Returns:
            Normalized stdin, or "" when there is nothing to feed.
        """
        if not stdin:
            return ""
        context = context or InputContext(purpose="stdin")
        processed = self.process_input(stdin, context)
        text = processed.data.decode("utf-8", errors="replace")
        if not text:
            return ""
        return text if text.endswith("\n") else f"{text}\n"
