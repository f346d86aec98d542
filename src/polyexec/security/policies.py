"""Security policies — optional screening of submitted source and API-key checks."""

from __future__ import annotations

import hmac
import re

from polyexec.errors import DangerousInputError
from polyexec.utils.logging import get_logger

logger = get_logger(__name__)

# Heuristic patterns; isolation itself is the container's job
DANGEROUS_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bexec\s*\(", re.IGNORECASE),
    re.compile(r"\beval\s*\(", re.IGNORECASE),
    re.compile(r"\b__import__\s*\(", re.IGNORECASE),
    re.compile(r"\bos\.system\s*\(", re.IGNORECASE),
    re.compile(r"\bsubprocess\s*\.", re.IGNORECASE),
    re.compile(r"""\brequire\s*\(\s*['"]child_process['"]\s*\)""", re.IGNORECASE),
    re.compile(r"\bprocess\s*\.\s*exit\s*\(", re.IGNORECASE),
    re.compile(r"\bwhile\s*\(\s*true\s*\)", re.IGNORECASE),
    re.compile(r"\bfor\s*\(\s*;\s*;\s*\)", re.IGNORECASE),
)


def find_dangerous_pattern(code: str) -> str | None:
    """Return the first matching pattern's source, or None if the code is clean."""
    for pattern in DANGEROUS_PATTERNS:
        if pattern.search(code):
            return pattern.pattern
    return None


def screen_source(code: str, language: str = "unknown") -> None:
    """Raise DangerousInputError if the code matches a blocked pattern.

    Args:
        code: Submitted source code.
        language: Language id, for log context.

    Raises:
        DangerousInputError: If any pattern matches.
    """
    matched = find_dangerous_pattern(code)
    if matched is not None:
        logger.warning("dangerous_input_blocked", language=language, pattern=matched)
        raise DangerousInputError("Code contains potentially dangerous patterns")


def api_key_valid(provided: str | None, expected: str) -> bool:
    """Check a client API key. An empty expected key disables the check."""
    if not expected:
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
