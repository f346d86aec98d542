"""polyexec error hierarchy — all application exceptions defined here."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Stable error identifiers surfaced to callers over every transport."""

    LANGUAGE_NOT_SUPPORTED = "language_not_supported"
    LANGUAGE_CONFIG = "language_config"
    INPUT_TOO_LARGE = "input_too_large"
    DANGEROUS_INPUT = "dangerous_input"
    RUNTIME_UNREACHABLE = "runtime_unreachable"
    CONTAINER_CREATE_FAILED = "container_create_failed"
    CONTAINER_START_FAILED = "container_start_failed"
    EXECUTION_TIMED_OUT = "execution_timed_out"
    SESSION_NOT_FOUND = "session_not_found"
    SESSION_TERMINATED = "session_terminated"
    INVALID_MESSAGE = "invalid_message"
    INTERNAL = "internal"


class PolyExecError(Exception):
    """Base error for all polyexec exceptions."""

    kind: ErrorKind = ErrorKind.INTERNAL


class LanguageNotSupportedError(PolyExecError):
    """Requested language is not in the registry."""

    kind = ErrorKind.LANGUAGE_NOT_SUPPORTED

    def __init__(self, language: str, available: list[str] | None = None) -> None:
        message = f"Language '{language}' is not supported"
        if available:
            message += f". Available: {', '.join(available)}"
        super().__init__(message)
        self.language = language
        self.available = available or []


class LanguageConfigError(PolyExecError):
    """A language recipe is malformed or missing required fields."""

    kind = ErrorKind.LANGUAGE_CONFIG


class InputTooLargeError(PolyExecError):
    """Payload exceeds the configured size limit."""

    kind = ErrorKind.INPUT_TOO_LARGE

    def __init__(self, size: int, limit: int, what: str = "input") -> None:
        super().__init__(f"{what.capitalize()} size {size} bytes exceeds limit of {limit}")
        self.size = size
        self.limit = limit


class DangerousInputError(PolyExecError):
    """Source matched a blocked pattern."""

    kind = ErrorKind.DANGEROUS_INPUT


class RuntimeUnreachableError(PolyExecError):
    """The container daemon could not be reached."""

    kind = ErrorKind.RUNTIME_UNREACHABLE


class ContainerCreateError(PolyExecError):
    """Container could not be created (missing image, bad recipe)."""

    kind = ErrorKind.CONTAINER_CREATE_FAILED

    def __init__(self, message: str, recipe_error: bool = False) -> None:
        super().__init__(message)
        self.recipe_error = recipe_error


class ContainerStartError(PolyExecError):
    """Container was created but could not start (resource exhaustion)."""

    kind = ErrorKind.CONTAINER_START_FAILED

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class SessionNotFoundError(PolyExecError):
    """No tracked session has this identifier."""

    kind = ErrorKind.SESSION_NOT_FOUND

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' not found")
        self.session_id = session_id


class SessionTerminatedError(PolyExecError):
    """Session exists but its container is no longer running."""

    kind = ErrorKind.SESSION_TERMINATED

    def __init__(self, session_id: str, state: str) -> None:
        super().__init__(f"Session '{session_id}' is not active (state: {state})")
        self.session_id = session_id
        self.state = state


class InvalidStateTransitionError(PolyExecError):
    """Session lifecycle transition is not permitted."""
