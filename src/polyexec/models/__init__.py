"""Pydantic models for polyexec — language recipes, execution, streams, and channel messages."""

from __future__ import annotations

import re
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ---------------------------------------------------------------------------
# Language recipe models (languages namespace)
# ---------------------------------------------------------------------------

_MEMORY_RE = re.compile(r"^(\d+)([kmg]?)$")
_MEMORY_UNITS = {"": 1, "k": 1024, "m": 1024**2, "g": 1024**3}


class LanguageType(str, Enum):
    """How a language turns source into a running program."""

    INTERPRETED = "interpreted"
    COMPILED = "compiled"
    TRANSPILED = "transpiled"


class LanguageConfig(BaseModel):
    """Immutable execution recipe for a single language."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    type: LanguageType
    image: str
    file_extension: str
    run_command: str
    compile_command: str | None = None
    timeout_ms: int = Field(default=10_000, gt=0)
    memory_limit: str = "128m"
    cpu_limit: float = Field(default=0.5, gt=0)
    class_name: str | None = None
    setup_commands: tuple[str, ...] = ()
    interactive_command: str = "/bin/sh -l"
    pids_limit: int = Field(default=64, gt=0)
    nofile_limit: int = Field(default=64, gt=0)
    nproc_limit: int = Field(default=32, gt=0)

    @field_validator("name", "image", "run_command")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("file_extension")
    @classmethod
    def _dotted_extension(cls, value: str) -> str:
        if not value.startswith(".") or len(value) < 2:
            raise ValueError("file extension must look like '.py'")
        return value

    @field_validator("memory_limit")
    @classmethod
    def _docker_memory(cls, value: str) -> str:
        value = value.strip().lower()
        if not _MEMORY_RE.match(value):
            raise ValueError(f"invalid memory limit {value!r}; expected e.g. '128m'")
        return value

    @model_validator(mode="after")
    def _compile_step_matches_type(self) -> LanguageConfig:
        needs_compile = self.type in (LanguageType.COMPILED, LanguageType.TRANSPILED)
        has_compile = bool(self.compile_command and self.compile_command.strip())
        if needs_compile and not has_compile:
            raise ValueError(f"{self.type.value} language '{self.name}' requires a compile_command")
        if has_compile and not needs_compile:
            raise ValueError(f"interpreted language '{self.name}' must not define a compile_command")
        return self

    @property
    def source_filename(self) -> str:
        """File name the source is written to inside the container."""
        return f"{self.class_name or 'code'}{self.file_extension}"

    @property
    def memory_bytes(self) -> int:
        match = _MEMORY_RE.match(self.memory_limit)
        assert match is not None  # guaranteed by validator
        return int(match.group(1)) * _MEMORY_UNITS[match.group(2)]

    @property
    def is_compiled(self) -> bool:
        return self.compile_command is not None


class LanguageSummary(BaseModel):
    """Public view of a language recipe (used in listings)."""

    id: str
    name: str
    type: LanguageType
    file_extension: str
    timeout_ms: int
    memory_limit: str
    cpu_limit: float


# ---------------------------------------------------------------------------
# Execution models (batch namespace)
# ---------------------------------------------------------------------------


class ExecuteRequest(BaseModel):
    """Request body for a batch execution."""

    language: str
    code: str
    stdin: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_input_alias(cls, data: object) -> object:
        # Older clients send `input` instead of `stdin`
        if isinstance(data, dict) and "stdin" not in data and isinstance(data.get("input"), str):
            data = {k: v for k, v in data.items() if k != "input"} | {"stdin": data["input"]}
        return data


class ExecutionResult(BaseModel):
    """Result of a run-to-completion execution."""

    language: str
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    timed_out: bool = False
    execution_time_ms: int = 0


# ---------------------------------------------------------------------------
# Stream models (streams namespace)
# ---------------------------------------------------------------------------


class Direction(str, Enum):
    """Which way a chunk crosses the PTY boundary."""

    TO_CONTAINER = "to_container"
    FROM_CONTAINER = "from_container"


class StreamChunk(BaseModel):
    """Transient unit of PTY data. Never persisted."""

    data: bytes
    direction: Direction
    has_control_chars: bool = False
    has_ansi: bool = False
    is_binary: bool = False


class InputMetadata(BaseModel):
    """What the input handler observed about a payload."""

    type: Literal["text", "binary"]
    length: int
    has_control_chars: bool = False
    has_ansi: bool = False
    normalized: bool = False


class ProcessedInput(BaseModel):
    """Validated, normalized payload ready to be written to a container."""

    success: bool = True
    data: bytes
    metadata: InputMetadata


# ---------------------------------------------------------------------------
# Session / channel models (interactive namespace)
# ---------------------------------------------------------------------------


class SessionInfo(BaseModel):
    """Snapshot of a tracked session."""

    session_id: str
    language: str
    mode: str
    state: str
    created_at: float
    last_activity: float
    rows: int | None = None
    cols: int | None = None
    exit_code: int | None = None


class ChannelEvent(BaseModel):
    """Event delivered from a session to its transport."""

    type: Literal["output", "exit", "error"]
    session_id: str
    chunk: StreamChunk | None = None
    exit_code: int | None = None
    reason: str | None = None
    kind: str | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Runtime / image models
# ---------------------------------------------------------------------------


class ImagePullReport(BaseModel):
    """Outcome of pulling and preparing language images."""

    pulled: list[str] = Field(default_factory=list)
    prepared: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)


class SystemInfo(BaseModel):
    """Container runtime facts plus local session counts."""

    docker_version: str | None = None
    containers: int | None = None
    images: int | None = None
    memory_total: int | None = None
    cpu_count: int | None = None
    active_sessions: int = 0
