"""Session registry — lock-protected id → session map with an explicit state machine."""

from __future__ import annotations

import asyncio
import time
import uuid
from enum import Enum
from typing import Any

from polyexec.errors import ContainerStartError, InvalidStateTransitionError, SessionNotFoundError
from polyexec.models import SessionInfo
from polyexec.utils.logging import get_logger

logger = get_logger(__name__)


class SessionState(str, Enum):
    """Lifecycle of an execution session."""

    CREATED = "created"
    PROVISIONING = "provisioning"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    KILLED = "killed"
    STREAM_CLOSED = "stream_closed"
    FAILED = "failed"
    CLEANED = "cleaned"


TERMINAL_STATES: frozenset[SessionState] = frozenset(
    {
        SessionState.COMPLETED,
        SessionState.TIMED_OUT,
        SessionState.KILLED,
        SessionState.STREAM_CLOSED,
        SessionState.FAILED,
    }
)

_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CREATED: frozenset({SessionState.PROVISIONING, SessionState.FAILED}),
    SessionState.PROVISIONING: frozenset({SessionState.RUNNING, SessionState.FAILED}),
    SessionState.RUNNING: frozenset(
        {SessionState.COMPLETED, SessionState.TIMED_OUT, SessionState.KILLED, SessionState.STREAM_CLOSED}
    ),
    **{state: frozenset({SessionState.CLEANED}) for state in TERMINAL_STATES},
    SessionState.CLEANED: frozenset(),
}


def can_transition(current: SessionState, target: SessionState) -> bool:
    return current == target or target in _TRANSITIONS[current]


class ExecutionSession:
    """Mutable record of one execution, owned by the SessionRegistry."""

    def __init__(
        self,
        language: str,
        mode: str,
        owner: str | None = None,
        rows: int | None = None,
        cols: int | None = None,
    ) -> None:
        self.session_id = uuid.uuid4().hex
        self.language = language
        self.mode = mode
        self.owner = owner
        self.rows = rows
        self.cols = cols
        self.state = SessionState.CREATED
        self.container: Any = None
        self.exit_code: int | None = None
        self.created_at = time.time()
        self.last_activity = self.created_at
        self.cleaning = False

    def touch(self) -> None:
        self.last_activity = time.time()

    def info(self) -> SessionInfo:
        return SessionInfo(
            session_id=self.session_id,
            language=self.language,
            mode=self.mode,
            state=self.state.value,
            created_at=self.created_at,
            last_activity=self.last_activity,
            rows=self.rows,
            cols=self.cols,
            exit_code=self.exit_code,
        )


class SessionRegistry:
    """Tracks live sessions; owned by the orchestrator, drained on shutdown."""

    def __init__(self, max_sessions: int | None = None) -> None:
        self._sessions: dict[str, ExecutionSession] = {}
        self._lock = asyncio.Lock()
        self._max_sessions = max_sessions

    async def create(
        self,
        language: str,
        mode: str,
        owner: str | None = None,
        rows: int | None = None,
        cols: int | None = None,
    ) -> ExecutionSession:
        """Register a new session in the ``created`` state.

        Raises:
            ContainerStartError: If the concurrent session limit is reached.
        """
        session = ExecutionSession(language, mode, owner=owner, rows=rows, cols=cols)
        async with self._lock:
            if self._max_sessions is not None and len(self._sessions) >= self._max_sessions:
                logger.warning("session_limit_reached", limit=self._max_sessions)
                raise ContainerStartError(f"Concurrent session limit of {self._max_sessions} reached")
            self._sessions[session.session_id] = session
        logger.debug("session_registered", session_id=session.session_id, language=language, mode=mode)
        return session

    def get(self, session_id: str) -> ExecutionSession:
        """Look up a session.

        Raises:
            SessionNotFoundError: If the id is not tracked.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def find(self, session_id: str) -> ExecutionSession | None:
        return self._sessions.get(session_id)

    async def attach_container(self, session_id: str, container: Any) -> None:
        """Bind the session's container. A session never gets a second one.

        Raises:
            SessionNotFoundError: If the id is not tracked.
            InvalidStateTransitionError: If a container is already attached.
        """
        async with self._lock:
            session = self.get(session_id)
            if session.container is not None:
                raise InvalidStateTransitionError(f"Session '{session_id}' already has a container")
            session.container = container

    async def transition(self, session_id: str, state: SessionState) -> ExecutionSession:
        """Move a session to ``state``.

        Re-entering the current state is a no-op. Terminal states only lead
        to ``cleaned``.

        Raises:
            SessionNotFoundError: If the id is not tracked.
            InvalidStateTransitionError: If the move is not allowed.
        """
        async with self._lock:
            session = self.get(session_id)
            if not can_transition(session.state, state):
                raise InvalidStateTransitionError(
                    f"Session '{session_id}' cannot move from {session.state.value} to {state.value}"
                )
            if session.state != state:
                logger.debug(
                    "session_state_changed",
                    session_id=session_id,
                    old=session.state.value,
                    new=state.value,
                )
                session.state = state
                session.touch()
            return session

    async def finish(self, session_id: str, state: SessionState, exit_code: int | None = None) -> bool:
        """Record a terminal state if the session is still running.

        Returns:
            True if this call moved the session, False if it had already ended.
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.state != SessionState.RUNNING:
                return False
            session.state = state
            session.exit_code = exit_code
            session.touch()
        logger.debug("session_finished", session_id=session_id, state=state.value, exit_code=exit_code)
        return True

    async def begin_cleanup(self, session_id: str) -> ExecutionSession | None:
        """Claim a session for cleanup.

        Returns:
            The session, or None if it is unknown or already being cleaned.
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.cleaning:
                return None
            session.cleaning = True
            return session

    async def remove(self, session_id: str) -> None:
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            if session.state in TERMINAL_STATES:
                session.state = SessionState.CLEANED
            logger.debug("session_removed", session_id=session_id)

    def owned_by(self, owner: str) -> list[str]:
        return [sid for sid, session in self._sessions.items() if session.owner == owner]

    def ids(self) -> list[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
