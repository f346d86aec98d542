"""Unit tests for the session registry and lifecycle state machine."""

from __future__ import annotations

import pytest

from polyexec.errors import ContainerStartError, InvalidStateTransitionError, SessionNotFoundError
from polyexec.runtime.sessions import SessionRegistry, SessionState, can_transition


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry(max_sessions=3)


async def _running(registry: SessionRegistry) -> str:
    session = await registry.create("python", "interactive", owner="conn-1", rows=24, cols=80)
    await registry.transition(session.session_id, SessionState.PROVISIONING)
    await registry.transition(session.session_id, SessionState.RUNNING)
    return session.session_id


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (SessionState.CREATED, SessionState.PROVISIONING),
        (SessionState.CREATED, SessionState.FAILED),
        (SessionState.PROVISIONING, SessionState.RUNNING),
        (SessionState.RUNNING, SessionState.TIMED_OUT),
        (SessionState.RUNNING, SessionState.STREAM_CLOSED),
        (SessionState.KILLED, SessionState.CLEANED),
        (SessionState.RUNNING, SessionState.RUNNING),
    ],
)
def test_allowed_transitions(current: SessionState, target: SessionState) -> None:
    assert can_transition(current, target)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (SessionState.CREATED, SessionState.RUNNING),
        (SessionState.COMPLETED, SessionState.RUNNING),
        (SessionState.FAILED, SessionState.PROVISIONING),
        (SessionState.CLEANED, SessionState.RUNNING),
        (SessionState.RUNNING, SessionState.CLEANED),
    ],
)
def test_forbidden_transitions(current: SessionState, target: SessionState) -> None:
    assert not can_transition(current, target)


async def test_transition_rejects_illegal_move(registry: SessionRegistry) -> None:
    session = await registry.create("python", "batch")
    with pytest.raises(InvalidStateTransitionError):
        await registry.transition(session.session_id, SessionState.COMPLETED)


async def test_terminal_state_is_sticky(registry: SessionRegistry) -> None:
    session_id = await _running(registry)
    assert await registry.finish(session_id, SessionState.COMPLETED, exit_code=0)
    assert not await registry.finish(session_id, SessionState.KILLED)
    session = registry.get(session_id)
    assert session.state == SessionState.COMPLETED
    assert session.exit_code == 0


# ---------------------------------------------------------------------------
# Registry bookkeeping
# ---------------------------------------------------------------------------


async def test_sessions_get_distinct_ids(registry: SessionRegistry) -> None:
    a = await registry.create("python", "interactive")
    b = await registry.create("python", "interactive")
    assert a.session_id != b.session_id
    assert len(registry) == 2
    assert set(registry.ids()) == {a.session_id, b.session_id}


async def test_get_unknown_raises(registry: SessionRegistry) -> None:
    with pytest.raises(SessionNotFoundError):
        registry.get("nope")


async def test_container_attached_only_once(registry: SessionRegistry) -> None:
    session = await registry.create("python", "batch")
    await registry.attach_container(session.session_id, object())
    with pytest.raises(InvalidStateTransitionError):
        await registry.attach_container(session.session_id, object())


async def test_begin_cleanup_claims_once(registry: SessionRegistry) -> None:
    session_id = await _running(registry)
    assert await registry.begin_cleanup(session_id) is not None
    assert await registry.begin_cleanup(session_id) is None
    assert await registry.begin_cleanup("unknown") is None


async def test_remove_marks_terminal_session_cleaned(registry: SessionRegistry) -> None:
    session_id = await _running(registry)
    session = registry.get(session_id)
    await registry.finish(session_id, SessionState.KILLED)
    await registry.remove(session_id)
    assert session.state == SessionState.CLEANED
    assert session_id not in registry
    await registry.remove(session_id)  # no-op


async def test_owned_by_filters_by_connection(registry: SessionRegistry) -> None:
    mine = await _running(registry)
    await registry.create("ruby", "interactive", owner="conn-2")
    assert registry.owned_by("conn-1") == [mine]


async def test_session_limit(registry: SessionRegistry) -> None:
    for _ in range(3):
        await registry.create("python", "batch")
    with pytest.raises(ContainerStartError, match="limit"):
        await registry.create("python", "batch")


async def test_info_snapshot(registry: SessionRegistry) -> None:
    session_id = await _running(registry)
    info = registry.get(session_id).info()
    assert info.state == "running"
    assert (info.rows, info.cols) == (24, 80)
    assert info.mode == "interactive"
