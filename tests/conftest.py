"""Shared pytest fixtures for the polyexec test suite.

``FakeDockerClient`` stands in for ``docker.DockerClient``: it records what the
orchestrator asks for and plays back scripted container behaviour, so the
orchestration logic can be tested without a daemon.
"""

from __future__ import annotations

import asyncio
import queue
import threading
import time
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import docker.errors
import pytest

from polyexec.config import PolyExecConfig
from polyexec.languages.registry import LanguageRegistry
from polyexec.runtime.orchestrator import ContainerOrchestrator


class FakeSocket:
    """Blocking socket double. Echoes writes back when ``echo`` is set, like a PTY."""

    def __init__(self, echo: bool = True) -> None:
        self.echo = echo
        self.sent: list[bytes] = []
        self.closed = False
        self._inbox: queue.Queue[bytes | None] = queue.Queue()

    def feed(self, data: bytes | None) -> None:
        self._inbox.put(data)

    def recv(self, bufsize: int) -> bytes:
        data = self._inbox.get()
        if data is None:
            self._inbox.put(None)  # stay at EOF
            return b""
        return data

    def sendall(self, data: bytes) -> None:
        if self.closed:
            raise BrokenPipeError("socket closed")
        self.sent.append(data)
        if self.echo:
            self.feed(data)

    def shutdown(self, how: int) -> None:
        self.feed(None)

    def close(self) -> None:
        self.closed = True
        self.feed(None)


class FakeContainer:
    """Scripted container. Runs until ``finish`` unless ``exit_code`` is set at start."""

    def __init__(self, client: FakeDockerClient, **kwargs: Any) -> None:
        self.client = client
        self.kwargs = kwargs
        self.id = f"fake{len(client.created):04d}"
        self.labels = kwargs.get("labels", {})
        self.status = "created"
        self.socket = FakeSocket(echo=client.echo)
        self.exit_code: int | None = None
        self.resizes: list[tuple[int, int]] = []
        self.stop_calls: list[int] = []
        self.killed = False
        self.removed = False
        self.committed: tuple[str, str] | None = None
        self._exited = threading.Event()

    def finish(self, exit_code: int) -> None:
        if self._exited.is_set():
            return
        self.exit_code = exit_code
        self.status = "exited"
        self._exited.set()
        self.socket.feed(None)

    def start(self) -> None:
        if self.client.start_error is not None:
            raise self.client.start_error
        self.status = "running"
        if self.client.exit_code is not None:
            self.finish(self.client.exit_code)

    def wait(self, timeout: float | None = None) -> dict[str, Any]:
        if self.client.wait_error is not None:
            raise self.client.wait_error
        self._exited.wait(timeout)
        return {"StatusCode": self.exit_code if self.exit_code is not None else -1, "Error": None}

    def kill(self) -> None:
        self.killed = True
        self.finish(137)

    def stop(self, timeout: int = 10) -> None:
        self.stop_calls.append(timeout)
        if self.client.stop_error is not None:
            raise self.client.stop_error
        self.finish(143)

    def remove(self, force: bool = False) -> None:
        if self.client.remove_error is not None:
            raise self.client.remove_error
        self.removed = True
        self.finish(137)

    def logs(self, stdout: bool = True, stderr: bool = True) -> bytes:
        out = b""
        if stdout:
            out += self.client.stdout
        if stderr:
            out += self.client.stderr
        return out

    def resize(self, height: int, width: int) -> None:
        self.resizes.append((height, width))

    def attach_socket(self, params: dict[str, Any] | None = None) -> FakeSocket:
        if self.client.attach_error is not None:
            raise self.client.attach_error
        return self.socket

    def commit(self, repository: str, tag: str) -> None:
        self.committed = (repository, tag)

    @property
    def running(self) -> bool:
        return self.status == "running"


class _FakeContainers:
    def __init__(self, client: FakeDockerClient) -> None:
        self._client = client

    def create(self, **kwargs: Any) -> FakeContainer:
        if self._client.create_error is not None:
            raise self._client.create_error
        container = FakeContainer(self._client, **kwargs)
        self._client.created.append(container)
        return container


class _FakeImages:
    def __init__(self, client: FakeDockerClient) -> None:
        self._client = client
        self.pulled: list[str] = []

    def pull(self, repository: str, tag: str | None = None) -> None:
        ref = f"{repository}:{tag}"
        if ref in self._client.pull_errors:
            raise self._client.pull_errors[ref]
        self.pulled.append(ref)


class FakeDockerClient:
    """Subset of docker.DockerClient used by the orchestrator."""

    def __init__(self) -> None:
        self.containers = _FakeContainers(self)
        self.images = _FakeImages(self)
        self.created: list[FakeContainer] = []
        self.closed = False

        # Behaviour knobs, read when containers are created or driven
        self.exit_code: int | None = 0
        self.stdout = b""
        self.stderr = b""
        self.echo = True
        self.ping_error: Exception | None = None
        self.create_error: Exception | None = None
        self.start_error: Exception | None = None
        self.attach_error: Exception | None = None
        self.wait_error: Exception | None = None
        self.stop_error: Exception | None = None
        self.remove_error: Exception | None = None
        self.pull_errors: dict[str, Exception] = {}

    def ping(self) -> bool:
        if self.ping_error is not None:
            raise self.ping_error
        return True

    def info(self) -> dict[str, Any]:
        return {"Containers": len(self.created), "Images": 7, "MemTotal": 8 * 1024**3, "NCPU": 4}

    def version(self) -> dict[str, Any]:
        return {"Version": "24.0.7"}

    def close(self) -> None:
        self.closed = True

    @property
    def last(self) -> FakeContainer:
        return self.created[-1]


def api_error(status: int, message: str = "boom") -> docker.errors.APIError:
    """APIError carrying an HTTP status, the way docker-py raises them."""

    class _Response:
        status_code = status
        reason = message
        url = "http+docker://localhost/containers/create"

    return docker.errors.APIError(message, response=_Response(), explanation=message)  # type: ignore[arg-type]


async def wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    """Poll until ``predicate`` is true or fail the test."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def polyexec_config(tmp_path: Path) -> PolyExecConfig:
    """Return a test PolyExecConfig with short grace periods."""
    return PolyExecConfig(
        _env_file=None,
        log_level="DEBUG",
        debug=True,
        max_concurrent_sessions=4,
        terminate_grace_seconds=0.2,
        channel_buffer_size=16,
        max_stdin_size_bytes=64,
        max_code_size_bytes=1024,
    )


@pytest.fixture
def languages() -> LanguageRegistry:
    return LanguageRegistry()


@pytest.fixture
def fast_languages(tmp_path: Path) -> LanguageRegistry:
    """Registry with a python recipe whose time limit is 200ms."""
    overlay = tmp_path / "languages.yaml"
    overlay.write_text(
        "languages:\n"
        "  python:\n"
        "    name: Python\n"
        "    type: interpreted\n"
        "    image: python:3.11-alpine\n"
        "    file_extension: .py\n"
        "    run_command: python\n"
        "    timeout_ms: 200\n",
        encoding="utf-8",
    )
    return LanguageRegistry(str(overlay))


@pytest.fixture
def docker_client() -> FakeDockerClient:
    return FakeDockerClient()


@pytest.fixture
async def orchestrator(
    polyexec_config: PolyExecConfig,
    languages: LanguageRegistry,
    docker_client: FakeDockerClient,
) -> AsyncIterator[ContainerOrchestrator]:
    orch = ContainerOrchestrator(polyexec_config, languages, client=docker_client)  # type: ignore[arg-type]
    yield orch
    await orch.close()
