"""Container orchestration — batch runs and interactive PTY sessions on Docker.

docker-py is blocking, so every call goes through a dedicated, bounded
thread pool. Each interactive session holds two of those threads for its
lifetime (PTY reader and exit waiter), which is why the pool is sized from
``max_concurrent_sessions``.
"""

from __future__ import annotations

import asyncio
import functools
import math
import socket
import time
from collections.abc import Callable, Coroutine
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, TypeVar

import docker
import docker.errors
import requests
from docker import DockerClient
from docker.utils import parse_repository_tag

from polyexec.config import PolyExecConfig
from polyexec.errors import (
    ContainerCreateError,
    ContainerStartError,
    InputTooLargeError,
    PolyExecError,
    RuntimeUnreachableError,
    SessionTerminatedError,
)
from polyexec.languages.registry import LanguageRegistry
from polyexec.models import ExecutionResult, ImagePullReport, LanguageConfig, SystemInfo
from polyexec.runtime import containers
from polyexec.runtime.sessions import SessionRegistry, SessionState, can_transition
from polyexec.security.policies import screen_source
from polyexec.streams.channel import SessionChannel
from polyexec.streams.input_handler import InputContext, InputHandler, normalize_line_endings
from polyexec.streams.pty_processor import PtyStreamProcessor
from polyexec.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

TIMEOUT_EXIT_CODE = 124
_RECV_BYTES = 4096
_SETUP_TIMEOUT_SECONDS = 600
_DRAIN_SECONDS = 0.5

# What docker-py and the attached socket can throw at us mid-session
_RUNTIME_ERRORS = (docker.errors.DockerException, RuntimeUnreachableError, OSError)


@dataclass
class _LiveSession:
    """Transport-side state of an interactive session."""

    channel: SessionChannel
    processor: PtyStreamProcessor
    attached: Any
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    stream_ended: asyncio.Event = field(default_factory=asyncio.Event)
    reads: int = 0
    reader: asyncio.Task[None] | None = None
    waiter: asyncio.Task[None] | None = None

    @property
    def raw_socket(self) -> Any:
        # docker-py wraps the unix socket; the raw one is needed for sendall/recv
        return getattr(self.attached, "_sock", self.attached)


def _close_socket(attached: Any) -> None:
    raw = getattr(attached, "_sock", attached)
    try:
        raw.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass  # already disconnected
    raw.close()
    if raw is not attached:
        attached.close()


class ContainerOrchestrator:
    """Provisions, drives and tears down execution containers."""

    def __init__(
        self,
        config: PolyExecConfig,
        languages: LanguageRegistry,
        registry: SessionRegistry | None = None,
        client: DockerClient | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Service configuration.
            languages: Recipe lookup.
            registry: Session registry; a fresh one bounded by
                ``max_concurrent_sessions`` is created when omitted.
            client: Docker client; created lazily from the environment when omitted.
        """
        self._config = config
        self._languages = languages
        self._sessions = registry or SessionRegistry(max_sessions=config.max_concurrent_sessions)
        self._client = client
        self._executor = ThreadPoolExecutor(
            max_workers=config.max_concurrent_sessions * 2 + 8,
            thread_name_prefix="polyexec-docker",
        )
        self._pty_input = InputHandler(config.max_pty_input_bytes)
        self._stdin_input = InputHandler(config.max_stdin_size_bytes)
        self._live: dict[str, _LiveSession] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    @property
    def languages(self) -> LanguageRegistry:
        return self._languages

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking docker-py call on the orchestrator's thread pool."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, functools.partial(func, *args, **kwargs))
        except requests.exceptions.ConnectionError as exc:
            raise RuntimeUnreachableError(f"Docker daemon unreachable: {exc}") from exc

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _connect(self) -> DockerClient:
        if self._config.docker_host:
            return docker.DockerClient(base_url=self._config.docker_host)
        return docker.from_env()

    async def _get_client(self) -> DockerClient:
        """Get the Docker client and make sure the daemon answers.

        Raises:
            RuntimeUnreachableError: If the daemon cannot be reached.
        """
        try:
            if self._client is None:
                self._client = await self._call(self._connect)
            await self._call(self._client.ping)
        except docker.errors.DockerException as exc:
            raise RuntimeUnreachableError(f"Docker is not available: {exc}") from exc
        return self._client

    async def docker_available(self) -> bool:
        try:
            await self._get_client()
        except RuntimeUnreachableError:
            return False
        return True

    async def _create_container(self, client: DockerClient, kwargs: dict[str, Any]) -> Any:
        """Create (but do not start) a container.

        Raises:
            ContainerCreateError: ``recipe_error`` is set for missing images and
                other client-side (4xx) rejections.
        """
        image = kwargs["image"]
        try:
            return await self._call(client.containers.create, **kwargs)
        except docker.errors.ImageNotFound as exc:
            raise ContainerCreateError(
                f"Image '{image}' not found. Run: polyexec pull", recipe_error=True
            ) from exc
        except docker.errors.APIError as exc:
            raise ContainerCreateError(
                f"Container create failed: {exc.explanation or exc}", recipe_error=exc.is_client_error()
            ) from exc
        except docker.errors.DockerException as exc:
            raise ContainerCreateError(f"Container create failed: {exc}") from exc

    async def _start_container(self, container: Any) -> None:
        try:
            await self._call(container.start)
        except docker.errors.DockerException as exc:
            raise ContainerStartError(f"Container failed to start: {exc}") from exc

    async def _remove_container(self, container: Any, session_id: str) -> None:
        try:
            await self._call(container.remove, force=True)
            logger.debug("container_removed", session_id=session_id)
        except _RUNTIME_ERRORS as exc:
            logger.warning("container_remove_failed", session_id=session_id, error=str(exc))

    async def _kill_container(self, container: Any, session_id: str) -> None:
        try:
            await self._call(container.kill)
        except _RUNTIME_ERRORS as exc:
            logger.warning("container_kill_failed", session_id=session_id, error=str(exc))

    async def _stop_container(self, container: Any, session_id: str, force: bool) -> None:
        """Stop gracefully within the grace period, then kill."""
        grace = self._config.terminate_grace_seconds
        if not force:
            try:
                await asyncio.wait_for(
                    self._call(container.stop, timeout=max(1, math.ceil(grace))),
                    timeout=grace + 1,
                )
                return
            except asyncio.TimeoutError:
                logger.warning("graceful_stop_timed_out", session_id=session_id, grace_seconds=grace)
            except _RUNTIME_ERRORS as exc:
                logger.warning("graceful_stop_failed", session_id=session_id, error=str(exc))
        await self._kill_container(container, session_id)

    async def _exit_status(self, container: Any, session_id: str) -> int | None:
        """Exit code of a container that has just been stopped, if Docker reports one."""
        try:
            status = await asyncio.wait_for(self._call(container.wait), timeout=_DRAIN_SECONDS * 2)
        except asyncio.TimeoutError:
            return None
        except _RUNTIME_ERRORS as exc:
            logger.debug("container_status_unavailable", session_id=session_id, error=str(exc))
            return None
        return int(status.get("StatusCode", -1))

    async def _resize_container(self, container: Any, session_id: str, rows: int, cols: int) -> None:
        try:
            await self._call(container.resize, height=rows, width=cols)
        except _RUNTIME_ERRORS as exc:
            logger.warning("container_resize_failed", session_id=session_id, error=str(exc))

    async def _read_logs(self, container: Any, session_id: str, *, stdout: bool) -> str:
        try:
            raw: bytes = await self._call(container.logs, stdout=stdout, stderr=not stdout)
        except _RUNTIME_ERRORS as exc:
            logger.warning("container_logs_failed", session_id=session_id, error=str(exc))
            return ""
        raw = raw[: self._config.max_output_bytes]
        if self._config.fix_line_endings:
            raw = normalize_line_endings(raw)
        return raw.decode("utf-8", errors="replace")

    async def _abort_provisioning(self, session_id: str, container: Any) -> None:
        session = self._sessions.find(session_id)
        if session is not None:
            target = SessionState.KILLED if session.state == SessionState.RUNNING else SessionState.FAILED
            if can_transition(session.state, target):
                await self._sessions.transition(session_id, target)
        if container is not None:
            await self._remove_container(container, session_id)
        await self._sessions.remove(session_id)

    # ------------------------------------------------------------------
    # Batch execution
    # ------------------------------------------------------------------

    async def run_once(self, language: str, source_code: str, stdin: str | None = None) -> ExecutionResult:
        """Run a program to completion in a fresh container.

        Args:
            language: Language id.
            source_code: Program source.
            stdin: Optional stdin text.

        Returns:
            ExecutionResult. A timeout is reported via ``timed_out`` and exit code 124.

        Raises:
            LanguageNotSupportedError: Unknown language; no container is created.
            InputTooLargeError: Source or stdin over the configured limit.
            DangerousInputError: Source matched a blocked pattern (when screening is on).
            RuntimeUnreachableError: Docker cannot be reached or stopped answering mid-run.
            ContainerCreateError: Container could not be created.
            ContainerStartError: Container could not start, vanished mid-run, or the session limit is reached.
        """
        recipe = self._languages.resolve(language)
        language_id = language.strip().lower()

        size = len(source_code.encode("utf-8"))
        if size > self._config.max_code_size_bytes:
            raise InputTooLargeError(size, self._config.max_code_size_bytes, what="source")
        if self._config.screen_dangerous_patterns:
            screen_source(source_code, language_id)

        stdin_text = self._stdin_input.normalize_stdin(stdin, InputContext(language=language_id, purpose="stdin"))

        client = await self._get_client()
        session = await self._sessions.create(language_id, "batch")
        session_id = session.session_id
        container = None
        start = time.monotonic()

        logger.debug("batch_start", session_id=session_id, language=language_id, image=recipe.image)
        try:
            await self._sessions.transition(session_id, SessionState.PROVISIONING)
            container = await self._create_container(
                client,
                containers.batch_container_kwargs(language_id, recipe, self._config, session_id, source_code, stdin_text),
            )
            await self._sessions.attach_container(session_id, container)
            await self._start_container(container)
            await self._sessions.transition(session_id, SessionState.RUNNING)

            timed_out = False
            try:
                status = await asyncio.wait_for(self._call(container.wait), timeout=recipe.timeout_ms / 1000)
                exit_code = int(status.get("StatusCode", 1))
            except asyncio.TimeoutError:
                timed_out = True
                exit_code = TIMEOUT_EXIT_CODE
                logger.info("batch_timed_out", session_id=session_id, timeout_ms=recipe.timeout_ms)
                await self._kill_container(container, session_id)
            except docker.errors.NotFound as exc:
                raise ContainerStartError(f"Container disappeared while running: {exc}") from exc
            except docker.errors.DockerException as exc:
                raise RuntimeUnreachableError(f"Lost track of container: {exc}") from exc

            await self._sessions.finish(
                session_id, SessionState.TIMED_OUT if timed_out else SessionState.COMPLETED, exit_code
            )
            stdout = await self._read_logs(container, session_id, stdout=True)
            stderr = await self._read_logs(container, session_id, stdout=False)
        except PolyExecError:
            await self._abort_provisioning(session_id, None)
            raise
        finally:
            if container is not None:
                await self._remove_container(container, session_id)
            await self._sessions.remove(session_id)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "code_executed",
            language=language_id,
            exit_code=exit_code,
            timed_out=timed_out,
            elapsed_ms=elapsed_ms,
        )
        return ExecutionResult(
            language=language_id,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            timed_out=timed_out,
            execution_time_ms=elapsed_ms,
        )

    # ------------------------------------------------------------------
    # Interactive sessions
    # ------------------------------------------------------------------

    async def create_interactive_session(
        self,
        language: str,
        rows: int | None = None,
        cols: int | None = None,
        owner: str | None = None,
    ) -> tuple[str, SessionChannel]:
        """Start a PTY session and return its id and outbound channel.

        Args:
            language: Language id.
            rows: Terminal rows; the configured default when missing or non-positive.
            cols: Terminal columns; same defaulting as ``rows``.
            owner: Transport connection id, used by :meth:`handle_disconnect`.

        Raises:
            LanguageNotSupportedError: Unknown language; no container is created.
            RuntimeUnreachableError: Docker cannot be reached.
            ContainerCreateError: Container could not be created.
            ContainerStartError: Start or attach failed, or the session limit is reached.
        """
        recipe = self._languages.resolve(language)
        language_id = language.strip().lower()
        rows = rows if rows and rows > 0 else self._config.default_rows
        cols = cols if cols and cols > 0 else self._config.default_cols

        client = await self._get_client()
        session = await self._sessions.create(language_id, "interactive", owner=owner, rows=rows, cols=cols)
        session_id = session.session_id
        container = None
        attached = None

        try:
            await self._sessions.transition(session_id, SessionState.PROVISIONING)
            container = await self._create_container(
                client, containers.interactive_container_kwargs(language_id, recipe, self._config, session_id)
            )
            await self._sessions.attach_container(session_id, container)
            await self._start_container(container)
            try:
                attached = await self._call(
                    container.attach_socket,
                    params={"stdin": 1, "stdout": 1, "stderr": 1, "stream": 1},
                )
            except _RUNTIME_ERRORS as exc:
                raise ContainerStartError(f"Could not attach to container: {exc}") from exc
            await self._resize_container(container, session_id, rows, cols)
            await self._sessions.transition(session_id, SessionState.RUNNING)
        except PolyExecError:
            if attached is not None:
                await self._call(_close_socket, attached)
            await self._abort_provisioning(session_id, container)
            raise

        live = _LiveSession(
            channel=SessionChannel(session_id, maxsize=self._config.channel_buffer_size),
            processor=PtyStreamProcessor(
                session_id, language_id, self._pty_input, fix_line_endings=self._config.fix_line_endings
            ),
            attached=attached,
        )
        self._live[session_id] = live
        live.reader = asyncio.create_task(self._pump_output(session_id, live))
        live.waiter = asyncio.create_task(self._wait_exit(session_id, container, live))

        logger.info("session_started", session_id=session_id, language=language_id, rows=rows, cols=cols)
        return session_id, live.channel

    async def _pump_output(self, session_id: str, live: _LiveSession) -> None:
        """Reader task: PTY bytes → processor → channel."""
        raw = live.raw_socket
        try:
            while True:
                data = await self._call(raw.recv, _RECV_BYTES)
                if not data:
                    break
                live.reads += 1
                session = self._sessions.find(session_id)
                if session is not None:
                    session.touch()
                chunk = live.processor.process_output(data)
                if chunk is not None:
                    await live.channel.send_output(chunk)
        except _RUNTIME_ERRORS as exc:
            logger.debug("pty_read_ended", session_id=session_id, error=str(exc))

        tail = live.processor.flush()
        if tail is not None:
            await live.channel.send_output(tail)
        live.stream_ended.set()

        # Normally the waiter reports the exit; give it the grace period first
        if live.waiter is not None and not live.waiter.done():
            await asyncio.wait({live.waiter}, timeout=self._config.terminate_grace_seconds)
        if await self._sessions.finish(session_id, SessionState.STREAM_CLOSED):
            logger.warning("pty_stream_closed", session_id=session_id)
            await live.channel.finish(None, SessionState.STREAM_CLOSED.value)
            self._spawn(self.terminate_session(session_id, force=True))

    async def _wait_exit(self, session_id: str, container: Any, live: _LiveSession) -> None:
        """Waiter task: record the container's exit and trigger cleanup."""
        exit_code: int | None
        try:
            status = await self._call(container.wait)
            exit_code = int(status.get("StatusCode", -1))
        except _RUNTIME_ERRORS as exc:
            logger.warning("container_wait_failed", session_id=session_id, error=str(exc))
            exit_code = None

        await self._await_drain(session_id, live)

        if await self._sessions.finish(session_id, SessionState.COMPLETED, exit_code):
            logger.info("session_completed", session_id=session_id, exit_code=exit_code)
            await live.channel.finish(exit_code, SessionState.COMPLETED.value)
            self._spawn(self.terminate_session(session_id, force=True))

    async def _await_drain(self, session_id: str, live: _LiveSession) -> None:
        """Wait until the reader has queued everything the program wrote.

        A reader that is blocked on a full channel is making progress at the
        consumer's pace, so there is no deadline. Only a reader stuck in recv
        with nothing arriving gets its socket closed to force end-of-stream.
        """
        last_reads = live.reads
        socket_closed = False
        while not live.stream_ended.is_set():
            try:
                await asyncio.wait_for(live.stream_ended.wait(), timeout=_DRAIN_SECONDS)
            except asyncio.TimeoutError:
                if live.reads != last_reads or live.channel.full():
                    last_reads = live.reads
                    continue
                if socket_closed:
                    logger.warning("pty_drain_abandoned", session_id=session_id)
                    return
                logger.debug("pty_drain_stalled", session_id=session_id)
                try:
                    await self._call(_close_socket, live.attached)
                except _RUNTIME_ERRORS as exc:
                    logger.warning("pty_close_failed", session_id=session_id, error=str(exc))
                socket_closed = True

    async def resize_session(self, session_id: str, rows: int, cols: int) -> None:
        """Resize the PTY without restarting the session.

        Raises:
            SessionNotFoundError: If the id is not tracked.
        """
        session = self._sessions.get(session_id)
        if rows <= 0 or cols <= 0:
            logger.debug("resize_ignored", session_id=session_id, rows=rows, cols=cols)
            return
        session.rows, session.cols = rows, cols
        session.touch()
        if session.state == SessionState.RUNNING and session.container is not None:
            await self._resize_container(session.container, session_id, rows, cols)

    async def write_input(self, session_id: str, data: str | bytes) -> int:
        """Send client input to the session's PTY.

        Returns:
            Number of bytes written after normalization.

        Raises:
            SessionNotFoundError: If the id is not tracked.
            SessionTerminatedError: If the session is no longer running.
            InputTooLargeError: If the payload exceeds the PTY input limit.
        """
        session = self._sessions.get(session_id)
        live = self._live.get(session_id)
        if session.state != SessionState.RUNNING or live is None:
            raise SessionTerminatedError(session_id, session.state.value)

        chunk = live.processor.prepare_input(data)
        async with live.write_lock:
            try:
                await self._call(live.raw_socket.sendall, chunk.data)
            except _RUNTIME_ERRORS as exc:
                logger.warning("pty_write_failed", session_id=session_id, error=str(exc))
                raise SessionTerminatedError(session_id, session.state.value) from exc
        session.touch()
        return len(chunk.data)

    async def terminate_session(self, session_id: str, force: bool = False) -> None:
        """Stop a session and release everything it holds. Idempotent.

        Args:
            session_id: Session to terminate; unknown ids are ignored.
            force: Kill immediately instead of stopping within the grace period.
        """
        session = await self._sessions.begin_cleanup(session_id)
        if session is None:
            return
        live = self._live.pop(session_id, None)

        try:
            if session.state == SessionState.RUNNING and session.container is not None:
                await self._sessions.finish(session_id, SessionState.KILLED)
                await self._stop_container(session.container, session_id, force)
                session.exit_code = await self._exit_status(session.container, session_id)
                if live is not None:
                    live.channel.send_exit(session.exit_code, "terminated")
        finally:
            await self._teardown(session_id, session.container, live)
        logger.info("session_terminated", session_id=session_id, state=session.state.value, force=force)

    async def _teardown(self, session_id: str, container: Any, live: _LiveSession | None) -> None:
        if live is not None:
            try:
                await self._call(_close_socket, live.attached)
            except _RUNTIME_ERRORS as exc:
                logger.warning("pty_close_failed", session_id=session_id, error=str(exc))
            current = asyncio.current_task()
            tasks = [t for t in (live.reader, live.waiter) if t is not None and t is not current and not t.done()]
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.wait(tasks, timeout=1)
        if container is not None:
            await self._remove_container(container, session_id)
        await self._sessions.remove(session_id)
        if live is not None:
            live.channel.close()

    async def handle_disconnect(self, owner: str) -> None:
        """Force-terminate every session owned by a transport connection."""
        session_ids = self._sessions.owned_by(owner)
        if session_ids:
            logger.info("transport_disconnected", owner=owner, sessions=len(session_ids))
        await asyncio.gather(*(self.terminate_session(sid, force=True) for sid in session_ids))

    async def cleanup_all(self) -> None:
        """Tear down every tracked session, logging and skipping failures."""
        session_ids = self._sessions.ids()
        results = await asyncio.gather(
            *(self.terminate_session(sid, force=True) for sid in session_ids),
            return_exceptions=True,
        )
        for session_id, result in zip(session_ids, results):
            if isinstance(result, BaseException):
                logger.warning("session_cleanup_failed", session_id=session_id, error=str(result))
        if session_ids:
            logger.info("sessions_cleaned", count=len(session_ids))

    # ------------------------------------------------------------------
    # Images and runtime facts
    # ------------------------------------------------------------------

    async def pull_images(self, languages: list[str] | None = None) -> ImagePullReport:
        """Pull base images and bake setup commands into prepared images.

        Args:
            languages: Language ids to prepare; all supported languages when None.

        Returns:
            Report of pulled, prepared and failed images. Failures do not stop the rest.

        Raises:
            LanguageNotSupportedError: If a requested language is unknown.
            RuntimeUnreachableError: Docker cannot be reached.
        """
        if languages:
            targets = [(lang.strip().lower(), self._languages.resolve(lang)) for lang in languages]
        else:
            targets = self._languages.items()

        client = await self._get_client()
        report = ImagePullReport()

        for image in dict.fromkeys(recipe.image for _, recipe in targets):
            repository, tag = parse_repository_tag(image)
            try:
                await self._call(client.images.pull, repository, tag=tag or "latest")
                report.pulled.append(image)
                logger.info("image_pulled", image=image)
            except (docker.errors.DockerException, RuntimeUnreachableError) as exc:
                report.failed[image] = str(exc)
                logger.warning("image_pull_failed", image=image, error=str(exc))

        for language_id, recipe in targets:
            if not recipe.setup_commands or recipe.image in report.failed:
                continue
            tag = containers.prepared_image(language_id)
            try:
                await self._prepare_image(client, language_id, recipe)
                report.prepared.append(tag)
                logger.info("image_prepared", language=language_id, image=tag)
            except (PolyExecError, docker.errors.DockerException, requests.exceptions.RequestException) as exc:
                report.failed[tag] = str(exc)
                logger.warning("image_prepare_failed", language=language_id, error=str(exc))

        return report

    async def _prepare_image(self, client: DockerClient, language_id: str, recipe: LanguageConfig) -> None:
        """Run setup commands once in a networked container and commit the result."""
        container = await self._create_container(
            client,
            {
                "image": recipe.image,
                "command": ["sh", "-c", " && ".join(recipe.setup_commands)],
                "detach": True,
                "labels": {containers.SESSION_LABEL: f"prepare-{language_id}"},
            },
        )
        try:
            await self._start_container(container)
            status = await self._call(container.wait, timeout=_SETUP_TIMEOUT_SECONDS)
            exit_code = int(status.get("StatusCode", 1))
            if exit_code != 0:
                output = await self._call(container.logs, stdout=True, stderr=True)
                raise ContainerCreateError(
                    f"Setup for '{language_id}' exited with {exit_code}: "
                    f"{output.decode('utf-8', errors='replace')[-500:]}",
                    recipe_error=True,
                )
            repository, tag = containers.prepared_image(language_id).split(":", 1)
            await self._call(container.commit, repository=repository, tag=tag)
        finally:
            await self._remove_container(container, f"prepare-{language_id}")

    async def system_info(self) -> SystemInfo:
        """Docker version and counts plus local session count.

        Raises:
            RuntimeUnreachableError: Docker cannot be reached.
        """
        client = await self._get_client()
        try:
            info = await self._call(client.info)
            version = await self._call(client.version)
        except docker.errors.DockerException as exc:
            raise RuntimeUnreachableError(f"Docker info unavailable: {exc}") from exc
        return SystemInfo(
            docker_version=version.get("Version"),
            containers=info.get("Containers"),
            images=info.get("Images"),
            memory_total=info.get("MemTotal"),
            cpu_count=info.get("NCPU"),
            active_sessions=len(self._sessions),
        )

    async def close(self) -> None:
        """Drain all sessions, then release the thread pool and Docker client."""
        if self._closed:
            return
        self._closed = True
        await self.cleanup_all()
        for task in list(self._background):
            task.cancel()
        if self._client is not None:
            try:
                self._client.close()
            except docker.errors.DockerException as exc:
                logger.warning("docker_client_close_failed", error=str(exc))
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("orchestrator_closed")
