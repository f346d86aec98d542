"""FastAPI application — batch execution over HTTP and interactive terminals over WebSocket.

Routes:

* ``GET  /health``            liveness plus Docker reachability (no API key needed)
* ``GET  /api/languages``     supported languages
* ``GET  /api/system``        Docker facts and active session count
* ``POST /api/execute``       run a program to completion
* ``WS   /ws/terminal``       interactive PTY session, one per connection

The ``/api`` routes are rate limited per client address with slowapi;
``/api/execute`` has its own, stricter budget.
"""

import asyncio
import base64
import binascii
import json
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from fastapi.websockets import WebSocketState
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from polyexec.config import PolyExecConfig, load_config
from polyexec.errors import (
    ContainerCreateError,
    ContainerStartError,
    ErrorKind,
    PolyExecError,
    SessionNotFoundError,
)
from polyexec.languages.registry import LanguageRegistry
from polyexec.models import ChannelEvent, ExecuteRequest, ExecutionResult, SystemInfo
from polyexec.runtime.orchestrator import ContainerOrchestrator
from polyexec.security.policies import api_key_valid
from polyexec.streams.channel import SessionChannel
from polyexec.utils.logging import bind_context, clear_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
RETRY_AFTER_SECONDS = "5"
WS_POLICY_VIOLATION = 1008
WS_INTERNAL_ERROR = 1011

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.LANGUAGE_NOT_SUPPORTED: 400,
    ErrorKind.DANGEROUS_INPUT: 400,
    ErrorKind.INVALID_MESSAGE: 400,
    ErrorKind.INPUT_TOO_LARGE: 413,
    ErrorKind.RUNTIME_UNREACHABLE: 503,
    ErrorKind.CONTAINER_START_FAILED: 503,
    ErrorKind.CONTAINER_CREATE_FAILED: 500,
    ErrorKind.SESSION_NOT_FOUND: 404,
    ErrorKind.SESSION_TERMINATED: 409,
    ErrorKind.LANGUAGE_CONFIG: 500,
}


def status_for(exc: PolyExecError) -> int:
    if isinstance(exc, ContainerCreateError) and exc.recipe_error:
        return 422
    return _STATUS_BY_KIND.get(exc.kind, 500)


def error_body(kind: str, message: str) -> dict[str, Any]:
    return {"error": {"kind": kind, "message": message}}


def event_message(event: ChannelEvent) -> dict[str, Any]:
    """Serialize a channel event as a WebSocket JSON message."""
    if event.type == "output" and event.chunk is not None:
        if event.chunk.is_binary:
            return {"type": "output", "data": base64.b64encode(event.chunk.data).decode("ascii"), "encoding": "base64"}
        return {"type": "output", "data": event.chunk.data.decode("utf-8"), "encoding": "utf-8"}
    if event.type == "exit":
        return {"type": "exit", "exit_code": event.exit_code, "reason": event.reason}
    return {"type": "error", "kind": event.kind, "message": event.message}


class _TerminalConnection:
    """One WebSocket bound to one interactive session."""

    def __init__(self, websocket: WebSocket, orchestrator: ContainerOrchestrator) -> None:
        self.websocket = websocket
        self.orchestrator = orchestrator
        self.owner = uuid.uuid4().hex
        self.session_id: str | None = None
        self._send_lock = asyncio.Lock()

    async def send(self, message: dict[str, Any]) -> bool:
        async with self._send_lock:
            try:
                await self.websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.debug("ws_send_failed", session_id=self.session_id, error=str(exc))
                return False
        return True

    def bound_session(self) -> str:
        if self.session_id is None:
            raise SessionNotFoundError("(none)")
        return self.session_id

    async def send_error(self, kind: str, message: str) -> None:
        await self.send({"type": "error", "kind": kind, "message": message})

    async def forward_events(self, channel: SessionChannel) -> None:
        """Session → client."""
        async for event in channel:
            if not await self.send(event_message(event)):
                return

    async def receive_messages(self) -> None:
        """Client → session, until disconnect or a terminate request."""
        while True:
            frame = await self.websocket.receive()
            if frame["type"] == "websocket.disconnect":
                logger.info("ws_client_disconnected", session_id=self.session_id)
                return
            if frame.get("bytes") is not None:
                # Binary frames are raw keystrokes
                try:
                    await self.orchestrator.write_input(self.bound_session(), frame["bytes"])
                except PolyExecError as exc:
                    await self.send_error(exc.kind.value, str(exc))
                continue
            try:
                message = json.loads(frame.get("text") or "")
            except json.JSONDecodeError:
                await self.send_error(ErrorKind.INVALID_MESSAGE.value, "Message is not valid JSON")
                continue
            if not isinstance(message, dict):
                await self.send_error(ErrorKind.INVALID_MESSAGE.value, "Message must be a JSON object")
                continue
            try:
                if await self.dispatch(message):
                    return
            except PolyExecError as exc:
                await self.send_error(exc.kind.value, str(exc))

    async def dispatch(self, message: dict[str, Any]) -> bool:
        """Apply one client message. Returns True when the connection should wind down."""
        session_id = self.bound_session()
        kind = message.get("type")

        if kind == "input":
            data = message.get("data", "")
            if not isinstance(data, str):
                await self.send_error(ErrorKind.INVALID_MESSAGE.value, "'data' must be a string")
                return False
            payload: str | bytes = data
            if message.get("encoding") == "base64":
                try:
                    payload = base64.b64decode(data, validate=True)
                except binascii.Error:
                    await self.send_error(ErrorKind.INVALID_MESSAGE.value, "'data' is not valid base64")
                    return False
            await self.orchestrator.write_input(session_id, payload)
            return False

        if kind == "resize":
            try:
                rows, cols = int(message["rows"]), int(message["cols"])
            except (KeyError, TypeError, ValueError):
                await self.send_error(ErrorKind.INVALID_MESSAGE.value, "resize needs integer 'rows' and 'cols'")
                return False
            await self.orchestrator.resize_session(session_id, rows, cols)
            return False

        if kind == "terminate":
            await self.orchestrator.terminate_session(session_id, force=bool(message.get("force", False)))
            return True

        await self.send_error(ErrorKind.INVALID_MESSAGE.value, f"Unknown message type: {kind!r}")
        return False


def create_app(
    config: PolyExecConfig | None = None,
    orchestrator: ContainerOrchestrator | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Service configuration; loaded from the environment when omitted.
        orchestrator: Shared orchestrator; built from ``config`` when omitted.

    Returns:
        Configured FastAPI app. Its lifespan closes the orchestrator on shutdown.
    """
    config = config or load_config()
    if orchestrator is None:
        languages = LanguageRegistry(config.languages_file, config.allowed_languages)
        orchestrator = ContainerOrchestrator(config, languages)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info("api_starting", languages=len(orchestrator.languages))
        yield
        await orchestrator.close()

    app = FastAPI(title="polyexec", version="0.1.0", lifespan=lifespan)
    app.state.config = config
    app.state.orchestrator = orchestrator
    limiter = Limiter(key_func=get_remote_address, enabled=config.rate_limit_enabled)
    app.state.limiter = limiter

    @app.middleware("http")
    async def request_context(request: Request, call_next):  # type: ignore[no-untyped-def]
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        clear_context()
        bind_context(request_id=request_id)

        if request.url.path != "/health" and not api_key_valid(request.headers.get("x-api-key"), config.api_key):
            logger.warning("api_key_rejected", path=request.url.path)
            response = JSONResponse(status_code=401, content=error_body("unauthorized", "Invalid or missing API key"))
        else:
            response = await call_next(request)

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.debug("request_handled", method=request.method, path=request.url.path, status=response.status_code)
        return response

    @app.exception_handler(PolyExecError)
    async def polyexec_error_handler(_: Request, exc: PolyExecError) -> JSONResponse:
        status = status_for(exc)
        headers = {"Retry-After": RETRY_AFTER_SECONDS} if isinstance(exc, ContainerStartError) else None
        if status >= 500:
            logger.warning("request_failed", kind=exc.kind.value, error=str(exc), status=status)
        return JSONResponse(status_code=status, content=error_body(exc.kind.value, str(exc)), headers=headers)

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        retry_after = exc.limit.limit.get_expiry()
        logger.warning("rate_limited", path=request.url.path, client=get_remote_address(request), limit=str(exc.limit.limit))
        return JSONResponse(
            status_code=429,
            content=error_body("rate_limited", f"Too many requests, retry in {retry_after}s"),
            headers={"Retry-After": str(retry_after)},
        )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        docker_available = await orchestrator.docker_available()
        return {
            "status": "ok" if docker_available else "degraded",
            "docker_available": docker_available,
            "active_sessions": orchestrator.active_sessions,
        }

    @app.get("/api/languages")
    @limiter.shared_limit(config.api_rate_limit, scope="api")
    async def list_languages(request: Request) -> dict[str, Any]:
        return {"languages": [lang.model_dump(mode="json") for lang in orchestrator.languages.describe()]}

    @app.get("/api/system", response_model=SystemInfo)
    @limiter.shared_limit(config.api_rate_limit, scope="api")
    async def system_info(request: Request) -> SystemInfo:
        return await orchestrator.system_info()

    @app.post("/api/execute", response_model=ExecutionResult)
    @limiter.limit(config.execute_rate_limit)
    async def execute(request: Request, req: ExecuteRequest) -> ExecutionResult:
        """Run a program once and return its captured output."""
        return await orchestrator.run_once(req.language, req.code, req.stdin)

    @app.websocket("/ws/terminal")
    async def terminal(
        websocket: WebSocket,
        language: str = "python",
        rows: int | None = None,
        cols: int | None = None,
    ) -> None:
        """Interactive terminal: ``ready`` handshake, then input/resize/terminate in, output/exit/error out."""
        provided = websocket.headers.get("x-api-key") or websocket.query_params.get("api_key")
        if not api_key_valid(provided, config.api_key):
            await websocket.close(code=WS_POLICY_VIOLATION)
            return
        await websocket.accept()

        conn = _TerminalConnection(websocket, orchestrator)
        clear_context()
        bind_context(owner=conn.owner)
        try:
            session_id, channel = await orchestrator.create_interactive_session(
                language, rows=rows, cols=cols, owner=conn.owner
            )
        except PolyExecError as exc:
            await conn.send_error(exc.kind.value, str(exc))
            await websocket.close(code=WS_INTERNAL_ERROR)
            return

        conn.session_id = session_id
        bind_context(session_id=session_id)
        session = orchestrator.sessions.get(session_id)
        await conn.send(
            {"type": "ready", "session_id": session_id, "language": session.language, "rows": session.rows, "cols": session.cols}
        )

        forward = asyncio.create_task(conn.forward_events(channel))
        receive = asyncio.create_task(conn.receive_messages())
        try:
            await asyncio.wait({forward, receive}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not receive.done():
                receive.cancel()
            # Same cleanup path whether the client left, asked to stop, or the program exited
            await orchestrator.handle_disconnect(conn.owner)
            await asyncio.wait({forward}, timeout=config.terminate_grace_seconds + 2)
            if not forward.done():
                forward.cancel()
            if websocket.client_state != WebSocketState.DISCONNECTED:
                try:
                    await websocket.close()
                except (RuntimeError, WebSocketDisconnect) as exc:
                    logger.debug("ws_close_failed", error=str(exc))
            clear_context()

    return app
