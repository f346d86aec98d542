"""polyexec FastMCP server — exposes batch execution to LLM clients as MCP tools."""

from __future__ import annotations

from typing import Any

from fastmcp import FastMCP

from polyexec.config import PolyExecConfig
from polyexec.errors import (
    ContainerCreateError,
    ContainerStartError,
    PolyExecError,
)
from polyexec.languages.registry import LanguageRegistry
from polyexec.runtime.orchestrator import ContainerOrchestrator
from polyexec.utils.logging import get_logger

logger = get_logger(__name__)


def error_payload(exc: PolyExecError) -> dict[str, Any]:
    """Tool-level error dict for a polyexec error."""
    payload: dict[str, Any] = {"success": False, "error": str(exc), "error_type": exc.kind.value}
    if isinstance(exc, ContainerCreateError):
        payload["recipe_error"] = exc.recipe_error
    if isinstance(exc, ContainerStartError):
        payload["retryable"] = exc.retryable
    return payload


async def list_languages_tool(orchestrator: ContainerOrchestrator) -> dict[str, Any]:
    languages = orchestrator.languages.describe()
    logger.info("tool_list_languages_called", count=len(languages))
    return {"languages": [lang.model_dump(mode="json") for lang in languages]}


async def execute_code_tool(
    orchestrator: ContainerOrchestrator,
    language: str,
    code: str,
    stdin: str | None = None,
) -> dict[str, Any]:
    try:
        result = await orchestrator.run_once(language, code, stdin)
    except PolyExecError as exc:
        logger.info("tool_execute_code_failed", language=language, error_type=exc.kind.value)
        return error_payload(exc)
    except Exception:  # noqa: BLE001
        logger.exception("execute_code_unexpected_error")
        return {"success": False, "error": "Internal error occurred", "error_type": "internal"}
    logger.info("tool_execute_code_called", language=language, exit_code=result.exit_code)
    return {"success": result.exit_code == 0 and not result.timed_out, **result.model_dump()}


async def system_info_tool(orchestrator: ContainerOrchestrator) -> dict[str, Any]:
    try:
        info = await orchestrator.system_info()
    except PolyExecError as exc:
        return error_payload(exc)
    return info.model_dump()


def create_server(config: PolyExecConfig, orchestrator: ContainerOrchestrator | None = None) -> FastMCP:
    """Create and configure the polyexec FastMCP server.

    Args:
        config: polyexec configuration instance.
        orchestrator: Shared orchestrator; built from ``config`` when omitted.

    Returns:
        Configured FastMCP server ready to run.
    """
    if orchestrator is None:
        languages = LanguageRegistry(config.languages_file, config.allowed_languages)
        orchestrator = ContainerOrchestrator(config, languages)

    mcp: FastMCP = FastMCP(
        name="polyexec",
        instructions=(
            "polyexec runs source code in isolated, resource-limited Docker containers. "
            "Call list_languages to see the supported language ids, then execute_code "
            "with a language id, the full program source and optional stdin."
        ),
    )

    @mcp.tool()
    async def list_languages() -> dict:  # type: ignore[type-arg]
        """List the languages code can be executed in.

        Returns each language id with its display name, kind (interpreted,
        compiled or transpiled), time limit and memory limit.
        """
        return await list_languages_tool(orchestrator)

    @mcp.tool()
    async def execute_code(language: str, code: str, stdin: str | None = None) -> dict:  # type: ignore[type-arg]
        """Run a complete program and return its output.

        The program runs once, with no network access, under the language's
        time and memory limits. A run that exceeds its time limit comes back
        with timed_out=true and exit_code=124.

        Args:
            language: Language id from list_languages, e.g. "python" or "cpp".
            code: Full program source.
            stdin: Optional text fed to the program's standard input.
        """
        return await execute_code_tool(orchestrator, language, code, stdin)

    @mcp.tool()
    async def system_info() -> dict:  # type: ignore[type-arg]
        """Report the Docker version, container and image counts, and active sessions."""
        return await system_info_tool(orchestrator)

    return mcp
