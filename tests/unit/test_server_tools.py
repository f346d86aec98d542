"""Unit tests for the MCP tool bodies."""

from __future__ import annotations

import docker.errors

from polyexec.config import PolyExecConfig
from polyexec.errors import ContainerStartError
from polyexec.runtime.orchestrator import ContainerOrchestrator
from polyexec.server import (
    create_server,
    error_payload,
    execute_code_tool,
    list_languages_tool,
    system_info_tool,
)
from conftest import FakeDockerClient


async def test_list_languages_tool(orchestrator: ContainerOrchestrator) -> None:
    result = await list_languages_tool(orchestrator)
    ids = [lang["id"] for lang in result["languages"]]
    assert "python" in ids
    assert len(ids) == 22
    python = next(lang for lang in result["languages"] if lang["id"] == "python")
    assert python["type"] == "interpreted"


async def test_execute_code_success(orchestrator: ContainerOrchestrator, docker_client: FakeDockerClient) -> None:
    docker_client.stdout = b"42\n"
    result = await execute_code_tool(orchestrator, "python", "print(42)")
    assert result["success"] is True
    assert result["stdout"] == "42\n"
    assert result["exit_code"] == 0


async def test_execute_code_nonzero_exit_is_not_success(
    orchestrator: ContainerOrchestrator, docker_client: FakeDockerClient
) -> None:
    docker_client.exit_code = 2
    result = await execute_code_tool(orchestrator, "python", "import sys; sys.exit(2)")
    assert result["success"] is False
    assert result["exit_code"] == 2
    assert "error_type" not in result


async def test_execute_code_unknown_language(orchestrator: ContainerOrchestrator) -> None:
    result = await execute_code_tool(orchestrator, "cobol", "DISPLAY 'X'.")
    assert result["success"] is False
    assert result["error_type"] == "language_not_supported"
    assert "python" in result["error"]


async def test_execute_code_missing_image(
    orchestrator: ContainerOrchestrator, docker_client: FakeDockerClient
) -> None:
    docker_client.create_error = docker.errors.ImageNotFound("gone")
    result = await execute_code_tool(orchestrator, "python", "print(1)")
    assert result["error_type"] == "container_create_failed"
    assert result["recipe_error"] is True


async def test_system_info_tool_unreachable(
    orchestrator: ContainerOrchestrator, docker_client: FakeDockerClient
) -> None:
    docker_client.ping_error = docker.errors.DockerException("down")
    result = await system_info_tool(orchestrator)
    assert result["error_type"] == "runtime_unreachable"


async def test_system_info_tool(orchestrator: ContainerOrchestrator) -> None:
    result = await system_info_tool(orchestrator)
    assert result["docker_version"] == "24.0.7"
    assert result["active_sessions"] == 0


def test_error_payload_marks_retryable() -> None:
    payload = error_payload(ContainerStartError("busy"))
    assert payload == {
        "success": False,
        "error": "busy",
        "error_type": "container_start_failed",
        "retryable": True,
    }


async def test_create_server_registers_tools(
    polyexec_config: PolyExecConfig, orchestrator: ContainerOrchestrator
) -> None:
    mcp = create_server(polyexec_config, orchestrator)
    tools = await mcp.get_tools()
    assert {"list_languages", "execute_code", "system_info"} <= set(tools)
