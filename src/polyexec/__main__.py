"""polyexec CLI entry point — `serve`, `api`, `languages`, `pull` and `run` commands."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from polyexec.config import PolyExecConfig, load_config
from polyexec.errors import PolyExecError
from polyexec.utils.logging import get_logger, setup_logging


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="polyexec",
        description="polyexec — run code in many languages inside isolated Docker containers",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve subcommand
    serve_parser = subparsers.add_parser("serve", help="Start the MCP server")
    serve_parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="MCP transport mode (default: stdio)",
    )
    serve_parser.add_argument("--host", default=None, help="Override host for HTTP transport")
    serve_parser.add_argument("--port", type=int, default=None, help="Override port for HTTP transport")

    # api subcommand
    api_parser = subparsers.add_parser("api", help="Start the HTTP/WebSocket API")
    api_parser.add_argument("--host", default=None, help="Override bind host")
    api_parser.add_argument("--port", type=int, default=None, help="Override bind port")

    subparsers.add_parser("languages", help="List supported languages")

    pull_parser = subparsers.add_parser("pull", help="Pull and prepare language images")
    pull_parser.add_argument(
        "--language",
        action="append",
        default=None,
        help="Language id to prepare (repeatable; default: all)",
    )

    run_parser = subparsers.add_parser("run", help="Run a source file once and print its output")
    run_parser.add_argument("language", help="Language id, e.g. python")
    run_parser.add_argument("file", type=Path, help="Source file to run")
    run_parser.add_argument("--stdin", type=Path, default=None, help="File fed to the program's stdin")

    return parser


def _build_orchestrator(config: PolyExecConfig):  # type: ignore[no-untyped-def]
    from polyexec.languages.registry import LanguageRegistry  # noqa: PLC0415
    from polyexec.runtime.orchestrator import ContainerOrchestrator  # noqa: PLC0415

    languages = LanguageRegistry(config.languages_file, config.allowed_languages)
    return ContainerOrchestrator(config, languages)


async def _cmd_serve(args: argparse.Namespace) -> int:
    """Start the MCP server.

    Args:
        args: Parsed CLI arguments.

    Returns:
        Exit code.
    """
    from polyexec.server import create_server  # noqa: PLC0415

    config = load_config()
    logger = get_logger(__name__)

    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port

    orchestrator = _build_orchestrator(config)
    mcp = create_server(config, orchestrator)
    logger.info(
        "polyexec_starting",
        languages=orchestrator.languages.list(),
        transport=args.transport,
        host=config.host,
        port=config.port,
    )

    try:
        if args.transport == "stdio":
            await mcp.run_async(transport="stdio")
        else:
            await mcp.run_async(transport="http", host=config.host, port=config.port)
    finally:
        await orchestrator.close()

    return 0


async def _cmd_api(args: argparse.Namespace) -> int:
    """Start the FastAPI app under uvicorn."""
    import uvicorn  # noqa: PLC0415

    from polyexec.api.app import create_app  # noqa: PLC0415

    config = load_config()
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port

    app = create_app(config)
    server = uvicorn.Server(
        uvicorn.Config(app, host=config.host, port=config.port, log_config=None, log_level=config.log_level.lower())
    )
    get_logger(__name__).info("api_listening", host=config.host, port=config.port)
    await server.serve()
    return 0


async def _cmd_languages(args: argparse.Namespace) -> int:
    from polyexec.languages.registry import LanguageRegistry  # noqa: PLC0415

    config = load_config()
    registry = LanguageRegistry(config.languages_file, config.allowed_languages)
    for lang in registry.describe():
        print(f"{lang.id:<12} {lang.name:<12} {lang.type.value:<12} {lang.timeout_ms:>6}ms  {lang.memory_limit}")
    return 0


async def _cmd_pull(args: argparse.Namespace) -> int:
    """Pull base images and build prepared images.

    Returns:
        Exit code (1 if any image failed).
    """
    orchestrator = _build_orchestrator(load_config())
    try:
        report = await orchestrator.pull_images(args.language)
    finally:
        await orchestrator.close()

    if report.pulled:
        print(f"✅ Pulled: {', '.join(report.pulled)}")
    if report.prepared:
        print(f"✅ Prepared: {', '.join(report.prepared)}")
    for image, error in report.failed.items():
        print(f"❌ {image}: {error}", file=sys.stderr)
    return 1 if report.failed else 0


async def _cmd_run(args: argparse.Namespace) -> int:
    """Run one file and mirror its output and exit code."""
    source = args.file.read_text(encoding="utf-8")
    stdin = args.stdin.read_text(encoding="utf-8") if args.stdin else None

    orchestrator = _build_orchestrator(load_config())
    try:
        result = await orchestrator.run_once(args.language, source, stdin)
    finally:
        await orchestrator.close()

    sys.stdout.write(result.stdout)
    sys.stderr.write(result.stderr)
    if result.timed_out:
        print(f"⏱  Timed out after {result.execution_time_ms}ms", file=sys.stderr)
    return result.exit_code


def main() -> None:
    """CLI entry point invoked by `polyexec` script or `python -m polyexec`."""
    parser = _build_parser()
    args = parser.parse_args()

    # Load config early for log level
    try:
        config = load_config()
        setup_logging(config.log_level, config.log_format)
    except Exception:  # noqa: BLE001
        setup_logging("INFO")

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    command_map = {
        "serve": _cmd_serve,
        "api": _cmd_api,
        "languages": _cmd_languages,
        "pull": _cmd_pull,
        "run": _cmd_run,
    }

    handler = command_map.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    try:
        exit_code = asyncio.run(handler(args))
    except PolyExecError as exc:
        print(f"❌ {exc.kind.value}: {exc}", file=sys.stderr)
        exit_code = 2
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
