"""Demo script showing a batch run and a short interactive session with polyexec."""

from __future__ import annotations

import asyncio

# ---------------------------------------------------------------------------
# Needs a local Docker daemon with the python image pulled.
# Run after: polyexec pull --language python
# ---------------------------------------------------------------------------


async def demo() -> None:
    """Run a scripted polyexec workflow demonstration."""
    from polyexec.config import load_config
    from polyexec.languages.registry import LanguageRegistry
    from polyexec.runtime.orchestrator import ContainerOrchestrator
    from polyexec.utils.logging import setup_logging

    setup_logging("INFO")
    config = load_config()
    languages = LanguageRegistry(config.languages_file, config.allowed_languages)
    orchestrator = ContainerOrchestrator(config, languages)

    print("=" * 60)
    print("polyexec Demo Flow")
    print("=" * 60)

    try:
        # Step 1: List languages
        print("\n[1] list_languages()")
        for lang in languages.describe()[:5]:
            print(f"  {lang.id}: {lang.name} ({lang.type.value}, {lang.timeout_ms}ms, {lang.memory_limit})")
        print(f"  ... {len(languages)} languages in total")

        if not await orchestrator.docker_available():
            print("\n  Docker is not reachable. Start the daemon and retry.")
            return

        # Step 2: Batch run with stdin
        print("\n[2] run_once('python', ...)")
        result = await orchestrator.run_once("python", "name = input()\nprint(f'Hello, {name}!')", stdin="polyexec")
        print(f"  exit_code={result.exit_code} time={result.execution_time_ms}ms")
        print(f"  stdout: {result.stdout!r}")

        # Step 3: Interactive session
        print("\n[3] create_interactive_session('python')")
        session_id, channel = await orchestrator.create_interactive_session("python")
        await orchestrator.write_input(session_id, "print(6 * 7)\n")

        transcript = b""
        while b"42" not in transcript:
            event = await asyncio.wait_for(channel.get(), timeout=10)
            if event is None:
                break
            if event.chunk is not None:
                transcript += event.chunk.data
        print(f"  transcript: {transcript.decode('utf-8', errors='replace')!r}")

        await orchestrator.terminate_session(session_id)
        print(f"  session {session_id[:12]} terminated")
    finally:
        await orchestrator.close()

    print("\n" + "=" * 60)
    print("Demo complete. Start `polyexec api` for the WebSocket terminal.")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(demo())
