"""Pure helpers that turn a LanguageConfig into docker-py container arguments."""

from __future__ import annotations

import base64
import re
import shlex
from typing import Any

from docker.types import Ulimit

from polyexec.config import PolyExecConfig
from polyexec.models import LanguageConfig

WORKDIR = "/tmp"  # noqa: S108
STDIN_PATH = f"{WORKDIR}/input.txt"
SESSION_LABEL = "polyexec.session"
CPU_PERIOD = 100_000

_PUBLIC_CLASS_RE = re.compile(r"public\s+class\s+\w+")

BASE_ENV = {
    "HOME": WORKDIR,
    "PATH": "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin",
}


def prepared_image(language_id: str) -> str:
    """Tag of the derived image that has a language's setup commands baked in."""
    return f"polyexec-{language_id}:prepared"


def runtime_image(language_id: str, language: LanguageConfig) -> str:
    """Image a language's containers actually run."""
    return prepared_image(language_id) if language.setup_commands else language.image


def source_path(language: LanguageConfig) -> str:
    return f"{WORKDIR}/{language.source_filename}"


def prepare_source(source_code: str, language: LanguageConfig) -> str:
    """Rename the public class when the language pins one (Java's file/class rule)."""
    if language.class_name:
        return _PUBLIC_CLASS_RE.sub(f"public class {language.class_name}", source_code)
    return source_code


def _render(command: str, language: LanguageConfig) -> str:
    return command.replace("{source}", source_path(language))


def build_run_step(language: LanguageConfig, has_stdin: bool = False) -> str:
    """Run command with the source path and stdin redirect filled in."""
    run = _render(language.run_command, language)
    if not language.is_compiled and "{source}" not in language.run_command:
        run = f"{run} {source_path(language)}"
    if has_stdin:
        run = f"{run} < {STDIN_PATH}"
    return run


def build_batch_command(language: LanguageConfig, source_code: str, stdin: str = "") -> list[str]:
    """Build the ``sh -c`` command for a run-to-completion container.

    Source and stdin are shipped base64-encoded so no quoting of user text
    is ever needed.

    Args:
        language: Recipe to run.
        source_code: User source, already size-checked.
        stdin: Normalized stdin, or "" for none.

    Returns:
        Argument vector for the container command.
    """
    code_b64 = base64.b64encode(prepare_source(source_code, language).encode("utf-8")).decode("ascii")
    steps = [f"echo '{code_b64}' | base64 -d > {source_path(language)}"]

    if language.compile_command:
        steps.append(_render(language.compile_command, language))

    if stdin:
        stdin_b64 = base64.b64encode(stdin.encode("utf-8")).decode("ascii")
        steps.append(f"echo '{stdin_b64}' | base64 -d > {STDIN_PATH}")

    steps.append(build_run_step(language, has_stdin=bool(stdin)))
    return ["sh", "-c", " && ".join(steps)]


def interactive_command(language: LanguageConfig) -> list[str]:
    return shlex.split(language.interactive_command)


def host_config_kwargs(
    language: LanguageConfig,
    config: PolyExecConfig,
    session_id: str,
) -> dict[str, Any]:
    """Resource and isolation settings shared by batch and interactive containers.

    Args:
        language: Recipe supplying memory, CPU and process limits.
        config: Service configuration (network, user, tmpfs size).
        session_id: Value for the session label.

    Returns:
        Keyword arguments for ``client.containers.create``.
    """
    memory = language.memory_bytes
    return {
        "user": config.container_user,
        "working_dir": WORKDIR,
        "environment": dict(BASE_ENV),
        "network_mode": config.network_mode,
        "mem_limit": memory,
        "memswap_limit": memory,
        "cpu_period": CPU_PERIOD,
        "cpu_quota": int(language.cpu_limit * CPU_PERIOD),
        "pids_limit": language.pids_limit,
        "ulimits": [
            Ulimit(name="nofile", soft=language.nofile_limit, hard=language.nofile_limit),
            Ulimit(name="nproc", soft=language.nproc_limit, hard=language.nproc_limit),
        ],
        "tmpfs": {
            WORKDIR: f"rw,exec,nosuid,size={config.tmpfs_size}",
            "/var/tmp": "rw,noexec,nosuid,size=10m",  # noqa: S108
        },
        "security_opt": ["no-new-privileges:true"],
        "cap_drop": ["ALL"],
        "labels": {SESSION_LABEL: session_id},
    }


def batch_container_kwargs(
    language_id: str,
    language: LanguageConfig,
    config: PolyExecConfig,
    session_id: str,
    source_code: str,
    stdin: str = "",
) -> dict[str, Any]:
    return {
        "image": runtime_image(language_id, language),
        "command": build_batch_command(language, source_code, stdin),
        "name": f"polyexec-batch-{session_id}",
        "detach": True,
        **host_config_kwargs(language, config, session_id),
    }


def interactive_container_kwargs(
    language_id: str,
    language: LanguageConfig,
    config: PolyExecConfig,
    session_id: str,
) -> dict[str, Any]:
    kwargs = {
        "image": runtime_image(language_id, language),
        "command": interactive_command(language),
        "name": f"polyexec-term-{session_id}",
        "detach": True,
        "tty": True,
        "stdin_open": True,
        **host_config_kwargs(language, config, session_id),
    }
    kwargs["environment"]["TERM"] = "xterm-256color"
    return kwargs
