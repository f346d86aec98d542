"""Unit tests for the language registry and recipe validation."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from polyexec.errors import LanguageConfigError, LanguageNotSupportedError
from polyexec.languages.catalog import BUILTIN_LANGUAGES
from polyexec.languages.registry import LanguageRegistry
from polyexec.models import LanguageConfig, LanguageType


def _write_overlay(tmp_path: Path, body: str) -> str:
    path = tmp_path / "languages.yaml"
    path.write_text(body, encoding="utf-8")
    return str(path)


# ---------------------------------------------------------------------------
# Built-in catalogue
# ---------------------------------------------------------------------------


def test_catalogue_has_all_languages() -> None:
    registry = LanguageRegistry()
    assert len(registry) == 22
    assert registry.list()[:2] == ["javascript", "python"]


@pytest.mark.parametrize("language_id", sorted(BUILTIN_LANGUAGES))
def test_every_recipe_is_runnable(language_id: str) -> None:
    """Every recipe has a run command, and compiled kinds have a compile step."""
    config = LanguageRegistry().resolve(language_id)
    assert config.run_command.strip()
    if config.type in (LanguageType.COMPILED, LanguageType.TRANSPILED):
        assert config.compile_command and config.compile_command.strip()
    else:
        assert config.compile_command is None


def test_resolve_is_case_insensitive_and_trims() -> None:
    registry = LanguageRegistry()
    assert registry.resolve("  Python ").name == "Python"
    assert registry.is_supported("CPP")


def test_resolve_unknown_language_raises() -> None:
    with pytest.raises(LanguageNotSupportedError, match="cobol"):
        LanguageRegistry().resolve("cobol")


def test_java_pins_class_name() -> None:
    java = LanguageRegistry().resolve("java")
    assert java.class_name == "Main"
    assert java.source_filename == "Main.java"


def test_memory_bytes() -> None:
    assert LanguageRegistry().resolve("python").memory_bytes == 128 * 1024 * 1024


def test_describe_returns_public_summaries() -> None:
    summaries = {s.id: s for s in LanguageRegistry().describe()}
    assert summaries["go"].type == LanguageType.COMPILED
    assert summaries["shell"].timeout_ms == 5_000


# ---------------------------------------------------------------------------
# Recipe validation
# ---------------------------------------------------------------------------


def test_recipe_is_immutable() -> None:
    config = LanguageRegistry().resolve("python")
    with pytest.raises(ValidationError):
        config.timeout_ms = 1  # type: ignore[misc]


def test_compiled_recipe_requires_compile_command() -> None:
    with pytest.raises(ValidationError, match="compile_command"):
        LanguageConfig(name="Zig", type="compiled", image="zig", file_extension=".zig", run_command="/tmp/p")


def test_interpreted_recipe_rejects_compile_command() -> None:
    with pytest.raises(ValidationError):
        LanguageConfig(
            name="Py", type="interpreted", image="python", file_extension=".py",
            run_command="python", compile_command="pyc",
        )


@pytest.mark.parametrize("memory", ["128", "64k", "2g"])
def test_memory_limit_accepts_docker_units(memory: str) -> None:
    LanguageConfig(name="Sh", type="interpreted", image="alpine", file_extension=".sh", run_command="sh", memory_limit=memory)


@pytest.mark.parametrize("memory", ["lots", "12mb", "-1m"])
def test_memory_limit_rejects_garbage(memory: str) -> None:
    with pytest.raises(ValidationError):
        LanguageConfig(name="Sh", type="interpreted", image="alpine", file_extension=".sh", run_command="sh", memory_limit=memory)


def test_extension_needs_dot() -> None:
    with pytest.raises(ValidationError):
        LanguageConfig(name="Sh", type="interpreted", image="alpine", file_extension="sh", run_command="sh")


def test_blank_run_command_rejected() -> None:
    with pytest.raises(ValidationError):
        LanguageConfig(name="Sh", type="interpreted", image="alpine", file_extension=".sh", run_command="  ")


# ---------------------------------------------------------------------------
# YAML overlay and allowlist
# ---------------------------------------------------------------------------


def test_overlay_adds_and_overrides(tmp_path: Path) -> None:
    overlay = _write_overlay(
        tmp_path,
        "languages:\n"
        "  python:\n"
        "    name: Python\n"
        "    type: interpreted\n"
        "    image: python:3.12-slim\n"
        "    file_extension: .py\n"
        "    run_command: python\n"
        "  nim:\n"
        "    name: Nim\n"
        "    type: compiled\n"
        "    image: nimlang/nim\n"
        "    file_extension: .nim\n"
        "    compile_command: nim c -o:/tmp/program {source}\n"
        "    run_command: /tmp/program\n",
    )
    registry = LanguageRegistry(overlay)
    assert registry.resolve("python").image == "python:3.12-slim"
    assert registry.list()[-1] == "nim"
    assert len(registry) == 23


def test_overlay_rejects_compiled_entry_without_compile_command(tmp_path: Path) -> None:
    overlay = _write_overlay(
        tmp_path,
        "languages:\n"
        "  zig:\n"
        "    name: Zig\n"
        "    type: compiled\n"
        "    image: zig\n"
        "    file_extension: .zig\n"
        "    run_command: /tmp/program\n",
    )
    with pytest.raises(LanguageConfigError, match="zig"):
        LanguageRegistry(overlay)


def test_overlay_rejects_unknown_fields(tmp_path: Path) -> None:
    overlay = _write_overlay(
        tmp_path,
        "languages:\n"
        "  sh2:\n"
        "    name: Sh\n"
        "    type: interpreted\n"
        "    image: alpine\n"
        "    file_extension: .sh\n"
        "    run_command: sh\n"
        "    privileged: true\n",
    )
    with pytest.raises(LanguageConfigError):
        LanguageRegistry(overlay)


def test_overlay_missing_file(tmp_path: Path) -> None:
    with pytest.raises(LanguageConfigError, match="not found"):
        LanguageRegistry(str(tmp_path / "missing.yaml"))


def test_overlay_without_languages_key(tmp_path: Path) -> None:
    with pytest.raises(LanguageConfigError, match="'languages' mapping"):
        LanguageRegistry(_write_overlay(tmp_path, "python: {}\n"))


def test_overlay_invalid_yaml(tmp_path: Path) -> None:
    with pytest.raises(LanguageConfigError, match="Invalid YAML"):
        LanguageRegistry(_write_overlay(tmp_path, "languages: [unclosed\n"))


def test_allowlist_limits_languages() -> None:
    registry = LanguageRegistry(allowed=["python", "Go", ""])
    assert registry.list() == ["python", "go"]
    assert not registry.is_supported("ruby")
    with pytest.raises(LanguageNotSupportedError):
        registry.resolve("ruby")


def test_empty_allowlist_means_everything() -> None:
    assert len(LanguageRegistry(allowed=[])) == 22


def test_typescript_is_prepared_with_tsc() -> None:
    ts = LanguageRegistry().resolve("typescript")
    assert ts.setup_commands == ("npm install -g typescript@5",)
    assert ts.compile_command is not None and ts.compile_command.startswith("tsc ")
