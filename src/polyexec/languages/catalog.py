"""Built-in language catalogue — one immutable recipe per supported language.

Adding a language is a single entry here (plus making its image available).
Commands may reference ``{source}``; interpreted run commands without it get
the source path appended.
"""

from __future__ import annotations

from types import MappingProxyType

from polyexec.models import LanguageConfig, LanguageType

_I = LanguageType.INTERPRETED
_C = LanguageType.COMPILED
_T = LanguageType.TRANSPILED

_RECIPES: dict[str, LanguageConfig] = {
    # Interpreted
    "javascript": LanguageConfig(
        name="JavaScript", type=_I, image="node:18-alpine", file_extension=".js",
        run_command="node", interactive_command="node",
    ),
    "python": LanguageConfig(
        name="Python", type=_I, image="python:3.11-alpine", file_extension=".py",
        run_command="python", interactive_command="python",
    ),
    "ruby": LanguageConfig(
        name="Ruby", type=_I, image="ruby:3.2-alpine", file_extension=".rb",
        run_command="ruby", interactive_command="irb",
    ),
    "php": LanguageConfig(
        name="PHP", type=_I, image="php:8.2-cli-alpine", file_extension=".php",
        run_command="php", interactive_command="php -a",
    ),
    "shell": LanguageConfig(
        name="Shell", type=_I, image="alpine:latest", file_extension=".sh",
        run_command="sh", timeout_ms=5_000, memory_limit="64m", cpu_limit=0.25,
    ),
    "perl": LanguageConfig(
        name="Perl", type=_I, image="perl:5.38-slim", file_extension=".pl",
        run_command="perl",
    ),
    "lua": LanguageConfig(
        name="Lua", type=_I, image="alpine:latest", file_extension=".lua",
        run_command="lua5.3", interactive_command="lua5.3",
        setup_commands=("apk add --no-cache lua5.3",),
    ),
    "r": LanguageConfig(
        name="R", type=_I, image="r-base:4.3.2", file_extension=".r",
        run_command="Rscript", interactive_command="R --quiet --no-save",
        timeout_ms=15_000, memory_limit="256m", cpu_limit=0.75,
    ),
    "dart": LanguageConfig(
        name="Dart", type=_I, image="dart:stable", file_extension=".dart",
        run_command="dart run", timeout_ms=15_000, memory_limit="256m", cpu_limit=0.75,
    ),
    "elixir": LanguageConfig(
        name="Elixir", type=_I, image="elixir:1.15-alpine", file_extension=".exs",
        run_command="elixir", interactive_command="iex",
        timeout_ms=15_000, memory_limit="256m", cpu_limit=0.75,
    ),
    # Compiled
    "cpp": LanguageConfig(
        name="C++", type=_C, image="gcc:13", file_extension=".cpp",
        compile_command="g++ -std=c++17 -o /tmp/program {source}", run_command="/tmp/program",
        timeout_ms=15_000, memory_limit="256m", cpu_limit=0.75,
    ),
    "c": LanguageConfig(
        name="C", type=_C, image="gcc:13", file_extension=".c",
        compile_command="gcc -o /tmp/program {source}", run_command="/tmp/program",
        timeout_ms=15_000, memory_limit="256m", cpu_limit=0.75,
    ),
    "java": LanguageConfig(
        name="Java", type=_C, image="eclipse-temurin:17-jdk-alpine", file_extension=".java",
        compile_command="javac -d /tmp {source}", run_command="java -cp /tmp Main",
        interactive_command="jshell", class_name="Main",
        timeout_ms=20_000, memory_limit="512m", cpu_limit=1.0,
    ),
    "go": LanguageConfig(
        name="Go", type=_C, image="golang:1.21-alpine", file_extension=".go",
        compile_command="go build -o /tmp/program {source}", run_command="/tmp/program",
        timeout_ms=15_000, memory_limit="256m", cpu_limit=0.75,
        pids_limit=128, nofile_limit=256, nproc_limit=128,
    ),
    "rust": LanguageConfig(
        name="Rust", type=_C, image="rust:1.75-alpine", file_extension=".rs",
        compile_command="rustc -o /tmp/program {source}", run_command="/tmp/program",
        timeout_ms=20_000, memory_limit="512m", cpu_limit=1.0,
    ),
    "csharp": LanguageConfig(
        name="C#", type=_C, image="mono:6.12", file_extension=".cs",
        compile_command="mcs -out:/tmp/program.exe {source}", run_command="mono /tmp/program.exe",
        interactive_command="csharp", timeout_ms=20_000, memory_limit="512m", cpu_limit=1.0,
    ),
    "kotlin": LanguageConfig(
        name="Kotlin", type=_C, image="zenika/kotlin:1.9-jdk17-alpine", file_extension=".kt",
        compile_command="kotlinc {source} -include-runtime -d /tmp/program.jar",
        run_command="java -jar /tmp/program.jar",
        timeout_ms=20_000, memory_limit="512m", cpu_limit=1.0, pids_limit=128, nproc_limit=128,
    ),
    "scala": LanguageConfig(
        name="Scala", type=_C, image="hseeberger/scala-sbt:17.0.2_1.6.2_2.13.8", file_extension=".scala",
        compile_command="scalac -d /tmp {source}", run_command="scala -cp /tmp Main",
        timeout_ms=25_000, memory_limit="512m", cpu_limit=1.0, pids_limit=128, nproc_limit=128,
    ),
    "swift": LanguageConfig(
        name="Swift", type=_C, image="swift:5.9-focal", file_extension=".swift",
        compile_command="swiftc -o /tmp/program {source}", run_command="/tmp/program",
        timeout_ms=20_000, memory_limit="512m", cpu_limit=1.0,
    ),
    "haskell": LanguageConfig(
        name="Haskell", type=_C, image="haskell:9.4-slim", file_extension=".hs",
        compile_command="ghc -o /tmp/program {source}", run_command="/tmp/program",
        interactive_command="ghci", timeout_ms=20_000, memory_limit="512m", cpu_limit=1.0,
    ),
    "ocaml": LanguageConfig(
        name="OCaml", type=_C, image="ocaml/opam:alpine", file_extension=".ml",
        compile_command="ocamlfind ocamlopt -package str -o /tmp/program {source}",
        run_command="/tmp/program", interactive_command="ocaml",
        timeout_ms=15_000, memory_limit="256m", cpu_limit=0.75,
    ),
    # Transpiled
    "typescript": LanguageConfig(
        name="TypeScript", type=_T, image="node:18-alpine", file_extension=".ts",
        compile_command="tsc {source} --outDir /tmp --target es2020", run_command="node /tmp/code.js",
        setup_commands=("npm install -g typescript@5",),
        timeout_ms=15_000, memory_limit="256m", cpu_limit=0.75,
    ),
}

BUILTIN_LANGUAGES: MappingProxyType[str, LanguageConfig] = MappingProxyType(_RECIPES)
