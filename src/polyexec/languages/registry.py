"""Language registry — the single source of truth for execution recipes."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from polyexec.errors import LanguageConfigError, LanguageNotSupportedError
from polyexec.languages.catalog import BUILTIN_LANGUAGES
from polyexec.models import LanguageConfig, LanguageSummary
from polyexec.utils.logging import get_logger

logger = get_logger(__name__)


def _normalize_id(language_id: str) -> str:
    return language_id.strip().lower()


class LanguageRegistry:
    """Read-only lookup of language recipes, built-in plus optional YAML overlay."""

    def __init__(self, overrides_file: str | None = None, allowed: list[str] | None = None) -> None:
        """Initialize and load the registry.

        Args:
            overrides_file: Optional YAML file with a top-level ``languages`` mapping
                whose entries add to or replace built-in recipes.
            allowed: Optional allowlist of language ids; empty or None exposes all.

        Raises:
            LanguageConfigError: If the overlay file is unreadable or an entry is invalid.
        """
        self._overrides_file = Path(overrides_file) if overrides_file else None
        self._allowed = {_normalize_id(lang) for lang in allowed or [] if lang.strip()}
        self._languages: dict[str, LanguageConfig] = {}
        self.load()

    def load(self) -> None:
        """(Re)build the lookup table from the catalogue and overlay file."""
        languages: dict[str, LanguageConfig] = dict(BUILTIN_LANGUAGES)

        if self._overrides_file is not None:
            languages.update(self._load_overrides(self._overrides_file))

        if self._allowed:
            unknown = self._allowed - languages.keys()
            if unknown:
                logger.warning("allowed_languages_unknown", languages=sorted(unknown))
            languages = {key: cfg for key, cfg in languages.items() if key in self._allowed}

        self._languages = languages
        logger.info("language_registry_loaded", languages=len(self._languages))

    def _load_overrides(self, path: Path) -> dict[str, LanguageConfig]:
        """Parse and validate the YAML overlay.

        Args:
            path: Path to the YAML file.

        Returns:
            Mapping of language id to validated recipe.

        Raises:
            LanguageConfigError: On unreadable files or invalid entries.
        """
        if not path.exists():
            raise LanguageConfigError(f"Languages file not found: {path}")

        try:
            with open(path, encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise LanguageConfigError(f"Invalid YAML in {path}: {exc}") from exc

        entries = raw.get("languages") if isinstance(raw, dict) else None
        if not isinstance(entries, dict):
            raise LanguageConfigError(f"{path} must contain a 'languages' mapping")

        loaded: dict[str, LanguageConfig] = {}
        for language_id, fields in entries.items():
            key = _normalize_id(str(language_id))
            if not isinstance(fields, dict):
                raise LanguageConfigError(f"Language '{key}' in {path} must be a mapping")
            try:
                loaded[key] = LanguageConfig(**fields)
            except ValidationError as exc:
                raise LanguageConfigError(f"Invalid recipe for language '{key}': {exc}") from exc
            logger.debug("language_override_loaded", language=key)

        return loaded

    def resolve(self, language_id: str) -> LanguageConfig:
        """Look up the recipe for a language.

        Args:
            language_id: Language identifier, matched case-insensitively.

        Returns:
            The immutable LanguageConfig.

        Raises:
            LanguageNotSupportedError: If the language is unknown or not allowed.
        """
        config = self._languages.get(_normalize_id(language_id or ""))
        if config is None:
            raise LanguageNotSupportedError(language_id, self.list())
        return config

    def list(self) -> list[str]:
        return list(self._languages)

    def is_supported(self, language_id: str) -> bool:
        return _normalize_id(language_id or "") in self._languages

    def describe(self) -> list[LanguageSummary]:
        """Public summaries of every supported language, in catalogue order."""
        return [
            LanguageSummary(
                id=key,
                name=cfg.name,
                type=cfg.type,
                file_extension=cfg.file_extension,
                timeout_ms=cfg.timeout_ms,
                memory_limit=cfg.memory_limit,
                cpu_limit=cfg.cpu_limit,
            )
            for key, cfg in self._languages.items()
        ]

    def items(self) -> list[tuple[str, LanguageConfig]]:
        return list(self._languages.items())

    def __len__(self) -> int:
        return len(self._languages)
