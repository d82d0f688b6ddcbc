"""Configuration management for the download sorter."""

from __future__ import annotations

import logging
import os
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError
from .models import CategoryRule, Folders, SorterConfig, normalize_extension
from .resolver import ENV_PREFIX, flatten_for_env, resolve_with_precedence

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.download-sorter/config.yaml")
_CONFIG_HEADER = textwrap.dedent(
    """\
    # Download sorter configuration file
    # Generated automatically; manage via `download-sorter config set` or edit by hand.
    """
)


class ConfigManager:
    """Load and persist configuration data, applying precedence rules."""

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._config_path = (config_path or DEFAULT_CONFIG_PATH).expanduser()
        self._env = env if env is not None else os.environ

    @property
    def config_path(self) -> Path:
        """Return the resolved configuration path."""
        return self._config_path

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        ensure_file: bool = True,
        env_overrides: Mapping[str, str] | None = None,
        strict: bool = False,
    ) -> SorterConfig:
        """Load configuration data from disk, applying precedence rules.

        A malformed configuration file is reported and replaced by defaults unless
        ``strict`` is set, in which case the underlying ``ConfigError`` propagates.

        Args:
            cli_overrides: Dotted-key overrides supplied by the CLI.
            include_env: Whether to honour ``DOWNLOAD_SORTER__*`` variables.
            ensure_file: Whether to create a default file when none exists.
            env_overrides: Explicit environment mapping used instead of ``os.environ``.
            strict: Raise instead of falling back to defaults on malformed files.

        Returns:
            SorterConfig: Fully resolved configuration snapshot.

        Raises:
            ConfigError: If ``strict`` is set and the file is malformed, or if the
                environment/CLI overrides are themselves invalid.
        """
        if ensure_file:
            self.ensure_exists()

        env_data: Mapping[str, str] | None = None
        if include_env:
            env_data = env_overrides if env_overrides is not None else self._env
        env_layer = self._extract_env(env_data) if env_data else None

        try:
            config = resolve_with_precedence(
                defaults=SorterConfig(),
                file_overrides=self._read_file(),
                env_overrides=env_layer,
                cli_overrides=cli_overrides,
            )
        except ConfigError as exc:
            if strict:
                raise
            LOGGER.warning("Ignoring malformed configuration at %s: %s", self._config_path, exc)
            config = resolve_with_precedence(
                defaults=SorterConfig(),
                env_overrides=env_layer,
                cli_overrides=cli_overrides,
            )

        for extension, categories in config.extension_conflicts().items():
            LOGGER.warning(
                "Extension .%s is claimed by several rules (%s); the first one wins.",
                extension,
                ", ".join(categories),
            )
        return config

    def load_file_overrides(self) -> dict[str, Any]:
        """Return raw overrides stored on disk."""
        return self._read_file()

    def save(self, config: SorterConfig | Mapping[str, Any]) -> None:
        """Persist configuration data to disk."""
        if isinstance(config, SorterConfig):
            data = config.model_dump(mode="python")
        else:
            data = dict(config)
        self._write_file(data)

    def ensure_exists(self) -> Path:
        """Create a configuration file with defaults if one does not exist."""
        path = self._config_path
        if not path.exists():
            self._write_file(SorterConfig().model_dump(mode="python"))
        return path

    def read_text(self) -> str:
        """Return the current configuration file contents."""
        if not self._config_path.exists():
            return ""
        return self._config_path.read_text(encoding="utf-8")

    # Internal helpers -------------------------------------------------

    def _read_file(self) -> dict[str, Any]:
        if not self._config_path.exists():
            return {}

        try:
            raw = yaml.safe_load(self._config_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse configuration file: {exc}") from exc
        except OSError as exc:
            raise ConfigError(f"Failed to read configuration file: {exc}") from exc

        if not isinstance(raw, dict):
            raise ConfigError("Configuration file must contain a mapping at the top level.")

        return raw

    def _write_file(self, data: Mapping[str, Any]) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        serialized = yaml.safe_dump(dict(data), sort_keys=False)
        stamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        timestamp = f"# Last updated: {stamp}\n"
        self._config_path.write_text(_CONFIG_HEADER + timestamp + serialized, encoding="utf-8")

    def _extract_env(self, env: Mapping[str, str]) -> dict[str, Any]:
        overrides: dict[str, Any] = {}
        for key, raw_value in env.items():
            if not key.startswith(ENV_PREFIX):
                continue
            path = [segment.lower() for segment in key[len(ENV_PREFIX) :].split("__") if segment]
            if not path:
                continue
            try:
                parsed_value: Any = yaml.safe_load(raw_value)
            except yaml.YAMLError:
                parsed_value = raw_value
            self._assign_nested(overrides, path, parsed_value)
        return overrides

    def _assign_nested(self, target: dict[str, Any], path: list[str], value: Any) -> None:
        current = target
        for segment in path[:-1]:
            existing = current.get(segment)
            if not isinstance(existing, dict):
                existing = {}
                current[segment] = existing
            current = existing
        current[path[-1]] = value


__all__ = [
    "CategoryRule",
    "ConfigError",
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "Folders",
    "SorterConfig",
    "flatten_for_env",
    "normalize_extension",
    "resolve_with_precedence",
]
