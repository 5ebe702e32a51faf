"""Configuration loader for shipline.

Parses configuration into :class:`~shipline.kernel.config.ShiplineConfig`.
Supports two config sources:

1. **kind: Config YAML** (or a plain TOML file), loaded via explicit path or
   the ``SHIPLINE_CONFIG_PATH`` env var.
2. **pyproject.toml [tool.shipline]**, auto-discovered in the working
   directory or its parents.

When nothing is found the defaults apply. Environment variables override
file values.
"""

from __future__ import annotations

import os
import re
import tomllib
from pathlib import Path
from typing import Any

import yaml

from shipline.kernel.config.models import LoggingConfig, ShiplineConfig
from shipline.kernel.exceptions import ConfigurationError
from shipline.kernel.logging import get_logger

_TRUTHY_VALUES = frozenset({"true", "1", "yes", "on", "enabled"})
_FALSY_VALUES = frozenset({"false", "0", "no", "off", "disabled"})

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_LOG_FORMATS = frozenset({"console", "json", "structured", "dual", "rich"})

logger = get_logger(__name__)


def _parse_bool_env(value: str) -> bool:
    """Parse boolean from environment variable value.

    Raises
    ------
    ValueError
        If value is not a recognized boolean string
    """
    normalized = value.lower().strip()
    if normalized in _TRUTHY_VALUES:
        return True
    if normalized in _FALSY_VALUES:
        return False
    expected = sorted(_TRUTHY_VALUES | _FALSY_VALUES)
    raise ValueError(f"Invalid boolean value: {value!r}. Expected one of: {expected}")


class ConfigLoader:
    """Loads and processes shipline configuration files."""

    # ${VAR} or ${VAR:default}
    ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::([^}]*))?\}")

    def load(self, path: str | Path | None = None) -> ShiplineConfig:
        """Load configuration, falling back to defaults when none is found.

        Raises
        ------
        ConfigurationError
            If an explicit path does not exist or a file is invalid
        """
        config_path = self._find_config_file(path)
        if config_path is None:
            logger.debug("No configuration file found, using defaults")
            data: dict[str, Any] = {}
        else:
            data = self._read(config_path)
        return self._parse_config(self._substitute_env_vars(data), source=str(config_path))

    def _read(self, config_path: Path) -> dict[str, Any]:
        logger.info("Loading configuration from {}", config_path)
        try:
            if config_path.suffix in (".yaml", ".yml"):
                return self._read_yaml(config_path)
            return self._read_toml(config_path)
        except (OSError, yaml.YAMLError, tomllib.TOMLDecodeError) as e:
            raise ConfigurationError(str(config_path), f"cannot read file: {e}") from e

    def _read_yaml(self, config_path: Path) -> dict[str, Any]:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ConfigurationError(
                config_path.name, f"expected a mapping, got {type(data).__name__}"
            )
        kind = data.get("kind")
        if kind != "Config":
            raise ConfigurationError(
                config_path.name, f"YAML config must use 'kind: Config', got 'kind: {kind}'"
            )
        spec = data.get("spec") or {}
        if not isinstance(spec, dict):
            raise ConfigurationError(config_path.name, "'spec' must be a mapping")
        return spec

    def _read_toml(self, config_path: Path) -> dict[str, Any]:
        with config_path.open("rb") as f:
            data = tomllib.load(f)

        section = data.get("tool", {}).get("shipline")
        if section is not None:
            return section
        if config_path.name == "pyproject.toml":
            logger.warning("No [tool.shipline] section found in {}, using defaults", config_path)
            return {}
        return data

    def _find_config_file(self, path: str | Path | None) -> Path | None:
        """Find the configuration file.

        Discovery order:
        1. Explicit path argument
        2. ``SHIPLINE_CONFIG_PATH`` env var
        3. ``pyproject.toml`` with a ``[tool.shipline]`` section in CWD or a parent
        """
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise ConfigurationError(str(config_path), "configuration file not found")
            return config_path

        if env_path := os.getenv("SHIPLINE_CONFIG_PATH"):
            config_path = Path(env_path)
            if config_path.exists():
                logger.debug("Using config from SHIPLINE_CONFIG_PATH: {}", config_path)
                return config_path
            logger.warning("SHIPLINE_CONFIG_PATH set but file not found: {}", config_path)

        current = Path.cwd()
        for directory in (current, *current.parents):
            pyproject = directory / "pyproject.toml"
            if not pyproject.is_file():
                continue
            try:
                with pyproject.open("rb") as f:
                    if "shipline" in tomllib.load(f).get("tool", {}):
                        return pyproject
            except (OSError, tomllib.TOMLDecodeError) as e:
                logger.debug("Skipping unreadable {}: {}", pyproject, e)
        return None

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively substitute ``${VAR}`` / ``${VAR:default}`` in string values.

        Unset variables without a default keep their placeholder.
        """
        if isinstance(data, str):

            def replacer(match: re.Match[str]) -> str:
                var_name, default = match.group(1), match.group(2)
                value = os.environ.get(var_name)
                if value is not None:
                    return value
                if default is not None:
                    return default
                logger.debug("Environment variable ${} not found, keeping placeholder", var_name)
                return match.group(0)

            return self.ENV_VAR_PATTERN.sub(replacer, data)

        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}

        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]

        return data

    def _parse_config(self, data: dict[str, Any], source: str) -> ShiplineConfig:
        """Parse raw configuration data into ShiplineConfig with env overrides applied."""
        logging_config = self._parse_logging_config(data.get("logging") or {}, source)
        gate = data.get("quality_gate") or {}

        workspace_root = os.getenv("SHIPLINE_WORKSPACE_ROOT") or data.get(
            "workspace_root", ".shipline/workspaces"
        )
        archive_root = os.getenv("SHIPLINE_ARCHIVE_ROOT") or data.get(
            "archive_root", ".shipline/archive"
        )
        keep_workspace = data.get("keep_workspace", False)
        if env_keep := os.getenv("SHIPLINE_KEEP_WORKSPACE"):
            try:
                keep_workspace = _parse_bool_env(env_keep)
            except ValueError as e:
                logger.warning("Invalid SHIPLINE_KEEP_WORKSPACE value: {}", e)

        return ShiplineConfig(
            logging=logging_config,
            workspace_root=Path(workspace_root),
            archive_root=Path(archive_root),
            keep_workspace=bool(keep_workspace),
            default_stage_timeout=_positive(
                data.get("default_stage_timeout"), "default_stage_timeout", source, optional=True
            ),
            gate_timeout=_positive(gate.get("timeout", 300.0), "quality_gate.timeout", source),
            gate_poll_interval=_positive(
                gate.get("poll_interval", 5.0), "quality_gate.poll_interval", source
            ),
            secret_env_prefix=str(data.get("secret_env_prefix", "")),
        )

    def _parse_logging_config(self, logging_data: dict[str, Any], source: str) -> LoggingConfig:
        """Parse logging configuration with environment variable overrides.

        Environment variables take precedence over config file values:
        - SHIPLINE_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        - SHIPLINE_LOG_FORMAT: Output format (console, json, structured, rich, dual)
        - SHIPLINE_LOG_FILE: Optional file path for log output
        - SHIPLINE_LOG_COLOR: Use color output (true/false)
        """
        level = str(os.getenv("SHIPLINE_LOG_LEVEL") or logging_data.get("level", "INFO")).upper()
        format_type = str(
            os.getenv("SHIPLINE_LOG_FORMAT") or logging_data.get("format", "structured")
        ).lower()
        output_file = os.getenv("SHIPLINE_LOG_FILE") or logging_data.get("output_file")
        use_color = logging_data.get("use_color", True)
        include_timestamp = logging_data.get("include_timestamp", True)

        if env_color := os.getenv("SHIPLINE_LOG_COLOR"):
            try:
                use_color = _parse_bool_env(env_color)
            except ValueError as e:
                logger.warning("Invalid SHIPLINE_LOG_COLOR value: {}", e)

        if level not in _LOG_LEVELS:
            raise ConfigurationError(source, f"invalid log level {level!r}")
        if format_type not in _LOG_FORMATS:
            raise ConfigurationError(source, f"invalid log format {format_type!r}")

        return LoggingConfig(
            level=level,  # type: ignore[arg-type]
            format=format_type,  # type: ignore[arg-type]
            output_file=output_file,
            use_color=bool(use_color),
            include_timestamp=bool(include_timestamp),
        )


def _positive(value: Any, name: str, source: str, optional: bool = False) -> Any:
    if value is None and optional:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(source, f"'{name}' must be a number, got {value!r}") from None
    if number <= 0:
        raise ConfigurationError(source, f"'{name}' must be positive, got {value!r}")
    return number


def load_config(path: str | Path | None = None) -> ShiplineConfig:
    """Load configuration from file or return defaults (with env overrides)."""
    return ConfigLoader().load(path)
