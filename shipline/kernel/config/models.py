"""Configuration data models for shipline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Logging configuration.

    Attributes
    ----------
    level : str, default="INFO"
        Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    format : str, default="structured"
        Output format (console, json, structured, dual, rich)
    output_file : str | None, default=None
        Optional file path to write JSON logs to
    use_color : bool, default=True
        Use ANSI color codes (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output

    Examples
    --------
    TOML configuration:

    ```toml
    [tool.shipline.logging]
    level = "DEBUG"
    format = "rich"
    ```

    Environment variable overrides:

    ```bash
    export SHIPLINE_LOG_LEVEL=DEBUG
    export SHIPLINE_LOG_FORMAT=json
    export SHIPLINE_LOG_FILE=/var/log/shipline/runs.log
    ```
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "structured", "dual", "rich"] = "structured"
    output_file: str | None = None
    use_color: bool = True
    include_timestamp: bool = True


@dataclass(frozen=True, slots=True)
class ShiplineConfig:
    """Complete engine configuration.

    Attributes
    ----------
    logging : LoggingConfig
        Logging configuration
    workspace_root : Path
        Directory under which each run gets its own ``<run_id>`` workspace
    archive_root : Path
        Directory under which each run's archive and manifest are written
    keep_workspace : bool
        Keep run workspaces after the post-run phase instead of deleting them
    default_stage_timeout : float | None
        Expected duration bound for stages that declare none (None = unbounded)
    gate_timeout : float
        Default quality gate wait in seconds
    gate_poll_interval : float
        Default delay between verdict polls in seconds
    secret_env_prefix : str
        Prefix used by the environment secret store

    Examples
    --------
    ```toml
    [tool.shipline]
    workspace_root = ".shipline/workspaces"
    archive_root = ".shipline/archive"
    default_stage_timeout = 1800

    [tool.shipline.quality_gate]
    timeout = 300
    poll_interval = 5

    [tool.shipline.logging]
    level = "INFO"
    ```
    """

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    workspace_root: Path = Path(".shipline/workspaces")
    archive_root: Path = Path(".shipline/archive")
    keep_workspace: bool = False
    default_stage_timeout: float | None = None
    gate_timeout: float = 300.0
    gate_poll_interval: float = 5.0
    secret_env_prefix: str = ""
