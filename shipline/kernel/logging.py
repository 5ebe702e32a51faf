"""Centralized logging configuration for shipline using Loguru.

Provides consistent logging across the engine with support for:
- Multiple output formats (console, JSON, structured, rich)
- Environment-based configuration
- Run-scoped correlation ids (every log line of a run carries its run id)
- Idempotent configuration

Examples
--------
Basic usage:

>>> from shipline.kernel.logging import get_logger
>>> logger = get_logger(__name__)
>>> logger.info("Run started")

Configure logging globally::

    from shipline.kernel.logging import configure_logging
    configure_logging(level="DEBUG", format="rich")
"""

import contextvars
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    import types

    from loguru import Logger

from loguru import logger
from rich.logging import RichHandler

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["console", "json", "structured", "rich", "dual"]

_CURRENT_CONFIG: dict | None = None
_HANDLER_IDS: list[int] = []

# Run id of the pipeline run executing in the current context
correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")


def _inject_correlation_id(record: Any) -> None:
    record["extra"].setdefault("run_id", correlation_id.get())


def _rich_handler(include_timestamp: bool) -> RichHandler:
    return RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=include_timestamp,
        show_level=True,
        show_path=True,
    )


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "structured",
    output_file: str | Path | None = None,
    use_color: bool = True,
    include_timestamp: bool = True,
    force_reconfigure: bool = False,
    use_rich: bool = False,
    dual_sink: bool = False,
    enable_stdlib_bridge: bool = False,
    backtrace: bool = True,
    diagnose: bool = False,
) -> None:
    """Configure global logging for shipline.

    This function is idempotent - calling it multiple times with the same
    configuration will not duplicate handlers or change settings.

    Parameters
    ----------
    level : LogLevel, default="INFO"
        Minimum log level to output
    format : LogFormat, default="structured"
        Output format:
        - "console": Simple console output (no colors, basic format)
        - "json": JSON lines for log aggregation
        - "structured": Loguru native format with colors
        - "rich": Rich console handler
        - "dual": Rich to stderr + JSON to stdout
    output_file : str | Path | None, default=None
        Optional file path to write JSON logs to (in addition to console)
    use_color : bool, default=True
        Use ANSI color codes in structured format (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output
    force_reconfigure : bool, default=False
        Force reconfiguration even if already configured with same settings
    use_rich : bool, default=False
        Use Rich for console output (overrides format if True)
    dual_sink : bool, default=False
        Enable dual-sink: Rich console (stderr) + JSON (stdout) simultaneously
    enable_stdlib_bridge : bool, default=False
        Route stdlib logging from third-party libraries through Loguru
    backtrace : bool, default=True
        Enable extended backtraces
    diagnose : bool, default=False
        Show variable values in tracebacks. Off by default because frames of
        credential-handling code hold secret values.
    """
    global _CURRENT_CONFIG, _HANDLER_IDS

    current_config = {
        "level": level,
        "format": format,
        "output_file": str(output_file) if output_file else None,
        "use_color": use_color,
        "include_timestamp": include_timestamp,
        "use_rich": use_rich,
        "dual_sink": dual_sink,
        "enable_stdlib_bridge": enable_stdlib_bridge,
        "backtrace": backtrace,
        "diagnose": diagnose,
    }

    if not force_reconfigure and current_config == _CURRENT_CONFIG:
        return

    # Remove only our previously added handlers (not external ones)
    for handler_id in _HANDLER_IDS:
        with suppress(ValueError):
            logger.remove(handler_id)
    _HANDLER_IDS.clear()
    if _CURRENT_CONFIG is None:
        # loguru's default stderr handler
        with suppress(ValueError):
            logger.remove(0)

    logger.configure(patcher=_inject_correlation_id)

    if dual_sink or format == "dual":
        _HANDLER_IDS.append(
            logger.add(
                sink=_rich_handler(include_timestamp),
                level=level,
                format="[{extra[run_id]}] {message}",
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stdout,
                level=level,
                serialize=True,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    elif use_rich or format == "rich":
        _HANDLER_IDS.append(
            logger.add(
                sink=_rich_handler(include_timestamp),
                level=level,
                format="[{extra[run_id]}] {message}",
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    elif format == "json":
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stderr,
                level=level,
                serialize=True,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    elif format == "structured":
        colorize = use_color and sys.stderr.isatty()
        timestamp_fmt = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> " if include_timestamp else ""
        color_level = "<level>{level: <8}</level>" if colorize else "{level: <8}"
        structured_format = (
            f"{timestamp_fmt}[{color_level}]"
            "<magenta>{extra[run_id]}</magenta> "
            "<cyan>{name}:{function}:{line}</cyan> | <level>{message}</level>"
        )
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stderr,
                level=level,
                format=structured_format,
                colorize=colorize,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    else:  # console
        timestamp_fmt = "{time:YYYY-MM-DD HH:mm:ss} " if include_timestamp else ""
        console_format = f"{timestamp_fmt}{{level: <8}} | {{extra[run_id]}} | {{message}}"
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stderr,
                level=level,
                format=console_format,
                colorize=False,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    if output_file:
        output_path = Path(output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        # File output always uses JSON for easier parsing
        _HANDLER_IDS.append(
            logger.add(
                sink=output_path,
                level=level,
                serialize=True,
                rotation="10 MB",
                retention="1 week",
                compression="zip",
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    if enable_stdlib_bridge:
        enable_stdlib_logging_bridge()

    _CURRENT_CONFIG = current_config


@lru_cache(maxsize=256)
def get_logger(name: str) -> "Logger":
    """Get a logger instance bound with the given module name.

    If configure_logging() has not been called yet, logging is initialized
    from ``SHIPLINE_LOG_LEVEL`` / ``SHIPLINE_LOG_FORMAT``.

    Parameters
    ----------
    name : str
        Logger name, typically __name__ from the calling module

    Returns
    -------
    loguru.Logger
        Logger bound with the module name
    """
    _ensure_configured()
    return logger.bind(module=name)


def enable_stdlib_logging_bridge() -> None:
    """Redirect stdlib logging (httpx, asyncio, ...) to Loguru."""

    class InterceptHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            level: str | int
            try:
                level = logger.level(record.levelname).name
            except ValueError:
                level = record.levelno

            # Find caller from where originated the logged message
            frame: types.FrameType | None = sys._getframe(6)
            depth = 6
            while frame and frame.f_code.co_filename == logging.__file__:
                frame = frame.f_back
                depth += 1

            logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


def get_correlation_id() -> str:
    """Get the current correlation id, or "-" if none is set.

    Examples
    --------
    >>> from shipline.kernel.logging import get_correlation_id
    >>> get_correlation_id()
    '-'
    """
    return correlation_id.get()


@contextmanager
def run_log_context(run_id: str) -> Iterator[None]:
    """Tag every log record emitted inside the block with ``run_id``."""
    token = correlation_id.set(run_id)
    try:
        yield
    finally:
        correlation_id.reset(token)


def _ensure_configured() -> None:
    """Lazily apply a default configuration."""
    global _CURRENT_CONFIG

    if _CURRENT_CONFIG is None:
        level = os.getenv("SHIPLINE_LOG_LEVEL", "INFO").upper()
        format_type = os.getenv("SHIPLINE_LOG_FORMAT", "structured").lower()
        configure_logging(level=level, format=format_type)  # type: ignore[arg-type]
