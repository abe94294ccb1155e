from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "WEBIO_HTTP_LOG_DIR",
        Path.home() / ".local" / "state" / "webio-http" / "logs",
    )
)


def _should_log_websocket(record) -> bool:
    """Filter WebSocket connection/disconnection logs to reduce noise."""
    message = record["message"].lower()
    tags = record["extra"].get("tags", [])

    if record["level"].no >= logger.level("WARNING").no:
        return True

    if "ws" in tags or "websocket" in tags:
        if "connected" in message or "disconnected" in message:
            return record["level"].no >= logger.level("DEBUG").no

    return True


def _should_log_frame(record) -> bool:
    """Filter per-frame message logs - only show in TRACE mode."""
    tags = record["extra"].get("tags", [])

    if "frame" in tags:
        return record["level"].no <= logger.level("TRACE").no

    return True


def _should_log_asset_hit(record) -> bool:
    """Filter asset hit logs - every bundle request would otherwise be logged."""
    message = record["message"].lower()
    tags = record["extra"].get("tags", [])

    if "assets" in tags and "served" in message:
        return record["level"].no <= logger.level("TRACE").no

    return True


def _combined_filter(record) -> bool:
    """Combined filter for all log suppression rules."""
    return (
        _should_log_websocket(record)
        and _should_log_frame(record)
        and _should_log_asset_hit(record)
    )


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
    file_sinks: bool = True,
) -> Logger:
    """
    Setup multi-tier logging with separate sinks for different log levels.

    Logging Tiers:
    - CRITICAL/ERROR: Listener failures, unrecoverable errors
    - SUCCESS/INFO: Server start/stop, configuration
    - DEBUG: Connection lifecycle, dispatch failures with context
    - TRACE: Ultra-verbose (every WebSocket frame, every asset hit)

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)
    - trace.log: TRACE+ events when --trace is enabled (1 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to ~/.local/state/webio-http/logs)
        file_sinks: Set to False to log to the console only
    """
    logger.remove()
    logger.configure(extra={"connection_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr) - User-facing, filtered
    logger.add(
        sys.stderr,
        level=console_level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        filter=_combined_filter,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <10}</cyan> | "
            "<blue>{extra[connection_id]: <15}</blue> | "
            "{message}"
        ),
    )

    if not file_sinks:
        return logger

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    # SINK 2: Operations Log - Important events only (INFO+)
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <10} | "
            "{extra[connection_id]: <15} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log - Detailed diagnostics (DEBUG+ when debug=True)
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <10} | "
                "{extra[connection_id]: <15} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    # SINK 4: Trace Log - Ultra-verbose (TRACE only, when trace=True)
    if trace:
        logger.add(
            log_dir / "trace.log",
            level="TRACE",
            rotation="50 MB",
            retention="1 day",
            compression="zip",
            enqueue=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{extra[source]: <10} | "
                "{extra[connection_id]: <15} | "
                "{message}"
            ),
        )

    # SINK 5: Structured JSON Log - For analysis tools (INFO+)
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        serialize=True,
        format="{message}",
    )

    return logger


def get_logger(
    *,
    connection_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        connection_id: Connection identifier for per-session logs
        tags: Tags for filtering (e.g., ["ws", "dispatch"])
        source: Source component (e.g., "web", "assets")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if connection_id is not None:
        extras["connection_id"] = connection_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.

    Each factory method returns a logger pre-configured with appropriate
    source, tags, and context for the domain.
    """

    @staticmethod
    def for_web(connection_id: str | None = None) -> Logger:
        """Logger for HTTP listener and WebSocket sessions."""
        if connection_id is None:
            connection_id = "-"
        return logger.bind(
            source="web", tags=["web", "ws"], connection_id=connection_id
        )

    @staticmethod
    def for_assets() -> Logger:
        """Logger for asset registration and lookup."""
        return logger.bind(source="assets", tags=["assets", "http"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, shutdown, config)."""
        return logger.bind(source="system", tags=["system"])
