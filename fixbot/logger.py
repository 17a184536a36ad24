"""Process-wide loguru setup and the logging helpers used across fixbot."""

from __future__ import annotations

import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from loguru import logger as _logger

_CONFIGURED = False
DEFAULT_LOG_DIR = Path(__file__).resolve().parent / "logs"
LOG_DIR_ENV = "APP_LOG_DIR"
LOG_LEVEL_ENV = "APP_LOG_LEVEL"

# Bound context (repository, revision, session, ...) is appended to every line.
LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    "{extra[context]}"
)


def _render_context(record: dict[str, Any]) -> None:
    extra = {k: v for k, v in record["extra"].items() if k != "context"}
    record["extra"]["context"] = (
        " [" + " ".join(f"{k}={v}" for k, v in sorted(extra.items())) + "]" if extra else ""
    )


def _configure() -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    log_dir = Path(os.getenv(LOG_DIR_ENV) or DEFAULT_LOG_DIR).expanduser().resolve()
    log_dir.mkdir(parents=True, exist_ok=True)

    _logger.remove()
    _logger.configure(patcher=_render_context)
    # Findings go to stdout from the command line, so log records stay on stderr.
    _logger.add(
        sys.stderr,
        level=os.getenv(LOG_LEVEL_ENV, "INFO"),
        format=LOG_FORMAT,
        colorize=sys.stderr.isatty(),
    )
    _logger.add(
        log_dir / "fixbot-{time:YYYY-MM-DD}.log",
        rotation="00:00",
        retention="10 days",
        level="DEBUG",
        format=LOG_FORMAT,
        enqueue=True,
        diagnose=False,
    )
    _CONFIGURED = True


def get_logger():
    """Return the shared logger, configuring the sinks on first use."""

    _configure()
    return _logger


def log_with_context(logger_instance, **context: str | int | None) -> Any:
    """Bind context such as ``repository="owner/repo"`` or ``session=key``.

    None values are dropped so callers can pass optional fields as-is.
    """
    return logger_instance.bind(**{k: v for k, v in context.items() if v is not None})


@contextmanager
def log_timing(logger_instance, operation: str) -> Iterator[Any]:
    """Log how long ``operation`` took at debug level, or an error if it raised."""

    start = time.perf_counter()
    logger_instance.debug(f"Starting {operation}")
    try:
        yield logger_instance
    except Exception as exc:
        logger_instance.error(f"Failed {operation} after {time.perf_counter() - start:.3f}s: {exc}")
        raise
    logger_instance.debug(f"Completed {operation} in {time.perf_counter() - start:.3f}s")


def log_success(logger_instance, message: str, **context: str | int | None) -> None:
    log_with_context(logger_instance, **context).info(f"=== SUCCESS: {message} ===")


def log_failure(logger_instance, message: str, error: Exception, **context: str | int | None) -> None:
    log_with_context(logger_instance, **context).error(f"=== FAILURE: {message} | Error: {error} ===")
