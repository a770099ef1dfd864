"""Logging setup for ingestion runs.

Records go to a log file by default. The live progress display owns the
terminal, so a console handler is only attached on request (``--debug``).
Every line carries the thread name; ``main.run_pipeline`` names its threads
``PipelineWorker-<id>`` and ``ProgressReporter``, which is how one job's
download, checksum and parse lines are told apart from the others.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

LEVEL_ENV = "PUBMED_INGEST_LOG_LEVEL"
FORMAT_ENV = "PUBMED_INGEST_LOG_FORMAT"
FILE_ENV = "PUBMED_INGEST_LOG_FILE"
DEFAULT_LOG_FILE = "pubmed_ingest.log"
DEFAULT_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(threadName)-18s | %(name)s | %(message)s"
)

# Chatty per-request loggers; a full baseline run makes thousands of requests.
QUIET_LOGGERS = ("httpx", "httpcore")

_CONFIGURED = False


def _resolve_level(level: int | str | None) -> int:
    """Explicit level first, then ``PUBMED_INGEST_LOG_LEVEL``, then INFO."""
    candidates = (level, os.getenv(LEVEL_ENV, "INFO"))
    for candidate in candidates:
        if isinstance(candidate, int):
            return candidate
        if isinstance(candidate, str):
            resolved = logging.getLevelName(candidate.upper())
            if isinstance(resolved, int):
                return resolved
    return logging.INFO


def _file_handler(log_file: str | os.PathLike[str]) -> logging.Handler:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(log_path, mode="a", encoding="utf-8")


def configure_logging(
    level: int | str | None = None,
    *,
    log_file: str | os.PathLike[str] | None = None,
    console: bool = False,
    force: bool = False,
) -> None:
    """Attach the run's handlers to the root logger.

    ``log_file=None`` means ``PUBMED_INGEST_LOG_FILE`` or ``pubmed_ingest.log``;
    an empty string disables file logging. With neither a file nor a console
    there is nowhere to log, which raises ``ValueError``. Once configured,
    later calls only adjust the level unless ``force`` is set.
    """
    global _CONFIGURED

    resolved_level = _resolve_level(level)
    if _CONFIGURED and not force:
        logging.getLogger().setLevel(resolved_level)
        return

    if log_file is None:
        log_file = os.getenv(FILE_ENV, DEFAULT_LOG_FILE)

    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler())
    if log_file:
        handlers.append(_file_handler(log_file))
    if not handlers:
        raise ValueError("configure_logging requires at least one handler")

    logging.basicConfig(
        level=resolved_level,
        format=os.getenv(FORMAT_ENV, DEFAULT_FORMAT),
        handlers=handlers,
        force=True,
    )
    _CONFIGURED = True

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = ["configure_logging"]
