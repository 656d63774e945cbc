"""Root logger setup for the bulk extraction tool."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

# Worker threads are named ``extract-worker-N``; the thread column tells them apart.
DEFAULT_FORMAT = (
    "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s:%(lineno)d | %(message)s"
)
LOG_LEVEL_ENV = "DOC_EXTRACT_LOG_LEVEL"
LOG_FORMAT_ENV = "DOC_EXTRACT_LOG_FORMAT"
LOG_FILE_ENV = "DOC_EXTRACT_LOG_FILE"
DEFAULT_LOG_FILE = "doc_extract.log"

# Request bodies carry base64 documents, so transport loggers stay at WARNING.
DEPENDENCY_LEVELS: Mapping[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "ollama": logging.WARNING,
}

_CONFIGURED = False


def _resolve_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    candidates = [level] if isinstance(level, str) else []
    candidates.append(os.getenv(LOG_LEVEL_ENV, "INFO"))
    for candidate in candidates:
        resolved = logging.getLevelName(candidate.strip().upper())
        if isinstance(resolved, int):
            return resolved
    return logging.INFO


def _file_handler(log_file: str | os.PathLike[str]) -> logging.Handler:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(log_path, mode="a", encoding="utf-8")


def quiet_dependencies(levels: Mapping[str, int] = DEPENDENCY_LEVELS) -> None:
    for name, dependency_level in levels.items():
        logging.getLogger(name).setLevel(dependency_level)


def configure_logging(
    level: int | str | None = None,
    *,
    log_file: str | os.PathLike[str] | None = None,
    console: bool = True,
    force: bool = False,
) -> None:
    """Configure the root logger for a run.

    Parameters
    ----------
    level:
        Level name or number. Falls back to ``DOC_EXTRACT_LOG_LEVEL``, then INFO.
    log_file:
        File handler target. ``None`` means ``DOC_EXTRACT_LOG_FILE`` or
        ``doc_extract.log``; an empty string disables file logging.
    console:
        Attach a stream handler (stderr).
    force:
        Replace handlers installed by an earlier call in this process.
    """
    global _CONFIGURED

    resolved_level = _resolve_level(level)
    if log_file is None:
        log_file = os.getenv(LOG_FILE_ENV, DEFAULT_LOG_FILE)

    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler())
    if log_file:
        handlers.append(_file_handler(log_file))
    if not handlers:
        raise ValueError("configure_logging requires at least one handler")

    if force or not _CONFIGURED:
        logging.basicConfig(
            level=resolved_level,
            format=os.getenv(LOG_FORMAT_ENV, DEFAULT_FORMAT),
            handlers=handlers,
            force=True,
        )
        _CONFIGURED = True
    else:
        for handler in handlers:
            handler.close()
        logging.getLogger().setLevel(resolved_level)

    quiet_dependencies()


__all__ = ["configure_logging", "quiet_dependencies"]
