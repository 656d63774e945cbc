from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from pathlib import Path

from src.errors import InputFolderError

logger = logging.getLogger("doc_extract.discovery")

DEFAULT_EXTENSIONS = (".pdf",)


def _normalize_extensions(extensions: Iterable[str]) -> tuple[str, ...]:
    normalized = []
    for extension in extensions:
        value = extension.strip().lower()
        if not value:
            continue
        if not value.startswith("."):
            value = f".{value}"
        normalized.append(value)
    return tuple(normalized) or DEFAULT_EXTENSIONS


def discover_documents(
    folder: Path | str, extensions: Iterable[str] = DEFAULT_EXTENSIONS
) -> list[str]:
    """Return the sorted names of matching regular files directly inside ``folder``."""
    root = Path(folder)
    if not root.exists():
        raise InputFolderError(f"Input folder does not exist: {root}")
    if not root.is_dir():
        raise InputFolderError(f"Input path is not a directory: {root}")

    suffixes = _normalize_extensions(extensions)
    start_time = time.time()
    matches: list[str] = []

    for path in root.iterdir():
        if not path.name.lower().endswith(suffixes):
            continue
        try:
            if not path.is_file():
                continue
        except OSError as exc:
            logger.debug("Skipping %s; unable to stat: %s", path.name, exc)
            continue
        matches.append(path.name)

    matches.sort()
    logger.info(
        "Found %d matching files in %s in %.2f seconds",
        len(matches),
        root,
        time.time() - start_time,
    )
    return matches
