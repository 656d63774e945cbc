"""Crash-resumable ledger of completed and failed documents."""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from shutil import copy2

from pydantic import ValidationError

from src.schema import ProcessingProgress

logger = logging.getLogger("doc_extract.progress")


class ProgressStore:
    """Load, save and clear the JSON progress file for one run configuration."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> ProcessingProgress:
        """Return the persisted progress, or a fresh one if missing or unreadable."""
        if not self.path.exists():
            return ProcessingProgress()

        try:
            raw = self.path.read_text(encoding="utf-8")
            progress = ProcessingProgress.model_validate_json(raw)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning(
                "Failed to load progress file %s (%s); starting fresh", self.path, exc
            )
            self._backup_corrupted()
            return ProcessingProgress()

        logger.info(
            "Loaded progress: %d completed, %d failed",
            len(progress.completed),
            len(progress.failed),
        )
        return progress

    def _backup_corrupted(self) -> None:
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        backup_path = self.path.with_name(
            f"{self.path.stem}.corrupt-{timestamp}{self.path.suffix}"
        )
        try:
            copy2(self.path, backup_path)
            logger.warning("Backed up unreadable progress file to %s", backup_path)
        except OSError as exc:
            logger.warning("Unable to back up progress file %s: %s", self.path, exc)

    def save(self, progress: ProcessingProgress) -> bool:
        """Atomically write ``progress``; return False instead of raising on failure."""
        progress.touch()
        temp_path: Path | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f"{self.path.stem}-",
                suffix=".tmp",
                delete=False,
            ) as tmp_file:
                temp_path = Path(tmp_file.name)
                tmp_file.write(progress.to_json())
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            os.replace(temp_path, self.path)
            temp_path = None
        except OSError as exc:
            logger.error("Failed to save progress to %s: %s", self.path, exc)
            return False
        finally:
            if temp_path is not None and temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
        return True

    def clear(self) -> bool:
        """Delete the progress file. Returns True if a file was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Failed to delete progress file %s: %s", self.path, exc)
            return False
        logger.info("Cleaned up progress file: %s", self.path)
        return True


def filter_pending(
    discovered: Iterable[str], progress: ProcessingProgress
) -> list[str]:
    """Return discovered filenames that are neither completed nor failed."""
    terminal = set(progress.completed) | set(progress.failed)
    return [name for name in discovered if name not in terminal]
