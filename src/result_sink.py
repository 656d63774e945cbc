"""Streaming CSV writer for successful extraction records."""

from __future__ import annotations

import csv
import logging
import threading
from pathlib import Path
from typing import IO, Any

from src.errors import SinkClosedError
from src.schema import CSV_HEADERS, ExtractionRecord

logger = logging.getLogger("doc_extract.sink")


class CsvResultSink:
    """Append-only output table, flushed row by row.

    ``close`` may be called any number of times, including from the shutdown
    handler while the pipeline is also finishing. Writing after ``close`` is a
    programming error and raises ``SinkClosedError``.
    """

    def __init__(self) -> None:
        self.path: Path | None = None
        self.rows_written = 0
        self._handle: IO[str] | None = None
        self._writer: Any = None
        self._closed = False
        # Re-entrant so a signal handler running on the main thread cannot deadlock.
        self._lock = threading.RLock()

    @property
    def is_open(self) -> bool:
        return self._handle is not None and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self, path: Path | str) -> None:
        with self._lock:
            if self._closed:
                raise SinkClosedError("Result sink cannot be reopened after close")
            if self._handle is not None:
                raise RuntimeError(f"Result sink is already open at {self.path}")
            target = Path(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            self._handle = target.open("w", newline="", encoding="utf-8")
            self._writer = csv.writer(self._handle)
            self.path = target
            self._writer.writerow(CSV_HEADERS)
            self._handle.flush()
            logger.debug("Opened result sink at %s", target)

    def write(self, record: ExtractionRecord) -> None:
        with self._lock:
            if self._closed:
                raise SinkClosedError(
                    f"Cannot write {record.file_name}: result sink is closed"
                )
            if self._handle is None:
                raise SinkClosedError(
                    f"Cannot write {record.file_name}: result sink was never opened"
                )
            self._writer.writerow(record.to_row())
            self._handle.flush()
            self.rows_written += 1

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            handle, self._handle = self._handle, None
            self._writer = None
            if handle is not None:
                handle.close()
                logger.debug(
                    "Closed result sink %s after %d rows", self.path, self.rows_written
                )

    def __enter__(self) -> CsvResultSink:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
