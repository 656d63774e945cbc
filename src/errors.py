"""Exception types raised by the bulk extraction pipeline."""

from __future__ import annotations


class DocExtractError(Exception):
    """Base class for pipeline errors that should abort a run."""


class ConfigurationError(DocExtractError):
    """Raised for invalid settings or a missing provider credential."""


class InputFolderError(DocExtractError):
    """Raised when the document folder is missing or is not a directory."""


class SinkClosedError(RuntimeError):
    """Raised when a record is written to a result sink that was already closed."""


__all__ = [
    "ConfigurationError",
    "DocExtractError",
    "InputFolderError",
    "SinkClosedError",
]
