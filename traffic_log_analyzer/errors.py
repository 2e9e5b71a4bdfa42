"""
Exceptions raised by the traffic log analyzer.

Malformed log lines are never exceptions: the parser reports them as
rejections. Only I/O failures and invalid query parameters are raised.
"""

from pathlib import Path
from typing import Union


class TrafficLogError(Exception):
    """Base class for every error the analyzer surfaces to its caller."""


class IngestError(TrafficLogError):
    """The log file could not be opened or read."""

    def __init__(self, path: Union[str, Path], cause: OSError):
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"Could not read log file {self.path}: {cause}")


class ExportError(TrafficLogError):
    """The CSV destination could not be written."""

    def __init__(self, path: Union[str, Path], cause: OSError):
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"Could not write CSV file {self.path}: {cause}")


class InvalidQueryError(TrafficLogError, ValueError):
    """A query parameter supplied by the caller is unusable."""
