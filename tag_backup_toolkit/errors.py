"""
Exception hierarchy for tag value backup and restore.

Every error raised by the toolkit derives from :class:`TagBackupError`.  Each
class also derives from the built-in exception a caller would naturally
expect (``ValueError`` for bad input, ``OSError`` for file problems, ...), so
code that only catches built-ins keeps working.

Severity is decided by the orchestrator, not by the exception itself:

- Per-entry problems (:class:`UnmappedTypeError`, :class:`UnsupportedRankError`)
  are logged and the entry is skipped.
- Structural problems (:class:`FormatError`, :class:`MalformedArrayError`,
  :class:`IOFailure`, :class:`RemoteCallFailure`, :class:`ConfigurationError`)
  abort the whole backup or restore.
"""

from __future__ import annotations

from typing import Optional


class TagBackupError(Exception):
    """Base class for all toolkit errors.

    Attributes:
        line: 1-based line of the backup file the error refers to, if any.
    """

    line: Optional[int] = None

    def locate(self, line: int) -> 'TagBackupError':
        """Attach a line number to an error raised without one."""
        if self.line is None:
            self.line = line
            if self.args:
                self.args = (f"Error processing line {line}. {self.args[0]}",) + self.args[1:]
        return self


class ConfigurationError(TagBackupError, ValueError):
    """A required option is missing or invalid.  Raised before any I/O."""

    def __init__(self, option: str, message: str):
        self.option = option
        super().__init__(f"{option}: {message}")


class FormatError(TagBackupError, ValueError):
    """A record in the backup file could not be parsed.

    Attributes:
        line:   1-based line number, when known.
        column: 1-based column number, when known.
    """

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ):
        self.line = line
        self.column = column
        location = ''
        if line is not None:
            location = f"Error processing line {line}. "
        super().__init__(location + message)


class ValueParseError(FormatError):
    """A value string is not valid for its declared type."""

    def __init__(self, value_type: str, raw: str, reason: str = ''):
        self.value_type = value_type
        self.raw = raw
        message = f"Invalid {value_type} value {raw!r}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class MalformedArrayError(TagBackupError, ValueError):
    """An array marker has a bad dimension suffix or its block is truncated."""


class UnsupportedTypeError(TagBackupError, KeyError):
    """A type name in the file (or a type tag) has no codec."""

    def __init__(self, type_name: str, raw: Optional[str] = None):
        self.type_name = type_name
        self.raw = raw
        if raw is None:
            message = f"Type corresponding to {type_name!r} was not found"
        else:
            message = f"Unsupported data type {type_name!r} for value {raw!r}"
        super().__init__(message)

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return self.args[0]


class UnmappedTypeError(TagBackupError, TypeError):
    """A host value has no canonical type name."""

    def __init__(self, python_type: type):
        self.python_type = python_type
        super().__init__(
            f"No data type name is mapped to {python_type.__name__!r}"
        )


class UnsupportedRankError(TagBackupError, ValueError):
    """Only one- and two-dimensional arrays can be backed up."""

    def __init__(self, rank: int):
        self.rank = rank
        super().__init__(
            f"Only one- and two-dimensional arrays are supported, got rank {rank}"
        )


class RemoteCallFailure(TagBackupError, RuntimeError):
    """A remote read/write failed or exceeded its timeout."""


class IOFailure(TagBackupError, OSError):
    """The backup file could not be opened, read, or written."""
