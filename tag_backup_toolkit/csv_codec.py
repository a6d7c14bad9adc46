"""
Record Codec: delimited text lines <-> lists of field strings.

Two modes are supported:

Unwrapped
    Fields are joined with the delimiter verbatim and split on it when read.
    Fields must not contain the delimiter.

Wrapped
    Every field is enclosed in the quote character and quote characters
    inside a field are doubled::

        "Index","RelativePath","Value","DataType"
        "","Motor.Name","Pump ""A"", west","String"

    Reading is driven by a small state machine (:class:`ParseState`) so that
    every violation can be reported with its 1-based line and column.

Records are single-line; a quoted field cannot span a line break.
"""

from __future__ import annotations

import contextlib
import logging
from enum import Enum
from typing import IO, Iterator, List, Optional, Sequence

from .errors import FormatError, IOFailure
from .schema import DEFAULT_FIELD_DELIMITER, DEFAULT_QUOTE_CHAR, FILE_ENCODING

logger = logging.getLogger(__name__)


def validate_delimiters(field_delimiter: str, quote_char: str) -> None:
    """Check the delimiter/quote pair.

    Raises:
        ValueError: If either is not a single character or they are equal.
    """
    if not isinstance(field_delimiter, str) or len(field_delimiter) != 1:
        raise ValueError(
            f"Field delimiter must be a single character, got {field_delimiter!r}"
        )
    if not isinstance(quote_char, str) or len(quote_char) != 1:
        raise ValueError(
            f"Quote character must be a single character, got {quote_char!r}"
        )
    if field_delimiter == quote_char:
        raise ValueError("Field delimiter and quote character must differ")


class ParseState(Enum):
    """States of the wrapped-mode line parser."""
    BEFORE_FIELD = "before_field"
    IN_FIELD = "in_field"
    AFTER_CLOSING_QUOTE = "after_closing_quote"


class RecordReader:
    """Reads records from a text stream, one line per record.

    Args:
        stream:                 A text stream opened for reading.
        field_delimiter:        Single-character field separator.
        quote_char:             Single-character quote (wrapped mode).
        wrap_fields:            Parse quote-wrapped fields.
        ignore_malformed_lines: Return ``None`` for malformed lines instead
                                of raising :class:`FormatError`.
    """

    def __init__(
        self,
        stream: IO[str],
        field_delimiter: str = DEFAULT_FIELD_DELIMITER,
        quote_char: str = DEFAULT_QUOTE_CHAR,
        wrap_fields: bool = False,
        ignore_malformed_lines: bool = False,
    ):
        validate_delimiters(field_delimiter, quote_char)
        self.field_delimiter = field_delimiter
        self.quote_char = quote_char
        self.wrap_fields = wrap_fields
        self.ignore_malformed_lines = ignore_malformed_lines
        self._stream = stream
        self._pending: Optional[str] = None
        self._line_number = 0

    @property
    def line_number(self) -> int:
        """1-based number of the line returned by the last read (0 before)."""
        return self._line_number

    def end_of_input(self) -> bool:
        """Return ``True`` when no further line can be read."""
        if self._pending is None:
            self._pending = self._stream.readline()
        return self._pending == ''

    def read_record(self) -> Optional[List[str]]:
        """Read and parse the next line.

        Returns:
            The list of fields, or ``None`` at end of input or for a
            malformed line when ``ignore_malformed_lines`` is set.

        Raises:
            FormatError: For a malformed line.
        """
        if self.end_of_input():
            return None

        raw = self._pending
        self._pending = None
        self._line_number += 1
        line = raw.rstrip('\r\n')

        try:
            if self.wrap_fields:
                return self._parse_wrapped(line)
            return self._parse_unwrapped(line)
        except FormatError as exc:
            if not self.ignore_malformed_lines:
                raise
            logger.warning("Ignoring malformed line: %s", exc)
            return None

    def read_all(self) -> Iterator[List[str]]:
        """Yield every remaining record.  Skipped malformed lines are omitted.

        The generator consumes the underlying stream and cannot be restarted.
        """
        while not self.end_of_input():
            record = self.read_record()
            if record is not None:
                yield record

    def _error(self, message: str, column: Optional[int] = None) -> FormatError:
        return FormatError(message, line=self._line_number, column=column)

    def _parse_unwrapped(self, line: str) -> List[str]:
        if not line:
            raise self._error("Line cannot be empty")
        return line.split(self.field_delimiter)

    def _parse_wrapped(self, line: str) -> List[str]:
        if not line.strip():
            raise self._error("Line cannot be empty")

        fields: List[str] = []
        buffer: List[str] = []
        state = ParseState.BEFORE_FIELD
        length = len(line)
        i = 0

        while i < length:
            char = line[i]
            # Columns are reported 1-based.
            column = i + 1

            if state is ParseState.BEFORE_FIELD:
                if char == self.quote_char:
                    state = ParseState.IN_FIELD
                elif not char.isspace():
                    raise self._error(
                        f"Expected quotation marks at column {column}", column
                    )
                i += 1

            elif state is ParseState.IN_FIELD:
                if char == self.quote_char:
                    if i + 1 < length and line[i + 1] == self.quote_char:
                        buffer.append(self.quote_char)
                        i += 2
                        continue
                    fields.append(''.join(buffer))
                    buffer = []
                    state = ParseState.AFTER_CLOSING_QUOTE
                else:
                    buffer.append(char)
                i += 1

            else:
                # The delimiter may itself be whitespace (e.g. tab).
                if char == self.field_delimiter:
                    state = ParseState.BEFORE_FIELD
                elif not char.isspace():
                    raise self._error(
                        f"Wrong field delimiter at column {column}", column
                    )
                i += 1

        if state is ParseState.IN_FIELD:
            raise self._error(
                f"Unterminated quoted field at column {length + 1}", length + 1
            )
        if state is ParseState.BEFORE_FIELD:
            # A trailing delimiter promises one more field.
            raise self._error(
                f"Expected quotation marks at column {length + 1}", length + 1
            )
        return fields


class RecordWriter:
    """Writes records to a text stream, flushing after every record.

    Args:
        stream:          A text stream opened for writing.
        field_delimiter: Single-character field separator.
        quote_char:      Single-character quote (wrapped mode).
        wrap_fields:     Enclose each field in quotes, doubling inner quotes.
    """

    def __init__(
        self,
        stream: IO[str],
        field_delimiter: str = DEFAULT_FIELD_DELIMITER,
        quote_char: str = DEFAULT_QUOTE_CHAR,
        wrap_fields: bool = False,
    ):
        validate_delimiters(field_delimiter, quote_char)
        self.field_delimiter = field_delimiter
        self.quote_char = quote_char
        self.wrap_fields = wrap_fields
        self._stream = stream
        self.records_written = 0

    def format_record(self, fields: Sequence[str]) -> str:
        """Return the line (without newline) for *fields*."""
        if self.wrap_fields:
            quote = self.quote_char
            escaped = quote + quote
            return self.field_delimiter.join(
                f'{quote}{field.replace(quote, escaped)}{quote}' for field in fields
            )
        return self.field_delimiter.join(fields)

    def write_record(self, fields: Sequence[str]) -> None:
        """Write one record and flush it to the stream."""
        self._stream.write(self.format_record(fields) + '\n')
        self._stream.flush()
        self.records_written += 1


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------

@contextlib.contextmanager
def open_record_reader(
    file_path: str,
    field_delimiter: str = DEFAULT_FIELD_DELIMITER,
    quote_char: str = DEFAULT_QUOTE_CHAR,
    wrap_fields: bool = False,
    ignore_malformed_lines: bool = False,
) -> Iterator[RecordReader]:
    """Open *file_path* (UTF-8, BOM tolerated) and yield a :class:`RecordReader`.

    Raises:
        IOFailure: If the file cannot be opened.
    """
    try:
        fh = open(file_path, 'r', encoding=FILE_ENCODING + '-sig', newline='')
    except OSError as exc:
        raise IOFailure(f"Unable to open CSV file {file_path}: {exc}") from exc
    with fh:
        yield RecordReader(
            fh,
            field_delimiter=field_delimiter,
            quote_char=quote_char,
            wrap_fields=wrap_fields,
            ignore_malformed_lines=ignore_malformed_lines,
        )


@contextlib.contextmanager
def open_record_writer(
    file_path: str,
    field_delimiter: str = DEFAULT_FIELD_DELIMITER,
    quote_char: str = DEFAULT_QUOTE_CHAR,
    wrap_fields: bool = False,
) -> Iterator[RecordWriter]:
    """Create (or truncate) *file_path* and yield a :class:`RecordWriter`.

    Raises:
        IOFailure: If the file cannot be created.
    """
    try:
        fh = open(file_path, 'w', encoding=FILE_ENCODING, newline='\n')
    except OSError as exc:
        raise IOFailure(f"Unable to create CSV file {file_path}: {exc}") from exc
    with fh:
        yield RecordWriter(
            fh,
            field_delimiter=field_delimiter,
            quote_char=quote_char,
            wrap_fields=wrap_fields,
        )
