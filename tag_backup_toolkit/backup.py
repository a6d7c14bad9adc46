"""
Backup and restore of tag values.

Backup reads every child of a tag tree in one remote call and writes one
record per scalar (or one block per array) to a delimited text file::

    Index,RelativePath,Value,DataType
    ,Tank.Level,3.1415926535897931,Float64
    ARRAY:3,,,
    0,Line.Setpoints,1,Int32
    1,Line.Setpoints,2,Int32
    2,Line.Setpoints,3,Int32

Restore reads the file back, keeps the entries whose path still resolves in
the target tree, and writes all of them in one remote call.

Error policy:
    Per-entry problems (null value, unmappable type, unsupported array rank,
    unresolved path) are logged and the entry is skipped.  Structural problems
    (configuration, file I/O, malformed records or array blocks, remote call
    failures) raise and abort the whole operation.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Iterator, List, Optional

from . import data_format
from .arrays import (
    element_count,
    flatten_array,
    is_array_marker,
    parse_array_marker,
    reconstruct_array,
)
from .csv_codec import (
    RecordReader,
    open_record_reader,
    open_record_writer,
    validate_delimiters,
)
from .errors import (
    ConfigurationError,
    FormatError,
    IOFailure,
    TagBackupError,
)
from .models import (
    BackupSummary,
    Record,
    RestoreSummary,
    TagArray,
    TagEntry,
)
from .remote import call_with_timeout
from .schema import (
    ARRAY_DIMENSIONS_MARKER,
    DEFAULT_FIELD_DELIMITER,
    DEFAULT_QUOTE_CHAR,
    DEFAULT_TIMEOUT_MS,
    FORBIDDEN_RESTORE_DELIMITERS,
    HEADER_FIELDS,
    RECORD_WIDTH,
)
from .tag_tree import TagTree

logger = logging.getLogger(__name__)


def _check_delimiters(field_delimiter: str, quote_char: str) -> None:
    try:
        validate_delimiters(field_delimiter, quote_char)
    except ValueError as exc:
        raise ConfigurationError('CharacterSeparator', str(exc)) from None


def _check_header_delimiter(field_delimiter: str, wrap_fields: bool) -> None:
    # Unquoted, the header must split back into its four names.
    if not wrap_fields and any(field_delimiter in name for name in HEADER_FIELDS):
        raise ConfigurationError(
            'CharacterSeparator',
            f"Separator {field_delimiter!r} occurs in the header; enable WrapFields",
        )


# ---------------------------------------------------------------------------
# Backup
# ---------------------------------------------------------------------------

def entry_to_records(relative_path: str, value) -> List[Record]:
    """Return the records that represent one tag value.

    Args:
        relative_path: The tag's path relative to the backup root.
        value:         A :class:`ScalarValue`, :class:`TagArray`, or a plain
                       Python value (see :func:`data_format.coerce_tag_value`).

    Raises:
        UnmappedTypeError:    If the value has no canonical type name.
        UnsupportedRankError: For arrays that are not 1-D or 2-D.
        ValueError:           If a plain value does not fit its inferred type.
    """
    typed = data_format.coerce_tag_value(value)
    if isinstance(typed, TagArray):
        return flatten_array(relative_path, typed)
    value_text, type_name = data_format.encode_scalar(typed)
    return [Record('', relative_path, value_text, type_name)]


def backup_tag_values(
    tree: TagTree,
    csv_path: str,
    *,
    field_delimiter: str = DEFAULT_FIELD_DELIMITER,
    wrap_fields: bool = False,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    quote_char: str = DEFAULT_QUOTE_CHAR,
) -> BackupSummary:
    """Write the current value of every child of *tree* to *csv_path*.

    Args:
        tree:            The parent node to back up.
        csv_path:        Output file; created or truncated.
        field_delimiter: Single-character field separator.
        wrap_fields:     Quote every field.
        timeout_ms:      Bound on the remote read.
        quote_char:      Quote character used when *wrap_fields* is set.

    Returns:
        A :class:`BackupSummary` with the count of entries written and the
        paths that were skipped.

    Raises:
        ConfigurationError: For an invalid delimiter / quote pair, or an
                            unwrapped delimiter found in the header.
        RemoteCallFailure:  If the remote read fails or times out.
        IOFailure:          If the file cannot be created or written.
    """
    _check_delimiters(field_delimiter, quote_char)
    _check_header_delimiter(field_delimiter, wrap_fields)

    entries = call_with_timeout(
        tree.children_remote_read, timeout_ms, timeout_ms,
        description=f"Remote read of {tree.browse_name}",
    )
    logger.info("Read %d tags from %s", len(entries), tree.browse_name)

    summary = BackupSummary(csv_path=csv_path)
    try:
        with open_record_writer(
            csv_path,
            field_delimiter=field_delimiter,
            quote_char=quote_char,
            wrap_fields=wrap_fields,
        ) as writer:
            writer.write_record(HEADER_FIELDS)
            for entry in entries:
                records = _backup_entry(entry, summary, field_delimiter, wrap_fields)
                for record in records:
                    writer.write_record(record.to_fields())
    except IOFailure:
        raise
    except OSError as exc:
        raise IOFailure(f"Unable to write CSV file {csv_path}: {exc}") from exc

    logger.info(
        "Tags backup successfully written to CSV file %s (%d written, %d skipped)",
        csv_path, summary.written, len(summary.skipped),
    )
    return summary


def _backup_entry(
    entry: TagEntry,
    summary: BackupSummary,
    field_delimiter: str,
    wrap_fields: bool,
) -> List[Record]:
    path = entry.relative_path

    # Structured tag dimensions information, not a value.
    if ARRAY_DIMENSIONS_MARKER in path:
        logger.debug("Skipping array dimensions node %s", path)
        return []

    if entry.value is None:
        logger.warning("Skipping tag %s since its value is null", path)
        summary.skipped.append(path)
        return []

    try:
        records = entry_to_records(path, entry.value)
    except (TypeError, ValueError) as exc:
        logger.warning("Tag %s will be skipped: %s", path, exc)
        summary.skipped.append(path)
        return []

    problem = _unrepresentable(records, field_delimiter, wrap_fields)
    if problem:
        logger.warning("Tag %s will be skipped: %s", path, problem)
        summary.skipped.append(path)
        return []

    summary.written += 1
    return records


def _unrepresentable(
    records: List[Record], field_delimiter: str, wrap_fields: bool
) -> Optional[str]:
    """Return why *records* cannot be written losslessly, or ``None``.

    Records are single-line, and unwrapped fields cannot hold the delimiter.
    """
    for record in records:
        for field in record.to_fields():
            if '\n' in field or '\r' in field:
                return "value contains a line break"
            if not wrap_fields and field_delimiter in field:
                return (
                    f"field {field!r} contains the delimiter "
                    f"{field_delimiter!r}; enable WrapFields"
                )
    return None


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------

def restore_tag_values(
    tree: TagTree,
    csv_path: str,
    *,
    field_delimiter: str = DEFAULT_FIELD_DELIMITER,
    wrap_fields: bool = False,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    quote_char: str = DEFAULT_QUOTE_CHAR,
    ignore_malformed_lines: bool = False,
) -> RestoreSummary:
    """Restore the values stored in *csv_path* into *tree*.

    Args:
        tree:                   The parent node to restore into.
        csv_path:               Backup file to read.
        field_delimiter:        Single-character field separator; ``.`` is
                                rejected.
        wrap_fields:            Fields are quoted.
        timeout_ms:             Bound on the remote write.
        quote_char:             Quote character used when *wrap_fields* is set.
        ignore_malformed_lines: Skip malformed records instead of aborting.

    Returns:
        A :class:`RestoreSummary`; ``skipped`` lists paths that did not
        resolve against *tree*.

    Raises:
        ConfigurationError:   For a forbidden or invalid delimiter, before the
                              file is opened.
        IOFailure:            If the file is missing or unreadable.
        FormatError:          For an empty file, a bad header or a malformed
                              record.
        MalformedArrayError:  For a bad or truncated array block.
        UnsupportedTypeError: For an unknown type name.
        RemoteCallFailure:    If the batched write fails or times out.
    """
    summary = RestoreSummary(csv_path=csv_path)
    with _open_backup(
        csv_path, field_delimiter, quote_char, wrap_fields, ignore_malformed_lines
    ) as reader:
        values = prepare_values_to_write(reader, tree, summary)

    call_with_timeout(
        tree.children_remote_write, timeout_ms, values, timeout_ms,
        description=f"Remote write to {tree.browse_name}",
    )
    summary.restored = len(values)

    if summary.skipped:
        logger.warning(
            "Restore into %s: %s (paths not found: %s)",
            tree.browse_name, summary.describe(), ', '.join(summary.skipped),
        )
    logger.info(
        "Tags restored successfully to node %s (%d restored, %s)",
        tree.browse_name, summary.restored, summary.describe(),
    )
    return summary


def read_backup(
    csv_path: str,
    *,
    field_delimiter: str = DEFAULT_FIELD_DELIMITER,
    wrap_fields: bool = False,
    quote_char: str = DEFAULT_QUOTE_CHAR,
    ignore_malformed_lines: bool = False,
) -> List[TagEntry]:
    """Decode every entry of a backup file without touching a tag tree.

    Raises the same errors as :func:`restore_tag_values`, except
    :class:`RemoteCallFailure`.
    """
    summary = RestoreSummary(csv_path=csv_path)
    with _open_backup(
        csv_path, field_delimiter, quote_char, wrap_fields, ignore_malformed_lines
    ) as reader:
        return list(read_entries(reader, summary))


@contextmanager
def _open_backup(
    csv_path: str,
    field_delimiter: str,
    quote_char: str,
    wrap_fields: bool,
    ignore_malformed_lines: bool,
) -> Iterator[RecordReader]:
    """Validate options, open *csv_path* and map decode/OS errors."""
    if field_delimiter in FORBIDDEN_RESTORE_DELIMITERS:
        raise ConfigurationError(
            'CharacterSeparator',
            f"CSV separator {field_delimiter} is not supported",
        )
    _check_delimiters(field_delimiter, quote_char)

    if not os.path.isfile(csv_path):
        raise IOFailure(f"CSV file {csv_path} not found")

    try:
        with open_record_reader(
            csv_path,
            field_delimiter=field_delimiter,
            quote_char=quote_char,
            wrap_fields=wrap_fields,
            ignore_malformed_lines=ignore_malformed_lines,
        ) as reader:
            if reader.end_of_input():
                raise FormatError(f"The CSV file {csv_path} is empty")
            yield reader
    except TagBackupError:
        raise
    except UnicodeDecodeError as exc:
        raise FormatError(f"CSV file {csv_path} is not valid UTF-8: {exc}") from exc
    except OSError as exc:
        raise IOFailure(f"Unable to read CSV file {csv_path}: {exc}") from exc


def prepare_values_to_write(
    reader: RecordReader,
    tree: TagTree,
    summary: Optional[RestoreSummary] = None,
) -> List[TagEntry]:
    """Decode every record after the header into ``(path, value)`` entries.

    Entries whose path does not resolve against *tree* are left out and
    listed in ``summary.skipped``.

    Raises:
        FormatError, MalformedArrayError, UnsupportedTypeError: See
        :func:`restore_tag_values`.
    """
    if summary is None:
        summary = RestoreSummary(csv_path='')

    values: List[TagEntry] = []
    for entry in read_entries(reader, summary):
        if not tree.resolve(entry.relative_path):
            logger.info(
                "Skipping %s: not found in %s", entry.relative_path, tree.browse_name
            )
            summary.skipped.append(entry.relative_path)
            continue
        values.append(entry)
    return values


def read_entries(reader: RecordReader, summary: RestoreSummary) -> Iterator[TagEntry]:
    """Yield the decoded entries of a backup, header first checked.

    Every yielded entry is counted in ``summary.total``; errors carry the
    line they were raised on.
    """
    _read_header(reader)

    records = _iter_records(reader, summary)
    for record in records:
        try:
            entry = _decode_entry(record, records, reader, summary)
        except TagBackupError as exc:
            raise exc.locate(reader.line_number)
        if entry is None:
            continue
        summary.total += 1
        yield entry


def _read_header(reader: RecordReader) -> None:
    header = reader.read_record()
    if header is None or [field.strip() for field in header] != HEADER_FIELDS:
        raise FormatError(
            f"Expected header {HEADER_FIELDS}, found {header}",
            line=reader.line_number or 1,
        )


def _iter_records(reader: RecordReader, summary: RestoreSummary) -> Iterator[Record]:
    """Yield well-formed records; malformed lines are skipped or raise."""
    while not reader.end_of_input():
        fields = reader.read_record()
        if fields is None:
            summary.malformed_lines.append(reader.line_number)
            continue
        if len(fields) != RECORD_WIDTH:
            message = f"Expected {RECORD_WIDTH} fields, found {len(fields)}"
            if not reader.ignore_malformed_lines:
                raise FormatError(message, line=reader.line_number)
            logger.warning("Ignoring line %d: %s", reader.line_number, message)
            summary.malformed_lines.append(reader.line_number)
            continue
        yield Record.from_fields(fields)


def _decode_entry(
    record: Record,
    records: Iterator[Record],
    reader: RecordReader,
    summary: RestoreSummary,
) -> Optional[TagEntry]:
    if is_array_marker(record.index):
        dimensions = parse_array_marker(record.index)
        if element_count(dimensions) == 0:
            logger.warning(
                "Skipping empty array block %s at line %d",
                record.index, reader.line_number,
            )
            return None
        relative_path, array = reconstruct_array(dimensions, records)
        return TagEntry(relative_path, array)

    if record.index == '':
        return TagEntry(
            record.relative_path,
            data_format.decode_scalar(record.value, record.data_type),
        )

    message = f"Unexpected index {record.index!r} outside an array block"
    if not reader.ignore_malformed_lines:
        raise FormatError(message)
    logger.warning("Ignoring line %d: %s", reader.line_number, message)
    summary.malformed_lines.append(reader.line_number)
    return None
