"""
Array Transcoder: array-valued tags <-> blocks of backup records.

An array is written as a marker record followed by one data record per
element, in row-major order::

    ARRAY:2x3,,,
    0.0,Line.Matrix,1,Int32
    0.1,Line.Matrix,2,Int32
    0.2,Line.Matrix,3,Int32
    1.0,Line.Matrix,4,Int32
    1.1,Line.Matrix,5,Int32
    1.2,Line.Matrix,6,Int32

Rank-1 markers carry ``ARRAY:<rows>`` and their data rows are indexed
``0``, ``1``, ...  All elements of one array share the type named by the
first data record.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Iterator, List, Tuple

from .data_format import format_value, parse_value, type_name, value_type_from_name
from .errors import MalformedArrayError, UnsupportedRankError
from .models import Record, TagArray
from .schema import (
    ARRAY_DIMENSION_SEPARATOR,
    ARRAY_INDEX_SEPARATOR,
    ARRAY_MARKER_PREFIX,
)

logger = logging.getLogger(__name__)

SUPPORTED_RANKS = (1, 2)

_DIMENSION_RE = re.compile(r'^\d+$')


def is_array_marker(index: str) -> bool:
    """Return ``True`` if an ``Index`` field starts an array block."""
    return index.startswith(ARRAY_MARKER_PREFIX)


def element_count(dimensions: Tuple[int, ...]) -> int:
    return math.prod(dimensions)


def format_marker(dimensions: Tuple[int, ...]) -> str:
    """Return the ``Index`` text of a marker record, e.g. ``ARRAY:2x3``."""
    return ARRAY_MARKER_PREFIX + ARRAY_DIMENSION_SEPARATOR.join(
        str(d) for d in dimensions
    )


def format_element_index(position: int, dimensions: Tuple[int, ...]) -> str:
    """Return the ``Index`` text for the element at flat *position*."""
    if len(dimensions) == 1:
        return str(position)
    row, column = divmod(position, dimensions[1])
    return f'{row}{ARRAY_INDEX_SEPARATOR}{column}'


def parse_array_marker(index: str) -> Tuple[int, ...]:
    """Parse a marker's dimension suffix.

    Args:
        index: The ``Index`` field, e.g. ``'ARRAY:3'`` or ``'ARRAY:2x4'``.

    Returns:
        ``(rows,)`` or ``(rows, columns)``.

    Raises:
        MalformedArrayError: If the suffix is not one or two non-negative
            integers separated by ``x``.
    """
    if not is_array_marker(index):
        raise MalformedArrayError(f"{index!r} is not an array marker")
    parts = index[len(ARRAY_MARKER_PREFIX):].split(ARRAY_DIMENSION_SEPARATOR)
    if len(parts) not in SUPPORTED_RANKS or not all(_DIMENSION_RE.match(p) for p in parts):
        raise MalformedArrayError(f"Malformed array dimensions {index!r}")
    return tuple(int(p) for p in parts)


def flatten_array(relative_path: str, array: TagArray) -> List[Record]:
    """Return the marker record and data records for *array*.

    Raises:
        UnsupportedRankError: If the array is not one- or two-dimensional.
            Nothing is produced in that case.
    """
    if array.rank not in SUPPORTED_RANKS:
        raise UnsupportedRankError(array.rank)

    data_type = type_name(array.element_type)
    records = [Record(index=format_marker(array.dimensions))]
    for position, element in enumerate(array.elements):
        records.append(Record(
            index=format_element_index(position, array.dimensions),
            relative_path=relative_path,
            value=format_value(element, array.element_type),
            data_type=data_type,
        ))
    return records


def reconstruct_array(
    dimensions: Tuple[int, ...],
    records: Iterator[Record],
) -> Tuple[str, TagArray]:
    """Rebuild an array from the data records that follow its marker.

    Exactly ``element_count(dimensions)`` records are consumed from
    *records*.

    Args:
        dimensions: The parsed marker dimensions.
        records:    Iterator positioned just after the marker.

    Returns:
        ``(relative_path, array)``.

    Raises:
        MalformedArrayError:  If the block is empty, truncated, out of order,
            or mixes paths.
        UnsupportedTypeError: If the first record names an unknown type.
        ValueParseError:      If an element value is invalid.
    """
    count = element_count(dimensions)
    if count == 0:
        raise MalformedArrayError(
            f"Array block {format_marker(dimensions)} has no elements"
        )

    first = next(records, None)
    if first is None:
        raise MalformedArrayError(
            f"Array block {format_marker(dimensions)} is truncated: "
            f"expected {count} elements, found 0"
        )
    relative_path = first.relative_path
    element_type = value_type_from_name(first.data_type)

    elements = []
    record = first
    for position in range(count):
        if position:
            record = next(records, None)
            if record is None:
                raise MalformedArrayError(
                    f"Array block for {relative_path!r} is truncated: "
                    f"expected {count} elements, found {position}"
                )
        expected_index = format_element_index(position, dimensions)
        if record.index != expected_index:
            raise MalformedArrayError(
                f"Array block for {relative_path!r}: expected element "
                f"{expected_index!r}, found index {record.index!r}"
            )
        if record.relative_path != relative_path:
            raise MalformedArrayError(
                f"Array block for {relative_path!r} is interleaved with "
                f"{record.relative_path!r}"
            )
        elements.append(parse_value(record.value, element_type))

    logger.debug("Reconstructed %s array %r", format_marker(dimensions), relative_path)
    return relative_path, TagArray(element_type, dimensions, elements)
