"""
Shared data models, enumerations, and typed structures for tag backups.

Provides:
- :class:`ValueType`, a ``str``-based enum whose values are the canonical type
  names written to the ``DataType`` column.  Members compare equal to plain
  strings (``ValueType.INT32 == "Int32"``).
- Dataclasses for scalar values, arrays, tag entries, records and the
  summaries returned by backup and restore.
"""

from __future__ import annotations

import logging
import math
import struct
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Tuple, Union

from .schema import INTEGER_RANGES

# ---------------------------------------------------------------------------
# Module logger
# ---------------------------------------------------------------------------
logger = logging.getLogger(__name__)


# ===================================================================
# Enumerations
# ===================================================================

class ValueType(str, Enum):
    """Closed set of scalar types a tag value may have."""
    INT8 = "Int8"
    INT16 = "Int16"
    INT32 = "Int32"
    INT64 = "Int64"
    UINT8 = "UInt8"
    UINT16 = "UInt16"
    UINT32 = "UInt32"
    UINT64 = "UInt64"
    BOOL = "Bool"
    FLOAT32 = "Float32"
    FLOAT64 = "Float64"
    STRING = "String"
    TIMESTAMP = "Timestamp"

    @property
    def is_integer(self) -> bool:
        return self.value in INTEGER_RANGES

    @property
    def is_float(self) -> bool:
        return self in (ValueType.FLOAT32, ValueType.FLOAT64)

    def __str__(self) -> str:
        return self.value


def round_to_float32(value: float) -> float:
    """Round a Python float to the nearest IEEE-754 single precision value."""
    if math.isnan(value) or math.isinf(value):
        return value
    try:
        return struct.unpack('<f', struct.pack('<f', value))[0]
    except OverflowError:
        raise ValueError(f"{value!r} is out of range for Float32") from None


def check_payload(value_type: ValueType, value: Any) -> Any:
    """Validate *value* against *value_type* and return the stored payload.

    Float32 payloads are rounded to single precision so that the stored value
    is exactly what the tag can hold.

    Raises:
        TypeError:  If the payload's Python type does not match.
        ValueError: If an integer is out of range for its width, or a
                    float does not fit in single precision.
    """
    if value_type.is_integer:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(
                f"{value_type.value} payload must be int, got {type(value).__name__}"
            )
        low, high = INTEGER_RANGES[value_type.value]
        if not low <= value <= high:
            raise ValueError(
                f"{value} is out of range for {value_type.value} [{low}, {high}]"
            )
        return value
    if value_type is ValueType.BOOL:
        if not isinstance(value, bool):
            raise TypeError(f"Bool payload must be bool, got {type(value).__name__}")
        return value
    if value_type.is_float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(
                f"{value_type.value} payload must be float, got {type(value).__name__}"
            )
        value = float(value)
        if value_type is ValueType.FLOAT32:
            return round_to_float32(value)
        return value
    if value_type is ValueType.STRING:
        if not isinstance(value, str):
            raise TypeError(f"String payload must be str, got {type(value).__name__}")
        return value
    if value_type is ValueType.TIMESTAMP:
        if not isinstance(value, datetime):
            raise TypeError(
                f"Timestamp payload must be datetime, got {type(value).__name__}"
            )
        return value
    raise TypeError(f"Unknown value type {value_type!r}")


# ===================================================================
# Dataclasses
# ===================================================================

@dataclass(frozen=True)
class ScalarValue:
    """A single typed value.  The payload always matches ``value_type``."""
    value_type: ValueType
    value: Any

    def __post_init__(self):
        value_type = ValueType(self.value_type)
        object.__setattr__(self, 'value_type', value_type)
        object.__setattr__(self, 'value', check_payload(value_type, self.value))


@dataclass
class TagArray:
    """A one- or two-dimensional array stored in row-major order.

    Higher ranks can be constructed (a host may hand one over) but cannot be
    backed up.
    """
    element_type: ValueType
    dimensions: Tuple[int, ...]
    elements: List[Any] = field(default_factory=list)

    def __post_init__(self):
        self.element_type = ValueType(self.element_type)
        self.dimensions = tuple(int(d) for d in self.dimensions)
        if not self.dimensions:
            raise ValueError("An array needs at least one dimension")
        if any(d < 0 for d in self.dimensions):
            raise ValueError(f"Negative array dimension in {self.dimensions}")
        expected = math.prod(self.dimensions)
        if len(self.elements) != expected:
            raise ValueError(
                f"Array with dimensions {self.dimensions} needs {expected} "
                f"elements, got {len(self.elements)}"
            )
        self.elements = [check_payload(self.element_type, e) for e in self.elements]

    @property
    def rank(self) -> int:
        return len(self.dimensions)

    @classmethod
    def from_nested(cls, element_type: ValueType, values: list) -> 'TagArray':
        """Build an array from nested lists (``[[1, 2], [3, 4]]`` is 2x2).

        The nesting must be rectangular.
        """
        dimensions: List[int] = []
        probe: Any = values
        while isinstance(probe, (list, tuple)):
            dimensions.append(len(probe))
            if not probe:
                break
            probe = probe[0]

        flat: List[Any] = []

        def _walk(node, depth):
            if len(node) != dimensions[depth]:
                raise ValueError("Nested array values are not rectangular")
            for item in node:
                if depth + 1 < len(dimensions):
                    if not isinstance(item, (list, tuple)):
                        raise ValueError("Nested array values are not rectangular")
                    _walk(item, depth + 1)
                else:
                    flat.append(item)

        _walk(values, 0)
        return cls(element_type, tuple(dimensions), flat)

    def to_nested(self) -> list:
        """Return the elements as nested lists following ``dimensions``."""
        def _build(offset: int, depth: int) -> Tuple[list, int]:
            if depth == self.rank - 1:
                size = self.dimensions[depth]
                return list(self.elements[offset:offset + size]), offset + size
            result = []
            for _ in range(self.dimensions[depth]):
                row, offset = _build(offset, depth + 1)
                result.append(row)
            return result, offset

        return _build(0, 0)[0]


TagValue = Union[ScalarValue, TagArray]


@dataclass
class TagEntry:
    """One child of the backup root: a relative path and its value.

    ``value`` is normally a :class:`ScalarValue` or :class:`TagArray`; a host
    may also hand over ``None`` or an object that has no type mapping.
    """
    relative_path: str
    value: Any = None


@dataclass(frozen=True)
class Record:
    """One line of a backup file."""
    index: str = ''
    relative_path: str = ''
    value: str = ''
    data_type: str = ''

    def to_fields(self) -> List[str]:
        return [self.index, self.relative_path, self.value, self.data_type]

    @classmethod
    def from_fields(cls, fields: List[str]) -> 'Record':
        return cls(*fields[:4])


@dataclass
class BackupSummary:
    """Result of a backup run."""
    csv_path: str
    written: int = 0
    skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "csv_path": self.csv_path,
            "written": self.written,
            "skipped": list(self.skipped),
        }


@dataclass
class RestoreSummary:
    """Result of a restore run.

    ``skipped`` lists the paths that did not resolve against the target tree.
    """
    csv_path: str
    total: int = 0
    restored: int = 0
    skipped: List[str] = field(default_factory=list)
    malformed_lines: List[int] = field(default_factory=list)

    def describe(self) -> str:
        return f"{len(self.skipped)} of {self.total} entries skipped"

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "csv_path": self.csv_path,
            "total": self.total,
            "restored": self.restored,
            "skipped": list(self.skipped),
        }
        if self.malformed_lines:
            d["malformed_lines"] = list(self.malformed_lines)
        return d


def values_equal(left: Optional[TagValue], right: Optional[TagValue]) -> bool:
    """Compare two tag values, treating NaN as equal to NaN."""
    if isinstance(left, TagArray) and isinstance(right, TagArray):
        return (
            left.element_type == right.element_type
            and left.dimensions == right.dimensions
            and all(_same(a, b) for a, b in zip(left.elements, right.elements))
        )
    if isinstance(left, ScalarValue) and isinstance(right, ScalarValue):
        return left.value_type == right.value_type and _same(left.value, right.value)
    return left == right


def _same(a: Any, b: Any) -> bool:
    if isinstance(a, float) and isinstance(b, float) and math.isnan(a) and math.isnan(b):
        return True
    return a == b
