"""
Typed Value Codec for tag backups.

Every scalar written to a backup file is stored as a pair of strings: the
value text and the canonical type name.  The formatting rules below are
chosen so that parsing the text back yields exactly the original value:

    Float32:   9 significant digits   ``3.14159274``
    Float64:   17 significant digits  ``3.1415926535897931``
    Timestamp: UTC, ISO-8601 with seven fractional digits
               ``2024-05-01T12:30:00.1234560Z``
    Bool:      ``True`` / ``False``
    Others:    canonical ``str()`` form

All formatting is locale-invariant (Python's ``format`` never consults the
locale).

The second half of the module converts between the same native values and
the Logix representations found in L5X exports (Decorated ``Value``
attributes and L5K text), for the L5X tag tree adapter.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Tuple

from .errors import UnmappedTypeError, UnsupportedTypeError, ValueParseError
from .models import ScalarValue, TagArray, ValueType, round_to_float32
from .schema import (
    FLOAT_NAN,
    FLOAT_NEGATIVE_INFINITY,
    FLOAT_POSITIVE_INFINITY,
    FLOAT_SIGNIFICANT_DIGITS,
    INTEGER_RANGES,
    LOGIX_TYPE_MAP,
    TYPE_NAME_ALIASES,
)


# ---------------------------------------------------------------------------
# Type names
# ---------------------------------------------------------------------------

_NAME_TO_TYPE = {vt.value: vt for vt in ValueType}
_TYPE_TO_NAME = {vt: vt.value for vt in ValueType}


def type_name(value_type: ValueType) -> str:
    """Return the canonical type name written to the ``DataType`` column."""
    return _TYPE_TO_NAME[ValueType(value_type)]


def value_type_from_name(name: str) -> ValueType:
    """Resolve a ``DataType`` column entry to a :class:`ValueType`.

    Canonical names and the legacy aliases in
    :data:`~tag_backup_toolkit.schema.TYPE_NAME_ALIASES` are accepted.

    Raises:
        UnsupportedTypeError: If *name* is not a known type name.
    """
    key = name.strip()
    key = TYPE_NAME_ALIASES.get(key, key)
    try:
        return _NAME_TO_TYPE[key]
    except KeyError:
        raise UnsupportedTypeError(name) from None


def infer_value_type(obj: Any) -> ValueType:
    """Pick a :class:`ValueType` for a host value that carries no type tag.

    Raises:
        UnmappedTypeError: If the Python type has no canonical type name.
    """
    # bool is a subclass of int; check it first.
    if isinstance(obj, bool):
        return ValueType.BOOL
    if isinstance(obj, int):
        return ValueType.INT64
    if isinstance(obj, float):
        return ValueType.FLOAT64
    if isinstance(obj, str):
        return ValueType.STRING
    if isinstance(obj, datetime):
        return ValueType.TIMESTAMP
    raise UnmappedTypeError(type(obj))


def coerce_tag_value(obj: Any):
    """Return *obj* as a :class:`ScalarValue` or :class:`TagArray`.

    Typed values pass through untouched.  Plain Python scalars get their type
    from :func:`infer_value_type`; (nested) lists become arrays typed after
    their first element.

    Raises:
        UnmappedTypeError: If no type can be assigned.
    """
    if isinstance(obj, (ScalarValue, TagArray)):
        return obj
    if isinstance(obj, (list, tuple)):
        probe: Any = obj
        while isinstance(probe, (list, tuple)):
            if not probe:
                raise UnmappedTypeError(type(obj))
            probe = probe[0]
        return TagArray.from_nested(infer_value_type(probe), list(obj))
    return ScalarValue(infer_value_type(obj), obj)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def format_value(value: Any, value_type: ValueType) -> str:
    """Convert a native value to its backup text.

    Args:
        value:      The native value (already validated for *value_type*).
        value_type: The value's type.

    Returns:
        The text written to the ``Value`` column.

    Raises:
        ValueError: If a timestamp falls outside the UTC range.
    """
    value_type = ValueType(value_type)
    if value_type.is_float:
        return _format_float(float(value), FLOAT_SIGNIFICANT_DIGITS[value_type.value])
    if value_type is ValueType.TIMESTAMP:
        return _format_timestamp(value)
    if value_type is ValueType.BOOL:
        return 'True' if value else 'False'
    if value_type.is_integer:
        return str(int(value))
    return str(value)


def encode_scalar(scalar: ScalarValue) -> Tuple[str, str]:
    """Return ``(value_text, type_name)`` for a typed scalar."""
    return format_value(scalar.value, scalar.value_type), type_name(scalar.value_type)


def _format_float(value: float, digits: int) -> str:
    if math.isnan(value):
        return FLOAT_NAN
    if math.isinf(value):
        return FLOAT_POSITIVE_INFINITY if value > 0 else FLOAT_NEGATIVE_INFINITY
    return format(value, f'.{digits}g')


def _format_timestamp(value: datetime) -> str:
    """Format as ``YYYY-MM-DDTHH:MM:SS.fffffffZ`` in UTC.

    Naive datetimes are taken to be local time, as the host runtime does.
    Python keeps microseconds, so the seventh fractional digit is always 0.
    """
    try:
        utc = value.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        raise ValueError(f"{value!r} cannot be expressed in UTC") from None
    return (
        f'{utc.year:04d}-{utc.month:02d}-{utc.day:02d}'
        f'T{utc.hour:02d}:{utc.minute:02d}:{utc.second:02d}'
        f'.{utc.microsecond:06d}0Z'
    )


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

_INTEGER_RE = re.compile(r'^\s*[+-]?\d+\s*$')
_FLOAT_RE = re.compile(
    r'^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?\s*$'
)
_TIMESTAMP_RE = re.compile(
    r'^\s*(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})'
    r'(?:\.(\d{1,7}))?'
    r'(Z|[+-]\d{2}:\d{2})?\s*$'
)
_SPECIAL_FLOATS = {
    FLOAT_NAN.lower(): math.nan,
    FLOAT_POSITIVE_INFINITY.lower(): math.inf,
    FLOAT_NEGATIVE_INFINITY.lower(): -math.inf,
    '+infinity': math.inf,
    'nan': math.nan,
    'inf': math.inf,
    '+inf': math.inf,
    '-inf': -math.inf,
}


def parse_value(text: str, value_type: ValueType) -> Any:
    """Parse backup text back into a native value.

    Args:
        text:       The ``Value`` column text.
        value_type: The type to parse as.

    Returns:
        An ``int``, ``bool``, ``float``, ``str`` or UTC ``datetime``.

    Raises:
        ValueParseError:      If *text* is not valid for *value_type*.
        UnsupportedTypeError: If *value_type* has no parser.
    """
    try:
        value_type = ValueType(value_type)
    except ValueError:
        raise UnsupportedTypeError(str(value_type), text) from None

    if value_type.is_integer:
        return _parse_integer(text, value_type)
    if value_type is ValueType.BOOL:
        return _parse_bool(text)
    if value_type.is_float:
        result = _parse_float(text, value_type)
        if value_type is ValueType.FLOAT32:
            try:
                return round_to_float32(result)
            except ValueError:
                raise ValueParseError(
                    value_type.value, text, 'out of range for Float32'
                ) from None
        return result
    if value_type is ValueType.STRING:
        return text
    if value_type is ValueType.TIMESTAMP:
        return _parse_timestamp(text)
    raise UnsupportedTypeError(value_type.value, text)


def decode_scalar(text: str, data_type: str) -> ScalarValue:
    """Build a :class:`ScalarValue` from a ``Value`` / ``DataType`` pair."""
    value_type = value_type_from_name(data_type)
    return ScalarValue(value_type, parse_value(text, value_type))


def _parse_integer(text: str, value_type: ValueType) -> int:
    if not _INTEGER_RE.match(text):
        raise ValueParseError(value_type.value, text, 'not an integer')
    result = int(text.strip())
    low, high = INTEGER_RANGES[value_type.value]
    if not low <= result <= high:
        raise ValueParseError(value_type.value, text, f'outside [{low}, {high}]')
    return result


def _parse_bool(text: str) -> bool:
    lowered = text.strip().lower()
    if lowered == 'true':
        return True
    if lowered == 'false':
        return False
    raise ValueParseError(ValueType.BOOL.value, text, "expected 'True' or 'False'")


def _parse_float(text: str, value_type: ValueType) -> float:
    special = _SPECIAL_FLOATS.get(text.strip().lower())
    if special is not None:
        return special
    if not _FLOAT_RE.match(text):
        raise ValueParseError(value_type.value, text, 'not a number')
    return float(text.strip())


def _parse_timestamp(text: str) -> datetime:
    match = _TIMESTAMP_RE.match(text)
    if match is None:
        raise ValueParseError(ValueType.TIMESTAMP.value, text, 'not an ISO-8601 timestamp')
    year, month, day, hour, minute, second, fraction, offset = match.groups()
    # Seven digits are 100 ns ticks; Python resolves microseconds.
    microsecond = int((fraction or '').ljust(6, '0')[:6])
    try:
        parsed = datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second), microsecond,
            tzinfo=_parse_offset(offset),
        ).astimezone(timezone.utc)
    except (ValueError, OverflowError) as exc:
        raise ValueParseError(ValueType.TIMESTAMP.value, text, str(exc)) from None
    return parsed


def _parse_offset(offset: Optional[str]) -> timezone:
    # No designator: the value was written as UTC.
    if offset is None or offset == 'Z':
        return timezone.utc
    sign = -1 if offset[0] == '-' else 1
    hours, minutes = offset[1:].split(':')
    return timezone(sign * timedelta(hours=int(hours), minutes=int(minutes)))


# ---------------------------------------------------------------------------
# Logix representations (L5X exports)
# ---------------------------------------------------------------------------

_LOGIX_FROM_TYPE = {ValueType(v): k for k, v in LOGIX_TYPE_MAP.items()}

_LOGIX_INTEGER_BITS = {
    'SINT': (8, True), 'INT': (16, True), 'DINT': (32, True), 'LINT': (64, True),
    'USINT': (8, False), 'UINT': (16, False), 'UDINT': (32, False),
    'ULINT': (64, False),
}


def logix_value_type(data_type: str) -> Optional[ValueType]:
    """Return the :class:`ValueType` of a Logix atomic type, or ``None``."""
    name = LOGIX_TYPE_MAP.get(data_type.upper())
    return ValueType(name) if name else None


def logix_data_type(value_type: ValueType) -> Optional[str]:
    """Return the Logix atomic type name for *value_type*, or ``None``."""
    return _LOGIX_FROM_TYPE.get(ValueType(value_type))


def parse_decorated_value(data_type: str, text: str) -> Any:
    """Convert a Decorated ``Value`` attribute into a native value.

    Handles the radix prefixes Studio 5000 uses for integers
    (``16#00ff``, ``8#17``, ``2#0000_0001``).

    Raises:
        ValueError: If *data_type* is not atomic or *text* is invalid.
    """
    data_type = data_type.upper()
    if data_type == 'BOOL':
        return _parse_logix_integer(text or '0', 1, False) != 0
    if data_type in _LOGIX_INTEGER_BITS:
        bits, signed = _LOGIX_INTEGER_BITS[data_type]
        return _parse_logix_integer(text or '0', bits, signed)
    if data_type == 'REAL':
        return round_to_float32(_parse_logix_float(text))
    if data_type == 'LREAL':
        return _parse_logix_float(text)
    raise ValueError(f"Unsupported data type for Decorated conversion: {data_type}")


def _parse_logix_integer(text: str, bits: int, signed: bool) -> int:
    text = text.strip()
    if '#' in text:
        base, digits = text.split('#', 1)
        raw = int(digits.replace('_', ''), int(base))
        if signed and raw >= 1 << (bits - 1):
            raw -= 1 << bits
        return raw
    return int(text)


def _parse_logix_float(text: str) -> float:
    text = (text or '0').strip()
    special = _SPECIAL_FLOATS.get(text.lower())
    if special is not None:
        return special
    if text.startswith('1.#'):
        # Studio 5000 spells non-finite values 1.#QNAN, 1.#INF, -1.#INF.
        return math.nan if 'NAN' in text.upper() else math.inf
    if text.startswith('-1.#'):
        return -math.inf
    return float(text)


def format_decorated_value(data_type: str, value: Any) -> str:
    """Convert a native value to the Decorated ``Value`` attribute string.

    Raises:
        ValueError: If *data_type* is not a supported atomic type.
    """
    data_type = data_type.upper()
    if data_type in ('REAL', 'LREAL'):
        fval = float(value)
        if fval == 0.0:
            return '0.0'
        if math.isnan(fval) or math.isinf(fval):
            return _format_float(fval, 9)
        formatted = format(fval, '.9g') if data_type == 'REAL' else repr(fval)
        if '.' not in formatted and 'e' not in formatted.lower():
            formatted += '.0'
        return formatted
    if data_type == 'BOOL':
        return '1' if value else '0'
    if data_type in _LOGIX_INTEGER_BITS:
        return str(int(value))
    raise ValueError(f"Unsupported data type for Decorated conversion: {data_type}")


def format_l5k_value(data_type: str, value: Any) -> str:
    """Convert a native value to its L5K text.

    Raises:
        ValueError: If *data_type* is not a supported atomic type.
    """
    data_type = data_type.upper()
    if data_type == 'REAL':
        return _float_to_l5k(float(value), 8)
    if data_type == 'LREAL':
        return _float_to_l5k(float(value), 16)
    if data_type == 'BOOL':
        return '1' if value else '0'
    if data_type in _LOGIX_INTEGER_BITS:
        return str(int(value))
    raise ValueError(f"Unsupported scalar data type for L5K conversion: {data_type}")


def _float_to_l5k(value: float, decimals: int) -> str:
    """Format a float in the L5K scientific notation style.

    Studio 5000 expects ``X.XXXXXXXXe+NNN``: a fixed number of decimal places
    and a 3-digit exponent with explicit sign.

    Examples:
        >>> _float_to_l5k(0.0, 8)
        '0.00000000e+000'
        >>> _float_to_l5k(41.94, 8)
        '4.19400000e+001'
    """
    if math.isnan(value):
        return '1.#QNAN'
    if math.isinf(value):
        return '1.#INF' if value > 0 else '-1.#INF'
    if value == 0.0:
        return '0.' + '0' * decimals + 'e+000'

    sign = ''
    if value < 0:
        sign = '-'
        value = -value

    formatted = f'{value:.{decimals}e}'
    mantissa, exp_part = formatted.split('e')
    exp_sign = '+' if int(exp_part) >= 0 else '-'
    exp_val = abs(int(exp_part))
    return f'{sign}{mantissa}e{exp_sign}{exp_val:03d}'
