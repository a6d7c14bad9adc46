"""
Tag value access for L5X (Rockwell Automation PLC) exports.

Each tag is an XML ``<Tag>`` element holding its value twice:

  - ``<Data Format="L5K">``: compact text (``42``, ``[1,2,3]``)
  - ``<Data Format="Decorated">``: verbose XML
    (``<DataValue DataType="DINT" Value="42"/>`` or
    ``<Array DataType="DINT" Dimensions="3"><Element Index="[0]" .../>``)

Values are read from the Decorated form and written to both forms, keeping
them in sync as Studio 5000 requires.  Atomic tags and arrays of atomic
types map to :class:`ScalarValue` / :class:`TagArray`; structured tags are
returned as plain dicts, which have no type mapping.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from lxml import etree

from . import data_format
from .models import ScalarValue, TagArray, TagValue
from .schema import LOGIX_DEFAULT_RADIX
from .utils import parse_dimensions, parse_element_index

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _find_data(tag_elem: etree._Element, fmt: str) -> Optional[etree._Element]:
    for data_elem in tag_elem.findall('Data'):
        if data_elem.get('Format', '') == fmt:
            return data_elem
    return None


def _decorated_payload(tag_elem: etree._Element) -> Optional[etree._Element]:
    """Return the first child of ``<Data Format="Decorated">``."""
    decorated = _find_data(tag_elem, 'Decorated')
    if decorated is None or len(decorated) == 0:
        return None
    return decorated[0]


def _sorted_elements(array_elem: etree._Element) -> List[etree._Element]:
    """Return ``<Element>`` children in row-major order of their Index."""
    return sorted(
        array_elem.findall('Element'),
        key=lambda e: parse_element_index(e.get('Index', '[0]')),
    )


def _structure_to_dict(element: etree._Element) -> Dict[str, Any]:
    """Flatten a ``<Structure>`` into ``{member: raw value}`` (for reporting)."""
    result: Dict[str, Any] = {}
    for member in element:
        name = member.get('Name')
        if name is None:
            continue
        if member.tag == 'DataValueMember':
            result[name] = member.get('Value', (member.text or '').strip())
        else:
            result[name] = _structure_to_dict(member)
    return result


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

def is_alias(tag_elem: etree._Element) -> bool:
    """Return ``True`` for alias tags, which have no value of their own."""
    return tag_elem.get('TagType', 'Base') == 'Alias'


def read_tag_value(tag_elem: etree._Element) -> Any:
    """Return the value of a ``<Tag>`` element.

    Returns:
        A :class:`ScalarValue` for atomic tags, a :class:`TagArray` for
        arrays of atomic types, ``None`` when the tag carries no Decorated
        data, and a dict (or list of dicts) for structured values.

    Raises:
        ValueError: If an atomic value cannot be parsed.
    """
    payload = _decorated_payload(tag_elem)
    if payload is None:
        return None

    if payload.tag == 'DataValue':
        data_type = payload.get('DataType', tag_elem.get('DataType', ''))
        value_type = data_format.logix_value_type(data_type)
        if value_type is None:
            return {'DataType': data_type, 'Value': payload.get('Value', '')}
        return ScalarValue(
            value_type,
            data_format.parse_decorated_value(data_type, payload.get('Value', '')),
        )

    if payload.tag == 'Array':
        data_type = payload.get('DataType', tag_elem.get('DataType', ''))
        dimensions = parse_dimensions(
            payload.get('Dimensions', tag_elem.get('Dimensions', '0'))
        )
        elements = _sorted_elements(payload)
        value_type = data_format.logix_value_type(data_type)
        if value_type is None:
            return [
                _structure_to_dict(e[0]) if len(e) else e.get('Value', '')
                for e in elements
            ]
        return TagArray(
            value_type,
            tuple(dimensions),
            [data_format.parse_decorated_value(data_type, e.get('Value', ''))
             for e in elements],
        )

    if payload.tag == 'Structure':
        return _structure_to_dict(payload)

    return None


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------

def write_tag_value(tag_elem: etree._Element, value: TagValue) -> None:
    """Set the value of an atomic or array-of-atomic ``<Tag>`` element.

    Updates both the Decorated and the L5K representations.

    Raises:
        ValueError: If the tag is structured, or its data type or shape does
            not match *value*.
    """
    name = tag_elem.get('Name', '?')
    data_type = tag_elem.get('DataType', '')
    expected = data_format.logix_value_type(data_type)
    if expected is None:
        raise ValueError(
            f"Tag '{name}' is a structured type '{data_type}' and cannot be restored"
        )

    if isinstance(value, TagArray):
        _write_array(tag_elem, name, data_type, value)
    elif isinstance(value, ScalarValue):
        _write_scalar(tag_elem, name, data_type, value)
    else:
        raise ValueError(f"Cannot write {type(value).__name__} to tag '{name}'")


def _check_type(name: str, data_type: str, value_type) -> None:
    expected = data_format.logix_value_type(data_type)
    if expected != value_type:
        raise ValueError(
            f"Tag '{name}' is {data_type}; cannot restore a {value_type.value} value"
        )


def _write_scalar(tag_elem, name: str, data_type: str, value: ScalarValue) -> None:
    if tag_elem.get('Dimensions'):
        raise ValueError(f"Tag '{name}' is an array; cannot restore a scalar value")
    _check_type(name, data_type, value.value_type)

    decorated = _find_data(tag_elem, 'Decorated')
    if decorated is None:
        decorated = etree.SubElement(tag_elem, 'Data', Format='Decorated')
    data_value = decorated.find('DataValue')
    if data_value is None:
        data_value = etree.SubElement(decorated, 'DataValue')
        data_value.set('DataType', data_type)
        data_value.set('Radix', LOGIX_DEFAULT_RADIX[data_type.upper()])
    data_value.set('Value', data_format.format_decorated_value(data_type, value.value))

    _set_l5k(tag_elem, data_format.format_l5k_value(data_type, value.value))
    logger.debug("Wrote %s = %r", name, value.value)


def _write_array(tag_elem, name: str, data_type: str, value: TagArray) -> None:
    _check_type(name, data_type, value.element_type)
    payload = _decorated_payload(tag_elem)
    if payload is None or payload.tag != 'Array':
        raise ValueError(f"Tag '{name}' is not an array; cannot restore an array value")

    dimensions = tuple(parse_dimensions(
        payload.get('Dimensions', tag_elem.get('Dimensions', '0'))
    ))
    if dimensions != value.dimensions:
        raise ValueError(
            f"Tag '{name}' has dimensions {dimensions}; backup has {value.dimensions}"
        )

    elements = _sorted_elements(payload)
    if len(elements) != len(value.elements):
        raise ValueError(
            f"Tag '{name}' holds {len(elements)} elements; backup has {len(value.elements)}"
        )

    for elem, element_value in zip(elements, value.elements):
        elem.set('Value', data_format.format_decorated_value(data_type, element_value))

    _set_l5k(tag_elem, '[' + ','.join(
        data_format.format_l5k_value(data_type, v) for v in value.elements
    ) + ']')
    logger.debug("Wrote %s[%d elements]", name, len(value.elements))


def _set_l5k(tag_elem: etree._Element, text: str) -> None:
    l5k = _find_data(tag_elem, 'L5K')
    if l5k is not None:
        l5k.text = etree.CDATA(text)
