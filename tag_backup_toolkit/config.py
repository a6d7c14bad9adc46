"""
Backup/restore options.

Options are normally read from the variables of the logic object that owns
the operation:

    ParentNode          -- the tag root to back up or restore (required)
    CSVPath             -- path or ``file://`` URI of the backup file (required)
    CharacterSeparator  -- single-character field delimiter (required)
    WrapFields          -- quote every field (required)
    Timeout             -- remote read/write bound in milliseconds (required)

The same names, upper-cased and prefixed with ``TAG_BACKUP_``, are read by
:meth:`BackupOptions.from_env`.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigurationError
from .schema import DEFAULT_QUOTE_CHAR, DEFAULT_TIMEOUT_MS
from .utils import normalize_path

logger = logging.getLogger(__name__)

ENV_PREFIX = 'TAG_BACKUP_'

# Variable name -> environment suffix
_ENV_NAMES = {
    'ParentNode': 'PARENT_NODE',
    'CSVPath': 'CSV_PATH',
    'CharacterSeparator': 'CHARACTER_SEPARATOR',
    'WrapFields': 'WRAP_FIELDS',
    'Timeout': 'TIMEOUT',
}

_TRUE_STRINGS = {'1', 'true', 'yes', 'on'}
_FALSE_STRINGS = {'0', 'false', 'no', 'off', ''}


@dataclass(frozen=True)
class BackupOptions:
    """Validated settings for one backup or restore."""

    parent_node: str
    csv_path: str
    field_delimiter: str
    wrap_fields: bool = False
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    quote_char: str = DEFAULT_QUOTE_CHAR

    @classmethod
    def from_variables(cls, variables: Mapping[str, Any]) -> 'BackupOptions':
        """Build options from a mapping of logic-object variables.

        Raises:
            ConfigurationError: If a required variable is missing or a value
                is invalid.
        """
        parent_node = _required(variables, 'ParentNode')
        csv_path = _required(variables, 'CSVPath')
        if not str(csv_path).strip():
            raise ConfigurationError(
                'CSVPath', "No CSV file chosen, please fill the CSVPath variable"
            )

        options = cls(
            parent_node=str(parent_node),
            csv_path=normalize_path(str(csv_path)),
            field_delimiter=parse_separator(_required(variables, 'CharacterSeparator')),
            wrap_fields=parse_bool('WrapFields', _required(variables, 'WrapFields')),
            timeout_ms=parse_timeout(_required(variables, 'Timeout')),
        )
        logger.debug("Loaded options: %s", options)
        return options

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = ENV_PREFIX,
    ) -> 'BackupOptions':
        """Build options from ``TAG_BACKUP_*`` environment variables."""
        if environ is None:
            environ = os.environ
        variables: Dict[str, Any] = {}
        for name, suffix in _ENV_NAMES.items():
            if prefix + suffix in environ:
                variables[name] = environ[prefix + suffix]
        return cls.from_variables(variables)

    def codec_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments shared by backup and restore."""
        return {
            'field_delimiter': self.field_delimiter,
            'wrap_fields': self.wrap_fields,
            'timeout_ms': self.timeout_ms,
            'quote_char': self.quote_char,
        }


def _required(variables: Mapping[str, Any], name: str) -> Any:
    value = variables.get(name)
    if value is None:
        raise ConfigurationError(name, f"{name} variable not found")
    return value


def parse_separator(value: Any) -> str:
    """Return *value* as a single-character delimiter."""
    separator = str(value)
    if len(separator) != 1:
        raise ConfigurationError(
            'CharacterSeparator',
            "Wrong CharacterSeparator configuration. Please insert a char",
        )
    return separator


def parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ConfigurationError(name, f"Expected a boolean, got {value!r}")


def parse_timeout(value: Any) -> int:
    """Return *value* as a positive number of milliseconds."""
    if isinstance(value, bool):
        raise ConfigurationError('Timeout', f"Expected milliseconds, got {value!r}")
    try:
        timeout = int(str(value).strip()) if not isinstance(value, int) else value
    except ValueError:
        raise ConfigurationError(
            'Timeout', f"Expected milliseconds, got {value!r}"
        ) from None
    if timeout <= 0:
        raise ConfigurationError('Timeout', f"Must be positive, got {timeout}")
    return timeout
