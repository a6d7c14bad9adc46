"""
Tag trees: the collaborators backup and restore read from and write to.

Any object implementing :class:`TagTree` can be backed up or restored.  Two
implementations ship with the toolkit:

    InMemoryTagTree -- dictionary-backed, with optional latency and failure
                       injection; used by tests.
    L5XTagTree      -- the controller or program tags of a Studio 5000 L5X
                       export.
"""

from __future__ import annotations

import copy
import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from .models import TagEntry
from .project import L5XProject
from .tags import is_alias, read_tag_value, write_tag_value

logger = logging.getLogger(__name__)


@runtime_checkable
class TagTree(Protocol):
    """The parent node whose children are backed up or restored.

    ``children_remote_read`` and ``children_remote_write`` may block up to
    *timeout_ms*; callers additionally bound them with
    :func:`~tag_backup_toolkit.remote.call_with_timeout`.
    """

    browse_name: str

    def children_remote_read(self, timeout_ms: int) -> List[TagEntry]:
        """Return every child tag and its current value."""
        ...

    def children_remote_write(self, values: List[TagEntry], timeout_ms: int) -> None:
        """Write all *values* in one batch.  Raises on failure."""
        ...

    def resolve(self, relative_path: str) -> bool:
        """Return ``True`` if *relative_path* names a child of this node."""
        ...


class InMemoryTagTree:
    """A tag tree held in a dict of ``{relative_path: value}``.

    Args:
        browse_name:  Name used in log messages.
        tags:         Initial values; any object is accepted so that hosts
                      returning untyped or unmappable values can be mimicked.
        latency_s:    Delay applied to every remote read and write.
        read_error:   Exception raised by :meth:`children_remote_read`.
        write_error:  Exception raised by :meth:`children_remote_write`.
    """

    def __init__(
        self,
        browse_name: str = 'Root',
        tags: Optional[Dict[str, Any]] = None,
        latency_s: float = 0.0,
        read_error: Optional[Exception] = None,
        write_error: Optional[Exception] = None,
    ):
        self.browse_name = browse_name
        self.tags: Dict[str, Any] = dict(tags or {})
        self.latency_s = latency_s
        self.read_error = read_error
        self.write_error = write_error
        self.write_calls: List[List[TagEntry]] = []

    def _wait(self) -> None:
        if self.latency_s:
            time.sleep(self.latency_s)

    def children_remote_read(self, timeout_ms: int) -> List[TagEntry]:
        self._wait()
        if self.read_error is not None:
            raise self.read_error
        return [TagEntry(path, copy.deepcopy(value)) for path, value in self.tags.items()]

    def children_remote_write(self, values: List[TagEntry], timeout_ms: int) -> None:
        self._wait()
        self.write_calls.append(list(values))
        if self.write_error is not None:
            raise self.write_error
        for entry in values:
            self.tags[entry.relative_path] = entry.value

    def resolve(self, relative_path: str) -> bool:
        return relative_path in self.tags

    def declare(self, paths: Iterable[str]) -> 'InMemoryTagTree':
        """Create *paths* with no value so that a restore can resolve them."""
        for path in paths:
            self.tags.setdefault(path, None)
        return self


class L5XTagTree:
    """The controller or program tags of an L5X project as a tag tree.

    Args:
        project:   A loaded :class:`L5XProject`.
        root_path: ``'Controller'`` or ``'Program:<name>'``.

    Raises:
        KeyError: If *root_path* does not name a scope of the project.
    """

    def __init__(self, project: L5XProject, root_path: str = 'Controller'):
        tags = project.get_tags_element(root_path)
        if tags is None:
            raise KeyError(f"Tag root '{root_path}' not found in project")
        self.project = project
        self.root_path = root_path
        self.browse_name = root_path
        self._tags = tags

    @classmethod
    def from_file(cls, file_path: str, root_path: str = 'Controller') -> 'L5XTagTree':
        return cls(L5XProject(file_path), root_path)

    def _tag_elements(self):
        for tag_elem in self._tags.findall('Tag'):
            if is_alias(tag_elem):
                continue
            yield tag_elem

    def _find(self, relative_path: str):
        for tag_elem in self._tag_elements():
            if tag_elem.get('Name', '').lower() == relative_path.lower():
                return tag_elem
        return None

    def children_remote_read(self, timeout_ms: int) -> List[TagEntry]:
        entries = []
        for tag_elem in self._tag_elements():
            name = tag_elem.get('Name', '')
            try:
                value = read_tag_value(tag_elem)
            except ValueError as exc:
                # Reported as a null value so backup skips only this tag.
                logger.warning("Cannot read value of tag %s: %s", name, exc)
                value = None
            entries.append(TagEntry(name, value))
        return entries

    def children_remote_write(self, values: List[TagEntry], timeout_ms: int) -> None:
        # Every path must exist before anything is written.
        targets = []
        for entry in values:
            tag_elem = self._find(entry.relative_path)
            if tag_elem is None:
                raise KeyError(f"Tag '{entry.relative_path}' not found in {self.root_path}")
            targets.append((tag_elem, entry.value))

        for tag_elem, value in targets:
            write_tag_value(tag_elem, value)
        logger.info("Wrote %d tag values to %s", len(values), self.root_path)

    def resolve(self, relative_path: str) -> bool:
        return self._find(relative_path) is not None

    def save(self, file_path: Optional[str] = None) -> str:
        """Write the project (with restored values) back to disk."""
        return self.project.write(file_path)
