"""
L5X Project Model - the tag containers of a Studio 5000 export.

Loads an L5X file into memory, locates the ``<Tags>`` container of the
controller or of a program, and writes the (possibly modified) project back.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional

from lxml import etree

from .schema import CONTROLLER_ROOT, PROGRAM_ROOT_PREFIX
from .utils import parse_l5x_bytes, write_l5x

logger = logging.getLogger(__name__)


class L5XProject:
    """In-memory representation of an L5X project.

    Args:
        file_path: Path to .L5X file.  If None, use :meth:`from_string` or
                   :meth:`load` to populate the model.

    Raises:
        FileNotFoundError: If *file_path* does not exist.
        ValueError: If the file is not a valid L5X document.
    """

    def __init__(self, file_path: Optional[str] = None):
        self._file_path: Optional[str] = None
        self._root: Optional[etree._Element] = None
        self._controller: Optional[etree._Element] = None

        if file_path is not None:
            self.load(file_path)

    @classmethod
    def from_string(cls, xml_text: str) -> 'L5XProject':
        """Create a project from L5X text (mostly useful in tests)."""
        instance = cls()
        instance._set_root(parse_l5x_bytes(xml_text.encode('utf-8')))
        return instance

    # ------------------------------------------------------------------
    # File I/O
    # ------------------------------------------------------------------

    def load(self, file_path: str) -> None:
        """Load an L5X file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the root element is not ``RSLogix5000Content``
                or there is no ``<Controller>``.
            etree.XMLSyntaxError: If the XML is malformed.
        """
        if not os.path.isfile(file_path):
            raise FileNotFoundError(f"L5X file not found: {file_path}")

        self._file_path = os.path.abspath(file_path)
        logger.info("Loading L5X file: %s", self._file_path)

        with open(file_path, 'rb') as fh:
            raw = fh.read()
        self._set_root(parse_l5x_bytes(raw))

    def _set_root(self, root: etree._Element) -> None:
        controller = root.find('Controller')
        if controller is None:
            raise ValueError("L5X file does not contain a <Controller> element.")
        self._root = root
        self._controller = controller
        logger.info(
            "Loaded project: %s (%s)",
            controller.get("Name", "?"),
            root.get("TargetType", "?"),
        )

    def write(self, file_path: Optional[str] = None) -> str:
        """Write the project to an L5X file.

        Args:
            file_path: Destination path.  Defaults to the file the project
                       was loaded from.

        Returns:
            The path written.

        Raises:
            RuntimeError: If no project has been loaded.
            ValueError: If no destination is known.
        """
        self._ensure_loaded()
        target = file_path or self._file_path
        if not target:
            raise ValueError("No output path given and project was not loaded from a file")
        write_l5x(self._root, target)
        logger.info("Saved project to: %s", target)
        return target

    def _ensure_loaded(self) -> None:
        if self._root is None:
            raise RuntimeError("No project loaded. Call load() first.")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def file_path(self) -> Optional[str]:
        return self._file_path

    @property
    def root(self) -> etree._Element:
        """Return the root ``RSLogix5000Content`` element."""
        self._ensure_loaded()
        return self._root

    @property
    def controller(self) -> etree._Element:
        self._ensure_loaded()
        return self._controller

    @property
    def controller_name(self) -> str:
        return self.controller.get('Name', '')

    def list_programs(self) -> List[str]:
        """Return the names of all programs in the project."""
        programs = self.controller.find('Programs')
        if programs is None:
            return []
        return [p.get('Name', '') for p in programs.findall('Program')]

    def get_program_element(self, program_name: str) -> etree._Element:
        """Return the ``<Program>`` element (case-insensitive lookup).

        Raises:
            KeyError: If the program does not exist.
        """
        programs = self.controller.find('Programs')
        if programs is not None:
            for prog in programs.findall('Program'):
                if prog.get('Name', '').lower() == program_name.lower():
                    return prog
        raise KeyError(f"Program '{program_name}' not found in project")

    def get_tags_element(self, root_path: str) -> Optional[etree._Element]:
        """Return the ``<Tags>`` container addressed by *root_path*.

        ``'Controller'`` addresses controller-scoped tags and
        ``'Program:<name>'`` the tags of one program.  Returns ``None`` if
        the path does not name an existing scope.
        """
        if root_path.lower() == CONTROLLER_ROOT.lower():
            tags = self.controller.find('Tags')
            if tags is None:
                tags = etree.SubElement(self.controller, 'Tags')
            return tags
        if root_path.lower().startswith(PROGRAM_ROOT_PREFIX.lower()):
            try:
                prog = self.get_program_element(root_path[len(PROGRAM_ROOT_PREFIX):])
            except KeyError:
                return None
            tags = prog.find('Tags')
            if tags is None:
                tags = etree.SubElement(prog, 'Tags')
            return tags
        return None

    def list_tag_roots(self) -> List[str]:
        """Return every root path accepted by :meth:`get_tags_element`."""
        return [CONTROLLER_ROOT] + [
            f'{PROGRAM_ROOT_PREFIX}{name}' for name in self.list_programs()
        ]
