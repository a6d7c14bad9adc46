"""
MCP Server for the Tag Backup Toolkit.

Exposes backup and restore of L5X tag values via the Model Context Protocol,
so an MCP-compatible client can snapshot the controller or program tags of a
Studio 5000 export to a delimited text file and write them back later.

Usage:
    python -m tag_backup_toolkit.mcp_server
    # or
    tag-backup-mcp-server
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Optional

from mcp.server.fastmcp import FastMCP

# ---------------------------------------------------------------------------
# Toolkit imports
# ---------------------------------------------------------------------------
from . import backup as _backup
from .data_format import format_value, type_name
from .models import ScalarValue, TagArray, TagEntry
from .project import L5XProject
from .schema import CONTROLLER_ROOT, DEFAULT_FIELD_DELIMITER, DEFAULT_TIMEOUT_MS
from .tag_tree import L5XTagTree
from .utils import normalize_path

# ---------------------------------------------------------------------------
# Logging (stderr only -- stdout is reserved for MCP protocol)
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stderr,
)
log = logging.getLogger("tag-backup-mcp")

# ---------------------------------------------------------------------------
# MCP Server
# ---------------------------------------------------------------------------
mcp = FastMCP(
    "Tag Backup Toolkit",
    instructions=(
        "Back up and restore the tag values of Rockwell Automation Studio "
        "5000 L5X projects.\n\n"
        "Call load_project first.  backup_tag_values writes the current "
        "values of a tag root ('Controller' or 'Program:<name>') to a "
        "delimited file; restore_tag_values writes them back and saves the "
        "project.  inspect_backup shows what a backup file contains."
    ),
)

# ---------------------------------------------------------------------------
# Server state
# ---------------------------------------------------------------------------
_project: Optional[L5XProject] = None
_project_path: Optional[str] = None


def _require_project() -> L5XProject:
    """Return the loaded project or raise an error."""
    if _project is None:
        raise RuntimeError(
            "No project loaded. Call load_project first."
        )
    return _project


def _entry_to_dict(entry: TagEntry) -> dict:
    value = entry.value
    if isinstance(value, TagArray):
        return {
            "path": entry.relative_path,
            "data_type": type_name(value.element_type),
            "dimensions": list(value.dimensions),
            "values": [format_value(v, value.element_type) for v in value.elements],
        }
    if isinstance(value, ScalarValue):
        return {
            "path": entry.relative_path,
            "data_type": type_name(value.value_type),
            "value": format_value(value.value, value.value_type),
        }
    return {"path": entry.relative_path, "value": repr(value)}


# ===================================================================
# 1. Project Management
# ===================================================================

@mcp.tool()
def load_project(file_path: str) -> str:
    """Load an L5X project file into memory.

    This must be called before backup_tag_values or restore_tag_values.

    Args:
        file_path: Absolute path (or file:// URI) of the .L5X file.
    """
    global _project, _project_path
    try:
        resolved = normalize_path(file_path)
        log.info("Resolved path: %s -> %s", file_path, resolved)
        _project = L5XProject(resolved)
        _project_path = resolved
        roots = _project.list_tag_roots()
        return '\n'.join([
            f"Loaded: {_project.controller_name}",
            f"Tag roots: {', '.join(roots)}",
        ])
    except Exception as e:
        _project = None
        _project_path = None
        return f"Error loading project: {e}"


@mcp.tool()
def save_project(file_path: str = "") -> str:
    """Save the current project to an L5X file.

    Args:
        file_path: Destination path. If empty, overwrites the original file.
    """
    prj = _require_project()
    dest = normalize_path(file_path) if file_path else _project_path
    if not dest:
        return "Error: No file path specified and no original path available."
    try:
        prj.write(dest)
        return f"Project saved to: {dest}"
    except Exception as e:
        return f"Error saving project: {e}"


@mcp.tool()
def list_tag_roots() -> str:
    """List the tag roots of the loaded project as a JSON array."""
    prj = _require_project()
    return json.dumps(prj.list_tag_roots())


# ===================================================================
# 2. Backup / Restore
# ===================================================================

@mcp.tool()
def backup_tag_values(
    csv_path: str,
    root: str = CONTROLLER_ROOT,
    separator: str = DEFAULT_FIELD_DELIMITER,
    wrap_fields: bool = False,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> str:
    """Write the current values of every tag under *root* to a backup file.

    Structured (UDT / AOI) tags and tags without a value are skipped and
    listed in the result.

    Args:
        csv_path:    Backup file to create or overwrite.
        root:        'Controller' or 'Program:<name>'.
        separator:   Single-character field delimiter.
        wrap_fields: Enclose every field in double quotes.
        timeout_ms:  Bound on reading the tags.

    Returns:
        JSON summary with 'written' and 'skipped', or an error message.
    """
    prj = _require_project()
    try:
        tree = L5XTagTree(prj, root)
        summary = _backup.backup_tag_values(
            tree,
            normalize_path(csv_path),
            field_delimiter=separator,
            wrap_fields=wrap_fields,
            timeout_ms=timeout_ms,
        )
        return json.dumps(summary.to_dict(), indent=2)
    except Exception as e:
        log.error("Backup of %s failed: %s", root, e)
        return f"Error backing up tag values: {e}"


@mcp.tool()
def restore_tag_values(
    csv_path: str,
    root: str = CONTROLLER_ROOT,
    separator: str = DEFAULT_FIELD_DELIMITER,
    wrap_fields: bool = False,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ignore_malformed_lines: bool = False,
    output_path: str = "",
) -> str:
    """Write the values stored in a backup file back into the project.

    Entries whose tag no longer exists under *root* are skipped.  The
    project is saved afterwards, to *output_path* if given, otherwise over
    the file it was loaded from.

    Args:
        csv_path:               Backup file to read.
        root:                   'Controller' or 'Program:<name>'.
        separator:              Single-character field delimiter ('.' is
                                not allowed).
        wrap_fields:            Fields are enclosed in double quotes.
        timeout_ms:             Bound on writing the tags.
        ignore_malformed_lines: Skip malformed lines instead of failing.
        output_path:            Where to save the restored project.

    Returns:
        JSON summary with 'total', 'restored', 'skipped' and 'saved_to', or
        an error message.
    """
    prj = _require_project()
    try:
        tree = L5XTagTree(prj, root)
        summary = _backup.restore_tag_values(
            tree,
            normalize_path(csv_path),
            field_delimiter=separator,
            wrap_fields=wrap_fields,
            timeout_ms=timeout_ms,
            ignore_malformed_lines=ignore_malformed_lines,
        )
    except Exception as e:
        log.error("Restore into %s failed: %s", root, e)
        return f"Error restoring tag values: {e}"

    dest = normalize_path(output_path) if output_path else _project_path
    if not dest:
        return "Error: Values restored in memory but no output path is known."
    try:
        tree.save(dest)
    except Exception as e:
        return f"Error saving project: {e}"

    result = summary.to_dict()
    result["summary"] = summary.describe()
    result["saved_to"] = dest
    return json.dumps(result, indent=2)


@mcp.tool()
def inspect_backup(
    csv_path: str,
    separator: str = DEFAULT_FIELD_DELIMITER,
    wrap_fields: bool = False,
    ignore_malformed_lines: bool = False,
) -> str:
    """Decode a backup file and list its entries as JSON.

    Does not need a loaded project.

    Args:
        csv_path:               Backup file to read.
        separator:              Single-character field delimiter.
        wrap_fields:            Fields are enclosed in double quotes.
        ignore_malformed_lines: Skip malformed lines instead of failing.
    """
    try:
        entries = _backup.read_backup(
            normalize_path(csv_path),
            field_delimiter=separator,
            wrap_fields=wrap_fields,
            ignore_malformed_lines=ignore_malformed_lines,
        )
    except Exception as e:
        return f"Error reading backup: {e}"
    return json.dumps([_entry_to_dict(entry) for entry in entries], indent=2)


def main():
    """Run the MCP server on stdio transport."""
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
