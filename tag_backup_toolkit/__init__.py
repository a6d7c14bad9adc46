"""
Tag Backup Toolkit - backup and restore of PLC tag values.

Snapshots the current value of every child of a tag root to a delimited text
file and writes those values back later, by relative path.  Tag roots are
anything implementing :class:`~tag_backup_toolkit.tag_tree.TagTree`; an
adapter for Studio 5000 L5X exports is included.

Backup file layout::

    Index,RelativePath,Value,DataType
    ,Tank.Level,3.1415926535897931,Float64
    ARRAY:3,,,
    0,Line.Setpoints,1,Int32
    1,Line.Setpoints,2,Int32
    2,Line.Setpoints,3,Int32

Usage:
    from tag_backup_toolkit import L5XProject, L5XTagTree
    from tag_backup_toolkit import backup

    project = L5XProject('path/to/project.L5X')
    tree = L5XTagTree(project, 'Controller')

    # Snapshot the controller tags
    summary = backup.backup_tag_values(tree, 'tags.csv')
    print(summary.written, summary.skipped)

    # ... later, write them back and save the project
    summary = backup.restore_tag_values(tree, 'tags.csv')
    print(summary.describe())        # "0 of 12 entries skipped"
    tree.save('path/to/restored.L5X')

    # Or drive it from logic-object variables on a background task
    from tag_backup_toolkit import BackupAndRestoreTagValues
    logic = BackupAndRestoreTagValues(
        {'ParentNode': 'Controller', 'CSVPath': 'tags.csv',
         'CharacterSeparator': ',', 'WrapFields': False, 'Timeout': 30000},
        resolve_node=lambda name: L5XTagTree(project, name),
    )
    logic.backup_tag_values()
"""

__version__ = '0.1.0'


def __getattr__(name):
    """Lazy import so that ``import tag_backup_toolkit`` stays cheap."""
    if name == 'L5XProject':
        from .project import L5XProject
        return L5XProject
    if name in ('TagTree', 'InMemoryTagTree', 'L5XTagTree'):
        from . import tag_tree
        return getattr(tag_tree, name)
    if name == 'BackupOptions':
        from .config import BackupOptions
        return BackupOptions
    if name in ('BackupAndRestoreTagValues', 'LongRunningTask'):
        from . import logic
        return getattr(logic, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    'L5XProject',
    'TagTree',
    'InMemoryTagTree',
    'L5XTagTree',
    'BackupOptions',
    'BackupAndRestoreTagValues',
    'LongRunningTask',
]
