"""
Logic-object front end for backup and restore.

:class:`BackupAndRestoreTagValues` is what a host binds its buttons or
methods to.  Each request reads the current options from the object's
variables, resolves the parent node and runs the operation on a
:class:`LongRunningTask` so the caller never blocks.  Only one task handle is
kept: starting a new operation replaces the previous handle without
waiting for or cancelling it; :meth:`BackupAndRestoreTagValues.stop`
drops the current one.

Usage::

    logic = BackupAndRestoreTagValues(
        {'ParentNode': 'Controller', 'CSVPath': 'tags.csv',
         'CharacterSeparator': ',', 'WrapFields': False, 'Timeout': 30000},
        resolve_node=lambda name: L5XTagTree(project, name),
    )
    logic.backup_tag_values()
    logic.task.join()
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional, Union

from . import backup
from .config import BackupOptions
from .errors import ConfigurationError, TagBackupError
from .models import BackupSummary, RestoreSummary
from .tag_tree import TagTree

logger = logging.getLogger(__name__)

Summary = Union[BackupSummary, RestoreSummary]


class LongRunningTask:
    """Run *action* once on a daemon thread.

    *action* receives the task.  :meth:`dispose` only raises the
    :attr:`cancelled` flag; backup and restore never check it, so a run that
    has started always finishes.
    """

    def __init__(self, action: Callable[['LongRunningTask'], Any], name: str = 'tag-backup'):
        self._action = action
        self._cancel = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def _run(self) -> None:
        self._action(self)

    def start(self) -> 'LongRunningTask':
        self._thread.start()
        return self

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the task; return ``True`` if it has finished."""
        if self._thread.ident is not None:
            self._thread.join(timeout)
        return not self._thread.is_alive()

    def dispose(self) -> None:
        """Request cancellation.  A remote call already in flight still completes."""
        self._cancel.set()


class BackupAndRestoreTagValues:
    """Owner of the backup/restore task for one logic object.

    Args:
        variables:    Mutable mapping of the object's variables (see
                      :mod:`tag_backup_toolkit.config`).  Read at the start
                      of every operation.
        resolve_node: Returns the :class:`TagTree` named by ``ParentNode``;
                      ``None`` or ``KeyError`` means it does not exist.

    Attributes:
        task:         The current task handle, if any.
        last_summary: Summary of the last operation that completed.
        last_error:   Error that aborted the last operation, if any.
    """

    def __init__(
        self,
        variables: Dict[str, Any],
        resolve_node: Callable[[str], Optional[TagTree]],
    ):
        self.variables = variables
        self.resolve_node = resolve_node
        self.task: Optional[LongRunningTask] = None
        self.last_summary: Optional[Summary] = None
        self.last_error: Optional[BaseException] = None

    # ------------------------------------------------------------------
    # Host entry points
    # ------------------------------------------------------------------

    def backup_tag_values(self) -> LongRunningTask:
        return self._start(self._backup, 'tag-backup')

    def restore_tag_values(self) -> LongRunningTask:
        return self._start(self._restore, 'tag-restore')

    def stop(self) -> None:
        """Dispose of and drop the current handle.  A running task still completes."""
        if self.task is not None:
            self.task.dispose()
            self.task = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start(self, impl: Callable[[], Summary], name: str) -> LongRunningTask:
        self.task = LongRunningTask(lambda task: self._guarded(impl, name), name)
        return self.task.start()

    def _guarded(self, impl: Callable[[], Summary], name: str) -> None:
        self.last_error = None
        try:
            self.last_summary = impl()
        except TagBackupError as exc:
            self.last_error = exc
            logger.error("%s aborted: %s", name, exc)
        except Exception as exc:
            self.last_error = exc
            logger.exception("%s failed unexpectedly", name)

    def _options_and_node(self, action: str):
        options = BackupOptions.from_variables(self.variables)
        try:
            node = self.resolve_node(options.parent_node)
        except KeyError:
            node = None
        if node is None:
            raise ConfigurationError(
                'ParentNode',
                f"Specified parent node {options.parent_node} is null. Tags {action} aborted",
            )
        return options, node

    def _backup(self) -> BackupSummary:
        options, node = self._options_and_node('backup')
        return backup.backup_tag_values(node, options.csv_path, **options.codec_kwargs())

    def _restore(self) -> RestoreSummary:
        options, node = self._options_and_node('restore')
        return backup.restore_tag_values(node, options.csv_path, **options.codec_kwargs())
