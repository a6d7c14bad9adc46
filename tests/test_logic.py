"""Tests for the BackupAndRestoreTagValues logic owner."""

import threading
import time

import pytest

from tag_backup_toolkit.errors import ConfigurationError, FormatError
from tag_backup_toolkit.logic import BackupAndRestoreTagValues, LongRunningTask
from tag_backup_toolkit.models import BackupSummary, RestoreSummary, ScalarValue, ValueType
from tag_backup_toolkit.tag_tree import InMemoryTagTree


@pytest.fixture
def tree():
    return InMemoryTagTree('Plant', {
        'Tank.Level': ScalarValue(ValueType.FLOAT64, 2.5),
        'Pump.Count': ScalarValue(ValueType.INT32, 7),
    })


@pytest.fixture
def variables(tmp_path):
    return {
        'ParentNode': 'Plant',
        'CSVPath': str(tmp_path / 'tags.csv'),
        'CharacterSeparator': ',',
        'WrapFields': False,
        'Timeout': 2000,
    }


def _logic(variables, tree):
    return BackupAndRestoreTagValues(
        variables, lambda name: tree if name == tree.browse_name else None,
    )


def _wait(logic):
    assert logic.task.join(timeout=5)


class TestLongRunningTask:
    def test_runs_action(self):
        done = threading.Event()
        task = LongRunningTask(lambda t: done.set()).start()
        assert task.join(timeout=5)
        assert done.is_set()

    def test_dispose_sets_cancelled(self):
        release = threading.Event()
        seen = []

        def action(task):
            release.wait(5)
            seen.append(task.cancelled)

        task = LongRunningTask(action).start()
        assert task.is_running
        task.dispose()
        release.set()
        assert task.join(timeout=5)
        assert seen == [True]

    def test_join_before_start(self):
        assert LongRunningTask(lambda t: None).join(timeout=0)


class TestBackupAndRestore:
    def test_backup_then_restore(self, variables, tree):
        logic = _logic(variables, tree)
        logic.backup_tag_values()
        _wait(logic)
        assert isinstance(logic.last_summary, BackupSummary)
        assert logic.last_summary.written == 2

        tree.tags['Tank.Level'] = ScalarValue(ValueType.FLOAT64, 0.0)
        logic.restore_tag_values()
        _wait(logic)
        assert isinstance(logic.last_summary, RestoreSummary)
        assert logic.last_error is None
        assert tree.tags['Tank.Level'] == ScalarValue(ValueType.FLOAT64, 2.5)

    def test_variables_read_per_operation(self, variables, tree, tmp_path):
        logic = _logic(variables, tree)
        variables['CSVPath'] = str(tmp_path / 'other.csv')
        logic.backup_tag_values()
        _wait(logic)
        assert (tmp_path / 'other.csv').exists()

    def test_unknown_parent_node(self, variables, tree, caplog):
        variables['ParentNode'] = 'Nowhere'
        logic = _logic(variables, tree)
        logic.backup_tag_values()
        _wait(logic)
        assert isinstance(logic.last_error, ConfigurationError)
        assert 'Nowhere' in caplog.text

    def test_resolver_key_error(self, variables):
        def resolve(name):
            raise KeyError(name)

        logic = BackupAndRestoreTagValues(variables, resolve)
        logic.restore_tag_values()
        _wait(logic)
        assert isinstance(logic.last_error, ConfigurationError)

    def test_abort_logged_once(self, variables, tree, tmp_path, caplog):
        (tmp_path / 'tags.csv').write_text('')
        logic = _logic(variables, tree)
        logic.restore_tag_values()
        _wait(logic)
        assert isinstance(logic.last_error, FormatError)
        errors = [r for r in caplog.records if r.levelname == 'ERROR']
        assert len(errors) == 1
        assert 'is empty' in errors[0].getMessage()

    def test_new_operation_replaces_handle(self, variables, tree):
        tree.latency_s = 0.2
        logic = _logic(variables, tree)
        first = logic.backup_tag_values()
        second = logic.backup_tag_values()
        assert logic.task is second
        assert not first.cancelled
        assert first.join(timeout=5) and second.join(timeout=5)

    def test_stop(self, variables, tree):
        tree.latency_s = 0.2
        logic = _logic(variables, tree)
        task = logic.backup_tag_values()
        logic.stop()
        assert logic.task is None
        assert task.cancelled
        assert task.join(timeout=5)
        assert isinstance(logic.last_summary, BackupSummary)

    def test_stop_without_task(self, variables, tree):
        _logic(variables, tree).stop()

    def test_does_not_block_caller(self, variables, tree):
        tree.latency_s = 0.5
        logic = _logic(variables, tree)
        started = time.monotonic()
        logic.backup_tag_values()
        assert time.monotonic() - started < 0.4
        _wait(logic)
