"""Tests for backup_tag_values / restore_tag_values."""

import io
import logging
import math
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from tag_backup_toolkit import backup
from tag_backup_toolkit.csv_codec import RecordReader
from tag_backup_toolkit.errors import (
    ConfigurationError, FormatError, IOFailure, MalformedArrayError,
    RemoteCallFailure, UnsupportedTypeError, ValueParseError,
)
from tag_backup_toolkit.models import (
    RestoreSummary, ScalarValue, TagArray, ValueType, values_equal,
)
from tag_backup_toolkit.tag_tree import InMemoryTagTree

HEADER = 'Index,RelativePath,Value,DataType\n'


@pytest.fixture
def csv_path(tmp_path):
    return str(tmp_path / 'tags.csv')


def _read(path):
    with open(path, encoding='utf-8') as fh:
        return fh.read()


def _write(path, text):
    with open(path, 'w', encoding='utf-8', newline='') as fh:
        fh.write(text)


def _sample_tree():
    return InMemoryTagTree('Plant', {
        'Tank.Level': ScalarValue(ValueType.FLOAT64, math.pi),
        'Tank.Ratio': ScalarValue(ValueType.FLOAT32, 0.1),
        'Pump.Running': ScalarValue(ValueType.BOOL, True),
        'Pump.Count': ScalarValue(ValueType.UINT16, 65535),
        'Pump.Name': ScalarValue(ValueType.STRING, 'P-101'),
        'Pump.Started': ScalarValue(
            ValueType.TIMESTAMP, datetime(2024, 5, 1, 12, 30, 0, 500, tzinfo=timezone.utc)),
        'Line.Setpoints': TagArray(ValueType.INT32, (3,), [1, 2, 3]),
        'Line.Matrix': TagArray.from_nested(ValueType.FLOAT64, [[0.5, math.nan], [-1.0, 2.0]]),
    })


# ===================================================================
# Backup
# ===================================================================

class TestBackupFormat:
    def test_tank_level_scenario(self, csv_path):
        tree = InMemoryTagTree(tags={'Tank.Level': ScalarValue(ValueType.FLOAT64, math.pi)})
        summary = backup.backup_tag_values(tree, csv_path)
        assert _read(csv_path) == HEADER + ',Tank.Level,3.1415926535897931,Float64\n'
        assert summary.written == 1
        assert summary.skipped == []

    def test_float64_text_round_trips(self, csv_path):
        tree = InMemoryTagTree(tags={
            'Tank.Level': ScalarValue(ValueType.FLOAT64, 3.14159265358979),
        })
        backup.backup_tag_values(tree, csv_path)
        value = _read(csv_path).splitlines()[1].split(',')[2]
        assert float(value) == 3.14159265358979

    def test_line_setpoints_scenario(self, csv_path):
        tree = InMemoryTagTree(tags={
            'Line.Setpoints': TagArray(ValueType.INT32, (3,), [1, 2, 3]),
        })
        backup.backup_tag_values(tree, csv_path)
        assert _read(csv_path) == HEADER + (
            'ARRAY:3,,,\n'
            '0,Line.Setpoints,1,Int32\n'
            '1,Line.Setpoints,2,Int32\n'
            '2,Line.Setpoints,3,Int32\n'
        )

    def test_header_only_for_empty_tree(self, csv_path):
        summary = backup.backup_tag_values(InMemoryTagTree(), csv_path)
        assert _read(csv_path) == HEADER
        assert summary.written == 0

    def test_custom_delimiter(self, csv_path):
        tree = InMemoryTagTree(tags={'A': ScalarValue(ValueType.INT8, -1)})
        backup.backup_tag_values(tree, csv_path, field_delimiter=';')
        assert _read(csv_path) == 'Index;RelativePath;Value;DataType\n;A;-1;Int8\n'

    def test_wrapped_quotes_and_delimiter(self, csv_path):
        tree = InMemoryTagTree(tags={
            'Motor.Name': ScalarValue(ValueType.STRING, 'Pump "A", west'),
        })
        backup.backup_tag_values(tree, csv_path, wrap_fields=True)
        lines = _read(csv_path).splitlines()
        assert lines[0] == '"Index","RelativePath","Value","DataType"'
        assert lines[1] == '"","Motor.Name","Pump ""A"", west","String"'

    def test_plain_python_values(self, csv_path):
        tree = InMemoryTagTree(tags={'Count': 5, 'Flag': True, 'Name': 'abc'})
        backup.backup_tag_values(tree, csv_path)
        assert _read(csv_path) == HEADER + (
            ',Count,5,Int64\n'
            ',Flag,True,Bool\n'
            ',Name,abc,String\n'
        )

    def test_entry_to_records(self):
        records = backup.entry_to_records('X', ScalarValue(ValueType.BOOL, False))
        assert [r.to_fields() for r in records] == [['', 'X', 'False', 'Bool']]


class TestBackupSkips:
    def test_timestamp_outside_utc_range(self, csv_path):
        early = datetime(1, 1, 1, tzinfo=timezone(timedelta(hours=1)))
        tree = InMemoryTagTree(tags={
            'Early': ScalarValue(ValueType.TIMESTAMP, early),
            'A': ScalarValue(ValueType.INT32, 1),
        })
        summary = backup.backup_tag_values(tree, csv_path)
        assert summary.skipped == ['Early']
        assert summary.written == 1

    def test_null_value(self, csv_path, caplog):
        tree = InMemoryTagTree(tags={'Empty': None, 'A': ScalarValue(ValueType.INT32, 1)})
        summary = backup.backup_tag_values(tree, csv_path)
        assert summary.skipped == ['Empty']
        assert summary.written == 1
        assert 'Skipping tag Empty since its value is null' in caplog.text

    def test_rank3_skipped_others_proceed(self, csv_path, caplog):
        tree = InMemoryTagTree(tags={
            'Cube': TagArray(ValueType.INT8, (2, 2, 2), [0] * 8),
            'Tank.Level': ScalarValue(ValueType.FLOAT64, 1.5),
        })
        summary = backup.backup_tag_values(tree, csv_path)
        assert summary.skipped == ['Cube']
        assert _read(csv_path) == HEADER + ',Tank.Level,1.5,Float64\n'
        assert 'Cube' in caplog.text
        assert 'one- and two-dimensional' in caplog.text

    def test_unmapped_value(self, csv_path, caplog):
        tree = InMemoryTagTree(tags={'Timer': {'PRE': 0}, 'A': 1})
        summary = backup.backup_tag_values(tree, csv_path)
        assert summary.skipped == ['Timer']
        assert "'dict'" in caplog.text

    def test_array_dimensions_node_ignored(self, csv_path):
        tree = InMemoryTagTree(tags={'Matrix.ArrayDimensions': [2, 3]})
        summary = backup.backup_tag_values(tree, csv_path)
        assert summary.skipped == []
        assert summary.written == 0
        assert _read(csv_path) == HEADER

    def test_delimiter_in_unwrapped_field(self, csv_path, caplog):
        tree = InMemoryTagTree(tags={'Note': ScalarValue(ValueType.STRING, 'a,b')})
        summary = backup.backup_tag_values(tree, csv_path)
        assert summary.skipped == ['Note']
        assert 'WrapFields' in caplog.text
        assert _read(csv_path) == HEADER

    def test_line_break_skipped_even_wrapped(self, csv_path):
        tree = InMemoryTagTree(tags={'Note': ScalarValue(ValueType.STRING, 'a\nb')})
        summary = backup.backup_tag_values(tree, csv_path, wrap_fields=True)
        assert summary.skipped == ['Note']


class TestBackupAborts:
    def test_remote_read_failure(self, csv_path):
        tree = InMemoryTagTree(read_error=ConnectionError('link down'))
        with pytest.raises(RemoteCallFailure, match='link down'):
            backup.backup_tag_values(tree, csv_path)

    def test_remote_read_timeout_leaves_no_file(self, csv_path):
        tree = InMemoryTagTree(tags={'A': 1}, latency_s=0.5)
        with pytest.raises(RemoteCallFailure, match='50 ms'):
            backup.backup_tag_values(tree, csv_path, timeout_ms=50)
        assert not os.path.exists(csv_path)

    def test_unwritable_path(self, tmp_path):
        tree = InMemoryTagTree(tags={'A': 1})
        with pytest.raises(IOFailure):
            backup.backup_tag_values(tree, str(tmp_path / 'no' / 'such' / 'dir.csv'))

    def test_bad_delimiter(self, csv_path):
        with pytest.raises(ConfigurationError, match='CharacterSeparator'):
            backup.backup_tag_values(InMemoryTagTree(), csv_path, field_delimiter=',,')

    @pytest.mark.parametrize('delimiter', ['a', 'e', 'x', 'I'])
    def test_delimiter_in_header(self, csv_path, delimiter):
        tree = InMemoryTagTree(tags={'B': ScalarValue(ValueType.BOOL, True)})
        with pytest.raises(ConfigurationError, match='enable WrapFields'):
            backup.backup_tag_values(tree, csv_path, field_delimiter=delimiter)
        assert not os.path.exists(csv_path)


# ===================================================================
# Restore
# ===================================================================

class TestRestore:
    def test_round_trip(self, csv_path):
        source = _sample_tree()
        backup.backup_tag_values(source, csv_path)
        target = InMemoryTagTree('Target').declare(source.tags)
        summary = backup.restore_tag_values(target, csv_path)
        assert summary.total == len(source.tags)
        assert summary.restored == len(source.tags)
        for path, value in source.tags.items():
            assert values_equal(target.tags[path], value), path

    def test_round_trip_wrapped(self, csv_path):
        source = InMemoryTagTree(tags={
            'Motor.Name': ScalarValue(ValueType.STRING, 'Pump "A", west'),
            'Empty.Text': ScalarValue(ValueType.STRING, ''),
        })
        backup.backup_tag_values(source, csv_path, wrap_fields=True, field_delimiter='\t')
        target = InMemoryTagTree().declare(source.tags)
        backup.restore_tag_values(target, csv_path, wrap_fields=True, field_delimiter='\t')
        assert target.tags == source.tags

    def test_round_trip_wrapped_letter_delimiter(self, csv_path):
        source = InMemoryTagTree(tags={'B': ScalarValue(ValueType.BOOL, True)})
        backup.backup_tag_values(source, csv_path, wrap_fields=True, field_delimiter='e')
        target = InMemoryTagTree().declare(source.tags)
        backup.restore_tag_values(target, csv_path, wrap_fields=True, field_delimiter='e')
        assert target.tags == source.tags

    def test_idempotent(self, tmp_path):
        first, second = str(tmp_path / 'first.csv'), str(tmp_path / 'second.csv')
        tree = _sample_tree()
        backup.backup_tag_values(tree, first)
        backup.restore_tag_values(tree, first)
        backup.backup_tag_values(tree, second)
        assert _read(first) == _read(second)

    def test_line_setpoints_restored(self, csv_path):
        _write(csv_path, HEADER + 'ARRAY:3,,,\n0,Line.Setpoints,1,Int32\n'
                                  '1,Line.Setpoints,2,Int32\n2,Line.Setpoints,3,Int32\n')
        tree = InMemoryTagTree().declare(['Line.Setpoints'])
        backup.restore_tag_values(tree, csv_path)
        assert tree.tags['Line.Setpoints'] == TagArray(ValueType.INT32, (3,), [1, 2, 3])

    def test_single_batched_write(self, csv_path):
        backup.backup_tag_values(_sample_tree(), csv_path)
        target = InMemoryTagTree().declare(_sample_tree().tags)
        backup.restore_tag_values(target, csv_path)
        assert len(target.write_calls) == 1
        assert len(target.write_calls[0]) == 8

    def test_unresolved_paths_skipped(self, csv_path, caplog):
        _write(csv_path, HEADER + ',Kept,1,Int32\n,Gone,2,Int32\n')
        tree = InMemoryTagTree('Plant').declare(['Kept'])
        summary = backup.restore_tag_values(tree, csv_path)
        assert summary.skipped == ['Gone']
        assert summary.describe() == '1 of 2 entries skipped'
        assert 'Gone' not in tree.tags
        assert '1 of 2 entries skipped' in caplog.text

    def test_header_only(self, csv_path):
        _write(csv_path, HEADER)
        tree = InMemoryTagTree()
        summary = backup.restore_tag_values(tree, csv_path)
        assert summary.total == 0
        assert tree.write_calls == [[]]

    def test_bom_tolerated(self, csv_path):
        with open(csv_path, 'wb') as fh:
            fh.write(b'\xef\xbb\xbf' + (HEADER + ',A,1,Int8\n').encode())
        tree = InMemoryTagTree().declare(['A'])
        backup.restore_tag_values(tree, csv_path)
        assert tree.tags['A'] == ScalarValue(ValueType.INT8, 1)

    def test_legacy_type_names(self, csv_path):
        _write(csv_path, HEADER + ',A,1.5,Double\n,B,True,Boolean\n')
        tree = InMemoryTagTree().declare(['A', 'B'])
        backup.restore_tag_values(tree, csv_path)
        assert tree.tags['A'] == ScalarValue(ValueType.FLOAT64, 1.5)
        assert tree.tags['B'] == ScalarValue(ValueType.BOOL, True)

    def test_empty_array_block_skipped(self, csv_path, caplog):
        _write(csv_path, HEADER + 'ARRAY:0,,,\n,A,1,Int32\n')
        tree = InMemoryTagTree().declare(['A'])
        summary = backup.restore_tag_values(tree, csv_path)
        assert summary.total == 1
        assert 'empty array block' in caplog.text

    def test_crlf_file(self, csv_path):
        _write(csv_path, HEADER.replace('\n', '\r\n') + ',A,7,Int32\r\n')
        tree = InMemoryTagTree().declare(['A'])
        backup.restore_tag_values(tree, csv_path)
        assert tree.tags['A'] == ScalarValue(ValueType.INT32, 7)


class TestRestoreAborts:
    def test_dot_delimiter_rejected_before_open(self, tmp_path):
        missing = str(tmp_path / 'does-not-exist.csv')
        with pytest.raises(ConfigurationError, match='CSV separator . is not supported'):
            backup.restore_tag_values(InMemoryTagTree(), missing, field_delimiter='.')

    def test_missing_file(self, tmp_path):
        with pytest.raises(IOFailure, match='not found'):
            backup.restore_tag_values(InMemoryTagTree(), str(tmp_path / 'x.csv'))

    def test_zero_byte_file(self, csv_path):
        _write(csv_path, '')
        tree = InMemoryTagTree()
        with pytest.raises(FormatError, match='is empty'):
            backup.restore_tag_values(tree, csv_path)
        assert tree.write_calls == []

    def test_bad_header(self, csv_path):
        _write(csv_path, 'Path,Value\n,A,1,Int32\n')
        with pytest.raises(FormatError, match='line 1'):
            backup.restore_tag_values(InMemoryTagTree(), csv_path)

    def test_wrong_field_count(self, csv_path):
        _write(csv_path, HEADER + ',A,1\n')
        with pytest.raises(FormatError) as exc_info:
            backup.restore_tag_values(InMemoryTagTree().declare(['A']), csv_path)
        assert exc_info.value.line == 2
        assert 'Expected 4 fields, found 3' in str(exc_info.value)

    def test_wrong_field_count_ignored(self, csv_path):
        _write(csv_path, HEADER + ',A,1\n,B,2,Int32\n')
        tree = InMemoryTagTree().declare(['A', 'B'])
        summary = backup.restore_tag_values(tree, csv_path, ignore_malformed_lines=True)
        assert summary.malformed_lines == [2]
        assert summary.restored == 1

    def test_unknown_type(self, csv_path):
        _write(csv_path, HEADER + ',A,1,Int128\n')
        tree = InMemoryTagTree().declare(['A'])
        with pytest.raises(UnsupportedTypeError) as exc_info:
            backup.restore_tag_values(tree, csv_path)
        assert exc_info.value.line == 2
        assert str(exc_info.value).startswith('Error processing line 2.')
        assert tree.write_calls == []

    def test_unknown_type_in_unresolved_block(self, csv_path):
        _write(csv_path, HEADER + 'ARRAY:2,,,\n0,Gone,1,Decimal\n1,Gone,2,Decimal\n')
        with pytest.raises(UnsupportedTypeError) as exc_info:
            backup.restore_tag_values(InMemoryTagTree(), csv_path)
        assert exc_info.value.line == 3

    def test_float32_out_of_range(self, csv_path):
        _write(csv_path, HEADER + ',A,1e39,Float32\n')
        tree = InMemoryTagTree().declare(['A'])
        with pytest.raises(ValueParseError, match='out of range for Float32') as exc_info:
            backup.restore_tag_values(tree, csv_path)
        assert exc_info.value.line == 2
        assert tree.write_calls == []

    def test_timestamp_outside_utc_range(self, csv_path):
        _write(csv_path, HEADER + ',T,0001-01-01T00:00:00+01:00,Timestamp\n')
        with pytest.raises(ValueParseError, match='line 2'):
            backup.restore_tag_values(InMemoryTagTree().declare(['T']), csv_path)

    def test_invalid_value(self, csv_path):
        _write(csv_path, HEADER + ',A,1,Int32\n,B,300,UInt8\n')
        with pytest.raises(FormatError, match='line 3'):
            backup.restore_tag_values(InMemoryTagTree().declare(['A', 'B']), csv_path)

    def test_truncated_array(self, csv_path):
        _write(csv_path, HEADER + 'ARRAY:3,,,\n0,A,1,Int32\n')
        tree = InMemoryTagTree().declare(['A'])
        with pytest.raises(MalformedArrayError, match='truncated'):
            backup.restore_tag_values(tree, csv_path)
        assert tree.write_calls == []

    def test_malformed_marker(self, csv_path):
        _write(csv_path, HEADER + 'ARRAY:2x,,,\n')
        with pytest.raises(MalformedArrayError):
            backup.restore_tag_values(InMemoryTagTree(), csv_path)

    def test_index_outside_array(self, csv_path):
        _write(csv_path, HEADER + '5,A,1,Int32\n')
        with pytest.raises(FormatError, match='Unexpected index'):
            backup.restore_tag_values(InMemoryTagTree().declare(['A']), csv_path)

    def test_remote_write_failure(self, csv_path):
        _write(csv_path, HEADER + ',A,1,Int32\n')
        tree = InMemoryTagTree(write_error=ConnectionError('refused')).declare(['A'])
        with pytest.raises(RemoteCallFailure, match='refused'):
            backup.restore_tag_values(tree, csv_path)

    def test_remote_write_timeout(self, csv_path):
        _write(csv_path, HEADER + ',A,1,Int32\n')
        tree = InMemoryTagTree(latency_s=0.5).declare(['A'])
        with pytest.raises(RemoteCallFailure, match='did not complete'):
            backup.restore_tag_values(tree, csv_path, timeout_ms=50)


class TestPrepareValuesToWrite:
    def test_with_mock_tree(self):
        tree = MagicMock()
        tree.browse_name = 'Mock'
        tree.resolve.side_effect = lambda path: path != 'Gone'
        reader = RecordReader(io.StringIO(HEADER + ',A,1,Int16\n,Gone,2,Int16\n'))
        summary = RestoreSummary(csv_path='')
        values = backup.prepare_values_to_write(reader, tree, summary)
        assert [(e.relative_path, e.value) for e in values] == [
            ('A', ScalarValue(ValueType.INT16, 1)),
        ]
        assert summary.skipped == ['Gone']
        assert tree.resolve.call_count == 2

    def test_read_backup(self, csv_path):
        backup.backup_tag_values(_sample_tree(), csv_path)
        entries = backup.read_backup(csv_path)
        assert [e.relative_path for e in entries] == list(_sample_tree().tags)


class TestSummaries:
    def test_backup_to_dict(self, csv_path):
        summary = backup.backup_tag_values(InMemoryTagTree(tags={'A': None}), csv_path)
        assert summary.to_dict() == {'csv_path': csv_path, 'written': 0, 'skipped': ['A']}

    def test_restore_log(self, csv_path, caplog):
        caplog.set_level(logging.INFO)
        _write(csv_path, HEADER + ',A,1,Int32\n')
        backup.restore_tag_values(InMemoryTagTree('Plant').declare(['A']), csv_path)
        assert 'Tags restored successfully to node Plant' in caplog.text
