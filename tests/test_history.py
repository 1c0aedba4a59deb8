"""Tests for the history report built from the rolling log."""

import json

import pytest

from comfort_thermal import export_history_report, get_history_report, read_log_entries

LOG_LINES = [
    '10:00:00 | CPU:38C | Kbd:~32C | 85% | COOL',
    'garbage line',
    '10:00:05 | CPU:52C | Kbd:~38C | 50% | WARM',
    '10:00:10 | CPU:61C | Kbd:~42C | 30% | CRITICAL',
    '10:00:15 | CPU:45C | Kbd:~35C | 100% | PERFORMANCE',
]


@pytest.fixture
def log_file(tmp_path):
    path = tmp_path / 'thermal-manager.log'
    path.write_text('\n'.join(LOG_LINES) + '\n')
    return path


class TestReadLogEntries:

    def test_skips_malformed(self, log_file):
        entries = read_log_entries(str(log_file))
        assert [e.mode for e in entries] == ['COOL', 'WARM', 'CRITICAL', 'PERFORMANCE']

    def test_missing_log(self, tmp_path):
        assert read_log_entries(str(tmp_path / 'absent.log')) == []

    def test_undecodable_line_skipped(self, tmp_path):
        log = tmp_path / 'thermal-manager.log'
        log.write_bytes(b'10:00:00 | CPU:38C | Kbd:~32C | 85% | COOL\n'
                        b'\xff\xfe garbage\n'
                        b'10:00:05 | CPU:52C | Kbd:~38C | 50% | WARM\n')
        assert [e.mode for e in read_log_entries(str(log))] == ['COOL', 'WARM']


class TestManualComfortHistory:

    def test_counted_apart_from_auto_comfort(self, tmp_path):
        log = tmp_path / 'thermal-manager.log'
        log.write_text('10:00:00 | CPU:42C | Kbd:~33C | 70% | COMFORT\n'
                       '10:00:05 | CPU:42C | Kbd:~33C | 60% | MANUAL_COMFORT\n')

        report = get_history_report(str(log))

        assert report['modes'] == {'COMFORT': 1, 'MANUAL_COMFORT': 1}
        assert report['throttled_pct'] == pytest.approx(0.0)


class TestHistoryReport:

    def test_statistics(self, log_file):
        report = get_history_report(str(log_file))

        assert report['entries'] == 4
        assert report['cpu']['min'] == 38
        assert report['cpu']['max'] == 61
        assert report['cpu']['mean'] == pytest.approx(49.0)
        assert 52 < report['cpu']['p95'] <= 61
        assert report['keyboard']['max'] == 42
        assert report['mean_perf_pct'] == pytest.approx(66.25)
        assert report['throttled_pct'] == pytest.approx(50.0)
        assert report['modes'] == {'COOL': 1, 'WARM': 1, 'CRITICAL': 1, 'PERFORMANCE': 1}
        assert report['last']['mode'] == 'PERFORMANCE'

    def test_report_is_serializable(self, log_file):
        json.dumps(get_history_report(str(log_file)))

    def test_empty_log(self, tmp_path):
        empty = tmp_path / 'empty.log'
        empty.write_text('')
        assert get_history_report(str(empty)) is None


class TestExport:

    def test_writes_json(self, log_file, tmp_path):
        output = tmp_path / 'report.json'
        assert export_history_report(str(log_file), output) == output
        assert json.loads(output.read_text())['entries'] == 4

    def test_nothing_to_export(self, tmp_path):
        assert export_history_report(str(tmp_path / 'absent.log'), tmp_path / 'out.json') is None
        assert not (tmp_path / 'out.json').exists()
