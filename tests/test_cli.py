"""Tests for settings loading and the command-line interface."""

import json
import logging

import pytest

from comfort_config import STATUS_FILE, load_settings
from comfort_thermal import main


@pytest.fixture
def cli_args(sysfs, tmp_path):
    return [
        '--sysfs-root', str(sysfs.root),
        '--status-file', str(tmp_path / 'status'),
        '--log-file', str(tmp_path / 'log'),
        '--config', str(tmp_path / 'absent.json'),
    ]


class TestLoadSettings:

    def test_defaults_without_file(self, tmp_path):
        settings = load_settings(str(tmp_path / 'absent.json'))
        assert settings.sysfs_root == '/'
        assert settings.status_path == STATUS_FILE

    def test_named_missing_file_is_logged(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING, logger='PNGN.ComfortThermal'):
            load_settings(str(tmp_path / 'absent.json'))
        assert 'absent.json' in caplog.text

    def test_overrides_known_keys(self, tmp_path):
        path = tmp_path / 'settings.json'
        path.write_text(json.dumps({'log_path': '/tmp/x.log', 'log_level': 'DEBUG', 'bogus': 1}))
        settings = load_settings(str(path))
        assert settings.log_path == '/tmp/x.log'
        assert settings.log_level == 'DEBUG'
        assert not hasattr(settings, 'bogus')

    def test_malformed_file_falls_back(self, tmp_path):
        path = tmp_path / 'settings.json'
        path.write_text('{not json')
        assert load_settings(str(path)).status_path == STATUS_FILE

    def test_non_object_falls_back(self, tmp_path):
        path = tmp_path / 'settings.json'
        path.write_text('[1, 2]')
        assert load_settings(str(path)).log_level == 'INFO'


class TestMain:

    def test_run(self, sysfs, tmp_path, cli_args, capsys):
        sysfs.add_zone(0, 'x86_pkg_temp', 57000)
        sysfs.add_intel_pstate()

        assert main(cli_args + ['run']) == 0

        out = capsys.readouterr().out
        assert 'CPU:57C' in out
        assert 'HOT' in out
        assert (tmp_path / 'status').read_text() == 'comfort-HOT\n'
        assert sysfs.read('/sys/devices/system/cpu/intel_pstate/max_perf_pct') == '40'

    def test_set(self, sysfs, tmp_path, cli_args, capsys):
        sysfs.add_amd_pstate()

        assert main(cli_args + ['set', 'balanced']) == 0

        assert 'BALANCED' in capsys.readouterr().out
        assert (tmp_path / 'status').read_text() == 'balanced\n'
        assert sysfs.read('/sys/devices/system/cpu/amd_pstate/max_perf_pct') == '75'

    def test_set_rejects_unknown_mode(self, cli_args):
        with pytest.raises(SystemExit) as exc:
            main(cli_args + ['set', 'turbo'])
        assert exc.value.code == 2

    def test_status(self, sysfs, cli_args, capsys):
        sysfs.add_zone(0, 'TCPU', 41000)

        assert main(cli_args + ['status']) == 0

        data = json.loads(capsys.readouterr().out)
        assert data['cpu_temp'] == 41
        assert data['thermal_mode'] == 'COMFORT'
        assert data['backend'] == 'cpufreq'

    def test_history(self, tmp_path, cli_args, capsys):
        main(cli_args + ['run'])
        main(cli_args + ['run'])
        capsys.readouterr()
        export = tmp_path / 'report.json'

        assert main(cli_args + ['history', '--export', str(export)]) == 0

        assert json.loads(capsys.readouterr().out)['entries'] == 2
        assert json.loads(export.read_text())['modes'] == {'WARM': 2}

    def test_history_empty(self, cli_args, capsys):
        assert main(cli_args + ['history']) == 1
        assert 'No history' in capsys.readouterr().out
