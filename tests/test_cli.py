import json
import logging

import pytest

from reminderlink.cli import rlcli
from reminderlink.reminders.store import COMPANION_KEY, PRIMARY_KEY, SQLiteStore


class TestCli:

    @staticmethod
    def __run(data_dir, *args) -> int:
        return rlcli.main(['--data-dir', str(data_dir), '--log-level', 'warning', *args])

    @pytest.fixture(autouse=True)
    def clean_environment(self, monkeypatch):
        for variable in ('REMINDERLINK_ROLE', 'REMINDERLINK_REQUEST_TIMEOUT', 'REMINDERLINK_LOG_LEVEL'):
            monkeypatch.delenv(variable, raising=False)
        root = logging.getLogger()
        level = root.level
        yield
        root.setLevel(level)

    def test_add_and_list(self, data_dir, capsys):
        assert TestCli.__run(data_dir, 'add', 'Buy milk', '--due', '2099-01-01 09:00', '--priority', 'high') == 0
        reminder_id = capsys.readouterr().out.strip()

        stored = SQLiteStore(PRIMARY_KEY, data_dir / 'ReminderLink.db').load_collection()
        assert stored.ids() == [reminder_id]
        assert stored.get(reminder_id).priority.value == 'High'
        assert stored.stamp > 0

        assert TestCli.__run(data_dir, 'list') == 0
        out = capsys.readouterr().out
        assert 'Buy milk (High, due ' in out
        assert reminder_id in out

        assert TestCli.__run(data_dir, 'list', '--view', 'upcoming') == 0
        assert 'Buy milk' in capsys.readouterr().out
        assert TestCli.__run(data_dir, 'list', '--view', 'completed') == 0
        assert capsys.readouterr().out.strip() == 'No reminders.'

    def test_toggle_and_delete(self, data_dir, capsys):
        TestCli.__run(data_dir, 'add', 'Buy milk')
        reminder_id = capsys.readouterr().out.strip()

        assert TestCli.__run(data_dir, 'toggle', reminder_id) == 0
        assert TestCli.__run(data_dir, 'list', '--view', 'completed') == 0
        assert '[x] Buy milk' in capsys.readouterr().out

        assert TestCli.__run(data_dir, 'delete', reminder_id) == 0
        assert TestCli.__run(data_dir, 'list') == 0
        assert capsys.readouterr().out.strip() == 'No reminders.'

    def test_unknown_reminder(self, data_dir):
        with pytest.raises(SystemExit) as e:
            TestCli.__run(data_dir, 'toggle', 'missing')
        assert e.value.code == 5
        with pytest.raises(SystemExit) as e:
            TestCli.__run(data_dir, 'delete', 'missing')
        assert e.value.code == 6

    def test_invalid_due_date(self, data_dir):
        with pytest.raises(SystemExit) as e:
            TestCli.__run(data_dir, 'add', 'Buy milk', '--due', 'tomorrow')
        assert e.value.code == 3

    def test_blank_title(self, data_dir):
        with pytest.raises(SystemExit) as e:
            TestCli.__run(data_dir, 'add', ' ')
        assert e.value.code == 3

    def test_role(self, data_dir, capsys):
        assert TestCli.__run(data_dir, '--role', 'companion', 'add', 'On the companion') == 0
        assert len(SQLiteStore(COMPANION_KEY, data_dir / 'ReminderLink.db').load_collection()) == 1
        assert len(SQLiteStore(PRIMARY_KEY, data_dir / 'ReminderLink.db').load_collection()) == 0

    def test_custom_config(self, data_dir, tmp_path, capsys):
        conf_file = tmp_path / 'custom.json'
        with open(conf_file, 'w') as fp:
            json.dump({'role': 'companion'}, fp)
        assert TestCli.__run(data_dir, '--config', str(conf_file), 'add', 'On the companion') == 0
        assert len(SQLiteStore(COMPANION_KEY, data_dir / 'ReminderLink.db').load_collection()) == 1

    def test_missing_config(self, data_dir, tmp_path):
        with pytest.raises(SystemExit) as e:
            TestCli.__run(data_dir, '--config', str(tmp_path / 'missing.json'), 'list')
        assert e.value.code == 2

    def test_log_dir(self, data_dir, tmp_path):
        log_dir = tmp_path / 'logs'
        log_dir.mkdir()
        assert TestCli.__run(data_dir, '--log-dir', str(log_dir), 'list') == 0
        assert len(list(log_dir.glob('ReminderLink_*.log'))) >= 1

    def test_log_level_from_config(self, data_dir, tmp_path):
        conf_file = tmp_path / 'custom.json'
        with open(conf_file, 'w') as fp:
            json.dump({'log_level': 'critical'}, fp)
        assert rlcli.main(['--data-dir', str(data_dir), '--config', str(conf_file), 'list']) == 0
        assert logging.getLogger().level == logging.CRITICAL

    def test_log_level_from_environment(self, data_dir, monkeypatch):
        monkeypatch.setenv('REMINDERLINK_LOG_LEVEL', 'debug')
        assert rlcli.main(['--data-dir', str(data_dir), 'list']) == 0
        assert logging.getLogger().level == logging.DEBUG

        # The command line still wins
        assert TestCli.__run(data_dir, 'list') == 0
        assert logging.getLogger().level == logging.WARNING

    def test_demo(self, data_dir, capsys):
        assert TestCli.__run(data_dir, 'demo') == 0
        out = capsys.readouterr().out
        assert 'Companion before reconnect: []' in out
        assert 'Companion after reconnect: [Buy milk]' in out
        assert 'Primary completed: [Buy milk]' in out
        assert 'Companion pending: 0' in out
        assert 'Sync log:' in out
