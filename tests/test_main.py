import json
import os
import signal
from unittest.mock import Mock, patch

import pytest

import main
from qthrottle.errors import AuthFailure, CredentialsRejected, TransientApiError
from qthrottle.utils import C

NIGHT = {"name": "night", "start": "22:00", "end": "06:00", "upload_kib": 100, "download_kib": 200}


def write_config(path, rules, mtime=None):
    path.write_text(json.dumps({"schedule": {"rules": rules}}), encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))


@pytest.fixture
def handlers():
    installed = {}
    with patch("main.signal.signal", side_effect=lambda sig, fn: installed.__setitem__(sig, fn)):
        yield installed


@pytest.fixture
def controller(tmp_path, handlers):
    path = tmp_path / "config.json"
    write_config(path, [NIGHT], mtime=1_000_000)
    c = main.Controller(str(path))
    c.loop = Mock()
    c.path = path
    return c


def run_watcher_once(c):
    c._stop = Mock()
    c._stop.wait.side_effect = [False, True]
    c._check_config()


def test_bad_config_exits(tmp_path, handlers):
    path = tmp_path / "config.json"
    path.write_text("{broken", encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        main.Controller(str(path))
    assert exc.value.code == 1


class TestSignals:
    def test_sigterm_and_sigint_stop_the_loop(self, controller, handlers):
        handlers[signal.SIGTERM](signal.SIGTERM, None)
        controller.loop.stop.assert_called_once_with()
        # 重复信号不再重复停止
        handlers[signal.SIGINT](signal.SIGINT, None)
        controller.loop.stop.assert_called_once_with()

    def test_sighup_requests_reload(self, controller, handlers):
        handlers[signal.SIGHUP](signal.SIGHUP, None)
        assert controller._reload_requested.is_set()


class TestConfigReload:
    def test_changed_file_is_reloaded(self, controller, monkeypatch):
        monkeypatch.setattr(C, "CONFIG_CHECK", 0)
        write_config(controller.path, [dict(NIGHT, upload_kib=50)], mtime=1_000_100)
        run_watcher_once(controller)
        profile = controller.loop.reload.call_args.args[0]
        assert profile.rules[0].upload_kib == 50
        assert controller.config.schedule is profile

    def test_unchanged_file_is_not_reloaded(self, controller, monkeypatch):
        monkeypatch.setattr(C, "CONFIG_CHECK", 0)
        run_watcher_once(controller)
        controller.loop.reload.assert_not_called()

    def test_broken_reload_keeps_previous_schedule(self, controller, monkeypatch):
        monkeypatch.setattr(C, "CONFIG_CHECK", 0)
        old = controller.config
        controller.path.write_text("{broken", encoding="utf-8")
        os.utime(controller.path, (1_000_100, 1_000_100))
        run_watcher_once(controller)
        controller.loop.reload.assert_not_called()
        assert controller.config is old
        assert controller.config._mtime == 1_000_100

    def test_sighup_forces_reload_before_check_interval(self, controller):
        write_config(controller.path, [dict(NIGHT, upload_kib=60)], mtime=1_000_000)
        controller._reload_requested.set()
        run_watcher_once(controller)
        assert controller.loop.reload.call_args.args[0].rules[0].upload_kib == 60
        assert not controller._reload_requested.is_set()


class TestConnect:
    @pytest.fixture
    def wired(self, controller):
        controller.sessions = Mock()
        controller.api = Mock()
        controller.api.version.return_value = "v4.6.0"
        controller._stop = Mock()
        controller._stop.is_set.return_value = False
        return controller

    def test_rejected_credentials_exit(self, wired):
        wired.sessions.get_valid_session.side_effect = CredentialsRejected("bad password")
        with pytest.raises(SystemExit) as exc:
            wired._connect()
        assert exc.value.code == 1

    def test_transient_failures_are_retried(self, wired):
        wired.sessions.get_valid_session.side_effect = [AuthFailure("down"), TransientApiError("timeout"), Mock()]
        wired._connect()
        assert wired.sessions.get_valid_session.call_count == 3
        assert [c.args[0] for c in wired._stop.wait.call_args_list] == [1, 2]
        wired.api.version.assert_called_once_with()

    def test_gives_up_without_exiting(self, wired):
        wired.sessions.get_valid_session.side_effect = AuthFailure("down")
        wired._connect()
        assert wired.sessions.get_valid_session.call_count == C.CONNECT_ATTEMPTS
        wired.api.version.assert_not_called()
