import shlex
import subprocess
import threading

import pytest

import retroshelf.launch as L
from retroshelf.launch import Launcher
from retroshelf.models import EmulatorConfig, MediaFileRef, MediaItem
from retroshelf.supervisor import ProcessWatcher, StatsWriter
from retroshelf.utils import shell_command_line

from conftest import touch


@pytest.fixture
def writer():
    w = StatsWriter()
    yield w
    w.shutdown()


def _clock(*values):
    return iter(values).__next__


def _item(path, **kw):
    return MediaItem(id="a", title="Game A", files=[MediaFileRef(str(path))], **kw)


def test_scenario_a_launches_file_directly(paths, tmp_path, writer, fake_popen):
    iso = touch(tmp_path / "roms" / "a.iso")
    changed = []
    launcher = Launcher(paths, writer=writer, on_library_changed=changed.append, clock=_clock(100.0, 112.5))
    item = _item(iso)

    attempt = launcher.launch(item)

    (argv,), kw = fake_popen[0]
    assert argv == shell_command_line([str(iso)])
    assert kw["shell"] is True
    assert attempt.outcome.elapsed == pytest.approx(12.5)
    assert item.play_count == 1
    assert item.total_play_time == pytest.approx(12.5)
    assert changed == [item]
    assert not launcher.is_running(item.id)


def test_quick_exit_counts_but_adds_no_time(paths, tmp_path, writer, fake_popen):
    item = _item(touch(tmp_path / "a.iso"))
    Launcher(paths, writer=writer, clock=_clock(0.0, 0.0)).launch(item)
    assert item.play_count == 1
    assert item.total_play_time == 0.0


def test_start_failure_records_nothing(paths, tmp_path, writer, monkeypatch):
    def missing(*a, **kw):
        raise FileNotFoundError("no such file: /games/run")

    monkeypatch.setattr(L.subprocess, "Popen", missing)
    item = _item(touch(tmp_path / "run.sh"))

    attempt = Launcher(paths, writer=writer).launch(item)

    assert "no such file" in attempt.error
    assert attempt.outcome is None
    assert item.play_count == 0


def test_shell_launch_quotes_special_characters(paths, tmp_path, writer, fake_popen):
    game = touch(tmp_path / "Metroid(USA) $HOME;&" / "run")
    Launcher(paths, writer=writer).launch(_item(game))

    (cmd,), kw = fake_popen[0]
    assert kw["shell"] is True
    assert shlex.split(cmd) == [str(game)]


def test_generated_prefix_is_saved_when_start_fails(paths, tmp_path, writer, monkeypatch):
    def missing(*a, **kw):
        raise FileNotFoundError("no such file: /usr/bin/wine")

    monkeypatch.setattr(L.subprocess, "Popen", missing)
    changed = []
    item = _item(touch(tmp_path / "hl2.exe"))
    emu = EmulatorConfig(path="/usr/bin/wine", uses_wine_prefix=True)

    attempt = Launcher(paths, writer=writer, on_library_changed=changed.append).launch(item, emulator=emu)

    assert attempt.error
    assert item.prefix_path
    assert changed == [item]
    assert item.play_count == 0


def test_unresolvable_item_is_not_launched(paths, writer, fake_popen):
    attempt = Launcher(paths, writer=writer).launch(MediaItem(id="x", title="Nothing"))
    assert attempt.plan is None
    assert fake_popen == []


def test_watch_target_already_running_is_not_tracked(paths, tmp_path, writer, fake_popen):
    watcher = ProcessWatcher(lister=lambda: ["steam"])
    item = _item(touch(tmp_path / "launch.sh"), override_watch_process="steam")

    attempt = Launcher(paths, writer=writer, watcher=watcher).launch(item)

    assert fake_popen, "process should still be started"
    assert attempt.outcome is None
    assert item.play_count == 0


def test_watch_timeout_records_nothing(paths, tmp_path, writer, fake_popen):
    watcher = ProcessWatcher(lister=lambda: [], startup_interval=0.01, startup_timeout=0.05)
    item = _item(touch(tmp_path / "launch.sh"), override_watch_process="hl2_linux.exe")

    attempt = Launcher(paths, writer=writer, watcher=watcher).launch(item)

    assert attempt.outcome is None
    assert item.play_count == 0


def test_watched_session_is_measured(paths, tmp_path, writer, fake_popen):
    snapshots = iter([[], [], ["hl2_linux"], ["hl2_linux"], []])

    def lister():
        return next(snapshots, [])

    watcher = ProcessWatcher(lister=lister, startup_interval=0.01, exit_interval=0.01)
    item = _item(touch(tmp_path / "launch.sh"), override_watch_process="hl2_linux")

    Launcher(paths, writer=writer, watcher=watcher, clock=_clock(10.0, 70.0)).launch(item)

    assert item.play_count == 1
    assert item.total_play_time == pytest.approx(60.0)


class _BlockingProcess:
    calls = []

    def __init__(self, *a, **kw):
        _BlockingProcess.calls.append((a, kw))

    def wait(self, timeout=None):
        threading.Event().wait(timeout)
        raise subprocess.TimeoutExpired("game", timeout)


def test_cancel_during_wait_still_evaluates(paths, tmp_path, writer, monkeypatch):
    monkeypatch.setattr(L.subprocess, "Popen", _BlockingProcess)
    launcher = Launcher(paths, writer=writer, handle_poll=0.01)
    item = _item(touch(tmp_path / "a.iso"))

    attempt = launcher.launch_in_background(item)
    assert attempt is not None
    assert launcher.launch_in_background(item) is None, "second launch of a running item"
    assert launcher.is_running(item.id)

    assert launcher.cancel(item.id)
    assert attempt.wait(5)
    assert attempt.outcome is not None
    assert item.play_count == 1
    assert not launcher.cancel(item.id)
