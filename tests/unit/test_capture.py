"""Tests for the capture pass and asset serialization."""

import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from termstate.capture import capture_terminal_sessions, is_idle, save_capture, session_to_asset
from termstate.config import CapturePolicy
from termstate.models import AssistantToolContext, RunningCommand, ShellKind, TerminalSession
from termstate.storage import ensure_store_exists, get_metadata, load_sessions


@pytest.fixture(autouse=True)
def no_history():
    with patch("termstate.enricher.history_paths", return_value=[]):
        yield


def test_capture_workstation(workstation_snapshot, fake_reader, policy):
    reader = fake_reader(workstation_snapshot, cwds={301: "/home/dev/api", 304: "C:\\web"})

    sessions = capture_terminal_sessions(policy, reader)

    assert [s.pid for s in sessions] == [301, 302, 303, 304, 305]
    by_pid = {s.pid: s for s in sessions}
    assert by_pid[301].is_hosted_by_multiplexer
    assert by_pid[301].working_directory == "/home/dev/api"
    assert by_pid[304].shell_kind is ShellKind.MODERN
    assert [c.name for c in by_pid[303].running_commands] == ["node"]


def test_capture_with_empty_process_table(fake_reader, policy):
    assert capture_terminal_sessions(policy, fake_reader()) == []


def test_capture_never_raises(policy):
    class ExplodingReader:
        def snapshot(self):
            raise RuntimeError("process table unavailable")

    assert capture_terminal_sessions(policy, ExplodingReader()) == []


def test_smart_capture_skips_idle_sessions(proc, snapshot_of, fake_reader):
    home = str(Path.home())
    snapshot = snapshot_of(
        proc(1, 0, "init"),
        proc(20, 1, "bash", "bash", own_window_handle=1),
        proc(21, 1, "bash", "bash", own_window_handle=2),
    )
    reader = fake_reader(snapshot, cwds={20: home, 21: "/srv/project"})

    smart = capture_terminal_sessions(CapturePolicy(smart_capture=True), reader)
    full = capture_terminal_sessions(CapturePolicy(smart_capture=False), reader)

    assert [s.pid for s in smart] == [21]
    assert [s.pid for s in full] == [20, 21]


def test_is_idle():
    home = str(Path.home())
    assert is_idle(TerminalSession(pid=1, shell_kind=ShellKind.POSIX, working_directory=home, command_history=("ls", "clear")))
    assert not is_idle(TerminalSession(pid=1, shell_kind=ShellKind.POSIX, working_directory=home, command_history=("make",)))
    assert not is_idle(
        TerminalSession(
            pid=1,
            shell_kind=ShellKind.POSIX,
            working_directory=home,
            running_commands=(RunningCommand(pid=2, name="top", command_line="top"),),
        )
    )
    assert not is_idle(TerminalSession(pid=1, shell_kind=ShellKind.POSIX, working_directory="/srv"))


def test_session_to_asset():
    session = TerminalSession(
        pid=7,
        shell_kind=ShellKind.POSIX,
        executable_name="zsh",
        working_directory="/srv/app",
        command_history=tuple(f"cmd{i}" for i in range(12)),
        running_commands=(RunningCommand(pid=8, name="node", command_line="node server.js"),),
        assistant_context=AssistantToolContext(tool_name="claude", working_directory="/srv/app", startup_command="claude"),
    )

    asset = session_to_asset(session)

    assert asset.asset_type == "terminal"
    assert asset.title == "zsh - /srv/app"
    assert "Directory: /srv/app" in asset.content
    assert "Last command: cmd11" in asset.content
    assert "  cmd1\n" not in asset.content
    assert "Assistant: claude" in asset.content
    assert asset.metadata == session.to_dict()


def test_save_capture_round_trip(workstation_snapshot, fake_reader, policy):
    sessions = capture_terminal_sessions(policy, fake_reader(workstation_snapshot))

    with tempfile.TemporaryDirectory() as tmpdir:
        with patch("termstate.storage.STORE_PATH", Path(tmpdir) / "t.db"):
            with patch("termstate.storage.STORE_DIR", Path(tmpdir)):
                conn = ensure_store_exists()
                capture_id = save_capture(conn, sessions, name="scenario")
                restored = load_sessions(conn, capture_id)
                last = get_metadata(conn, "last_capture")
                conn.close()

    assert restored == sessions
    assert last is not None


def _dev_server_tab(proc, window=None):
    return [
        proc(1, 0, "systemd", "/sbin/init"),
        proc(301, 300, "bash", "bash", own_window_handle=window),
        proc(302, 301, "node", "node /usr/bin/npm run dev"),
        proc(303, 302, "sh", "sh -c vite", own_window_handle=window),
        proc(304, 303, "node", "node /srv/app/node_modules/.bin/vite"),
    ]


def test_npm_helper_shell_is_not_a_second_session(proc, snapshot_of, fake_reader, policy):
    host = proc(300, 1, "gnome-terminal-server", "/usr/libexec/gnome-terminal-server", own_window_handle=5001)
    snapshot = snapshot_of(host, *_dev_server_tab(proc))

    sessions = capture_terminal_sessions(policy, fake_reader(snapshot))

    assert [s.pid for s in sessions] == [301]
    assert [c.command_line for c in sessions[0].running_commands][0] == "node /usr/bin/npm run dev"


def test_inherited_window_keeps_user_shell_over_npm_helper(proc, snapshot_of, fake_reader, policy):
    snapshot = snapshot_of(*_dev_server_tab(proc, window=77))

    sessions = capture_terminal_sessions(policy, fake_reader(snapshot))

    assert [s.pid for s in sessions] == [301]
