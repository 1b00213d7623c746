"""Pytest fixtures for termstate tests."""

import tempfile
from pathlib import Path

import pytest

from termstate.config import CapturePolicy
from termstate.models import ProcessRecord
from termstate.process_table import ProcessTableSnapshot

# Pid used as "this process" in synthetic snapshots
SELF_PID = 9999


class FakeReader:
    """In-memory stand-in for ProcessReader."""

    def __init__(self, snapshot=None, cwds=None, live=None):
        self._snapshot = snapshot or ProcessTableSnapshot()
        self.cwds = cwds or {}
        self.live = live or []

    def snapshot(self):
        return self._snapshot

    def working_directory(self, pid):
        return self.cwds.get(pid)

    def find_processes(self, pattern):
        import re

        regex = re.compile(pattern, re.IGNORECASE)
        return [p for p in self.live if regex.search(p.executable_name) or regex.search(p.command_line)]


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def policy(temp_dir):
    """Default policy with the fallback directory pointed at a temp dir."""
    return CapturePolicy(default_directory=str(temp_dir))


@pytest.fixture
def proc():
    """Factory for ProcessRecord rows."""

    def _proc(pid, ppid, name, cmdline="", **kwargs):
        return ProcessRecord(pid=pid, parent_pid=ppid, executable_name=name, command_line=cmdline, **kwargs)

    return _proc


@pytest.fixture
def snapshot_of():
    """Factory building a snapshot from records."""

    def _snapshot(*records, self_pid=SELF_PID):
        return ProcessTableSnapshot.from_records(records, self_pid=self_pid)

    return _snapshot


@pytest.fixture
def fake_reader():
    return FakeReader


@pytest.fixture
def workstation_snapshot(proc, snapshot_of):
    """A desktop with 14 shells: 9 inside IDEs and 5 user terminals.

    One of the user terminals lives in a terminal-emulator host that also
    owns a window, so the host shows up as a separate candidate.
    """
    records = [
        proc(1, 0, "systemd", "/sbin/init"),
        proc(100, 1, "code", "/usr/share/code/code --unity-launch"),
        proc(110, 1, "cursor", "/opt/cursor/cursor"),
    ]
    # Integrated IDE terminals; some carry signals that would otherwise keep them
    for i in range(9):
        pid = 201 + i
        parent = 100 if i % 2 == 0 else 110
        extra = {"own_window_handle": 7000 + i} if i == 0 else {}
        records.append(proc(pid, parent, "bash", "/bin/bash --init-file vscode-shell-integration.sh", **extra))
    records.append(proc(250, 202, "node", "node server.js"))

    records += [
        # Terminal emulator host owning a window, with its tab shell
        proc(300, 1, "gnome-terminal-server", "/usr/libexec/gnome-terminal-server", own_window_handle=5001),
        proc(301, 300, "bash", "bash"),
        # Shell that owns an X11 window directly
        proc(302, 1, "bash", "bash", own_window_handle=6001),
        # Orphaned shell whose only signal is a running dev server
        proc(303, 1, "zsh", "zsh"),
        proc(320, 303, "node", "node /srv/app/server.js"),
        # Shell started with an embedded command
        proc(304, 1, "pwsh", "pwsh -NoExit -Command npm run dev"),
        # Shell inside a tmux server that owns no window
        proc(310, 1, "tmux: server", "tmux new -s work"),
        proc(305, 310, "bash", "-bash"),
        # Background processes that are not shells
        proc(400, 1, "sshd", "/usr/sbin/sshd -D"),
        proc(401, 1, "python3", "python3 -m http.server"),
    ]
    return snapshot_of(*records)
