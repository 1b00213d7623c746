"""Tests for the session classifier."""

from termstate.classifier import (
    classify,
    classify_snapshot,
    infer_shell_kind,
    is_ide_process,
    matches_active_command,
    visible_candidates,
)
from termstate.models import ShellKind, Verdict, VisibleReason


def test_non_shell_is_not_a_shell(proc, snapshot_of, policy):
    record = proc(10, 1, "node", "node server.js")
    snapshot = snapshot_of(proc(1, 0, "init"), record)

    assert classify(record, snapshot, policy).verdict is Verdict.NOT_A_SHELL


def test_windows_executable_names_are_normalized(proc, snapshot_of, policy):
    record = proc(10, 1, "PowerShell.exe", "", window_title="Windows PowerShell")
    snapshot = snapshot_of(proc(1, 0, "explorer.exe"), record)

    result = classify(record, snapshot, policy)
    assert result.verdict is Verdict.VISIBLE
    assert result.reason is VisibleReason.OWNS_WINDOW
    assert result.shell_kind is ShellKind.CLASSIC


def test_shell_kinds(policy):
    assert policy.shell_kind_for("pwsh.exe") is ShellKind.MODERN
    assert policy.shell_kind_for("cmd.exe") is ShellKind.COMMAND_INTERPRETER
    assert policy.shell_kind_for("zsh") is ShellKind.POSIX
    assert policy.shell_kind_for("wsl.exe") is ShellKind.LINUX_SUBSYSTEM
    assert policy.shell_kind_for("vim") is None


def test_ide_parent_excludes_regardless_of_other_signals(proc, snapshot_of, policy):
    ide = proc(10, 1, "Code.exe", "C:\\Program Files\\Microsoft VS Code\\Code.exe")
    shell = proc(20, 10, "pwsh.exe", "pwsh -NoExit -Command npm run dev", own_window_handle=42)
    snapshot = snapshot_of(proc(1, 0, "explorer.exe"), ide, shell, proc(30, 20, "node.exe", "node server.js"))

    result = classify(shell, snapshot, policy)
    assert result.verdict is Verdict.EXCLUDED_IDE
    assert not result.is_visible


def test_ide_detected_from_parent_command_line(proc, snapshot_of, policy):
    helper = proc(10, 1, "electron", "/opt/electron --app=/usr/share/windsurf")
    shell = proc(20, 10, "bash", "bash")
    snapshot = snapshot_of(helper, shell)

    assert classify(shell, snapshot, policy).verdict is Verdict.EXCLUDED_IDE


def test_shell_integration_in_own_command_line_is_not_exclusionary(proc, snapshot_of, policy):
    shell = proc(20, 1, "bash", "bash --init-file /usr/share/code/shellIntegration-bash.sh", own_window_handle=9)
    snapshot = snapshot_of(proc(1, 0, "systemd"), shell)

    assert classify(shell, snapshot, policy).verdict is Verdict.VISIBLE


def test_missing_parent_is_not_exclusionary(proc, snapshot_of, policy):
    orphan = proc(20, 12345, "bash", "bash", own_window_handle=5)
    snapshot = snapshot_of(orphan)

    result = classify(orphan, snapshot, policy)
    assert result.verdict is Verdict.VISIBLE
    assert result.reason is VisibleReason.OWNS_WINDOW


def test_multiplexer_child_is_visible(proc, snapshot_of, policy):
    host = proc(10, 1, "WindowsTerminal.exe", "WindowsTerminal.exe")
    shell = proc(20, 10, "powershell.exe", "powershell.exe")
    snapshot = snapshot_of(proc(1, 0, "explorer.exe"), host, shell)

    result = classify(shell, snapshot, policy)
    assert result.reason is VisibleReason.MULTIPLEXER_CHILD
    assert result.shell_kind is ShellKind.CLASSIC


def test_multiplexer_host_needs_a_window(proc, snapshot_of, policy):
    hidden = proc(10, 1, "tmux: server", "tmux")
    shown = proc(11, 1, "konsole", "konsole", own_window_handle=77)
    snapshot = snapshot_of(proc(1, 0, "init"), hidden, shown, proc(12, 11, "zsh", "zsh"))

    hidden_result = classify(hidden, snapshot, policy)
    assert hidden_result.verdict is Verdict.EXCLUDED_HIDDEN
    assert hidden_result.is_multiplexer_host

    shown_result = classify(shown, snapshot, policy)
    assert shown_result.reason is VisibleReason.MULTIPLEXER_HOST
    assert shown_result.shell_kind is ShellKind.POSIX


def test_host_takes_shell_kind_of_first_shell_child(proc, snapshot_of, policy):
    host = proc(10, 1, "WindowsTerminal.exe", "WindowsTerminal.exe")
    snapshot = snapshot_of(host, proc(11, 10, "OpenConsole.exe"), proc(12, 10, "cmd.exe", "cmd.exe"))

    assert infer_shell_kind(host, snapshot, policy) is ShellKind.COMMAND_INTERPRETER


def test_orphan_with_active_descendant_is_visible(proc, snapshot_of, policy):
    shell = proc(20, 1, "bash", "bash")
    npm = proc(21, 20, "npm", "npm run dev")
    snapshot = snapshot_of(proc(1, 0, "init"), shell, npm)

    result = classify(shell, snapshot, policy)
    assert result.reason is VisibleReason.ACTIVE_COMMAND


def test_orphan_with_missing_parent_and_active_child_is_visible(proc, snapshot_of, policy):
    shell = proc(20, 12345, "bash", "bash")
    npm = proc(21, 20, "npm", "npm run dev")
    snapshot = snapshot_of(shell, npm)

    result = classify(shell, snapshot, policy)
    assert result.verdict is Verdict.VISIBLE
    assert result.reason is VisibleReason.ACTIVE_COMMAND


def test_powershell_counts_active_command_in_parent(proc, snapshot_of, policy):
    runner = proc(10, 1, "node", "node scripts/dev.js")
    shell = proc(20, 10, "powershell.exe", "powershell.exe")
    snapshot = snapshot_of(runner, shell)

    assert classify(shell, snapshot, policy).reason is VisibleReason.ACTIVE_COMMAND


def test_posix_helper_shell_ignores_parent_command(proc, snapshot_of, policy):
    npm = proc(10, 1, "node", "node /usr/bin/npm run dev")
    helper = proc(20, 10, "sh", "sh -c vite")
    snapshot = snapshot_of(npm, helper)

    assert classify(helper, snapshot, policy).verdict is Verdict.EXCLUDED_HIDDEN


def test_descendant_search_is_depth_bounded(proc, snapshot_of, policy):
    records = [proc(20, 1, "bash", "bash")]
    for depth in range(1, 6):
        records.append(proc(20 + depth, 20 + depth - 1, "sleep", "sleep 100"))
    records.append(proc(40, 25, "node", "node deep.js"))
    snapshot = snapshot_of(*records)

    assert classify(records[0], snapshot, policy).verdict is Verdict.EXCLUDED_HIDDEN


def test_restored_session_marker_keeps_shell(proc, snapshot_of, policy):
    shell = proc(20, 1, "bash", "bash --init-file /tmp/termstate_restore_20240101_120000_000000.sh")
    snapshot = snapshot_of(proc(1, 0, "init"), shell)

    assert classify(shell, snapshot, policy).reason is VisibleReason.RESTORED_SESSION


def test_plain_background_shell_is_hidden(proc, snapshot_of, policy):
    shell = proc(20, 1, "sh", "sh /etc/cron.daily/logrotate")
    snapshot = snapshot_of(proc(1, 0, "cron"), shell)

    assert classify(shell, snapshot, policy).verdict is Verdict.EXCLUDED_HIDDEN


def test_classification_is_idempotent(workstation_snapshot, policy):
    first = classify_snapshot(workstation_snapshot, policy)
    second = classify_snapshot(workstation_snapshot, policy)

    assert first == second


def test_workstation_candidates(workstation_snapshot, policy):
    candidates = visible_candidates(workstation_snapshot, policy)
    pids = [record.pid for record, _ in candidates]

    assert pids == [300, 301, 302, 303, 304, 305]
    assert not any(201 <= pid <= 209 for pid in pids)


def test_is_ide_process_handles_none(policy):
    assert not is_ide_process(None, policy)


def test_matches_active_command(policy):
    assert matches_active_command("npm run dev", policy)
    assert matches_active_command("yarn dev", policy)
    assert matches_active_command("python manage.py runserver", policy)
    assert matches_active_command("cargo run --release", policy)
    assert not matches_active_command("bash", policy)
    assert not matches_active_command("", policy)
