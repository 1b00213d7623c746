"""Tests for policy loading."""

import json

from termstate.config import CapturePolicy, load_policy, normalize_name
from termstate.models import ShellKind


def test_defaults_when_file_missing(temp_dir):
    assert load_policy(temp_dir / "missing.json") == CapturePolicy()


def test_overrides_are_applied(temp_dir):
    path = temp_dir / "policy.json"
    path.write_text(
        json.dumps(
            {
                "ide_names": ["code", "nvim-qt"],
                "history_limit": 10,
                "batch_delay_seconds": 1,
                "shell_names": {"posix-emulation-shell": ["bash", "nu"]},
                "not_a_setting": True,
            }
        )
    )

    policy = load_policy(path)

    assert policy.ide_names == ("code", "nvim-qt")
    assert policy.history_limit == 10
    assert policy.batch_delay_seconds == 1.0
    assert policy.shell_kind_for("nu") is ShellKind.POSIX
    # Kinds not mentioned keep their defaults
    assert policy.shell_kind_for("pwsh") is ShellKind.MODERN


def test_invalid_json_falls_back_to_defaults(temp_dir):
    path = temp_dir / "policy.json"
    path.write_text("{not json")

    assert load_policy(path) == CapturePolicy()


def test_non_object_json_is_ignored(temp_dir):
    path = temp_dir / "policy.json"
    path.write_text("[1, 2]")

    assert load_policy(path) == CapturePolicy()


def test_env_var_selects_policy_file(temp_dir, monkeypatch):
    path = temp_dir / "custom.json"
    path.write_text(json.dumps({"smart_capture": True}))
    monkeypatch.setenv("TERMSTATE_POLICY", str(path))

    assert load_policy().smart_capture is True


def test_normalize_name():
    assert normalize_name("C:\\Windows\\System32\\WindowsPowerShell\\v1.0\\PowerShell.EXE") == "powershell"
    assert normalize_name("/usr/bin/zsh") == "zsh"
    assert normalize_name("  bash ") == "bash"
