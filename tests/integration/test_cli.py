"""Integration tests for the CLI."""

import json
import os
import subprocess
import sys

import pytest


@pytest.fixture
def cli_env(temp_dir):
    """Environment with an isolated home so the real store is untouched."""
    env = dict(os.environ)
    env["HOME"] = str(temp_dir)
    env["USERPROFILE"] = str(temp_dir)
    env.pop("TERMSTATE_POLICY", None)
    return env


def run_cli(*args, env=None):
    return subprocess.run(
        [sys.executable, "-m", "termstate.cli", *args],
        capture_output=True,
        text=True,
        env=env,
    )


def test_cli_help():
    """Test that --help works."""
    result = run_cli("--help")
    assert result.returncode == 0
    assert "capture" in result.stdout
    assert "restore" in result.stdout
    assert "status" in result.stdout


def test_cli_version():
    """Test that --version works."""
    result = run_cli("--version")
    assert result.returncode == 0
    assert "termstate" in result.stdout


def test_cli_status(cli_env):
    """Test that status command works."""
    result = run_cli("status", env=cli_env)
    assert result.returncode == 0
    assert "Captures: 0" in result.stdout
    assert "Store path:" in result.stdout


def test_capture_dry_run_json(cli_env):
    """A dry run prints valid JSON and saves nothing."""
    result = run_cli("capture", "--dry-run", "--json", env=cli_env)
    assert result.returncode == 0
    data = json.loads(result.stdout)
    assert isinstance(data["sessions"], list)

    status = run_cli("status", env=cli_env)
    assert "Captures: 0" in status.stdout


def test_processes_command(cli_env):
    result = run_cli("processes", "--all", env=cli_env)
    assert result.returncode == 0
    assert "processes scanned" in result.stdout


def test_restore_without_captures(cli_env):
    result = run_cli("restore", "--dry-run", env=cli_env)
    assert result.returncode == 1
    assert "No captures saved" in result.stdout


def test_list_without_store(cli_env):
    result = run_cli("list", env=cli_env)
    assert result.returncode == 1
    assert "No captures found" in result.stdout
