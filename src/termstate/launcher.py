"""Spawn host terminal windows that run synthesized startup scripts."""

import logging
import shutil
import subprocess
import sys
import tempfile
from datetime import datetime
from pathlib import Path

from termstate.config import CapturePolicy, normalize_name
from termstate.errors import LaunchError
from termstate.models import ShellKind, TerminalSession
from termstate.synthesizer import POWERSHELL_KINDS, StartupScript, quote_for, synthesize

logger = logging.getLogger(__name__)

SCRIPT_EXTENSIONS = {
    ShellKind.CLASSIC: ".ps1",
    ShellKind.MODERN: ".ps1",
    ShellKind.COMMAND_INTERPRETER: ".cmd",
    ShellKind.POSIX: ".sh",
    ShellKind.LINUX_SUBSYSTEM: ".sh",
}

# Linux terminal emulators in preference order
LINUX_TERMINALS = ["gnome-terminal", "konsole", "xfce4-terminal", "kitty", "alacritty", "xterm"]


def _script_header(script: StartupScript, shell: str, platform: str) -> list[str]:
    if script.shell_kind is ShellKind.COMMAND_INTERPRETER:
        return ["@echo off"]
    if script.shell_kind in POWERSHELL_KINDS:
        return []
    header = ["#!/usr/bin/env bash" if platform == "darwin" else "#!/bin/sh"]
    if shell == "bash":
        header.append("[ -f ~/.bashrc ] && . ~/.bashrc")
    return header


def _script_footer(platform: str) -> list[str]:
    if platform == "darwin":
        return ['exec "${SHELL:-/bin/zsh}" -l']
    return []


def write_script(
    script: StartupScript,
    policy: CapturePolicy,
    shell: str = "bash",
    platform: str | None = None,
    directory: Path | None = None,
) -> Path:
    """Write ``script`` to a temp file whose name carries the restore marker."""
    platform = platform or sys.platform
    directory = directory or Path(tempfile.gettempdir())
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    path = directory / f"{policy.restore_marker}_{stamp}{SCRIPT_EXTENSIONS[script.shell_kind]}"

    lines = [*_script_header(script, shell, platform), *script.lines, *_script_footer(platform)]
    newline = "\r\n" if script.shell_kind is ShellKind.COMMAND_INTERPRETER else "\n"
    path.write_text(newline.join(lines) + newline, encoding="utf-8", newline="")
    path.chmod(0o755)
    return path


def posix_shell_command(shell: str, script_path: Path) -> list[str]:
    """Interactive shell invocation that sources ``script_path`` first."""
    quoted = quote_for(ShellKind.POSIX, str(script_path))
    if shell == "bash":
        return ["bash", "--init-file", str(script_path)]
    if shell == "fish":
        return ["fish", "-C", f"source {quoted}"]
    return [shell, "-c", f". {quoted}; exec {shell} -i"]


def windows_command(script: StartupScript, shell: str, script_path: Path) -> list[str]:
    if script.shell_kind in POWERSHELL_KINDS:
        inner = [shell, "-NoExit", "-ExecutionPolicy", "Bypass", "-File", str(script_path)]
    elif script.shell_kind is ShellKind.COMMAND_INTERPRETER:
        inner = ["cmd", "/k", str(script_path)]
    else:
        # The subsystem shell cannot read a Windows path; run the commands inline
        commands = "; ".join(script.lines[1:] + [f": {script_path.name}", "exec bash -i"])
        inner = ["wsl", "--cd", script.working_directory, "--", "bash", "-c", commands]

    if shutil.which("wt"):
        return ["wt", "-w", "new", "-d", script.working_directory, *inner]
    return inner


def linux_command(shell_argv: list[str], directory: str) -> list[str]:
    for terminal in LINUX_TERMINALS:
        if not shutil.which(terminal):
            continue
        if terminal == "gnome-terminal":
            return [terminal, f"--working-directory={directory}", "--", *shell_argv]
        if terminal == "konsole":
            return [terminal, "--workdir", directory, "-e", *shell_argv]
        if terminal in ("kitty", "alacritty"):
            return [terminal, "--working-directory" if terminal == "alacritty" else "-d", directory, *shell_argv]
        return [terminal, "-e", *shell_argv]
    raise LaunchError("No supported terminal emulator found")


def host_command(
    script: StartupScript, script_path: Path, shell: str, platform: str
) -> list[str]:
    """argv that opens a new terminal window running ``script_path``."""
    if platform == "win32":
        return windows_command(script, shell, script_path)
    if platform == "darwin":
        return ["open", "-a", "Terminal", str(script_path)]
    return linux_command(posix_shell_command(shell, script_path), script.working_directory)


def _shell_executable(session: TerminalSession, policy: CapturePolicy) -> str:
    name = normalize_name(session.executable_name)
    if policy.shell_kind_for(name) is not None:
        return name
    return {
        ShellKind.CLASSIC: "powershell",
        ShellKind.MODERN: "pwsh",
        ShellKind.COMMAND_INTERPRETER: "cmd",
        ShellKind.POSIX: "bash",
        ShellKind.LINUX_SUBSYSTEM: "wsl",
    }[session.shell_kind]


def launch_script(
    script: StartupScript,
    policy: CapturePolicy,
    shell: str = "bash",
    platform: str | None = None,
) -> int:
    """Open a terminal window running ``script``. Returns the spawned pid."""
    platform = platform or sys.platform
    try:
        path = write_script(script, policy, shell=shell, platform=platform)
    except OSError as e:
        raise LaunchError(f"Could not write restore script: {e}") from e

    argv = host_command(script, path, shell, platform)
    logger.debug(f"Launching {argv}")
    creationflags = getattr(subprocess, "CREATE_NEW_CONSOLE", 0) if platform == "win32" else 0
    try:
        proc = subprocess.Popen(
            argv,
            cwd=script.working_directory,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            creationflags=creationflags,
            start_new_session=platform != "win32",
        )
    except OSError as e:
        raise LaunchError(f"Could not start {argv[0]}: {e}") from e
    return proc.pid


def launch_session(session: TerminalSession, policy: CapturePolicy, platform: str | None = None) -> int:
    """Synthesize and launch one session in a new terminal window."""
    script = synthesize(session, policy)
    return launch_script(script, policy, shell=_shell_executable(session, policy), platform=platform)
