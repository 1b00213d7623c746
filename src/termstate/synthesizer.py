"""Build shell startup scripts that recreate captured sessions."""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from termstate.classifier import matches_active_command
from termstate.config import CapturePolicy, normalize_name
from termstate.models import RunningCommand, ShellKind, TerminalSession
from termstate.resumption import write_resumption_file

logger = logging.getLogger(__name__)

POWERSHELL_KINDS = (ShellKind.CLASSIC, ShellKind.MODERN)

# Flags that run a command and (optionally) keep the shell open afterwards
LAUNCH_PATTERNS = {
    ShellKind.CLASSIC: re.compile(r"\s-(?:Command|c)\s+(.+)$", re.IGNORECASE),
    ShellKind.MODERN: re.compile(r"\s-(?:Command|c)\s+(.+)$", re.IGNORECASE),
    ShellKind.COMMAND_INTERPRETER: re.compile(r"\s/[kc]\s+(.+)$", re.IGNORECASE),
    ShellKind.POSIX: re.compile(r"\s-[li]*c\s+(.+)$"),
    ShellKind.LINUX_SUBSYSTEM: re.compile(r"\s(?:-e|--exec|--)\s+(.+)$"),
}

NPM_RUN = re.compile(r"\bnpm(?:-cli\.js)?\s+run\s+(\S+)")
NPM_START = re.compile(r"\bnpm(?:-cli\.js)?\s+start\b")


@dataclass
class StartupScript:
    """Commands that recreate one session, in execution order."""

    shell_kind: ShellKind
    working_directory: str
    lines: list[str] = field(default_factory=list)
    launch_command: str | None = None
    resumption_file: Path | None = None

    @property
    def text(self) -> str:
        newline = "\r\n" if self.shell_kind is ShellKind.COMMAND_INTERPRETER else "\n"
        return newline.join(self.lines) + newline


def quote_for(shell_kind: ShellKind, value: str) -> str:
    """Quote a literal string for the given shell."""
    if shell_kind in POWERSHELL_KINDS:
        return "'" + value.replace("'", "''") + "'"
    if shell_kind is ShellKind.COMMAND_INTERPRETER:
        return '"' + value.replace('"', '""') + '"'
    return "'" + value.replace("'", "'\\''") + "'"


def change_directory(shell_kind: ShellKind, path: str) -> str:
    if shell_kind in POWERSHELL_KINDS:
        return f"Set-Location -LiteralPath {quote_for(shell_kind, path)}"
    if shell_kind is ShellKind.COMMAND_INTERPRETER:
        return f"cd /d {quote_for(shell_kind, path)}"
    return f"cd {quote_for(shell_kind, path)}"


def echo(shell_kind: ShellKind, message: str) -> str:
    if shell_kind in POWERSHELL_KINDS:
        return f"Write-Host {quote_for(shell_kind, message)}"
    if shell_kind is ShellKind.COMMAND_INTERPRETER:
        return f"echo {message}"
    return f"echo {quote_for(shell_kind, message)}"


def _strip_outer_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def extract_launch_command(shell_kind: ShellKind, command_line: str) -> str | None:
    """Command string passed to a shell via a run-and-stay-open flag.

    ``powershell -NoExit -Command "npm run dev"`` yields ``npm run dev``.
    """
    if not command_line:
        return None
    match = LAUNCH_PATTERNS[shell_kind].search(command_line)
    if not match:
        return None
    command = _strip_outer_quotes(match.group(1))
    return command or None


def restart_command(command: RunningCommand) -> str:
    """Command that restarts a long-running child process."""
    run = NPM_RUN.search(command.command_line)
    if run:
        return f"npm run {run.group(1)}"
    if NPM_START.search(command.command_line):
        return "npm start"
    return command.command_line


def fallback_command(session: TerminalSession, policy: CapturePolicy) -> str | None:
    """First running child that looks like a long-running command."""
    for command in session.running_commands:
        name = normalize_name(command.name)
        if policy.shell_kind_for(name) is not None:
            continue
        if any(tool in name or tool in command.command_line.lower() for tool in policy.assistant_names):
            continue
        if matches_active_command(command.command_line, policy):
            return restart_command(command)
    return None


def resolve_directory(session: TerminalSession, policy: CapturePolicy) -> str:
    """Captured working directory, or the default when it no longer exists."""
    path = session.working_directory
    if path and os.path.isdir(path):
        return path
    if path:
        logger.info(f"Working directory {path} is gone, using {policy.default_directory}")
    return policy.default_directory


def _assistant_lines(
    session: TerminalSession, policy: CapturePolicy, resumption_dir: Path | None
) -> tuple[list[str], Path | None]:
    context = session.assistant_context
    kind = session.shell_kind
    command = context.startup_command or context.tool_name
    try:
        path = write_resumption_file(session, context, resumption_dir)
    except OSError as e:
        logger.warning(f"Could not write resumption file for {session.pid}: {e}")
        return [command], None

    prompt = (
        f"Read {path} and continue where we left off. "
        "Summarize the context and ask before resuming work."
    )
    lines = [
        echo(kind, f"Restoring {context.tool_name} session"),
        echo(kind, f"Context: {path}"),
    ]
    if policy.replay_history_before_start:
        lines += replay_lines(session, policy)
    lines.append(f"{command} {quote_for(kind, prompt)}")
    return lines, path


def replay_lines(session: TerminalSession, policy: CapturePolicy) -> list[str]:
    """Commands run before the assistant started, minus anything that blocks."""
    context = session.assistant_context
    lines = []
    for command in context.history_before_start:
        command = command.strip()
        if not command or policy.restore_marker in command:
            continue
        if context.tool_name in command.lower() or matches_active_command(command, policy):
            lines.append(echo(session.shell_kind, f"Skipped: {command}"))
            continue
        lines.append(command)
    return lines


def synthesize(
    session: TerminalSession, policy: CapturePolicy, resumption_dir: Path | None = None
) -> StartupScript:
    """Build the startup script for one session. Never raises."""
    kind = session.shell_kind
    try:
        directory = resolve_directory(session, policy)
        script = StartupScript(shell_kind=kind, working_directory=directory)
        script.lines.append(change_directory(kind, directory))

        launch = extract_launch_command(kind, session.own_command_line)
        if launch and policy.restore_marker in launch:
            launch = None
        if launch is None:
            launch = fallback_command(session, policy)
        if launch:
            script.launch_command = launch
            script.lines.append(launch)

        if session.assistant_context is not None:
            lines, path = _assistant_lines(session, policy, resumption_dir)
            script.lines.extend(lines)
            script.resumption_file = path
        return script
    except Exception as e:
        logger.warning(f"Synthesis failed for {session.pid}, using defaults: {e}")
        directory = policy.default_directory
        return StartupScript(
            shell_kind=kind,
            working_directory=directory,
            lines=[change_directory(kind, directory)],
        )
