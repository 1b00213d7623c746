"""Attach working directory, history and assistant context to candidates."""

import logging
import os
import re
import shlex
import subprocess
import sys
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Protocol, TypeVar

from termstate.advice import infer_advice
from termstate.config import CapturePolicy, normalize_name
from termstate.models import (
    AssistantToolContext,
    Classification,
    GitStatus,
    ProcessRecord,
    ResumptionAdvice,
    RunningCommand,
    ShellKind,
    TerminalSession,
)
from termstate.process_table import ProcessTableSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")

SOURCE_EXTENSIONS = {
    ".ts", ".tsx", ".js", ".jsx", ".py", ".java", ".cpp", ".c", ".cs", ".go", ".rs",
    ".vue", ".svelte", ".html", ".css", ".scss", ".json", ".yaml", ".yml", ".md", ".toml",
}
SKIP_DIRS = {"node_modules", ".git", "dist", "build", ".next", "out", "__pycache__", ".venv", "venv", "target"}

# Prefix written by zsh's EXTENDED_HISTORY option
ZSH_EXTENDED_PREFIX = re.compile(r"^: \d+:\d+;")

WORKING_DIRECTORY_PATTERNS = [
    re.compile(r"-WorkingDirectory\s+\"([^\"]+)\"", re.IGNORECASE),
    re.compile(r"-WorkingDirectory\s+'([^']+)'", re.IGNORECASE),
    re.compile(r"-WorkingDirectory\s+(\S+)", re.IGNORECASE),
    re.compile(r"\bcd\s+(?:/d\s+)?\"([^\"]+)\"", re.IGNORECASE),
    re.compile(r"\bcd\s+(?:/d\s+)?'([^']+)'", re.IGNORECASE),
    re.compile(r"--cwd[=\s]+\"?([^\"\s]+)\"?"),
]
ASSISTANT_WORKSPACE_PATTERN = re.compile(r"--(?:cwd|path)[=\s]+(?:\"([^\"]+)\"|'([^']+)'|(\S+))")


class WorkingDirectoryReader(Protocol):
    def working_directory(self, pid: int) -> str | None: ...


def _probe(label: str, fn: Callable[[], T], default: T) -> T:
    """Run one enrichment probe; a failure yields ``default``."""
    try:
        return fn()
    except Exception as e:
        logger.debug(f"Enrichment probe {label} failed: {e}")
        return default


# -- history -----------------------------------------------------------------


def history_paths(
    shell_kind: ShellKind,
    executable_name: str = "",
    home: Path | None = None,
    environ: dict[str, str] | None = None,
) -> list[Path]:
    """Candidate history files for a shell, most specific first."""
    home = home or Path.home()
    environ = os.environ if environ is None else environ

    if shell_kind in (ShellKind.CLASSIC, ShellKind.MODERN):
        appdata = environ.get("APPDATA")
        if appdata:
            base = Path(appdata) / "Microsoft" / "Windows" / "PowerShell" / "PSReadLine"
        else:
            base = home / ".local" / "share" / "powershell" / "PSReadLine"
        return [base / "ConsoleHost_history.txt"]

    if shell_kind is ShellKind.POSIX:
        paths: list[Path] = []
        if environ.get("HISTFILE"):
            paths.append(Path(environ["HISTFILE"]).expanduser())
        name = normalize_name(executable_name)
        if name == "zsh":
            paths.append(home / ".zsh_history")
        elif name == "fish":
            paths.append(home / ".local" / "share" / "fish" / "fish_history")
        paths.append(home / ".bash_history")
        return paths

    # cmd keeps no history on disk; a subsystem shell's home is not ours to read
    return []


def parse_history_lines(lines: list[str]) -> list[str]:
    """Normalize raw history file lines into plain commands."""
    commands: list[str] = []
    for line in lines:
        line = line.rstrip("\r\n")
        if line.startswith("- cmd: "):
            line = line[len("- cmd: "):]
        elif line.startswith("  when:") or line.startswith("  paths:"):
            continue
        line = ZSH_EXTENDED_PREFIX.sub("", line).strip()
        if line:
            commands.append(line)
    return commands


def read_history(paths: list[Path], limit: int) -> list[str]:
    """Return the last ``limit`` commands from the first readable history file."""
    for path in paths:
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            continue
        commands = parse_history_lines(text.splitlines())
        return commands[-limit:] if limit > 0 else []
    return []


# -- working directory -------------------------------------------------------


def parse_working_directory(command_line: str) -> str | None:
    """Extract a working directory embedded in a shell's command line."""
    for pattern in WORKING_DIRECTORY_PATTERNS:
        match = pattern.search(command_line)
        if match:
            return match.group(1)
    return None


def resolve_working_directory(
    record: ProcessRecord, reader: WorkingDirectoryReader
) -> str | None:
    cwd = reader.working_directory(record.pid)
    if cwd:
        return cwd
    return parse_working_directory(record.command_line)


# -- running commands --------------------------------------------------------


def running_commands(
    record: ProcessRecord, snapshot: ProcessTableSnapshot, policy: CapturePolicy
) -> list[RunningCommand]:
    commands = []
    for child in snapshot.descendants(record.pid, policy.max_descendant_depth):
        started = datetime.fromtimestamp(child.create_time) if child.create_time else None
        commands.append(
            RunningCommand(
                pid=child.pid,
                name=child.executable_name,
                command_line=child.command_line,
                started_at=started,
            )
        )
    return commands


# -- assistant detection -----------------------------------------------------


def find_assistant(
    processes: list[ProcessRecord], policy: CapturePolicy
) -> tuple[ProcessRecord, str] | None:
    """Return the first process that is a coding assistant, with its tool name."""
    for proc in processes:
        name = normalize_name(proc.executable_name)
        cmdline = proc.command_line.lower()
        for tool in policy.assistant_names:
            if tool in name or re.search(rf"\b{re.escape(tool)}\b", cmdline):
                return proc, tool
    return None


def assistant_workspace(command_line: str) -> str | None:
    match = ASSISTANT_WORKSPACE_PATTERN.search(command_line)
    if not match:
        return None
    return next(g for g in match.groups() if g)


def _split_command_line(command_line: str) -> list[str]:
    try:
        return shlex.split(command_line, posix=sys.platform != "win32")
    except ValueError:
        return command_line.split()


def extract_startup_command(command_line: str, tool_name: str) -> str:
    """Rebuild the command a user typed to start an assistant.

    ``node /opt/.../claude-code/cli.js --resume`` becomes ``claude --resume``;
    an ``npx`` prefix is kept.
    """
    tokens = _split_command_line(command_line)
    for i, token in enumerate(tokens):
        if tool_name in token.lower():
            args = [t for t in tokens[i + 1:] if t]
            prefix = "npx " if i > 0 and normalize_name(tokens[i - 1]) == "npx" else ""
            return prefix + " ".join([tool_name, *(shlex.quote(a) for a in args)])
    return tool_name


def history_before_start(history: list[str], tool_name: str) -> list[str]:
    """Commands run before the assistant was started.

    Up to 10 entries before the first invocation, else the last 5 entries.
    """
    for i, command in enumerate(history):
        if tool_name in command.lower():
            return history[max(0, i - 10):i]
    return history[-5:]


# -- project state -----------------------------------------------------------


def recently_modified_files(
    root: str | Path, policy: CapturePolicy, now: datetime | None = None
) -> list[str]:
    """Source files under ``root`` modified within the recent window, newest first."""
    root = Path(root)
    cutoff = (now or datetime.now()) - timedelta(minutes=policy.recent_window_minutes)
    cutoff_ts = cutoff.timestamp()
    found: list[tuple[float, str]] = []

    root_depth = len(root.parts)
    for dirpath, dirnames, filenames in os.walk(root):
        depth = len(Path(dirpath).parts) - root_depth
        dirnames[:] = [
            d for d in dirnames
            if d not in SKIP_DIRS and not d.startswith(".") and depth < policy.recent_files_max_depth
        ]
        for filename in filenames:
            if Path(filename).suffix.lower() not in SOURCE_EXTENSIONS:
                continue
            path = Path(dirpath) / filename
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            if mtime >= cutoff_ts:
                found.append((mtime, path.relative_to(root).as_posix()))

    found.sort(key=lambda item: (-item[0], item[1]))
    return [rel for _, rel in found[: policy.recent_files_limit]]


def _run_git(cwd: str, args: list[str], timeout: float) -> str | None:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except FileNotFoundError:
        logger.debug("git not found on PATH")
        return None
    except subprocess.CalledProcessError:
        return None
    except subprocess.TimeoutExpired:
        logger.debug(f"git {args[0]} timed out in {cwd}")
        return None
    return result.stdout


def parse_porcelain(output: str) -> tuple[list[str], list[str]]:
    """Split ``git status --porcelain`` output into (modified, untracked)."""
    modified: list[str] = []
    untracked: list[str] = []
    for line in output.splitlines():
        if len(line) < 4:
            continue
        code, path = line[:2], line[3:].strip()
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        if code == "??":
            untracked.append(path)
        elif code.strip():
            modified.append(path)
    return modified, untracked


def read_git_status(cwd: str, timeout: float = 3.0) -> GitStatus | None:
    """Branch and changed files of the repository at ``cwd``, or None."""
    if not Path(cwd, ".git").exists() and _run_git(cwd, ["rev-parse", "--git-dir"], timeout) is None:
        return None
    branch = _run_git(cwd, ["branch", "--show-current"], timeout)
    status = _run_git(cwd, ["status", "--porcelain"], timeout)
    if branch is None and status is None:
        return None
    modified, untracked = parse_porcelain(status or "")
    return GitStatus(
        branch=(branch or "").strip() or None,
        modified_files=tuple(modified),
        untracked_files=tuple(untracked),
    )


# -- assembly ----------------------------------------------------------------


def build_assistant_context(
    assistant: ProcessRecord,
    tool_name: str,
    session_cwd: str | None,
    history: list[str],
    running: list[RunningCommand],
    reader: WorkingDirectoryReader,
    policy: CapturePolicy,
) -> AssistantToolContext:
    workspace = (
        assistant_workspace(assistant.command_line)
        or _probe("assistant cwd", lambda: reader.working_directory(assistant.pid), None)
        or session_cwd
        or policy.default_directory
    )
    recent = _probe("recent files", lambda: recently_modified_files(workspace, policy), [])
    git = _probe("git status", lambda: read_git_status(workspace, policy.git_timeout_seconds), None)
    before = history_before_start(history, tool_name)
    advice = _probe(
        "advice",
        lambda: infer_advice(recent, git, before, [c.command_line for c in running]),
        ResumptionAdvice(),
    )
    return AssistantToolContext(
        tool_name=tool_name,
        working_directory=workspace,
        recently_modified_files=tuple(recent),
        git_status=git,
        startup_command=extract_startup_command(assistant.command_line, tool_name),
        history_before_start=tuple(before),
        advice=advice,
    )


def enrich(
    record: ProcessRecord,
    classification: Classification,
    snapshot: ProcessTableSnapshot,
    reader: WorkingDirectoryReader,
    policy: CapturePolicy,
) -> TerminalSession:
    """Build a TerminalSession for one candidate. Failed probes omit their field."""
    shell_kind = classification.shell_kind or ShellKind.POSIX
    cwd = _probe("working directory", lambda: resolve_working_directory(record, reader), None)
    history = _probe(
        "history",
        lambda: read_history(history_paths(shell_kind, record.executable_name), policy.history_limit),
        [],
    )
    running = _probe("running commands", lambda: running_commands(record, snapshot, policy), [])

    assistant_context = None
    descendants = snapshot.descendants(record.pid, policy.max_descendant_depth)
    found = find_assistant(descendants, policy)
    if found is not None:
        assistant, tool_name = found
        assistant_context = _probe(
            "assistant context",
            lambda: build_assistant_context(assistant, tool_name, cwd, history, running, reader, policy),
            None,
        )

    parent = snapshot.parent_of(record.pid)
    return TerminalSession(
        pid=record.pid,
        shell_kind=shell_kind,
        is_hosted_by_multiplexer=classification.is_multiplexer_host
        or (parent is not None and policy.is_multiplexer_host(parent.executable_name)),
        working_directory=cwd,
        command_history=tuple(history),
        running_commands=tuple(running),
        own_command_line=record.command_line,
        assistant_context=assistant_context,
        executable_name=record.executable_name,
        parent_pid=record.parent_pid,
        window_title=record.window_title,
        visibility_reason=classification.reason,
        captured_at=snapshot.taken_at,
    )


def _bare_session(record: ProcessRecord, classification: Classification, snapshot: ProcessTableSnapshot) -> TerminalSession:
    return TerminalSession(
        pid=record.pid,
        shell_kind=classification.shell_kind or ShellKind.POSIX,
        is_hosted_by_multiplexer=classification.is_multiplexer_host,
        own_command_line=record.command_line,
        executable_name=record.executable_name,
        parent_pid=record.parent_pid,
        window_title=record.window_title,
        visibility_reason=classification.reason,
        captured_at=snapshot.taken_at,
    )


def enrich_sessions(
    candidates: list[tuple[ProcessRecord, Classification]],
    snapshot: ProcessTableSnapshot,
    reader: WorkingDirectoryReader,
    policy: CapturePolicy,
) -> list[TerminalSession]:
    """Enrich candidates concurrently, preserving input order."""
    if not candidates:
        return []

    def work(candidate: tuple[ProcessRecord, Classification]) -> TerminalSession:
        record, classification = candidate
        try:
            return enrich(record, classification, snapshot, reader, policy)
        except Exception as e:
            logger.debug(f"Enrichment of {record.pid} failed, keeping bare session: {e}")
            return _bare_session(record, classification, snapshot)

    workers = max(1, min(policy.enrich_workers, len(candidates)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(work, candidates))


def session_summary(session: TerminalSession) -> dict[str, Any]:
    """Short dict used for debug logging."""
    return {
        "pid": session.pid,
        "shell": session.shell_kind.value,
        "cwd": session.working_directory,
        "assistant": session.assistant_context.tool_name if session.assistant_context else None,
    }
