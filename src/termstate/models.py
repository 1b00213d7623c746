"""Data models for termstate."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ShellKind(str, Enum):
    """Interpreter family of a terminal session."""

    CLASSIC = "classic-shell"  # Windows PowerShell 5.x
    MODERN = "modern-shell"  # PowerShell 7 (pwsh)
    COMMAND_INTERPRETER = "command-interpreter"  # cmd.exe
    POSIX = "posix-emulation-shell"  # bash, zsh, sh, fish (incl. Git Bash)
    LINUX_SUBSYSTEM = "linux-subsystem-shell"  # wsl


class Verdict(str, Enum):
    VISIBLE = "visible"
    EXCLUDED_IDE = "excluded-ide"
    EXCLUDED_HIDDEN = "excluded-hidden"
    NOT_A_SHELL = "not-a-shell"


class VisibleReason(str, Enum):
    OWNS_WINDOW = "owns-window"
    MULTIPLEXER_CHILD = "multiplexer-child"
    ACTIVE_COMMAND = "active-command"
    MULTIPLEXER_HOST = "multiplexer-host"
    RESTORED_SESSION = "restored-session"


class ResumptionMode(str, Enum):
    INTERACTIVE = "interactive"
    AUTO = "auto"


@dataclass(frozen=True)
class ProcessRecord:
    """One row of the OS process table."""

    pid: int
    parent_pid: int | None
    executable_name: str
    command_line: str = ""
    own_window_handle: int | None = None
    window_title: str | None = None
    create_time: float | None = None

    @property
    def owns_window(self) -> bool:
        return bool(self.own_window_handle) or bool(self.window_title and self.window_title.strip())


@dataclass(frozen=True)
class Classification:
    """Outcome of classifying a single process."""

    verdict: Verdict
    reason: VisibleReason | None = None
    shell_kind: ShellKind | None = None
    is_multiplexer_host: bool = False

    @property
    def is_visible(self) -> bool:
        return self.verdict is Verdict.VISIBLE


@dataclass(frozen=True)
class RunningCommand:
    """A process running underneath a terminal session."""

    pid: int
    name: str
    command_line: str
    started_at: datetime | None = None


@dataclass(frozen=True)
class GitStatus:
    branch: str | None = None
    modified_files: tuple[str, ...] = ()
    untracked_files: tuple[str, ...] = ()

    @property
    def has_changes(self) -> bool:
        return bool(self.modified_files or self.untracked_files)


@dataclass(frozen=True)
class ResumptionAdvice:
    """Inferred, advisory hints for picking up work where it stopped."""

    summary: str = ""
    active_tasks: tuple[str, ...] = ()
    next_steps: tuple[str, ...] = ()


@dataclass(frozen=True)
class AssistantToolContext:
    """Context captured for a terminal running a coding assistant."""

    tool_name: str
    working_directory: str
    recently_modified_files: tuple[str, ...] = ()
    git_status: GitStatus | None = None
    startup_command: str = ""
    history_before_start: tuple[str, ...] = ()
    advice: ResumptionAdvice = field(default_factory=ResumptionAdvice)
    resumption_mode: ResumptionMode = ResumptionMode.INTERACTIVE


@dataclass(frozen=True)
class TerminalSession:
    """A captured, user-visible terminal session."""

    pid: int
    shell_kind: ShellKind
    is_hosted_by_multiplexer: bool = False
    working_directory: str | None = None
    command_history: tuple[str, ...] = ()  # most recent last
    running_commands: tuple[RunningCommand, ...] = ()
    own_command_line: str = ""
    assistant_context: AssistantToolContext | None = None
    executable_name: str = ""
    parent_pid: int | None = None
    window_title: str | None = None
    visibility_reason: VisibleReason | None = None
    captured_at: datetime = field(default_factory=datetime.now)

    @property
    def title(self) -> str:
        if self.window_title:
            return self.window_title
        name = self.executable_name or self.shell_kind.value
        if self.working_directory:
            return f"{name} - {self.working_directory}"
        return name

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        assistant = None
        if self.assistant_context is not None:
            ctx = self.assistant_context
            git = None
            if ctx.git_status is not None:
                git = {
                    "branch": ctx.git_status.branch,
                    "modified_files": list(ctx.git_status.modified_files),
                    "untracked_files": list(ctx.git_status.untracked_files),
                }
            assistant = {
                "tool_name": ctx.tool_name,
                "working_directory": ctx.working_directory,
                "recently_modified_files": list(ctx.recently_modified_files),
                "git_status": git,
                "startup_command": ctx.startup_command,
                "history_before_start": list(ctx.history_before_start),
                "advice": {
                    "summary": ctx.advice.summary,
                    "active_tasks": list(ctx.advice.active_tasks),
                    "next_steps": list(ctx.advice.next_steps),
                },
                "resumption_mode": ctx.resumption_mode.value,
            }

        return {
            "pid": self.pid,
            "shell_kind": self.shell_kind.value,
            "is_hosted_by_multiplexer": self.is_hosted_by_multiplexer,
            "working_directory": self.working_directory,
            "command_history": list(self.command_history),
            "running_commands": [
                {
                    "pid": cmd.pid,
                    "name": cmd.name,
                    "command_line": cmd.command_line,
                    "started_at": cmd.started_at.isoformat() if cmd.started_at else None,
                }
                for cmd in self.running_commands
            ],
            "own_command_line": self.own_command_line,
            "assistant_context": assistant,
            "executable_name": self.executable_name,
            "parent_pid": self.parent_pid,
            "window_title": self.window_title,
            "visibility_reason": self.visibility_reason.value if self.visibility_reason else None,
            "captured_at": self.captured_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TerminalSession":
        """Rebuild a session from `to_dict` output."""
        assistant = None
        raw = data.get("assistant_context")
        if raw:
            git = None
            if raw.get("git_status"):
                git = GitStatus(
                    branch=raw["git_status"].get("branch"),
                    modified_files=tuple(raw["git_status"].get("modified_files", [])),
                    untracked_files=tuple(raw["git_status"].get("untracked_files", [])),
                )
            advice = raw.get("advice") or {}
            assistant = AssistantToolContext(
                tool_name=raw.get("tool_name", ""),
                working_directory=raw.get("working_directory", ""),
                recently_modified_files=tuple(raw.get("recently_modified_files", [])),
                git_status=git,
                startup_command=raw.get("startup_command", ""),
                history_before_start=tuple(raw.get("history_before_start", [])),
                advice=ResumptionAdvice(
                    summary=advice.get("summary", ""),
                    active_tasks=tuple(advice.get("active_tasks", [])),
                    next_steps=tuple(advice.get("next_steps", [])),
                ),
                resumption_mode=ResumptionMode(raw.get("resumption_mode", "interactive")),
            )

        reason = data.get("visibility_reason")
        captured_at = data.get("captured_at")
        return cls(
            pid=data["pid"],
            shell_kind=ShellKind(data["shell_kind"]),
            is_hosted_by_multiplexer=data.get("is_hosted_by_multiplexer", False),
            working_directory=data.get("working_directory"),
            command_history=tuple(data.get("command_history", [])),
            running_commands=tuple(
                RunningCommand(
                    pid=cmd["pid"],
                    name=cmd["name"],
                    command_line=cmd.get("command_line", ""),
                    started_at=(
                        datetime.fromisoformat(cmd["started_at"]) if cmd.get("started_at") else None
                    ),
                )
                for cmd in data.get("running_commands", [])
            ),
            own_command_line=data.get("own_command_line", ""),
            assistant_context=assistant,
            executable_name=data.get("executable_name", ""),
            parent_pid=data.get("parent_pid"),
            window_title=data.get("window_title"),
            visibility_reason=VisibleReason(reason) if reason else None,
            captured_at=datetime.fromisoformat(captured_at) if captured_at else datetime.now(),
        )


@dataclass
class AssetRecord:
    """A terminal session flattened for the asset store."""

    asset_type: str
    title: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


class LaunchStatus(str, Enum):
    LAUNCHED = "launched"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class LaunchResult:
    """Outcome of relaunching one session."""

    session_pid: int
    status: LaunchStatus
    detail: str = ""
    host_pid: int | None = None
    launched_at: datetime | None = None


class RestoreState(str, Enum):
    IDLE = "idle"
    LAUNCHING_TERMINALS = "launching-terminals"
    AWAITING_ASSISTANT_READINESS = "awaiting-assistant-readiness"
    LAUNCHING_EDITORS = "launching-editors"
    LAUNCHING_VISUAL_ASSETS = "launching-visual-assets"
    DONE = "done"
    CANCELLED = "cancelled"


@dataclass
class RestoreSummary:
    """Result of a restoration run."""

    state: RestoreState = RestoreState.IDLE
    results: list[LaunchResult] = field(default_factory=list)
    assistant_ready: bool | None = None  # None when no assistant session was restored
    editors_started_at: datetime | None = None
    visual_assets_started_at: datetime | None = None

    @property
    def launched(self) -> list[LaunchResult]:
        return [r for r in self.results if r.status is LaunchStatus.LAUNCHED]

    @property
    def failed(self) -> list[LaunchResult]:
        return [r for r in self.results if r.status is LaunchStatus.FAILED]
