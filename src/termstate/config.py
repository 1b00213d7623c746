"""Capture and restore policy for termstate.

Every name list used by the heuristics lives here so that a user can extend
or override it from ``~/.config/termstate/policy.json`` without touching code.
"""

import dataclasses
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from termstate.models import ShellKind

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "termstate"
POLICY_PATH = CONFIG_DIR / "policy.json"
POLICY_ENV_VAR = "TERMSTATE_POLICY"

RESTORE_MARKER = "termstate_restore"


@dataclass(frozen=True)
class CapturePolicy:
    """Tunable heuristics and limits for capture and restore."""

    # Executable names (lowercase, without .exe) per shell kind
    shell_names: dict[str, tuple[str, ...]] = dataclasses.field(
        default_factory=lambda: {
            ShellKind.CLASSIC.value: ("powershell",),
            ShellKind.MODERN.value: ("pwsh",),
            ShellKind.COMMAND_INTERPRETER.value: ("cmd",),
            ShellKind.POSIX.value: ("bash", "zsh", "sh", "fish", "dash", "ksh"),
            ShellKind.LINUX_SUBSYSTEM.value: ("wsl",),
        }
    )
    multiplexer_hosts: tuple[str, ...] = (
        "windowsterminal",
        "wt",
        "openconsole",
        "gnome-terminal-server",
        "konsole",
        "tilix",
        "terminator",
        "kitty",
        "alacritty",
        "wezterm-gui",
        "iterm2",
        "xfce4-terminal",
        "xterm",
        "tmux",
        "tmux: server",
        "screen",
    )
    multiplexer_command_markers: tuple[str, ...] = ("windowsterminal", "wt.exe")
    # Matched as substrings of the parent's executable name
    ide_names: tuple[str, ...] = (
        "cursor",
        "code",
        "vscode",
        "atom",
        "sublime",
        "webstorm",
        "pycharm",
        "idea",
        "intellij",
        "windsurf",
        "zed",
    )
    # Matched as substrings of the parent's command line
    ide_command_markers: tuple[str, ...] = (
        "visual studio",
        "vscode",
        "cursor",
        "windsurf",
        "jetbrains",
    )
    active_command_patterns: tuple[str, ...] = (
        r"\bnpm\s+(run|start|test)\b",
        r"\b(yarn|pnpm|bun)\s+(run\s+)?(dev|start|serve|watch)\b",
        r"(^|[\s/\\])node(\.exe)?\s+\S",
        r"(^|[\s/\\])python[\d.]*(\.exe)?\s+\S",
        r"\bnpx\s+\S",
        r"\bdeno\s+run\b",
        r"\bcargo\s+(run|watch)\b",
        r"\bgo\s+run\b",
        r"\b(flask|uvicorn|gunicorn|django-admin)\b",
        r"\bclaude\b",
    )
    assistant_names: tuple[str, ...] = ("claude", "aider", "codex")
    self_app_names: tuple[str, ...] = ("termstate",)
    dev_tool_names: tuple[str, ...] = ("python", "node", "npm", "uv", "pip", "hatch", "electron")
    restore_marker: str = RESTORE_MARKER

    history_limit: int = 50
    max_descendant_depth: int = 3
    recent_window_minutes: int = 60
    recent_files_limit: int = 20
    recent_files_max_depth: int = 4
    enrich_workers: int = 4
    git_timeout_seconds: float = 3.0

    launch_batch_size: int = 3
    batch_delay_seconds: float = 0.5
    readiness_poll_seconds: float = 0.5
    readiness_timeout_seconds: float = 10.0
    readiness_settle_seconds: float = 1.0

    default_directory: str = str(Path.home())
    smart_capture: bool = False
    # Re-run the commands typed before an assistant was started
    replay_history_before_start: bool = False

    def shell_kind_for(self, executable_name: str) -> ShellKind | None:
        """Return the shell kind for an executable name, or None."""
        name = normalize_name(executable_name)
        for kind, names in self.shell_names.items():
            if name in names:
                return ShellKind(kind)
        return None

    def is_multiplexer_host(self, executable_name: str) -> bool:
        return normalize_name(executable_name) in self.multiplexer_hosts


def normalize_name(executable_name: str) -> str:
    """Lowercase an executable name and drop a Windows extension."""
    name = executable_name.strip().replace("\\", "/").rsplit("/", 1)[-1].lower()
    if name.endswith(".exe"):
        name = name[:-4]
    return name


def default_shell_kind() -> ShellKind:
    if sys.platform == "win32":
        return ShellKind.CLASSIC
    return ShellKind.POSIX


def _load_json_config(path: Path) -> dict[str, Any]:
    """Loads and returns content of a JSON file."""
    if not path.exists():
        return {}
    try:
        content = path.read_text(encoding="utf-8")
        if not content.strip():
            return {}
        data = json.loads(content)
    except (OSError, json.JSONDecodeError):
        logger.debug(f"Failed to load policy file: {path}", exc_info=True)
        return {}
    if not isinstance(data, dict):
        logger.debug(f"Ignoring policy file without a top-level object: {path}")
        return {}
    return data


def _coerce(value: Any, default: Any) -> Any:
    """Match an override's container type to the default value."""
    if isinstance(default, tuple) and isinstance(value, list):
        return tuple(value)
    if isinstance(default, dict) and isinstance(value, dict):
        merged = dict(default)
        merged.update({k: tuple(v) if isinstance(v, list) else v for k, v in value.items()})
        return merged
    if isinstance(default, float) and isinstance(value, int):
        return float(value)
    return value


def load_policy(path: Path | None = None) -> CapturePolicy:
    """Load the capture policy, applying overrides from a JSON file.

    Lookup order: explicit ``path``, ``$TERMSTATE_POLICY``, ``POLICY_PATH``.
    Unknown keys are ignored.
    """
    if path is None:
        env_path = os.environ.get(POLICY_ENV_VAR)
        path = Path(env_path).expanduser() if env_path else POLICY_PATH

    overrides = _load_json_config(path)
    if not overrides:
        return CapturePolicy()

    defaults = CapturePolicy()
    known = {f.name for f in dataclasses.fields(CapturePolicy)}
    values: dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in known:
            logger.debug(f"Ignoring unknown policy key: {key}")
            continue
        values[key] = _coerce(value, getattr(defaults, key))

    logger.debug(f"Loaded policy overrides from {path}: {sorted(values)}")
    return dataclasses.replace(defaults, **values)
