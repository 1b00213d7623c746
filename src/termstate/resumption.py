"""Render and write the resumption file handed to a restarted assistant."""

import logging
import tempfile
from datetime import datetime
from pathlib import Path

from termstate.models import AssistantToolContext, ResumptionMode, TerminalSession

logger = logging.getLogger(__name__)

RESUMPTION_PREFIX = "termstate_context_"


def _bullets(items, empty: str) -> list[str]:
    if not items:
        return [f"- {empty}"]
    return [f"- {item}" for item in items]


def render_resumption(session: TerminalSession, context: AssistantToolContext) -> str:
    """Render the resumption file as markdown."""
    lines = [
        "# Session context",
        "",
        f"Captured {session.captured_at:%Y-%m-%d %H:%M} from a {session.shell_kind.value} terminal.",
        "",
        "Read this file, summarize where the work stood, and confirm with the user before continuing.",
        "",
        "## What was being worked on",
        "",
        context.advice.summary or "No summary available.",
        "",
        "## Active tasks",
        "",
        *_bullets(context.advice.active_tasks, "No specific active tasks detected"),
        "",
        "## Suggested next steps",
        "",
        *_bullets(context.advice.next_steps, "Ask the user what to work on next"),
        "",
    ]

    if context.resumption_mode is ResumptionMode.INTERACTIVE:
        lines += ["Resumption mode: interactive (ask before resuming work)", ""]
    else:
        lines += ["Resumption mode: auto (continue with the next step)", ""]

    lines += ["## Working directory", "", f"`{context.working_directory}`", ""]

    git = context.git_status
    if git is not None:
        lines += ["## Git status", "", f"Branch: {git.branch or '(detached)'}", ""]
        if git.modified_files:
            lines += ["Modified:", *_bullets(git.modified_files, ""), ""]
        if git.untracked_files:
            lines += ["Untracked:", *_bullets(git.untracked_files, ""), ""]
        if not git.has_changes:
            lines += ["Working tree clean.", ""]

    lines += ["## Recently modified files", "", *_bullets(context.recently_modified_files, "None"), ""]

    if context.history_before_start:
        lines += ["## Commands run before the session", "", "```"]
        lines += list(context.history_before_start)
        lines += ["```", ""]

    return "\n".join(lines)


def write_resumption_file(
    session: TerminalSession, context: AssistantToolContext, directory: Path | None = None
) -> Path:
    """Write a fresh resumption file and return its path."""
    directory = directory or Path(tempfile.gettempdir())
    directory.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    path = directory / f"{RESUMPTION_PREFIX}{session.pid}_{stamp}.md"
    path.write_text(render_resumption(session, context), encoding="utf-8")
    logger.debug(f"Wrote resumption file {path}")
    return path
