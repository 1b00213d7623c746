"""Capture pass: snapshot, classify, deduplicate, enrich."""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from termstate.classifier import visible_candidates
from termstate.config import CapturePolicy, load_policy
from termstate.dedup import deduplicate
from termstate.enricher import enrich_sessions, session_summary
from termstate.models import AssetRecord, TerminalSession
from termstate.process_table import ProcessReader
from termstate.storage import create_capture, save_asset, set_metadata

logger = logging.getLogger(__name__)

ASSET_TYPE = "terminal"

# Commands that say nothing about what a terminal was used for
TRIVIAL_COMMANDS = {"cls", "clear", "exit", "cd", "cd ~", "ls", "dir", "pwd"}


def _is_home(path: str | None) -> bool:
    if not path:
        return True
    try:
        return Path(path).resolve() == Path.home().resolve()
    except OSError:
        return False


def is_idle(session: TerminalSession) -> bool:
    """Check whether a session looks unused and safe to skip."""
    if session.running_commands or session.assistant_context is not None:
        return False
    meaningful = [c for c in session.command_history if c.strip().lower() not in TRIVIAL_COMMANDS]
    if meaningful:
        return False
    return _is_home(session.working_directory)


def capture_terminal_sessions(
    policy: CapturePolicy | None = None, reader: ProcessReader | None = None
) -> list[TerminalSession]:
    """Discover every user-visible terminal session on this host.

    Never raises: a failed pass returns an empty list.
    """
    policy = policy or load_policy()
    reader = reader or ProcessReader(policy)
    try:
        snapshot = reader.snapshot()
        candidates = visible_candidates(snapshot, policy)
        candidates = deduplicate(candidates, snapshot, policy)
        sessions = enrich_sessions(candidates, snapshot, reader, policy)
    except Exception:
        logger.exception("Terminal capture failed")
        return []

    if policy.smart_capture:
        kept = [s for s in sessions if not is_idle(s)]
        logger.debug(f"Smart capture skipped {len(sessions) - len(kept)} idle session(s)")
        sessions = kept

    for session in sessions:
        logger.debug(f"Captured {session_summary(session)}")
    return sessions


def session_to_asset(session: TerminalSession) -> AssetRecord:
    """Flatten a session into an asset with a readable preview."""
    lines = [f"Shell: {session.shell_kind.value}"]
    if session.working_directory:
        lines.append(f"Directory: {session.working_directory}")
    if session.running_commands:
        lines.append("Running:")
        lines += [f"  {cmd.command_line or cmd.name}" for cmd in session.running_commands]
    if session.command_history:
        lines.append(f"Last command: {session.command_history[-1]}")
        lines.append("Recent history:")
        lines += [f"  {cmd}" for cmd in session.command_history[-10:]]
    ctx = session.assistant_context
    if ctx is not None:
        lines.append(f"Assistant: {ctx.startup_command or ctx.tool_name}")
        if ctx.git_status is not None and ctx.git_status.branch:
            lines.append(f"Branch: {ctx.git_status.branch}")
        if ctx.advice.summary:
            lines.append(f"Summary: {ctx.advice.summary}")

    return AssetRecord(
        asset_type=ASSET_TYPE,
        title=session.title,
        content="\n".join(lines),
        metadata=session.to_dict(),
    )


def save_capture(
    conn: sqlite3.Connection,
    sessions: list[TerminalSession],
    name: str | None = None,
    description: str | None = None,
) -> int:
    """Persist sessions as terminal assets of a new capture. Returns its id."""
    capture_id = create_capture(conn, name or f"Capture {datetime.now():%Y-%m-%d %H:%M}", description)
    for session in sessions:
        asset = session_to_asset(session)
        save_asset(conn, capture_id, asset.asset_type, asset.title, asset.content, asset.metadata)
    conn.commit()
    set_metadata(conn, "last_capture", datetime.now().isoformat(timespec="seconds"))
    return capture_id
