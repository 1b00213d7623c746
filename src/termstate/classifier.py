"""Decide which processes are user-visible terminal sessions.

Classification is a pure function of a process record, the snapshot it came
from and the policy; the same inputs always give the same verdict.

Rules, first match wins:

1. not a shell and not a multiplexer host -> not-a-shell
2. parent is an IDE -> excluded-ide (regardless of any other signal)
3. multiplexer host -> visible when it owns a window, else excluded-hidden
4. shell owns a window handle or title -> visible
5. parent is a multiplexer host -> visible
6. own or descendant command line is a long-running command -> visible
   (PowerShell also counts its parent, for script-launched consoles)
7. launched by a termstate restore script -> visible
8. otherwise -> excluded-hidden
"""

import logging
import re
from functools import lru_cache

from termstate.config import CapturePolicy, default_shell_kind, normalize_name
from termstate.models import Classification, ProcessRecord, ShellKind, Verdict, VisibleReason
from termstate.process_table import ProcessTableSnapshot

logger = logging.getLogger(__name__)

# Consoles launched by run-scripts carry the command only on their parent
PARENT_COMMAND_KINDS = (ShellKind.CLASSIC, ShellKind.MODERN)


@lru_cache(maxsize=32)
def _compile(patterns: tuple[str, ...]) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


def is_ide_process(record: ProcessRecord | None, policy: CapturePolicy) -> bool:
    """Check whether a process is a recognized IDE or editor."""
    if record is None:
        return False
    name = normalize_name(record.executable_name)
    if any(ide in name for ide in policy.ide_names):
        return True
    cmdline = record.command_line.lower()
    return any(marker in cmdline for marker in policy.ide_command_markers)


def is_multiplexer_process(record: ProcessRecord | None, policy: CapturePolicy) -> bool:
    if record is None:
        return False
    if policy.is_multiplexer_host(record.executable_name):
        return True
    cmdline = record.command_line.lower()
    return any(marker in cmdline for marker in policy.multiplexer_command_markers)


def matches_active_command(command_line: str, policy: CapturePolicy) -> bool:
    """Check whether a command line looks like a long-running command."""
    if not command_line:
        return False
    return any(p.search(command_line) for p in _compile(policy.active_command_patterns))


def has_restore_marker(command_line: str, policy: CapturePolicy) -> bool:
    return bool(command_line) and policy.restore_marker in command_line


def infer_shell_kind(record: ProcessRecord, snapshot: ProcessTableSnapshot, policy: CapturePolicy) -> ShellKind:
    """Shell kind of a process; hosts take the kind of their first shell child."""
    kind = policy.shell_kind_for(record.executable_name)
    if kind is not None:
        return kind
    for child in snapshot.children_of(record.pid):
        child_kind = policy.shell_kind_for(child.executable_name)
        if child_kind is not None:
            return child_kind
    return default_shell_kind()


def _has_active_command(
    record: ProcessRecord, shell_kind: ShellKind, snapshot: ProcessTableSnapshot, policy: CapturePolicy
) -> bool:
    if matches_active_command(record.command_line, policy):
        return True
    if shell_kind in PARENT_COMMAND_KINDS:
        parent = snapshot.parent_of(record.pid)
        if parent is not None and matches_active_command(parent.command_line, policy):
            return True
    return any(
        matches_active_command(d.command_line, policy)
        for d in snapshot.descendants(record.pid, policy.max_descendant_depth)
    )


def classify(record: ProcessRecord, snapshot: ProcessTableSnapshot, policy: CapturePolicy) -> Classification:
    """Classify one process against the snapshot it was read from."""
    shell_kind = policy.shell_kind_for(record.executable_name)
    is_host = shell_kind is None and policy.is_multiplexer_host(record.executable_name)

    if shell_kind is None and not is_host:
        return Classification(Verdict.NOT_A_SHELL)

    # A parent missing from the snapshot is never grounds for exclusion
    parent = snapshot.parent_of(record.pid)
    if is_ide_process(parent, policy):
        return Classification(Verdict.EXCLUDED_IDE, shell_kind=shell_kind, is_multiplexer_host=is_host)

    if is_host:
        kind = infer_shell_kind(record, snapshot, policy)
        if record.owns_window:
            return Classification(
                Verdict.VISIBLE, VisibleReason.MULTIPLEXER_HOST, shell_kind=kind, is_multiplexer_host=True
            )
        return Classification(Verdict.EXCLUDED_HIDDEN, shell_kind=kind, is_multiplexer_host=True)

    if record.owns_window:
        return Classification(Verdict.VISIBLE, VisibleReason.OWNS_WINDOW, shell_kind=shell_kind)

    if is_multiplexer_process(parent, policy):
        return Classification(Verdict.VISIBLE, VisibleReason.MULTIPLEXER_CHILD, shell_kind=shell_kind)

    if _has_active_command(record, shell_kind, snapshot, policy):
        return Classification(Verdict.VISIBLE, VisibleReason.ACTIVE_COMMAND, shell_kind=shell_kind)

    parent_cmdline = parent.command_line if parent is not None else ""
    if has_restore_marker(record.command_line, policy) or has_restore_marker(parent_cmdline, policy):
        return Classification(Verdict.VISIBLE, VisibleReason.RESTORED_SESSION, shell_kind=shell_kind)

    return Classification(Verdict.EXCLUDED_HIDDEN, shell_kind=shell_kind)


def classify_snapshot(
    snapshot: ProcessTableSnapshot, policy: CapturePolicy
) -> list[tuple[ProcessRecord, Classification]]:
    """Classify every shell and multiplexer host in the snapshot."""
    results = []
    for record in snapshot:
        classification = classify(record, snapshot, policy)
        if classification.verdict is Verdict.NOT_A_SHELL:
            continue
        results.append((record, classification))
    return results


def visible_candidates(
    snapshot: ProcessTableSnapshot, policy: CapturePolicy
) -> list[tuple[ProcessRecord, Classification]]:
    """Visible candidates in pid order."""
    results = [(r, c) for r, c in classify_snapshot(snapshot, policy) if c.is_visible]
    logger.debug(f"Classifier kept {len(results)} visible candidates")
    return results
