"""Collapse candidates that describe the same terminal window."""

import logging

from termstate.classifier import is_multiplexer_process
from termstate.config import CapturePolicy, normalize_name
from termstate.models import Classification, ProcessRecord
from termstate.process_table import ProcessTableSnapshot

logger = logging.getLogger(__name__)

Candidate = tuple[ProcessRecord, Classification]


def _name_matches(record: ProcessRecord, names: tuple[str, ...]) -> bool:
    name = normalize_name(record.executable_name)
    return any(n in name for n in names)


def _capturing_chain(snapshot: ProcessTableSnapshot) -> set[int]:
    """Pids of the capturing process and its launchers."""
    pids = {snapshot.self_pid}
    pids.update(r.pid for r in snapshot.ancestors(snapshot.self_pid))
    return pids


def is_self_capture(record: ProcessRecord, snapshot: ProcessTableSnapshot, policy: CapturePolicy) -> bool:
    """Check whether a candidate is just this tool running somewhere.

    A candidate is self-capture when it or a descendant is a termstate
    executable, unless the same process set also holds an interpreter or
    package manager; that is a development invocation and stays.
    """
    excluded = _capturing_chain(snapshot)
    process_set = [record, *snapshot.descendants(record.pid, policy.max_descendant_depth)]
    process_set = [p for p in process_set if p.pid not in excluded]

    if not any(_name_matches(p, policy.self_app_names) for p in process_set):
        return False
    return not any(_name_matches(p, policy.dev_tool_names) for p in process_set)


def deduplicate(
    candidates: list[Candidate], snapshot: ProcessTableSnapshot, policy: CapturePolicy
) -> list[Candidate]:
    """Remove host/child duplicates, nested shells and self-captures.

    A host candidate above another candidate is dropped in favour of the
    child. Between two shell candidates in the same window the nearest
    shell-only chain keeps the innermost shell, while a shell spawned by a
    program (``npm run`` helpers and the like) is dropped in favour of the
    outer session. Output pids are unique and keep the input order.
    """
    by_pid: dict[int, Candidate] = {}
    for record, classification in candidates:
        by_pid.setdefault(record.pid, (record, classification))

    dropped: set[int] = set()
    for pid, (record, classification) in by_pid.items():
        crossed_program = False
        # Past a terminal host the ancestors belong to another window
        settled = classification.is_multiplexer_host
        for ancestor in snapshot.ancestors(pid):
            entry = by_pid.get(ancestor.pid)
            if entry is not None and entry[1].is_multiplexer_host:
                dropped.add(ancestor.pid)
                settled = True
                continue
            if settled:
                continue
            if is_multiplexer_process(ancestor, policy):
                settled = True
                continue
            if entry is None:
                if policy.shell_kind_for(ancestor.executable_name) is None:
                    crossed_program = True
                continue

            settled = True
            if crossed_program:
                dropped.add(pid)
            elif record.own_window_handle is not None and record.own_window_handle == entry[0].own_window_handle:
                dropped.add(ancestor.pid)

    results: list[Candidate] = []
    for pid, (record, classification) in by_pid.items():
        if pid in dropped:
            logger.debug(f"Dropping {record.executable_name} ({pid}): part of another session")
            continue
        if is_self_capture(record, snapshot, policy):
            logger.debug(f"Dropping {record.executable_name} ({pid}): runs termstate itself")
            continue
        results.append((record, classification))
    return results
