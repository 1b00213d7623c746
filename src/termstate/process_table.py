"""Point-in-time process table snapshots backed by psutil."""

import logging
import os
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime

import psutil

from termstate.config import CapturePolicy, normalize_name
from termstate.models import ProcessRecord

logger = logging.getLogger(__name__)

# Attributes prefetched by a single process_iter() pass
SNAPSHOT_ATTRS = ["pid", "ppid", "name", "cmdline", "create_time"]


@dataclass
class ProcessTableSnapshot:
    """An immutable view of every process at one instant.

    All classification and dedup passes read from the same snapshot so that
    processes appearing or exiting mid-pass cannot produce inconsistent verdicts.
    """

    records: dict[int, ProcessRecord] = field(default_factory=dict)
    self_pid: int = field(default_factory=os.getpid)
    taken_at: datetime = field(default_factory=datetime.now)
    _children: dict[int, list[int]] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        for record in self.records.values():
            if record.parent_pid is not None and record.parent_pid != record.pid:
                self._children.setdefault(record.parent_pid, []).append(record.pid)
        for pids in self._children.values():
            pids.sort()

    @classmethod
    def from_records(cls, records: Iterable[ProcessRecord], self_pid: int | None = None) -> "ProcessTableSnapshot":
        by_pid = {r.pid: r for r in records}
        if self_pid is None:
            return cls(records=by_pid)
        return cls(records=by_pid, self_pid=self_pid)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[ProcessRecord]:
        return iter(sorted(self.records.values(), key=lambda r: r.pid))

    def __contains__(self, pid: object) -> bool:
        return pid in self.records

    def get(self, pid: int | None) -> ProcessRecord | None:
        if pid is None:
            return None
        return self.records.get(pid)

    def parent_of(self, pid: int) -> ProcessRecord | None:
        record = self.records.get(pid)
        if record is None or record.parent_pid == record.pid:
            return None
        return self.get(record.parent_pid)

    def children_of(self, pid: int) -> list[ProcessRecord]:
        return [self.records[c] for c in self._children.get(pid, [])]

    def descendants(self, pid: int, max_depth: int = 3) -> list[ProcessRecord]:
        """Breadth-first descendants of ``pid`` down to ``max_depth`` levels."""
        found: list[ProcessRecord] = []
        seen = {pid}
        frontier = [pid]
        for _ in range(max_depth):
            next_frontier = []
            for current in frontier:
                for child in self.children_of(current):
                    if child.pid in seen:
                        continue
                    seen.add(child.pid)
                    found.append(child)
                    next_frontier.append(child.pid)
            if not next_frontier:
                break
            frontier = next_frontier
        return found

    def ancestors(self, pid: int, max_depth: int = 16) -> list[ProcessRecord]:
        """Parent chain of ``pid``, nearest first. Stops on cycles."""
        chain: list[ProcessRecord] = []
        seen = {pid}
        current = self.parent_of(pid)
        while current is not None and len(chain) < max_depth:
            if current.pid in seen:
                break
            seen.add(current.pid)
            chain.append(current)
            current = self.parent_of(current.pid)
        return chain


def _join_cmdline(cmdline: list[str] | None) -> str:
    if not cmdline:
        return ""
    return " ".join(cmdline)


def _window_handle(proc: psutil.Process) -> int | None:
    """Read the X11 window id a terminal exports to its shell, if any."""
    try:
        value = proc.environ().get("WINDOWID")
    except (psutil.Error, OSError):
        return None
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class ProcessReader:
    """Queries the host process table.

    Every method tolerates partial or failing responses from the OS:
    a failed lookup yields ``None`` or an empty result, never an exception.
    """

    def __init__(self, policy: CapturePolicy | None = None):
        self.policy = policy or CapturePolicy()

    def _wants_window_probe(self, name: str) -> bool:
        return self.policy.shell_kind_for(name) is not None or self.policy.is_multiplexer_host(name)

    def snapshot(self) -> ProcessTableSnapshot:
        """Capture the whole process table in one pass.

        A failure of the query itself yields an empty snapshot.
        """
        records: list[ProcessRecord] = []
        try:
            for proc in psutil.process_iter(SNAPSHOT_ATTRS):
                info = proc.info
                name = info.get("name") or ""
                handle = _window_handle(proc) if self._wants_window_probe(name) else None
                records.append(
                    ProcessRecord(
                        pid=info["pid"],
                        parent_pid=info.get("ppid"),
                        executable_name=name,
                        command_line=_join_cmdline(info.get("cmdline")),
                        own_window_handle=handle,
                        create_time=info.get("create_time"),
                    )
                )
        except (psutil.Error, OSError) as e:
            logger.warning(f"Process table query failed: {e}")
            return ProcessTableSnapshot()

        logger.debug(f"Snapshot captured {len(records)} processes")
        return ProcessTableSnapshot.from_records(records)

    def working_directory(self, pid: int) -> str | None:
        try:
            return psutil.Process(pid).cwd() or None
        except (psutil.Error, OSError):
            return None

    def command_line(self, pid: int) -> str | None:
        try:
            return _join_cmdline(psutil.Process(pid).cmdline())
        except (psutil.Error, OSError):
            return None

    def find_processes(self, pattern: str) -> list[ProcessRecord]:
        """Return live processes whose name or command line matches ``pattern``."""
        regex = re.compile(pattern, re.IGNORECASE)
        matches: list[ProcessRecord] = []
        try:
            for proc in psutil.process_iter(SNAPSHOT_ATTRS):
                info = proc.info
                name = info.get("name") or ""
                cmdline = _join_cmdline(info.get("cmdline"))
                if regex.search(normalize_name(name)) or regex.search(cmdline):
                    matches.append(
                        ProcessRecord(
                            pid=info["pid"],
                            parent_pid=info.get("ppid"),
                            executable_name=name,
                            command_line=cmdline,
                            create_time=info.get("create_time"),
                        )
                    )
        except (psutil.Error, OSError) as e:
            logger.debug(f"Process search for {pattern!r} failed: {e}")
        return matches


def read_snapshot(policy: CapturePolicy | None = None) -> ProcessTableSnapshot:
    """Capture a process table snapshot with the default reader."""
    return ProcessReader(policy).snapshot()
