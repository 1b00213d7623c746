"""Sequence the relaunch of captured sessions.

States run strictly in order::

    Idle -> LaunchingTerminals -> AwaitingAssistantReadiness
         -> LaunchingEditors -> LaunchingVisualAssets -> Done

``Cancelled`` is reachable from any non-terminal state. Cancellation is
cooperative: launched terminals keep running, only further work stops.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable
from datetime import datetime

from termstate.config import CapturePolicy
from termstate.errors import LaunchError, RestorationCancelled
from termstate.models import (
    LaunchResult,
    LaunchStatus,
    RestoreState,
    RestoreSummary,
    TerminalSession,
)

logger = logging.getLogger(__name__)

Launcher = Callable[[TerminalSession], int]
ReadinessCheck = Callable[[set[str]], bool]
ProgressCallback = Callable[[str], None]
Step = Callable[[], None]


class CancellationToken:
    """Thread-safe flag a caller sets to stop a restoration."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def order_sessions(sessions: Iterable[TerminalSession]) -> list[TerminalSession]:
    """Assistant sessions first, otherwise capture order."""
    sessions = list(sessions)
    return [s for s in sessions if s.assistant_context is not None] + [
        s for s in sessions if s.assistant_context is None
    ]


def batched(items: list[TerminalSession], size: int) -> list[list[TerminalSession]]:
    size = max(1, size)
    return [items[i:i + size] for i in range(0, len(items), size)]


class RestorationOrchestrator:
    """Relaunches sessions in batches and gates later restore stages."""

    def __init__(
        self,
        launcher: Launcher,
        policy: CapturePolicy | None = None,
        readiness_check: ReadinessCheck | None = None,
        editor_step: Step | None = None,
        visual_step: Step | None = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.launcher = launcher
        self.policy = policy or CapturePolicy()
        self.readiness_check = readiness_check
        self.editor_step = editor_step
        self.visual_step = visual_step
        self.clock = clock
        self.sleep = sleep
        self.state = RestoreState.IDLE
        self.transitions: list[RestoreState] = [RestoreState.IDLE]

    def _enter(self, state: RestoreState, on_progress: ProgressCallback | None, message: str = "") -> None:
        self.state = state
        self.transitions.append(state)
        logger.debug(f"Restore state -> {state.value}")
        if message:
            self._report(on_progress, message)

    @staticmethod
    def _report(on_progress: ProgressCallback | None, message: str) -> None:
        if on_progress is None:
            return
        try:
            on_progress(message)
        except Exception as e:
            logger.debug(f"Progress callback failed: {e}")

    @staticmethod
    def _check(cancellation: CancellationToken | None) -> None:
        if cancellation is not None and cancellation.cancelled:
            raise RestorationCancelled()

    def _launch_one(self, session: TerminalSession) -> LaunchResult:
        try:
            host_pid = self.launcher(session)
        except LaunchError as e:
            logger.warning(f"Failed to launch session {session.pid}: {e}")
            return LaunchResult(session.pid, LaunchStatus.FAILED, detail=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error launching session {session.pid}")
            return LaunchResult(session.pid, LaunchStatus.FAILED, detail=str(e))
        return LaunchResult(session.pid, LaunchStatus.LAUNCHED, host_pid=host_pid, launched_at=self.clock())

    def _launch_terminals(
        self,
        sessions: list[TerminalSession],
        summary: RestoreSummary,
        on_progress: ProgressCallback | None,
        cancellation: CancellationToken | None,
    ) -> None:
        batches = batched(sessions, self.policy.launch_batch_size)
        done = 0
        for index, batch in enumerate(batches):
            if index > 0:
                self.sleep(self.policy.batch_delay_seconds)
            self._check(cancellation)
            for session in batch:
                summary.results.append(self._launch_one(session))
                done += 1
                self._report(on_progress, f"Restored terminal {done}/{len(sessions)}: {session.title}")

    def _await_assistants(
        self,
        tool_names: set[str],
        on_progress: ProgressCallback | None,
        cancellation: CancellationToken | None,
    ) -> bool:
        """Poll for the assistant processes. A timeout is not an error."""
        if self.readiness_check is None:
            return False
        attempts = max(1, int(self.policy.readiness_timeout_seconds / self.policy.readiness_poll_seconds))
        for _ in range(attempts):
            self._check(cancellation)
            try:
                ready = self.readiness_check(tool_names)
            except Exception as e:
                logger.debug(f"Readiness check failed: {e}")
                ready = False
            if ready:
                self._report(on_progress, f"{', '.join(sorted(tool_names))} is running")
                self.sleep(self.policy.readiness_settle_seconds)
                return True
            self.sleep(self.policy.readiness_poll_seconds)
        logger.info(f"Timed out waiting for {', '.join(sorted(tool_names))}, continuing")
        self._report(on_progress, "Assistant did not start in time, continuing")
        return False

    def _run_step(self, step: Step | None, label: str) -> None:
        if step is None:
            return
        try:
            step()
        except Exception as e:
            logger.warning(f"{label} step failed: {e}")

    def restore(
        self,
        sessions: Iterable[TerminalSession],
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> RestoreSummary:
        """Run a full restoration and return its summary."""
        self.state = RestoreState.IDLE
        self.transitions = [RestoreState.IDLE]
        ordered = order_sessions(sessions)
        summary = RestoreSummary()
        try:
            self._check(cancellation)
            self._enter(RestoreState.LAUNCHING_TERMINALS, on_progress, f"Restoring {len(ordered)} terminal(s)")
            self._launch_terminals(ordered, summary, on_progress, cancellation)

            launched = {r.session_pid for r in summary.launched}
            tool_names = {
                s.assistant_context.tool_name
                for s in ordered
                if s.assistant_context is not None and s.pid in launched
            }
            self._enter(RestoreState.AWAITING_ASSISTANT_READINESS, on_progress)
            if tool_names:
                self._report(on_progress, f"Waiting for {', '.join(sorted(tool_names))} to start")
                summary.assistant_ready = self._await_assistants(tool_names, on_progress, cancellation)

            self._check(cancellation)
            self._enter(RestoreState.LAUNCHING_EDITORS, on_progress)
            summary.editors_started_at = self.clock()
            self._run_step(self.editor_step, "Editor")

            self._check(cancellation)
            self._enter(RestoreState.LAUNCHING_VISUAL_ASSETS, on_progress)
            summary.visual_assets_started_at = self.clock()
            self._run_step(self.visual_step, "Visual asset")

            self._enter(RestoreState.DONE, on_progress, f"Restored {len(summary.launched)}/{len(ordered)} terminal(s)")
        except RestorationCancelled:
            attempted = {r.session_pid for r in summary.results}
            summary.results += [
                LaunchResult(s.pid, LaunchStatus.CANCELLED) for s in ordered if s.pid not in attempted
            ]
            self._enter(RestoreState.CANCELLED, on_progress, "Restoration cancelled")

        summary.state = self.state
        return summary


def assistant_readiness_check(reader, since: float) -> ReadinessCheck:
    """Readiness check that looks for assistant processes started after ``since``."""

    def check(tool_names: set[str]) -> bool:
        for tool in tool_names:
            for proc in reader.find_processes(rf"\b{tool}\b"):
                if proc.create_time is None or proc.create_time >= since:
                    return True
        return False

    return check


def restore_terminal_sessions(
    sessions: Iterable[TerminalSession],
    on_progress: ProgressCallback | None = None,
    cancellation_token: CancellationToken | None = None,
    policy: CapturePolicy | None = None,
    editor_step: Step | None = None,
    visual_step: Step | None = None,
) -> RestoreSummary:
    """Relaunch ``sessions`` in new terminal windows on this host."""
    from termstate.launcher import launch_session
    from termstate.process_table import ProcessReader

    policy = policy or CapturePolicy()
    orchestrator = RestorationOrchestrator(
        launcher=lambda session: launch_session(session, policy),
        policy=policy,
        readiness_check=assistant_readiness_check(ProcessReader(policy), since=time.time()),
        editor_step=editor_step,
        visual_step=visual_step,
    )
    return orchestrator.restore(sessions, on_progress=on_progress, cancellation=cancellation_token)
