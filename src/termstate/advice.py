"""Heuristic resumption hints for assistant sessions.

Everything here is advisory. The hints are derived purely from data that was
already captured and are never read back during restore.
"""

from termstate.models import GitStatus, ResumptionAdvice

DEV_SERVER_MARKERS = ("npm run dev", "npm start", "yarn dev", "pnpm dev", "vite", "uvicorn", "flask run")
BUILD_MARKERS = ("npm run build", "cargo build", "make", "tsc", "python -m build")
TEST_MARKERS = ("npm test", "pytest", "jest", "vitest", "cargo test", "go test")

WORK_TYPES = [
    (("test", "spec"), "writing or fixing tests"),
    (("fix", "bug"), "fixing bugs"),
    ((".md",), "updating documentation"),
    (("component", "page", "view"), "building UI components"),
    (("api", "endpoint", "route"), "working on API endpoints"),
    (("style", ".css", ".scss"), "adjusting styles"),
]


def _basename(path: str) -> str:
    return path.replace("\\", "/").rsplit("/", 1)[-1]


def infer_work_type(files: list[str]) -> str | None:
    names = [f.lower() for f in files]
    for markers, label in WORK_TYPES:
        if any(m in name for name in names for m in markers):
            return label
    return None


def _recent_activity(history: list[str]) -> list[str]:
    recent = [c.lower() for c in history[-5:]]
    hints = []
    if any(m in c for c in recent for m in DEV_SERVER_MARKERS):
        hints.append("running a dev server")
    if any(m in c for c in recent for m in BUILD_MARKERS):
        hints.append("building the project")
    if any(m in c for c in recent for m in TEST_MARKERS):
        hints.append("running tests")
    return hints


def infer_summary(recent_files: list[str], git_status: GitStatus | None, history: list[str]) -> str:
    parts = []
    work_type = infer_work_type(recent_files)
    if work_type:
        parts.append(f"Was {work_type}.")
    if recent_files:
        parts.append(f"{len(recent_files)} file(s) modified in the last hour.")
    if git_status is not None and git_status.has_changes:
        parts.append(
            f"{len(git_status.modified_files)} uncommitted change(s) and "
            f"{len(git_status.untracked_files)} untracked file(s)"
            + (f" on branch {git_status.branch}." if git_status.branch else ".")
        )
    activity = _recent_activity(history)
    if activity:
        parts.append("Recently " + " and ".join(activity) + ".")
    return " ".join(parts) or "No recent activity detected."


def infer_active_tasks(recent_files: list[str], git_status: GitStatus | None) -> list[str]:
    tasks = []
    if git_status is not None and git_status.modified_files:
        tasks.append(f"Review and commit changes in {len(git_status.modified_files)} modified file(s)")
    for path in recent_files[:5]:
        tasks.append(f"Continue work on {_basename(path)}")
    if git_status is not None and git_status.untracked_files:
        tasks.append(f"Decide whether to track {len(git_status.untracked_files)} new file(s)")
    return tasks


def infer_next_steps(
    recent_files: list[str],
    git_status: GitStatus | None,
    history: list[str],
    running_commands: list[str],
) -> list[str]:
    steps = []
    dev_server = next(
        (c for c in [*running_commands, *reversed(history)] if any(m in c.lower() for m in DEV_SERVER_MARKERS)),
        None,
    )
    if dev_server:
        steps.append(f"Restart the dev server: {dev_server}")
    if git_status is not None and git_status.modified_files:
        steps.append("Run `git diff` to review uncommitted changes")
    if recent_files:
        steps.append(f"Continue editing {recent_files[0]}")
    return steps


def infer_advice(
    recent_files: list[str],
    git_status: GitStatus | None,
    history: list[str],
    running_commands: list[str] | None = None,
) -> ResumptionAdvice:
    """Derive summary, tasks and next steps from captured data."""
    running_commands = running_commands or []
    return ResumptionAdvice(
        summary=infer_summary(recent_files, git_status, history),
        active_tasks=tuple(infer_active_tasks(recent_files, git_status)),
        next_steps=tuple(infer_next_steps(recent_files, git_status, history, running_commands)),
    )
