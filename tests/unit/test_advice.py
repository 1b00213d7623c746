"""Tests for resumption advice heuristics."""

from termstate.advice import infer_active_tasks, infer_advice, infer_next_steps, infer_summary, infer_work_type
from termstate.models import GitStatus


def test_work_type_from_file_names():
    assert infer_work_type(["tests/test_api.py"]) == "writing or fixing tests"
    assert infer_work_type(["docs/guide.md"]) == "updating documentation"
    assert infer_work_type(["src/components/Button.tsx"]) == "building UI components"
    assert infer_work_type(["main.go"]) is None


def test_summary_mentions_changes_and_activity():
    git = GitStatus(branch="feature/login", modified_files=("a.py", "b.py"), untracked_files=("c.py",))
    summary = infer_summary(["src/api/routes.py"], git, ["git pull", "npm run dev"])

    assert "API endpoints" in summary
    assert "2 uncommitted change(s)" in summary
    assert "feature/login" in summary
    assert "dev server" in summary


def test_summary_without_data():
    assert infer_summary([], None, []) == "No recent activity detected."


def test_active_tasks():
    git = GitStatus(branch="main", modified_files=("a.py",), untracked_files=("new.py",))
    tasks = infer_active_tasks(["src/a.py", "src/b.py"], git)

    assert tasks[0].startswith("Review and commit")
    assert "Continue work on a.py" in tasks
    assert tasks[-1].startswith("Decide whether to track")


def test_active_tasks_empty_when_nothing_inferred():
    assert infer_active_tasks([], None) == []


def test_next_steps_prefers_running_dev_server():
    steps = infer_next_steps(["src/app.ts"], GitStatus(modified_files=("x",)), [], ["npm run dev"])

    assert steps[0] == "Restart the dev server: npm run dev"
    assert "Run `git diff` to review uncommitted changes" in steps
    assert steps[-1] == "Continue editing src/app.ts"


def test_next_steps_empty_when_nothing_inferred():
    assert infer_next_steps([], None, [], []) == []


def test_infer_advice_bundles_everything():
    advice = infer_advice(["a_test.py"], None, ["pytest -x"])

    assert "tests" in advice.summary
    assert advice.active_tasks == ("Continue work on a_test.py",)
    assert advice.next_steps == ("Continue editing a_test.py",)
