"""CLI for termstate."""

import logging
import threading
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from termstate import __version__

app = typer.Typer(
    name="termstate",
    help="Capture open terminal sessions and restore them later.",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"termstate {__version__}")
        raise typer.Exit()


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", help="Show debug logging")] = False,
) -> None:
    """Capture and restore terminal sessions."""
    setup_logging(verbose)


def _load_policy(policy_path: Path | None):
    from termstate.config import load_policy

    return load_policy(policy_path)


def _sessions_table(sessions, title: str) -> Table:
    table = Table(title=title)
    table.add_column("PID", justify="right")
    table.add_column("Shell")
    table.add_column("Directory")
    table.add_column("Running")
    table.add_column("Assistant")
    for session in sessions:
        running = ", ".join(cmd.name for cmd in session.running_commands[:3])
        assistant = session.assistant_context.tool_name if session.assistant_context else ""
        table.add_row(
            str(session.pid),
            session.shell_kind.value,
            session.working_directory or "[dim]unknown[/dim]",
            running,
            assistant,
        )
    return table


@app.command()
def capture(
    name: Annotated[str | None, typer.Option("--name", "-n", help="Name for this capture")] = None,
    description: Annotated[
        str | None, typer.Option("--description", "-d", help="What you were working on")
    ] = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Show what would be captured without saving")
    ] = False,
    smart: Annotated[
        bool | None, typer.Option("--smart/--no-smart", help="Skip idle terminals")
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
    policy_path: Annotated[
        Path | None, typer.Option("--policy", help="Policy JSON file")
    ] = None,
) -> None:
    """Capture the terminal sessions that are open right now."""
    import dataclasses

    from termstate.capture import capture_terminal_sessions, save_capture
    from termstate.storage import ensure_store_exists

    policy = _load_policy(policy_path)
    if smart is not None:
        policy = dataclasses.replace(policy, smart_capture=smart)

    sessions = capture_terminal_sessions(policy)

    if json_output:
        console.print_json(data={"sessions": [s.to_dict() for s in sessions]})
    elif sessions:
        console.print(_sessions_table(sessions, f"{len(sessions)} terminal session(s)"))

    if not sessions:
        if not json_output:
            console.print("[yellow]No terminal sessions found[/yellow]")
        return

    if dry_run:
        if not json_output:
            console.print("[yellow]Dry run - nothing saved[/yellow]")
        return

    conn = ensure_store_exists()
    capture_id = save_capture(conn, sessions, name=name, description=description)
    conn.close()
    if not json_output:
        console.print(f"[green]Saved capture {capture_id} with {len(sessions)} terminal(s)[/green]")


@app.command()
def processes(
    show_all: Annotated[
        bool, typer.Option("--all", "-a", help="Include excluded shells")
    ] = False,
    policy_path: Annotated[
        Path | None, typer.Option("--policy", help="Policy JSON file")
    ] = None,
) -> None:
    """Show how each shell process on this host is classified."""
    from termstate.classifier import classify_snapshot
    from termstate.dedup import deduplicate
    from termstate.process_table import ProcessReader

    policy = _load_policy(policy_path)
    snapshot = ProcessReader(policy).snapshot()
    classified = classify_snapshot(snapshot, policy)
    kept = {r.pid for r, _ in deduplicate([(r, c) for r, c in classified if c.is_visible], snapshot, policy)}

    table = Table(title=f"{len(snapshot)} processes scanned")
    table.add_column("PID", justify="right")
    table.add_column("Name")
    table.add_column("Parent")
    table.add_column("Verdict")
    table.add_column("Reason")
    table.add_column("Kept")
    for record, classification in classified:
        if not show_all and not classification.is_visible:
            continue
        parent = snapshot.parent_of(record.pid)
        table.add_row(
            str(record.pid),
            record.executable_name,
            f"{parent.executable_name} ({parent.pid})" if parent else "-",
            classification.verdict.value,
            classification.reason.value if classification.reason else "",
            "[green]yes[/green]" if record.pid in kept else "no",
        )
    console.print(table)


@app.command("list")
def list_captures_command(
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """List saved captures."""
    from termstate.storage import ensure_store_exists, list_captures, store_exists

    if not store_exists():
        console.print("[yellow]No captures found. Run 'termstate capture' first.[/yellow]")
        raise typer.Exit(1)

    conn = ensure_store_exists()
    captures = list_captures(conn)
    conn.close()

    if json_output:
        console.print_json(data={"captures": captures})
        return
    if not captures:
        console.print("[yellow]No captures saved.[/yellow]")
        return
    for item in captures:
        console.print(
            f"[cyan]{item['id']}[/cyan] {item['name']} "
            f"[dim]({item['terminals']} terminals, {item['created_at']})[/dim]"
        )


def _resolve_capture(conn, capture_id: int | None) -> int:
    from termstate.storage import get_capture, get_latest_capture_id

    if capture_id is None:
        capture_id = get_latest_capture_id(conn)
        if capture_id is None:
            console.print("[red]Error: No captures saved[/red]")
            raise typer.Exit(1)
    elif get_capture(conn, capture_id) is None:
        console.print(f"[red]Error: Capture {capture_id} not found[/red]")
        raise typer.Exit(1)
    return capture_id


@app.command()
def show(
    capture_id: Annotated[
        int | None, typer.Argument(help="Capture id (defaults to the latest)")
    ] = None,
) -> None:
    """Show the terminal sessions stored in a capture."""
    from termstate.storage import ensure_store_exists, get_assets

    conn = ensure_store_exists()
    try:
        capture_id = _resolve_capture(conn, capture_id)
        assets = get_assets(conn, capture_id, asset_type="terminal")
    finally:
        conn.close()

    if not assets:
        console.print("[yellow]Capture has no terminal sessions.[/yellow]")
        return
    for asset in assets:
        console.print(f"[bold cyan]{asset['title']}[/bold cyan]")
        console.print(asset["content"], markup=False, highlight=False)
        console.print()


@app.command()
def restore(
    capture_id: Annotated[
        int | None, typer.Argument(help="Capture id (defaults to the latest)")
    ] = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", help="Print startup scripts instead of launching")
    ] = False,
    policy_path: Annotated[
        Path | None, typer.Option("--policy", help="Policy JSON file")
    ] = None,
) -> None:
    """Reopen the terminal sessions of a capture."""
    from termstate.models import RestoreState
    from termstate.orchestrator import CancellationToken, restore_terminal_sessions
    from termstate.storage import ensure_store_exists, load_sessions
    from termstate.synthesizer import synthesize

    policy = _load_policy(policy_path)
    conn = ensure_store_exists()
    try:
        capture_id = _resolve_capture(conn, capture_id)
        sessions = load_sessions(conn, capture_id)
    finally:
        conn.close()

    if not sessions:
        console.print("[yellow]Capture has no terminal sessions.[/yellow]")
        return

    if dry_run:
        for session in sessions:
            script = synthesize(session, policy)
            console.print(f"[bold cyan]# {session.title} ({script.shell_kind.value})[/bold cyan]")
            console.print(script.text, markup=False, highlight=False)
        return

    token = CancellationToken()
    outcome = {}

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task("Restoring...", total=None)

        def run() -> None:
            outcome["summary"] = restore_terminal_sessions(
                sessions,
                on_progress=lambda message: progress.update(task, description=message),
                cancellation_token=token,
                policy=policy,
            )

        worker = threading.Thread(target=run, daemon=True)
        worker.start()
        try:
            while worker.is_alive():
                worker.join(0.1)
        except KeyboardInterrupt:
            token.cancel()
            progress.update(task, description="Cancelling...")
            worker.join()

    summary = outcome.get("summary")
    if summary is None:
        console.print("[red]Error: Restoration did not complete[/red]")
        raise typer.Exit(1)

    for result in summary.failed:
        console.print(f"[red]Failed[/red] session {result.session_pid}: {result.detail}")
    color = "yellow" if summary.state is RestoreState.CANCELLED or summary.failed else "green"
    console.print(
        f"[{color}]{summary.state.value}: {len(summary.launched)}/{len(sessions)} terminal(s) restored[/{color}]"
    )
    if summary.failed:
        raise typer.Exit(1)


@app.command()
def delete(
    capture_id: Annotated[int, typer.Argument(help="Capture id")],
) -> None:
    """Delete a capture."""
    from termstate.storage import delete_capture, ensure_store_exists

    conn = ensure_store_exists()
    deleted = delete_capture(conn, capture_id)
    conn.close()
    if not deleted:
        console.print(f"[red]Error: Capture {capture_id} not found[/red]")
        raise typer.Exit(1)
    console.print(f"Deleted capture {capture_id}")


@app.command()
def status() -> None:
    """Show store statistics."""
    from termstate.storage import get_store_stats

    stats = get_store_stats()
    console.print(f"Captures: {stats['capture_count']}")
    console.print(f"Terminals: {stats['terminal_count']}")
    console.print(f"Store path: {stats['store_path']}")
    console.print(f"Store size: {stats['store_size']}")
    if stats["last_capture"]:
        console.print(f"Last capture: {stats['last_capture']}")


if __name__ == "__main__":
    app()
