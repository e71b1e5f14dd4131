"""CLI commands for FE-1 prep.

Commands:
- init-db: Create the database schema
- import-content: Load subjects, modules, lessons and essay questions from YAML
- progress: Show a user's progress in a subject
- simulations: Show a user's simulation history
"""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from fe1prep.config.app_config import load_app_config
from fe1prep.core.content_importer import import_content_file
from fe1prep.core.errors import AppError
from fe1prep.core.progress_rollup import get_subject_progress_detail
from fe1prep.core.simulation import APP_PASS_THRESHOLD, list_simulations
from fe1prep.db.database import init_db

app = typer.Typer(
    name="fe1",
    help="FE-1 exam preparation: progress tracking and exam simulations.",
    no_args_is_help=True,
)

console = Console()


def _open_db(db: str | None) -> Path:
    """Initialize the database from --db or the app config."""
    db_path = Path(db) if db else load_app_config().db_path
    init_db(db_path)
    return db_path


@app.command(name="init-db")
def init_database(
    db: str | None = typer.Option(None, "--db", help="Database file (default from config)"),
) -> None:
    """Create the database and its tables."""
    db_path = _open_db(db)
    console.print(f"[green]✓ Database ready[/green] [dim]{db_path}[/dim]")


@app.command(name="import-content")
def import_content(
    file: str = typer.Argument(..., help="YAML file with subjects and essay questions"),
    db: str | None = typer.Option(None, "--db", help="Database file (default from config)"),
) -> None:
    """Import subjects, modules, lessons and essay questions."""
    _open_db(db)

    try:
        summary = import_content_file(Path(file).expanduser().resolve())
    except AppError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        raise typer.Exit(code=1)

    console.print("[green]✓ Content imported[/green]")
    for name, count in summary.to_dict().items():
        console.print(f"  [dim]{name}:[/dim] {count}")


@app.command()
def progress(
    user_id: str = typer.Argument(..., help="User ID"),
    subject_id: str = typer.Argument(..., help="Subject ID"),
    db: str | None = typer.Option(None, "--db", help="Database file (default from config)"),
) -> None:
    """Show a user's progress in a subject."""
    _open_db(db)

    try:
        detail = get_subject_progress_detail(user_id, subject_id)
    except AppError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        raise typer.Exit(code=1)

    subject = detail.subject
    console.print(
        f"\n[bold]{detail.subject_name}[/bold]  "
        f"{subject.progress_percent:.1f}%  [dim]{subject.status.value}[/dim]"
    )

    table = Table(show_header=True, header_style="bold")
    table.add_column("Module")
    table.add_column("Lessons", justify="right")
    table.add_column("Progress", justify="right")
    table.add_column("Status")

    for module in detail.modules:
        table.add_row(
            module.name or module.module_id,
            f"{module.completed_lessons}/{module.total_lessons}",
            f"{module.progress_percent:.1f}%",
            module.status.value,
        )

    console.print(table)
    console.print(
        f"[dim]Lessons completed: {detail.total_lessons_completed}/{detail.total_lessons} "
        f"({detail.completion_rate}%)[/dim]"
    )


@app.command()
def simulations(
    user_id: str = typer.Argument(..., help="User ID"),
    db: str | None = typer.Option(None, "--db", help="Database file (default from config)"),
) -> None:
    """Show a user's simulation history."""
    _open_db(db)

    history = list_simulations(user_id)
    if not history:
        console.print("[yellow]No simulations yet[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Simulation")
    table.add_column("Started")
    table.add_column("Status")
    table.add_column("Score", justify="right")
    table.add_column("Result")

    for sim in history:
        if sim.overall_score is None:
            score, result = "-", "-"
        else:
            score = str(sim.overall_score)
            if sim.passed and sim.overall_score >= APP_PASS_THRESHOLD:
                result = "[green]PASS (app target)[/green]"
            elif sim.passed:
                result = "[green]PASS[/green]"
            else:
                result = "[red]FAIL[/red]"
        table.add_row(sim.simulation_id[:8], sim.started_at[:19], sim.status, score, result)

    console.print(table)


if __name__ == "__main__":
    app()
